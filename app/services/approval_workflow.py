"""Payment webhooks, admin decisions and cancellation.

Webhooks are delivered at least once and in any order, so every handler is
idempotent: a replay of an already-applied event leaves the booking alone.
"""
import logging

from app.core.exceptions import BookingError, InvalidWebhookPayload
from app.models.booking import Booking
from app.services.booking_lifecycle import OPEN_PAYMENT_STATUSES, PAID_STATUSES, BookingLifecycle
from app.services.booking_store import SqlBookingStore
from app.services.product_policy import DEPOSIT

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"
KNOWN_EVENTS = (PAYMENT_SUCCEEDED, PAYMENT_FAILED, CHARGE_REFUNDED)


def event_object(event: dict) -> tuple[dict, dict]:
    """Return ``(data.object, metadata)`` or raise InvalidWebhookPayload."""
    data = event.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidWebhookPayload("data must be an object")
    obj = data.get("object")
    if obj is None:
        obj = {}
    if not isinstance(obj, dict):
        raise InvalidWebhookPayload("data.object must be an object")
    for key in ("id", "payment_intent"):
        if obj.get(key) is not None and not isinstance(obj[key], str):
            raise InvalidWebhookPayload(f"{key} must be a string")
    amount = obj.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
        raise InvalidWebhookPayload("amount must be an integer")
    metadata = obj.get("metadata")
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict) or not all(isinstance(v, str) for v in metadata.values()):
        raise InvalidWebhookPayload("metadata must map strings to strings")
    return obj, metadata


class ApprovalWorkflow:
    def __init__(self, store: SqlBookingStore, lifecycle: BookingLifecycle, notifier, gateway):
        self.store = store
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.gateway = gateway

    # -- webhook-driven ----------------------------------------------------

    def handle_event(self, event: dict) -> dict:
        """Dispatch a decoded webhook event. Unknown types are acknowledged and ignored."""
        event_type = event.get("type") or ""
        if not isinstance(event_type, str):
            raise InvalidWebhookPayload("type must be a string")
        if event_type not in KNOWN_EVENTS:
            logger.info("Ignoring webhook event type %r", event_type)
            return {"handled": False, "reason": "ignored"}
        obj, metadata = event_object(event)

        if event_type == PAYMENT_SUCCEEDED:
            return self.on_payment_succeeded(obj.get("id") or "", obj.get("amount"), metadata)
        if event_type == PAYMENT_FAILED:
            return self.on_payment_failed(obj.get("id") or "", metadata)
        return self.on_refunded(obj.get("payment_intent") or obj.get("id") or "", metadata)

    def find_booking(self, payment_intent_id: str, metadata: dict | None) -> Booking | None:
        by_intent = self.store.find_by_payment_intent_id(payment_intent_id)
        booking_id = (metadata or {}).get("bookingId")
        if by_intent is not None:
            if booking_id and booking_id != by_intent.id:
                # The intent id is what the gateway charged against, so it wins.
                logger.warning("Webhook for %s names booking %s but the intent is linked to %s",
                               payment_intent_id, booking_id, by_intent.id)
            return by_intent
        if booking_id:
            booking = self.store.get(booking_id)
            if booking is not None and booking.payment_intent_id and booking.payment_intent_id != payment_intent_id:
                logger.warning("Webhook intent %s does not match booking %s (linked to %s); ignoring",
                               payment_intent_id, booking_id, booking.payment_intent_id)
                return None
            return booking
        return None

    def on_payment_succeeded(self, payment_intent_id: str, amount_cents: int | None, metadata: dict | None) -> dict:
        booking = self.find_booking(payment_intent_id, metadata)
        if booking is None:
            logger.warning("Payment %s succeeded but no booking matches", payment_intent_id)
            return {"handled": False, "reason": "booking not found"}

        payment_type = (metadata or {}).get("paymentType") or booking.payment_method
        if payment_type != booking.payment_method:
            logger.warning("Payment %s reports type %s, booking %s expects %s",
                           payment_intent_id, payment_type, booking.id, booking.payment_method)
            payment_type = booking.payment_method
        if booking.status == "cancelled":
            # The customer paid through an intent that could not be voided in time.
            booking, changed = self.lifecycle.record_payment_after_cancel(booking, payment_intent_id, payment_type)
            return {"handled": True, "changed": changed, "bookingId": booking.id,
                    "refundRequired": booking.payment_status in PAID_STATUSES}
        expected = self.lifecycle.amount_due_now(booking)
        if amount_cents is not None and int(amount_cents) != expected:
            logger.warning("Payment amount mismatch (potential manipulation) booking=%s intent=%s expected=%s paid=%s",
                           booking.id, payment_intent_id, expected, amount_cents)
            return {"handled": False, "reason": "amount mismatch", "bookingId": booking.id}

        booking, changed = self.lifecycle.record_payment_succeeded(booking, payment_intent_id, payment_type)
        if not changed:
            return {"handled": True, "changed": False, "bookingId": booking.id}

        try:
            if booking.status == "confirmed":
                self.notifier.send_booking_confirmation(booking)
            elif payment_type == DEPOSIT or booking.approval_status == "pending":
                logger.info("Booking %s queued for admin review", booking.id)
                self.notifier.send_deposit_received(booking)
        except Exception:
            logger.exception("Payment email for booking %s failed", booking.id)
        return {"handled": True, "changed": True, "bookingId": booking.id, "status": booking.status}

    def on_payment_failed(self, payment_intent_id: str, metadata: dict | None) -> dict:
        booking = self.find_booking(payment_intent_id, metadata)
        if booking is None:
            return {"handled": False, "reason": "booking not found"}
        booking, changed = self.lifecycle.record_payment_failed(booking, payment_intent_id)
        return {"handled": True, "changed": changed, "bookingId": booking.id}

    def on_refunded(self, payment_intent_id: str, metadata: dict | None) -> dict:
        booking = self.find_booking(payment_intent_id, metadata)
        if booking is None:
            return {"handled": False, "reason": "booking not found"}
        if booking.payment_status not in ("deposit_paid", "succeeded") or booking.status in ("cancelled", "completed"):
            logger.warning("Refund for booking %s in status %s/%s; leaving state untouched",
                           booking.id, booking.status, booking.payment_status)
            return {"handled": True, "changed": False, "bookingId": booking.id}
        booking, changed = self.lifecycle.mark_refunded(booking)
        return {"handled": True, "changed": changed, "bookingId": booking.id}

    # -- admin-driven ------------------------------------------------------

    def approve(self, booking_id: str, admin_id: str, notes: str | None = None) -> Booking:
        booking = self.lifecycle.approve(booking_id, admin_id, notes)
        self._notify_decision(booking, approved=True)
        return booking

    def reject(self, booking_id: str, admin_id: str, reason: str, notes: str | None = None) -> Booking:
        booking = self.lifecycle.reject(booking_id, admin_id, reason, notes)
        self._void_open_intent(booking)
        self._notify_decision(booking, approved=False, reason=reason)
        return booking

    def _notify_decision(self, booking: Booking, approved: bool, reason: str | None = None) -> None:
        # The transition is already committed; a failed email must not undo it.
        try:
            self.notifier.send_approval_decision(booking, approved, reason)
        except Exception:
            logger.exception("Approval email for booking %s failed", booking.id)

    # -- cancellation ------------------------------------------------------

    def cancel(self, booking_id: str, actor: str, reason: str | None = None) -> Booking:
        """Cancel a booking and void its payment intent while no money has moved."""
        booking = self.lifecycle.cancel(booking_id, actor=actor, reason=reason)
        self._void_open_intent(booking)
        return booking

    def _void_open_intent(self, booking: Booking) -> None:
        if not booking.payment_intent_id or booking.payment_status not in OPEN_PAYMENT_STATUSES:
            return
        try:
            intent = self.gateway.cancel_intent(booking.payment_intent_id)
        except BookingError as e:
            # The booking stays cancelled; a payment that still lands is kept for refund.
            logger.error("Could not void payment intent %s of cancelled booking %s: %s",
                         booking.payment_intent_id, booking.id, e.message)
            return
        logger.info("Voided payment intent %s of booking %s (gateway status %s)", intent.id, booking.id, intent.status)
