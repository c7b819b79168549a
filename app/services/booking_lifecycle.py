"""Booking state machine.

A booking carries three independent axes: ``status``, ``payment_status`` and
``approval_status``. A booking can be paid in full while its approval is still
pending, so the axes are never folded into one column. The lifecycle *stage*
used for transition checks is derived from them:

    pending            no payment intent attached yet
    pending_payment    intent attached, money not yet received
    awaiting_approval  paid (deposit or full), admin decision outstanding
    approved           admin approved, confirmation being applied
    confirmed / completed / cancelled / rejected / refunded
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from app.core.exceptions import (
    AlreadyDecided,
    BookingNotFound,
    InvalidTransition,
    PaymentMethodNotAllowed,
)
from app.models.booking import Booking
from app.services.booking_store import SqlBookingStore
from app.services.product_policy import CASH_ON_ARRIVAL, DEPOSIT, ProductPolicyRegistry

logger = logging.getLogger(__name__)

PENDING = "pending"
PENDING_PAYMENT = "pending_payment"
AWAITING_APPROVAL = "awaiting_approval"
APPROVED = "approved"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"
REJECTED = "rejected"
REFUNDED = "refunded"

TERMINAL_STAGES = frozenset({CANCELLED, COMPLETED, REJECTED, REFUNDED})
PAID_STATUSES = ("deposit_paid", "succeeded")
OPEN_PAYMENT_STATUSES = ("pending", "failed")

_ALLOWED_TRANSITIONS = {
    PENDING: {PENDING_PAYMENT, CONFIRMED, CANCELLED},
    PENDING_PAYMENT: {AWAITING_APPROVAL, CONFIRMED, CANCELLED},
    AWAITING_APPROVAL: {APPROVED, REJECTED, CANCELLED, REFUNDED},
    APPROVED: {CONFIRMED, CANCELLED, REFUNDED},
    CONFIRMED: {COMPLETED, CANCELLED, REFUNDED},
}


def stage_of(booking: Booking) -> str:
    if booking.status == "cancelled":
        return REJECTED if booking.approval_status == "rejected" else CANCELLED
    if booking.status in ("completed", "refunded"):
        return booking.status
    if booking.status == "confirmed":
        return CONFIRMED
    if booking.approval_status == "approved":
        return APPROVED
    if booking.approval_status == "pending" and booking.payment_status in PAID_STATUSES:
        return AWAITING_APPROVAL
    if booking.payment_intent_id:
        return PENDING_PAYMENT
    return PENDING


def validate_transition(current: str, target: str) -> None:
    if current in TERMINAL_STAGES:
        raise InvalidTransition(f"booking is already {current}", current=current, target=target)
    if target not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"cannot move booking from {current} to {target}", current=current, target=target)


@dataclass
class NewBooking:
    tour_id: str
    product_type: str
    total_amount_cents: int
    user_id: str
    booker_name: str
    booker_email: str
    tour_name: str = ""
    currency: str = "eur"
    payment_method: str | None = None
    adults: int = 1
    children: int = 0
    booker_phone: str | None = None
    selected_date: datetime | None = None
    special_requests: str | None = None


class BookingLifecycle:
    def __init__(self, store: SqlBookingStore, policies: ProductPolicyRegistry):
        self.store = store
        self.policies = policies

    # -- queries ---------------------------------------------------------

    def get(self, booking_id: str) -> Booking:
        booking = self.store.get(booking_id)
        if not booking:
            raise BookingNotFound(f"booking {booking_id} not found")
        return booking

    def amount_due_now(self, booking: Booking) -> int:
        if booking.payment_method == DEPOSIT:
            return booking.deposit_amount_cents or 0
        if booking.payment_method == CASH_ON_ARRIVAL:
            return 0
        return booking.total_amount_cents

    # -- creation --------------------------------------------------------

    def create(self, data: NewBooking, actor: str = "system") -> Booking:
        policy = self.policies.get(data.product_type)
        method = data.payment_method or policy.default_payment_method
        if method not in policy.allowed_payment_methods:
            raise PaymentMethodNotAllowed(f"{method} is not available for {policy.label}")

        deposit = balance = None
        if method == DEPOSIT:
            deposit = self.policies.compute_deposit(data.product_type, data.total_amount_cents)
            balance = self.policies.compute_balance(data.product_type, data.total_amount_cents)

        booking = Booking(
            id=str(uuid.uuid4()),
            tour_id=data.tour_id,
            tour_name=data.tour_name or "",
            product_type=data.product_type,
            total_amount_cents=data.total_amount_cents,
            currency=(data.currency or "eur").lower(),
            deposit_amount_cents=deposit,
            balance_amount_cents=balance,
            payment_method=method,
            user_id=data.user_id,
            booker_name=data.booker_name,
            booker_email=data.booker_email.strip().lower(),
            booker_phone=data.booker_phone,
            adults=data.adults,
            children=data.children,
            selected_date=data.selected_date,
            special_requests=data.special_requests,
            status="pending",
            payment_status="not_required" if method == CASH_ON_ARRIVAL else "pending",
            approval_status="pending" if policy.requires_approval else "not_required",
        )
        booking = self.store.add(booking, actor=actor)
        logger.info("Booking %s created (%s, %s, %s cents)", booking.id, booking.product_type, method, booking.total_amount_cents)
        return booking

    # -- transitions -----------------------------------------------------

    def _apply(self, booking: Booking, target: str, expected: dict, values: dict, actor: str, action: str,
               details: dict | None = None) -> Booking:
        previous = stage_of(booking)
        validate_transition(previous, target)
        applied = self.store.update_where(booking.id, expected, values, audit=(actor, action, details or {}))
        fresh = self.store.refetch(booking.id)
        if not applied:
            # Lost a race: report against the state the winner left behind.
            current = stage_of(fresh) if fresh else "missing"
            raise InvalidTransition(f"booking changed concurrently (now {current})", current=current, target=target)
        logger.info("Booking %s: %s -> %s by %s", booking.id, previous, target, actor)
        return fresh

    def link_payment(self, booking_id: str, payment_intent_id: str) -> Booking:
        booking = self.get(booking_id)
        if booking.payment_intent_id == payment_intent_id:
            return booking
        return self._apply(
            booking, PENDING_PAYMENT,
            expected={"status": "pending", "payment_intent_id": None},
            values={"payment_intent_id": payment_intent_id},
            actor="system", action="booking.link_payment", details={"paymentIntentId": payment_intent_id},
        )

    def confirm_without_payment(self, booking_id: str) -> Booking:
        """Cash-on-arrival bookings for products that confirm instantly."""
        booking = self.get(booking_id)
        policy = self.policies.get(booking.product_type)
        if booking.payment_method != CASH_ON_ARRIVAL or not policy.instant_confirmation:
            raise InvalidTransition("booking needs payment before confirmation", current=stage_of(booking), target=CONFIRMED)
        return self._apply(
            booking, CONFIRMED,
            expected={"status": "pending", "payment_status": "not_required", "approval_status": "not_required"},
            values={"status": "confirmed"},
            actor="system", action="booking.confirm_cash",
        )

    def record_payment_succeeded(self, booking: Booking, payment_intent_id: str,
                                 payment_type: str = "full") -> tuple[Booking, bool]:
        """Apply a successful payment. Returns (booking, changed); replays are no-ops."""
        if booking.payment_status in PAID_STATUSES:
            return booking, False
        if booking.payment_status not in OPEN_PAYMENT_STATUSES:
            logger.warning("Payment %s succeeded for booking %s that takes no online payment", payment_intent_id, booking.id)
            return booking, False
        stage = stage_of(booking)
        if stage in TERMINAL_STAGES:
            logger.warning("Payment %s succeeded for %s booking %s; leaving state untouched", payment_intent_id, stage, booking.id)
            return booking, False

        policy = self.policies.get(booking.product_type)
        values = {
            "payment_status": "deposit_paid" if payment_type == DEPOSIT else "succeeded",
            "payment_intent_id": booking.payment_intent_id or payment_intent_id,
        }
        if payment_type == DEPOSIT:
            values["deposit_paid_at"] = datetime.now(timezone.utc)
        if policy.requires_approval:
            target = AWAITING_APPROVAL
        else:
            target = CONFIRMED
            values["status"] = "confirmed"

        if stage == PENDING:
            # Webhook beat the link step; the intent id comes from the event.
            validate_transition(PENDING, PENDING_PAYMENT)
            stage = PENDING_PAYMENT
        validate_transition(stage, target)
        applied = self.store.update_where(
            booking.id,
            expected={"status": "pending", "payment_status": OPEN_PAYMENT_STATUSES},
            values=values,
            audit=("payment-webhook", "booking.payment_succeeded",
                   {"paymentIntentId": payment_intent_id, "paymentType": payment_type}),
        )
        fresh = self.store.refetch(booking.id)
        if not applied:
            # A concurrent delivery of the same event got there first.
            return fresh, False
        logger.info("Booking %s paid (%s) -> %s", booking.id, payment_type, target)
        return fresh, True

    def record_payment_after_cancel(self, booking: Booking, payment_intent_id: str,
                                    payment_type: str = "full") -> tuple[Booking, bool]:
        """Money arrived for a booking that was already cancelled. Keep it on record for a refund."""
        if booking.status != "cancelled" or booking.payment_status not in OPEN_PAYMENT_STATUSES:
            return booking, False
        applied = self.store.update_where(
            booking.id,
            expected={"status": "cancelled", "payment_status": OPEN_PAYMENT_STATUSES},
            values={
                "payment_status": "deposit_paid" if payment_type == DEPOSIT else "succeeded",
                "payment_intent_id": booking.payment_intent_id or payment_intent_id,
            },
            audit=("payment-webhook", "booking.payment_after_cancel",
                   {"paymentIntentId": payment_intent_id, "paymentType": payment_type, "refundRequired": True}),
        )
        fresh = self.store.refetch(booking.id)
        if applied:
            logger.error("Payment %s captured for cancelled booking %s; refund required", payment_intent_id, booking.id)
        return fresh, applied

    def record_payment_failed(self, booking: Booking, payment_intent_id: str) -> tuple[Booking, bool]:
        if booking.status != "pending" or booking.payment_status != "pending":
            return booking, False
        applied = self.store.update_where(
            booking.id,
            expected={"status": "pending", "payment_status": "pending"},
            values={"payment_status": "failed"},
            audit=("payment-webhook", "booking.payment_failed", {"paymentIntentId": payment_intent_id}),
        )
        fresh = self.store.refetch(booking.id)
        if applied:
            logger.info("Booking %s payment failed (intent %s)", booking.id, payment_intent_id)
        return fresh, applied

    def approve(self, booking_id: str, admin_id: str, notes: str | None = None) -> Booking:
        booking = self.get(booking_id)
        self._guard_decision(booking, APPROVED)
        if booking.payment_status not in PAID_STATUSES:
            raise InvalidTransition("cannot approve an unpaid booking", current=stage_of(booking), target=APPROVED)
        now = datetime.now(timezone.utc)
        validate_transition(stage_of(booking), APPROVED)
        applied = self.store.update_where(
            booking.id,
            expected={"approval_status": "pending", "status": "pending", "payment_status": PAID_STATUSES},
            values={
                "approval_status": "approved",
                "approved_by": admin_id,
                "approved_at": now,
                "admin_notes": notes if notes else booking.admin_notes,
                "status": "confirmed",
            },
            audit=(admin_id, "booking.approve", {"notes": notes}),
        )
        fresh = self.store.refetch(booking.id)
        if not applied:
            raise AlreadyDecided("booking already processed", current=stage_of(fresh), target=APPROVED)
        logger.info("Booking %s approved by %s", booking.id, admin_id)
        return fresh

    def reject(self, booking_id: str, admin_id: str, reason: str, notes: str | None = None) -> Booking:
        if not reason or not reason.strip():
            raise InvalidTransition("a rejection reason is required", target=REJECTED)
        booking = self.get(booking_id)
        self._guard_decision(booking, REJECTED)
        stage = stage_of(booking)
        # An unpaid booking that is turned down is simply cancelled.
        validate_transition(stage, REJECTED if stage == AWAITING_APPROVAL else CANCELLED)
        admin_notes = f"Rejected by {admin_id}: {reason}"
        if notes:
            admin_notes = f"{notes}\n{admin_notes}"
        applied = self.store.update_where(
            booking.id,
            expected={"approval_status": "pending", "status": "pending"},
            values={
                "approval_status": "rejected",
                "status": "cancelled",
                "rejection_reason": reason,
                "admin_notes": admin_notes,
            },
            audit=(admin_id, "booking.reject", {"reason": reason}),
        )
        fresh = self.store.refetch(booking.id)
        if not applied:
            raise AlreadyDecided("booking already processed", current=stage_of(fresh), target=REJECTED)
        logger.info("Booking %s rejected by %s", booking.id, admin_id)
        return fresh

    def _guard_decision(self, booking: Booking, target: str) -> None:
        if booking.approval_status in ("approved", "rejected"):
            raise AlreadyDecided(f"booking already {booking.approval_status}", current=stage_of(booking), target=target)
        if booking.approval_status != "pending":
            raise InvalidTransition("booking does not require approval", current=stage_of(booking), target=target)
        stage = stage_of(booking)
        if stage in TERMINAL_STAGES:
            raise InvalidTransition(f"booking is already {stage}", current=stage, target=target)

    def cancel(self, booking_id: str, actor: str, reason: str | None = None) -> Booking:
        booking = self.get(booking_id)
        return self._apply(
            booking, CANCELLED,
            expected={"status": booking.status, "approval_status": booking.approval_status},
            values={"status": "cancelled"},
            actor=actor, action="booking.cancel", details={"reason": reason},
        )

    def complete(self, booking_id: str, actor: str = "system") -> Booking:
        booking = self.get(booking_id)
        return self._apply(
            booking, COMPLETED,
            expected={"status": "confirmed"},
            values={"status": "completed"},
            actor=actor, action="booking.complete",
        )

    def mark_refunded(self, booking: Booking, actor: str = "payment-webhook") -> tuple[Booking, bool]:
        if booking.status == "refunded":
            return booking, False
        return self._apply(
            booking, REFUNDED,
            expected={"status": booking.status, "payment_status": PAID_STATUSES},
            values={"status": "refunded"},
            actor=actor, action="booking.refund",
        ), True
