"""Checkout: verify the price, resolve the guest, persist the booking, open a payment intent.

Order matters. Nothing is written until the price has been verified, and the
booking row exists before the gateway is called so every charge can be traced
back to a booking even if the process dies between the two.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from app.core.exceptions import (
    BookingNotFound,
    ExternalGatewayRejected,
    ExternalGatewayTimeout,
    InvalidTransition,
    ItemNotFound,
    PaymentMethodNotAllowed,
    PriceMismatch,
)
from app.models.booking import Booking
from app.services.booking_lifecycle import BookingLifecycle, NewBooking
from app.services.guest_accounts import GuestAccount, GuestAccountProvisioner
from app.services.price_verification import CanonicalPrice, PriceVerifier
from app.services.pricing import PricingFlags, Travelers
from app.services.product_policy import CASH_ON_ARRIVAL, PRODUCT_TYPES, ProductPolicyRegistry

logger = logging.getLogger(__name__)


@dataclass
class CheckoutRequest:
    tour_id: str
    product_type: str
    amount_cents: int
    currency: str
    booker_name: str
    booker_email: str
    adults: int = 1
    children: int = 0
    tour_name: str = ""
    booker_phone: str | None = None
    selected_date: datetime | None = None
    special_requests: str | None = None
    payment_method: str | None = None
    single_supplement: bool = False
    booking_id: str | None = None  # retry a booking whose intent was never created


@dataclass(frozen=True)
class CheckoutResult:
    booking_id: str
    is_new_user: bool
    payment_method: str
    amount_due_cents: int
    client_secret: str | None = None
    payment_intent_id: str | None = None
    status: str = "pending"

    def as_response(self) -> dict:
        return {
            "clientSecret": self.client_secret,
            "paymentIntentId": self.payment_intent_id,
            "bookingId": self.booking_id,
            "isNewUser": self.is_new_user,
            "paymentType": self.payment_method,
            "amountDueCents": self.amount_due_cents,
            "status": self.status,
        }


def intent_idempotency_key(booking: Booking) -> str:
    return f"booking-{booking.id}-{booking.payment_method}"


class PaymentIntentOrchestrator:
    def __init__(self, verifier: PriceVerifier, provisioner: GuestAccountProvisioner, lifecycle: BookingLifecycle,
                 policies: ProductPolicyRegistry, gateway, notifier):
        self.verifier = verifier
        self.provisioner = provisioner
        self.lifecycle = lifecycle
        self.policies = policies
        self.gateway = gateway
        self.notifier = notifier

    def initiate(self, req: CheckoutRequest) -> CheckoutResult:
        travelers = Travelers(adults=req.adults, children=req.children)
        check = self.verifier.verify(req.tour_id, req.amount_cents, travelers,
                                     PricingFlags.from_settings(single_supplement=req.single_supplement),
                                     currency=req.currency)
        if not check.valid:
            if check.reason == "item not found":
                raise ItemNotFound(f"no canonical price for {req.tour_id}")
            raise PriceMismatch(
                f"{check.reason}: submitted {req.amount_cents} {req.currency} for {req.tour_id}, "
                f"expected {check.expected_amount_cents} {check.item.currency}",
                details={"expected": check.expected_amount_cents, "submitted": req.amount_cents},
            )

        product_type = self._product_type(req, check.item)
        policy = self.policies.get(product_type)
        method = req.payment_method or policy.default_payment_method
        if method not in policy.allowed_payment_methods:
            raise PaymentMethodNotAllowed(f"{method} is not available for {policy.label}")

        account = self.provisioner.resolve_or_create(req.booker_email, req.booker_name)

        booking = None
        if req.booking_id:
            booking = self._resumable_booking(req.booking_id, account, req.tour_id, check.expected_amount_cents, method)
        if booking is None:
            booking = self.lifecycle.create(NewBooking(
                tour_id=req.tour_id,
                tour_name=req.tour_name or (check.item.name if check.item else ""),
                product_type=product_type,
                # Charge what the catalog says, never what the client sent.
                total_amount_cents=check.expected_amount_cents,
                currency=check.item.currency,
                payment_method=method,
                user_id=account.user.id,
                booker_name=req.booker_name,
                booker_email=req.booker_email,
                booker_phone=req.booker_phone,
                adults=req.adults,
                children=req.children,
                selected_date=req.selected_date,
                special_requests=req.special_requests,
            ), actor=account.user.id)

        if method == CASH_ON_ARRIVAL:
            booking = self.lifecycle.confirm_without_payment(booking.id)
            try:
                self.notifier.send_booking_confirmation(booking)
            except Exception:
                logger.exception("Confirmation email for booking %s failed", booking.id)
            self._welcome(account, booking)
            return CheckoutResult(booking_id=booking.id, is_new_user=account.is_new, payment_method=method,
                                  amount_due_cents=0, status=booking.status)

        amount_due = self.lifecycle.amount_due_now(booking)
        metadata = {
            "bookingId": booking.id,
            "userId": account.user.id,
            "tourId": booking.tour_id,
            "productType": booking.product_type,
            "bookerEmail": booking.booker_email,
            "adults": booking.adults,
            "children": booking.children,
            "paymentType": booking.payment_method,
            "totalAmountCents": booking.total_amount_cents,
        }
        try:
            intent = self.gateway.create_intent(
                amount_due, booking.currency, metadata,
                description=f"{booking.tour_name or booking.tour_id} ({booking.payment_method})",
                idempotency_key=intent_idempotency_key(booking),
            )
        except ExternalGatewayTimeout:
            # Outcome unknown: the booking stays pending and unlinked for retry or reconciliation.
            logger.warning("Payment gateway timed out for booking %s; left pending", booking.id)
            raise
        except ExternalGatewayRejected as e:
            logger.warning("Payment gateway rejected booking %s: %s", booking.id, e.message)
            raise

        booking = self.lifecycle.link_payment(booking.id, intent.id)
        self._welcome(account, booking)
        return CheckoutResult(
            booking_id=booking.id,
            is_new_user=account.is_new,
            payment_method=booking.payment_method,
            amount_due_cents=amount_due,
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            status=booking.status,
        )

    def _product_type(self, req: CheckoutRequest, item: CanonicalPrice) -> str:
        # The catalog decides what is being booked, and with it the approval gate.
        if item.product_type not in PRODUCT_TYPES:
            logger.warning("Catalog entry %s (%s) has no bookable product type", req.tour_id, item.item_type)
            raise ItemNotFound(f"{req.tour_id} has no product type")
        if req.product_type and req.product_type != item.product_type:
            logger.warning("Booking for %s claimed product type %s, catalog says %s",
                           req.tour_id, req.product_type, item.product_type)
        return item.product_type

    def _resumable_booking(self, booking_id: str, account: GuestAccount, tour_id: str, expected_total: int,
                           method: str) -> Booking | None:
        try:
            booking = self.lifecycle.get(booking_id)
        except BookingNotFound:
            logger.info("Retry for unknown booking %s; creating a new one", booking_id)
            return None
        if booking.user_id != account.user.id:
            raise BookingNotFound(f"booking {booking_id} not found")
        if booking.payment_intent_id:
            raise InvalidTransition("booking already has a payment in progress", current="pending_payment",
                                    target="pending_payment")
        if booking.status != "pending":
            raise InvalidTransition(f"booking is already {booking.status}", current=booking.status,
                                    target="pending_payment")
        if booking.tour_id != tour_id or booking.total_amount_cents != expected_total or booking.payment_method != method:
            logger.info("Retry for booking %s does not match the original order; creating a new one", booking_id)
            return None
        logger.info("Resuming checkout for booking %s", booking_id)
        return booking

    def _welcome(self, account: GuestAccount, booking: Booking) -> None:
        if not account.is_new or not account.reset_token:
            return
        try:
            self.notifier.send_welcome(account.user.email, account.user.full_name or booking.booker_name,
                                       account.reset_token, account.reset_expires_at, booking_id=booking.id)
        except Exception:
            logger.exception("Welcome email for booking %s failed", booking.id)
