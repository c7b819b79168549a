"""
Booking-domain exceptions.

Each error carries a machine-readable ``code`` and converts itself into the
HTTPException the API layer returns. Errors raised from untrusted public input
(price mismatch, unknown item) expose only a generic message; errors on the
admin surface carry the specific reason.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

GENERIC_BOOKING_FAILURE = "Unable to process booking"
HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class BookingError(Exception):
    """Base class for all booking-core errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def public_message(self) -> str:
        return self.message

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"message": self.public_message(), "code": self.code},
        )


class PriceMismatch(BookingError):
    """Client-submitted amount disagrees with the canonical price."""

    status_code = HTTP_422_UNPROCESSABLE

    def public_message(self) -> str:
        return GENERIC_BOOKING_FAILURE

    def to_http_exception(self) -> HTTPException:
        # No code either: the caller must not learn which check failed.
        return HTTPException(status_code=self.status_code, detail={"message": GENERIC_BOOKING_FAILURE})


class ItemNotFound(BookingError):
    """The bookable item has no canonical price."""

    status_code = HTTP_422_UNPROCESSABLE

    def public_message(self) -> str:
        return GENERIC_BOOKING_FAILURE

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail={"message": GENERIC_BOOKING_FAILURE})


class BookingNotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PaymentMethodNotAllowed(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTransition(BookingError):
    """A state-machine guard rejected the transition."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current: str | None = None, target: str | None = None) -> None:
        super().__init__(message, details={"current": current, "target": target})
        self.current = current
        self.target = target


class AlreadyDecided(InvalidTransition):
    """Approve/reject on a booking whose approval was already decided."""


class ExternalGatewayTimeout(BookingError):
    """The payment gateway did not answer in time; the outcome is unknown."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT

    def public_message(self) -> str:
        return "Payment provider did not respond. Please retry shortly."


class ExternalGatewayRejected(BookingError):
    """The payment gateway declined the request."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def public_message(self) -> str:
        return "Payment could not be initiated"


class InvalidWebhookPayload(BookingError):
    """A webhook event parsed as JSON but does not have the expected shape."""

    status_code = status.HTTP_400_BAD_REQUEST
