import re
from datetime import date, datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings
from app.models.booking import Booking

SUPPORTED_CURRENCIES = ("usd", "eur", "gbp", "ils")
# Plain regex rather than EmailStr so .local and other dev domains pass.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9\s\-()]{7,20}$")


class PaymentIntentRequest(BaseModel):
    tourId: str = Field(min_length=1, max_length=100)
    tourName: str = Field(default="", max_length=255)
    productType: Literal["day-tour", "vacation-package", "car-rental", "hotel"] = "day-tour"
    amount: int  # cents, advisory only
    currency: str = settings.DEFAULT_CURRENCY
    bookerName: str = Field(min_length=2, max_length=100)
    bookerEmail: str = Field(max_length=320)
    bookerPhone: Optional[str] = None
    adults: int = Field(default=1, ge=1, le=50)
    children: int = Field(default=0, ge=0, le=50)
    selectedDate: Optional[date] = None
    specialRequests: Optional[str] = Field(default=None, max_length=1000)
    paymentType: Optional[Literal["full", "deposit", "cash-on-arrival"]] = None
    singleSupplement: bool = False
    bookingId: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def amount_in_range(cls, v: int) -> int:
        if v < settings.MIN_CHARGE_CENTS or v > settings.MAX_CHARGE_CENTS:
            raise ValueError(f"amount must be between {settings.MIN_CHARGE_CENTS} and {settings.MAX_CHARGE_CENTS} cents")
        return v

    @field_validator("currency")
    @classmethod
    def currency_supported(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in SUPPORTED_CURRENCIES:
            raise ValueError(f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")
        return v

    @field_validator("bookerName")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("name too short")
        return v

    @field_validator("bookerEmail")
    @classmethod
    def email_shape(cls, v: str) -> str:
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError("invalid email")
        return v

    @field_validator("bookerPhone")
    @classmethod
    def phone_shape(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not _PHONE_RE.match(v.strip()):
            raise ValueError("invalid phone number")
        return v.strip()

    @field_validator("selectedDate")
    @classmethod
    def date_not_past(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v < datetime.now(timezone.utc).date():
            raise ValueError("selected date is in the past")
        return v


class PaymentIntentOut(BaseModel):
    clientSecret: Optional[str] = None
    paymentIntentId: Optional[str] = None
    bookingId: str
    isNewUser: bool
    paymentType: str
    amountDueCents: int
    status: str


class AdminDecision(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = None
    adminNotes: Optional[str] = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class BookingOut(BaseModel):
    id: str
    tourId: str
    tourName: str
    productType: str
    status: str
    paymentStatus: str
    approvalStatus: str
    paymentMethod: str
    currency: str
    totalAmountCents: int
    depositAmountCents: Optional[int] = None
    balanceAmountCents: Optional[int] = None
    adults: int
    children: int
    selectedDate: Optional[str] = None
    rejectionReason: Optional[str] = None
    createdAt: Optional[str] = None


class AdminBookingOut(BookingOut):
    userId: str
    bookerName: str
    bookerEmail: str
    bookerPhone: Optional[str] = None
    specialRequests: Optional[str] = None
    adminNotes: Optional[str] = None
    approvedBy: Optional[str] = None
    approvedAt: Optional[str] = None
    depositPaidAt: Optional[str] = None
    paymentIntentId: Optional[str] = None
    updatedAt: Optional[str] = None


class BookingStats(BaseModel):
    total: int
    pendingCount: int
    confirmedToday: int
    revenue: int


class AdminBookingList(BaseModel):
    items: List[AdminBookingOut]
    stats: BookingStats


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def booking_out(b: Booking) -> BookingOut:
    """Customer view; no admin trail or payment references."""
    return BookingOut(
        id=b.id,
        tourId=b.tour_id,
        tourName=b.tour_name or "",
        productType=b.product_type,
        status=b.status,
        paymentStatus=b.payment_status,
        approvalStatus=b.approval_status,
        paymentMethod=b.payment_method,
        currency=b.currency,
        totalAmountCents=b.total_amount_cents,
        depositAmountCents=b.deposit_amount_cents,
        balanceAmountCents=b.balance_amount_cents,
        adults=b.adults,
        children=b.children,
        selectedDate=_iso(b.selected_date),
        rejectionReason=b.rejection_reason,
        createdAt=_iso(b.created_at),
    )


def admin_booking_out(b: Booking) -> AdminBookingOut:
    return AdminBookingOut(
        **booking_out(b).model_dump(),
        userId=b.user_id,
        bookerName=b.booker_name,
        bookerEmail=b.booker_email,
        bookerPhone=b.booker_phone,
        specialRequests=b.special_requests,
        adminNotes=b.admin_notes,
        approvedBy=b.approved_by,
        approvedAt=_iso(b.approved_at),
        depositPaidAt=_iso(b.deposit_paid_at),
        paymentIntentId=b.payment_intent_id,
        updatedAt=_iso(b.updated_at),
    )
