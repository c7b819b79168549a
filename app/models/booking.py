from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tour_id: Mapped[str] = mapped_column(String(100), index=True)
    tour_name: Mapped[str] = mapped_column(String(255), default="")
    product_type: Mapped[str] = mapped_column(String(30), index=True)  # day-tour, vacation-package, car-rental, hotel

    total_amount_cents: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="eur")
    deposit_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    balance_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(30), default="full")  # full, deposit, cash-on-arrival

    user_id: Mapped[str] = mapped_column(String(36), index=True)
    booker_name: Mapped[str] = mapped_column(String(255))
    booker_email: Mapped[str] = mapped_column(String(320), index=True)
    booker_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    adults: Mapped[int] = mapped_column(Integer, default=1)
    children: Mapped[int] = mapped_column(Integer, default=0)
    selected_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, confirmed, cancelled, completed, refunded
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # not_required, pending, deposit_paid, succeeded, failed
    approval_status: Mapped[str] = mapped_column(String(20), default="not_required", index=True)  # not_required, pending, approved, rejected

    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deposit_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payment_intent_id: Mapped[str | None] = mapped_column(String(255), unique=True, index=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def travelers(self) -> dict:
        return {"adults": self.adults, "children": self.children}
