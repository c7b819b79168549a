import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.models.booking import Booking


@dataclass
class BookingFilters:
    status: str | None = None
    payment_status: str | None = None
    approval_status: str | None = None
    product_type: str | None = None
    limit: int = 50
    offset: int = 0


class SqlBookingStore:
    """BookingStore over the bookings table.

    Writes go through ``update_where``: a single conditional UPDATE keyed on the
    row id plus the state the caller observed, so two writers racing on the same
    booking cannot both win.
    """

    def __init__(self, db: Session):
        self.db = db

    def _audit(self, actor: str, action: str, booking_id: str, details: dict | None = None):
        # Staged only; the caller commits it with the change it describes.
        self.db.add(AuditLog(
            id=str(uuid.uuid4()),
            actor_user_id=actor,
            action=action,
            entity_type="booking",
            entity_id=booking_id,
            details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
        ))

    def add(self, booking: Booking, actor: str = "system") -> Booking:
        self.db.add(booking)
        self._audit(actor, "booking.create", booking.id,
                    {"tourId": booking.tour_id, "productType": booking.product_type, "amount": booking.total_amount_cents})
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def get(self, booking_id: str) -> Booking | None:
        return self.db.get(Booking, booking_id)

    def refetch(self, booking_id: str) -> Booking | None:
        booking = self.db.get(Booking, booking_id)
        if booking is not None:
            self.db.refresh(booking)
        return booking

    def find_by_payment_intent_id(self, payment_intent_id: str) -> Booking | None:
        if not payment_intent_id:
            return None
        return self.db.query(Booking).filter(Booking.payment_intent_id == payment_intent_id).first()

    def find_by_user_id(self, user_id: str) -> list[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .all()
        )

    def find_pending_approval(self) -> list[Booking]:
        return (
            self.db.query(Booking)
            .filter(
                Booking.approval_status == "pending",
                Booking.status == "pending",
                Booking.payment_status.in_(["deposit_paid", "succeeded"]),
            )
            .order_by(Booking.created_at.desc())
            .all()
        )

    def find_all(self, filters: BookingFilters | None = None) -> list[Booking]:
        f = filters or BookingFilters()
        q = self.db.query(Booking)
        if f.status:
            q = q.filter(Booking.status == f.status)
        if f.payment_status:
            q = q.filter(Booking.payment_status == f.payment_status)
        if f.approval_status:
            q = q.filter(Booking.approval_status == f.approval_status)
        if f.product_type:
            q = q.filter(Booking.product_type == f.product_type)
        return q.order_by(Booking.created_at.desc()).limit(min(f.limit, 200)).offset(max(f.offset, 0)).all()

    def find_unlinked_before(self, cutoff: datetime) -> list[Booking]:
        """Bookings still waiting for a payment intent since before ``cutoff``."""
        return (
            self.db.query(Booking)
            .filter(
                Booking.status == "pending",
                Booking.payment_intent_id.is_(None),
                Booking.created_at < cutoff,
            )
            .all()
        )

    def find_awaiting_payment_before(self, cutoff: datetime) -> list[Booking]:
        return (
            self.db.query(Booking)
            .filter(
                Booking.status == "pending",
                Booking.payment_intent_id.isnot(None),
                Booking.payment_status.in_(["pending", "failed"]),
                Booking.updated_at < cutoff,
            )
            .all()
        )

    def update_where(self, booking_id: str, expected: dict, values: dict,
                     audit: tuple[str, str, dict] | None = None) -> bool:
        """Apply ``values`` only if the row still matches ``expected``. Returns True when applied.

        ``expected`` values may be a scalar, None (IS NULL) or a tuple/list (IN).
        ``audit`` is (actor, action, details) and is committed atomically with the update.
        """
        q = self.db.query(Booking).filter(Booking.id == booking_id)
        for column, value in expected.items():
            attr = getattr(Booking, column)
            if value is None:
                q = q.filter(attr.is_(None))
            elif isinstance(value, (tuple, list, set, frozenset)):
                q = q.filter(attr.in_(list(value)))
            else:
                q = q.filter(attr == value)
        values = {**values, "updated_at": datetime.now(timezone.utc)}
        updated = q.update(values, synchronize_session=False)
        if updated != 1:
            self.db.rollback()
            return False
        if audit:
            actor, action, details = audit
            self._audit(actor, action, booking_id, details)
        self.db.commit()
        return True
