from datetime import datetime, time, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.api.deps import get_booking_store, get_lifecycle, get_workflow, require_roles
from app.core.exceptions import BookingError
from app.db.session import get_db
from app.models.booking import Booking
from app.models.user import User
from app.schemas.booking import (
    AdminBookingList,
    AdminBookingOut,
    AdminDecision,
    BookingStats,
    CancelRequest,
    admin_booking_out,
)
from app.services.approval_workflow import ApprovalWorkflow
from app.services.booking_lifecycle import BookingLifecycle
from app.services.booking_store import BookingFilters, SqlBookingStore

router = APIRouter(tags=["admin"])

ADMIN_ROLES = ("admin", "superadmin")


def _stats(db: Session) -> BookingStats:
    start_of_day = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    total = db.query(func.count(Booking.id)).scalar() or 0
    pending = db.query(func.count(Booking.id)).filter(Booking.status == "pending").scalar() or 0
    confirmed_today = (
        db.query(func.count(Booking.id))
        .filter(Booking.status == "confirmed", Booking.updated_at >= start_of_day)
        .scalar()
        or 0
    )
    # Revenue counts money actually taken: deposits for deposit_paid, totals for succeeded.
    deposits = (
        db.query(func.coalesce(func.sum(Booking.deposit_amount_cents), 0))
        .filter(Booking.payment_status == "deposit_paid", Booking.status != "refunded")
        .scalar()
    )
    full = (
        db.query(func.coalesce(func.sum(Booking.total_amount_cents), 0))
        .filter(Booking.payment_status == "succeeded", Booking.status != "refunded")
        .scalar()
    )
    return BookingStats(total=total, pendingCount=pending, confirmedToday=confirmed_today,
                        revenue=int(deposits or 0) + int(full or 0))


@router.get("/admin/bookings", response_model=AdminBookingList)
def list_bookings(status: str | None = None, paymentStatus: str | None = None, approvalStatus: str | None = None,
                  productType: str | None = None, limit: int = 50, offset: int = 0,
                  db: Session = Depends(get_db),
                  store: SqlBookingStore = Depends(get_booking_store),
                  me: User = Depends(require_roles(*ADMIN_ROLES))):
    items = store.find_all(BookingFilters(
        status=status,
        payment_status=paymentStatus,
        approval_status=approvalStatus,
        product_type=productType,
        limit=limit,
        offset=offset,
    ))
    return AdminBookingList(items=[admin_booking_out(b) for b in items], stats=_stats(db))


@router.get("/admin/bookings/pending", response_model=List[AdminBookingOut])
def pending_approval(store: SqlBookingStore = Depends(get_booking_store),
                     me: User = Depends(require_roles(*ADMIN_ROLES))):
    return [admin_booking_out(b) for b in store.find_pending_approval()]


@router.get("/admin/bookings/{booking_id}", response_model=AdminBookingOut)
def get_booking(booking_id: str, lifecycle: BookingLifecycle = Depends(get_lifecycle),
                me: User = Depends(require_roles(*ADMIN_ROLES))):
    try:
        return admin_booking_out(lifecycle.get(booking_id))
    except BookingError as e:
        raise e.to_http_exception()


@router.patch("/admin/bookings/{booking_id}", response_model=AdminBookingOut)
def decide(booking_id: str, body: AdminDecision, workflow: ApprovalWorkflow = Depends(get_workflow),
           me: User = Depends(require_roles(*ADMIN_ROLES))):
    try:
        if body.action == "approve":
            b = workflow.approve(booking_id, me.id, body.adminNotes)
        else:
            b = workflow.reject(booking_id, me.id, body.reason or "", body.adminNotes)
    except BookingError as e:
        raise e.to_http_exception()
    return admin_booking_out(b)


@router.post("/admin/bookings/{booking_id}/complete", response_model=AdminBookingOut)
def complete(booking_id: str, lifecycle: BookingLifecycle = Depends(get_lifecycle),
             me: User = Depends(require_roles(*ADMIN_ROLES))):
    try:
        return admin_booking_out(lifecycle.complete(booking_id, actor=me.id))
    except BookingError as e:
        raise e.to_http_exception()


@router.post("/admin/bookings/{booking_id}/cancel", response_model=AdminBookingOut)
def cancel(booking_id: str, body: CancelRequest | None = None,
           workflow: ApprovalWorkflow = Depends(get_workflow),
           me: User = Depends(require_roles(*ADMIN_ROLES))):
    if body is None or not (body.reason or "").strip():
        raise HTTPException(status_code=400, detail="reason required")
    try:
        return admin_booking_out(workflow.cancel(booking_id, actor=me.id, reason=body.reason))
    except BookingError as e:
        raise e.to_http_exception()
