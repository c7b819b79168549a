from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_booking_store, get_current_user, get_workflow
from app.core.exceptions import BookingError
from app.models.user import User
from app.schemas.booking import BookingOut, CancelRequest, booking_out
from app.services.approval_workflow import ApprovalWorkflow
from app.services.booking_store import SqlBookingStore

router = APIRouter(tags=["bookings"])


def _owned(store: SqlBookingStore, booking_id: str, me: User):
    b = store.get(booking_id)
    # Someone else's booking looks exactly like a missing one.
    if not b or b.user_id != me.id:
        raise HTTPException(status_code=404, detail="Not found")
    return b


@router.get("/bookings", response_model=List[BookingOut])
def my_bookings(store: SqlBookingStore = Depends(get_booking_store), me: User = Depends(get_current_user)):
    return [booking_out(b) for b in store.find_by_user_id(me.id)]


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def my_booking(booking_id: str, store: SqlBookingStore = Depends(get_booking_store),
               me: User = Depends(get_current_user)):
    return booking_out(_owned(store, booking_id, me))


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_my_booking(booking_id: str, body: CancelRequest | None = None,
                      store: SqlBookingStore = Depends(get_booking_store),
                      workflow: ApprovalWorkflow = Depends(get_workflow),
                      me: User = Depends(get_current_user)):
    b = _owned(store, booking_id, me)
    if b.payment_status in ("deposit_paid", "succeeded"):
        # Paid bookings go through the team so the refund is handled with the cancellation.
        raise HTTPException(status_code=409, detail="Paid bookings must be cancelled by our team")
    try:
        b = workflow.cancel(b.id, actor=me.id, reason=body.reason if body else None)
    except BookingError as e:
        raise e.to_http_exception()
    return booking_out(b)
