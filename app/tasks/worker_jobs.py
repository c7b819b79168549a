import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError

from app.core.config import settings
from app.core.exceptions import BookingError, InvalidTransition
from app.db.session import SessionLocal
from app.services.booking_store import SqlBookingStore
from app.services.container import Services, build_services
from app.services.email_service import process_pending_emails

logger = logging.getLogger(__name__)

# Built once per worker process.
services: Services = build_services(settings)


def reconcile_pending_payments(db: Session | None = None, svc: Services | None = None,
                               now: datetime | None = None) -> dict:
    """Ask the gateway about bookings whose payment never reported back and replay the outcome."""
    svc = svc or services
    own_session = db is None
    db = db or SessionLocal()
    try:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=settings.RECONCILE_AFTER_MINUTES)
        try:
            candidates = SqlBookingStore(db).find_awaiting_payment_before(cutoff)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}

        workflow = svc.workflow(db)
        counts = {"checked": len(candidates), "succeeded": 0, "failed": 0, "pending": 0, "errors": 0}
        for b in candidates:
            booking_id, intent_id, method = b.id, b.payment_intent_id, b.payment_method
            try:
                intent = svc.gateway.get_intent(intent_id)
            except BookingError as e:
                logger.warning("Reconcile: gateway lookup for booking %s (%s) failed: %s", booking_id, intent_id, e.message)
                counts["errors"] += 1
                continue
            try:
                if intent.status == "succeeded":
                    result = workflow.on_payment_succeeded(intent.id, intent.amount,
                                                           {"bookingId": booking_id, "paymentType": method})
                    counts["succeeded" if result.get("changed") else "pending"] += 1
                elif intent.status in ("failed", "canceled"):
                    result = workflow.on_payment_failed(intent.id, {"bookingId": booking_id})
                    counts["failed"] += 1 if result.get("changed") else 0
                else:
                    counts["pending"] += 1
            except BookingError as e:
                logger.warning("Reconcile: booking %s not updated: %s", booking_id, e.message)
                counts["errors"] += 1
        if candidates:
            logger.info("Reconciled pending payments: %s", counts)
        return counts
    finally:
        if own_session:
            db.close()


def reap_stale_bookings(db: Session | None = None, svc: Services | None = None, now: datetime | None = None) -> dict:
    """Cancel bookings that never got a payment intent within STALE_BOOKING_HOURS."""
    svc = svc or services
    own_session = db is None
    db = db or SessionLocal()
    try:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=settings.STALE_BOOKING_HOURS)
        try:
            stale = SqlBookingStore(db).find_unlinked_before(cutoff)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}

        workflow = svc.workflow(db)
        reaped = 0
        for booking_id in [b.id for b in stale]:
            try:
                workflow.cancel(booking_id, actor="system:reaper", reason="no payment started")
                reaped += 1
            except InvalidTransition as e:
                # A late webhook moved it on in the meantime.
                logger.info("Reaper skipped booking %s: %s", booking_id, e.message)
        if reaped:
            logger.info("Reaped %s stale bookings", reaped)
        return {"candidates": len(stale), "reaped": reaped}
    finally:
        if own_session:
            db.close()


def process_email_queue(limit: int = 50) -> dict:
    """Process queued/failed emails (retry send). Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            return process_pending_emails(db, limit=limit)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()
