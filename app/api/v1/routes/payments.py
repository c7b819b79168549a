import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_orchestrator, get_workflow
from app.core.config import settings
from app.core.exceptions import BookingError, InvalidWebhookPayload
from app.schemas.booking import PaymentIntentOut, PaymentIntentRequest
from app.services.approval_workflow import ApprovalWorkflow
from app.services.payment_gateway import verify_webhook_signature
from app.services.payment_intents import CheckoutRequest, PaymentIntentOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/public/payment-intents", response_model=PaymentIntentOut)
def create_payment_intent(body: PaymentIntentRequest,
                          orchestrator: PaymentIntentOrchestrator = Depends(get_orchestrator)):
    selected = None
    if body.selectedDate:
        selected = datetime(body.selectedDate.year, body.selectedDate.month, body.selectedDate.day, tzinfo=timezone.utc)
    req = CheckoutRequest(
        tour_id=body.tourId,
        tour_name=body.tourName,
        product_type=body.productType,
        amount_cents=body.amount,
        currency=body.currency,
        booker_name=body.bookerName,
        booker_email=body.bookerEmail,
        booker_phone=body.bookerPhone,
        adults=body.adults,
        children=body.children,
        selected_date=selected,
        special_requests=body.specialRequests,
        payment_method=body.paymentType,
        single_supplement=body.singleSupplement,
        booking_id=body.bookingId,
    )
    try:
        result = orchestrator.initiate(req)
    except BookingError as e:
        raise e.to_http_exception()
    return PaymentIntentOut(**result.as_response())


@router.post("/webhooks/payments")
async def payment_webhook(request: Request, workflow: ApprovalWorkflow = Depends(get_workflow)):
    """Gateway event receiver. Always 200 once the event is understood so the gateway stops retrying."""
    raw = await request.body()
    if settings.webhook_signature_required:
        ok = verify_webhook_signature(
            raw,
            request.headers.get("stripe-signature") or request.headers.get("x-signature"),
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance_seconds=settings.PAYMENTS_WEBHOOK_TOLERANCE_SECONDS,
        )
        if not ok:
            logger.warning("Rejected payment webhook with a bad signature")
            raise HTTPException(status_code=400, detail="Invalid signature")
    try:
        event = json.loads(raw or b"")
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Malformed JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Malformed event")

    try:
        result = await run_in_threadpool(workflow.handle_event, event)
    except InvalidWebhookPayload as e:
        logger.warning("Malformed webhook %s: %s", event.get("type"), e.message)
        raise HTTPException(status_code=400, detail=e.message)
    except BookingError as e:
        # State guard refused the event; retrying will not change that.
        logger.warning("Webhook %s not applied: %s", event.get("type"), e.message)
        result = {"handled": False, "reason": e.code}
    return {"received": True, **result}
