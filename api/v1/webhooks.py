"""Stripe webhook handler for completing paid enrollments."""

import stripe
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from api.deps import get_enrollment_service
from app.services.enrollment_service import PROGRAM_ENROLLMENT_TYPE, EnrollmentService
from app.services.stripe_service import StripeService
from core.exceptions.base import CustomException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    enrollment_service: EnrollmentService = Depends(get_enrollment_service),
):
    """
    Handle Stripe webhook events.

    Completed program checkouts are turned into enrollments. Stripe retries
    deliveries, so handling the same session twice is a no-op.
    """
    payload = await request.body()

    try:
        event = StripeService.construct_event(payload, stripe_signature)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})
    except stripe.SignatureVerificationError:
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    event_type = event["type"]
    logger.info(f"Received Stripe webhook: {event_type}")

    if event_type == "checkout.session.completed":
        return await handle_checkout_session_completed(
            event["data"]["object"], enrollment_service
        )

    logger.info(f"Unhandled webhook event type: {event_type}")
    return {"status": "ignored"}


async def handle_checkout_session_completed(
    session, enrollment_service: EnrollmentService
) -> dict:
    """Create the enrollment paid for by a checkout session."""
    session_id = session["id"]
    metadata = dict(session.get("metadata") or {})

    if metadata.get("type") != PROGRAM_ENROLLMENT_TYPE:
        logger.info(f"Checkout session {session_id} is not a program enrollment, skipping")
        return {"status": "ignored"}

    if session.get("payment_status") != "paid":
        logger.info(f"Checkout session {session_id} not paid yet ({session.get('payment_status')})")
        return {"status": "ignored"}

    try:
        outcome = await enrollment_service.complete_paid_enrollment(
            session_id, metadata, session.get("amount_total") or 0
        )
    except CustomException as e:
        if e.code >= 500:
            raise
        # Retrying would fail the same way; acknowledge so Stripe stops redelivering
        logger.error(f"Could not complete enrollment for session {session_id}: {e.message}")
        return {"status": "ignored", "reason": e.error_code}

    enrollment_id = outcome.enrollment.id if outcome.enrollment else None
    logger.info(
        f"Checkout session {session_id} handled: enrollment {enrollment_id}"
        f"{' (already processed)' if outcome.already_processed else ''}"
    )
    return {
        "status": "already_processed" if outcome.already_processed else "processed",
        "enrollment_id": enrollment_id,
    }
