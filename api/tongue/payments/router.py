"""Payment webhook endpoint.

The processor signs the raw body with HMAC-SHA256; the signature is checked
before the payload is parsed. ``payment.captured`` enrolls the user named in
the payment notes; failed and authorized payments are only logged.
"""

from typing import Annotated

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from tongue.config import Settings, get_settings
from tongue.core.logging import get_logger
from tongue.enrollments.dependencies import EnrollmentServiceDep, handle_enrollment_error
from tongue.enrollments.service import EnrollmentError

from .schemas import WebhookAck, WebhookEvent
from .security import SIGNATURE_HEADER, verify_webhook_signature


logger = get_logger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Payment processor webhook",
)
async def payment_webhook(
    request: Request,
    enrollment_service: EnrollmentServiceDep,
    settings: Annotated[Settings, Depends(get_settings)],
) -> WebhookAck:
    """Verify and dispatch a payment event."""
    if not settings.payment_webhook_secret:
        logger.error("payment_webhook_not_configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook configuration error",
        )

    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("payment_webhook_missing_signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing signature")
    if not verify_webhook_signature(body, signature, settings.payment_webhook_secret):
        logger.warning("payment_webhook_invalid_signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    try:
        event = WebhookEvent.model_validate(orjson.loads(body))
    except (orjson.JSONDecodeError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed webhook payload"
        ) from e

    payment = event.payment
    logger.info(
        "payment_webhook_received",
        webhook_event=event.event,
        payment_id=payment.id if payment else None,
        order_id=payment.order_id if payment else None,
    )

    if event.event == "payment.captured" and payment is not None:
        if not payment.user_id or not payment.course_id:
            logger.error("payment_notes_incomplete", payment_id=payment.id)
            return WebhookAck(event=event.event, outcome="ignored")
        try:
            result = await enrollment_service.on_payment_verified(
                payment.user_id, payment.course_id, payment.id
            )
        except EnrollmentError as e:
            raise handle_enrollment_error(e) from e
        return WebhookAck(event=event.event, outcome=result.outcome.value)

    if event.event == "payment.failed" and payment is not None:
        logger.warning(
            "payment_failed",
            payment_id=payment.id,
            order_id=payment.order_id,
            error_code=payment.error_code,
            error_description=payment.error_description,
        )
    elif event.event == "payment.authorized" and payment is not None:
        logger.info("payment_authorized", payment_id=payment.id, order_id=payment.order_id)
    else:
        logger.info("payment_webhook_unhandled", webhook_event=event.event)

    return WebhookAck(event=event.event)
