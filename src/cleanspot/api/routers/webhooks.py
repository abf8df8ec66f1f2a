"""Payment processor webhook endpoint."""

import logging

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse

from cleanspot.api.dependencies import get_webhook_service
from cleanspot.application.services.webhook_service import WebhookService
from cleanspot.infrastructure.observability.metrics import get_sync_metrics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


# Hey future me - the processor redelivers anything that isn't 2xx. So:
# - rejected / duplicate / abandoned / scheduled_retry → 200 (we've taken responsibility,
#   retries are OUR job now via webhook_retries)
# - only an exception while recording the outcome (DB down) → 503, let them redeliver
@router.post("/payments")
async def payment_webhook(
    request: Request,
    signature: str = Header(default="", alias="Stripe-Signature"),
    service: WebhookService = Depends(get_webhook_service),
) -> JSONResponse:
    payload = (await request.body()).decode("utf-8", errors="replace")
    try:
        outcome = await service.handle_raw(payload, signature)
    except Exception:
        logger.exception("Webhook processing failed on infrastructure error")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Temporarily unable to process webhook"},
        )
    get_sync_metrics().inc_webhook_event(outcome.value, source="delivery")
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": outcome.value})
