from fastapi import APIRouter, Depends, Request
from api.dependencies import get_webhook_reconciler
from api.models import WebhookResponse
from api.services.webhook_service import SIGNATURE_HEADERS, WebhookReconciler
import logging

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/billing", response_model=WebhookResponse, response_model_exclude_none=True)
async def billing_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Square notifications. A missing signature or unreadable body is a 400;
    anything after that is acknowledged with 200, even when applying the
    event failed, so Square does not start a retry storm.
    """
    raw_body = await request.body()
    signature = next(
        (request.headers[name] for name in SIGNATURE_HEADERS if request.headers.get(name)),
        None,
    )
    event = reconciler.parse_event(raw_body, signature)

    try:
        result = reconciler.handle(event)
    except Exception:
        logger.exception(f"Webhook {event.get('type')} could not be processed")
        return WebhookResponse(
            success=False,
            error="Webhook received but could not be processed",
        )
    return WebhookResponse(message=result.message, handled=result.handled)
