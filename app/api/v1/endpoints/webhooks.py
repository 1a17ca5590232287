import logging

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_outcome_mapper
from app.schemas.webhook import UnknownEvent, WebhookAck
from app.services.call_outcome_mapper import CallOutcomeMapper, parse_provider_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhooks"])


@router.post("/retell", response_model=WebhookAck)
async def retell_webhook(
    request: Request,
    mapper: CallOutcomeMapper = Depends(get_outcome_mapper),
) -> WebhookAck:
    """Receive Retell call events.

    Always answers 200 so the provider never retries into a failing
    endpoint; anything that cannot be applied is logged and dropped.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Retell webhook body is not valid JSON")
        return WebhookAck(event=UnknownEvent().kind, applied=False)

    try:
        event = parse_provider_event(payload)
    except Exception:
        logger.warning("Could not parse Retell webhook payload", exc_info=True)
        return WebhookAck(event=UnknownEvent().kind, applied=False)

    try:
        applied = await mapper.apply(event)
    except Exception:
        logger.error(
            "Failed to apply Retell %s event", event.kind, exc_info=True
        )
        applied = False
    return WebhookAck(event=event.kind, applied=applied)
