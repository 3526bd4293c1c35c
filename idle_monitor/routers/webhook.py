from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from idle_monitor.dependencies import get_monitor
from idle_monitor.logging_config import get_logger
from idle_monitor.schemas.webhook import WebhookAck, envelope_event_id
from idle_monitor.services.monitor import Monitor

logger = get_logger("webhook")

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


async def process_webhook_event(monitor: Monitor, body: dict[str, Any]) -> None:
    """Runs after the ack is sent. Async so it executes on the event loop with the sweep."""
    outcome = monitor.ingestion.handle(body)
    logger.debug(f"Webhook processed: {outcome}", extra={"context": {"event_id": envelope_event_id(body)}})


@router.post("/utalk", response_model=WebhookAck)
async def receive_utalk_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    monitor: Monitor = Depends(get_monitor),
):
    """Acknowledge immediately; the platform pauses delivery after slow or failed responses."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be an object")

    background_tasks.add_task(process_webhook_event, monitor, body)
    return WebhookAck(
        received=True,
        eventId=envelope_event_id(body),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
