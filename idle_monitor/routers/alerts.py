"""Alert endpoint for testing delivery to the configured manager target."""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends

from idle_monitor.dependencies import get_monitor, require_admin_token
from idle_monitor.schemas.admin import AlertTestRequest, AlertTestResponse
from idle_monitor.services.alert_service import UnattendedAlert
from idle_monitor.services.monitor import Monitor

router = APIRouter(prefix="/api/alerts", tags=["alerts"], dependencies=[Depends(require_admin_token)])


@router.post("/test", response_model=AlertTestResponse)
async def alerts_test(payload: Optional[AlertTestRequest] = None, monitor: Monitor = Depends(get_monitor)):
    payload = payload or AlertTestRequest()
    now = monitor.clock()
    alert = UnattendedAlert(
        key=f"TEST_{now.strftime('%Y%m%d%H%M%S')}",
        waiting_since=now - timedelta(minutes=payload.idleMinutes),
        idle_minutes=payload.idleMinutes,
        client_name=payload.clientName,
        agent_name=payload.attendantName,
        sector=payload.sector,
    )
    result = await monitor.dispatcher.dispatch(alert, now)
    if result.success:
        return AlertTestResponse(success=True, message="Alert sent", target=result.target, channel=result.channel)
    return AlertTestResponse(
        success=False,
        message="Alert not sent (check MANAGER_PHONE/ALERT_CHAT_ID/MANAGER_WEBHOOK_URL)",
        target=result.target,
        errors=result.errors,
    )
