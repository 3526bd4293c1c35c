"""Administrative endpoints: on-demand sweep and state introspection."""

from fastapi import APIRouter, Depends

from idle_monitor.dependencies import get_monitor, require_admin_token
from idle_monitor.schemas.admin import DebugResponse, SweepResponse
from idle_monitor.services.monitor import Monitor

router = APIRouter(prefix="/api/webhook/utalk", tags=["admin"], dependencies=[Depends(require_admin_token)])


@router.post("/sweep", response_model=SweepResponse)
async def trigger_sweep(monitor: Monitor = Depends(get_monitor)):
    """Run one sweep pass now. Required on deployments without a long-lived process."""
    summary = await monitor.engine.sweep()
    return SweepResponse(
        success=True,
        alertsSent=summary["alerted"],
        checked=summary["checked"],
        failed=summary["failed"],
        purged=summary["purged"],
        skipped=summary["skipped"],
    )


@router.get("/debug", response_model=DebugResponse)
async def debug_state(monitor: Monitor = Depends(get_monitor)):
    return monitor.debug_snapshot()
