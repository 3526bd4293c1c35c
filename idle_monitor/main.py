import os

from fastapi import FastAPI

from idle_monitor.config import settings
from idle_monitor.logging_config import get_logger, setup_logging
from idle_monitor.routers import admin, alerts, webhook
from idle_monitor.services.monitor import build_monitor

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="UTalk Idle Monitor",
    description="Alerts managers when a customer waits too long for a human reply",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(admin.router)
app.include_router(alerts.router)

app.state.monitor = build_monitor(settings)


def _is_sweep_scheduler_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.sweep_enabled


@app.on_event("startup")
async def start_sweep_scheduler() -> None:
    if not _is_sweep_scheduler_enabled():
        return
    app.state.monitor.scheduler.start()


@app.on_event("shutdown")
async def stop_sweep_scheduler() -> None:
    await app.state.monitor.scheduler.stop()


@app.get("/health")
async def health():
    monitor = app.state.monitor
    return {
        "status": "ok",
        "conversations": len(monitor.store),
        "sweep_running": monitor.scheduler.running,
    }
