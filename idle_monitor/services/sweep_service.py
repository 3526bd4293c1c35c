"""Alert policy engine: decides which conversations are overdue and alerts once per waiting period."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from idle_monitor.logging_config import get_logger
from idle_monitor.models import ConversationState
from idle_monitor.services.alert_service import AlertDispatcher, UnattendedAlert
from idle_monitor.services.alert_stats import AlertStats
from idle_monitor.services.business_hours import BusinessHours, utcnow
from idle_monitor.services.classifier import is_attended
from idle_monitor.services.state_store import ConversationStore

logger = get_logger("sweep_service")


@dataclass(frozen=True)
class AlertDecision:
    should_alert: bool
    reason: str
    elapsed_ms: int = 0


class AlertPolicyEngine:
    def __init__(
        self,
        settings,
        store: ConversationStore,
        hours: BusinessHours,
        dispatcher: AlertDispatcher,
        stats: AlertStats,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.hours = hours
        self.dispatcher = dispatcher
        self.stats = stats
        self._clock = clock
        self._sweep_lock = asyncio.Lock()

    def evaluate(self, state: ConversationState, now: datetime) -> AlertDecision:
        if state.last_inbound_at is None:
            return AlertDecision(False, "no_inbound")
        if not self.hours.is_business_moment(now):
            return AlertDecision(False, "outside_business_hours")

        elapsed = self.hours.business_elapsed(state.last_inbound_at, now)
        if is_attended(state, self.settings.attendance_mode, self.settings.manager_id_set):
            return AlertDecision(False, "attended", elapsed)
        if state.is_alerted_for_current_wait():
            return AlertDecision(False, "already_alerted", elapsed)
        if elapsed < self.settings.idle_ms:
            return AlertDecision(False, "not_overdue", elapsed)
        # Past the cap the thread is treated as escalated/stale.
        if elapsed >= self.settings.max_alert_window_ms:
            return AlertDecision(False, "over_cap", elapsed)
        return AlertDecision(True, "overdue", elapsed)

    def build_alert(self, state: ConversationState, elapsed_ms: int) -> UnattendedAlert:
        meta = state.meta
        return UnattendedAlert(
            key=state.key,
            waiting_since=state.last_inbound_at,
            idle_minutes=round(elapsed_ms / 60000),
            conversation_id=meta.conversation_id or state.key,
            client_name=meta.name or "Cliente",
            client_phone=meta.phone,
            agent_id=meta.agent_id,
            agent_name=meta.agent_name,
            sector=meta.sector or "Geral",
            link=meta.link,
            tags=tuple(meta.tags),
        )

    def _commit_alert(self, key: str, decided_inbound_at: datetime, now: datetime) -> bool:
        committed = False

        def mark(state: ConversationState) -> None:
            nonlocal committed
            # A new inbound during dispatch started a fresh waiting period.
            if state.last_inbound_at != decided_inbound_at:
                return
            state.alerted_at = now
            committed = True

        self.store.update(key, mark)
        if not committed:
            logger.info(
                "Alert marker not written, conversation changed during dispatch",
                extra={"context": {"key": key}},
            )
        return committed

    async def sweep(self, now: Optional[datetime] = None) -> dict:
        """One evaluation pass over every tracked conversation. Never raises."""
        async with self._sweep_lock:
            return await self._sweep(now or self._clock())

    async def _sweep(self, now: datetime) -> dict:
        summary = {"checked": 0, "alerted": 0, "failed": 0, "purged": 0, "skipped": {}}
        try:
            summary["purged"] = len(self.store.purge_idle(now, self.settings.retention_ms))

            if not self.hours.is_business_moment(now):
                summary["skipped"]["outside_business_hours"] = len(self.store)
                return summary

            if not self.dispatcher.is_configured():
                logger.warning("No manager target configured, alert evaluation skipped")
                summary["skipped"]["no_target"] = len(self.store)
                return summary

            for state in self.store.snapshot():
                summary["checked"] += 1
                try:
                    decision = self.evaluate(state, now)
                    if not decision.should_alert:
                        skipped = summary["skipped"]
                        skipped[decision.reason] = skipped.get(decision.reason, 0) + 1
                        continue

                    alert = self.build_alert(state, decision.elapsed_ms)
                    result = await self.dispatcher.dispatch(alert, now)
                    if result.success:
                        self._commit_alert(state.key, state.last_inbound_at, now)
                        self.stats.record_sent(result.target, now)
                        summary["alerted"] += 1
                    else:
                        self.stats.record_failure(state.key, result.target, result.errors, now)
                        summary["failed"] += 1
                except Exception as e:
                    summary["failed"] += 1
                    logger.error(
                        "Conversation evaluation failed",
                        extra={"context": {"key": state.key, "error": str(e)}},
                        exc_info=True,
                    )
        except Exception as e:
            logger.error("Sweep failed", extra={"context": {"error": str(e)}}, exc_info=True)

        if summary["alerted"] or summary["failed"]:
            logger.info("Sweep finished", extra={"context": summary})
        return summary


class SweepScheduler:
    """Runs the sweep every ``interval_seconds`` as a cancellable asyncio task."""

    def __init__(self, engine: AlertPolicyEngine, interval_seconds: float = 60):
        self.engine = engine
        self.interval_seconds = max(interval_seconds, 0.1)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.engine.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Sweep loop failed", extra={"context": {"error": str(e)}})

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Sweep scheduler started", extra={"context": {"interval_seconds": self.interval_seconds}})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
