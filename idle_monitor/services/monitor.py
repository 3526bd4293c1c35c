"""Process-wide wiring of the monitoring components.

One Monitor is built at startup and shared by the webhook handler, the admin
endpoints and the periodic sweep. Tests build isolated instances.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from idle_monitor.config import Settings
from idle_monitor.models import ConversationState
from idle_monitor.services.alert_service import AlertDispatcher, Messenger
from idle_monitor.services.alert_stats import AlertStats
from idle_monitor.services.business_hours import BusinessHours, utcnow
from idle_monitor.services.ingestion_service import IngestionService
from idle_monitor.services.patterns import PatternTable, load_pattern_table
from idle_monitor.services.skip_log import SkippedEventLog
from idle_monitor.services.state_store import ConversationStore
from idle_monitor.services.sweep_service import AlertPolicyEngine, SweepScheduler
from idle_monitor.services.utalk_service import UTalkService

LOCAL_FORMAT = "%d/%m/%Y %H:%M:%S"


@dataclass
class Monitor:
    settings: Settings
    patterns: PatternTable
    hours: BusinessHours
    store: ConversationStore
    skipped: SkippedEventLog
    dispatcher: AlertDispatcher
    stats: AlertStats
    engine: AlertPolicyEngine
    ingestion: IngestionService
    scheduler: SweepScheduler
    clock: Callable[[], datetime] = utcnow

    def _local(self, moment: Optional[datetime]) -> Optional[str]:
        if moment is None:
            return None
        return self.hours.localize(moment).strftime(LOCAL_FORMAT)

    def describe_state(self, state: ConversationState, now: datetime) -> dict:
        meta = state.meta
        elapsed_ms = self.hours.business_elapsed(state.last_inbound_at, now)
        return {
            "key": state.key,
            "lastInboundAt": self._local(state.last_inbound_at),
            "lastOutboundAt": self._local(state.last_outbound_at),
            "alertedAt": self._local(state.alerted_at),
            "sector": meta.sector,
            "clientName": meta.name,
            "attendantId": meta.agent_id,
            "attendantName": meta.agent_name,
            "link": meta.link,
            "businessElapsedMinutes": round(elapsed_ms / 60000) if state.last_inbound_at else None,
            "webhookCount": len(state.history),
            "recentWebhooks": [
                {
                    "timestamp": self._local(entry.timestamp),
                    "direction": entry.direction.value,
                    "attendantName": entry.agent_name,
                    "isBot": entry.is_automated,
                    "messagePreview": entry.excerpt[:50] if entry.excerpt else None,
                }
                for entry in state.history[-5:]
            ],
        }

    def debug_snapshot(self, now: Optional[datetime] = None) -> dict:
        now = now or self.clock()
        states = self.store.snapshot()
        return {
            "success": True,
            "currentTime": self._local(now),
            "isBusinessHours": self.hours.is_business_moment(now),
            "totalConversations": len(states),
            "conversationsNeedingAlert": sum(
                1 for state in states if self.engine.evaluate(state, now).should_alert
            ),
            "conversations": [self.describe_state(state, now) for state in states],
            "stats": self.stats.to_dict(),
            "recentSkips": self.skipped.recent(20),
            "skipCounts": self.skipped.counts(),
        }


def build_monitor(
    settings: Optional[Settings] = None,
    messenger: Optional[Messenger] = None,
    patterns: Optional[PatternTable] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Monitor:
    settings = settings or Settings()
    patterns = patterns or load_pattern_table(settings.patterns_path)
    hours = BusinessHours.from_settings(settings)
    store = ConversationStore(history_limit=settings.history_limit)
    skipped = SkippedEventLog(limit=settings.skipped_events_limit)
    if messenger is None:
        messenger = UTalkService.from_settings(settings)
    dispatcher = AlertDispatcher(settings, messenger=messenger, hours=hours)
    stats = AlertStats(hours)
    engine = AlertPolicyEngine(settings, store, hours, dispatcher, stats, clock=clock)
    ingestion = IngestionService(settings, patterns, hours, store, skipped, clock=clock)
    scheduler = SweepScheduler(engine, settings.sweep_interval_seconds)
    return Monitor(
        settings=settings,
        patterns=patterns,
        hours=hours,
        store=store,
        skipped=skipped,
        dispatcher=dispatcher,
        stats=stats,
        engine=engine,
        ingestion=ingestion,
        scheduler=scheduler,
        clock=clock,
    )
