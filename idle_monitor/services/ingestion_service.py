from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

from idle_monitor.logging_config import get_logger
from idle_monitor.models import ConversationEvent, ConversationState, HistoryEntry
from idle_monitor.schemas.webhook import envelope_event_id
from idle_monitor.services.business_hours import BusinessHours, utcnow
from idle_monitor.services.classifier import is_attended, is_conversation_ender
from idle_monitor.services.normalizer import normalize_event
from idle_monitor.services.patterns import PatternTable
from idle_monitor.services.skip_log import SkippedEventLog
from idle_monitor.services.state_store import ConversationStore

logger = get_logger("ingestion_service")


class IngestionService:
    """Applies one webhook event to the conversation store.

    ``handle`` returns a short outcome tag and never raises.
    """

    def __init__(
        self,
        settings,
        patterns: PatternTable,
        hours: BusinessHours,
        store: ConversationStore,
        skipped: SkippedEventLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.patterns = patterns
        self.hours = hours
        self.store = store
        self.skipped = skipped
        self._clock = clock

    def handle(self, raw: Any, now: Optional[datetime] = None) -> str:
        now = now or self._clock()
        event_id = envelope_event_id(raw) if isinstance(raw, dict) else None
        try:
            normalized = normalize_event(raw, self.patterns, self.settings.direction_fallback)
            if not normalized.ok:
                return self._skip(normalized.error_code, now, event_id=event_id, detail=normalized.error)

            event = normalized.value
            key = event.conversation_key()
            if event.is_private:
                return self._skip("private_note", now, key=key, event_id=event_id)
            if event.is_internal:
                return self._skip("internal_conversation", now, key=key, event_id=event_id, detail=event.sector)

            if event.is_inbound:
                return self._handle_inbound(key or f"UNKNOWN_{uuid4().hex[:12]}", event, now)
            if not key:
                return self._skip("missing_key", now, event_id=event_id)
            return self._handle_outbound(key, event, now)
        except Exception as e:
            logger.error(
                "Webhook processing failed",
                extra={"context": {"event_id": event_id, "error": str(e)}},
                exc_info=True,
            )
            return "error"

    def _skip(
        self,
        reason: str,
        now: datetime,
        key: Optional[str] = None,
        event_id: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> str:
        self.skipped.record(reason, now, key=key, event_id=event_id, detail=detail)
        logger.debug(f"Event skipped: {reason}", extra={"context": {"key": key, "event_id": event_id}})
        return reason

    def _excerpt(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return None
        return text[: self.settings.message_excerpt_chars]

    def _history_entry(self, event: ConversationEvent, now: datetime) -> HistoryEntry:
        return HistoryEntry(
            timestamp=now,
            direction=event.direction,
            agent_id=event.agent_id,
            agent_name=event.agent_name,
            excerpt=self._excerpt(event.text),
            is_automated=event.is_automated,
        )

    def _link(self, conversation_id: Optional[str]) -> Optional[str]:
        if not conversation_id:
            return None
        return self.settings.conversation_link_template.format(conversation_id=conversation_id)

    def _is_pending_overdue(self, state: ConversationState, now: datetime) -> bool:
        if state.last_inbound_at is None or state.is_alerted_for_current_wait():
            return False
        if is_attended(state, self.settings.attendance_mode, self.settings.manager_id_set):
            return False
        return self.hours.business_elapsed(state.last_inbound_at, now) >= self.settings.idle_ms

    def _handle_inbound(self, key: str, event: ConversationEvent, now: datetime) -> str:
        entry = self._history_entry(event, now)

        if is_conversation_ender(event.text, self.patterns):
            state = self.store.get(key)
            if state and not self.settings.ender_suppresses_overdue and self._is_pending_overdue(state, now):
                self.store.upsert(key, lambda s: self.store.append_history(s, entry), now)
                logger.info("Ender ignored, waiting period already overdue", extra={"context": {"key": key}})
                return "ender_kept_overdue"
            self.store.delete(key)
            logger.info("Conversation ended by client", extra={"context": {"key": key}})
            return "ended"

        if not self.hours.is_business_moment(now):
            if key in self.store:
                self.store.upsert(key, lambda s: self.store.append_history(s, entry), now)
            return self._skip("outside_business_hours", now, key=key, event_id=event.event_id)

        def arm(state: ConversationState) -> None:
            self.store.append_history(state, entry)
            state.last_inbound_at = now
            state.alerted_at = None
            meta = state.meta
            meta.conversation_id = event.conversation_id or meta.conversation_id
            meta.phone = event.phone or meta.phone
            meta.name = event.name or meta.name
            meta.sector = event.sector
            meta.link = self._link(event.conversation_id) or meta.link
            meta.tags = list(event.tags)
            meta.last_excerpt = entry.excerpt

        self.store.upsert(key, arm, now)
        logger.debug("Conversation armed", extra={"context": {"key": key, "sector": event.sector}})
        return "armed"

    def _handle_outbound(self, key: str, event: ConversationEvent, now: datetime) -> str:
        if key not in self.store:
            return self._skip("untracked_outbound", now, key=key, event_id=event.event_id)

        entry = self._history_entry(event, now)

        def record(state: ConversationState) -> None:
            self.store.append_history(state, entry)
            state.meta.last_excerpt = entry.excerpt
            if event.is_automated:
                return
            state.last_outbound_at = now
            state.meta.agent_id = event.agent_id or state.meta.agent_id
            state.meta.agent_name = event.agent_name or state.meta.agent_name

        self.store.upsert(key, record, now)
        return "automated_reply" if event.is_automated else "replied"
