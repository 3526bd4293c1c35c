"""Process-lifetime store of per-conversation monitoring state.

One instance is built per process and shared by ingestion and the sweep.
All callers run on the event loop, so each method is a single synchronous
step with respect to other tasks; no lock is taken. A threaded caller must
guard the store itself.
"""

import copy
from datetime import datetime
from typing import Callable, Optional

from idle_monitor.logging_config import get_logger
from idle_monitor.models import ConversationState, HistoryEntry

logger = get_logger("state_store")

Mutator = Callable[[ConversationState], None]


class ConversationStore:
    def __init__(self, history_limit: int = 50):
        self.history_limit = max(history_limit, 1)
        self._states: dict[str, ConversationState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, key: str) -> bool:
        return key in self._states

    def get(self, key: str) -> Optional[ConversationState]:
        return self._states.get(key)

    def upsert(self, key: str, mutator: Mutator, now: datetime) -> ConversationState:
        """Get-or-create ``key`` and apply ``mutator``.

        The mutator works on a copy that replaces the stored state only once it
        returns, so a failing mutator leaves the previous state untouched.
        """
        existing = self._states.get(key)
        if existing is None:
            candidate = ConversationState(key=key, created_at=now, last_activity_at=now)
        else:
            candidate = copy.deepcopy(existing)

        mutator(candidate)
        candidate.last_activity_at = max(candidate.last_activity_at, now)
        self._trim_history(candidate)
        self._states[key] = candidate
        return candidate

    def update(self, key: str, mutator: Mutator) -> Optional[ConversationState]:
        """Apply ``mutator`` only if ``key`` exists. Returns the new state or None."""
        existing = self._states.get(key)
        if existing is None:
            return None
        candidate = copy.deepcopy(existing)
        mutator(candidate)
        self._trim_history(candidate)
        self._states[key] = candidate
        return candidate

    def delete(self, key: str) -> bool:
        return self._states.pop(key, None) is not None

    def for_each(self, visitor: Callable[[ConversationState], None]) -> None:
        for state in self.snapshot():
            visitor(state)

    def snapshot(self) -> list[ConversationState]:
        return list(self._states.values())

    def append_history(self, state: ConversationState, entry: HistoryEntry) -> None:
        state.history.append(entry)
        self._trim_history(state)

    def _trim_history(self, state: ConversationState) -> None:
        overflow = len(state.history) - self.history_limit
        if overflow > 0:
            del state.history[:overflow]

    def purge_idle(self, now: datetime, retention_ms: int) -> list[str]:
        """Drop conversations with no activity of any kind for longer than the retention window."""
        purged = []
        for key, state in list(self._states.items()):
            idle_ms = (now - state.last_activity_at).total_seconds() * 1000
            if idle_ms > retention_ms:
                del self._states[key]
                purged.append(key)

        if purged:
            logger.info(f"Purged idle conversations: {len(purged)}", extra={"context": {"keys": purged[:20]}})
        return purged
