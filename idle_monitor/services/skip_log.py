from collections import deque
from datetime import datetime
from typing import Optional


class SkippedEventLog:
    """Bounded ring buffer of dropped webhook events, newest last."""

    def __init__(self, limit: int = 100):
        self._entries: deque[dict] = deque(maxlen=max(limit, 1))

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        reason: str,
        at: datetime,
        key: Optional[str] = None,
        event_id: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        self._entries.append(
            {
                "reason": reason,
                "key": key,
                "eventId": event_id,
                "detail": detail,
                "at": at.isoformat(),
            }
        )

    def recent(self, limit: int = 20) -> list[dict]:
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self._entries:
            counts[entry["reason"]] = counts.get(entry["reason"], 0) + 1
        return counts
