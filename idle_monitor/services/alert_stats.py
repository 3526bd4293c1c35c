from datetime import datetime
from typing import Optional

from idle_monitor.services.business_hours import BusinessHours


class AlertStats:
    """Counters surfaced by the debug endpoint. Days are local calendar days."""

    def __init__(self, hours: BusinessHours):
        self.hours = hours
        self.total_sent = 0
        self.failed = 0
        self.by_day: dict[str, int] = {}
        self.by_target: dict[str, int] = {}
        self.last_alert_at: Optional[datetime] = None
        self.last_failure: Optional[dict] = None

    def record_sent(self, target: Optional[str], at: datetime) -> None:
        day = self.hours.localize(at).date().isoformat()
        label = target or "unknown"
        self.total_sent += 1
        self.by_day[day] = self.by_day.get(day, 0) + 1
        self.by_target[label] = self.by_target.get(label, 0) + 1
        self.last_alert_at = at

    def record_failure(self, key: str, target: Optional[str], errors: list[str], at: datetime) -> None:
        self.failed += 1
        self.last_failure = {"key": key, "target": target, "errors": errors, "at": at.isoformat()}

    def to_dict(self) -> dict:
        return {
            "totalAlertsSent": self.total_sent,
            "failedAlerts": self.failed,
            "alertsByDay": dict(self.by_day),
            "byManager": dict(self.by_target),
            "lastAlertAt": self.last_alert_at.isoformat() if self.last_alert_at else None,
            "lastFailure": self.last_failure,
        }
