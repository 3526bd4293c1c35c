"""Business-time arithmetic over a weekday/hour window in a local timezone."""

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

MS = timedelta(milliseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BusinessHours:
    """Mon-Fri, local hour in [start_hour, end_hour)."""

    def __init__(self, start_hour: int = 8, end_hour: int = 18, tz: str = "America/Sao_Paulo"):
        if not 0 <= start_hour <= end_hour <= 24:
            raise ValueError(f"Invalid business window: {start_hour}-{end_hour}")
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.tz = ZoneInfo(tz)

    @classmethod
    def from_settings(cls, settings) -> "BusinessHours":
        return cls(settings.business_start_hour, settings.business_end_hour, settings.business_timezone)

    def localize(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)

    def is_business_moment(self, moment: datetime) -> bool:
        local = self.localize(moment)
        return local.weekday() < 5 and self.start_hour <= local.hour < self.end_hour

    def _window(self, day) -> tuple[datetime, datetime]:
        # Built from wall-clock hours, compared in UTC so DST days stay exact.
        midnight = datetime.combine(day, time(), tzinfo=self.tz)
        start = (midnight + timedelta(hours=self.start_hour)).astimezone(timezone.utc)
        end = (midnight + timedelta(hours=self.end_hour)).astimezone(timezone.utc)
        return start, end

    def business_elapsed(self, start: Optional[datetime], end: Optional[datetime]) -> int:
        """Milliseconds of [start, end) that fall inside business windows.

        Walks the range one local calendar day at a time, intersecting each
        weekday's window with the range. Weekends contribute nothing.
        """
        if start is None or end is None:
            return 0
        start = self.localize(start).astimezone(timezone.utc)
        end = self.localize(end).astimezone(timezone.utc)
        if end <= start:
            return 0

        total = timedelta()
        day = start.astimezone(self.tz).date()
        last_day = end.astimezone(self.tz).date()
        while day <= last_day:
            if day.weekday() < 5:
                window_start, window_end = self._window(day)
                overlap = min(window_end, end) - max(window_start, start)
                if overlap > timedelta():
                    total += overlap
            day += timedelta(days=1)

        return total // MS
