from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from idle_monitor.config import Settings
from idle_monitor.services.monitor import build_monitor
from idle_monitor.services.patterns import load_pattern_table

LOCAL_TZ = ZoneInfo("America/Sao_Paulo")


def local_time(hour: int, minute: int = 0, day: int = 2, month: int = 6) -> datetime:
    """Wall-clock time in Sao Paulo. 2025-06-02 is a Monday."""
    return datetime(2025, month, day, hour, minute, tzinfo=LOCAL_TZ)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def at():
    return local_time


@pytest.fixture
def clock():
    return FakeClock(local_time(10, 0))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        idle_ms=15 * 60 * 1000,
        max_alert_window_minutes=60,
        manager_phone="5548999990000",
        admin_token="test-admin",
        sweep_enabled=False,
    )


@pytest.fixture
def patterns():
    return load_pattern_table()


@pytest.fixture
def messenger():
    return AsyncMock()


@pytest.fixture
def monitor(settings, messenger, patterns, clock):
    return build_monitor(settings, messenger=messenger, patterns=patterns, clock=clock)


@pytest.fixture
def chat_event():
    """Builds a UTalk chat snapshot webhook body."""

    def build(
        text="Oi, preciso de ajuda com meu pedido",
        source="Contact",
        chat_id="chat-1",
        member=None,
        sector="Vendas",
        contact_name="Maria Souza",
        phone="+55 48 99888-7777",
        private=False,
        tags=(),
        event_id="evt-1",
    ):
        last_message = {"Content": text, "Source": source, "IsPrivate": private}
        if member:
            last_message["SentByOrganizationMember"] = {"Id": member[0], "Name": member[1]}
        return {
            "Type": "Message",
            "EventId": event_id,
            "EventDate": "2025-06-02T13:00:00Z",
            "Payload": {
                "Type": "Chat",
                "Content": {
                    "Id": chat_id,
                    "Contact": {"Name": contact_name, "PhoneNumber": phone},
                    "Sector": {"Name": sector},
                    "LastMessage": last_message,
                    "Tags": [{"Name": tag} for tag in tags],
                },
            },
        }

    return build
