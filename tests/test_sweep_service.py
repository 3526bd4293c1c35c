import asyncio
from unittest.mock import AsyncMock

import pytest

from idle_monitor.config import Settings
from idle_monitor.services.alert_service import DispatchResult
from idle_monitor.services.monitor import build_monitor
from idle_monitor.services.sweep_service import SweepScheduler


def _reply(chat_event, agent=("agent-1", "Ana")):
    return chat_event(text="Vou verificar", source="Member", member=agent)


class TestSweep:
    @pytest.mark.asyncio
    async def test_alerts_once_per_waiting_period(self, monitor, messenger, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))

        first = await monitor.engine.sweep(at(10, 16))
        assert first["alerted"] == 1
        assert monitor.store.get("chat-1").alerted_at == at(10, 16)

        second = await monitor.engine.sweep(at(10, 17))
        assert second["alerted"] == 0
        assert second["skipped"] == {"already_alerted": 1}

        monitor.ingestion.handle(chat_event(text="Alguém pode me responder?"), now=at(10, 20))
        third = await monitor.engine.sweep(at(10, 36))
        assert third["alerted"] == 1

        assert messenger.send_message.await_count == 2
        text = messenger.send_message.await_args.args[0]
        assert "CLIENTE NÃO ATENDIDO" in text
        assert "Maria Souza" in text
        assert messenger.send_message.await_args.kwargs["phone"] == "5548999990000"

    @pytest.mark.asyncio
    async def test_not_overdue_before_threshold(self, monitor, messenger, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))

        summary = await monitor.engine.sweep(at(10, 14))

        assert summary["skipped"] == {"not_overdue": 1}
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overnight_wait_counts_business_time_only(self, messenger, patterns, clock, chat_event, at):
        settings = Settings(_env_file=None, manager_phone="5548999990000", retention_hours=24)
        monitor = build_monitor(settings, messenger=messenger, patterns=patterns, clock=clock)
        monitor.ingestion.handle(chat_event(), now=at(17, 50))

        summary = await monitor.engine.sweep(at(8, 4, day=3))
        assert summary["skipped"] == {"not_overdue": 1}

        summary = await monitor.engine.sweep(at(8, 6, day=3))
        assert summary["alerted"] == 1

    @pytest.mark.asyncio
    async def test_no_alert_past_cap(self, monitor, messenger, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))

        summary = await monitor.engine.sweep(at(11, 5))

        assert summary["skipped"] == {"over_cap": 1}
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_human_reply_suppresses_alert(self, monitor, messenger, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))
        monitor.ingestion.handle(_reply(chat_event), now=at(10, 5))

        summary = await monitor.engine.sweep(at(10, 20))

        assert summary["skipped"] == {"attended": 1}
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reply_with_numbered_list_suppresses_alert(self, monitor, messenger, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))
        reply = chat_event(text="Oi Maria, preciso de:\n1 - RG\n2 - CPF", source="Member", member=("agent-1", "Ana"))

        assert monitor.ingestion.handle(reply, now=at(10, 2)) == "replied"

        summary = await monitor.engine.sweep(at(10, 16))
        assert summary["alerted"] == 0
        assert summary["skipped"] == {"attended": 1}
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_null_tags_message_is_tracked_and_alerts(self, monitor, chat_event, at):
        raw = chat_event()
        raw["Payload"]["Content"]["Tags"] = None

        assert monitor.ingestion.handle(raw, now=at(10, 0)) == "armed"
        summary = await monitor.engine.sweep(at(10, 16))

        assert summary["alerted"] == 1

    @pytest.mark.asyncio
    async def test_automated_reply_does_not_suppress(self, monitor, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))
        monitor.ingestion.handle(chat_event(text="Aguarde um momento", source="Bot"), now=at(10, 1))

        summary = await monitor.engine.sweep(at(10, 16))

        assert summary["alerted"] == 1

    @pytest.mark.asyncio
    async def test_manager_reply_does_not_suppress(self, messenger, patterns, clock, chat_event, at):
        settings = Settings(_env_file=None, manager_phone="5548999990000", manager_ids="mgr-1")
        monitor = build_monitor(settings, messenger=messenger, patterns=patterns, clock=clock)
        monitor.ingestion.handle(chat_event(), now=at(10, 0))
        monitor.ingestion.handle(_reply(chat_event, ("mgr-1", "Gerente")), now=at(10, 5))

        summary = await monitor.engine.sweep(at(10, 16))

        assert summary["alerted"] == 1

    @pytest.mark.asyncio
    async def test_reply_mode_rearms_after_new_inbound(self, messenger, patterns, clock, chat_event, at):
        settings = Settings(_env_file=None, manager_phone="5548999990000", attendance_mode="reply")
        monitor = build_monitor(settings, messenger=messenger, patterns=patterns, clock=clock)
        monitor.ingestion.handle(chat_event(), now=at(10, 0))
        monitor.ingestion.handle(_reply(chat_event), now=at(10, 5))
        monitor.ingestion.handle(chat_event(text="E o prazo?"), now=at(10, 10))

        summary = await monitor.engine.sweep(at(10, 26))

        assert summary["alerted"] == 1

    @pytest.mark.asyncio
    async def test_outside_business_hours_sweep_is_noop(self, monitor, messenger, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(17, 30))

        summary = await monitor.engine.sweep(at(18, 30))

        assert summary["checked"] == 0
        assert summary["skipped"] == {"outside_business_hours": 1}
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_target_configured(self, messenger, patterns, clock, chat_event, at):
        monitor = build_monitor(Settings(_env_file=None), messenger=messenger, patterns=patterns, clock=clock)
        monitor.ingestion.handle(chat_event(), now=at(10, 0))

        summary = await monitor.engine.sweep(at(10, 20))

        assert summary["alerted"] == 0
        assert summary["skipped"] == {"no_target": 1}
        assert monitor.store.get("chat-1").alerted_at is None

    @pytest.mark.asyncio
    async def test_failed_delivery_retried_next_sweep(self, monitor, messenger, chat_event, at):
        messenger.send_message.side_effect = [RuntimeError("down"), {"Id": "msg-1"}]
        monitor.ingestion.handle(chat_event(), now=at(10, 0))

        first = await monitor.engine.sweep(at(10, 16))
        assert first["failed"] == 1
        assert monitor.store.get("chat-1").alerted_at is None
        assert monitor.stats.failed == 1

        second = await monitor.engine.sweep(at(10, 17))
        assert second["alerted"] == 1
        assert monitor.stats.total_sent == 1

    @pytest.mark.asyncio
    async def test_new_inbound_during_dispatch_keeps_wait_open(self, monitor, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))

        async def dispatch_with_race(alert, now):
            monitor.ingestion.handle(chat_event(text="Olá??"), now=at(10, 16))
            return DispatchResult(success=True, target="5548999990000", channel="message", attempts=1)

        monitor.engine.dispatcher.dispatch = AsyncMock(side_effect=dispatch_with_race)

        await monitor.engine.sweep(at(10, 16))

        state = monitor.store.get("chat-1")
        assert state.last_inbound_at == at(10, 16)
        assert state.alerted_at is None

    @pytest.mark.asyncio
    async def test_purges_stale_conversations(self, monitor, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(8, 30))

        summary = await monitor.engine.sweep(at(14, 31))

        assert summary["purged"] == 1
        assert len(monitor.store) == 0

    @pytest.mark.asyncio
    async def test_one_failing_conversation_does_not_stop_sweep(self, monitor, chat_event, at):
        monitor.ingestion.handle(chat_event(chat_id="chat-1"), now=at(10, 0))
        monitor.ingestion.handle(chat_event(chat_id="chat-2"), now=at(10, 0))
        original = monitor.engine.build_alert

        def build_alert(state, elapsed_ms):
            if state.key == "chat-1":
                raise ValueError("bad state")
            return original(state, elapsed_ms)

        monitor.engine.build_alert = build_alert

        summary = await monitor.engine.sweep(at(10, 16))

        assert summary["failed"] == 1
        assert summary["alerted"] == 1


class TestEvaluate:
    def test_debug_counts_conversations_needing_alert(self, monitor, chat_event, at):
        monitor.ingestion.handle(chat_event(chat_id="chat-1"), now=at(10, 0))
        monitor.ingestion.handle(chat_event(chat_id="chat-2"), now=at(10, 10))

        snapshot = monitor.debug_snapshot(at(10, 16))

        assert snapshot["totalConversations"] == 2
        assert snapshot["conversationsNeedingAlert"] == 1
        assert snapshot["currentTime"] == "02/06/2025 10:16:00"

    def test_idle_minutes_rounded(self, monitor, chat_event, at):
        monitor.ingestion.handle(chat_event(), now=at(10, 0))
        state = monitor.store.get("chat-1")

        alert = monitor.engine.build_alert(state, 16 * 60 * 1000 + 40 * 1000)

        assert alert.idle_minutes == 17
        assert alert.client_name == "Maria Souza"
        assert alert.link.endswith("/chat-1")


class TestSweepScheduler:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, monitor):
        scheduler = SweepScheduler(monitor.engine, interval_seconds=3600)

        scheduler.start()
        assert scheduler.running is True

        await scheduler.stop()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_loop_runs_sweep(self, monitor):
        monitor.engine.sweep = AsyncMock(return_value={})
        scheduler = SweepScheduler(monitor.engine, interval_seconds=0.1)

        scheduler.start()
        await asyncio.sleep(0.25)
        await scheduler.stop()

        assert monitor.engine.sweep.await_count >= 1
