from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx
import pytest

from idle_monitor.config import Settings
from idle_monitor.services.alert_service import AlertDispatcher, UnattendedAlert
from idle_monitor.services.utalk_service import MessagingError, UTalkService


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


def _alert(at, key="chat-1", sector="Vendas"):
    return UnattendedAlert(
        key=key,
        waiting_since=at(10, 0),
        idle_minutes=16,
        conversation_id=key,
        client_name="Maria Souza",
        agent_name="Ana",
        sector=sector,
        link=f"https://app-utalk.umbler.com/chats/{key}",
    )


def _mock_relay(mock_client_class, responses):
    mock_client = MagicMock()
    mock_client.post = AsyncMock(side_effect=responses)
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return mock_client


class TestResolveTarget:
    def test_sector_route_wins(self):
        dispatcher = AlertDispatcher(_settings(sector_managers='{"Vendas": "55 48 91111-2222"}', manager_phone="5548999990000"))

        target = dispatcher.resolve_target("chat-1", "vendas")

        assert target.label == "sector:vendas"
        assert target.phone == "5548911112222"

    def test_sector_route_to_chat_and_webhook(self):
        settings = _settings(sector_managers="Suporte=chat:abc;Financeiro=https://hooks.example.com/fin")
        dispatcher = AlertDispatcher(settings)

        assert dispatcher.resolve_target("k", "Suporte").chat_id == "abc"
        assert dispatcher.resolve_target("k", "Financeiro").webhook_url == "https://hooks.example.com/fin"

    def test_alert_chat_before_phones(self):
        dispatcher = AlertDispatcher(_settings(alert_chat_id="group-1", manager_phone="5548999990000"))
        assert dispatcher.resolve_target("k", "Vendas").chat_id == "group-1"

    def test_phone_pool_is_stable_per_key(self):
        dispatcher = AlertDispatcher(_settings(manager_phones="5548911110000,5548922220000,5548933330000"))

        first = dispatcher.resolve_target("chat-1").phone
        assert all(dispatcher.resolve_target("chat-1").phone == first for _ in range(5))
        assert first in {"5548911110000", "5548922220000", "5548933330000"}

    def test_single_phone(self):
        dispatcher = AlertDispatcher(_settings(manager_phone="+55 48 99999-0000"))
        assert dispatcher.resolve_target("k").phone == "5548999990000"

    def test_relay_only(self):
        dispatcher = AlertDispatcher(_settings(manager_webhook_url="https://relay.example.com/a,https://other"))
        target = dispatcher.resolve_target("k")

        assert target.has_direct_address is False
        assert target.webhook_url == "https://relay.example.com/a"

    def test_nothing_configured(self):
        dispatcher = AlertDispatcher(_settings())
        assert dispatcher.resolve_target("k") is None
        assert dispatcher.is_configured() is False


class TestAlertContent:
    def test_event_id_is_stable_per_waiting_period(self, at):
        assert _alert(at).event_id == _alert(at).event_id
        assert _alert(at).event_id.startswith("ALERT_")
        assert _alert(at, key="chat-2").event_id != _alert(at).event_id

    def test_message_text(self, at):
        dispatcher = AlertDispatcher(_settings(manager_phone="5548999990000"))
        text = dispatcher.format_message(_alert(at), at(10, 16))

        assert "🚨 *CLIENTE NÃO ATENDIDO*" in text
        assert "Maria Souza" in text
        assert "16 minutos" in text
        assert "02/06/2025 10:16:00" in text
        assert "8h-18h" in text

    def test_relay_payload(self, at):
        dispatcher = AlertDispatcher(_settings())
        payload = dispatcher.build_relay_payload(_alert(at), at(10, 16))

        assert payload["Type"] == "ClientUnattended"
        assert payload["EventId"] == _alert(at).event_id
        assert payload["Payload"]["Content"]["IdleMinutes"] == 16
        assert payload["EventDate"] == "2025-06-02T13:16:00+00:00"


class TestDispatch:
    @pytest.mark.asyncio
    async def test_direct_message_success(self, at):
        messenger = AsyncMock()
        dispatcher = AlertDispatcher(_settings(manager_phone="5548999990000"), messenger=messenger)

        result = await dispatcher.dispatch(_alert(at), at(10, 16))

        assert result.success is True
        assert result.channel == "message"
        assert result.attempts == 1
        messenger.send_message.assert_awaited_once()
        assert messenger.send_message.await_args.kwargs == {"phone": "5548999990000", "chat_id": None}

    @pytest.mark.asyncio
    @patch("idle_monitor.services.alert_service.httpx.AsyncClient")
    async def test_falls_back_to_relay(self, mock_client_class, at):
        mock_client = _mock_relay(mock_client_class, [Mock(status_code=200)])
        messenger = AsyncMock()
        messenger.send_message.side_effect = MessagingError("UTalk API error 500")
        settings = _settings(manager_phone="5548999990000", manager_webhook_url="https://relay.example.com/a")
        dispatcher = AlertDispatcher(settings, messenger=messenger, sleep=AsyncMock())

        result = await dispatcher.dispatch(_alert(at), at(10, 16))

        assert result.success is True
        assert result.channel == "webhook"
        assert result.errors == ["message: UTalk API error 500"]
        headers = mock_client.post.call_args.kwargs["headers"]
        assert headers["X-Attempt"] == "1"
        assert headers["X-Event-Id"] == _alert(at).event_id

    @pytest.mark.asyncio
    @patch("idle_monitor.services.alert_service.httpx.AsyncClient")
    async def test_relay_retries_with_backoff(self, mock_client_class, at):
        mock_client = _mock_relay(
            mock_client_class,
            [Mock(status_code=500), httpx.ConnectTimeout("timed out"), Mock(status_code=204)],
        )
        sleep = AsyncMock()
        dispatcher = AlertDispatcher(_settings(manager_webhook_url="https://relay.example.com/a"), sleep=sleep)

        result = await dispatcher.dispatch(_alert(at), at(10, 16))

        assert result.success is True
        assert result.attempts == 3
        assert mock_client.post.await_count == 3
        assert [c.kwargs["headers"]["X-Attempt"] for c in mock_client.post.call_args_list] == ["1", "2", "3"]
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    @patch("idle_monitor.services.alert_service.httpx.AsyncClient")
    async def test_attempts_capped_at_three(self, mock_client_class, at):
        mock_client = _mock_relay(mock_client_class, [Mock(status_code=503)] * 5)
        settings = _settings(manager_webhook_url="https://relay.example.com/a", webhook_max_attempts=5)
        dispatcher = AlertDispatcher(settings, sleep=AsyncMock())

        result = await dispatcher.dispatch(_alert(at), at(10, 16))

        assert result.success is False
        assert mock_client.post.await_count == 3
        assert result.errors == ["webhook: Invalid status: 503"]

    @pytest.mark.asyncio
    async def test_failure_without_relay(self, at):
        messenger = AsyncMock()
        messenger.send_message.side_effect = RuntimeError("connection reset")
        dispatcher = AlertDispatcher(_settings(manager_phone="5548999990000"), messenger=messenger)

        result = await dispatcher.dispatch(_alert(at), at(10, 16))

        assert result.success is False
        assert result.target == "5548999990000"
        assert "connection reset" in result.errors[0]

    @pytest.mark.asyncio
    async def test_no_messenger_configured(self, at):
        dispatcher = AlertDispatcher(_settings(manager_phone="5548999990000"))

        result = await dispatcher.dispatch(_alert(at), at(10, 16))

        assert result.success is False
        assert result.errors == ["message: Messaging platform not configured"]

    @pytest.mark.asyncio
    async def test_no_target(self, at):
        result = await AlertDispatcher(_settings()).dispatch(_alert(at), at(10, 16))
        assert result.success is False
        assert result.errors == ["no_target"]


class TestUTalkService:
    @pytest.mark.asyncio
    @patch("idle_monitor.services.utalk_service.httpx.AsyncClient")
    async def test_send_to_phone(self, mock_client_class):
        mock_client = _mock_relay(mock_client_class, [Mock(status_code=200, json=Mock(return_value={"Id": "m1"}))])
        service = UTalkService("token", organization_id="org-1", business_phone="554830000000")

        result = await service.send_message("Olá", phone="+55 48 99999-0000")

        assert result == {"Id": "m1"}
        call = mock_client.post.call_args
        assert call.args[0] == "https://app-utalk.umbler.com/api/v1/messages/simplified/"
        assert call.kwargs["json"] == {
            "OrganizationId": "org-1",
            "Message": "Olá",
            "ToPhone": "5548999990000",
            "FromPhone": "554830000000",
        }
        assert call.kwargs["headers"]["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    @patch("idle_monitor.services.utalk_service.httpx.AsyncClient")
    async def test_api_error_raises(self, mock_client_class):
        _mock_relay(mock_client_class, [Mock(status_code=401, text="unauthorized")])
        service = UTalkService("token", organization_id="org-1")

        with pytest.raises(MessagingError):
            await service.send_message("Olá", chat_id="chat-9")

    @pytest.mark.asyncio
    async def test_invalid_phone(self):
        with pytest.raises(MessagingError):
            await UTalkService("token").send_message("Olá", phone="123")

    def test_not_built_without_token(self):
        assert UTalkService.from_settings(_settings()) is None
