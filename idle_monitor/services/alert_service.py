"""Unattended-client alert delivery.

A target is resolved per alert (sector manager, alert chat, phone pool,
single phone) and two mechanisms are tried in order: a direct message through
the messaging platform, then a JSON POST to the relay webhook with bounded
retries. Delivery never raises to the caller.
"""

import asyncio
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from idle_monitor.logging_config import ConversationLogger, get_logger
from idle_monitor.services.business_hours import BusinessHours
from idle_monitor.services.result import Result
from idle_monitor.services.utalk_service import MessagingError

logger = get_logger("alert_service")

RELAY_USER_AGENT = "UTalk-Bot-Webhook/2.0"


class Messenger(Protocol):
    async def send_message(self, text: str, *, phone: Optional[str] = None, chat_id: Optional[str] = None) -> Any:
        ...


@dataclass(frozen=True)
class UnattendedAlert:
    key: str
    waiting_since: datetime
    idle_minutes: int
    conversation_id: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    sector: str = "Geral"
    link: Optional[str] = None
    tags: tuple[str, ...] = ()

    @property
    def event_id(self) -> str:
        """Same id for every attempt and sweep cycle of one waiting period."""
        digest = hashlib.sha256(f"{self.key}|{self.waiting_since.isoformat()}".encode("utf-8")).hexdigest()
        return f"ALERT_{digest[:16]}"


@dataclass(frozen=True)
class AlertTarget:
    label: str
    phone: Optional[str] = None
    chat_id: Optional[str] = None
    webhook_url: Optional[str] = None

    @property
    def has_direct_address(self) -> bool:
        return bool(self.phone or self.chat_id)


@dataclass
class DispatchResult:
    success: bool
    target: Optional[str] = None
    channel: Optional[str] = None
    attempts: int = 0
    errors: list[str] = field(default_factory=list)


def stable_index(key: str, size: int) -> int:
    return int(hashlib.sha256(key.encode("utf-8")).hexdigest(), 16) % size


def _parse_route(value: str, label: str) -> Optional[AlertTarget]:
    value = value.strip()
    if value.startswith(("http://", "https://")):
        return AlertTarget(label=label, webhook_url=value)
    if value.startswith("chat:"):
        chat_id = value[len("chat:"):].strip()
        return AlertTarget(label=label, chat_id=chat_id) if chat_id else None
    digits = "".join(ch for ch in value if ch.isdigit())
    return AlertTarget(label=label, phone=digits) if digits else None


class AlertDispatcher:
    def __init__(
        self,
        settings,
        messenger: Optional[Messenger] = None,
        hours: Optional[BusinessHours] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.messenger = messenger
        self.hours = hours or BusinessHours.from_settings(settings)
        self._sleep = sleep

    def is_configured(self) -> bool:
        s = self.settings
        return bool(s.sector_routes or s.alert_chat_id or s.manager_phone_pool or s.manager_phone or s.relay_url)

    def resolve_target(self, key: str, sector: Optional[str] = None) -> Optional[AlertTarget]:
        """sector route, then alert chat, then phone pool (stable per key), then single phone."""
        s = self.settings
        relay_url = s.relay_url

        if sector:
            route = s.sector_routes.get(sector.strip().lower())
            if route:
                target = _parse_route(route, f"sector:{sector.strip()}")
                if target:
                    return target

        if s.alert_chat_id:
            return AlertTarget(label=f"chat:{s.alert_chat_id}", chat_id=s.alert_chat_id, webhook_url=relay_url)

        pool = s.manager_phone_pool
        if pool:
            phone = pool[stable_index(key, len(pool))]
            return AlertTarget(label=phone, phone="".join(ch for ch in phone if ch.isdigit()), webhook_url=relay_url)

        if s.manager_phone:
            phone = "".join(ch for ch in s.manager_phone if ch.isdigit())
            return AlertTarget(label=phone, phone=phone, webhook_url=relay_url)

        if relay_url:
            return AlertTarget(label="webhook", webhook_url=relay_url)

        return None

    def format_message(self, alert: UnattendedAlert, now: datetime) -> str:
        local_now = self.hours.localize(now)
        start, end = self.settings.business_start_hour, self.settings.business_end_hour
        return (
            "🚨 *CLIENTE NÃO ATENDIDO*\n\n"
            f"👤 *Cliente:* {alert.client_name or 'Nome não informado'}\n"
            f"💬 *Chat ID:* {alert.conversation_id or alert.key}\n"
            f"🧑‍💼 *Atendente Responsável:* {alert.agent_name or 'Sistema Automático'}\n"
            f"📍 *Setor:* {alert.sector or 'Geral'}\n"
            f"⏱️ *Tempo aguardando:* {alert.idle_minutes} minutos (horário comercial)\n"
            f"🔗 *Link:* {alert.link or 'Não disponível'}\n"
            f"📅 *Data/Hora:* {local_now.strftime('%d/%m/%Y %H:%M:%S')}\n\n"
            f"⚠️ *Cliente aguarda atendimento humano há {alert.idle_minutes} minutos*\n\n"
            f"_Alerta automático - Horário: {start}h-{end}h_"
        )

    def build_relay_payload(self, alert: UnattendedAlert, now: datetime) -> dict:
        stamp = now.astimezone(timezone.utc).isoformat()
        return {
            "Type": "ClientUnattended",
            "EventDate": stamp,
            "EventId": alert.event_id,
            "Payload": {
                "Type": "Alert",
                "Content": {
                    "Id": alert.conversation_id or alert.key,
                    "ConversationId": alert.conversation_id,
                    "ClientName": alert.client_name,
                    "ClientPhone": alert.client_phone,
                    "AttendantName": alert.agent_name,
                    "Sector": alert.sector,
                    "IdleMinutes": alert.idle_minutes,
                    "Link": alert.link,
                    "Tags": list(alert.tags),
                    "BusinessHours": f"{self.settings.business_start_hour}h-{self.settings.business_end_hour}h",
                    "Timestamp": stamp,
                },
            },
        }

    async def send_direct(self, target: AlertTarget, text: str) -> Result[str]:
        if self.messenger is None:
            return Result.failure("Messaging platform not configured", "no_messenger")
        try:
            await self.messenger.send_message(text, phone=target.phone, chat_id=target.chat_id)
        except MessagingError as e:
            return Result.failure(str(e), "messaging_error")
        except Exception as e:
            return Result.failure(f"Unexpected messaging failure: {e}", "messaging_error")
        return Result.success(target.chat_id or target.phone)

    async def post_relay(self, url: str, payload: dict, event_id: str) -> tuple[Result[int], int]:
        """POST ``payload`` with up to ``relay_max_attempts`` tries. Returns (result, attempts)."""
        max_attempts = self.settings.relay_max_attempts
        backoff = self.settings.webhook_retry_backoff_seconds
        last_error = "not attempted"

        async with httpx.AsyncClient(timeout=self.settings.webhook_timeout_seconds) as client:
            for attempt in range(1, max_attempts + 1):
                headers = {
                    "Content-Type": "application/json",
                    "User-Agent": RELAY_USER_AGENT,
                    "X-Attempt": str(attempt),
                    "X-Event-Id": event_id,
                }
                try:
                    response = await client.post(url, json=payload, headers=headers)
                    if 200 <= response.status_code <= 299:
                        return Result.success(response.status_code), attempt
                    last_error = f"Invalid status: {response.status_code}"
                except httpx.TimeoutException:
                    last_error = "Timeout"
                except httpx.HTTPError as e:
                    last_error = f"{type(e).__name__}: {e}"

                logger.warning(
                    "Relay webhook attempt failed",
                    extra={"context": {"url": url, "attempt": attempt, "event_id": event_id, "error": last_error}},
                )
                if attempt < max_attempts:
                    await self._sleep(backoff)

        return Result.failure(last_error, "relay_failed"), max_attempts

    async def dispatch(self, alert: UnattendedAlert, now: Optional[datetime] = None) -> DispatchResult:
        """Deliver ``alert``. Success means at least one mechanism succeeded."""
        now = now or datetime.now(timezone.utc)
        log = ConversationLogger(logger, {"key": alert.key, "event_id": alert.event_id})

        try:
            target = self.resolve_target(alert.key, alert.sector)
            if target is None:
                log.warning("No alert target configured")
                return DispatchResult(success=False, errors=["no_target"])

            result = DispatchResult(success=False, target=target.label)

            if target.has_direct_address:
                direct = await self.send_direct(target, self.format_message(alert, now))
                result.attempts += 1
                if direct.ok:
                    result.success = True
                    result.channel = "message"
                    log.info("Alert sent", context={"target": target.label, "channel": "message"})
                    return result
                result.errors.append(f"message: {direct.error}")

            url = target.webhook_url or self.settings.relay_url
            if url:
                relay, attempts = await self.post_relay(url, self.build_relay_payload(alert, now), alert.event_id)
                result.attempts += attempts
                if relay.ok:
                    result.success = True
                    result.channel = "webhook"
                    log.info(
                        "Alert sent",
                        context={"target": target.label, "channel": "webhook", "status": relay.value},
                    )
                    return result
                result.errors.append(f"webhook: {relay.error}")

            log.error("Alert delivery failed", context={"target": target.label, "errors": result.errors})
            return result
        except Exception as e:
            log.error("Alert dispatch crashed", context={"error": str(e)}, exc_info=True)
            return DispatchResult(success=False, errors=[f"unexpected: {e}"])
