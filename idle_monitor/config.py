import json
from typing import Optional

from pydantic_settings import BaseSettings

from idle_monitor.logging_config import get_logger

logger = get_logger("config")


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    idle_ms: int = 15 * 60 * 1000
    max_alert_window_minutes: int = 60
    business_start_hour: int = 8
    business_end_hour: int = 18
    business_timezone: str = "America/Sao_Paulo"

    admin_token: Optional[str] = None

    manager_phone: Optional[str] = None
    manager_phones: Optional[str] = None
    alert_chat_id: Optional[str] = None
    manager_webhook_url: Optional[str] = None
    sector_managers: Optional[str] = None
    manager_ids: Optional[str] = None

    retention_hours: float = 6
    debug: bool = False

    sweep_interval_seconds: float = 60
    sweep_enabled: bool = True

    webhook_max_attempts: int = 3
    webhook_retry_backoff_seconds: float = 1.0
    webhook_timeout_seconds: float = 4.5

    utalk_base_url: str = "https://app-utalk.umbler.com/api"
    utalk_api_token: Optional[str] = None
    organization_id: Optional[str] = None
    business_phone: Optional[str] = None

    # "human" or "reply"
    attendance_mode: str = "human"
    # "agent_presence", "inbound" or "drop"
    direction_fallback: str = "agent_presence"
    ender_suppresses_overdue: bool = True

    conversation_link_template: str = "https://app-utalk.umbler.com/chats/{conversation_id}"
    patterns_path: Optional[str] = None
    history_limit: int = 50
    skipped_events_limit: int = 100
    message_excerpt_chars: int = 100

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def max_alert_window_ms(self) -> int:
        return self.max_alert_window_minutes * 60 * 1000

    @property
    def retention_ms(self) -> int:
        return int(self.retention_hours * 60 * 60 * 1000)

    @property
    def relay_max_attempts(self) -> int:
        return min(max(self.webhook_max_attempts, 1), 3)

    @property
    def manager_phone_pool(self) -> list[str]:
        return _split_csv(self.manager_phones)

    @property
    def manager_id_set(self) -> set[str]:
        return set(_split_csv(self.manager_ids))

    @property
    def relay_url(self) -> Optional[str]:
        urls = _split_csv(self.manager_webhook_url)
        return urls[0] if urls else None

    @property
    def sector_routes(self) -> dict[str, str]:
        """Sector name (lower-cased) to manager target.

        Accepts a JSON object or ``sector=target;sector=target`` pairs.
        """
        raw = (self.sector_managers or "").strip()
        if not raw:
            return {}

        if raw.startswith("{"):
            try:
                data = json.loads(raw)
            except ValueError as e:
                logger.error(f"Invalid SECTOR_MANAGERS JSON: {e}")
                return {}
            if not isinstance(data, dict):
                return {}
            return {str(k).strip().lower(): str(v).strip() for k, v in data.items() if str(v).strip()}

        routes: dict[str, str] = {}
        for pair in raw.split(";"):
            if "=" not in pair:
                continue
            sector, target = pair.split("=", 1)
            if sector.strip() and target.strip():
                routes[sector.strip().lower()] = target.strip()
        return routes

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.debug else "INFO"


settings = Settings()
