import re
from typing import Optional

import httpx

from idle_monitor.logging_config import get_logger

logger = get_logger("utalk_service")


class MessagingError(Exception):
    """A text notification could not be delivered through the messaging platform."""


class UTalkService:
    """Sends plain text notifications through the UTalk simplified messages API."""

    SEND_PATH = "/v1/messages/simplified/"

    def __init__(
        self,
        api_token: str,
        organization_id: Optional[str] = None,
        business_phone: Optional[str] = None,
        base_url: str = "https://app-utalk.umbler.com/api",
        timeout: float = 10.0,
    ):
        self.api_token = api_token
        self.organization_id = organization_id
        self.business_phone = business_phone
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> Optional["UTalkService"]:
        if not settings.utalk_api_token:
            return None
        return cls(
            api_token=settings.utalk_api_token,
            organization_id=settings.organization_id,
            business_phone=settings.business_phone,
            base_url=settings.utalk_base_url,
        )

    async def _post(self, path: str, data: dict) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.api_token}", "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=data, headers=headers)
        except httpx.HTTPError as e:
            raise MessagingError(f"UTalk request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise MessagingError(f"UTalk API error {response.status_code}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError:
            return {}

    async def send_message(self, text: str, *, phone: Optional[str] = None, chat_id: Optional[str] = None) -> dict:
        """Send ``text`` to a phone number or an existing chat."""
        if not text or not text.strip():
            raise MessagingError("message is required")

        data = {"OrganizationId": self.organization_id, "Message": text.strip()}
        if chat_id:
            data["ChatId"] = chat_id
        elif phone:
            clean_phone = re.sub(r"\D", "", phone)
            if not 9 <= len(clean_phone) <= 16:
                raise MessagingError(f"Invalid phone number: {phone}")
            data["ToPhone"] = clean_phone
            data["FromPhone"] = self.business_phone
        else:
            raise MessagingError("phone or chat_id is required")

        return await self._post(self.SEND_PATH, data)
