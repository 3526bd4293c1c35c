"""Known UTalk webhook envelope shapes.

Two historical formats reach the endpoint: the chat snapshot sent by the
platform (``Type: "Message"`` with the whole chat under ``Payload.Content``)
and a flat message used by older integrations and test tooling.
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


def _tag_list(value: Any) -> list:
    """Null or non-list tags become an empty list; entries that are neither objects nor names are dropped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, (dict, str))]


class _Named(_Envelope):
    """An object with a name that some senders flatten to the bare name string."""

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Id", "id"))
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("Name", "name"))

    @model_validator(mode="before")
    @classmethod
    def _from_plain_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"Name": value}
        return value


class ChatContact(_Envelope):
    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Id", "id"))
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("Name", "name"))
    phone: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PhoneNumber", "Phone", "phone"),
    )


class ChatSector(_Named):
    pass


class ChatMember(_Envelope):
    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Id", "id"))
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("Name", "name"))


class ChatRef(_Envelope):
    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Id", "id"))


class ChatTag(_Named):
    pass


class ChatLastMessage(_Envelope):
    content: Optional[str] = Field(default=None, validation_alias=AliasChoices("Content", "Text"))
    source: Optional[str] = Field(default=None, validation_alias="Source")
    is_private: Optional[bool] = Field(default=None, validation_alias="IsPrivate")
    member: Optional[ChatMember] = Field(default=None, validation_alias="SentByOrganizationMember")
    chat: Optional[ChatRef] = Field(default=None, validation_alias="Chat")


class ChatContent(_Envelope):
    id: Optional[str] = Field(default=None, validation_alias="Id")
    contact: Optional[ChatContact] = Field(default=None, validation_alias="Contact")
    sector: Optional[ChatSector] = Field(default=None, validation_alias="Sector")
    last_message: Optional[ChatLastMessage] = Field(default=None, validation_alias="LastMessage")
    tags: list[ChatTag] = Field(default_factory=list, validation_alias="Tags")

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_or_empty(cls, value: Any) -> list:
        return _tag_list(value)


class ChatPayload(_Envelope):
    type: Optional[str] = Field(default=None, validation_alias="Type")
    content: Optional[ChatContent] = Field(default=None, validation_alias="Content")


class ChatSnapshotEnvelope(_Envelope):
    type: Optional[str] = Field(default=None, validation_alias="Type")
    event_id: Optional[str] = Field(default=None, validation_alias="EventId")
    event_date: Optional[str] = Field(default=None, validation_alias="EventDate")
    payload: Optional[ChatPayload] = Field(default=None, validation_alias="Payload")
    # Some senders put the sector name beside the payload.
    sector: Optional[str] = Field(default=None, validation_alias="Sector")

    @field_validator("sector", mode="before")
    @classmethod
    def _sector_name(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("Name") or value.get("name")
        return value


class FlatContact(_Envelope):
    phone: Optional[str] = None
    name: Optional[str] = None


class FlatMessage(_Envelope):
    conversation_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("conversationId", "chatId")
    )
    direction: Optional[str] = None
    from_contact: Optional[FlatContact] = Field(default=None, validation_alias="from")
    attendant_id: Optional[str] = Field(default=None, validation_alias="attendantId")
    attendant_name: Optional[str] = Field(default=None, validation_alias="attendantName")
    text: Optional[str] = None
    sector: Optional[str] = None
    tags: list[Any] = Field(default_factory=list)
    is_private: Optional[bool] = Field(default=None, validation_alias="isPrivate")

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_or_empty(cls, value: Any) -> list:
        return _tag_list(value)


class FlatMessageEnvelope(_Envelope):
    type: Optional[str] = None
    direction: Optional[str] = None
    message: Optional[FlatMessage] = None
    event_id: Optional[str] = Field(default=None, validation_alias="eventId")
    event_date: Optional[str] = Field(default=None, validation_alias="eventDate")


class WebhookAck(BaseModel):
    received: bool = True
    eventId: Optional[str] = None
    timestamp: str


def envelope_event_id(raw: dict[str, Any]) -> Optional[str]:
    value = raw.get("EventId") or raw.get("eventId")
    return str(value) if value is not None else None
