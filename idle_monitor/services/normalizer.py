"""Turn raw webhook envelopes into ConversationEvent values.

Each known envelope shape has its own normalization function. Anything that
is not recognizably a chat message is reported as a failed Result whose
error_code is the skip reason; nothing here raises or has side effects.
"""

import re
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from idle_monitor.models import BOT_SYSTEM_ID, DEFAULT_SECTOR, ConversationEvent, Direction
from idle_monitor.schemas.webhook import ChatSnapshotEnvelope, FlatMessageEnvelope
from idle_monitor.services.classifier import is_automated_message, is_internal_conversation
from idle_monitor.services.patterns import PatternTable
from idle_monitor.services.result import Result

FALLBACK_AGENT_PRESENCE = "agent_presence"
FALLBACK_INBOUND = "inbound"
FALLBACK_DROP = "drop"

SOURCE_CONTACT = "Contact"
SOURCE_MEMBER = "Member"
SOURCE_BOT = "Bot"

_INBOUND_MARKERS = {"in", "inbound", "message-in", "incoming"}
_OUTBOUND_MARKERS = {"out", "outbound", "message-out", "outgoing"}


def normalize_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    return digits or None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _tag_names(tags: Iterable[Any]) -> tuple[str, ...]:
    names = []
    for tag in tags:
        if isinstance(tag, dict):
            name = tag.get("Name") or tag.get("name")
        else:
            name = getattr(tag, "name", tag)
        if name:
            names.append(str(name).strip().lower())
    return tuple(name for name in names if name)


def _marker_direction(*markers: Optional[str]) -> Optional[Direction]:
    for marker in markers:
        if not marker:
            continue
        value = marker.strip().lower()
        if value in _INBOUND_MARKERS:
            return Direction.INBOUND
        if value in _OUTBOUND_MARKERS:
            return Direction.OUTBOUND
    return None


def infer_direction(agent_id: Optional[str], fallback: str) -> Optional[Direction]:
    """Last-resort direction when the payload carries no source discriminator.

    ``agent_presence``: an agent id means an outbound send, otherwise inbound.
    This is a heuristic, not a guarantee.
    """
    if fallback == FALLBACK_DROP:
        return None
    if fallback == FALLBACK_INBOUND:
        return Direction.INBOUND
    return Direction.OUTBOUND if agent_id else Direction.INBOUND


def _build_event(
    *,
    direction: Direction,
    conversation_id: Optional[str],
    phone: Optional[str],
    name: Optional[str],
    agent_id: Optional[str],
    agent_name: Optional[str],
    text: Optional[str],
    sector: Optional[str],
    is_private: bool,
    tags: tuple[str, ...],
    event_id: Optional[str],
    event_date: Optional[str],
    patterns: PatternTable,
) -> ConversationEvent:
    sector = _clean(sector) or DEFAULT_SECTOR
    return ConversationEvent(
        direction=direction,
        conversation_id=conversation_id,
        phone=phone,
        name=name,
        agent_id=agent_id,
        agent_name=patterns.attendant_name(agent_id) or agent_name,
        text=text,
        sector=sector,
        is_private=is_private,
        is_internal=is_internal_conversation(sector, name, tags, patterns),
        is_automated=is_automated_message(text, agent_id, patterns),
        tags=tags,
        event_id=event_id,
        event_date=event_date,
    )


def normalize_chat_snapshot(
    envelope: ChatSnapshotEnvelope,
    patterns: PatternTable,
    direction_fallback: str = FALLBACK_AGENT_PRESENCE,
) -> Result[ConversationEvent]:
    if envelope.type != "Message":
        return Result.failure(f"Unsupported event type: {envelope.type}", "unsupported_event")

    payload = envelope.payload
    if payload is None or payload.type != "Chat":
        return Result.failure("Payload is not a chat snapshot", "unrecognized_envelope")

    content = payload.content
    if content is None:
        return Result.failure("Chat snapshot without content", "missing_content")

    last_message = content.last_message
    contact = content.contact

    conversation_id = _clean(content.id)
    if not conversation_id and last_message and last_message.chat:
        conversation_id = _clean(last_message.chat.id)

    member = last_message.member if last_message else None
    source = last_message.source if last_message else None
    agent_id = None
    agent_name = None

    if source == SOURCE_CONTACT:
        direction = Direction.INBOUND
    elif source == SOURCE_MEMBER:
        direction = Direction.OUTBOUND
        agent_id = _clean(member.id) if member else None
        agent_name = _clean(member.name) if member else None
    elif source == SOURCE_BOT:
        direction = Direction.OUTBOUND
        agent_id = BOT_SYSTEM_ID
    else:
        agent_id = _clean(member.id) if member else None
        agent_name = _clean(member.name) if member else None
        direction = infer_direction(agent_id, direction_fallback)
        if direction is None:
            return Result.failure(f"Unknown message source: {source}", "missing_direction")

    sector = content.sector.name if content.sector else None
    return Result.success(
        _build_event(
            direction=direction,
            conversation_id=conversation_id,
            phone=normalize_phone(contact.phone) if contact else None,
            name=_clean(contact.name) if contact else None,
            agent_id=agent_id,
            agent_name=agent_name,
            text=last_message.content if last_message else None,
            sector=sector or envelope.sector,
            is_private=bool(last_message.is_private) if last_message else False,
            tags=_tag_names(content.tags),
            event_id=envelope.event_id,
            event_date=envelope.event_date,
            patterns=patterns,
        )
    )


def normalize_flat_message(
    envelope: FlatMessageEnvelope,
    patterns: PatternTable,
    direction_fallback: str = FALLBACK_AGENT_PRESENCE,
) -> Result[ConversationEvent]:
    message = envelope.message
    if message is None:
        return Result.failure("Flat envelope without message", "missing_content")

    agent_id = _clean(message.attendant_id)
    direction = _marker_direction(message.direction, envelope.direction, envelope.type)
    if direction is None:
        direction = infer_direction(agent_id, direction_fallback)
        if direction is None:
            return Result.failure("Flat message without direction", "missing_direction")

    contact = message.from_contact
    return Result.success(
        _build_event(
            direction=direction,
            conversation_id=_clean(message.conversation_id),
            phone=normalize_phone(contact.phone) if contact else None,
            name=_clean(contact.name) if contact else None,
            agent_id=agent_id,
            agent_name=_clean(message.attendant_name),
            text=message.text,
            sector=message.sector,
            is_private=bool(message.is_private),
            tags=_tag_names(message.tags),
            event_id=envelope.event_id,
            event_date=envelope.event_date,
            patterns=patterns,
        )
    )


def normalize_event(
    raw: Any,
    patterns: PatternTable,
    direction_fallback: str = FALLBACK_AGENT_PRESENCE,
) -> Result[ConversationEvent]:
    """Dispatch on the envelope shape. Unknown shapes are dropped, never guessed."""
    if not isinstance(raw, dict):
        return Result.failure("Webhook body is not an object", "unrecognized_envelope")

    try:
        if "Payload" in raw or "Type" in raw:
            return normalize_chat_snapshot(
                ChatSnapshotEnvelope.model_validate(raw), patterns, direction_fallback
            )
        if isinstance(raw.get("message"), dict):
            return normalize_flat_message(
                FlatMessageEnvelope.model_validate(raw), patterns, direction_fallback
            )
    except ValidationError as e:
        return Result.failure(f"Invalid envelope: {e.error_count()} errors", "unrecognized_envelope")

    return Result.failure("Unrecognized webhook envelope", "unrecognized_envelope")
