from typing import Iterable, Optional

from idle_monitor.models import BOT_SYSTEM_ID, ConversationState, Direction, HistoryEntry
from idle_monitor.services.patterns import PatternTable

ATTENDANCE_HUMAN = "human"
ATTENDANCE_REPLY = "reply"


def is_automated_message(text: Optional[str], agent_id: Optional[str], patterns: PatternTable) -> bool:
    """Bot sender, or a body that looks like a canned greeting/menu/notice."""
    if agent_id == BOT_SYSTEM_ID:
        return True
    if not text:
        return False
    return any(pattern.search(text) for pattern in patterns.bot_patterns)


def is_internal_conversation(
    sector: Optional[str],
    name: Optional[str],
    tags: Iterable[str],
    patterns: PatternTable,
) -> bool:
    sector_name = (sector or "").lower()
    contact_name = (name or "").lower()
    tag_names = [(tag or "").lower() for tag in tags]

    for keyword in patterns.internal_keywords:
        if keyword in sector_name or keyword in contact_name:
            return True
        if any(keyword in tag for tag in tag_names):
            return True

    return any(emoji in sector_name or emoji in contact_name for emoji in patterns.internal_emojis)


def is_conversation_ender(text: Optional[str], patterns: PatternTable) -> bool:
    """Whole-message closing acknowledgement ("ok", "obrigada", a thumbs-up)."""
    if not text:
        return False
    trimmed = text.strip()
    if not trimmed:
        return False
    return any(pattern.search(trimmed) for pattern in patterns.ender_patterns)


def has_human_reply(history: Iterable[HistoryEntry], manager_ids: Iterable[str] = ()) -> bool:
    """True if a first-line human agent has replied at least once.

    Automated sends, the bot sender and manager replies do not count.
    """
    managers = set(manager_ids)
    for entry in history:
        if entry.direction != Direction.OUTBOUND or entry.is_automated:
            continue
        if not entry.agent_id or entry.agent_id == BOT_SYSTEM_ID:
            continue
        if entry.agent_id in managers:
            continue
        return True
    return False


def is_attended(state: ConversationState, mode: str = ATTENDANCE_HUMAN, manager_ids: Iterable[str] = ()) -> bool:
    if mode == ATTENDANCE_REPLY:
        return (
            state.last_outbound_at is not None
            and state.last_inbound_at is not None
            and state.last_outbound_at >= state.last_inbound_at
        )
    return has_human_reply(state.history, manager_ids)
