from idle_monitor.models.conversation import ConversationMeta, ConversationState, HistoryEntry
from idle_monitor.models.event import BOT_SYSTEM_ID, DEFAULT_SECTOR, ConversationEvent, Direction

__all__ = [
    "BOT_SYSTEM_ID",
    "DEFAULT_SECTOR",
    "ConversationEvent",
    "ConversationMeta",
    "ConversationState",
    "Direction",
    "HistoryEntry",
]
