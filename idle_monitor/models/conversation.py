from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from idle_monitor.models.event import DEFAULT_SECTOR, Direction


@dataclass
class HistoryEntry:
    timestamp: datetime
    direction: Direction
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    excerpt: Optional[str] = None
    is_automated: bool = False


@dataclass
class ConversationMeta:
    conversation_id: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    sector: str = DEFAULT_SECTOR
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    link: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    last_excerpt: Optional[str] = None


@dataclass
class ConversationState:
    key: str
    created_at: datetime
    last_activity_at: datetime
    last_inbound_at: Optional[datetime] = None
    last_outbound_at: Optional[datetime] = None
    alerted_at: Optional[datetime] = None
    meta: ConversationMeta = field(default_factory=ConversationMeta)
    history: list[HistoryEntry] = field(default_factory=list)

    def is_alerted_for_current_wait(self) -> bool:
        return (
            self.alerted_at is not None
            and self.last_inbound_at is not None
            and self.alerted_at >= self.last_inbound_at
        )
