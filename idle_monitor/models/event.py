from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

BOT_SYSTEM_ID = "BOT_SYSTEM"
DEFAULT_SECTOR = "Geral"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class ConversationEvent:
    """Canonical form of one chat webhook, whatever envelope it arrived in."""

    direction: Direction
    conversation_id: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    text: Optional[str] = None
    sector: str = DEFAULT_SECTOR
    is_private: bool = False
    is_internal: bool = False
    is_automated: bool = False
    tags: tuple[str, ...] = field(default_factory=tuple)
    event_id: Optional[str] = None
    event_date: Optional[str] = None

    @property
    def is_inbound(self) -> bool:
        return self.direction == Direction.INBOUND

    def conversation_key(self) -> Optional[str]:
        return self.conversation_id or self.phone
