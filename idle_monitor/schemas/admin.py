from typing import Any, Optional

from pydantic import BaseModel


class SweepResponse(BaseModel):
    success: bool
    alertsSent: int
    checked: int
    failed: int
    purged: int
    skipped: dict[str, int]


class RecentWebhook(BaseModel):
    timestamp: Optional[str] = None
    direction: str
    attendantName: Optional[str] = None
    isBot: bool
    messagePreview: Optional[str] = None


class ConversationSnapshot(BaseModel):
    key: str
    lastInboundAt: Optional[str] = None
    lastOutboundAt: Optional[str] = None
    alertedAt: Optional[str] = None
    sector: Optional[str] = None
    clientName: Optional[str] = None
    attendantId: Optional[str] = None
    attendantName: Optional[str] = None
    link: Optional[str] = None
    businessElapsedMinutes: Optional[int] = None
    webhookCount: int
    recentWebhooks: list[RecentWebhook]


class DebugResponse(BaseModel):
    success: bool
    currentTime: str
    isBusinessHours: bool
    totalConversations: int
    conversationsNeedingAlert: int
    conversations: list[ConversationSnapshot]
    stats: dict[str, Any]
    recentSkips: list[dict[str, Any]]
    skipCounts: dict[str, int]


class AlertTestRequest(BaseModel):
    clientName: str = "Cliente Teste"
    attendantName: str = "Atendente Teste"
    idleMinutes: int = 15
    sector: str = "Geral"


class AlertTestResponse(BaseModel):
    success: bool
    message: str
    target: Optional[str] = None
    channel: Optional[str] = None
    errors: list[str] = []
