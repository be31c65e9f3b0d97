# wabot/database/models/autoposter.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

DEFAULT_TEMPLATE = "🔁 *New tweet from {author}*\n\n{text}\n\n🔗 {url}"
DEFAULT_INTERVAL_MINUTES = 60


@dataclass
class AutoPostAccount:
    username: str
    targetChatId: str
    intervalMinutes: int = DEFAULT_INTERVAL_MINUTES
    template: str = DEFAULT_TEMPLATE
    bearerToken: Optional[str] = None
    userId: Optional[str] = None
    lastRunAt: Optional[datetime] = None
    lastPostedId: Optional[str] = None
    enabled: bool = True
    webhookSecret: Optional[str] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "AutoPostAccount":
        return cls(
            username=doc["username"],
            targetChatId=doc.get("targetChatId") or doc.get("groupJid") or "",
            intervalMinutes=int(doc.get("intervalMinutes") or doc.get("interval") or DEFAULT_INTERVAL_MINUTES),
            template=doc.get("template") or doc.get("messageTemplate") or DEFAULT_TEMPLATE,
            bearerToken=doc.get("bearerToken"),
            userId=doc.get("userId"),
            lastRunAt=doc.get("lastRunAt"),
            lastPostedId=doc.get("lastPostedId") or doc.get("lastTweetId"),
            enabled=doc.get("enabled", True) is not False,
            webhookSecret=doc.get("webhookSecret"),
            createdAt=doc.get("createdAt"),
        )

    def to_doc(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "targetChatId": self.targetChatId,
            "intervalMinutes": self.intervalMinutes,
            "template": self.template,
            "bearerToken": self.bearerToken,
            "userId": self.userId,
            "lastRunAt": self.lastRunAt,
            "lastPostedId": self.lastPostedId,
            "enabled": self.enabled,
            "webhookSecret": self.webhookSecret,
            "createdAt": self.createdAt,
        }

    def public_view(self) -> Dict[str, Any]:
        """Account fields safe to return over the webhook surface."""
        return {
            "username": self.username,
            "targetChatId": self.targetChatId,
            "intervalMinutes": self.intervalMinutes,
            "enabled": self.enabled,
            "template": self.template,
            "lastRunAt": self.lastRunAt.isoformat() if self.lastRunAt else None,
            "lastPostedId": self.lastPostedId,
            "createdAt": self.createdAt.isoformat() if self.createdAt else None,
        }
