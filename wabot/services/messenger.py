# wabot/services/messenger.py
"""Transport capability consumed by plugins; concrete transports live outside the repo."""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IncomingMessage:
    id: str
    chat_id: str
    sender: str
    body: str = ""
    is_group: bool = True
    quoted_id: Optional[str] = None
    has_media: bool = False
    media_type: Optional[str] = None  # 'image' | 'video' | 'document' | ...
    push_name: Optional[str] = None
    mentions: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def has_image(self) -> bool:
        return self.has_media and (self.media_type or "").startswith("image")


@dataclass
class Participant:
    id: str
    admin: Optional[str] = None  # None | 'admin' | 'superadmin'

    @property
    def is_admin(self) -> bool:
        return self.admin in ("admin", "superadmin")


class Messenger(ABC):
    """Everything plugins may do to the chat network."""

    @abstractmethod
    async def send_text(
        self, chat_id: str, text: str, *, quoted: Optional[str] = None, mentions: Optional[List[str]] = None
    ) -> str:
        """Send text and return the id of the sent message."""

    @abstractmethod
    async def send_media(
        self,
        chat_id: str,
        kind: str,
        data: bytes,
        *,
        caption: Optional[str] = None,
        mimetype: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> str:
        """Send image/video/document bytes."""

    @abstractmethod
    async def react(self, chat_id: str, message_id: str, emoji: str) -> None:
        ...

    @abstractmethod
    async def group_participants(self, chat_id: str) -> List[Participant]:
        ...

    async def close(self) -> None:
        pass


class ConsoleMessenger(Messenger):
    """Local transport that writes outgoing traffic to the log."""

    def __init__(self):
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return f"console-{next(self._ids)}"

    async def send_text(self, chat_id, text, *, quoted=None, mentions=None) -> str:
        mid = self._next_id()
        logger.info(f"[send {mid}] -> {chat_id}: {text}")
        return mid

    async def send_media(self, chat_id, kind, data, *, caption=None, mimetype=None, filename=None) -> str:
        mid = self._next_id()
        logger.info(f"[send {mid}] -> {chat_id}: <{kind} {len(data)} bytes> {caption or ''}")
        return mid

    async def react(self, chat_id, message_id, emoji) -> None:
        logger.info(f"[react] {chat_id}/{message_id}: {emoji}")

    async def group_participants(self, chat_id) -> List[Participant]:
        return []
