"""
wabot/plugins/base.py
Plugin contract and the context objects handed to commands and scheduled tasks
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..errors import InvalidAmount, InvalidInput

_INT_RE = re.compile(r"^[+]?\d[\d,_]*$")


@dataclass
class TaskSpec:
    name: str
    cron: str
    handler: Callable[["TaskContext"], Awaitable[Any]]
    description: str = ""


class Helpers:
    """Shared host components exposed to plugins."""

    def __init__(self, bot):
        self.bot = bot
        self.config = bot.config
        self.users = bot.users
        self.selections = bot.selections
        self.permissions = bot.permissions

    def now(self) -> datetime:
        return self.bot.clock()

    def money(self, amount: int) -> str:
        return f"{self.config.currency_symbol}{int(amount):,}"

    def parse_int(self, text: Optional[str], what: str = "value") -> int:
        if text is None or not _INT_RE.match(text.strip()):
            raise InvalidInput(f"⚠️ {what} must be a whole number")
        return int(text.strip().lstrip("+").replace(",", "").replace("_", ""))

    def parse_amount(self, text: Optional[str]) -> int:
        """Currency amounts are positive integers; commas are accepted."""
        if text is None or not _INT_RE.match(text.strip()):
            raise InvalidAmount(text)
        value = int(text.strip().lstrip("+").replace(",", "").replace("_", ""))
        if value <= 0:
            raise InvalidAmount(text)
        return value

    def is_owner(self, user_id: str) -> bool:
        return self.permissions.is_owner(user_id)

    async def is_admin(self, user_id: str, chat_id: Optional[str] = None) -> bool:
        return await self.permissions.is_admin(user_id, chat_id)

    def target_user(self, msg, args: Sequence[str]) -> Optional[str]:
        """First mention, else a phone-number argument, as a user jid."""
        if msg.mentions:
            return msg.mentions[0]
        for arg in args:
            digits = re.sub(r"[^\d]", "", arg)
            if arg.startswith("@") and len(digits) >= 7:
                return f"{digits}@s.whatsapp.net"
        return None


@dataclass
class PluginContext:
    msg: Any
    args: List[str]
    text: str
    command: str
    invoked_with: str
    sock: Any
    db: Any
    config: Any
    bot: Any
    logger: logging.Logger
    helpers: Helpers

    @property
    def sender(self) -> str:
        return self.msg.sender

    @property
    def chat_id(self) -> str:
        return self.msg.chat_id

    async def reply(self, text: str, mentions: Optional[List[str]] = None) -> str:
        return await self.sock.send_text(self.msg.chat_id, text, quoted=self.msg.id, mentions=mentions)

    async def react(self, emoji: str) -> None:
        await self.sock.react(self.msg.chat_id, self.msg.id, emoji)

    async def menu(self, text: str, type: str, options: List[Any], handler, **data) -> str:
        """Send a numbered menu and remember it so a quoted number picks an option."""
        message_id = await self.reply(text)
        self.helpers.selections.store(
            message_id, type, options, handler, chat_id=self.chat_id, user_id=self.sender, **data
        )
        return message_id


@dataclass
class TaskContext:
    db: Any
    sock: Any
    config: Any
    bot: Any
    logger: logging.Logger
    helpers: Helpers
    task_key: str = ""
    now: Optional[datetime] = None

    async def send(self, chat_id: str, text: str, mentions: Optional[List[str]] = None) -> str:
        return await self.sock.send_text(chat_id, text, mentions=mentions)


class Plugin:
    """
    Base class for feature plugins. Subclasses set the metadata attributes, implement
    `run`, and optionally `on_text` (when `wants_text` is set) and `scheduled_tasks`.
    """

    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    category: str = "general"
    commands: Sequence[str] = ()
    aliases: Dict[str, str] = {}
    owner_only: bool = False
    wants_text: bool = False

    def __init__(self, bot):
        self.bot = bot
        self.logger = logging.getLogger(f"wabot.plugins.{self.name}")

    @property
    def chat_logger(self):
        return getattr(self.bot, "chat_logger", None)

    def scheduled_tasks(self) -> List[TaskSpec]:
        return []

    async def setup(self) -> None:
        """Called once after registration, before the scheduler starts."""

    async def run(self, ctx: PluginContext) -> None:
        raise NotImplementedError

    async def on_text(self, ctx: PluginContext) -> bool:
        """Free-text hook; return True to consume the message."""
        return False

    def usage(self, prefix: str) -> str:
        return ", ".join(f"{prefix}{c}" for c in self.commands)
