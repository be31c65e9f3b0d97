"""
wabot/services/selection_context.py
Pending numbered menus keyed by the id of the message that showed them
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..utils.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)

SelectionHandler = Callable[[int, Any], Awaitable[None]]


@dataclass
class Selection:
    message_id: str
    type: str
    options: List[Any]
    handler: SelectionHandler
    created_at: datetime
    chat_id: Optional[str] = None
    user_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class SelectionContext:
    def __init__(self, ttl_sec: int = 1800, clock: Clock = utcnow):
        self.ttl = timedelta(seconds=ttl_sec)
        self._clock = clock
        self._entries: Dict[str, Selection] = {}

    def store(self, message_id: str, type: str, options: List[Any], handler: SelectionHandler,
              *, chat_id: Optional[str] = None, user_id: Optional[str] = None, **data) -> Selection:
        if not options:
            raise ValueError("A selection needs at least one option")
        self._purge()
        entry = Selection(
            message_id=message_id,
            type=type,
            options=list(options),
            handler=handler,
            created_at=self._clock(),
            chat_id=chat_id,
            user_id=user_id,
            data=data,
        )
        self._entries[message_id] = entry
        return entry

    def _expired(self, entry: Selection, now: datetime) -> bool:
        return now - entry.created_at >= self.ttl

    def lookup(self, message_id: Optional[str]) -> Optional[Selection]:
        """Return the live entry for a message id; expired entries are dropped."""
        if not message_id:
            return None
        entry = self._entries.get(message_id)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            del self._entries[message_id]
            return None
        return entry

    def remove(self, message_id: str) -> None:
        self._entries.pop(message_id, None)

    def _purge(self) -> int:
        now = self._clock()
        stale = [k for k, v in self._entries.items() if self._expired(v, now)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Purged {len(stale)} expired selection(s)")
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
