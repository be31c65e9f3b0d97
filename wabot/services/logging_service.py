"""
wabot/services/logging_service.py
Mirrors important runtime events to the owner's log chat
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import hashlib
import logging
import traceback

logger = logging.getLogger(__name__)


class LogLevel(Enum):
    """Log level emojis"""
    INFO = "ℹ️"
    SUCCESS = "✅"
    WARNING = "⚠️"
    ERROR = "❌"
    CRITICAL = "🚨"
    SECURITY = "🛡️"
    PERFORMANCE = "⚡"
    DATABASE = "🗄️"
    SYSTEM = "🔧"


class ChatLogger:
    """Formats log entries as chat messages and delivers them through the Messenger"""

    def __init__(self, messenger, log_chat_id: str, clock=datetime.utcnow):
        self.messenger = messenger
        self.log_chat_id = log_chat_id
        self._clock = clock

        self.stats = {
            "logs_sent": 0,
            "logs_failed": 0,
            "logs_suppressed": 0,
            "logs_by_level": {level.name: 0 for level in LogLevel},
            "logs_by_service": {},
            "start_time": clock(),
        }

        # Rate limiting to prevent spam
        self.rate_limit = {
            "messages": [],
            "max_per_minute": 30,
            "similar_message_cache": {},
        }

    def _should_rate_limit(self, content_hash: str) -> bool:
        """Check if message should be rate limited"""
        now = self._clock()

        self.rate_limit["messages"] = [
            t for t in self.rate_limit["messages"] if (now - t).total_seconds() < 60
        ]
        if len(self.rate_limit["messages"]) >= self.rate_limit["max_per_minute"]:
            return True

        last_sent = self.rate_limit["similar_message_cache"].get(content_hash)
        if last_sent and (now - last_sent).total_seconds() < 10:
            return True

        self.rate_limit["messages"].append(now)
        self.rate_limit["similar_message_cache"][content_hash] = now
        if len(self.rate_limit["similar_message_cache"]) > 500:
            cutoff = [k for k, t in self.rate_limit["similar_message_cache"].items() if (now - t).total_seconds() >= 10]
            for k in cutoff:
                del self.rate_limit["similar_message_cache"][k]
        return False

    def _format(self, service: str, title: str, description: str, level: LogLevel,
                fields: Optional[Dict[str, Any]] = None) -> str:
        lines = [f"{level.value} *{title}*", f"_{service}_", ""]
        if description:
            lines.append(description)
        for name, value in (fields or {}).items():
            lines.append(f"• *{name}:* {value}")
        lines.append("")
        lines.append(self._clock().strftime("%Y-%m-%d %H:%M:%S UTC"))
        return "\n".join(lines)

    async def _safe_send(self, text: str, content_hash: str) -> bool:
        if not self.log_chat_id or self.messenger is None:
            return False
        if self._should_rate_limit(content_hash):
            self.stats["logs_suppressed"] += 1
            logger.debug("Rate limiting chat log message")
            return False
        try:
            await self.messenger.send_text(self.log_chat_id, text)
            self.stats["logs_sent"] += 1
            return True
        except Exception as e:
            logger.debug(f"Failed to send chat log: {e}")
            self.stats["logs_failed"] += 1
            return False

    async def log_custom(self, service: str, title: str, description: str = "",
                         level: LogLevel = LogLevel.INFO, fields: Optional[Dict[str, Any]] = None) -> bool:
        self.stats["logs_by_level"][level.name] += 1
        self.stats["logs_by_service"][service] = self.stats["logs_by_service"].get(service, 0) + 1
        text = self._format(service, title, description, level, fields)
        content_hash = hashlib.sha1(f"{service}|{title}|{description}".encode()).hexdigest()
        return await self._safe_send(text, content_hash)

    async def log_error(self, service: str, error: BaseException, context: str = "") -> bool:
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        fields = {
            "Error Type": type(error).__name__,
            "Error": str(error)[:500] or "-",
        }
        if context:
            fields["Context"] = context[:300]
        if tb and error.__traceback__ is not None:
            fields["Traceback"] = "```" + tb[-800:] + "```"
        return await self.log_custom(service, "Error", "", LogLevel.ERROR, fields)

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        stats["uptime_seconds"] = (self._clock() - self.stats["start_time"]).total_seconds()
        return stats
