"""
wabot/services/__init__.py
Runtime services shared by every plugin
"""

from .command_router import CommandRouter
from .logging_service import ChatLogger, LogLevel
from .plugin_registry import PluginRegistry
from .rate_limiter import RateLimiter
from .scheduler import Scheduler
from .selection_context import SelectionContext
from .user_manager import UserManager

__all__ = [
    "ChatLogger",
    "CommandRouter",
    "LogLevel",
    "PluginRegistry",
    "RateLimiter",
    "Scheduler",
    "SelectionContext",
    "UserManager",
]
