"""
wabot/database/__init__.py
Store construction for the host
"""

from ..utils.config import Config
from .collection import Collection, UpdateResult
from .database_service import DatabaseService


async def create_store(config: Config, chat_logger=None) -> DatabaseService:
    """Build the MongoDB store and wait until it answers."""
    service = DatabaseService(config)
    if chat_logger:
        service.set_logger(chat_logger)
    await service.initialize()
    return service


__all__ = ["Collection", "DatabaseService", "UpdateResult", "create_store"]
