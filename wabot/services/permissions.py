# wabot/services/permissions.py
import logging
from typing import TYPE_CHECKING, Optional

from ..utils.config import Config, normalize_number
from ..utils.timeutil import Clock, utcnow

if TYPE_CHECKING:
    from ..database.database_service import DatabaseService

logger = logging.getLogger(__name__)


class Permissions:
    """Owner/admin predicates and the persisted ban list."""

    def __init__(self, config: Config, store: "DatabaseService", messenger=None, clock: Clock = utcnow):
        self.config = config
        self.store = store
        self.messenger = messenger
        self.clock = clock
        self._banned: Optional[set] = None

    def is_owner(self, user_id: str) -> bool:
        number = normalize_number(user_id)
        return bool(number) and number == self.config.owner_number

    async def is_admin(self, user_id: str, chat_id: Optional[str] = None) -> bool:
        if self.is_owner(user_id):
            return True
        number = normalize_number(user_id)
        if number and number in self.config.admin_numbers:
            return True
        if chat_id and self.messenger and chat_id.endswith("@g.us"):
            try:
                participants = await self.messenger.group_participants(chat_id)
            except Exception as e:
                logger.warning(f"Could not load participants for {chat_id}: {e}")
                return False
            return any(normalize_number(p.id) == number and p.is_admin for p in participants)
        return False

    async def _load(self) -> set:
        if self._banned is None:
            bans = await self.store.get_collection("bans")
            self._banned = {doc["userId"] for doc in await bans.find({})}
        return self._banned

    async def is_banned(self, user_id: str) -> bool:
        return normalize_number(user_id) in await self._load()

    async def ban(self, user_id: str, by: str, reason: str = "") -> bool:
        number = normalize_number(user_id)
        if not number or self.is_owner(number):
            return False
        bans = await self.store.get_collection("bans")
        result = await bans.update_one(
            {"userId": number},
            {"$set": {"reason": reason, "bannedBy": normalize_number(by), "bannedAt": self.clock()}},
            upsert=True,
        )
        (await self._load()).add(number)
        logger.info(f"Banned {number} by {by}: {reason}")
        return result.upserted_id is not None

    async def unban(self, user_id: str) -> bool:
        number = normalize_number(user_id)
        bans = await self.store.get_collection("bans")
        removed = await bans.delete_one({"userId": number})
        (await self._load()).discard(number)
        return bool(removed)
