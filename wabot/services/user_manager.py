"""
wabot/services/user_manager.py
Authoritative wallet ledger and user-state manager shared by every plugin
"""

import asyncio
import logging
import math
import weakref
from datetime import datetime, timedelta
from fractions import Fraction
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..database.models import ActiveEffect, EffectKind, Transaction, UserProfile, active_effects
from ..errors import BotError, InvalidAmount, InvalidInput, InsufficientFunds, StoreUnavailable
from ..utils.config import Config
from ..utils.timeutil import Clock, utcnow

if TYPE_CHECKING:
    from ..database.database_service import DatabaseService

logger = logging.getLogger(__name__)

_PROTECTED_FIELDS = ("balance", "wallet", "bank", "userId", "_id")
_CAS_ATTEMPTS = 5


def _check_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)
    return amount


class UserManager:
    """
    Every wallet movement goes through here. Updates are serialized per user with an
    asyncio lock and written as compare-and-set on the previous balance, so two
    concurrent debits can never both succeed when only one is covered.
    """

    def __init__(self, store: "DatabaseService", config: Config, clock: Clock = utcnow):
        self.store = store
        self.config = config
        self.clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self.stats = {"credits": 0, "debits": 0, "rejected_debits": 0, "cas_retries": 0}

    def lock_for(self, user_id: str) -> asyncio.Lock:
        """Per-key lock; dropped once no coroutine holds or waits on it."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _users(self):
        return await self.store.get_collection("users")

    async def _transactions(self):
        return await self.store.get_collection("transactions")

    # ---------- profile ----------

    async def init_user(self, user_id: str) -> Dict[str, Any]:
        """Create the profile if it does not exist yet; safe to call repeatedly."""
        if not user_id:
            raise InvalidInput("❌ Missing user id")
        users = await self._users()
        doc = await users.find_one({"userId": user_id})
        if doc is not None:
            return await self._migrate(doc)
        seed = UserProfile.new(user_id, self.config.starting_balance, self.clock()).to_doc()
        seed.pop("userId")
        await users.update_one({"userId": user_id}, {"$setOnInsert": seed}, upsert=True)
        logger.info(f"Initialized user {user_id}")
        return await users.find_one({"userId": user_id})

    async def _migrate(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Rewrite legacy wallet documents in place the first time they are read."""
        if "balance" in doc:
            return doc
        users = await self._users()
        balance = int(doc.get("wallet") or 0)
        await users.update_one(
            {"userId": doc["userId"], "balance": {"$exists": False}},
            {"$set": {"balance": balance}, "$unset": {"wallet": ""}},
        )
        logger.info(f"Migrated legacy wallet for {doc['userId']}")
        return await users.find_one({"userId": doc["userId"]})

    async def get_user_data(self, user_id: str) -> UserProfile:
        return UserProfile.from_doc(await self.init_user(user_id))

    async def update_user_data(self, user_id: str, patch: Dict[str, Any]) -> UserProfile:
        """Shallow merge using dot paths. Money fields can only change through the ledger."""
        if not patch:
            return await self.get_user_data(user_id)
        bad = [k for k in patch if k.split(".", 1)[0] in _PROTECTED_FIELDS]
        if bad:
            raise InvalidInput(f"❌ Cannot update protected field(s): {', '.join(bad)}")
        await self.init_user(user_id)
        users = await self._users()
        update = dict(patch)
        update["updatedAt"] = self.clock()
        await users.update_one({"userId": user_id}, {"$set": update})
        return await self.get_user_data(user_id)

    # ---------- money ----------

    async def get_money(self, user_id: str) -> int:
        doc = await self.init_user(user_id)
        return int(doc.get("balance") or 0)

    async def get_balance(self, user_id: str) -> Tuple[int, int]:
        doc = await self.init_user(user_id)
        return int(doc.get("balance") or 0), int(doc.get("bank") or 0)

    def credit_multiplier(self, effects: List[ActiveEffect], reason: str, now: datetime) -> Fraction:
        multiplier = Fraction(1)
        for effect in active_effects(effects, now):
            if effect.kind.applies_to(reason):
                multiplier *= Fraction(str(effect.kind.multiplier))
        return multiplier

    async def _move(self, user_id: str, wallet_delta: int, bank_delta: int = 0) -> Optional[Tuple[int, int]]:
        """
        Compare-and-set the wallet and bank. Returns (before, after) for the wallet,
        or None when the move would take either below zero.
        """
        users = await self._users()
        for attempt in range(_CAS_ATTEMPTS):
            doc = await self.init_user(user_id)
            balance = int(doc.get("balance") or 0)
            bank = int(doc.get("bank") or 0)
            if balance + wallet_delta < 0 or bank + bank_delta < 0:
                return None
            flt = {"userId": user_id, "balance": doc.get("balance"), "bank": doc.get("bank", None)}
            update = {"$set": {"balance": balance + wallet_delta, "bank": bank + bank_delta, "updatedAt": self.clock()}}
            result = await users.update_one(flt, update)
            if result.matched_count:
                return balance, balance + wallet_delta
            self.stats["cas_retries"] += 1
            logger.debug(f"Balance changed underneath update for {user_id} (attempt {attempt + 1})")
        raise StoreUnavailable(f"Could not update balance for {user_id} after {_CAS_ATTEMPTS} attempts")

    async def _log(self, user_id: str, kind: str, amount: int, reason: str, before: int, after: int,
                   base_amount: Optional[int] = None) -> None:
        tx = Transaction(
            userId=user_id,
            type=kind,
            amount=amount,
            reason=reason,
            balanceBefore=before,
            balanceAfter=after,
            timestamp=self.clock(),
            baseAmount=base_amount,
        )
        transactions = await self._transactions()
        await transactions.insert_one(tx.to_doc())

    async def add_money(self, user_id: str, amount: int, reason: str = "", *, apply_effects: bool = True) -> int:
        """Credit the wallet, applying active multipliers. Returns the new balance."""
        _check_amount(amount)
        async with self.lock_for(user_id):
            credited = amount
            if apply_effects:
                profile = await self.get_user_data(user_id)
                multiplier = self.credit_multiplier(profile.activeEffects, reason, self.clock())
                credited = math.floor(amount * multiplier)
            before, after = await self._move(user_id, credited)
            await self._log(user_id, "credit", credited, reason, before, after, base_amount=amount)
        self.stats["credits"] += 1
        logger.debug(f"Credited {credited} to {user_id} ({reason}); balance {after}")
        return after

    async def remove_money(self, user_id: str, amount: int, reason: str = "") -> bool:
        """Debit the wallet. Returns False, without writing anything, when funds are short."""
        _check_amount(amount)
        async with self.lock_for(user_id):
            moved = await self._move(user_id, -amount)
            if moved is None:
                self.stats["rejected_debits"] += 1
                return False
            before, after = moved
            await self._log(user_id, "debit", amount, reason, before, after)
        self.stats["debits"] += 1
        logger.debug(f"Debited {amount} from {user_id} ({reason}); balance {after}")
        return True

    async def charge(self, user_id: str, amount: int, reason: str = "") -> int:
        """remove_money that raises InsufficientFunds with the exact shortfall."""
        if not await self.remove_money(user_id, amount, reason):
            raise InsufficientFunds(amount, await self.get_money(user_id), self.config.currency_symbol)
        return await self.get_money(user_id)

    async def deposit(self, user_id: str, amount: int) -> Tuple[int, int]:
        _check_amount(amount)
        async with self.lock_for(user_id):
            moved = await self._move(user_id, -amount, amount)
            if moved is None:
                raise InsufficientFunds(amount, await self.get_money(user_id), self.config.currency_symbol)
            await self._log(user_id, "debit", amount, "Bank deposit", *moved)
        return await self.get_balance(user_id)

    async def withdraw(self, user_id: str, amount: int) -> Tuple[int, int]:
        _check_amount(amount)
        async with self.lock_for(user_id):
            moved = await self._move(user_id, amount, -amount)
            if moved is None:
                _, bank = await self.get_balance(user_id)
                raise InsufficientFunds(amount, bank, self.config.currency_symbol)
            await self._log(user_id, "credit", amount, "Bank withdrawal", *moved)
        return await self.get_balance(user_id)

    async def transfer(self, from_user: str, to_user: str, amount: int, reason: str = "Transfer") -> bool:
        _check_amount(amount)
        if from_user == to_user:
            raise InvalidInput("❌ You cannot send money to yourself")
        if not await self.remove_money(from_user, amount, f"{reason} to {to_user}"):
            return False
        await self.add_money(to_user, amount, f"{reason} from {from_user}", apply_effects=False)
        return True

    async def get_transactions(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        transactions = await self._transactions()
        return await transactions.find({"userId": user_id}, sort=[("timestamp", -1)], limit=limit)

    async def leaderboard(self, limit: int = 10, by: str = "balance") -> List[Dict[str, Any]]:
        by = by if by in ("balance", "bank", "streak", "totalAttendances") else "balance"
        users = await self._users()
        return await users.find({}, sort=[(by, -1)], limit=limit)

    # ---------- effects ----------

    async def grant_effect(self, user_id: str, kind: EffectKind, duration: timedelta) -> ActiveEffect:
        now = self.clock()
        async with self.lock_for(user_id):
            profile = await self.get_user_data(user_id)
            current = [e for e in active_effects(profile.activeEffects, now) if e.kind is not kind]
            existing = next((e for e in profile.activeEffects if e.kind is kind and e.active(now)), None)
            start = existing.expiresAt if existing else now
            effect = ActiveEffect(kind=kind, expiresAt=start + duration, grantedAt=now)
            current.append(effect)
            users = await self._users()
            await users.update_one(
                {"userId": user_id},
                {"$set": {"activeEffects": [e.to_doc() for e in current], "updatedAt": now}},
            )
        return effect

    async def sweep_expired_effects(self, now: Optional[datetime] = None) -> int:
        """Drop expired effects from every profile. Returns how many profiles changed."""
        now = now or self.clock()
        users = await self._users()
        changed = 0
        for doc in await users.find({"activeEffects.expiresAt": {"$lte": now}}):
            user_id = doc["userId"]
            try:
                async with self.lock_for(user_id):
                    result = await users.update_one(
                        {"userId": user_id},
                        {"$pull": {"activeEffects": {"expiresAt": {"$lte": now}}}},
                    )
                changed += result.modified_count
            except BotError as e:
                logger.error(f"Failed to sweep effects for {user_id}: {e}")
        if changed:
            logger.info(f"Swept expired effects from {changed} profile(s)")
        return changed
