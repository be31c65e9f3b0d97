# wabot/database/models/user.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .economy import ActiveEffect

# Older documents used these names for the same fields.
_LEGACY_FIELDS = {"wallet": "balance", "lastAttendanceDate": "lastAttendance"}


@dataclass
class UserProfile:
    userId: str
    balance: int = 0
    bank: int = 0
    inventory: List[Dict[str, Any]] = field(default_factory=list)
    clan: Optional[str] = None
    bounty: int = 0
    rank: str = "Newbie"
    lastAttendance: Optional[str] = None
    totalAttendances: int = 0
    streak: int = 0
    longestStreak: int = 0
    dailyStreak: int = 0
    birthdayData: Optional[Dict[str, Any]] = None
    lastDaily: Optional[datetime] = None
    lastWork: Optional[datetime] = None
    lastRob: Optional[datetime] = None
    activeEffects: List[ActiveEffect] = field(default_factory=list)
    profile: Dict[str, Any] = field(default_factory=dict)
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def new(cls, user_id: str, starting_balance: int, now: datetime) -> "UserProfile":
        return cls(userId=user_id, balance=int(starting_balance), createdAt=now, updatedAt=now)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "UserProfile":
        data = dict(doc)
        for old, new in _LEGACY_FIELDS.items():
            if old in data and new not in data:
                data[new] = data.pop(old)
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["balance"] = int(known.get("balance") or 0)
        known["bank"] = int(known.get("bank") or 0)
        known["activeEffects"] = ActiveEffect.list_from_docs(data.get("activeEffects"))
        return cls(**known)

    def to_doc(self) -> Dict[str, Any]:
        doc = asdict(self)
        doc["activeEffects"] = [e.to_doc() for e in self.activeEffects]
        return doc
