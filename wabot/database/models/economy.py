# wabot/database/models/economy.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class EffectKind(str, Enum):
    """Timed credit multipliers a user can hold."""

    VIP_BONUS = "vip_bonus"
    WORK_BOOST = "work_boost"
    DAILY_BOOST = "daily_boost"

    @property
    def multiplier(self) -> float:
        return {"vip_bonus": 1.25, "work_boost": 2.0, "daily_boost": 1.5}[self.value]

    def applies_to(self, reason: str) -> bool:
        reason = (reason or "").lower()
        if self is EffectKind.WORK_BOOST:
            return "work" in reason
        if self is EffectKind.DAILY_BOOST:
            return "daily" in reason
        return True


# Legacy documents stored effects as {"vipBonus": <expiry>, ...}
_LEGACY_KEYS = {"vipBonus": EffectKind.VIP_BONUS, "workBoost": EffectKind.WORK_BOOST, "dailyBoost": EffectKind.DAILY_BOOST}


@dataclass
class ActiveEffect:
    kind: EffectKind
    expiresAt: datetime
    grantedAt: Optional[datetime] = None

    def active(self, now: datetime) -> bool:
        return self.expiresAt > now

    def to_doc(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "expiresAt": self.expiresAt, "grantedAt": self.grantedAt}

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> Optional["ActiveEffect"]:
        try:
            kind = EffectKind(doc["kind"])
        except (KeyError, ValueError):
            return None
        expires = doc.get("expiresAt")
        if not isinstance(expires, datetime):
            return None
        return cls(kind=kind, expiresAt=expires, grantedAt=doc.get("grantedAt"))

    @classmethod
    def list_from_docs(cls, raw: Any) -> List["ActiveEffect"]:
        if isinstance(raw, dict):
            raw = [
                {"kind": _LEGACY_KEYS[k].value, "expiresAt": v}
                for k, v in raw.items()
                if k in _LEGACY_KEYS
            ]
        out = []
        for item in raw or []:
            effect = cls.from_doc(item) if isinstance(item, dict) else None
            if effect is not None:
                out.append(effect)
        return out


def active_effects(effects: Iterable[ActiveEffect], now: datetime) -> List[ActiveEffect]:
    return [e for e in effects if e.active(now)]


@dataclass
class Transaction:
    userId: str
    type: str  # 'credit' | 'debit'
    amount: int
    reason: str
    balanceBefore: int
    balanceAfter: int
    timestamp: datetime
    baseAmount: Optional[int] = None

    def to_doc(self) -> Dict[str, Any]:
        doc = {
            "userId": self.userId,
            "type": self.type,
            "amount": self.amount,
            "reason": self.reason,
            "balanceBefore": self.balanceBefore,
            "balanceAfter": self.balanceAfter,
            "timestamp": self.timestamp,
        }
        if self.baseAmount is not None and self.baseAmount != self.amount:
            doc["baseAmount"] = self.baseAmount
        return doc
