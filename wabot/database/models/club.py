# wabot/database/models/club.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class Club:
    userId: str
    name: str
    balance: int = 0
    reputation: int = 50
    equipment: List[Dict[str, Any]] = field(default_factory=list)
    staff: List[Dict[str, Any]] = field(default_factory=list)
    upgrades: List[Dict[str, Any]] = field(default_factory=list)
    licenses: List[Dict[str, Any]] = field(default_factory=list)
    violations: List[Dict[str, Any]] = field(default_factory=list)
    expenses: List[Dict[str, Any]] = field(default_factory=list)
    notifications: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    totalRevenue: int = 0
    weeklyRevenue: int = 0
    weeklyEvents: int = 0
    isActive: bool = True
    bankruptcyRisk: bool = False
    shutdownReason: Optional[str] = None
    lastEventAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Club":
        data = {k: v for k, v in doc.items() if k in cls.__dataclass_fields__}
        for key in ("equipment", "staff", "upgrades", "licenses", "violations", "expenses", "notifications", "events"):
            data[key] = list(data.get(key) or [])
        data["balance"] = int(data.get("balance") or 0)
        return cls(**data)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)

    def working_equipment(self) -> List[Dict[str, Any]]:
        return [e for e in self.equipment if not e.get("broken")]

    def has_license(self, kind: str, now: datetime) -> bool:
        return any(
            lic.get("type") == kind and lic.get("active") and (lic.get("expiresAt") is None or lic["expiresAt"] > now)
            for lic in self.licenses
        )
