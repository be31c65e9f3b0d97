# wabot/database/models/township.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class TownshipPlayer:
    """
    One player's town. Farms and factories are keyed by a short id such as
    "farm-1"; each holds its own slots. Other structures are counted per kind.
    Coins live in the shared wallet, not here.
    """

    userId: str
    level: int = 1
    experience: int = 0
    energy: int = 100
    maxEnergy: int = 100
    buildings: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    farms: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    factories: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    inventory: Dict[str, int] = field(default_factory=dict)
    nextId: int = 1
    completedDailyBonus: bool = False
    lastBonusDate: Optional[str] = None
    lastActiveAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "TownshipPlayer":
        data = {k: v for k, v in doc.items() if k in cls.__dataclass_fields__}
        for key in ("buildings", "farms", "factories", "inventory"):
            data[key] = dict(data.get(key) or {})
        return cls(**data)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)

    def new_id(self, kind: str) -> str:
        key = f"{kind}-{self.nextId}"
        self.nextId += 1
        return key

    def count(self, kind: str) -> int:
        return (
            len(self.buildings.get(kind, []))
            + sum(1 for f in self.farms.values() if f.get("type") == kind)
            + sum(1 for f in self.factories.values() if f.get("type") == kind)
        )

    def add_items(self, items: Dict[str, int]) -> None:
        for kind, amount in items.items():
            self.inventory[kind] = int(self.inventory.get(kind, 0)) + int(amount)

    def take_item(self, kind: str, amount: int) -> None:
        left = int(self.inventory.get(kind, 0)) - amount
        if left > 0:
            self.inventory[kind] = left
        else:
            self.inventory.pop(kind, None)
