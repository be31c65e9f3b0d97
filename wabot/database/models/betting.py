# wabot/database/models/betting.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

UPCOMING = "upcoming"
COMPLETED = "completed"

PENDING = "pending"
WON = "won"
LOST = "lost"


@dataclass
class Fixture:
    matchId: int
    league: str
    homeTeam: str
    awayTeam: str
    homeStrength: int
    awayStrength: int
    homeForm: int
    awayForm: int
    odds: Dict[str, float]
    kickoff: datetime
    status: str = UPCOMING
    result: Optional[Dict[str, Any]] = None
    createdAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Fixture":
        data = {k: v for k, v in doc.items() if k in cls.__dataclass_fields__}
        # legacy fixtures carried 'matchTime' instead of 'kickoff'
        if "kickoff" not in data and "matchTime" in doc:
            data["kickoff"] = doc["matchTime"]
        data.setdefault("homeForm", data.get("homeStrength", 50))
        data.setdefault("awayForm", data.get("awayStrength", 50))
        return cls(**data)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Selection:
    matchId: int
    market: str
    odds: float
    homeTeam: str = ""
    awayTeam: str = ""
    addedAt: Optional[datetime] = None
    won: Optional[bool] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Selection":
        return cls(
            matchId=int(doc["matchId"]),
            market=str(doc.get("market") or doc.get("betType")).upper(),
            odds=float(doc["odds"]),
            homeTeam=doc.get("homeTeam", ""),
            awayTeam=doc.get("awayTeam", ""),
            addedAt=doc.get("addedAt"),
            won=doc.get("won"),
        )

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BetSlip:
    userId: str
    selections: List[Selection] = field(default_factory=list)
    stake: int = 0
    shareCode: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]], user_id: str) -> "BetSlip":
        if not doc:
            return cls(userId=user_id)
        return cls(
            userId=doc.get("userId", user_id),
            selections=[Selection.from_doc(s) for s in doc.get("selections") or []],
            stake=int(doc.get("stake") or 0),
            shareCode=doc.get("shareCode"),
            createdAt=doc.get("createdAt"),
            updatedAt=doc.get("updatedAt"),
        )

    def to_doc(self) -> Dict[str, Any]:
        return {
            "userId": self.userId,
            "selections": [s.to_doc() for s in self.selections],
            "stake": self.stake,
            "shareCode": self.shareCode,
            "createdAt": self.createdAt,
            "updatedAt": self.updatedAt,
        }

    def put(self, selection: Selection) -> bool:
        """Add a selection, replacing one on the same fixture. Returns True if it replaced."""
        for i, existing in enumerate(self.selections):
            if existing.matchId == selection.matchId:
                self.selections[i] = selection
                return True
        self.selections.append(selection)
        return False


@dataclass
class BetTicket:
    userId: str
    selections: List[Selection]
    stake: int
    totalOdds: float
    potentialPayout: int
    placedAt: datetime
    chatId: Optional[str] = None
    status: str = PENDING
    settledAt: Optional[datetime] = None
    payoutCredited: bool = False
    _id: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "BetTicket":
        return cls(
            userId=doc["userId"],
            selections=[Selection.from_doc(s) for s in doc.get("selections") or []],
            stake=int(doc.get("stake", doc.get("totalStake", 0))),
            totalOdds=float(doc.get("totalOdds", 1.0)),
            potentialPayout=int(doc.get("potentialPayout", doc.get("potentialWin", 0))),
            placedAt=doc.get("placedAt") or doc.get("createdAt"),
            chatId=doc.get("chatId"),
            status=doc.get("status", PENDING),
            settledAt=doc.get("settledAt"),
            payoutCredited=bool(doc.get("payoutCredited", False)),
            _id=doc.get("_id"),
        )

    def to_doc(self) -> Dict[str, Any]:
        doc = {
            "userId": self.userId,
            "selections": [s.to_doc() for s in self.selections],
            "stake": self.stake,
            "totalOdds": self.totalOdds,
            "potentialPayout": self.potentialPayout,
            "placedAt": self.placedAt,
            "chatId": self.chatId,
            "status": self.status,
            "settledAt": self.settledAt,
            "payoutCredited": self.payoutCredited,
        }
        if self._id:
            doc["_id"] = self._id
        return doc

    @property
    def match_ids(self) -> List[int]:
        return [s.matchId for s in self.selections]
