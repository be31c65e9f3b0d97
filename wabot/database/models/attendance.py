# wabot/database/models/attendance.py
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class AttendanceRecord:
    userId: str
    date: str  # DD-MM-YYYY in the configured timezone
    reward: int
    streak: int
    hasImage: bool
    timestamp: datetime
    chatId: Optional[str] = None
    extractedData: Dict[str, Any] = field(default_factory=dict)

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ParsedBirthday:
    day: int
    month: int
    monthName: str
    displayDate: str
    searchKey: str  # MM-DD
    originalText: str
    year: Optional[int] = None
    age: Optional[int] = None

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Birthday:
    userId: str
    name: str
    birthday: ParsedBirthday
    lastUpdated: datetime
    updateHistory: List[Dict[str, Any]] = field(default_factory=list)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "userId": self.userId,
            "name": self.name,
            "birthday": self.birthday.to_doc(),
            "lastUpdated": self.lastUpdated,
            "updateHistory": list(self.updateHistory),
        }
