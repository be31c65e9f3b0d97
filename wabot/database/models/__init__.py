# wabot/database/models/__init__.py
"""
wabot/database/models/__init__.py
Schema records per collection
"""
from .attendance import AttendanceRecord, Birthday, ParsedBirthday
from .autoposter import AutoPostAccount
from .betting import BetSlip, BetTicket, Fixture, Selection
from .club import Club
from .economy import ActiveEffect, EffectKind, Transaction, active_effects
from .township import TownshipPlayer
from .user import UserProfile

__all__ = [
    "UserProfile",
    "Transaction",
    "ActiveEffect",
    "EffectKind",
    "active_effects",
    "Fixture",
    "Selection",
    "BetSlip",
    "BetTicket",
    "AttendanceRecord",
    "Birthday",
    "ParsedBirthday",
    "AutoPostAccount",
    "Club",
    "TownshipPlayer",
]
