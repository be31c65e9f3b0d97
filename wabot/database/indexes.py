# wabot/database/indexes.py
"""Declared indexes per collection, bootstrapped on first access."""

from dataclasses import dataclass
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class IndexSpec:
    keys: Tuple[Tuple[str, int], ...]
    unique: bool = False

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(k for k, _ in self.keys)

    def name(self, collection: str) -> str:
        suffix = "_".join(f.replace(".", "_") for f in self.fields)
        return f"{'uq' if self.unique else 'ix'}_{collection}_{suffix}"


def _ix(*keys: Tuple[str, int], unique: bool = False) -> IndexSpec:
    return IndexSpec(keys=tuple(keys), unique=unique)


INDEXES: Dict[str, List[IndexSpec]] = {
    "users": [_ix(("userId", 1), unique=True), _ix(("clan", 1))],
    "transactions": [_ix(("userId", 1), ("timestamp", -1))],
    "fixtures": [_ix(("matchId", 1), unique=True), _ix(("status", 1), ("kickoff", 1))],
    "betting_teams": [_ix(("league", 1), ("name", 1), unique=True)],
    "bet_tickets": [_ix(("userId", 1), ("placedAt", -1)), _ix(("status", 1))],
    "bet_slips": [_ix(("userId", 1), unique=True), _ix(("shareCode", 1))],
    "counters": [],
    "clans": [_ix(("name", 1), unique=True)],
    "attendance_records": [_ix(("userId", 1), ("date", 1)), _ix(("timestamp", -1))],
    "birthdays": [_ix(("userId", 1), unique=True), _ix(("birthday.searchKey", 1))],
    "plugin_settings": [_ix(("plugin", 1), unique=True)],
    "x_auto_accounts": [_ix(("username", 1), unique=True)],
    "daily_tasks": [_ix(("date", 1), unique=True)],
    "daily_task_submissions": [_ix(("userId", 1), ("date", 1), unique=True)],
    "club_tycoon": [_ix(("userId", 1), unique=True), _ix(("name", 1))],
    "bans": [_ix(("userId", 1), unique=True)],
    "township_players": [_ix(("userId", 1), unique=True), _ix(("level", -1), ("experience", -1))],
    "township_orders": [_ix(("expiresAt", 1), ("remaining", 1))],
    "township_leaderboard": [_ix(("updatedAt", -1))],
}


def indexes_for(collection: str) -> List[IndexSpec]:
    return INDEXES.get(collection, [])
