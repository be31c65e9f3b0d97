"""
wabot/scoring/kernel.py
Pure scoring functions shared by the gaming plugins. Randomness always comes from
the `rng` argument so callers can seed it.
"""

import math
import random
from decimal import Decimal
from fractions import Fraction
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

HOME_ADVANTAGE = 5
BOOKMAKER_MARGIN = 0.1
DRAW_BOOST = 0.15
WINNER_ODDS_FLOOR = 1.10
DRAW_ODDS_FLOOR = 2.50

MARKETS = ("HOME_WIN", "AWAY_WIN", "DRAW", "OVER15", "UNDER15", "OVER25", "UNDER25", "BTTS_YES", "BTTS_NO")

MARKET_NAMES = {
    "HOME_WIN": "Home Win",
    "AWAY_WIN": "Away Win",
    "DRAW": "Draw",
    "OVER15": "Over 1.5 Goals",
    "UNDER15": "Under 1.5 Goals",
    "OVER25": "Over 2.5 Goals",
    "UNDER25": "Under 2.5 Goals",
    "BTTS_YES": "Both Teams to Score - Yes",
    "BTTS_NO": "Both Teams to Score - No",
}

# (low, width) for the goal markets, which are not strength driven
_GOAL_MARKET_RANGES = {
    "OVER15": (1.2, 1.0),
    "UNDER15": (2.0, 1.5),
    "OVER25": (1.4, 1.5),
    "UNDER25": (1.8, 1.2),
    "BTTS_YES": (1.6, 1.0),
    "BTTS_NO": (1.4, 1.0),
}

FORM_WIN = 5
FORM_LOSS = -5
FORM_DRAW = -2


def clamp(value, low, high):
    return max(low, min(high, value))


def effective_strength(strength: float, form: Optional[float] = None) -> float:
    if form is None:
        form = strength
    return 0.8 * strength + 0.2 * form


def win_probabilities(home_strength, away_strength, home_form=None, away_form=None) -> Dict[str, float]:
    """Normalized HOME_WIN / DRAW / AWAY_WIN probabilities before the margin."""
    home = effective_strength(home_strength, home_form) + HOME_ADVANTAGE
    away = effective_strength(away_strength, away_form)
    total = home + away
    p_home = home / total * 0.6 + 0.2
    p_away = away / total * 0.6 + 0.2
    p_draw = 1 - p_home - p_away + DRAW_BOOST
    norm = p_home + p_draw + p_away
    return {"HOME_WIN": p_home / norm, "DRAW": p_draw / norm, "AWAY_WIN": p_away / norm}


def compute_odds(home_strength, away_strength, home_form=None, away_form=None,
                 rng: random.Random = random) -> Dict[str, float]:
    probs = win_probabilities(home_strength, away_strength, home_form, away_form)
    odds = {
        "HOME_WIN": max(WINNER_ODDS_FLOOR, (1 / probs["HOME_WIN"]) * (1 - BOOKMAKER_MARGIN)),
        "DRAW": max(DRAW_ODDS_FLOOR, (1 / probs["DRAW"]) * (1 - BOOKMAKER_MARGIN)),
        "AWAY_WIN": max(WINNER_ODDS_FLOOR, (1 / probs["AWAY_WIN"]) * (1 - BOOKMAKER_MARGIN)),
    }
    for market, (low, width) in _GOAL_MARKET_RANGES.items():
        odds[market] = rng.random() * width + low
    return {k: round(v, 2) for k, v in odds.items()}


def implied_probabilities(odds: Mapping[str, float]) -> Dict[str, float]:
    """Strip the margin from the 1X2 odds."""
    raw = {k: 1 / float(odds[k]) for k in ("HOME_WIN", "DRAW", "AWAY_WIN")}
    total = sum(raw.values())
    return {k: v / total for k, v in raw.items()}


def simulate_match(home_strength, away_strength, odds: Mapping[str, float],
                   rng: random.Random = random) -> Dict[str, Any]:
    probs = implied_probabilities(odds)
    roll = rng.random()
    if roll < probs["HOME_WIN"]:
        result = "HOME_WIN"
    elif roll < probs["HOME_WIN"] + probs["DRAW"]:
        result = "DRAW"
    else:
        result = "AWAY_WIN"

    if result == "HOME_WIN":
        home_goals = rng.randint(1, 3)
        away_goals = rng.randint(0, home_goals - 1)
    elif result == "AWAY_WIN":
        away_goals = rng.randint(1, 3)
        home_goals = rng.randint(0, away_goals - 1)
    else:
        home_goals = away_goals = rng.randint(0, 3)

    total = home_goals + away_goals
    return {
        "result": result,
        "homeGoals": home_goals,
        "awayGoals": away_goals,
        "totalGoals": total,
        "over15": total > 1,
        "over25": total > 2,
        "btts": home_goals > 0 and away_goals > 0,
    }


def _market_of(selection) -> str:
    if isinstance(selection, str):
        return selection
    if isinstance(selection, Mapping):
        return selection.get("market") or selection.get("betType")
    return selection.market


def settle_selection(selection, result: Mapping[str, Any]) -> bool:
    market = _market_of(selection)
    outcome = result["result"]
    if market in ("HOME_WIN", "AWAY_WIN", "DRAW"):
        return outcome == market
    if market == "OVER15":
        return bool(result["over15"])
    if market == "UNDER15":
        return not result["over15"]
    if market == "OVER25":
        return bool(result["over25"])
    if market == "UNDER25":
        return not result["over25"]
    if market == "BTTS_YES":
        return bool(result["btts"])
    if market == "BTTS_NO":
        return not result["btts"]
    raise ValueError(f"Unknown market {market!r}")


def ticket_won(selections: Sequence[Any], results: Mapping[int, Mapping[str, Any]]) -> bool:
    """A ticket wins only when every selection wins. `results` is keyed by matchId."""
    for selection in selections:
        match_id = selection["matchId"] if isinstance(selection, Mapping) else selection.matchId
        if not settle_selection(selection, results[match_id]):
            return False
    return True


def _exact(value) -> Fraction:
    return Fraction(Decimal(str(value)))


def odds_product(odds: Iterable[float]) -> Fraction:
    product = Fraction(1)
    for o in odds:
        product *= _exact(o)
    return product


def total_odds(odds: Iterable[float]) -> float:
    return round(float(odds_product(odds)), 2)


def potential_payout(stake: int, odds: Iterable[float]) -> int:
    """stake x product of the 2-decimal odds, computed exactly and floored."""
    return math.floor(stake * odds_product(odds))


def streak_multiplier(streak_days: int, threshold: int = 3, multiplier: float = 1.5) -> float:
    return multiplier if streak_days >= threshold else 1.0


def apply_multiplier(amount: int, multiplier: float) -> int:
    return math.floor(amount * _exact(multiplier))


def reputation_factor(reputation: float) -> float:
    """0.5x at reputation 0, up to 2.0x at 100."""
    return 0.5 + 1.5 * clamp(reputation, 0, 100) / 100


def revenue_multiplier(base: float = 1.0, equipment: Iterable[float] = (), staff: Iterable[float] = (),
                       upgrades: Iterable[float] = (), reputation: float = 50) -> float:
    total = base
    for boost in equipment:
        total *= boost
    for boost in staff:
        total *= boost
    total *= reputation_factor(reputation)
    for boost in upgrades:
        total *= boost
    return total


def club_revenue(cost: int, event_multiplier: float, *, equipment=(), staff=(), upgrades=(),
                 reputation: float = 50, celebrity_multiplier: float = 1.0) -> int:
    return math.floor(cost * revenue_multiplier(
        event_multiplier * celebrity_multiplier, equipment, staff, upgrades, reputation))


def club_reputation(base: float, bonuses: Iterable[float], recent_violations: int) -> int:
    reputation = (base or 50) + sum(bonuses) - 8 * recent_violations
    return int(clamp(round(reputation), 0, 100))


def equipment_wear(rng: random.Random = random, *, maintenance_crew: bool = False,
                   sound_engineer: bool = False, age_months: float = 0) -> int:
    """Durability lost per breakdown check; staff slow wear, age speeds it up."""
    rate = 1.0
    if maintenance_crew:
        rate *= 0.4
    if sound_engineer:
        rate *= 0.6
    age_factor = 1 + age_months * 0.1
    return math.floor((rng.random() * 5 + 2) * rate * age_factor)


def update_form(form: int, outcome: str) -> int:
    """outcome is 'win', 'loss' or 'draw'."""
    delta = {"win": FORM_WIN, "loss": FORM_LOSS, "draw": FORM_DRAW}[outcome]
    return int(clamp(form + delta, 0, 100))
