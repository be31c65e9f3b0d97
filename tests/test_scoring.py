import random

import pytest

from wabot.scoring import kernel


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def test_potential_payout_is_exact_and_floored():
    assert kernel.potential_payout(100, [1.5, 3.2]) == 480
    assert kernel.potential_payout(333, [1.1, 1.1, 1.1]) == 443
    assert kernel.total_odds([1.5, 3.2]) == 4.8
    assert kernel.total_odds([]) == 1.0


def test_multipliers():
    assert kernel.apply_multiplier(700, 1.5) == 1050
    assert kernel.apply_multiplier(333, 1.5) == 499
    assert kernel.streak_multiplier(2) == 1.0
    assert kernel.streak_multiplier(3) == 1.5
    assert kernel.streak_multiplier(10, threshold=7, multiplier=2.0) == 2.0


@pytest.mark.parametrize("home,away", [(96, 62), (62, 96), (80, 80), (100, 1), (1, 100)])
def test_odds_respect_floors(home, away):
    odds = kernel.compute_odds(home, away, rng=random.Random(1))
    assert set(odds) == set(kernel.MARKETS)
    assert odds["HOME_WIN"] >= kernel.WINNER_ODDS_FLOOR
    assert odds["AWAY_WIN"] >= kernel.WINNER_ODDS_FLOOR
    assert odds["DRAW"] >= kernel.DRAW_ODDS_FLOOR
    assert 1.2 <= odds["OVER15"] <= 2.2
    assert all(round(v, 2) == v for v in odds.values())


@pytest.mark.parametrize("home,away,forms", [
    (96, 62, (None, None)),
    (62, 96, (None, None)),
    (80, 80, (20, 95)),
    (100, 1, (100, 0)),
    (1, 100, (0, 100)),
])
def test_overround_stays_within_twice_the_margin(home, away, forms):
    odds = kernel.compute_odds(home, away, *forms, rng=random.Random(1))
    overround = sum(1 / odds[m] for m in ("HOME_WIN", "DRAW", "AWAY_WIN"))
    assert 1 < overround < 1 + 2 * kernel.BOOKMAKER_MARGIN
    assert sum(kernel.implied_probabilities(odds).values()) == pytest.approx(1)


def test_stronger_home_side_is_favourite():
    odds = kernel.compute_odds(95, 60, rng=random.Random(1))
    assert odds["HOME_WIN"] < odds["AWAY_WIN"]


def test_simulated_scores_agree_with_result():
    rng = random.Random(42)
    odds = kernel.compute_odds(85, 75, rng=rng)
    seen = set()
    for _ in range(300):
        r = kernel.simulate_match(85, 75, odds, rng)
        seen.add(r["result"])
        if r["result"] == "HOME_WIN":
            assert r["homeGoals"] > r["awayGoals"]
        elif r["result"] == "AWAY_WIN":
            assert r["awayGoals"] > r["homeGoals"]
        else:
            assert r["homeGoals"] == r["awayGoals"]
        assert r["totalGoals"] == r["homeGoals"] + r["awayGoals"]
        assert r["over15"] == (r["totalGoals"] >= 2)
        assert r["over25"] == (r["totalGoals"] >= 3)
        assert r["btts"] == (r["homeGoals"] > 0 and r["awayGoals"] > 0)
    assert seen == {"HOME_WIN", "DRAW", "AWAY_WIN"}


def test_settle_selection_markets():
    result = {"result": "HOME_WIN", "homeGoals": 2, "awayGoals": 1, "totalGoals": 3,
              "over15": True, "over25": True, "btts": True}
    winners = {"HOME_WIN", "OVER15", "OVER25", "BTTS_YES"}
    for market in kernel.MARKETS:
        assert kernel.settle_selection(market, result) is (market in winners)
    with pytest.raises(ValueError):
        kernel.settle_selection("CORNERS", result)


def test_ticket_needs_every_selection():
    results = {
        1: {"result": "DRAW", "over15": False, "over25": False, "btts": False},
        2: {"result": "AWAY_WIN", "over15": True, "over25": False, "btts": True},
    }
    assert kernel.ticket_won([{"matchId": 1, "market": "DRAW"}, {"matchId": 2, "market": "BTTS_YES"}], results)
    assert not kernel.ticket_won([{"matchId": 1, "market": "DRAW"}, {"matchId": 2, "market": "OVER25"}], results)
    # legacy slips used betType
    assert kernel.ticket_won([{"matchId": 2, "betType": "AWAY_WIN"}], results)


def test_form_and_reputation_are_clamped():
    assert kernel.update_form(98, "win") == 100
    assert kernel.update_form(3, "loss") == 0
    assert kernel.update_form(50, "draw") == 48
    assert kernel.club_reputation(50, [10], 2) == 44
    assert kernel.club_reputation(90, [30], 0) == 100
    assert kernel.club_reputation(10, [], 5) == 0


def test_club_revenue_scales_with_reputation():
    assert kernel.club_revenue(1000, 1.0, reputation=100) == 2000
    assert kernel.club_revenue(1000, 1.0, reputation=50) == 1250
    assert kernel.club_revenue(1000, 1.0, reputation=0) == 500
    assert kernel.club_revenue(1000, 2.0, equipment=[1.1], reputation=100) == 4400


def test_equipment_wear_staff_and_age():
    assert kernel.equipment_wear(FixedRandom(0.5)) == 4
    assert kernel.equipment_wear(FixedRandom(0.5), maintenance_crew=True) == 1
    assert kernel.equipment_wear(FixedRandom(0.5), age_months=10) == 9
