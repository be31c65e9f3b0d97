import asyncio
import random

import pytest

from wabot.database.models import BetTicket, Selection
from wabot.scoring import kernel
from wabot.services.match_simulator import PAYOUT_REASON, MatchSimulator
from wabot.services.user_manager import UserManager

OWNER = "2348000000001@s.whatsapp.net"
USER = "2348000000002@s.whatsapp.net"
PUNTER = "2348055555555@s.whatsapp.net"

HOME_2_0 = {"result": "HOME_WIN", "homeGoals": 2, "awayGoals": 0, "totalGoals": 2,
            "over15": True, "over25": False, "btts": False}
AWAY_2_1 = {"result": "AWAY_WIN", "homeGoals": 1, "awayGoals": 2, "totalGoals": 3,
            "over15": True, "over25": True, "btts": True}


class FlakyUsers:
    """Credits fail once, then go through to the real ledger."""

    def __init__(self, users):
        self.users = users
        self.fail_next = True

    async def add_money(self, *args, **kwargs):
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("ledger offline")
        return await self.users.add_money(*args, **kwargs)


@pytest.fixture
def users(store, config, clock):
    return UserManager(store, config, clock)


@pytest.fixture
def simulator(store, users, clock):
    return MatchSimulator(store, users, floor=10, rng=random.Random(3), clock=clock)


async def _fixture(store, match_id, result=None, kickoff=None):
    fixtures = await store.get_collection("fixtures")
    await fixtures.insert_one({
        "matchId": match_id,
        "league": "EPL",
        "homeTeam": f"Home {match_id}",
        "awayTeam": f"Away {match_id}",
        "homeStrength": 80,
        "awayStrength": 75,
        "homeForm": 80,
        "awayForm": 75,
        "odds": {"HOME_WIN": 1.5, "DRAW": 3.4, "AWAY_WIN": 3.2, "OVER25": 3.2},
        "kickoff": kickoff,
        "status": "completed" if result else "upcoming",
        "result": result,
    })


async def _ticket(store, clock, picks, stake=100):
    selections = [Selection(matchId=m, market=market, odds=odds) for m, market, odds in picks]
    odds = [s.odds for s in selections]
    ticket = BetTicket(
        userId=PUNTER,
        selections=selections,
        stake=stake,
        totalOdds=kernel.total_odds(odds),
        potentialPayout=kernel.potential_payout(stake, odds),
        placedAt=clock(),
    )
    tickets = await store.get_collection("bet_tickets")
    return await tickets.insert_one(ticket.to_doc())


async def _status(store, ticket_id):
    tickets = await store.get_collection("bet_tickets")
    return await tickets.find_one({"_id": ticket_id})


async def test_winning_accumulator_pays_once(store, users, simulator, clock):
    await _fixture(store, 1, HOME_2_0)
    await _fixture(store, 2, AWAY_2_1)
    ticket_id = await _ticket(store, clock, [(1, "HOME_WIN", 1.5), (2, "AWAY_WIN", 3.2)])

    settled = await simulator.settle_tickets(clock())
    assert settled == [(ticket_id, "won")]
    assert await users.get_money(PUNTER) == 480

    assert await simulator.retry_payouts() == 0
    assert await simulator.settle_tickets(clock()) == []
    assert await users.get_money(PUNTER) == 480

    doc = await _status(store, ticket_id)
    assert doc["payoutCredited"] is True
    assert [s["won"] for s in doc["selections"]] == [True, True]
    history = await users.get_transactions(PUNTER)
    assert [t["reason"] for t in history] == [PAYOUT_REASON]


async def test_losing_ticket_pays_nothing(store, users, simulator, clock):
    await _fixture(store, 1, HOME_2_0)
    await _fixture(store, 2, AWAY_2_1)
    ticket_id = await _ticket(store, clock, [(1, "HOME_WIN", 1.5), (2, "DRAW", 3.4)])

    assert await simulator.settle_tickets(clock()) == [(ticket_id, "lost")]
    assert await users.get_money(PUNTER) == 0
    doc = await _status(store, ticket_id)
    assert [s["won"] for s in doc["selections"]] == [True, False]


async def test_ticket_waits_for_every_fixture(store, simulator, clock):
    await _fixture(store, 1, HOME_2_0)
    await _fixture(store, 2, kickoff=clock())
    ticket_id = await _ticket(store, clock, [(1, "HOME_WIN", 1.5), (2, "OVER25", 3.2)])

    assert await simulator.settle_tickets(clock()) == []
    assert (await _status(store, ticket_id))["status"] == "pending"


async def test_failed_credit_is_retried(store, users, clock):
    flaky = FlakyUsers(users)
    simulator = MatchSimulator(store, flaky, floor=0, rng=random.Random(3), clock=clock)
    await _fixture(store, 1, HOME_2_0)
    ticket_id = await _ticket(store, clock, [(1, "HOME_WIN", 1.5)], stake=200)

    await simulator.settle_tickets(clock())
    doc = await _status(store, ticket_id)
    assert doc["status"] == "won"
    assert doc["payoutCredited"] is False
    assert await users.get_money(PUNTER) == 0

    assert await simulator.retry_payouts() == 1
    assert await users.get_money(PUNTER) == 300
    assert await simulator.retry_payouts() == 0


async def test_replenish_tops_up_to_floor(store, simulator, clock):
    assert await simulator.seed_teams() > 0
    assert await simulator.seed_teams() == 0

    created = await simulator.replenish(clock())
    assert sorted(created) == list(range(1, 11))
    fixtures = await store.get_collection("fixtures")
    rows = await fixtures.find({"status": "upcoming"})
    assert len(rows) == 10
    assert {r["league"] for r in rows} == {"EPL", "LALIGA"}

    teams = [(r["league"], r["homeTeam"]) for r in rows] + [(r["league"], r["awayTeam"]) for r in rows]
    assert len(teams) == len(set(teams))
    assert all(r["kickoff"] > clock() for r in rows)

    assert await simulator.replenish(clock()) == []


async def test_raising_the_floor_adds_fresh_fixtures_with_free_teams(store, simulator, clock):
    await simulator.seed_teams()
    await simulator.replenish(clock())
    fixtures = await store.get_collection("fixtures")
    before = await fixtures.find({"status": "upcoming"})
    assert len(before) == 10
    busy = {(r["league"], r["homeTeam"]) for r in before} | {(r["league"], r["awayTeam"]) for r in before}
    highest = max(r["matchId"] for r in before)

    simulator.floor = 15
    created = await simulator.replenish(clock())
    assert len(created) >= 5
    assert all(match_id > highest for match_id in created)

    rows = await fixtures.find({"matchId": {"$in": created}})
    teams = [(r["league"], r["homeTeam"]) for r in rows] + [(r["league"], r["awayTeam"]) for r in rows]
    assert len(teams) == len(set(teams))
    assert busy.isdisjoint(teams)
    assert await fixtures.count_documents({"status": "upcoming"}) >= 15


async def test_concurrent_ticks_do_not_duplicate_fixtures(store, simulator, clock):
    await simulator.seed_teams()
    await asyncio.gather(simulator.tick(clock()), simulator.tick(clock()))
    fixtures = await store.get_collection("fixtures")
    assert await fixtures.count_documents({}) == 10
    ids = [r["matchId"] for r in await fixtures.find({})]
    assert len(ids) == len(set(ids))


async def test_tick_completes_due_fixtures_and_replaces_them(store, simulator, clock):
    await simulator.seed_teams()
    await simulator.replenish(clock())
    later = clock.advance(hours=73)

    report = await simulator.tick(later)
    assert sorted(report["completed"]) == list(range(1, 11))
    assert sorted(report["created"]) == list(range(11, 21))

    fixtures = await store.get_collection("fixtures")
    done = await fixtures.find({"status": "completed"})
    assert len(done) == 10
    for doc in done:
        result = doc["result"]
        assert result["totalGoals"] == result["homeGoals"] + result["awayGoals"]
        assert doc["completedAt"] == later


async def test_match_ids_continue_after_existing_fixtures(store, simulator):
    await _fixture(store, 41, HOME_2_0)
    assert await simulator.next_match_id() == 42
    assert await simulator.next_match_id() == 43


async def test_bet_command_places_and_settles(bot, send, messenger, store):
    fixtures = await store.get_collection("fixtures")
    fixture = await fixtures.find_one({"status": "upcoming"}, sort=[("matchId", 1)])
    assert fixture is not None
    await bot.users.add_money(USER, 5000, "Gift")

    assert await send(f".bet {fixture['matchId']} home 1000") == "command"
    assert "BET PLACED" in messenger.last_text
    assert await bot.users.get_money(USER) == 4000

    tickets = await store.get_collection("bet_tickets")
    ticket = await tickets.find_one({"userId": USER})
    assert ticket["status"] == "pending"
    assert ticket["potentialPayout"] == kernel.potential_payout(1000, [fixture["odds"]["HOME_WIN"]])

    assert await send(f".bet simulate {fixture['matchId']}", sender=OWNER) == "command"
    ticket = await tickets.find_one({"userId": USER})
    assert ticket["status"] in ("won", "lost")
    expected = 4000 + (ticket["potentialPayout"] if ticket["status"] == "won" else 0)
    assert await bot.users.get_money(USER) == expected


async def test_bet_rejects_bad_market_and_short_wallet(send, messenger, store):
    fixtures = await store.get_collection("fixtures")
    fixture = await fixtures.find_one({"status": "upcoming"})
    assert await send(f".bet {fixture['matchId']} banana 100") == "failed"
    assert "Invalid bet type" in messenger.last_text

    assert await send(f".bet {fixture['matchId']} draw 100") == "failed"
    assert "Insufficient balance" in messenger.last_text
    tickets = await store.get_collection("bet_tickets")
    assert await tickets.count_documents({}) == 0


async def test_betslip_accumulator_flow(bot, send, messenger, store):
    fixtures = await store.get_collection("fixtures")
    first, second = await fixtures.find({"status": "upcoming"}, sort=[("matchId", 1)], limit=2)
    await bot.users.add_money(USER, 1000, "Gift")
    bot.rate_limiter.max_calls = 10

    assert await send(f".betslip add {first['matchId']} gg") == "command"
    assert await send(f".slip add {second['matchId']} o2.5") == "command"
    assert await send(".betslip stake 500") == "command"
    assert "STAKE SET" in messenger.last_text
    assert await send(".betslip place") == "command"

    tickets = await store.get_collection("bet_tickets")
    ticket = await tickets.find_one({"userId": USER})
    assert [s["market"] for s in ticket["selections"]] == ["BTTS_YES", "OVER25"]
    assert ticket["potentialPayout"] == kernel.potential_payout(
        500, [first["odds"]["BTTS_YES"], second["odds"]["OVER25"]]
    )
    assert await bot.users.get_money(USER) == 500
    slips = await store.get_collection("bet_slips")
    assert await slips.count_documents({"userId": USER}) == 0
