"""
wabot/services/match_simulator.py
Completes due fixtures, settles the tickets that depend on them and keeps the
fixture list topped up
"""

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set, Tuple

from ..database.models import BetTicket, Fixture
from ..database.models.betting import COMPLETED, LOST, PENDING, UPCOMING, WON
from ..scoring import kernel
from ..scoring.leagues import LEAGUES
from ..utils.timeutil import Clock, utcnow

if TYPE_CHECKING:
    from ..database.database_service import DatabaseService

logger = logging.getLogger(__name__)

PAYOUT_REASON = "Sports bet win"
_COUNTER = "fixtures.matchId"


class MatchSimulator:
    def __init__(
        self,
        store: "DatabaseService",
        users,
        leagues: Optional[Dict[str, Dict]] = None,
        *,
        floor: int = 15,
        rng: Optional[random.Random] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.users = users
        self.leagues = leagues or LEAGUES
        self.floor = floor
        self.rng = rng or random.Random()
        self.clock = clock
        self._lock = asyncio.Lock()
        self._counter_checked = False
        self.stats = {"ticks": 0, "completed": 0, "tickets_won": 0, "tickets_lost": 0, "created": 0, "failures": 0}

    async def _coll(self, name: str):
        return await self.store.get_collection(name)

    # ---------- teams ----------

    async def seed_teams(self) -> int:
        teams = await self._coll("betting_teams")
        created = 0
        for code, league in self.leagues.items():
            for name, (strength, form) in league["teams"].items():
                result = await teams.update_one(
                    {"league": code, "name": name},
                    {"$setOnInsert": {"strength": strength, "form": form}},
                    upsert=True,
                )
                created += int(result.upserted_id is not None)
        if created:
            logger.info(f"Seeded {created} betting team(s)")
        return created

    async def _team(self, league: str, name: str) -> Dict[str, Any]:
        teams = await self._coll("betting_teams")
        doc = await teams.find_one({"league": league, "name": name})
        if doc is None:
            strength, form = self.leagues[league]["teams"][name]
            return {"league": league, "name": name, "strength": strength, "form": form}
        return doc

    async def _update_forms(self, fixture: Fixture, result: Dict[str, Any]) -> None:
        outcome = result["result"]
        if outcome == "DRAW":
            changes = [(fixture.homeTeam, "draw"), (fixture.awayTeam, "draw")]
        elif outcome == "HOME_WIN":
            changes = [(fixture.homeTeam, "win"), (fixture.awayTeam, "loss")]
        else:
            changes = [(fixture.homeTeam, "loss"), (fixture.awayTeam, "win")]
        teams = await self._coll("betting_teams")
        for name, change in changes:
            team = await self._team(fixture.league, name)
            form = kernel.update_form(int(team.get("form", 50)), change)
            await teams.update_one(
                {"league": fixture.league, "name": name},
                {"$set": {"form": form}, "$setOnInsert": {"strength": team.get("strength", 50)}},
                upsert=True,
            )

    # ---------- ids ----------

    async def next_match_id(self) -> int:
        counters = await self._coll("counters")
        if not self._counter_checked:
            fixtures = await self._coll("fixtures")
            latest = await fixtures.find_one({}, sort=[("matchId", -1)])
            if latest:
                await counters.update_one({"name": _COUNTER}, {"$max": {"seq": int(latest["matchId"])}}, upsert=True)
            self._counter_checked = True
        await counters.update_one({"name": _COUNTER}, {"$inc": {"seq": 1}}, upsert=True)
        doc = await counters.find_one({"name": _COUNTER})
        return int(doc["seq"])

    # ---------- tick ----------

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One simulator pass: complete, settle, retry payouts, replenish."""
        now = now or self.clock()
        async with self._lock:
            self.stats["ticks"] += 1
            completed = await self.complete_due(now)
            settled = await self.settle_tickets(now)
            credited = await self.retry_payouts()
            created = await self.replenish(now)
        if completed or created:
            logger.info(
                f"Simulator tick: {len(completed)} completed, {len(settled)} ticket(s) settled, "
                f"{len(created)} fixture(s) created"
            )
        return {"completed": completed, "settled": settled, "credited": credited, "created": created}

    async def simulate_now(self, match_ids: Optional[Iterable[int]] = None) -> Dict[str, Any]:
        """Force-complete upcoming fixtures regardless of kickoff."""
        now = self.clock()
        async with self._lock:
            completed = await self.complete_due(now, match_ids=match_ids, force=True)
            settled = await self.settle_tickets(now)
            credited = await self.retry_payouts()
            created = await self.replenish(now)
        return {"completed": completed, "settled": settled, "credited": credited, "created": created}

    async def complete_due(self, now: datetime, *, match_ids: Optional[Iterable[int]] = None,
                           force: bool = False) -> List[int]:
        fixtures = await self._coll("fixtures")
        flt: Dict[str, Any] = {"status": UPCOMING}
        if not force:
            flt["kickoff"] = {"$lte": now}
        if match_ids is not None:
            flt["matchId"] = {"$in": [int(m) for m in match_ids]}
        completed = []
        for doc in await fixtures.find(flt, sort=[("kickoff", 1)]):
            try:
                fixture = Fixture.from_doc(doc)
                result = kernel.simulate_match(fixture.homeStrength, fixture.awayStrength, fixture.odds, self.rng)
                transition = await fixtures.update_one(
                    {"matchId": fixture.matchId, "status": UPCOMING},
                    {"$set": {"status": COMPLETED, "result": result, "completedAt": now}},
                )
                if not transition.modified_count:
                    continue
                completed.append(fixture.matchId)
                self.stats["completed"] += 1
                await self._update_forms(fixture, result)
            except Exception:
                self.stats["failures"] += 1
                logger.exception(f"Failed to complete fixture {doc.get('matchId')}; it stays upcoming")
        return completed

    async def settle_tickets(self, now: datetime) -> List[Tuple[str, str]]:
        """Settle every pending ticket whose fixtures have all completed."""
        tickets = await self._coll("bet_tickets")
        fixtures = await self._coll("fixtures")
        pending = await tickets.find({"status": PENDING})
        if not pending:
            return []
        wanted = {int(s["matchId"]) for t in pending for s in t.get("selections") or []}
        results = {
            int(doc["matchId"]): doc["result"]
            for doc in await fixtures.find({"matchId": {"$in": sorted(wanted)}, "status": COMPLETED})
            if doc.get("result")
        }
        settled = []
        for doc in pending:
            try:
                ticket = BetTicket.from_doc(doc)
                if not ticket.selections or any(m not in results for m in ticket.match_ids):
                    continue
                won = kernel.ticket_won(ticket.selections, results)
                selections = []
                for selection in ticket.selections:
                    selection.won = kernel.settle_selection(selection, results[selection.matchId])
                    selections.append(selection.to_doc())
                status = WON if won else LOST
                transition = await tickets.update_one(
                    {"_id": doc["_id"], "status": PENDING},
                    {"$set": {"status": status, "settledAt": now, "selections": selections, "payoutCredited": False}},
                )
                if not transition.modified_count:
                    continue
                settled.append((doc["_id"], status))
                self.stats["tickets_won" if won else "tickets_lost"] += 1
                if won:
                    await self._credit(doc["_id"], ticket.userId, ticket.potentialPayout)
            except Exception:
                logger.exception(f"Failed to settle ticket {doc.get('_id')}")
        return settled

    async def _credit(self, ticket_id: str, user_id: str, payout: int) -> bool:
        """Claim the payout flag, then credit; the claim is released if the credit fails."""
        tickets = await self._coll("bet_tickets")
        claim = await tickets.update_one(
            {"_id": ticket_id, "status": WON, "payoutCredited": False},
            {"$set": {"payoutCredited": True}},
        )
        if not claim.modified_count:
            return False
        try:
            if payout > 0:
                await self.users.add_money(user_id, payout, PAYOUT_REASON, apply_effects=False)
        except Exception:
            await tickets.update_one({"_id": ticket_id}, {"$set": {"payoutCredited": False}})
            raise
        return True

    async def retry_payouts(self) -> int:
        tickets = await self._coll("bet_tickets")
        credited = 0
        for doc in await tickets.find({"status": WON, "payoutCredited": False}):
            try:
                ticket = BetTicket.from_doc(doc)
                credited += int(await self._credit(doc["_id"], ticket.userId, ticket.potentialPayout))
            except Exception:
                logger.exception(f"Payout retry failed for ticket {doc.get('_id')}")
        return credited

    # ---------- replenishment ----------

    async def replenish(self, now: datetime) -> List[int]:
        """Create fixtures until at least `floor` are upcoming, using teams with no upcoming game."""
        fixtures = await self._coll("fixtures")
        upcoming = await fixtures.find({"status": UPCOMING})
        missing = self.floor - len(upcoming)
        if missing <= 0:
            return []
        busy: Set[Tuple[str, str]] = set()
        for doc in upcoming:
            busy.add((doc["league"], doc["homeTeam"]))
            busy.add((doc["league"], doc["awayTeam"]))

        created: List[int] = []
        for code, league in self.leagues.items():
            quota = league.get("fixtures_per_batch", 4)
            free = [t for t in league["teams"] if (code, t) not in busy]
            self.rng.shuffle(free)
            while quota > 0 and missing > 0 and len(free) >= 2:
                home_name, away_name = free.pop(), free.pop()
                home = await self._team(code, home_name)
                away = await self._team(code, away_name)
                odds = kernel.compute_odds(home["strength"], away["strength"], home.get("form"), away.get("form"), self.rng)
                fixture = Fixture(
                    matchId=await self.next_match_id(),
                    league=code,
                    homeTeam=home_name,
                    awayTeam=away_name,
                    homeStrength=int(home["strength"]),
                    awayStrength=int(away["strength"]),
                    homeForm=int(home.get("form", home["strength"])),
                    awayForm=int(away.get("form", away["strength"])),
                    odds=odds,
                    kickoff=now + timedelta(minutes=self.rng.randint(60, 72 * 60)),
                    createdAt=now,
                )
                await fixtures.insert_one(fixture.to_doc())
                busy.update({(code, home_name), (code, away_name)})
                created.append(fixture.matchId)
                quota -= 1
                missing -= 1
        self.stats["created"] += len(created)
        if missing > 0:
            logger.warning(f"Not enough free teams to reach {self.floor} upcoming fixtures ({missing} short)")
        return created
