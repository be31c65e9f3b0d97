# wabot/plugins/betting.py
from __future__ import annotations

import logging
import random
import secrets
from typing import Dict, List

from ..database.models import BetSlip, BetTicket, Fixture, Selection
from ..database.models.betting import COMPLETED, LOST, PENDING, UPCOMING, WON
from ..errors import InvalidInput, NotAuthorized, NotFound
from ..scoring import kernel
from ..scoring.leagues import LEAGUES, league_code
from ..services.match_simulator import MatchSimulator
from ..utils.timeutil import format_local
from .base import Plugin, PluginContext, TaskSpec

logger = logging.getLogger(__name__)

STAKE_REASON = "Sports bet stake"
MAX_STAKE = 1_000_000

MARKET_ALIASES: Dict[str, str] = {
    "home": "HOME_WIN", "homewin": "HOME_WIN", "hw": "HOME_WIN", "1": "HOME_WIN",
    "draw": "DRAW", "d": "DRAW", "x": "DRAW",
    "away": "AWAY_WIN", "awaywin": "AWAY_WIN", "aw": "AWAY_WIN", "2": "AWAY_WIN",
    "over1.5": "OVER15", "over15": "OVER15", "o1.5": "OVER15", "o15": "OVER15",
    "under1.5": "UNDER15", "under15": "UNDER15", "u1.5": "UNDER15", "u15": "UNDER15",
    "over2.5": "OVER25", "over25": "OVER25", "o2.5": "OVER25", "o25": "OVER25",
    "under2.5": "UNDER25", "under25": "UNDER25", "u2.5": "UNDER25", "u25": "UNDER25",
    "gg": "BTTS_YES", "btts": "BTTS_YES", "bttsyes": "BTTS_YES",
    "ng": "BTTS_NO", "bttsno": "BTTS_NO",
}


def parse_market(text: str) -> str:
    key = (text or "").lower()
    market = MARKET_ALIASES.get(key, key.upper())
    if market not in kernel.MARKETS:
        raise InvalidInput(
            "⚠️ Invalid bet type\n\n🎯 Available: home, draw, away, over1.5, under1.5, over2.5, under2.5, gg, ng"
        )
    return market


class BettingPlugin(Plugin):
    """Simulated football betting: fixtures, bet slips, accumulator tickets and settlement."""

    name = "betting"
    version = "3.0.0"
    description = "Sports betting on simulated league fixtures"
    category = "games"
    commands = ("bet", "fixtures", "betslip", "mybets", "bethistory", "leagues", "results")
    aliases = {
        "sportbet": "bet",
        "sportsbet": "bet",
        "matches": "fixtures",
        "games": "fixtures",
        "slip": "betslip",
        "bets": "mybets",
        "betlog": "bethistory",
        "competitions": "leagues",
        "recent": "results",
        "scores": "results",
    }

    def __init__(self, bot):
        super().__init__(bot)
        config = bot.config
        self.max_selections = getattr(config, "max_bet_selections", 10)
        self.simulator = MatchSimulator(
            bot.store,
            bot.users,
            LEAGUES,
            floor=getattr(config, "fixture_floor", 15),
            rng=getattr(bot, "rng", None) or random.Random(),
            clock=bot.clock,
        )

    def scheduled_tasks(self) -> List[TaskSpec]:
        return [TaskSpec("auto_simulate", "*/5 * * * *", self.auto_simulate, "Complete due fixtures and settle tickets")]

    async def setup(self) -> None:
        await self.simulator.seed_teams()
        await self.simulator.replenish(self.bot.clock())

    async def auto_simulate(self, task_ctx) -> Dict:
        return await self.simulator.tick(task_ctx.now)

    async def run(self, ctx: PluginContext) -> None:
        await getattr(self, f"_cmd_{ctx.command}")(ctx)

    # ---------- helpers ----------

    async def _coll(self, name: str):
        return await self.bot.store.get_collection(name)

    def _when(self, value) -> str:
        return format_local(value, self.bot.config.timezone, "%d/%m %H:%M")

    async def _open_fixture(self, match_id: int) -> Fixture:
        fixtures = await self._coll("fixtures")
        doc = await fixtures.find_one({"matchId": match_id, "status": UPCOMING})
        if doc is None or doc["kickoff"] <= self.bot.clock():
            raise NotFound(f"❌ Match {match_id} not found or already started")
        return Fixture.from_doc(doc)

    async def _slip(self, user_id: str) -> BetSlip:
        slips = await self._coll("bet_slips")
        return BetSlip.from_doc(await slips.find_one({"userId": user_id}), user_id)

    async def _save_slip(self, slip: BetSlip) -> None:
        now = self.bot.clock()
        slip.createdAt = slip.createdAt or now
        slip.updatedAt = now
        slips = await self._coll("bet_slips")
        await slips.replace_one({"userId": slip.userId}, slip.to_doc(), upsert=True)

    def _selection_line(self, i: int, s: Selection) -> str:
        return f"{i}. #{s.matchId} {s.homeTeam} vs {s.awayTeam}\n   🎯 {kernel.MARKET_NAMES[s.market]} @ {s.odds:.2f}"

    async def place_ticket(self, ctx: PluginContext, selections: List[Selection], stake: int) -> BetTicket:
        """Validate, take the stake and store a pending ticket."""
        if not selections:
            raise InvalidInput("📋 Add selections to your slip first")
        if len(selections) > self.max_selections:
            raise InvalidInput(f"⚠️ Maximum {self.max_selections} selections per ticket")
        if stake <= 0:
            raise InvalidInput(f"⚠️ Set a stake first: {ctx.config.command_prefix}betslip stake <amount>")
        if stake > MAX_STAKE:
            raise InvalidInput(f"⚠️ Maximum stake: {ctx.helpers.money(MAX_STAKE)}")
        for selection in selections:
            await self._open_fixture(selection.matchId)

        odds = [s.odds for s in selections]
        ticket = BetTicket(
            userId=ctx.sender,
            selections=[Selection(**{**s.to_doc(), "won": None}) for s in selections],
            stake=stake,
            totalOdds=kernel.total_odds(odds),
            potentialPayout=kernel.potential_payout(stake, odds),
            placedAt=self.bot.clock(),
            chatId=ctx.chat_id,
        )
        await self.bot.users.charge(ctx.sender, stake, STAKE_REASON)
        tickets = await self._coll("bet_tickets")
        try:
            ticket._id = await tickets.insert_one(ticket.to_doc())
        except Exception:
            await self.bot.users.add_money(ctx.sender, stake, "Sports bet refund", apply_effects=False)
            raise
        logger.info(f"Bet placed by {ctx.sender}: {len(selections)} selection(s), stake {stake}")
        return ticket

    def _ticket_text(self, ctx: PluginContext, ticket: BetTicket) -> str:
        lines = ["✅ *BET PLACED* ✅\n"]
        lines += [self._selection_line(i, s) for i, s in enumerate(ticket.selections, 1)]
        lines.append(
            f"\n💵 Stake: {ctx.helpers.money(ticket.stake)}\n"
            f"📊 Total odds: {ticket.totalOdds:.2f}\n"
            f"🏆 Potential win: {ctx.helpers.money(ticket.potentialPayout)}"
        )
        return "\n".join(lines)

    # ---------- bet ----------

    async def _cmd_bet(self, ctx: PluginContext) -> None:
        p = ctx.config.command_prefix
        if not ctx.args:
            await ctx.reply(
                "⚽ *SPORTS BETTING* ⚽\n\n"
                f"• {p}fixtures [league] - upcoming matches\n"
                f"• {p}bet <matchId> <market> <stake> - single bet\n"
                f"• {p}betslip add <matchId> <market> - build an accumulator\n"
                f"• {p}mybets - open tickets\n"
                f"• {p}bethistory - your record\n"
                f"• {p}results - latest scores\n"
                f"• {p}leagues - competitions\n\n"
                "🎯 Markets: home, draw, away, over1.5, under1.5, over2.5, under2.5, gg, ng"
            )
            return
        if ctx.args[0].lower() == "simulate":
            if not await ctx.helpers.is_admin(ctx.sender, ctx.chat_id):
                raise NotAuthorized(f"{ctx.sender} tried bet simulate")
            ids = [ctx.helpers.parse_int(a, "Match ID") for a in ctx.args[1:]] or None
            report = await self.simulator.simulate_now(ids)
            await ctx.reply(
                f"🎲 Simulated {len(report['completed'])} match(es), settled {len(report['settled'])} "
                f"ticket(s), created {len(report['created'])} new fixture(s)"
            )
            return
        if len(ctx.args) < 3:
            raise InvalidInput(f"⚠️ Usage: {p}bet <matchId> <market> <stake>\n\nExample: {p}bet 12 home 1000")
        match_id = ctx.helpers.parse_int(ctx.args[0], "Match ID")
        market = parse_market(ctx.args[1])
        stake = ctx.helpers.parse_amount(ctx.args[2])
        fixture = await self._open_fixture(match_id)
        selection = Selection(
            matchId=match_id,
            market=market,
            odds=fixture.odds[market],
            homeTeam=fixture.homeTeam,
            awayTeam=fixture.awayTeam,
            addedAt=self.bot.clock(),
        )
        ticket = await self.place_ticket(ctx, [selection], stake)
        await ctx.reply(self._ticket_text(ctx, ticket))

    # ---------- fixtures / results / leagues ----------

    async def _cmd_fixtures(self, ctx: PluginContext) -> None:
        flt = {"status": UPCOMING}
        if ctx.args:
            code = league_code(ctx.args[0])
            if not code:
                raise InvalidInput(f"⚠️ Unknown league. See {ctx.config.command_prefix}leagues")
            flt["league"] = code
        fixtures = await self._coll("fixtures")
        rows = await fixtures.find(flt, sort=[("kickoff", 1)], limit=15)
        if not rows:
            await ctx.reply("📅 No upcoming matches right now. Check back soon!")
            return
        lines = ["⚽ *UPCOMING FIXTURES* ⚽\n"]
        for doc in rows:
            f = Fixture.from_doc(doc)
            o = f.odds
            lines.append(
                f"🆔 *{f.matchId}* | {LEAGUES.get(f.league, {}).get('name', f.league)}\n"
                f"{f.homeTeam} vs {f.awayTeam}\n"
                f"🕐 {self._when(f.kickoff)}\n"
                f"1: {o['HOME_WIN']:.2f} | X: {o['DRAW']:.2f} | 2: {o['AWAY_WIN']:.2f}\n"
                f"O2.5: {o['OVER25']:.2f} | U2.5: {o['UNDER25']:.2f} | GG: {o['BTTS_YES']:.2f} | NG: {o['BTTS_NO']:.2f}\n"
            )
        lines.append(f"💡 {ctx.config.command_prefix}betslip add <matchId> <market>")
        await ctx.reply("\n".join(lines))

    async def _cmd_results(self, ctx: PluginContext) -> None:
        flt = {"status": COMPLETED}
        if ctx.args and league_code(ctx.args[0]):
            flt["league"] = league_code(ctx.args[0])
        fixtures = await self._coll("fixtures")
        rows = await fixtures.find(flt, sort=[("completedAt", -1)], limit=10)
        if not rows:
            await ctx.reply("📊 No results yet.")
            return
        lines = ["📊 *RECENT RESULTS* 📊\n"]
        for doc in rows:
            r = doc["result"]
            lines.append(f"#{doc['matchId']} {doc['homeTeam']} {r['homeGoals']} - {r['awayGoals']} {doc['awayTeam']}")
        await ctx.reply("\n".join(lines))

    async def _cmd_leagues(self, ctx: PluginContext) -> None:
        teams = await self._coll("betting_teams")
        lines = ["🏆 *COMPETITIONS* 🏆\n"]
        for code, league in LEAGUES.items():
            rows = await teams.find({"league": code}, sort=[("form", -1)], limit=3)
            top = ", ".join(f"{t['name']} ({t['form']})" for t in rows) or "-"
            lines.append(f"*{league['name']}* ({code.lower()})\n👥 {len(league['teams'])} teams\n🔥 In form: {top}\n")
        await ctx.reply("\n".join(lines))

    # ---------- slip ----------

    async def _cmd_betslip(self, ctx: PluginContext) -> None:
        action = ctx.args[0].lower() if ctx.args else "view"
        handler = getattr(self, f"_slip_{action}", None)
        if handler is None:
            raise InvalidInput(f"❓ Unknown action: {action}\n\n📋 Available: add, remove, stake, place, clear, share, load")
        await handler(ctx, ctx.args[1:])

    async def _slip_view(self, ctx: PluginContext, args: List[str]) -> None:
        slip = await self._slip(ctx.sender)
        if not slip.selections:
            await ctx.reply(f"📋 Your bet slip is empty.\n💡 {ctx.config.command_prefix}betslip add <matchId> <market>")
            return
        odds = [s.odds for s in slip.selections]
        lines = ["📋 *YOUR BET SLIP* 📋\n"] + [self._selection_line(i, s) for i, s in enumerate(slip.selections, 1)]
        lines.append(f"\n📊 Total odds: {kernel.total_odds(odds):.2f}")
        if slip.stake:
            lines.append(f"💵 Stake: {ctx.helpers.money(slip.stake)}")
            lines.append(f"🏆 Potential win: {ctx.helpers.money(kernel.potential_payout(slip.stake, odds))}")
        await ctx.reply("\n".join(lines))

    async def _slip_add(self, ctx: PluginContext, args: List[str]) -> None:
        if len(args) < 2:
            raise InvalidInput(
                f"⚠️ Usage: {ctx.config.command_prefix}betslip add <matchId> <market>\n\n"
                f"Example: {ctx.config.command_prefix}betslip add 123 o2.5"
            )
        match_id = ctx.helpers.parse_int(args[0], "Match ID")
        market = parse_market(args[1])
        fixture = await self._open_fixture(match_id)
        slip = await self._slip(ctx.sender)
        replaced = slip.put(Selection(
            matchId=match_id,
            market=market,
            odds=fixture.odds[market],
            homeTeam=fixture.homeTeam,
            awayTeam=fixture.awayTeam,
            addedAt=self.bot.clock(),
        ))
        if len(slip.selections) > self.max_selections:
            raise InvalidInput(f"⚠️ Maximum {self.max_selections} selections per slip")
        await self._save_slip(slip)
        verb = "Updated" if replaced else "Added"
        await ctx.reply(
            f"✅ {verb}: {fixture.homeTeam} vs {fixture.awayTeam}\n"
            f"🎯 {kernel.MARKET_NAMES[market]} @ {fixture.odds[market]:.2f}\n"
            f"📋 Selections: {len(slip.selections)} | 📊 Total odds: {kernel.total_odds(s.odds for s in slip.selections):.2f}"
        )

    async def _slip_remove(self, ctx: PluginContext, args: List[str]) -> None:
        if not args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}betslip remove <number>")
        index = ctx.helpers.parse_int(args[0], "Selection number")
        slip = await self._slip(ctx.sender)
        if not 1 <= index <= len(slip.selections):
            raise InvalidInput(f"⚠️ Choose a selection between 1 and {len(slip.selections)}")
        removed = slip.selections.pop(index - 1)
        await self._save_slip(slip)
        await ctx.reply(f"🗑️ Removed #{removed.matchId} {removed.homeTeam} vs {removed.awayTeam}")

    async def _slip_stake(self, ctx: PluginContext, args: List[str]) -> None:
        if not args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}betslip stake <amount>")
        stake = ctx.helpers.parse_amount(args[0])
        if stake > MAX_STAKE:
            raise InvalidInput(f"⚠️ Maximum stake: {ctx.helpers.money(MAX_STAKE)}")
        slip = await self._slip(ctx.sender)
        if not slip.selections:
            raise InvalidInput("📋 Add selections to your slip first")
        slip.stake = stake
        await self._save_slip(slip)
        odds = [s.odds for s in slip.selections]
        await ctx.reply(
            f"💰 *STAKE SET* 💰\n\n"
            f"💵 Stake: {ctx.helpers.money(stake)}\n"
            f"📊 Total odds: {kernel.total_odds(odds):.2f}\n"
            f"🏆 Potential win: {ctx.helpers.money(kernel.potential_payout(stake, odds))}\n\n"
            f"✅ Place bet: {ctx.config.command_prefix}betslip place"
        )

    async def _slip_place(self, ctx: PluginContext, args: List[str]) -> None:
        slip = await self._slip(ctx.sender)
        ticket = await self.place_ticket(ctx, slip.selections, slip.stake)
        slips = await self._coll("bet_slips")
        await slips.delete_one({"userId": ctx.sender})
        await ctx.reply(self._ticket_text(ctx, ticket))

    async def _slip_clear(self, ctx: PluginContext, args: List[str]) -> None:
        slips = await self._coll("bet_slips")
        await slips.delete_one({"userId": ctx.sender})
        await ctx.reply("🗑️ Bet slip cleared")

    async def _slip_share(self, ctx: PluginContext, args: List[str]) -> None:
        slip = await self._slip(ctx.sender)
        if not slip.selections:
            raise InvalidInput("📋 Your bet slip is empty")
        if not slip.shareCode:
            slip.shareCode = secrets.token_hex(3).upper()
            await self._save_slip(slip)
        await ctx.reply(
            f"📤 *SHARE YOUR SLIP*\n\n📱 Code: *{slip.shareCode}*\n\n"
            f"📲 Friends can copy it with:\n{ctx.config.command_prefix}betslip load {slip.shareCode}"
        )

    async def _slip_load(self, ctx: PluginContext, args: List[str]) -> None:
        if not args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}betslip load <code>")
        slips = await self._coll("bet_slips")
        shared = await slips.find_one({"shareCode": args[0].upper()})
        if shared is None:
            raise NotFound("❌ Share code not found")
        source = BetSlip.from_doc(shared, shared["userId"])
        slip = await self._slip(ctx.sender)
        loaded = 0
        for selection in source.selections:
            try:
                fixture = await self._open_fixture(selection.matchId)
            except NotFound:
                continue
            selection.odds = fixture.odds[selection.market]
            if len(slip.selections) < self.max_selections or any(s.matchId == selection.matchId for s in slip.selections):
                slip.put(selection)
                loaded += 1
        if not loaded:
            raise NotFound("❌ None of the shared selections are still open")
        await self._save_slip(slip)
        await ctx.reply(f"📥 Loaded {loaded} selection(s). View with {ctx.config.command_prefix}betslip")

    # ---------- tickets ----------

    async def _cmd_mybets(self, ctx: PluginContext) -> None:
        tickets = await self._coll("bet_tickets")
        rows = await tickets.find({"userId": ctx.sender, "status": PENDING}, sort=[("placedAt", -1)], limit=10)
        if not rows:
            await ctx.reply("🎫 You have no open bets.")
            return
        lines = ["🎫 *OPEN BETS* 🎫\n"]
        for doc in rows:
            t = BetTicket.from_doc(doc)
            lines.append(
                f"🆔 {str(t._id)[-8:]} | {len(t.selections)} selection(s)\n"
                f"💵 {ctx.helpers.money(t.stake)} @ {t.totalOdds:.2f} → {ctx.helpers.money(t.potentialPayout)}\n"
            )
        await ctx.reply("\n".join(lines))

    async def _cmd_bethistory(self, ctx: PluginContext) -> None:
        stats = await self.history_stats(ctx.sender)
        if not stats["total"]:
            await ctx.reply("📜 No settled bets yet.")
            return
        money = ctx.helpers.money
        profit = stats["returned"] - stats["staked"]
        await ctx.reply(
            f"📜 *BETTING HISTORY* 📜\n\n"
            f"🎫 Settled: {stats['total']}\n"
            f"✅ Won: {stats['won']} | ❌ Lost: {stats['lost']}\n"
            f"📈 Win rate: {stats['win_rate']:.1f}%\n"
            f"💵 Staked: {money(stats['staked'])}\n"
            f"💰 Returned: {money(stats['returned'])}\n"
            f"{'📈' if profit >= 0 else '📉'} Profit: {'-' if profit < 0 else ''}{money(abs(profit))}"
        )

    async def history_stats(self, user_id: str) -> Dict:
        tickets = await self._coll("bet_tickets")
        rows = await tickets.find({"userId": user_id, "status": {"$in": [WON, LOST]}})
        won = [r for r in rows if r["status"] == WON]
        staked = sum(int(r.get("stake") or 0) for r in rows)
        returned = sum(int(r.get("potentialPayout") or 0) for r in won)
        return {
            "total": len(rows),
            "won": len(won),
            "lost": len(rows) - len(won),
            "win_rate": (len(won) / len(rows) * 100) if rows else 0.0,
            "staked": staked,
            "returned": returned,
        }


def setup(bot) -> BettingPlugin:
    return BettingPlugin(bot)
