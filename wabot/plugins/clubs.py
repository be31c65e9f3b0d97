# wabot/plugins/clubs.py
from __future__ import annotations

import logging
import math
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from ..database.models import Club
from ..errors import InvalidInput, NotFound
from ..scoring.kernel import club_reputation, club_revenue, equipment_wear
from ..utils.timeutil import format_local, local_now
from .base import Plugin, PluginContext, TaskSpec

logger = logging.getLogger(__name__)

COLLECTION = "club_tycoon"
BILLBOARD_COLLECTION = "club_billboard"

REGISTRATION_FEE = 7_500_000
REPAIR_RATE = 0.6
HIRE_WEEKS_PREPAID = 4
SEVERANCE_WEEKS = 2
MAX_STAFF_PER_ROLE = 2
PERSONAL_INCOME_SHARE = 0.35
VIOLATION_WINDOW = timedelta(days=30)
INACTIVITY_WINDOW = timedelta(days=7)
LICENSE_WARNING_WINDOW = timedelta(days=7)
MAX_HISTORY = 20

UTILITIES_BASE = 250_000
UTILITIES_PER_EQUIPMENT = 15_000
LICENSE_WARNING_FEE = 50_000

EQUIPMENT = {
    "jbl_prx815": {"name": "JBL PRX815 Speaker System", "price": 1_200_000, "durability": 150, "revenue": 1.3, "reputation": 8},
    "yamaha_cl5": {"name": "Yamaha CL5 Digital Console", "price": 2_000_000, "durability": 180, "revenue": 1.5, "reputation": 12},
    "pioneer_djm900": {"name": "Pioneer DJM-900NXS2 DJ Mixer", "price": 1_500_000, "durability": 160, "revenue": 1.4, "reputation": 10},
    "bose_f1": {"name": "Bose F1 Model 812 System", "price": 1_800_000, "durability": 170, "revenue": 1.45, "reputation": 11},
    "chauvet_intimidator": {"name": "Chauvet DJ Intimidator Spot 475Z", "price": 1_000_000, "durability": 140, "revenue": 1.25, "reputation": 7},
    "martin_quantum": {"name": "Martin MAC Quantum Wash", "price": 1_500_000, "durability": 160, "revenue": 1.35, "reputation": 9},
    "samsung_led_wall": {"name": "Samsung LED Wall Display", "price": 3_500_000, "durability": 200, "revenue": 1.8, "reputation": 20},
    "italian_vip_couches": {"name": "Italian Leather VIP Couches", "price": 750_000, "durability": 300, "revenue": 1.2, "reputation": 6},
    "reinforced_entrance": {"name": "Reinforced Security Entrance", "price": 600_000, "durability": 500, "revenue": 1.1, "reputation": 4},
    "hikvision_cameras": {"name": "Hikvision 4K Security System", "price": 900_000, "durability": 400, "revenue": 1.15, "reputation": 5},
}

# requirements name equipment keys or "<license>_license"; any one of them satisfies
STAFF = {
    "resident_dj": {"salary": 150_000, "revenue": 1.4, "reputation": 10, "requires": ("pioneer_djm900", "yamaha_cl5")},
    "celebrity_bartender": {"salary": 120_000, "revenue": 1.25, "reputation": 6, "requires": ("liquor_license",)},
    "head_bouncer": {"salary": 100_000, "revenue": 1.1, "reputation": 4, "requires": ()},
    "maintenance_crew": {"salary": 80_000, "revenue": 1.05, "reputation": 0, "requires": ()},
    "premium_entertainer": {"salary": 200_000, "revenue": 1.6, "reputation": 15,
                            "requires": ("adult_entertainment_license",)},
    "vip_hostess": {"salary": 90_000, "revenue": 1.3, "reputation": 8, "requires": ()},
    "sound_engineer": {"salary": 110_000, "revenue": 1.2, "reputation": 0, "requires": ()},
}

STAFF_NAMES = {
    "resident_dj": ("DJ Spinall", "DJ Cuppy", "DJ Neptune", "DJ Kaywise"),
    "celebrity_bartender": ("Mixmaster Tony", "Cocktail Queen Ada", "Premium Paul"),
    "head_bouncer": ("Security Chief Mike", "Guardian Grace", "Fortress Felix"),
    "maintenance_crew": ("Tech Master John", "Repair Pro Rita", "Fix-It Frank"),
    "premium_entertainer": ("Diamond Diva", "Platinum Pearl", "Crystal Crown"),
    "vip_hostess": ("VIP Victoria", "Elite Ella", "Luxury Luna"),
    "sound_engineer": ("Audio Alex", "Mix Master Maya", "Beat Boss Ben"),
}

LICENSES = {
    "business": {"price": 2_500_000, "days": 365, "required": True, "daily_fine": 100_000, "reputation_loss": 5,
                 "shutdown_risk": 0.1, "description": "Corporate business operations permit"},
    "liquor": {"price": 1_500_000, "days": 365, "required": False, "daily_fine": 75_000, "reputation_loss": 0,
               "description": "Premium alcohol service permit"},
    "noise_permit": {"price": 1_200_000, "days": 180, "required": False, "daily_fine": 50_000, "reputation_loss": 5,
                     "description": "Late night noise exemption"},
    "food_service": {"price": 1_000_000, "days": 365, "required": False, "daily_fine": 40_000, "reputation_loss": 0,
                     "description": "Restaurant and catering permit"},
    "adult_entertainment": {"price": 3_000_000, "days": 180, "required": False, "daily_fine": 150_000,
                            "reputation_loss": 0, "description": "Adult entertainment operations"},
}

EVENTS = {
    "house_party": {"cost": 500_000, "min_equipment": 2, "min_reputation": 20, "multiplier": 1.8,
                    "licenses": ("business",)},
    "themed_night": {"cost": 1_000_000, "min_equipment": 4, "min_reputation": 40, "multiplier": 2.2,
                     "licenses": ("business", "liquor")},
    "concert": {"cost": 2_500_000, "min_equipment": 6, "min_reputation": 60, "multiplier": 2.8,
                "licenses": ("business", "noise_permit")},
    "exclusive_vip_event": {"cost": 5_000_000, "min_equipment": 8, "min_reputation": 80, "multiplier": 3.5,
                            "licenses": ("business", "liquor", "noise_permit")},
}

UPGRADES = {
    "social_media_marketing": {"price": 2_000_000, "revenue": 1.3, "reputation": 15, "requires": None,
                               "description": "Professional social media management"},
    "vip_parking_lot": {"price": 3_000_000, "revenue": 1.25, "reputation": 10, "requires": None,
                        "description": "Secured VIP customer parking"},
    "celebrity_endorsement": {"price": 5_000_000, "revenue": 1.5, "reputation": 25, "requires": None,
                              "description": "A-list celebrity brand endorsement"},
    "premium_bar": {"price": 1_500_000, "revenue": 1.2, "reputation": 8, "requires": "liquor",
                    "description": "Premium imported liquor collection"},
}

NPC_CLUBS = (
    ("Quilox Lagos", 85, 20_000_000, 70_000_000),
    ("Escape Nightclub", 78, 15_000_000, 55_000_000),
    ("Club 57", 72, 10_000_000, 45_000_000),
    ("Rumours Nightclub", 68, 8_000_000, 38_000_000),
    ("Cubana Club", 75, 12_000_000, 57_000_000),
)


def _label(key: str) -> str:
    return key.replace("_", " ").title()


def repair_cost(kind: str) -> int:
    return math.floor(EQUIPMENT[kind]["price"] * REPAIR_RATE)


def effective_reputation(club: Club, now: datetime) -> int:
    bonuses = [EQUIPMENT[e["type"]]["reputation"] for e in club.working_equipment() if e.get("type") in EQUIPMENT]
    bonuses += [STAFF[s["type"]]["reputation"] for s in club.staff if s.get("type") in STAFF]
    bonuses += [UPGRADES[u["type"]]["reputation"] for u in club.upgrades if u.get("type") in UPGRADES]
    recent = [v for v in club.violations if v.get("date") and now - v["date"] < VIOLATION_WINDOW]
    return club_reputation(club.reputation, bonuses, len(recent))


def event_revenue(club: Club, event: Dict[str, Any], now: datetime) -> int:
    return club_revenue(
        event["cost"],
        event["multiplier"],
        equipment=[EQUIPMENT[e["type"]]["revenue"] for e in club.working_equipment() if e.get("type") in EQUIPMENT],
        staff=[STAFF[s["type"]]["revenue"] for s in club.staff if s.get("type") in STAFF],
        upgrades=[UPGRADES[u["type"]]["revenue"] for u in club.upgrades if u.get("type") in UPGRADES],
        reputation=effective_reputation(club, now),
    )


def weekly_expenses(club: Club, now: datetime) -> Dict[str, int]:
    """Utilities, salaries, per-item upkeep and a fee per licence close to expiry."""
    expiring = [
        lic for lic in club.licenses
        if lic.get("expiresAt") is not None and lic["expiresAt"] - now < LICENSE_WARNING_WINDOW
    ]
    breakdown = {
        "utilities": UTILITIES_BASE,
        "staff": sum(STAFF.get(s.get("type"), {}).get("salary", 0) for s in club.staff),
        "equipment": len(club.equipment) * UTILITIES_PER_EQUIPMENT,
        "penalties": len(expiring) * LICENSE_WARNING_FEE,
    }
    breakdown["total"] = sum(breakdown.values())
    return breakdown


class ClubsPlugin(Plugin):
    """Nightclub tycoon: buy gear, hire staff, hold licences and host events for revenue."""

    name = "clubs"
    version = "3.0.0"
    description = "Nightlife business tycoon with equipment, staff, licences and events"
    category = "games"
    commands = ("club",)
    aliases = {"clubtycoon": "club"}

    def __init__(self, bot):
        super().__init__(bot)
        self.rng = getattr(bot, "rng", None) or random.Random()

    def scheduled_tasks(self) -> List[TaskSpec]:
        return [
            TaskSpec("weekly_expenses", "0 0 * * 1", self.process_weekly_expenses,
                     "Deduct staff salaries and utilities for all active clubs"),
            TaskSpec("equipment_breakdown", "0 */8 * * *", self.process_equipment_breakdown,
                     "Wear down equipment in active clubs"),
            TaskSpec("license_enforcement", "0 6 * * *", self.process_license_enforcement,
                     "Expire licences and fine clubs operating without them"),
            TaskSpec("reputation_decay", "0 0 * * *", self.process_reputation_decay,
                     "Reduce reputation of clubs with no recent events"),
            TaskSpec("billboard_update", "0 0 * * 0", self.update_billboard,
                     "Publish the weekly billboard and reset weekly stats"),
        ]

    async def _clubs(self):
        return await self.bot.store.get_collection(COLLECTION)

    def _lock(self, user_id: str):
        return self.bot.users.lock_for(f"club:{user_id}")

    async def load_club(self, user_id: str) -> Optional[Club]:
        doc = await (await self._clubs()).find_one({"userId": user_id})
        return Club.from_doc(doc) if doc else None

    async def _require_club(self, ctx: PluginContext) -> Club:
        club = await self.load_club(ctx.sender)
        if club is None:
            raise NotFound(f"❌ You don't own a club. Register one with {ctx.config.command_prefix}club register <name>")
        return club

    async def _save(self, user_id: str, changes: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> None:
        update = {"$set": {**changes, "updatedAt": self.bot.clock()}}
        update.update(extra or {})
        await (await self._clubs()).update_one({"userId": user_id}, update)

    # ---------- scheduled ----------

    async def settle_expenses(self, club: Club, now: datetime) -> Dict[str, Any]:
        """
        Charge one week of running costs. The club balance pays first, then the
        owner's wallet; whatever is still unpaid becomes club debt and flags
        bankruptcy risk.
        """
        costs = weekly_expenses(club, now)
        total = costs["total"]
        from_club = min(max(club.balance, 0), total)
        remaining = total - from_club
        from_wallet = 0
        if remaining > 0:
            wallet = await self.bot.users.get_money(club.userId)
            take = min(wallet, remaining)
            if take > 0 and await self.bot.users.remove_money(club.userId, take, "Club operational expenses"):
                from_wallet = take
        new_balance = club.balance - total + from_wallet
        entry = {
            "type": "weekly_operations" if from_wallet == 0 and new_balance >= 0 else "emergency_funding",
            "amount": total,
            "breakdown": {k: v for k, v in costs.items() if k != "total"},
            "userContribution": from_wallet,
            "date": now,
        }
        await self._save(
            club.userId,
            {"balance": new_balance, "bankruptcyRisk": new_balance < 0},
            {"$push": {"expenses": {"$each": [entry], "$slice": -MAX_HISTORY}}},
        )
        return {"total": total, "club": from_club, "wallet": from_wallet, "balance": new_balance}

    async def process_weekly_expenses(self, task_ctx) -> Dict[str, int]:
        now = task_ctx.now or self.bot.clock()
        clubs = await (await self._clubs()).find({"isActive": True})
        deducted = processed = at_risk = 0
        for doc in clubs:
            club = Club.from_doc(doc)
            async with self._lock(club.userId):
                result = await self.settle_expenses(club, now)
            deducted += result["total"]
            processed += 1
            at_risk += result["balance"] < 0
        logger.info(f"Weekly club expenses: {deducted:,} from {processed} club(s), {at_risk} at bankruptcy risk")
        return {"processed": processed, "deducted": deducted, "at_risk": at_risk}

    async def process_equipment_breakdown(self, task_ctx) -> int:
        now = task_ctx.now or self.bot.clock()
        clubs = await (await self._clubs()).find({"isActive": True, "equipment.0": {"$exists": True}})
        breakdowns = 0
        for doc in clubs:
            club = Club.from_doc(doc)
            staff_types = {s.get("type") for s in club.staff}
            changed = False
            for item in club.equipment:
                if item.get("broken"):
                    continue
                purchased = item.get("purchasedAt") or now
                age_months = math.ceil(max((now - purchased).days, 0) / 30)
                wear = equipment_wear(
                    self.rng,
                    maintenance_crew="maintenance_crew" in staff_types,
                    sound_engineer="sound_engineer" in staff_types,
                    age_months=age_months,
                )
                if wear <= 0:
                    continue
                changed = True
                item["currentDurability"] = max(0, int(item.get("currentDurability", 0)) - wear)
                if item["currentDurability"] == 0:
                    item["broken"] = True
                    item["brokenAt"] = now
                    breakdowns += 1
                    club.notifications.append({
                        "type": "equipment_breakdown",
                        "message": f"{_label(item['type'])} has broken down and needs repair!",
                        "equipment": item["type"],
                        "repairCost": repair_cost(item["type"]) if item["type"] in EQUIPMENT else 0,
                        "timestamp": now,
                    })
            if changed:
                async with self._lock(club.userId):
                    await self._save(club.userId, {
                        "equipment": club.equipment,
                        "notifications": club.notifications[-MAX_HISTORY:],
                    })
        if breakdowns:
            logger.info(f"Equipment breakdowns: {breakdowns}")
        return breakdowns

    async def process_license_enforcement(self, task_ctx) -> Dict[str, int]:
        now = task_ctx.now or self.bot.clock()
        clubs = await (await self._clubs()).find({"isActive": True})
        fined = shutdowns = 0
        for doc in clubs:
            club = Club.from_doc(doc)
            for lic in club.licenses:
                if lic.get("active") and lic.get("expiresAt") is not None and lic["expiresAt"] <= now:
                    lic["active"] = False
            fines = 0
            reputation_loss = 0
            violations = list(club.violations)
            if not club.has_license("business", now):
                terms = LICENSES["business"]
                fines += terms["daily_fine"]
                reputation_loss += terms["reputation_loss"]
                violations.append({
                    "type": "no_business_license",
                    "fine": terms["daily_fine"],
                    "date": now,
                    "description": "Operating without valid business license",
                })
                if self.rng.random() < terms["shutdown_risk"]:
                    async with self._lock(club.userId):
                        await self._save(club.userId, {
                            "licenses": club.licenses,
                            "violations": violations[-MAX_HISTORY:],
                            "isActive": False,
                            "shutdownReason": "Government shutdown - No business license",
                        })
                    shutdowns += 1
                    logger.warning(f"Club {club.name} ({club.userId}) shut down for missing business license")
                    continue
            for lic in club.licenses:
                terms = LICENSES.get(lic.get("type"))
                if lic.get("active") or terms is None or terms["required"]:
                    continue
                if club.has_license(lic["type"], now):
                    continue
                fines += terms["daily_fine"]
                reputation_loss += terms["reputation_loss"]
                violations.append({
                    "type": f"expired_{lic['type']}",
                    "fine": terms["daily_fine"],
                    "date": now,
                    "description": f"Expired {_label(lic['type']).lower()} license",
                })
            changes: Dict[str, Any] = {"licenses": club.licenses}
            if fines or reputation_loss:
                fined += 1
                changes.update({
                    "balance": max(0, club.balance - fines) if club.balance >= 0 else club.balance,
                    "reputation": max(0, club.reputation - reputation_loss),
                    "violations": violations[-MAX_HISTORY:],
                })
            async with self._lock(club.userId):
                await self._save(club.userId, changes)
        if fined or shutdowns:
            logger.info(f"License enforcement: {fined} club(s) fined, {shutdowns} shut down")
        return {"fined": fined, "shutdowns": shutdowns}

    async def process_reputation_decay(self, task_ctx) -> int:
        now = task_ctx.now or self.bot.clock()
        clubs = await (await self._clubs()).find({
            "isActive": True,
            "$or": [
                {"lastEventAt": None},
                {"lastEventAt": {"$lt": now - INACTIVITY_WINDOW}},
            ],
        })
        for doc in clubs:
            decay = self.rng.randint(1, 3)
            async with self._lock(doc["userId"]):
                await self._save(doc["userId"], {"reputation": max(0, int(doc.get("reputation", 50)) - decay)})
        return len(clubs)

    async def update_billboard(self, task_ctx) -> Dict[str, Any]:
        now = task_ctx.now or self.bot.clock()
        coll = await self._clubs()
        players = await coll.find({}, sort=[("weeklyRevenue", -1)])
        rows = [
            {
                "name": doc["name"],
                "owner": doc["userId"].split("@")[0],
                "isNPC": False,
                "reputation": effective_reputation(Club.from_doc(doc), now),
                "weeklyRevenue": int(doc.get("weeklyRevenue") or 0),
                "events": int(doc.get("weeklyEvents") or 0),
            }
            for doc in players
        ]
        for name, reputation, low, high in NPC_CLUBS:
            rows.append({
                "name": name,
                "isNPC": True,
                "reputation": reputation + self.rng.randint(-5, 4),
                "weeklyRevenue": self.rng.randint(low, high),
                "events": self.rng.randint(2, 9),
            })
        rows.sort(key=lambda r: r["weeklyRevenue"], reverse=True)
        local = local_now(self.bot.config.timezone, now)
        year, week, _ = local.isocalendar()
        billboard = {
            "week": week,
            "year": year,
            "updatedAt": now,
            "topClubs": [{"rank": i, **row} for i, row in enumerate(rows[:15], 1)],
        }
        await (await self.bot.store.get_collection(BILLBOARD_COLLECTION)).insert_one(billboard)
        await coll.update_many({}, {"$set": {"weeklyRevenue": 0, "weeklyEvents": 0, "updatedAt": now}})
        logger.info(f"Billboard week {week}/{year}: {len(players)} player club(s)")
        return billboard

    # ---------- commands ----------

    async def run(self, ctx: PluginContext) -> None:
        sub = ctx.args[0].lower() if ctx.args else ""
        handler = getattr(self, f"_sub_{sub}", None) if sub else None
        if handler is None:
            await self._help(ctx)
            return
        await handler(ctx, ctx.args[1:])

    async def _help(self, ctx: PluginContext) -> None:
        p = f"{ctx.config.command_prefix}club"
        await ctx.reply(
            "🏢 *CLUB TYCOON*\n\n"
            f"• {p} register <name> ({ctx.helpers.money(REGISTRATION_FEE)})\n"
            f"• {p} info\n• {p} stats\n"
            f"• {p} buy <equipment>\n• {p} repair <equipment>\n"
            f"• {p} hire <staff>\n• {p} fire <staff>\n"
            f"• {p} license <type>\n• {p} upgrade <type>\n"
            f"• {p} host <event>\n• {p} leaderboard"
        )

    async def _sub_register(self, ctx: PluginContext, args: List[str]) -> None:
        name = " ".join(args).strip()
        if not 3 <= len(name) <= 30:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}club register <name> (3-30 characters)")
        coll = await self._clubs()
        async with self._lock(ctx.sender):
            if await coll.find_one({"userId": ctx.sender}):
                raise InvalidInput("❌ You already own a club!")
            if await coll.find_one({"name": name}):
                raise InvalidInput(f"❌ The name \"{name}\" is already taken.")
            await self.bot.users.charge(ctx.sender, REGISTRATION_FEE, "Club registration")
            now = self.bot.clock()
            club = Club(userId=ctx.sender, name=name, createdAt=now, updatedAt=now)
            try:
                await coll.insert_one(club.to_doc())
            except DuplicateKeyError:
                await self.bot.users.add_money(ctx.sender, REGISTRATION_FEE, "Club registration refund",
                                               apply_effects=False)
                raise InvalidInput("❌ You already own a club!")
        logger.info(f"Club {name} registered by {ctx.sender}")
        await ctx.reply(
            f"🎉 *CLUB REGISTERED!*\n\n🏢 {name}\n💰 Fee: {ctx.helpers.money(REGISTRATION_FEE)}\n\n"
            f"Get a business license first: {ctx.config.command_prefix}club license business"
        )

    async def _sub_info(self, ctx: PluginContext, args: List[str]) -> None:
        club = await self._require_club(ctx)
        now = self.bot.clock()
        money = ctx.helpers.money
        working = club.working_equipment()
        lines = [
            f"🏢 *{club.name}*",
            "",
            f"⭐ Reputation: {effective_reputation(club, now)}/100",
            f"💰 Club balance: {money(club.balance)}",
            f"📈 Total revenue: {money(club.totalRevenue)}",
            f"📊 This week: {money(club.weeklyRevenue)} from {club.weeklyEvents} event(s)",
            f"🔌 Equipment: {len(working)}/{len(club.equipment)} working",
            f"👥 Staff: {len(club.staff)}",
            f"⬆️ Upgrades: {', '.join(_label(u['type']) for u in club.upgrades) or 'none'}",
        ]
        licenses = [
            f"{_label(lic['type'])} (until {format_local(lic['expiresAt'], ctx.config.timezone, '%d/%m/%Y')})"
            for lic in club.licenses if club.has_license(lic["type"], now) and lic.get("active")
        ]
        lines.append(f"📜 Licenses: {', '.join(licenses) or 'none'}")
        lines.append(f"💸 Weekly costs: {money(weekly_expenses(club, now)['total'])}")
        if not club.isActive:
            lines.append(f"\n🚫 CLOSED: {club.shutdownReason or 'inactive'}")
        if club.bankruptcyRisk:
            lines.append("\n⚠️ BANKRUPTCY RISK: club balance is negative")
        for note in club.notifications[-3:]:
            lines.append(f"🔔 {note['message']}")
        await ctx.reply("\n".join(lines))

    async def _sub_buy(self, ctx: PluginContext, args: List[str]) -> None:
        if not args or args[0].lower() not in EQUIPMENT:
            catalog = "\n".join(
                f"• {k}: {v['name']} {ctx.helpers.money(v['price'])} (+{round((v['revenue'] - 1) * 100)}% revenue)"
                for k, v in EQUIPMENT.items()
            )
            await ctx.reply(f"🛍️ *EQUIPMENT*\n\n{catalog}\n\nUsage: {ctx.config.command_prefix}club buy <code>")
            return
        kind = args[0].lower()
        spec = EQUIPMENT[kind]
        async with self._lock(ctx.sender):
            club = await self._require_club(ctx)
            if any(e.get("type") == kind for e in club.equipment):
                raise InvalidInput(f"❌ You already own {spec['name']}!")
            await self.bot.users.charge(ctx.sender, spec["price"], f"Club equipment: {spec['name']}")
            item = {
                "type": kind,
                "purchasedAt": self.bot.clock(),
                "currentDurability": spec["durability"],
                "maxDurability": spec["durability"],
                "broken": False,
                "timesRepaired": 0,
            }
            await self._save(ctx.sender, {}, {"$push": {"equipment": item}})
        await ctx.reply(f"✅ Installed *{spec['name']}* for {ctx.helpers.money(spec['price'])}")

    async def _sub_repair(self, ctx: PluginContext, args: List[str]) -> None:
        if not args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}club repair <equipment>")
        kind = args[0].lower()
        async with self._lock(ctx.sender):
            club = await self._require_club(ctx)
            item = next((e for e in club.equipment if e.get("type") == kind), None)
            if item is None or kind not in EQUIPMENT:
                raise NotFound(f"❌ You don't own {kind}.")
            if not item.get("broken") and item["currentDurability"] >= item["maxDurability"] * 0.8:
                raise InvalidInput("✅ That equipment is in good condition and doesn't need repair.")
            cost = repair_cost(kind)
            await self.bot.users.charge(ctx.sender, cost, f"Club repair: {EQUIPMENT[kind]['name']}")
            item["timesRepaired"] = int(item.get("timesRepaired", 0)) + 1
            if item["timesRepaired"] > 3:
                item["maxDurability"] = max(60, item["maxDurability"] - 5)
            item.update({"currentDurability": item["maxDurability"], "broken": False,
                         "lastRepairedAt": self.bot.clock()})
            await self._save(ctx.sender, {"equipment": club.equipment})
        await ctx.reply(
            f"🔧 Repaired {EQUIPMENT[kind]['name']} for {ctx.helpers.money(cost)}\n"
            f"Durability: {item['currentDurability']}/{item['maxDurability']}"
        )

    def _meets(self, club: Club, requirement: str, now: datetime) -> bool:
        if requirement.endswith("_license"):
            return club.has_license(requirement[: -len("_license")], now)
        return any(e.get("type") == requirement for e in club.working_equipment())

    async def _sub_hire(self, ctx: PluginContext, args: List[str]) -> None:
        if not args or args[0].lower() not in STAFF:
            roster = "\n".join(
                f"• {k}: {ctx.helpers.money(v['salary'])}/week (+{round((v['revenue'] - 1) * 100)}% revenue)"
                for k, v in STAFF.items()
            )
            await ctx.reply(f"👥 *STAFF*\n\n{roster}\n\nHiring prepays {HIRE_WEEKS_PREPAID} weeks of salary.")
            return
        role = args[0].lower()
        spec = STAFF[role]
        now = self.bot.clock()
        async with self._lock(ctx.sender):
            club = await self._require_club(ctx)
            if sum(1 for s in club.staff if s.get("type") == role) >= MAX_STAFF_PER_ROLE:
                raise InvalidInput(f"❌ You already employ {MAX_STAFF_PER_ROLE} {_label(role)} staff.")
            if spec["requires"] and not any(self._meets(club, r, now) for r in spec["requires"]):
                raise InvalidInput(
                    f"❌ {_label(role)} requires one of: {', '.join(_label(r) for r in spec['requires'])}"
                )
            cost = spec["salary"] * HIRE_WEEKS_PREPAID
            person = self.rng.choice(STAFF_NAMES[role])
            await self.bot.users.charge(ctx.sender, cost, f"Club hire: {person}")
            member = {"type": role, "name": person, "hiredAt": now,
                      "performance": self.rng.randint(85, 99)}
            await self._save(ctx.sender, {}, {"$push": {"staff": member}})
        await ctx.reply(f"🤝 Hired *{person}* as {_label(role)} for {ctx.helpers.money(cost)}")

    async def _sub_fire(self, ctx: PluginContext, args: List[str]) -> None:
        if not args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}club fire <staff>")
        role = args[0].lower()
        async with self._lock(ctx.sender):
            club = await self._require_club(ctx)
            index = next((i for i, s in enumerate(club.staff) if s.get("type") == role), None)
            if index is None:
                raise NotFound(f"❌ No {_label(role)} on your staff.")
            member = club.staff.pop(index)
            severance = STAFF.get(role, {}).get("salary", 0) * SEVERANCE_WEEKS
            balance = club.balance - severance
            await self._save(ctx.sender, {"staff": club.staff, "balance": balance, "bankruptcyRisk": balance < 0})
        await ctx.reply(
            f"👋 Let go of {member.get('name', _label(role))}.\n"
            f"💸 Severance from club balance: {ctx.helpers.money(severance)}"
        )

    async def _sub_license(self, ctx: PluginContext, args: List[str]) -> None:
        if not args or args[0].lower() not in LICENSES:
            table = "\n".join(
                f"• {k}: {ctx.helpers.money(v['price'])} / {v['days']} days{' (required)' if v['required'] else ''}"
                for k, v in LICENSES.items()
            )
            await ctx.reply(f"📜 *LICENSES*\n\n{table}")
            return
        kind = args[0].lower()
        terms = LICENSES[kind]
        now = self.bot.clock()
        async with self._lock(ctx.sender):
            club = await self._require_club(ctx)
            await self.bot.users.charge(ctx.sender, terms["price"], f"Club license: {kind}")
            current = next((lic for lic in club.licenses if lic.get("type") == kind), None)
            start = current["expiresAt"] if current and club.has_license(kind, now) else now
            expires = start + timedelta(days=terms["days"])
            licenses = [lic for lic in club.licenses if lic.get("type") != kind]
            licenses.append({"type": kind, "purchasedAt": now, "expiresAt": expires, "active": True})
            await self._save(ctx.sender, {"licenses": licenses})
        await ctx.reply(
            f"📜 {_label(kind)} license valid until {format_local(expires, ctx.config.timezone, '%d/%m/%Y')}"
        )

    async def _sub_upgrade(self, ctx: PluginContext, args: List[str]) -> None:
        if not args or args[0].lower() not in UPGRADES:
            table = "\n".join(f"• {k}: {ctx.helpers.money(v['price'])} - {v['description']}" for k, v in UPGRADES.items())
            await ctx.reply(f"⬆️ *UPGRADES*\n\n{table}")
            return
        kind = args[0].lower()
        spec = UPGRADES[kind]
        now = self.bot.clock()
        async with self._lock(ctx.sender):
            club = await self._require_club(ctx)
            if any(u.get("type") == kind for u in club.upgrades):
                raise InvalidInput(f"❌ {_label(kind)} is already installed.")
            if spec["requires"] and not club.has_license(spec["requires"], now):
                raise InvalidInput(f"❌ {_label(kind)} requires a {spec['requires']} license.")
            await self.bot.users.charge(ctx.sender, spec["price"], f"Club upgrade: {kind}")
            await self._save(ctx.sender, {}, {"$push": {"upgrades": {"type": kind, "purchasedAt": now}}})
        await ctx.reply(f"⬆️ Installed {_label(kind)} for {ctx.helpers.money(spec['price'])}")

    async def _sub_host(self, ctx: PluginContext, args: List[str]) -> None:
        if not args or args[0].lower() not in EVENTS:
            table = "\n".join(
                f"• {k}: {ctx.helpers.money(v['cost'])}, {v['min_equipment']}+ equipment, "
                f"{v['min_reputation']}+ reputation"
                for k, v in EVENTS.items()
            )
            await ctx.reply(f"🎪 *EVENTS*\n\n{table}")
            return
        kind = args[0].lower()
        event = EVENTS[kind]
        now = self.bot.clock()
        async with self._lock(ctx.sender):
            club = await self._require_club(ctx)
            if not club.isActive:
                raise InvalidInput("❌ Your club is closed. Resolve violations and licensing issues first.")
            reputation = effective_reputation(club, now)
            if reputation < event["min_reputation"]:
                raise InvalidInput(
                    f"❌ {_label(kind)} needs {event['min_reputation']} reputation (you have {reputation})."
                )
            missing = [lic for lic in event["licenses"] if not club.has_license(lic, now)]
            if missing:
                raise InvalidInput(f"❌ Missing licenses: {', '.join(_label(lic) for lic in missing)}")
            working = club.working_equipment()
            if len(working) < event["min_equipment"]:
                raise InvalidInput(
                    f"❌ {_label(kind)} needs {event['min_equipment']} working equipment (you have {len(working)})."
                )
            await self.bot.users.charge(ctx.sender, event["cost"], f"Club event: {kind}")
            revenue = event_revenue(club, event, now)
            income = math.floor(revenue * PERSONAL_INCOME_SHARE)
            gain = math.floor(revenue / event["cost"] * 3)
            changes: Dict[str, Any] = {
                "lastEventAt": now,
                "reputation": min(100, club.reputation + gain),
                "bankruptcyRisk": club.balance + revenue < 0,
            }
            if event["cost"] > 1_000_000 and working and self.rng.random() < 0.15:
                item = self.rng.choice(working)
                item["currentDurability"] = max(0, int(item["currentDurability"]) - self.rng.randint(5, 19))
                item["broken"] = item["currentDurability"] == 0
                changes["equipment"] = club.equipment
            record = {"type": kind, "cost": event["cost"], "revenue": revenue,
                      "profit": revenue - event["cost"], "timestamp": now}
            await self._save(
                ctx.sender,
                changes,
                {
                    "$inc": {"balance": revenue, "totalRevenue": revenue, "weeklyRevenue": revenue, "weeklyEvents": 1},
                    "$push": {"events": {"$each": [record], "$slice": -MAX_HISTORY}},
                },
            )
        await self.bot.users.add_money(ctx.sender, income, f"Club event profits: {kind}")
        await ctx.reply(
            f"🎉 *{_label(kind).upper()} SUCCESS!*\n\n"
            f"💰 Revenue: {ctx.helpers.money(revenue)} (to club balance)\n"
            f"💵 Your share: {ctx.helpers.money(income)}\n"
            f"⭐ Reputation +{gain}"
        )

    async def _sub_leaderboard(self, ctx: PluginContext, args: List[str]) -> None:
        now = self.bot.clock()
        docs = await (await self._clubs()).find({}, sort=[("totalRevenue", -1)], limit=10)
        if not docs:
            await ctx.reply("🏢 No clubs registered yet.")
            return
        lines = ["🏆 *CLUB LEADERBOARD*", ""]
        for i, doc in enumerate(docs, 1):
            club = Club.from_doc(doc)
            lines.append(
                f"{i}. {club.name} (@{club.userId.split('@')[0]}) - {ctx.helpers.money(club.totalRevenue)}, "
                f"⭐ {effective_reputation(club, now)}"
            )
        billboard = await (await self.bot.store.get_collection(BILLBOARD_COLLECTION)).find_one(
            {}, sort=[("updatedAt", -1)]
        )
        if billboard:
            lines += ["", f"📊 *Billboard week {billboard['week']}*"]
            for row in billboard["topClubs"][:5]:
                lines.append(f"{row['rank']}. {row['name']} - {ctx.helpers.money(row['weeklyRevenue'])}")
        await ctx.reply("\n".join(lines))

    async def _sub_stats(self, ctx: PluginContext, args: List[str]) -> None:
        club = await self._require_club(ctx)
        now = self.bot.clock()
        money = ctx.helpers.money
        recent_violations = [v for v in club.violations if v.get("date") and now - v["date"] < VIOLATION_WINDOW]
        spent = sum(e.get("amount", 0) for e in club.expenses)
        best = max(club.events, key=lambda e: e.get("revenue", 0), default=None)
        await ctx.reply(
            f"📊 *{club.name} STATS*\n\n"
            f"🎪 Recent events: {len(club.events)}\n"
            f"🏅 Best event: {_label(best['type']) + ' ' + money(best['revenue']) if best else '-'}\n"
            f"📈 Total revenue: {money(club.totalRevenue)}\n"
            f"💸 Recent expenses: {money(spent)}\n"
            f"🚨 Violations (30d): {len(recent_violations)}\n"
            f"🔧 Broken equipment: {len(club.equipment) - len(club.working_equipment())}"
        )


def setup(bot) -> ClubsPlugin:
    return ClubsPlugin(bot)
