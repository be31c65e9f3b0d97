# wabot/plugins/township.py
from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from ..database.models import TownshipPlayer
from ..errors import InvalidInput, NotFound
from ..utils.timeutil import humanize_delta, local_date_str
from .base import Plugin, PluginContext, TaskSpec

logger = logging.getLogger(__name__)

COLLECTION = "township_players"
ORDERS_COLLECTION = "township_orders"
LEADERBOARD_COLLECTION = "township_leaderboard"

STARTING_BONUS = 1_000
DAILY_BONUS = 100
MAX_LEVEL = 100
BASE_LEVEL_EXP = 100
LEVEL_EXP_GROWTH = 1.15

PLANT_ENERGY = 5
PRODUCE_ENERGY = 10
ENERGY_REGEN = 20
ENERGY_PER_STORAGE = 10

HARVEST_EXP = 10
PRODUCE_EXP = 15
SELL_EXP_PER_UNIT = 5

CROPS = {
    "wheat": {"name": "Wheat", "emoji": "🌾", "level": 1, "growth": 600, "yield": 3, "price": 50},
    "corn": {"name": "Corn", "emoji": "🌽", "level": 5, "growth": 900, "yield": 4, "price": 75},
    "tomato": {"name": "Tomato", "emoji": "🍅", "level": 10, "growth": 1200, "yield": 5, "price": 100},
    "carrot": {"name": "Carrot", "emoji": "🥕", "level": 15, "growth": 1200, "yield": 4, "price": 90},
    "sunflower": {"name": "Sunflower", "emoji": "🌻", "level": 20, "growth": 1500, "yield": 3, "price": 150},
    "grape": {"name": "Grape", "emoji": "🍇", "level": 30, "growth": 1800, "yield": 6, "price": 200},
    "apple": {"name": "Apple", "emoji": "🍎", "level": 40, "growth": 2100, "yield": 5, "price": 180},
}

# kind: farm plants crops, production runs recipes, the rest just stand there
BUILDINGS = {
    "farm": {"name": "Farm", "emoji": "🚜", "level": 1, "price": 500, "kind": "farm", "slots": 2},
    "storage": {"name": "Storage", "emoji": "📦", "level": 3, "price": 1_000, "kind": "storage"},
    "factory": {"name": "Factory", "emoji": "🏭", "level": 10, "price": 5_000, "kind": "production", "slots": 2},
    "market": {"name": "Market Stall", "emoji": "🏪", "level": 15, "price": 3_000, "kind": "trading"},
    "silo": {"name": "Silo", "emoji": "🗼", "level": 25, "price": 15_000, "kind": "storage"},
    "greenhouse": {"name": "Greenhouse", "emoji": "🌱", "level": 35, "price": 20_000, "kind": "farm", "slots": 5},
    "processing_plant": {"name": "Processing Plant", "emoji": "⚙️", "level": 50, "price": 50_000,
                         "kind": "production", "slots": 4},
    "harbor": {"name": "Harbor", "emoji": "⚓", "level": 70, "price": 100_000, "kind": "trading"},
    "mega_factory": {"name": "Mega Factory", "emoji": "🏢", "level": 85, "price": 200_000,
                     "kind": "production", "slots": 8},
}

RECIPES = {
    "flour": {"name": "Flour", "emoji": "🥖", "level": 12, "inputs": {"wheat": 2}, "time": 300, "price": 150},
    "bread": {"name": "Bread", "emoji": "🍞", "level": 20, "inputs": {"flour": 1, "wheat": 1}, "time": 600, "price": 250},
    "juice": {"name": "Juice", "emoji": "🧃", "level": 25, "inputs": {"grape": 3}, "time": 450, "price": 300},
    "jam": {"name": "Jam", "emoji": "🍓", "level": 35, "inputs": {"apple": 2, "grape": 1}, "time": 600, "price": 400},
    "sauce": {"name": "Sauce", "emoji": "🥫", "level": 40, "inputs": {"tomato": 3, "carrot": 1}, "time": 500, "price": 350},
}

GROWTH_FACTOR = {"greenhouse": 0.75}

ORDER_SOURCES = ("helicopter", "train", "plane", "zoo")
ORDER_URGENCY = {"low": 1.0, "medium": 1.3, "high": 1.7}
ORDER_MAX_ACTIVE = 50
ORDER_SPAWN_RANGE = (1, 4)
ORDER_QTY_RANGE = (5, 24)
ORDER_REWARD_RANGE = (1.1, 2.5)
ORDER_TTL_MINUTES = (30, 240)


def exp_for_level(level: int) -> int:
    """Total experience needed to reach `level`; each level costs 15% more than the last."""
    return int(sum(BASE_LEVEL_EXP * LEVEL_EXP_GROWTH ** (i - 1) for i in range(1, max(1, level))))


def level_for(experience: int) -> int:
    level = 1
    while level < MAX_LEVEL and experience >= exp_for_level(level + 1):
        level += 1
    return level


def item_info(kind: str) -> Dict[str, Any]:
    return CROPS.get(kind) or RECIPES.get(kind) or {"name": kind, "emoji": "❓", "price": 0}


def find_by_name(table: Dict[str, Dict[str, Any]], text: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    """Look an entry up by id ("processing_plant") or display name ("processing plant")."""
    wanted = text.strip().lower()
    for key, entry in table.items():
        if wanted in (key, key.replace("_", " "), entry["name"].lower()):
            return key, entry
    return None


def unlocks_at(level: int) -> List[str]:
    rows = []
    for table in (CROPS, BUILDINGS, RECIPES):
        rows.extend(f"{e['emoji']} {e['name']}" for e in table.values() if e["level"] == level)
    return rows


def progress_bar(fraction: float, width: int = 20) -> str:
    filled = int(max(0.0, min(1.0, fraction)) * width)
    return "█" * filled + "░" * (width - filled)


class TownshipPlugin(Plugin):
    """City-building and farming: plant, harvest, process goods and fill world orders."""

    name = "township"
    version = "1.0.0"
    description = "City-building and farming game with level-based unlocks"
    category = "games"
    commands = ("township",)
    aliases = {"town": "township", "ts": "township"}

    def __init__(self, bot):
        super().__init__(bot)
        self.rng = getattr(bot, "rng", None) or random.Random()

    def scheduled_tasks(self) -> List[TaskSpec]:
        return [
            TaskSpec("crop_growth", "*/10 * * * *", self.process_crop_growth,
                     "Mark fully grown crops as ready"),
            TaskSpec("production_completion", "*/15 * * * *", self.process_production,
                     "Move finished factory goods into inventories"),
            TaskSpec("resource_generation", "0 */6 * * *", self.generate_passive_resources,
                     "Regenerate energy, faster with storage buildings"),
            TaskSpec("spawn_orders", "*/30 * * * *", self.spawn_orders,
                     "Spawn helicopter, train, plane and zoo orders"),
            TaskSpec("daily_bonus", "0 0 * * *", self.reset_daily_bonus,
                     "Make the daily bonus claimable again"),
            TaskSpec("leaderboard_update", "0 1 * * *", self.update_leaderboard,
                     "Snapshot the top towns"),
        ]

    async def _players(self):
        return await self.bot.store.get_collection(COLLECTION)

    async def _orders(self):
        return await self.bot.store.get_collection(ORDERS_COLLECTION)

    def _lock(self, user_id: str):
        return self.bot.users.lock_for(f"township:{user_id}")

    async def load_player(self, user_id: str) -> Optional[TownshipPlayer]:
        doc = await (await self._players()).find_one({"userId": user_id})
        return TownshipPlayer.from_doc(doc) if doc else None

    async def _require_player(self, ctx: PluginContext) -> TownshipPlayer:
        player = await self.load_player(ctx.sender)
        if player is None:
            raise NotFound(f"❌ You don't have a township yet. Use {ctx.config.command_prefix}township start")
        return player

    async def save_player(self, player: TownshipPlayer, now: Optional[datetime] = None) -> None:
        player.updatedAt = now or self.bot.clock()
        doc = player.to_doc()
        await (await self._players()).update_one({"userId": player.userId}, {"$set": doc})

    @staticmethod
    def gain_exp(player: TownshipPlayer, amount: int) -> int:
        """Add experience and return how many levels were gained."""
        player.experience += int(amount)
        before = player.level
        player.level = max(player.level, level_for(player.experience))
        return player.level - before

    @staticmethod
    def _level_note(levels: int, player: TownshipPlayer) -> str:
        return f"\n🎉 Level up! You are now level {player.level}" if levels else ""

    # ---------- scheduled ----------

    async def process_crop_growth(self, task_ctx) -> Dict[str, int]:
        now = task_ctx.now or self.bot.clock()
        coll = await self._players()
        players = ready = 0
        for doc in await coll.find({}, projection={"userId": 1}):
            async with self._lock(doc["userId"]):
                player = await self.load_player(doc["userId"])
                changed = 0
                for farm in player.farms.values():
                    for crop in farm.get("crops", []):
                        if not crop.get("ready") and crop["readyAt"] <= now:
                            crop["ready"] = True
                            changed += 1
                if changed:
                    await coll.update_one({"userId": player.userId}, {"$set": {"farms": player.farms}})
            if changed:
                players += 1
                ready += changed
        if ready:
            logger.info(f"Crop growth: {ready} crop(s) ready across {players} town(s)")
        return {"players": players, "ready": ready}

    async def process_production(self, task_ctx) -> Dict[str, int]:
        now = task_ctx.now or self.bot.clock()
        coll = await self._players()
        towns = finished = 0
        for doc in await coll.find({}, projection={"userId": 1}):
            async with self._lock(doc["userId"]):
                player = await self.load_player(doc["userId"])
                done = self.collect_production(player, now)
                if not done:
                    continue
                self.gain_exp(player, PRODUCE_EXP * sum(done.values()))
                await self.save_player(player, now)
            towns += 1
            finished += sum(done.values())
        if finished:
            logger.info(f"Production: {finished} item(s) finished in {towns} town(s)")
        return {"players": towns, "items": finished}

    @staticmethod
    def collect_production(player: TownshipPlayer, now: datetime) -> Dict[str, int]:
        done: Dict[str, int] = {}
        for factory in player.factories.values():
            running = []
            for job in factory.get("production", []):
                if job["completedAt"] <= now:
                    done[job["recipe"]] = done.get(job["recipe"], 0) + 1
                else:
                    running.append(job)
            factory["production"] = running
        player.add_items(done)
        return done

    async def generate_passive_resources(self, task_ctx) -> int:
        now = task_ctx.now or self.bot.clock()
        coll = await self._players()
        refilled = 0
        for doc in await coll.find({}, projection={"userId": 1}):
            async with self._lock(doc["userId"]):
                player = await self.load_player(doc["userId"])
                if player.energy >= player.maxEnergy:
                    continue
                storage = sum(len(player.buildings.get(k, [])) for k, b in BUILDINGS.items() if b["kind"] == "storage")
                player.energy = min(player.maxEnergy, player.energy + ENERGY_REGEN + ENERGY_PER_STORAGE * storage)
                await self.save_player(player, now)
            refilled += 1
        logger.info(f"Energy regenerated for {refilled} town(s)")
        return refilled

    async def spawn_orders(self, task_ctx) -> int:
        now = task_ctx.now or self.bot.clock()
        coll = await self._orders()
        active = await coll.count_documents({"expiresAt": {"$gt": now}, "remaining": {"$gt": 0}})
        room = ORDER_MAX_ACTIVE - active
        if room <= 0:
            return 0
        count = min(room, self.rng.randint(*ORDER_SPAWN_RANGE))
        items = list(CROPS) + list(RECIPES)
        for _ in range(count):
            kind = self.rng.choice(items)
            quantity = self.rng.randint(*ORDER_QTY_RANGE)
            roll = self.rng.random()
            urgency = "high" if roll > 0.85 else "medium" if roll > 0.5 else "low"
            multiplier = self.rng.uniform(*ORDER_REWARD_RANGE)
            reward = max(1, int(item_info(kind)["price"] * quantity * ORDER_URGENCY[urgency] * multiplier * 0.9))
            ttl = timedelta(minutes=self.rng.randint(*ORDER_TTL_MINUTES))
            await coll.insert_one({
                "itemType": kind,
                "quantity": quantity,
                "remaining": quantity,
                "reward": reward,
                "rewardPerUnit": max(1, reward // quantity),
                "source": self.rng.choice(ORDER_SOURCES),
                "urgency": urgency,
                "createdAt": now,
                "expiresAt": now + ttl,
                "completedAt": None,
            })
        logger.info(f"Spawned {count} township order(s), {active + count} active")
        return count

    async def reset_daily_bonus(self, task_ctx) -> int:
        result = await (await self._players()).update_many(
            {"completedDailyBonus": True}, {"$set": {"completedDailyBonus": False}}
        )
        return result.modified_count

    async def update_leaderboard(self, task_ctx) -> Dict[str, Any]:
        now = task_ctx.now or self.bot.clock()
        top = await (await self._players()).find(
            {}, sort=[("level", -1), ("experience", -1)], limit=10, projection={"userId": 1, "level": 1, "experience": 1}
        )
        snapshot = {
            "updatedAt": now,
            "players": [
                {"rank": i, "userId": d["userId"], "level": d["level"], "experience": d["experience"]}
                for i, d in enumerate(top, 1)
            ],
        }
        await (await self.bot.store.get_collection(LEADERBOARD_COLLECTION)).insert_one(snapshot)
        return snapshot

    # ---------- commands ----------

    async def run(self, ctx: PluginContext) -> None:
        sub = ctx.args[0].lower() if ctx.args else ""
        sub = {"info": "status", "inv": "inventory"}.get(sub, sub)
        handler = getattr(self, f"_sub_{sub}", None) if sub else None
        if handler is None:
            await self._help(ctx)
            return
        await handler(ctx, ctx.args[1:])

    async def _help(self, ctx: PluginContext) -> None:
        p = f"{ctx.config.command_prefix}township"
        await ctx.reply(
            "🏘️ *TOWNSHIP*\n\n"
            f"• {p} start\n• {p} status\n• {p} level\n"
            f"• {p} build [building]\n• {p} buildings\n"
            f"• {p} farm [farm-id] [crop]\n• {p} harvest [farm-id]\n"
            f"• {p} factory\n• {p} produce [factory-id] [recipe]\n"
            f"• {p} inventory\n• {p} trade sell <item> <amount>\n• {p} market\n"
            f"• {p} orders\n• {p} fulfill <order-id> <amount>\n"
            f"• {p} reward\n• {p} leaderboard"
        )

    async def _sub_start(self, ctx: PluginContext, args: List[str]) -> None:
        coll = await self._players()
        async with self._lock(ctx.sender):
            if await coll.find_one({"userId": ctx.sender}):
                raise InvalidInput(f"❌ You already have a township! Use {ctx.config.command_prefix}township status")
            now = self.bot.clock()
            player = TownshipPlayer(userId=ctx.sender, createdAt=now, updatedAt=now, lastActiveAt=now)
            try:
                await coll.insert_one(player.to_doc())
            except DuplicateKeyError:
                raise InvalidInput("❌ You already have a township!")
            balance = await self.bot.users.add_money(ctx.sender, STARTING_BONUS, "Township starting bonus",
                                                     apply_effects=False)
        logger.info(f"Township started by {ctx.sender}")
        p = f"{ctx.config.command_prefix}township"
        await ctx.reply(
            "✨ *Welcome to Township!*\n\n"
            f"🪙 Starting bonus: {ctx.helpers.money(STARTING_BONUS)} (wallet {ctx.helpers.money(balance)})\n"
            f"⚡ Energy: {player.energy}/{player.maxEnergy}\n\n"
            f"1. Build a farm: {p} build farm\n"
            f"2. Plant crops: {p} farm farm-1 wheat\n"
            f"3. Harvest: {p} harvest\n"
            f"4. Sell: {p} trade sell wheat 3"
        )

    async def _sub_status(self, ctx: PluginContext, args: List[str]) -> None:
        player = await self._require_player(ctx)
        wallet = await self.bot.users.get_money(ctx.sender)
        current, nxt = exp_for_level(player.level), exp_for_level(player.level + 1)
        fraction = (player.experience - current) / max(1, nxt - current)
        storage = "\n".join(
            f"{item_info(k)['emoji']} {v} {item_info(k)['name']}" for k, v in list(player.inventory.items())[:5]
        ) or "Empty"
        await ctx.reply(
            f"🏘️ *Your Township - Level {player.level}*\n\n"
            f"🪙 Wallet: {ctx.helpers.money(wallet)}\n"
            f"⭐ Experience: {player.experience:,} / {nxt:,}\n"
            f"   {progress_bar(fraction)} {fraction * 100:.1f}%\n"
            f"⚡ Energy: {player.energy}/{player.maxEnergy}\n\n"
            f"🚜 Farms: {len(player.farms)} | 🏭 Factories: {len(player.factories)} | "
            f"🏢 Other: {sum(len(v) for v in player.buildings.values())}\n\n"
            f"📦 *Storage:*\n{storage}"
        )

    async def _sub_level(self, ctx: PluginContext, args: List[str]) -> None:
        player = await self._require_player(ctx)
        current, nxt = exp_for_level(player.level), exp_for_level(player.level + 1)
        have, need = player.experience - current, max(1, nxt - current)
        upcoming = unlocks_at(player.level + 1)
        await ctx.reply(
            f"⭐ *Level {player.level}* / {MAX_LEVEL}\n\n"
            f"{progress_bar(have / need)} {have / need * 100:.1f}%\n"
            f"{have:,} / {need:,} XP\n\n"
            f"🔓 *Next level unlocks:*\n" + ("\n".join(upcoming) if upcoming else "Nothing new")
        )

    async def _sub_build(self, ctx: PluginContext, args: List[str]) -> None:
        if not args:
            player = await self._require_player(ctx)
            options = [k for k, b in BUILDINGS.items() if b["level"] <= player.level]
            lines = ["🏢 *Available Buildings* (reply with a number to build)"]
            for i, key in enumerate(options, 1):
                b = BUILDINGS[key]
                lines.append(f"{i}. {b['emoji']} {b['name']} - {ctx.helpers.money(b['price'])}")
            await ctx.menu("\n".join(lines), "township_build", options, self._build_choice)
            return
        found = find_by_name(BUILDINGS, " ".join(args))
        if found is None:
            raise NotFound("❌ Building not found.")
        await self.build(ctx, found[0])

    async def _build_choice(self, choice: int, ctx: PluginContext) -> None:
        player = await self._require_player(ctx)
        options = [k for k, b in BUILDINGS.items() if b["level"] <= player.level]
        await self.build(ctx, options[choice - 1])

    async def build(self, ctx: PluginContext, kind: str) -> None:
        spec = BUILDINGS[kind]
        async with self._lock(ctx.sender):
            player = await self._require_player(ctx)
            if spec["level"] > player.level:
                raise InvalidInput(f"❌ {spec['name']} unlocks at level {spec['level']}. You are level {player.level}.")
            await self.bot.users.charge(ctx.sender, spec["price"], f"Township building: {spec['name']}")
            now = self.bot.clock()
            key = player.new_id(kind)
            if spec["kind"] == "farm":
                player.farms[key] = {"id": key, "type": kind, "crops": [], "createdAt": now}
            elif spec["kind"] == "production":
                player.factories[key] = {"id": key, "type": kind, "production": [], "createdAt": now}
            else:
                player.buildings.setdefault(kind, []).append({"id": key, "createdAt": now})
            player.lastActiveAt = now
            await self.save_player(player, now)
        balance = await self.bot.users.get_money(ctx.sender)
        await ctx.reply(
            f"✅ Built {spec['emoji']} {spec['name']} (*{key}*)\n"
            f"💰 Cost: {ctx.helpers.money(spec['price'])}\n🪙 Remaining: {ctx.helpers.money(balance)}"
        )

    async def _sub_buildings(self, ctx: PluginContext, args: List[str]) -> None:
        player = await self._require_player(ctx)
        lines = ["🏘️ *Your Buildings*"]
        for kind, instances in player.buildings.items():
            lines.append(f"{BUILDINGS[kind]['emoji']} {BUILDINGS[kind]['name']}: {len(instances)}")
        for key, farm in player.farms.items():
            spec = BUILDINGS[farm["type"]]
            lines.append(f"{spec['emoji']} {key}: {len(farm['crops'])}/{spec['slots']} planted")
        for key, factory in player.factories.items():
            spec = BUILDINGS[factory["type"]]
            lines.append(f"{spec['emoji']} {key}: {len(factory['production'])}/{spec['slots']} in production")
        if len(lines) == 1:
            lines.append("None yet")
        await ctx.reply("\n".join(lines))

    async def _sub_farm(self, ctx: PluginContext, args: List[str]) -> None:
        p = f"{ctx.config.command_prefix}township"
        if len(args) < 2:
            player = await self._require_player(ctx)
            if not player.farms:
                raise NotFound(f"❌ You don't have any farms yet. Build one with {p} build farm")
            now = self.bot.clock()
            lines = ["🚜 *Your Farms*"]
            for key, farm in player.farms.items():
                ready = sum(1 for c in farm["crops"] if c.get("ready") or c["readyAt"] <= now)
                lines.append(f"• {key}: {len(farm['crops'])}/{BUILDINGS[farm['type']]['slots']} planted, {ready} ready")
            unlocked = ", ".join(c["name"].lower() for c in CROPS.values() if c["level"] <= player.level)
            lines += ["", f"🌱 Crops: {unlocked}", f"Use: {p} farm <farm-id> <crop>"]
            await ctx.reply("\n".join(lines))
            return

        farm_id = args[0].lower()
        found = find_by_name(CROPS, " ".join(args[1:]))
        if found is None:
            raise NotFound("❌ Crop not found.")
        kind, crop = found
        async with self._lock(ctx.sender):
            player = await self._require_player(ctx)
            farm = player.farms.get(farm_id)
            if farm is None:
                raise NotFound(f"❌ Farm {farm_id} not found.")
            if crop["level"] > player.level:
                raise InvalidInput(f"❌ {crop['name']} unlocks at level {crop['level']}. You are level {player.level}.")
            if len(farm["crops"]) >= BUILDINGS[farm["type"]]["slots"]:
                raise InvalidInput(f"❌ {farm_id} has no free slots. Harvest first.")
            if player.energy < PLANT_ENERGY:
                raise InvalidInput(f"⚡ Not enough energy ({player.energy}/{PLANT_ENERGY}).")
            now = self.bot.clock()
            growth = timedelta(seconds=crop["growth"] * GROWTH_FACTOR.get(farm["type"], 1.0))
            farm["crops"].append({"type": kind, "plantedAt": now, "readyAt": now + growth, "ready": False})
            player.energy -= PLANT_ENERGY
            player.lastActiveAt = now
            await self.save_player(player, now)
        await ctx.reply(f"✅ Planted {crop['emoji']} {crop['name']} on {farm_id}\n⏱️ Ready in {humanize_delta(growth)}")

    async def _sub_harvest(self, ctx: PluginContext, args: List[str]) -> None:
        async with self._lock(ctx.sender):
            player = await self._require_player(ctx)
            if args:
                farm = player.farms.get(args[0].lower())
                if farm is None:
                    raise NotFound(f"❌ Farm {args[0]} not found.")
                farms = [farm]
            else:
                farms = list(player.farms.values())
            now = self.bot.clock()
            harvested: Dict[str, int] = {}
            slots = 0
            for farm in farms:
                growing = []
                for crop in farm["crops"]:
                    if crop["readyAt"] <= now:
                        harvested[crop["type"]] = harvested.get(crop["type"], 0) + CROPS[crop["type"]]["yield"]
                        slots += 1
                    else:
                        growing.append(crop)
                farm["crops"] = growing
            if not slots:
                raise InvalidInput("❌ No crops ready to harvest.")
            player.add_items(harvested)
            levels = self.gain_exp(player, HARVEST_EXP * slots)
            player.lastActiveAt = now
            await self.save_player(player, now)
        lines = [f"{CROPS[k]['emoji']} {v} {CROPS[k]['name']}" for k, v in harvested.items()]
        await ctx.reply(
            "✅ *Harvest Complete!*\n" + "\n".join(lines)
            + f"\n⭐ +{HARVEST_EXP * slots} XP" + self._level_note(levels, player)
        )

    async def _sub_factory(self, ctx: PluginContext, args: List[str]) -> None:
        player = await self._require_player(ctx)
        p = f"{ctx.config.command_prefix}township"
        if not player.factories:
            raise NotFound(f"❌ You don't have any factories yet. Build one with {p} build factory")
        now = self.bot.clock()
        lines = ["🏭 *Your Factories*"]
        for key, factory in player.factories.items():
            lines.append(f"• {key}: {len(factory['production'])}/{BUILDINGS[factory['type']]['slots']} busy")
            for job in factory["production"]:
                left = humanize_delta(job["completedAt"] - now)
                lines.append(f"   {RECIPES[job['recipe']]['emoji']} {RECIPES[job['recipe']]['name']} ({left})")
        lines.append(f"\nUse: {p} produce <factory-id> <recipe>")
        await ctx.reply("\n".join(lines))

    async def _sub_produce(self, ctx: PluginContext, args: List[str]) -> None:
        if len(args) < 2:
            player = await self._require_player(ctx)
            lines = ["🏭 *Available Recipes*"]
            for recipe in RECIPES.values():
                if recipe["level"] <= player.level:
                    inputs = " + ".join(f"{n} {item_info(k)['name']}" for k, n in recipe["inputs"].items())
                    lines.append(f"{recipe['emoji']} {recipe['name']}: {inputs}")
            if len(lines) == 1:
                lines.append(f"None yet. {RECIPES['flour']['name']} unlocks at level {RECIPES['flour']['level']}.")
            await ctx.reply("\n".join(lines))
            return

        factory_id = args[0].lower()
        found = find_by_name(RECIPES, " ".join(args[1:]))
        if found is None:
            raise NotFound("❌ Recipe not found.")
        kind, recipe = found
        async with self._lock(ctx.sender):
            player = await self._require_player(ctx)
            factory = player.factories.get(factory_id)
            if factory is None:
                raise NotFound(f"❌ Factory {factory_id} not found.")
            if recipe["level"] > player.level:
                raise InvalidInput(f"❌ {recipe['name']} unlocks at level {recipe['level']}. You are level {player.level}.")
            if len(factory["production"]) >= BUILDINGS[factory["type"]]["slots"]:
                raise InvalidInput(f"❌ {factory_id} is fully booked.")
            for item, amount in recipe["inputs"].items():
                have = int(player.inventory.get(item, 0))
                if have < amount:
                    raise InvalidInput(f"❌ You need {amount} {item_info(item)['name']} but have {have}.")
            if player.energy < PRODUCE_ENERGY:
                raise InvalidInput(f"⚡ Not enough energy ({player.energy}/{PRODUCE_ENERGY}).")
            for item, amount in recipe["inputs"].items():
                player.take_item(item, amount)
            now = self.bot.clock()
            factory["production"].append({
                "recipe": kind,
                "startedAt": now,
                "completedAt": now + timedelta(seconds=recipe["time"]),
            })
            player.energy -= PRODUCE_ENERGY
            player.lastActiveAt = now
            await self.save_player(player, now)
        await ctx.reply(
            f"✅ Started {recipe['emoji']} {recipe['name']} in {factory_id}\n"
            f"⏱️ Ready in {humanize_delta(timedelta(seconds=recipe['time']))}"
        )

    async def _sub_inventory(self, ctx: PluginContext, args: List[str]) -> None:
        player = await self._require_player(ctx)
        if not player.inventory:
            await ctx.reply("📦 Your inventory is empty.")
            return
        lines = ["📦 *Your Inventory*"]
        for kind, amount in player.inventory.items():
            info = item_info(kind)
            lines.append(f"{info['emoji']} {info['name']}: {amount} ({ctx.helpers.money(info['price'])} each)")
        await ctx.reply("\n".join(lines))

    async def _sub_trade(self, ctx: PluginContext, args: List[str]) -> None:
        p = f"{ctx.config.command_prefix}township"
        if len(args) < 3 or args[0].lower() != "sell":
            raise InvalidInput(f"⚠️ Usage: {p} trade sell <item> <amount>")
        amount = ctx.helpers.parse_amount(args[-1])
        found = find_by_name(CROPS, " ".join(args[1:-1])) or find_by_name(RECIPES, " ".join(args[1:-1]))
        if found is None:
            raise NotFound("❌ Item not found.")
        kind, item = found
        async with self._lock(ctx.sender):
            player = await self._require_player(ctx)
            have = int(player.inventory.get(kind, 0))
            if have < amount:
                raise InvalidInput(f"❌ You only have {have} {item['name']}.")
            player.take_item(kind, amount)
            levels = self.gain_exp(player, SELL_EXP_PER_UNIT * amount)
            await self.save_player(player)
            total = amount * item["price"]
            balance = await self.bot.users.add_money(ctx.sender, total, f"Township sold {amount}x {item['name']}")
        await ctx.reply(
            f"✅ Sold {amount} x {item['emoji']} {item['name']}\n"
            f"💰 Earned: {ctx.helpers.money(total)}\n🪙 Balance: {ctx.helpers.money(balance)}\n"
            f"⭐ +{SELL_EXP_PER_UNIT * amount} XP" + self._level_note(levels, player)
        )

    async def _sub_market(self, ctx: PluginContext, args: List[str]) -> None:
        lines = ["🏪 *Township Market*", ""]
        for table in (CROPS, RECIPES):
            lines.extend(f"{e['emoji']} {e['name']}: {ctx.helpers.money(e['price'])}" for e in table.values())
        lines += ["", f"Sell with {ctx.config.command_prefix}township trade sell <item> <amount>"]
        await ctx.reply("\n".join(lines))

    async def active_orders(self, now: datetime, limit: int = 0) -> List[Dict[str, Any]]:
        return await (await self._orders()).find(
            {"expiresAt": {"$gt": now}, "remaining": {"$gt": 0}}, sort=[("expiresAt", 1)], limit=limit
        )

    async def _sub_orders(self, ctx: PluginContext, args: List[str]) -> None:
        now = self.bot.clock()
        orders = await self.active_orders(now, limit=10)
        if not orders:
            await ctx.reply("📭 No active world orders right now. Check back soon!")
            return
        lines = ["📦 *Active World Orders*"]
        for order in orders:
            info = item_info(order["itemType"])
            lines.append(
                f"`{str(order['_id'])[-6:]}` {info['emoji']} {info['name']} x{order['remaining']} | "
                f"{ctx.helpers.money(order['reward'])} | {order['source']} | {order['urgency']} | "
                f"{humanize_delta(order['expiresAt'] - now)} left"
            )
        lines.append(f"\nFulfill with {ctx.config.command_prefix}township fulfill <order-id> <amount>")
        await ctx.reply("\n".join(lines))

    async def _sub_fulfill(self, ctx: PluginContext, args: List[str]) -> None:
        if len(args) < 2:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}township fulfill <order-id> <amount>")
        suffix = args[0].lower()
        amount = ctx.helpers.parse_amount(args[1])
        now = self.bot.clock()
        order = next((o for o in await self.active_orders(now) if str(o["_id"])[-6:].lower() == suffix), None)
        if order is None:
            raise NotFound("❌ Order not found or expired.")
        kind = order["itemType"]
        info = item_info(kind)
        async with self._lock(ctx.sender):
            player = await self._require_player(ctx)
            take = min(amount, int(player.inventory.get(kind, 0)), int(order["remaining"]))
            if take <= 0:
                raise InvalidInput(f"❌ You don't have any {info['name']} in your inventory.")
            result = await (await self._orders()).update_one(
                {"_id": order["_id"], "remaining": {"$gte": take}},
                {"$inc": {"remaining": -take}, "$set": {"updatedAt": now}},
            )
            if not result.matched_count:
                raise InvalidInput("❌ That order was just filled by someone else.")
            left = int(order["remaining"]) - take
            if left <= 0:
                await (await self._orders()).update_one({"_id": order["_id"]}, {"$set": {"completedAt": now}})
            reward = int(order.get("rewardPerUnit") or max(1, order["reward"] // order["quantity"])) * take
            player.take_item(kind, take)
            levels = self.gain_exp(player, reward // 10)
            player.lastActiveAt = now
            await self.save_player(player, now)
            balance = await self.bot.users.add_money(ctx.sender, reward, f"Township order {suffix}")
        await ctx.reply(
            f"✅ Delivered {take} x {info['emoji']} {info['name']}\n"
            f"💰 Reward: {ctx.helpers.money(reward)}\n🪙 Balance: {ctx.helpers.money(balance)}\n"
            f"⭐ +{reward // 10} XP\n📦 Order remaining: {max(0, left)}" + self._level_note(levels, player)
        )

    async def _sub_reward(self, ctx: PluginContext, args: List[str]) -> None:
        today = local_date_str(ctx.config.timezone, self.bot.clock())
        async with self._lock(ctx.sender):
            player = await self._require_player(ctx)
            if player.lastBonusDate == today:
                raise InvalidInput("❌ You already claimed your daily bonus! Come back tomorrow.")
            player.completedDailyBonus = True
            player.lastBonusDate = today
            await self.save_player(player)
            balance = await self.bot.users.add_money(ctx.sender, DAILY_BONUS, "Township daily bonus",
                                                     apply_effects=False)
        await ctx.reply(f"🎁 *Daily Bonus Claimed!*\n💰 +{ctx.helpers.money(DAILY_BONUS)}\n🪙 Balance: {ctx.helpers.money(balance)}")

    async def _sub_leaderboard(self, ctx: PluginContext, args: List[str]) -> None:
        docs = await (await self._players()).find({}, sort=[("level", -1), ("experience", -1)], limit=10)
        if not docs:
            await ctx.reply("🏘️ No townships yet.")
            return
        lines = ["🏆 *TOWNSHIP LEADERBOARD*", ""]
        for i, doc in enumerate(docs, 1):
            lines.append(f"{i}. @{doc['userId'].split('@')[0]} - Level {doc['level']}, {doc['experience']:,} XP")
        await ctx.reply("\n".join(lines), mentions=[d["userId"] for d in docs])


def setup(bot) -> TownshipPlugin:
    return TownshipPlugin(bot)
