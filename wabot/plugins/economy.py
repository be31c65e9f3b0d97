# wabot/plugins/economy.py
from __future__ import annotations

import logging
import random
from datetime import timedelta
from typing import List

from pymongo.errors import DuplicateKeyError

from ..database.models import EffectKind, active_effects
from ..errors import InsufficientFunds, InvalidInput, NotFound
from ..utils.timeutil import humanize_delta
from .base import Plugin, PluginContext, TaskSpec

logger = logging.getLogger(__name__)

WORK_JOBS = ("Uber Driver", "Food Delivery", "Freelancer", "Tutor", "Cleaner", "Mechanic")
CLAN_CREATION_COST = 5000
DAILY_COOLDOWN = timedelta(hours=24)
DAILY_STREAK_WINDOW = timedelta(hours=48)

# kind -> (label, price, duration)
EFFECT_SHOP = {
    EffectKind.WORK_BOOST: ("⚡ Work Boost (x2 work pay)", 3000, timedelta(hours=24)),
    EffectKind.DAILY_BOOST: ("🍀 Lucky Charm (x1.5 daily reward)", 2500, timedelta(days=7)),
    EffectKind.VIP_BONUS: ("👑 VIP Status (+25% on all earnings)", 100000, timedelta(days=30)),
}


class EconomyPlugin(Plugin):
    """Wallet, bank, daily/work income, transfers, timed boosts and clans."""

    name = "economy"
    version = "2.0.0"
    description = "Wallet, bank, work, daily rewards, boosts and clans"
    category = "economy"
    commands = ("balance", "deposit", "withdraw", "send", "daily", "work", "leaderboard", "effects", "clan")
    aliases = {
        "bal": "balance",
        "dep": "deposit",
        "wd": "withdraw",
        "transfer": "send",
        "pay": "send",
        "lb": "leaderboard",
    }

    def __init__(self, bot):
        super().__init__(bot)
        self.rng = getattr(bot, "rng", None) or random.Random()

    def scheduled_tasks(self) -> List[TaskSpec]:
        return [TaskSpec("effects_sweep", "*/10 * * * *", self.sweep_effects, "Remove expired boosts")]

    async def sweep_effects(self, task_ctx) -> int:
        return await self.bot.users.sweep_expired_effects()

    async def run(self, ctx: PluginContext) -> None:
        handler = getattr(self, f"_cmd_{ctx.command}")
        await handler(ctx)

    # ---------- wallet ----------

    async def _cmd_balance(self, ctx: PluginContext) -> None:
        target = ctx.helpers.target_user(ctx.msg, ctx.args) or ctx.sender
        balance, bank = await self.bot.users.get_balance(target)
        money = ctx.helpers.money
        await ctx.reply(
            f"💰 *BALANCE* 💰\n\n"
            f"👤 @{target.split('@')[0]}\n"
            f"💵 Wallet: {money(balance)}\n"
            f"🏦 Bank: {money(bank)}\n"
            f"💎 Total: {money(balance + bank)}",
            mentions=[target],
        )

    def _amount_or_all(self, ctx: PluginContext, available: int) -> int:
        if not ctx.args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}{ctx.invoked_with} <amount|all>")
        if ctx.args[0].lower() == "all":
            if available <= 0:
                raise InvalidInput("⚠️ Nothing to move")
            return available
        return ctx.helpers.parse_amount(ctx.args[0])

    async def _cmd_deposit(self, ctx: PluginContext) -> None:
        balance, _ = await self.bot.users.get_balance(ctx.sender)
        amount = self._amount_or_all(ctx, balance)
        balance, bank = await self.bot.users.deposit(ctx.sender, amount)
        await ctx.reply(
            f"🏦 Deposited {ctx.helpers.money(amount)}\n\n"
            f"💵 Wallet: {ctx.helpers.money(balance)}\n🏦 Bank: {ctx.helpers.money(bank)}"
        )

    async def _cmd_withdraw(self, ctx: PluginContext) -> None:
        _, bank = await self.bot.users.get_balance(ctx.sender)
        amount = self._amount_or_all(ctx, bank)
        balance, bank = await self.bot.users.withdraw(ctx.sender, amount)
        await ctx.reply(
            f"💵 Withdrew {ctx.helpers.money(amount)}\n\n"
            f"💵 Wallet: {ctx.helpers.money(balance)}\n🏦 Bank: {ctx.helpers.money(bank)}"
        )

    async def _cmd_send(self, ctx: PluginContext) -> None:
        target = ctx.helpers.target_user(ctx.msg, ctx.args)
        amounts = [a for a in ctx.args if not a.startswith("@")]
        if not target or not amounts:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}send @user <amount>")
        amount = ctx.helpers.parse_amount(amounts[-1])
        if not await self.bot.users.transfer(ctx.sender, target, amount):
            raise InsufficientFunds(amount, await self.bot.users.get_money(ctx.sender), ctx.config.currency_symbol)
        await ctx.reply(
            f"✅ Sent {ctx.helpers.money(amount)} to @{target.split('@')[0]}",
            mentions=[target],
        )

    # ---------- income ----------

    async def _cmd_daily(self, ctx: PluginContext) -> None:
        users = self.bot.users
        now = ctx.helpers.now()
        async with self._claim_lock(ctx.sender):
            profile = await users.get_user_data(ctx.sender)
            if profile.lastDaily and now - profile.lastDaily < DAILY_COOLDOWN:
                left = DAILY_COOLDOWN - (now - profile.lastDaily)
                await ctx.reply(f"⏰ You have already claimed your daily reward. Come back in {humanize_delta(left)}.")
                return
            streak = 1
            if profile.lastDaily and now - profile.lastDaily < DAILY_STREAK_WINDOW:
                streak = profile.dailyStreak + 1
            await users.update_user_data(ctx.sender, {"lastDaily": now, "dailyStreak": streak})
        top = ctx.config.daily_reward
        amount = self.rng.randint(max(1, top // 2), top)
        balance = await users.add_money(ctx.sender, amount, "Daily reward")
        await ctx.reply(
            f"🎁 *Daily Reward Claimed!*\n\n"
            f"💰 Received: {ctx.helpers.money(amount)} (before boosts)\n"
            f"💵 New balance: {ctx.helpers.money(balance)}\n"
            f"🔥 Daily streak: {streak} day(s)"
        )

    async def _cmd_work(self, ctx: PluginContext) -> None:
        users = self.bot.users
        now = ctx.helpers.now()
        cooldown = timedelta(minutes=ctx.config.work_cooldown_min)
        async with self._claim_lock(ctx.sender):
            profile = await users.get_user_data(ctx.sender)
            if profile.lastWork and now - profile.lastWork < cooldown:
                left = cooldown - (now - profile.lastWork)
                await ctx.reply(f"⏱️ You're tired! Rest for {humanize_delta(left)} before working again.")
                return
            await users.update_user_data(ctx.sender, {"lastWork": now})
        job = self.rng.choice(WORK_JOBS)
        amount = self.rng.randint(ctx.config.work_min, ctx.config.work_max)
        balance = await users.add_money(ctx.sender, amount, "Work earnings")
        await ctx.reply(
            f"💼 *Work Complete!*\n\n"
            f"🔨 Job: {job}\n"
            f"💰 Earned: {ctx.helpers.money(amount)} (before boosts)\n"
            f"💵 New balance: {ctx.helpers.money(balance)}"
        )

    def _claim_lock(self, user_id: str):
        return self.bot.users.lock_for(f"claim:{user_id}")

    async def _cmd_leaderboard(self, ctx: PluginContext) -> None:
        by = "bank" if ctx.args and ctx.args[0].lower() == "bank" else "balance"
        rows = await self.bot.users.leaderboard(limit=10, by=by)
        if not rows:
            await ctx.reply("📊 No players yet.")
            return
        medals = {1: "🥇", 2: "🥈", 3: "🥉"}
        lines = [f"🏆 *LEADERBOARD ({'bank' if by == 'bank' else 'wallet'})* 🏆\n"]
        mentions = []
        for i, row in enumerate(rows, 1):
            mentions.append(row["userId"])
            lines.append(f"{medals.get(i, f'{i}.')} @{row['userId'].split('@')[0]}: {ctx.helpers.money(row.get(by) or 0)}")
        await ctx.reply("\n".join(lines), mentions=mentions)

    # ---------- effects ----------

    async def _cmd_effects(self, ctx: PluginContext) -> None:
        now = ctx.helpers.now()
        profile = await self.bot.users.get_user_data(ctx.sender)
        current = active_effects(profile.activeEffects, now)
        lines = ["✨ *ACTIVE BOOSTS*"]
        if current:
            for effect in current:
                lines.append(f"• {EFFECT_SHOP[effect.kind][0]}: {humanize_delta(effect.expiresAt - now)} left")
        else:
            lines.append("• none")

        options = list(EFFECT_SHOP)
        lines.append("\n🛒 *BOOST SHOP* (reply with a number to buy)")
        for i, kind in enumerate(options, 1):
            label, price, duration = EFFECT_SHOP[kind]
            lines.append(f"{i}. {label}: {ctx.helpers.money(price)} for {humanize_delta(duration)}")
        await ctx.menu("\n".join(lines), "effects_shop", options, self._buy_effect)

    async def _buy_effect(self, choice: int, ctx: PluginContext) -> None:
        kind = list(EFFECT_SHOP)[choice - 1]
        label, price, duration = EFFECT_SHOP[kind]
        await self.bot.users.charge(ctx.sender, price, f"Shop: {kind.value}")
        effect = await self.bot.users.grant_effect(ctx.sender, kind, duration)
        await ctx.reply(
            f"✅ Purchased {label}\n"
            f"⏳ Active for {humanize_delta(effect.expiresAt - ctx.helpers.now())}"
        )

    # ---------- clans ----------

    async def _cmd_clan(self, ctx: PluginContext) -> None:
        sub = ctx.args[0].lower() if ctx.args else ""
        name = " ".join(ctx.args[1:]).strip()
        actions = {
            "create": self._clan_create,
            "join": self._clan_join,
            "leave": self._clan_leave,
            "disband": self._clan_disband,
            "info": self._clan_info,
            "list": self._clan_list,
        }
        if sub not in actions:
            p = ctx.config.command_prefix
            await ctx.reply(
                "🛡️ *Clan Commands:*\n\n"
                f"• {p}clan create <name>\n• {p}clan join <name>\n• {p}clan leave\n"
                f"• {p}clan disband\n• {p}clan info\n• {p}clan list"
            )
            return
        await actions[sub](ctx, name)

    async def _clans(self):
        return await self.bot.store.get_collection("clans")

    async def _clan_create(self, ctx: PluginContext, name: str) -> None:
        if not name:
            raise InvalidInput("⚠️ Please provide a clan name")
        profile = await self.bot.users.get_user_data(ctx.sender)
        if profile.clan:
            raise InvalidInput("🚫 You are already in a clan")
        clans = await self._clans()
        if await clans.find_one({"name": name}):
            raise InvalidInput(f"🚫 Clan \"{name}\" already exists")
        await self.bot.users.charge(ctx.sender, CLAN_CREATION_COST, f"Clan creation: {name}")
        try:
            await clans.insert_one({
                "name": name,
                "leader": ctx.sender,
                "members": [ctx.sender],
                "level": 1,
                "bank": 0,
                "createdAt": ctx.helpers.now(),
            })
        except DuplicateKeyError:
            await self.bot.users.add_money(ctx.sender, CLAN_CREATION_COST, "Clan creation refund", apply_effects=False)
            raise InvalidInput(f"🚫 Clan \"{name}\" already exists")
        await self.bot.users.update_user_data(ctx.sender, {"clan": name})
        await ctx.reply(
            f"✅ Clan \"{name}\" created!\n\n👑 You are the clan leader\n"
            f"💰 {ctx.helpers.money(CLAN_CREATION_COST)} deducted as creation fee"
        )

    async def _clan_join(self, ctx: PluginContext, name: str) -> None:
        if not name:
            raise InvalidInput("⚠️ Please specify a clan name")
        profile = await self.bot.users.get_user_data(ctx.sender)
        if profile.clan:
            raise InvalidInput("🚫 You are already in a clan")
        clans = await self._clans()
        result = await clans.update_one({"name": name}, {"$addToSet": {"members": ctx.sender}})
        if not result.matched_count:
            raise NotFound(f"❌ Clan \"{name}\" not found. Use {ctx.config.command_prefix}clan list")
        await self.bot.users.update_user_data(ctx.sender, {"clan": name})
        await ctx.reply(f"✅ You have joined clan \"{name}\"!")

    async def _own_clan(self, ctx: PluginContext):
        profile = await self.bot.users.get_user_data(ctx.sender)
        if not profile.clan:
            raise NotFound("⚠️ You are not in any clan")
        clans = await self._clans()
        clan = await clans.find_one({"name": profile.clan})
        if clan is None:
            await self.bot.users.update_user_data(ctx.sender, {"clan": None})
            raise NotFound("❌ Your clan no longer exists")
        return clan

    async def _clan_leave(self, ctx: PluginContext, _name: str) -> None:
        clan = await self._own_clan(ctx)
        if clan["leader"] == ctx.sender:
            raise InvalidInput(f"🚫 Clan leaders cannot leave. Use {ctx.config.command_prefix}clan disband")
        clans = await self._clans()
        await clans.update_one({"name": clan["name"]}, {"$pull": {"members": ctx.sender}})
        await self.bot.users.update_user_data(ctx.sender, {"clan": None})
        await ctx.reply(f"✅ You have left clan \"{clan['name']}\"")

    async def _clan_disband(self, ctx: PluginContext, _name: str) -> None:
        clan = await self._own_clan(ctx)
        if clan["leader"] != ctx.sender:
            raise InvalidInput("🚫 Only the clan leader can disband the clan")
        users = await self.bot.store.get_collection("users")
        await users.update_many({"clan": clan["name"]}, {"$set": {"clan": None}})
        clans = await self._clans()
        await clans.delete_one({"name": clan["name"]})
        logger.info(f"Clan {clan['name']} disbanded by {ctx.sender}")
        await ctx.reply(f"💥 Clan \"{clan['name']}\" has been disbanded")

    async def _clan_info(self, ctx: PluginContext, _name: str) -> None:
        clan = await self._own_clan(ctx)
        await ctx.reply(
            f"🏰 *Clan Information*\n\n"
            f"🛡️ Name: {clan['name']}\n"
            f"👑 Leader: @{clan['leader'].split('@')[0]}\n"
            f"👥 Members: {len(clan.get('members') or [])}\n"
            f"🏅 Level: {clan.get('level', 1)}\n"
            f"💰 Clan bank: {ctx.helpers.money(clan.get('bank', 0))}",
            mentions=[clan["leader"]],
        )

    async def _clan_list(self, ctx: PluginContext, _name: str) -> None:
        clans = await self._clans()
        rows = await clans.find({}, sort=[("name", 1)], limit=20)
        if not rows:
            await ctx.reply("🛡️ No clans yet.")
            return
        lines = ["🛡️ *CLANS*\n"] + [f"• {c['name']} ({len(c.get('members') or [])} members)" for c in rows]
        await ctx.reply("\n".join(lines))


def setup(bot) -> EconomyPlugin:
    return EconomyPlugin(bot)
