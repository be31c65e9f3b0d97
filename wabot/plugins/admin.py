# wabot/plugins/admin.py
from __future__ import annotations

import logging
from typing import List

from ..errors import InvalidInput, NotFound
from ..utils.timeutil import format_local
from .base import Plugin, PluginContext

logger = logging.getLogger(__name__)


class AdminPlugin(Plugin):
    """Owner tools: bans and a look inside the running bot."""

    name = "admin"
    version = "1.2.0"
    description = "Owner-only bans and runtime inspection"
    category = "owner"
    commands = ("ban", "unban", "stats", "tasks", "runtask", "plugins")
    aliases = {"botstats": "stats", "trigger": "runtask"}
    owner_only = True

    async def run(self, ctx: PluginContext) -> None:
        await getattr(self, f"_cmd_{ctx.command}")(ctx)

    async def _cmd_ban(self, ctx: PluginContext) -> None:
        target = ctx.helpers.target_user(ctx.msg, ctx.args)
        if not target:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}ban @user [reason]")
        reason = " ".join(a for a in ctx.args if not a.startswith("@")) or "No reason given"
        if ctx.helpers.is_owner(target):
            raise InvalidInput("❌ The owner cannot be banned.")
        created = await ctx.helpers.permissions.ban(target, ctx.sender, reason)
        logger.info(f"{ctx.sender} banned {target}: {reason}")
        state = "banned" if created else "ban updated for"
        await ctx.reply(f"🔨 User @{target.split('@')[0]} {state}.\n📝 Reason: {reason}", mentions=[target])

    async def _cmd_unban(self, ctx: PluginContext) -> None:
        target = ctx.helpers.target_user(ctx.msg, ctx.args)
        if not target:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}unban @user")
        if not await ctx.helpers.permissions.unban(target):
            raise NotFound(f"❌ @{target.split('@')[0]} is not banned.")
        await ctx.reply(f"✅ User @{target.split('@')[0]} unbanned.", mentions=[target])

    async def _cmd_stats(self, ctx: PluginContext) -> None:
        bot = self.bot
        router = bot.router.stats
        tasks = bot.scheduler.health_report()
        report = await bot.health.check_now()
        users = await (await bot.store.get_collection("users")).count_documents({})
        lines = [
            "📊 *BOT STATISTICS*",
            "",
            f"🤖 {bot.config.bot_name} ({bot.config.mode} mode)",
            f"👥 Users: {users}",
            f"🧩 Plugins: {len(bot.registry.plugins)}",
            f"💬 Messages: {router['messages']} | Commands: {router['commands']}",
            f"⛔ Denied: {router['denied']} | 🐢 Rate limited: {router['rate_limited']} | ❌ Errors: {router['errors']}",
            f"⏰ Tasks: {tasks['total_tasks']} ({tasks['total_runs']} runs, {tasks['total_errors']} errors)",
            "",
        ]
        lines.extend(bot.health.summary_lines(report))
        await ctx.reply("\n".join(lines))

    async def _cmd_tasks(self, ctx: PluginContext) -> None:
        rows = self.bot.scheduler.status()
        if not rows:
            await ctx.reply("⏰ No scheduled tasks registered.")
            return
        tz = ctx.config.timezone
        lines: List[str] = ["⏰ *SCHEDULED TASKS*", ""]
        for task in self.bot.scheduler.tasks.values():
            state = "🟢" if task.enabled else "🔴"
            if task.running:
                state = "🔄"
            last = format_local(task.last_end, tz) if task.last_end else "never"
            upcoming = format_local(self.bot.scheduler.next_run(task), tz)
            lines.append(f"{state} {task.key} `{task.cron.expression}` runs {task.run_count}, "
                         f"errors {task.error_count}, last {last}, next {upcoming}")
        await ctx.reply("\n".join(lines))

    async def _cmd_runtask(self, ctx: PluginContext) -> None:
        if not ctx.args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}runtask <plugin.task>")
        key = ctx.args[0]
        task = self.bot.scheduler.get(key)
        if not task.enabled:
            self.bot.scheduler.enable(key)
        if not await self.bot.scheduler.trigger(key):
            await ctx.reply(f"⏳ {key} is already running.")
            return
        logger.info(f"{ctx.sender} triggered {key}")
        await ctx.reply(f"▶️ Triggered {key}")

    async def _cmd_plugins(self, ctx: PluginContext) -> None:
        stats = self.bot.registry.get_stats()
        lines = ["🧩 *PLUGINS*", ""]
        for name, plugin in sorted(self.bot.registry.plugins.items()):
            s = stats.get(name, {})
            lines.append(
                f"• {name} v{plugin.version}: {len(plugin.commands)} command(s), "
                f"{s.get('executions', 0)} runs, {s.get('error_rate', 0):.0%} errors, "
                f"avg {s.get('avg_time_ms', 0):.0f}ms"
            )
        await ctx.reply("\n".join(lines))


def setup(bot) -> AdminPlugin:
    return AdminPlugin(bot)
