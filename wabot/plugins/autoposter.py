# wabot/plugins/autoposter.py
from __future__ import annotations

import logging
from typing import List

from ..database.models.autoposter import DEFAULT_TEMPLATE
from ..errors import InvalidInput, NotAuthorized, NotFound
from ..services.autoposter import TEMPLATE_VARIABLES, AutoPoster, XClient
from ..utils.timeutil import format_local
from .base import Plugin, PluginContext, TaskSpec

logger = logging.getLogger(__name__)

SUBCOMMANDS = ("add", "remove", "list", "enable", "disable", "setinterval", "settemplate", "gettemplate", "test")


class AutoPosterPlugin(Plugin):
    name = "autoposter"
    version = "1.1.0"
    description = "Repost new X posts from configured accounts into chats"
    category = "automation"
    commands = ("xpost",)
    aliases = {"xposter": "xpost"}

    def __init__(self, bot, client=None):
        super().__init__(bot)
        config = bot.config
        self.poster = AutoPoster(
            bot.store,
            bot.messenger,
            client=client or XClient(getattr(config, "x_api_base", None)),
            default_bearer=getattr(config, "x_bearer_token", ""),
            default_interval=getattr(config, "x_default_interval_min", 60),
            timezone=config.timezone,
            clock=bot.clock,
        )
        bot.autoposter = self.poster

    def scheduled_tasks(self) -> List[TaskSpec]:
        return [TaskSpec("poll", "*/5 * * * *", self.poll, "Post new X posts for due accounts")]

    async def poll(self, task_ctx) -> dict:
        return await self.poster.poll(task_ctx.now)

    async def run(self, ctx: PluginContext) -> None:
        sub = ctx.args[0].lower() if ctx.args else ""
        if sub not in SUBCOMMANDS:
            await ctx.reply(
                "🐦 *X Auto Poster*\n\n"
                f"Commands: {', '.join(SUBCOMMANDS)}\n\n"
                f"• {ctx.config.command_prefix}xpost add <username> [chatId] [minutes] [bearerToken]"
            )
            return
        if not await ctx.helpers.is_admin(ctx.sender, ctx.chat_id):
            raise NotAuthorized(f"{ctx.sender} tried xpost {sub}")
        await getattr(self, f"_{sub}")(ctx, ctx.args[1:])

    def _username(self, ctx: PluginContext, args: List[str], usage: str) -> str:
        if not args:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}xpost {usage}")
        return args[0]

    async def _add(self, ctx: PluginContext, args: List[str]) -> None:
        username = self._username(ctx, args, "add <username> [chatId] [minutes] [bearerToken]")
        target = args[1] if len(args) > 1 else ctx.chat_id
        minutes = ctx.helpers.parse_int(args[2], "Interval") if len(args) > 2 else None
        bearer = args[3] if len(args) > 3 else None
        if not (bearer or self.poster.default_bearer):
            raise InvalidInput("❌ No X bearer token found. Set X_BEARER_TOKEN or pass it as the 4th argument.")
        user_id = await self.poster.client.user_id(username.lstrip("@"), bearer or self.poster.default_bearer)
        if not user_id:
            raise NotFound(f"❌ User @{username.lstrip('@')} not found or invalid bearer token.")
        account = await self.poster.add(username, target, interval_minutes=minutes, bearer_token=bearer, user_id=user_id)
        await ctx.reply(
            f"✅ Added @{account.username} (ID: {user_id}) for auto-posting every "
            f"{account.intervalMinutes} minutes to {account.targetChatId}"
        )

    async def _remove(self, ctx: PluginContext, args: List[str]) -> None:
        username = self._username(ctx, args, "remove <username>")
        if not await self.poster.remove(username):
            raise NotFound(f"❌ Account @{username.lstrip('@')} not found.")
        await ctx.reply(f"🗑️ Removed @{username.lstrip('@')} from the auto-post list.")

    async def _list(self, ctx: PluginContext, args: List[str]) -> None:
        accounts = await self.poster.accounts()
        if not accounts:
            await ctx.reply("No accounts configured for auto-posting.")
            return
        lines = ["🐦 *AUTO-POST ACCOUNTS*"]
        for a in accounts:
            last = format_local(a.lastRunAt, ctx.config.timezone) if a.lastRunAt else "never"
            state = "" if a.enabled else " [disabled]"
            lines.append(f"• @{a.username} → {a.targetChatId} (every {a.intervalMinutes}m, last run {last}){state}")
        await ctx.reply("\n".join(lines))

    async def _enable(self, ctx: PluginContext, args: List[str]) -> None:
        account = await self.poster.set_enabled(self._username(ctx, args, "enable <username>"), True)
        await ctx.reply(f"✅ Enabled @{account.username}")

    async def _disable(self, ctx: PluginContext, args: List[str]) -> None:
        account = await self.poster.set_enabled(self._username(ctx, args, "disable <username>"), False)
        await ctx.reply(f"⏸️ Disabled @{account.username}")

    async def _setinterval(self, ctx: PluginContext, args: List[str]) -> None:
        if len(args) < 2:
            raise InvalidInput(f"⚠️ Usage: {ctx.config.command_prefix}xpost setinterval <username> <minutes>")
        minutes = ctx.helpers.parse_int(args[1], "Interval")
        account = await self.poster.update_config(args[0], intervalMinutes=minutes)
        await ctx.reply(f"⏱️ Set @{account.username} interval to {account.intervalMinutes} minutes")

    async def _settemplate(self, ctx: PluginContext, args: List[str]) -> None:
        username = self._username(ctx, args, 'settemplate <username> "<template>"')
        raw = ctx.text.split(None, 2)[2] if len(ctx.text.split(None, 2)) > 2 else ""
        template = raw.strip().strip("\"'").replace("\\n", "\n")
        if not template:
            raise InvalidInput("Template cannot be empty.")
        account = await self.poster.update_config(username, template=template)
        await ctx.reply(
            f"✅ Template updated for @{account.username}.\n\n"
            f"Available variables: {', '.join('{' + v + '}' for v in TEMPLATE_VARIABLES)}"
        )

    async def _gettemplate(self, ctx: PluginContext, args: List[str]) -> None:
        username = self._username(ctx, args, "gettemplate <username>")
        account = await self.poster.get(username)
        if account is None:
            raise NotFound(f"❌ Account @{username.lstrip('@')} not found.")
        await ctx.reply(f"Template for @{account.username}:\n\n{account.template or DEFAULT_TEMPLATE}")

    async def _test(self, ctx: PluginContext, args: List[str]) -> None:
        username = self._username(ctx, args, "test <username>")
        await ctx.reply(f"🧪 Testing @{username.lstrip('@')}...")
        report = await self.poster.test_account(username)
        preview = f"\n\n*Latest post preview:*\n{report['latest']}" if report["latest"] else ""
        await ctx.reply(
            f"✅ *Test OK* for @{report['username']}\n\n"
            f"User ID: {report['userId']}\n"
            f"Recent posts: {report['tweets']}\n"
            f"Interval: {report['intervalMinutes']} minutes\n"
            f"Target chat: {report['targetChatId']}{preview}"
        )


def setup(bot) -> AutoPosterPlugin:
    return AutoPosterPlugin(bot)
