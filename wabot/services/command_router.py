"""
wabot/services/command_router.py
Turns incoming messages into plugin invocations
"""

import logging
import re
from typing import Awaitable, Callable, Optional

from ..errors import (
    BotError,
    InsufficientFunds,
    InvalidInput,
    NotAuthorized,
    NotFound,
    RateLimited,
    StoreUnavailable,
)
from ..plugins.base import PluginContext

logger = logging.getLogger(__name__)

_CHOICE = re.compile(r"\d+", re.ASCII)

GENERIC_ERROR = "❌ An error occurred while processing your command. Please try again later."

# Outcomes returned by CommandRouter.handle
SELECTION = "selection"
INVALID_SELECTION = "invalid_selection"
COMMAND = "command"
UNKNOWN = "unknown"
DENIED = "denied"
BANNED = "banned"
RATE_LIMITED = "rate_limited"
TEXT = "text"
IGNORED = "ignored"
FAILED = "failed"


class CommandRouter:
    """
    Order of checks for one message:
    quoted numeric reply to a live menu, prefix and command lookup, owner gate,
    ban list, rate limit, then the plugin. Anything without the prefix goes to
    the free-text hooks.
    """

    def __init__(self, bot):
        self.bot = bot
        self.stats = {
            "messages": 0,
            "commands": 0,
            "selections": 0,
            "text_handled": 0,
            "denied": 0,
            "rate_limited": 0,
            "errors": 0,
        }

    @property
    def prefix(self) -> str:
        return self.bot.config.command_prefix

    def _context(self, msg, args, text, command, invoked_with, plugin_logger) -> PluginContext:
        return PluginContext(
            msg=msg,
            args=args,
            text=text,
            command=command,
            invoked_with=invoked_with,
            sock=self.bot.messenger,
            db=self.bot.store,
            config=self.bot.config,
            bot=self.bot,
            logger=plugin_logger,
            helpers=self.bot.helpers,
        )

    async def _send(self, msg, text: str) -> None:
        try:
            await self.bot.messenger.send_text(msg.chat_id, text, quoted=msg.id)
        except Exception as e:
            logger.error(f"Failed to send reply to {msg.chat_id}: {e}")

    async def handle(self, msg) -> str:
        self.stats["messages"] += 1
        body = (msg.body or "").strip()

        if msg.quoted_id and _CHOICE.fullmatch(body):
            entry = self.bot.selections.lookup(msg.quoted_id)
            if entry is not None:
                return await self._handle_selection(msg, entry, int(body))

        if body.startswith(self.prefix) and len(body) > len(self.prefix):
            return await self._handle_command(msg, body[len(self.prefix):])

        return await self._handle_text(msg, body)

    async def _handle_selection(self, msg, entry, choice: int) -> str:
        if await self.bot.permissions.is_banned(msg.sender):
            return BANNED
        if not 1 <= choice <= len(entry.options):
            await self._send(msg, f"❌ Invalid selection, choose 1..{len(entry.options)}")
            return INVALID_SELECTION
        self.stats["selections"] += 1
        ctx = self._context(msg, [str(choice)], str(choice), entry.type, entry.type, logger)
        ok = await self._guarded(entry.type, ctx, lambda: entry.handler(choice, ctx))
        return SELECTION if ok else FAILED

    async def _handle_command(self, msg, rest: str) -> str:
        tokens = rest.split()
        if not tokens:
            return IGNORED
        invoked, args = tokens[0], tokens[1:]
        resolved = self.bot.registry.resolve(invoked)
        if resolved is None:
            return UNKNOWN
        plugin, command = resolved
        helpers = self.bot.helpers

        if plugin.owner_only and not helpers.is_owner(msg.sender):
            self.stats["denied"] += 1
            logger.info(f"Denied {msg.sender} access to owner-only {command}")
            await self._send(msg, NotAuthorized.user_message)
            return DENIED

        if await self.bot.permissions.is_banned(msg.sender):
            return BANNED

        if self.bot.config.mode == "private" and not helpers.is_owner(msg.sender):
            return IGNORED

        if not self.bot.rate_limiter.check(msg.sender, command):
            self.stats["rate_limited"] += 1
            await self._send(msg, RateLimited.user_message)
            return RATE_LIMITED

        text = rest[len(invoked):].strip()
        ctx = self._context(msg, args, text, command, invoked.lower(), plugin.logger)
        self.stats["commands"] += 1
        ok = await self._guarded(
            plugin.name, ctx, lambda: self.bot.registry.execute(plugin, lambda: plugin.run(ctx), label=command)
        )
        return COMMAND if ok else FAILED

    async def _handle_text(self, msg, body: str) -> str:
        hooks = self.bot.registry.text_hooks()
        if not hooks or (not body and not msg.has_media):
            return IGNORED
        if await self.bot.permissions.is_banned(msg.sender):
            return BANNED
        for plugin in hooks:
            ctx = self._context(msg, body.split(), body, "", "", plugin.logger)
            handled = [False]

            async def run_hook(plugin=plugin, ctx=ctx):
                handled[0] = bool(await self.bot.registry.execute(plugin, lambda: plugin.on_text(ctx), label="text"))

            await self._guarded(plugin.name, ctx, run_hook)
            if handled[0]:
                self.stats["text_handled"] += 1
                return TEXT
        return IGNORED

    async def _guarded(self, plugin_name: str, ctx: PluginContext, call: Callable[[], Awaitable]) -> bool:
        """Run a plugin call and turn its errors into replies. Returns False on error."""
        try:
            await call()
            return True
        except (InvalidInput, NotFound, InsufficientFunds, RateLimited) as e:
            await self._send(ctx.msg, e.user_message)
        except NotAuthorized as e:
            logger.info(f"{plugin_name}: {ctx.sender} not authorized for {ctx.command}")
            await self._send(ctx.msg, e.user_message)
        except StoreUnavailable as e:
            self.stats["errors"] += 1
            logger.error(f"{plugin_name}: store unavailable: {e}")
            await self._send(ctx.msg, e.user_message)
            await self._log_error(plugin_name, e, ctx)
        except BotError as e:
            self.stats["errors"] += 1
            logger.warning(f"{plugin_name}: {e}")
            await self._send(ctx.msg, e.user_message)
        except Exception as e:
            self.stats["errors"] += 1
            logger.exception(f"Plugin {plugin_name} failed handling '{ctx.command or 'text'}' from {ctx.sender}")
            await self._send(ctx.msg, GENERIC_ERROR)
            await self._log_error(plugin_name, e, ctx)
        return False

    async def _log_error(self, plugin_name: str, error: Exception, ctx: PluginContext) -> None:
        chat_logger: Optional[object] = getattr(self.bot, "chat_logger", None)
        if chat_logger is None:
            return
        await chat_logger.log_error(
            service=f"Plugin: {plugin_name}",
            error=error,
            context=f"{ctx.invoked_with or 'text'} from {ctx.sender} in {ctx.chat_id}",
        )
