"""
wabot/main.py
Host bootstrap: build the shared services, load plugins, run scheduler, web server and health loop
"""

import asyncio
import itertools
import logging
import random
import signal
import sys
from typing import Iterable, Optional

from .database import create_store
from .plugins.base import Helpers, TaskContext
from .services.command_router import CommandRouter
from .services.health_service import HealthMonitorService
from .services.logging_service import ChatLogger, LogLevel
from .services.messenger import ConsoleMessenger, IncomingMessage
from .services.permissions import Permissions
from .services.plugin_registry import DEFAULT_PLUGINS, PluginRegistry
from .services.rate_limiter import RateLimiter
from .services.scheduler import Scheduler
from .services.selection_context import SelectionContext
from .services.user_manager import UserManager
from .utils.config import Config
from .utils.logging_config import setup_logging
from .utils.timeutil import utcnow
from .utils.webserver import WebServer

logger = logging.getLogger(__name__)


class Bot:
    """Owns every shared component; plugins reach them through `bot.<name>`."""

    def __init__(self, config: Config, *, store, messenger, clock=utcnow, rng: Optional[random.Random] = None,
                 chat_logger: Optional[ChatLogger] = None):
        self.config = config
        self.store = store
        self.messenger = messenger
        self.clock = clock
        self.rng = rng
        if chat_logger is None and config.log_chat_id:
            chat_logger = ChatLogger(messenger, config.log_chat_id)
        self.chat_logger: Optional[ChatLogger] = chat_logger
        self.users = UserManager(store, config, clock)
        self.permissions = Permissions(config, store, messenger, clock)
        self.rate_limiter = RateLimiter(config.rate_limit_window_sec, config.rate_limit_max)
        self.selections = SelectionContext(config.selection_ttl_sec, clock)
        self.scheduler = Scheduler(
            config.timezone,
            clock=clock,
            tick_sec=config.scheduler_tick_sec,
            context_factory=self.task_context,
            chat_logger=self.chat_logger,
        )
        self.registry = PluginRegistry(self, scheduler=self.scheduler, slow_ms=config.slow_plugin_ms)
        self.helpers = Helpers(self)
        self.router = CommandRouter(self)
        self.registry.attach_router(self.router)
        self.health = HealthMonitorService(self)
        self.web_server: Optional[WebServer] = None
        self.autoposter = None
        self.startup_time = None
        self._closed = False

    async def setup(self, plugins: Iterable[str] = DEFAULT_PLUGINS) -> None:
        """Register plugins and run their one-time setup."""
        self.registry.load_plugins(plugins, self.config.disabled_plugins)
        for plugin in list(self.registry.plugins.values()):
            await plugin.setup()

    def task_context(self, task) -> TaskContext:
        plugin = self.registry.plugins.get(task.plugin)
        return TaskContext(
            db=self.store,
            sock=self.messenger,
            config=self.config,
            bot=self,
            logger=plugin.logger if plugin else logger,
            helpers=self.helpers,
            task_key=task.key,
            now=self.clock(),
        )

    async def handle_message(self, msg: IncomingMessage) -> str:
        return await self.router.handle(msg)

    async def start(self) -> None:
        self.startup_time = self.clock()
        await self.scheduler.start()
        if self.config.web_enabled:
            self.web_server = WebServer(self, self.config.web_host, self.config.web_port)
            await self.web_server.start()
        await self.health.start()
        logger.info(
            f"{self.config.bot_name} started: {len(self.registry.plugins)} plugin(s), "
            f"{len(self.scheduler.tasks)} scheduled task(s)"
        )
        if self.chat_logger:
            await self.chat_logger.log_custom(
                service="Bot Status",
                title="🚀 Bot Ready",
                description=f"{self.config.bot_name} is online",
                level=LogLevel.SUCCESS,
                fields={
                    "Plugins": ", ".join(sorted(self.registry.plugins)),
                    "Scheduled Tasks": str(len(self.scheduler.tasks)),
                    "Mode": self.config.mode,
                    "Prefix": self.config.command_prefix,
                },
            )

    async def close(self) -> None:
        """Stop background loops, then release the transport and store."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down...")
        await self.scheduler.stop()
        if self.web_server:
            try:
                await self.web_server.stop()
            except Exception as e:
                logger.error(f"Error stopping web server: {e}")
        await self.health.stop()
        try:
            await self.messenger.close()
        except Exception as e:
            logger.error(f"Error closing messenger: {e}")
        try:
            await self.store.close()
        except Exception as e:
            logger.error(f"Error closing store: {e}")
        logger.info("Bot shutdown complete")


async def _console_loop(bot: Bot, stop: asyncio.Event) -> None:
    """Feed stdin lines to the bot as owner messages in a local chat."""
    loop = asyncio.get_running_loop()
    ids = itertools.count(1)
    sender = f"{bot.config.owner_number or '0'}@s.whatsapp.net"
    while not stop.is_set():
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            stop.set()
            break
        msg = IncomingMessage(id=f"in-{next(ids)}", chat_id="console@g.us", sender=sender, body=line.strip())
        try:
            await bot.handle_message(msg)
        except Exception:
            logger.exception(f"Console message failed: {msg.body!r}")


async def main(messenger=None) -> None:
    """Main entry point"""
    config = Config()
    setup_logging(config.log_level, config.log_file)

    problems = config.validate()
    if problems:
        logger.error(f"Invalid configuration: {'; '.join(problems)}")
        return

    logger.info("=" * 60)
    logger.info(f"Starting {config.bot_name}...")
    logger.info(f"Store: MongoDB ({config.mongo_db_name})")
    logger.info(f"Timezone: {config.timezone}")
    logger.info("=" * 60)

    messenger = messenger or ConsoleMessenger()
    chat_logger = ChatLogger(messenger, config.log_chat_id) if config.log_chat_id else None
    store = await create_store(config, chat_logger)
    bot = Bot(config, store=store, messenger=messenger, chat_logger=chat_logger)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    try:
        await bot.setup()
        await bot.start()
        console = None
        if isinstance(messenger, ConsoleMessenger):
            console = asyncio.create_task(_console_loop(bot, stop), name="console-input")
        await stop.wait()
        if console is not None:
            console.cancel()
    except Exception as e:
        logger.error(f"Bot crashed with error: {e}")
        logger.exception("Bot crash traceback:")
    finally:
        await bot.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested via keyboard interrupt")
    finally:
        logger.info("Application terminated")


if __name__ == "__main__":
    run()
