"""
wabot/services/plugin_registry.py
Plugin loading, command/alias index and execution statistics
"""

import importlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import DuplicateRegistration
from ..utils.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PLUGINS = ("economy", "betting", "attendance", "autoposter", "clubs", "township", "daily_task", "admin")


@dataclass
class PluginStats:
    executions: int = 0
    errors: int = 0
    total_time_ms: float = 0.0
    last_execution: Optional[datetime] = None
    last_error: Optional[str] = None
    slow_executions: int = 0

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.executions if self.executions else 0.0

    @property
    def error_rate(self) -> float:
        return self.errors / self.executions if self.executions else 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "executions": self.executions,
            "errors": self.errors,
            "error_rate": round(self.error_rate, 4),
            "avg_time_ms": round(self.avg_time_ms, 2),
            "total_time_ms": round(self.total_time_ms, 2),
            "slow_executions": self.slow_executions,
            "last_execution": self.last_execution.isoformat() if self.last_execution else None,
            "last_error": self.last_error,
        }


class PluginRegistry:
    def __init__(self, bot=None, *, scheduler=None, slow_ms: float = 1000):
        self.bot = bot
        self.scheduler = scheduler
        self.slow_ms = slow_ms
        self.plugins: Dict[str, Any] = {}
        self.commands: Dict[str, Any] = {}
        self.aliases: Dict[str, str] = {}
        self.stats: Dict[str, PluginStats] = {}
        self.router = None

    # ---------- registration ----------

    def register(self, plugin) -> None:
        name = plugin.name
        if not name:
            raise DuplicateRegistration("Plugin has no name")
        if name in self.plugins:
            raise DuplicateRegistration(f"Plugin '{name}' is already registered")

        commands = [c.lower() for c in plugin.commands]
        aliases = {a.lower(): c.lower() for a, c in (plugin.aliases or {}).items()}
        taken = set(self.commands) | set(self.aliases)
        seen = set()
        for word in commands + list(aliases):
            if word in taken or word in seen:
                raise DuplicateRegistration(f"Command or alias '{word}' from '{name}' is already registered")
            seen.add(word)
        for alias, target in aliases.items():
            if target not in commands:
                raise DuplicateRegistration(f"Alias '{alias}' in '{name}' points at unknown command '{target}'")

        tasks = list(plugin.scheduled_tasks())
        registered_tasks = []
        if self.scheduler is not None:
            try:
                for spec in tasks:
                    handler = self._task_handler(plugin, spec)
                    registered_tasks.append(
                        self.scheduler.register(name, spec.name, spec.cron, handler, spec.description)
                    )
            except Exception:
                self.scheduler.unregister_plugin(name)
                raise

        self.plugins[name] = plugin
        for command in commands:
            self.commands[command] = plugin
        self.aliases.update(aliases)
        self.stats[name] = PluginStats()
        logger.info(
            f"Registered plugin {name} v{plugin.version}: {len(commands)} command(s), "
            f"{len(aliases)} alias(es), {len(registered_tasks)} task(s)"
        )

    def _task_handler(self, plugin, spec):
        async def handler(ctx):
            return await self.execute(plugin, lambda: spec.handler(ctx), label=f"task {spec.name}")
        return handler

    def unregister(self, name: str) -> bool:
        plugin = self.plugins.pop(name, None)
        if plugin is None:
            return False
        for command in [c for c, p in self.commands.items() if p is plugin]:
            del self.commands[command]
        targets = {c.lower() for c in plugin.commands}
        for alias in [a for a, c in self.aliases.items() if c in targets]:
            del self.aliases[alias]
        if self.scheduler is not None:
            self.scheduler.unregister_plugin(name)
        logger.info(f"Unregistered plugin {name}")
        return True

    def load_plugins(self, names: Iterable[str] = DEFAULT_PLUGINS, disabled: Iterable[str] = ()) -> List[str]:
        """Import wabot.plugins.<name> and register what its setup(bot) returns."""
        disabled = {d.lower() for d in disabled}
        loaded = []
        for name in names:
            if name.lower() in disabled:
                logger.info(f"Plugin {name} disabled by configuration")
                continue
            module = importlib.import_module(f"wabot.plugins.{name}")
            self.register(module.setup(self.bot))
            loaded.append(name)
        logger.info(f"Loaded {len(loaded)} plugin(s): {', '.join(loaded)}")
        return loaded

    # ---------- lookup ----------

    def resolve(self, word: str) -> Optional[Tuple[Any, str]]:
        """Map an invoked word to (plugin, canonical command)."""
        word = (word or "").lower()
        command = self.aliases.get(word, word)
        plugin = self.commands.get(command)
        if plugin is None:
            return None
        return plugin, command

    def text_hooks(self) -> List[Any]:
        return [p for p in self.plugins.values() if p.wants_text]

    # ---------- execution ----------

    async def execute(self, plugin, coro_factory, *, label: str = "") -> Any:
        """Run a plugin callable and record timing/error statistics; exceptions propagate."""
        stats = self.stats.setdefault(plugin.name, PluginStats())
        started = time.perf_counter()
        stats.executions += 1
        stats.last_execution = utcnow()
        try:
            return await coro_factory()
        except Exception as e:
            stats.errors += 1
            stats.last_error = f"{type(e).__name__}: {e}"
            raise
        finally:
            elapsed = (time.perf_counter() - started) * 1000
            stats.total_time_ms += elapsed
            if elapsed > self.slow_ms:
                stats.slow_executions += 1
                logger.warning(f"Slow plugin execution: {plugin.name} {label} took {elapsed:.0f}ms")

    def attach_router(self, router) -> None:
        self.router = router

    async def dispatch(self, message) -> Any:
        if self.router is None:
            raise RuntimeError("No router attached to the plugin registry")
        return await self.router.handle(message)

    def get_stats(self) -> Dict[str, Any]:
        return {
            name: {
                "version": self.plugins[name].version if name in self.plugins else None,
                "commands": list(self.plugins[name].commands) if name in self.plugins else [],
                **stats.as_dict(),
            }
            for name, stats in self.stats.items()
        }
