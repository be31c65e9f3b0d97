"""
wabot/services/scheduler.py
Drives the cron tasks plugins declare; one in-flight run per (plugin, task)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..errors import DuplicateRegistration, NotFound
from ..utils.timeutil import Clock, ensure_utc, get_tz, utcnow
from .cron import CronExpression
from .logging_service import LogLevel

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_ERRORS = 5
STUCK_ERROR_THRESHOLD = 3

TaskHandler = Callable[[Any], Awaitable[Any]]


@dataclass
class ScheduledTask:
    plugin: str
    name: str
    cron: CronExpression
    handler: TaskHandler
    description: str = ""
    enabled: bool = True
    running: bool = False
    last_start: Optional[datetime] = None
    last_end: Optional[datetime] = None
    last_fire_minute: Optional[str] = None
    run_count: int = 0
    error_count: int = 0
    consecutive_errors: int = 0
    skipped_overlaps: int = 0
    last_error: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.plugin}.{self.name}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "plugin": self.plugin,
            "name": self.name,
            "cron": self.cron.expression,
            "description": self.description,
            "enabled": self.enabled,
            "running": self.running,
            "last_start": self.last_start.isoformat() if self.last_start else None,
            "last_end": self.last_end.isoformat() if self.last_end else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "consecutive_errors": self.consecutive_errors,
            "skipped_overlaps": self.skipped_overlaps,
            "last_error": self.last_error,
        }


class Scheduler:
    def __init__(
        self,
        timezone: str = "UTC",
        *,
        clock: Clock = utcnow,
        tick_sec: float = 20,
        context_factory: Optional[Callable[[ScheduledTask], Any]] = None,
        chat_logger=None,
    ):
        self.tz = get_tz(timezone)
        self.clock = clock
        self.tick_sec = tick_sec
        self.context_factory = context_factory
        self.chat_logger = chat_logger
        self.tasks: Dict[str, ScheduledTask] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None

    # ---------- registration ----------

    def register(self, plugin: str, name: str, cron_expression: str, handler: TaskHandler,
                 description: str = "") -> ScheduledTask:
        task = ScheduledTask(
            plugin=plugin,
            name=name,
            cron=CronExpression.parse(cron_expression),
            handler=handler,
            description=description,
        )
        if task.key in self.tasks:
            raise DuplicateRegistration(f"Scheduled task '{task.key}' is already registered")
        self.tasks[task.key] = task
        logger.info(f"Registered scheduled task {task.key} ({cron_expression})")
        return task

    def unregister_plugin(self, plugin: str) -> int:
        keys = [k for k, t in self.tasks.items() if t.plugin == plugin]
        for key in keys:
            del self.tasks[key]
        return len(keys)

    def get(self, key: str) -> ScheduledTask:
        task = self.tasks.get(key)
        if task is None:
            raise NotFound(f"❌ Unknown scheduled task '{key}'")
        return task

    def next_run(self, task: ScheduledTask, now: Optional[datetime] = None) -> datetime:
        local = ensure_utc(now or self.clock()).astimezone(self.tz)
        return task.cron.next_after(local)

    # ---------- firing ----------

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Launch every task due this minute. Returns the keys that were started."""
        local = ensure_utc(now or self.clock()).astimezone(self.tz)
        minute_key = local.strftime("%Y-%m-%dT%H:%M")
        started = []
        for task in list(self.tasks.values()):
            if not task.enabled or task.last_fire_minute == minute_key:
                continue
            if not task.cron.matches(local):
                continue
            task.last_fire_minute = minute_key
            if task.running:
                task.skipped_overlaps += 1
                logger.warning(f"Skipping {task.key}: previous run still in flight")
                continue
            self._launch(task)
            started.append(task.key)
        return started

    def _launch(self, task: ScheduledTask) -> asyncio.Task:
        task.running = True
        task.last_start = self.clock()
        runner = asyncio.create_task(self._run(task), name=f"task:{task.key}")
        self._inflight.add(runner)
        runner.add_done_callback(self._inflight.discard)
        return runner

    async def _run(self, task: ScheduledTask) -> None:
        try:
            ctx = self.context_factory(task) if self.context_factory else task
            await task.handler(ctx)
            task.run_count += 1
            task.consecutive_errors = 0
        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.error_count += 1
            task.consecutive_errors += 1
            task.last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"Scheduled task {task.key} failed")
            if task.consecutive_errors > MAX_CONSECUTIVE_ERRORS:
                task.enabled = False
                logger.error(f"Disabled {task.key} after {task.consecutive_errors} consecutive failures")
                if self.chat_logger:
                    await self.chat_logger.log_custom(
                        "Scheduler",
                        "Task Disabled",
                        f"{task.key} failed {task.consecutive_errors} times in a row",
                        LogLevel.CRITICAL,
                        {"Last Error": task.last_error},
                    )
            elif self.chat_logger:
                await self.chat_logger.log_error("Scheduler", e, f"Task {task.key}")
        finally:
            task.running = False
            task.last_end = self.clock()

    async def trigger(self, key: str, *, wait: bool = False) -> bool:
        """Run a task now. Returns False when it is already running."""
        task = self.get(key)
        if task.running:
            return False
        runner = self._launch(task)
        if wait:
            await runner
        return True

    def enable(self, key: str) -> None:
        task = self.get(key)
        task.enabled = True
        task.consecutive_errors = 0

    # ---------- loop ----------

    async def start(self) -> None:
        if self._loop_task:
            return
        self._loop_task = asyncio.create_task(self._runner(), name="scheduler-loop")
        logger.info(f"Scheduler started with {len(self.tasks)} task(s)")

    async def _runner(self) -> None:
        while True:
            try:
                self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Scheduler tick failed: %s", e)
            await asyncio.sleep(self.tick_sec)

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop ticking and wait for in-flight runs."""
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._inflight:
            logger.info(f"Waiting for {len(self._inflight)} in-flight task(s)")
            done, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
            for runner in pending:
                runner.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} task(s) that did not finish in {timeout}s")
        logger.info("Scheduler stopped")

    # ---------- reporting ----------

    def status(self) -> List[Dict[str, Any]]:
        return [t.as_dict() for t in sorted(self.tasks.values(), key=lambda t: t.key)]

    def health_report(self) -> Dict[str, Any]:
        stuck = [t.key for t in self.tasks.values() if t.error_count > STUCK_ERROR_THRESHOLD]
        disabled = [t.key for t in self.tasks.values() if not t.enabled]
        return {
            "healthy": not stuck and not disabled,
            "total_tasks": len(self.tasks),
            "running": [t.key for t in self.tasks.values() if t.running],
            "stuck": stuck,
            "disabled": disabled,
            "total_runs": sum(t.run_count for t in self.tasks.values()),
            "total_errors": sum(t.error_count for t in self.tasks.values()),
        }
