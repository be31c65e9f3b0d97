# wabot/services/health_service.py
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..errors import StoreUnavailable
from ..utils.timeutil import humanize_delta, utcnow
from .logging_service import LogLevel

logger = logging.getLogger(__name__)

ERROR_RATE_THRESHOLD = 0.10
SLOW_AVERAGE_MS = 5000


@dataclass
class ServiceStatus:
    name: str
    ok: bool
    details: str = ""
    latency_ms: Optional[float] = None
    last_update: Optional[datetime] = None


def _status_emoji(ok: Optional[bool]) -> str:
    if ok is True:
        return "🟢"
    if ok is False:
        return "🔴"
    return "🟡"


def _fmt_bool(ok: Optional[bool]) -> str:
    if ok is True:
        return "OK"
    if ok is False:
        return "FAIL"
    return "N/A"


class HealthMonitorService:
    """
    Periodically checks store latency, plugin error rates and slow plugins, and
    reports problems to the owner log chat. Also provides a registry for other
    services to push their status.
    """

    def __init__(self, bot, interval_s: Optional[int] = None):
        self.bot = bot
        self.update_interval_s: int = int(interval_s or getattr(bot.config, "health_interval_sec", 600) or 600)
        self._task: Optional[asyncio.Task] = None
        self._service_registry: Dict[str, ServiceStatus] = {}
        self._process_start = time.time()
        self.last_report: Dict[str, Any] = {}

    # ---------- Public API ----------

    def register_service(self, name: str, ok: bool, details: str = "", latency_ms: Optional[float] = None):
        """Other services and plugins can call this to expose their health."""
        self._service_registry[name] = ServiceStatus(
            name=name,
            ok=ok,
            details=details[:200],
            latency_ms=latency_ms,
            last_update=utcnow(),
        )

    def services(self) -> List[ServiceStatus]:
        return list(self._service_registry.values())

    async def start(self):
        if self._task:
            return
        self._task = asyncio.create_task(self._runner(), name="health-monitor-loop")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    # ---------- Core loop ----------

    async def _runner(self):
        while True:
            try:
                await self.check_now()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[Health] check failed: {e}")
            await asyncio.sleep(self.update_interval_s)

    async def check_now(self) -> Dict[str, Any]:
        store_ok, latency, store_details = await self._check_store()
        self.register_service("store", bool(store_ok), store_details, latency)

        problems = self._plugin_problems()
        tasks = self.bot.scheduler.health_report()
        for key in tasks.get("stuck", []):
            problems.append(f"task {key} keeps failing")

        report = {
            "ok": bool(store_ok) and not problems,
            "uptime": humanize_delta(timedelta(seconds=time.time() - self._process_start)),
            "store": {"ok": store_ok, "latency_ms": latency, "details": store_details},
            "problems": problems,
            "services": {
                s.name: {"ok": s.ok, "status": _fmt_bool(s.ok), "details": s.details, "latency_ms": s.latency_ms}
                for s in self.services()
            },
            "tasks": tasks,
        }
        self.last_report = report
        if not report["ok"]:
            await self._alert(report)
        return report

    # ---------- Collectors ----------

    async def _check_store(self) -> Tuple[Optional[bool], Optional[float], str]:
        try:
            latency = await self.bot.store.ping()
        except StoreUnavailable as e:
            return False, None, str(e)
        return True, round(latency, 2), f"ping {latency:.1f} ms"

    def _plugin_problems(self) -> List[str]:
        problems = []
        for name, stats in self.bot.registry.stats.items():
            if stats.executions >= 10 and stats.error_rate > ERROR_RATE_THRESHOLD:
                problems.append(f"plugin {name} error rate {stats.error_rate:.0%}")
            if stats.executions and stats.avg_time_ms > SLOW_AVERAGE_MS:
                problems.append(f"plugin {name} averages {stats.avg_time_ms / 1000:.1f}s")
        return problems

    # ---------- Reporting ----------

    def summary_lines(self, report: Optional[Dict[str, Any]] = None) -> List[str]:
        report = report or self.last_report
        if not report:
            return ["🟡 No health check has run yet"]
        lines = [
            f"{_status_emoji(report['ok'])} Overall: {_fmt_bool(report['ok'])}",
            f"⏱️ Uptime: {report['uptime']}",
            f"{_status_emoji(report['store']['ok'])} Store: {report['store']['details']}",
        ]
        lines.extend(f"⚠️ {p}" for p in report["problems"])
        return lines

    async def _alert(self, report: Dict[str, Any]) -> None:
        chat_logger = getattr(self.bot, "chat_logger", None)
        logger.warning(f"[Health] problems detected: {'; '.join(report['problems']) or 'store unavailable'}")
        if chat_logger is None:
            return
        await chat_logger.log_custom(
            "Health Monitor",
            "Health check found problems",
            "\n".join(self.summary_lines(report)),
            level=LogLevel.WARNING,
        )
