import asyncio
from datetime import datetime, timezone

import pytest

from wabot.errors import CronParseError, DuplicateRegistration, NotFound
from wabot.services.cron import CronExpression, parse_cron
from wabot.services.rate_limiter import RateLimiter
from wabot.services.scheduler import Scheduler
from wabot.services.selection_context import SelectionContext


START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class Ticker:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


async def _noop(value, option):
    return None


# ---------- rate limiter ----------

def test_rate_limiter_sliding_window():
    ticker = Ticker()
    limiter = RateLimiter(window_sec=10, max_calls=3, clock=ticker)
    assert [limiter.check("u", "work") for _ in range(4)] == [True, True, True, False]
    assert limiter.denied == 1
    assert limiter.check("u", "daily") is True
    assert limiter.check("v", "work") is True

    ticker.t += 10
    assert limiter.check("u", "WORK") is True


def test_rate_limiter_cleanup_and_reset():
    ticker = Ticker()
    limiter = RateLimiter(window_sec=5, max_calls=1, clock=ticker)
    limiter.check("u", "a")
    limiter.check("v", "a")
    limiter.reset("u")
    assert limiter.check("u", "a") is True
    ticker.t += 6
    assert limiter.cleanup() == 2


# ---------- selections ----------

def test_selection_expires_after_ttl(clock):
    ctx = SelectionContext(ttl_sec=1800, clock=clock)
    ctx.store("out-1", "shop", ["a", "b"], _noop, chat_id="g", user_id="u", price=5)
    clock.advance(minutes=29)
    entry = ctx.lookup("out-1")
    assert entry is not None
    assert entry.data == {"price": 5}
    clock.advance(minutes=2)
    assert ctx.lookup("out-1") is None
    assert len(ctx) == 0


def test_selection_requires_options(clock):
    ctx = SelectionContext(clock=clock)
    with pytest.raises(ValueError):
        ctx.store("out-1", "shop", [], _noop)
    assert ctx.lookup(None) is None
    assert ctx.lookup("missing") is None


# ---------- cron ----------

def test_cron_ranges_steps_and_names():
    cron = parse_cron("*/15 9-17 * * mon-fri")
    assert cron.matches(datetime(2026, 3, 2, 9, 30))
    assert not cron.matches(datetime(2026, 3, 2, 9, 31))
    assert not cron.matches(datetime(2026, 3, 7, 9, 30))
    assert not cron.matches(datetime(2026, 3, 2, 18, 0))


def test_cron_day_of_month_or_day_of_week():
    cron = CronExpression.parse("0 0 1 * 5")
    assert cron.matches(datetime(2026, 4, 1, 0, 0))
    assert cron.matches(datetime(2026, 3, 6, 0, 0))
    assert not cron.matches(datetime(2026, 3, 5, 0, 0))


def test_cron_macros_and_sunday_alias():
    assert parse_cron("@daily").matches(datetime(2026, 3, 2, 0, 0))
    assert parse_cron("@hourly").matches(datetime(2026, 3, 2, 13, 0))
    assert parse_cron("0 8 * * 7").matches(datetime(2026, 3, 8, 8, 0))


def test_cron_next_fire_time():
    cron = parse_cron("*/15 9-17 * * mon-fri")
    assert cron.next_after(datetime(2026, 3, 2, 9, 31)) == datetime(2026, 3, 2, 9, 45)
    assert cron.next_after(datetime(2026, 3, 6, 17, 50)) == datetime(2026, 3, 9, 9, 0)


@pytest.mark.parametrize("expr", ["60 * * * *", "* * *", "*/0 * * * *", "* * * * * *", "* * * foo *", ""])
def test_cron_rejects_bad_expressions(expr):
    with pytest.raises(CronParseError):
        parse_cron(expr)


# ---------- scheduler ----------

@pytest.fixture
def scheduler(clock):
    return Scheduler("Africa/Lagos", clock=clock)


async def test_scheduler_fires_once_per_minute(scheduler):
    calls = []

    async def handler(task):
        calls.append(task.key)

    scheduler.register("demo", "ping", "* * * * *", handler)
    assert scheduler.tick(START) == ["demo.ping"]
    assert scheduler.tick(START.replace(second=30)) == []
    await scheduler.stop()
    assert calls == ["demo.ping"]
    assert scheduler.get("demo.ping").run_count == 1


async def test_scheduler_uses_local_wall_clock(scheduler):
    async def handler(task):
        return None

    # 09:00 UTC is 10:00 in Lagos
    scheduler.register("demo", "ten", "0 10 * * *", handler)
    assert scheduler.tick(START) == ["demo.ten"]
    await scheduler.stop()

    weekly = scheduler.register("demo", "weekly", "0 0 * * 1", handler)
    upcoming = scheduler.next_run(weekly)
    assert (upcoming.month, upcoming.day, upcoming.hour) == (3, 9, 0)
    assert upcoming.utcoffset().total_seconds() == 3600


async def test_scheduler_skips_overlapping_run(scheduler):
    release = asyncio.Event()

    async def slow(task):
        await release.wait()

    scheduler.register("demo", "slow", "* * * * *", slow)
    assert scheduler.tick(START) == ["demo.slow"]
    await asyncio.sleep(0)
    assert scheduler.tick(START.replace(minute=1)) == []
    task = scheduler.get("demo.slow")
    assert task.skipped_overlaps == 1
    assert await scheduler.trigger("demo.slow") is False
    release.set()
    await scheduler.stop()
    assert task.running is False
    assert task.run_count == 1


async def test_scheduler_disables_after_repeated_failures(scheduler):
    async def broken(task):
        raise RuntimeError("boom")

    scheduler.register("demo", "broken", "* * * * *", broken)
    for _ in range(5):
        await scheduler.trigger("demo.broken", wait=True)
    task = scheduler.get("demo.broken")
    assert task.enabled is True
    assert task.consecutive_errors == 5

    await scheduler.trigger("demo.broken", wait=True)
    assert task.enabled is False
    assert task.error_count == 6
    assert task.last_error == "RuntimeError: boom"
    assert scheduler.tick(START) == []

    report = scheduler.health_report()
    assert report["healthy"] is False
    assert report["disabled"] == ["demo.broken"]

    scheduler.enable("demo.broken")
    assert task.enabled is True
    assert task.consecutive_errors == 0


async def test_scheduler_registration_errors(scheduler):
    async def handler(task):
        return None

    scheduler.register("demo", "a", "@hourly", handler)
    with pytest.raises(DuplicateRegistration):
        scheduler.register("demo", "a", "@daily", handler)
    with pytest.raises(CronParseError):
        scheduler.register("demo", "b", "not a cron", handler)
    with pytest.raises(NotFound):
        await scheduler.trigger("demo.missing")

    assert scheduler.unregister_plugin("demo") == 1
    assert scheduler.status() == []
