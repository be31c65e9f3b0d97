from wabot.main import Bot
from wabot.services.logging_service import ChatLogger, LogLevel

OWNER = "2348000000001@s.whatsapp.net"
USER = "2348000000002@s.whatsapp.net"
OTHER = "2348000000003@s.whatsapp.net"
LOG_CHAT = "120363000000000777@g.us"


async def test_ban_and_unban(bot, send, messenger):
    bot.rate_limiter.max_calls = 10

    assert await send(".ban @2348000000003 spamming links", sender=OWNER) == "command"
    assert "banned" in messenger.last_text
    assert "spamming links" in messenger.last_text
    assert messenger.last["mentions"] == [OTHER]
    assert await send(".balance", sender=OTHER) == "banned"

    assert await send(".ban @2348000000003", sender=OWNER) == "command"
    assert "ban updated" in messenger.last_text

    assert await send(".unban @2348000000003", sender=OWNER) == "command"
    assert await send(".balance", sender=OTHER) == "command"
    assert await send(".unban @2348000000003", sender=OWNER) == "failed"
    assert "is not banned" in messenger.last_text


async def test_ban_input_errors(bot, send, messenger):
    assert await send(".ban", sender=OWNER) == "failed"
    assert "Usage" in messenger.last_text
    assert await send(".ban @2348000000001", sender=OWNER) == "failed"
    assert "owner cannot be banned" in messenger.last_text
    assert not await bot.permissions.is_banned(OWNER)


async def test_admin_numbers_are_not_owner(bot, send):
    bot.config.admin_numbers = ["2348000000002"]
    assert await send(".stats") == "denied"


async def test_runtask(bot, send, messenger):
    assert await send(".runtask nope.nothing", sender=OWNER) == "failed"
    assert "Unknown scheduled task" in messenger.last_text

    assert await send(".trigger economy.effects_sweep", sender=OWNER) == "command"
    assert messenger.last_text == "▶️ Triggered economy.effects_sweep"
    await bot.scheduler.stop()
    task = bot.scheduler.get("economy.effects_sweep")
    assert task.run_count == 1
    assert task.running is False


async def test_runtask_reenables_disabled_task(bot, send):
    task = bot.scheduler.get("economy.effects_sweep")
    task.enabled = False
    task.consecutive_errors = 6
    assert await send(".runtask economy.effects_sweep", sender=OWNER) == "command"
    assert task.enabled is True
    await bot.scheduler.stop()
    assert task.consecutive_errors == 0


async def test_inspection_commands(bot, send, messenger):
    await send(".balance")
    assert await send(".stats", sender=OWNER) == "command"
    assert "BOT STATISTICS" in messenger.last_text
    assert "Users: " in messenger.last_text
    assert "Overall: OK" in messenger.last_text

    assert await send(".plugins", sender=OWNER) == "command"
    for name in ("admin", "attendance", "autoposter", "betting", "clubs", "daily_task", "economy", "township"):
        assert f"• {name} v" in messenger.last_text

    assert await send(".tasks", sender=OWNER) == "command"
    assert "economy.effects_sweep" in messenger.last_text
    assert "clubs.weekly_expenses `0 0 * * 1`" in messenger.last_text


async def test_health_check_reports_store_outage(bot, store, messenger, clock):
    report = await bot.health.check_now()
    assert report["ok"] is True
    assert report["store"]["ok"] is True

    bot.chat_logger = ChatLogger(messenger, LOG_CHAT, clock=clock)
    store.closed = True
    report = await bot.health.check_now()
    store.closed = False
    assert report["ok"] is False
    assert report["store"]["ok"] is False
    alerts = [m for m in messenger.sent if m["chat_id"] == LOG_CHAT]
    assert len(alerts) == 1
    assert "Health check found problems" in alerts[0]["text"]
    assert "Store: Store is closed" in alerts[0]["text"]


async def test_chat_logger_suppresses_repeats(messenger, clock):
    chat_logger = ChatLogger(messenger, LOG_CHAT, clock=clock)
    assert await chat_logger.log_custom("Scheduler", "Task Disabled", "x", LogLevel.CRITICAL) is True
    assert await chat_logger.log_custom("Scheduler", "Task Disabled", "x", LogLevel.CRITICAL) is False
    clock.advance(seconds=11)
    assert await chat_logger.log_custom("Scheduler", "Task Disabled", "x", LogLevel.CRITICAL) is True
    stats = chat_logger.get_stats()
    assert stats["logs_sent"] == 2
    assert stats["logs_suppressed"] == 1
    assert stats["logs_by_level"]["CRITICAL"] == 3
    assert messenger.sent[0]["text"].startswith("🚨 *Task Disabled*")


async def test_crash_is_mirrored_to_log_chat(bot, send, messenger, clock):
    bot.chat_logger = ChatLogger(messenger, LOG_CHAT, clock=clock)
    economy = bot.registry.plugins["economy"]

    async def broken(ctx):
        raise RuntimeError("ledger exploded")

    economy.run = broken
    assert await send(".balance") == "failed"
    alerts = [m for m in messenger.sent if m["chat_id"] == LOG_CHAT]
    assert len(alerts) == 1
    assert "RuntimeError" in alerts[0]["text"]
    assert "Plugin: economy" in alerts[0]["text"]


async def test_host_reuses_the_store_chat_logger(config, store, messenger, clock):
    config.log_chat_id = LOG_CHAT
    chat_logger = ChatLogger(messenger, LOG_CHAT, clock=clock)
    store.set_logger(chat_logger)
    host = Bot(config, store=store, messenger=messenger, clock=clock, chat_logger=chat_logger)
    assert host.chat_logger is chat_logger
    assert host.scheduler.chat_logger is chat_logger

    await chat_logger.log_custom("Database Service", "Database Ready", "up", LogLevel.SUCCESS)
    assert await host.chat_logger.log_custom("Database Service", "Database Ready", "up", LogLevel.SUCCESS) is False
    assert chat_logger.get_stats()["logs_suppressed"] == 1
