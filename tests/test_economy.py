USER = "2348000000002@s.whatsapp.net"
OTHER = "2348000000003@s.whatsapp.net"


async def test_daily_reward_cooldown_and_streak(bot, send, messenger, clock):
    bot.rate_limiter.max_calls = 10

    assert await send(".daily") == "command"
    first = await bot.users.get_money(USER)
    assert 500 <= first <= 1000
    assert "Daily streak: 1 day(s)" in messenger.last_text

    assert await send(".daily") == "command"
    assert "already claimed" in messenger.last_text
    assert await bot.users.get_money(USER) == first

    clock.advance(hours=25)
    await send(".daily")
    assert "Daily streak: 2 day(s)" in messenger.last_text

    clock.advance(hours=49)
    await send(".daily")
    assert "Daily streak: 1 day(s)" in messenger.last_text


async def test_work_pays_within_range_and_rests(bot, send, messenger, clock):
    assert await send(".work") == "command"
    earned = await bot.users.get_money(USER)
    assert bot.config.work_min <= earned <= bot.config.work_max

    clock.advance(minutes=30)
    await send(".work")
    assert "tired" in messenger.last_text
    assert await bot.users.get_money(USER) == earned


async def test_send_money_between_users(bot, send, messenger):
    assert await send(".send @2348000000003 500") == "failed"
    assert "Short by: ₦500" in messenger.last_text

    await bot.users.add_money(USER, 1000, "Gift")
    assert await send(".pay @2348000000003 500") == "command"
    assert await bot.users.get_money(USER) == 500
    assert await bot.users.get_money(OTHER) == 500
    assert messenger.last["mentions"] == [OTHER]

    assert await send(".send @2348000000003 -5") == "failed"
    assert "positive whole number" in messenger.last_text


async def test_bank_moves(bot, send, messenger):
    await bot.users.add_money(USER, 1000, "Gift")
    assert await send(".deposit all") == "command"
    assert await bot.users.get_balance(USER) == (0, 1000)
    assert await send(".wd 400") == "command"
    assert await bot.users.get_balance(USER) == (400, 600)
    assert await send(".withdraw 5000") == "failed"
    assert await bot.users.get_balance(USER) == (400, 600)


async def test_clan_lifecycle(bot, send, messenger):
    bot.rate_limiter.max_calls = 10
    await bot.users.add_money(USER, 6000, "Gift")

    assert await send(".clan create Lions") == "command"
    assert await bot.users.get_money(USER) == 1000
    assert (await bot.users.get_user_data(USER)).clan == "Lions"

    assert await send(".clan create Lions", sender=OTHER) == "failed"
    assert "already exists" in messenger.last_text
    assert await send(".clan join Ghosts", sender=OTHER) == "failed"
    assert "not found" in messenger.last_text

    assert await send(".clan join Lions", sender=OTHER) == "command"
    assert await send(".clan info") == "command"
    assert "Members: 2" in messenger.last_text

    assert await send(".clan leave") == "failed"
    assert "leaders cannot leave" in messenger.last_text
    assert await send(".clan leave", sender=OTHER) == "command"
    assert (await bot.users.get_user_data(OTHER)).clan is None

    assert await send(".clan disband") == "command"
    assert (await bot.users.get_user_data(USER)).clan is None
    clans = await bot.store.get_collection("clans")
    assert await clans.count_documents({}) == 0


async def test_leaderboard_lists_richest_first(bot, send, messenger):
    await bot.users.add_money(USER, 100, "Gift")
    await bot.users.add_money(OTHER, 900, "Gift")
    assert await send(".lb") == "command"
    text = messenger.last_text
    assert text.index("@2348000000003") < text.index("@2348000000002")
