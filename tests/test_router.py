import pytest

from wabot.errors import DuplicateRegistration, NotAuthorized, RateLimited
from wabot.plugins.base import Plugin
from wabot.plugins.economy import EconomyPlugin
from wabot.services.command_router import GENERIC_ERROR

OWNER = "2348000000001@s.whatsapp.net"
USER = "2348000000002@s.whatsapp.net"


class BrokenPlugin(Plugin):
    name = "broken"
    commands = ("boom",)

    async def run(self, ctx):
        raise RuntimeError("kaboom")


class ClashingPlugin(Plugin):
    name = "clashing"
    commands = ("bal",)

    async def run(self, ctx):
        await ctx.reply("never")


async def test_rate_limit_per_sender_and_command(send, messenger):
    outcomes = [await send(".work") for _ in range(4)]
    assert outcomes == ["command", "command", "command", "rate_limited"]
    assert "tired" in messenger.sent[1]["text"]
    assert messenger.last_text == RateLimited.user_message
    # other commands keep their own window
    assert await send(".balance") == "command"


async def test_unknown_command_is_silent(send, messenger):
    assert await send(".nosuchthing") == "unknown"
    assert messenger.sent == []


async def test_owner_only_command_denied(bot, send, messenger):
    assert await send(".ban @2348000000003") == "denied"
    assert messenger.last_text == NotAuthorized.user_message
    assert bot.router.stats["denied"] == 1


async def test_replies_quote_the_command(send, make_msg, bot, messenger):
    msg = make_msg(".bal")
    assert await bot.handle_message(msg) == "command"
    assert messenger.last["quoted"] == msg.id
    assert "BALANCE" in messenger.last_text


async def test_alias_resolves_to_command(bot):
    plugin, command = bot.registry.resolve("PAY")
    assert plugin.name == "economy"
    assert command == "send"
    assert bot.registry.resolve("nothing") is None


async def test_effects_menu_selection_buys_boost(bot, send, messenger):
    await bot.users.add_money(USER, 5000, "Gift")
    assert await send(".effects") == "command"
    menu_id = messenger.last["id"]
    assert "BOOST SHOP" in messenger.last_text

    assert await send("9", quoted_id=menu_id) == "invalid_selection"
    assert await bot.users.get_money(USER) == 5000

    assert await send("1", quoted_id=menu_id) == "selection"
    assert await bot.users.get_money(USER) == 2000
    assert "Purchased" in messenger.last_text
    profile = await bot.users.get_user_data(USER)
    assert [e.kind.value for e in profile.activeEffects] == ["work_boost"]


async def test_selection_after_ttl_is_plain_text(bot, send, messenger, clock):
    await send(".effects")
    menu_id = messenger.last["id"]
    clock.advance(minutes=31)
    assert await send("1", quoted_id=menu_id) == "ignored"


async def test_insufficient_funds_for_selection(bot, send, messenger):
    await send(".effects")
    assert await send("3", quoted_id=messenger.last["id"]) == "failed"
    assert "Insufficient balance" in messenger.last_text


async def test_invalid_amount_reply(send, messenger):
    assert await send(".deposit abc") == "failed"
    assert "positive whole number" in messenger.last_text


async def test_plugin_crash_gets_generic_reply(bot, send, messenger):
    bot.registry.register(BrokenPlugin(bot))
    assert await send(".boom") == "failed"
    assert messenger.last_text == GENERIC_ERROR
    assert bot.router.stats["errors"] == 1
    stats = bot.registry.get_stats()["broken"]
    assert stats["executions"] == 1
    assert stats["errors"] == 1
    assert stats["last_error"] == "RuntimeError: kaboom"


async def test_private_mode_only_answers_owner(bot, send):
    bot.config.mode = "private"
    assert await send(".balance") == "ignored"
    assert await send(".balance", sender=OWNER) == "command"


async def test_banned_sender_is_dropped(bot, send, messenger):
    assert await bot.permissions.ban(USER, OWNER, "spam") is True
    assert await send(".balance") == "banned"
    assert messenger.sent == []


async def test_plain_text_without_hook_match_is_ignored(send):
    assert await send("good morning everyone") == "ignored"
    assert await send("") == "ignored"


async def test_duplicate_registrations_rejected(bot):
    with pytest.raises(DuplicateRegistration):
        bot.registry.register(EconomyPlugin(bot))
    with pytest.raises(DuplicateRegistration):
        bot.registry.register(ClashingPlugin(bot))
    assert "clashing" not in bot.registry.plugins


async def test_unregister_drops_commands_and_tasks(bot):
    assert "economy.effects_sweep" in bot.scheduler.tasks
    assert bot.registry.unregister("economy") is True
    assert bot.registry.resolve("bal") is None
    assert "economy.effects_sweep" not in bot.scheduler.tasks
    assert bot.registry.unregister("economy") is False


async def test_dispatch_goes_through_router(bot, make_msg):
    assert await bot.registry.dispatch(make_msg(".balance")) == "command"


@pytest.mark.parametrize("body", ["²", "١", "1²", "-1"])
async def test_non_ascii_digits_on_menu_are_plain_text(bot, send, messenger, body):
    await send(".effects")
    menu_id = messenger.last["id"]
    sent_before = len(messenger.sent)
    assert await send(body, quoted_id=menu_id) == "ignored"
    assert len(messenger.sent) == sent_before
    assert bot.selections.lookup(menu_id) is not None
