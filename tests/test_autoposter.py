from datetime import timedelta

import pytest

from wabot.database.models import AutoPostAccount
from wabot.errors import InvalidInput, NotFound
from wabot.services.autoposter import AutoPoster, extract_hashtags, render_template

OWNER = "2348000000001@s.whatsapp.net"
GROUP = "120363000000000001@g.us"
NEWS = "120363000000000099@g.us"


def _tweet(tweet_id, text="hello", media_keys=None):
    tweet = {
        "id": str(tweet_id),
        "text": text,
        "created_at": "2026-03-02T08:00:00.000Z",
        "public_metrics": {"like_count": 1234, "retweet_count": 5, "reply_count": 0},
    }
    if media_keys:
        tweet["attachments"] = {"media_keys": media_keys}
    return tweet


@pytest.fixture
def poster(store, messenger, x_client, clock):
    return AutoPoster(store, messenger, client=x_client, default_bearer="tok", timezone="Africa/Lagos", clock=clock)


def test_render_template_fills_known_variables():
    tweet = _tweet(99, "Match day #EPL #Arsenal")
    text = render_template("{author}|{likes}|{created_at}|{hashtags}|{url}|{unknown}", tweet, "gisthq", "Africa/Lagos")
    assert text == "gisthq|1,234|02/03/2026 09:00|#EPL, #Arsenal|https://x.com/gisthq/status/99|{unknown}"
    assert render_template("{hashtags}", _tweet(1, "plain"), "a") == "(none)"
    assert extract_hashtags("a #b c #d_e") == ["#b", "#d_e"]


def test_account_is_due_after_interval(poster, clock):
    account = AutoPostAccount(username="a", targetChatId=GROUP, intervalMinutes=60)
    assert poster.is_due(account, clock())
    account.lastRunAt = clock()
    assert not poster.is_due(account, clock() + timedelta(minutes=59))
    assert poster.is_due(account, clock() + timedelta(minutes=60))


async def test_new_posts_go_out_oldest_first_and_move_cursor(poster, x_client, messenger, clock):
    await poster.add("@alice", NEWS, interval_minutes=60)
    x_client.tweets["id-alice"] = [_tweet(105, "second"), _tweet(103, "first")]

    assert await poster.poll() == {"alice": 2}
    assert [m["text"].split("\n\n")[1] for m in messenger.sent] == ["first", "second"]
    assert {m["chat_id"] for m in messenger.sent} == {NEWS}
    account = await poster.get("alice")
    assert account.lastPostedId == "105"
    assert account.userId == "id-alice"
    assert account.lastRunAt == clock()

    assert await poster.poll() == {"alice": "not_due"}

    clock.advance(minutes=60)
    assert await poster.poll() == {"alice": 0}
    assert len(messenger.sent) == 2

    x_client.tweets["id-alice"].append(_tweet(107, "third"))
    clock.advance(minutes=60)
    assert await poster.poll() == {"alice": 1}
    assert "third" in messenger.last_text
    assert x_client.lookups == 1


async def test_media_caption_goes_on_first_item(poster, x_client, messenger):
    await poster.add("alice", NEWS, template="{text}")
    x_client.media = [
        {"media_key": "m1", "type": "photo", "url": "https://pbs.example/1.jpg"},
        {"media_key": "m2", "type": "photo", "url": "https://pbs.example/2.jpg"},
    ]
    x_client.tweets["id-alice"] = [_tweet(200, "two photos", media_keys=["m1", "m2", "missing"])]

    assert await poster.poll() == {"alice": 1}
    assert messenger.sent == []
    assert [m["caption"] for m in messenger.media] == ["two photos", None]
    assert {m["kind"] for m in messenger.media} == {"image"}


async def test_failing_account_does_not_stop_others(poster, x_client, messenger):
    await poster.add("alice", NEWS)
    await poster.add("broken", NEWS)
    x_client.failing.add("broken")
    x_client.tweets["id-alice"] = [_tweet(1)]

    assert await poster.poll() == {"alice": 1, "broken": "error"}
    assert poster.stats["errors"] == 1
    assert len(messenger.sent) == 1


async def test_disabled_accounts_are_skipped(poster, x_client):
    await poster.add("alice", NEWS)
    await poster.set_enabled("alice", False)
    x_client.tweets["id-alice"] = [_tweet(1)]
    assert await poster.poll() == {"alice": "disabled"}


async def test_readding_keeps_cursor(poster, x_client):
    await poster.add("alice", NEWS)
    x_client.tweets["id-alice"] = [_tweet(10)]
    await poster.poll()
    account = await poster.add("alice", GROUP, interval_minutes=15)
    assert account.lastPostedId == "10"
    assert account.targetChatId == GROUP
    assert len(await poster.accounts()) == 1


async def test_update_config_validation(poster):
    with pytest.raises(NotFound):
        await poster.update_config("ghost", intervalMinutes=5)
    await poster.add("alice", NEWS)
    with pytest.raises(InvalidInput):
        await poster.update_config("alice", intervalMinutes=0)
    with pytest.raises(InvalidInput):
        await poster.update_config("alice", template="   ")
    with pytest.raises(InvalidInput):
        await poster.add("", NEWS)

    account = await poster.update_config("alice", template="{text}", intervalMinutes="30", lastPostedId="999")
    assert (account.template, account.intervalMinutes, account.lastPostedId) == ("{text}", 30, None)


async def test_xpost_commands(bot, send, messenger, x_client):
    bot.rate_limiter.max_calls = 10
    assert await send(f".xpost add alice {NEWS} 30 secret-token", sender=OWNER) == "command"
    assert "Added @alice (ID: id-alice)" in messenger.last_text

    assert await send(".xpost list") == "failed"
    assert "Access denied" in messenger.last_text

    assert await send('.xpost settemplate alice "New: {text}"', sender=OWNER) == "command"
    account = await bot.autoposter.get("alice")
    assert account.template == "New: {text}"
    assert account.bearerToken == "secret-token"

    x_client.tweets["id-alice"] = [_tweet(5, "breaking")]
    assert await send(".xpost test alice", sender=OWNER) == "command"
    assert "New: breaking" in messenger.last_text
    assert (await bot.autoposter.get("alice")).lastPostedId is None

    assert await send(".xpost remove nobody", sender=OWNER) == "failed"
    assert "not found" in messenger.last_text
