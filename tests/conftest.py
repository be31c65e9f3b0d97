import itertools
import random
from datetime import datetime, timedelta, timezone

import pytest
from mongomock_motor import AsyncMongoMockClient

from wabot.database.database_service import DatabaseService
from wabot.errors import ExternalFetchFailure
from wabot.main import Bot
from wabot.services.messenger import IncomingMessage, Messenger
from wabot.utils.config import Config

OWNER = "2348000000001@s.whatsapp.net"
USER = "2348000000002@s.whatsapp.net"
OTHER = "2348000000003@s.whatsapp.net"
GROUP = "120363000000000001@g.us"

# Monday 2 March 2026, 10:00 in Lagos
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMessenger(Messenger):
    """Records everything the bot sends."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.sent = []
        self.media = []
        self.reactions = []
        self.participants = {}

    async def send_text(self, chat_id, text, *, quoted=None, mentions=None):
        mid = f"out-{next(self._ids)}"
        self.sent.append({"id": mid, "chat_id": chat_id, "text": text, "quoted": quoted, "mentions": mentions})
        return mid

    async def send_media(self, chat_id, kind, data, *, caption=None, mimetype=None, filename=None):
        mid = f"out-{next(self._ids)}"
        self.media.append({"id": mid, "chat_id": chat_id, "kind": kind, "data": data, "caption": caption})
        return mid

    async def react(self, chat_id, message_id, emoji):
        self.reactions.append((chat_id, message_id, emoji))

    async def group_participants(self, chat_id):
        return list(self.participants.get(chat_id, []))

    @property
    def last(self):
        return self.sent[-1] if self.sent else None

    @property
    def last_text(self):
        return self.sent[-1]["text"] if self.sent else ""


class FakeXClient:
    def __init__(self):
        self.tweets = {}
        self.media = []
        self.failing = set()
        self.lookups = 0

    async def user_id(self, username, bearer):
        self.lookups += 1
        if username in self.failing:
            raise ExternalFetchFailure("X API 503: unavailable", status=503)
        return f"id-{username}"

    async def recent_tweets(self, user_id, bearer, since_id=None):
        tweets = [t for t in self.tweets.get(user_id, []) if since_id is None or int(t["id"]) > int(since_id)]
        return {"data": tweets, "includes": {"media": list(self.media)}}

    async def download(self, url):
        return b"\x89PNG", "image/png"


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store(config):
    return DatabaseService(config, client=AsyncMongoMockClient())


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def x_client():
    return FakeXClient()


@pytest.fixture
def config():
    return Config(
        owner_number="2348000000001",
        admin_numbers=[],
        mode="public",
        timezone="Africa/Lagos",
        currency_symbol="₦",
        disabled_plugins=[],
        mongo_db_name="wabot_test",
        web_enabled=False,
        log_file="",
        log_chat_id="",
        rate_limit_window_sec=10,
        rate_limit_max=3,
        selection_ttl_sec=1800,
        starting_balance=0,
        fixture_floor=10,
    )


@pytest.fixture
async def bot(config, store, messenger, clock, x_client):
    instance = Bot(config, store=store, messenger=messenger, clock=clock, rng=random.Random(7))
    await instance.setup()
    instance.autoposter.client = x_client
    yield instance
    await instance.close()


@pytest.fixture
def make_msg():
    ids = itertools.count(1)

    def factory(body, sender=USER, chat_id=GROUP, **kwargs):
        return IncomingMessage(id=f"in-{next(ids)}", chat_id=chat_id, sender=sender, body=body, **kwargs)

    return factory


@pytest.fixture
def send(bot, make_msg):
    """Push a message through the router and return its outcome."""

    async def _send(body, sender=USER, chat_id=GROUP, **kwargs):
        return await bot.handle_message(make_msg(body, sender=sender, chat_id=chat_id, **kwargs))

    return _send
