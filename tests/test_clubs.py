from datetime import timedelta
from types import SimpleNamespace

import pytest

from wabot.database.models import Club
from wabot.plugins.clubs import COLLECTION, EVENTS, REGISTRATION_FEE, event_revenue, weekly_expenses

USER = "2348000000002@s.whatsapp.net"
OTHER = "2348000000003@s.whatsapp.net"


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def clubs(bot):
    return bot.registry.plugins["clubs"]


async def _club(store, user_id=USER, **fields):
    club = Club(userId=user_id, name=fields.pop("name", "Night Owl"), **fields)
    await (await store.get_collection(COLLECTION)).insert_one(club.to_doc())


async def _load(store, user_id=USER):
    return await (await store.get_collection(COLLECTION)).find_one({"userId": user_id})


def test_weekly_expenses_breakdown(clock):
    now = clock()
    club = Club(
        userId=USER,
        name="Night Owl",
        staff=[{"type": "head_bouncer"}, {"type": "vip_hostess"}],
        equipment=[{"type": "jbl_prx815"}],
        licenses=[{"type": "business", "active": True, "expiresAt": now + timedelta(days=3)}],
    )
    costs = weekly_expenses(club, now)
    assert costs == {
        "utilities": 250_000,
        "staff": 190_000,
        "equipment": 15_000,
        "penalties": 50_000,
        "total": 505_000,
    }


async def test_expenses_use_club_balance_first(bot, clubs, store, clock):
    await _club(store, balance=300_000)
    await bot.users.add_money(USER, 1_000, "Gift")
    result = await clubs.settle_expenses(Club.from_doc(await _load(store)), clock())
    assert result == {"total": 250_000, "club": 250_000, "wallet": 0, "balance": 50_000}
    doc = await _load(store)
    assert doc["bankruptcyRisk"] is False
    assert doc["expenses"][-1]["type"] == "weekly_operations"
    assert await bot.users.get_money(USER) == 1_000


async def test_expenses_fall_back_to_wallet_then_debt(bot, clubs, store, clock):
    await _club(store, balance=100_000)
    await bot.users.add_money(USER, 60_000, "Gift")

    report = await clubs.process_weekly_expenses(SimpleNamespace(now=clock()))
    assert report == {"processed": 1, "deducted": 250_000, "at_risk": 1}
    assert await bot.users.get_money(USER) == 0
    doc = await _load(store)
    assert doc["balance"] == -90_000
    assert doc["bankruptcyRisk"] is True
    entry = doc["expenses"][-1]
    assert entry["type"] == "emergency_funding"
    assert entry["userContribution"] == 60_000


async def test_missing_business_license_is_fined(clubs, store, clock):
    await _club(store, balance=500_000)
    clubs.rng = FixedRandom(0.99)
    assert await clubs.process_license_enforcement(SimpleNamespace(now=clock())) == {"fined": 1, "shutdowns": 0}
    doc = await _load(store)
    assert doc["balance"] == 400_000
    assert doc["reputation"] == 45
    assert doc["violations"][-1]["type"] == "no_business_license"
    assert doc["isActive"] is True


async def test_missing_business_license_can_shut_club(clubs, store, clock):
    await _club(store, balance=500_000)
    clubs.rng = FixedRandom(0.01)
    assert await clubs.process_license_enforcement(SimpleNamespace(now=clock())) == {"fined": 0, "shutdowns": 1}
    doc = await _load(store)
    assert doc["isActive"] is False
    assert "No business license" in doc["shutdownReason"]


async def test_expired_optional_license_is_deactivated_and_fined(clubs, store, clock):
    now = clock()
    await _club(store, balance=500_000, licenses=[
        {"type": "business", "active": True, "expiresAt": now + timedelta(days=100)},
        {"type": "liquor", "active": True, "expiresAt": now - timedelta(days=1)},
    ])
    clubs.rng = FixedRandom(0.99)
    await clubs.process_license_enforcement(SimpleNamespace(now=now))
    doc = await _load(store)
    assert doc["balance"] == 425_000
    assert doc["reputation"] == 50
    assert [v["type"] for v in doc["violations"]] == ["expired_liquor"]
    liquor = next(lic for lic in doc["licenses"] if lic["type"] == "liquor")
    assert liquor["active"] is False


async def test_equipment_breaks_when_worn_out(clubs, store, clock):
    await _club(store, equipment=[
        {"type": "jbl_prx815", "purchasedAt": clock(), "currentDurability": 3, "maxDurability": 150, "broken": False},
        {"type": "bose_f1", "purchasedAt": clock(), "currentDurability": 100, "maxDurability": 170, "broken": False},
    ])
    clubs.rng = FixedRandom(0.5)
    assert await clubs.process_equipment_breakdown(SimpleNamespace(now=clock())) == 1
    doc = await _load(store)
    jbl, bose = doc["equipment"]
    assert (jbl["currentDurability"], jbl["broken"]) == (0, True)
    assert bose["currentDurability"] == 96
    assert doc["notifications"][-1]["repairCost"] == 720_000


async def test_register_and_host_event(bot, send, messenger, store, clock):
    bot.rate_limiter.max_calls = 10
    await bot.users.add_money(USER, 13_000_000, "Gift")

    assert await send(".club register Night Owl") == "command"
    assert "CLUB REGISTERED" in messenger.last_text
    assert await bot.users.get_money(USER) == 13_000_000 - REGISTRATION_FEE

    assert await send(".club register Second Club") == "failed"
    assert "already own a club" in messenger.last_text
    assert await send(".club register Night Owl", sender=OTHER) == "failed"
    assert "already taken" in messenger.last_text

    assert await send(".club host house_party") == "failed"
    assert "Missing licenses" in messenger.last_text

    for step in ("license business", "buy jbl_prx815", "buy chauvet_intimidator"):
        assert await send(f".club {step}") == "command"

    club = Club.from_doc(await _load(store))
    expected = event_revenue(club, EVENTS["house_party"], clock())
    before = await bot.users.get_money(USER)

    assert await send(".club host house_party") == "command"
    assert "HOUSE PARTY SUCCESS" in messenger.last_text
    doc = await _load(store)
    assert doc["balance"] == expected
    assert doc["weeklyEvents"] == 1
    assert doc["lastEventAt"] == clock()
    assert await bot.users.get_money(USER) == before - 500_000 + int(expected * 0.35)


async def test_club_commands_need_a_club(send, messenger):
    assert await send(".club info") == "failed"
    assert "don't own a club" in messenger.last_text
