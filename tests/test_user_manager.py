import asyncio
import gc
from datetime import timedelta

import pytest

from wabot.database.models import EffectKind
from wabot.errors import InsufficientFunds, InvalidAmount, InvalidInput
from wabot.services.user_manager import UserManager

ALICE = "2348011111111@s.whatsapp.net"
BOB = "2348022222222@s.whatsapp.net"


@pytest.fixture
def users(store, config, clock):
    return UserManager(store, config, clock)


async def _ledger(store, user_id):
    transactions = await store.get_collection("transactions")
    return await transactions.find({"userId": user_id}, sort=[("timestamp", 1)])


async def test_init_user_is_idempotent(users, store):
    await users.init_user(ALICE)
    await users.init_user(ALICE)
    coll = await store.get_collection("users")
    assert await coll.count_documents({"userId": ALICE}) == 1
    profile = await users.get_user_data(ALICE)
    assert profile.balance == 0
    assert profile.streak == 0
    assert profile.activeEffects == []


async def test_starting_balance_is_seeded(store, config, clock):
    config.starting_balance = 250
    users = UserManager(store, config, clock)
    assert await users.get_money(ALICE) == 250


async def test_add_money_logs_credit(users, store):
    assert await users.add_money(ALICE, 500, "Gift") == 500
    rows = await _ledger(store, ALICE)
    assert len(rows) == 1
    assert rows[0]["type"] == "credit"
    assert (rows[0]["balanceBefore"], rows[0]["balanceAfter"]) == (0, 500)


@pytest.mark.parametrize("amount", [0, -5, 2.5, "10", True])
async def test_non_positive_or_non_integer_amounts_rejected(users, amount):
    with pytest.raises(InvalidAmount):
        await users.add_money(ALICE, amount, "bad")


async def test_remove_money_short_writes_nothing(users, store):
    await users.add_money(ALICE, 100, "seed")
    assert await users.remove_money(ALICE, 150, "too much") is False
    assert await users.get_money(ALICE) == 100
    assert len(await _ledger(store, ALICE)) == 1
    assert users.stats["rejected_debits"] == 1


async def test_charge_reports_shortfall(users):
    await users.add_money(ALICE, 100, "seed")
    with pytest.raises(InsufficientFunds) as info:
        await users.charge(ALICE, 350, "shop")
    assert info.value.shortfall == 250
    assert info.value.available == 100
    assert "Short by" in info.value.user_message


async def test_concurrent_debits_only_one_succeeds(users):
    await users.add_money(ALICE, 100, "seed")
    results = await asyncio.gather(
        users.remove_money(ALICE, 80, "first"),
        users.remove_money(ALICE, 80, "second"),
    )
    assert sorted(results) == [False, True]
    assert await users.get_money(ALICE) == 20


async def test_work_boost_doubles_work_credits_only(users, clock):
    await users.grant_effect(ALICE, EffectKind.WORK_BOOST, timedelta(hours=1))
    assert await users.add_money(ALICE, 100, "Work earnings") == 200
    assert await users.add_money(ALICE, 100, "Gift") == 300
    assert await users.add_money(ALICE, 100, "Work earnings", apply_effects=False) == 400

    clock.advance(hours=2)
    assert await users.add_money(ALICE, 100, "Work earnings") == 500


async def test_multipliers_stack_and_floor(users):
    await users.grant_effect(ALICE, EffectKind.DAILY_BOOST, timedelta(hours=1))
    await users.grant_effect(ALICE, EffectKind.VIP_BONUS, timedelta(hours=1))
    # 101 * 1.5 * 1.25 = 189.375
    assert await users.add_money(ALICE, 101, "Daily reward") == 189


async def test_grant_effect_extends_running_effect(users, clock):
    first = await users.grant_effect(ALICE, EffectKind.VIP_BONUS, timedelta(hours=1))
    second = await users.grant_effect(ALICE, EffectKind.VIP_BONUS, timedelta(hours=1))
    assert second.expiresAt - first.expiresAt == timedelta(hours=1)
    profile = await users.get_user_data(ALICE)
    assert len(profile.activeEffects) == 1


async def test_sweep_expired_effects(users, clock):
    await users.grant_effect(ALICE, EffectKind.WORK_BOOST, timedelta(minutes=30))
    await users.grant_effect(BOB, EffectKind.VIP_BONUS, timedelta(days=1))
    clock.advance(hours=1)
    assert await users.sweep_expired_effects() == 1
    assert (await users.get_user_data(ALICE)).activeEffects == []
    assert len((await users.get_user_data(BOB)).activeEffects) == 1


async def test_update_user_data_rejects_money_fields(users):
    with pytest.raises(InvalidInput):
        await users.update_user_data(ALICE, {"balance": 1_000_000})
    with pytest.raises(InvalidInput):
        await users.update_user_data(ALICE, {"bank.extra": 5})
    profile = await users.update_user_data(ALICE, {"clan": "Lions", "profile.taskStreak": 2})
    assert profile.clan == "Lions"
    assert profile.profile == {"taskStreak": 2}


async def test_legacy_wallet_is_migrated(users, store):
    coll = await store.get_collection("users")
    await coll.insert_one({"userId": ALICE, "wallet": 300, "bank": 20})
    assert await users.get_balance(ALICE) == (300, 20)
    doc = await coll.find_one({"userId": ALICE})
    assert "wallet" not in doc
    assert doc["balance"] == 300


async def test_deposit_withdraw_and_transfer(users):
    await users.add_money(ALICE, 1000, "seed")
    assert await users.deposit(ALICE, 600) == (400, 600)
    assert await users.withdraw(ALICE, 100) == (500, 500)
    with pytest.raises(InsufficientFunds):
        await users.withdraw(ALICE, 501)

    assert await users.transfer(ALICE, BOB, 200) is True
    assert await users.get_money(ALICE) == 300
    assert await users.get_money(BOB) == 200
    assert await users.transfer(ALICE, BOB, 5000) is False
    with pytest.raises(InvalidInput):
        await users.transfer(ALICE, ALICE, 10)


async def test_leaderboard_orders_by_balance(users):
    await users.add_money(ALICE, 10, "seed")
    await users.add_money(BOB, 90, "seed")
    rows = await users.leaderboard(limit=5)
    assert [r["userId"] for r in rows] == [BOB, ALICE]


async def test_idle_locks_are_not_retained(users):
    async with users.lock_for("claim:" + ALICE):
        assert users.lock_for("claim:" + ALICE).locked()
    for i in range(50):
        await users.add_money(f"23480{i:08d}@s.whatsapp.net", 10, "seed")
    gc.collect()
    assert len(users._locks) == 0
