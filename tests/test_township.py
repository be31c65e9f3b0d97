from datetime import timedelta
from types import SimpleNamespace

import pytest

from wabot.database.models import TownshipPlayer
from wabot.plugins.township import (
    COLLECTION,
    LEADERBOARD_COLLECTION,
    ORDER_MAX_ACTIVE,
    ORDERS_COLLECTION,
    STARTING_BONUS,
    exp_for_level,
    find_by_name,
    BUILDINGS,
    level_for,
)

USER = "2348000000002@s.whatsapp.net"
OTHER = "2348000000003@s.whatsapp.net"


@pytest.fixture
def township(bot):
    bot.rate_limiter.max_calls = 20
    return bot.registry.plugins["township"]


async def _player(store, clock, user_id=USER, **fields):
    now = clock()
    player = TownshipPlayer(userId=user_id, createdAt=now, updatedAt=now, **fields)
    await (await store.get_collection(COLLECTION)).insert_one(player.to_doc())
    return player


async def _load(store, user_id=USER):
    return TownshipPlayer.from_doc(await (await store.get_collection(COLLECTION)).find_one({"userId": user_id}))


def test_level_curve():
    assert exp_for_level(1) == 0
    assert exp_for_level(2) == 100
    assert exp_for_level(3) - exp_for_level(2) > 100
    assert level_for(99) == 1
    assert level_for(100) == 2
    assert level_for(exp_for_level(3)) == 3
    assert level_for(exp_for_level(3) - 1) == 2
    assert level_for(10 ** 12) == 100


def test_lookup_by_id_or_display_name():
    assert find_by_name(BUILDINGS, "processing plant")[0] == "processing_plant"
    assert find_by_name(BUILDINGS, "Market Stall")[0] == "market"
    assert find_by_name(BUILDINGS, "castle") is None


def test_growth_and_production_tasks_are_scheduled(bot):
    crons = {key: task.cron.expression for key, task in bot.scheduler.tasks.items() if key.startswith("township.")}
    assert crons == {
        "township.crop_growth": "*/10 * * * *",
        "township.production_completion": "*/15 * * * *",
        "township.resource_generation": "0 */6 * * *",
        "township.spawn_orders": "*/30 * * * *",
        "township.daily_bonus": "0 0 * * *",
        "township.leaderboard_update": "0 1 * * *",
    }


async def test_plant_grow_harvest_and_sell(bot, township, send, messenger, store, clock):
    assert await send(".township start") == "command"
    assert await bot.users.get_money(USER) == STARTING_BONUS
    assert await send(".town start") == "failed"
    assert "already have a township" in messenger.last_text

    assert await send(".township build farm") == "command"
    assert "farm-1" in messenger.last_text
    assert await bot.users.get_money(USER) == STARTING_BONUS - 500

    assert await send(".ts farm farm-1 wheat") == "command"
    assert "Ready in 10m" in messenger.last_text
    assert await send(".township harvest") == "failed"
    assert "No crops ready" in messenger.last_text

    clock.advance(minutes=10)
    assert await township.process_crop_growth(SimpleNamespace(now=clock())) == {"players": 1, "ready": 1}
    assert (await _load(store)).farms["farm-1"]["crops"][0]["ready"] is True

    assert await send(".township harvest farm-1") == "command"
    assert "3 Wheat" in messenger.last_text
    player = await _load(store)
    assert player.inventory == {"wheat": 3}
    assert player.farms["farm-1"]["crops"] == []
    assert player.energy == 95

    assert await send(".township trade sell wheat 3") == "command"
    assert await bot.users.get_money(USER) == STARTING_BONUS - 500 + 150
    player = await _load(store)
    assert player.inventory == {}
    assert player.experience == 25


async def test_farm_slots_and_energy_are_limited(township, send, messenger, store, clock):
    await _player(store, clock, energy=12, farms={"farm-1": {"id": "farm-1", "type": "farm", "crops": []}})
    assert await send(".township farm farm-1 wheat") == "command"
    assert await send(".township farm farm-1 wheat") == "command"
    assert await send(".township farm farm-1 wheat") == "failed"
    assert "no free slots" in messenger.last_text

    await (await store.get_collection(COLLECTION)).update_one(
        {"userId": USER}, {"$set": {"farms.farm-1.crops": []}}
    )
    assert await send(".township farm farm-1 wheat") == "failed"
    assert "Not enough energy" in messenger.last_text

    assert await send(".township farm farm-1 grape") == "failed"
    assert "unlocks at level 30" in messenger.last_text


async def test_production_finishes_into_inventory(township, send, messenger, store, clock):
    await _player(
        store, clock,
        level=12, experience=exp_for_level(12),
        inventory={"wheat": 4},
        factories={"factory-1": {"id": "factory-1", "type": "factory", "production": []}},
    )
    assert await send(".township produce factory-1 flour") == "command"
    player = await _load(store)
    assert player.inventory == {"wheat": 2}
    assert player.energy == 90

    clock.advance(minutes=4)
    assert await township.process_production(SimpleNamespace(now=clock())) == {"players": 0, "items": 0}
    clock.advance(minutes=1)
    assert await township.process_production(SimpleNamespace(now=clock())) == {"players": 1, "items": 1}
    player = await _load(store)
    assert player.inventory == {"wheat": 2, "flour": 1}
    assert player.factories["factory-1"]["production"] == []
    assert player.experience == exp_for_level(12) + 15

    assert await send(".township produce factory-1 bread") == "failed"
    assert "unlocks at level 20" in messenger.last_text


async def test_orders_spawn_within_bounds(township, store, clock):
    now = clock()
    count = await township.spawn_orders(SimpleNamespace(now=now))
    assert 1 <= count <= 4
    orders = await (await store.get_collection(ORDERS_COLLECTION)).find({})
    assert len(orders) == count
    for order in orders:
        assert order["remaining"] == order["quantity"]
        assert 5 <= order["quantity"] <= 24
        assert order["rewardPerUnit"] >= 1
        assert now + timedelta(minutes=30) <= order["expiresAt"] <= now + timedelta(minutes=240)


async def test_orders_stop_spawning_at_capacity(township, store, clock):
    coll = await store.get_collection(ORDERS_COLLECTION)
    for _ in range(ORDER_MAX_ACTIVE):
        await coll.insert_one({"itemType": "wheat", "remaining": 1, "expiresAt": clock() + timedelta(hours=1)})
    assert await township.spawn_orders(SimpleNamespace(now=clock())) == 0


async def test_fulfill_order_pays_per_unit(bot, township, send, messenger, store, clock):
    await _player(store, clock, inventory={"wheat": 3, "corn": 1})
    order = {
        "itemType": "wheat", "quantity": 5, "remaining": 5, "reward": 500, "rewardPerUnit": 100,
        "source": "train", "urgency": "low", "createdAt": clock(), "expiresAt": clock() + timedelta(hours=1),
    }
    orders = await store.get_collection(ORDERS_COLLECTION)
    await orders.insert_one(order)
    suffix = str(order["_id"])[-6:]

    assert await send(".township orders") == "command"
    assert suffix in messenger.last_text

    assert await send(f".township fulfill {suffix} 10") == "command"
    assert "Delivered 3" in messenger.last_text
    assert await bot.users.get_money(USER) == 300
    assert (await orders.find_one({"_id": order["_id"]}))["remaining"] == 2
    player = await _load(store)
    assert player.inventory == {"corn": 1}
    assert player.experience == 30

    assert await send(f".township fulfill {suffix} 1") == "failed"
    assert "don't have any Wheat" in messenger.last_text

    clock.advance(hours=2)
    assert await send(f".township fulfill {suffix} 1") == "failed"
    assert "not found or expired" in messenger.last_text


async def test_daily_reward_once_per_local_day(bot, township, send, messenger, store, clock):
    await _player(store, clock)
    assert await send(".township reward") == "command"
    assert await bot.users.get_money(USER) == 100
    assert await send(".township reward") == "failed"
    assert "already claimed" in messenger.last_text

    assert await township.reset_daily_bonus(SimpleNamespace(now=clock())) == 1
    assert await send(".township reward") == "failed"

    clock.advance(days=1)
    assert await send(".township reward") == "command"
    assert await bot.users.get_money(USER) == 200


async def test_energy_regenerates_faster_with_storage(township, store, clock):
    await _player(store, clock, energy=50, buildings={"storage": [{"id": "storage-1"}]})
    await _player(store, clock, user_id=OTHER)
    assert await township.generate_passive_resources(SimpleNamespace(now=clock())) == 1
    assert (await _load(store)).energy == 80
    assert (await _load(store, OTHER)).energy == 100


async def test_leaderboard_snapshot_ranks_by_level(township, send, messenger, store, clock):
    await _player(store, clock, level=3, experience=300)
    await _player(store, clock, user_id=OTHER, level=5, experience=800)
    snapshot = await township.update_leaderboard(SimpleNamespace(now=clock()))
    assert [row["userId"] for row in snapshot["players"]] == [OTHER, USER]
    saved = await (await store.get_collection(LEADERBOARD_COLLECTION)).find_one({})
    assert saved["players"][0]["rank"] == 1

    assert await send(".township leaderboard") == "command"
    assert messenger.last_text.index("Level 5") < messenger.last_text.index("Level 3")


async def test_commands_need_a_township(township, send, messenger):
    assert await send(".township status") == "failed"
    assert "don't have a township" in messenger.last_text
    assert await send(".township") == "command"
    assert "TOWNSHIP" in messenger.last_text
