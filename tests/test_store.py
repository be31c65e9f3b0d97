from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import DuplicateKeyError

from wabot.errors import InvalidInput, StoreUnavailable

WHEN = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
async def coll(store):
    c = await store.get_collection("scratch")
    for i, name in enumerate(["ada", "bola", "chidi", "dayo"]):
        await c.insert_one({"name": name, "score": i * 10, "meta": {"level": i}})
    return c


async def test_insert_writes_id_back_and_keeps_timestamps_aware(store):
    c = await store.get_collection("scratch")
    doc = {"name": "ada", "seen": WHEN, "history": [{"at": WHEN + timedelta(hours=1)}]}
    inserted = await c.insert_one(doc)
    assert doc["_id"] == inserted
    assert doc["seen"] is WHEN

    found = await c.find_one({"_id": inserted})
    assert found["seen"] == WHEN
    assert found["seen"].tzinfo is not None
    assert found["history"][0]["at"] == WHEN + timedelta(hours=1)


async def test_aware_datetimes_in_filters(store):
    c = await store.get_collection("fixtures")
    for hours in (1, 2, 3):
        await c.insert_one({"matchId": hours, "kickoff": WHEN + timedelta(hours=hours)})
    due = await c.find({"kickoff": {"$lte": WHEN + timedelta(hours=2)}}, sort=[("matchId", 1)])
    assert [d["matchId"] for d in due] == [1, 2]


async def test_find_sort_limit_skip_and_projection(coll):
    rows = await coll.find({}, sort=[("score", -1)], skip=1, limit=2, projection={"name": 1})
    assert [r["name"] for r in rows] == ["chidi", "bola"]
    assert "score" not in rows[0]

    top = await coll.find_one({"score": {"$gt": 0}}, sort={"score": 1})
    assert top["name"] == "bola"


async def test_update_results(coll):
    result = await coll.update_one({"name": "ada"}, {"$inc": {"score": 5}, "$set": {"meta.badge": "gold"}})
    assert (result.matched_count, result.modified_count) == (1, 1)
    assert (await coll.find_one({"name": "ada"}))["meta"] == {"level": 0, "badge": "gold"}

    missing = await coll.update_one({"name": "zed"}, {"$set": {"score": 1}})
    assert missing.matched_count == 0 and missing.upserted_id is None

    upserted = await coll.update_one({"name": "zed"}, {"$setOnInsert": {"score": 1}}, upsert=True)
    assert upserted.upserted_id is not None


async def test_update_requires_operators(coll):
    with pytest.raises(InvalidInput):
        await coll.update_one({"name": "ada"}, {"score": 1})
    with pytest.raises(InvalidInput):
        await coll.update_many({}, {})


async def test_replace_keeps_identity(coll):
    before = await coll.find_one({"name": "bola"})
    result = await coll.replace_one({"name": "bola"}, {"_id": "ignored", "name": "bola", "score": 99})
    assert result.matched_count == 1
    after = await coll.find_one({"name": "bola"})
    assert after == {"_id": before["_id"], "name": "bola", "score": 99}


async def test_declared_unique_indexes_are_enforced(store):
    users = await store.get_collection("users")
    await users.insert_one({"userId": "1@s.whatsapp.net"})
    with pytest.raises(DuplicateKeyError):
        await users.insert_one({"userId": "1@s.whatsapp.net"})

    subs = await store.get_collection("daily_task_submissions")
    await subs.insert_one({"userId": "u", "date": "02-03-2026"})
    await subs.insert_one({"userId": "u", "date": "03-03-2026"})
    with pytest.raises(DuplicateKeyError):
        await subs.insert_one({"userId": "u", "date": "02-03-2026"})

    assert store.get_stats()["collections_bootstrapped"] == 2


async def test_delete_and_aggregate(coll):
    assert await coll.delete_one({"name": "ada"}) == 1
    assert await coll.delete_one({"name": "ada"}) == 0
    rows = await coll.aggregate([
        {"$match": {"score": {"$gte": 20}}},
        {"$group": {"_id": None, "total": {"$sum": "$score"}}},
    ])
    assert rows == [{"_id": None, "total": 50}]
    assert await coll.delete_many({"score": {"$gte": 20}}) == 2
    assert await coll.count_documents() == 1


async def test_closed_store_is_unavailable(store):
    users = await store.get_collection("users")
    assert await store.ping() >= 0
    await store.close()
    with pytest.raises(StoreUnavailable):
        await store.get_collection("users")
    with pytest.raises(StoreUnavailable):
        await store.ping()
    with pytest.raises(StoreUnavailable):
        await users.find_one({"userId": "x"})


async def test_collection_names_are_checked(store):
    with pytest.raises(ValueError):
        await store.get_collection("users; drop")
