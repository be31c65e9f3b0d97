import pytest

from wabot.utils.webserver import SECRET_HEADER, WebServer

NEWS = "120363000000000099@g.us"


@pytest.fixture
async def client(bot, aiohttp_client):
    return await aiohttp_client(WebServer(bot).app)


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status == 200
    data = await resp.json()
    assert data["status"] == "healthy"
    assert data["requests_served"] == 1


async def test_detailed_health_reports_store_and_tasks(client):
    resp = await client.get("/api/health-detailed")
    data = await resp.json()
    assert data["status"] == "healthy"
    assert data["store"]["ok"] is True
    assert data["scheduler"]["healthy"] is True
    assert "economy" in data["plugins"]


async def test_scheduled_tasks_listing_and_trigger(client, bot):
    resp = await client.get("/api/scheduled-tasks")
    data = await resp.json()
    keys = [t["key"] for t in data["tasks"]]
    assert data["count"] == len(bot.scheduler.tasks)
    assert "economy.effects_sweep" in keys
    assert keys == sorted(keys)

    resp = await client.post("/api/trigger-scheduled-task/nope.nothing")
    assert resp.status == 404

    resp = await client.post("/api/trigger-scheduled-task/economy.effects_sweep")
    assert resp.status == 200
    assert (await resp.json()) == {"triggered": True, "task": "economy.effects_sweep"}


async def test_xposter_add_and_list(client):
    resp = await client.post("/webhook/xposter/add", json={"username": "alice"})
    assert resp.status == 400

    resp = await client.post("/webhook/xposter/add", json={
        "username": "@alice",
        "targetChatId": NEWS,
        "intervalMinutes": 15,
        "bearerToken": "very-secret",
        "messageTemplate": "{text}",
    })
    assert resp.status == 200
    account = (await resp.json())["account"]
    assert account["username"] == "alice"
    assert account["intervalMinutes"] == 15
    assert "bearerToken" not in account

    resp = await client.get("/webhook/xposter/list")
    accounts = (await resp.json())["accounts"]
    assert [a["username"] for a in accounts] == ["alice"]


async def test_xposter_config_checks_secret(client, bot):
    await bot.autoposter.add("alice", NEWS, webhook_secret="s3cret")

    resp = await client.post("/webhook/xposter/config", json={"username": "alice", "intervalMinutes": 5},
                             headers={SECRET_HEADER: "wrong"})
    assert resp.status == 403

    resp = await client.post("/webhook/xposter/config", json={"username": "alice", "intervalMinutes": 5},
                             headers={SECRET_HEADER: "s3cret"})
    assert resp.status == 200
    assert (await resp.json())["account"]["intervalMinutes"] == 5

    resp = await client.post("/webhook/xposter/config", json={"username": "ghost", "enabled": False})
    assert resp.status == 404

    resp = await client.post("/webhook/xposter/config", json={"username": "alice", "intervalMinutes": -1},
                             headers={SECRET_HEADER: "s3cret"})
    assert resp.status == 400


async def test_xposter_rejects_bad_json(client):
    resp = await client.post("/webhook/xposter/add", data="{not json", headers={"Content-Type": "application/json"})
    assert resp.status == 400
    resp = await client.post("/webhook/xposter/add", json=["a", "b"])
    assert resp.status == 400
