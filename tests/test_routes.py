from habitpulse.services.cache_service import analytics_cache

HEADERS = {"X-User-Id": "42"}


async def create_habit(client, **fields):
    body = {"name": "Drink water", **fields}
    r = await client.post("/api/v1/habits", json=body, headers=HEADERS)
    assert r.status_code == 201
    return r.json()["data"]


async def test_missing_user_header_is_401(client):
    r = await client.get("/api/v1/habits")
    assert r.status_code == 401
    r = await client.get("/api/v1/habits", headers={"X-User-Id": "abc"})
    assert r.status_code == 401


async def test_health_check(client):
    r = await client.get("/api/v1/health-check")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_habit_crud(client):
    habit = await create_habit(client, category="Health")
    assert habit["frequency"] == "DAILY"

    r = await client.put(f"/api/v1/habits/{habit['id']}", json={"name": "Drink more water"}, headers=HEADERS)
    assert r.json()["data"]["name"] == "Drink more water"

    r = await client.get("/api/v1/habits", headers=HEADERS)
    assert r.json()["total"] == 1

    r = await client.delete(f"/api/v1/habits/{habit['id']}", headers=HEADERS)
    assert r.status_code == 200
    r = await client.get(f"/api/v1/habits/{habit['id']}", headers=HEADERS)
    assert r.status_code == 404
    assert r.json()["error"] == "NOT_FOUND"


async def test_invalid_schedule_is_422(client):
    r = await client.post("/api/v1/habits", json={"name": "Swim", "frequency": "WEEKLY"}, headers=HEADERS)
    assert r.status_code == 422
    assert r.json()["error"] == "INVALID_SCHEDULE"


async def test_archive_twice_is_409(client):
    habit = await create_habit(client)
    r = await client.post(f"/api/v1/habits/{habit['id']}/archive", headers=HEADERS)
    assert r.status_code == 200
    r = await client.post(f"/api/v1/habits/{habit['id']}/archive", headers=HEADERS)
    assert r.status_code == 409


async def test_pause_and_resume(client):
    habit = await create_habit(client)
    r = await client.post(f"/api/v1/habits/{habit['id']}/pause", json={"reason": "travel"}, headers=HEADERS)
    assert r.json()["data"]["is_paused"] is True
    r = await client.post(f"/api/v1/habits/{habit['id']}/resume", headers=HEADERS)
    assert r.json()["data"]["is_paused"] is False


async def test_check_in_then_dashboard_is_fresh(client):
    habit = await create_habit(client)

    r = await client.get("/api/v1/analytics/overview", headers=HEADERS)
    assert r.json()["stats"]["completed_today"] == 0

    r = await client.post(f"/api/v1/tracking/habits/{habit['id']}/check-in", json={}, headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["data"]["streak"]["current_streak"] == 1

    r = await client.get("/api/v1/analytics/overview", headers=HEADERS)
    assert r.json()["stats"]["completed_today"] == 1

    r = await client.get("/api/v1/tracking/today", headers=HEADERS)
    assert r.json()["habits"][0]["is_completed"] is True

    r = await client.delete(f"/api/v1/tracking/habits/{habit['id']}/check-in", headers=HEADERS)
    assert r.json()["data"]["streak"]["current_streak"] == 0


async def test_overview_cached_between_calls(client):
    await create_habit(client)
    first = await client.get("/api/v1/analytics/overview", headers=HEADERS)
    second = await client.get("/api/v1/analytics/overview", headers=HEADERS)
    assert first.content == second.content

    r = await client.get("/api/v1/admin/cache/metrics", headers=HEADERS)
    assert r.json()["hits"] == 1


async def test_analytics_bad_params_are_422(client):
    r = await client.get("/api/v1/analytics/weekly?start_date=yesterday", headers=HEADERS)
    assert r.status_code == 422
    r = await client.get("/api/v1/analytics/habits/999", headers=HEADERS)
    assert r.status_code == 404


async def test_admin_invalidation(client):
    await create_habit(client)
    await client.get("/api/v1/analytics/insights", headers=HEADERS)
    assert analytics_cache.memory.size() == 1

    r = await client.delete("/api/v1/admin/cache/users/42", headers=HEADERS)
    assert r.json()["deleted"] == 1
    assert analytics_cache.memory.size() == 0


async def test_timezone_setting(client):
    r = await client.put("/api/v1/habits/settings", json={"timezone": "Asia/Kolkata"}, headers=HEADERS)
    assert r.json()["data"] == {"user_id": 42, "timezone": "Asia/Kolkata"}
