import pytest

from allgood.core.config import settings


@pytest.mark.asyncio
async def test_login_sets_strict_http_only_cookie(client, ctx):
    res = await client.post("/admin/login", data={"password": "letmein"})

    assert res.status_code == 302
    assert res.headers["location"] == "/admin/stats"
    cookie = res.headers["set-cookie"].lower()
    assert cookie.startswith("admin_session=")
    assert "httponly" in cookie
    assert "samesite=strict" in cookie
    session_id = res.headers["set-cookie"].split(";")[0].split("=", 1)[1]
    assert ctx.sessions.is_valid(session_id)


@pytest.mark.asyncio
async def test_wrong_password(client, ctx):
    res = await client.post("/admin/login", data={"password": "nope"})
    assert res.status_code == 302
    assert res.headers["location"] == "/admin/login?error=1"
    assert len(ctx.sessions) == 0


@pytest.mark.asyncio
async def test_near_miss_and_non_ascii_passwords_rejected(client, ctx):
    for attempt in ("letmein ", "letmei", "letmeín"):
        res = await client.post("/admin/login", data={"password": attempt})
        assert res.headers["location"] == "/admin/login?error=1"
    assert len(ctx.sessions) == 0


@pytest.mark.asyncio
async def test_unset_password_disables_login(client, ctx, monkeypatch):
    monkeypatch.setattr(settings, "STATS_PASSWORD", "")
    res = await client.post("/admin/login", data={"password": ""})
    assert res.headers["location"] == "/admin/login?error=1"
    assert len(ctx.sessions) == 0


@pytest.mark.asyncio
async def test_stats_api_requires_session(client):
    res = await client.get("/api/stats")
    assert res.status_code == 401
    assert res.json() == {"error": "Unauthorized"}

    res = await client.post("/api/stats/cleanup")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_stats_page_redirects_to_login(client):
    res = await client.get("/admin/stats")
    assert res.status_code == 302
    assert res.headers["location"] == "/admin/login"
    assert res.headers["x-robots-tag"] == "noindex, nofollow"


@pytest.mark.asyncio
async def test_login_page_and_noindex(client):
    res = await client.get("/admin/login")
    assert res.status_code == 200
    assert 'name="password"' in res.text
    assert res.headers["x-robots-tag"] == "noindex, nofollow"


@pytest.mark.asyncio
async def test_logged_in_admin(client, ctx):
    client.cookies.set("admin_session", ctx.sessions.create())

    login = await client.get("/admin/login")
    assert login.status_code == 302
    assert login.headers["location"] == "/admin/stats"

    page = await client.get("/admin/stats")
    assert page.status_code == 200

    stats = await client.get("/api/stats", params={"days": "7"})
    assert stats.status_code == 200
    assert stats.json()["period"] == "7 days"

    cleanup = await client.post("/api/stats/cleanup", params={"days": "30"})
    assert cleanup.json() == {"success": True, "deletedRecords": 0}


@pytest.mark.asyncio
async def test_bad_days_falls_back_to_default(client, ctx):
    client.cookies.set("admin_session", ctx.sessions.create())
    res = await client.get("/api/stats", params={"days": "abc"})
    assert res.json()["period"] == "30 days"


@pytest.mark.asyncio
async def test_logout_revokes_session(client, ctx):
    session_id = ctx.sessions.create()
    client.cookies.set("admin_session", session_id)

    res = await client.get("/admin/logout")

    assert res.status_code == 302
    assert res.headers["location"] == "/admin/login"
    assert not ctx.sessions.is_valid(session_id)
