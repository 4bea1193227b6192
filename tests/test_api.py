import httpx
import pytest

from conftest import user_plan_message
from renewalert.main import build_reconciler, get_application


@pytest.fixture()
async def api(settings, sdk, redis, http_client):
    app = get_application(sdk, settings=settings, redis=redis, http_client=http_client)
    # ASGITransport does not run the lifespan; wire the reconciler directly.
    app.state.reconciler = build_reconciler(settings, sdk, redis, http_client)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://app") as client:
        yield client


async def _login(api, is_mobile_user=True):
    resp = await api.post("/v1/billing/session", json={"user_id": "42", "is_mobile_user": is_mobile_user})
    assert resp.status_code == 200
    return resp.json()


@pytest.mark.asyncio
async def test_session_syncs_subscription(api):
    body = await _login(api)
    assert body["state"]["plan_code"] == "standard"
    assert body["phase"] == "idle"
    assert body["can_use_store"] is True

    resp = await api.get("/v1/billing/subscription")
    assert resp.status_code == 200
    assert resp.headers["X-Plan-Code"] == "standard"
    assert resp.headers["X-Plan-Source"] == "store"


@pytest.mark.asyncio
async def test_subscription_requires_session(api):
    resp = await api.get("/v1/billing/subscription")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_plans_listing(api):
    await _login(api)
    resp = await api.get("/v1/billing/plans")
    assert resp.status_code == 200
    plans = resp.json()
    assert [p["code"] for p in plans] == ["home_family", "standard", "enterprise"]
    standard = plans[1]
    assert standard["popular"] is True
    assert standard["is_current"] is True
    assert standard["gradient"] == ["#9A1B2B", "#6B1420"]
    assert standard["monthly"]["display_price"] == "$9.99"
    assert standard["monthly"]["store_product_id"] == "ra.standard.monthly.ios"
    assert standard["monthly"]["trial_badge"] == "30-day free trial"
    assert plans[2]["yearly"]["trial_badge"] is None
    assert "Unlimited reminders" in standard["features"]
    assert standard["features_not_included"] == []


@pytest.mark.asyncio
async def test_select_plan_settles(api, backend_server, sdk):
    await _login(api)
    backend_server.user_plan = user_plan_message("enterprise", "monthly")

    resp = await api.post("/v1/billing/plan", json={"plan_code": "enterprise", "period": "monthly"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "settled"
    assert body["state"]["plan_code"] == "enterprise"
    assert "take a few moments" in body["message"]
    assert sdk.count("purchase_package") == 1


@pytest.mark.asyncio
async def test_validation_errors_mapped_to_status(api, backend_server, sdk):
    backend_server.user_plan = user_plan_message("standard", "yearly")
    await _login(api)

    resp = await api.post("/v1/billing/plan", json={"plan_code": "enterprise", "period": "monthly"})
    assert resp.status_code == 422
    assert resp.json()["code"] == "downgrade_restricted"

    resp = await api.post("/v1/billing/plan", json={"plan_code": "standard", "period": "yearly"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "already_active"
    assert sdk.calls == []


@pytest.mark.asyncio
async def test_stale_cache_on_screen_does_not_allow_downgrade(api, backend_server, sdk):
    await _login(api)
    resp = await api.post("/v1/billing/session", json={"user_id": "7", "is_mobile_user": True})
    assert resp.status_code == 200

    backend_server.user_plan = user_plan_message("standard", "yearly")
    backend_server.user_plan_failures = 2
    body = await _login(api)
    assert body["state"]["period"] == "monthly"

    resp = await api.post("/v1/billing/plan", json={"plan_code": "enterprise", "period": "monthly"})
    assert resp.status_code == 422
    assert resp.json()["code"] == "downgrade_restricted"
    assert sdk.count("purchase_package") == 0


@pytest.mark.asyncio
async def test_web_purchaser_rejected(api, sdk):
    await _login(api, is_mobile_user=False)
    resp = await api.post("/v1/billing/restore")
    assert resp.status_code == 403
    assert resp.json()["code"] == "platform_restricted"
    assert sdk.calls == []


@pytest.mark.asyncio
async def test_restore_nothing_found(api):
    await _login(api)
    resp = await api.post("/v1/billing/restore")
    assert resp.status_code == 200
    assert resp.json()["status"] == "nothing_to_restore"


@pytest.mark.asyncio
async def test_refresh_failure_is_502(api, backend_server):
    await _login(api)
    backend_server.user_plan_failures = 2
    resp = await api.post("/v1/billing/subscription/refresh")
    assert resp.status_code == 502
    assert resp.json() == {"code": "backend_sync_failure", "detail": "Service unavailable"}


@pytest.mark.asyncio
async def test_promo_verification(api):
    resp = await api.post("/v1/billing/promo/verify", json={"code": "SPRING"})
    assert resp.json()["duration_label"] == "3 months"
    resp = await api.post("/v1/billing/promo/verify", json={"code": "NOPE"})
    assert resp.json() == {
        "valid": False,
        "code": None,
        "type": None,
        "duration": None,
        "duration_label": None,
        "iap_required": False,
    }


@pytest.mark.asyncio
async def test_logout_clears_session(api, sdk):
    await _login(api)
    resp = await api.delete("/v1/billing/session")
    assert resp.status_code == 204
    assert sdk.count("log_out") == 1
    assert (await api.get("/v1/billing/subscription")).status_code == 401
