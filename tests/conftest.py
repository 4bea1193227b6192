import asyncio
import datetime as dt
import json

import httpx
import pytest
from fakeredis import FakeAsyncRedis

from renewalert.core.config import Settings
from renewalert.core.state import SubscriptionStateHolder
from renewalert.schemas.store import StorePackage
from renewalert.schemas.subscription import Account
from renewalert.services.backend import SubscriptionBackend
from renewalert.services.cache import PlanCatalogCache, SubscriptionCache
from renewalert.services.reconciler import EntitlementReconciler
from renewalert.services.store import StorePurchaseManager

API_BASE = "https://renewalert.test/api"


def _products(slug: str, monthly: str, yearly: str, trial_days: int = 30) -> list[dict]:
    out = []
    for platform in ("ios", "android"):
        for period, price in (("monthly", monthly), ("yearly", yearly)):
            out.append(
                {
                    "platform": platform,
                    "period": period,
                    "store_product_id": f"ra.{slug}.{period}.{platform}",
                    "price": price,
                    "currency": "USD",
                    "trial_days": trial_days,
                    "is_active": True,
                }
            )
    return out


PLANS = [
    {"id": 1, "code": "home_family", "name": "Home & Family", "tier_rank": 1, "features": None,
     "products": _products("home", "4.99", "49.99")},
    {"id": 2, "code": "standard", "name": "Standard", "tier_rank": 2, "features": None,
     "products": _products("standard", "9.99", "99.99")},
    {"id": 3, "code": "enterprise", "name": "Enterprise", "tier_rank": 3, "features": None,
     "products": _products("enterprise", "29.99", "299.99", trial_days=0)},
]


def plan_by_code(code: str) -> dict:
    return next(p for p in PLANS if p["code"] == code)


def user_plan_message(
    code: str = "standard",
    period: str = "monthly",
    source: str = "store",
    trial_ends_at: dt.datetime | None = None,
    is_mobile_user: bool | None = None,
) -> dict:
    plan = plan_by_code(code)
    message = {
        "id": 10,
        "user_id": 42,
        "source": source,
        "platform": "ios",
        "app_plan_id": plan["id"],
        "period": period,
        "status": "active",
        "trial_ends_at": trial_ends_at.isoformat() if trial_ends_at else None,
        "will_renew": True,
        "plan": plan,
    }
    if is_mobile_user is not None:
        message["is_mobile_user"] = is_mobile_user
    return message


class FakeBackendServer:
    """Scriptable stand-in for the subscription backend, mounted on httpx.MockTransport."""

    def __init__(self):
        self.user_plan = user_plan_message()
        self.plans = PLANS
        self.promos = {"SPRING": {"code": "SPRING", "type": "full_access", "duration": "P3M", "iap_required": False}}
        self.user_plan_failures = 0
        self.plans_failures = 0
        self.requests: list[httpx.Request] = []

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith(path))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/user/plan"):
            if self.user_plan_failures:
                self.user_plan_failures -= 1
                return httpx.Response(503, json={"message": "Service unavailable"})
            return httpx.Response(200, json={"status": True, "message": self.user_plan})
        if path.endswith("/app/plans"):
            if self.plans_failures:
                self.plans_failures -= 1
                return httpx.Response(503, json={"message": "Service unavailable"})
            return httpx.Response(200, json={"status": True, "data": self.plans})
        if path.endswith("/promo/verify"):
            code = json.loads(request.content)["code"]
            promo = self.promos.get(code)
            if promo is None:
                return httpx.Response(200, json={"valid": False, "data": None})
            return httpx.Response(200, json={"valid": True, "data": promo})
        return httpx.Response(404, json={"message": "Not found"})


class FakeStoreSDK:
    """Records every call made against the device store."""

    def __init__(self):
        self.calls: list[tuple[str, str | None]] = []
        self.packages = [
            StorePackage(identifier=f"$rc_{p['store_product_id']}", store_product_id=p["store_product_id"])
            for plan in PLANS
            for p in plan["products"]
            if p["platform"] == "ios"
        ]
        self.purchase_entitlements = {"premium"}
        self.restore_entitlements: set[str] = set()
        self.identify_error: Exception | None = None
        self.offerings_error: Exception | None = None
        self.purchase_error: Exception | None = None
        self.restore_error: Exception | None = None
        self.log_out_error: Exception | None = None
        self.offerings_delay = 0.0
        self.purchase_gate: asyncio.Event | None = None

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def identify(self, user_id):
        self.calls.append(("identify", user_id))
        if self.identify_error:
            raise self.identify_error

    async def get_offerings(self):
        self.calls.append(("get_offerings", None))
        if self.offerings_delay:
            await asyncio.sleep(self.offerings_delay)
        if self.offerings_error:
            raise self.offerings_error
        return list(self.packages)

    async def purchase_package(self, package):
        self.calls.append(("purchase_package", package.store_product_id))
        if self.purchase_gate is not None:
            await self.purchase_gate.wait()
        if self.purchase_error:
            raise self.purchase_error
        return set(self.purchase_entitlements)

    async def restore_purchases(self):
        self.calls.append(("restore_purchases", None))
        if self.restore_error:
            raise self.restore_error
        return set(self.restore_entitlements)

    async def log_out(self):
        self.calls.append(("log_out", None))
        if self.log_out_error:
            raise self.log_out_error


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        api_base_url=API_BASE,
        api_timeout_seconds=2.0,
        backend_attempts=2,
        device_platform="ios",
        offerings_timeout_seconds=1.0,
        redis_url="redis://localhost:6379/0",
        cache_prefix="test",
    )


@pytest.fixture()
async def redis():
    client = FakeAsyncRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest.fixture()
def backend_server() -> FakeBackendServer:
    return FakeBackendServer()


@pytest.fixture()
async def http_client(backend_server):
    client = httpx.AsyncClient(base_url=API_BASE, transport=httpx.MockTransport(backend_server.handler))
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture()
def backend(settings, http_client) -> SubscriptionBackend:
    return SubscriptionBackend(settings, client=http_client)


@pytest.fixture()
def sdk() -> FakeStoreSDK:
    return FakeStoreSDK()


@pytest.fixture()
def account() -> Account:
    return Account(user_id="42", is_mobile_user=True)


@pytest.fixture()
def reconciler(settings, sdk, backend, redis) -> EntitlementReconciler:
    return EntitlementReconciler(
        holder=SubscriptionStateHolder(),
        store=StorePurchaseManager(sdk, offerings_timeout=settings.offerings_timeout_seconds),
        backend=backend,
        platform=settings.device_platform,
        cache=SubscriptionCache(redis, prefix=settings.cache_prefix),
        plans_cache=PlanCatalogCache(redis, prefix=settings.cache_prefix),
    )


@pytest.fixture()
async def synced(reconciler, account):
    """Reconciler with a signed-in account and one backend sync done."""
    await reconciler.start(account)
    await reconciler.refresh()
    return reconciler
