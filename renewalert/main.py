import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from renewalert.api.v1.router import api_router
from renewalert.core.config import get_settings, Settings
from renewalert.core.deps import _ensure_redis_pool
from renewalert.core.errors import EntitlementError, ExternalFailure, GENERIC_FAILURE_MESSAGE
from renewalert.core.state import SubscriptionStateHolder
from renewalert.services.backend import SubscriptionBackend, TokenProvider
from renewalert.services.cache import PlanCatalogCache, SubscriptionCache
from renewalert.services.reconciler import EntitlementReconciler
from renewalert.services.store import StoreSDK, StorePurchaseManager

logger = logging.getLogger(__name__)


class PlanHeaderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        reconciler = getattr(request.app.state, "reconciler", None)
        state = reconciler.holder.current if reconciler else None
        if state is not None:
            response.headers["X-Plan-Code"] = state.plan_code
            response.headers["X-Plan-Source"] = state.source.value
        return response


async def entitlement_error_handler(request: Request, exc: EntitlementError) -> JSONResponse:
    detail = exc.message
    if isinstance(exc, ExternalFailure):
        detail = exc.reason or GENERIC_FAILURE_MESSAGE
    return JSONResponse({"code": exc.code, "detail": detail}, status_code=exc.status_code)


def build_reconciler(
    settings: Settings,
    store_sdk: StoreSDK,
    redis,
    http_client: httpx.AsyncClient | None = None,
    token_provider: TokenProvider | None = None,
) -> EntitlementReconciler:
    return EntitlementReconciler(
        holder=SubscriptionStateHolder(),
        store=StorePurchaseManager(store_sdk, offerings_timeout=settings.offerings_timeout_seconds),
        backend=SubscriptionBackend(settings, client=http_client, token_provider=token_provider),
        platform=settings.device_platform,
        cache=SubscriptionCache(redis, prefix=settings.cache_prefix),
        plans_cache=PlanCatalogCache(
            redis, prefix=settings.cache_prefix, ttl_seconds=settings.plans_cache_ttl_seconds
        ),
    )


def get_application(
    store_sdk: StoreSDK,
    settings: Settings | None = None,
    redis=None,
    http_client: httpx.AsyncClient | None = None,
    token_provider: TokenProvider | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_redis = redis is None
        owned_client = http_client is None
        redis_client = redis or aioredis.Redis(connection_pool=_ensure_redis_pool(settings.redis_url))
        client = http_client or httpx.AsyncClient(
            base_url=settings.api_base_url, timeout=settings.api_timeout_seconds
        )
        app.state.reconciler = build_reconciler(settings, store_sdk, redis_client, client, token_provider)
        logger.info("Billing bindings ready for platform %s", settings.device_platform)
        try:
            yield
        finally:
            if owned_client:
                await client.aclose()
            if owned_redis:
                await redis_client.aclose()

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    app.add_middleware(PlanHeaderMiddleware)
    app.add_exception_handler(EntitlementError, entitlement_error_handler)
    app.include_router(api_router)
    return app
