from redis.asyncio import ConnectionPool
from fastapi import Request

from renewalert.services.reconciler import EntitlementReconciler

_redis_pools: dict[str, ConnectionPool] = {}


def _ensure_redis_pool(url: str) -> ConnectionPool:
    pool = _redis_pools.get(url)
    if pool is None:
        pool = ConnectionPool.from_url(
            url,
            max_connections=8,
            decode_responses=True,
            socket_timeout=1.0,
            socket_connect_timeout=1.0,
            health_check_interval=30,
        )
        _redis_pools[url] = pool
    return pool


async def get_reconciler(request: Request) -> EntitlementReconciler:
    return request.app.state.reconciler
