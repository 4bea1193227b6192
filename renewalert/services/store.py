"""Adapter over the device-native purchase SDK.

This is the only module that talks to the store. Every SDK call is wrapped so
errors come back as a failed :class:`StoreOutcome` instead of an exception.
"""
import asyncio
import logging
from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from renewalert.schemas.store import StoreOutcome, StorePackage

logger = logging.getLogger(__name__)


class PurchaseCancelledError(Exception):
    """Raised by SDK bindings when the user dismisses the purchase sheet."""

    user_cancelled = True


@runtime_checkable
class StoreSDK(Protocol):
    async def identify(self, user_id: str) -> Any: ...

    async def get_offerings(self) -> Iterable[StorePackage]: ...

    async def purchase_package(self, package: StorePackage) -> Iterable[str]: ...

    async def restore_purchases(self) -> Iterable[str]: ...

    async def log_out(self) -> Any: ...


def _reason(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _is_user_cancelled(exc: BaseException) -> bool:
    return bool(getattr(exc, "user_cancelled", False) or getattr(exc, "userCancelled", False))


class StorePurchaseManager:
    def __init__(self, sdk: StoreSDK, offerings_timeout: float | None = None):
        self.sdk = sdk
        self.offerings_timeout = offerings_timeout

    async def identify(self, user_id: str) -> StoreOutcome:
        try:
            await self.sdk.identify(user_id)
        except Exception as exc:
            logger.warning("Store identify failed for user %s: %s", user_id, exc)
            return StoreOutcome.failed(_reason(exc))
        return StoreOutcome.ok()

    async def list_offerings(self, timeout: float | None = None) -> StoreOutcome:
        timeout = timeout if timeout is not None else self.offerings_timeout
        try:
            packages = await asyncio.wait_for(self.sdk.get_offerings(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Store offerings timed out after %ss", timeout)
            return StoreOutcome.failed("timeout")
        except Exception as exc:
            logger.warning("Store offerings failed: %s", exc)
            return StoreOutcome.failed(_reason(exc))
        return StoreOutcome.ok(packages=list(packages or []))

    async def purchase(self, store_product_id: str) -> StoreOutcome:
        offerings = await self.list_offerings()
        if not offerings.succeeded:
            return offerings
        package = next((p for p in offerings.packages if p.store_product_id == store_product_id), None)
        if package is None:
            logger.warning("Store does not offer product %s", store_product_id)
            return StoreOutcome.failed("Product not available in the store")

        try:
            entitlements = await self.sdk.purchase_package(package)
        except Exception as exc:
            if _is_user_cancelled(exc):
                logger.info("Purchase of %s cancelled by user", store_product_id)
                return StoreOutcome.cancelled()
            logger.warning("Purchase of %s failed: %s", store_product_id, exc)
            return StoreOutcome.failed(_reason(exc))
        return StoreOutcome.ok(entitlements=entitlements or ())

    async def restore(self) -> StoreOutcome:
        try:
            entitlements = await self.sdk.restore_purchases()
        except Exception as exc:
            logger.warning("Restore purchases failed: %s", exc)
            return StoreOutcome.failed(_reason(exc))
        return StoreOutcome.ok(entitlements=entitlements or ())

    async def log_out(self) -> None:
        try:
            await self.sdk.log_out()
        except Exception as exc:
            logger.warning("Store log out failed: %s", exc)
