from typing import Any, Literal

from pydantic import BaseModel, Field

from renewalert.schemas.subscription import PurchaseStatus, SubscriptionState


class StorePackage(BaseModel):
    """A purchasable item as listed by the device store."""

    identifier: str
    store_product_id: str
    # SDK-native handle passed back to purchase_package()
    native: Any = None


class StoreOutcome(BaseModel):
    kind: Literal["ok", "cancelled", "failed"]
    entitlements: frozenset[str] = frozenset()
    packages: list[StorePackage] = Field(default_factory=list)
    reason: str | None = None

    @classmethod
    def ok(cls, entitlements=(), packages=None) -> "StoreOutcome":
        return cls(kind="ok", entitlements=frozenset(entitlements), packages=packages or [])

    @classmethod
    def cancelled(cls) -> "StoreOutcome":
        return cls(kind="cancelled")

    @classmethod
    def failed(cls, reason: str) -> "StoreOutcome":
        return cls(kind="failed", reason=reason)

    @property
    def succeeded(self) -> bool:
        return self.kind == "ok"


class PurchaseResult(BaseModel):
    operation: Literal["purchase", "restore"] = "purchase"
    status: PurchaseStatus
    error_code: str | None = None
    reason: str | None = None
    # Set when the backend refetch after a settled operation did not go through
    sync_error: str | None = None
    pending_verification: bool = False
    entitlements: frozenset[str] = frozenset()
    state: SubscriptionState | None = None
