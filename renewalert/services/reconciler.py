"""Keeps the cached subscription, the device store and the backend consistent.

Every write to the subscription state goes through :class:`EntitlementReconciler`.
Store operations never decide the final plan: once the store reports success
the backend is refetched and its answer replaces whatever the client had.
"""
import logging
from enum import Enum

from redis.exceptions import RedisError

from renewalert.core.errors import (
    AlreadyActive,
    BackendSyncFailure,
    Busy,
    DowngradeRestricted,
    GENERIC_FAILURE_MESSAGE,
    PlatformRestricted,
    ProductUnavailable,
    PromoLocked,
    StoreFailure,
)
from renewalert.core.state import SubscriptionStateHolder
from renewalert.schemas.store import PurchaseResult, StoreOutcome
from renewalert.schemas.subscription import (
    Account,
    BillingPeriod,
    PendingPurchase,
    Plan,
    Platform,
    SubscriptionPeriod,
    SubscriptionState,
)
from renewalert.services.backend import SubscriptionBackend
from renewalert.services.cache import PlanCatalogCache, SubscriptionCache
from renewalert.services.catalog import get_plan_by_code, get_product_for
from renewalert.services.store import StorePurchaseManager

logger = logging.getLogger(__name__)

SYNC_DELAY_NOTICE = "Changes may take a few moments to reflect."


class Phase(str, Enum):
    idle = "idle"
    purchase_in_flight = "purchase_in_flight"
    settled = "settled"
    cancelled = "cancelled"
    failed = "failed"


class EntitlementReconciler:
    def __init__(
        self,
        holder: SubscriptionStateHolder,
        store: StorePurchaseManager,
        backend: SubscriptionBackend,
        platform: Platform | str,
        cache: SubscriptionCache | None = None,
        plans_cache: PlanCatalogCache | None = None,
    ):
        self.holder = holder
        self.store = store
        self.backend = backend
        self.platform = Platform(platform)
        self.cache = cache
        self.plans_cache = plans_cache
        self._account: Account | None = None
        self._plans: list[Plan] | None = None
        self._phase = Phase.idle
        self._busy = False
        # True once the holder carries the backend's answer for the current account.
        self._synced = False

    @property
    def account(self) -> Account | None:
        return self._account

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def synced(self) -> bool:
        return self._synced

    @property
    def plans(self) -> list[Plan] | None:
        return self._plans

    def _require_account(self) -> Account:
        if self._account is None:
            raise RuntimeError("No signed-in account; call start() first")
        return self._account

    # Lifecycle

    async def start(self, account: Account) -> SubscriptionState | None:
        """Bind the signed-in account and show the cached snapshot, if any.

        The snapshot is for display only; operations resync before validating.
        """
        if self._account is not None and self._account.user_id != account.user_id:
            if self._busy:
                raise Busy()
            self.holder.clear()
        self._account = account
        self._synced = False
        if self.cache is not None:
            try:
                self.holder.load(await self.cache.load(account.user_id))
            except RedisError as exc:
                logger.warning("Subscription cache unavailable at startup: %s", exc)
        return self.holder.current

    async def refresh(self) -> SubscriptionState:
        account = self._require_account()
        state = await self.backend.fetch_user_plan(account, self.platform)
        if self._account is None or self._account.user_id != account.user_id:
            raise BackendSyncFailure("Session changed while refreshing the subscription")
        self.holder.replace(state)
        self._synced = True
        if self.cache is not None:
            try:
                await self.cache.store(account.user_id, state)
            except RedisError as exc:
                logger.warning("Could not write subscription cache for %s: %s", account.user_id, exc)
        return state

    async def load_plans(self, force: bool = False) -> list[Plan]:
        if self._plans is not None and not force:
            return self._plans
        try:
            plans = await self.backend.fetch_plans(self.platform)
        except BackendSyncFailure:
            cached = await self._cached_plans()
            if cached is None:
                raise
            logger.info("Using cached plan catalog for %s", self.platform.value)
            plans = cached
        else:
            if self.plans_cache is not None:
                try:
                    await self.plans_cache.store(self.platform, plans)
                except RedisError as exc:
                    logger.warning("Could not write plan catalog cache: %s", exc)
        self._plans = plans
        return plans

    async def _cached_plans(self) -> list[Plan] | None:
        if self.plans_cache is None:
            return None
        try:
            return await self.plans_cache.load(self.platform)
        except RedisError as exc:
            logger.warning("Plan catalog cache unavailable: %s", exc)
            return None

    async def log_out(self) -> None:
        if self._busy:
            raise Busy()
        self._synced = False
        await self.store.log_out()
        if self._account is not None and self.cache is not None:
            try:
                await self.cache.clear(self._account.user_id)
            except RedisError as exc:
                logger.warning("Could not clear subscription cache: %s", exc)
        self.holder.clear()
        self._account = None

    # Operations

    def _acquire(self) -> None:
        # Taken before the first await so interleaved callers see it.
        if self._busy:
            raise Busy()
        self._busy = True

    def _release(self) -> None:
        self.holder.clear_pending()
        self._phase = Phase.idle
        self._busy = False

    async def select_plan(self, target_plan_code: str, target_period: BillingPeriod | str) -> PurchaseResult:
        try:
            target_period = BillingPeriod(target_period)
        except ValueError:
            raise ProductUnavailable() from None
        account = self._require_account()
        self._acquire()
        try:
            state = await self._authoritative_state()
            self._validate_transition(state, target_plan_code, target_period)

            plan = await self._resolve_plan(state, target_plan_code)
            product = get_product_for(plan, target_period, self.platform) if plan else None
            if product is None:
                raise ProductUnavailable()

            self._phase = Phase.purchase_in_flight
            self.holder.mark_pending(
                PendingPurchase(
                    target_plan_code=target_plan_code,
                    target_period=target_period,
                    store_product_id=product.store_product_id,
                )
            )
            # Attribution only; the backend refetch is what decides the plan.
            await self.store.identify(account.user_id)
            outcome = await self.store.purchase(product.store_product_id)
            return await self._conclude("purchase", outcome)
        finally:
            self._release()

    async def restore_purchases(self) -> PurchaseResult:
        state = self.holder.current if self._synced else None
        if state is not None and state.is_promo:
            return PurchaseResult(operation="restore", status="nothing_to_restore")
        self._require_account()
        self._acquire()
        try:
            if state is None:
                state = await self._authoritative_state()
                if state.is_promo:
                    return PurchaseResult(operation="restore", status="nothing_to_restore")
            if not state.is_mobile_user:
                raise PlatformRestricted()

            self._phase = Phase.purchase_in_flight
            outcome = await self.store.restore()
            if outcome.succeeded and not outcome.entitlements:
                return PurchaseResult(operation="restore", status="nothing_to_restore")
            return await self._conclude("restore", outcome)
        finally:
            self._release()

    async def _authoritative_state(self) -> SubscriptionState:
        # Cache-loaded snapshots never gate a store operation.
        if self._synced and self.holder.current is not None:
            return self.holder.current
        return await self.refresh()

    def _validate_transition(self, state: SubscriptionState, plan_code: str, period: BillingPeriod) -> None:
        if state.is_promo:
            raise PromoLocked()
        if not state.is_mobile_user:
            raise PlatformRestricted()
        if state.plan_code == plan_code and state.period == period:
            raise AlreadyActive()
        # Period-only rule; tier rank does not matter here.
        if state.period == SubscriptionPeriod.yearly and period == BillingPeriod.monthly:
            raise DowngradeRestricted()

    async def _resolve_plan(self, state: SubscriptionState, plan_code: str) -> Plan | None:
        plans = await self.load_plans()
        plan = get_plan_by_code(plans, plan_code)
        if plan is None and state.plan is not None and state.plan.code == plan_code:
            plan = state.plan
        return plan

    async def _conclude(self, operation: str, outcome: StoreOutcome) -> PurchaseResult:
        if outcome.kind == "cancelled":
            self._phase = Phase.cancelled
            return PurchaseResult(operation=operation, status="cancelled")
        if outcome.kind == "failed":
            self._phase = Phase.failed
            logger.warning("Store %s failed: %s", operation, outcome.reason)
            return PurchaseResult(
                operation=operation,
                status="failed",
                error_code=StoreFailure.code,
                reason=outcome.reason,
            )

        self._phase = Phase.settled
        result = PurchaseResult(
            operation=operation,
            status="settled",
            entitlements=outcome.entitlements,
            pending_verification=not outcome.entitlements,
        )
        try:
            state = await self.refresh()
        except BackendSyncFailure as exc:
            logger.warning("Backend sync after %s failed: %s", operation, exc.reason)
            return result.model_copy(update={"error_code": exc.code, "sync_error": exc.reason})
        return result.model_copy(update={"state": state})


def describe_result(result: PurchaseResult) -> str | None:
    """Message for the UI, or ``None`` when nothing should be shown."""
    if result.status == "cancelled":
        return None
    if result.status == "nothing_to_restore":
        return "No previous purchases were found to restore."
    if result.status == "failed":
        return result.reason or GENERIC_FAILURE_MESSAGE
    if result.operation == "restore":
        return f"Your purchases have been restored. {SYNC_DELAY_NOTICE}"
    return f"Your plan has been updated! {SYNC_DELAY_NOTICE}"
