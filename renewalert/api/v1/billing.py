import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, status

from renewalert.core.errors import BackendSyncFailure
from renewalert.schemas.billing import (
    PlanChangeIn,
    PlanOut,
    PlanProductOut,
    PromoOut,
    PromoVerifyIn,
    PurchaseResultOut,
    SessionIn,
    SubscriptionOut,
)
from renewalert.schemas.store import PurchaseResult
from renewalert.schemas.subscription import Account, BillingPeriod, Plan
from renewalert.core.deps import get_reconciler
from renewalert.services.access import can_use_store, compute_trial_remaining, format_iso_duration
from renewalert.services.catalog import (
    format_price,
    get_product_for,
    gradient_for_tier,
    is_popular,
    plan_description,
    plan_features,
    sort_plans_by_tier,
    trial_badge,
)
from renewalert.services.reconciler import EntitlementReconciler, describe_result

router = APIRouter()


def _subscription_out(reconciler: EntitlementReconciler) -> SubscriptionOut:
    state = reconciler.holder.current
    return SubscriptionOut(
        state=state,
        pending=reconciler.holder.pending,
        phase=reconciler.phase.value,
        trial_days_remaining=compute_trial_remaining(state, dt.datetime.now(dt.timezone.utc)),
        can_use_store=can_use_store(state),
    )


def _product_out(plan: Plan, period: BillingPeriod, reconciler: EntitlementReconciler) -> PlanProductOut | None:
    product = get_product_for(plan, period, reconciler.platform)
    if product is None:
        return None
    return PlanProductOut(
        **product.model_dump(),
        display_price=format_price(product.price, product.currency),
        trial_badge=trial_badge(product),
    )


def _result_out(result: PurchaseResult) -> PurchaseResultOut:
    return PurchaseResultOut(**result.model_dump(), message=describe_result(result))


def _require_session(reconciler: EntitlementReconciler) -> None:
    if reconciler.account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No active session")


@router.post("/session", response_model=SubscriptionOut)
async def start_session(payload: SessionIn, reconciler: EntitlementReconciler = Depends(get_reconciler)):
    await reconciler.start(Account(user_id=payload.user_id, is_mobile_user=payload.is_mobile_user))
    try:
        await reconciler.refresh()
    except BackendSyncFailure:
        # Cached snapshot (if any) stays on screen; the client retries via /subscription/refresh.
        if reconciler.holder.current is None:
            raise
    return _subscription_out(reconciler)


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
async def end_session(reconciler: EntitlementReconciler = Depends(get_reconciler)):
    await reconciler.log_out()


@router.get("/subscription", response_model=SubscriptionOut)
async def get_subscription(reconciler: EntitlementReconciler = Depends(get_reconciler)):
    _require_session(reconciler)
    return _subscription_out(reconciler)


@router.post("/subscription/refresh", response_model=SubscriptionOut)
async def refresh_subscription(reconciler: EntitlementReconciler = Depends(get_reconciler)):
    _require_session(reconciler)
    await reconciler.refresh()
    return _subscription_out(reconciler)


@router.get("/plans", response_model=list[PlanOut])
async def list_plans(reconciler: EntitlementReconciler = Depends(get_reconciler)):
    plans = await reconciler.load_plans()
    state = reconciler.holder.current
    out = []
    for plan in sort_plans_by_tier(plans):
        included, not_included = plan_features(plan)
        out.append(
            PlanOut(
                code=plan.code,
                name=plan.name,
                tier_rank=plan.tier_rank,
                description=plan_description(plan.code),
                features=included,
                features_not_included=not_included,
                popular=is_popular(plan),
                gradient=gradient_for_tier(plan.tier_rank),
                is_current=bool(state and state.plan_code == plan.code),
                monthly=_product_out(plan, BillingPeriod.monthly, reconciler),
                yearly=_product_out(plan, BillingPeriod.yearly, reconciler),
            )
        )
    return out


@router.post("/plan", response_model=PurchaseResultOut)
async def select_plan(payload: PlanChangeIn, reconciler: EntitlementReconciler = Depends(get_reconciler)):
    _require_session(reconciler)
    result = await reconciler.select_plan(payload.plan_code, payload.period)
    return _result_out(result)


@router.post("/restore", response_model=PurchaseResultOut)
async def restore_purchases(reconciler: EntitlementReconciler = Depends(get_reconciler)):
    _require_session(reconciler)
    result = await reconciler.restore_purchases()
    return _result_out(result)


@router.post("/promo/verify", response_model=PromoOut)
async def verify_promo(payload: PromoVerifyIn, reconciler: EntitlementReconciler = Depends(get_reconciler)):
    promo = await reconciler.backend.verify_promo(payload.code)
    if promo is None:
        return PromoOut(valid=False)
    return PromoOut(
        valid=True,
        code=promo.code,
        type=promo.type,
        duration=promo.duration,
        duration_label=format_iso_duration(promo.duration),
        iap_required=promo.iap_required,
    )
