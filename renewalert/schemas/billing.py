from pydantic import BaseModel, Field

from renewalert.schemas.store import PurchaseResult
from renewalert.schemas.subscription import (
    BillingPeriod,
    PendingPurchase,
    PlanProduct,
    SubscriptionState,
)


class SessionIn(BaseModel):
    user_id: str = Field(..., max_length=64)
    is_mobile_user: bool = True


class PlanChangeIn(BaseModel):
    plan_code: str = Field(..., max_length=32)
    period: BillingPeriod


class PromoVerifyIn(BaseModel):
    code: str = Field(..., max_length=64)


class SubscriptionOut(BaseModel):
    state: SubscriptionState | None
    pending: PendingPurchase | None = None
    phase: str
    trial_days_remaining: int | None = None
    can_use_store: bool = False


class PlanProductOut(PlanProduct):
    display_price: str
    trial_badge: str | None = None


class PlanOut(BaseModel):
    code: str
    name: str
    tier_rank: int
    description: str
    features: list[str] = Field(default_factory=list)
    features_not_included: list[str] = Field(default_factory=list)
    popular: bool
    gradient: tuple[str, str]
    is_current: bool = False
    monthly: PlanProductOut | None = None
    yearly: PlanProductOut | None = None


class PurchaseResultOut(PurchaseResult):
    message: str | None = None


class PromoOut(BaseModel):
    valid: bool
    code: str | None = None
    type: str | None = None
    duration: str | None = None
    duration_label: str | None = None
    iap_required: bool = False


class ErrorOut(BaseModel):
    code: str
    detail: str
