import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class Platform(str, Enum):
    ios = "ios"
    android = "android"


class BillingPeriod(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


class SubscriptionPeriod(str, Enum):
    monthly = "monthly"
    yearly = "yearly"
    forever = "forever"


class SubscriptionSource(str, Enum):
    store = "store"
    promo = "promo"


class PlanProduct(BaseModel):
    platform: Platform
    period: BillingPeriod
    store_product_id: str | None = None
    price: Decimal = Decimal("0")
    currency: str = "USD"
    trial_days: int = Field(default=0, ge=0)
    is_active: bool = True

    @property
    def purchasable(self) -> bool:
        return bool(self.store_product_id) and self.is_active


class Plan(BaseModel):
    id: int | None = None
    code: str
    name: str = ""
    tier_rank: int
    features: list[str] | None = None
    products: list[PlanProduct] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_product_per_slot(self):
        seen = set()
        for product in self.products:
            slot = (product.platform, product.period)
            if slot in seen:
                raise ValueError(
                    f"plan {self.code!r} has more than one {product.platform.value}/{product.period.value} product"
                )
            seen.add(slot)
        return self


class SubscriptionState(BaseModel):
    plan_code: str
    period: SubscriptionPeriod
    trial_ends_at: dt.datetime | None = None
    source: SubscriptionSource = SubscriptionSource.store
    is_mobile_user: bool = True
    status: str | None = None
    will_renew: bool | None = None
    plan: Plan | None = None

    @field_validator("trial_ends_at")
    @classmethod
    def _aware(cls, value: dt.datetime | None) -> dt.datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value

    @property
    def is_promo(self) -> bool:
        return self.source == SubscriptionSource.promo


class PendingPurchase(BaseModel):
    target_plan_code: str
    target_period: BillingPeriod
    store_product_id: str


class Account(BaseModel):
    user_id: str = Field(..., max_length=64)
    is_mobile_user: bool = True


# Backend wire shapes


class UserSubscriptionOut(BaseModel):
    source: SubscriptionSource = SubscriptionSource.store
    platform: Platform | None = None
    app_plan_id: int | None = None
    period: SubscriptionPeriod
    status: str | None = None
    trial_ends_at: dt.datetime | None = None
    will_renew: bool | None = None
    is_mobile_user: bool | None = None
    plan: Plan | None = None


class UserPlanResponse(BaseModel):
    status: bool
    message: UserSubscriptionOut | str | None = None


class PlansResponse(BaseModel):
    status: bool
    data: list[Plan] = Field(default_factory=list)


class PromoCode(BaseModel):
    code: str
    type: str
    duration: str
    iap_required: bool = False


class PromoVerifyResponse(BaseModel):
    valid: bool
    data: PromoCode | None = None


PurchaseStatus = Literal["settled", "cancelled", "failed", "nothing_to_restore"]
