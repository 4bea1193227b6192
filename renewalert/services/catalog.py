from collections.abc import Iterable
from decimal import Decimal

from renewalert.schemas.subscription import BillingPeriod, Plan, PlanProduct, Platform

LOWEST_PLAN_CODE = "home_family"
POPULAR_TIER_RANK = 2

TIER_PLAN_CODES = {
    1: "home_family",
    2: "standard",
    3: "enterprise",
}

TIER_GRADIENTS = {
    1: ("#3B82F6", "#2563EB"),
    2: ("#9A1B2B", "#6B1420"),
    3: ("#7C3AED", "#6D28D9"),
}
DEFAULT_GRADIENT = ("#6B7280", "#4B5563")

PLAN_DESCRIPTIONS = {
    "home_family": "Best for personal and household use",
    "standard": "Best for individual professionals and business owners",
    "enterprise": "Best for organizations and teams",
}

# (included, not included)
PLAN_FEATURES = {
    "home_family": (
        [
            "Personal and household reminder management",
            "Track home-related subscriptions (streaming, utilities, memberships)",
            "Bill and renewal reminders",
            "Simple, family-friendly usage",
            "Individual reminder control",
        ],
        [],
    ),
    "standard": (
        [
            "Supports all industries",
            "Full core reminder & tracking access",
            "Unlimited reminders",
            "Track business deadlines",
            "Custom notification schedules",
        ],
        [],
    ),
    "enterprise": (
        [
            "All core app features",
            "Across all industries",
            "Centralized reminder management",
        ],
        [],
    ),
}

CURRENCY_SYMBOLS = {"USD": "$"}


def get_product_for(plan: Plan, period: BillingPeriod | str, platform: Platform | str) -> PlanProduct | None:
    """Purchasable product of ``plan`` for the billing period on this platform.

    ``None`` means the plan can't be bought here; it is not a fault.
    """
    for product in plan.products:
        if product.period == period and product.platform == platform and product.purchasable:
            return product
    return None


def products_for_platform(plan: Plan, platform: Platform | str) -> Plan:
    return plan.model_copy(update={"products": [p for p in plan.products if p.platform == platform]})


def plan_code_from_tier_id(tier_id: int | None) -> str:
    # Unknown ids fall back to the lowest tier.
    return TIER_PLAN_CODES.get(tier_id, LOWEST_PLAN_CODE)


def gradient_for_tier(tier_rank: int) -> tuple[str, str]:
    return TIER_GRADIENTS.get(tier_rank, DEFAULT_GRADIENT)


def is_popular(plan: Plan) -> bool:
    return plan.tier_rank == POPULAR_TIER_RANK


def sort_plans_by_tier(plans: Iterable[Plan]) -> list[Plan]:
    return sorted(plans, key=lambda p: p.tier_rank)


def get_plan_by_code(plans: Iterable[Plan], code: str) -> Plan | None:
    return next((p for p in plans if p.code == code), None)


def get_plan_by_tier(plans: Iterable[Plan], tier_rank: int) -> Plan | None:
    return next((p for p in plans if p.tier_rank == tier_rank), None)


def plan_description(code: str) -> str:
    return PLAN_DESCRIPTIONS.get(code, "")


def plan_features(plan: Plan) -> tuple[list[str], list[str]]:
    """``(included, not_included)`` for the plan card.

    Features sent by the backend take precedence over the built-in lists.
    """
    if plan.features is not None:
        return list(plan.features), []
    included, not_included = PLAN_FEATURES.get(plan.code, ([], []))
    return list(included), list(not_included)


def format_price(price: Decimal | str, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    return f"{symbol}{price}"


def trial_badge(product: PlanProduct | None) -> str | None:
    if product is None or product.trial_days <= 0:
        return None
    return f"{product.trial_days}-day free trial"
