import datetime as dt
import math
import re

from renewalert.schemas.subscription import SubscriptionState

SECONDS_PER_DAY = 24 * 60 * 60

_ISO_DURATION = re.compile(r"(\d+)([DWMY])")
_DURATION_UNITS = {"D": "day", "W": "week", "M": "month", "Y": "year"}


def compute_trial_remaining(state: SubscriptionState | None, now: dt.datetime) -> int | None:
    """Whole days left in the trial, rounded up; ``None`` once it has lapsed."""
    if state is None or state.trial_ends_at is None:
        return None
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    remaining = (state.trial_ends_at - now).total_seconds() / SECONDS_PER_DAY
    days = math.ceil(remaining)
    if days <= 0:
        return None
    return days


def is_trial_active(state: SubscriptionState | None, now: dt.datetime) -> bool:
    return compute_trial_remaining(state, now) is not None


def can_use_store(state: SubscriptionState | None) -> bool:
    """Purchase and restore UI is only enabled for mobile, non-promo users."""
    if state is None:
        return False
    return not state.is_promo and state.is_mobile_user


def format_iso_duration(duration: str | None) -> str:
    if not duration:
        return "N/A"
    match = _ISO_DURATION.search(re.sub(r"^P", "", duration))
    if not match:
        return duration
    value = int(match.group(1))
    unit = _DURATION_UNITS[match.group(2)]
    return f"1 {unit}" if value == 1 else f"{value} {unit}s"
