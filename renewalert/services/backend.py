import logging
from collections.abc import Awaitable, Callable

import httpx
from pydantic import ValidationError

from renewalert.core.config import Settings
from renewalert.core.errors import BackendSyncFailure
from renewalert.schemas.subscription import (
    Account,
    Plan,
    PlansResponse,
    Platform,
    PromoCode,
    PromoVerifyResponse,
    SubscriptionState,
    UserPlanResponse,
    UserSubscriptionOut,
)
from renewalert.services.catalog import plan_code_from_tier_id

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]


def subscription_state_from(message: UserSubscriptionOut, account: Account) -> SubscriptionState:
    plan_code = message.plan.code if message.plan else plan_code_from_tier_id(message.app_plan_id)
    is_mobile_user = message.is_mobile_user if message.is_mobile_user is not None else account.is_mobile_user
    return SubscriptionState(
        plan_code=plan_code,
        period=message.period,
        trial_ends_at=message.trial_ends_at,
        source=message.source,
        is_mobile_user=is_mobile_user,
        status=message.status,
        will_renew=message.will_renew,
        plan=message.plan,
    )


class SubscriptionBackend:
    """REST client for the backend's subscription-of-record."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        token_provider: TokenProvider | None = None,
    ):
        self.settings = settings
        self.client = client
        self.token_provider = token_provider

    async def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token_provider:
            token = await self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = await self._headers()
        if self.client is not None:
            return await self.client.request(method, path, headers=headers, **kwargs)
        async with httpx.AsyncClient(
            base_url=self.settings.api_base_url, timeout=self.settings.api_timeout_seconds
        ) as client:
            return await client.request(method, path, headers=headers, **kwargs)

    async def _get_json(self, path: str, params: dict, attempts: int = 1) -> dict:
        last_reason = "unknown error"
        for attempt in range(1, attempts + 1):
            try:
                resp = await self._request("GET", path, params=params)
            except httpx.TimeoutException:
                last_reason = "timeout"
            except httpx.HTTPError as exc:
                last_reason = str(exc) or exc.__class__.__name__
            else:
                if resp.status_code == 200:
                    try:
                        return resp.json()
                    except ValueError as exc:
                        raise BackendSyncFailure(f"Malformed response from {path}") from exc
                last_reason = _error_message(resp)
                if resp.status_code < 500:
                    logger.warning("GET %s rejected with %s: %s", path, resp.status_code, last_reason)
                    raise BackendSyncFailure(last_reason)
            logger.warning("GET %s failed (attempt %d/%d): %s", path, attempt, attempts, last_reason)
        raise BackendSyncFailure(last_reason)

    async def fetch_user_plan(self, account: Account, platform: Platform | str) -> SubscriptionState:
        platform = Platform(platform).value
        data = await self._get_json(
            "/user/plan",
            params={"platform": platform, "id": account.user_id},
            attempts=self.settings.backend_attempts,
        )
        try:
            payload = UserPlanResponse.model_validate(data)
        except ValidationError as exc:
            logger.warning("Malformed user plan response: %s", exc)
            raise BackendSyncFailure("Malformed user plan response") from exc
        if not payload.status or not isinstance(payload.message, UserSubscriptionOut):
            raise BackendSyncFailure("Failed to fetch user plan")
        return subscription_state_from(payload.message, account)

    async def fetch_plans(self, platform: Platform | str) -> list[Plan]:
        platform = Platform(platform).value
        data = await self._get_json(
            "/app/plans", params={"platform": platform}, attempts=self.settings.backend_attempts
        )
        try:
            payload = PlansResponse.model_validate(data)
        except ValidationError as exc:
            logger.warning("Malformed plans response: %s", exc)
            raise BackendSyncFailure("Malformed plans response") from exc
        if not payload.status:
            raise BackendSyncFailure("Failed to fetch plans")
        return payload.data

    async def verify_promo(self, code: str) -> PromoCode | None:
        try:
            resp = await self._request("POST", "/promo/verify", json={"code": code})
        except httpx.TimeoutException as exc:
            raise BackendSyncFailure("timeout") from exc
        except httpx.HTTPError as exc:
            raise BackendSyncFailure(str(exc) or exc.__class__.__name__) from exc
        if resp.status_code != 200:
            raise BackendSyncFailure(_error_message(resp))
        try:
            payload = PromoVerifyResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise BackendSyncFailure("Malformed promo response") from exc
        if not payload.valid:
            return None
        return payload.data


def _error_message(resp: httpx.Response) -> str:
    try:
        message = resp.json().get("message")
    except (ValueError, AttributeError):
        message = None
    if isinstance(message, str) and message:
        return message
    if resp.status_code == 401:
        return "Unauthorized. Please log in again."
    if resp.status_code == 404:
        return "Not found."
    return f"HTTP {resp.status_code}"
