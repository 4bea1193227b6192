GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."


class EntitlementError(Exception):
    """Base for every outcome the reconciler reports as an error."""

    code = "entitlement_error"
    status_code = 400
    default_message = GENERIC_FAILURE_MESSAGE

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationRejected(EntitlementError):
    """Raised locally, before any store call."""


class PromoLocked(ValidationRejected):
    code = "promo_locked"
    status_code = 403
    default_message = "Your plan was granted through a promotional code and can't be changed here."


class PlatformRestricted(ValidationRejected):
    code = "platform_restricted"
    status_code = 403
    default_message = (
        "You can't make changes to your subscription inside this app, "
        "because you purchased this subscription on another platform."
    )


class AlreadyActive(ValidationRejected):
    code = "already_active"
    status_code = 409
    default_message = "You are already on this plan and period."


class DowngradeRestricted(ValidationRejected):
    code = "downgrade_restricted"
    status_code = 422
    default_message = "Switching from a yearly to a monthly plan isn't available in the app."


class ProductUnavailable(ValidationRejected):
    code = "product_unavailable"
    status_code = 404
    default_message = "Product not available for selected billing cycle."


class Busy(ValidationRejected):
    code = "busy"
    status_code = 409
    default_message = "Another purchase is already in progress."


class ExternalFailure(EntitlementError):
    """Failure reported by the store or the backend; always carries a reason."""

    status_code = 502

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(reason)


class StoreFailure(ExternalFailure):
    code = "store_failure"


class BackendSyncFailure(ExternalFailure):
    code = "backend_sync_failure"
