import logging
from collections.abc import Callable

from renewalert.schemas.subscription import PendingPurchase, SubscriptionState

logger = logging.getLogger(__name__)

Listener = Callable[["SubscriptionStateHolder"], None]


class SubscriptionStateHolder:
    """Explicitly owned subscription state.

    Only the reconciler writes here; UI bindings read ``current`` and
    ``pending`` or subscribe for change notifications.
    """

    def __init__(self):
        self._current: SubscriptionState | None = None
        self._pending: PendingPurchase | None = None
        self._listeners: list[Listener] = []

    @property
    def current(self) -> SubscriptionState | None:
        return self._current

    @property
    def pending(self) -> PendingPurchase | None:
        return self._pending

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def load(self, state: SubscriptionState | None) -> None:
        # Cold start only: never overrides a state already synced from the backend.
        if self._current is None and state is not None:
            self._current = state
            self._notify()

    def replace(self, state: SubscriptionState) -> None:
        self._current = state
        self._notify()

    def mark_pending(self, pending: PendingPurchase) -> None:
        self._pending = pending
        self._notify()

    def clear_pending(self) -> None:
        if self._pending is not None:
            self._pending = None
            self._notify()

    def clear(self) -> None:
        self._current = None
        self._pending = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Subscription state listener failed")
