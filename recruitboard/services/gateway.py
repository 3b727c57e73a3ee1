import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict

from recruitboard.core.metrics import ACTIVE_SUBSCRIBERS
from recruitboard.models import EMPTY_SNAPSHOT, Snapshot

logger = logging.getLogger(__name__)

SnapshotHandler = Callable[[Snapshot], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    id: int


@dataclass
class _Subscriber:
    handler: SnapshotHandler
    last_generation: int = -1


class SubscriptionGateway:
    """Fans published leaderboard snapshots out to subscribed handlers.

    Handlers run synchronously on the publishing task. A subscriber never
    receives a snapshot older than one it has already seen, and a handler
    that raises only loses its own delivery.
    """

    def __init__(self):
        self._subscribers: Dict[int, _Subscriber] = {}
        self._ids = itertools.count(1)
        self._latest: Snapshot = EMPTY_SNAPSHOT

    @property
    def latest(self) -> Snapshot:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, handler: SnapshotHandler) -> SubscriptionHandle:
        """Register ``handler`` and call it right away with the latest snapshot."""
        handle = SubscriptionHandle(next(self._ids))
        self._subscribers[handle.id] = _Subscriber(handler)
        ACTIVE_SUBSCRIBERS.set(len(self._subscribers))
        logger.debug("leaderboard_subscribed", extra={"subscription_id": handle.id})
        self._deliver(handle.id, self._latest)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Drop a subscription. Unknown or already removed handles are ignored."""
        if self._subscribers.pop(handle.id, None) is not None:
            ACTIVE_SUBSCRIBERS.set(len(self._subscribers))
            logger.debug("leaderboard_unsubscribed", extra={"subscription_id": handle.id})

    def publish(self, snapshot: Snapshot) -> None:
        if snapshot.generation < self._latest.generation:
            logger.debug(
                "older_snapshot_not_published",
                extra={"generation": snapshot.generation, "latest_generation": self._latest.generation},
            )
            return
        self._latest = snapshot
        # Snapshot the ids; handlers may subscribe or unsubscribe while we deliver
        for sub_id in list(self._subscribers):
            self._deliver(sub_id, snapshot)

    def close(self) -> None:
        self._subscribers.clear()
        ACTIVE_SUBSCRIBERS.set(0)

    def _deliver(self, sub_id: int, snapshot: Snapshot) -> None:
        subscriber = self._subscribers.get(sub_id)
        if subscriber is None or snapshot.generation < subscriber.last_generation:
            return
        subscriber.last_generation = snapshot.generation
        try:
            subscriber.handler(snapshot)
        except Exception:
            logger.exception(
                "leaderboard_subscriber_failed",
                extra={"subscription_id": sub_id, "generation": snapshot.generation},
            )
