import asyncio
import json
import logging
from typing import Optional, Tuple

import redis

from recruitboard.core.metrics import SNAPSHOT_MIRROR_FAILURES_TOTAL
from recruitboard.models import LeaderboardEntry, Snapshot
from recruitboard.services.gateway import SubscriptionGateway, SubscriptionHandle

logger = logging.getLogger(__name__)


class RedisSnapshotMirror:
    """Mirror published snapshots into Redis so other processes can read them.

    Two keys per leaderboard: a sorted set of participant_id -> total_score
    and a JSON blob holding the ranked entries and their generation.
    """

    def __init__(self, redis_url: str, key: str, ttl_seconds: int, client=None):
        self.redis_url = redis_url
        self.redis_client = client
        self.scores_key = key
        self.entries_key = f"{key}:entries"
        self.ttl_seconds = ttl_seconds
        self._handle: Optional[SubscriptionHandle] = None
        self._queued: Optional[Snapshot] = None
        self._flusher: Optional[asyncio.Task] = None

    def connect(self):
        """Connect to Redis with proper configuration"""
        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True
            )
            self.redis_client.ping()
            logger.info("Connected to Redis snapshot mirror")
        except Exception as e:
            logger.critical(f"Failed to connect to Redis: {str(e)}")
            raise

    def attach(self, gateway: SubscriptionGateway) -> SubscriptionHandle:
        if not self.redis_client:
            self.connect()
        self._handle = gateway.subscribe(self.write)
        return self._handle

    def detach(self, gateway: SubscriptionGateway) -> None:
        if self._handle is not None:
            gateway.unsubscribe(self._handle)
            self._handle = None

    def write(self, snapshot: Snapshot) -> None:
        """Gateway handler: queue ``snapshot`` for a worker-thread write.

        Must be called on the event loop. Only the newest queued snapshot is
        written, one write at a time, so Redis never goes back a generation.
        """
        if snapshot.generation == 0:
            # Nothing has been computed yet; keep whatever an earlier process left
            return
        self._queued = snapshot
        if self._flusher is None or self._flusher.done():
            self._flusher = asyncio.get_running_loop().create_task(self._flush())

    async def _flush(self) -> None:
        while self._queued is not None:
            snapshot, self._queued = self._queued, None
            await asyncio.to_thread(self.write_now, snapshot)

    async def drain(self) -> None:
        """Wait until every queued snapshot has been written."""
        if self._flusher is not None:
            await self._flusher

    def write_now(self, snapshot: Snapshot) -> None:
        """Replace the mirrored leaderboard with ``snapshot``, blocking on Redis. Failures are logged, not raised."""
        if snapshot.generation == 0:
            return
        try:
            payload = json.dumps(
                {
                    "generation": snapshot.generation,
                    "computed_at": snapshot.computed_at.isoformat(),
                    "entries": [e.model_dump(mode="json") for e in snapshot.entries],
                }
            )
            pipe = self.redis_client.pipeline()
            pipe.delete(self.scores_key)
            if snapshot.entries:
                pipe.zadd(self.scores_key, {e.participant_id: float(e.total_score) for e in snapshot.entries})
                pipe.expire(self.scores_key, self.ttl_seconds)
            pipe.set(self.entries_key, payload, ex=self.ttl_seconds)
            pipe.execute()
            logger.info(
                f"Mirrored leaderboard generation {snapshot.generation} to Redis",
                extra={"generation": snapshot.generation},
            )
        except Exception as e:
            SNAPSHOT_MIRROR_FAILURES_TOTAL.inc()
            logger.error(
                f"Failed to mirror leaderboard to Redis: {str(e)}",
                extra={"generation": snapshot.generation},
            )

    def read(self) -> Tuple[LeaderboardEntry, ...]:
        """Entries last mirrored by any process; empty if none or Redis is unreachable."""
        if not self.redis_client:
            self.connect()
        try:
            raw = self.redis_client.get(self.entries_key)
            if not raw:
                return ()
            data = json.loads(raw)
            return tuple(LeaderboardEntry.model_validate(e) for e in data.get("entries", []))
        except Exception as e:
            logger.error(f"Failed to read mirrored leaderboard: {str(e)}")
            return ()

    def ping(self) -> bool:
        try:
            if not self.redis_client:
                self.connect()
            return bool(self.redis_client.ping())
        except Exception as e:
            logger.debug("redis_ping_failed", extra={"error": str(e)})
            return False
