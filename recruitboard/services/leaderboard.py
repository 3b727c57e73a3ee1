"""
Leaderboard projection.

The projector owns the current leaderboard snapshot and keeps it consistent
with the Submission Store. Every change notification triggers a full
recompute (fetch, aggregate, rank). At most one recompute runs at a time;
notifications that arrive meanwhile collapse into a single follow-up run.
Each recompute is tagged with a generation so a late result can never
replace a newer one.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from recruitboard.core.errors import StoreUnavailableError
from recruitboard.core.metrics import (
    LEADERBOARD_SIZE,
    NOTIFICATIONS_COALESCED_TOTAL,
    NOTIFICATIONS_TOTAL,
    RECOMPUTATIONS_TOTAL,
    RECOMPUTE_DURATION_SECONDS,
    SNAPSHOTS_PUBLISHED_TOTAL,
    STORE_FETCH_FAILURES_TOTAL,
    DurationTimer,
)
from recruitboard.models import ChangeScope, LeaderboardEntry, Participant, Snapshot, Submission
from recruitboard.services.aggregator import aggregate_all
from recruitboard.services.gateway import SubscriptionGateway
from recruitboard.services.ranking import RankRow, rank
from recruitboard.stores.base import SubmissionStore, Unsubscribe

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[StoreUnavailableError], None]


class ProjectorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


def build_leaderboard(
    submissions: Iterable[Submission],
    participants: Iterable[Participant],
) -> Tuple[LeaderboardEntry, ...]:
    """Aggregate and rank. Participants without a graded submission are left out.

    Graded submissions whose participant is not on the roster are dropped too;
    there is no name to rank them under.
    """
    roster = {p.id: p for p in participants}
    rows: List[RankRow] = []
    for participant_id, agg in aggregate_all(submissions).items():
        p = roster.get(participant_id)
        if p is None:
            logger.debug("graded_submissions_without_participant", extra={"participant_id": participant_id})
            continue
        rows.append(
            RankRow(
                participant_id=p.id,
                name=p.name,
                username=p.username,
                email=p.email,
                tasks_completed=agg.tasks_completed,
                total_score=agg.total_score,
            )
        )
    return rank(rows)


class LeaderboardProjector:
    def __init__(self, store: SubmissionStore, gateway: Optional[SubscriptionGateway] = None):
        self.store = store
        self.gateway = gateway or SubscriptionGateway()
        self.state = ProjectorState.UNINITIALIZED

        self._snapshot: Optional[Snapshot] = None
        self._generation = 0
        self._completed_generation = 0
        self._running = 0

        self._inflight: Optional[asyncio.Task] = None
        self._pending = False
        self._last_error: Optional[StoreUnavailableError] = None

        self._error_handlers: List[ErrorHandler] = []
        self._store_unsubscribes: List[Unsubscribe] = []

    # ----------
    # Lifecycle
    # ----------

    async def start(self) -> None:
        """Listen for store changes and publish the initial snapshot.

        A failed initial load is reported but does not raise; the next
        change notification or refresh retries it.
        """
        for scope in ChangeScope:
            self._store_unsubscribes.append(self.store.on_change(scope, self.notify))
        try:
            await self.refresh()
        except StoreUnavailableError:
            logger.warning("initial_leaderboard_load_failed")

    async def stop(self) -> None:
        for unsubscribe in self._store_unsubscribes:
            unsubscribe()
        self._store_unsubscribes.clear()
        if self._inflight is not None:
            self._inflight.cancel()
            try:
                await self._inflight
            except asyncio.CancelledError:
                pass
            self._inflight = None
        self._pending = False
        self.gateway.close()
        logger.info("leaderboard_projector_stopped")

    # ----------
    # Read side
    # ----------

    def current(self) -> Tuple[LeaderboardEntry, ...]:
        """Last published entries; empty before the first successful load."""
        return self._snapshot.entries if self._snapshot is not None else ()

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_recomputing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def on_error(self, handler: ErrorHandler) -> Unsubscribe:
        """Register a handler for recompute failures. Returns an unsubscribe callable."""
        self._error_handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._error_handlers:
                self._error_handlers.remove(handler)

        return _unsubscribe

    # ----------
    # Triggers
    # ----------

    def notify(self, scope: ChangeScope = ChangeScope.SUBMISSIONS) -> None:
        """Change-notification entry point. Must be called on the event loop."""
        NOTIFICATIONS_TOTAL.labels(scope=ChangeScope(scope).value).inc()
        self._schedule()

    async def refresh(self) -> Tuple[LeaderboardEntry, ...]:
        """Force a recompute and wait for it.

        If one is already running, a follow-up is queued and awaited so the
        result reflects data at least as new as this call. Raises
        StoreUnavailableError if the final recompute could not read the store.
        """
        task = self._schedule()
        await asyncio.shield(task)
        if self._last_error is not None:
            raise self._last_error
        return self.current()

    def _schedule(self) -> asyncio.Task:
        if self.is_recomputing:
            if self._pending:
                NOTIFICATIONS_COALESCED_TOTAL.inc()
            self._pending = True
            return self._inflight
        self._pending = False
        self._inflight = asyncio.get_running_loop().create_task(self._drain())
        return self._inflight

    async def _drain(self) -> None:
        while True:
            self._pending = False
            try:
                await self.recompute()
                self._last_error = None
            except StoreUnavailableError as e:
                self._last_error = e
            if not self._pending:
                return

    # ----------
    # Recompute
    # ----------

    async def recompute(self) -> Optional[Snapshot]:
        """Run one full fetch/aggregate/rank cycle and publish if it is the newest.

        Returns the snapshot current after this cycle. Callers normally go
        through ``notify`` or ``refresh``, which serialize cycles.
        """
        self._generation += 1
        generation = self._generation
        self._running += 1
        self.state = ProjectorState.LOADING
        try:
            with DurationTimer() as timer:
                try:
                    submissions, participants = await asyncio.gather(
                        self.store.list_graded_submissions(),
                        self.store.list_participants(),
                    )
                except Exception as e:
                    STORE_FETCH_FAILURES_TOTAL.inc()
                    RECOMPUTATIONS_TOTAL.labels(outcome="failed").inc()
                    error = StoreUnavailableError(f"failed to read submission store: {e}")
                    self._report_error(error, generation)
                    raise error from e
                entries = build_leaderboard(submissions, participants)
            RECOMPUTE_DURATION_SECONDS.observe(timer.seconds)
            self._commit(generation, entries)
            return self._snapshot
        finally:
            self._running -= 1
            if self._running == 0:
                self.state = ProjectorState.READY if self._snapshot is not None else ProjectorState.UNINITIALIZED

    def _commit(self, generation: int, entries: Tuple[LeaderboardEntry, ...]) -> None:
        if generation <= self._completed_generation:
            RECOMPUTATIONS_TOTAL.labels(outcome="stale").inc()
            logger.info(
                "stale_leaderboard_discarded",
                extra={"generation": generation, "latest_generation": self._completed_generation},
            )
            return
        self._completed_generation = generation

        snapshot = Snapshot(generation=generation, entries=entries)
        if snapshot.same_entries(self._snapshot):
            RECOMPUTATIONS_TOTAL.labels(outcome="unchanged").inc()
            logger.debug("leaderboard_unchanged", extra={"generation": generation})
            return

        self._snapshot = snapshot
        RECOMPUTATIONS_TOTAL.labels(outcome="published").inc()
        SNAPSHOTS_PUBLISHED_TOTAL.inc()
        LEADERBOARD_SIZE.set(len(entries))
        logger.info("leaderboard_published", extra={"generation": generation, "entries": len(entries)})
        self.gateway.publish(snapshot)

    def _report_error(self, error: StoreUnavailableError, generation: int) -> None:
        logger.error(
            f"Leaderboard recompute failed: {error}",
            extra={"generation": generation},
        )
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("leaderboard_error_handler_failed", extra={"generation": generation})
