import time

from prometheus_client import Counter, Histogram, Gauge


# ----------
# Recomputation
# ----------

RECOMPUTATIONS_TOTAL = Counter(
    "leaderboard_recomputations_total",
    "Leaderboard recomputations by outcome",
    labelnames=("outcome",),  # published | unchanged | stale | failed
)

RECOMPUTE_DURATION_SECONDS = Histogram(
    "leaderboard_recompute_duration_seconds",
    "Time spent fetching, aggregating and ranking one leaderboard generation",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

NOTIFICATIONS_TOTAL = Counter(
    "leaderboard_change_notifications_total",
    "Change notifications received from the Submission Store",
    labelnames=("scope",),
)

NOTIFICATIONS_COALESCED_TOTAL = Counter(
    "leaderboard_change_notifications_coalesced_total",
    "Change notifications folded into an already pending recomputation",
)

SNAPSHOTS_PUBLISHED_TOTAL = Counter(
    "leaderboard_snapshots_published_total",
    "Leaderboard snapshots published to subscribers",
)

STORE_FETCH_FAILURES_TOTAL = Counter(
    "leaderboard_store_fetch_failures_total",
    "Failed reads from the Submission Store",
)

MALFORMED_SUBMISSIONS_TOTAL = Counter(
    "leaderboard_malformed_submissions_total",
    "Submissions excluded from aggregation because their data was malformed",
)


# ----------
# Read side
# ----------

LEADERBOARD_SIZE = Gauge(
    "leaderboard_size",
    "Number of ranked participants in the current snapshot",
)

ACTIVE_SUBSCRIBERS = Gauge(
    "leaderboard_active_subscribers",
    "Handlers currently subscribed to leaderboard snapshots",
)

LEADERBOARD_QUERIES_TOTAL = Counter(
    "leaderboard_queries_total",
    "Total leaderboard queries",
)

SNAPSHOT_MIRROR_FAILURES_TOTAL = Counter(
    "leaderboard_snapshot_mirror_failures_total",
    "Failed writes of a snapshot to the Redis mirror",
)


# ----------
# Grading
# ----------

GRADINGS_TOTAL = Counter(
    "submission_gradings_total",
    "Grading upserts handled by the store",
    labelnames=("result",),  # created | updated | upserted | rejected
)


def init_fastapi_instrumentation(app) -> None:
    """Attach Prometheus HTTP instrumentation to the app.

    Imported lazily so library users of the engine don't need the instrumentator.
    """
    from prometheus_fastapi_instrumentator import Instrumentator
    from prometheus_client import REGISTRY

    Instrumentator(registry=REGISTRY).instrument(app)


class DurationTimer:
    """Simple context manager to measure durations with perf_counter."""

    def __init__(self):
        self._start = 0.0
        self.seconds = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.seconds = max(0.0, time.perf_counter() - self._start)
        return False
