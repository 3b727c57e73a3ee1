"""
Submission Store interface consumed by the ranking engine.

A store holds tasks, participants and submissions. The engine reads graded
submissions and the participant roster, and listens for change
notifications keyed by scope. Grading is the only write the engine's
callers perform through a store.
"""

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from pydantic import ValidationError

from recruitboard.core.errors import InvalidScoresError
from recruitboard.core.metrics import MALFORMED_SUBMISSIONS_TOTAL
from recruitboard.models import ChangeScope, Metric, Participant, Submission, SubmissionStatus, Task

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeScope], None]
Unsubscribe = Callable[[], None]


class SubmissionStore(Protocol):
    async def list_graded_submissions(self) -> Sequence[Submission]: ...

    async def list_submissions(
        self,
        participant_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> Sequence[Submission]: ...

    async def list_participants(self) -> Sequence[Participant]: ...

    async def list_tasks(self) -> Sequence[Task]: ...

    async def grade_submission(
        self,
        participant_id: str,
        task_id: str,
        scores: Mapping[str, Any],
        graded_by: str | None = None,
    ) -> Submission: ...

    def on_change(self, scope: ChangeScope, handler: ChangeHandler) -> Unsubscribe: ...

    async def close(self) -> None: ...


class ChangeNotifier:
    """Per-scope handler registry shared by the store implementations."""

    def __init__(self):
        self._handlers: Dict[ChangeScope, List[ChangeHandler]] = {scope: [] for scope in ChangeScope}

    def subscribe(self, scope: ChangeScope, handler: ChangeHandler) -> Unsubscribe:
        scope = ChangeScope(scope)
        self._handlers[scope].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[scope].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def notify(self, scope: ChangeScope) -> None:
        # Copy so a handler may unsubscribe while being notified
        for handler in list(self._handlers[ChangeScope(scope)]):
            try:
                handler(scope)
            except Exception:
                logger.exception("change_handler_failed", extra={"scope": str(scope.value)})

    def handler_count(self, scope: ChangeScope) -> int:
        return len(self._handlers[ChangeScope(scope)])

    def clear(self) -> None:
        for handlers in self._handlers.values():
            handlers.clear()


def parse_submission_rows(rows: Iterable[Mapping[str, Any]]) -> List[Submission]:
    """Validate raw submission rows, quarantining malformed ones.

    A corrupt row is logged and counted, then skipped so it cannot block the
    rest of the leaderboard.
    """
    parsed: List[Submission] = []
    for row in rows:
        try:
            parsed.append(Submission.model_validate(dict(row)))
        except (ValidationError, TypeError, ValueError) as e:
            MALFORMED_SUBMISSIONS_TOTAL.inc()
            logger.warning(
                "malformed_submission_skipped",
                extra={
                    "submission_id": _get(row, "id"),
                    "participant_id": _get(row, "participant_id"),
                    "task_id": _get(row, "task_id"),
                    "error": str(e),
                },
            )
    return parsed


def validate_scores(task: Task, scores: Mapping[str, Any]) -> Dict[str, float]:
    """Check a grading against the task's metric caps and return clean points.

    Every metric of the task must be scored, no unknown metric may appear,
    and each value must satisfy ``0 <= points <= cap``.
    """
    if not isinstance(scores, Mapping) or not scores:
        raise InvalidScoresError("scores must be a non-empty mapping of metric name to points")

    unknown = sorted(set(scores) - set(task.metrics))
    if unknown:
        raise InvalidScoresError(f"unknown metrics for task {task.id}: {', '.join(unknown)}")
    missing = sorted(set(task.metrics) - set(scores))
    if missing:
        raise InvalidScoresError(f"missing metrics for task {task.id}: {', '.join(missing)}")

    clean: Dict[str, float] = {}
    for name, points in scores.items():
        if isinstance(points, bool) or not isinstance(points, (int, float)):
            raise InvalidScoresError(f"score for {name!r} is not numeric")
        cap = task.metrics[name]
        if not 0 <= points <= cap:
            raise InvalidScoresError(f"score for {name!r} must be between 0 and {cap}, got {points}")
        clean[name] = points
    return clean


def metric_caps(rows: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    """Map ``scoring_metrics`` rows to name -> max_points, skipping unusable rows."""
    caps: Dict[str, int] = {}
    for row in rows:
        try:
            metric = Metric.model_validate(dict(row))
        except ValidationError as e:
            logger.warning(f"Skipping scoring metric: {str(e)}", extra={"metric": _get(row, "name")})
            continue
        caps[metric.name] = metric.max_points
    return caps


def _get(row: Any, key: str):
    try:
        return row.get(key)
    except AttributeError:
        return None


def build_task(row: Mapping[str, Any], known_caps: Mapping[str, int]) -> Task:
    """Turn a raw ``tasks`` row into a Task with a metric -> cap mapping.

    ``metrics`` may be stored as a mapping of caps, as a list of
    ``scoring_metrics`` names, or as a JSON string of either.
    """
    metrics = row.get("metrics")
    if isinstance(metrics, str):
        metrics = json.loads(metrics)
    if isinstance(metrics, Mapping):
        caps = {str(name): int(cap) for name, cap in metrics.items()}
    else:
        caps = {}
        for name in metrics or []:
            if name in known_caps:
                caps[name] = int(known_caps[name])
            else:
                logger.warning("task_metric_without_cap", extra={"task_id": row.get("id"), "metric": name})
    return Task(
        id=str(row["id"]),
        title=row.get("title", ""),
        max_score=row.get("max_score") if row.get("max_score") is not None else 100,
        metrics=caps,
        description=row.get("description") or "",
        due_date=row.get("due_date"),
    )
