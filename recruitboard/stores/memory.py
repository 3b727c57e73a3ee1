import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from recruitboard.core.errors import InvalidScoresError, UnknownParticipantError, UnknownTaskError
from recruitboard.core.metrics import GRADINGS_TOTAL
from recruitboard.models import (
    ChangeScope,
    Participant,
    ParticipantRole,
    Submission,
    SubmissionStatus,
    Task,
)
from recruitboard.stores.base import ChangeHandler, ChangeNotifier, Unsubscribe, parse_submission_rows, validate_scores

logger = logging.getLogger(__name__)


class MemorySubmissionStore:
    """In-process Submission Store.

    Submissions are kept as raw rows, the way a database would hand them
    back, and validated on every read. ``fetch_delay`` and ``fail_reads``
    let callers simulate a slow or unreachable backend.
    """

    def __init__(
        self,
        participants: Iterable[Participant] = (),
        tasks: Iterable[Task] = (),
        fetch_delay: float = 0.0,
    ):
        self._participants: Dict[str, Participant] = {p.id: p for p in participants}
        self._tasks: Dict[str, Task] = {t.id: t for t in tasks}
        self._rows: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._notifier = ChangeNotifier()
        self.fetch_delay = fetch_delay
        self.fail_reads: Optional[Exception] = None
        self.read_count = 0

    async def _before_read(self) -> None:
        self.read_count += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fail_reads is not None:
            raise self.fail_reads

    async def list_graded_submissions(self) -> List[Submission]:
        return await self.list_submissions(status=SubmissionStatus.GRADED)

    async def list_submissions(
        self,
        participant_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> List[Submission]:
        await self._before_read()
        rows = [
            row
            for row in self._rows.values()
            if (participant_id is None or row.get("participant_id") == participant_id)
            and (status is None or row.get("status") == SubmissionStatus(status).value)
        ]
        return parse_submission_rows(rows)

    async def list_participants(self) -> List[Participant]:
        await self._before_read()
        return [p for p in self._participants.values() if p.role is ParticipantRole.PARTICIPANT]

    async def list_tasks(self) -> List[Task]:
        return list(self._tasks.values())

    async def grade_submission(
        self,
        participant_id: str,
        task_id: str,
        scores: Mapping[str, Any],
        graded_by: str | None = None,
    ) -> Submission:
        task = self._tasks.get(task_id)
        if task is None:
            GRADINGS_TOTAL.labels(result="rejected").inc()
            raise UnknownTaskError(f"task {task_id} does not exist")
        participant = self._participants.get(participant_id)
        if participant is None or participant.role is not ParticipantRole.PARTICIPANT:
            GRADINGS_TOTAL.labels(result="rejected").inc()
            raise UnknownParticipantError(f"participant {participant_id} does not exist")
        try:
            clean = validate_scores(task, scores)
        except InvalidScoresError:
            GRADINGS_TOTAL.labels(result="rejected").inc()
            raise

        key = (participant_id, task_id)
        existing = self._rows.get(key)
        row = {
            "id": existing["id"] if existing else str(uuid.uuid4()),
            "participant_id": participant_id,
            "task_id": task_id,
            "scores": clean,
            "total_score": sum(clean.values()),
            "status": SubmissionStatus.GRADED.value,
            "graded_by": graded_by,
            "graded_at": datetime.now(timezone.utc),
        }
        self._rows[key] = row
        GRADINGS_TOTAL.labels(result="updated" if existing else "created").inc()
        logger.info(
            "submission_graded",
            extra={"participant_id": participant_id, "task_id": task_id, "submission_id": row["id"]},
        )
        self._notifier.notify(ChangeScope.SUBMISSIONS)
        return Submission.model_validate(row)

    def on_change(self, scope: ChangeScope, handler: ChangeHandler) -> Unsubscribe:
        return self._notifier.subscribe(scope, handler)

    async def close(self) -> None:
        self._notifier.clear()

    # Direct mutation, for seeding and for simulating writes made elsewhere

    def put_participant(self, participant: Participant, notify: bool = True) -> None:
        self._participants[participant.id] = participant
        if notify:
            self._notifier.notify(ChangeScope.PARTICIPANTS)

    def remove_participant(self, participant_id: str, notify: bool = True) -> None:
        self._participants.pop(participant_id, None)
        if notify:
            self._notifier.notify(ChangeScope.PARTICIPANTS)

    def put_task(self, task: Task) -> None:
        self._tasks[task.id] = task

    def put_submission_row(self, row: Mapping[str, Any], notify: bool = True) -> None:
        """Store a raw submission row as-is, valid or not (upsert by participant and task)."""
        row = dict(row)
        row.setdefault("id", str(uuid.uuid4()))
        self._rows[(row.get("participant_id"), row.get("task_id"))] = row
        if notify:
            self._notifier.notify(ChangeScope.SUBMISSIONS)

    def put_submission(self, submission: Submission, notify: bool = True) -> None:
        self.put_submission_row(submission.model_dump(exclude_none=True, mode="json"), notify=notify)

    def notify(self, scope: ChangeScope) -> None:
        self._notifier.notify(scope)

    def handler_count(self, scope: ChangeScope) -> int:
        return self._notifier.handler_count(scope)
