import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from recruitboard.core.errors import (
    InvalidScoresError,
    StoreUnavailableError,
    UnknownParticipantError,
    UnknownTaskError,
)
from recruitboard.core.metrics import GRADINGS_TOTAL
from recruitboard.models import ChangeScope, Participant, Submission, SubmissionStatus, Task
from recruitboard.models import tables
from recruitboard.stores.base import (
    ChangeHandler,
    ChangeNotifier,
    Unsubscribe,
    build_task,
    metric_caps,
    parse_submission_rows,
    validate_scores,
)

logger = logging.getLogger(__name__)

# Dialects whose insert() supports on_conflict_do_update
_UPSERT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def _submission_row(s: tables.TaskSubmission) -> Dict[str, Any]:
    return {
        "id": s.id,
        "participant_id": s.participant_id,
        "task_id": s.task_id,
        "scores": s.scores,
        "total_score": s.total_score,
        "status": s.status,
        "graded_by": s.graded_by,
        "graded_at": s.graded_at,
    }


class SqlSubmissionStore:
    """Submission Store over the relational schema (profiles, tasks, scoring_metrics, task_submissions).

    Sessions are synchronous and run on a worker thread. Change
    notifications fire for writes made through this store only.
    """

    def __init__(self, session_factory: sessionmaker):
        self.SessionLocal = session_factory
        self._notifier = ChangeNotifier()

    # ----------
    # Reads
    # ----------

    async def list_graded_submissions(self) -> List[Submission]:
        return await self.list_submissions(status=SubmissionStatus.GRADED)

    async def list_submissions(
        self,
        participant_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> List[Submission]:
        rows = await self._run(self._submission_rows, participant_id, status)
        return parse_submission_rows(rows)

    async def list_participants(self) -> List[Participant]:
        return await self._run(self._participants)

    async def list_tasks(self) -> List[Task]:
        return await self._run(self._tasks)

    def _submission_rows(self, db: Session, participant_id, status) -> List[Dict[str, Any]]:
        query = db.query(tables.TaskSubmission)
        if participant_id is not None:
            query = query.filter(tables.TaskSubmission.participant_id == participant_id)
        if status is not None:
            query = query.filter(tables.TaskSubmission.status == SubmissionStatus(status).value)
        return [_submission_row(s) for s in query.all()]

    def _participants(self, db: Session) -> List[Participant]:
        rows = db.query(tables.Profile).filter(tables.Profile.role == "participant").all()
        return [
            Participant(id=p.id, name=p.name, username=p.username, email=p.email, role=p.role, mentor_id=p.mentor_id)
            for p in rows
        ]

    def _metric_caps(self, db: Session) -> Dict[str, int]:
        return metric_caps(
            {"name": m.name, "max_points": m.max_points, "description": m.description}
            for m in db.query(tables.ScoringMetric).all()
        )

    def _tasks(self, db: Session) -> List[Task]:
        caps = self._metric_caps(db)
        result = []
        for t in db.query(tables.Task).order_by(tables.Task.due_date.asc()).all():
            row = {
                "id": t.id,
                "title": t.title,
                "description": t.description,
                "due_date": t.due_date,
                "max_score": t.max_score,
                "metrics": t.metrics,
            }
            try:
                result.append(build_task(row, caps))
            except ValueError as e:
                logger.warning(f"Skipping task with unusable metrics: {str(e)}", extra={"task_id": t.id})
        return result

    # ----------
    # Grading
    # ----------

    async def grade_submission(
        self,
        participant_id: str,
        task_id: str,
        scores: Mapping[str, Any],
        graded_by: str | None = None,
    ) -> Submission:
        try:
            submission = await self._run(self._upsert_graded, participant_id, task_id, scores, graded_by)
        except (InvalidScoresError, UnknownTaskError, UnknownParticipantError):
            GRADINGS_TOTAL.labels(result="rejected").inc()
            raise
        GRADINGS_TOTAL.labels(result="upserted").inc()
        logger.info(
            "submission_graded",
            extra={"participant_id": participant_id, "task_id": task_id, "submission_id": submission.id},
        )
        self._notifier.notify(ChangeScope.SUBMISSIONS)
        return submission

    def _upsert_graded(self, db: Session, participant_id, task_id, scores, graded_by):
        task_row = db.get(tables.Task, task_id)
        if task_row is None:
            raise UnknownTaskError(f"task {task_id} does not exist")
        profile = db.get(tables.Profile, participant_id)
        if profile is None or profile.role != "participant":
            raise UnknownParticipantError(f"participant {participant_id} does not exist")

        caps = self._metric_caps(db)
        task = build_task({"id": task_row.id, "title": task_row.title, "max_score": task_row.max_score,
                           "metrics": task_row.metrics}, caps)
        clean = validate_scores(task, scores)

        now = datetime.utcnow()
        changes = {
            "scores": clean,
            "total_score": sum(clean.values()),
            "status": SubmissionStatus.GRADED.value,
            "graded_by": graded_by,
            "graded_at": now,
            "updated_at": now,
        }
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise StoreUnavailableError(f"grading needs INSERT ... ON CONFLICT, not supported by {dialect}")
        # One statement, so concurrent gradings of the same pair overwrite instead of colliding
        stmt = insert(tables.TaskSubmission).values(
            id=str(uuid.uuid4()),
            participant_id=participant_id,
            task_id=task_id,
            created_at=now,
            **changes,
        )
        db.execute(stmt.on_conflict_do_update(index_elements=["participant_id", "task_id"], set_=changes))
        db.commit()

        row = (
            db.query(tables.TaskSubmission)
            .filter(tables.TaskSubmission.participant_id == participant_id)
            .filter(tables.TaskSubmission.task_id == task_id)
            .one()
        )
        return Submission.model_validate(_submission_row(row))

    # ----------
    # Notifications
    # ----------

    def on_change(self, scope: ChangeScope, handler: ChangeHandler) -> Unsubscribe:
        return self._notifier.subscribe(scope, handler)

    def notify(self, scope: ChangeScope) -> None:
        """Signal a change made outside this store (e.g. by another service)."""
        self._notifier.notify(scope)

    async def close(self) -> None:
        self._notifier.clear()

    async def _run(self, fn, *args):
        def _call():
            db = self.SessionLocal()
            try:
                return fn(db, *args)
            finally:
                db.close()

        try:
            return await asyncio.to_thread(_call)
        except (InvalidScoresError, UnknownTaskError, UnknownParticipantError):
            raise
        except Exception as e:
            logger.error(f"Submission store query failed: {str(e)}", extra={"backend": "sql"})
            raise StoreUnavailableError(str(e)) from e
