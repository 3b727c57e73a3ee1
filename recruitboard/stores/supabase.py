import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from supabase import AsyncClient

from recruitboard.core.errors import (
    InvalidScoresError,
    StoreUnavailableError,
    UnknownParticipantError,
    UnknownTaskError,
)
from recruitboard.core.metrics import GRADINGS_TOTAL
from recruitboard.models import ChangeScope, Participant, Submission, SubmissionStatus, Task
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

# Postgres tables backing each change scope
SCOPE_TABLES = {
    ChangeScope.SUBMISSIONS: "task_submissions",
    ChangeScope.PARTICIPANTS: "profiles",
}


class SupabaseSubmissionStore:
    """Submission Store backed by a Supabase project.

    Reads go through PostgREST table queries; change notifications come from
    one realtime channel listening to ``postgres_changes`` on the submission
    and profile tables.
    """

    def __init__(self, client: AsyncClient, schema: str = "public", channel_name: str = "leaderboard-changes"):
        self.client = client
        self.schema = schema
        self.channel_name = channel_name
        self._notifier = ChangeNotifier()
        self._channel = None

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
        query = self.client.table("task_submissions").select("*")
        if participant_id is not None:
            query = query.eq("participant_id", participant_id)
        if status is not None:
            query = query.eq("status", SubmissionStatus(status).value)
        return parse_submission_rows(await self._select(query))

    async def list_participants(self) -> List[Participant]:
        rows = await self._select(self.client.table("profiles").select("*").eq("role", "participant"))
        participants = []
        for row in rows:
            try:
                participants.append(Participant.model_validate(row))
            except ValueError as e:
                logger.warning(f"Skipping malformed profile: {str(e)}", extra={"participant_id": row.get("id")})
        return participants

    async def list_tasks(self) -> List[Task]:
        caps = await self._metric_caps()
        rows = await self._select(self.client.table("tasks").select("*").order("due_date"))
        tasks = []
        for row in rows:
            try:
                tasks.append(build_task(row, caps))
            except ValueError as e:
                logger.warning(f"Skipping task with unusable metrics: {str(e)}", extra={"task_id": row.get("id")})
        return tasks

    async def _metric_caps(self) -> Dict[str, int]:
        rows = await self._select(self.client.table("scoring_metrics").select("name,max_points"))
        return metric_caps(rows)

    async def _select(self, query) -> List[Dict[str, Any]]:
        try:
            response = await query.execute()
        except Exception as e:
            logger.error(f"Supabase query failed: {str(e)}", extra={"backend": "supabase"})
            raise StoreUnavailableError(str(e)) from e
        return list(response.data or [])

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
            task = await self._task(task_id)
            await self._participant(participant_id)
            clean = validate_scores(task, scores)
        except (InvalidScoresError, UnknownTaskError, UnknownParticipantError):
            GRADINGS_TOTAL.labels(result="rejected").inc()
            raise

        payload = {
            "participant_id": participant_id,
            "task_id": task_id,
            "scores": clean,
            "total_score": sum(clean.values()),
            "status": SubmissionStatus.GRADED.value,
            "graded_by": graded_by,
            "graded_at": datetime.now(timezone.utc).isoformat(),
        }
        rows = await self._select(
            self.client.table("task_submissions").upsert(payload, on_conflict="participant_id,task_id")
        )
        GRADINGS_TOTAL.labels(result="upserted").inc()
        logger.info("submission_graded", extra={"participant_id": participant_id, "task_id": task_id})
        # The realtime channel reports this write too; notifying here covers an unsubscribed channel
        self._notifier.notify(ChangeScope.SUBMISSIONS)
        return Submission.model_validate(rows[0] if rows else payload)

    async def _task(self, task_id: str) -> Task:
        rows = await self._select(self.client.table("tasks").select("*").eq("id", task_id).limit(1))
        if not rows:
            raise UnknownTaskError(f"task {task_id} does not exist")
        return build_task(rows[0], await self._metric_caps())

    async def _participant(self, participant_id: str) -> Participant:
        rows = await self._select(
            self.client.table("profiles").select("*").eq("id", participant_id).eq("role", "participant").limit(1)
        )
        if not rows:
            raise UnknownParticipantError(f"participant {participant_id} does not exist")
        return Participant.model_validate(rows[0])

    # ----------
    # Notifications
    # ----------

    def on_change(self, scope: ChangeScope, handler: ChangeHandler) -> Unsubscribe:
        return self._notifier.subscribe(scope, handler)

    async def listen(self) -> None:
        """Open the realtime channel that feeds ``on_change`` handlers."""
        if self._channel is not None:
            return
        channel = self.client.channel(self.channel_name)
        for scope, table in SCOPE_TABLES.items():
            channel.on_postgres_changes(
                "*",
                schema=self.schema,
                table=table,
                callback=self._realtime_callback(scope),
            )
        await channel.subscribe()
        self._channel = channel
        logger.info("Supabase realtime channel subscribed", extra={"backend": "supabase"})

    def _realtime_callback(self, scope: ChangeScope):
        def _callback(payload: Optional[Mapping[str, Any]] = None) -> None:
            logger.debug("realtime_change_received", extra={"scope": scope.value})
            self._notifier.notify(scope)

        return _callback

    async def close(self) -> None:
        self._notifier.clear()
        if self._channel is not None:
            try:
                await self.client.remove_channel(self._channel)
            except Exception as e:
                logger.warning(f"Failed to remove realtime channel: {str(e)}", extra={"backend": "supabase"})
            self._channel = None
