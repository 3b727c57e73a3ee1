import logging
from typing import Dict, Optional, Union

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, StrictFloat, StrictInt

from recruitboard.core.errors import (
    InvalidScoresError,
    StoreUnavailableError,
    UnknownParticipantError,
    UnknownTaskError,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class GradeRequest(BaseModel):
    participant_id: str
    task_id: str
    # Strict so JSON booleans and numeric strings are rejected rather than coerced
    scores: Dict[str, Union[StrictInt, StrictFloat]] = Field(..., description="Metric name -> awarded points")
    graded_by: Optional[str] = None


@router.post("/submissions/grade")
async def grade_submission(body: GradeRequest, request: Request):
    """Grade a participant's task. Regrading the same pair overwrites the earlier scores."""
    store = request.app.state.store
    try:
        submission = await store.grade_submission(
            body.participant_id,
            body.task_id,
            body.scores,
            graded_by=body.graded_by,
        )
    except InvalidScoresError as e:
        logger.warning(
            f"Rejected grading: {str(e)}",
            extra={"participant_id": body.participant_id, "task_id": body.task_id},
        )
        raise HTTPException(400, str(e))
    except (UnknownTaskError, UnknownParticipantError) as e:
        raise HTTPException(404, str(e))
    except StoreUnavailableError as e:
        logger.error(f"Grading failed: {str(e)}", extra={"task_id": body.task_id})
        raise HTTPException(503, "Submission store unavailable")

    return submission.model_dump(mode="json")


@router.get("/tasks")
async def list_tasks(request: Request):
    """Tasks with the cap of each scoring metric."""
    try:
        tasks = await request.app.state.store.list_tasks()
    except StoreUnavailableError:
        raise HTTPException(503, "Submission store unavailable")
    return [t.model_dump(mode="json") for t in tasks]
