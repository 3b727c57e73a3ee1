import logging

from fastapi import APIRouter, HTTPException, Request

from recruitboard.core.errors import StoreUnavailableError
from recruitboard.models import SubmissionStatus
from recruitboard.services.aggregator import aggregate
from recruitboard.services.ranking import medal_for

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/participants/{participant_id}/submissions")
async def participant_progress(participant_id: str, request: Request):
    """A participant's own submissions, their graded totals and current place on the leaderboard."""
    store = request.app.state.store
    try:
        roster = await store.list_participants()
        submissions = await store.list_submissions(participant_id=participant_id)
    except StoreUnavailableError as e:
        logger.error(f"Failed to load participant progress: {str(e)}", extra={"participant_id": participant_id})
        raise HTTPException(503, "Submission store unavailable")

    participant = next((p for p in roster if p.id == participant_id), None)
    if participant is None:
        raise HTTPException(404, f"participant {participant_id} does not exist")

    progress = aggregate(participant_id, submissions)
    # Rank comes from the published leaderboard, so it can trail a grading that is still being recomputed
    entry = next((e for e in request.app.state.projector.current() if e.participant_id == participant_id), None)
    return {
        "participant": participant.model_dump(mode="json"),
        "submissions": [s.model_dump(mode="json") for s in submissions],
        "tasks_completed": progress.tasks_completed,
        "total_score": progress.total_score,
        "rank": entry.rank if entry else None,
        "medal": medal_for(entry.rank) if entry else None,
    }


@router.get("/mentors/{mentor_id}/pending")
async def mentor_pending(mentor_id: str, request: Request):
    """Submissions waiting for a grade from the participants assigned to this mentor."""
    store = request.app.state.store
    try:
        roster = await store.list_participants()
        pending = await store.list_submissions(status=SubmissionStatus.PENDING)
    except StoreUnavailableError as e:
        logger.error(f"Failed to load pending submissions: {str(e)}")
        raise HTTPException(503, "Submission store unavailable")

    mentees = {p.id: p for p in roster if p.mentor_id == mentor_id}
    return [
        dict(s.model_dump(mode="json"), participant_name=mentees[s.participant_id].name)
        for s in pending
        if s.participant_id in mentees
    ]
