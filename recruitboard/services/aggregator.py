from collections import defaultdict
from typing import Dict, Iterable

from recruitboard.models import Aggregate, Submission


def aggregate(participant_id: str, submissions: Iterable[Submission]) -> Aggregate:
    """Fold one participant's submissions into ``tasks_completed`` and ``total_score``.

    Only graded submissions count, and their stored ``total_score`` is summed
    as-is. Submissions belonging to other participants are ignored.
    """
    tasks_completed = 0
    total_score = 0.0
    for s in submissions:
        if s.participant_id != participant_id or not s.is_graded:
            continue
        tasks_completed += 1
        total_score += s.total_score
    return Aggregate(tasks_completed=tasks_completed, total_score=total_score)


def aggregate_all(submissions: Iterable[Submission]) -> Dict[str, Aggregate]:
    """Aggregate every participant that has at least one graded submission."""
    by_participant: Dict[str, list[Submission]] = defaultdict(list)
    for s in submissions:
        if s.is_graded:
            by_participant[s.participant_id].append(s)
    return {pid: aggregate(pid, subs) for pid, subs in by_participant.items()}
