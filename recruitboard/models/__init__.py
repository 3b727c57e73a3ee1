from recruitboard.models.domain import (
    EMPTY_SNAPSHOT,
    Aggregate,
    ChangeScope,
    LeaderboardEntry,
    Metric,
    Participant,
    ParticipantRole,
    Snapshot,
    Submission,
    SubmissionStatus,
    Task,
)

__all__ = [
    "EMPTY_SNAPSHOT",
    "Aggregate",
    "ChangeScope",
    "LeaderboardEntry",
    "Metric",
    "Participant",
    "ParticipantRole",
    "Snapshot",
    "Submission",
    "SubmissionStatus",
    "Task",
]
