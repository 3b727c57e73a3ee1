"""
Domain types for the ranking engine.

Participants and tasks are owned by external collaborators; the engine only
reads them. Submissions are validated here, at the store boundary, so the
aggregator never sees a loosely typed score mapping.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Graded totals are compared against the sum of their metric points with this slack
SCORE_TOLERANCE = 1e-6


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    GRADED = "graded"


class ParticipantRole(str, Enum):
    PARTICIPANT = "participant"
    MENTOR = "mentor"
    ADMIN = "admin"


class ChangeScope(str, Enum):
    """Logical topics a Submission Store publishes change notifications on."""

    SUBMISSIONS = "submissions"
    PARTICIPANTS = "participants"


class Participant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    username: str
    email: str = ""
    role: ParticipantRole = ParticipantRole.PARTICIPANT
    mentor_id: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def missing_email_is_blank(cls, v):
        return "" if v is None else v


class Metric(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    max_points: int = Field(gt=0)
    description: str = ""


class Task(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    max_score: int = Field(default=100, ge=0)
    metrics: Dict[str, int]
    description: str = ""
    due_date: Optional[str] = None

    @field_validator("metrics")
    @classmethod
    def metrics_must_be_capped(cls, v: Dict[str, int]) -> Dict[str, int]:
        if not v:
            raise ValueError("a task needs at least one scoring metric")
        for name, cap in v.items():
            if cap <= 0:
                raise ValueError(f"metric {name!r} must have a positive cap")
        return v


class Submission(BaseModel):
    """One participant's attempt at one task.

    ``total_score`` is frozen at grading time. It is stored rather than
    recomputed so that later edits to a task's metrics do not move the
    leaderboard.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    participant_id: str
    task_id: str
    scores: Dict[str, float] = Field(default_factory=dict)
    total_score: float = 0
    status: SubmissionStatus = SubmissionStatus.PENDING
    id: Optional[str] = None
    graded_by: Optional[str] = None
    graded_at: Optional[datetime] = None

    @field_validator("scores", mode="before")
    @classmethod
    def scores_must_be_mapping(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("scores must be a mapping of metric name to points")
        for name, points in v.items():
            # bool is an int subclass; a True score is a data error, not 1 point
            if isinstance(points, bool) or not isinstance(points, (int, float)):
                raise ValueError(f"score for {name!r} is not numeric")
            if not math.isfinite(points):
                raise ValueError(f"score for {name!r} is not finite")
            if points < 0:
                raise ValueError(f"score for {name!r} is negative")
        return v

    @model_validator(mode="after")
    def graded_total_matches_scores(self) -> "Submission":
        if self.status is SubmissionStatus.GRADED:
            if abs(sum(self.scores.values()) - self.total_score) > SCORE_TOLERANCE:
                raise ValueError(
                    f"total_score {self.total_score} does not match the sum of metric scores"
                )
        return self

    @property
    def key(self) -> Tuple[str, str]:
        return (self.participant_id, self.task_id)

    @property
    def is_graded(self) -> bool:
        return self.status is SubmissionStatus.GRADED


class Aggregate(BaseModel):
    model_config = ConfigDict(frozen=True)

    tasks_completed: int = 0
    total_score: float = 0


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    rank: int
    participant_id: str
    name: str
    username: str
    email: str
    tasks_completed: int
    total_score: float


class Snapshot(BaseModel):
    """An immutable, fully computed leaderboard published at one point in time."""

    model_config = ConfigDict(frozen=True)

    generation: int
    entries: Tuple[LeaderboardEntry, ...] = ()
    computed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def same_entries(self, other: Optional["Snapshot"]) -> bool:
        return other is not None and self.entries == other.entries


EMPTY_SNAPSHOT = Snapshot(generation=0, entries=())
