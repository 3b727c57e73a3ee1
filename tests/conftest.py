import pytest

from recruitboard.models import Participant, ParticipantRole, Submission, SubmissionStatus, Task
from recruitboard.stores.memory import MemorySubmissionStore


def graded(participant_id: str, task_id: str, total: float, **scores) -> Submission:
    scores = scores or {"technical": total}
    return Submission(
        participant_id=participant_id,
        task_id=task_id,
        scores=scores,
        total_score=total,
        status=SubmissionStatus.GRADED,
    )


def pending(participant_id: str, task_id: str) -> Submission:
    return Submission(participant_id=participant_id, task_id=task_id)


@pytest.fixture
def participants():
    return [
        Participant(id="a", name="Alice Johnson", username="alice_j", email="alice@example.com"),
        Participant(id="b", name="Bob Smith", username="bob_smith", email="bob@example.com"),
        Participant(id="c", name="Carol Williams", username="carol_w", email="carol@example.com"),
        Participant(id="m", name="Mona Mentor", username="mona", email="mona@example.com", role=ParticipantRole.MENTOR),
    ]


@pytest.fixture
def tasks():
    return [
        Task(id="t1", title="Machine Learning Fundamentals", max_score=300,
             metrics={"technical": 100, "consistency": 100, "teamwork": 100}),
        Task(id="t2", title="AI Ethics Research", max_score=200, metrics={"technical": 100, "consistency": 100}),
        Task(id="t3", title="Portfolio", max_score=500, metrics={"technical": 500}),
    ]


@pytest.fixture
def store(participants, tasks):
    return MemorySubmissionStore(participants=participants, tasks=tasks)
