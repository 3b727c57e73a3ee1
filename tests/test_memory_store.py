import pytest

from recruitboard.core.errors import InvalidScoresError, UnknownParticipantError, UnknownTaskError
from recruitboard.models import ChangeScope, SubmissionStatus
from recruitboard.stores.memory import MemorySubmissionStore

from tests.conftest import graded, pending


async def test_grading_creates_a_graded_submission(store):
    sub = await store.grade_submission("a", "t2", {"technical": 60, "consistency": 25}, graded_by="m")
    assert sub.status is SubmissionStatus.GRADED
    assert sub.total_score == 85
    assert sub.graded_by == "m"
    assert sub.graded_at is not None
    assert [s.key for s in await store.list_graded_submissions()] == [("a", "t2")]


async def test_regrading_keeps_one_submission_per_pair(store):
    first = await store.grade_submission("a", "t2", {"technical": 60, "consistency": 25})
    second = await store.grade_submission("a", "t2", {"technical": 1, "consistency": 2})
    assert first.id == second.id
    subs = await store.list_graded_submissions()
    assert len(subs) == 1
    assert subs[0].total_score == 3


async def test_grading_a_pending_submission_promotes_it(store):
    store.put_submission(pending("b", "t1"), notify=False)
    assert await store.list_graded_submissions() == []
    await store.grade_submission("b", "t1", {"technical": 10, "consistency": 10, "teamwork": 10})
    subs = await store.list_graded_submissions()
    assert [(s.participant_id, s.total_score) for s in subs] == [("b", 30)]


@pytest.mark.parametrize(
    "scores",
    [
        {"technical": 101, "consistency": 0},
        {"technical": 10},
        {"technical": 10, "consistency": 10, "style": 1},
        {},
    ],
)
async def test_invalid_scores_are_rejected_without_writing(store, scores):
    with pytest.raises(InvalidScoresError):
        await store.grade_submission("a", "t2", scores)
    assert await store.list_graded_submissions() == []


async def test_unknown_task_and_participant(store):
    with pytest.raises(UnknownTaskError):
        await store.grade_submission("a", "nope", {"technical": 1})
    with pytest.raises(UnknownParticipantError):
        await store.grade_submission("ghost", "t2", {"technical": 1, "consistency": 1})


async def test_mentors_are_not_listed_as_participants(store):
    ids = sorted(p.id for p in await store.list_participants())
    assert ids == ["a", "b", "c"]


async def test_change_notifications_by_scope(store):
    seen = []
    unsubscribe = store.on_change(ChangeScope.SUBMISSIONS, seen.append)
    store.on_change(ChangeScope.PARTICIPANTS, seen.append)

    await store.grade_submission("a", "t2", {"technical": 1, "consistency": 1})
    store.remove_participant("c")
    assert seen == [ChangeScope.SUBMISSIONS, ChangeScope.PARTICIPANTS]

    unsubscribe()
    store.put_submission(graded("b", "t1", 5))
    assert seen == [ChangeScope.SUBMISSIONS, ChangeScope.PARTICIPANTS]


async def test_failing_handler_does_not_stop_other_handlers(store):
    seen = []

    def broken(scope):
        raise RuntimeError("boom")

    store.on_change(ChangeScope.SUBMISSIONS, broken)
    store.on_change(ChangeScope.SUBMISSIONS, seen.append)
    store.put_submission(graded("b", "t1", 5))
    assert seen == [ChangeScope.SUBMISSIONS]


async def test_simulated_outage_raises_from_reads(participants, tasks):
    store = MemorySubmissionStore(participants=participants, tasks=tasks)
    store.fail_reads = ConnectionError("unreachable")
    with pytest.raises(ConnectionError):
        await store.list_graded_submissions()
    assert store.read_count == 1


async def test_close_drops_handlers(store):
    store.on_change(ChangeScope.SUBMISSIONS, lambda scope: None)
    await store.close()
    assert store.handler_count(ChangeScope.SUBMISSIONS) == 0


async def test_mentors_cannot_be_graded(store):
    with pytest.raises(UnknownParticipantError):
        await store.grade_submission("m", "t2", {"technical": 50, "consistency": 50})
    assert await store.list_submissions() == []


async def test_list_submissions_filters(store):
    store.put_submission(pending("a", "t1"), notify=False)
    store.put_submission(graded("a", "t3", 300), notify=False)
    store.put_submission(pending("b", "t1"), notify=False)
    store.put_submission_row({"participant_id": "a", "task_id": "t2", "status": "graded", "total_score": "lots"})

    assert sorted(s.key for s in await store.list_submissions(participant_id="a")) == [("a", "t1"), ("a", "t3")]
    pending_keys = sorted(s.key for s in await store.list_submissions(status=SubmissionStatus.PENDING))
    assert pending_keys == [("a", "t1"), ("b", "t1")]
    assert [s.key for s in await store.list_submissions(participant_id="b", status=SubmissionStatus.GRADED)] == []
