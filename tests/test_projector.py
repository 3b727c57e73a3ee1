import asyncio

import pytest
import pytest_asyncio

from recruitboard.core.errors import StoreUnavailableError
from recruitboard.models import ChangeScope, Participant, ParticipantRole
from recruitboard.services.leaderboard import LeaderboardProjector, ProjectorState, build_leaderboard
from recruitboard.stores.base import parse_submission_rows
from recruitboard.stores.memory import MemorySubmissionStore

from tests.conftest import graded, pending


async def settle(projector: LeaderboardProjector) -> None:
    while projector.is_recomputing:
        await asyncio.sleep(0.005)


def ranking(projector):
    return [(e.participant_id, e.rank, e.tasks_completed, e.total_score) for e in projector.current()]


class GatedStore(MemorySubmissionStore):
    """Reads submissions, then waits on the next queued gate before returning them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gates: list[asyncio.Event] = []
        self.entered = asyncio.Event()

    async def list_graded_submissions(self):
        rows = await super().list_graded_submissions()
        gate = self.gates.pop(0) if self.gates else None
        self.entered.set()
        if gate is not None:
            await gate.wait()
        return rows


@pytest_asyncio.fixture
async def projector(store):
    p = LeaderboardProjector(store)
    await p.start()
    yield p
    await p.stop()


async def test_empty_store_gives_empty_leaderboard(projector):
    assert projector.current() == ()
    assert projector.state is ProjectorState.READY
    assert projector.snapshot.generation == 1


async def test_current_is_empty_before_start(store):
    p = LeaderboardProjector(store)
    assert p.current() == ()
    assert p.state is ProjectorState.UNINITIALIZED


async def test_scenario_ranking(store, projector):
    store.put_submission(graded("a", "t3", 450), notify=False)
    store.put_submission(graded("b", "t3", 420), notify=False)
    store.put_submission(graded("b", "t2", 100), notify=False)
    await projector.refresh()
    assert ranking(projector) == [("b", 1, 2, 520), ("a", 2, 1, 450)]


async def test_pending_submissions_do_not_count(store, projector):
    store.put_submission(pending("a", "t1"), notify=False)
    store.put_submission(graded("a", "t2", 80), notify=False)
    store.put_submission(pending("c", "t1"), notify=False)
    await projector.refresh()
    assert ranking(projector) == [("a", 1, 1, 80)]


async def test_one_entry_per_participant_with_graded_work(store, projector):
    for pid, task, total in [("a", "t1", 10), ("a", "t2", 20), ("b", "t1", 5), ("c", "t3", 7), ("b", "t3", 1)]:
        store.put_submission(graded(pid, task, total), notify=False)
    entries = await projector.refresh()
    assert sorted(e.participant_id for e in entries) == ["a", "b", "c"]
    assert [e.rank for e in entries] == [1, 2, 3]


async def test_mentors_and_unknown_participants_are_not_ranked(store, projector):
    store.put_submission(graded("m", "t1", 300), notify=False)
    store.put_submission(graded("ghost", "t1", 300), notify=False)
    store.put_submission(graded("a", "t1", 1), notify=False)
    await projector.refresh()
    assert [e.participant_id for e in projector.current()] == ["a"]


async def test_refresh_is_idempotent(store, projector):
    store.put_submission(graded("a", "t1", 10), notify=False)
    first = await projector.refresh()
    snapshot = projector.snapshot
    second = await projector.refresh()
    assert first == second
    assert projector.snapshot is snapshot


async def test_change_notification_republishes(store, projector):
    received = []
    projector.gateway.subscribe(received.append)
    await store.grade_submission("a", "t2", {"technical": 70, "consistency": 30})
    await settle(projector)
    assert ranking(projector) == [("a", 1, 1, 100)]
    assert received[-1].entries == projector.current()
    assert [s.generation for s in received] == sorted(s.generation for s in received)


async def test_regrading_overwrites_instead_of_duplicating(store, projector):
    await store.grade_submission("a", "t2", {"technical": 70, "consistency": 30})
    await store.grade_submission("a", "t2", {"technical": 10, "consistency": 5})
    await settle(projector)
    assert ranking(projector) == [("a", 1, 1, 15)]


async def test_roster_change_is_picked_up(store, projector):
    store.put_submission(graded("a", "t1", 10), notify=False)
    store.put_submission(graded("b", "t1", 20), notify=False)
    await projector.refresh()
    store.remove_participant("b")
    await settle(projector)
    assert [e.participant_id for e in projector.current()] == ["a"]

    store.put_participant(Participant(id="b", name="Bob Smith", username="bob_smith", email="bob@example.com"))
    await settle(projector)
    assert [e.participant_id for e in projector.current()] == ["b", "a"]


async def test_malformed_submission_does_not_block_leaderboard(store, projector):
    store.put_submission(graded("a", "t1", 10), notify=False)
    store.put_submission_row(
        {"participant_id": "b", "task_id": "t1", "status": "graded", "scores": "garbage", "total_score": 900},
        notify=False,
    )
    store.put_submission_row(
        {"participant_id": "c", "task_id": "t1", "status": "graded", "scores": {"technical": 5}, "total_score": 50},
        notify=False,
    )
    await projector.refresh()
    assert ranking(projector) == [("a", 1, 1, 10)]


async def test_notifications_during_recompute_are_coalesced(store, projector):
    store.fetch_delay = 0.05
    before = projector.generation
    projector.notify(ChangeScope.SUBMISSIONS)
    assert projector.is_recomputing
    # Let the first run reach its fetch before the burst arrives
    await asyncio.sleep(0.01)
    for _ in range(5):
        projector.notify(ChangeScope.SUBMISSIONS)
    await settle(projector)
    assert projector.generation - before == 2


async def test_notification_while_idle_runs_one_recompute(store, projector):
    before = projector.generation
    projector.notify(ChangeScope.PARTICIPANTS)
    await settle(projector)
    assert projector.generation == before + 1


async def test_refresh_during_recompute_sees_latest_data(store, projector):
    store.fetch_delay = 0.05
    projector.notify()
    store.put_submission(graded("c", "t3", 77), notify=False)
    entries = await projector.refresh()
    assert [e.participant_id for e in entries] == ["c"]


async def test_stale_recompute_does_not_overwrite_newer(participants, tasks):
    store = GatedStore(participants=participants, tasks=tasks)
    store.put_submission(graded("a", "t1", 10), notify=False)
    projector = LeaderboardProjector(store)
    received = []
    projector.gateway.subscribe(received.append)

    gate = asyncio.Event()
    store.gates.append(gate)
    slow = asyncio.create_task(projector.recompute())
    await store.entered.wait()
    assert projector.state is ProjectorState.LOADING

    store.put_submission(graded("b", "t1", 20), notify=False)
    await projector.recompute()
    assert projector.snapshot.generation == 2

    gate.set()
    await slow
    assert projector.snapshot.generation == 2
    assert [e.participant_id for e in projector.current()] == ["b", "a"]
    assert [s.generation for s in received] == [0, 2]
    assert projector.state is ProjectorState.READY


async def test_fetch_failure_keeps_previous_snapshot(store, projector):
    store.put_submission(graded("a", "t1", 10), notify=False)
    good = await projector.refresh()
    errors = []
    projector.on_error(errors.append)

    store.fail_reads = RuntimeError("connection refused")
    with pytest.raises(StoreUnavailableError):
        await projector.refresh()
    assert projector.current() == good
    assert len(errors) == 1

    projector.notify()
    await settle(projector)
    assert projector.current() == good
    assert len(errors) == 2

    store.fail_reads = None
    store.put_submission(graded("b", "t1", 20), notify=False)
    await projector.refresh()
    assert [e.participant_id for e in projector.current()] == ["b", "a"]


async def test_failed_initial_load_is_retried(store):
    store.fail_reads = RuntimeError("down")
    projector = LeaderboardProjector(store)
    await projector.start()
    assert projector.current() == ()
    assert projector.state is ProjectorState.UNINITIALIZED

    store.fail_reads = None
    store.put_submission(graded("a", "t1", 10))
    await settle(projector)
    assert projector.state is ProjectorState.READY
    assert [e.participant_id for e in projector.current()] == ["a"]
    await projector.stop()


async def test_stop_releases_listeners_and_subscribers(store):
    projector = LeaderboardProjector(store)
    await projector.start()
    projector.gateway.subscribe(lambda s: None)
    assert store.handler_count(ChangeScope.SUBMISSIONS) == 1

    await projector.stop()
    assert store.handler_count(ChangeScope.SUBMISSIONS) == 0
    assert store.handler_count(ChangeScope.PARTICIPANTS) == 0
    assert projector.gateway.subscriber_count == 0

    generation = projector.generation
    store.put_submission(graded("a", "t1", 10))
    assert projector.generation == generation


def test_build_leaderboard_matches_scenario():
    roster = [
        Participant(id="A", name="Alice", username="alice"),
        Participant(id="B", name="Bob", username="bob"),
        Participant(id="X", name="Xavier", username="x", role=ParticipantRole.PARTICIPANT),
    ]
    subs = [graded("A", "t1", 450), graded("B", "t1", 420), graded("B", "t2", 100)]
    entries = build_leaderboard(subs, roster)
    assert [(e.participant_id, e.rank, e.total_score) for e in entries] == [("B", 1, 520), ("A", 2, 450)]


@pytest.mark.parametrize("order", [1, -1])
def test_non_finite_total_does_not_disturb_ranking(order):
    roster = [
        Participant(id="a", name="Alice", username="alice"),
        Participant(id="b", name="Bob", username="bob"),
        Participant(id="x", name="Xavier", username="x"),
    ]
    rows = [
        {"participant_id": "a", "task_id": "t1", "status": "graded", "scores": {"technical": 10}, "total_score": 10},
        {"participant_id": "x", "task_id": "t1", "status": "graded", "scores": {"technical": 5},
         "total_score": float("nan")},
        {"participant_id": "b", "task_id": "t1", "status": "graded", "scores": {"technical": 20}, "total_score": 20},
    ][::order]
    entries = build_leaderboard(parse_submission_rows(rows), roster)
    assert [(e.participant_id, e.rank) for e in entries] == [("b", 1), ("a", 2)]
