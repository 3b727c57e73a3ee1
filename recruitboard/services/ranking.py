from typing import Iterable, NamedTuple, Optional

from recruitboard.models import LeaderboardEntry

_MEDALS = {1: "gold", 2: "silver", 3: "bronze"}


class RankRow(NamedTuple):
    """Unranked input row: one participant and their aggregate."""

    participant_id: str
    name: str
    username: str
    email: str
    tasks_completed: int
    total_score: float


def _sort_key(row: RankRow):
    # score desc, tasks desc, name asc (case-insensitive), id asc
    return (
        -row.total_score,
        -row.tasks_completed,
        row.name.casefold(),
        row.participant_id,
    )


def rank(rows: Iterable[RankRow]) -> tuple[LeaderboardEntry, ...]:
    """Order rows into a total order and assign dense ranks 1..N.

    The final tie-break on ``participant_id`` means no two rows compare
    equal, so every participant gets a distinct rank.
    """
    ordered = sorted(rows, key=_sort_key)
    return tuple(
        LeaderboardEntry(
            rank=i + 1,
            participant_id=row.participant_id,
            name=row.name,
            username=row.username,
            email=row.email,
            tasks_completed=row.tasks_completed,
            total_score=row.total_score,
        )
        for i, row in enumerate(ordered)
    )


def medal_for(rank_value: int) -> Optional[str]:
    """Badge for the top three positions, None otherwise."""
    return _MEDALS.get(rank_value)
