import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from recruitboard.core.errors import StoreUnavailableError
from recruitboard.core.metrics import LEADERBOARD_QUERIES_TOTAL
from recruitboard.models import LeaderboardEntry, Snapshot
from recruitboard.services.leaderboard import LeaderboardProjector
from recruitboard.services.ranking import medal_for

logger = logging.getLogger(__name__)

router = APIRouter()

# Snapshots waiting to be sent to one websocket client; older ones are dropped first
CLIENT_QUEUE_MAXSIZE = 8


def entry_payload(entry: LeaderboardEntry) -> dict:
    payload = entry.model_dump(mode="json")
    payload["medal"] = medal_for(entry.rank)
    return payload


def snapshot_payload(snapshot: Snapshot) -> dict:
    return {
        "generation": snapshot.generation,
        "computed_at": snapshot.computed_at.isoformat(),
        "entries": [entry_payload(e) for e in snapshot.entries],
    }


def get_projector(request: Request) -> LeaderboardProjector:
    return request.app.state.projector


@router.get("/")
@router.get("")
def get_leaderboard(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Number of results to return"),
):
    """Current leaderboard, best first. Participants without graded work are not listed."""
    entries = get_projector(request).current()
    if limit is not None:
        entries = entries[:limit]
    LEADERBOARD_QUERIES_TOTAL.inc()
    logger.info("leaderboard_query", extra={"entries": len(entries)})
    return [entry_payload(e) for e in entries]


@router.post("/refresh")
async def refresh_leaderboard(request: Request):
    """Recompute from the store now and return the result."""
    projector = get_projector(request)
    try:
        entries = await projector.refresh()
    except StoreUnavailableError as e:
        logger.error(f"Leaderboard refresh failed: {str(e)}")
        raise HTTPException(503, "Submission store unavailable")
    return {
        "generation": projector.snapshot.generation if projector.snapshot else 0,
        "entries": [entry_payload(e) for e in entries],
    }


@router.websocket("/ws")
async def leaderboard_websocket(websocket: WebSocket):
    """Push the current snapshot on connect, then every newly published one."""
    await websocket.accept()
    gateway = websocket.app.state.projector.gateway
    queue: asyncio.Queue[Snapshot] = asyncio.Queue(maxsize=CLIENT_QUEUE_MAXSIZE)

    def _enqueue(snapshot: Snapshot) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(snapshot)

    handle = gateway.subscribe(_enqueue)

    async def _sender() -> None:
        while True:
            snapshot = await queue.get()
            await websocket.send_json(snapshot_payload(snapshot))

    async def _receiver() -> None:
        # Clients don't send anything meaningful; this only notices disconnects
        while True:
            await websocket.receive_text()

    sender = asyncio.create_task(_sender())
    receiver = asyncio.create_task(_receiver())
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"Leaderboard websocket closed with error: {exc}")
    finally:
        gateway.unsubscribe(handle)
        logger.debug("leaderboard_websocket_closed")
