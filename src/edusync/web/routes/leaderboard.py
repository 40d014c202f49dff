"""Class leaderboard endpoint for the teacher dashboard."""

from fastapi import APIRouter, Depends, Query

from edusync.core.leaderboard import leaderboard
from edusync.db.store import DocumentStore
from edusync.web.deps import get_store
from edusync.web.schemas import LeaderboardEntryResponse, LeaderboardResponse

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    class_id: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    store: DocumentStore = Depends(get_store),
) -> LeaderboardResponse:
    """Ranked students, optionally restricted to one class."""
    entries = [
        LeaderboardEntryResponse(**entry.to_dict())
        for entry in leaderboard(store, scope_class_id=class_id, limit=limit)
    ]
    return LeaderboardResponse(entries=entries, count=len(entries))
