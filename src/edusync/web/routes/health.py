"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from edusync.db.schemas import COLLECTIONS
from edusync.db.store import DocumentStore
from edusync.web.deps import get_store
from edusync.web.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(store: DocumentStore = Depends(get_store)) -> HealthResponse:
    """Check API health status and report document counts."""
    return HealthResponse(
        status="ok",
        version="0.1.0",
        timestamp=datetime.now(timezone.utc).isoformat(),
        documents={c: store.count(c) for c in COLLECTIONS},
    )
