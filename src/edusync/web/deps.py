"""Request dependencies shared by the routers."""

from fastapi import HTTPException, Request, status

from edusync.db.schemas import COLLECTIONS
from edusync.db.store import DocumentStore


def get_store(request: Request) -> DocumentStore:
    """The store attached to the app by create_app()."""
    return request.app.state.store


def known_collection(collection: str) -> str:
    """Path parameter check: 404 for collections the store doesn't have."""
    if collection not in COLLECTIONS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Collection '{collection}' not found",
        )
    return collection
