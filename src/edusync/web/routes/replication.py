"""Replication endpoints consumed by edusync.sync.replicator.

Incoming documents go through the same pull-side merge policy a device
uses, so progress on the server never moves downward either.
"""

import structlog
from fastapi import APIRouter, Depends, Query

from edusync.db.store import DocumentStore
from edusync.sync.merge import merge_remote_documents
from edusync.web.deps import get_store, known_collection
from edusync.web.schemas import (
    AllDocsResponse,
    AllDocsRow,
    BulkDocResult,
    BulkDocsRequest,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["replication"])


@router.get("/{collection}/_all_docs", response_model=AllDocsResponse)
async def all_docs(
    collection: str = Depends(known_collection),
    include_docs: bool = Query(False),
    store: DocumentStore = Depends(get_store),
) -> AllDocsResponse:
    """List every document of a collection, sorted by id."""
    docs = store.find(collection, sort_by="id")
    rows = [
        AllDocsRow(id=doc["id"], key=doc["id"], doc=doc if include_docs else None)
        for doc in docs
    ]
    return AllDocsResponse(total_rows=len(rows), rows=rows)


@router.post(
    "/{collection}/_bulk_docs",
    response_model=list[BulkDocResult],
    response_model_exclude_none=True,
)
async def bulk_docs(
    body: BulkDocsRequest,
    collection: str = Depends(known_collection),
    store: DocumentStore = Depends(get_store),
) -> list[BulkDocResult]:
    """Merge pushed documents one by one and report each outcome."""
    results: list[BulkDocResult] = []
    for doc in body.docs:
        merged = merge_remote_documents(store, collection, [doc])
        if merged.rejected:
            results.append(BulkDocResult(id=doc.get("id"), ok=False, error="invalid_document"))
        else:
            results.append(BulkDocResult(id=doc.get("id"), ok=True))

    logger.info(
        "server.bulk_docs",
        collection=collection,
        received=len(body.docs),
        rejected=sum(1 for r in results if not r.ok),
    )
    return results
