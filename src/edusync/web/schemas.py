"""Pydantic schemas for the class server API.

Documents themselves travel as plain JSON objects; they are validated by
the collection schemas in edusync.db.schemas when merged.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check."""

    status: str
    version: str
    timestamp: str
    documents: dict[str, int] = Field(default_factory=dict)


# =============================================================================
# REPLICATION
# =============================================================================


class AllDocsRow(BaseModel):
    """One row of an _all_docs listing."""

    id: str
    key: str
    doc: dict[str, Any] | None = None


class AllDocsResponse(BaseModel):
    """Response for GET /{collection}/_all_docs."""

    total_rows: int
    rows: list[AllDocsRow]


class BulkDocsRequest(BaseModel):
    """Request body for POST /{collection}/_bulk_docs."""

    docs: list[dict[str, Any]]


class BulkDocResult(BaseModel):
    """Per-document outcome of a bulk write."""

    id: str | None
    ok: bool
    error: str | None = None


# =============================================================================
# LEADERBOARD
# =============================================================================


class LeaderboardEntryResponse(BaseModel):
    user_id: str
    name: str
    avatar_id: str
    total_stars: int
    total_score: float
    rank: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]
    count: int
