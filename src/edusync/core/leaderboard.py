"""Leaderboard aggregation over users and progress.

Teachers are never ranked. When a class scope is given, only students
who joined that class (teacherClassId) are included.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any

import structlog

from edusync.db.schemas import PROGRESS, USERS
from edusync.db.store import DocumentStore

logger = structlog.get_logger(__name__)


@dataclass
class LeaderboardEntry:
    user_id: str
    name: str
    avatar_id: str
    total_stars: int
    total_score: int | float
    rank: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "avatar_id": self.avatar_id,
            "total_stars": self.total_stars,
            "total_score": self.total_score,
            "rank": self.rank,
        }


def leaderboard(
    store: DocumentStore,
    scope_class_id: str | None = None,
    limit: int | None = None,
) -> list[LeaderboardEntry]:
    """Rank students by total stars, then total score.

    Ranks run 1..N in sorted order; equal totals keep distinct ranks in
    a stable order (by name, then id).

    Args:
        store: Document store
        scope_class_id: Only rank students whose teacherClassId matches
        limit: Return at most this many entries

    Returns:
        Sorted list of LeaderboardEntry
    """
    selector: dict[str, Any] = {"role": {"$ne": "teacher"}}
    if scope_class_id is not None:
        selector["teacherClassId"] = scope_class_id
    users = store.find(USERS, selector)

    stars: dict[str, int] = defaultdict(int)
    scores: dict[str, int | float] = defaultdict(int)
    user_ids = [u["id"] for u in users]
    if user_ids:
        for row in store.find(PROGRESS, {"userId": {"$in": user_ids}}):
            stars[row["userId"]] += row["stars"]
            scores[row["userId"]] += row["score"]

    ordered = sorted(
        users,
        key=lambda u: (-stars[u["id"]], -scores[u["id"]], u["name"], u["id"]),
    )
    if limit is not None:
        ordered = ordered[:limit]

    entries = [
        LeaderboardEntry(
            user_id=u["id"],
            name=u["name"],
            avatar_id=u["avatarId"],
            total_stars=stars[u["id"]],
            total_score=scores[u["id"]],
            rank=i,
        )
        for i, u in enumerate(ordered, start=1)
    ]

    logger.debug("leaderboard.computed", scope=scope_class_id, entries=len(entries))
    return entries
