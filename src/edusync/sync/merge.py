"""Merge engine: reconcile incoming records with local state.

Policies:
- Profile merge: peer progress is copied into the *active local user*.
  Rows are keyed by (userId, levelId) and never move downward.
- Content merge: upsert by id, the importer's version wins.
- Remote merge: pull-side policy per collection for network replication.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable

import structlog

from edusync.db.schemas import CONTENT, PROGRESS, USERS, validate_document
from edusync.db.store import DocumentStore, Origin
from edusync.errors import ValidationError
from edusync.state.device_state import DeviceState

logger = structlog.get_logger(__name__)

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class ProgressEntry:
    """A level result carried in a profile payload."""

    level_id: str
    score: int | float
    stars: int

    def to_wire(self) -> dict[str, Any]:
        return {"l": self.level_id, "s": self.score, "t": self.stars}


@dataclass
class ProfileMergeResult:
    levels_updated: int = 0
    levels_inserted: int = 0
    stars_gained: int = 0

    @property
    def levels_changed(self) -> int:
        return self.levels_updated + self.levels_inserted


@dataclass
class ContentMergeResult:
    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated


@dataclass
class RemoteMergeResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    rejected: int = 0

    @property
    def merged(self) -> int:
        return self.inserted + self.updated


def _now_ms() -> int:
    return int(time.time() * 1000)


def _best_row(rows: list[dict[str, Any]]) -> dict[str, Any]:
    # Legacy devices may hold several rows for one level; the best one wins
    return max(rows, key=lambda r: (r.get("score", 0), r.get("stars", 0)))


def _monotonic_update(
    existing: dict[str, Any],
    score: int | float,
    stars: int,
) -> dict[str, Any] | None:
    """Fields to change so the row reflects max(score) and max(stars).

    Returns None when the incoming result does not improve the row.
    """
    if score > existing["score"]:
        return {"score": score, "stars": max(stars, existing["stars"])}
    if score == existing["score"] and stars > existing["stars"]:
        return {"stars": stars}
    return None


# =============================================================================
# PROFILE MERGE
# =============================================================================


def merge_profile(
    store: DocumentStore,
    active_user_id: str,
    entries: Iterable[ProgressEntry],
    now_ms: int | None = None,
) -> ProfileMergeResult:
    """Copy peer progress into the active user's progress rows.

    Args:
        store: Local document store
        active_user_id: User currently logged in on this device
        entries: Level results from the payload
        now_ms: Timestamp for written rows (defaults to now)

    Returns:
        ProfileMergeResult with counts and stars gained
    """
    result = ProfileMergeResult()
    timestamp = now_ms if now_ms is not None else _now_ms()

    for entry in entries:
        rows = store.find(PROGRESS, {"userId": active_user_id, "levelId": entry.level_id})

        if not rows:
            store.insert(
                PROGRESS,
                {
                    "id": str(uuid.uuid4()),
                    "userId": active_user_id,
                    "levelId": entry.level_id,
                    "score": entry.score,
                    "stars": entry.stars,
                    "timestamp": timestamp,
                },
            )
            result.levels_inserted += 1
            result.stars_gained += entry.stars
            continue

        existing = _best_row(rows)
        changes = _monotonic_update(existing, entry.score, entry.stars)
        if changes is None:
            continue

        store.patch(PROGRESS, existing["id"], {**changes, "timestamp": timestamp})
        result.levels_updated += 1
        result.stars_gained += changes.get("stars", existing["stars"]) - existing["stars"]

    logger.info(
        "merge.profile",
        user_id=active_user_id,
        updated=result.levels_updated,
        inserted=result.levels_inserted,
        stars_gained=result.stars_gained,
    )
    return result


# =============================================================================
# CONTENT MERGE
# =============================================================================


def merge_content(
    store: DocumentStore,
    items: list[dict[str, Any]],
    origin: Origin = "local",
) -> ContentMergeResult:
    """Upsert content documents by id; incoming documents win.

    Every item is validated before anything is written, so an invalid
    item rejects the whole batch.

    Raises:
        ValidationError: If any item violates the content schema
    """
    for item in items:
        validate_document(CONTENT, item)

    result = ContentMergeResult()
    for item in items:
        existed = store.find_one(CONTENT, item["id"]) is not None
        store.upsert(CONTENT, item, origin=origin)
        if existed:
            result.updated += 1
        else:
            result.inserted += 1

    logger.info("merge.content", inserted=result.inserted, updated=result.updated)
    return result


# =============================================================================
# REMOTE (PULL) MERGE
# =============================================================================


def _merge_remote_progress(
    store: DocumentStore,
    doc: dict[str, Any],
    result: RemoteMergeResult,
) -> None:
    rows = store.find(
        PROGRESS,
        {"userId": doc.get("userId"), "levelId": doc.get("levelId")},
    )
    if not rows:
        existed = store.find_one(PROGRESS, doc["id"]) is not None
        store.upsert(PROGRESS, doc, origin="remote")
        if existed:
            result.updated += 1
        else:
            result.inserted += 1
        return

    existing = _best_row(rows)
    changes = _monotonic_update(existing, doc["score"], doc["stars"])
    if changes is None:
        result.unchanged += 1
        return

    changes["timestamp"] = max(doc.get("timestamp", 0), existing.get("timestamp", 0))
    store.patch(PROGRESS, existing["id"], changes, origin="remote")
    result.updated += 1


def merge_remote_documents(
    store: DocumentStore,
    collection: str,
    docs: list[dict[str, Any]],
    protected_user_id: str | None = None,
) -> RemoteMergeResult:
    """Merge documents pulled from the class server.

    - progress: same monotonic rule as the profile merge, keyed by
      (userId, levelId)
    - users, content, classes: upsert by id (remote wins), except the
      record of protected_user_id, which stays as it is locally

    Invalid remote documents are logged and counted as rejected.
    """
    result = RemoteMergeResult()

    for raw in docs:
        doc = {k: v for k, v in raw.items() if not k.startswith("_")}
        try:
            normalized = validate_document(collection, doc)
        except ValidationError as e:
            logger.warning("merge.remote_rejected", collection=collection, error=str(e))
            result.rejected += 1
            continue

        if collection == PROGRESS:
            _merge_remote_progress(store, normalized, result)
            continue

        if collection == USERS and normalized["id"] == protected_user_id:
            result.unchanged += 1
            continue

        existing = store.find_one(collection, normalized["id"])
        if existing == normalized:
            result.unchanged += 1
            continue

        store.upsert(collection, normalized, origin="remote")
        if existing is None:
            result.inserted += 1
        else:
            result.updated += 1

    logger.info(
        "merge.remote",
        collection=collection,
        inserted=result.inserted,
        updated=result.updated,
        unchanged=result.unchanged,
        rejected=result.rejected,
    )
    return result


# =============================================================================
# SIDE EFFECTS
# =============================================================================


def record_peer_sync(
    state: DeviceState,
    title: str,
    kind: str,
    source_name: str,
    source_phone: str | None = None,
    now: datetime | None = None,
) -> None:
    """Log a successful import and mark today as present."""
    state.record_activity(title, kind, source_name, source_phone, now=now)
    today = now.date() if now else date.today()
    state.mark_present(today)
