"""Peer-to-peer import of shared payloads.

A student scans a payload shown on another device (or pastes it). The
payload is decoded, merged into the local store and the import is
logged to the activity history and attendance ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterable, Iterable

import structlog

from edusync.db.schemas import USERS
from edusync.db.store import DocumentStore
from edusync.errors import NotFoundError
from edusync.state.device_state import DeviceState
from edusync.sync.merge import merge_content, merge_profile, record_peer_sync
from edusync.sync.payload import ContentPayload, ProfilePayload, decode_payload
from edusync.sync.scanner import ScanSession

logger = structlog.get_logger(__name__)

TITLE_PROGRESS_SYNCED = "Synced Progress"
TITLE_CHECK_IN = "Check-in Sync"
KIND_PROGRESS = "Progress"
KIND_CONTENT = "Content"


@dataclass
class ImportResult:
    """Outcome of importing one payload."""

    kind: str  # "profile" | "content"
    message: str
    source_name: str
    levels_updated: int = 0
    stars_gained: int = 0
    items_imported: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "source_name": self.source_name,
            "levels_updated": self.levels_updated,
            "stars_gained": self.stars_gained,
            "items_imported": self.items_imported,
        }


def _require_active_user(store: DocumentStore, state: DeviceState) -> str:
    user_id = state.active_user_id
    if user_id is None or store.find_one(USERS, user_id) is None:
        raise NotFoundError(USERS, user_id or "<no active user>")
    return user_id


def _import_profile(
    store: DocumentStore,
    state: DeviceState,
    payload: ProfilePayload,
    now: datetime | None,
) -> ImportResult:
    user_id = _require_active_user(store, state)
    now_ms = int(now.timestamp() * 1000) if now else None
    merged = merge_profile(store, user_id, payload.progress, now_ms=now_ms)

    if merged.levels_changed > 0:
        title = TITLE_PROGRESS_SYNCED
        message = f"Updated {merged.levels_changed} levels (+{merged.stars_gained} stars)"
    else:
        title = TITLE_CHECK_IN
        message = "Already up to date. Attendance marked."

    source = payload.teacher_name or payload.sharer_name
    record_peer_sync(state, title, KIND_PROGRESS, source, payload.teacher_phone, now=now)

    return ImportResult(
        kind="profile",
        message=message,
        source_name=source,
        levels_updated=merged.levels_changed,
        stars_gained=merged.stars_gained,
    )


def _import_content(
    store: DocumentStore,
    state: DeviceState,
    payload: ContentPayload,
    now: datetime | None,
) -> ImportResult:
    merged = merge_content(store, payload.items)
    count = merged.total
    record_peer_sync(
        state,
        f"Received {count} Resources",
        KIND_CONTENT,
        payload.sharer_name,
        now=now,
    )
    return ImportResult(
        kind="content",
        message=f"Received {count} resources from {payload.sharer_name}",
        source_name=payload.sharer_name,
        items_imported=count,
    )


def import_payload(
    store: DocumentStore,
    state: DeviceState,
    text: str,
    now: datetime | None = None,
) -> ImportResult:
    """Decode a shared payload and merge it into the local store.

    Profile payloads are merged into the active user's progress, whoever
    shared them. Content payloads are upserted by id.

    Raises:
        DecodeError: If the text is not a valid encoded payload
        InvalidPayloadError: If the payload has an unknown structure
        NotFoundError: If a profile payload arrives with no active user
        ValidationError: If a content item violates the schema
    """
    payload = decode_payload(text)

    if isinstance(payload, ProfilePayload):
        result = _import_profile(store, state, payload, now)
    else:
        result = _import_content(store, state, payload, now)

    logger.info(
        "peer.imported",
        kind=result.kind,
        source=result.source_name,
        levels_updated=result.levels_updated,
        items_imported=result.items_imported,
    )
    return result


async def scan_and_import(
    store: DocumentStore,
    state: DeviceState,
    frames: Iterable[str | None] | AsyncIterable[str | None],
    session: ScanSession | None = None,
) -> ImportResult | None:
    """Read camera frames until one decodes, then import it.

    Returns:
        ImportResult, or None if the scan was cancelled or the frames ran out
    """
    session = session or ScanSession()
    text = await session.run(frames)
    if text is None:
        logger.info("peer.scan_ended", state=session.state.value, failed=session.failed_frames)
        return None
    return import_payload(store, state, text)
