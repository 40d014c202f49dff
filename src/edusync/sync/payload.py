"""Peer payload codec (QR / clipboard transport).

Two payload shapes, written with single-letter keys to stay small:
- profile: {"type": "profile", "u", "n", "tn"?, "tp"?, "p": [{"l", "s", "t"}]}
- content: {"type": "content", "u", "n", "c": [content document, ...]}

Encoding: compact JSON -> zlib -> base64url without padding. The text
only uses [A-Za-z0-9_-], so it is safe inside URLs and QR codes.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
import zlib
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Union

import structlog

from edusync.db.schemas import CONTENT, PROGRESS, USERS
from edusync.db.store import DocumentStore
from edusync.errors import DecodeError, InvalidPayloadError, NotFoundError
from edusync.sync.merge import ProgressEntry

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

# Practical capacity of a QR code scanned at reasonable density
PAYLOAD_SOFT_LIMIT = 2500

# Hard caps on decode input, checked before and during inflation
MAX_PAYLOAD_LENGTH = 20 * PAYLOAD_SOFT_LIMIT
MAX_DECOMPRESSED_BYTES = 400 * PAYLOAD_SOFT_LIMIT

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

# =============================================================================
# PAYLOAD TYPES
# =============================================================================


@dataclass
class ProfilePayload:
    """Progress achieved on the sharing device."""

    sharer_user_id: str
    sharer_name: str
    progress: list[ProgressEntry] = field(default_factory=list)
    teacher_name: str | None = None
    teacher_phone: str | None = None
    kind: Literal["profile"] = "profile"

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "type": "profile",
            "u": self.sharer_user_id,
            "n": self.sharer_name,
        }
        if self.teacher_name is not None:
            wire["tn"] = self.teacher_name
        if self.teacher_phone is not None:
            wire["tp"] = self.teacher_phone
        wire["p"] = [entry.to_wire() for entry in self.progress]
        return wire


@dataclass
class ContentPayload:
    """Full content documents handed from one device to another."""

    sharer_user_id: str
    sharer_name: str
    items: list[dict[str, Any]] = field(default_factory=list)
    kind: Literal["content"] = "content"

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "content",
            "u": self.sharer_user_id,
            "n": self.sharer_name,
            "c": self.items,
        }


Payload = Union[ProfilePayload, ContentPayload]


# =============================================================================
# ENCODE / DECODE
# =============================================================================


def encode_payload(payload: Payload, soft_limit: int = PAYLOAD_SOFT_LIMIT) -> str:
    """Encode a payload into URL-safe compressed text.

    Payloads longer than soft_limit are still returned; a warning is
    logged and the caller decides whether to show them.
    """
    text = json.dumps(payload.to_wire(), separators=(",", ":"), ensure_ascii=False)
    compressed = zlib.compress(text.encode("utf-8"), 9)
    token = base64.urlsafe_b64encode(compressed).rstrip(b"=").decode("ascii")

    if len(token) > soft_limit:
        logger.warning(
            "payload.over_soft_limit",
            kind=payload.kind,
            length=len(token),
            limit=soft_limit,
        )
    else:
        logger.debug("payload.encoded", kind=payload.kind, length=len(token))

    return token


def decode_payload(text: str) -> Payload:
    """Decode text produced by encode_payload().

    Raises:
        DecodeError: If the text does not decompress into JSON
        InvalidPayloadError: If the JSON is not a profile or content payload
    """
    token = text.strip()
    if len(token) > MAX_PAYLOAD_LENGTH:
        raise DecodeError(f"Payload is longer than {MAX_PAYLOAD_LENGTH} characters")
    if not token or not _TOKEN_PATTERN.match(token):
        raise DecodeError("Payload contains characters outside base64url")

    try:
        compressed = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64url payload: {e}") from e

    inflater = zlib.decompressobj()
    try:
        raw = inflater.decompress(compressed, MAX_DECOMPRESSED_BYTES)
    except zlib.error as e:
        raise DecodeError(f"Payload decompression failed: {e}") from e
    if not inflater.eof:
        if len(raw) >= MAX_DECOMPRESSED_BYTES:
            raise DecodeError(f"Payload inflates past {MAX_DECOMPRESSED_BYTES} bytes")
        raise DecodeError("Payload decompression failed: truncated stream")

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}") from e

    return parse_payload(data)


def parse_payload(data: Any) -> Payload:
    """Interpret decoded JSON as one of the known payload shapes.

    Legacy profile payloads without "type" but with a "p" list are
    accepted as profiles.

    Raises:
        InvalidPayloadError: If the structure matches neither shape
    """
    if not isinstance(data, dict):
        raise InvalidPayloadError("Payload must be a JSON object")

    kind = data.get("type")
    if kind == "profile" or (kind is None and "p" in data):
        return _parse_profile(data)
    if kind == "content":
        return _parse_content(data)
    raise InvalidPayloadError(f"Unknown payload type: {kind!r}")


def _require_str(data: dict[str, Any], key: str, optional: bool = False) -> str | None:
    value = data.get(key)
    if value is None and optional:
        return None
    if not isinstance(value, str) or (not optional and not value):
        raise InvalidPayloadError(f"Payload field '{key}' must be a non-empty string")
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_profile(data: dict[str, Any]) -> ProfilePayload:
    sharer_id = _require_str(data, "u")
    sharer_name = data.get("n", "")
    if not isinstance(sharer_name, str):
        raise InvalidPayloadError("Payload field 'n' must be a string")

    raw_progress = data.get("p")
    if not isinstance(raw_progress, list):
        raise InvalidPayloadError("Profile payload needs a 'p' list")

    progress: list[ProgressEntry] = []
    for i, item in enumerate(raw_progress):
        if not isinstance(item, dict):
            raise InvalidPayloadError(f"Progress entry {i} is not an object")
        level_id, score, stars = item.get("l"), item.get("s"), item.get("t")
        if not isinstance(level_id, str) or not level_id:
            raise InvalidPayloadError(f"Progress entry {i} has no level id")
        if not _is_number(score) or not 0 <= score <= 100:
            raise InvalidPayloadError(f"Progress entry {i} has an invalid score")
        if not isinstance(stars, int) or isinstance(stars, bool) or not 0 <= stars <= 3:
            raise InvalidPayloadError(f"Progress entry {i} has invalid stars")
        progress.append(ProgressEntry(level_id=level_id, score=score, stars=stars))

    return ProfilePayload(
        sharer_user_id=sharer_id,
        sharer_name=sharer_name,
        progress=progress,
        teacher_name=_require_str(data, "tn", optional=True),
        teacher_phone=_require_str(data, "tp", optional=True),
    )


def _parse_content(data: dict[str, Any]) -> ContentPayload:
    sharer_id = _require_str(data, "u")
    sharer_name = data.get("n", "")
    if not isinstance(sharer_name, str):
        raise InvalidPayloadError("Payload field 'n' must be a string")

    items = data.get("c")
    if not isinstance(items, list):
        raise InvalidPayloadError("Content payload needs a 'c' list")
    for i, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("id"), str):
            raise InvalidPayloadError(f"Content item {i} has no id")

    return ContentPayload(sharer_user_id=sharer_id, sharer_name=sharer_name, items=items)


# =============================================================================
# BUILDERS
# =============================================================================


def build_profile_payload(store: DocumentStore, user_id: str) -> ProfilePayload:
    """Collect a user's progress into a profile payload.

    Teachers also share their name and phone so students can reach them.

    Raises:
        NotFoundError: If the user doesn't exist
    """
    user = store.find_one(USERS, user_id)
    if user is None:
        raise NotFoundError(USERS, user_id)

    rows = store.find(PROGRESS, {"userId": user_id}, sort_by="timestamp")
    is_teacher = user.get("role") == "teacher"

    return ProfilePayload(
        sharer_user_id=user["id"],
        sharer_name=user["name"],
        progress=[
            ProgressEntry(level_id=r["levelId"], score=r["score"], stars=r["stars"])
            for r in rows
        ],
        teacher_name=user["name"] if is_teacher else None,
        teacher_phone=(user.get("phone") or None) if is_teacher else None,
    )


def build_content_payload(
    store: DocumentStore,
    user_id: str,
    content_ids: Iterable[str],
) -> ContentPayload:
    """Collect full content documents into a content payload.

    Unknown content ids are skipped with a warning.

    Raises:
        NotFoundError: If the sharing user doesn't exist
    """
    user = store.find_one(USERS, user_id)
    if user is None:
        raise NotFoundError(USERS, user_id)

    wanted = list(dict.fromkeys(content_ids))
    docs = {doc["id"]: doc for doc in store.find(CONTENT, {"id": {"$in": wanted}})}
    missing = [cid for cid in wanted if cid not in docs]
    if missing:
        logger.warning("payload.content_missing", ids=missing)

    return ContentPayload(
        sharer_user_id=user["id"],
        sharer_name=user["name"],
        items=[docs[cid] for cid in wanted if cid in docs],
    )
