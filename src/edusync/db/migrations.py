"""Schema migration chains.

Each collection has an ordered chain of pure transforms; the transform at
position k upgrades a document from version k-1 to version k. Transforms
never mutate their input. After every step the document must carry the
required fields of the version it reached.

Chains run once when the store is opened (see DocumentStore.open); a
failing step aborts the whole open with MigrationError.
"""

from __future__ import annotations

import copy
import random
import re
from typing import Any, Callable, get_args

import structlog

from edusync.db.schemas import (
    CLASSES,
    CONTENT,
    JOIN_CODE_ALPHABET,
    JOIN_CODE_LENGTH,
    PROGRESS,
    Medium,
    SCHEMA_VERSIONS,
    USERS,
)
from edusync.errors import MigrationError

logger = structlog.get_logger(__name__)

Document = dict[str, Any]
Transform = Callable[[Document], Document]

MEDIUMS = get_args(Medium)

# =============================================================================
# REQUIRED FIELDS PER VERSION
# =============================================================================

_USER_V0 = frozenset({"id", "name", "avatarId", "pinHash", "createdAt"})
_CONTENT_V0 = frozenset({"id", "type", "title", "createdAt"})
_PROGRESS_V0 = frozenset({"id", "userId", "levelId", "score", "stars", "timestamp"})
_CLASS_V0 = frozenset({"id", "name", "teacherId", "createdAt"})

REQUIRED_FIELDS: dict[str, list[frozenset[str]]] = {
    USERS: [_USER_V0] + [_USER_V0 | {"role"}] * 7,
    CONTENT: [_CONTENT_V0] * 7,
    PROGRESS: [_PROGRESS_V0],
    CLASSES: [_CLASS_V0, _CLASS_V0, _CLASS_V0 | {"code"}, _CLASS_V0 | {"code"}],
}


def _known_medium(value: Any) -> str | None:
    """Lower-cased medium if it is one the schema knows, else None."""
    medium = str(value).strip().lower() if value else ""
    return medium if medium in MEDIUMS else None


def generate_join_code(rng: random.Random | None = None) -> str:
    """Generate a short class join code from the unambiguous alphabet."""
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


# =============================================================================
# USERS
# =============================================================================


def _users_add_role(doc: Document) -> Document:
    return {**doc, "role": doc.get("role") or "student"}


def _users_add_class_id(doc: Document) -> Document:
    return {**doc, "classId": doc.get("classId")}


def _users_add_profile_fields(doc: Document) -> Document:
    # school/village/state/country are optional; nothing to backfill
    return dict(doc)


def _users_add_medium(doc: Document) -> Document:
    return {**doc, "medium": _known_medium(doc.get("medium")) or "english"}


def _users_add_phone(doc: Document) -> Document:
    return {**doc, "phone": doc.get("phone") or ""}


def _users_normalize_class_id(doc: Document) -> Document:
    class_id = doc.get("classId")
    if not class_id:
        return dict(doc)
    return {**doc, "classId": re.sub(r"\D", "", str(class_id))}


def _users_add_teacher_class_id(doc: Document) -> Document:
    return {**doc, "teacherClassId": doc.get("teacherClassId")}


# =============================================================================
# CONTENT
# =============================================================================


def _content_initial(doc: Document) -> Document:
    return dict(doc)


def _content_add_class_id(doc: Document) -> Document:
    return {**doc, "classId": doc.get("classId")}


def _content_add_module_id(doc: Document) -> Document:
    # moduleId and the module/lesson types are additive
    return dict(doc)


def _content_add_translations(doc: Document) -> Document:
    if doc.get("type") not in ("text", "lesson"):
        return dict(doc)
    data = copy.deepcopy(doc.get("data") or {})
    data.setdefault("translations", {})
    data.setdefault("attachments", [])
    return {**doc, "data": data}


def _coerce_answer(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number or number in (float("inf"), float("-inf")):
        return 0
    return int(number)


def _content_numeric_correct_answer(doc: Document) -> Document:
    data = doc.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("questions"), list):
        return dict(doc)
    data = copy.deepcopy(data)
    for question in data["questions"]:
        if isinstance(question, dict):
            answer = _coerce_answer(question.get("correctAnswer"))
            options = question.get("options")
            # Legacy answers may point past the options; clamp into range
            if isinstance(options, list) and options:
                answer = min(max(answer, 0), len(options) - 1)
            question["correctAnswer"] = answer
    return {**doc, "data": data}


def _content_add_medium(doc: Document) -> Document:
    return {**doc, "medium": _known_medium(doc.get("medium")) or "english"}


# =============================================================================
# CLASSES
# =============================================================================


def _classes_add_standard_medium(doc: Document) -> Document:
    if doc.get("medium") is None:
        return dict(doc)
    return {**doc, "medium": _known_medium(doc["medium"])}


def _classes_add_code(doc: Document) -> Document:
    return {**doc, "code": generate_join_code()}


def _classes_ensure_code(doc: Document) -> Document:
    if doc.get("code"):
        return dict(doc)
    return {**doc, "code": generate_join_code()}


# Index k-1 upgrades version k-1 -> k
MIGRATION_CHAINS: dict[str, list[Transform]] = {
    USERS: [
        _users_add_role,
        _users_add_class_id,
        _users_add_profile_fields,
        _users_add_medium,
        _users_add_phone,
        _users_normalize_class_id,
        _users_add_teacher_class_id,
    ],
    CONTENT: [
        _content_initial,
        _content_add_class_id,
        _content_add_module_id,
        _content_add_translations,
        _content_numeric_correct_answer,
        _content_add_medium,
    ],
    PROGRESS: [],
    CLASSES: [
        _classes_add_standard_medium,
        _classes_add_code,
        _classes_ensure_code,
    ],
}


def _check_required(collection: str, doc: Document, version: int) -> None:
    missing = sorted(
        f for f in REQUIRED_FIELDS[collection][version] if doc.get(f) in (None, "")
    )
    if missing:
        raise MigrationError(
            collection,
            doc.get("id"),
            version,
            f"missing required fields: {', '.join(missing)}",
        )


def migrate_document(
    collection: str,
    doc: Document,
    from_version: int = 0,
) -> Document:
    """Run the migration chain for one document up to the current version.

    Args:
        collection: Collection name
        doc: Stored document at from_version
        from_version: Version the document was persisted with

    Returns:
        New document at SCHEMA_VERSIONS[collection]

    Raises:
        MigrationError: If a step raises or leaves required fields missing
    """
    target = SCHEMA_VERSIONS[collection]
    chain = MIGRATION_CHAINS[collection]

    if from_version > target:
        raise MigrationError(
            collection,
            doc.get("id"),
            from_version,
            f"stored version {from_version} is newer than schema v{target}",
        )

    current = doc
    for step in range(from_version + 1, target + 1):
        transform = chain[step - 1]
        try:
            current = transform(current)
        except MigrationError:
            raise
        except Exception as e:
            raise MigrationError(collection, doc.get("id"), step, str(e)) from e
        _check_required(collection, current, step)

    return current


def validate_chains() -> None:
    """Check that every chain reaches its collection's schema version."""
    for collection, version in SCHEMA_VERSIONS.items():
        if len(MIGRATION_CHAINS[collection]) != version:
            raise RuntimeError(
                f"Migration chain for '{collection}' has "
                f"{len(MIGRATION_CHAINS[collection])} steps, expected {version}"
            )
        if len(REQUIRED_FIELDS[collection]) != version + 1:
            raise RuntimeError(f"Required-field table for '{collection}' is incomplete")


validate_chains()
