"""Teacher classes: creation, join codes and teacher-side deletes."""

from __future__ import annotations

import random
import time
import uuid
from typing import Any

import structlog

from edusync.db.migrations import generate_join_code
from edusync.db.schemas import CLASSES, CONTENT, USERS
from edusync.db.store import DocumentStore
from edusync.errors import EduSyncError, NotFoundError

logger = structlog.get_logger(__name__)

# Retries before giving up on finding an unused join code
MAX_CODE_ATTEMPTS = 20


def _unused_join_code(store: DocumentStore, rng: random.Random | None) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_join_code(rng)
        if store.count(CLASSES, {"code": code}) == 0:
            return code
    raise EduSyncError("Could not generate an unused join code")


def create_class(
    store: DocumentStore,
    teacher_id: str,
    name: str,
    standard: str | None = None,
    medium: str | None = None,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Create a class owned by a teacher, with a fresh join code.

    Raises:
        NotFoundError: If the teacher doesn't exist
        EduSyncError: If the user is not a teacher
    """
    teacher = store.find_one(USERS, teacher_id)
    if teacher is None:
        raise NotFoundError(USERS, teacher_id)
    if teacher.get("role") != "teacher":
        raise EduSyncError(f"User {teacher_id} is not a teacher")

    doc: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "name": name,
        "teacherId": teacher_id,
        "createdAt": int(time.time() * 1000),
        "code": _unused_join_code(store, rng),
    }
    if standard is not None:
        doc["standard"] = standard
    if medium is not None:
        doc["medium"] = medium

    created = store.insert(CLASSES, doc)
    logger.info("classes.created", class_id=created["id"], code=created["code"])
    return created


def find_class_by_code(store: DocumentStore, code: str) -> dict[str, Any] | None:
    matches = store.find(CLASSES, {"code": code.strip().upper()}, limit=1)
    return matches[0] if matches else None


def join_class(store: DocumentStore, user_id: str, code: str) -> dict[str, Any]:
    """Attach a student to the class with the given join code.

    Returns:
        The joined class document

    Raises:
        NotFoundError: If the user or the code is unknown
    """
    if store.find_one(USERS, user_id) is None:
        raise NotFoundError(USERS, user_id)

    klass = find_class_by_code(store, code)
    if klass is None:
        raise NotFoundError(CLASSES, code)

    store.patch(USERS, user_id, {"teacherClassId": klass["id"]})
    logger.info("classes.joined", user_id=user_id, class_id=klass["id"])
    return klass


def classes_for_teacher(store: DocumentStore, teacher_id: str) -> list[dict[str, Any]]:
    return store.find(CLASSES, {"teacherId": teacher_id}, sort_by="createdAt")


def remove_content(store: DocumentStore, content_id: str) -> bool:
    """Hard-delete a content item (teacher action)."""
    removed = store.remove(CONTENT, content_id)
    if removed:
        logger.info("classes.content_removed", content_id=content_id)
    return removed


def remove_class(store: DocumentStore, class_id: str) -> bool:
    """Hard-delete a class (teacher action). Students keep their stale
    teacherClassId until they join another class."""
    removed = store.remove(CLASSES, class_id)
    if removed:
        logger.info("classes.removed", class_id=class_id)
    return removed
