"""Local accounts: sign up, PIN login and the active user pointer.

PINs are never stored; users carry the SHA-256 hex digest in pinHash.
"""

from __future__ import annotations

import hashlib
import time
import uuid
from typing import Any

import structlog

from edusync.db.schemas import USERS
from edusync.db.store import DocumentStore
from edusync.errors import NotFoundError, ValidationError
from edusync.state.device_state import DeviceState

logger = structlog.get_logger(__name__)

DEFAULT_NAME = "Anonymous"
DEFAULT_AVATAR = "🚀"


def hash_pin(pin: str) -> str:
    """SHA-256 hex digest of a PIN."""
    return hashlib.sha256(pin.encode("utf-8")).hexdigest()


def signup(
    store: DocumentStore,
    state: DeviceState,
    name: str,
    pin: str,
    role: str = "student",
    avatar_id: str = DEFAULT_AVATAR,
    **profile: Any,
) -> dict[str, Any]:
    """Create a user and make it the active user.

    The device is bound to the user's class, or unbound if they have none.

    Args:
        store: Document store
        state: Device state (active user is set on success)
        name: Display name (blank -> "Anonymous")
        pin: Login PIN, hashed before storage
        role: "student" or "teacher"
        avatar_id: Avatar emoji or id
        **profile: Optional user fields (class_id, medium, phone, ...)

    Returns:
        The stored user document

    Raises:
        ValidationError: If the PIN is empty or the profile is invalid
    """
    if not pin:
        raise ValidationError(USERS, ["pin: must not be empty"])

    user = store.insert(
        USERS,
        {
            **profile,
            "id": str(uuid.uuid4()),
            "name": name.strip() or DEFAULT_NAME,
            "avatarId": avatar_id or DEFAULT_AVATAR,
            "pinHash": hash_pin(pin),
            "role": role,
            "createdAt": int(time.time() * 1000),
        },
    )
    state.active_user_id = user["id"]
    state.bound_class_id = user.get("teacherClassId")
    logger.info("accounts.signup", user_id=user["id"], role=role)
    return user


def login(store: DocumentStore, state: DeviceState, user_id: str, pin: str) -> bool:
    """Check a PIN and make the user active, binding their class.

    Returns:
        True on success, False on a wrong PIN

    Raises:
        NotFoundError: If the user doesn't exist
    """
    user = store.find_one(USERS, user_id)
    if user is None:
        raise NotFoundError(USERS, user_id)

    if user["pinHash"] != hash_pin(pin):
        logger.info("accounts.login_rejected", user_id=user_id)
        return False

    state.active_user_id = user_id
    state.bound_class_id = user.get("teacherClassId")
    logger.info("accounts.login", user_id=user_id)
    return True


def logout(state: DeviceState) -> None:
    state.active_user_id = None
    state.bound_class_id = None


def current_user(store: DocumentStore, state: DeviceState) -> dict[str, Any] | None:
    """The active user's document, or None if nobody is logged in."""
    user_id = state.active_user_id
    if user_id is None:
        return None
    return store.find_one(USERS, user_id)
