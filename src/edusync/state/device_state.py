"""Device-local key-value side channels.

Small pieces of state that live outside the document store:
- active user pointer
- class server address and bound class
- sync activity log (capped, most recent first)
- attendance ledger (deduplicated dates)
- replication checkpoints and last successful sync

State persistence:
- data/state/device_state_v1.json
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

STATE_SCHEMA = "device_state_v1"
STATE_FILENAME = "device_state_v1.json"

ACTIVITY_LOG_LIMIT = 20

KEY_ACTIVE_USER = "activeUserId"
KEY_REMOTE_URL = "remoteUrl"
KEY_BOUND_CLASS = "boundClassId"
KEY_ACTIVITY_LOG = "syncHistory"
KEY_ATTENDANCE = "attendanceLog"
KEY_CHECKPOINTS = "checkpoints"
KEY_LAST_SYNC = "lastSyncAt"


# =============================================================================
# KEY-VALUE PORT
# =============================================================================


class KeyValueStore(Protocol):
    """Persistence port for side-channel values (JSON-serializable)."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process key-value store (tests, throwaway sessions)."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """Key-value store persisted as one JSON file.

    The whole file is rewritten on every set/delete; values are small.
    """

    def __init__(self, state_dir: Path):
        self.path = state_dir / STATE_FILENAME
        self._data = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            logger.debug("device_state_not_found", path=str(self.path))
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("device_state_load_failed", error=str(e))
            return {}

        if data.get("$schema") != STATE_SCHEMA:
            logger.warning(
                "device_state_invalid_schema",
                expected=STATE_SCHEMA,
                got=data.get("$schema"),
            )
            return {}

        return data.get("values", {})

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(
                {"$schema": STATE_SCHEMA, "values": self._data},
                f,
                indent=2,
                ensure_ascii=False,
            )

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._save()


# =============================================================================
# DEVICE STATE
# =============================================================================


@dataclass
class ActivityEntry:
    """One line of the "recent sync" history."""

    id: int
    title: str
    kind: str  # "Progress" | "Content" | "Network"
    date: str
    source: str
    phone: str = "N/A"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.kind,
            "date": self.date,
            "teacher": self.source,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityEntry:
        return cls(
            id=data.get("id", 0),
            title=data.get("title", ""),
            kind=data.get("type", ""),
            date=data.get("date", ""),
            source=data.get("teacher", ""),
            phone=data.get("phone", "N/A"),
        )


class DeviceState:
    """Typed access to the device's side channels over a KeyValueStore."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    # --- pointers ------------------------------------------------------------

    @property
    def active_user_id(self) -> str | None:
        return self.kv.get(KEY_ACTIVE_USER)

    @active_user_id.setter
    def active_user_id(self, user_id: str | None) -> None:
        if user_id is None:
            self.kv.delete(KEY_ACTIVE_USER)
        else:
            self.kv.set(KEY_ACTIVE_USER, user_id)

    @property
    def remote_url(self) -> str | None:
        return self.kv.get(KEY_REMOTE_URL)

    @remote_url.setter
    def remote_url(self, url: str | None) -> None:
        if url is None:
            self.kv.delete(KEY_REMOTE_URL)
        else:
            self.kv.set(KEY_REMOTE_URL, url.rstrip("/"))

    @property
    def bound_class_id(self) -> str | None:
        return self.kv.get(KEY_BOUND_CLASS)

    @bound_class_id.setter
    def bound_class_id(self, class_id: str | None) -> None:
        if class_id is None:
            self.kv.delete(KEY_BOUND_CLASS)
        else:
            self.kv.set(KEY_BOUND_CLASS, class_id)

    # --- activity log --------------------------------------------------------

    @property
    def activity_log(self) -> list[ActivityEntry]:
        return [ActivityEntry.from_dict(e) for e in self.kv.get(KEY_ACTIVITY_LOG, [])]

    def record_activity(
        self,
        title: str,
        kind: str,
        source: str,
        phone: str | None = None,
        now: datetime | None = None,
    ) -> ActivityEntry:
        """Prepend an entry to the activity log, keeping the newest 20."""
        now = now or datetime.now()
        entry = ActivityEntry(
            id=int(now.timestamp() * 1000),
            title=title,
            kind=kind,
            date=now.strftime("%Y-%m-%d %H:%M"),
            source=source,
            phone=phone or "N/A",
        )
        entries = [entry.to_dict(), *self.kv.get(KEY_ACTIVITY_LOG, [])]
        self.kv.set(KEY_ACTIVITY_LOG, entries[:ACTIVITY_LOG_LIMIT])
        return entry

    def clear_activity_log(self) -> None:
        self.kv.delete(KEY_ACTIVITY_LOG)

    # --- attendance ----------------------------------------------------------

    @property
    def attendance(self) -> list[str]:
        return list(self.kv.get(KEY_ATTENDANCE, []))

    def mark_present(self, day: date | None = None) -> bool:
        """Record a day as present.

        Returns:
            True if the day was newly added, False if already present
        """
        day_str = (day or date.today()).isoformat()
        ledger = self.attendance
        if day_str in ledger:
            return False
        self.kv.set(KEY_ATTENDANCE, sorted([*ledger, day_str]))
        logger.debug("attendance.marked", day=day_str)
        return True

    # --- replication ---------------------------------------------------------

    def get_checkpoint(self, collection: str) -> int:
        return int(self.kv.get(KEY_CHECKPOINTS, {}).get(collection, 0))

    def set_checkpoint(self, collection: str, seq: int) -> None:
        checkpoints = dict(self.kv.get(KEY_CHECKPOINTS, {}))
        checkpoints[collection] = seq
        self.kv.set(KEY_CHECKPOINTS, checkpoints)

    @property
    def has_synced(self) -> bool:
        return self.kv.get(KEY_LAST_SYNC) is not None

    @property
    def last_sync_at(self) -> str | None:
        return self.kv.get(KEY_LAST_SYNC)

    def mark_synced(self, now: datetime | None = None) -> str:
        stamp = (now or datetime.now(timezone.utc)).isoformat()
        self.kv.set(KEY_LAST_SYNC, stamp)
        return stamp


def load_device_state(state_dir: Path | None = None) -> DeviceState:
    """Open the file-backed device state.

    Args:
        state_dir: Directory holding device_state_v1.json. Defaults to ./data/state
    """
    if state_dir is None:
        state_dir = Path("data/state")
    return DeviceState(JsonFileKeyValueStore(state_dir))
