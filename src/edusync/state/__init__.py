"""Device-local side-channel state (active user, remote address, logs)."""

from edusync.state.device_state import (
    ActivityEntry,
    DeviceState,
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    load_device_state,
)

__all__ = [
    "ActivityEntry",
    "DeviceState",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "load_device_state",
]
