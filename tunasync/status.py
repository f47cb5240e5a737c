"""Synchronisation states of a mirror job."""

from __future__ import annotations

from enum import IntEnum


class SyncStatus(IntEnum):
    """State of a mirror job, serialised as its lower-case name."""

    NONE = 0
    FAILED = 1
    SUCCESS = 2
    SYNCING = 3
    PRE_SYNCING = 4
    PAUSED = 5
    DISABLED = 6

    def __str__(self) -> str:
        return _NAMES[self]

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)

    def to_json(self) -> str:
        """Return the JSON string value of this status."""
        return str(self)

    @classmethod
    def from_json(cls, value: str) -> "SyncStatus":
        """Parse a status from its JSON string value."""
        try:
            return _BY_NAME[value]
        except (KeyError, TypeError):
            raise ValueError(f'Invalid status value: "{value}"') from None


_NAMES = {
    SyncStatus.NONE: "none",
    SyncStatus.FAILED: "failed",
    SyncStatus.SUCCESS: "success",
    SyncStatus.SYNCING: "syncing",
    SyncStatus.PRE_SYNCING: "pre-syncing",
    SyncStatus.PAUSED: "paused",
    SyncStatus.DISABLED: "disabled",
}

_BY_NAME = {name: status for status, name in _NAMES.items()}