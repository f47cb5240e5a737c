"""Messages exchanged between manager, workers and clients."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any

from .status import SyncStatus

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(Z|z|[+-]\d{2}:\d{2})$"
)


def format_time(t: datetime) -> str:
    """Format a datetime as RFC 3339 with trailing zero fractions trimmed."""
    if t.tzinfo is None:
        t = t.astimezone()
    text = (
        f"{t.year:04d}-{t.month:02d}-{t.day:02d}"
        f"T{t.hour:02d}:{t.minute:02d}:{t.second:02d}"
    )
    if t.microsecond:
        text += "." + f"{t.microsecond:06d}".rstrip("0")
    seconds = int(t.utcoffset().total_seconds())
    if seconds == 0:
        return text + "Z"
    sign = "+" if seconds > 0 else "-"
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def parse_time(s: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    match = _RFC3339.match(s) if isinstance(s, str) else None
    if match is None:
        raise ValueError(f"invalid time value: {s!r}")
    year, month, day, hour, minute, second, frac, zone = match.groups()
    micro = int((frac or "").ljust(6, "0")[:6])
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tz = timezone.utc if not offset else timezone(sign * offset)
    return datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )


def _time_field(data: dict, key: str) -> datetime:
    value = data.get(key)
    return ZERO_TIME if value is None else parse_time(value)


class CmdVerb(IntEnum):
    """An action sent to a job or a worker."""

    START = 0
    STOP = 1
    DISABLE = 2
    RESTART = 3
    PING = 4
    RELOAD = 5

    def __str__(self) -> str:
        return self.name.lower()

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)

    @classmethod
    def parse(cls, s: str) -> "CmdVerb":
        """Parse a verb by name; unknown names map to START."""
        try:
            return cls[s.upper()] if isinstance(s, str) and s.islower() else cls.START
        except KeyError:
            return cls.START


@dataclass
class MirrorStatus:
    """Status a worker reports about one of its mirrors."""

    name: str = ""
    worker: str = ""
    is_master: bool = False
    status: SyncStatus = SyncStatus.NONE
    last_update: datetime = ZERO_TIME
    last_started: datetime = ZERO_TIME
    last_ended: datetime = ZERO_TIME
    scheduled: datetime = ZERO_TIME
    upstream: str = ""
    size: str = ""
    error_msg: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "worker": self.worker,
            "is_master": self.is_master,
            "status": self.status.to_json(),
            "last_update": format_time(self.last_update),
            "last_started": format_time(self.last_started),
            "last_ended": format_time(self.last_ended),
            "next_schedule": format_time(self.scheduled),
            "upstream": self.upstream,
            "size": self.size,
            "error_msg": self.error_msg,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MirrorStatus":
        status = data.get("status")
        return cls(
            name=data.get("name", ""),
            worker=data.get("worker", ""),
            is_master=bool(data.get("is_master", False)),
            status=SyncStatus.NONE if "status" not in data else SyncStatus.from_json(status),
            last_update=_time_field(data, "last_update"),
            last_started=_time_field(data, "last_started"),
            last_ended=_time_field(data, "last_ended"),
            scheduled=_time_field(data, "next_schedule"),
            upstream=data.get("upstream", ""),
            size=data.get("size", ""),
            error_msg=data.get("error_msg", ""),
        )


@dataclass
class WorkerStatus:
    """Information describing a registered worker."""

    id: str = ""
    url: str = ""
    token: str = ""
    last_online: datetime = ZERO_TIME
    last_register: datetime = ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "token": self.token,
            "last_online": format_time(self.last_online),
            "last_register": format_time(self.last_register),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerStatus":
        return cls(
            id=data.get("id", ""),
            url=data.get("url", ""),
            token=data.get("token", ""),
            last_online=_time_field(data, "last_online"),
            last_register=_time_field(data, "last_register"),
        )


@dataclass
class MirrorSchedule:
    """Next scheduled run of one mirror."""

    mirror_name: str = ""
    next_schedule: datetime = ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.mirror_name, "next_schedule": format_time(self.next_schedule)}

    @classmethod
    def from_dict(cls, data: dict) -> "MirrorSchedule":
        return cls(
            mirror_name=data.get("name", ""),
            next_schedule=_time_field(data, "next_schedule"),
        )


@dataclass
class MirrorSchedules:
    """A batch of mirror schedules sent by a worker."""

    schedules: list[MirrorSchedule] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"schedules": [s.to_dict() for s in self.schedules]}

    @classmethod
    def from_dict(cls, data: dict) -> "MirrorSchedules":
        return cls(schedules=[MirrorSchedule.from_dict(s) for s in data.get("schedules") or []])


@dataclass
class WorkerCmd:
    """A command sent from the manager to a worker."""

    cmd: CmdVerb = CmdVerb.START
    mirror_id: str = ""
    args: list[str] | None = None
    options: dict[str, bool] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cmd": str(self.cmd),
            "mirror_id": self.mirror_id,
            "args": self.args,
            "options": self.options,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerCmd":
        return cls(
            cmd=CmdVerb.parse(data.get("cmd") or ""),
            mirror_id=data.get("mirror_id", ""),
            args=data.get("args"),
            options=data.get("options"),
        )

    def __str__(self) -> str:
        if self.args:
            return f"{self.cmd} ({self.mirror_id}, [{' '.join(self.args)}])"
        return f"{self.cmd} ({self.mirror_id})"


@dataclass
class ClientCmd:
    """A command sent from a client to the manager."""

    cmd: CmdVerb = CmdVerb.START
    mirror_id: str = ""
    worker_id: str = ""
    args: list[str] | None = None
    options: dict[str, bool] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cmd": str(self.cmd),
            "mirror_id": self.mirror_id,
            "worker_id": self.worker_id,
            "args": self.args,
            "options": self.options,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClientCmd":
        return cls(
            cmd=CmdVerb.parse(data.get("cmd") or ""),
            mirror_id=data.get("mirror_id", ""),
            worker_id=data.get("worker_id", ""),
            args=data.get("args"),
            options=data.get("options"),
        )