"""Mirror status as shown on the public status page."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from .msg import ZERO_TIME, MirrorStatus
from .status import SyncStatus

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_TEXT_TIME = re.compile(r"^(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2}) ([+-])(\d{2})(\d{2})$")


def format_text_time(t: datetime) -> str:
    """Format as 'YYYY-MM-DD HH:MM:SS +ZZZZ'."""
    if t.tzinfo is None:
        t = t.astimezone()
    seconds = int(t.utcoffset().total_seconds())
    sign = "-" if seconds < 0 else "+"
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return (
        f"{t.year:04d}-{t.month:02d}-{t.day:02d} "
        f"{t.hour:02d}:{t.minute:02d}:{t.second:02d} {sign}{hours:02d}{minutes:02d}"
    )


def parse_text_time(s: str) -> datetime:
    """Parse a time written by format_text_time."""
    match = _TEXT_TIME.match(s) if isinstance(s, str) else None
    if match is None:
        raise ValueError(f"invalid time value: {s!r}")
    year, month, day, hour, minute, second, sign, oh, om = match.groups()
    offset = timedelta(hours=int(oh), minutes=int(om))
    tz = timezone.utc if not offset else timezone(-offset if sign == "-" else offset)
    return datetime(int(year), int(month), int(day), int(hour), int(minute), int(second), tzinfo=tz)


def _to_unix(t: datetime) -> int:
    if t.tzinfo is None:
        t = t.astimezone()
    return (t - _EPOCH) // timedelta(seconds=1)


def _from_unix(value: Any) -> datetime:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"invalid timestamp: {value!r}")
    return _EPOCH + timedelta(seconds=value)


def _text_field(data: dict, key: str) -> datetime:
    value = data.get(key)
    return ZERO_TIME if value is None else parse_text_time(value)


def _stamp_field(data: dict, key: str) -> datetime:
    value = data.get(key)
    return ZERO_TIME if value is None else _from_unix(value)


@dataclass
class WebMirrorStatus:
    """Mirror status with both text and Unix-timestamp times."""

    name: str = ""
    is_master: bool = False
    status: SyncStatus = SyncStatus.NONE
    last_update: datetime = ZERO_TIME
    last_update_ts: datetime = ZERO_TIME
    last_started: datetime = ZERO_TIME
    last_started_ts: datetime = ZERO_TIME
    last_ended: datetime = ZERO_TIME
    last_ended_ts: datetime = ZERO_TIME
    scheduled: datetime = ZERO_TIME
    scheduled_ts: datetime = ZERO_TIME
    upstream: str = ""
    size: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "is_master": self.is_master,
            "status": self.status.to_json(),
            "last_update": format_text_time(self.last_update),
            "last_update_ts": _to_unix(self.last_update_ts),
            "last_started": format_text_time(self.last_started),
            "last_started_ts": _to_unix(self.last_started_ts),
            "last_ended": format_text_time(self.last_ended),
            "last_ended_ts": _to_unix(self.last_ended_ts),
            "next_schedule": format_text_time(self.scheduled),
            "next_schedule_ts": _to_unix(self.scheduled_ts),
            "upstream": self.upstream,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WebMirrorStatus":
        return cls(
            name=data.get("name", ""),
            is_master=bool(data.get("is_master", False)),
            status=SyncStatus.NONE if "status" not in data else SyncStatus.from_json(data["status"]),
            last_update=_text_field(data, "last_update"),
            last_update_ts=_stamp_field(data, "last_update_ts"),
            last_started=_text_field(data, "last_started"),
            last_started_ts=_stamp_field(data, "last_started_ts"),
            last_ended=_text_field(data, "last_ended"),
            last_ended_ts=_stamp_field(data, "last_ended_ts"),
            scheduled=_text_field(data, "next_schedule"),
            scheduled_ts=_stamp_field(data, "next_schedule_ts"),
            upstream=data.get("upstream", ""),
            size=data.get("size", ""),
        )


def build_web_mirror_status(m: MirrorStatus) -> WebMirrorStatus:
    """Build the web view of a mirror status."""
    return WebMirrorStatus(
        name=m.name,
        is_master=m.is_master,
        status=m.status,
        last_update=m.last_update,
        last_update_ts=m.last_update,
        last_started=m.last_started,
        last_started_ts=m.last_started,
        last_ended=m.last_ended,
        last_ended_ts=m.last_ended,
        scheduled=m.scheduled,
        scheduled_ts=m.scheduled,
        upstream=m.upstream,
        size=m.size,
    )