import json
from datetime import datetime, timedelta, timezone

import pytest

from tunasync.msg import MirrorStatus
from tunasync.status import SyncStatus
from tunasync.web_status import (
    WebMirrorStatus,
    build_web_mirror_status,
    format_text_time,
    parse_text_time,
)

TOKYO = timezone(timedelta(hours=9))


def _time_pairs(m):
    return [
        (m.last_update, m.last_update_ts),
        (m.last_started, m.last_started_ts),
        (m.last_ended, m.last_ended_ts),
        (m.scheduled, m.scheduled_ts),
    ]


def test_status_json_round_trip():
    t = datetime(2016, 4, 16, 23, 8, 10, tzinfo=TOKYO)
    m = WebMirrorStatus(
        name="tunalinux",
        status=SyncStatus.SUCCESS,
        last_update=t,
        last_update_ts=t,
        last_started=t,
        last_started_ts=t,
        last_ended=t,
        last_ended_ts=t,
        scheduled=t,
        scheduled_ts=t,
        size="5GB",
        upstream="rsync://mirrors.example.com/tunalinux/",
    )
    b = json.dumps(m.to_dict())
    m2 = WebMirrorStatus.from_dict(json.loads(b))
    assert m2.name == m.name
    assert m2.status == m.status
    for text, stamp in _time_pairs(m2):
        assert text == t
        assert stamp == t
        assert text.timestamp() == t.timestamp()
    assert m2.size == m.size
    assert m2.upstream == m.upstream


def test_text_time_format_pinned():
    t = datetime(2016, 4, 16, 23, 8, 10, tzinfo=TOKYO)
    assert format_text_time(t) == "2016-04-16 23:08:10 +0900"
    d = WebMirrorStatus(last_update_ts=t).to_dict()
    assert d["last_update_ts"] == int(t.timestamp())


def test_text_time_round_trip_keeps_offset():
    t = datetime(2020, 3, 4, 5, 6, 7, tzinfo=timezone(timedelta(hours=-3, minutes=-30)))
    parsed = parse_text_time(format_text_time(t))
    assert parsed == t
    assert parsed.utcoffset() == t.utcoffset()


def test_parse_text_time_invalid():
    with pytest.raises(ValueError):
        parse_text_time("2016-04-16T23:08:10Z")


def test_build_web_mirror_status():
    now = datetime.now(timezone.utc)
    m = MirrorStatus(
        name="arch-sync3",
        worker="testWorker",
        is_master=True,
        status=SyncStatus.FAILED,
        last_update=now - timedelta(minutes=30),
        last_started=now - timedelta(minutes=1),
        last_ended=now,
        scheduled=now + timedelta(minutes=5),
        upstream="mirrors.example.com",
        size="4GB",
    )
    m2 = build_web_mirror_status(m)
    assert m2.name == m.name
    assert m2.status == m.status
    assert m2.is_master is True
    expected = [m.last_update, m.last_started, m.last_ended, m.scheduled]
    for (text, stamp), want in zip(_time_pairs(m2), expected):
        assert text == want
        assert stamp == want
    assert m2.size == m.size
    assert m2.upstream == m.upstream