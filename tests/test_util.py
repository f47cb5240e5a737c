import json

import pytest
import responses

from tunasync.msg import CmdVerb, WorkerCmd
from tunasync.util import (
    HTTPStatusError,
    create_http_session,
    extract_size_from_log,
    extract_size_from_rsync_log,
    find_all_submatch_in_file,
    get_json,
    get_ssl_context,
    post_json,
    translate_rsync_error_code,
)

REAL_LOG_CONTENT = """
Number of files: 998,470 (reg: 925,484, dir: 58,892, link: 14,094)
Number of created files: 1,049 (reg: 1,049)
Number of deleted files: 1,277 (reg: 1,277)
Number of regular files transferred: 5,694
Total file size: 1.33T bytes
Total transferred file size: 2.86G bytes
Literal data: 780.62M bytes
Matched data: 2.08G bytes
File list size: 37.55M
File list generation time: 7.845 seconds
File list transfer time: 0.000 seconds
Total bytes sent: 7.55M
Total bytes received: 823.25M

sent 7.55M bytes  received 823.25M bytes  5.11M bytes/sec
total size is 1.33T  speedup is 1,604.11
"""


def test_extract_size_from_rsync_log(tmp_path):
    log_file = tmp_path / "rs.log"
    log_file.write_text(REAL_LOG_CONTENT)
    assert extract_size_from_rsync_log(str(log_file)) == "1.33T"


def test_extract_size_uses_last_match(tmp_path):
    log_file = tmp_path / "size.log"
    log_file.write_text("size=1G\nsize=2G\n")
    assert extract_size_from_log(str(log_file), r"size=(\w+)") == "2G"


def test_extract_size_missing_file(tmp_path):
    assert extract_size_from_rsync_log(str(tmp_path / "missing.log")) == ""
    assert extract_size_from_rsync_log("/dev/null") == ""


def test_find_all_submatch_dev_null():
    with pytest.raises(ValueError, match="Invalid log file"):
        find_all_submatch_in_file("/dev/null", r"x")


def test_find_all_submatch_groups(tmp_path):
    log_file = tmp_path / "a.log"
    log_file.write_text("err 1\nok\nerr 2\n")
    assert find_all_submatch_in_file(str(log_file), r"err (\d)") == [("err 1", "1"), ("err 2", "2")]
    assert find_all_submatch_in_file(str(tmp_path / "none.log"), r"err") == []


def test_translate_rsync_error_code():
    assert translate_rsync_error_code(23) == (23, "rsync error: Partial transfer due to error")
    assert translate_rsync_error_code(99) == (99, "")
    assert translate_rsync_error_code(None) == (0, "")


def test_ssl_context_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        get_ssl_context(str(tmp_path / "nope.crt"))


def test_ssl_context_invalid_ca(tmp_path):
    ca = tmp_path / "bad.crt"
    ca.write_text("not a certificate\n")
    with pytest.raises(ValueError, match="Failed to add CA to pool"):
        get_ssl_context(str(ca))
    with pytest.raises(ValueError):
        create_http_session(str(ca))


def test_post_json_sends_body():
    url = "http://localhost:14242/cmd"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, url, json={"message": "ok"}, status=200)
        resp = post_json(url, WorkerCmd(CmdVerb.STOP, "debian"))
        assert resp.status_code == 200
        request = rsps.calls[0].request
        assert request.headers["Content-Type"] == "application/json; charset=utf-8"
        assert json.loads(request.body)["cmd"] == "stop"
        assert json.loads(request.body)["mirror_id"] == "debian"


def test_get_json_success():
    url = "http://localhost:14242/workers"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, url, json=[{"id": "w1"}], status=200)
        assert get_json(url) == [{"id": "w1"}]


def test_get_json_non_200():
    url = "http://localhost:14242/jobs"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, url, json={"error": "boom"}, status=500)
        with pytest.raises(HTTPStatusError, match="HTTP status code is not 200") as info:
            get_json(url, create_http_session())
        assert info.value.status_code == 500