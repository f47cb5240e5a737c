"""HTTP helpers and log parsing shared by manager, worker and client."""

from __future__ import annotations

import json
import re
import ssl
from typing import Any

import requests
from requests.adapters import HTTPAdapter

VERSION = "0.8.0"

HTTP_TIMEOUT = 5.0

RSYNC_EXIT_VALUES = {
    0: "Success",
    1: "Syntax or usage error",
    2: "Protocol incompatibility",
    3: "Errors selecting input/output files, dirs",
    4: "Requested action not supported: an attempt was made to manipulate 64-bit files on "
    "a platform that cannot support them; or an option was specified that is supported "
    "by the client and not by the server.",
    5: "Error starting client-server protocol",
    6: "Daemon unable to append to log-file",
    10: "Error in socket I/O",
    11: "Error in file I/O",
    12: "Error in rsync protocol data stream",
    13: "Errors with program diagnostics",
    14: "Error in IPC code",
    20: "Received SIGUSR1 or SIGINT",
    21: "Some error returned by waitpid()",
    22: "Error allocating core memory buffers",
    23: "Partial transfer due to error",
    24: "Partial transfer due to vanished source files",
    25: "The --max-delete limit stopped deletions",
    30: "Timeout in data send/receive",
    35: "Timeout waiting for daemon connection",
}

RSYNC_SIZE_PATTERN = re.compile(r"^Total file size: ([0-9\.]+[KMGTP]?) bytes", re.MULTILINE)


class HTTPStatusError(Exception):
    """Raised when an HTTP response does not carry status 200."""

    def __init__(self, response: requests.Response):
        super().__init__("HTTP status code is not 200")
        self.response = response
        self.status_code = response.status_code


def get_ssl_context(ca_file: str) -> ssl.SSLContext:
    """Build an SSL context that trusts the CA certificates in ca_file."""
    try:
        return ssl.create_default_context(cafile=ca_file)
    except ssl.SSLError as exc:
        raise ValueError("Failed to add CA to pool") from exc


def create_http_session(ca_file: str | None = None) -> requests.Session:
    """Create a session, trusting ca_file when one is given."""
    session = requests.Session()
    if ca_file:
        get_ssl_context(ca_file)
        session.verify = ca_file
    adapter = HTTPAdapter(pool_maxsize=20)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _to_jsonable(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(item) for item in obj]
    if isinstance(obj, dict):
        return {key: _to_jsonable(value) for key, value in obj.items()}
    return obj


def post_json(url: str, obj: Any, session: requests.Session | None = None) -> requests.Response:
    """POST obj as JSON to url and return the response."""
    session = session or create_http_session()
    body = json.dumps(_to_jsonable(obj)).encode("utf-8") + b"\n"
    return session.post(
        url,
        data=body,
        headers={"Content-Type": "application/json; charset=utf-8"},
        timeout=HTTP_TIMEOUT,
    )


def get_json(url: str, session: requests.Session | None = None) -> Any:
    """GET url and return its decoded JSON body; raise on non-200 status."""
    session = session or create_http_session()
    resp = session.get(url, timeout=HTTP_TIMEOUT)
    if resp.status_code != 200:
        raise HTTPStatusError(resp)
    return json.loads(resp.content)


def find_all_submatch_in_file(file_name: str, pattern: re.Pattern | str) -> list[tuple]:
    """Return every match in the file as (whole match, group 1, ...)."""
    if file_name == "/dev/null":
        raise ValueError("Invalid log file")
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    try:
        with open(file_name, encoding="utf-8", errors="replace") as fh:
            content = fh.read()
    except OSError:
        return []
    return [(m.group(0), *m.groups()) for m in regex.finditer(content)]


def extract_size_from_log(log_file: str, pattern: re.Pattern | str) -> str:
    """Return the first group of the last match in the log, or ''."""
    try:
        matches = find_all_submatch_in_file(log_file, pattern)
    except ValueError:
        return ""
    if not matches:
        return ""
    return matches[-1][1] or ""


def extract_size_from_rsync_log(log_file: str) -> str:
    """Extract the total file size reported in an rsync log."""
    return extract_size_from_log(log_file, RSYNC_SIZE_PATTERN)


def translate_rsync_error_code(exit_code: int | None) -> tuple[int, str]:
    """Map an rsync exit code to (code, message); message is '' when unknown."""
    if exit_code is None:
        return 0, ""
    text = RSYNC_EXIT_VALUES.get(exit_code)
    return exit_code, f"rsync error: {text}" if text is not None else ""