"""Control client that talks to the manager server."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
import tomllib
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any

import requests

from .cli import BUILDSTAMP, GITHASH, version_text
from .logger import init_logger
from .msg import ClientCmd, CmdVerb, MirrorStatus, WorkerStatus
from .status import SyncStatus
from .util import HTTPStatusError, create_http_session, get_json, post_json
from .web_status import WebMirrorStatus

logger = logging.getLogger("tunasynctl")

LIST_JOBS_PATH = "/jobs"
LIST_WORKERS_PATH = "/workers"
FLUSH_DISABLED_PATH = "/jobs/disabled"
CMD_PATH = "/cmd"

SYSTEM_CFG_FILE = "/etc/tunasync/ctl.conf"
USER_CFG_FILE = "$HOME/.config/tunasync/ctl.conf"

DEFAULT_MANAGER_ADDR = "localhost"
DEFAULT_MANAGER_PORT = 14242

_FETCH_ERRORS = (requests.RequestException, HTTPStatusError, ValueError)


class CtlError(Exception):
    """A failure reported to the user of the control client."""


@dataclass
class CtlConfig:
    """Where the manager is and how to trust it."""

    manager_addr: str = DEFAULT_MANAGER_ADDR
    manager_port: int = DEFAULT_MANAGER_PORT
    ca_cert: str = ""

    @property
    def base_url(self) -> str:
        scheme = "https" if self.ca_cert else "http"
        return f"{scheme}://{self.manager_addr}:{self.manager_port}"

    def update(self, data: Mapping) -> None:
        """Apply the keys of a decoded configuration file."""
        if "manager_addr" in data:
            if not isinstance(data["manager_addr"], str):
                raise CtlError("invalid value for 'manager_addr': expected str")
            self.manager_addr = data["manager_addr"]
        if "manager_port" in data:
            port = data["manager_port"]
            if isinstance(port, bool) or not isinstance(port, int):
                raise CtlError("invalid value for 'manager_port': expected integer")
            self.manager_port = port
        if "ca_cert" in data:
            if not isinstance(data["ca_cert"], str):
                raise CtlError("invalid value for 'ca_cert': expected str")
            self.ca_cert = data["ca_cert"]


def _load_file(cfg: CtlConfig, path: str) -> None:
    logger.info("Loading config: %s", path)
    try:
        with open(path, "rb") as fh:
            cfg.update(tomllib.load(fh))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise CtlError(str(exc)) from exc


def _as_port(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def load_ctl_config(
    paths: Iterable[str] = (),
    config_file: str | None = None,
    manager: str | None = None,
    port: Any = None,
    ca_cert: str | None = None,
) -> CtlConfig:
    """Build the client configuration from files and command-line overrides.

    Files in paths are read when they exist; config_file must exist.
    """
    cfg = CtlConfig()
    for path in paths:
        if os.path.exists(path):
            _load_file(cfg, path)
    if config_file:
        _load_file(cfg, config_file)
    if manager:
        cfg.manager_addr = manager
    if (number := _as_port(port)) > 0:
        cfg.manager_port = number
    if ca_cert:
        cfg.ca_cert = ca_cert
    return cfg


_ACTION = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD = re.compile(r"^\s*\.([A-Za-z_]\w*)\s*$")


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, SyncStatus):
        return str(value)
    if isinstance(value, datetime):
        text = f"{value:%Y-%m-%d %H:%M:%S}"
        if value.microsecond:
            text += "." + f"{value.microsecond:06d}".rstrip("0")
        if value.tzinfo is not None:
            text += f" {value:%z} {value.tzname()}"
        return text
    if value is None:
        return "<no value>"
    return str(value)


def _lookup(job: Any, name: str) -> Any:
    key = _snake(name)
    if isinstance(job, Mapping):
        if key in job:
            return job[key]
        if name in job:
            return job[name]
    elif hasattr(job, key) and not key.startswith("_"):
        return getattr(job, key)
    raise CtlError(f"Error printing out information: can't evaluate field {name}")


def render_format(template: str, job: Any) -> str:
    """Render a template where {{.Field}} stands for a field of job."""
    parts: list[str] = []
    pos = 0
    for match in _ACTION.finditer(template):
        field = _FIELD.match(match.group(1))
        if field is None:
            raise CtlError(
                f"Error parsing format template: unexpected action {match.group(0)!r}"
            )
        parts.append(template[pos:match.start()])
        parts.append(_text(_lookup(job, field.group(1))))
        pos = match.end()
    rest = template[pos:]
    if "{{" in rest:
        raise CtlError("Error parsing format template: unclosed action")
    parts.append(rest)
    return "".join(parts)


def _status_filter(statuses: str | Iterable[str]) -> set[SyncStatus]:
    names = statuses.split(",") if isinstance(statuses, str) else list(statuses)
    try:
        return {SyncStatus.from_json(name.strip()) for name in names}
    except ValueError as exc:
        raise CtlError(f"Error parsing status: {exc}") from exc


def _check_ok(resp: requests.Response) -> None:
    if resp.status_code != 200:
        body = resp.content.decode("utf-8", errors="replace")
        raise CtlError(
            f"Failed to correctly send command: HTTP status code is not 200: {body}"
        )


class ManagerClient:
    """Requests to the manager server on behalf of the command line."""

    def __init__(self, cfg: CtlConfig):
        self.cfg = cfg
        self.base_url = cfg.base_url
        logger.info("Use manager address: %s", self.base_url)
        try:
            self.session = create_http_session(cfg.ca_cert)
        except Exception as exc:
            raise CtlError(f"Error initializing HTTP client: {exc}") from exc

    def _send(self, method: str, url: str) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=5.0)
        except requests.RequestException as exc:
            raise CtlError(f"Failed to send request to manager: {exc}") from exc

    def _post(self, url: str, obj: Any, failure: str) -> requests.Response:
        try:
            return post_json(url, obj, self.session)
        except requests.RequestException as exc:
            raise CtlError(f"{failure}: {exc}") from exc

    def list_workers(self) -> list[WorkerStatus] | None:
        """Return the workers registered at the manager."""
        try:
            data = get_json(self.base_url + LIST_WORKERS_PATH, self.session)
            if data is None:
                return None
            return [WorkerStatus.from_dict(w) for w in data]
        except (*_FETCH_ERRORS, TypeError, AttributeError) as exc:
            raise CtlError(
                f"Failed to correctly get information from manager server: {exc}"
            ) from exc

    def list_jobs(
        self,
        worker_ids: Sequence[str] = (),
        all_jobs: bool = False,
        statuses: str | Iterable[str] | None = None,
    ) -> list[WebMirrorStatus] | list[MirrorStatus] | None:
        """List the jobs of all workers, or of the workers named."""
        if all_jobs:
            try:
                data = get_json(self.base_url + LIST_JOBS_PATH, self.session)
                jobs = None if data is None else [WebMirrorStatus.from_dict(j) for j in data]
            except (*_FETCH_ERRORS, TypeError, AttributeError) as exc:
                raise CtlError(
                    "Failed to correctly get information of all jobs "
                    f"from manager server: {exc}"
                ) from exc
            if statuses:
                wanted = _status_filter(statuses)
                return [job for job in jobs or [] if job.status in wanted]
            return jobs

        if not worker_ids:
            raise CtlError(
                'Usage Error: jobs command need at least one arguments or "--all" flag.'
            )
        with ThreadPoolExecutor(max_workers=len(worker_ids)) as pool:
            results = list(pool.map(self._jobs_of_worker, worker_ids))
        jobs: list[MirrorStatus] = []
        for result in results:
            if result is None:
                raise CtlError(
                    "Failed to correctly get information of jobs from at least one manager"
                )
            jobs.extend(result)
        return jobs

    def _jobs_of_worker(self, worker_id: str) -> list[MirrorStatus] | None:
        try:
            data = get_json(f"{self.base_url}/workers/{worker_id}/jobs", self.session)
            return None if data is None else [MirrorStatus.from_dict(m) for m in data]
        except (*_FETCH_ERRORS, TypeError, AttributeError) as exc:
            logger.info("Failed to correctly get jobs for worker %s: %s", worker_id, exc)
            return None

    def flush_disabled_jobs(self) -> None:
        """Ask the manager to drop disabled jobs."""
        _check_ok(self._send("DELETE", self.base_url + FLUSH_DISABLED_PATH))

    def remove_worker(self, worker_id: str) -> None:
        """Remove a worker from the manager."""
        if not worker_id:
            raise CtlError("Please specify the <worker-id>")
        resp = self._send("DELETE", f"{self.base_url}/workers/{worker_id}")
        _check_ok(resp)
        try:
            res = resp.json()
        except ValueError:
            res = {}
        if not isinstance(res, dict) or res.get("message") != "deleted":
            raise CtlError("Failed to remove the worker")

    def set_size(self, worker_id: str, mirror_id: str, size: str) -> MirrorStatus:
        """Set the size shown for a mirror and return its new status."""
        url = f"{self.base_url}/workers/{worker_id}/jobs/{mirror_id}/size"
        resp = self._post(
            url, {"name": mirror_id, "size": size}, "Failed to send request to manager"
        )
        body = resp.content.decode("utf-8", errors="replace")
        if resp.status_code != 200:
            raise CtlError(f"Manager failed to update mirror size: {body}")
        try:
            status = MirrorStatus.from_dict(json.loads(body))
        except (ValueError, TypeError, AttributeError):
            status = MirrorStatus()
        if status.size != size:
            raise CtlError(
                f"Mirror size error, expecting {size}, manager returned {status.size}"
            )
        return status

    def send_job_cmd(
        self,
        cmd: CmdVerb,
        mirror_id: str,
        worker_id: str = "",
        args: Sequence[str] | None = None,
        force: bool = False,
    ) -> None:
        """Send a command about one mirror job."""
        client_cmd = ClientCmd(
            cmd=cmd,
            mirror_id=mirror_id,
            worker_id=worker_id,
            args=list(args) if args else None,
            options={"force": True} if force else {},
        )
        resp = self._post(
            self.base_url + CMD_PATH, client_cmd, "Failed to correctly send command"
        )
        _check_ok(resp)

    def send_worker_cmd(self, cmd: CmdVerb, worker_id: str) -> None:
        """Send a command addressed to a whole worker."""
        if not worker_id:
            raise CtlError("Please specify the worker with -w <worker-id>")
        client_cmd = ClientCmd(cmd=cmd, worker_id=worker_id)
        resp = self._post(
            self.base_url + CMD_PATH, client_cmd, "Failed to correctly send command"
        )
        _check_ok(resp)


def _dump(items: list | None) -> str:
    data = None if items is None else [item.to_dict() for item in items]
    return json.dumps(data, indent=2)


def _run_list(client: ManagerClient, args: argparse.Namespace) -> None:
    jobs = client.list_jobs(args.workers, args.all, args.status or None)
    if args.format:
        render_format(args.format, {})  if False else None
        for job in jobs or []:
            print(render_format(args.format, job))
    else:
        print(_dump(jobs))


def _run_workers(client: ManagerClient, args: argparse.Namespace) -> None:
    print(_dump(client.list_workers()))


def _run_flush(client: ManagerClient, args: argparse.Namespace) -> None:
    client.flush_disabled_jobs()
    print("Successfully flushed disabled jobs")


def _run_rm_worker(client: ManagerClient, args: argparse.Namespace) -> None:
    if args.args:
        raise CtlError("Usage: tunasynctl -w <worker-id>")
    client.remove_worker(args.worker)
    print("Successfully removed the worker")


def _run_set_size(client: ManagerClient, args: argparse.Namespace) -> None:
    if len(args.args) != 2:
        raise CtlError("Usage: tunasynctl set-size -w <worker-id> <mirror> <size>")
    mirror_id, size = args.args
    client.set_size(args.worker, mirror_id, size)
    print(f"Successfully updated mirror size to {size}")


def _run_job_cmd(cmd: CmdVerb, client: ManagerClient, args: argparse.Namespace) -> None:
    if len(args.args) not in (1, 2):
        raise CtlError(
            "Usage Error: cmd command receive just 1 required positional argument "
            "MIRROR and 1 optional argument WORKER"
        )
    mirror_id = args.args[0]
    cmd_args = [a.strip() for a in args.args[1].split(",")] if len(args.args) == 2 else None
    client.send_job_cmd(cmd, mirror_id, args.worker, cmd_args, getattr(args, "force", False))
    print("Successfully send the command")


def _run_worker_cmd(cmd: CmdVerb, client: ManagerClient, args: argparse.Namespace) -> None:
    client.send_worker_cmd(cmd, args.worker)
    print("Successfully send the command")


def _common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config", default="", metavar="FILE",
        help="Read configuration from FILE rather than "
        "~/.config/tunasync/ctl.conf and /etc/tunasync/ctl.conf",
    )
    parser.add_argument("-m", "--manager", default="", help="The manager server address")
    parser.add_argument("-p", "--port", default="", help="The manager server port")
    parser.add_argument("--ca-cert", default="", metavar="CERT",
                        help="Trust root CA cert file CERT")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbosely logging")
    parser.add_argument("--debug", action="store_true", help="Enable debugging logging")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tunasynctl", description="control client for tunasync manager"
    )
    parser.add_argument("--version", action="store_true", help="print the version")
    commands = parser.add_subparsers(dest="command")

    sub = commands.add_parser("list", help="List jobs of workers")
    _common(sub)
    sub.add_argument("-a", "--all", action="store_true", help="List all jobs of all workers")
    sub.add_argument("-s", "--status", default="",
                     help="Filter output based on status provided")
    sub.add_argument("-f", "--format", default="",
                     help="Pretty-print jobs using a template")
    sub.add_argument("workers", nargs="*")
    sub.set_defaults(func=_run_list)

    sub = commands.add_parser("flush", help="Flush disabled jobs")
    _common(sub)
    sub.set_defaults(func=_run_flush)

    sub = commands.add_parser("workers", help="List workers")
    _common(sub)
    sub.set_defaults(func=_run_workers)

    sub = commands.add_parser("rm-worker", help="Remove a worker")
    _common(sub)
    sub.add_argument("-w", "--worker", default="",
                     help="worker-id of the worker to be removed")
    sub.add_argument("args", nargs="*")
    sub.set_defaults(func=_run_rm_worker)

    sub = commands.add_parser("set-size", help="Set mirror size")
    _common(sub)
    sub.add_argument("-w", "--worker", default="", help="specify worker-id of the mirror job")
    sub.add_argument("args", nargs="*")
    sub.set_defaults(func=_run_set_size)

    job_commands = [
        ("start", "Start a job", CmdVerb.START),
        ("stop", "Stop a job", CmdVerb.STOP),
        ("disable", "Disable a job", CmdVerb.DISABLE),
        ("restart", "Restart a job", CmdVerb.RESTART),
        ("ping", None, CmdVerb.PING),
    ]
    for name, text, verb in job_commands:
        sub = commands.add_parser(name, help=text)
        _common(sub)
        sub.add_argument("-w", "--worker", default="", metavar="WORKER",
                         help="Send the command to WORKER")
        if verb is CmdVerb.START:
            sub.add_argument("-f", "--force", action="store_true",
                             help="Override the concurrent limit")
        sub.add_argument("args", nargs="*")
        sub.set_defaults(func=partial(_run_job_cmd, verb))

    sub = commands.add_parser("reload", help="Tell worker to reload configurations")
    _common(sub)
    sub.add_argument("-w", "--worker", default="", metavar="WORKER",
                     help="Send the command to WORKER")
    sub.set_defaults(func=partial(_run_worker_cmd, CmdVerb.RELOAD))
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Parse the command line, run the chosen command and return the exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.version:
        sys.stdout.write(version_text(BUILDSTAMP, GITHASH))
        return 0
    if not args.command:
        parser.print_help()
        return 0
    init_logger(args.verbose, args.debug, False)
    user_cfg = os.path.expandvars(USER_CFG_FILE)
    logger.debug("user config file: %s", user_cfg)
    try:
        cfg = load_ctl_config(
            [SYSTEM_CFG_FILE, user_cfg], args.config, args.manager, args.port, args.ca_cert
        )
        client = ManagerClient(cfg)
        args.func(client, args)
    except CtlError as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())