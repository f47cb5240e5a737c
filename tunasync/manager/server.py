"""HTTP server through which workers and clients talk to the manager."""

from __future__ import annotations

import functools
import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable

from flask import Flask, Response, request

from ..logger import NOTICE
from ..msg import ClientCmd, CmdVerb, MirrorSchedules, MirrorStatus, WorkerCmd, WorkerStatus
from ..status import SyncStatus
from ..util import create_http_session, post_json
from ..web_status import build_web_mirror_status
from .config import Config
from .db import make_db_adapter

logger = logging.getLogger("tunasync")

ERROR_KEY = "error"
INFO_KEY = "message"

_manager: "Manager | None" = None

_PARSE_ERRORS = (ValueError, TypeError, AttributeError)


class _BadRequest(Exception):
    pass


def _now() -> datetime:
    return datetime.now().astimezone()


def _json(obj: Any, code: int = 200) -> Response:
    return Response(
        json.dumps(obj),
        status=code,
        content_type="application/json; charset=utf-8",
    )


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise _BadRequest("invalid JSON body")
    return data


def _error(code: int, message: str) -> Response:
    return _json({ERROR_KEY: message}, code)


class Manager:
    """The manager: keeps track of workers and the status of their mirrors."""

    def __init__(self, cfg: Config, adapter: Any = None):
        self.cfg = cfg
        self.adapter = adapter
        self.session = None
        self._lock = threading.RLock()

        if cfg.files.ca_cert:
            try:
                self.session = create_http_session(cfg.files.ca_cert)
            except Exception as exc:
                logger.error("Error initializing HTTP client: %s", exc)
                raise
        if adapter is None and cfg.files.db_file:
            try:
                self.adapter = make_db_adapter(cfg.files.db_type, cfg.files.db_file)
            except Exception as exc:
                logger.error("Error initializing DB adapter: %s", exc)
                raise

        self.app = Flask(__name__)
        self.app.debug = cfg.debug
        self._add_routes()

    def set_db_adapter(self, adapter: Any) -> None:
        """Replace the storage used by the manager."""
        self.adapter = adapter

    def run(self) -> None:
        """Serve HTTP requests forever."""
        server = self.cfg.server
        ssl_context = None
        if server.ssl_cert or server.ssl_key:
            ssl_context = (server.ssl_cert, server.ssl_key)
        self.app.run(
            host=server.addr,
            port=server.port,
            ssl_context=ssl_context,
            threaded=True,
            use_reloader=False,
        )

    def _add_routes(self) -> None:
        rule = self.app.add_url_rule
        rule("/ping", "ping", lambda: _json({INFO_KEY: "pong"}), methods=["GET"])
        rule("/jobs", "list_all_jobs", self._list_all_jobs, methods=["GET"])
        rule("/jobs/disabled", "flush_disabled", self._flush_disabled_jobs, methods=["DELETE"])
        rule("/workers", "list_workers", self._list_workers, methods=["GET"])
        rule("/workers", "register_worker", self._register_worker, methods=["POST"])
        rule(
            "/workers/<worker_id>",
            "delete_worker",
            self._validated(self._delete_worker),
            methods=["DELETE"],
        )
        rule(
            "/workers/<worker_id>/jobs",
            "list_jobs_of_worker",
            self._validated(self._list_jobs_of_worker),
            methods=["GET"],
        )
        rule(
            "/workers/<worker_id>/jobs/<job>",
            "update_job_of_worker",
            self._validated(self._update_job_of_worker),
            methods=["POST"],
        )
        rule(
            "/workers/<worker_id>/jobs/<job>/size",
            "update_mirror_size",
            self._validated(self._update_mirror_size),
            methods=["POST"],
        )
        rule(
            "/workers/<worker_id>/schedules",
            "update_schedules",
            self._validated(self._update_schedules_of_worker),
            methods=["POST"],
        )
        rule("/cmd", "client_cmd", self._handle_client_cmd, methods=["POST"])

    def _validated(self, handler: Callable[..., Response]) -> Callable[..., Response]:
        @functools.wraps(handler)
        def wrapper(worker_id: str, **kwargs: Any) -> Response:
            try:
                with self._lock:
                    self.adapter.get_worker(worker_id)
            except Exception:
                return _error(400, f"invalid workerID {worker_id}")
            return handler(worker_id, **kwargs)

        return wrapper

    def _failure(self, code: int, message: str) -> Response:
        logger.error('in request "%s %s": %s', request.method, request.path, message)
        return _error(code, message)

    def _refresh(self, worker_id: str) -> None:
        try:
            self.adapter.refresh_worker(worker_id)
        except Exception as exc:
            logger.error("failed to refresh worker %s: %s", worker_id, exc)

    def _list_all_jobs(self) -> Response:
        try:
            with self._lock:
                statuses = self.adapter.list_all_mirror_status()
        except Exception as exc:
            return self._failure(500, f"failed to list all mirror status: {exc}")
        return _json([build_web_mirror_status(m).to_dict() for m in statuses])

    def _flush_disabled_jobs(self) -> Response:
        try:
            with self._lock:
                self.adapter.flush_disabled_jobs()
        except Exception as exc:
            return self._failure(500, f"failed to flush disabled jobs: {exc}")
        return _json({INFO_KEY: "flushed"})

    def _delete_worker(self, worker_id: str) -> Response:
        try:
            with self._lock:
                self.adapter.delete_worker(worker_id)
        except Exception as exc:
            return self._failure(500, f"failed to delete worker: {exc}")
        logger.log(NOTICE, "Worker <%s> deleted", worker_id)
        return _json({INFO_KEY: "deleted"})

    def _list_workers(self) -> Response:
        try:
            with self._lock:
                workers = self.adapter.list_workers()
        except Exception as exc:
            return self._failure(500, f"failed to list workers: {exc}")
        infos = [
            WorkerStatus(
                id=w.id,
                url=w.url,
                token="REDACTED",
                last_online=w.last_online,
                last_register=w.last_register,
            ).to_dict()
            for w in workers
        ]
        return _json(infos or None)

    def _register_worker(self) -> Response:
        try:
            worker = WorkerStatus.from_dict(_body())
        except (_BadRequest, *_PARSE_ERRORS) as exc:
            return self._failure(400, str(exc))
        worker.last_online = _now()
        worker.last_register = _now()
        try:
            with self._lock:
                new_worker = self.adapter.create_worker(worker)
        except Exception as exc:
            return self._failure(500, f"failed to register worker: {exc}")
        logger.log(NOTICE, "Worker <%s> registered", worker.id)
        return _json(new_worker.to_dict())

    def _list_jobs_of_worker(self, worker_id: str) -> Response:
        try:
            with self._lock:
                statuses = self.adapter.list_mirror_status(worker_id)
        except Exception as exc:
            return self._failure(500, f"failed to list jobs of worker {worker_id}: {exc}")
        if statuses is None:
            return _json(None)
        return _json([m.to_dict() for m in statuses])

    def _update_schedules_of_worker(self, worker_id: str) -> Response:
        try:
            schedules = MirrorSchedules.from_dict(_body())
        except (_BadRequest, *_PARSE_ERRORS) as exc:
            return self._failure(400, str(exc))

        empty_name = False
        for schedule in schedules.schedules:
            name = schedule.mirror_name
            if not name:
                empty_name = True
                continue
            with self._lock:
                self._refresh(worker_id)
                try:
                    current = self.adapter.get_mirror_status(worker_id, name)
                except Exception as exc:
                    logger.error("failed to get job %s of worker %s: %s", name, worker_id, exc)
                    continue
            if current.scheduled == schedule.next_schedule:
                continue
            current.scheduled = schedule.next_schedule
            try:
                with self._lock:
                    self.adapter.update_mirror_status(worker_id, name, current)
            except Exception as exc:
                return self._failure(
                    500, f"failed to update job {name} of worker {worker_id}: {exc}"
                )
        if empty_name:
            return _error(400, "Mirror Name should not be empty")
        return _json({})

    def _update_job_of_worker(self, worker_id: str, job: str) -> Response:
        try:
            status = MirrorStatus.from_dict(_body())
        except (_BadRequest, *_PARSE_ERRORS) as exc:
            return self._failure(400, str(exc))
        name = status.name
        if not name:
            return _error(400, "Mirror Name should not be empty")

        with self._lock:
            self._refresh(worker_id)
            try:
                current = self.adapter.get_mirror_status(worker_id, name)
            except Exception:
                current = MirrorStatus()

        now = _now()
        if status.status == SyncStatus.PRE_SYNCING and current.status != SyncStatus.PRE_SYNCING:
            status.last_started = now
        else:
            status.last_started = current.last_started
        # only a successful sync moves last_update forward
        if status.status == SyncStatus.SUCCESS:
            status.last_update = now
        else:
            status.last_update = current.last_update
        if status.status in (SyncStatus.SUCCESS, SyncStatus.FAILED):
            status.last_ended = now
        else:
            status.last_ended = current.last_ended

        if current.size and current.size != "unknown":
            if not status.size or status.size == "unknown":
                status.size = current.size

        if status.status == SyncStatus.SYNCING:
            logger.log(NOTICE, "Job [%s] @<%s> starts syncing", status.name, status.worker)
        else:
            logger.log(NOTICE, "Job [%s] @<%s> %s", status.name, status.worker, status.status)

        try:
            with self._lock:
                new_status = self.adapter.update_mirror_status(worker_id, name, status)
        except Exception as exc:
            return self._failure(500, f"failed to update job {name} of worker {worker_id}: {exc}")
        return _json(new_status.to_dict())

    def _update_mirror_size(self, worker_id: str, job: str) -> Response:
        try:
            data = _body()
            name = str(data.get("name", ""))
            size = str(data.get("size", ""))
        except _BadRequest as exc:
            return self._failure(400, str(exc))

        with self._lock:
            self._refresh(worker_id)
            try:
                status = self.adapter.get_mirror_status(worker_id, name)
            except Exception as exc:
                logger.error("Failed to get status of mirror %s @<%s>: %s", name, worker_id, exc)
                return _error(500, str(exc))

        status.size = size
        logger.log(NOTICE, "Mirror size of [%s] @<%s>: %s", status.name, status.worker, status.size)

        try:
            with self._lock:
                new_status = self.adapter.update_mirror_status(worker_id, name, status)
        except Exception as exc:
            return self._failure(500, f"failed to update job {name} of worker {worker_id}: {exc}")
        return _json(new_status.to_dict())

    def _handle_client_cmd(self) -> Response:
        try:
            client_cmd = ClientCmd.from_dict(_body())
        except (_BadRequest, *_PARSE_ERRORS) as exc:
            return self._failure(400, str(exc))
        worker_id = client_cmd.worker_id
        if not worker_id:
            logger.error('handleClientCmd case workerID == " " not implemented yet')
            return Response(status=500)

        try:
            with self._lock:
                worker = self.adapter.get_worker(worker_id)
        except Exception:
            return _error(400, f"worker {worker_id} is not registered yet")
        worker_url = worker.url
        worker_cmd = WorkerCmd(
            cmd=client_cmd.cmd,
            mirror_id=client_cmd.mirror_id,
            args=client_cmd.args,
            options=client_cmd.options,
        )

        # the status changes even if the worker fails to carry out the command
        with self._lock:
            try:
                current = self.adapter.get_mirror_status(worker_id, client_cmd.mirror_id)
            except Exception:
                current = MirrorStatus()
        new_state = {
            CmdVerb.DISABLE: SyncStatus.DISABLED,
            CmdVerb.STOP: SyncStatus.PAUSED,
        }.get(client_cmd.cmd)
        if new_state is not None:
            current.status = new_state
            try:
                with self._lock:
                    self.adapter.update_mirror_status(worker_id, client_cmd.mirror_id, current)
            except Exception as exc:
                logger.error("failed to update status of %s: %s", client_cmd.mirror_id, exc)

        logger.log(
            NOTICE,
            "Posting command '%s %s' to <%s>",
            client_cmd.cmd,
            client_cmd.mirror_id,
            worker_id,
        )
        try:
            post_json(worker_url, worker_cmd, self.session)
        except Exception as exc:
            return self._failure(
                500, f"post command to worker {worker_id}({worker_url}) fail: {exc}"
            )
        return _json({INFO_KEY: "successfully send command to worker " + worker_id})


def get_tunasync_manager(cfg: Config) -> Manager:
    """Return the process-wide manager, creating it from cfg on first use."""
    global _manager
    if _manager is None:
        _manager = Manager(cfg)
    return _manager