# tunasync

tunasync keeps track of mirror synchronisation jobs. It has two commands:

- `tunasync manager` runs the manager, an HTTP server that workers
  register with and report the status of their mirror jobs to. It keeps
  that state in a small key-value database and serves it as JSON.
- `tunasynctl` is the control client. It lists workers and jobs, changes
  mirror sizes and sends commands (start, stop, disable, restart, reload,
  ping) to workers through the manager.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Running the manager

```
tunasync manager --config /etc/tunasync/manager.conf
```

The configuration file is TOML:

```toml
debug = false

[server]
addr = "127.0.0.1"
port = 14242
ssl_cert = ""
ssl_key = ""

[files]
status_file = "/var/lib/tunasync/tunasync.json"
db_type = "bolt"
db_file = "/var/lib/tunasync/tunasync.db"
# CA certificate used when connecting to workers
ca_cert = ""
```

The values above are the defaults. Options given on the command line
override the file: `--addr`, `--port`, `--cert` and `--key` (both needed
to enable TLS), `--db-file` and `--db-type`. Logging is controlled by
`--verbose`, `--debug` and `--with-systemd`.

`db_type` selects the storage: `bolt`, `badger` and `leveldb` keep the data
in a local file or directory named by `db_file`; `redis` treats `db_file`
as a Redis URL such as `redis://localhost:6379/0`.

### HTTP interface

| Method | Path                              | Purpose                              |
|--------|-----------------------------------|--------------------------------------|
| GET    | `/ping`                           | liveness check                       |
| GET    | `/jobs`                           | status of every job, for web pages   |
| DELETE | `/jobs/disabled`                  | drop disabled jobs                   |
| GET    | `/workers`                        | registered workers (tokens redacted) |
| POST   | `/workers`                        | register a worker                    |
| DELETE | `/workers/<id>`                   | remove a worker                      |
| GET    | `/workers/<id>/jobs`              | jobs of one worker                   |
| POST   | `/workers/<id>/jobs/<job>`        | report a job status                  |
| POST   | `/workers/<id>/jobs/<job>/size`   | set the size of a mirror             |
| POST   | `/workers/<id>/schedules`         | report next scheduled runs           |
| POST   | `/cmd`                            | forward a command to a worker        |

Errors come back as `{"error": "..."}`, other replies carry
`{"message": "..."}` or the requested objects.

## Using the control client

`tunasynctl` reads `/etc/tunasync/ctl.conf`, then
`~/.config/tunasync/ctl.conf`, then any file given with `--config`:

```toml
manager_addr = "localhost"
manager_port = 14242
ca_cert = ""
```

When `ca_cert` is set the manager is reached over HTTPS. `--manager`,
`--port` and `--ca-cert` override the files.

```
tunasynctl workers
tunasynctl list --all
tunasynctl list --all --status failed,syncing
tunasynctl list worker1 worker2
tunasynctl list --all --format "{{.Name}} {{.Status}}"
tunasynctl start -w worker1 archlinux
tunasynctl start -w worker1 --force archlinux
tunasynctl stop -w worker1 archlinux
tunasynctl disable -w worker1 archlinux
tunasynctl restart -w worker1 archlinux
tunasynctl reload -w worker1
tunasynctl set-size -w worker1 archlinux 1.2T
tunasynctl rm-worker -w worker1
tunasynctl flush
```

A job status is one of `none`, `failed`, `success`, `syncing`,
`pre-syncing`, `paused` or `disabled`.

## As a library

The modules can be used on their own:

- `tunasync.status` – `SyncStatus`
- `tunasync.msg` – `MirrorStatus`, `WorkerStatus`, `MirrorSchedules`,
  `WorkerCmd`, `ClientCmd`, `CmdVerb`
- `tunasync.web_status` – `WebMirrorStatus` and `build_web_mirror_status`
- `tunasync.util` – JSON over HTTP helpers and rsync log parsing such as
  `extract_size_from_rsync_log`
- `tunasync.manager.db` – `make_db_adapter` and `DBAdapter`
- `tunasync.manager.server` – `Manager` and `get_tunasync_manager`
- `tunasync.ctl` – `ManagerClient`