"""Configuration of the manager server."""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("tunasync")

DEFAULT_ADDR = "127.0.0.1"
DEFAULT_PORT = 14242
DEFAULT_STATUS_FILE = "/var/lib/tunasync/tunasync.json"
DEFAULT_DB_FILE = "/var/lib/tunasync/tunasync.db"
DEFAULT_DB_TYPE = "bolt"


def _typed(section: Mapping, key: str, kind: type, default: Any) -> Any:
    if key not in section:
        return default
    value = section[key]
    if kind is int and isinstance(value, bool):
        raise ValueError(f"invalid value for {key!r}: expected integer")
    if not isinstance(value, kind):
        raise ValueError(f"invalid value for {key!r}: expected {kind.__name__}")
    return value


def _section(data: Mapping, key: str) -> Mapping:
    value = data.get(key, {})
    if not isinstance(value, Mapping):
        raise ValueError(f"invalid value for {key!r}: expected a table")
    return value


@dataclass
class ServerConfig:
    """Address and TLS settings of the HTTP server."""

    addr: str = ""
    port: int = 0
    ssl_cert: str = ""
    ssl_key: str = ""


@dataclass
class FileConfig:
    """Paths to the files the manager uses."""

    status_file: str = ""
    db_file: str = ""
    db_type: str = ""
    ca_cert: str = ""


@dataclass
class Config:
    """Top-level manager configuration."""

    debug: bool = False
    server: ServerConfig = field(default_factory=ServerConfig)
    files: FileConfig = field(default_factory=FileConfig)

    @classmethod
    def from_dict(cls, data: Mapping) -> "Config":
        """Build a configuration from a decoded TOML document."""
        server = _section(data, "server")
        files = _section(data, "files")
        return cls(
            debug=_typed(data, "debug", bool, False),
            server=ServerConfig(
                addr=_typed(server, "addr", str, ""),
                port=_typed(server, "port", int, 0),
                ssl_cert=_typed(server, "ssl_cert", str, ""),
                ssl_key=_typed(server, "ssl_key", str, ""),
            ),
            files=FileConfig(
                status_file=_typed(files, "status_file", str, ""),
                db_file=_typed(files, "db_file", str, ""),
                db_type=_typed(files, "db_type", str, ""),
                ca_cert=_typed(files, "ca_cert", str, ""),
            ),
        )


def _defaults() -> dict[str, Any]:
    return {
        "debug": False,
        "server": {"addr": DEFAULT_ADDR, "port": DEFAULT_PORT},
        "files": {
            "status_file": DEFAULT_STATUS_FILE,
            "db_file": DEFAULT_DB_FILE,
            "db_type": DEFAULT_DB_TYPE,
        },
    }


def _merge(base: dict[str, Any], extra: Mapping) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _option(options: Any, name: str) -> Any:
    if isinstance(options, Mapping):
        return options.get(name)
    return getattr(options, name.replace("-", "_"), None)


def _option_str(options: Any, name: str) -> str:
    value = _option(options, name)
    return "" if value is None else str(value)


def _option_int(options: Any, name: str) -> int:
    value = _option(options, name)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def load_config(cfg_file: str | None, options: Any = None) -> Config:
    """Load the configuration file and apply command-line overrides."""
    data = _defaults()
    if cfg_file:
        try:
            with open(cfg_file, "rb") as fh:
                data = _merge(data, tomllib.load(fh))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.error("%s", exc)
            raise
    try:
        cfg = Config.from_dict(data)
    except ValueError as exc:
        logger.error("%s", exc)
        raise

    if options is None:
        return cfg

    if addr := _option_str(options, "addr"):
        cfg.server.addr = addr
    if (port := _option_int(options, "port")) > 0:
        cfg.server.port = port
    cert, key = _option_str(options, "cert"), _option_str(options, "key")
    if cert and key:
        cfg.server.ssl_cert = cert
        cfg.server.ssl_key = key
    if status_file := _option_str(options, "status-file"):
        cfg.files.status_file = status_file
    if db_file := _option_str(options, "db-file"):
        cfg.files.db_file = db_file
    if db_type := _option_str(options, "db-type"):
        cfg.files.db_file = db_type
    return cfg