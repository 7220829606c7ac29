"""Logging setup for the loopauth CLI and flow-scoped log context."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator

from loopauth.paths import log_dir

DEFAULT_LOG_MAX_BYTES = 2_000_000
DEFAULT_LOG_BACKUPS = 3
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_FLOW_CONTEXT: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("loopauth_flow_context", default={})


@dataclass(frozen=True)
class LogConfig:
    """Where and how the CLI writes logs.

    Only the CLI installs handlers; library modules just ask for a named logger.
    """

    log_file: Path
    level: int = logging.INFO
    stderr: bool = False
    json_lines: bool = False
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUPS


def _log_env(suffix: str) -> str | None:
    return os.getenv(f"LOOPAUTH_LOG_{suffix}")


def _env_level(default: int) -> int:
    value = _log_env("LEVEL")
    if not value:
        return default
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else default


def _env_flag(suffix: str) -> bool:
    return (_log_env(suffix) or "").strip().lower() in {"1", "true", "yes", "on"}


def _env_count(suffix: str, default: int) -> int:
    value = _log_env(suffix)
    return int(value) if value and value.isdigit() else default


def build_log_config(*, log_file_name: str, default_level: int = logging.INFO) -> LogConfig:
    """Read `LOOPAUTH_LOG_*` variables; the directory defaults to the platform log dir."""
    directory = Path(_log_env("DIR") or log_dir())
    directory.mkdir(parents=True, exist_ok=True)
    return LogConfig(
        log_file=directory / log_file_name,
        level=_env_level(default_level),
        stderr=_env_flag("STDERR"),
        json_lines=_env_flag("JSON"),
        max_bytes=_env_count("MAX_BYTES", DEFAULT_LOG_MAX_BYTES),
        backup_count=_env_count("BACKUPS", DEFAULT_LOG_BACKUPS),
    )


def configure_logging(config: LogConfig) -> None:
    """Replace the root handlers with a rotating file (and optionally stderr)."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(config.level)

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            config.log_file, maxBytes=config.max_bytes, backupCount=config.backup_count, encoding="utf-8"
        )
    ]
    if config.stderr:
        handlers.append(logging.StreamHandler())

    formatter = JsonLineFormatter() if config.json_lines else KeyValueFormatter(TEXT_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(FlowContextFilter())
        root.addHandler(handler)


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Tag every record emitted inside the block with `fields` (flow id, port).

    The listener thread runs in a copy of the caller's context, so its records
    carry the same tags.
    """
    merged = dict(_FLOW_CONTEXT.get())
    merged.update((key, value) for key, value in fields.items() if value is not None)
    token = _FLOW_CONTEXT.set(merged)
    try:
        yield
    finally:
        _FLOW_CONTEXT.reset(token)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    logger.log(level, event, extra={"event_fields": fields})


def _render_fields(fields: Dict[str, Any]) -> str:
    parts = []
    for key, value in sorted(fields.items()):
        if value is None:
            continue
        text = str(value)
        if not text or any(ch.isspace() or ch in '="' for ch in text):
            text = json.dumps(text)
        parts.append(f"{key}={text}")
    return " ".join(parts)


class FlowContextFilter(logging.Filter):
    """Copy the active flow context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 - logging API name
        record.context_fields = dict(_FLOW_CONTEXT.get())
        if not hasattr(record, "event_fields"):
            record.event_fields = {}
        return True


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tail = " ".join(
            part
            for part in (
                _render_fields(getattr(record, "context_fields", {})),
                _render_fields(getattr(record, "event_fields", {})),
            )
            if part
        )
        line = super().format(record)
        return f"{line} {tail}" if tail else line


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, attr in (("context", "context_fields"), ("fields", "event_fields")):
            value = getattr(record, attr, None)
            if value:
                payload[key] = value
        return json.dumps(payload, ensure_ascii=True, default=str)
