"""Logging setup shared by the CLI, the controller, and worker processes."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, MutableMapping

# Context keys promoted to the top level of JSON records and the console prefix.
CONTEXT_FIELDS = ("worker", "iteration")

# GDAL, PROJ and GEOS chatter only shows at -vv.
NOISY_LOGGERS = ("rasterio", "pyproj", "shapely")

_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    "taskName",
}


@dataclass(frozen=True)
class LogOptions:
    """Console verbosity plus optional JSON outputs."""

    verbose: int = 0
    quiet: bool = False
    log_file: Path | None = None
    json_console: bool = False

    @property
    def console_level(self) -> int:
        if self.quiet:
            return logging.WARNING
        return logging.DEBUG if self.verbose > 0 else logging.INFO


class ContextAdapter(logging.LoggerAdapter):
    """Attach fixed context (such as a worker id) to every record.

    Per-call ``extra`` values win over the adapter's own.
    """

    def process(
        self,
        msg: Any,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def _split_extra(record: logging.LogRecord) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return (context, other) fields a caller attached via ``extra``."""
    context: dict[str, Any] = {}
    other: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS:
            continue
        if key in CONTEXT_FIELDS:
            context[key] = value
        else:
            other[key] = value
    return context, other


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context fields sit beside the message."""

    def format(self, record: logging.LogRecord) -> str:
        context, other = _split_extra(record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "process": record.processName,
            "message": record.getMessage(),
            **context,
        }
        if other:
            payload["extra"] = other
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """Prefix console lines with ``[worker N] [iteration N]`` when known."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context, _ = _split_extra(record)
        prefix = " ".join(
            f"[{key} {context[key]}]" for key in CONTEXT_FIELDS if context.get(key) is not None
        )
        return f"{prefix} {message}" if prefix else message


def configure_logging(options: LogOptions) -> logging.Logger:
    """Replace root handlers according to ``options`` and return the root logger."""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(options.console_level)
    console.setFormatter(
        JsonFormatter() if options.json_console else HumanFormatter("%(levelname)s: %(message)s")
    )
    root.addHandler(console)

    if options.log_file is not None:
        options.log_file.parent.mkdir(parents=True, exist_ok=True)
        sink = logging.FileHandler(options.log_file, encoding="utf-8")
        sink.setLevel(logging.DEBUG)
        sink.setFormatter(JsonFormatter())
        root.addHandler(sink)

    library_level = logging.DEBUG if options.verbose > 1 else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
    return root
