"""Logging abstraction layer for tasmota_control.

Library modules get a TasmotaLogger from ``get_logger`` and only emit records;
nothing is printed until the application calls ``configure_logging``. Records
carry the device topic, transport, command and correlation sequence as
first-class fields so both formatters can place them consistently, next to
the active command correlation ID.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "TasmotaLogger",
    "configure_logging",
    "get_logger",
]

ROOT_LOGGER = "tasmota_control"
_LOG_FORMATS = ("json", "human", "both")

# extra keys promoted to record attributes instead of free-form context
_FIELDS = ("device", "transport", "command", "sequence", "correlation_id")
_RECORD_PREFIX = "tasmota_"

logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())

# handlers installed by configure_logging, per logger name
_installed: dict[str, list[logging.Handler]] = {}


def _field(record: logging.LogRecord, name: str) -> object | None:
    return getattr(record, _RECORD_PREFIX + name, None)


def _context_of(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


def _correlation_of(record: logging.LogRecord) -> str | None:
    """The ID the record was logged under, else the one active while formatting."""
    from tasmota_control.correlation import get_correlation_id

    explicit = _field(record, "correlation_id")
    return str(explicit) if explicit is not None else get_correlation_id()


class JSONFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": _correlation_of(record),
        }
        for name in ("device", "transport", "command", "sequence"):
            value = _field(record, name)
            if value is not None:
                log_data[name] = value

        context = _context_of(record)
        if context is not None:
            log_data["context"] = dict(context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Console format: ``time level [module:line] [corr] device/transport#seq command > msg | k=v``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_tag)s%(device_tag)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @staticmethod
    def device_tag(record: logging.LogRecord) -> str:
        device = _field(record, "device")
        transport = _field(record, "transport")
        sequence = _field(record, "sequence")
        command = _field(record, "command")
        if device is None and transport is None:
            tag = ""
        else:
            tag = str(device) if device is not None else "*"
            if transport is not None:
                tag = f"{tag}/{transport}"
        if sequence is not None:
            tag = f"{tag}#{sequence}"
        if command is not None:
            tag = f"{tag} {command}" if tag else str(command)
        return f" {tag}" if tag else ""

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = _correlation_of(record)
        record.correlation_tag = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        record.device_tag = self.device_tag(record)

        formatted = super().format(record)
        context = _context_of(record)
        if context is not None:
            context_str = " | ".join(f"{k}={v}" for k, v in context.items())
            formatted = f"{formatted} | {context_str}"
        return formatted


class TasmotaLogger:
    """Structured logger for library modules.

    Messages accept %-style arguments like stdlib logging plus an ``extra``
    mapping. The ``device``, ``transport``, ``command``, ``sequence`` and
    ``correlation_id`` keys become record fields; anything else is rendered
    as free-form context.
    """

    def __init__(self, name: str) -> None:
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)

    @staticmethod
    def _record_extra(extra: Mapping[str, object] | None) -> dict[str, object] | None:
        if not extra:
            return None
        record_extra: dict[str, object] = {}
        context: dict[str, object] = {}
        for key, value in extra.items():
            if key in _FIELDS:
                record_extra[_RECORD_PREFIX + key] = value
            else:
                context[key] = value
        if context:
            record_extra["extra_data"] = context
        return record_extra

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, msg, *args, extra=self._record_extra(extra), stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self.logger.exception(msg, *args, extra=self._record_extra(extra), stacklevel=2)


def get_logger(name: str) -> TasmotaLogger:
    """Get a TasmotaLogger that emits records only; handlers come from ``configure_logging``."""
    return TasmotaLogger(name)


def _human_handler(target: str) -> logging.Handler:
    if target == "stdout":
        return logging.StreamHandler(sys.stdout)
    if target == "stderr":
        return logging.StreamHandler(sys.stderr)
    try:
        human_path = Path(target)
        human_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(human_path, mode="a")
    except OSError as e:
        print(f"Warning: cannot open log file {target}: {e}", file=sys.stderr)
        return logging.StreamHandler(sys.stderr)


def configure_logging(
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
    *,
    logger_name: str = ROOT_LOGGER,
    debug: bool | None = None,
) -> logging.Logger:
    """Install output handlers for the library's records.

    Calling it again replaces the handlers a previous call installed on the
    same logger; handlers added by anyone else are left alone.

    Args:
        log_format: "json", "human" or "both" (TASMOTA_LOG_FORMAT by default)
        json_file: Path for JSON output (TASMOTA_LOG_JSON_FILE by default)
        human_output: "stdout", "stderr" or a file path (TASMOTA_LOG_HUMAN_OUTPUT by default)
        logger_name: Logger to configure
        debug: Log at DEBUG instead of INFO (TASMOTA_DEBUG by default)

    Returns:
        The configured stdlib logger

    """
    from tasmota_control.const import (
        TASMOTA_DEBUG,
        TASMOTA_LOG_FORMAT,
        TASMOTA_LOG_HUMAN_OUTPUT,
        TASMOTA_LOG_JSON_FILE,
    )

    fmt = (log_format or TASMOTA_LOG_FORMAT).casefold()
    if fmt not in _LOG_FORMATS:
        fmt = "human"
    json_target = json_file or TASMOTA_LOG_JSON_FILE
    level = logging.DEBUG if (TASMOTA_DEBUG if debug is None else debug) else logging.INFO

    logger = logging.getLogger(logger_name)
    for handler in _installed.pop(logger_name, []):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = []
    if fmt in ("json", "both") and json_target:
        try:
            json_path = Path(json_target)
            json_path.parent.mkdir(parents=True, exist_ok=True)
            json_handler = logging.FileHandler(json_path, mode="a")
        except OSError as e:
            print(f"Warning: cannot open JSON log file {json_target}: {e}", file=sys.stderr)
        else:
            json_handler.setFormatter(JSONFormatter())
            handlers.append(json_handler)

    if fmt in ("human", "both"):
        human_handler = _human_handler(human_output or TASMOTA_LOG_HUMAN_OUTPUT or "stderr")
        human_handler.setFormatter(HumanReadableFormatter())
        handlers.append(human_handler)

    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)
    logger.setLevel(level)
    _installed[logger_name] = handlers
    return logger
