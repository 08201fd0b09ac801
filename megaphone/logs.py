"""Service logging, as MozLog JSON or plain terminal lines, with request fields."""

from __future__ import annotations

import json
import logging
import os
import socket
import sys
from collections.abc import Mapping

from .errors import HandlerError

_VERSION = "0.3.0"
LOGGER_NAME = f"megaphone-{_VERSION}"
MSG_TYPE = "megaphone:log"
ENV_VERSION = "2.0"

_SEVERITIES = (
    (logging.CRITICAL, 2),
    (logging.ERROR, 3),
    (logging.WARNING, 4),
    (logging.INFO, 6),
)


def _severity(levelno: int) -> int:
    for threshold, severity in _SEVERITIES:
        if levelno >= threshold:
            return severity
    return 7


def _record_fields(record: logging.LogRecord) -> dict:
    fields = getattr(record, "fields", None)
    return dict(fields) if isinstance(fields, Mapping) else {}


class MozLogFormatter(logging.Formatter):
    """Formats records as one MozLog JSON object per line."""

    def __init__(
        self,
        hostname: str | None = None,
        logger_name: str = LOGGER_NAME,
        msg_type: str = MSG_TYPE,
    ) -> None:
        super().__init__()
        self.hostname = hostname if hostname is not None else socket.gethostname()
        self.logger_name = logger_name
        self.msg_type = msg_type

    def format(self, record: logging.LogRecord) -> str:
        fields = {"msg": record.getMessage()}
        fields.update(_record_fields(record))
        if record.exc_info:
            fields["error"] = self.formatException(record.exc_info)
        payload = {
            "Timestamp": int(record.created * 1_000_000_000),
            "Type": self.msg_type,
            "Logger": self.logger_name,
            "Hostname": self.hostname,
            "EnvVersion": ENV_VERSION,
            "Pid": record.process if record.process is not None else os.getpid(),
            "Severity": _severity(record.levelno),
            "Fields": fields,
        }
        return json.dumps(payload, default=str)


class _TermFormatter(logging.Formatter):
    """Human-readable lines: time, level, message and key/value fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{self.formatTime(record, '%b %d %H:%M:%S')} "
            f"{record.levelname} {record.getMessage()}"
        )
        extras = ", ".join(f"{key}: {value}" for key, value in _record_fields(record).items())
        if extras:
            line = f"{line}, {extras}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class RequestLogger:
    """A logger that attaches a fixed set of fields to every record."""

    def __init__(self, logger: logging.Logger, fields: Mapping | None = None) -> None:
        self.logger = logger
        self.fields = dict(fields or {})

    def with_request(
        self,
        method: str,
        path: str,
        remote: str | None = None,
        agent: str | None = None,
    ) -> "RequestLogger":
        """A child logger carrying the request's method, path, remote and agent."""
        fields = dict(self.fields, method=method, path=path)
        if remote is not None:
            fields["remote"] = remote
        if agent is not None:
            fields["agent"] = agent
        return RequestLogger(self.logger, fields)

    def log(self, level: int, msg: str, *args, **kv) -> None:
        self.logger.log(level, msg, *args, extra={"fields": {**self.fields, **kv}})

    def debug(self, msg: str, *args, **kv) -> None:
        self.log(logging.DEBUG, msg, *args, **kv)

    def info(self, msg: str, *args, **kv) -> None:
        self.log(logging.INFO, msg, *args, **kv)

    def warning(self, msg: str, *args, **kv) -> None:
        self.log(logging.WARNING, msg, *args, **kv)

    def error(self, msg: str, *args, **kv) -> None:
        self.log(logging.ERROR, msg, *args, **kv)


def init_logging(config: Mapping | None) -> RequestLogger:
    """Configure the service logger to write to stdout and return it."""
    config = config or {}
    json_logging = config.get("json_logging", True)
    if not isinstance(json_logging, bool):
        raise HandlerError.internal(
            f"Invalid ROCKET_JSON_LOGGING: expected boolean, found {json_logging!r}"
        )

    if json_logging:
        try:
            hostname = socket.gethostname()
        except OSError as exc:
            raise HandlerError.internal(f"Could not drain async: {exc}") from exc
        formatter: logging.Formatter = MozLogFormatter(hostname)
    else:
        formatter = _TermFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return RequestLogger(logger)