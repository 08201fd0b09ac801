"""Statsd metrics with tags."""

from __future__ import annotations

import logging
import socket
from collections.abc import Mapping

from .errors import HandlerError
from .logs import LOGGER_NAME, RequestLogger, init_logging
from .tags import Tags

DEFAULT_PORT = 8125
DEFAULT_LABEL = "megaphone"


def format_metric(
    prefix: str,
    label: str,
    value: int,
    kind: str,
    tags: Mapping[str, str] | None = None,
) -> str:
    """A statsd line with Datadog-style tags."""
    name = f"{prefix}.{label}" if prefix else label
    line = f"{name}:{value}|{kind}"
    if tags:
        line += "|#" + ",".join(f"{key}:{val}" for key, val in tags.items())
    return line


class StatsdClient:
    """Sends metrics over UDP; with no host, metrics are formatted and dropped."""

    def __init__(
        self, prefix: str = "", host: str | None = None, port: int = DEFAULT_PORT
    ) -> None:
        self.prefix = prefix
        self._socket: socket.socket | None = None
        self._address = None
        if host is not None:
            family, kind, proto, _, address = socket.getaddrinfo(
                host, port, type=socket.SOCK_DGRAM
            )[0]
            sock = socket.socket(family, kind, proto)
            sock.setblocking(False)
            self._socket = sock
            self._address = address

    def _send(self, line: str) -> str:
        if self._socket is not None:
            self._socket.sendto(line.encode("utf-8"), self._address)
        return line

    def incr(self, label: str, tags: Mapping[str, str] | None = None) -> str:
        """Increment a counter; returns the line sent."""
        return self._send(format_metric(self.prefix, label, 1, "c", tags))

    def timing(
        self, label: str, lapse: int, tags: Mapping[str, str] | None = None
    ) -> str:
        """Record a duration in milliseconds; returns the line sent."""
        return self._send(format_metric(self.prefix, label, lapse, "ms", tags))

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()

    def __enter__(self) -> "StatsdClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Metrics:
    """Metric reporting that never fails the caller: send errors are logged."""

    def __init__(
        self,
        client: StatsdClient | None = None,
        tags: Tags | None = None,
        log: RequestLogger | None = None,
    ) -> None:
        self.client = client
        self.tags = tags
        self.log = log if log is not None else RequestLogger(logging.getLogger(LOGGER_NAME))

    @classmethod
    def sink(cls) -> StatsdClient:
        """A client that sends nothing."""
        return StatsdClient()

    @classmethod
    def init(cls, config: Mapping | None) -> "Metrics":
        """Metrics configured from ``statsd_host``, ``statsd_port`` and ``statsd_label``."""
        config = config or {}
        log = init_logging(config)
        host = config.get("statsd_host")
        if host is None:
            client = cls.sink()
        elif not isinstance(host, str):
            log.error("Could not build metric: invalid statsd_host %r", host)
            raise HandlerError.internal(
                f"Could not build metric: invalid statsd_host {host!r}"
            )
        else:
            port = config.get("statsd_port", DEFAULT_PORT)
            if not isinstance(port, int) or isinstance(port, bool):
                port = DEFAULT_PORT
            label = config.get("statsd_label", DEFAULT_LABEL)
            if not isinstance(label, str):
                label = DEFAULT_LABEL
            try:
                client = StatsdClient(label, host, port)
            except OSError as exc:
                raise HandlerError.internal(f"Could not start server {exc!r}") from exc
        return cls(client, Tags.init(config), log)

    def incr(self, label: str) -> str | None:
        """Increment a counter with only the base tags."""
        return self.incr_with_tags(label, None)

    def incr_with_tags(self, label: str, tags: Tags | None) -> str | None:
        """Increment a counter with the base tags plus ``tags``; returns the line sent."""
        if self.client is None:
            return None
        merged = Tags(dict(self.tags.tags) if self.tags is not None else {})
        if tags is not None:
            merged.extend(tags.tags)
        try:
            line = self.client.incr(label, merged.tags)
        except OSError as exc:
            self.log.warning("Metric %s error: %r", label, exc)
            return None
        self.log.debug("%s", line)
        return line

    def timer_with_tags(self, label: str, lapse: int, tags: Tags | None) -> str | None:
        """Record a duration with ``tags`` only; returns the line sent."""
        if self.client is None:
            return None
        mtags = tags.tags if tags is not None else {}
        try:
            line = self.client.timing(label, lapse, mtags)
        except OSError as exc:
            self.log.warning("Metric %s error %r", label, exc)
            return None
        self.log.debug("%s", line)
        return line