"""Broadcast storage: schema, models and a small connection pool."""

from __future__ import annotations

import queue
import sqlite3
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass

from .errors import HandlerError, HandlerErrorKind

TABLE = "broadcastsv1"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    broadcaster_id VARCHAR(64) NOT NULL,
    bchannel_id VARCHAR(128) NOT NULL,
    last_updated TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    version VARCHAR(200) NOT NULL,
    PRIMARY KEY (broadcaster_id, bchannel_id)
);
"""

_MISSING_URL = "Invalid or undefined ROCKET_DATABASE_URL"


def _database_path(config: Mapping) -> str:
    url = config.get("database_url")
    if not isinstance(url, str) or not url:
        raise HandlerError.internal(_MISSING_URL)
    if url.startswith("sqlite://"):
        rest = url[len("sqlite://"):]
        if rest.startswith("/"):
            rest = rest[1:]
        return rest or ":memory:"
    return url


def _connect(path: str, autocommit: bool = False) -> sqlite3.Connection:
    try:
        if autocommit:
            return sqlite3.connect(
                path, check_same_thread=False, isolation_level=None
            )
        return sqlite3.connect(path, check_same_thread=False)
    except sqlite3.Error as exc:
        raise HandlerError(HandlerErrorKind.DB_CONNECTION, exc) from exc


def run_embedded_migrations(config: Mapping) -> None:
    """Create the schema on a connection of its own."""
    conn = _connect(_database_path(config))
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    except sqlite3.Error as exc:
        raise HandlerError(HandlerErrorKind.MIGRATION, exc) from exc
    finally:
        conn.close()


@dataclass(frozen=True)
class Broadcast:
    """One broadcaster/channel version row."""

    broadcaster_id: str
    bchannel_id: str
    version: str

    def id(self) -> str:
        return f"{self.broadcaster_id}/{self.bchannel_id}"


@dataclass(frozen=True)
class Broadcaster:
    """An authorized broadcaster."""

    id: str

    def broadcast_new_version(
        self, conn: sqlite3.Connection, bchannel_id: str, version: str
    ) -> bool:
        """Set the channel's version; True when the broadcast is new."""
        try:
            cursor = conn.execute(
                f"UPDATE {TABLE} SET version = ?, last_updated = CURRENT_TIMESTAMP "
                "WHERE broadcaster_id = ? AND bchannel_id = ?",
                (version, self.id, bchannel_id),
            )
            if cursor.rowcount:
                return False
            conn.execute(
                f"INSERT INTO {TABLE} (broadcaster_id, bchannel_id, version) "
                "VALUES (?, ?, ?)",
                (self.id, bchannel_id, version),
            )
            return True
        except sqlite3.Error as exc:
            raise HandlerError(HandlerErrorKind.DB_ERROR, exc) from exc


@dataclass(frozen=True)
class Reader:
    """An authorized reader of broadcasts."""

    id: str

    def read_broadcasts(self, conn: sqlite3.Connection) -> dict[str, str]:
        """Every broadcast id mapped to its current version."""
        try:
            rows = conn.execute(
                f"SELECT broadcaster_id, bchannel_id, version FROM {TABLE}"
            ).fetchall()
        except sqlite3.Error as exc:
            raise HandlerError(HandlerErrorKind.DB_ERROR, exc) from exc
        broadcasts = (Broadcast(*row) for row in rows)
        return {bcast.id(): bcast.version for bcast in broadcasts}


def _config_int(config: Mapping, key: str, default: int) -> int:
    value = config.get(key, default)
    return value if isinstance(value, int) and not isinstance(value, bool) else default


class Pool:
    """A bounded pool of database connections.

    With test transactions each connection opens a transaction that is
    never committed.
    """

    def __init__(
        self,
        database_path: str,
        max_size: int = 10,
        use_test_transactions: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.database_path = database_path
        self.max_size = max_size
        self.use_test_transactions = use_test_transactions
        self.timeout = timeout
        self._idle: queue.Queue[sqlite3.Connection] = queue.Queue()
        self._all: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, config: Mapping) -> "Pool":
        path = _database_path(config)
        timeout = config.get("database_pool_timeout", 30.0)
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool):
            timeout = 30.0
        pool = cls(
            path,
            max_size=_config_int(config, "database_pool_max_size", 10),
            use_test_transactions=config.get("database_use_test_transactions") is True,
            timeout=float(timeout),
        )
        try:
            pool._idle.put(pool._acquire())
        except HandlerError as exc:
            raise HandlerError.internal(f"Could not build app {exc}") from exc
        return pool

    def _open(self) -> sqlite3.Connection:
        if self.use_test_transactions:
            conn = _connect(self.database_path, autocommit=True)
            try:
                conn.execute("BEGIN")
            except sqlite3.Error as exc:
                conn.close()
                raise HandlerError(HandlerErrorKind.POOL, exc) from exc
            return conn
        return _connect(self.database_path)

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise HandlerError(HandlerErrorKind.POOL, "pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        with self._lock:
            if len(self._all) < self.max_size:
                conn = self._open()
                self._all.append(conn)
                return conn
        try:
            return self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise HandlerError(
                HandlerErrorKind.POOL, "timed out waiting for a connection"
            ) from None

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection, committing on success unless in test mode."""
        conn = self._acquire()
        try:
            yield conn
        except BaseException:
            if not self.use_test_transactions:
                conn.rollback()
            raise
        else:
            if not self.use_test_transactions:
                try:
                    conn.commit()
                except sqlite3.Error as exc:
                    raise HandlerError(HandlerErrorKind.DB_ERROR, exc) from exc
        finally:
            if self._closed:
                conn.close()
            else:
                self._idle.put(conn)

    def close(self) -> None:
        """Close every connection the pool opened."""
        with self._lock:
            self._closed = True
            for conn in self._all:
                conn.close()
            self._all.clear()

    def __enter__(self) -> "Pool":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()