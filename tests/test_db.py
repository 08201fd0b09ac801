import pytest

from megaphone.db import (
    Broadcast,
    Broadcaster,
    Pool,
    Reader,
    run_embedded_migrations,
)
from megaphone.errors import HandlerError, HandlerErrorKind


@pytest.fixture
def config(tmp_path):
    cfg = {"database_url": f"sqlite:///{tmp_path / 'megaphone.db'}"}
    run_embedded_migrations(cfg)
    return cfg


def test_broadcast_id():
    assert Broadcast("foo", "bar", "v1").id() == "foo/bar"


def test_new_then_update(config):
    with Pool.from_config(config) as pool:
        with pool.connection() as conn:
            assert Broadcaster("foo").broadcast_new_version(conn, "bar", "v0") is True
        with pool.connection() as conn:
            assert Broadcaster("foo").broadcast_new_version(conn, "bar", "v1") is False
        with pool.connection() as conn:
            assert Reader("reader").read_broadcasts(conn) == {"foo/bar": "v1"}


def test_read_several(config):
    with Pool.from_config(config) as pool:
        with pool.connection() as conn:
            Broadcaster("foo").broadcast_new_version(conn, "bar", "v1")
            Broadcaster("baz").broadcast_new_version(conn, "quux", "v0")
            assert Reader("reader").read_broadcasts(conn) == {
                "baz/quux": "v0",
                "foo/bar": "v1",
            }


def test_committed_data_persists(config):
    with Pool.from_config(config) as pool:
        with pool.connection() as conn:
            Broadcaster("foo").broadcast_new_version(conn, "bar", "v2")
    with Pool.from_config(config) as pool:
        with pool.connection() as conn:
            assert Reader("r").read_broadcasts(conn) == {"foo/bar": "v2"}


def test_test_transactions_are_discarded(config):
    test_config = dict(config, database_use_test_transactions=True, database_pool_max_size=1)
    with Pool.from_config(test_config) as pool:
        with pool.connection() as conn:
            Broadcaster("foo").broadcast_new_version(conn, "bar", "v0")
        with pool.connection() as conn:
            assert Reader("r").read_broadcasts(conn) == {"foo/bar": "v0"}
    with Pool.from_config(config) as pool:
        with pool.connection() as conn:
            assert Reader("r").read_broadcasts(conn) == {}


def test_missing_database_url():
    with pytest.raises(HandlerError) as info:
        Pool.from_config({})
    assert info.value.kind is HandlerErrorKind.INTERNAL_ERROR
    assert "ROCKET_DATABASE_URL" in str(info.value)


def test_migrations_missing_url():
    with pytest.raises(HandlerError) as info:
        run_embedded_migrations({})
    assert info.value.kind is HandlerErrorKind.INTERNAL_ERROR


def test_migrations_bad_path(tmp_path):
    bad = {"database_url": f"sqlite:///{tmp_path / 'missing' / 'x.db'}"}
    with pytest.raises(HandlerError) as info:
        run_embedded_migrations(bad)
    assert info.value.kind is HandlerErrorKind.DB_CONNECTION
    assert info.value.kind.http_status() == 503


def test_read_without_schema_is_db_error(tmp_path):
    cfg = {"database_url": f"sqlite:///{tmp_path / 'empty.db'}"}
    with Pool.from_config(cfg) as pool:
        with pool.connection() as conn:
            with pytest.raises(HandlerError) as info:
                Reader("r").read_broadcasts(conn)
    assert info.value.kind is HandlerErrorKind.DB_ERROR


def test_pool_exhaustion(config):
    cfg = dict(config, database_pool_max_size=1, database_pool_timeout=0.05)
    with Pool.from_config(cfg) as pool:
        with pool.connection():
            with pytest.raises(HandlerError) as info:
                with pool.connection():
                    pass
    assert info.value.kind is HandlerErrorKind.POOL


def test_rollback_on_error(config):
    with Pool.from_config(config) as pool:
        with pytest.raises(RuntimeError):
            with pool.connection() as conn:
                Broadcaster("foo").broadcast_new_version(conn, "bar", "v9")
                raise RuntimeError("abort")
        with pool.connection() as conn:
            assert Reader("r").read_broadcasts(conn) == {}


def test_closed_pool_rejects(config):
    pool = Pool.from_config(config)
    pool.close()
    with pytest.raises(HandlerError) as info:
        with pool.connection():
            pass
    assert info.value.kind is HandlerErrorKind.POOL