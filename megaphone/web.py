"""The HTTP service: configuration loading, routes and the command entry point."""

from __future__ import annotations

import argparse
import json
import os
import re
import sqlite3
import sys
import time
import tomllib
from collections.abc import Mapping
from pathlib import Path

from flask import Flask, Response, jsonify, request

from .auth import BearerTokenAuthenticator, authorized_broadcaster, authorized_reader
from .db import Pool, run_embedded_migrations
from .errors import HandlerError, HandlerErrorKind
from .logs import RequestLogger, init_logging
from .metrics import Metrics
from .tags import Tags

URLSAFE_B64_RE = re.compile(r"^[A-Za-z0-9\-_]+$")
MAX_BROADCASTER_ID = 64
MAX_BCHANNEL_ID = 128
MAX_VERSION = 200

CONFIG_FILE = "Rocket.toml"
DEFAULT_CONFIG_FILE = ".default.Rocket.toml"
DEFAULT_VERSION_JSON = '{"version": "devel"}'

_ENV_ALIASES = {
    "dev": "development",
    "development": "development",
    "stage": "staging",
    "staging": "staging",
    "prod": "production",
    "production": "production",
}
_DEFAULT_ADDRESS = {
    "development": "localhost",
    "staging": "0.0.0.0",
    "production": "0.0.0.0",
}
_DEFAULT_PORT = 8000
_ENV_PREFIX = "ROCKET_"
_RESERVED_ENV = {"ROCKET_ENV", "ROCKET_CODEGEN_DEBUG", "ROCKET_CODEGEN_ALLOW_UNSAFE"}


def _find_config_file(start: Path) -> Path | None:
    for directory in (start, *start.parents):
        candidate = directory / CONFIG_FILE
        if candidate.is_file():
            return candidate
    fallback = start / DEFAULT_CONFIG_FILE
    return fallback if fallback.is_file() else None


def _parse_env_value(raw: str):
    try:
        return tomllib.loads(f"value = {raw}")["value"]
    except (tomllib.TOMLDecodeError, KeyError):
        return raw


def _section(data: Mapping, name: str) -> dict:
    section = data.get(name, {})
    if not isinstance(section, Mapping):
        raise HandlerError.internal(f"Invalid [{name}] section in configuration")
    return dict(section)


def load_config(path: str | os.PathLike | None = None, environ: Mapping | None = None) -> dict:
    """Read the active environment's settings from the config file and ROCKET_* variables.

    Settings of the ``[global]`` table override those of the environment's table,
    and environment variables override both.
    """
    environ = os.environ if environ is None else environ
    env_name = str(environ.get("ROCKET_ENV", "development")).strip().lower()
    environment = _ENV_ALIASES.get(env_name)
    if environment is None:
        raise HandlerError.internal(f"Invalid ROCKET_ENV: {env_name!r}")

    if path is None:
        config_path = _find_config_file(Path.cwd())
    else:
        config_path = Path(path)
        if not config_path.is_file():
            raise HandlerError.internal(f"Configuration file not found: {config_path}")

    data: dict = {}
    if config_path is not None:
        try:
            with config_path.open("rb") as handle:
                data = tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise HandlerError.internal(f"Invalid configuration file {config_path}: {exc}") from exc

    config: dict = {"address": _DEFAULT_ADDRESS[environment], "port": _DEFAULT_PORT}
    config.update(_section(data, environment))
    config.update(_section(data, "global"))

    for name, raw in environ.items():
        if not name.startswith(_ENV_PREFIX) or name in _RESERVED_ENV:
            continue
        key = name[len(_ENV_PREFIX):].lower()
        if key:
            config[key] = _parse_env_value(raw)

    config["environment"] = environment
    return config


def _read_version_json(config: Mapping) -> str:
    location = Path(str(config.get("version_json", "version.json")))
    try:
        return location.read_text(encoding="utf-8")
    except OSError:
        return DEFAULT_VERSION_JSON


def _read_version() -> str:
    try:
        value = request.get_data().decode("utf-8")
    except UnicodeDecodeError:
        raise HandlerError(HandlerErrorKind.MISSING_VERSION_DATA) from None
    if not value or len(value) > MAX_VERSION or not value.isascii():
        raise HandlerError(HandlerErrorKind.INVALID_VERSION_DATA)
    return value


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def create_app(config: Mapping) -> Flask:
    """Build the service application from a loaded configuration."""
    pool = Pool.from_config(config)
    try:
        authenticator = BearerTokenAuthenticator.from_config(config)
        environment = str(config.get("environment", "development"))
        logger = init_logging(config)
        base_tags = Tags.init(config)
        metrics = Metrics.init(config)
        logger.info("Starting up")
        run_embedded_migrations(config)
    except BaseException:
        pool.close()
        raise
    version_json = _read_version_json(config)

    app = Flask(__name__)
    app.extensions["megaphone"] = {
        "pool": pool,
        "authenticator": authenticator,
        "environment": environment,
        "logger": logger,
        "metrics": metrics,
        "tags": base_tags,
    }

    def request_log() -> RequestLogger:
        remote = request.headers.get("X-Forwarded-For")
        if remote is None:
            remote = request.remote_addr
        path = request.path
        query = request.query_string.decode("latin-1")
        if query:
            path = f"{path}?{query}"
        return logger.with_request(
            request.method, path, remote, request.headers.get("User-Agent")
        )

    def render_error(error: HandlerError) -> Response:
        log = request_log()
        status = error.status
        if status in (401, 403):
            log.warning("%s", error, code=status, errno=error.errno)
        else:
            log.debug("%s", error, code=status, errno=error.errno)
        response = jsonify(error.to_dict())
        response.status_code = status
        response.headers.update(error.headers(environment))
        return response

    @app.errorhandler(HandlerError)
    def handle_error(error: HandlerError) -> Response:
        return render_error(error)

    def not_found(_error) -> Response:
        return render_error(HandlerError(HandlerErrorKind.NOT_FOUND))

    app.register_error_handler(404, not_found)
    app.register_error_handler(405, not_found)

    @app.put("/v1/broadcasts/<broadcaster_id>/<bchannel_id>")
    def broadcast(broadcaster_id: str, bchannel_id: str) -> Response:
        log = request_log()
        with pool.connection() as conn:
            if len(broadcaster_id) > MAX_BROADCASTER_ID or not URLSAFE_B64_RE.match(broadcaster_id):
                raise HandlerError(HandlerErrorKind.INVALID_BROADCASTER_ID)
            if len(bchannel_id) > MAX_BCHANNEL_ID or not URLSAFE_B64_RE.match(bchannel_id):
                raise HandlerError(HandlerErrorKind.INVALID_BCHANNEL_ID)
            version = _read_version()

            tags = Tags(dict(base_tags.tags), dict(base_tags.extra))
            tags.extend(
                {"broadcaster": broadcaster_id, "channel_id": bchannel_id, "version": version}
            )
            metrics.incr_with_tags("broadcast.cmd.update", tags)

            start = time.monotonic()
            broadcaster = authorized_broadcaster(
                authenticator, request.headers.get("Authorization"), broadcaster_id
            )
            created = broadcaster.broadcast_new_version(conn, bchannel_id, version)
            metrics.timer_with_tags("broadcast.update", _elapsed_ms(start), tags)

        status = 201 if created else 200
        log.info(
            "Broadcast: %s/%s new version: %s",
            broadcaster_id,
            bchannel_id,
            version,
            code=status,
        )
        response = jsonify({"code": status})
        response.status_code = status
        return response

    @app.get("/v1/broadcasts")
    def get_broadcasts() -> Response:
        metrics.incr("broadcast.cmd.dump")
        with pool.connection() as conn:
            start = time.monotonic()
            reader = authorized_reader(authenticator, request.headers.get("Authorization"))
            broadcasts = reader.read_broadcasts(conn)
            metrics.timer_with_tags("broadcast.dump", _elapsed_ms(start), None)
        return jsonify({"code": 200, "broadcasts": broadcasts})

    @app.get("/v1/err")
    def log_check() -> Response:
        log = request_log()
        log.info("Oh my!")
        log.error("Oh dear!")
        raise HandlerError(HandlerErrorKind.TEST_ERROR)

    @app.get("/__version__")
    def version() -> Response:
        return Response(version_json, status=200, mimetype="application/json")

    @app.get("/__heartbeat__")
    def heartbeat() -> Response:
        try:
            with pool.connection() as conn:
                conn.execute("SELECT 1").fetchall()
            status = 200
        except (HandlerError, sqlite3.Error) as exc:
            status = 503
            request_log().error("Database heartbeat failed: %s", exc, code=status)
        msg = "ok" if status == 200 else "error"
        response = jsonify({"status": msg, "code": status, "database": msg})
        response.status_code = status
        return response

    @app.get("/__lbheartbeat__")
    def lbheartbeat() -> Response:
        return Response(status=200)

    return app


def main(argv: list[str] | None = None) -> int:
    """Load the configuration and serve until interrupted."""
    parser = argparse.ArgumentParser(prog="megaphone", description="Broadcast version service.")
    parser.add_argument(
        "--config",
        default=None,
        help=f"configuration file (default: nearest {CONFIG_FILE})",
    )
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config, os.environ)
        app = create_app(config)
    except HandlerError as exc:
        print(f"megaphone: {exc}", file=sys.stderr)
        return 1
    app.run(host=str(config["address"]), port=int(config["port"]))
    return 0


if __name__ == "__main__":
    sys.exit(main())