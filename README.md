# megaphone

megaphone is a small HTTP service that keeps track of the current version of
named broadcast channels. Broadcasters publish a new version string for their
own channels; readers fetch the full table of current versions in one request.

Every broadcast is identified as `broadcaster_id/bchannel_id`. A broadcaster
may only publish under its own `broadcaster_id`; a reader may read every
broadcast.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running

```
megaphone
megaphone --config path/to/Rocket.toml
```

The command loads its settings with `megaphone.web.load_config`, builds the
application with `megaphone.web.create_app` and serves it with Flask's built-in
server on the configured `address` and `port`. If the settings are invalid it
prints the error to stderr and exits with status 1.

The application is a plain Flask app, so it can also be handed to any WSGI
server:

```python
from megaphone.web import create_app, load_config

app = create_app(load_config())
```

## Configuration

`load_config(path=None, environ=None)` reads a TOML file. Without a path it
looks for `Rocket.toml` in the current directory and each parent, then for
`.default.Rocket.toml` in the current directory; with no file found, only
defaults and environment variables are used.

The active environment comes from `ROCKET_ENV` (`development`, `staging` or
`production`, or `dev`, `stage`, `prod`; default `development`). Settings are
taken from that environment's table, then overridden by the `[global]` table,
then by any `ROCKET_<KEY>` environment variable (the value is parsed as a TOML
value where possible, otherwise kept as a string).

```toml
[development]
database_url = "sqlite:///megaphone.db"
json_logging = false

[development.broadcaster_auth]
foo = ["token"]

[development.reader_auth]
reader = ["secret"]
```

| Key                              | Meaning                                                        | Default                                  |
|----------------------------------|----------------------------------------------------------------|------------------------------------------|
| `address`                        | Address the command listens on                                 | `localhost` (development), else `0.0.0.0` |
| `port`                           | Port the command listens on                                    | `8000`                                   |
| `database_url`                   | SQLite file path, or `sqlite:///path` (required)               |                                          |
| `database_pool_max_size`         | Largest number of pooled connections                           | `10`                                     |
| `database_pool_timeout`          | Seconds to wait for a free connection                          | `30`                                     |
| `database_use_test_transactions` | Never commit: each connection's work stays in an open transaction | `false`                               |
| `broadcaster_auth`               | Table of broadcaster id to a list of bearer tokens (required)  |                                          |
| `reader_auth`                    | Table of reader id to a list of bearer tokens (required)       |                                          |
| `json_logging`                   | Log MozLog JSON lines to stdout instead of plain text          | `true`                                   |
| `statsd_host`                    | statsd host; metrics are discarded when unset                  |                                          |
| `statsd_port`                    | statsd port                                                    | `8125`                                   |
| `statsd_label`                   | Prefix for every metric name                                   | `megaphone`                              |
| `version_json`                   | File served by `/__version__`                                  | `version.json`                           |

A user id may appear in only one of `broadcaster_auth` and `reader_auth`, and
every token must be unique across both; startup fails otherwise. The table
`broadcastsv1` is created at startup if it does not exist.

## HTTP API

Requests to `/v1/broadcasts...` carry an `Authorization: Bearer token`
header; the scheme name is matched case-insensitively.

### `PUT /v1/broadcasts/<broadcaster_id>/<bchannel_id>`

The body is the new version: ASCII, 1 to 200 characters. `broadcaster_id`
(at most 64 characters) and `bchannel_id` (at most 128 characters) must be
URL-safe base64 (`A-Z`, `a-z`, `0-9`, `-`, `_`). Answers `201 {"code": 201}`
when the channel is new and `200 {"code": 200}` when an existing version was
replaced.

### `GET /v1/broadcasts`

Readers only. Answers

```json
{"code": 200, "broadcasts": {"baz/quux": "v0", "foo/bar": "v1"}}
```

### Operational endpoints

* `GET /__version__` – the contents of the `version_json` file, or
  `{"version": "devel"}` when it cannot be read.
* `GET /__heartbeat__` – `{"status": "ok", "code": 200, "database": "ok"}`,
  or status 503 with `"error"` when the database cannot be reached.
* `GET /__lbheartbeat__` – an empty 200 response.
* `GET /v1/err` – logs two test messages and answers with the test error.

### Errors

Errors are JSON bodies of the form
`{"code": <http status>, "errno": <number>, "error": "<message>"}`.
A 401 response also carries a `WWW-Authenticate: Bearer realm="<environment>"`
header. Unknown paths and unsupported methods answer 404.

| errno | status | cause                               |
|-------|--------|-------------------------------------|
| 100   | 400    | invalid broadcasterID               |
| 101   | 400    | invalid bchannelID                  |
| 102   | 400    | version body is not valid UTF-8     |
| 103   | 400    | invalid version                     |
| 120   | 401    | missing Authorization header        |
| 121   | 401    | invalid Authorization header        |
| 122   | 403    | access denied                       |
| 123   | 404    | not found                           |
| 201   | 500    | internal error                      |
| 202   | 503    | database error                      |
| 413   | 400    | test error from `/v1/err`           |

## Modules

* `megaphone.errors` – `HandlerErrorKind` and `HandlerError`, with the status,
  errno, JSON body and headers of each error.
* `megaphone.auth` – `BearerTokenAuthenticator`, `Group`,
  `authorized_broadcaster` and `authorized_reader`.
* `megaphone.db` – `Pool`, `Broadcast`, `Broadcaster`, `Reader` and
  `run_embedded_migrations`.
* `megaphone.logs` – `init_logging`, `RequestLogger` and `MozLogFormatter`.
* `megaphone.metrics` – `Metrics`, `StatsdClient` and `format_metric`
  (statsd lines with `|#key:value` tags).
* `megaphone.tags` – `Tags`.
* `megaphone.web` – `load_config`, `create_app` and `main`.

## What it does not do

Storage is SQLite only; there is no support for a MySQL or other database
server. The `megaphone` command uses Flask's built-in server, which is meant
for development; run `create_app` under a WSGI server for production. Errors
are logged but not reported to any external error-tracking service.