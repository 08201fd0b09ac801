import json
import logging

import pytest

from megaphone.errors import HandlerError, HandlerErrorKind
from megaphone.logs import (
    LOGGER_NAME,
    MSG_TYPE,
    MozLogFormatter,
    RequestLogger,
    init_logging,
)


def make_record(level, msg, fields=None):
    record = logging.LogRecord("test", level, __file__, 1, msg, None, None)
    if fields is not None:
        record.fields = fields
    return record


def test_formatter_envelope():
    formatter = MozLogFormatter("host.example.com")
    out = json.loads(formatter.format(make_record(logging.INFO, "hello")))
    assert out["Type"] == "megaphone:log"
    assert out["Logger"] == "megaphone-0.3.0"
    assert out["Hostname"] == "host.example.com"
    assert out["Fields"]["msg"] == "hello"


def test_formatter_constants_match():
    formatter = MozLogFormatter("host.example.com")
    out = json.loads(formatter.format(make_record(logging.INFO, "hello")))
    assert (out["Type"], out["Logger"]) == (MSG_TYPE, LOGGER_NAME)


def test_formatter_fields():
    formatter = MozLogFormatter("host.example.com")
    record = make_record(logging.WARNING, "denied", {"code": 403, "errno": 122})
    out = json.loads(formatter.format(record))
    assert out["Fields"] == {"msg": "denied", "code": 403, "errno": 122}


def test_formatter_severity_ordering():
    formatter = MozLogFormatter("host.example.com")
    levels = [logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR]
    severities = [
        json.loads(formatter.format(make_record(level, "x")))["Severity"]
        for level in levels
    ]
    assert severities == sorted(severities, reverse=True)
    assert len(set(severities)) == 4
    assert severities[3] == 3


def test_with_request_does_not_mutate_parent():
    base = RequestLogger(logging.getLogger("test.requestlogger"))
    child = base.with_request("GET", "/v1/broadcasts", None, "agent/1")
    assert base.fields == {}
    assert child.fields == {
        "method": "GET",
        "path": "/v1/broadcasts",
        "agent": "agent/1",
    }


def test_with_request_remote():
    base = RequestLogger(logging.getLogger("test.requestlogger"))
    child = base.with_request("PUT", "/v1/broadcasts/foo/bar", "10.0.0.1", None)
    assert child.fields["remote"] == "10.0.0.1"
    assert "agent" not in child.fields


def test_init_logging_invalid():
    with pytest.raises(HandlerError) as excinfo:
        init_logging({"json_logging": "yes"})
    assert excinfo.value.kind is HandlerErrorKind.INTERNAL_ERROR
    assert "ROCKET_JSON_LOGGING" in str(excinfo.value)


def test_init_logging_json(capsys):
    log = init_logging({"json_logging": True})
    log.with_request("GET", "/v1/broadcasts").info("Broadcast %s", "foo", code=200)
    line = capsys.readouterr().out.strip().splitlines()[-1]
    out = json.loads(line)
    assert out["Fields"]["msg"] == "Broadcast foo"
    assert out["Fields"]["method"] == "GET"
    assert out["Fields"]["path"] == "/v1/broadcasts"
    assert out["Fields"]["code"] == 200


def test_init_logging_default_is_json(capsys):
    log = init_logging({})
    log.error("Oh dear!")
    out = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert out["Fields"]["msg"] == "Oh dear!"


def test_init_logging_plain(capsys):
    log = init_logging({"json_logging": False})
    log.with_request("GET", "/v1/broadcasts").info("Oh my!")
    line = capsys.readouterr().out.strip().splitlines()[-1]
    assert "Oh my!" in line
    assert "path: /v1/broadcasts" in line
    assert not line.startswith("{")