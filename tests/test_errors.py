import pytest

from megaphone.errors import HandlerError, HandlerErrorKind


@pytest.mark.parametrize(
    "kind, status, errno",
    [
        (HandlerErrorKind.INVALID_BROADCASTER_ID, 400, 100),
        (HandlerErrorKind.INVALID_BCHANNEL_ID, 400, 101),
        (HandlerErrorKind.MISSING_VERSION_DATA, 400, 102),
        (HandlerErrorKind.INVALID_VERSION_DATA, 400, 103),
        (HandlerErrorKind.MISSING_AUTH, 401, 120),
        (HandlerErrorKind.INVALID_AUTH, 401, 121),
        (HandlerErrorKind.UNAUTHORIZED, 403, 122),
        (HandlerErrorKind.NOT_FOUND, 404, 123),
        (HandlerErrorKind.INTERNAL_ERROR, 500, 201),
        (HandlerErrorKind.IO_ERROR, 500, 201),
        (HandlerErrorKind.DB_ERROR, 503, 202),
        (HandlerErrorKind.DB_CONNECTION, 503, 202),
        (HandlerErrorKind.POOL, 503, 202),
        (HandlerErrorKind.MIGRATION, 503, 202),
        (HandlerErrorKind.TEST_ERROR, 400, 413),
    ],
)
def test_status_and_errno(kind, status, errno):
    assert kind.http_status() == status
    assert kind.errno() == errno


def test_not_found_body():
    err = HandlerError(HandlerErrorKind.NOT_FOUND)
    assert err.to_dict() == {"code": 404, "errno": 123, "error": "Not Found"}


def test_internal_message():
    err = HandlerError.internal("boom")
    assert err.kind is HandlerErrorKind.INTERNAL_ERROR
    assert str(err) == "Unexpected megaphone error: boom"
    assert err.to_dict()["code"] == 500


def test_version_message_mentions_version():
    err = HandlerError(HandlerErrorKind.INVALID_VERSION_DATA)
    assert "Version" in err.to_dict()["error"]


def test_cause_chain_rendered():
    cause = ValueError("disk full")
    err = HandlerError(HandlerErrorKind.DB_ERROR, cause)
    text = str(err)
    assert text.startswith("A database error occurred: disk full")
    assert text.endswith("Caused by: disk full")
    assert err.__cause__ is cause


def test_io_error_is_transparent():
    err = HandlerError(HandlerErrorKind.IO_ERROR, OSError("broken pipe"))
    assert str(err) == "broken pipe"


def test_unauthorized_challenge_header():
    err = HandlerError(HandlerErrorKind.MISSING_AUTH)
    header = err.headers("production")["WWW-Authenticate"]
    assert header.startswith("Bearer ")
    assert "production" in header


def test_forbidden_has_no_challenge():
    assert HandlerError(HandlerErrorKind.UNAUTHORIZED).headers() == {}


def test_is_raisable():
    err = HandlerError(HandlerErrorKind.TEST_ERROR)
    with pytest.raises(HandlerError) as info:
        raise err
    assert info.value is err
    assert info.value.kind is HandlerErrorKind.TEST_ERROR
    assert info.value.to_dict() == {"code": 400, "errno": 413, "error": "Oh Noes!"}