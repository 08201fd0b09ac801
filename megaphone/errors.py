"""Error kinds and the handler error raised throughout the service."""

from __future__ import annotations

from enum import Enum

# Status used to signal a request-guard failure; the handler renders the error.
VALIDATION_FAILED = 500


class HandlerErrorKind(Enum):
    """Every kind of failure the service reports, with status and errno."""

    INVALID_BROADCASTER_ID = (
        "Invalid broadcasterID (must be URL safe base64, <= 64 characters)",
        400,
        100,
    )
    INVALID_BCHANNEL_ID = (
        "Invalid bchannelID (must be URL safe base64, <= 128 characters)",
        400,
        101,
    )
    MISSING_VERSION_DATA = (
        "Version information not included in body of update",
        400,
        102,
    )
    INVALID_VERSION_DATA = (
        "Invalid Version (must be ASCII, <= 200 characters)",
        400,
        103,
    )
    MISSING_AUTH = ("Missing authorization header", 401, 120)
    INVALID_AUTH = ("Invalid authorization header", 401, 121)
    UNAUTHORIZED = ("Access denied to the requested resource", 403, 122)
    NOT_FOUND = ("Not Found", 404, 123)
    INTERNAL_ERROR = ("Unexpected megaphone error: {0}", 500, 201)
    IO_ERROR = ("{0}", 500, 201)
    DB_ERROR = ("A database error occurred: {0}", 503, 202)
    DB_CONNECTION = (
        "An error occurred while establishing a db connection: {0}",
        503,
        202,
    )
    POOL = ("A database pool error occurred: {0}", 503, 202)
    MIGRATION = ("Error migrating the database: {0}", 503, 202)
    TEST_ERROR = ("Oh Noes!", 400, 413)

    def __init__(self, template: str, status: int, errno: int) -> None:
        self._template = template
        self._status = status
        self._errno = errno

    @property
    def template(self) -> str:
        return self._template

    def http_status(self) -> int:
        """HTTP status code rendered for this kind of error."""
        return self._status

    def errno(self) -> int:
        """Unique error number reported to clients."""
        return self._errno


class HandlerError(Exception):
    """An error carrying a kind, rendered as a JSON error response."""

    def __init__(
        self, kind: HandlerErrorKind, detail: str | BaseException | None = None
    ) -> None:
        if isinstance(detail, BaseException):
            self.__cause__ = detail
            detail = str(detail)
        self.kind = kind
        self.detail = detail
        super().__init__(self.message)

    @classmethod
    def internal(cls, msg: str) -> "HandlerError":
        """An internal error with the given message."""
        return cls(HandlerErrorKind.INTERNAL_ERROR, msg)

    @property
    def message(self) -> str:
        template = self.kind.template
        if "{0}" in template:
            return template.format("" if self.detail is None else self.detail)
        return template

    @property
    def status(self) -> int:
        return self.kind.http_status()

    @property
    def errno(self) -> int:
        return self.kind.errno()

    def __str__(self) -> str:
        parts = [self.message]
        cause = self.__cause__
        if self.kind is HandlerErrorKind.IO_ERROR and cause is not None:
            # The I/O error is shown in place of this one, not as its cause.
            cause = cause.__cause__
        seen: set[int] = set()
        while cause is not None and id(cause) not in seen:
            seen.add(id(cause))
            parts.append(f"Caused by: {cause}")
            cause = cause.__cause__
        return "\n\n".join(parts)

    def to_dict(self) -> dict:
        """The JSON body of the error response."""
        return {"code": self.status, "errno": self.errno, "error": str(self)}

    def headers(self, environment: str = "development") -> dict[str, str]:
        """Extra response headers: a Bearer challenge on 401 responses."""
        if self.status == 401:
            return {"WWW-Authenticate": f'Bearer realm="{environment}"'}
        return {}