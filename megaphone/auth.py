"""Bearer-token authentication and authorization.

Tokens are loaded from the configuration, keyed by a user id (a broadcaster
or reader id). Broadcasts are identified as ``broadcaster_id/bchannel_id``.
Broadcasters may only broadcast under their own id; readers may read all
broadcasts.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

from .db import Broadcaster, Reader
from .errors import HandlerError, HandlerErrorKind

_SCHEME_SEPARATOR = " "


class Group(Enum):
    """The role a user is authorized for."""

    BROADCASTER = "broadcaster_auth"
    READER = "reader_auth"

    def config_name(self) -> str:
        """Name of the configuration entry the group's tokens come from."""
        return self.value


class BearerTokenAuthenticator:
    """Maps bearer tokens to user ids and user ids to their group."""

    def __init__(self) -> None:
        self._users: dict[str, str] = {}
        self._groups: dict[str, Group] = {}

    @classmethod
    def from_config(cls, config: Mapping) -> "BearerTokenAuthenticator":
        """Build an authenticator from the broadcaster and reader tables."""
        authenticator = cls()
        for group in Group:
            authenticator._load_group(group, config)
        return authenticator

    def _load_group(self, group: Group, config: Mapping) -> None:
        name = group.config_name()
        table = config.get(name)
        if not isinstance(table, Mapping):
            raise HandlerError.internal(
                f"Invalid or undefined ROCKET_{name.upper()}"
            )
        for user_id, tokens in table.items():
            dupe = self._groups.get(user_id)
            if dupe is not None:
                raise HandlerError.internal(
                    f'Invalid {name} user: "{user_id}" dupe user in: '
                    f"{dupe.config_name()}"
                )
            self._groups[user_id] = group
            if isinstance(tokens, (str, bytes)) or not isinstance(
                tokens, (list, tuple)
            ):
                raise HandlerError.internal(
                    f'Invalid {name} token array for: "{user_id}"'
                )
            self._load_tokens(user_id, group, tokens)

    def _load_tokens(self, user_id: str, group: Group, tokens) -> None:
        name = group.config_name()
        for entry in tokens:
            if not isinstance(entry, str):
                raise HandlerError.internal(
                    f'Invalid {name} token for: "{user_id}"'
                )
            dupe = self._users.get(entry)
            if dupe is not None:
                raise HandlerError.internal(
                    f'Invalid {name} token for: "{user_id}" dupe in: '
                    f'"{dupe}" ("{entry}")'
                )
            self._users[entry] = user_id

    def authenticated_user(self, credentials: str) -> tuple[str, Group]:
        """The user id and group for a ``Bearer <token>`` header value."""
        scheme, sep, presented = credentials.partition(_SCHEME_SEPARATOR)
        if not sep or scheme.lower() != "bearer":
            raise HandlerError(HandlerErrorKind.INVALID_AUTH)
        user_id = self._users.get(presented)
        if user_id is None:
            raise HandlerError(HandlerErrorKind.INVALID_AUTH)
        group = self._groups.get(user_id)
        if group is None:
            raise HandlerError.internal("Could not get group")
        return user_id, group


def _authenticated_user(
    authenticator: BearerTokenAuthenticator, authorization: str | None
) -> tuple[str, Group]:
    if authorization is None:
        raise HandlerError(HandlerErrorKind.MISSING_AUTH)
    return authenticator.authenticated_user(authorization)


def authorized_broadcaster(
    authenticator: BearerTokenAuthenticator,
    authorization: str | None,
    broadcaster_id: str,
) -> Broadcaster:
    """The broadcaster, if the credentials permit broadcasting as ``broadcaster_id``."""
    user_id, group = _authenticated_user(authenticator, authorization)
    if group is Group.BROADCASTER and user_id == broadcaster_id:
        return Broadcaster(user_id)
    raise HandlerError(HandlerErrorKind.UNAUTHORIZED)


def authorized_reader(
    authenticator: BearerTokenAuthenticator, authorization: str | None
) -> Reader:
    """The reader, if the credentials belong to a reader."""
    user_id, group = _authenticated_user(authenticator, authorization)
    if group is Group.READER:
        return Reader(user_id)
    raise HandlerError(HandlerErrorKind.UNAUTHORIZED)