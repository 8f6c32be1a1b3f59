# OAuth2 protocol errors.
# Created: 2026-02-20
#
# Protocol failures travel as values in ``(result, error)`` tuples and are
# rendered as ``{"error", "error_description"}`` bodies. Only internal
# failures (OAuthServerError) are raised, and the orchestrator converts those
# into ``server_error``.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OAuthErrorCode(str, Enum):
    """Error codes from RFC 6749 / 6750 / 7591."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_CLIENT_METADATA = "invalid_client_metadata"
    INVALID_TOKEN = "invalid_token"
    ACCESS_DENIED = "access_denied"
    SERVER_ERROR = "server_error"


_STATUS_CODES = {
    OAuthErrorCode.INVALID_CLIENT: 401,
    OAuthErrorCode.INVALID_TOKEN: 401,
    OAuthErrorCode.ACCESS_DENIED: 403,
    OAuthErrorCode.SERVER_ERROR: 500,
}


@dataclass(frozen=True)
class OAuthError:
    """A structured protocol error."""

    error: OAuthErrorCode
    description: str = ""

    @property
    def status_code(self) -> int:
        return _STATUS_CODES.get(self.error, 400)

    def to_dict(self) -> dict:
        body = {"error": self.error.value}
        if self.description:
            body["error_description"] = self.description
        return body


def invalid_request(description: str) -> OAuthError:
    return OAuthError(OAuthErrorCode.INVALID_REQUEST, description)


def invalid_grant(description: str) -> OAuthError:
    return OAuthError(OAuthErrorCode.INVALID_GRANT, description)


def server_error(description: str = "An unexpected error occurred") -> OAuthError:
    return OAuthError(OAuthErrorCode.SERVER_ERROR, description)


class OAuthServerError(Exception):
    """Internal failure. Clients only ever see server_error."""


class StorageError(OAuthServerError):
    """Raised by storage backends when the backing store fails."""


class UserDataUnavailableError(OAuthServerError):
    """User data lookup failed and no fallback identity is configured."""
