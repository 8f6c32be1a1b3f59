# OAuth2 data models.
# Created: 2026-02-20
#
# Records persisted by the storage backends plus the grant data handed
# between the code service, the token service and the orchestrator.
# All timestamps are timezone-aware UTC datetimes.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

DEFAULT_GRANT_TYPES = ("authorization_code", "refresh_token")
DEFAULT_RESPONSE_TYPES = ("code",)
DEFAULT_CLIENT_SCOPE = "mcp:read mcp:write"
PKCE_METHOD = "S256"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class OAuthClient:
    """Registered OAuth2 client."""

    client_id: str
    client_secret: str
    redirect_uris: list[str] = field(default_factory=list)
    grant_types: list[str] = field(default_factory=lambda: list(DEFAULT_GRANT_TYPES))
    response_types: list[str] = field(default_factory=lambda: list(DEFAULT_RESPONSE_TYPES))
    scope: str = DEFAULT_CLIENT_SCOPE
    client_name: str = "MCP Client"
    client_uri: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def valid_redirect_uri(self, uri: str) -> bool:
        return uri in self.redirect_uris

    def supports_grant_type(self, grant_type: str) -> bool:
        return grant_type in self.grant_types


@dataclass
class AuthorizationCode:
    """Short-lived, one-time authorization code bound to a PKCE challenge."""

    code: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    scope: str
    user_id: str
    expires_at: datetime
    code_challenge_method: str = PKCE_METHOD
    resource: str | None = None
    org_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class AccessTokenRecord:
    """Server-side mirror of a signed access token (revocation support)."""

    token: str
    client_id: str
    scope: str
    user_id: str
    expires_at: datetime
    resource: str | None = None
    org_id: str | None = None

    def expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class RefreshToken:
    """Opaque refresh token. Replaced on every rotation."""

    token: str
    client_id: str
    scope: str
    user_id: str
    expires_at: datetime
    org_id: str | None = None

    def expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class ScopeDefinition:
    """A permission scope a client can request."""

    key: str
    name: str
    description: str
    required: bool = False

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "required": self.required,
        }


@dataclass(frozen=True)
class CodeData:
    """Data bound to an authorization code, returned once on redemption."""

    client_id: str
    redirect_uri: str
    scope: str
    user_id: str
    resource: str | None = None
    org_id: str | None = None

    @classmethod
    def from_code(cls, code: AuthorizationCode) -> CodeData:
        return cls(
            client_id=code.client_id,
            redirect_uri=code.redirect_uri,
            scope=code.scope,
            user_id=code.user_id,
            resource=code.resource,
            org_id=code.org_id,
        )


@dataclass(frozen=True)
class RefreshData:
    """Grant data carried by a valid refresh token."""

    client_id: str
    scope: str
    user_id: str
    org_id: str | None = None

    @classmethod
    def from_token(cls, token: RefreshToken) -> RefreshData:
        return cls(
            client_id=token.client_id,
            scope=token.scope,
            user_id=token.user_id,
            org_id=token.org_id,
        )


@dataclass(frozen=True)
class UserData:
    """Identity details embedded into access tokens."""

    email: str
    api_key_id: str | None = None
    api_key_secret: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """An issued access + refresh token pair."""

    access_token: str
    refresh_token: str
    scope: str
    expires_in: int
    token_type: str = "Bearer"

    def to_response(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "refresh_token": self.refresh_token,
        }
