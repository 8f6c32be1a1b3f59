# OAuth2 schemas.
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    """Token exchange or refresh request (form or JSON body)."""

    grant_type: str | None = None
    code: str | None = None
    code_verifier: str | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    refresh_token: str | None = None
    resource: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: str | None = None


class TokenParam(BaseModel):
    """Body of revocation and introspection requests."""

    token: str | None = None
    token_type_hint: str | None = None


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 client metadata."""

    redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    scope: str | None = None
    client_name: str | None = None
    client_uri: str | None = None


class ScopeInfo(BaseModel):
    key: str
    name: str
    description: str
    required: bool


class ConsentResponse(BaseModel):
    """Data for the host's consent screen."""

    client_id: str
    client_name: str
    scopes: list[ScopeInfo]
    redirect_uri: str
    state: str | None = None
    resource: str | None = None

