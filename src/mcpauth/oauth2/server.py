# OAuth2 Authorization Server with PKCE support.
# Created: 2026-02-20
#
# Drives the authorization code flow (RFC 6749 + RFC 7636) and the refresh
# token grant, wiring the code and token services together. Also covers
# dynamic client registration (RFC 7591), revocation (RFC 7009) and
# introspection (RFC 7662).
#
# Every protocol outcome is returned as ``(result, error)``; storage and
# other internal failures are logged here and reported as server_error.

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlencode, urlsplit, urlunsplit

from mcpauth.oauth2.codes import AuthorizationCodeService, RedeemFailure
from mcpauth.oauth2.errors import (
    OAuthError,
    OAuthErrorCode,
    OAuthServerError,
    invalid_grant,
    invalid_request,
    server_error,
)
from mcpauth.oauth2.models import (
    DEFAULT_GRANT_TYPES,
    DEFAULT_RESPONSE_TYPES,
    PKCE_METHOD,
    OAuthClient,
    UserData,
    utcnow,
)
from mcpauth.oauth2.scopes import ScopeRegistry
from mcpauth.oauth2.storage import (
    InMemoryOAuthStorage,
    OAuthStorageProtocol,
    SQLiteOAuthStorage,
)
from mcpauth.oauth2.tokens import TokenService
from mcpauth.oauth2.user_data import UserDataProvider

logger = logging.getLogger(__name__)

SUPPORTED_GRANT_TYPES = frozenset(DEFAULT_GRANT_TYPES)
SUPPORTED_RESPONSE_TYPES = frozenset(DEFAULT_RESPONSE_TYPES)

_REDEEM_MESSAGES = {
    RedeemFailure.INVALID_OR_EXPIRED: "Authorization code is invalid or expired",
    RedeemFailure.PKCE_MISMATCH: "PKCE validation failed",
    RedeemFailure.REDIRECT_MISMATCH: "Redirect URI mismatch",
}


@dataclass(frozen=True)
class AuthorizationRequest:
    """Parameters of an authorization endpoint request."""

    client_id: str
    redirect_uri: str
    code_challenge: str
    response_type: str = "code"
    code_challenge_method: str = PKCE_METHOD
    scope: str | None = None
    state: str | None = None
    resource: str | None = None


@dataclass(frozen=True)
class ConsentContext:
    """What a host needs to render its consent screen."""

    client_id: str
    client_name: str
    scopes: list[dict]
    request: AuthorizationRequest


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of a user decision: where to send the user agent next."""

    redirect_to: str
    code: str | None = None
    error: str | None = None


def _with_query(uri: str, params: dict) -> str:
    parts = urlsplit(uri)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _is_absolute_redirect(uri: str) -> bool:
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc) and not parts.fragment


class AuthorizationServer:
    """OAuth2 authorization server with PKCE."""

    def __init__(
        self,
        storage: OAuthStorageProtocol,
        codes: AuthorizationCodeService,
        tokens: TokenService,
        scopes: ScopeRegistry,
        issuer_url: str | None = None,
        default_client_scope: str = "mcp:read mcp:write",
    ):
        self.storage = storage
        self.codes = codes
        self.tokens = tokens
        self.scopes = scopes
        self.issuer_url = issuer_url.rstrip("/") if issuer_url else None
        self.default_client_scope = default_client_scope

    def issuer(self, base_url: str) -> str:
        """Configured issuer URL, else the request's base URL."""
        return self.issuer_url or base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def validate_authorization_request(
        self, request: AuthorizationRequest
    ) -> tuple[OAuthClient | None, OAuthError | None]:
        """Check parameters, client and redirect URI before any user decision."""
        if (
            request.response_type != "code"
            or not request.client_id
            or not request.redirect_uri
            or not request.code_challenge
            or request.code_challenge_method != PKCE_METHOD
        ):
            return None, invalid_request("Missing or invalid required parameters")

        client = self.storage.get_client(request.client_id)
        if client is None:
            return None, OAuthError(OAuthErrorCode.INVALID_CLIENT, "Unknown client_id")

        if not client.valid_redirect_uri(request.redirect_uri):
            return None, invalid_request("Invalid redirect_uri")

        return client, None

    def consent_context(
        self, request: AuthorizationRequest
    ) -> tuple[ConsentContext | None, OAuthError | None]:
        client, error = self.validate_authorization_request(request)
        if error:
            return None, error
        granted = self.scopes.validate(request.scope)
        return (
            ConsentContext(
                client_id=client.client_id,
                client_name=client.client_name,
                scopes=self.scopes.describe(granted),
                request=request,
            ),
            None,
        )

    def authorize(
        self,
        request: AuthorizationRequest,
        user_id: str,
        org_id: str | None = None,
        approved: bool = True,
        base_url: str = "",
    ) -> tuple[AuthorizationResult | None, OAuthError | None]:
        """Apply the user's decision to a validated authorization request.

        An approval issues a code bound to the PKCE challenge and redirect
        URI; a denial redirects back with ``access_denied``. Requests that
        fail validation are never redirected.
        """
        _, error = self.validate_authorization_request(request)
        if error:
            return None, error

        if not approved:
            params = {"error": "access_denied", "error_description": "User denied the request"}
            if request.state:
                params["state"] = request.state
            logger.info("Authorization denied by user %s for client %s", user_id, request.client_id)
            return (
                AuthorizationResult(
                    redirect_to=_with_query(request.redirect_uri, params),
                    error="access_denied",
                ),
                None,
            )

        scope = " ".join(self.scopes.validate(request.scope))
        try:
            code = self.codes.issue(
                client_id=request.client_id,
                redirect_uri=request.redirect_uri,
                code_challenge=request.code_challenge,
                code_challenge_method=request.code_challenge_method,
                scope=scope,
                user_id=user_id,
                org_id=org_id,
                resource=request.resource,
            )
        except OAuthServerError:
            logger.exception("Failed to create authorization code for client %s", request.client_id)
            return None, server_error("Failed to generate authorization code")

        params = {"code": code}
        if request.state:
            params["state"] = request.state
        params["iss"] = self.issuer(base_url)
        redirect_to = _with_query(request.redirect_uri, params)
        return AuthorizationResult(redirect_to=redirect_to, code=code), None

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def token(
        self,
        grant_type: str | None,
        base_url: str,
        code: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
        client_id: str | None = None,
        refresh_token: str | None = None,
        resource: str | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Dispatch a token request by grant type."""
        if grant_type == "authorization_code":
            return self.exchange(
                code=code,
                redirect_uri=redirect_uri,
                code_verifier=code_verifier,
                base_url=base_url,
                client_id=client_id,
                resource=resource,
            )
        if grant_type == "refresh_token":
            return self.refresh(
                refresh_token=refresh_token,
                base_url=base_url,
                client_id=client_id,
                resource=resource,
            )
        return None, OAuthError(OAuthErrorCode.UNSUPPORTED_GRANT_TYPE, "Grant type not supported")

    def exchange(
        self,
        code: str | None,
        redirect_uri: str | None,
        code_verifier: str | None,
        base_url: str,
        client_id: str | None = None,
        resource: str | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """authorization_code grant: redeem the code, then issue a token pair.

        ``iss`` is the configured issuer, but the default audience is derived
        from *base_url*, the host serving the protected API.
        """
        if not code or not redirect_uri or not code_verifier:
            return None, invalid_request("code, redirect_uri and code_verifier are required")

        try:
            data, failure = self.codes.redeem(code, redirect_uri, code_verifier)
            if data is None:
                return None, invalid_grant(_REDEEM_MESSAGES[failure])

            if client_id and client_id != data.client_id:
                logger.warning("Code for client %s presented by %s", data.client_id, client_id)
                return None, invalid_grant("Authorization code was issued to another client")

            pair = self.tokens.issue_token_pair(
                client_id=data.client_id,
                user_id=data.user_id,
                scope=data.scope,
                issuer_base_url=self.issuer(base_url),
                org_id=data.org_id,
                resource=data.resource or resource or self.tokens.default_audience(base_url),
            )
        except OAuthServerError:
            logger.exception("Token issuance failed for authorization_code grant")
            return None, server_error("Failed to issue tokens")

        logger.info("Tokens issued to client %s for user %s", data.client_id, data.user_id)
        return pair.to_response(), None

    def refresh(
        self,
        refresh_token: str | None,
        base_url: str,
        client_id: str | None = None,
        resource: str | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """refresh_token grant: rotate the refresh token and issue a new pair."""
        if not refresh_token:
            return None, invalid_request("refresh_token is required")

        try:
            data, _ = self.tokens.validate_refresh_token(refresh_token)
            if data is None:
                return None, invalid_grant("Refresh token is invalid or expired")
            if client_id and client_id != data.client_id:
                return None, invalid_grant("Refresh token was issued to another client")

            pair, _ = self.tokens.rotate_on_refresh(
                refresh_token,
                issuer_base_url=self.issuer(base_url),
                resource=resource or self.tokens.default_audience(base_url),
            )
        except OAuthServerError:
            logger.exception("Token issuance failed for refresh_token grant")
            return None, server_error("Failed to issue tokens")

        if pair is None:
            return None, invalid_grant("Refresh token is invalid or expired")
        return pair.to_response(), None

    # ------------------------------------------------------------------
    # Revocation, introspection, userinfo
    # ------------------------------------------------------------------

    def revoke(self, token: str | None) -> bool:
        """Revoke a refresh token or an access token. Unknown tokens are fine."""
        if not token:
            return False
        try:
            revoked = self.tokens.revoke_refresh_token(token) or self.tokens.revoke_access_token(
                token
            )
        except OAuthServerError:
            logger.exception("Token revocation failed")
            return False
        logger.info("Token revocation: %s", "success" if revoked else "not found")
        return revoked

    def introspect(self, token: str | None) -> dict:
        if not token:
            return {"active": False}
        try:
            claims = self.tokens.validate_access_token(token, check_revocation=True)
            if claims is not None:
                return {
                    "active": True,
                    "client_id": claims.get("client_id") or "unknown",
                    "username": claims.get("email"),
                    "scope": claims.get("scope"),
                    "exp": claims.get("exp"),
                    "iat": claims.get("iat"),
                    "sub": claims.get("sub"),
                    "aud": claims.get("aud"),
                    "iss": claims.get("iss"),
                    "token_type": "Bearer",
                }
            data, _ = self.tokens.validate_refresh_token(token)
        except OAuthServerError:
            logger.exception("Token introspection failed")
            return {"active": False}
        if data is None:
            return {"active": False}
        return {
            "active": True,
            "client_id": data.client_id,
            "scope": data.scope,
            "token_type": "refresh_token",
        }

    def userinfo(self, token: str | None) -> tuple[dict | None, OAuthError | None]:
        try:
            claims = self.tokens.validate_access_token(token, check_revocation=True)
        except OAuthServerError:
            logger.exception("Userinfo lookup failed")
            return None, server_error()
        if claims is None:
            return None, OAuthError(OAuthErrorCode.INVALID_TOKEN)

        info = {
            "sub": claims.get("sub"),
            "email": claims.get("email"),
            "email_verified": True,
            "name": claims.get("email"),
            "preferred_username": claims.get("email"),
        }
        if claims.get("org"):
            info["org"] = claims["org"]
        return info, None

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def register_client(
        self,
        redirect_uris: list[str] | None,
        grant_types: list[str] | None = None,
        response_types: list[str] | None = None,
        scope: str | None = None,
        client_name: str | None = None,
        client_uri: str | None = None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Dynamic client registration (RFC 7591)."""
        uris = list(dict.fromkeys(redirect_uris or []))
        if not uris:
            return None, OAuthError(
                OAuthErrorCode.INVALID_CLIENT_METADATA, "At least one redirect_uri is required"
            )
        bad = [uri for uri in uris if not _is_absolute_redirect(uri)]
        if bad:
            return None, OAuthError(
                OAuthErrorCode.INVALID_CLIENT_METADATA,
                f"Invalid redirect_uri: {bad[0]}",
            )

        grant_types = list(grant_types or DEFAULT_GRANT_TYPES)
        if not set(grant_types) <= SUPPORTED_GRANT_TYPES:
            return None, OAuthError(
                OAuthErrorCode.INVALID_CLIENT_METADATA, "Unsupported grant_types"
            )
        response_types = list(response_types or DEFAULT_RESPONSE_TYPES)
        if not set(response_types) <= SUPPORTED_RESPONSE_TYPES:
            return None, OAuthError(
                OAuthErrorCode.INVALID_CLIENT_METADATA, "Unsupported response_types"
            )

        client = OAuthClient(
            client_id=str(uuid.uuid4()),
            client_secret=secrets.token_hex(32),
            redirect_uris=uris,
            grant_types=grant_types,
            response_types=response_types,
            scope=scope or self.default_client_scope,
            client_name=client_name or "MCP Client",
            client_uri=client_uri,
        )
        try:
            self.storage.save_client(client)
        except OAuthServerError:
            logger.exception("Client registration failed")
            return None, server_error()

        logger.info("Client registered: %s", client.client_id)
        response = {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "client_id_issued_at": int(client.created_at.timestamp()),
            "client_secret_expires_at": 0,
            "redirect_uris": client.redirect_uris,
            "grant_types": client.grant_types,
            "response_types": client.response_types,
            "scope": client.scope,
            "token_endpoint_auth_method": "client_secret_basic",
            "client_name": client.client_name,
            "client_uri": client.client_uri,
        }
        return {k: v for k, v in response.items() if v is not None}, None

    def delete_client(self, client_id: str) -> bool:
        """Remove a client and everything issued to it."""
        deleted = self.storage.delete_client(client_id)
        if deleted:
            logger.info("Client %s deleted with its codes and tokens", client_id)
        return deleted

    def cleanup_expired(self) -> dict[str, int]:
        """Expiry sweep for codes and tokens. Run periodically, out of band."""
        counts = {
            "codes": self.codes.delete_all_expired(),
            "tokens": self.tokens.delete_all_expired(),
        }
        logger.debug("Expired records removed: %s", counts)
        return counts


def build_server(
    settings=None,
    user_data_provider: UserDataProvider | None = None,
    storage: OAuthStorageProtocol | None = None,
    scopes: ScopeRegistry | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> AuthorizationServer:
    """Construct an AuthorizationServer and its services from settings."""
    if settings is None:
        from mcpauth.config import get_settings

        settings = get_settings()

    if storage is None:
        if settings.database_path is not None:
            storage = SQLiteOAuthStorage(settings.database_path)
        else:
            storage = InMemoryOAuthStorage()

    if scopes is None:
        scopes = ScopeRegistry.with_defaults()
        scopes.freeze()

    fallback = UserData(email=settings.fallback_email) if settings.user_data_fallback else None
    tokens = TokenService(
        storage=storage,
        secret=settings.require_secret(),
        user_data_provider=user_data_provider,
        access_token_lifetime=settings.access_token_lifetime,
        refresh_token_lifetime=settings.refresh_token_lifetime,
        resource_path=settings.resource_path,
        fallback_user_data=fallback,
        clock=clock,
    )
    codes = AuthorizationCodeService(
        storage=storage, lifetime=settings.authorization_code_lifetime, clock=clock
    )
    return AuthorizationServer(
        storage=storage,
        codes=codes,
        tokens=tokens,
        scopes=scopes,
        issuer_url=settings.authorization_server_url,
        default_client_scope=settings.default_client_scope,
    )


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = build_server()
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None


def set_oauth_server(server: AuthorizationServer) -> None:
    """Install a pre-built server (custom storage, scopes or user data)."""
    global _server
    _server = server
