# Access and refresh token service.
# Created: 2026-02-20
#
# Access tokens are HS256 JWTs bound to an audience (RFC 8707 resource
# indicator) and mirrored in storage so they can be revoked and introspected.
# Refresh tokens are opaque random secrets, rotated on every use.

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from urllib.parse import urlsplit

import jwt

from mcpauth.oauth2.errors import OAuthServerError, UserDataUnavailableError
from mcpauth.oauth2.models import (
    AccessTokenRecord,
    RefreshData,
    RefreshToken,
    TokenPair,
    UserData,
    utcnow,
)
from mcpauth.oauth2.storage import OAuthStorageProtocol
from mcpauth.oauth2.user_data import UserDataProvider

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_ACCESS_TOKEN_LIFETIME = 3600
DEFAULT_REFRESH_TOKEN_LIFETIME = 2_592_000
DEFAULT_RESOURCE_PATH = "/mcp/api"
FALLBACK_USER_DATA = UserData(email="unknown@example.com")

_DEFAULT_PORTS = {"http": 80, "https": 443}


class TokenFailure(str, Enum):
    """Internal reason an access token was rejected."""

    MALFORMED = "malformed"
    EXPIRED = "expired"
    AUDIENCE_MISMATCH = "audience_mismatch"
    REVOKED = "revoked"


class RefreshFailure(str, Enum):
    INVALID_OR_EXPIRED = "invalid_or_expired"


def normalize_resource_uri(uri: str) -> str:
    """Canonical form of a resource URI for audience comparison.

    Lowercases scheme and host, drops a default port and a trailing slash.
    Path case is preserved; query and fragment are discarded. Anything that
    does not parse as an absolute URI is returned unchanged.
    """
    try:
        parts = urlsplit(uri)
        port = parts.port
    except ValueError:
        logger.warning("Invalid resource URI: %s", uri)
        return uri

    host = parts.hostname
    if not parts.scheme or not host:
        logger.warning("Resource URI is not absolute: %s", uri)
        return uri

    scheme = parts.scheme.lower()
    if ":" in host:
        host = f"[{host}]"
    normalized = f"{scheme}://{host}"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        normalized += f":{port}"
    path = parts.path
    if path.endswith("/"):
        path = path[:-1]
    return normalized + path


def audience_matches(audience: str, resource: str) -> bool:
    """True if *resource* is the audience itself or a sub-path of it."""
    normalized_audience = normalize_resource_uri(audience)
    normalized_resource = normalize_resource_uri(resource)
    if normalized_audience == normalized_resource:
        return True
    return normalized_resource.startswith(normalized_audience + "/")


class TokenService:
    """Issues, validates, rotates and revokes tokens."""

    def __init__(
        self,
        storage: OAuthStorageProtocol,
        secret: str,
        user_data_provider: UserDataProvider | None = None,
        access_token_lifetime: int = DEFAULT_ACCESS_TOKEN_LIFETIME,
        refresh_token_lifetime: int = DEFAULT_REFRESH_TOKEN_LIFETIME,
        resource_path: str = DEFAULT_RESOURCE_PATH,
        fallback_user_data: UserData | None = FALLBACK_USER_DATA,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self.storage = storage
        self._secret = secret
        self.user_data_provider = user_data_provider
        self.access_token_lifetime = access_token_lifetime
        self.refresh_token_lifetime = refresh_token_lifetime
        self.resource_path = resource_path
        self.fallback_user_data = fallback_user_data
        self._clock = clock

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def default_audience(self, base_url: str) -> str:
        """Canonical URI of the protected API served from *base_url*."""
        return normalize_resource_uri(base_url.rstrip("/") + self.resource_path)

    def _user_data(self, user_id: str, org_id: str | None) -> UserData:
        data = None
        if self.user_data_provider is not None:
            try:
                data = self.user_data_provider.fetch_user_data(user_id, org_id)
            except Exception:
                logger.exception("User data provider failed for user %s", user_id)
                data = None
        if data is not None:
            return data
        if self.fallback_user_data is None:
            raise UserDataUnavailableError(f"No user data for user {user_id}")
        if self.user_data_provider is not None:
            logger.warning("User data lookup failed for user %s; using fallback", user_id)
        return self.fallback_user_data

    def issue_access_token(
        self,
        client_id: str,
        user_id: str,
        scope: str,
        issuer_base_url: str,
        org_id: str | None = None,
        resource: str | None = None,
        expires_at: datetime | None = None,
    ) -> str:
        """Sign an access token and persist its revocation record."""
        user_id = str(user_id)
        org_id = str(org_id) if org_id is not None else None
        user_data = self._user_data(user_id, org_id)
        audience = (
            normalize_resource_uri(resource) if resource else self.default_audience(issuer_base_url)
        )

        now = self._clock()
        if expires_at is None:
            expires_at = now + timedelta(seconds=self.access_token_lifetime)

        payload = {
            "iss": issuer_base_url,
            "aud": audience,
            "sub": user_id,
            "org": org_id,
            "client_id": client_id,
            "email": user_data.email,
            "scope": scope,
            "api_key_id": user_data.api_key_id,
            "api_key_secret": user_data.api_key_secret,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)

        self.storage.store_access_token(
            AccessTokenRecord(
                token=token,
                client_id=client_id,
                resource=audience,
                scope=scope,
                user_id=user_id,
                org_id=org_id,
                expires_at=expires_at,
            )
        )
        logger.info("Access token issued for user %s (aud %s)", user_id, audience)
        return token

    def check_access_token(
        self,
        token: str | None,
        resource: str | None = None,
        check_revocation: bool = False,
    ) -> tuple[dict | None, TokenFailure | None]:
        """Validate *token* and report the precise reason on failure.

        Order: signature, expiry, audience, then (optionally) the revocation
        record. Callers outside the trust boundary must use
        validate_access_token instead.
        """
        if not token:
            return None, TokenFailure.MALFORMED

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_aud": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as exc:
            logger.debug("Token signature check failed: %s", exc)
            return None, TokenFailure.MALFORMED

        exp = claims.get("exp")
        if not isinstance(exp, int | float):
            return None, TokenFailure.MALFORMED
        if exp <= self._clock().timestamp():
            return None, TokenFailure.EXPIRED

        if resource:
            audience = claims.get("aud")
            if not isinstance(audience, str) or not audience_matches(audience, resource):
                logger.warning(
                    "Token audience mismatch: expected %s, got %s", resource, audience
                )
                return None, TokenFailure.AUDIENCE_MISMATCH

        if check_revocation and self.storage.get_access_token(token) is None:
            return None, TokenFailure.REVOKED

        return claims, None

    def validate_access_token(
        self,
        token: str | None,
        resource: str | None = None,
        check_revocation: bool = False,
    ) -> dict | None:
        """Claims for a valid token, else None. The reason is only logged."""
        claims, failure = self.check_access_token(token, resource, check_revocation)
        if failure is not None:
            logger.debug("Access token rejected: %s", failure.value)
        return claims

    def revoke_access_token(self, token: str | None) -> bool:
        if not token:
            return False
        revoked = self.storage.delete_access_token(token)
        if revoked:
            logger.info("Access token revoked")
        return revoked

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(
        self,
        client_id: str,
        user_id: str,
        scope: str,
        org_id: str | None = None,
        expires_at: datetime | None = None,
    ) -> str:
        token = secrets.token_hex(32)
        if expires_at is None:
            expires_at = self._clock() + timedelta(seconds=self.refresh_token_lifetime)
        self.storage.store_refresh_token(
            RefreshToken(
                token=token,
                client_id=client_id,
                scope=scope,
                user_id=str(user_id),
                org_id=str(org_id) if org_id is not None else None,
                expires_at=expires_at,
            )
        )
        logger.info("Refresh token created for user %s", user_id)
        return token

    def validate_refresh_token(
        self, token: str | None
    ) -> tuple[RefreshData | None, RefreshFailure | None]:
        if not token:
            return None, RefreshFailure.INVALID_OR_EXPIRED
        record = self.storage.get_refresh_token(token)
        if record is None or record.expired(self._clock()):
            return None, RefreshFailure.INVALID_OR_EXPIRED
        return RefreshData.from_token(record), None

    def revoke_refresh_token(self, token: str | None) -> bool:
        """Delete a refresh token. Unknown tokens return False."""
        if not token:
            return False
        revoked = self.storage.delete_refresh_token(token)
        if revoked:
            logger.info("Refresh token revoked")
        return revoked

    # ------------------------------------------------------------------
    # Pairs and rotation
    # ------------------------------------------------------------------

    def issue_token_pair(
        self,
        client_id: str,
        user_id: str,
        scope: str,
        issuer_base_url: str,
        org_id: str | None = None,
        resource: str | None = None,
    ) -> TokenPair:
        """Issue and store an access + refresh pair, or neither.

        If the refresh token cannot be stored, the access token record is
        withdrawn before the error propagates.
        """
        access_token = self.issue_access_token(
            client_id=client_id,
            user_id=user_id,
            scope=scope,
            issuer_base_url=issuer_base_url,
            org_id=org_id,
            resource=resource,
        )
        try:
            refresh_token = self.issue_refresh_token(
                client_id=client_id, user_id=user_id, scope=scope, org_id=org_id
            )
        except OAuthServerError:
            self._withdraw(access_token=access_token)
            raise

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            scope=scope,
            expires_in=self.access_token_lifetime,
        )

    def rotate_on_refresh(
        self,
        old_refresh_token: str | None,
        issuer_base_url: str,
        resource: str | None = None,
    ) -> tuple[TokenPair | None, RefreshFailure | None]:
        """Exchange a refresh token for a new pair and retire the old one.

        The old token is removed with a conditional delete after the new pair
        is stored. If another request already removed it, this rotation lost
        the race: the new pair is withdrawn and the call fails.
        """
        data, failure = self.validate_refresh_token(old_refresh_token)
        if data is None:
            return None, failure

        pair = self.issue_token_pair(
            client_id=data.client_id,
            user_id=data.user_id,
            scope=data.scope,
            issuer_base_url=issuer_base_url,
            org_id=data.org_id,
            resource=resource,
        )

        try:
            retired = self.storage.delete_refresh_token(old_refresh_token)
        except OAuthServerError:
            self._withdraw(pair.access_token, pair.refresh_token)
            raise

        if not retired:
            logger.warning(
                "Refresh token for user %s was rotated concurrently; discarding new pair",
                data.user_id,
            )
            self._withdraw(pair.access_token, pair.refresh_token)
            return None, RefreshFailure.INVALID_OR_EXPIRED

        logger.info("Refresh token rotated for user %s", data.user_id)
        return pair, None

    def _withdraw(self, access_token: str | None = None, refresh_token: str | None = None) -> None:
        try:
            if access_token:
                self.storage.delete_access_token(access_token)
            if refresh_token:
                self.storage.delete_refresh_token(refresh_token)
        except OAuthServerError:
            logger.exception("Failed to withdraw partially issued tokens")

    def delete_all_expired(self) -> int:
        counts = self.storage.cleanup_expired(
            self._clock(), kinds=("access_tokens", "refresh_tokens")
        )
        return counts["access_tokens"] + counts["refresh_tokens"]
