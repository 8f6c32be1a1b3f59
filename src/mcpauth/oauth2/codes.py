# Authorization code issuance and one-time redemption.
# Created: 2026-02-20
#
# Implements the code half of the authorization code flow with PKCE
# (RFC 7636, S256 only).

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

from mcpauth.oauth2.models import PKCE_METHOD, AuthorizationCode, CodeData, utcnow
from mcpauth.oauth2.storage import OAuthStorageProtocol

logger = logging.getLogger(__name__)

DEFAULT_CODE_LIFETIME = 1800


class RedeemFailure(str, Enum):
    """Why a redemption was refused. Internal only; clients see invalid_grant."""

    INVALID_OR_EXPIRED = "invalid_or_expired"
    PKCE_MISMATCH = "pkce_mismatch"
    REDIRECT_MISMATCH = "redirect_mismatch"


def compute_code_challenge(code_verifier: str) -> str:
    """S256 challenge: BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(code_challenge: str | None, code_verifier: str | None) -> bool:
    """Constant-time S256 check. Missing values fail, nothing raises."""
    if not code_challenge or not code_verifier:
        return False
    try:
        computed = compute_code_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed.encode("ascii"), code_challenge.encode("utf-8"))


class AuthorizationCodeService:
    """Issues authorization codes and redeems each of them at most once."""

    def __init__(
        self,
        storage: OAuthStorageProtocol,
        lifetime: int = DEFAULT_CODE_LIFETIME,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.lifetime = timedelta(seconds=lifetime)
        self._clock = clock

    def issue(
        self,
        client_id: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str,
        scope: str,
        user_id: str,
        org_id: str | None = None,
        resource: str | None = None,
    ) -> str:
        """Persist a new code and return it.

        ``code_challenge_method`` must already have been checked to be S256.
        Raises StorageError if the code cannot be stored.
        """
        if code_challenge_method != PKCE_METHOD:
            raise ValueError(f"Unsupported code_challenge_method: {code_challenge_method}")

        now = self._clock()
        code = secrets.token_hex(32)
        self.storage.store_code(
            AuthorizationCode(
                code=code,
                client_id=client_id,
                redirect_uri=redirect_uri,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
                resource=resource or None,
                scope=scope,
                user_id=str(user_id),
                org_id=str(org_id) if org_id is not None else None,
                expires_at=now + self.lifetime,
                created_at=now,
            )
        )
        logger.info("Authorization code issued for user %s (client %s)", user_id, client_id)
        return code

    def redeem(
        self, code: str, redirect_uri: str | None, code_verifier: str | None
    ) -> tuple[CodeData | None, RedeemFailure | None]:
        """Consume *code* and return its bound data.

        The code is removed from storage before the PKCE and redirect checks
        run, so a code never survives a redemption attempt: a failed check
        leaves it permanently rejected and concurrent attempts cannot both
        see it.
        """
        if not code:
            return None, RedeemFailure.INVALID_OR_EXPIRED

        record = self.storage.take_code(code, self._clock())
        if record is None:
            logger.info("Authorization code redemption refused: unknown or expired code")
            return None, RedeemFailure.INVALID_OR_EXPIRED

        if not verify_pkce(record.code_challenge, code_verifier):
            logger.warning("PKCE verification failed for client %s", record.client_id)
            return None, RedeemFailure.PKCE_MISMATCH

        if record.redirect_uri != redirect_uri:
            logger.warning("Redirect URI mismatch for client %s", record.client_id)
            return None, RedeemFailure.REDIRECT_MISMATCH

        logger.info("Authorization code consumed for user %s", record.user_id)
        return CodeData.from_code(record), None

    def delete_all_expired(self) -> int:
        return self.storage.cleanup_expired(self._clock(), kinds=("codes",))["codes"]
