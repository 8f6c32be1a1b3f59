# OAuth2 authorization server core.
# Created: 2026-02-20
#
# Storage, scope registry, code and token services, and the orchestrating
# AuthorizationServer. Nothing in this package depends on the HTTP layer.

from mcpauth.oauth2.codes import AuthorizationCodeService, compute_code_challenge, verify_pkce
from mcpauth.oauth2.errors import OAuthError, OAuthErrorCode, OAuthServerError, StorageError
from mcpauth.oauth2.scopes import ScopeRegistry
from mcpauth.oauth2.server import (
    AuthorizationRequest,
    AuthorizationServer,
    build_server,
    get_oauth_server,
    reset_oauth_server,
    set_oauth_server,
)
from mcpauth.oauth2.storage import InMemoryOAuthStorage, SQLiteOAuthStorage
from mcpauth.oauth2.tokens import TokenService, audience_matches, normalize_resource_uri

__all__ = [
    "AuthorizationCodeService",
    "AuthorizationRequest",
    "AuthorizationServer",
    "InMemoryOAuthStorage",
    "OAuthError",
    "OAuthErrorCode",
    "OAuthServerError",
    "SQLiteOAuthStorage",
    "ScopeRegistry",
    "StorageError",
    "TokenService",
    "audience_matches",
    "build_server",
    "compute_code_challenge",
    "get_oauth_server",
    "normalize_resource_uri",
    "reset_oauth_server",
    "set_oauth_server",
    "verify_pkce",
]
