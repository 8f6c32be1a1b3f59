# Discovery documents.
# Created: 2026-02-20
#
# RFC 8414 authorization server metadata, RFC 9728 protected resource
# metadata and the OpenID discovery document. Signing is symmetric, so the
# published JWKS is always empty.

from __future__ import annotations

from mcpauth.oauth2.models import PKCE_METHOD
from mcpauth.oauth2.scopes import ScopeRegistry

_AUTH_METHODS = ["client_secret_basic", "client_secret_post", "none"]
_GRANT_TYPES = ["authorization_code", "refresh_token"]


def authorization_server_metadata(issuer: str, scopes: ScopeRegistry) -> dict:
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth/authorize",
        "token_endpoint": f"{issuer}/oauth/token",
        "registration_endpoint": f"{issuer}/oauth/register",
        "revocation_endpoint": f"{issuer}/oauth/revoke",
        "introspection_endpoint": f"{issuer}/oauth/introspect",
        "scopes_supported": list(scopes.scopes),
        "response_types_supported": ["code"],
        "grant_types_supported": _GRANT_TYPES,
        "code_challenge_methods_supported": [PKCE_METHOD],
        "token_endpoint_auth_methods_supported": _AUTH_METHODS,
        "resource_parameter_supported": True,
        "authorization_response_iss_parameter_supported": True,
        "require_pushed_authorization_requests": False,
        "require_signed_request_object": False,
        "revocation_endpoint_auth_methods_supported": _AUTH_METHODS,
        "introspection_endpoint_auth_methods_supported": _AUTH_METHODS,
    }


def protected_resource_metadata(
    resource: str, issuer: str, scopes: ScopeRegistry, documentation: str | None = None
) -> dict:
    metadata = {
        "resource": resource,
        "authorization_servers": [issuer],
        "scopes_supported": list(scopes.scopes),
        "bearer_methods_supported": ["header"],
        "resource_parameter_supported": True,
        "authorization_response_iss_parameter_supported": True,
    }
    if documentation:
        metadata["resource_documentation"] = documentation
    return metadata


def openid_configuration(issuer: str, scopes: ScopeRegistry) -> dict:
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth/authorize",
        "token_endpoint": f"{issuer}/oauth/token",
        "registration_endpoint": f"{issuer}/oauth/register",
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "userinfo_endpoint": f"{issuer}/oauth/userinfo",
        "scopes_supported": ["openid", *scopes.scopes],
        "response_types_supported": ["code"],
        "grant_types_supported": _GRANT_TYPES,
        "code_challenge_methods_supported": [PKCE_METHOD],
        "token_endpoint_auth_methods_supported": _AUTH_METHODS,
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["HS256"],
    }


def jwks() -> dict:
    return {"keys": []}
