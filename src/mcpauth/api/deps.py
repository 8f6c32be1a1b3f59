# Shared FastAPI dependencies for the API layer.
# Created: 2026-02-20

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request

from mcpauth.oauth2.server import get_oauth_server


@dataclass(frozen=True)
class Identity:
    """The signed-in user (and org) as established by the host application."""

    user_id: str
    org_id: str | None = None


def base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def canonical_resource_url(request: Request) -> str:
    """RFC 8707 canonical URI of the protected API on this host."""
    return base_url(request) + get_oauth_server().tokens.resource_path


async def current_identity(request: Request) -> Identity:
    """Resolve the signed-in user.

    The host's own session middleware is expected to set
    ``request.state.user_id`` (and optionally ``org_id``), or to replace
    this dependency through ``app.dependency_overrides``.
    """
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(
            status_code=401,
            detail={"error": "login_required", "error_description": "User is not signed in"},
        )
    return Identity(user_id=str(user_id), org_id=getattr(request.state, "org_id", None))


async def require_bearer(request: Request) -> dict:
    """FastAPI dependency that guards the protected API with a bearer token.

    Usage::

        @router.get("/mcp/api/tools", dependencies=[Depends(require_bearer)])
        async def list_tools(...): ...

    The token must be valid for this host's canonical resource URL. On
    success the claims are stored on ``request.state`` (``mcp_user_id``,
    ``mcp_org_id``, ``mcp_email``, ``mcp_scope``, ``mcp_api_key``) and returned.
    """
    resource_metadata_url = f"{base_url(request)}/.well-known/oauth-protected-resource"
    auth_header = request.headers.get("Authorization", "")

    claims = None
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        claims = get_oauth_server().tokens.validate_access_token(
            token, resource=canonical_resource_url(request)
        )

    if claims is None:
        scopes = get_oauth_server().scopes.default_scope_string()
        raise HTTPException(
            status_code=401,
            detail={
                "error": "invalid_token",
                "error_description": "Valid OAuth access token required",
                "oauth_authorization_url": f"{base_url(request)}/oauth/authorize",
                "resource_metadata_url": resource_metadata_url,
            },
            headers={
                "WWW-Authenticate": (
                    f'Bearer resource_metadata="{resource_metadata_url}", scope="{scopes}"'
                )
            },
        )

    request.state.mcp_user_id = claims.get("sub")
    request.state.mcp_org_id = claims.get("org")
    request.state.mcp_email = claims.get("email")
    request.state.mcp_scope = claims.get("scope")
    if claims.get("api_key_id") and claims.get("api_key_secret"):
        request.state.mcp_api_key = f"{claims['api_key_id']} {claims['api_key_secret']}"
    return claims


def require_scope(*scopes: str):
    """FastAPI dependency that checks the bearer token's scopes.

    Usage::

        @router.post("/mcp/api/orders", dependencies=[Depends(require_scope("mcp:write"))])
        async def create_order(...): ...

    The token must carry at least one of *scopes*.
    """

    async def _check(request: Request) -> None:
        claims = await require_bearer(request)
        token_scopes = set((claims.get("scope") or "").split())
        required = set(scopes)
        if not token_scopes & required:
            raise HTTPException(
                status_code=403,
                detail={
                    "error": "insufficient_scope",
                    "error_description": f"Token missing required scope: "
                    f"{' or '.join(sorted(required))}",
                },
            )

    return _check
