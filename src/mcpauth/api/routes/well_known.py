# Discovery endpoints under /.well-known.
# Created: 2026-02-20

from __future__ import annotations

from fastapi import APIRouter, Request

from mcpauth.api.deps import base_url, canonical_resource_url
from mcpauth.config import get_settings
from mcpauth.oauth2 import metadata
from mcpauth.oauth2.server import get_oauth_server

router = APIRouter(prefix="/.well-known", tags=["Discovery"])


@router.get("/oauth-protected-resource")
async def protected_resource(request: Request):
    """RFC 9728 protected resource metadata."""
    server = get_oauth_server()
    return metadata.protected_resource_metadata(
        resource=canonical_resource_url(request),
        issuer=server.issuer(base_url(request)),
        scopes=server.scopes,
        documentation=base_url(request) + get_settings().resource_documentation_path,
    )


@router.get("/oauth-authorization-server")
async def authorization_server(request: Request):
    """RFC 8414 authorization server metadata."""
    server = get_oauth_server()
    return metadata.authorization_server_metadata(server.issuer(base_url(request)), server.scopes)


@router.get("/openid-configuration")
async def openid_configuration(request: Request):
    server = get_oauth_server()
    return metadata.openid_configuration(server.issuer(base_url(request)), server.scopes)


@router.get("/jwks.json")
async def jwks():
    return metadata.jwks()
