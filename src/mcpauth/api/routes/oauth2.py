# OAuth2 router: authorize, token, register, revoke, introspect and userinfo.
# Created: 2026-02-20
#
# Thin HTTP glue over AuthorizationServer. Protocol errors are rendered as
# RFC 6749 ``{"error", "error_description"}`` bodies.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from mcpauth.api.deps import Identity, base_url, current_identity
from mcpauth.api.schemas.oauth2 import (
    ClientRegistrationRequest,
    ConsentResponse,
    TokenParam,
    TokenRequest,
    TokenResponse,
)
from mcpauth.oauth2.errors import OAuthError, invalid_request
from mcpauth.oauth2.server import AuthorizationRequest, get_oauth_server

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["OAuth2"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _error_response(error: OAuthError) -> JSONResponse:
    logger.info("OAuth error: %s (%s)", error.error.value, error.description)
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=_NO_STORE)


async def _read_params(request: Request) -> dict:
    """Parameters from a form-encoded or JSON body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


def _redirect_or_error(result, error: OAuthError | None):
    if error:
        return _error_response(error)
    return RedirectResponse(result.redirect_to, status_code=302)


@router.get("/authorize", response_model=ConsentResponse)
async def authorize(
    request: Request,
    response_type: str = Query(""),
    client_id: str = Query(""),
    redirect_uri: str = Query(""),
    code_challenge: str = Query(""),
    code_challenge_method: str = Query(""),
    scope: str | None = Query(None),
    state: str | None = Query(None),
    resource: str | None = Query(None),
    approved: bool | None = Query(None),
    identity: Identity = Depends(current_identity),
):
    """Authorization endpoint.

    Without ``approved`` this returns the consent context for the host to
    render. With ``approved`` it records the user's decision and redirects
    back to the client.
    """
    server = get_oauth_server()
    auth_request = AuthorizationRequest(
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        scope=scope,
        state=state,
        resource=resource,
    )

    if approved is None:
        context, error = server.consent_context(auth_request)
        if error:
            return _error_response(error)
        return ConsentResponse(
            client_id=context.client_id,
            client_name=context.client_name,
            scopes=context.scopes,
            redirect_uri=redirect_uri,
            state=state,
            resource=resource,
        )

    result, error = server.authorize(
        auth_request,
        user_id=identity.user_id,
        org_id=identity.org_id,
        approved=approved,
        base_url=base_url(request),
    )
    return _redirect_or_error(result, error)


@router.post("/authorize/consent")
async def authorize_consent(request: Request, identity: Identity = Depends(current_identity)):
    """Process a consent form submission (``action`` = allow | deny)."""
    form = await request.form()
    auth_request = AuthorizationRequest(
        response_type=str(form.get("response_type", "code")),
        client_id=str(form.get("client_id", "")),
        redirect_uri=str(form.get("redirect_uri", "")),
        code_challenge=str(form.get("code_challenge", "")),
        code_challenge_method=str(form.get("code_challenge_method", "")),
        scope=str(form.get("scope", "")) or None,
        state=str(form.get("state", "")) or None,
        resource=str(form.get("resource", "")) or None,
    )
    result, error = get_oauth_server().authorize(
        auth_request,
        user_id=identity.user_id,
        org_id=identity.org_id,
        approved=form.get("action") == "allow",
        base_url=base_url(request),
    )
    return _redirect_or_error(result, error)


@router.post("/token", response_model=TokenResponse)
async def token_exchange(request: Request):
    """Exchange an authorization code or refresh token for tokens."""
    try:
        body = TokenRequest.model_validate(await _read_params(request))
    except ValidationError:
        return _error_response(invalid_request("Malformed token request"))

    result, error = get_oauth_server().token(
        grant_type=body.grant_type,
        base_url=base_url(request),
        code=body.code,
        redirect_uri=body.redirect_uri,
        code_verifier=body.code_verifier,
        client_id=body.client_id,
        refresh_token=body.refresh_token,
        resource=body.resource,
    )
    if error:
        return _error_response(error)
    return JSONResponse(content=result, headers=_NO_STORE)


@router.post("/register", status_code=201)
async def register_client(body: ClientRegistrationRequest):
    """Dynamic client registration (RFC 7591)."""
    result, error = get_oauth_server().register_client(
        redirect_uris=body.redirect_uris,
        grant_types=body.grant_types,
        response_types=body.response_types,
        scope=body.scope,
        client_name=body.client_name,
        client_uri=body.client_uri,
    )
    if error:
        return _error_response(error)
    return JSONResponse(status_code=201, content=result, headers=_NO_STORE)


@router.post("/revoke")
async def revoke_token(request: Request):
    """Revoke an access or refresh token (RFC 7009)."""
    try:
        body = TokenParam.model_validate(await _read_params(request))
    except ValidationError:
        return _error_response(invalid_request("Malformed revocation request"))
    if not body.token:
        return _error_response(invalid_request("Token parameter is required"))

    revoked = get_oauth_server().revoke(body.token)
    return {"revoked": revoked}


@router.post("/introspect")
async def introspect_token(request: Request):
    """Token introspection (RFC 7662)."""
    try:
        body = TokenParam.model_validate(await _read_params(request))
    except ValidationError:
        return {"active": False}
    return get_oauth_server().introspect(body.token)


@router.get("/userinfo")
async def userinfo(request: Request):
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return JSONResponse(status_code=401, content={"error": "invalid_token"})

    info, error = get_oauth_server().userinfo(auth_header.split(" ", 1)[1].strip())
    if error:
        return JSONResponse(status_code=error.status_code, content={"error": error.error.value})
    return info
