# Tests for the OAuth2 HTTP endpoints and the bearer guard.
# Created: 2026-02-20

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from mcpauth.api.deps import Identity, current_identity, require_bearer, require_scope
from mcpauth.api.routes import oauth2, well_known
from mcpauth.oauth2.server import build_server
from mcpauth.oauth2.storage import InMemoryOAuthStorage

REDIRECT = "https://client.example/callback"


@pytest.fixture
def server(settings, clock):
    return build_server(settings, storage=InMemoryOAuthStorage(), clock=clock)


@pytest.fixture
def test_app(server, monkeypatch):
    import mcpauth.oauth2.server as mod

    monkeypatch.setattr(mod, "_server", server)
    app = FastAPI()
    app.include_router(oauth2.router)
    app.include_router(well_known.router)
    app.dependency_overrides[current_identity] = lambda: Identity(user_id="42", org_id="7")

    @app.get("/mcp/api/whoami", dependencies=[Depends(require_bearer)])
    async def whoami(request: Request):
        return {
            "user_id": request.state.mcp_user_id,
            "org_id": request.state.mcp_org_id,
            "email": request.state.mcp_email,
        }

    @app.post("/mcp/api/write", dependencies=[Depends(require_scope("mcp:write"))])
    async def write():
        return {"ok": True}

    return app


@pytest.fixture
def client(test_app):
    return TestClient(test_app)


@pytest.fixture
def client_id(client):
    resp = client.post(
        "/oauth/register", json={"redirect_uris": [REDIRECT], "client_name": "Test Client"}
    )
    assert resp.status_code == 201
    return resp.json()["client_id"]


def _authorize_params(client_id, challenge, **overrides):
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": REDIRECT,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "scope": "mcp:read mcp:write",
        "state": "abc",
    }
    params.update(overrides)
    return params


def _get_code(client, client_id, challenge, **overrides):
    resp = client.get(
        "/oauth/authorize",
        params={**_authorize_params(client_id, challenge, **overrides), "approved": "true"},
        follow_redirects=False,
    )
    assert resp.status_code == 302
    return parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]


def _get_tokens(client, client_id, pkce, scope="mcp:read mcp:write"):
    verifier, challenge = pkce()
    code = _get_code(client, client_id, challenge, scope=scope)
    resp = client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
            "client_id": client_id,
        },
    )
    assert resp.status_code == 200
    return resp.json()


class TestRegisterEndpoint:
    def test_register(self, client):
        resp = client.post("/oauth/register", json={"redirect_uris": [REDIRECT]})
        assert resp.status_code == 201
        data = resp.json()
        assert data["client_id"]
        assert data["client_secret"]
        assert data["redirect_uris"] == [REDIRECT]
        assert resp.headers["cache-control"] == "no-store"

    def test_register_without_redirect_uris(self, client):
        resp = client.post("/oauth/register", json={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_client_metadata"


class TestAuthorizeEndpoint:
    def test_consent_context(self, client, client_id, pkce):
        _, challenge = pkce()
        resp = client.get("/oauth/authorize", params=_authorize_params(client_id, challenge))
        assert resp.status_code == 200
        data = resp.json()
        assert data["client_name"] == "Test Client"
        assert [s["key"] for s in data["scopes"]] == ["mcp:read", "mcp:write"]
        assert data["state"] == "abc"

    def test_approve_redirects(self, client, client_id, pkce):
        _, challenge = pkce()
        resp = client.get(
            "/oauth/authorize",
            params={**_authorize_params(client_id, challenge), "approved": "true"},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith(REDIRECT)
        query = parse_qs(urlsplit(location).query)
        assert query["state"] == ["abc"]
        assert query["iss"] == ["http://testserver"]

    def test_consent_form_deny(self, client, client_id, pkce):
        _, challenge = pkce()
        resp = client.post(
            "/oauth/authorize/consent",
            data={**_authorize_params(client_id, challenge), "action": "deny"},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        query = parse_qs(urlsplit(resp.headers["location"]).query)
        assert query["error"] == ["access_denied"]
        assert query["state"] == ["abc"]

    def test_consent_form_allow(self, client, client_id, pkce):
        _, challenge = pkce()
        resp = client.post(
            "/oauth/authorize/consent",
            data={**_authorize_params(client_id, challenge), "action": "allow"},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        assert "code" in parse_qs(urlsplit(resp.headers["location"]).query)

    def test_unknown_client_is_not_redirected(self, client, pkce):
        _, challenge = pkce()
        resp = client.get(
            "/oauth/authorize",
            params={**_authorize_params("nope", challenge), "approved": "true"},
            follow_redirects=False,
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_client"

    def test_missing_challenge(self, client, client_id):
        resp = client.get("/oauth/authorize", params=_authorize_params(client_id, ""))
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_requires_signed_in_user(self, client, test_app, client_id, pkce):
        test_app.dependency_overrides.clear()
        _, challenge = pkce()
        resp = client.get("/oauth/authorize", params=_authorize_params(client_id, challenge))
        assert resp.status_code == 401
        assert resp.json()["detail"]["error"] == "login_required"


class TestTokenEndpoint:
    def test_full_scenario(self, client, client_id, pkce):
        verifier, challenge = pkce()
        code = _get_code(client, client_id, challenge)
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
            "client_id": client_id,
        }

        resp = client.post("/oauth/token", data=body)
        assert resp.status_code == 200
        tokens = resp.json()
        assert tokens["token_type"] == "Bearer"
        assert tokens["expires_in"] == 3600
        assert tokens["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"

        resp = client.post("/oauth/token", data=body)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_grant"

    def test_json_body(self, client, client_id, pkce):
        verifier, challenge = pkce()
        code = _get_code(client, client_id, challenge)
        resp = client.post(
            "/oauth/token",
            json={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": REDIRECT,
                "code_verifier": verifier,
            },
        )
        assert resp.status_code == 200

    def test_refresh(self, client, client_id, pkce):
        tokens = _get_tokens(client, client_id, pkce)
        resp = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"]},
        )
        assert resp.status_code == 200
        assert resp.json()["refresh_token"] != tokens["refresh_token"]

        resp = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_grant"

    def test_unsupported_grant_type(self, client):
        resp = client.post("/oauth/token", data={"grant_type": "password"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_grant_type"

    def test_missing_code(self, client):
        resp = client.post("/oauth/token", data={"grant_type": "authorization_code"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"


class TestRevokeIntrospectUserinfo:
    def test_revoke_requires_token(self, client):
        resp = client.post("/oauth/revoke", data={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_revoke_unknown_token(self, client):
        resp = client.post("/oauth/revoke", data={"token": "unknown"})
        assert resp.status_code == 200
        assert resp.json() == {"revoked": False}

    def test_revoke_then_introspect(self, client, client_id, pkce):
        tokens = _get_tokens(client, client_id, pkce)

        resp = client.post("/oauth/introspect", data={"token": tokens["access_token"]})
        assert resp.json()["active"] is True

        resp = client.post("/oauth/revoke", data={"token": tokens["access_token"]})
        assert resp.json() == {"revoked": True}

        resp = client.post("/oauth/introspect", data={"token": tokens["access_token"]})
        assert resp.json() == {"active": False}

    def test_introspect_without_token(self, client):
        assert client.post("/oauth/introspect", data={}).json() == {"active": False}

    def test_userinfo(self, client, client_id, pkce):
        tokens = _get_tokens(client, client_id, pkce)
        resp = client.get(
            "/oauth/userinfo", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert resp.status_code == 200
        assert resp.json()["sub"] == "42"

    def test_userinfo_without_token(self, client):
        resp = client.get("/oauth/userinfo")
        assert resp.status_code == 401
        assert resp.json() == {"error": "invalid_token"}


class TestBearerGuard:
    def test_valid_token(self, client, client_id, pkce):
        tokens = _get_tokens(client, client_id, pkce)
        resp = client.get(
            "/mcp/api/whoami", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "42", "org_id": "7", "email": "unknown@example.com"}

    def test_missing_token(self, client):
        resp = client.get("/mcp/api/whoami")
        assert resp.status_code == 401
        header = resp.headers["www-authenticate"]
        assert header.startswith("Bearer ")
        assert (
            'resource_metadata="http://testserver/.well-known/oauth-protected-resource"' in header
        )
        assert resp.json()["detail"]["error"] == "invalid_token"

    def test_token_for_other_audience(self, client, server, client_id, pkce):
        token = server.tokens.issue_access_token(
            client_id, "42", "mcp:read", "http://testserver", resource="https://other.example/api"
        )
        resp = client.get("/mcp/api/whoami", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_scope_required(self, client, client_id, pkce):
        read_only = _get_tokens(client, client_id, pkce, scope="mcp:read")
        resp = client.post(
            "/mcp/api/write", headers={"Authorization": f"Bearer {read_only['access_token']}"}
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["error"] == "insufficient_scope"

        full = _get_tokens(client, client_id, pkce)
        resp = client.post(
            "/mcp/api/write", headers={"Authorization": f"Bearer {full['access_token']}"}
        )
        assert resp.status_code == 200


class TestConfiguredIssuer:
    def test_bearer_guard_accepts_tokens(self, settings, clock, client, monkeypatch, pkce):
        import mcpauth.oauth2.server as mod

        settings.authorization_server_url = "https://auth.example.com"
        monkeypatch.setattr(
            mod, "_server", build_server(settings, storage=InMemoryOAuthStorage(), clock=clock)
        )
        resp = client.post("/oauth/register", json={"redirect_uris": [REDIRECT]})
        tokens = _get_tokens(client, resp.json()["client_id"], pkce)

        resp = client.get(
            "/mcp/api/whoami", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert resp.status_code == 200

        claims = mod._server.tokens.validate_access_token(tokens["access_token"])
        assert claims["iss"] == "https://auth.example.com"
        resource = client.get("/.well-known/oauth-protected-resource").json()["resource"]
        assert claims["aud"] == resource


class TestWellKnown:
    def test_protected_resource(self, client):
        data = client.get("/.well-known/oauth-protected-resource").json()
        assert data["resource"] == "http://testserver/mcp/api"
        assert data["authorization_servers"] == ["http://testserver"]
        assert data["scopes_supported"] == ["mcp:read", "mcp:write"]

    def test_authorization_server(self, client):
        data = client.get("/.well-known/oauth-authorization-server").json()
        assert data["issuer"] == "http://testserver"
        assert data["token_endpoint"] == "http://testserver/oauth/token"
        assert data["code_challenge_methods_supported"] == ["S256"]

    def test_openid_configuration(self, client):
        data = client.get("/.well-known/openid-configuration").json()
        assert "openid" in data["scopes_supported"]

    def test_jwks(self, client):
        assert client.get("/.well-known/jwks.json").json() == {"keys": []}
