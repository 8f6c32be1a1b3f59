"""API server for ``mcpauth serve``.

Builds a FastAPI application exposing the OAuth endpoints and discovery
documents. Host applications embedding the core usually call
``mount_routers`` on their own app instead and install their
``current_identity`` override and UserDataProvider.
"""

from __future__ import annotations

import logging

from mcpauth.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)


def create_api_app(server: AuthorizationServer | None = None, settings=None):
    """Build the FastAPI application.

    If *server* is given it becomes the process-wide AuthorizationServer;
    otherwise one is built lazily from settings on first use.
    """
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from mcpauth import __version__
    from mcpauth.api.routes import mount_routers
    from mcpauth.config import get_settings
    from mcpauth.oauth2.server import set_oauth_server

    settings = settings or get_settings()
    if server is not None:
        set_oauth_server(server)

    app = FastAPI(
        title="mcpauth",
        description="OAuth 2.1 authorization server for protected MCP APIs.",
        version=__version__,
    )

    # --- CORS -----------------------------------------------------------
    # Token and discovery endpoints are called cross-origin by browser-based
    # MCP clients; without configured origins every origin is accepted.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    mount_routers(app)
    return app


def run_api_server(host: str = "127.0.0.1", port: int = 8000, dev: bool = False) -> None:
    """Start the API server with uvicorn."""
    import uvicorn

    logger.info("mcpauth listening on http://%s:%d", host, port)
    if dev:
        uvicorn.run(
            "mcpauth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level="debug",
        )
    else:
        uvicorn.run(create_api_app(), host=host, port=port)
