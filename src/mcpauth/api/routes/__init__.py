# Router aggregation.
# Created: 2026-02-20
#
# mount_routers(app) registers the OAuth endpoints (/oauth/*) and the
# discovery documents (/.well-known/*) at the application root.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Routers are imported lazily inside mount_routers() to avoid circular imports.
_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("mcpauth.api.routes.oauth2", "router", "OAuth2"),
    ("mcpauth.api.routes.well_known", "router", "Discovery"),
]


def mount_routers(app: FastAPI) -> None:
    """Mount all routers on *app*."""
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, tag in _ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router)
        logger.debug("Mounted router: %s (%s)", module_path, tag)
