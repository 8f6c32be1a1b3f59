# OAuth2 scope registry.
# Created: 2026-02-20
#
# Explicitly constructed and passed to the services that need it. Scopes are
# registered during startup; call freeze() once configuration is done so that
# request handling only ever reads.

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from mcpauth.oauth2.models import ScopeDefinition

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = (
    ScopeDefinition("mcp:read", "Read Access", "Read your data and resources", required=True),
    ScopeDefinition("mcp:write", "Write Access", "Create and modify data on your behalf"),
)


def split_scopes(scopes: str | Iterable[str] | None) -> list[str]:
    """Accept a space-delimited string or an iterable of scope keys."""
    if not scopes:
        return []
    if isinstance(scopes, str):
        return scopes.split()
    return [str(s) for s in scopes]


class ScopeRegistry:
    """Authoritative set of scopes a client may be granted.

    The registry holds exactly what it was built with plus what is registered.
    Custom scopes registered on a ``with_defaults()`` registry are added next
    to ``mcp:read``/``mcp:write`` rather than replacing them, and an empty
    registry grants nothing. Hosts that want only their own scopes start from
    ``ScopeRegistry()``.
    """

    def __init__(self, scopes: Iterable[ScopeDefinition] = ()):
        self._scopes: dict[str, ScopeDefinition] = {}
        self._lock = threading.Lock()
        self._frozen = False
        for scope in scopes:
            self._scopes[scope.key] = scope

    @classmethod
    def with_defaults(cls) -> ScopeRegistry:
        return cls(DEFAULT_SCOPES)

    def register(
        self, key: str, name: str, description: str, required: bool = False
    ) -> ScopeDefinition:
        """Add or replace a scope definition."""
        definition = ScopeDefinition(str(key), name, description, required)
        with self._lock:
            if self._frozen:
                raise RuntimeError("Scope registry is frozen; register scopes at startup")
            self._scopes[definition.key] = definition
        logger.debug("Registered scope %s (required=%s)", definition.key, required)
        return definition

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def clear(self) -> None:
        with self._lock:
            if self._frozen:
                raise RuntimeError("Scope registry is frozen")
            self._scopes = {}

    @property
    def scopes(self) -> dict[str, ScopeDefinition]:
        return dict(self._scopes)

    def exists(self, key: str) -> bool:
        return key in self._scopes

    def metadata(self, key: str) -> ScopeDefinition:
        """Definition for *key*, or a placeholder for unknown scopes."""
        return self._scopes.get(key) or ScopeDefinition(key, key, key, False)

    def required_scopes(self) -> list[str]:
        return [key for key, scope in self._scopes.items() if scope.required]

    def default_scope_string(self) -> str:
        return " ".join(self._scopes)

    def validate(self, requested: str | Iterable[str] | None) -> list[str]:
        """Filter *requested* down to known scopes and add the required ones.

        With nothing requested, exactly the required scopes are granted.
        """
        required = self.required_scopes()
        keys = split_scopes(requested)
        if not keys:
            return required

        granted: list[str] = []
        for key in [*keys, *required]:
            if key in self._scopes and key not in granted:
                granted.append(key)

        dropped = [key for key in keys if key not in self._scopes]
        if dropped:
            logger.info("Dropped unknown scopes from request: %s", " ".join(dropped))
        return granted

    def describe(self, scopes: str | Iterable[str] | None) -> list[dict]:
        """Scope metadata for consent screens."""
        return [self.metadata(key).to_dict() for key in split_scopes(scopes)]
