# User data lookup used when minting access tokens.
# Created: 2026-02-20
#
# The host application supplies a UserDataProvider. A provider reports a
# failed lookup by returning None; the token service then falls back to a
# placeholder identity (or refuses to issue, depending on settings).

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from mcpauth.oauth2.models import UserData


class UserDataProvider(Protocol):
    """Capability that resolves a user (and optional org) to token claims."""

    def fetch_user_data(self, user_id: str, org_id: str | None) -> UserData | None: ...


class StaticUserDataProvider:
    """Provider backed by a fixed mapping of user_id to UserData."""

    def __init__(self, users: Mapping[str, UserData] | None = None):
        self._users = dict(users or {})

    def add(self, user_id: str, data: UserData) -> None:
        self._users[str(user_id)] = data

    def fetch_user_data(self, user_id: str, org_id: str | None) -> UserData | None:
        return self._users.get(str(user_id))
