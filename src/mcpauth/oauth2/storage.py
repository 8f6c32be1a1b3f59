# OAuth2 client, code and token storage.
# Created: 2026-02-20
#
# Two interchangeable backends implement OAuthStorageProtocol:
#   InMemoryOAuthStorage  - dicts behind a lock (tests, single process)
#   SQLiteOAuthStorage    - durable, safe across threads and processes
#
# The conditional deletes (take_code, delete_refresh_token) are the
# primitives the services build their one-time-use guarantees on: for a
# given key exactly one concurrent caller observes success.

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import closing, contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from mcpauth.oauth2.errors import StorageError
from mcpauth.oauth2.models import (
    AccessTokenRecord,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
)

logger = logging.getLogger(__name__)

RECORD_KINDS = ("codes", "access_tokens", "refresh_tokens")


class OAuthStorageProtocol(Protocol):
    """Persistence interface consumed by the OAuth2 services."""

    def get_client(self, client_id: str) -> OAuthClient | None: ...

    def save_client(self, client: OAuthClient) -> None: ...

    def delete_client(self, client_id: str) -> bool:
        """Delete a client together with its codes and tokens."""
        ...

    def store_code(self, code: AuthorizationCode) -> None: ...

    def take_code(self, code: str, now: datetime) -> AuthorizationCode | None:
        """Delete and return *code* if it exists and has not expired."""
        ...

    def store_access_token(self, record: AccessTokenRecord) -> None: ...

    def get_access_token(self, token: str) -> AccessTokenRecord | None: ...

    def delete_access_token(self, token: str) -> bool: ...

    def store_refresh_token(self, record: RefreshToken) -> None: ...

    def get_refresh_token(self, token: str) -> RefreshToken | None: ...

    def delete_refresh_token(self, token: str) -> bool:
        """Delete *token*. Returns True only for the caller that removed it."""
        ...

    def cleanup_expired(
        self, now: datetime, kinds: Iterable[str] = RECORD_KINDS
    ) -> dict[str, int]:
        """Delete expired records of the given kinds, returning counts per kind."""
        ...


class InMemoryOAuthStorage:
    """Process-local storage. Every operation holds a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: dict[str, OAuthClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._access_tokens: dict[str, AccessTokenRecord] = {}
        self._refresh_tokens: dict[str, RefreshToken] = {}

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            return self._clients.get(client_id)

    def save_client(self, client: OAuthClient) -> None:
        with self._lock:
            if client.client_id in self._clients:
                raise StorageError(f"Duplicate client_id: {client.client_id}")
            self._clients[client.client_id] = client

    def delete_client(self, client_id: str) -> bool:
        with self._lock:
            if self._clients.pop(client_id, None) is None:
                return False
            for table in (self._codes, self._access_tokens, self._refresh_tokens):
                for key in [k for k, v in table.items() if v.client_id == client_id]:
                    del table[key]
            return True

    def store_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            if code.code in self._codes:
                raise StorageError("Duplicate authorization code")
            self._codes[code.code] = code

    def take_code(self, code: str, now: datetime) -> AuthorizationCode | None:
        with self._lock:
            record = self._codes.get(code)
            if record is None or record.expired(now):
                return None
            del self._codes[code]
            return record

    def store_access_token(self, record: AccessTokenRecord) -> None:
        with self._lock:
            if record.token in self._access_tokens:
                raise StorageError("Duplicate access token")
            self._access_tokens[record.token] = record

    def get_access_token(self, token: str) -> AccessTokenRecord | None:
        with self._lock:
            return self._access_tokens.get(token)

    def delete_access_token(self, token: str) -> bool:
        with self._lock:
            return self._access_tokens.pop(token, None) is not None

    def store_refresh_token(self, record: RefreshToken) -> None:
        with self._lock:
            if record.token in self._refresh_tokens:
                raise StorageError("Duplicate refresh token")
            self._refresh_tokens[record.token] = record

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self._lock:
            return self._refresh_tokens.get(token)

    def delete_refresh_token(self, token: str) -> bool:
        with self._lock:
            return self._refresh_tokens.pop(token, None) is not None

    def cleanup_expired(
        self, now: datetime, kinds: Iterable[str] = RECORD_KINDS
    ) -> dict[str, int]:
        tables = {
            "codes": self._codes,
            "access_tokens": self._access_tokens,
            "refresh_tokens": self._refresh_tokens,
        }
        counts = {}
        with self._lock:
            for name in kinds:
                table = tables[name]
                expired = [k for k, v in table.items() if v.expired(now)]
                for k in expired:
                    del table[k]
                counts[name] = len(expired)
        return counts


_SCHEMA = """
CREATE TABLE IF NOT EXISTS oauth_clients (
    client_id TEXT PRIMARY KEY,
    client_secret TEXT NOT NULL,
    redirect_uris TEXT NOT NULL,
    grant_types TEXT NOT NULL,
    response_types TEXT NOT NULL,
    scope TEXT NOT NULL,
    client_name TEXT NOT NULL,
    client_uri TEXT,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS authorization_codes (
    code TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    code_challenge TEXT NOT NULL,
    code_challenge_method TEXT NOT NULL,
    resource TEXT,
    scope TEXT NOT NULL,
    user_id TEXT NOT NULL,
    org_id TEXT,
    expires_at REAL NOT NULL,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS access_tokens (
    token TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    resource TEXT,
    scope TEXT NOT NULL,
    user_id TEXT NOT NULL,
    org_id TEXT,
    expires_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS refresh_tokens (
    token TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    scope TEXT NOT NULL,
    user_id TEXT NOT NULL,
    org_id TEXT,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_codes_client ON authorization_codes (client_id);
CREATE INDEX IF NOT EXISTS idx_access_client ON access_tokens (client_id);
CREATE INDEX IF NOT EXISTS idx_refresh_client ON refresh_tokens (client_id);
"""

_KIND_TABLES = {
    "codes": "authorization_codes",
    "access_tokens": "access_tokens",
    "refresh_tokens": "refresh_tokens",
}


def _ts(value: datetime) -> float:
    return value.timestamp()


def _dt(value: float) -> datetime:
    return datetime.fromtimestamp(value, UTC)


class SQLiteOAuthStorage:
    """SQLite-backed storage.

    Each operation opens its own connection, so one instance can be shared
    by any number of request threads. Conditional deletes run inside
    ``BEGIN IMMEDIATE`` transactions, which serialize writers across
    processes as well.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        self._db_path = Path(db_path)
        self._timeout = timeout
        if not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
        logger.debug("OAuth storage ready at %s", self._db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open OAuth database: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StorageError(f"Constraint violation: {exc}") from exc
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StorageError(str(exc)) from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _fetch_one(self, sql: str, params: tuple) -> sqlite3.Row | None:
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    # -- clients -----------------------------------------------------------

    def get_client(self, client_id: str) -> OAuthClient | None:
        row = self._fetch_one("SELECT * FROM oauth_clients WHERE client_id = ?", (client_id,))
        if row is None:
            return None
        return OAuthClient(
            client_id=row["client_id"],
            client_secret=row["client_secret"],
            redirect_uris=json.loads(row["redirect_uris"]),
            grant_types=json.loads(row["grant_types"]),
            response_types=json.loads(row["response_types"]),
            scope=row["scope"],
            client_name=row["client_name"],
            client_uri=row["client_uri"],
            created_at=_dt(row["created_at"]),
        )

    def save_client(self, client: OAuthClient) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_clients (
                    client_id, client_secret, redirect_uris, grant_types,
                    response_types, scope, client_name, client_uri, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    client.client_id,
                    client.client_secret,
                    json.dumps(client.redirect_uris),
                    json.dumps(client.grant_types),
                    json.dumps(client.response_types),
                    client.scope,
                    client.client_name,
                    client.client_uri,
                    _ts(client.created_at),
                ),
            )

    def delete_client(self, client_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM oauth_clients WHERE client_id = ?", (client_id,))
            if cur.rowcount == 0:
                return False
            for table in _KIND_TABLES.values():
                conn.execute(f"DELETE FROM {table} WHERE client_id = ?", (client_id,))
            return True

    # -- authorization codes ----------------------------------------------

    def store_code(self, code: AuthorizationCode) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO authorization_codes (
                    code, client_id, redirect_uri, code_challenge,
                    code_challenge_method, resource, scope, user_id, org_id,
                    expires_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    code.code,
                    code.client_id,
                    code.redirect_uri,
                    code.code_challenge,
                    code.code_challenge_method,
                    code.resource,
                    code.scope,
                    code.user_id,
                    code.org_id,
                    _ts(code.expires_at),
                    _ts(code.created_at),
                ),
            )

    def take_code(self, code: str, now: datetime) -> AuthorizationCode | None:
        with self._transaction() as conn:
            rows = conn.execute(
                "DELETE FROM authorization_codes WHERE code = ? AND expires_at > ? RETURNING *",
                (code, _ts(now)),
            ).fetchall()
        if not rows:
            return None
        row = rows[0]
        return AuthorizationCode(
            code=row["code"],
            client_id=row["client_id"],
            redirect_uri=row["redirect_uri"],
            code_challenge=row["code_challenge"],
            code_challenge_method=row["code_challenge_method"],
            resource=row["resource"],
            scope=row["scope"],
            user_id=row["user_id"],
            org_id=row["org_id"],
            expires_at=_dt(row["expires_at"]),
            created_at=_dt(row["created_at"]),
        )

    # -- access tokens ----------------------------------------------------

    def store_access_token(self, record: AccessTokenRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO access_tokens (
                    token, client_id, resource, scope, user_id, org_id, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.token,
                    record.client_id,
                    record.resource,
                    record.scope,
                    record.user_id,
                    record.org_id,
                    _ts(record.expires_at),
                ),
            )

    def get_access_token(self, token: str) -> AccessTokenRecord | None:
        row = self._fetch_one("SELECT * FROM access_tokens WHERE token = ?", (token,))
        if row is None:
            return None
        return AccessTokenRecord(
            token=row["token"],
            client_id=row["client_id"],
            resource=row["resource"],
            scope=row["scope"],
            user_id=row["user_id"],
            org_id=row["org_id"],
            expires_at=_dt(row["expires_at"]),
        )

    def delete_access_token(self, token: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM access_tokens WHERE token = ?", (token,))
            return cur.rowcount > 0

    # -- refresh tokens ---------------------------------------------------

    def store_refresh_token(self, record: RefreshToken) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO refresh_tokens (
                    token, client_id, scope, user_id, org_id, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.token,
                    record.client_id,
                    record.scope,
                    record.user_id,
                    record.org_id,
                    _ts(record.expires_at),
                ),
            )

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        row = self._fetch_one("SELECT * FROM refresh_tokens WHERE token = ?", (token,))
        if row is None:
            return None
        return RefreshToken(
            token=row["token"],
            client_id=row["client_id"],
            scope=row["scope"],
            user_id=row["user_id"],
            org_id=row["org_id"],
            expires_at=_dt(row["expires_at"]),
        )

    def delete_refresh_token(self, token: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM refresh_tokens WHERE token = ?", (token,))
            return cur.rowcount > 0

    def cleanup_expired(
        self, now: datetime, kinds: Iterable[str] = RECORD_KINDS
    ) -> dict[str, int]:
        counts = {}
        with self._transaction() as conn:
            for name in kinds:
                table = _KIND_TABLES[name]
                cur = conn.execute(f"DELETE FROM {table} WHERE expires_at <= ?", (_ts(now),))
                counts[name] = cur.rowcount
        return counts
