from __future__ import annotations

import contextlib
import json
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from typing import Any

from . import logging_bridge
from .errors import RepositoryError
from .models import User
from .utils import now_iso

# ---- Contract -------------------------------------------------------------------


class ListingRepository(ABC):
    """Persistence contract used by the core. Implementations raise RepositoryError on storage failure."""

    @abstractmethod
    def get_checkpoints(self, user_id: str, provider: str) -> list[str]: ...

    @abstractmethod
    def set_checkpoints(self, user_id: str, provider: str, hashes: Sequence[str]) -> None: ...

    @abstractmethod
    def get_provider_count_for_user(self, user_id: str) -> int: ...

    @abstractmethod
    def clear_user(self, user_id: str) -> None: ...


# ---- In-memory ------------------------------------------------------------------


class InMemoryListingRepository(ListingRepository):
    """Process-local checkpoints; used for tests and for `run` without a database."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._checkpoints: dict[tuple[str, str], list[str]] = {}

    def get_checkpoints(self, user_id: str, provider: str) -> list[str]:
        with self._lock:
            return list(self._checkpoints.get((user_id, provider), []))

    def set_checkpoints(self, user_id: str, provider: str, hashes: Sequence[str]) -> None:
        with self._lock:
            self._checkpoints[(user_id, provider)] = list(hashes)

    def get_provider_count_for_user(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for uid, _ in self._checkpoints if uid == user_id)

    def clear_user(self, user_id: str) -> None:
        with self._lock:
            for key in [k for k in self._checkpoints if k[0] == user_id]:
                del self._checkpoints[key]


# ---- SQLite ---------------------------------------------------------------------


class SqliteListingRepository(ListingRepository):
    """
    SQLite-backed repository: checkpoints, registered users with their
    searches, and the geo lookup cache used by API providers.

    Every sqlite3.Error is logged and re-raised as RepositoryError.
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        self.init_db()

    # ---- schema ----

    def init_db(self) -> None:
        """Ensure the database file and schema exist. Safe to call multiple times."""
        with self._tx("init_db", write=False) as conn:
            _ensure_schema(conn)

    # ---- checkpoints ----

    def get_checkpoints(self, user_id: str, provider: str) -> list[str]:
        with self._tx("get_checkpoints", write=False) as conn:
            row = conn.execute(
                "SELECT hashes FROM checkpoints WHERE user_id = ? AND provider = ?",
                (user_id, provider),
            ).fetchone()
        if not row:
            return []
        hashes = self._decode("get_checkpoints", row[0])
        if not isinstance(hashes, list):
            self._log_failure("get_checkpoints", TypeError(f"hashes is {type(hashes).__name__}"))
            raise RepositoryError(f"get_checkpoints failed: corrupt checkpoint for {user_id}/{provider}")
        return [str(h) for h in hashes]

    def set_checkpoints(self, user_id: str, provider: str, hashes: Sequence[str]) -> None:
        with self._tx("set_checkpoints") as conn:
            conn.execute(
                """
                INSERT INTO checkpoints (user_id, provider, hashes, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, provider)
                DO UPDATE SET hashes = excluded.hashes, updated_at = excluded.updated_at
                """,
                (user_id, provider, json.dumps(list(hashes)), now_iso()),
            )

    def clear_provider_checkpoint(self, user_id: str, provider: str) -> None:
        with self._tx("clear_provider_checkpoint") as conn:
            conn.execute("DELETE FROM checkpoints WHERE user_id = ? AND provider = ?", (user_id, provider))

    def get_provider_count_for_user(self, user_id: str) -> int:
        with self._tx("get_provider_count_for_user", write=False) as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM checkpoints WHERE user_id = ?", (user_id,)).fetchone()
        return int(n or 0)

    def clear_user(self, user_id: str) -> None:
        """Drop every checkpoint of a user; saved searches are left alone."""
        with self._tx("clear_user") as conn:
            conn.execute("DELETE FROM checkpoints WHERE user_id = ?", (user_id,))

    # ---- users & searches ----

    def register_user(self, user_id: str, first_name: str, username: str | None = None) -> bool:
        """Insert the user if unknown. Returns True when a new row was created."""
        with self._tx("register_user") as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO users (id, username, first_name, created_at) VALUES (?, ?, ?, ?)",
                (user_id, username, first_name, now_iso()),
            )
            return cur.rowcount == 1

    def get_user(self, user_id: str) -> User | None:
        with self._tx("get_user", write=False) as conn:
            row = conn.execute("SELECT id, first_name FROM users WHERE id = ?", (user_id,)).fetchone()
            if not row:
                return None
            providers = _providers_for(conn, user_id)
        return User(id=row[0], name=row[1], providers=providers)

    def get_all_users(self) -> list[User]:
        with self._tx("get_all_users", write=False) as conn:
            rows = conn.execute("SELECT id, first_name FROM users ORDER BY created_at, id").fetchall()
            return [User(id=uid, name=name, providers=_providers_for(conn, uid)) for uid, name in rows]

    def get_user_provider(self, user_id: str, provider: str) -> str | None:
        with self._tx("get_user_provider", write=False) as conn:
            row = conn.execute(
                "SELECT url FROM user_providers WHERE user_id = ? AND provider = ?",
                (user_id, provider),
            ).fetchone()
        return row[0] if row else None

    def set_user_provider(self, user_id: str, provider: str, url: str) -> None:
        with self._tx("set_user_provider") as conn:
            conn.execute(
                """
                INSERT INTO user_providers (user_id, provider, url, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, provider) DO UPDATE SET url = excluded.url
                """,
                (user_id, provider, url, now_iso()),
            )

    def delete_user_provider(self, user_id: str, provider: str) -> bool:
        with self._tx("delete_user_provider") as conn:
            cur = conn.execute("DELETE FROM user_providers WHERE user_id = ? AND provider = ?", (user_id, provider))
            return cur.rowcount > 0

    def delete_all_user_providers(self, user_id: str) -> int:
        with self._tx("delete_all_user_providers") as conn:
            cur = conn.execute("DELETE FROM user_providers WHERE user_id = ?", (user_id,))
            return cur.rowcount

    # ---- location cache ----

    def get_cached_location(self, location_id: str, provider: str) -> dict[str, Any] | None:
        with self._tx("get_cached_location", write=False) as conn:
            row = conn.execute(
                "SELECT latitude, longitude, geometry FROM location_cache WHERE location_id = ? AND provider = ?",
                (location_id, provider),
            ).fetchone()
        if not row:
            return None
        return {"latitude": row[0], "longitude": row[1], "geometry": self._decode("get_cached_location", row[2])}

    def set_cached_location(
        self, location_id: str, provider: str, latitude: float, longitude: float, geometry: dict[str, Any]
    ) -> None:
        with self._tx("set_cached_location") as conn:
            conn.execute(
                """
                INSERT INTO location_cache (location_id, provider, latitude, longitude, geometry, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (location_id, provider) DO UPDATE SET
                  latitude = excluded.latitude,
                  longitude = excluded.longitude,
                  geometry = excluded.geometry,
                  updated_at = excluded.updated_at
                """,
                (location_id, provider, latitude, longitude, json.dumps(geometry), now_iso()),
            )

    def invalidate_cached_location(self, location_id: str, provider: str) -> None:
        with self._tx("invalidate_cached_location") as conn:
            conn.execute("DELETE FROM location_cache WHERE location_id = ? AND provider = ?", (location_id, provider))

    # ---- diagnostics ----

    def count_rows(self, table: str = "checkpoints") -> int:
        if table not in {"checkpoints", "users", "user_providers", "location_cache"}:
            raise ValueError(f"Unknown table {table!r}")
        with self._tx("count_rows", write=False) as conn:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return int(n or 0)

    # ---- internals ----

    @contextlib.contextmanager
    def _tx(self, op: str, *, write: bool = True) -> Iterator[sqlite3.Connection]:
        """
        Open a connection, optionally wrap it in BEGIN IMMEDIATE, commit on
        success, roll back on error. sqlite3 errors become RepositoryError.
        """
        try:
            _ensure_dir(self.sqlite_path)
            conn = _connect(self.sqlite_path)
        except (OSError, sqlite3.Error) as e:
            self._log_failure(op, e)
            raise RepositoryError(f"{op} failed: {e}") from e

        try:
            _apply_pragmas(conn)
            if write:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            if write:
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            self._log_failure(op, e)
            raise RepositoryError(f"{op} failed: {e}") from e
        finally:
            conn.close()

    def _decode(self, op: str, text: str) -> Any:
        try:
            return json.loads(text)
        except (TypeError, ValueError) as e:
            self._log_failure(op, e)
            raise RepositoryError(f"{op} failed: undecodable stored value: {e}") from e

    def _log_failure(self, op: str, e: BaseException) -> None:
        logging_bridge.error({
            "component": "listing_watch.repository",
            "op": op,
            "sqlite_path": self.sqlite_path,
            "error": repr(e),
        })


# ---- Internal utilities -----------------------------------------------------


def _providers_for(conn: sqlite3.Connection, user_id: str) -> dict[str, str]:
    rows = conn.execute(
        "SELECT provider, url FROM user_providers WHERE user_id = ? ORDER BY created_at, provider",
        (user_id,),
    ).fetchall()
    return {provider: url for provider, url in rows}


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; we'll manage transactions explicitly.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA busy_timeout=30000;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
          id TEXT PRIMARY KEY,
          username TEXT,
          first_name TEXT NOT NULL,
          created_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS user_providers (
          user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
          provider TEXT NOT NULL,
          url TEXT NOT NULL,
          created_at TEXT NOT NULL,
          PRIMARY KEY (user_id, provider)
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS checkpoints (
          user_id TEXT NOT NULL,
          provider TEXT NOT NULL,
          hashes TEXT NOT NULL,
          updated_at TEXT NOT NULL,
          PRIMARY KEY (user_id, provider)
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS location_cache (
          location_id TEXT NOT NULL,
          provider TEXT NOT NULL,
          latitude REAL NOT NULL,
          longitude REAL NOT NULL,
          geometry TEXT NOT NULL,
          updated_at TEXT NOT NULL,
          PRIMARY KEY (location_id, provider)
        );
        """
    )
