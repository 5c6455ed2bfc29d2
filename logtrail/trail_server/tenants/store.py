"""
SQLite store for Application and Team records.

This module is the relational side of the gateway. It holds:
- Applications (tenants) with their owner or owning team
- Teams and their membership, one row per (team, user)

Each operation opens its own connection and runs in the default executor so
the event loop never blocks on disk I/O.

Invariants:
    - Exactly one of owner_id / team_id is set on every application row
      (enforced by a CHECK constraint and by the Application dataclass)
    - Application keys are unique and never updated
    - Membership lookups always hit the database; nothing here is cached

How to change safely:
    - Schema migrations must be backward compatible
    - Use transactions for all multi-statement writes
    - Wrap sqlite3 errors in BackendUnavailableError, never leak them

Table schema:
    applications:
        - id TEXT PRIMARY KEY
        - name TEXT
        - key TEXT UNIQUE
        - owner_id TEXT NULL
        - team_id TEXT NULL
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)

    teams:
        - id TEXT PRIMARY KEY
        - name TEXT NULL
        - created_at INTEGER
        - updated_at INTEGER

    team_members:
        - team_id TEXT
        - user_id TEXT
        - PRIMARY KEY (team_id, user_id)
        - INDEX on (user_id)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from ..errors import BackendUnavailableError
from .models import Application, Team

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TenantStore:
    """Record store for applications and teams.

    Thread safety:
        Each call creates its own connection inside an executor thread.
        SQLite serializes writers; WAL mode keeps readers unblocked.

    Example:
        >>> store = TenantStore("/var/lib/logtrail/tenants.db")
        >>> await store.initialize()
        >>> await store.insert_application(app)
        >>> await store.get_application(app.id)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking store function in the default executor."""
        try:
            return await asyncio.get_event_loop().run_in_executor(
                None, functools.partial(fn, *args)
            )
        except sqlite3.Error as e:
            logger.error(f"Tenant store failure: {e}", exc_info=True)
            raise BackendUnavailableError("tenant-store", e) from e

    # -- schema ---------------------------------------------------------------

    def _create_schema(self) -> None:
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS teams (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS team_members (
                    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    PRIMARY KEY (team_id, user_id)
                );

                CREATE INDEX IF NOT EXISTS idx_team_members_user ON team_members(user_id);

                CREATE TABLE IF NOT EXISTS applications (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    key TEXT NOT NULL UNIQUE,
                    owner_id TEXT,
                    team_id TEXT REFERENCES teams(id),
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    CHECK ((owner_id IS NULL) <> (team_id IS NULL))
                );

                CREATE INDEX IF NOT EXISTS idx_applications_owner ON applications(owner_id);
                CREATE INDEX IF NOT EXISTS idx_applications_team ON applications(team_id);

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES (1, strftime('%s', 'now') * 1000);
            """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        await self._run(self._create_schema)
        logger.info(f"Tenant store ready: {self.db_path}")

    # -- applications ---------------------------------------------------------

    @staticmethod
    def _row_to_application(row: sqlite3.Row) -> Application:
        return Application(
            id=row["id"],
            name=row["name"],
            key=row["key"],
            owner_id=row["owner_id"],
            team_id=row["team_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _insert_application(self, app: Application) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO applications (id, name, key, owner_id, team_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    app.id,
                    app.name,
                    app.key,
                    app.owner_id,
                    app.team_id,
                    app.created_at,
                    app.updated_at,
                ),
            )

    async def insert_application(self, app: Application) -> None:
        """Persist a new application.

        Raises:
            BackendUnavailableError: If the database is unusable
        """
        await self._run(self._insert_application, app)

    def _get_application(self, application_id: str) -> Application | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM applications WHERE id = ?", (application_id,)
            ).fetchone()
            return self._row_to_application(row) if row else None

    async def get_application(self, application_id: str) -> Application | None:
        """Fetch an application by id."""
        return await self._run(self._get_application, application_id)

    def _find_applications(
        self, owner_id: str | None, team_ids: list[str] | None
    ) -> list[Application]:
        clauses: list[str] = []
        params: list[Any] = []
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if team_ids:
            clauses.append(f"team_id IN ({', '.join('?' for _ in team_ids)})")
            params.extend(team_ids)
        if not clauses:
            return []

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM applications WHERE {' OR '.join(clauses)} ORDER BY created_at",
                params,
            ).fetchall()
            return [self._row_to_application(r) for r in rows]

    async def find_applications(
        self,
        owner_id: str | None = None,
        team_ids: list[str] | None = None,
    ) -> list[Application]:
        """Applications owned by ``owner_id`` or by any of ``team_ids``.

        Predicates are OR-ed; with neither given the result is empty.
        """
        return await self._run(self._find_applications, owner_id, team_ids)

    def _update_application_name(
        self, application_id: str, name: str, updated_at: int
    ) -> Application | None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE applications SET name = ?, updated_at = ? WHERE id = ?",
                (name, updated_at, application_id),
            )
            row = conn.execute(
                "SELECT * FROM applications WHERE id = ?", (application_id,)
            ).fetchone()
            return self._row_to_application(row) if row else None

    async def update_application_name(
        self, application_id: str, name: str, updated_at: int
    ) -> Application | None:
        """Rename an application. Returns the updated record or None if absent."""
        return await self._run(self._update_application_name, application_id, name, updated_at)

    # -- teams ----------------------------------------------------------------

    def _insert_team(self, team: Team) -> None:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    "INSERT INTO teams (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (team.id, team.name, team.created_at, team.updated_at),
                )
                conn.executemany(
                    "INSERT INTO team_members (team_id, user_id) VALUES (?, ?)",
                    [(team.id, user_id) for user_id in team.member_ids],
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def insert_team(self, team: Team) -> None:
        """Persist a team and its initial members atomically."""
        await self._run(self._insert_team, team)

    def _get_team(self, team_id: str) -> Team | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
            if row is None:
                return None
            members = conn.execute(
                "SELECT user_id FROM team_members WHERE team_id = ?", (team_id,)
            ).fetchall()
            return Team(
                id=row["id"],
                name=row["name"],
                member_ids={m["user_id"] for m in members},
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )

    async def get_team(self, team_id: str) -> Team | None:
        """Fetch a team with its current member set."""
        return await self._run(self._get_team, team_id)

    def _find_team_ids_for_member(self, user_id: str) -> list[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT team_id FROM team_members WHERE user_id = ?", (user_id,)
            ).fetchall()
            return [r["team_id"] for r in rows]

    async def find_team_ids_for_member(self, user_id: str) -> list[str]:
        """Ids of every team whose member set contains ``user_id``."""
        return await self._run(self._find_team_ids_for_member, user_id)

    def _set_membership(self, team_id: str, user_id: str, member: bool, updated_at: int) -> bool:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if member:
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO team_members (team_id, user_id) VALUES (?, ?)",
                        (team_id, user_id),
                    )
                else:
                    cursor = conn.execute(
                        "DELETE FROM team_members WHERE team_id = ? AND user_id = ?",
                        (team_id, user_id),
                    )
                changed = cursor.rowcount > 0
                if changed:
                    conn.execute(
                        "UPDATE teams SET updated_at = ? WHERE id = ?", (updated_at, team_id)
                    )
                conn.execute("COMMIT")
                return changed
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def add_team_member(self, team_id: str, user_id: str, updated_at: int) -> bool:
        """Add a member. Returns False if already a member."""
        return await self._run(self._set_membership, team_id, user_id, True, updated_at)

    async def remove_team_member(self, team_id: str, user_id: str, updated_at: int) -> bool:
        """Remove a member. Returns False if not a member."""
        return await self._run(self._set_membership, team_id, user_id, False, updated_at)
