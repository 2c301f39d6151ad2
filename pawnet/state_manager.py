"""Durable state for PawNetwork using SQLite.

Three tables back the service:
- users     -> one row per tenant, keyed by email
- sites     -> one row per claimed domain, keyed by domain, with a unique site_id
- analytics -> view counter per domain

Every mutation commits before the method returns (write-through), so a
success response is never sent for state that could still be lost.

Thread-safe SQLite access uses one connection per thread. Mutations run in
``BEGIN IMMEDIATE`` transactions under a process-wide lock, which makes the
uniqueness check and the insert a single atomic step even when several
processes share the database file.

Usage:
    store = StateManager(db_path)

    store.add_user_with_site(email, password_hash, domain, site_id)
    store.get_user(email) -> UserRecord | None
    store.get_site(domain) -> SiteRecord | None
    store.get_site_by_id(site_id) -> SiteRecord | None
    store.list_sites_for_owner(email) -> list[SiteRecord]
    store.increment_views(domain) -> int
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .errors import DuplicateDomain, DuplicateEmail, NotFound
from .paths import DB_PATH as DEFAULT_DB_PATH

_LOG = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class UserRecord:
    """A registered tenant.

    Attributes:
        email: Unique key, also used as the bearer token.
        password_hash: bcrypt hash of the password.
        created_at: ISO timestamp of signup.
        domains: Domains owned by this user, oldest first.
    """

    email: str
    password_hash: str
    created_at: str
    domains: list[str] = field(default_factory=list)


@dataclass
class SiteRecord:
    """A claimed domain and the storage it maps to.

    Attributes:
        domain: Unique key, ends with the tenant suffix.
        owner_email: Email of the owning user.
        site_id: Opaque immutable identifier used for file storage.
        created_at: ISO timestamp of creation.
        updated_at: ISO timestamp of the last file replacement, or None.
    """

    domain: str
    owner_email: str
    site_id: str
    created_at: str
    updated_at: str | None = None


class StateManager:
    """Thread-safe SQLite state manager.

    Uses a connection per thread with a shared write lock.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize the state manager.

        Args:
            db_path: Path to SQLite database. Uses PAW_DB_PATH env or default.
        """
        self.db_path = Path(db_path or DEFAULT_DB_PATH)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._initialized = False
        self._connections: list[sqlite3.Connection] = []

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create a connection for the current thread."""
        if getattr(self._local, "conn", None) is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0,
            )
            conn.row_factory = sqlite3.Row
            # WAL lets readers proceed while a writer holds the lock
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)

        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self._init_schema(self._local.conn)
                    self._initialized = True

        return self._local.conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Create the users, sites and analytics tables."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                email TEXT PRIMARY KEY,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sites (
                domain TEXT PRIMARY KEY,
                owner_email TEXT NOT NULL REFERENCES users(email),
                site_id TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS analytics (
                domain TEXT PRIMARY KEY REFERENCES sites(domain),
                views INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_sites_owner
                ON sites(owner_email);
        """)
        conn.commit()
        _LOG.info("State manager schema initialized at %s", self.db_path)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a write transaction that commits before returning."""
        conn = self._get_conn()
        with self._write_lock:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def close(self) -> None:
        """Close every connection opened by this manager."""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    # =========================================================================
    # Row Conversion
    # =========================================================================

    @staticmethod
    def _site_from_row(row: sqlite3.Row) -> SiteRecord:
        return SiteRecord(
            domain=row["domain"],
            owner_email=row["owner_email"],
            site_id=row["site_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # =========================================================================
    # Inserts
    # =========================================================================

    @staticmethod
    def _insert_user(conn: sqlite3.Connection, email: str, password_hash: str) -> UserRecord:
        exists = conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone()
        if exists:
            raise DuplicateEmail(email)
        created_at = _now()
        try:
            conn.execute(
                "INSERT INTO users (email, password_hash, created_at) VALUES (?, ?, ?)",
                (email, password_hash, created_at),
            )
        except sqlite3.IntegrityError as e:
            # Another connection inserted the same email after our check
            raise DuplicateEmail(email) from e
        return UserRecord(email=email, password_hash=password_hash, created_at=created_at)

    @classmethod
    def _insert_site(
        cls,
        conn: sqlite3.Connection,
        domain: str,
        owner_email: str,
        site_id: str,
    ) -> SiteRecord:
        exists = conn.execute("SELECT 1 FROM sites WHERE domain = ?", (domain,)).fetchone()
        if exists:
            raise DuplicateDomain(domain)
        owner = conn.execute("SELECT 1 FROM users WHERE email = ?", (owner_email,)).fetchone()
        if not owner:
            raise NotFound(f"User '{owner_email}' not found")
        created_at = _now()
        try:
            conn.execute(
                """
                INSERT INTO sites (domain, owner_email, site_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (domain, owner_email, site_id, created_at),
            )
        except sqlite3.IntegrityError as e:
            if "sites.domain" not in str(e):
                raise
            raise DuplicateDomain(domain) from e
        conn.execute("INSERT INTO analytics (domain, views) VALUES (?, 0)", (domain,))
        return SiteRecord(
            domain=domain,
            owner_email=owner_email,
            site_id=site_id,
            created_at=created_at,
        )

    def add_user(self, email: str, password_hash: str) -> UserRecord:
        """Insert a user if the email is free.

        Raises:
            DuplicateEmail: The email is already registered.
        """
        with self._transaction() as conn:
            user = self._insert_user(conn, email, password_hash)
        _LOG.info("Registered user %s", email)
        return user

    def add_site(self, domain: str, owner_email: str, site_id: str) -> SiteRecord:
        """Insert a site if the domain is free.

        Raises:
            DuplicateDomain: The domain is already claimed.
            NotFound: The owner does not exist.
        """
        with self._transaction() as conn:
            site = self._insert_site(conn, domain, owner_email, site_id)
        _LOG.info("Registered site %s (site_id=%s) for %s", domain, site_id, owner_email)
        return site

    def add_user_with_site(
        self,
        email: str,
        password_hash: str,
        domain: str,
        site_id: str,
    ) -> tuple[UserRecord, SiteRecord]:
        """Insert a user and their first site in one transaction.

        Either both rows are committed or neither is.

        Raises:
            DuplicateEmail: The email is already registered.
            DuplicateDomain: The domain is already claimed.
        """
        with self._transaction() as conn:
            user = self._insert_user(conn, email, password_hash)
            site = self._insert_site(conn, domain, email, site_id)
        user.domains.append(site.domain)
        _LOG.info("Registered user %s with site %s (site_id=%s)", email, domain, site_id)
        return user, site

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_user(self, email: str) -> UserRecord | None:
        """Get a user with their domains, or None."""
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        if not row:
            return None
        domains = [
            r["domain"]
            for r in conn.execute(
                "SELECT domain FROM sites WHERE owner_email = ? ORDER BY rowid",
                (email,),
            )
        ]
        return UserRecord(
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=row["created_at"],
            domains=domains,
        )

    def user_exists(self, email: str) -> bool:
        conn = self._get_conn()
        return conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone() is not None

    def get_site(self, domain: str) -> SiteRecord | None:
        """Get a site by domain, or None."""
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM sites WHERE domain = ?", (domain,)).fetchone()
        return self._site_from_row(row) if row else None

    def get_site_by_id(self, site_id: str) -> SiteRecord | None:
        """Get a site by site_id, or None."""
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM sites WHERE site_id = ?", (site_id,)).fetchone()
        return self._site_from_row(row) if row else None

    def list_sites_for_owner(self, email: str) -> list[SiteRecord]:
        """List sites owned by a user, oldest first."""
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM sites WHERE owner_email = ? ORDER BY rowid",
            (email,),
        ).fetchall()
        return [self._site_from_row(row) for row in rows]

    def count_sites(self) -> int:
        conn = self._get_conn()
        return conn.execute("SELECT COUNT(*) FROM sites").fetchone()[0]

    # =========================================================================
    # Site Updates
    # =========================================================================

    def touch_site(self, domain: str) -> str:
        """Set a site's updated_at to now.

        Returns:
            The new updated_at timestamp.

        Raises:
            NotFound: The domain is not registered.
        """
        updated_at = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE sites SET updated_at = ? WHERE domain = ?",
                (updated_at, domain),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"Site '{domain}' not found")
        return updated_at

    # =========================================================================
    # Analytics
    # =========================================================================

    def increment_views(self, domain: str) -> int:
        """Add one view to a domain's counter.

        Returns:
            The counter value after the increment.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO analytics (domain, views) VALUES (?, 1)
                ON CONFLICT(domain) DO UPDATE SET views = views + 1
                """,
                (domain,),
            )
            row = conn.execute(
                "SELECT views FROM analytics WHERE domain = ?", (domain,)
            ).fetchone()
        return row["views"]

    def get_views(self, domain: str) -> int:
        """Get a domain's view count (0 if never viewed)."""
        conn = self._get_conn()
        row = conn.execute("SELECT views FROM analytics WHERE domain = ?", (domain,)).fetchone()
        return row["views"] if row else 0
