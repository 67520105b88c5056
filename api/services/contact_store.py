"""
Contact Store for the identity service.

Persists contacts and answers the queries the resolver needs:
match by email/phone, fetch by id, gather a cluster, insert, demote.

Two implementations share the ContactRepository contract:
- ContactStore: SQLite-backed, used in production
- InMemoryContactStore: dict-backed, used by tests and ephemeral deployments
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol, Union

from api.services.contact import Contact, LinkPrecedence, creation_order
from api.services.errors import RepositoryError
from api.utils.datetime_utils import parse_timestamp, utc_now
from config.settings import settings

logger = logging.getLogger(__name__)


class ContactRepository(Protocol):
    """Storage contract consumed by the identity resolver."""

    def find_by_email_or_phone(
        self, email: Optional[str], phone_number: Optional[str]
    ) -> list[Contact]: ...

    def find_by_id(self, contact_id: int) -> Optional[Contact]: ...

    def find_cluster(self, root_id: int) -> list[Contact]: ...

    def insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int] = None,
    ) -> Contact: ...

    def update(
        self, contact_id: int, link_precedence: LinkPrecedence, linked_id: Optional[int]
    ) -> Contact: ...

    def transaction(self): ...

    def count(self) -> int: ...


@dataclass
class IntegrityIssue:
    """A stored contact that breaks a linking invariant."""
    contact_id: int
    kind: str  # "dangling_link", "chained_link", "link_cycle", "primary_with_link", "no_identifier"
    detail: str


def get_contact_db_path() -> str:
    """Get the path to the contacts database, creating its directory."""
    db_path = Path(settings.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)


class ContactStore:
    """
    SQLite-backed contact storage.

    One connection per store, guarded by a re-entrant lock so FastAPI's
    worker threads can share it. transaction() takes a write lock on the
    database (BEGIN IMMEDIATE) so concurrent resolutions cannot interleave.
    """

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize contact store.

        Args:
            db_path: Path to SQLite database (default from settings), or ':memory:'
            timeout: Seconds to wait for a locked database (default from settings)
        """
        self.db_path = db_path or get_contact_db_path()
        self._lock = threading.RLock()
        self._depth = 0
        try:
            self._conn = sqlite3.connect(
                self.db_path,
                timeout=timeout if timeout is not None else settings.db_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._init_db()
        except sqlite3.Error as e:
            raise RepositoryError("connect", str(e), e) from e

    def _init_db(self):
        """Create the contacts table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS contacts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                phone_number TEXT,
                email TEXT,
                linked_id INTEGER REFERENCES contacts(id),
                link_precedence TEXT NOT NULL
                    CHECK (link_precedence IN ('primary', 'secondary')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                deleted_at TEXT,
                CHECK (email IS NOT NULL OR phone_number IS NOT NULL),
                CHECK (
                    (link_precedence = 'primary' AND linked_id IS NULL) OR
                    (link_precedence = 'secondary' AND linked_id IS NOT NULL)
                )
            )
        """)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_contacts_email ON contacts(email)"
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_contacts_phone ON contacts(phone_number)"
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_contacts_linked ON contacts(linked_id)"
        )

    def close(self):
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["ContactStore"]:
        """
        Run a block as one atomic unit of work.

        Nested calls join the outer transaction. Any exception rolls back
        every write made inside the block.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise RepositoryError("begin", str(e), e) from e

            self._depth = 1
            try:
                yield self
            except BaseException:
                self._depth = 0
                try:
                    self._conn.execute("ROLLBACK")
                except sqlite3.Error as e:
                    logger.error(f"Rollback failed: {e}")
                raise
            else:
                self._depth = 0
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as e:
                    # A busy COMMIT leaves the transaction open on the shared connection.
                    if self._conn.in_transaction:
                        try:
                            self._conn.execute("ROLLBACK")
                        except sqlite3.Error as rollback_error:
                            logger.error(f"Rollback after failed commit failed: {rollback_error}")
                    raise RepositoryError("commit", str(e), e) from e

    def _query(self, operation: str, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise RepositoryError(operation, str(e), e) from e

    def find_by_email_or_phone(
        self, email: Optional[str], phone_number: Optional[str]
    ) -> list[Contact]:
        """
        Find contacts matching the email OR the phone number.

        Only supplied fields add a clause. Oldest first.
        """
        clauses = []
        params = []
        if email:
            clauses.append("email = ?")
            params.append(email)
        if phone_number:
            clauses.append("phone_number = ?")
            params.append(phone_number)
        if not clauses:
            return []

        rows = self._query(
            "find_by_email_or_phone",
            f"""
            SELECT * FROM contacts
            WHERE deleted_at IS NULL AND ({' OR '.join(clauses)})
            ORDER BY created_at ASC, id ASC
            """,
            tuple(params),
        )
        return [self._row_to_contact(row) for row in rows]

    def find_by_id(self, contact_id: int) -> Optional[Contact]:
        rows = self._query(
            "find_by_id",
            "SELECT * FROM contacts WHERE id = ? AND deleted_at IS NULL",
            (contact_id,),
        )
        return self._row_to_contact(rows[0]) if rows else None

    def find_cluster(self, root_id: int) -> list[Contact]:
        """Get the root contact plus every contact linked directly to it."""
        rows = self._query(
            "find_cluster",
            """
            SELECT * FROM contacts
            WHERE deleted_at IS NULL AND (id = ? OR linked_id = ?)
            ORDER BY created_at ASC, id ASC
            """,
            (root_id, root_id),
        )
        return [self._row_to_contact(row) for row in rows]

    def insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int] = None,
    ) -> Contact:
        """
        Insert a new contact.

        Returns:
            The stored contact with its assigned id and timestamps
        """
        precedence = LinkPrecedence(link_precedence)
        now = utc_now()
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """
                    INSERT INTO contacts
                    (email, phone_number, link_precedence, linked_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (email, phone_number, precedence.value, linked_id,
                     now.isoformat(), now.isoformat()),
                )
            except sqlite3.Error as e:
                raise RepositoryError("insert", str(e), e) from e

        return Contact(
            id=cursor.lastrowid,
            email=email,
            phone_number=phone_number,
            link_precedence=precedence,
            linked_id=linked_id,
            created_at=now,
            updated_at=now,
        )

    def update(
        self, contact_id: int, link_precedence: LinkPrecedence, linked_id: Optional[int]
    ) -> Contact:
        """
        Change a contact's position in the graph (demotion or re-parenting).

        Raises:
            RepositoryError: if the contact doesn't exist or a constraint fails
        """
        precedence = LinkPrecedence(link_precedence)
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """
                    UPDATE contacts
                    SET link_precedence = ?, linked_id = ?, updated_at = ?
                    WHERE id = ? AND deleted_at IS NULL
                    """,
                    (precedence.value, linked_id, utc_now().isoformat(), contact_id),
                )
            except sqlite3.Error as e:
                raise RepositoryError("update", str(e), e) from e

            if cursor.rowcount == 0:
                raise RepositoryError("update", f"contact {contact_id} not found")

        return self.find_by_id(contact_id)

    def count(self) -> int:
        rows = self._query(
            "count", "SELECT COUNT(*) FROM contacts WHERE deleted_at IS NULL"
        )
        return rows[0][0]

    def all_contacts(self) -> list[Contact]:
        rows = self._query(
            "all_contacts",
            "SELECT * FROM contacts WHERE deleted_at IS NULL ORDER BY id ASC",
        )
        return [self._row_to_contact(row) for row in rows]

    def _raw_rows(self) -> list[dict]:
        # Column values as stored, for rows that may not load as a Contact.
        rows = self._query(
            "scan",
            """
            SELECT id, email, phone_number, link_precedence, linked_id
            FROM contacts WHERE deleted_at IS NULL ORDER BY id ASC
            """,
        )
        return [dict(row) for row in rows]

    def find_integrity_issues(self) -> list[IntegrityIssue]:
        """
        Scan stored rows for broken linking invariants.

        Reads raw column values, so rows written before the CHECK
        constraints existed are reported instead of failing to load.

        Returns:
            Issues ordered by contact id
        """
        return find_integrity_issues(self._raw_rows())

    def flatten_chains(self) -> int:
        """
        Re-parent chained secondaries onto their ultimate primary.

        Returns:
            Number of contacts re-parented
        """
        fixed = 0
        with self.transaction():
            by_id = {row["id"]: row for row in self._raw_rows()}
            for issue in find_integrity_issues(list(by_id.values())):
                if issue.kind != "chained_link":
                    continue
                root = _follow_to_root(by_id, by_id[issue.contact_id])
                if root is None:
                    continue
                self.update(issue.contact_id, LinkPrecedence.SECONDARY, root["id"])
                logger.info(f"Re-parented contact {issue.contact_id} onto root {root['id']}")
                fixed += 1
        return fixed

    def _row_to_contact(self, row: sqlite3.Row) -> Contact:
        try:
            return Contact(
                id=row["id"],
                email=row["email"],
                phone_number=row["phone_number"],
                link_precedence=row["link_precedence"],
                linked_id=row["linked_id"],
                created_at=parse_timestamp(row["created_at"]),
                updated_at=parse_timestamp(row["updated_at"]),
            )
        except ValueError as e:
            raise RepositoryError("read", f"contact {row['id']}: {e}", e) from e


class InMemoryContactStore:
    """
    Dict-backed contact storage with the same contract as ContactStore.

    Ids start at 1 and increase by one per insert. transaction() snapshots
    the rows and restores them if the block raises.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._contacts: dict[int, Contact] = {}
        self._next_id = 1
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["InMemoryContactStore"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = {cid: replace(c) for cid, c in self._contacts.items()}
            next_id = self._next_id
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._contacts = snapshot
                self._next_id = next_id
                raise
            finally:
                self._depth = 0

    def find_by_email_or_phone(
        self, email: Optional[str], phone_number: Optional[str]
    ) -> list[Contact]:
        if not email and not phone_number:
            return []
        with self._lock:
            matches = [
                c for c in self._contacts.values()
                if (email and c.email == email)
                or (phone_number and c.phone_number == phone_number)
            ]
            return [replace(c) for c in sorted(matches, key=creation_order)]

    def find_by_id(self, contact_id: int) -> Optional[Contact]:
        with self._lock:
            contact = self._contacts.get(contact_id)
            return replace(contact) if contact else None

    def find_cluster(self, root_id: int) -> list[Contact]:
        with self._lock:
            members = [
                c for c in self._contacts.values()
                if c.id == root_id or c.linked_id == root_id
            ]
            return [replace(c) for c in sorted(members, key=creation_order)]

    def insert(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int] = None,
    ) -> Contact:
        if not email and not phone_number:
            raise RepositoryError("insert", "contact needs an email or a phone number")
        with self._lock:
            if linked_id is not None and linked_id not in self._contacts:
                raise RepositoryError("insert", f"linked contact {linked_id} not found")
            now = self._clock()
            try:
                contact = Contact(
                    id=self._next_id,
                    email=email,
                    phone_number=phone_number,
                    link_precedence=link_precedence,
                    linked_id=linked_id,
                    created_at=now,
                    updated_at=now,
                )
            except ValueError as e:
                raise RepositoryError("insert", str(e), e) from e
            self._contacts[contact.id] = contact
            self._next_id += 1
            return replace(contact)

    def update(
        self, contact_id: int, link_precedence: LinkPrecedence, linked_id: Optional[int]
    ) -> Contact:
        with self._lock:
            current = self._contacts.get(contact_id)
            if current is None:
                raise RepositoryError("update", f"contact {contact_id} not found")
            if linked_id is not None and linked_id not in self._contacts:
                raise RepositoryError("update", f"linked contact {linked_id} not found")
            try:
                updated = replace(
                    current,
                    link_precedence=link_precedence,
                    linked_id=linked_id,
                    updated_at=self._clock(),
                )
            except ValueError as e:
                raise RepositoryError("update", str(e), e) from e
            self._contacts[contact_id] = updated
            return replace(updated)

    def count(self) -> int:
        with self._lock:
            return len(self._contacts)

    def all_contacts(self) -> list[Contact]:
        with self._lock:
            return [replace(self._contacts[cid]) for cid in sorted(self._contacts)]

    def find_integrity_issues(self) -> list[IntegrityIssue]:
        return find_integrity_issues([asdict(c) for c in self.all_contacts()])


def find_integrity_issues(rows: list[dict]) -> list[IntegrityIssue]:
    """
    Check stored rows against the linking invariants.

    Each row maps id, email, phone_number, link_precedence and linked_id to
    their stored values. Every secondary must link directly to an existing
    primary, primaries must not link anywhere, and every row needs an email
    or a phone number.
    """
    by_id = {row["id"]: row for row in rows}
    issues = []
    for row in sorted(rows, key=lambda r: r["id"]):
        contact_id = row["id"]
        linked_id = row["linked_id"]
        if not row["email"] and not row["phone_number"]:
            issues.append(IntegrityIssue(
                contact_id, "no_identifier", "neither email nor phone_number is set",
            ))

        if _is_primary(row):
            if linked_id is not None:
                issues.append(IntegrityIssue(
                    contact_id, "primary_with_link", f"primary has linked_id {linked_id}",
                ))
            continue

        parent = by_id.get(linked_id)
        if parent is None:
            issues.append(IntegrityIssue(
                contact_id, "dangling_link",
                f"linked_id {linked_id} does not exist",
            ))
        elif not _is_primary(parent):
            if _follow_to_root(by_id, row) is None:
                issues.append(IntegrityIssue(
                    contact_id, "link_cycle",
                    f"links through {linked_id} never reach a primary",
                ))
            else:
                issues.append(IntegrityIssue(
                    contact_id, "chained_link",
                    f"linked_id {linked_id} is itself a secondary",
                ))
    return issues


def _is_primary(row: dict) -> bool:
    return row["link_precedence"] == LinkPrecedence.PRIMARY


def _follow_to_root(by_id: dict[int, dict], row: dict) -> Optional[dict]:
    visited = set()
    current = row
    while not _is_primary(current):
        if current["id"] in visited:
            return None
        visited.add(current["id"])
        current = by_id.get(current["linked_id"])
        if current is None:
            return None
    return current


# Singleton instance
_contact_store: Optional[Union[ContactStore, InMemoryContactStore]] = None


def get_contact_store() -> Union[ContactStore, InMemoryContactStore]:
    """Get singleton contact store, backend chosen by settings."""
    global _contact_store
    if _contact_store is None:
        if settings.use_memory_store:
            logger.warning("Using in-memory contact store; contacts are lost on restart")
            _contact_store = InMemoryContactStore()
        else:
            _contact_store = ContactStore()
            logger.info(f"Contact store opened at {_contact_store.db_path}")
    return _contact_store


def reset_contact_store() -> None:
    """Drop the singleton so the next call re-reads settings (used by tests)."""
    global _contact_store
    if isinstance(_contact_store, ContactStore):
        _contact_store.close()
    _contact_store = None
