import logging
import secrets
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from config import settings
from errors import ConflictError, StorageError, ValidationError

logger = logging.getLogger(__name__)

# Stored fields per collection. "id" is generated on insert.
COLLECTIONS: Dict[str, Tuple[str, ...]] = {
    "books": ("id", "title", "author", "publication_year", "availability_status"),
    "users": ("id", "name", "contact_info"),
    "transactions": ("id", "book_id", "user_id", "borrow_date", "return_date"),
}

# Reference fields and the collection each one points into.
REFERENCES: Dict[str, str] = {
    "book_id": "books",
    "user_id": "users",
}

Document = Dict[str, Any]


def generate_id() -> str:
    """Opaque 24 hex character identifier."""
    return secrets.token_hex(12)


def create_tables(conn: sqlite3.Connection) -> None:
    """Create the collections and their indexes if they do not exist yet."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            publication_year INTEGER NOT NULL,
            availability_status INTEGER NOT NULL DEFAULT 1 CHECK(availability_status IN (0, 1))
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            contact_info TEXT NOT NULL UNIQUE
        )
    """)
    # book_id/user_id are references by convention only; nothing cascades.
    conn.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            borrow_date TEXT NOT NULL,
            return_date TEXT
        )
    """)

    # One open transaction per book.
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_transactions_open_book "
        "ON transactions(book_id) WHERE return_date IS NULL"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_user_id ON transactions(user_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_book_id ON transactions(book_id)")


class RecordStore:
    """Document-style access to the books, users and transactions collections.

    A single SQLite connection is shared by every caller and guarded by a
    re-entrant lock. Each public operation runs inside ``transaction()``, so
    a caller can group several operations into one all-or-nothing write by
    opening an outer ``transaction()`` block itself.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or settings.database_file
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0

    # ------------------------- Lifecycle ------------------------- #
    def open(self) -> "RecordStore":
        with self._lock:
            if self._conn is not None:
                return self
            try:
                conn = sqlite3.connect(self.db_file, check_same_thread=False, isolation_level=None)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                create_tables(conn)
            except sqlite3.Error as e:
                logger.error(f"Could not open database {self.db_file}: {e}")
                raise StorageError(f"Could not open database: {e}") from e
            self._conn = conn
            logger.info(f"Record store opened at {self.db_file}")
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            self._depth = 0
            logger.info("Record store closed")

    def __enter__(self) -> "RecordStore":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def ping(self) -> bool:
        try:
            self._execute("SELECT 1")
        except StorageError:
            return False
        return True

    # ------------------------- Transactions ------------------------- #
    @contextmanager
    def transaction(self, write: bool = True) -> Iterator["RecordStore"]:
        """Run the enclosed operations atomically.

        The outermost block issues ``BEGIN IMMEDIATE`` so concurrent writers
        are serialized; nested blocks use savepoints. Pass ``write=False``
        for a read-only block: it starts deferred and never takes the write
        lock, which WAL readers do not need.
        """
        with self._lock:
            self._connection()
            depth = self._depth
            savepoint = f"sp_{depth}"
            if depth == 0:
                self._execute("BEGIN IMMEDIATE" if write else "BEGIN DEFERRED")
            else:
                self._execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._conn is not None:
                    if depth == 0:
                        self._conn.execute("ROLLBACK")
                    else:
                        self._conn.execute(f"ROLLBACK TO {savepoint}")
                        self._conn.execute(f"RELEASE {savepoint}")
                raise
            self._depth -= 1
            try:
                self._execute("COMMIT" if depth == 0 else f"RELEASE {savepoint}")
            except StorageError:
                if depth == 0 and self._conn is not None and self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise

    # ------------------------- Collection operations ------------------------- #
    def insert(self, collection: str, document: Mapping[str, Any]) -> Document:
        if "id" in document:
            raise ValidationError("id is generated by the store")
        fields = self._check_fields(collection, document)
        record_id = generate_id()
        columns = ["id", *fields]
        params = [record_id, *(document[f] for f in fields)]
        placeholders = ", ".join("?" for _ in columns)
        with self.transaction():
            self._execute(
                f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
                params,
            )
            return self.find_by_id(collection, record_id)

    def find_all(self, collection: str) -> List[Document]:
        return self.find(collection)

    def find_by_id(self, collection: str, record_id: str) -> Optional[Document]:
        return self.find_one(collection, {"id": record_id})

    def find_one(self, collection: str, filter: Mapping[str, Any]) -> Optional[Document]:
        docs = self.find(collection, filter, limit=1)
        return docs[0] if docs else None

    def find(
        self,
        collection: str,
        filter: Optional[Mapping[str, Any]] = None,
        populate: Optional[Mapping[str, Sequence[str]]] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """Return documents matching an equality filter, oldest first.

        ``populate`` maps a reference field to the fields of the referenced
        document to embed in its place, e.g. ``{"book_id": ("title",)}``.
        An embedded document always carries its ``id``; a dangling reference
        becomes ``None``.
        """
        columns = COLLECTIONS.get(collection)
        if columns is None:
            raise ValidationError(f"Unknown collection: {collection}")
        where, params = self._where(collection, filter or {})
        sql = f"SELECT {', '.join(columns)} FROM {collection}{where} ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        # one snapshot for the documents and the references they expand
        with self.transaction(write=False):
            docs = [dict(row) for row in self._execute(sql, params).fetchall()]
            for field, wanted in (populate or {}).items():
                self._populate(collection, docs, field, wanted)
        return docs

    def count(self, collection: str) -> int:
        if collection not in COLLECTIONS:
            raise ValidationError(f"Unknown collection: {collection}")
        return self._execute(f"SELECT COUNT(*) FROM {collection}").fetchone()[0]

    def update_by_id(self, collection: str, record_id: str, changes: Mapping[str, Any]) -> Optional[Document]:
        with self.transaction():
            if not self.update_where(collection, {"id": record_id}, changes):
                return None
            return self.find_by_id(collection, record_id)

    def update_where(self, collection: str, filter: Mapping[str, Any], changes: Mapping[str, Any]) -> int:
        """Apply ``changes`` to every document matching ``filter`` in one statement.

        Returns the number of documents changed. Because the match and the
        write are a single UPDATE, this works as a compare-and-set.
        """
        fields = self._check_fields(collection, changes)
        if not fields:
            raise ValidationError("Nothing to update.")
        if "id" in fields:
            raise ValidationError("id cannot be changed")
        if not filter:
            raise ValidationError("Refusing to update without a filter.")
        where, params = self._where(collection, filter)
        assignments = ", ".join(f"{f} = ?" for f in fields)
        with self.transaction():
            cursor = self._execute(
                f"UPDATE {collection} SET {assignments}{where}",
                [*(changes[f] for f in fields), *params],
            )
            return cursor.rowcount

    def delete_by_id(self, collection: str, record_id: str) -> Optional[Document]:
        with self.transaction():
            doc = self.find_by_id(collection, record_id)
            if doc is None:
                return None
            self._execute(f"DELETE FROM {collection} WHERE id = ?", (record_id,))
            return doc

    # ------------------------- Helpers ------------------------- #
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Record store is not open.")
        return self._conn

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        conn = self._connection()
        try:
            return conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise ConflictError(str(e)) from e
            raise ValidationError(str(e)) from e
        except (sqlite3.InterfaceError, sqlite3.ProgrammingError) as e:
            if "binding" in str(e).lower():
                raise ValidationError(str(e)) from e
            logger.error(f"Storage failure: {e}")
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"Storage failure: {e}")
            raise StorageError(str(e)) from e

    def _check_fields(self, collection: str, document: Mapping[str, Any]) -> List[str]:
        columns = COLLECTIONS.get(collection)
        if columns is None:
            raise ValidationError(f"Unknown collection: {collection}")
        unknown = [key for key in document if key not in columns]
        if unknown:
            raise ValidationError(f"Unknown field(s) for {collection}: {', '.join(unknown)}")
        return list(document)

    def _where(self, collection: str, filter: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        self._check_fields(collection, filter)
        clauses: List[str] = []
        params: List[Any] = []
        for key, value in filter.items():
            if value is None:
                clauses.append(f"{key} IS NULL")
            else:
                clauses.append(f"{key} = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _populate(self, collection: str, docs: List[Document], field: str, wanted: Sequence[str]) -> None:
        target = REFERENCES.get(field)
        if target is None or field not in COLLECTIONS[collection]:
            raise ValidationError(f"{collection}.{field} is not a reference")
        columns = ["id", *(f for f in wanted if f != "id")]
        self._check_fields(target, dict.fromkeys(columns))

        ids = sorted({doc[field] for doc in docs if doc.get(field) is not None})
        resolved: Dict[str, Document] = {}
        if ids:
            placeholders = ", ".join("?" for _ in ids)
            rows = self._execute(
                f"SELECT {', '.join(columns)} FROM {target} WHERE id IN ({placeholders})",
                ids,
            ).fetchall()
            resolved = {row["id"]: dict(row) for row in rows}
        for doc in docs:
            ref = resolved.get(doc.get(field))
            doc[field] = dict(ref) if ref is not None else None
