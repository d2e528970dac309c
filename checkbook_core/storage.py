"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (single node persistence) and PostgreSQL. Records are JSON documents
keyed by id. Besides plain CRUD every backend offers the primitives the
checkbook engine relies on for correctness under concurrency:

- ``insert``: primary-key insert that fails on an existing id
- ``increment_if_below``: atomic conditional increment of a counter field
- ``load_for_update``: read that locks the record for the rest of the transaction
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
import copy
import json
import re
import sqlite3
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StorageError(Exception):
    """Base class for storage failures"""


class DuplicateKeyError(StorageError):
    """Raised when inserting a record whose id already exists"""

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Duplicate key {record_id!r} in table {table}")


class WriteConflictError(StorageError):
    """Raised when the backend detects a concurrent write it could not serialize"""


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise StorageError(f"Invalid identifier: {name!r}")
    return name


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Convert datetime objects to ISO strings
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        # Convert Decimal objects to strings
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


class StorageInterface(ABC):
    """
    Abstract interface for storage backends

    Transactions nest: an ``atomic()`` block opened inside another one joins
    it, and only the outermost block commits. A failure in a nested block
    marks the whole transaction rollback-only. While a transaction is open
    the backend lock is held, so no other thread can interleave statements.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._transaction_depth = 0
        self._transaction_owner: Optional[int] = None
        self._rollback_only = False

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record, raising DuplicateKeyError if the id exists"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a record and lock it until the enclosing transaction ends

        Read-modify-write of a whole record must go through this method so
        that no other connection can change the record in between. Backends
        whose transactions already exclude every other writer use ``load``.
        """
        return self.load(table, record_id)

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def increment_if_below(
        self,
        table: str,
        record_id: str,
        field: str,
        limit_field: str
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically add one to ``field`` when it is strictly below ``limit_field``

        Returns:
            The updated record, or None when no record matched (missing id or
            counter already at its limit)
        """
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def _begin(self) -> None:
        """Open a physical transaction (default no-op)"""
        pass

    def _commit(self) -> None:
        """Commit the physical transaction (default no-op)"""
        pass

    def _rollback(self) -> None:
        """Roll back the physical transaction (default no-op)"""
        pass

    @property
    def in_transaction(self) -> bool:
        """True when the calling thread has an open transaction"""
        return self._transaction_depth > 0 and self._transaction_owner == threading.get_ident()

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if self._transaction_depth == 0:
                self._rollback_only = False
                self._begin()
                self._transaction_owner = threading.get_ident()
            self._transaction_depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._transaction_depth == 0:
                return
            self._transaction_depth -= 1
            if self._transaction_depth > 0:
                return
            if self._rollback_only:
                self._rollback()
                raise StorageError("Transaction was marked rollback-only by a nested block")
            try:
                self._commit()
            except Exception:
                self._rollback()
                raise

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._transaction_depth == 0:
                return
            self._transaction_depth -= 1
            if self._transaction_depth > 0:
                self._rollback_only = True
                return
            self._rollback()

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        with self._lock:
            self.begin_transaction()
            try:
                yield self
            except BaseException:
                self.rollback()
                raise
            self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record, refusing existing ids"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                raise DuplicateKeyError(table, record_id)
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(json.loads(json.dumps(record)))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def increment_if_below(
        self,
        table: str,
        record_id: str,
        field: str,
        limit_field: str
    ) -> Optional[Dict[str, Any]]:
        """Conditional increment performed under the storage lock"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is None:
                return None
            if int(record[field]) >= int(record[limit_field]):
                return None
            record[field] = int(record[field]) + 1
            record['updated_at'] = datetime.now(timezone.utc).isoformat()
            return json.loads(json.dumps(record))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def _begin(self) -> None:
        self._snapshot = copy.deepcopy(self._data)

    def _commit(self) -> None:
        self._snapshot = None

    def _rollback(self) -> None:
        if self._snapshot is not None:
            self._data = self._snapshot
        self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def get_all_data(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Get all data for debugging/inspection"""
        with self._lock:
            return json.loads(json.dumps(self._data, default=str))


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        super().__init__()
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly with BEGIN IMMEDIATE
        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a statement, translating lock contention"""
        try:
            return self._connection.execute(sql, params)
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "locked" in message or "busy" in message:
                raise WriteConflictError(str(e)) from e
            raise

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        _check_identifier(table)
        with self._lock:
            self._execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # Create index on timestamps for better query performance
            self._execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record; the primary key rejects existing ids"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            try:
                self._execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, json.dumps(data, default=str), now, now))
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(table, record_id) from e

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def increment_if_below(
        self,
        table: str,
        record_id: str,
        field: str,
        limit_field: str
    ) -> Optional[Dict[str, Any]]:
        """Single conditional UPDATE; the affected row count decides the outcome"""
        path = f"$.{_check_identifier(field)}"
        limit_path = f"$.{_check_identifier(limit_field)}"
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            cursor = self._execute(f"""
                UPDATE {table}
                SET data = json_set(
                        data,
                        ?, CAST(json_extract(data, ?) AS INTEGER) + 1,
                        '$.updated_at', ?
                    ),
                    updated_at = ?
                WHERE id = ?
                  AND CAST(json_extract(data, ?) AS INTEGER)
                      < CAST(json_extract(data, ?) AS INTEGER)
            """, (path, path, now, now, record_id, path, limit_path))
            if cursor.rowcount == 0:
                return None
            return self.load(table, record_id)

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._execute(f"DELETE FROM {table}")

    def _begin(self) -> None:
        # Take the database write lock at BEGIN rather than at the first write
        self._execute("BEGIN IMMEDIATE")

    def _commit(self) -> None:
        self._execute("COMMIT")

    def _rollback(self) -> None:
        if self._connection.in_transaction:
            self._execute("ROLLBACK")
        # Tables created inside the transaction are gone too
        self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    def __init__(self, connection_string: str):
        super().__init__()
        try:
            import psycopg2
            import psycopg2.extras
            import psycopg2.extensions
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._connection = None
        self._tables: set = set()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except Exception:
                    pass

            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            self._connection.autocommit = False  # We handle transactions manually

    def _finish_statement(self) -> None:
        """Commit a standalone statement; inside a transaction the caller commits"""
        if not self.in_transaction:
            self._connection.commit()

    @contextmanager
    def _cursor(self):
        """Cursor that translates serialization failures and closes itself"""
        cursor = self._connection.cursor()
        try:
            yield cursor
        except self.psycopg2.extensions.TransactionRollbackError as e:
            if not self.in_transaction:
                self._connection.rollback()
            raise WriteConflictError(str(e)) from e
        finally:
            cursor.close()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        _check_identifier(table)
        with self._lock:
            with self._cursor() as cursor:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        data JSONB NOT NULL,
                        created_at TIMESTAMP DEFAULT NOW(),
                        updated_at TIMESTAMP DEFAULT NOW()
                    )
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_data
                    ON {table} USING gin(data)
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                    ON {table}(created_at)
                """)
                self._finish_statement()
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc)
            data_json = json.dumps(data, default=str)

            with self._cursor() as cursor:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        data = EXCLUDED.data,
                        updated_at = EXCLUDED.updated_at
                """, (record_id, data_json, now, now))
                self._finish_statement()

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record; a unique violation becomes DuplicateKeyError"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc)
            with self._cursor() as cursor:
                try:
                    cursor.execute(f"""
                        INSERT INTO {table} (id, data, created_at, updated_at)
                        VALUES (%s, %s, %s, %s)
                    """, (record_id, json.dumps(data, default=str), now, now))
                except self.psycopg2.IntegrityError as e:
                    if not self.in_transaction:
                        self._connection.rollback()
                    raise DuplicateKeyError(table, record_id) from e
                self._finish_statement()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    SELECT data FROM {table} WHERE id = %s
                """, (record_id,))
                row = cursor.fetchone()
                if row:
                    return dict(row['data'])
                return None

    def load_for_update(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """SELECT ... FOR UPDATE; the row lock is held until commit or rollback"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    SELECT data FROM {table} WHERE id = %s FOR UPDATE
                """, (record_id,))
                row = cursor.fetchone()
                self._finish_statement()
                if row:
                    return dict(row['data'])
                return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    SELECT data FROM {table} ORDER BY created_at
                """)
                return [dict(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    DELETE FROM {table} WHERE id = %s
                """, (record_id,))
                self._finish_statement()
                return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    SELECT 1 FROM {table} WHERE id = %s LIMIT 1
                """, (record_id,))
                return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                if not filters:
                    cursor.execute(f"""
                        SELECT data FROM {table} ORDER BY created_at
                    """)
                else:
                    # Build WHERE clause using JSONB operators
                    conditions = []
                    params = []
                    for key, value in filters.items():
                        if value is None:
                            conditions.append("data ->> %s IS NULL")
                            params.append(key)
                        else:
                            conditions.append("data ->> %s = %s")
                            params.extend([key, json.dumps(value) if isinstance(value, bool) else str(value)])

                    where_clause = " AND ".join(conditions)
                    cursor.execute(f"""
                        SELECT data FROM {table}
                        WHERE {where_clause}
                        ORDER BY created_at
                    """, params)

                return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    SELECT COUNT(*) as count FROM {table}
                """)
                return cursor.fetchone()['count']

    def increment_if_below(
        self,
        table: str,
        record_id: str,
        field: str,
        limit_field: str
    ) -> Optional[Dict[str, Any]]:
        """Conditional UPDATE ... RETURNING; row locking is left to PostgreSQL"""
        _check_identifier(field)
        _check_identifier(limit_field)
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc)
            with self._cursor() as cursor:
                cursor.execute(f"""
                    UPDATE {table}
                    SET data = jsonb_set(
                            jsonb_set(data, %s::text[], to_jsonb((data ->> %s)::bigint + 1)),
                            '{{updated_at}}', to_jsonb(%s::text)
                        ),
                        updated_at = %s
                    WHERE id = %s
                      AND (data ->> %s)::bigint < (data ->> %s)::bigint
                    RETURNING data
                """, ([field], field, now.isoformat(), now, record_id, field, limit_field))
                row = cursor.fetchone()
                self._finish_statement()
                if row is None:
                    return None
                return dict(row['data'])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            with self._cursor() as cursor:
                cursor.execute(f"DELETE FROM {table}")
                self._finish_statement()

    def _commit(self) -> None:
        self._connection.commit()

    def _rollback(self) -> None:
        self._connection.rollback()
        self._tables.clear()

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except Exception:
                    pass
                self._connection = None


def create_storage(database_url: str, sqlite_timeout: float = 5.0) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Supported forms: ``memory://``, ``sqlite:///path/to.db`` (or
    ``sqlite:///:memory:``) and ``postgresql://...``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:", timeout=sqlite_timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
