"""
SQLite foundation - connections, schema and write transactions.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from .config import get_db_path, get_storage_timeout, ensure_db_directory
from .errors import TransientStorageError

# sqlite3.OperationalError messages that mean "try again later" rather than a bug
TRANSIENT_MARKERS = ("locked", "busy", "unable to open", "disk i/o")


def is_transient(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


@contextmanager
def get_db(db_path: Optional[str] = None, timeout: Optional[float] = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Get a SQLite database connection.

    The connection runs in autocommit mode; use write_transaction() for
    atomic multi-statement writes. Lock and availability errors surface
    as TransientStorageError.
    """
    path = db_path or get_db_path()
    try:
        conn = sqlite3.connect(
            path,
            timeout=timeout if timeout is not None else get_storage_timeout(),
            isolation_level=None,
            check_same_thread=False,
        )
    except sqlite3.OperationalError as e:
        raise TransientStorageError(f"Ledger storage unavailable: {e}", {"db_path": path}) from e

    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
    except sqlite3.OperationalError as e:
        if is_transient(e):
            raise TransientStorageError(f"Ledger storage unavailable: {e}", {"db_path": path}) from e
        raise
    finally:
        conn.close()


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """
    Run a block as one atomic write.

    BEGIN IMMEDIATE takes the database write lock up front, so conditional
    updates inside the block never race another writer.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def init_db(db_path: Optional[str] = None):
    """Initialize the database with required tables."""
    path = db_path or get_db_path()
    ensure_db_directory(path)

    with get_db(path) as conn:
        # WAL lets readers proceed while a debit holds the write lock
        conn.execute("PRAGMA journal_mode = WAL")

        conn.execute('''
            CREATE TABLE IF NOT EXISTS accounts (
                account_id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                plan TEXT NOT NULL DEFAULT 'starter',
                balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                status TEXT NOT NULL DEFAULT 'active',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        # Append-only: nothing in the DAO updates or deletes these rows
        conn.execute('''
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL REFERENCES accounts(account_id),
                amount INTEGER NOT NULL,
                operation TEXT NOT NULL,
                source TEXT,
                balance_before INTEGER NOT NULL,
                balance_after INTEGER NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        conn.execute('''
            CREATE TABLE IF NOT EXISTS approvals (
                approval_id TEXT PRIMARY KEY,
                request_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                data_type TEXT NOT NULL,
                status TEXT NOT NULL,
                record_count INTEGER,
                byte_size INTEGER,
                metadata TEXT,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                decided_by TEXT,
                decided_at TEXT,
                denial_reason TEXT
            )
        ''')

        # Create indexes for performance
        conn.execute('CREATE INDEX IF NOT EXISTS idx_transactions_account_id ON transactions(account_id, id DESC)')
        conn.execute('CREATE INDEX IF NOT EXISTS idx_approvals_status ON approvals(status)')


def health_check(db_path: Optional[str] = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]

            required_tables = ['accounts', 'transactions', 'approvals']
            return all(table in table_names for table in required_tables)
    except (sqlite3.Error, TransientStorageError):
        return False
