import logging
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from dotenv import load_dotenv

from book_network.config import settings

# Make sure .env is loaded before the database file is resolved.
load_dotenv()

logger = logging.getLogger(__name__)

# Database file precedence:
# 1) BOOK_NETWORK_DB_FILE (read at call time so a test can point a fresh app at its own file)
# 2) settings.database_file
# 3) a per-process temp file
DEFAULT_DATABASE_FILE = os.path.join(tempfile.gettempdir(), f"book_network_{os.getpid()}.db")


def resolve_database_file(db_file: Optional[str] = None) -> str:
    return (
        db_file
        or os.environ.get("BOOK_NETWORK_DB_FILE")
        or settings.database_file
        or DEFAULT_DATABASE_FILE
    )


def utc_now() -> str:
    """ISO timestamp with microseconds so listings sort in creation order."""
    return datetime.now(timezone.utc).isoformat()


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are started explicitly."""
    conn = sqlite3.connect(
        resolve_database_file(db_file),
        timeout=settings.database_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def unit_of_work(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run a read-check-write sequence as one atomic transaction.

    ``BEGIN IMMEDIATE`` takes SQLite's write lock before the first read, so a
    concurrent unit of work on the same database waits until this one commits
    and then sees its writes. Any exception rolls everything back.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
    finally:
        conn.close()


@contextmanager
def read_connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    conn = get_db_connection(db_file)
    try:
        yield conn
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables and indexes if they do not exist yet."""
    with unit_of_work(db_file) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                firstname TEXT NOT NULL,
                lastname TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                created_date TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author_name TEXT NOT NULL,
                isbn TEXT NOT NULL,
                synopsis TEXT NOT NULL,
                book_cover TEXT,
                archived BOOLEAN NOT NULL DEFAULT 0,
                shareable BOOLEAN NOT NULL DEFAULT 0,
                owner_id INTEGER NOT NULL,
                created_date TEXT NOT NULL,
                last_modified_date TEXT,
                created_by INTEGER NOT NULL,
                last_modified_by INTEGER
            )
        """)

        # No unique constraint on (book_id, user_id): one open row per pair is
        # guarded by the lending ledger inside its unit of work.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_transaction_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                returned BOOLEAN NOT NULL DEFAULT 0,
                return_approved BOOLEAN NOT NULL DEFAULT 0,
                created_date TEXT NOT NULL,
                last_modified_date TEXT,
                created_by INTEGER NOT NULL,
                last_modified_by INTEGER,
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS feedbacks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                rate REAL NOT NULL CHECK(rate >= 0 AND rate <= 5),
                comment TEXT NOT NULL,
                book_id INTEGER NOT NULL,
                created_date TEXT NOT NULL,
                created_by INTEGER NOT NULL,
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_owner ON books(owner_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_created_date ON books(created_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_visible ON books(archived, shareable, owner_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_history_book_user ON book_transaction_history(book_id, user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_history_user ON book_transaction_history(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_feedbacks_book ON feedbacks(book_id)")


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the schema for the resolved database file."""
    path = resolve_database_file(db_file)
    create_tables(path)
    logger.debug(f"Database ready at {path}")
