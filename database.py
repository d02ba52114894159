import logging
import sqlite3
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)

# Default database file. Callers that need isolation (tests, the CLI's --db option)
# pass their own path to get_db_connection()/initialize_database() instead.
DATABASE_FILE = settings.database_file

MEMBERSHIP_TYPES = ("Admin", "Librarian", "Member")


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode (``isolation_level=None``); multi-statement
    writes are grouped explicitly with BEGIN/COMMIT by the gateway.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.database_timeout,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT NOT NULL UNIQUE,
                genre TEXT,
                publication_year INTEGER,
                available_copies INTEGER NOT NULL DEFAULT 0 CHECK(available_copies >= 0)
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE COLLATE NOCASE,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                password_hash TEXT NOT NULL,
                membership_type TEXT NOT NULL
                    CHECK(membership_type IN ({", ".join(repr(t) for t in MEMBERSHIP_TYPES)}))
            )
        """)

        # Loans are never deleted, so books/members they reference may not be either
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE RESTRICT,
                member_id INTEGER NOT NULL REFERENCES members(id) ON DELETE RESTRICT,
                loan_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_member_id ON loans(member_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_book_member ON loans(book_id, member_id)")
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialise the database, creating tables where needed."""
    create_tables(db_file)
    logger.debug(f"Database ready at {db_file or DATABASE_FILE}")
