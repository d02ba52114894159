"""SQLite persistence gateway.

The gateway is the only place that talks SQL. Services receive one through
their constructor and work with it in an explicit load / compute / save
style: nothing is tracked, every change is written by a ``save_*`` call.

``run_in_transaction`` groups several calls into one unit of work. While a
unit of work is running every gateway call shares its connection; outside of
one, each call opens and closes its own connection, as the rest of the app
does.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from book import Book
from database import get_db_connection
from loan import Loan, LoanView, format_timestamp
from member import Member, normalize_username
from utils.validators import ISBNValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOAN_VIEW_SELECT = """
    SELECT l.id, l.book_id, b.title AS book_title, l.member_id, m.name AS member_name,
           l.loan_date, l.due_date, l.return_date
    FROM loans l
    JOIN books b ON b.id = l.book_id
    JOIN members m ON m.id = l.member_id
"""


class SQLiteGateway:
    """Storage for books, members and loans in one SQLite database file."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file
        self._tx_conn: Optional[sqlite3.Connection] = None

    # ------------------------- Unit of work ------------------------- #
    @property
    def in_transaction(self) -> bool:
        return self._tx_conn is not None

    def run_in_transaction(self, unit_of_work: Callable[["SQLiteGateway"], T]) -> T:
        """Run ``unit_of_work(self)`` inside a single write transaction.

        BEGIN IMMEDIATE takes SQLite's write lock up front, so checks made
        inside the unit of work still hold when its writes commit. Any
        exception rolls everything back and is re-raised. Nested calls join the
        outer transaction.
        """
        if self._tx_conn is not None:
            return unit_of_work(self)

        conn = get_db_connection(self.db_file)
        self._tx_conn = conn
        try:
            conn.execute("BEGIN IMMEDIATE")
            result = unit_of_work(self)
            conn.execute("COMMIT")
            return result
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.debug("Unit of work rolled back", exc_info=True)
            raise
        finally:
            self._tx_conn = None
            conn.close()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if self._tx_conn is not None:
            yield self._tx_conn
            return
        conn = get_db_connection(self.db_file)
        try:
            yield conn
        finally:
            conn.close()

    def _fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        with self._connection() as conn:
            row = conn.execute(sql, params).fetchone()
            return dict(row) if row else None

    def _fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    # ------------------------- Books ------------------------- #
    def get_book(self, book_id: int) -> Optional[Book]:
        row = self._fetch_one("SELECT * FROM books WHERE id = ?", (book_id,))
        return Book.from_dict(row) if row else None

    def get_book_by_isbn(self, isbn: str) -> Optional[Book]:
        row = self._fetch_one("SELECT * FROM books WHERE isbn = ?", (ISBNValidator.normalize_isbn(isbn),))
        return Book.from_dict(row) if row else None

    def list_books(self) -> List[Book]:
        return [Book.from_dict(r) for r in self._fetch_all("SELECT * FROM books ORDER BY title, id")]

    def search_books(self, query: str) -> List[Book]:
        """Case-insensitive substring match on title or author.

        ``%`` and ``_`` in the query are matched literally.
        """
        escaped = query.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        rows = self._fetch_all(
            "SELECT * FROM books WHERE title LIKE ? ESCAPE '\\' OR author LIKE ? ESCAPE '\\' ORDER BY title, id",
            (pattern, pattern),
        )
        return [Book.from_dict(r) for r in rows]

    def save_book(self, book: Book) -> Book:
        """Insert a new book (id is None) or overwrite an existing one."""
        with self._connection() as conn:
            if book.id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO books (title, author, isbn, genre, publication_year, available_copies)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (book.title, book.author, book.isbn, book.genre, book.publication_year,
                     book.available_copies),
                )
                book.id = cursor.lastrowid
            else:
                conn.execute(
                    """
                    UPDATE books
                    SET title = ?, author = ?, isbn = ?, genre = ?, publication_year = ?, available_copies = ?
                    WHERE id = ?
                    """,
                    (book.title, book.author, book.isbn, book.genre, book.publication_year,
                     book.available_copies, book.id),
                )
        return book

    def delete_book(self, book_id: int) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            return cursor.rowcount > 0

    def count_loans_for_book(self, book_id: int) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS n FROM loans WHERE book_id = ?", (book_id,))
        return row["n"]

    # ------------------------- Members ------------------------- #
    def get_member(self, member_id: int) -> Optional[Member]:
        row = self._fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
        return Member.from_dict(row) if row else None

    def get_member_by_username(self, username: str) -> Optional[Member]:
        row = self._fetch_one(
            "SELECT * FROM members WHERE username = ? COLLATE NOCASE", (normalize_username(username),)
        )
        return Member.from_dict(row) if row else None

    def list_members(self) -> List[Member]:
        return [Member.from_dict(r) for r in self._fetch_all("SELECT * FROM members ORDER BY username")]

    def save_member(self, member: Member) -> Member:
        with self._connection() as conn:
            if member.id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO members (username, name, email, password_hash, membership_type)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (member.username, member.name, member.email, member.password_hash,
                     member.membership_type.value),
                )
                member.id = cursor.lastrowid
            else:
                conn.execute(
                    """
                    UPDATE members
                    SET username = ?, name = ?, email = ?, password_hash = ?, membership_type = ?
                    WHERE id = ?
                    """,
                    (member.username, member.name, member.email, member.password_hash,
                     member.membership_type.value, member.id),
                )
        return member

    def delete_member(self, member_id: int) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
            return cursor.rowcount > 0

    def count_loans_for_member(self, member_id: int) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS n FROM loans WHERE member_id = ?", (member_id,))
        return row["n"]

    # ------------------------- Loans ------------------------- #
    def get_loan(self, loan_id: int) -> Optional[Loan]:
        row = self._fetch_one("SELECT * FROM loans WHERE id = ?", (loan_id,))
        return Loan.from_dict(row) if row else None

    def get_loans_by_member(self, member_id: int) -> List[Loan]:
        rows = self._fetch_all("SELECT * FROM loans WHERE member_id = ? ORDER BY id", (member_id,))
        return [Loan.from_dict(r) for r in rows]

    def list_loans(self) -> List[Loan]:
        return [Loan.from_dict(r) for r in self._fetch_all("SELECT * FROM loans ORDER BY id")]

    def save_loan(self, loan: Loan) -> Loan:
        with self._connection() as conn:
            if loan.id is None:
                cursor = conn.execute(
                    "INSERT INTO loans (book_id, member_id, loan_date, due_date, return_date) VALUES (?, ?, ?, ?, ?)",
                    (loan.book_id, loan.member_id, format_timestamp(loan.loan_date),
                     format_timestamp(loan.due_date), format_timestamp(loan.return_date)),
                )
                loan.id = cursor.lastrowid
            else:
                # Only the return date ever changes on an existing loan.
                conn.execute(
                    "UPDATE loans SET return_date = ? WHERE id = ? AND return_date IS NULL",
                    (format_timestamp(loan.return_date), loan.id),
                )
        return loan

    # ------------------------- Loan projections ------------------------- #
    def get_loan_view(self, loan_id: int) -> Optional[LoanView]:
        row = self._fetch_one(_LOAN_VIEW_SELECT + " WHERE l.id = ?", (loan_id,))
        return LoanView.from_row(row) if row else None

    def list_loan_views(self) -> List[LoanView]:
        return [LoanView.from_row(r) for r in self._fetch_all(_LOAN_VIEW_SELECT + " ORDER BY l.id")]

    def list_loan_views_by_member(self, member_id: int) -> List[LoanView]:
        rows = self._fetch_all(_LOAN_VIEW_SELECT + " WHERE l.member_id = ? ORDER BY l.id", (member_id,))
        return [LoanView.from_row(r) for r in rows]

    # ------------------------- Statistics ------------------------- #
    def get_statistics(self) -> Dict[str, int]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*), COUNT(DISTINCT author), COALESCE(SUM(available_copies), 0) FROM books")
            total_books, unique_authors, available_copies = cursor.fetchone()

            cursor.execute("SELECT COUNT(*) FROM members")
            total_members = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(*) FROM loans WHERE return_date IS NULL")
            outstanding_loans = cursor.fetchone()[0]

            return {
                "total_books": total_books,
                "unique_authors": unique_authors,
                "available_copies": available_copies,
                "total_members": total_members,
                "outstanding_loans": outstanding_loans,
            }
