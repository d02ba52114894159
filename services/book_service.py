import logging
import sqlite3
from typing import Any, Dict, List, Optional

from book import Book
from gateway import SQLiteGateway
from results import ServiceResult

logger = logging.getLogger(__name__)


class BookService:
    """Catalogue maintenance: add, update, delete and look up books."""

    def __init__(self, gateway: SQLiteGateway) -> None:
        self._gateway = gateway

    def list_books(self, query: Optional[str] = None) -> List[Book]:
        if query and query.strip():
            return self._gateway.search_books(query)
        return self._gateway.list_books()

    def get_book(self, book_id: int) -> Optional[Book]:
        return self._gateway.get_book(book_id)

    def get_book_by_isbn(self, isbn: str) -> Optional[Book]:
        return self._gateway.get_book_by_isbn(isbn)

    def get_statistics(self) -> Dict[str, int]:
        return self._gateway.get_statistics()

    def add_book(self, title: str, author: str, isbn: str, genre: Optional[str] = None,
                 publication_year: Optional[int] = None, available_copies: int = 0) -> ServiceResult[Book]:
        try:
            book = Book(title=title, author=author, isbn=isbn, genre=genre,
                        publication_year=publication_year, available_copies=available_copies)
        except ValueError as e:
            return ServiceResult.invalid(str(e))

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[Book]:
            if gw.get_book_by_isbn(book.isbn) is not None:
                return ServiceResult.conflict("A book with this ISBN already exists.")
            return ServiceResult.ok(gw.save_book(book))

        try:
            result = self._gateway.run_in_transaction(unit_of_work)
        except sqlite3.IntegrityError as e:
            logger.warning(f"Book insert failed for ISBN {book.isbn}: {e}")
            return ServiceResult.conflict("A book with this ISBN already exists.")
        if result:
            logger.info(f"Book {book.id} added: {book}")
        return result

    def update_book(self, book_id: int, **changes: Any) -> ServiceResult[Book]:
        """Replace the editable fields of a book. Fields not given keep their value."""

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[Book]:
            existing = gw.get_book(book_id)
            if existing is None:
                return ServiceResult.not_found("Book", f"Book with ID {book_id} not found.")

            merged = existing.to_dict()
            merged.update({k: v for k, v in changes.items() if k in merged and k != "id"})
            try:
                updated = Book.from_dict(merged)
            except ValueError as e:
                return ServiceResult.invalid(str(e))

            same_isbn = gw.get_book_by_isbn(updated.isbn)
            if same_isbn is not None and same_isbn.id != book_id:
                return ServiceResult.conflict("A book with this ISBN already exists.")
            return ServiceResult.ok(gw.save_book(updated))

        result = self._gateway.run_in_transaction(unit_of_work)
        if result:
            logger.info(f"Book {book_id} updated")
        return result

    def delete_book(self, book_id: int) -> ServiceResult[bool]:
        """Delete a book unless a loan still refers to it."""

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[bool]:
            if gw.get_book(book_id) is None:
                return ServiceResult.not_found("Book", f"Book with ID {book_id} not found.")
            if gw.count_loans_for_book(book_id) > 0:
                return ServiceResult.conflict("Book cannot be deleted while loans refer to it.")
            return ServiceResult.ok(gw.delete_book(book_id))

        result = self._gateway.run_in_transaction(unit_of_work)
        if result:
            logger.info(f"Book {book_id} deleted")
        else:
            logger.warning(f"Delete rejected for book {book_id}: {result.message}")
        return result
