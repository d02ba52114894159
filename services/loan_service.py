"""Loan lifecycle: borrowing and returning books.

Both write operations load what they need, check the invariants, and save
the new state of the loan and of the book inside a single unit of work. The
checks run inside that unit of work, so two borrowers racing for the last
copy are serialised by the database's write lock.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from gateway import SQLiteGateway
from loan import Loan, LoanView, utcnow
from results import ServiceResult

logger = logging.getLogger(__name__)


def _is_valid_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class LoanService:
    """Creates and closes loans, keeping book availability in step."""

    def __init__(self, gateway: SQLiteGateway, clock: Callable[[], datetime] = utcnow) -> None:
        self._gateway = gateway
        self._clock = clock

    # ------------------------- Queries ------------------------- #
    def list_loans(self) -> List[LoanView]:
        return self._gateway.list_loan_views()

    def get_loan(self, loan_id: int) -> Optional[LoanView]:
        if not _is_valid_id(loan_id):
            return None
        return self._gateway.get_loan_view(loan_id)

    def list_loans_by_member(self, member_id: int) -> List[LoanView]:
        if not _is_valid_id(member_id):
            return []
        return self._gateway.list_loan_views_by_member(member_id)

    # ------------------------- Borrow ------------------------- #
    def create_loan(self, book_id: int, member_id: int) -> ServiceResult[LoanView]:
        """Lend one copy of ``book_id`` to ``member_id``.

        Checks, first failure wins: book exists, book has a free copy, member
        exists, member does not already hold an outstanding loan of the book.
        """
        if not _is_valid_id(book_id):
            return ServiceResult.invalid("Book ID must be a positive integer.")
        if not _is_valid_id(member_id):
            return ServiceResult.invalid("Member ID must be a positive integer.")

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[LoanView]:
            book = gw.get_book(book_id)
            if book is None:
                return ServiceResult.not_found("Book", "The requested book does not exist.")
            if not book.is_available:
                return ServiceResult.conflict("No available copies of this book.")

            member = gw.get_member(member_id)
            if member is None:
                return ServiceResult.not_found("Member", "Invalid member ID.")

            already_borrowed = any(
                existing.book_id == book.id and existing.is_outstanding
                for existing in gw.get_loans_by_member(member.id)
            )
            if already_borrowed:
                return ServiceResult.conflict("This book is already borrowed by the member.")

            loan = gw.save_loan(Loan.open(book.id, member.id, now=self._clock()))
            book.checkout_copy()
            gw.save_book(book)
            return ServiceResult.ok(gw.get_loan_view(loan.id))

        result = self._gateway.run_in_transaction(unit_of_work)
        if result:
            logger.info(f"Loan {result.value.id} created: book={book_id} member={member_id} due={result.value.due_date:%Y-%m-%d}")
        else:
            logger.warning(f"Loan rejected for book={book_id} member={member_id}: {result.message}")
        return result

    # ------------------------- Return ------------------------- #
    def return_book(self, loan_id: int) -> ServiceResult[bool]:
        """Close an outstanding loan and put the copy back on the shelf.

        An unknown loan gives a NOT_FOUND result, which is falsy, so callers
        may keep treating the outcome as a plain boolean.
        """
        if not _is_valid_id(loan_id):
            return ServiceResult.invalid("Loan ID must be a positive integer.")

        def unit_of_work(gw: SQLiteGateway) -> ServiceResult[bool]:
            loan = gw.get_loan(loan_id)
            if loan is None:
                return ServiceResult.not_found("Loan", f"Loan with ID {loan_id} not found.")
            if not loan.is_outstanding:
                return ServiceResult.conflict("This loan has already been returned.")

            book = gw.get_book(loan.book_id)
            if book is None:
                return ServiceResult.not_found("Book", "The book associated with this loan does not exist.")

            loan.mark_as_returned(self._clock())
            book.return_copy()
            gw.save_loan(loan)
            gw.save_book(book)
            return ServiceResult.ok(True)

        result = self._gateway.run_in_transaction(unit_of_work)
        if result:
            logger.info(f"Loan {loan_id} returned")
        else:
            logger.warning(f"Return rejected for loan {loan_id}: {result.message}")
        return result
