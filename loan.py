from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

LOAN_PERIOD = timedelta(days=14)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Loan:
    """A borrowing of one copy of a book by one member.

    A loan is outstanding while ``return_date`` is None. Once a return date has
    been recorded it cannot be changed.
    """

    def __init__(self, book_id: int, member_id: int, loan_date: datetime, due_date: datetime,
                 return_date: datetime | None = None, id: int | None = None) -> None:
        if not isinstance(book_id, int) or book_id <= 0:
            raise ValueError("Invalid book ID for loan.")
        if not isinstance(member_id, int) or member_id <= 0:
            raise ValueError("Invalid member ID for loan.")
        if due_date < loan_date:
            raise ValueError("Due date cannot be earlier than loan date.")

        self.id = id
        self.book_id = book_id
        self.member_id = member_id
        self.loan_date = loan_date
        self.due_date = due_date
        self._return_date = return_date

    @classmethod
    def open(cls, book_id: int, member_id: int, now: datetime | None = None) -> "Loan":
        """Start a new loan at ``now`` with the standard loan period."""
        loan_date = now or utcnow()
        return cls(book_id=book_id, member_id=member_id, loan_date=loan_date,
                   due_date=loan_date + LOAN_PERIOD)

    @property
    def return_date(self) -> datetime | None:
        return self._return_date

    @property
    def is_outstanding(self) -> bool:
        return self._return_date is None

    def mark_as_returned(self, when: datetime | None = None) -> None:
        if self._return_date is not None:
            raise ValueError("This loan has already been returned.")
        self._return_date = when or utcnow()

    def __repr__(self) -> str:  # pragma: no cover
        return (f"Loan(id={self.id!r}, book_id={self.book_id!r}, member_id={self.member_id!r}, "
                f"return_date={self._return_date!r})")

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            id=data.get("id"),
            book_id=data["book_id"],
            member_id=data["member_id"],
            loan_date=parse_timestamp(data["loan_date"]),
            due_date=parse_timestamp(data["due_date"]),
            return_date=parse_timestamp(data.get("return_date")),
        )


@dataclass
class LoanView:
    """Read-side projection of a loan joined with its book title and member name."""

    id: int
    book_id: int
    book_title: str
    member_id: int
    member_name: str
    loan_date: datetime
    due_date: datetime
    return_date: datetime | None = None

    @property
    def is_outstanding(self) -> bool:
        return self.return_date is None

    def is_overdue(self, now: datetime | None = None) -> bool:
        """Still out after its due date."""
        return self.is_outstanding and (now or utcnow()) > self.due_date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "member_id": self.member_id,
            "member_name": self.member_name,
            "loan_date": format_timestamp(self.loan_date),
            "due_date": format_timestamp(self.due_date),
            "return_date": format_timestamp(self.return_date),
        }

    @staticmethod
    def from_row(row: dict) -> "LoanView":
        return LoanView(
            id=row["id"],
            book_id=row["book_id"],
            book_title=row["book_title"],
            member_id=row["member_id"],
            member_name=row["member_name"],
            loan_date=parse_timestamp(row["loan_date"]),
            due_date=parse_timestamp(row["due_date"]),
            return_date=parse_timestamp(row["return_date"]),
        )
