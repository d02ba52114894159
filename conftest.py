import pytest

import database
from book import Book
from config import settings
from gateway import SQLiteGateway
from services.book_service import BookService
from services.loan_service import LoanService
from services.member_service import MemberService


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    # Full-strength key stretching makes the suite needlessly slow
    monkeypatch.setattr(settings, "password_hash_iterations", 1000)


@pytest.fixture
def db_file(tmp_path, request, monkeypatch):
    # A fresh database file for every test
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    database.initialize_database(path)
    return path


@pytest.fixture
def gateway(db_file):
    return SQLiteGateway(db_file)


@pytest.fixture
def loan_service(gateway):
    return LoanService(gateway)


@pytest.fixture
def book_service(gateway):
    return BookService(gateway)


@pytest.fixture
def member_service(gateway):
    return MemberService(gateway)


@pytest.fixture
def make_book(gateway):
    counter = {"n": 0}

    def _make(copies: int = 1, title: str = "Dune", author: str = "Frank Herbert") -> Book:
        counter["n"] += 1
        book = Book(title=title, author=author, isbn=f"97800000000{counter['n']:02d}",
                    genre="Science Fiction", publication_year=1965, available_copies=copies)
        return gateway.save_book(book)

    return _make


@pytest.fixture
def make_member(member_service):
    def _make(username: str = "alice", membership_type: str = "Member", password: str = "s3cret!"):
        result = member_service.register_member(
            username=username, name=username.capitalize(), email=f"{username}@example.com",
            password=password, membership_type=membership_type,
        )
        assert result, result.message
        return result.value

    return _make
