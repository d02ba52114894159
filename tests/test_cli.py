import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from main import app
from utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # --output writes to the environment; restore it after every test
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


def test_list_no_books(db_file):
    result = runner.invoke(app, ["list-books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_and_list_books(db_file):
    result = runner.invoke(app, ["add-book", "Test Book", "Test Author", "123-456", "--copies", "2"])
    assert result.exit_code == 0
    assert "Successfully added: Test Book by Test Author (ID 1)" in result.stdout

    listed = runner.invoke(app, ["list-books"])
    assert "1. 123456 - Test Book by Test Author (2 available)" in listed.stdout


def test_add_duplicate_book_fails(db_file):
    runner.invoke(app, ["add-book", "Test Book", "Test Author", "123"])

    result = runner.invoke(app, ["add-book", "Other", "Someone", "123"])

    assert result.exit_code == 1
    assert "Error: A book with this ISBN already exists." in result.stdout


def test_list_books_json(db_file, make_book):
    make_book(title="Dune")

    result = runner.invoke(app, ["--output", "json", "list-books"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data[0]["title"] == "Dune"


def test_borrow_and_return(db_file, make_book, make_member):
    book = make_book(copies=1)
    member = make_member()

    borrowed = runner.invoke(app, ["borrow", str(book.id), str(member.id)])
    assert borrowed.exit_code == 0
    assert "Loan 1: 'Dune' lent to Alice, due" in borrowed.stdout

    again = runner.invoke(app, ["borrow", str(book.id), str(member.id)])
    assert again.exit_code == 1
    assert "No available copies of this book." in again.stdout

    loans = runner.invoke(app, ["loans", "--member", str(member.id)])
    assert "1. Dune -> Alice" in loans.stdout
    assert "(outstanding)" in loans.stdout

    returned = runner.invoke(app, ["return", "1"])
    assert returned.exit_code == 0
    assert "Loan 1 returned." in returned.stdout

    twice = runner.invoke(app, ["return", "1"])
    assert twice.exit_code == 1
    assert "already been returned" in twice.stdout


def test_loans_empty(db_file):
    result = runner.invoke(app, ["loans"])
    assert result.exit_code == 0
    assert "No loans found." in result.stdout


def test_stats(db_file, make_book, make_member):
    make_book(copies=3)
    make_member()

    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Available Copies: 3" in result.stdout
    assert "Members: 1" in result.stdout


def test_create_admin(db_file, gateway):
    result = runner.invoke(app, ["create-admin", "Boss", "--name", "The Boss",
                                 "--email", "boss@example.com", "--password", "pw"])

    assert result.exit_code == 0
    assert "Admin 'boss' created with ID 1." in result.stdout
    assert gateway.get_member_by_username("boss").membership_type.value == "Admin"


def test_init_db_creates_bootstrap_admin(db_file, gateway, monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "bootstrap_admin_username", "root")
    monkeypatch.setattr(settings, "bootstrap_admin_password", "changeme")

    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert "Bootstrap admin 'root' created." in result.stdout

    # A second run leaves the existing account alone
    rerun = runner.invoke(app, ["init-db"])
    assert rerun.exit_code == 0
    assert "Bootstrap admin" not in rerun.stdout
    assert len(gateway.list_members()) == 1


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, db_file):
    result = runner.invoke(app, ["serve"])

    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    args = mock_subprocess_run.call_args.args[0]
    assert "api:app" in args
    assert mock_subprocess_run.call_args.kwargs["env"]["LIBRARY_DB_FILE"] == db_file


def test_loans_marks_overdue(db_file, gateway, make_book, make_member):
    from datetime import datetime, timezone

    from services.loan_service import LoanService

    book = make_book()
    member = make_member()
    long_ago = datetime(2020, 1, 1, tzinfo=timezone.utc)
    LoanService(gateway, clock=lambda: long_ago).create_loan(book.id, member.id)

    result = runner.invoke(app, ["loans"])

    assert result.exit_code == 0
    assert "due 2020-01-15 (overdue)" in result.stdout
