import logging
import os
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

import database
from config import settings
from gateway import SQLiteGateway
from services.book_service import BookService
from services.loan_service import LoanService
from services.member_service import MemberService
from utils.ui_helpers import set_output_mode, print_list_result, print_loans_result, print_stats_result

APP_NAME = "Library CLI"

logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
console = Console()

# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


def _gateway() -> SQLiteGateway:
    """Gateway on the current database file, creating the schema if needed."""
    database.initialize_database()
    return SQLiteGateway(database.DATABASE_FILE)


def _fail(message: str) -> None:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file to use"),
):
    """Global options for the CLI (output mode, database file)."""
    if output:
        set_output_mode(output)
    if db:
        database.DATABASE_FILE = db


@app.command("init-db")
def cli_init_db():
    """Create the schema, and the bootstrap admin when one is configured."""
    gateway = _gateway()
    print(f"Database initialised at {database.DATABASE_FILE}")

    username = settings.bootstrap_admin_username
    password = settings.bootstrap_admin_password
    if username and password and gateway.get_member_by_username(username) is None:
        result = MemberService(gateway).register_member(
            username=username, name="Administrator", email=f"{username}@localhost.localdomain",
            password=password, membership_type="Admin",
        )
        if not result:
            _fail(result.message)
        print(f"Bootstrap admin '{result.value.username}' created.")


@app.command("create-admin")
def cli_create_admin(
    username: str,
    name: str = typer.Option(..., "--name", help="Display name"),
    email: str = typer.Option(..., "--email", help="E-mail address"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Register an Admin account, e.g. the first one for a fresh database."""
    result = MemberService(_gateway()).register_member(
        username=username, name=name, email=email, password=password, membership_type="Admin",
    )
    if not result:
        _fail(result.message)
    print(f"Admin '{result.value.username}' created with ID {result.value.id}.")


@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    isbn: str,
    genre: Optional[str] = typer.Option(None, "--genre"),
    year: Optional[int] = typer.Option(None, "--year", help="Publication year"),
    copies: int = typer.Option(1, "--copies", min=0, help="Available copies"),
):
    """Add a book to the catalogue."""
    result = BookService(_gateway()).add_book(
        title=title, author=author, isbn=isbn, genre=genre, publication_year=year, available_copies=copies,
    )
    if not result:
        _fail(result.message)
    book = result.value
    print(f"Successfully added: {book.title} by {book.author} (ID {book.id})")


@app.command("list-books")
def cli_list_books(query: Optional[str] = typer.Option(None, "--query", "-q", help="Search title or author")):
    """List all books, or those matching a search."""
    print_list_result(BookService(_gateway()).list_books(query))


@app.command("borrow")
def cli_borrow(book_id: int, member_id: int):
    """Lend a book to a member."""
    result = LoanService(_gateway()).create_loan(book_id, member_id)
    if not result:
        _fail(result.message)
    view = result.value
    print(f"Loan {view.id}: '{view.book_title}' lent to {view.member_name}, due {view.due_date:%Y-%m-%d}.")


@app.command("return")
def cli_return(loan_id: int):
    """Return a borrowed book."""
    result = LoanService(_gateway()).return_book(loan_id)
    if not result:
        _fail(result.message)
    print(f"Loan {loan_id} returned.")


@app.command("loans")
def cli_loans(member: Optional[int] = typer.Option(None, "--member", "-m", help="Only this member's loans")):
    """List loans."""
    service = LoanService(_gateway())
    loans = service.list_loans_by_member(member) if member is not None else service.list_loans()
    print_loans_result(loans)


@app.command("stats")
def cli_stats():
    """Show catalogue and circulation statistics."""
    print_stats_result(BookService(_gateway()).get_statistics())


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart on code changes")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    console.print(f"[green]Starting API on [link=http://{host}:{port}/docs]http://{host}:{port}/[/link][/]")
    args = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    try:
        env = {**os.environ, "LIBRARY_DB_FILE": database.DATABASE_FILE}
        subprocess.run(args, check=False, env=env)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
