import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def print_list_result(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: 'id. ISBN - Title by Author (n available)' lines, or 'No books in library.'
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Available", justify="right")
        for b in books:
            table.add_row(str(b.id), b.isbn, b.title, b.author, str(b.available_copies))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id}. {b.isbn} - {b.title} by {b.author} ({b.available_copies} available)")

def print_loans_result(loans: List[Any]) -> None:
    """Print loan views in the current output mode."""
    mode = get_output_mode()

    if not loans:
        print("No loans found.")
        return

    if mode == "json":
        print(json.dumps([v.to_dict() for v in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📖 Loans", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("Member", style="white")
        table.add_column("Due", no_wrap=True)
        table.add_column("Returned", no_wrap=True)
        for v in loans:
            if v.return_date:
                returned = f"{v.return_date:%Y-%m-%d}"
            else:
                returned = "[red]overdue[/]" if v.is_overdue() else "[yellow]outstanding[/]"
            table.add_row(str(v.id), v.book_title, v.member_name, f"{v.due_date:%Y-%m-%d}", returned)
        _console.print(table)
    else:
        for v in loans:
            if v.return_date:
                state = f"returned {v.return_date:%Y-%m-%d}"
            else:
                state = "overdue" if v.is_overdue() else "outstanding"
            print(f"{v.id}. {v.book_title} -> {v.member_name}, due {v.due_date:%Y-%m-%d} ({state})")

def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the key metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "unique_authors": "Unique Authors",
        "available_copies": "Available Copies",
        "total_members": "Members",
        "outstanding_loans": "Outstanding Loans",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
