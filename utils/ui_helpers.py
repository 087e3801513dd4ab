import os
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

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


def format_date(value: Optional[str]) -> str:
    """ISO timestamp -> YYYY-MM-DD, or '' when absent."""
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def availability_label(book: Dict[str, Any]) -> str:
    return "Available" if book.get("availabilityStatus") else "Not Available"


def describe_transaction(transaction: Dict[str, Any]) -> str:
    """'Dune by Herbert (1965) - Not Returned', tolerating deleted books."""
    book = transaction.get("bookId")
    if not isinstance(book, dict):
        book = {}
    title = book.get("title") or "Unknown Title"
    author = book.get("author") or "Unknown Author"
    year = book.get("publicationYear") or "Unknown Year"
    if transaction.get("returnDate"):
        status = f"Returned on {format_date(transaction['returnDate'])}"
    else:
        status = "Not Returned"
    return f"{title} by {author} ({year}) - {status}"


def print_books(books: List[Dict[str, Any]]) -> None:
    """Print the book list in the current output mode.
    - plain: 'id - Title by Author (Year) - Available' lines
    - json: the raw JSON array
    - rich: a Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps(books, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Year", justify="right")
        table.add_column("Status")
        for b in books:
            status = availability_label(b)
            style = "green" if b.get("availabilityStatus") else "red"
            table.add_row(
                b.get("id", ""),
                escape(b.get("title", "")),
                escape(b.get("author", "")),
                str(b.get("publicationYear", "")),
                f"[{style}]{status}[/]",
            )
        _console.print(table)
    else:
        for b in books:
            print(f"{b.get('id', '')} - {b.get('title', '')} by {b.get('author', '')} "
                  f"({b.get('publicationYear', '')}) - {availability_label(b)}")


def print_users(users: List[Dict[str, Any]]) -> None:
    mode = get_output_mode()

    if not users:
        print("No registered users.")
        return

    if mode == "json":
        print(json.dumps(users, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="👤 Users", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        table.add_column("Contact Info", style="white")
        for u in users:
            table.add_row(u.get("id", ""), escape(u.get("name", "")), escape(u.get("contactInfo", "")))
        _console.print(table)
    else:
        for u in users:
            print(f"{u.get('id', '')} - {u.get('name', '')} <{u.get('contactInfo', '')}>")


def print_transactions(transactions: List[Dict[str, Any]]) -> None:
    """Print a user's borrowings. Book references may be expanded or missing."""
    mode = get_output_mode()

    if not transactions:
        print("No borrowed books found for this user.")
        return

    if mode == "json":
        print(json.dumps(transactions, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📖 Borrowed Books", show_lines=True, header_style="bold cyan")
        table.add_column("Book", style="white")
        table.add_column("Borrowed", no_wrap=True)
        table.add_column("Returned", no_wrap=True)
        for t in transactions:
            book = t.get("bookId") if isinstance(t.get("bookId"), dict) else {}
            returned = format_date(t.get("returnDate")) or "[yellow]Not Returned[/]"
            table.add_row(
                escape(f"{book.get('title') or 'Unknown Title'} by {book.get('author') or 'Unknown Author'}"),
                format_date(t.get("borrowDate")),
                returned,
            )
        _console.print(table)
    else:
        for t in transactions:
            print(describe_transaction(t))


def print_record(record: Dict[str, Any], title: str) -> None:
    """Print a single created/updated record."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(record, ensure_ascii=False))
    elif mode == "rich":
        lines = "\n".join(f"[bold]{escape(str(k))}:[/] {escape(str(v))}" for k, v in record.items())
        _console.print(Panel.fit(lines, title=title, border_style="green"))
    else:
        print(title)
        for key, value in record.items():
            print(f"{key}: {value}")
