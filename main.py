import logging
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from config import settings
from frontend import Frontend
from http_client import APIError, LibraryAPIClient
from utils.ui_helpers import (
    availability_label,
    describe_transaction,
    print_books,
    print_record,
    print_transactions,
    print_users,
    set_output_mode,
)

APP_NAME = "Library CLI"

console = Console()
logger = logging.getLogger(__name__)

_api_url: Optional[str] = None


def get_client() -> LibraryAPIClient:
    """API client for the configured server (overridable with --api-url)."""
    return LibraryAPIClient(base_url=_api_url or settings.api_url)


def _fail(error: APIError) -> None:
    print(f"Error: {error}")
    raise typer.Exit(code=1)


# --- Typer CLI Application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Base URL of the library API"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log requests and errors"),
):
    """Global options for the CLI (output mode, server address)."""
    global _api_url
    logging.basicConfig(level=settings.log_level if verbose else logging.WARNING)
    if output:
        set_output_mode(output)
    if api_url:
        _api_url = api_url


@app.command("books")
def cli_books():
    """List all books with their availability."""
    with get_client() as client:
        try:
            books = client.list_books()
        except APIError as e:
            _fail(e)
    print_books(books)


@app.command("add-book")
def cli_add_book(
    title: str = typer.Argument(..., help="Book title"),
    author: str = typer.Argument(..., help="Author name"),
    publication_year: int = typer.Argument(..., help="Year of publication"),
):
    """Add a new book to the catalogue."""
    with get_client() as client:
        try:
            book = client.add_book(title, author, publication_year)
        except APIError as e:
            _fail(e)
    print_record(book, "Book added")


@app.command("update-book")
def cli_update_book(
    book_id: str = typer.Argument(..., help="Book id"),
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    publication_year: Optional[int] = typer.Option(None, "--year", "-y"),
    available: Optional[bool] = typer.Option(None, "--available/--unavailable",
                                             help="Set availability directly (bypasses borrow/return)"),
):
    """Update fields of a book."""
    changes = {}
    if title is not None:
        changes["title"] = title
    if author is not None:
        changes["author"] = author
    if publication_year is not None:
        changes["publicationYear"] = publication_year
    if available is not None:
        changes["availabilityStatus"] = available
    if not changes:
        print("Nothing to update. Use --title, --author, --year or --available/--unavailable.")
        raise typer.Exit(code=1)
    with get_client() as client:
        try:
            book = client.update_book(book_id, **changes)
        except APIError as e:
            _fail(e)
    print_record(book, "Book updated")


@app.command("delete-book")
def cli_delete_book(
    book_id: str = typer.Argument(..., help="Book id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a book by id."""
    if not yes and not Confirm.ask(f"Delete book {book_id}?", default=False):
        print("Deletion cancelled.")
        return
    with get_client() as client:
        try:
            book = client.delete_book(book_id)
        except APIError as e:
            _fail(e)
    print(f"Deleted: {book.get('title')} by {book.get('author')}")


@app.command("users")
def cli_users():
    """List registered users."""
    with get_client() as client:
        try:
            users = client.list_users()
        except APIError as e:
            _fail(e)
    print_users(users)


@app.command("register")
def cli_register(
    name: str = typer.Argument(..., help="User name"),
    contact_info: str = typer.Argument(..., help="Unique contact (email, phone, ...)"),
):
    """Register a new user."""
    with get_client() as client:
        try:
            user = client.register_user(name, contact_info)
        except APIError as e:
            _fail(e)
    print(f"User registered successfully: {user.get('name')} ({user.get('id')})")


@app.command("borrow")
def cli_borrow(
    book_id: str = typer.Argument(..., help="Book id"),
    user_id: str = typer.Argument(..., help="User id"),
):
    """Borrow an available book for a user."""
    with get_client() as client:
        try:
            client.borrow(book_id, user_id)
        except APIError as e:
            _fail(e)
    print(f"Book {book_id} borrowed by user {user_id}.")


@app.command("return")
def cli_return(
    book_id: str = typer.Argument(..., help="Book id"),
    user_id: str = typer.Argument(..., help="User id"),
):
    """Return a book the user has borrowed."""
    with get_client() as client:
        try:
            client.return_book(book_id, user_id)
        except APIError as e:
            _fail(e)
    print("Book returned successfully.")


@app.command("borrowed")
def cli_borrowed(user_id: str = typer.Argument(..., help="User id")):
    """Show every book a user has borrowed, returned or not."""
    with get_client() as client:
        try:
            transactions = client.borrowed_books(user_id)
        except APIError as e:
            if e.status_code != 404:
                _fail(e)
            transactions = []
    print_transactions(transactions)


@app.command("transactions")
def cli_transactions(user_id: str = typer.Argument(..., help="User id")):
    """Show a user's transaction history."""
    with get_client() as client:
        try:
            transactions = client.user_transactions(user_id)
        except APIError as e:
            _fail(e)
    print_transactions(transactions)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the API server with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API server on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        print("Error: uvicorn could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


# --- Interactive front-end ---
def _show_notice(frontend: Frontend) -> None:
    if frontend.state.last_error:
        console.print(f"[bold red]{escape(frontend.state.last_error)}[/]")
    elif frontend.state.last_message:
        console.print(f"[green]{escape(frontend.state.last_message)}[/]")
    frontend.state.last_error = None
    frontend.state.last_message = None


def _render(frontend: Frontend) -> None:
    state = frontend.state
    selected = frontend.selected_user_name()
    header = f"Selected user: [bold]{escape(selected)}[/]" if selected else "Selected user: [dim]none[/]"
    console.print(Panel.fit(header, title="📚 Library Management System", border_style="blue"))

    if state.selected_user:
        console.print("[bold]Borrowed Books[/]")
        if not state.transactions:
            console.print("  [dim]No borrowed books found for this user.[/]")
        for t in state.transactions:
            console.print(f"  {escape(describe_transaction(t))}")

    console.print("[bold]Books[/]")
    if not state.books:
        console.print("  [dim]No books in library.[/]")
    for i, book in enumerate(state.books, 1):
        console.print(
            f"  {i}. [bold]{escape(book.get('title', ''))}[/] by {escape(book.get('author', ''))} "
            f"({book.get('publicationYear', '')}) - {availability_label(book)}"
        )


def _pick(items: list, label: str) -> Optional[dict]:
    if not items:
        console.print(f"[yellow]No {label}s to choose from.[/]")
        return None
    raw = Prompt.ask(f"{label.capitalize()} number").strip()
    if not raw.isdigit() or not 1 <= int(raw) <= len(items):
        console.print("[yellow]Invalid selection.[/]")
        return None
    return items[int(raw) - 1]


def run_shell(frontend: Frontend) -> None:
    """Menu-driven front-end over the API. Every change re-reads server state."""
    frontend.mount()
    menu = [
        ("1", "Select user"),
        ("2", "Register user"),
        ("3", "Add book"),
        ("4", "Delete book"),
        ("5", "Borrow book"),
        ("6", "Return book"),
        ("7", "Refresh"),
        ("0", "Exit"),
    ]
    while True:
        _render(frontend)
        _show_notice(frontend)
        console.print("  ".join(f"[cyan]{key}[/] {text}" for key, text in menu))
        choice = Prompt.ask("Choose an option", choices=[key for key, _ in menu], default="7")

        if choice == "1":
            for i, user in enumerate(frontend.state.users, 1):
                console.print(f"  {i}. {escape(user.get('name', ''))} <{escape(user.get('contactInfo', ''))}>")
            user = _pick(frontend.state.users, "user")
            frontend.select_user(user["id"] if user else "")
        elif choice == "2":
            frontend.state.new_user.name = Prompt.ask("Name")
            frontend.state.new_user.contact_info = Prompt.ask("Contact Info")
            frontend.register_user()
        elif choice == "3":
            frontend.state.new_book.title = Prompt.ask("Title")
            frontend.state.new_book.author = Prompt.ask("Author")
            frontend.state.new_book.publication_year = Prompt.ask("Publication Year")
            frontend.add_book()
        elif choice == "4":
            book = _pick(frontend.state.books, "book")
            if book and Confirm.ask(f"Delete '{book.get('title')}'?", default=False):
                frontend.delete_book(book["id"])
        elif choice == "5":
            book = _pick(frontend.state.books, "book")
            if book:
                frontend.borrow(book["id"])
        elif choice == "6":
            book = _pick(frontend.state.books, "book")
            if book:
                frontend.return_book(book["id"])
        elif choice == "7":
            frontend.mount()
            if frontend.state.selected_user:
                frontend.fetch_transactions(frontend.state.selected_user)
        elif choice == "0":
            console.print("[green]Goodbye![/]")
            break
        print()


@app.command("shell")
def cli_shell():
    """Interactive front-end: select a user, borrow and return books."""
    with get_client() as client:
        run_shell(Frontend(client))


if __name__ == "__main__":
    app()
