import logging
import subprocess
import sys
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from book_network.books import BookRegistry
from book_network.cache_manager import CacheManager
from book_network.config import settings
from book_network.database import initialize_database, resolve_database_file, unit_of_work
from book_network.exceptions import BookNetworkError
from book_network.lending import LendingLedger
from book_network.repository import UserRepository

APP_NAME = "Book Network CLI"

console = Console()
logger = logging.getLogger(__name__)


class ServiceManager:
    """Lazily built services sharing one cache for the lifetime of a CLI invocation."""

    db_file: Optional[str] = None
    _cache: Optional[CacheManager] = None
    _instances: Dict[str, Any] = {}

    @classmethod
    def configure(cls, db_file: Optional[str]) -> None:
        cls.db_file = resolve_database_file(db_file)
        cls._cache = None
        cls._instances = {}

    @classmethod
    def cache(cls) -> CacheManager:
        if cls._cache is None:
            cls._cache = CacheManager()
        return cls._cache

    @classmethod
    def registry(cls) -> BookRegistry:
        if "registry" not in cls._instances:
            cls._instances["registry"] = BookRegistry(db_file=cls.db_file, cache=cls.cache())
        return cls._instances["registry"]

    @classmethod
    def lending(cls) -> LendingLedger:
        if "lending" not in cls._instances:
            cls._instances["lending"] = LendingLedger(db_file=cls.db_file, cache=cls.cache())
        return cls._instances["lending"]


app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file (defaults to BOOK_NETWORK_DB_FILE)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Administrative commands for the book network."""
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)
    ServiceManager.configure(db)


def _fail(error: BookNetworkError) -> None:
    console.print(f"[bold red]Error:[/] {error.message}")
    raise typer.Exit(code=1)


def _print_books(page, title: str) -> None:
    if not page.content:
        console.print("No books found.")
        return
    table = Table(title=f"{title} (page {page.number + 1}/{max(page.total_pages, 1)})")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Owner")
    table.add_column("Rate", justify="right")
    table.add_column("Shareable")
    table.add_column("Archived")
    for book in page.content:
        table.add_row(str(book.id), book.title, book.author_name, book.owner, f"{book.rate:.1f}",
                      "yes" if book.shareable else "no", "yes" if book.archived else "no")
    console.print(table)


def _print_history(page, title: str) -> None:
    if not page.content:
        console.print("No transactions found.")
        return
    table = Table(title=title)
    table.add_column("Book", justify="right")
    table.add_column("Title")
    table.add_column("Returned")
    table.add_column("Approved")
    for item in page.content:
        table.add_row(str(item.id), item.title, "yes" if item.returned else "no",
                      "yes" if item.return_approved else "no")
    console.print(table)


@app.command("init-db")
def cli_init_db():
    """Create the database schema."""
    initialize_database(ServiceManager.db_file)
    console.print(f"Database ready at {ServiceManager.db_file}")


@app.command("add-user")
def cli_add_user(firstname: str, lastname: str, email: str):
    """Register a display name for a user id (normally done by the identity service)."""
    initialize_database(ServiceManager.db_file)
    with unit_of_work(ServiceManager.db_file) as conn:
        user_id = UserRepository(conn).insert(firstname, lastname, email)
    console.print(f"User {user_id} created: {firstname} {lastname}")


@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    isbn: str,
    synopsis: str,
    user: int = typer.Option(..., "--user", "-u", help="Owner user id"),
    shareable: bool = typer.Option(True, "--shareable/--private", help="Share the book with other users"),
):
    """List a new book owned by --user."""
    try:
        book_id = ServiceManager.registry().create(user, title, author, isbn, synopsis, shareable)
    except BookNetworkError as e:
        _fail(e)
    console.print(f"Book {book_id} created: {title}")


@app.command("books")
def cli_books(
    user: int = typer.Option(..., "--user", "-u", help="Caller user id"),
    page: int = typer.Option(0, "--page", "-p"),
    size: int = typer.Option(settings.default_page_size, "--size", "-s"),
):
    """Books shared by other users."""
    try:
        result = ServiceManager.registry().list_visible(user, page, size)
    except BookNetworkError as e:
        _fail(e)
    _print_books(result, "Available books")


@app.command("owned")
def cli_owned(
    user: int = typer.Option(..., "--user", "-u", help="Owner user id"),
    page: int = typer.Option(0, "--page", "-p"),
    size: int = typer.Option(settings.default_page_size, "--size", "-s"),
):
    """Books owned by --user."""
    try:
        result = ServiceManager.registry().list_owned(user, page, size)
    except BookNetworkError as e:
        _fail(e)
    _print_books(result, "My books")


@app.command("borrowed")
def cli_borrowed(
    user: int = typer.Option(..., "--user", "-u", help="Borrower user id"),
    page: int = typer.Option(0, "--page", "-p"),
    size: int = typer.Option(settings.default_page_size, "--size", "-s"),
):
    """Borrow history of --user."""
    try:
        result = ServiceManager.registry().list_borrowed(user, page, size)
    except BookNetworkError as e:
        _fail(e)
    _print_history(result, "Borrowed books")


@app.command("returned")
def cli_returned(
    user: int = typer.Option(..., "--user", "-u", help="Owner user id"),
    page: int = typer.Option(0, "--page", "-p"),
    size: int = typer.Option(settings.default_page_size, "--size", "-s"),
):
    """Borrows of the books --user owns."""
    try:
        result = ServiceManager.registry().list_returned(user, page, size)
    except BookNetworkError as e:
        _fail(e)
    _print_history(result, "Lent books")


@app.command("borrow")
def cli_borrow(book_id: int, user: int = typer.Option(..., "--user", "-u", help="Borrower user id")):
    try:
        transaction_id = ServiceManager.lending().borrow(book_id, user)
    except BookNetworkError as e:
        _fail(e)
    console.print(f"Book {book_id} borrowed (transaction {transaction_id})")


@app.command("return")
def cli_return(book_id: int, user: int = typer.Option(..., "--user", "-u", help="Borrower user id")):
    try:
        transaction_id = ServiceManager.lending().mark_returned(book_id, user)
    except BookNetworkError as e:
        _fail(e)
    console.print(f"Book {book_id} returned (transaction {transaction_id})")


@app.command("approve")
def cli_approve(book_id: int, user: int = typer.Option(..., "--user", "-u", help="Owner user id")):
    """Approve the pending return of a book owned by --user."""
    try:
        transaction_id = ServiceManager.lending().approve_return(book_id, user)
    except BookNetworkError as e:
        _fail(e)
    console.print(f"Return of book {book_id} approved (transaction {transaction_id})")


@app.command("cache-stats")
def cli_cache_stats():
    stats = ServiceManager.cache().get_stats()
    table = Table(title="Cache")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in stats.items():
        table.add_row(key, str(value))
    console.print(table)


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Run the HTTP API with uvicorn."""
    cmd = [sys.executable, "-m", "uvicorn", "book_network.api:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    console.print(f"Starting API on http://{host}:{port}")
    try:
        subprocess.run(cmd, check=True)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)
    except subprocess.CalledProcessError as e:
        raise typer.Exit(code=e.returncode)
    except KeyboardInterrupt:
        console.print("Server stopped.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
