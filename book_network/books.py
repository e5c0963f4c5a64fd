import logging
import sqlite3
from typing import Optional

from book_network import access
from book_network.cache_manager import (
    BORROWED_BOOKS,
    OWNED_BOOKS,
    RETURNED_BOOKS,
    VISIBLE_BOOKS,
    CacheManager,
    book_key,
    invalidate_book,
    invalidate_book_listings,
    listing_key,
)
from book_network.config import settings
from book_network.database import initialize_database, read_connection, resolve_database_file, unit_of_work
from book_network.exceptions import NotFound
from book_network.file_storage import FileStorage
from book_network.models import Book, BookView, BorrowedBookView, PageResponse, TransactionHistory, average_rating
from book_network.repository import BookRepository, FeedbackRepository, TransactionHistoryRepository, UserRepository
from book_network.validators import TextValidator, validate_media_type, validate_page

logger = logging.getLogger(__name__)


def book_rating(conn: sqlite3.Connection, book_id: int) -> float:
    """Average rating from an explicit fetch of the book's feedback ratings."""
    return average_rating(FeedbackRepository(conn).find_ratings_by_book(book_id))


def to_book_view(conn: sqlite3.Connection, book: Book) -> BookView:
    owner_name = UserRepository(conn).full_name(book.owner_id)
    return BookView.from_book(book, owner_name, book_rating(conn, book.id))


def to_borrowed_view(conn: sqlite3.Connection, history: TransactionHistory, book: Book) -> BorrowedBookView:
    return BorrowedBookView(
        id=book.id,
        transaction_id=history.id,
        title=book.title,
        author_name=book.author_name,
        isbn=book.isbn,
        rate=book_rating(conn, book.id),
        returned=history.returned,
        return_approved=history.return_approved,
    )


class BookRegistry:
    """Owns Book records: creation, lookup, listings and the owner-only flag toggles."""

    def __init__(self, db_file: Optional[str] = None, cache: Optional[CacheManager] = None,
                 storage: Optional[FileStorage] = None) -> None:
        self.db_file = resolve_database_file(db_file)
        self.cache = cache or CacheManager()
        self.storage = storage or FileStorage()
        initialize_database(self.db_file)

    # ------------------------- Core operations ------------------------- #
    def create(self, owner_id: int, title: str, author_name: str, isbn: str, synopsis: str,
               shareable: bool = False) -> int:
        TextValidator.require({
            "Book title": title,
            "Book author name": author_name,
            "Book isbn": isbn,
            "Book synopsis": synopsis,
        })
        book = Book(title=title, author_name=author_name, isbn=isbn, synopsis=synopsis,
                    owner_id=owner_id, shareable=bool(shareable), archived=False)
        generation = self.cache.generation
        with unit_of_work(self.db_file) as conn:
            book_id = BookRepository(conn).insert(book, author_id=owner_id)
            view = to_book_view(conn, book)

        self.cache.set(book_key(book_id), view.to_dict(), generation=generation)
        invalidate_book_listings(self.cache)
        logger.info(f"Book {book_id} created by user {owner_id}")
        return book_id

    def get(self, book_id: int) -> BookView:
        cached = self.cache.get(book_key(book_id))
        if cached is not None:
            return BookView.from_dict(cached)

        generation = self.cache.generation
        with read_connection(self.db_file) as conn:
            book = BookRepository(conn).find_by_id(book_id)
            if book is None:
                raise NotFound("Book", book_id)
            view = to_book_view(conn, book)

        self.cache.set(book_key(book_id), view.to_dict(), generation=generation)
        return view

    def list_visible(self, caller_id: int, page: int = 0, size: int = settings.default_page_size) -> PageResponse[BookView]:
        """Books shared by other users and not archived, newest first."""
        return self._list_books(VISIBLE_BOOKS, caller_id, page, size,
                                lambda repo: repo.find_displayable(caller_id, page, size))

    def list_owned(self, caller_id: int, page: int = 0, size: int = settings.default_page_size) -> PageResponse[BookView]:
        return self._list_books(OWNED_BOOKS, caller_id, page, size,
                                lambda repo: repo.find_by_owner(caller_id, page, size))

    def list_borrowed(self, caller_id: int, page: int = 0, size: int = settings.default_page_size) -> PageResponse[BorrowedBookView]:
        """Every borrow made by the caller, whatever its state."""
        return self._list_history(BORROWED_BOOKS, caller_id, page, size,
                                  lambda repo: repo.find_all_borrowed(caller_id, page, size))

    def list_returned(self, caller_id: int, page: int = 0, size: int = settings.default_page_size) -> PageResponse[BorrowedBookView]:
        """Every borrow of a book the caller owns, whatever its state."""
        return self._list_history(RETURNED_BOOKS, caller_id, page, size,
                                  lambda repo: repo.find_all_returned(caller_id, page, size))

    def toggle_shareable(self, book_id: int, caller_id: int) -> int:
        with unit_of_work(self.db_file) as conn:
            repo = BookRepository(conn)
            book = self._load(repo, book_id)
            access.require_owner(book.owner_id, caller_id, "You cannot update others books shareable status")
            book.shareable = not book.shareable
            repo.update(book, modified_by=caller_id)

        self._evict(book_id)
        logger.info(f"Book {book_id} shareable set to {book.shareable} by user {caller_id}")
        return book_id

    def toggle_archived(self, book_id: int, caller_id: int) -> int:
        with unit_of_work(self.db_file) as conn:
            repo = BookRepository(conn)
            book = self._load(repo, book_id)
            access.require_owner(book.owner_id, caller_id, "You cannot update others books archived status")
            book.archived = not book.archived
            repo.update(book, modified_by=caller_id)

        self._evict(book_id)
        logger.info(f"Book {book_id} archived set to {book.archived} by user {caller_id}")
        return book_id

    def attach_cover(self, book_id: int, caller_id: int, content: bytes, media_type: str) -> str:
        """Store an uploaded cover and record its reference on the book.

        The file is removed again if the book update does not commit.
        """
        reference = None
        try:
            with unit_of_work(self.db_file) as conn:
                repo = BookRepository(conn)
                book = self._load(repo, book_id)
                access.require_owner(book.owner_id, caller_id, "You cannot upload a cover picture for another book")
                media_type = validate_media_type(media_type, settings.allowed_cover_types)
                reference = self.storage.save_file(content, media_type, caller_id)
                book.book_cover = reference
                repo.update(book, modified_by=caller_id)
        except Exception:
            if reference is not None:
                self.storage.delete_file(reference)
            raise

        self._evict(book_id)
        logger.info(f"Cover attached to book {book_id} by user {caller_id}")
        return book.book_cover

    def read_cover(self, book_id: int) -> Optional[bytes]:
        return self.storage.read_file(self.get(book_id).cover)

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _load(repo: BookRepository, book_id: int) -> Book:
        book = repo.find_by_id(book_id)
        if book is None:
            raise NotFound("Book", book_id)
        return book

    def _evict(self, book_id: int) -> None:
        invalidate_book(self.cache, book_id)
        invalidate_book_listings(self.cache)

    def _list_books(self, listing: str, caller_id: int, page: int, size: int, query) -> PageResponse[BookView]:
        validate_page(page, size, settings.max_page_size)
        key = listing_key(listing, page, size, caller_id)
        cached = self.cache.get(key)
        if cached is not None:
            return PageResponse.from_dict(cached, BookView.from_dict)

        generation = self.cache.generation
        with read_connection(self.db_file) as conn:
            books, total = query(BookRepository(conn))
            views = [to_book_view(conn, b) for b in books]

        result = PageResponse.of(views, page, size, total)
        self.cache.set(key, result.to_dict(), generation=generation)
        return result

    def _list_history(self, listing: str, caller_id: int, page: int, size: int, query) -> PageResponse[BorrowedBookView]:
        validate_page(page, size, settings.max_page_size)
        key = listing_key(listing, page, size, caller_id)
        cached = self.cache.get(key)
        if cached is not None:
            return PageResponse.from_dict(cached, BorrowedBookView.from_dict)

        generation = self.cache.generation
        with read_connection(self.db_file) as conn:
            rows, total = query(TransactionHistoryRepository(conn))
            views = [to_borrowed_view(conn, history, book) for history, book in rows]

        result = PageResponse.of(views, page, size, total)
        self.cache.set(key, result.to_dict(), generation=generation)
        return result
