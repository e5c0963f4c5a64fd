"""Borrow, return and return-approval of shared books.

Per (book, borrower) pair a borrow moves through::

    none -> borrowed -> returned (pending approval) -> approved

``approved`` is terminal; the record then stays as read-only history and the
pair may start a new borrow. Each transition reads the book, checks the
access rules and the current record state, and writes inside one
``unit_of_work``, so concurrent calls for the same pair serialize on the
database write lock and the second one sees the first one's result.
"""

import logging
import sqlite3
from typing import Optional

from book_network import access
from book_network.cache_manager import CacheManager, invalidate_book, invalidate_history_listings
from book_network.database import initialize_database, read_connection, resolve_database_file, unit_of_work
from book_network.exceptions import NotFound, OperationNotPermitted
from book_network.models import Book, TransactionHistory
from book_network.repository import BookRepository, TransactionHistoryRepository

logger = logging.getLogger(__name__)


class LendingLedger:
    def __init__(self, db_file: Optional[str] = None, cache: Optional[CacheManager] = None) -> None:
        self.db_file = resolve_database_file(db_file)
        self.cache = cache or CacheManager()
        initialize_database(self.db_file)

    def borrow(self, book_id: int, caller_id: int) -> int:
        """Open a borrow of ``book_id`` for the caller and return the transaction id."""
        with unit_of_work(self.db_file) as conn:
            book = self._load_book(conn, book_id)
            access.require_actionable(
                book.archived, book.shareable,
                "The requested book cannot be borrowed since it is archived or not shareable",
            )
            access.require_not_owner(book.owner_id, caller_id, "You cannot borrow your own book")

            histories = TransactionHistoryRepository(conn)
            if histories.is_already_borrowed_by_user(book_id, caller_id):
                logger.warning(f"User {caller_id} tried to borrow book {book_id} twice")
                raise OperationNotPermitted("The requested book is already borrowed")

            history = TransactionHistory(book_id=book_id, user_id=caller_id, returned=False, return_approved=False)
            transaction_id = histories.insert(history, author_id=caller_id)

        self._evict(book_id)
        logger.info(f"Book {book_id} borrowed by user {caller_id} (transaction {transaction_id})")
        return transaction_id

    def mark_returned(self, book_id: int, caller_id: int) -> int:
        with unit_of_work(self.db_file) as conn:
            book = self._load_book(conn, book_id)
            access.require_actionable(
                book.archived, book.shareable,
                "The requested book cannot be returned since it is archived or not shareable",
            )
            access.require_not_owner(book.owner_id, caller_id, "You cannot borrow or return your own book")

            histories = TransactionHistoryRepository(conn)
            history = histories.find_open_by_book_and_user(book_id, caller_id)
            if history is None:
                raise OperationNotPermitted("You did not borrow this book")

            history.returned = True
            histories.update(history, modified_by=caller_id)

        self._evict(book_id)
        logger.info(f"Book {book_id} returned by user {caller_id} (transaction {history.id})")
        return history.id

    def approve_return(self, book_id: int, owner_id: int) -> int:
        with unit_of_work(self.db_file) as conn:
            book = self._load_book(conn, book_id)
            access.require_actionable(
                book.archived, book.shareable,
                "The requested book cannot be returned since it is archived or not shareable",
            )
            access.require_owner(
                book.owner_id, owner_id, "You cannot approve the return of a book you do not own"
            )

            histories = TransactionHistoryRepository(conn)
            history = histories.find_pending_approval(book_id, owner_id)
            if history is None:
                raise OperationNotPermitted("The book is not returned yet. You cannot approve its return")

            history.return_approved = True
            histories.update(history, modified_by=owner_id)

        self._evict(book_id)
        logger.info(f"Return of book {book_id} approved by owner {owner_id} (transaction {history.id})")
        return history.id

    def get_transaction(self, transaction_id: int) -> TransactionHistory:
        with read_connection(self.db_file) as conn:
            history = TransactionHistoryRepository(conn).find_by_id(transaction_id)
        if history is None:
            raise NotFound("Transaction", transaction_id)
        return history

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _load_book(conn: sqlite3.Connection, book_id: int) -> Book:
        book = BookRepository(conn).find_by_id(book_id)
        if book is None:
            raise NotFound("Book", book_id)
        return book

    def _evict(self, book_id: int) -> None:
        invalidate_book(self.cache, book_id)
        invalidate_history_listings(self.cache)
