import logging
from typing import Optional

from book_network import access
from book_network.cache_manager import (
    CacheManager,
    invalidate_book,
    invalidate_book_listings,
    invalidate_history_listings,
)
from book_network.config import settings
from book_network.database import initialize_database, read_connection, resolve_database_file, unit_of_work
from book_network.exceptions import NotFound
from book_network.models import Feedback, FeedbackView, PageResponse
from book_network.repository import BookRepository, FeedbackRepository
from book_network.validators import validate_page, validate_rating

logger = logging.getLogger(__name__)


class FeedbackLedger:
    """Ratings and comments left by borrowers on other people's books."""

    def __init__(self, db_file: Optional[str] = None, cache: Optional[CacheManager] = None) -> None:
        self.db_file = resolve_database_file(db_file)
        self.cache = cache or CacheManager()
        initialize_database(self.db_file)

    def submit(self, book_id: int, caller_id: int, rate: float, comment: str) -> int:
        """Record a feedback entry after re-checking the rating range."""
        rate = validate_rating(rate)
        with unit_of_work(self.db_file) as conn:
            book = BookRepository(conn).find_by_id(book_id)
            if book is None:
                raise NotFound("Book", book_id)
            access.require_actionable(
                book.archived, book.shareable,
                "You cannot give a feedback for an archived or not shareable book",
            )
            access.require_not_owner(book.owner_id, caller_id, "You cannot give a feedback to your own book")

            feedback = Feedback(rate=rate, comment=comment, book_id=book_id, created_by=caller_id)
            feedback_id = FeedbackRepository(conn).insert(feedback)

        # The book's average rating changed, so every view carrying it is stale
        invalidate_book(self.cache, book_id)
        invalidate_book_listings(self.cache)
        invalidate_history_listings(self.cache)
        logger.info(f"Feedback {feedback_id} on book {book_id} by user {caller_id}")
        return feedback_id

    def list_for_book(self, book_id: int, caller_id: int, page: int = 0,
                      size: int = settings.default_page_size) -> PageResponse[FeedbackView]:
        validate_page(page, size, settings.max_page_size)
        with read_connection(self.db_file) as conn:
            feedbacks, total = FeedbackRepository(conn).find_all_by_book(book_id, page, size)

        views = [
            FeedbackView(id=f.id, rate=f.rate, comment=f.comment,
                         own_feedback=access.is_owner(f.created_by, caller_id))
            for f in feedbacks
        ]
        return PageResponse.of(views, page, size, total)
