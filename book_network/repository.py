"""SQL access for books, borrow records, feedback and user display names.

Every repository wraps a connection handed out by ``database.unit_of_work``
or ``database.read_connection``; none of them commits on its own, so the
caller decides what one atomic unit of work covers.
"""

import sqlite3
from typing import List, Optional, Tuple

from book_network.database import utc_now
from book_network.models import Book, Feedback, TransactionHistory, User

BOOK_COLUMNS = (
    "id, title, author_name, isbn, synopsis, book_cover, archived, shareable, owner_id, "
    "created_date, last_modified_date, created_by, last_modified_by"
)
HISTORY_COLUMNS = (
    "h.id, h.book_id, h.user_id, h.returned, h.return_approved, "
    "h.created_date, h.last_modified_date, h.created_by, h.last_modified_by"
)


class BookRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def find_by_id(self, book_id: int) -> Optional[Book]:
        row = self.conn.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def insert(self, book: Book, author_id: int) -> int:
        now = utc_now()
        cursor = self.conn.execute(
            """
            INSERT INTO books (title, author_name, isbn, synopsis, book_cover, archived, shareable,
                               owner_id, created_date, created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (book.title, book.author_name, book.isbn, book.synopsis, book.book_cover,
             int(book.archived), int(book.shareable), book.owner_id, now, author_id),
        )
        book.id = cursor.lastrowid
        book.created_date = now
        book.created_by = author_id
        return book.id

    def update(self, book: Book, modified_by: int) -> None:
        # owner_id is never written after insert
        now = utc_now()
        self.conn.execute(
            """
            UPDATE books
            SET title = ?, author_name = ?, isbn = ?, synopsis = ?, book_cover = ?,
                archived = ?, shareable = ?, last_modified_date = ?, last_modified_by = ?
            WHERE id = ?
            """,
            (book.title, book.author_name, book.isbn, book.synopsis, book.book_cover,
             int(book.archived), int(book.shareable), now, modified_by, book.id),
        )
        book.last_modified_date = now
        book.last_modified_by = modified_by

    def find_displayable(self, user_id: int, page: int, size: int) -> Tuple[List[Book], int]:
        """Books other users shared and did not archive, newest first."""
        where = "archived = 0 AND shareable = 1 AND owner_id != ?"
        return self._page(where, (user_id,), page, size)

    def find_by_owner(self, owner_id: int, page: int, size: int) -> Tuple[List[Book], int]:
        return self._page("owner_id = ?", (owner_id,), page, size)

    def _page(self, where: str, params: tuple, page: int, size: int) -> Tuple[List[Book], int]:
        total = self.conn.execute(f"SELECT COUNT(*) FROM books WHERE {where}", params).fetchone()[0]
        rows = self.conn.execute(
            f"SELECT {BOOK_COLUMNS} FROM books WHERE {where} "
            "ORDER BY created_date DESC, id DESC LIMIT ? OFFSET ?",
            params + (size, page * size),
        ).fetchall()
        return [Book.from_dict(dict(r)) for r in rows], total


class TransactionHistoryRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def insert(self, history: TransactionHistory, author_id: int) -> int:
        now = utc_now()
        cursor = self.conn.execute(
            """
            INSERT INTO book_transaction_history (book_id, user_id, returned, return_approved,
                                                  created_date, created_by)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (history.book_id, history.user_id, int(history.returned), int(history.return_approved),
             now, author_id),
        )
        history.id = cursor.lastrowid
        history.created_date = now
        history.created_by = author_id
        return history.id

    def update(self, history: TransactionHistory, modified_by: int) -> None:
        now = utc_now()
        self.conn.execute(
            """
            UPDATE book_transaction_history
            SET returned = ?, return_approved = ?, last_modified_date = ?, last_modified_by = ?
            WHERE id = ?
            """,
            (int(history.returned), int(history.return_approved), now, modified_by, history.id),
        )
        history.last_modified_date = now
        history.last_modified_by = modified_by

    def find_by_id(self, history_id: int) -> Optional[TransactionHistory]:
        row = self.conn.execute(
            f"SELECT {HISTORY_COLUMNS} FROM book_transaction_history h WHERE h.id = ?", (history_id,)
        ).fetchone()
        return TransactionHistory.from_dict(dict(row)) if row else None

    def is_already_borrowed_by_user(self, book_id: int, user_id: int) -> bool:
        """True while the user holds a borrow of this book whose return is not approved."""
        row = self.conn.execute(
            """
            SELECT COUNT(*) FROM book_transaction_history
            WHERE book_id = ? AND user_id = ? AND return_approved = 0
            """,
            (book_id, user_id),
        ).fetchone()
        return row[0] > 0

    def find_open_by_book_and_user(self, book_id: int, user_id: int) -> Optional[TransactionHistory]:
        row = self.conn.execute(
            f"""
            SELECT {HISTORY_COLUMNS} FROM book_transaction_history h
            WHERE h.book_id = ? AND h.user_id = ? AND h.returned = 0 AND h.return_approved = 0
            ORDER BY h.id LIMIT 1
            """,
            (book_id, user_id),
        ).fetchone()
        return TransactionHistory.from_dict(dict(row)) if row else None

    def find_pending_approval(self, book_id: int, owner_id: int) -> Optional[TransactionHistory]:
        """A returned but not yet approved borrow of a book owned by ``owner_id``."""
        row = self.conn.execute(
            f"""
            SELECT {HISTORY_COLUMNS} FROM book_transaction_history h
            JOIN books b ON b.id = h.book_id
            WHERE h.book_id = ? AND b.owner_id = ? AND h.returned = 1 AND h.return_approved = 0
            ORDER BY h.id LIMIT 1
            """,
            (book_id, owner_id),
        ).fetchone()
        return TransactionHistory.from_dict(dict(row)) if row else None

    def find_all_borrowed(self, user_id: int, page: int, size: int) -> Tuple[List[Tuple[TransactionHistory, Book]], int]:
        return self._page_with_books("h.user_id = ?", (user_id,), page, size)

    def find_all_returned(self, owner_id: int, page: int, size: int) -> Tuple[List[Tuple[TransactionHistory, Book]], int]:
        """Every borrow of the owner's books, whatever its state."""
        return self._page_with_books("b.owner_id = ?", (owner_id,), page, size)

    def _page_with_books(self, where: str, params: tuple, page: int, size: int):
        base = "FROM book_transaction_history h JOIN books b ON b.id = h.book_id"
        total = self.conn.execute(f"SELECT COUNT(*) {base} WHERE {where}", params).fetchone()[0]
        book_columns = ", ".join(f"b.{c.strip()} AS b__{c.strip()}" for c in BOOK_COLUMNS.split(","))
        rows = self.conn.execute(
            f"SELECT {HISTORY_COLUMNS}, {book_columns} {base} WHERE {where} "
            "ORDER BY h.created_date DESC, h.id DESC LIMIT ? OFFSET ?",
            params + (size, page * size),
        ).fetchall()
        result = []
        for row in rows:
            data = dict(row)
            book_data = {k[3:]: data.pop(k) for k in list(data) if k.startswith("b__")}
            result.append((TransactionHistory.from_dict(data), Book.from_dict(book_data)))
        return result, total


class FeedbackRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def insert(self, feedback: Feedback) -> int:
        now = utc_now()
        cursor = self.conn.execute(
            "INSERT INTO feedbacks (rate, comment, book_id, created_date, created_by) VALUES (?, ?, ?, ?, ?)",
            (feedback.rate, feedback.comment, feedback.book_id, now, feedback.created_by),
        )
        feedback.id = cursor.lastrowid
        feedback.created_date = now
        return feedback.id

    def find_ratings_by_book(self, book_id: int) -> List[float]:
        rows = self.conn.execute("SELECT rate FROM feedbacks WHERE book_id = ?", (book_id,)).fetchall()
        return [r["rate"] for r in rows]

    def find_all_by_book(self, book_id: int, page: int, size: int) -> Tuple[List[Feedback], int]:
        total = self.conn.execute("SELECT COUNT(*) FROM feedbacks WHERE book_id = ?", (book_id,)).fetchone()[0]
        rows = self.conn.execute(
            """
            SELECT id, rate, comment, book_id, created_date, created_by FROM feedbacks
            WHERE book_id = ? ORDER BY created_date DESC, id DESC LIMIT ? OFFSET ?
            """,
            (book_id, size, page * size),
        ).fetchall()
        return [Feedback.from_dict(dict(r)) for r in rows], total


class UserRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def insert(self, firstname: str, lastname: str, email: str) -> int:
        cursor = self.conn.execute(
            "INSERT INTO users (firstname, lastname, email, created_date) VALUES (?, ?, ?, ?)",
            (firstname, lastname, email, utc_now()),
        )
        return cursor.lastrowid

    def find_by_id(self, user_id: int) -> Optional[User]:
        row = self.conn.execute(
            "SELECT id, firstname, lastname, email FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return User(**dict(row)) if row else None

    def full_name(self, user_id: int) -> str:
        """Display name for a user id; falls back to the bare id for unknown accounts."""
        user = self.find_by_id(user_id)
        return user.full_name() if user else f"user-{user_id}"
