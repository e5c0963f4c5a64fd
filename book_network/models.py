from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


def _as_bool(value: Any) -> bool:
    # SQLite hands booleans back as 0/1
    return bool(value) if value is not None else False


def average_rating(ratings: Iterable[float]) -> float:
    """Mean of the given ratings rounded half-up to one decimal, 0.0 when empty."""
    values = [float(r) for r in ratings]
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return float(Decimal(str(mean)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class Book:
    """A book listed by its owner on the network."""

    def __init__(self, title: str, author_name: str, isbn: str, synopsis: str, owner_id: int,
                 shareable: bool = False, archived: bool = False, book_cover: Optional[str] = None,
                 id: Optional[int] = None,
                 # Audit fields
                 created_date: Optional[str] = None, last_modified_date: Optional[str] = None,
                 created_by: Optional[int] = None, last_modified_by: Optional[int] = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author_name = author_name.strip()
        self.isbn = isbn.strip()
        self.synopsis = synopsis.strip()
        self.owner_id = owner_id
        self.shareable = shareable
        self.archived = archived
        self.book_cover = book_cover

        self.created_date = created_date
        self.last_modified_date = last_modified_date
        self.created_by = created_by
        self.last_modified_by = last_modified_by

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author_name=data["author_name"],
            isbn=data["isbn"],
            synopsis=data.get("synopsis") or "",
            owner_id=data["owner_id"],
            shareable=_as_bool(data.get("shareable")),
            archived=_as_bool(data.get("archived")),
            book_cover=data.get("book_cover"),
            created_date=data.get("created_date"),
            last_modified_date=data.get("last_modified_date"),
            created_by=data.get("created_by"),
            last_modified_by=data.get("last_modified_by"),
        )


class TransactionHistory:
    """One borrow of a book by a user, from borrow until the owner approves the return."""

    def __init__(self, book_id: int, user_id: int, returned: bool = False, return_approved: bool = False,
                 id: Optional[int] = None, created_date: Optional[str] = None,
                 last_modified_date: Optional[str] = None, created_by: Optional[int] = None,
                 last_modified_by: Optional[int] = None) -> None:
        self.id = id
        self.book_id = book_id
        self.user_id = user_id
        self.returned = returned
        self.return_approved = return_approved
        self.created_date = created_date
        self.last_modified_date = last_modified_date
        self.created_by = created_by
        self.last_modified_by = last_modified_by

    @staticmethod
    def from_dict(data: dict) -> "TransactionHistory":
        return TransactionHistory(
            id=data.get("id"),
            book_id=data["book_id"],
            user_id=data["user_id"],
            returned=_as_bool(data.get("returned")),
            return_approved=_as_bool(data.get("return_approved")),
            created_date=data.get("created_date"),
            last_modified_date=data.get("last_modified_date"),
            created_by=data.get("created_by"),
            last_modified_by=data.get("last_modified_by"),
        )


class Feedback:
    def __init__(self, rate: float, comment: str, book_id: int, created_by: int,
                 id: Optional[int] = None, created_date: Optional[str] = None) -> None:
        self.id = id
        self.rate = float(rate)
        self.comment = comment
        self.book_id = book_id
        self.created_by = created_by
        self.created_date = created_date

    @staticmethod
    def from_dict(data: dict) -> "Feedback":
        return Feedback(
            id=data.get("id"),
            rate=data["rate"],
            comment=data.get("comment") or "",
            book_id=data["book_id"],
            created_by=data["created_by"],
            created_date=data.get("created_date"),
        )


class User:
    """Minimal view of an account; the identity subsystem owns the full record."""

    def __init__(self, id: int, firstname: str, lastname: str, email: str) -> None:
        self.id = id
        self.firstname = firstname
        self.lastname = lastname
        self.email = email

    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


# ------------------------- Read models ------------------------- #

class BookView:
    """What callers see of a book: the owner's display name and the derived rating."""

    def __init__(self, id: int, title: str, author_name: str, isbn: str, synopsis: str,
                 owner: str, cover: Optional[str], rate: float, archived: bool, shareable: bool,
                 owner_id: Optional[int] = None) -> None:
        self.id = id
        self.title = title
        self.author_name = author_name
        self.isbn = isbn
        self.synopsis = synopsis
        self.owner = owner
        self.owner_id = owner_id
        self.cover = cover
        self.rate = rate
        self.archived = archived
        self.shareable = shareable

    @staticmethod
    def from_book(book: Book, owner_name: str, rate: float) -> "BookView":
        return BookView(
            id=book.id,
            title=book.title,
            author_name=book.author_name,
            isbn=book.isbn,
            synopsis=book.synopsis,
            owner=owner_name,
            owner_id=book.owner_id,
            cover=book.book_cover,
            rate=rate,
            archived=book.archived,
            shareable=book.shareable,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author_name": self.author_name,
            "isbn": self.isbn,
            "synopsis": self.synopsis,
            "owner": self.owner,
            "owner_id": self.owner_id,
            "cover": self.cover,
            "rate": self.rate,
            "archived": self.archived,
            "shareable": self.shareable,
        }

    @staticmethod
    def from_dict(data: dict) -> "BookView":
        return BookView(**data)


class BorrowedBookView:
    """A transaction seen from the borrower's or the owner's history page."""

    def __init__(self, id: int, title: str, author_name: str, isbn: str, rate: float,
                 returned: bool, return_approved: bool, transaction_id: Optional[int] = None) -> None:
        self.id = id
        self.transaction_id = transaction_id
        self.title = title
        self.author_name = author_name
        self.isbn = isbn
        self.rate = rate
        self.returned = returned
        self.return_approved = return_approved

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "title": self.title,
            "author_name": self.author_name,
            "isbn": self.isbn,
            "rate": self.rate,
            "returned": self.returned,
            "return_approved": self.return_approved,
        }

    @staticmethod
    def from_dict(data: dict) -> "BorrowedBookView":
        return BorrowedBookView(**data)


class FeedbackView:
    def __init__(self, rate: float, comment: str, own_feedback: bool, id: Optional[int] = None) -> None:
        self.id = id
        self.rate = rate
        self.comment = comment
        self.own_feedback = own_feedback

    def to_dict(self) -> dict:
        return {"id": self.id, "rate": self.rate, "comment": self.comment, "own_feedback": self.own_feedback}


class PageResponse(Generic[T]):
    """One page of a listing; ``number`` is zero-based."""

    def __init__(self, content: List[T], number: int, size: int, total_elements: int,
                 total_pages: int, first: bool, last: bool) -> None:
        self.content = content
        self.number = number
        self.size = size
        self.total_elements = total_elements
        self.total_pages = total_pages
        self.first = first
        self.last = last

    @classmethod
    def of(cls, content: List[T], page: int, size: int, total: int) -> "PageResponse[T]":
        total_pages = math.ceil(total / size) if size > 0 else 1
        return cls(
            content=content,
            number=page,
            size=size,
            total_elements=total,
            total_pages=total_pages,
            first=page == 0,
            last=page >= total_pages - 1,
        )

    def to_dict(self, item_to_dict: Optional[Callable[[T], dict]] = None) -> dict:
        convert = item_to_dict or (lambda item: item.to_dict())
        return {
            "content": [convert(item) for item in self.content],
            "number": self.number,
            "size": self.size,
            "total_elements": self.total_elements,
            "total_pages": self.total_pages,
            "first": self.first,
            "last": self.last,
        }

    @classmethod
    def from_dict(cls, data: dict, item_from_dict: Callable[[dict], T]) -> "PageResponse[T]":
        return cls(
            content=[item_from_dict(item) for item in data["content"]],
            number=data["number"],
            size=data["size"],
            total_elements=data["total_elements"],
            total_pages=data["total_pages"],
            first=data["first"],
            last=data["last"],
        )
