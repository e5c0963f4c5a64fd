import logging
import mimetypes
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, Security, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from book_network.books import BookRegistry
from book_network.cache_manager import CacheManager
from book_network.config import settings
from book_network.database import get_db_connection, resolve_database_file
from book_network.exceptions import BookNetworkError, ValidationError
from book_network.feedback import FeedbackLedger
from book_network.file_storage import FileStorage
from book_network.lending import LendingLedger
from book_network.validators import validate_feedback

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# One cache shared by the registry and both ledgers so their invalidations line up
db_file = resolve_database_file()
cache = CacheManager()
registry = BookRegistry(db_file=db_file, cache=cache, storage=FileStorage())
lending = LendingLedger(db_file=db_file, cache=cache)
feedbacks = FeedbackLedger(db_file=db_file, cache=cache)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.app_name} {settings.app_version} using database {db_file}")
    yield
    cache.clear()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)


# --- Error handling ---
@app.exception_handler(BookNetworkError)
async def handle_book_network_error(request: Request, exc: BookNetworkError):
    body = {"error": exc.message}
    if isinstance(exc, ValidationError):
        body["validation_errors"] = exc.errors
    if exc.status_code == 403:
        logger.warning(f"{request.method} {request.url.path} denied: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        errors.append(f"{field}: {error.get('msg')}" if field else error.get("msg"))
    return JSONResponse(status_code=400, content={"error": "Invalid request", "validation_errors": errors})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": str(exc), "business_error_description": "Internal Server Error, contact the admin"},
    )


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key."""
    if api_key == settings.api_key:
        return api_key
    else:
        raise HTTPException(
            status_code=403,
            detail="Could not validate credentials",
        )


def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> int:
    """Caller identity as resolved by the upstream identity provider."""
    try:
        user_id = int(x_user_id) if x_user_id is not None else 0
    except ValueError:
        user_id = 0
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="Missing or invalid X-User-Id header")
    return user_id


# --- Models ---
class BookRequest(BaseModel):
    title: str = ""
    author_name: str = ""
    isbn: str = ""
    synopsis: str = ""
    shareable: bool = False


class BookResponse(BaseModel):
    id: int
    title: str
    author_name: str
    isbn: str
    synopsis: str
    owner: str
    owner_id: Optional[int] = None
    cover: Optional[str] = None
    rate: float
    archived: bool
    shareable: bool


class BorrowedBookResponse(BaseModel):
    id: int
    transaction_id: Optional[int] = None
    title: str
    author_name: str
    isbn: str
    rate: float
    returned: bool
    return_approved: bool


class FeedbackRequest(BaseModel):
    # checked by validate_feedback
    rate: Optional[float] = None
    comment: Optional[str] = None
    book_id: int


class FeedbackResponse(BaseModel):
    id: Optional[int] = None
    rate: float
    comment: str
    own_feedback: bool


class _PageModel(BaseModel):
    number: int
    size: int
    total_elements: int
    total_pages: int
    first: bool
    last: bool


class BookPage(_PageModel):
    content: List[BookResponse]


class BorrowedBookPage(_PageModel):
    content: List[BorrowedBookResponse]


class FeedbackPage(_PageModel):
    content: List[FeedbackResponse]


class MessageResponse(BaseModel):
    id: int
    message: str


def _page_params(
    page: int = Query(0, ge=0, description="Zero-based page index"),
    size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size, description="Page size"),
):
    return page, size


# --- Health ---
@app.get("/health")
def health():
    db_ok = True
    try:
        conn = get_db_connection(db_file)
        conn.execute("SELECT 1")
        conn.close()
    except sqlite3.Error as e:
        logger.warning(f"Health check could not reach the database: {e}")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "cache": cache.get_stats(),
    }


# --- Book endpoints ---
@app.post("/books", response_model=int, dependencies=[Depends(get_api_key)])
def save_book(request: BookRequest, user_id: int = Depends(get_current_user_id)):
    return registry.create(
        owner_id=user_id,
        title=request.title,
        author_name=request.author_name,
        isbn=request.isbn,
        synopsis=request.synopsis,
        shareable=request.shareable,
    )


@app.get("/books", response_model=BookPage, dependencies=[Depends(get_api_key)])
def find_all_books(paging=Depends(_page_params), user_id: int = Depends(get_current_user_id)):
    page, size = paging
    return registry.list_visible(user_id, page, size).to_dict()


@app.get("/books/owner", response_model=BookPage, dependencies=[Depends(get_api_key)])
def find_all_books_by_owner(paging=Depends(_page_params), user_id: int = Depends(get_current_user_id)):
    page, size = paging
    return registry.list_owned(user_id, page, size).to_dict()


@app.get("/books/borrowed", response_model=BorrowedBookPage, dependencies=[Depends(get_api_key)])
def find_all_borrowed_books(paging=Depends(_page_params), user_id: int = Depends(get_current_user_id)):
    page, size = paging
    return registry.list_borrowed(user_id, page, size).to_dict()


@app.get("/books/returned", response_model=BorrowedBookPage, dependencies=[Depends(get_api_key)])
def find_all_returned_books(paging=Depends(_page_params), user_id: int = Depends(get_current_user_id)):
    page, size = paging
    return registry.list_returned(user_id, page, size).to_dict()


@app.get("/books/cover/{book_id}", dependencies=[Depends(get_api_key)])
def get_book_cover(book_id: int):
    view = registry.get(book_id)
    content = registry.read_cover(book_id)
    if content is None:
        raise HTTPException(status_code=404, detail="Cover not found.")
    media_type = mimetypes.guess_type(view.cover or "")[0] or "application/octet-stream"
    return Response(content=content, media_type=media_type)


@app.post("/books/cover/{book_id}", status_code=202, dependencies=[Depends(get_api_key)])
async def upload_book_cover_picture(book_id: int, file: UploadFile = File(...),
                                    user_id: int = Depends(get_current_user_id)):
    content = await file.read()
    reference = registry.attach_cover(book_id, user_id, content, file.content_type or "")
    return {"id": book_id, "cover": reference}


@app.get("/books/{book_id}", response_model=BookResponse, dependencies=[Depends(get_api_key)])
def find_book(book_id: int):
    return registry.get(book_id).to_dict()


@app.patch("/books/shareable/{book_id}", response_model=int, dependencies=[Depends(get_api_key)])
def update_shareable_status(book_id: int, user_id: int = Depends(get_current_user_id)):
    return registry.toggle_shareable(book_id, user_id)


@app.patch("/books/archived/{book_id}", response_model=int, dependencies=[Depends(get_api_key)])
def update_archived_status(book_id: int, user_id: int = Depends(get_current_user_id)):
    return registry.toggle_archived(book_id, user_id)


# --- Lending endpoints ---
@app.post("/books/borrow/{book_id}", response_model=MessageResponse, dependencies=[Depends(get_api_key)])
def borrow_book(book_id: int, user_id: int = Depends(get_current_user_id)):
    transaction_id = lending.borrow(book_id, user_id)
    return MessageResponse(id=transaction_id, message="Book borrowed successfully")


@app.patch("/books/borrow/return/{book_id}", response_model=MessageResponse, dependencies=[Depends(get_api_key)])
def return_borrowed_book(book_id: int, user_id: int = Depends(get_current_user_id)):
    transaction_id = lending.mark_returned(book_id, user_id)
    return MessageResponse(id=transaction_id, message="Book returned successfully")


@app.patch("/books/borrow/return/approve/{book_id}", response_model=MessageResponse,
           dependencies=[Depends(get_api_key)])
def approve_return_borrowed_book(book_id: int, user_id: int = Depends(get_current_user_id)):
    transaction_id = lending.approve_return(book_id, user_id)
    return MessageResponse(id=transaction_id, message="Book return approved successfully")


# --- Feedback endpoints ---
@app.post("/feedbacks", response_model=int, dependencies=[Depends(get_api_key)])
def save_feedback(request: FeedbackRequest, user_id: int = Depends(get_current_user_id)):
    rate = validate_feedback(request.rate, request.comment)
    return feedbacks.submit(request.book_id, user_id, rate, request.comment)


@app.get("/feedbacks/book/{book_id}", response_model=FeedbackPage, dependencies=[Depends(get_api_key)])
def find_all_feedbacks_by_book(book_id: int, paging=Depends(_page_params),
                               user_id: int = Depends(get_current_user_id)):
    page, size = paging
    return feedbacks.list_for_book(book_id, user_id, page, size).to_dict()
