import pytest

from book_network.books import BookRegistry
from book_network.cache_manager import CacheManager
from book_network.database import initialize_database, unit_of_work
from book_network.feedback import FeedbackLedger
from book_network.file_storage import FileStorage
from book_network.lending import LendingLedger
from book_network.repository import UserRepository


@pytest.fixture
def db_file(tmp_path, request):
    # One database file per test
    path = str(tmp_path / f"test_{request.node.name}.db")
    initialize_database(path)
    return path


@pytest.fixture
def cache():
    return CacheManager(redis_url="")


@pytest.fixture
def storage(tmp_path):
    return FileStorage(str(tmp_path / "uploads"))


@pytest.fixture
def registry(db_file, cache, storage):
    return BookRegistry(db_file=db_file, cache=cache, storage=storage)


@pytest.fixture
def lending(db_file, cache):
    return LendingLedger(db_file=db_file, cache=cache)


@pytest.fixture
def feedbacks(db_file, cache):
    return FeedbackLedger(db_file=db_file, cache=cache)


@pytest.fixture
def users(db_file):
    """Three accounts: the book owner, a borrower and a bystander."""
    with unit_of_work(db_file) as conn:
        repo = UserRepository(conn)
        owner = repo.insert("Olivia", "Owner", "olivia@example.com")
        borrower = repo.insert("Victor", "Borrower", "victor@example.com")
        other = repo.insert("Wendy", "Other", "wendy@example.com")
    return {"owner": owner, "borrower": borrower, "other": other}


@pytest.fixture
def shared_book(registry, users):
    return registry.create(
        users["owner"], "Dune", "Frank Herbert", "9780441172719", "Spice and sandworms.", shareable=True
    )
