import os
import importlib
import pytest
from fastapi.testclient import TestClient

from book_network.config import settings
from book_network.database import unit_of_work
from book_network.file_storage import FileStorage
from book_network.repository import UserRepository


@pytest.fixture
def api(tmp_path, request):
    # Create a unique per-test DB and ensure api picks it up at import time
    db_file = str(tmp_path / f"api_test_{request.node.name}.db")
    os.environ["BOOK_NETWORK_DB_FILE"] = db_file

    import book_network.api as api_module
    # Reload api so its module-level services use the test-specific DB
    importlib.reload(api_module)
    api_module.registry.storage = FileStorage(str(tmp_path / "uploads"))

    try:
        yield api_module
    finally:
        os.environ.pop("BOOK_NETWORK_DB_FILE", None)


@pytest.fixture
def client(api):
    return TestClient(api.app)


@pytest.fixture
def user_ids(api):
    with unit_of_work(api.db_file) as conn:
        repo = UserRepository(conn)
        owner = repo.insert("Olivia", "Owner", "olivia@example.com")
        borrower = repo.insert("Victor", "Borrower", "victor@example.com")
    return owner, borrower


def headers(user_id=None, api_key=None):
    result = {"X-API-Key": api_key or settings.api_key}
    if user_id is not None:
        result["X-User-Id"] = str(user_id)
    return result


def create_book(client, owner, shareable=True, title="Dune"):
    payload = {
        "title": title,
        "author_name": "Frank Herbert",
        "isbn": "9780441172719",
        "synopsis": "Spice and sandworms.",
        "shareable": shareable,
    }
    response = client.post("/books", headers=headers(owner), json=payload)
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["db"] is True


def test_invalid_api_key(client, user_ids):
    response = client.get("/books", headers=headers(user_ids[0], api_key="invalid-key"))
    assert response.status_code == 403


def test_missing_user_header(client):
    response = client.get("/books", headers=headers())
    assert response.status_code == 401


def test_create_and_find_book(client, user_ids):
    owner, _ = user_ids
    book_id = create_book(client, owner)

    response = client.get(f"/books/{book_id}", headers=headers(owner))
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Dune"
    assert body["owner"] == "Olivia Owner"
    assert body["rate"] == 0.0
    assert body["archived"] is False


def test_create_book_with_blank_fields(client, user_ids):
    response = client.post("/books", headers=headers(user_ids[0]), json={"title": "Dune"})
    assert response.status_code == 400
    assert "Book author name is required" in response.json()["validation_errors"]


def test_find_missing_book(client, user_ids):
    response = client.get("/books/999", headers=headers(user_ids[0]))
    assert response.status_code == 404
    assert response.json()["error"] == "Book not found with ID: 999"


def test_listings(client, user_ids):
    owner, borrower = user_ids
    create_book(client, owner, title="Shared")
    create_book(client, owner, shareable=False, title="Private")

    visible = client.get("/books", headers=headers(borrower)).json()
    assert [b["title"] for b in visible["content"]] == ["Shared"]
    assert visible["first"] is True and visible["last"] is True

    owned = client.get("/books/owner", headers=headers(owner), params={"size": 1}).json()
    assert owned["total_elements"] == 2
    assert owned["total_pages"] == 2
    assert len(owned["content"]) == 1


def test_paging_out_of_range(client, user_ids):
    response = client.get("/books", headers=headers(user_ids[0]), params={"page": -1})
    assert response.status_code == 400


def test_toggle_forbidden_for_non_owner(client, user_ids):
    owner, borrower = user_ids
    book_id = create_book(client, owner)

    response = client.patch(f"/books/shareable/{book_id}", headers=headers(borrower))
    assert response.status_code == 403

    response = client.patch(f"/books/archived/{book_id}", headers=headers(owner))
    assert response.status_code == 200
    assert client.get(f"/books/{book_id}", headers=headers(owner)).json()["archived"] is True


def test_lending_flow(client, user_ids):
    owner, borrower = user_ids
    book_id = create_book(client, owner)

    response = client.post(f"/books/borrow/{book_id}", headers=headers(borrower))
    assert response.status_code == 200
    transaction_id = response.json()["id"]

    assert client.post(f"/books/borrow/{book_id}", headers=headers(borrower)).status_code == 403
    assert client.post(f"/books/borrow/{book_id}", headers=headers(owner)).status_code == 403

    # Approval before the return is refused
    response = client.patch(f"/books/borrow/return/approve/{book_id}", headers=headers(owner))
    assert response.status_code == 403

    response = client.patch(f"/books/borrow/return/{book_id}", headers=headers(borrower))
    assert response.status_code == 200
    assert response.json()["id"] == transaction_id

    lent = client.get("/books/returned", headers=headers(owner)).json()
    assert lent["content"][0]["returned"] is True
    assert lent["content"][0]["return_approved"] is False

    response = client.patch(f"/books/borrow/return/approve/{book_id}", headers=headers(owner))
    assert response.status_code == 200

    borrowed = client.get("/books/borrowed", headers=headers(borrower)).json()
    assert borrowed["content"][0]["return_approved"] is True
    assert borrowed["content"][0]["transaction_id"] == transaction_id


def test_feedback(client, user_ids):
    owner, borrower = user_ids
    book_id = create_book(client, owner)

    response = client.post("/feedbacks", headers=headers(borrower),
                           json={"book_id": book_id, "rate": 4.0, "comment": "Great"})
    assert response.status_code == 200

    response = client.post("/feedbacks", headers=headers(owner),
                           json={"book_id": book_id, "rate": 5.0, "comment": "Mine"})
    assert response.status_code == 403

    page = client.get(f"/feedbacks/book/{book_id}", headers=headers(borrower)).json()
    assert page["total_elements"] == 1
    assert page["content"][0]["own_feedback"] is True
    assert client.get(f"/books/{book_id}", headers=headers(owner)).json()["rate"] == 4.0


def test_feedback_rating_out_of_range(client, user_ids):
    owner, borrower = user_ids
    book_id = create_book(client, owner)

    response = client.post("/feedbacks", headers=headers(borrower),
                           json={"book_id": book_id, "rate": 6.0, "comment": "Too good"})
    assert response.status_code == 400

    page = client.get(f"/feedbacks/book/{book_id}", headers=headers(borrower)).json()
    assert page["total_elements"] == 0


@pytest.mark.parametrize("rate", ["NaN", "Infinity", "-Infinity"])
def test_feedback_rating_not_finite(client, user_ids, rate):
    owner, borrower = user_ids
    book_id = create_book(client, owner)

    body = f'{{"book_id": {book_id}, "rate": {rate}, "comment": "Odd"}}'
    response = client.post("/feedbacks", headers={**headers(borrower), "Content-Type": "application/json"},
                           content=body)
    assert response.status_code == 400

    page = client.get(f"/feedbacks/book/{book_id}", headers=headers(borrower)).json()
    assert page["total_elements"] == 0


def test_cover_upload_and_download(client, user_ids):
    owner, borrower = user_ids
    book_id = create_book(client, owner)

    files = {"file": ("cover.png", b"\x89PNG fake", "image/png")}
    response = client.post(f"/books/cover/{book_id}", headers=headers(owner), files=files)
    assert response.status_code == 202
    assert response.json()["cover"].endswith(".png")

    response = client.get(f"/books/cover/{book_id}", headers=headers(borrower))
    assert response.status_code == 200
    assert response.content == b"\x89PNG fake"
    assert response.headers["content-type"] == "image/png"


def test_cover_upload_rejected(client, user_ids):
    owner, borrower = user_ids
    book_id = create_book(client, owner)

    gif = {"file": ("cover.gif", b"GIF89a", "image/gif")}
    assert client.post(f"/books/cover/{book_id}", headers=headers(owner), files=gif).status_code == 400

    png = {"file": ("cover.png", b"\x89PNG", "image/png")}
    assert client.post(f"/books/cover/{book_id}", headers=headers(borrower), files=png).status_code == 403

    assert client.get(f"/books/cover/{book_id}", headers=headers(owner)).status_code == 404
