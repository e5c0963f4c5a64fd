import pytest

from book_network.exceptions import ValidationError
from book_network.validators import (
    TextValidator,
    validate_feedback,
    validate_media_type,
    validate_page,
    validate_rating,
)

ALLOWED = ["image/png", "image/jpeg", "image/jpg"]


@pytest.mark.parametrize("text,expected", [
    (None, True),
    ("", True),
    ("  \t", True),
    ("x", False),
])
def test_is_blank(text, expected):
    assert TextValidator.is_blank(text) is expected


def test_require_lists_blank_labels_in_order():
    with pytest.raises(ValidationError) as exc_info:
        TextValidator.require({"Title": "", "Author": "A", "Isbn": None})
    assert exc_info.value.errors == ["Title is required", "Isbn is required"]
    assert exc_info.value.message == "Title is required"


@pytest.mark.parametrize("rate", [0, 0.0, 2.5, 5, "4"])
def test_validate_rating_accepts_range(rate):
    assert 0.0 <= validate_rating(rate) <= 5.0


@pytest.mark.parametrize("rate", [None, -0.1, 5.5, 6.0, "five", float("nan"), "NaN", float("inf"), float("-inf")])
def test_validate_rating_rejects(rate):
    with pytest.raises(ValidationError):
        validate_rating(rate)


def test_validate_feedback_requires_comment():
    with pytest.raises(ValidationError, match="Comment is required"):
        validate_feedback(3.0, "   ")
    assert validate_feedback(3, "ok") == 3.0


def test_validate_page():
    validate_page(0, 10, 100)
    with pytest.raises(ValidationError):
        validate_page(-1, 10, 100)
    with pytest.raises(ValidationError):
        validate_page(0, 0, 100)
    with pytest.raises(ValidationError):
        validate_page(0, 101, 100)


def test_validate_media_type_normalises():
    assert validate_media_type("IMAGE/PNG", ALLOWED) == "image/png"
    assert validate_media_type("image/jpeg; charset=x", ALLOWED) == "image/jpeg"


@pytest.mark.parametrize("media_type", [None, "", "image/gif", "application/pdf"])
def test_validate_media_type_rejects(media_type):
    with pytest.raises(ValidationError, match="Invalid file type"):
        validate_media_type(media_type, ALLOWED)
