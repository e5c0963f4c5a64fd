import pytest

from book_network.exceptions import NotFound, OperationNotPermitted, ValidationError


def test_submit_and_list(feedbacks, shared_book, users):
    feedback_id = feedbacks.submit(shared_book, users["borrower"], 4.0, "Great read")

    page = feedbacks.list_for_book(shared_book, users["borrower"], 0, 10)
    assert page.total_elements == 1
    entry = page.content[0]
    assert entry.id == feedback_id
    assert entry.rate == 4.0
    assert entry.comment == "Great read"
    assert entry.own_feedback is True


def test_own_feedback_flag_depends_on_caller(feedbacks, shared_book, users):
    feedbacks.submit(shared_book, users["borrower"], 3.0, "Fine")
    feedbacks.submit(shared_book, users["other"], 5.0, "Loved it")

    seen_by_borrower = feedbacks.list_for_book(shared_book, users["borrower"], 0, 10)
    flags = {f.comment: f.own_feedback for f in seen_by_borrower.content}
    assert flags == {"Fine": True, "Loved it": False}

    seen_by_owner = feedbacks.list_for_book(shared_book, users["owner"], 0, 10)
    assert not any(f.own_feedback for f in seen_by_owner.content)


def test_cannot_review_own_book(feedbacks, shared_book, users):
    with pytest.raises(OperationNotPermitted, match="your own book"):
        feedbacks.submit(shared_book, users["owner"], 5.0, "Mine is the best")


def test_cannot_review_archived_book(feedbacks, registry, shared_book, users):
    registry.toggle_archived(shared_book, users["owner"])
    with pytest.raises(OperationNotPermitted, match="archived or not shareable"):
        feedbacks.submit(shared_book, users["borrower"], 2.0, "Meh")


def test_submit_missing_book(feedbacks, users):
    with pytest.raises(NotFound):
        feedbacks.submit(77, users["borrower"], 2.0, "Where is it?")


def test_multiple_feedback_per_user_allowed(feedbacks, shared_book, users):
    feedbacks.submit(shared_book, users["borrower"], 2.0, "First impression")
    feedbacks.submit(shared_book, users["borrower"], 4.0, "Second read")
    assert feedbacks.list_for_book(shared_book, users["borrower"], 0, 10).total_elements == 2


def test_average_rating_refreshes_cached_views(feedbacks, registry, shared_book, users):
    # Prime both the single-book and the listing caches
    assert registry.get(shared_book).rate == 0.0
    assert registry.list_visible(users["other"], 0, 10).content[0].rate == 0.0

    feedbacks.submit(shared_book, users["borrower"], 4.0, "Good")
    feedbacks.submit(shared_book, users["other"], 5.0, "Great")
    feedbacks.submit(shared_book, users["other"], 4.0, "Still great")

    assert registry.get(shared_book).rate == 4.3
    assert registry.list_visible(users["other"], 0, 10).content[0].rate == 4.3


def test_list_for_book_pages(feedbacks, shared_book, users):
    for i in range(3):
        feedbacks.submit(shared_book, users["borrower"], float(i), f"comment {i}")

    page = feedbacks.list_for_book(shared_book, users["borrower"], 1, 2)
    assert page.total_elements == 3
    assert page.total_pages == 2
    assert [f.comment for f in page.content] == ["comment 0"]


@pytest.mark.parametrize("rate", [float("nan"), float("inf"), 6.0])
def test_submit_rejects_rating_outside_range(feedbacks, shared_book, users, rate):
    with pytest.raises(ValidationError):
        feedbacks.submit(shared_book, users["borrower"], rate, "Odd")
    assert feedbacks.list_for_book(shared_book, users["borrower"], 0, 10).total_elements == 0
