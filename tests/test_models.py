from book_network.models import BookView, PageResponse, average_rating


def test_average_rating_empty_is_zero():
    assert average_rating([]) == 0.0


def test_average_rating_rounds_to_one_decimal():
    assert average_rating([4, 5]) == 4.5
    assert average_rating([1, 2, 2]) == 1.7
    assert average_rating([3.0]) == 3.0


def test_average_rating_rounds_half_up():
    # mean is 4.25, rounds up rather than to even
    assert average_rating([4.0, 4.5]) == 4.3


def test_page_response_flags():
    page = PageResponse.of(["a", "b"], page=0, size=2, total=5)
    assert page.total_pages == 3
    assert page.first is True
    assert page.last is False

    last = PageResponse.of(["e"], page=2, size=2, total=5)
    assert last.first is False
    assert last.last is True

    empty = PageResponse.of([], page=0, size=10, total=0)
    assert empty.total_pages == 0
    assert empty.first and empty.last


def test_page_response_dict_roundtrip_keeps_views():
    view = BookView(id=1, title="T", author_name="A", isbn="1", synopsis="S", owner="O P",
                    cover=None, rate=2.5, archived=False, shareable=True, owner_id=3)
    page = PageResponse.of([view], page=0, size=10, total=1)

    restored = PageResponse.from_dict(page.to_dict(), BookView.from_dict)

    assert restored.total_elements == 1
    assert restored.content[0].title == "T"
    assert restored.content[0].owner_id == 3
