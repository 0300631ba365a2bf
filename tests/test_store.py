import pytest

from bookshelf.actions import BookActions
from bookshelf.book import Book
from bookshelf.errors import ValidationError
from bookshelf.filters import average_rating, filter_notes, filter_user_books, sort_user_books
from bookshelf.records import ListType, Note, Review, UserBook
from bookshelf.store import BookStore


class CountingActions(BookActions):
    """BookActions that records how often the full list is reloaded."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.list_loads = 0

    async def get_user_books(self, user_id, list_type=None):
        self.list_loads += 1
        return await super().get_user_books(user_id, list_type)


@pytest.fixture
def counting_actions(lib, catalog, settings):
    return CountingActions(lib, catalog, settings)


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def store(counting_actions, notifications):
    return BookStore(counting_actions, "u1", notify=notifications.append)


def book(book_id, title="Title"):
    return Book(id=book_id, title=title)


async def test_load_derives_status_subsets(store, counting_actions):
    await counting_actions.add_to_list("u1", "abc123", "to-read")
    await counting_actions.add_to_list("u1", "def456", "reading")
    await counting_actions.add_to_list("u1", "ghi789", "reading")

    assert await store.load_user_books(show_loading=True) is True

    assert [ub.book_id for ub in store.all_books] == ["abc123", "def456", "ghi789"]
    assert [ub.book_id for ub in store.to_read_books] == ["abc123"]
    assert [ub.book_id for ub in store.reading_books] == ["def456", "ghi789"]
    assert store.completed_books == []
    assert store.is_loading is False


async def test_listeners_see_changes_until_unsubscribed(store):
    seen = []
    unsubscribe = store.subscribe(lambda s: seen.append(len(s.all_books)))

    await store.add_book_to_list(book("abc123", "Dune"), ListType.TO_READ)
    assert seen and seen[-1] == 1

    unsubscribe()
    count = len(seen)
    await store.remove_book_from_list("abc123")
    assert len(seen) == count


async def test_dune_scenario(store, counting_actions, lib, notifications):
    dune = book("abc123", "Dune")

    assert await store.add_book_to_list(dune, ListType.TO_READ) is True
    assert len(store.to_read_books) == 1
    assert len(store.completed_books) == 0
    added_at = store.get_book_by_id("abc123").added_at
    assert notifications[-1].title == "Book Added"
    assert "Want to Read" in notifications[-1].description

    assert await store.change_book_status(dune, ListType.COMPLETED) is True
    assert len(store.to_read_books) == 0
    assert len(store.completed_books) == 1
    assert store.get_book_by_id("abc123").added_at == added_at

    assert await store.update_book_rating(dune, 5) is True
    assert store.get_book_by_id("abc123").user_rating == 5
    assert lib.get_rating_summary("abc123")["average_rating"] == 5.0

    loads_before_remove = counting_actions.list_loads
    assert await store.remove_book_from_list("abc123") is True
    assert store.completed_books == []
    assert store.get_book_by_id("abc123") is None
    # Removal patches local state instead of reloading
    assert counting_actions.list_loads == loads_before_remove
    assert [r.rating for r in lib.list_reviews_for_book("abc123")] == [5]
    assert notifications[-1].description == "Dune has been removed from your list"


async def test_add_reloads_full_list(store, counting_actions):
    await store.add_book_to_list(book("abc123"), ListType.READING)
    await store.add_book_to_list(book("def456"), ListType.READING)

    assert counting_actions.list_loads == 2
    assert store.get_book_by_id("def456").book.title == "Neuromancer"


async def test_failed_add_notifies_and_clears_loading_flag(store, notifications):
    ok = await store.add_book_to_list(book("missing"), ListType.TO_READ)

    assert ok is False
    assert store.is_action_loading is False
    assert store.all_books == []
    assert notifications[-1].variant == "destructive"
    assert notifications[-1].description == "Failed to add book to list. Please try again."
    assert store.last_error is not None


class ReloadFailingActions(CountingActions):
    async def get_user_books(self, user_id, list_type=None):
        await super().get_user_books(user_id, list_type)
        raise RuntimeError("connection reset")


async def test_failed_reload_after_add_reports_only_the_error(lib, catalog, settings, notifications):
    actions = ReloadFailingActions(lib, catalog, settings)
    store = BookStore(actions, "u1", notify=notifications.append)

    ok = await store.add_book_to_list(book("abc123", "Dune"), ListType.TO_READ)

    assert ok is False
    assert actions.list_loads == 1
    assert [n.title for n in notifications] == ["Error"]
    assert notifications[0].description == "Failed to load your books. Please try again."
    assert store.is_action_loading is False
    # The add itself went through on the server
    assert lib.get_membership("u1", "abc123").list_type == ListType.TO_READ


async def test_failed_rating_leaves_state_untouched(store, notifications):
    dune = book("abc123", "Dune")
    await store.add_book_to_list(dune, ListType.COMPLETED)

    assert await store.update_book_rating(dune, 9) is False
    assert store.get_book_by_id("abc123").user_rating is None
    assert isinstance(store.last_error, ValidationError)
    assert notifications[-1].variant == "destructive"


async def test_unauthenticated_store_reports_load_failure(counting_actions, notifications):
    anonymous = BookStore(counting_actions, None, notify=notifications.append)

    assert await anonymous.load_user_books() is False
    assert notifications[-1].description == "Failed to load your books. Please try again."


# ------------------------- Sorting and filtering ------------------------- #

def entry(book_id, title, rating=None, published=None, added_at="2024-01-01", **book_fields):
    return UserBook(
        id=f"m-{book_id}", user_id="u1", book_id=book_id, list_type=ListType.READING, added_at=added_at,
        book=Book(id=book_id, title=title, published_date=published, **book_fields), user_rating=rating,
    )


def ids(items):
    return [ub.book_id for ub in items]


def test_sort_by_title_ignores_case():
    items = [entry("1", "dune"), entry("2", "Emma"), entry("3", "Anathem")]
    assert ids(sort_user_books(items, "title")) == ["3", "1", "2"]
    assert ids(sort_user_books(items, "title", "desc")) == ["2", "1", "3"]


def test_sort_by_rating_is_stable_and_puts_unrated_last():
    items = [entry("a", "A", 4), entry("b", "B"), entry("c", "C", 5), entry("d", "D", 4)]

    assert ids(sort_user_books(items, "rating", "asc")) == ["a", "d", "c", "b"]
    assert ids(sort_user_books(items, "rating", "desc")) == ["c", "a", "d", "b"]


def test_sort_by_dates():
    items = [
        entry("a", "A", published="1984", added_at="2024-03-01"),
        entry("b", "B", published="1965-08-01", added_at="2024-01-01"),
        entry("c", "C", published=None, added_at="2024-02-01"),
    ]
    assert ids(sort_user_books(items, "date_published")) == ["b", "a", "c"]
    assert ids(sort_user_books(items, "date_added", "desc")) == ["a", "c", "b"]


def test_sort_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        sort_user_books([], "author")
    with pytest.raises(ValidationError):
        sort_user_books([], "title", "sideways")


def test_filter_user_books_matches_any_text_field():
    items = [
        entry("1", "Dune", authors=["Frank Herbert"]),
        entry("2", "Emma", description="A young woman plays matchmaker"),
        entry("3", "Neuromancer", categories=["Cyberpunk"]),
    ]
    assert ids(filter_user_books(items, "herbert")) == ["1"]
    assert ids(filter_user_books(items, "MATCHMAKER")) == ["2"]
    assert ids(filter_user_books(items, "cyber")) == ["3"]
    assert ids(filter_user_books(items, "  ")) == ["1", "2", "3"]


def test_filter_notes_includes_tags():
    notes = [
        Note(id="n1", user_id="u1", book_id="b", title="Arrakis", content="sand", tags=["planets"]),
        Note(id="n2", user_id="u1", book_id="b", title="Paul", content="prescience", tags=["characters"]),
    ]
    assert [n.id for n in filter_notes(notes, "PLANET")] == ["n1"]
    assert [n.id for n in filter_notes(notes, "science")] == ["n2"]
    assert [n.id for n in filter_notes(notes, "")] == ["n1", "n2"]


def test_average_rating():
    assert average_rating([]) is None
    reviews = [Review(id=str(i), user_id=f"u{i}", book_id="b", rating=r, review_text=None,
                      created_at="", updated_at="") for i, r in enumerate([5, 4, 3])]
    assert average_rating(reviews) == 4.0
