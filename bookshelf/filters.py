"""Pure sort and filter transforms applied to already-loaded lists."""
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from bookshelf.errors import ValidationError
from bookshelf.records import Note, Review, UserBook

_SORT_KEYS: Dict[str, Callable[[UserBook], Any]] = {
    "title": lambda ub: ub.book.title.casefold() if ub.book.title else None,
    "rating": lambda ub: ub.user_rating,
    "date_published": lambda ub: ub.book.published_date or None,
    "date_added": lambda ub: ub.added_at,
}
SORT_FIELDS = tuple(_SORT_KEYS)
SORT_ORDERS = ("asc", "desc")


def sort_user_books(items: Sequence[UserBook], sort_by: str = "date_added", order: str = "asc") -> List[UserBook]:
    """Sort list entries by title, rating, publication date or date added.

    The sort is stable, so entries with equal keys keep their input order in
    both directions. Entries without a value (unrated, no publication date)
    always go last.
    """
    if sort_by not in _SORT_KEYS:
        raise ValidationError(f"Invalid sort_by {sort_by!r}. Allowed: {', '.join(SORT_FIELDS)}")
    if order not in SORT_ORDERS:
        raise ValidationError(f"Invalid order {order!r}. Allowed: asc, desc")

    key = _SORT_KEYS[sort_by]
    keyed = [(key(item), item) for item in items]
    present = [pair for pair in keyed if pair[0] is not None]
    missing = [item for value, item in keyed if value is None]
    present.sort(key=lambda pair: pair[0], reverse=(order == "desc"))
    return [item for _, item in present] + missing


def _matches(text: Optional[str], needle: str) -> bool:
    return bool(text) and needle in text.casefold()


def _any_matches(values: Optional[Iterable[str]], needle: str) -> bool:
    return any(_matches(v, needle) for v in values or [])


def filter_user_books(items: Sequence[UserBook], query: str) -> List[UserBook]:
    """Keep entries whose title, authors, description or categories contain ``query``."""
    needle = (query or "").strip().casefold()
    if not needle:
        return list(items)
    return [
        ub for ub in items
        if _matches(ub.book.title, needle)
        or _any_matches(ub.book.authors, needle)
        or _matches(ub.book.description, needle)
        or _any_matches(ub.book.categories, needle)
    ]


def filter_notes(notes: Sequence[Note], query: str) -> List[Note]:
    """Keep notes whose title, content or any tag contains ``query``."""
    needle = (query or "").strip().casefold()
    if not needle:
        return list(notes)
    return [
        n for n in notes
        if _matches(n.title, needle) or _matches(n.content, needle) or _any_matches(n.tags, needle)
    ]


def average_rating(reviews: Sequence[Review]) -> Optional[float]:
    if not reviews:
        return None
    return sum(r.rating for r in reviews) / len(reviews)
