"""Server actions: the stateless boundary between callers and the persistence/catalog layers.

Every action that touches user data takes the caller's user id first and
raises :class:`~bookshelf.errors.Unauthenticated` when it is missing. Input is
validated here, on the server, even when the UI already checked it.

SQLite calls run in the threadpool so a writer waiting on a lock never
stalls the event loop.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi.concurrency import run_in_threadpool

from bookshelf.book import Book
from bookshelf.config import Settings, settings as default_settings
from bookshelf.database import utc_now
from bookshelf.errors import ConfigurationError, NotFound, Unauthenticated, UpstreamError, ValidationError
from bookshelf.library import Library
from bookshelf.records import ListType, Membership, Note, NotesExport, Quote, Review, UserBook
from bookshelf.services.google_books_service import GoogleBooksService

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def require_auth(user_id: Optional[str]) -> str:
    if user_id is None or not str(user_id).strip():
        raise Unauthenticated()
    return str(user_id).strip()


def validate_rating(rating: Any) -> int:
    # bool is an int subclass; True must not pass as a one-star rating
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}.")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}.")
    return rating


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} must not be empty.")
    return value.strip()


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_id(value: Optional[str], field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required.")
    return value.strip()


class BookActions:
    """Request handlers for lists, reviews, notes and quotes."""

    def __init__(self, library: Library, catalog: GoogleBooksService,
                 settings: Optional[Settings] = None) -> None:
        self.library = library
        self.catalog = catalog
        self.settings = settings or default_settings

    async def _db(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await run_in_threadpool(func, *args, **kwargs)

    # ------------------------- Catalog ------------------------- #
    async def search_catalog(self, query: str, max_results: Optional[int] = None) -> List[Book]:
        """Search the catalog. A blank query returns nothing without a network call."""
        if not query or not query.strip():
            return []
        results = await self.catalog.search(query.strip(), max_results)
        return [self.catalog.normalize(item) for item in results]

    async def _ensure_book(self, book_id: str) -> Optional[Book]:
        """Return the cached book, fetching and caching it on first reference."""
        refresh = self.settings.refresh_books_from_catalog
        local = await self._db(self.library.find_book, book_id)
        if local is not None and not refresh:
            return local

        if local is None:
            fetched = await self.catalog.fetch_by_id(book_id)
        else:
            # Refreshing a cached book is best-effort
            try:
                fetched = await self.catalog.fetch_by_id(book_id)
            except (UpstreamError, ConfigurationError) as e:
                logger.warning(f"Could not refresh book {book_id} from the catalog: {e}; keeping cached copy")
                return local
        if fetched is None:
            if local is not None:
                logger.warning(f"Catalog no longer knows book {book_id}; keeping cached copy")
            return local
        return await self._db(self.library.insert_book, self.catalog.normalize(fetched), refresh=refresh)

    async def get_book_details(self, user_id: Optional[str], book_id: str) -> Optional[Book]:
        require_auth(user_id)
        return await self._ensure_book(_require_id(book_id, "book_id"))

    # ------------------------- Lists ------------------------- #
    async def add_to_list(self, user_id: Optional[str], book_id: str, list_type: Any) -> Membership:
        """Put a book on one of the user's lists, caching the book on first use.

        Calling it again with another list type moves the book; the original
        ``added_at`` is kept.
        """
        user_id = require_auth(user_id)
        book_id = _require_id(book_id, "book_id")
        list_type = ListType.parse(list_type)

        book = await self._ensure_book(book_id)
        if book is None:
            raise NotFound(f"Book {book_id} was not found in the catalog.")

        membership = await self._db(self.library.upsert_membership, user_id, book_id, list_type)
        logger.info(f"User {user_id} put {book_id} on {list_type.value}")
        return membership

    async def remove_from_list(self, user_id: Optional[str], book_id: str) -> bool:
        """Take a book off the user's lists. Removing an absent book is not an error."""
        user_id = require_auth(user_id)
        removed = await self._db(self.library.delete_membership, user_id, _require_id(book_id, "book_id"))
        if removed:
            logger.info(f"User {user_id} removed {book_id} from their lists")
        return removed

    async def get_user_books(self, user_id: Optional[str], list_type: Any = None) -> List[UserBook]:
        user_id = require_auth(user_id)
        parsed = ListType.parse(list_type) if list_type is not None else None
        return await self._db(self.library.list_memberships, user_id, parsed)

    # ------------------------- Reviews ------------------------- #
    async def rate(self, user_id: Optional[str], book_id: str, rating: Any,
                   review_text: Optional[str] = None) -> Review:
        user_id = require_auth(user_id)
        book_id = _require_id(book_id, "book_id")
        rating = validate_rating(rating)
        if await self._db(self.library.find_book, book_id) is None:
            raise NotFound(f"Book {book_id} not found.")
        review = await self._db(self.library.upsert_review, user_id, book_id, rating,
                                _optional_text(review_text))
        logger.info(f"User {user_id} rated {book_id} {rating}/5")
        return review

    async def get_book_reviews(self, user_id: Optional[str], book_id: str) -> List[Review]:
        require_auth(user_id)
        return await self._db(self.library.list_reviews_for_book, _require_id(book_id, "book_id"))

    async def get_rating_summary(self, user_id: Optional[str], book_id: str) -> Dict[str, Any]:
        require_auth(user_id)
        return await self._db(self.library.get_rating_summary, _require_id(book_id, "book_id"))

    # ------------------------- Notes ------------------------- #
    async def create_note(self, user_id: Optional[str], book_id: str, title: str, content: str,
                          chapter: Optional[str] = None, section: Optional[str] = None,
                          tags: Optional[Iterable[str]] = None) -> Note:
        user_id = require_auth(user_id)
        book_id = _require_id(book_id, "book_id")
        title = _require_text(title, "Title")
        if await self._db(self.library.find_book, book_id) is None:
            raise NotFound(f"Book {book_id} not found.")
        return await self._db(
            self.library.create_note, user_id, book_id, title, content or "",
            chapter=_optional_text(chapter), section=_optional_text(section), tags=tags,
        )

    async def update_note(self, user_id: Optional[str], note_id: str, title: str, content: str,
                          chapter: Optional[str] = None, section: Optional[str] = None,
                          tags: Optional[Iterable[str]] = None) -> Note:
        user_id = require_auth(user_id)
        title = _require_text(title, "Title")
        note = await self._db(
            self.library.update_note, user_id, _require_id(note_id, "note_id"), title, content or "",
            chapter=_optional_text(chapter), section=_optional_text(section), tags=tags,
        )
        if note is None:
            raise NotFound("Note not found or access denied.")
        return note

    async def delete_note(self, user_id: Optional[str], note_id: str) -> None:
        user_id = require_auth(user_id)
        if not await self._db(self.library.delete_note, user_id, _require_id(note_id, "note_id")):
            raise NotFound("Note not found or access denied.")

    async def get_book_notes(self, user_id: Optional[str], book_id: str) -> List[Note]:
        user_id = require_auth(user_id)
        return await self._db(self.library.list_notes_for_book, user_id, _require_id(book_id, "book_id"))

    async def get_all_notes(self, user_id: Optional[str]) -> List[Note]:
        return await self._db(self.library.list_all_notes, require_auth(user_id))

    async def search_notes(self, user_id: Optional[str], query: str = "", book_id: Optional[str] = None,
                           chapter: Optional[str] = None, tags: Optional[Iterable[str]] = None) -> List[Note]:
        user_id = require_auth(user_id)
        return await self._db(
            self.library.search_notes, user_id, query or "",
            book_id=_optional_text(book_id), chapter=_optional_text(chapter), tags=tags,
        )

    # ------------------------- Quotes ------------------------- #
    async def add_quote(self, user_id: Optional[str], note_id: str, text: str,
                        page_number: Optional[int] = None) -> Quote:
        user_id = require_auth(user_id)
        text = _require_text(text, "Quote text")
        if page_number is not None and (isinstance(page_number, bool)
                                        or not isinstance(page_number, int) or page_number < 1):
            raise ValidationError("Page number must be a positive integer.")
        quote = await self._db(self.library.add_quote, user_id, _require_id(note_id, "note_id"),
                               text, page_number)
        if quote is None:
            raise NotFound("Note not found or access denied.")
        return quote

    async def get_note_quotes(self, user_id: Optional[str], note_id: str) -> List[Quote]:
        user_id = require_auth(user_id)
        quotes = await self._db(self.library.list_quotes, user_id, _require_id(note_id, "note_id"))
        if quotes is None:
            raise NotFound("Note not found or access denied.")
        return quotes

    async def delete_quote(self, user_id: Optional[str], quote_id: str) -> None:
        user_id = require_auth(user_id)
        if not await self._db(self.library.delete_quote, user_id, _require_id(quote_id, "quote_id")):
            raise NotFound("Quote not found or access denied.")

    async def export_notes(self, user_id: Optional[str], book_id: str) -> NotesExport:
        """Bundle the user's notes and quotes for one book."""
        user_id = require_auth(user_id)
        book_id = _require_id(book_id, "book_id")
        book = await self._db(self.library.find_book, book_id)
        if book is None:
            raise NotFound(f"Book {book_id} not found.")
        return NotesExport(
            book=book,
            notes=await self._db(self.library.list_notes_for_book, user_id, book_id),
            quotes=await self._db(self.library.list_quotes_for_book, user_id, book_id),
            export_date=utc_now(),
        )
