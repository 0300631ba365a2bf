"""Per-session list state for the signed-in user.

A :class:`BookStore` is created explicitly for one user and handed to whatever
renders the lists. It keeps the full membership list in memory, derives the
three per-status subsets whenever that list changes, and tells subscribers.

Mutations go through the server actions. Removal patches the local list
directly; adds and status changes reload the whole list because the freshly
cached book is only known to the server.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from bookshelf.actions import BookActions
from bookshelf.book import Book
from bookshelf.records import ListType, UserBook

logger = logging.getLogger(__name__)

Listener = Callable[["BookStore"], None]


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"  # default | success | destructive
    duration: int = 3000


def _failure(description: str) -> Notification:
    return Notification(title="Error", description=description, variant="destructive", duration=5000)


class BookStore:
    def __init__(self, actions: BookActions, user_id: str,
                 notify: Optional[Callable[[Notification], None]] = None) -> None:
        self._actions = actions
        self.user_id = user_id
        self._notify = notify
        self._listeners: List[Listener] = []
        self._all_books: List[UserBook] = []
        self._by_status: Dict[ListType, List[UserBook]] = {status: [] for status in ListType}
        self.is_loading = False
        self.is_action_loading = False
        self.last_error: Optional[Exception] = None

    # ------------------------- State ------------------------- #
    @property
    def all_books(self) -> List[UserBook]:
        return list(self._all_books)

    @property
    def to_read_books(self) -> List[UserBook]:
        return list(self._by_status[ListType.TO_READ])

    @property
    def reading_books(self) -> List[UserBook]:
        return list(self._by_status[ListType.READING])

    @property
    def completed_books(self) -> List[UserBook]:
        return list(self._by_status[ListType.COMPLETED])

    def books_with_status(self, list_type: ListType) -> List[UserBook]:
        return list(self._by_status[ListType.parse(list_type)])

    def get_book_by_id(self, book_id: str) -> Optional[UserBook]:
        return next((ub for ub in self._all_books if ub.book_id == book_id), None)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _set_books(self, books: List[UserBook]) -> None:
        self._all_books = list(books)
        self._by_status = {status: [] for status in ListType}
        for ub in self._all_books:
            self._by_status[ub.list_type].append(ub)
        self._emit()

    def _set_action_loading(self, value: bool) -> None:
        self.is_action_loading = value
        self._emit()

    def _report(self, notification: Notification) -> None:
        if self._notify is not None:
            self._notify(notification)

    def _fail(self, error: Exception, context: str, description: str) -> None:
        logger.exception(f"Error {context}: {error}")
        self.last_error = error
        self._report(_failure(description))

    # ------------------------- Actions ------------------------- #
    async def load_user_books(self, show_loading: bool = False) -> bool:
        if show_loading:
            self.is_loading = True
            self._emit()
        try:
            books = await self._actions.get_user_books(self.user_id)
        except Exception as e:
            self._fail(e, "loading user books", "Failed to load your books. Please try again.")
            return False
        finally:
            if self.is_loading:
                self.is_loading = False
                self._emit()
        self.last_error = None
        self._set_books(books)
        return True

    async def refresh_books(self) -> bool:
        return await self.load_user_books(show_loading=False)

    async def add_book_to_list(self, book: Book, list_type: ListType) -> bool:
        self._set_action_loading(True)
        try:
            list_type = ListType.parse(list_type)
            await self._actions.add_to_list(self.user_id, book.id, list_type)
            # A failed reload has already reported itself
            if not await self.refresh_books():
                return False
            self._report(Notification(
                title="Book Added",
                description=f"{book.title} has been added to your {list_type.label} list",
                variant="success",
            ))
            return True
        except Exception as e:
            self._fail(e, "adding book to list", "Failed to add book to list. Please try again.")
            return False
        finally:
            self._set_action_loading(False)

    async def change_book_status(self, book: Book, new_status: ListType) -> bool:
        return await self.add_book_to_list(book, new_status)

    async def remove_book_from_list(self, book_id: str) -> bool:
        self._set_action_loading(True)
        try:
            existing = self.get_book_by_id(book_id)
            title = existing.book.title if existing else "Book"
            await self._actions.remove_from_list(self.user_id, book_id)
            self._set_books([ub for ub in self._all_books if ub.book_id != book_id])
            self._report(Notification(title="Book Removed", description=f"{title} has been removed from your list"))
            return True
        except Exception as e:
            self._fail(e, "removing book from list", "Failed to remove book from list. Please try again.")
            return False
        finally:
            self._set_action_loading(False)

    async def update_book_rating(self, book: Book, rating: int) -> bool:
        try:
            await self._actions.rate(self.user_id, book.id, rating, "")
        except Exception as e:
            self._fail(e, "updating rating", "Failed to update rating. Please try again.")
            return False

        patched = []
        for ub in self._all_books:
            if ub.book_id == book.id:
                ub = UserBook(
                    id=ub.id, user_id=ub.user_id, book_id=ub.book_id, list_type=ub.list_type,
                    added_at=ub.added_at, book=ub.book, user_rating=rating,
                )
            patched.append(ub)
        self._set_books(patched)
        self._report(Notification(
            title="Rating Updated",
            description=f"You rated {book.title} {rating} star{'s' if rating > 1 else ''}",
            variant="success",
        ))
        return True
