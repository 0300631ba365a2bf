import json
import logging
import sqlite3
import uuid
from typing import Any, Dict, Iterable, List, Optional

from bookshelf.book import Book
from bookshelf.config import Settings, settings as default_settings
from bookshelf.database import get_db_connection, initialize_database, utc_now
from bookshelf.errors import NotFound
from bookshelf.records import ListType, Membership, Note, Quote, Review, UserBook

logger = logging.getLogger(__name__)

BOOK_COLUMNS = (
    "id", "title", "authors", "description", "cover_url", "published_date", "publisher",
    "page_count", "categories", "language", "preview_link", "info_link", "created_at", "updated_at",
)

# Catalog-sourced columns overwritten when a cached book is refreshed
_REFRESHABLE_COLUMNS = BOOK_COLUMNS[1:12]


def _new_id() -> str:
    return str(uuid.uuid4())


def _clean_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Strip tags, drop blanks and duplicates, keep first-seen order."""
    seen: List[str] = []
    for tag in tags or []:
        t = (tag or "").strip()
        if t and t not in seen:
            seen.append(t)
    return seen


def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle in (haystack or "").casefold()


class Library:
    """Persistence layer: books, list memberships, reviews, notes and quotes in SQLite."""

    def __init__(self, db_file: Optional[str] = None, settings: Optional[Settings] = None) -> None:
        settings = settings or default_settings
        self.db_file = db_file or settings.database_file
        initialize_database(self.db_file)

    def _connect(self) -> sqlite3.Connection:
        return get_db_connection(self.db_file)

    # ------------------------- Books ------------------------- #
    def find_book(self, book_id: str) -> Optional[Book]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {', '.join(BOOK_COLUMNS)} FROM books WHERE id = ?", (book_id,)
            ).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def insert_book(self, book: Book, refresh: bool = False) -> Book:
        """Store a catalog book in a single conflict-tolerant write.

        The first write wins unless ``refresh`` is set, in which case the
        catalog fields and ``updated_at`` of an existing row are replaced.
        ``created_at`` is never touched after the first insert.
        """
        now = utc_now()
        values = (
            book.id, book.title, json.dumps(book.authors), book.description, book.cover_url,
            book.published_date, book.publisher, book.page_count,
            json.dumps(book.categories) if book.categories is not None else None,
            book.language, book.preview_link, book.info_link, now, now,
        )
        if refresh:
            updates = ", ".join(f"{col} = excluded.{col}" for col in _REFRESHABLE_COLUMNS)
            conflict = f"DO UPDATE SET {updates}, updated_at = excluded.updated_at"
        else:
            conflict = "DO NOTHING"

        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                INSERT INTO books ({', '.join(BOOK_COLUMNS)})
                VALUES ({', '.join('?' for _ in BOOK_COLUMNS)})
                ON CONFLICT(id) {conflict}
                """,
                values,
            )
            conn.commit()
            if cursor.rowcount:
                logger.info(f"Cached book {book.id} ({book.title})")
        finally:
            conn.close()
        return self.find_book(book.id)

    # ------------------------- Memberships ------------------------- #
    def get_membership(self, user_id: str, book_id: str) -> Optional[Membership]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT id, user_id, book_id, list_type, added_at FROM user_books WHERE user_id = ? AND book_id = ?",
                (user_id, book_id),
            ).fetchone()
            return Membership.from_row(row) if row else None
        finally:
            conn.close()

    def upsert_membership(self, user_id: str, book_id: str, list_type: ListType) -> Membership:
        """Put a book on a list, or move it to another list keeping its ``added_at``."""
        list_type = ListType.parse(list_type)
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO user_books (id, user_id, book_id, list_type, added_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, book_id) DO UPDATE SET list_type = excluded.list_type
                """,
                (_new_id(), user_id, book_id, list_type.value, utc_now()),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise NotFound(f"Book {book_id} is not cached locally.") from e
        finally:
            conn.close()
        return self.get_membership(user_id, book_id)

    def delete_membership(self, user_id: str, book_id: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM user_books WHERE user_id = ? AND book_id = ?", (user_id, book_id)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def list_memberships(self, user_id: str, list_type: Optional[ListType] = None) -> List[UserBook]:
        """Memberships in insertion order, each with its book and the user's own rating."""
        book_select = ", ".join(f"b.{col} AS book_{col}" for col in BOOK_COLUMNS)
        sql = f"""
            SELECT ub.id, ub.user_id, ub.book_id, ub.list_type, ub.added_at,
                   r.rating AS user_rating, {book_select}
            FROM user_books ub
            JOIN books b ON b.id = ub.book_id
            LEFT JOIN reviews r ON r.book_id = ub.book_id AND r.user_id = ub.user_id
            WHERE ub.user_id = ?
        """
        params: List[Any] = [user_id]
        if list_type is not None:
            sql += " AND ub.list_type = ?"
            params.append(ListType.parse(list_type).value)
        sql += " ORDER BY ub.added_at, ub.rowid"

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        result = []
        for row in rows:
            book = Book.from_dict({col: row[f"book_{col}"] for col in BOOK_COLUMNS})
            result.append(UserBook(
                id=row["id"],
                user_id=row["user_id"],
                book_id=row["book_id"],
                list_type=ListType(row["list_type"]),
                added_at=row["added_at"],
                book=book,
                user_rating=row["user_rating"],
            ))
        return result

    # ------------------------- Reviews ------------------------- #
    def get_review(self, user_id: str, book_id: str) -> Optional[Review]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM reviews WHERE user_id = ? AND book_id = ?", (user_id, book_id)
            ).fetchone()
            return Review.from_row(row) if row else None
        finally:
            conn.close()

    def upsert_review(self, user_id: str, book_id: str, rating: int, review_text: Optional[str] = None) -> Review:
        now = utc_now()
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO reviews (id, user_id, book_id, rating, review_text, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, book_id) DO UPDATE SET
                    rating = excluded.rating,
                    review_text = excluded.review_text,
                    updated_at = excluded.updated_at
                """,
                (_new_id(), user_id, book_id, rating, review_text, now, now),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_review(user_id, book_id)

    def list_reviews_for_book(self, book_id: str) -> List[Review]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM reviews WHERE book_id = ? ORDER BY updated_at DESC, rowid DESC", (book_id,)
            ).fetchall()
            return [Review.from_row(r) for r in rows]
        finally:
            conn.close()

    def get_rating_summary(self, book_id: str) -> Dict[str, Any]:
        """Average rating and review count for a book."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT AVG(rating) AS avg_rating, COUNT(*) AS review_count FROM reviews WHERE book_id = ?",
                (book_id,),
            ).fetchone()
        finally:
            conn.close()
        return {
            "book_id": book_id,
            "average_rating": round(row["avg_rating"], 2) if row["avg_rating"] is not None else None,
            "review_count": row["review_count"],
        }

    # ------------------------- Notes ------------------------- #
    def create_note(self, user_id: str, book_id: str, title: str, content: str,
                    chapter: Optional[str] = None, section: Optional[str] = None,
                    tags: Optional[Iterable[str]] = None) -> Note:
        note_id = _new_id()
        now = utc_now()
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO notes (id, user_id, book_id, title, content, chapter, section, tags, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (note_id, user_id, book_id, title, content, chapter, section,
                 json.dumps(_clean_tags(tags)), now, now),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise NotFound(f"Book {book_id} is not cached locally.") from e
        finally:
            conn.close()
        return self.get_note(user_id, note_id)

    def get_note(self, user_id: str, note_id: str) -> Optional[Note]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id)
            ).fetchone()
            return Note.from_row(row) if row else None
        finally:
            conn.close()

    def update_note(self, user_id: str, note_id: str, title: str, content: str,
                    chapter: Optional[str] = None, section: Optional[str] = None,
                    tags: Optional[Iterable[str]] = None) -> Optional[Note]:
        """Replace a note's editable fields. Returns None if the user does not own it."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                UPDATE notes
                SET title = ?, content = ?, chapter = ?, section = ?, tags = ?, updated_at = ?
                WHERE id = ? AND user_id = ?
                """,
                (title, content, chapter, section, json.dumps(_clean_tags(tags)), utc_now(), note_id, user_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        finally:
            conn.close()
        return self.get_note(user_id, note_id)

    def delete_note(self, user_id: str, note_id: str) -> bool:
        """Delete an owned note together with its quotes."""
        conn = self._connect()
        try:
            owned = conn.execute(
                "SELECT 1 FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id)
            ).fetchone()
            if not owned:
                return False
            conn.execute("DELETE FROM quotes WHERE note_id = ?", (note_id,))
            conn.execute("DELETE FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id))
            conn.commit()
            return True
        finally:
            conn.close()

    def list_notes_for_book(self, user_id: str, book_id: str) -> List[Note]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM notes WHERE user_id = ? AND book_id = ? ORDER BY created_at, rowid",
                (user_id, book_id),
            ).fetchall()
            return [Note.from_row(r) for r in rows]
        finally:
            conn.close()

    def list_all_notes(self, user_id: str) -> List[Note]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM notes WHERE user_id = ? ORDER BY updated_at, rowid", (user_id,)
            ).fetchall()
            return [Note.from_row(r) for r in rows]
        finally:
            conn.close()

    def search_notes(self, user_id: str, query: str = "", book_id: Optional[str] = None,
                     chapter: Optional[str] = None, tags: Optional[Iterable[str]] = None) -> List[Note]:
        """Search a user's notes.

        ``query`` is a case-insensitive substring matched against the title or
        the content; an empty query matches everything. ``book_id`` and
        ``chapter`` narrow by equality, ``tags`` keeps notes carrying every tag.
        """
        sql = "SELECT * FROM notes WHERE user_id = ?"
        params: List[Any] = [user_id]
        if book_id:
            sql += " AND book_id = ?"
            params.append(book_id)
        if chapter:
            sql += " AND chapter = ?"
            params.append(chapter)
        sql += " ORDER BY updated_at, rowid"

        conn = self._connect()
        try:
            notes = [Note.from_row(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

        needle = (query or "").strip().casefold()
        if needle:
            notes = [n for n in notes if _contains(n.title, needle) or _contains(n.content, needle)]
        wanted = _clean_tags(tags)
        if wanted:
            notes = [n for n in notes if all(tag in n.tags for tag in wanted)]
        return notes

    # ------------------------- Quotes ------------------------- #
    def add_quote(self, user_id: str, note_id: str, text: str, page_number: Optional[int] = None) -> Optional[Quote]:
        """Attach a quote to a note. Returns None if the user does not own the note."""
        if self.get_note(user_id, note_id) is None:
            return None
        quote_id = _new_id()
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO quotes (id, note_id, text, page_number, created_at) VALUES (?, ?, ?, ?, ?)",
                (quote_id, note_id, text, page_number, utc_now()),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM quotes WHERE id = ?", (quote_id,)).fetchone()
            return Quote.from_row(row)
        finally:
            conn.close()

    def list_quotes(self, user_id: str, note_id: str) -> Optional[List[Quote]]:
        """Quotes of an owned note, oldest first. Returns None if the user does not own the note."""
        if self.get_note(user_id, note_id) is None:
            return None
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM quotes WHERE note_id = ? ORDER BY created_at, rowid", (note_id,)
            ).fetchall()
            return [Quote.from_row(r) for r in rows]
        finally:
            conn.close()

    def list_quotes_for_book(self, user_id: str, book_id: str) -> List[Quote]:
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT q.* FROM quotes q
                JOIN notes n ON n.id = q.note_id
                WHERE n.user_id = ? AND n.book_id = ?
                ORDER BY q.created_at, q.rowid
                """,
                (user_id, book_id),
            ).fetchall()
            return [Quote.from_row(r) for r in rows]
        finally:
            conn.close()

    def delete_quote(self, user_id: str, quote_id: str) -> bool:
        conn = self._connect()
        try:
            owned = conn.execute(
                """
                SELECT q.id FROM quotes q
                JOIN notes n ON n.id = q.note_id
                WHERE q.id = ? AND n.user_id = ?
                """,
                (quote_id, user_id),
            ).fetchone()
            if not owned:
                return False
            conn.execute("DELETE FROM quotes WHERE id = ?", (quote_id,))
            conn.commit()
            return True
        finally:
            conn.close()
