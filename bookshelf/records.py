from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from bookshelf.book import Book
from bookshelf.errors import ValidationError


class ListType(str, Enum):
    """Status tag of a book on a user's reading lists."""

    TO_READ = "to-read"
    READING = "reading"
    COMPLETED = "completed"

    @property
    def label(self) -> str:
        return {
            ListType.TO_READ: "Want to Read",
            ListType.READING: "Reading",
            ListType.COMPLETED: "Completed",
        }[self]

    @classmethod
    def parse(cls, value: Any) -> "ListType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(item.value for item in cls)
            raise ValidationError(f"Invalid list type {value!r}. Allowed: {allowed}") from None


@dataclass
class Membership:
    id: str
    user_id: str
    book_id: str
    list_type: ListType
    added_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "list_type": self.list_type.value,
            "added_at": self.added_at,
        }

    @staticmethod
    def from_row(row) -> "Membership":
        return Membership(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            list_type=ListType(row["list_type"]),
            added_at=row["added_at"],
        )


@dataclass
class UserBook:
    """A membership joined with its book and the owner's rating, if any."""
    id: str
    user_id: str
    book_id: str
    list_type: ListType
    added_at: str
    book: Book
    user_rating: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "list_type": self.list_type.value,
            "added_at": self.added_at,
            "book": self.book.to_dict(),
            "user_rating": self.user_rating,
        }


@dataclass
class Review:
    id: str
    user_id: str
    book_id: str
    rating: int
    review_text: Optional[str]
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "rating": self.rating,
            "review_text": self.review_text,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row) -> "Review":
        return Review(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            rating=row["rating"],
            review_text=row["review_text"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Note:
    id: str
    user_id: str
    book_id: str
    title: str
    content: str
    chapter: Optional[str] = None
    section: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "title": self.title,
            "content": self.content,
            "chapter": self.chapter,
            "section": self.section,
            "tags": list(self.tags),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row) -> "Note":
        tags = row["tags"]
        return Note(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            title=row["title"],
            content=row["content"],
            chapter=row["chapter"],
            section=row["section"],
            tags=json.loads(tags) if tags else [],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Quote:
    id: str
    note_id: str
    text: str
    page_number: Optional[int] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "note_id": self.note_id,
            "text": self.text,
            "page_number": self.page_number,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row) -> "Quote":
        return Quote(
            id=row["id"],
            note_id=row["note_id"],
            text=row["text"],
            page_number=row["page_number"],
            created_at=row["created_at"],
        )


@dataclass
class NotesExport:
    """Everything a user wrote about one book, bundled for download."""
    book: Book
    notes: List[Note]
    quotes: List[Quote]
    export_date: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book": self.book.to_dict(),
            "notes": [n.to_dict() for n in self.notes],
            "quotes": [q.to_dict() for q in self.quotes],
            "export_date": self.export_date,
        }
