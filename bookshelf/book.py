from __future__ import annotations

import json


def _json_list(value) -> list | None:
    # SQLite hands back JSON columns as strings
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return [value] if value else []
    return list(value)


class Book:
    """A catalog book cached locally, keyed by its catalog id."""

    def __init__(self, id: str, title: str, authors: list | None = None, description: str | None = None,
                 cover_url: str | None = None, published_date: str | None = None, publisher: str | None = None,
                 page_count: int | None = None, categories: list | None = None, language: str | None = None,
                 preview_link: str | None = None, info_link: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id.strip()
        self.title = title.strip()
        self.authors = list(authors or [])
        self.description = description
        self.cover_url = cover_url
        self.published_date = published_date
        self.publisher = publisher
        self.page_count = page_count
        # Absent categories stay None, an empty list is a real answer from the catalog
        self.categories = list(categories) if categories is not None else None
        self.language = language
        self.preview_link = preview_link
        self.info_link = info_link
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {', '.join(self.authors) or 'Unknown'} ({self.id})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, title={self.title!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "authors": self.authors,
            "description": self.description,
            "cover_url": self.cover_url,
            "published_date": self.published_date,
            "publisher": self.publisher,
            "page_count": self.page_count,
            "categories": self.categories,
            "language": self.language,
            "preview_link": self.preview_link,
            "info_link": self.info_link,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            authors=_json_list(data.get("authors")) or [],
            description=data.get("description"),
            cover_url=data.get("cover_url"),
            published_date=data.get("published_date"),
            publisher=data.get("publisher"),
            page_count=data.get("page_count"),
            categories=_json_list(data.get("categories")),
            language=data.get("language"),
            preview_link=data.get("preview_link"),
            info_link=data.get("info_link"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
