from typing import Dict, List, Optional

import pytest

from bookshelf.actions import BookActions
from bookshelf.config import Settings
from bookshelf.database import get_db_connection
from bookshelf.library import Library
from bookshelf.services.google_books_service import CatalogBook, GoogleBooksService


def make_catalog_book(book_id: str = "abc123", title: str = "Dune", **overrides) -> CatalogBook:
    data = dict(
        id=book_id,
        title=title,
        authors=["Frank Herbert"],
        description="Spice, sand and politics.",
        image_links={"thumbnail": f"http://books.google.com/books/content?id={book_id}"},
        published_date="1965-08-01",
        publisher="Chilton Books",
        page_count=412,
        categories=["Fiction"],
        language="en",
        preview_link=f"http://books.google.com/books?id={book_id}&printsec=frontcover",
        info_link=f"http://books.google.com/books?id={book_id}",
    )
    data.update(overrides)
    return CatalogBook(**data)


def count_rows(lib: Library, table: str, where: str = "1 = 1", params: tuple = ()) -> int:
    conn = get_db_connection(lib.db_file)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]
    finally:
        conn.close()


class FakeCatalog:
    """In-memory stand-in for GoogleBooksService that counts calls."""

    normalize = staticmethod(GoogleBooksService.normalize)

    def __init__(self, books: Optional[List[CatalogBook]] = None) -> None:
        self.books: Dict[str, CatalogBook] = {b.id: b for b in books or []}
        self.search_calls: List[str] = []
        self.fetch_calls: List[str] = []
        self.api_key = "fake-key"

    async def search(self, query: str, max_results: Optional[int] = None) -> List[CatalogBook]:
        self.search_calls.append(query)
        return [b for b in self.books.values() if query.lower() in b.title.lower()]

    async def fetch_by_id(self, book_id: str) -> Optional[CatalogBook]:
        self.fetch_calls.append(book_id)
        return self.books.get(book_id)

    async def close(self) -> None:
        pass


@pytest.fixture
def settings(tmp_path):
    return Settings(
        google_books_api_key="test-key",
        database_url=f"sqlite:///{tmp_path / 'bookshelf_test.db'}",
        refresh_books_from_catalog=False,
    )


@pytest.fixture
def lib(settings):
    return Library(settings=settings)


@pytest.fixture
def catalog():
    return FakeCatalog([
        make_catalog_book("abc123", "Dune"),
        make_catalog_book("def456", "Neuromancer", authors=["William Gibson"],
                          published_date="1984", categories=["Science Fiction"]),
        make_catalog_book("ghi789", "Emma", authors=["Jane Austen"], published_date="1815",
                          categories=None, image_links={}),
    ])


@pytest.fixture
def actions(lib, catalog, settings):
    return BookActions(lib, catalog, settings)
