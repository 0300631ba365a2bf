import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from urllib.parse import quote

import httpx

from bookshelf.book import Book
from bookshelf.config import Settings, settings as default_settings
from bookshelf.errors import ConfigurationError, UpstreamError
from bookshelf.services.http_client import create_http_client


logger = logging.getLogger(__name__)

# Google Books rejects larger pages
MAX_RESULTS_LIMIT = 40


@dataclass
class CatalogBook:
    """A volume as returned by the Google Books API"""
    id: str
    title: str
    authors: Optional[List[str]] = None
    description: Optional[str] = None
    image_links: Dict[str, str] = field(default_factory=dict)
    published_date: Optional[str] = None
    publisher: Optional[str] = None
    page_count: Optional[int] = None
    categories: Optional[List[str]] = None
    language: Optional[str] = None
    preview_link: Optional[str] = None
    info_link: Optional[str] = None

    @staticmethod
    def from_api(payload: Dict[str, Any]) -> "CatalogBook":
        volume_info = payload.get("volumeInfo") or {}
        return CatalogBook(
            id=payload["id"],
            title=volume_info.get("title") or "",
            authors=volume_info.get("authors"),
            description=volume_info.get("description"),
            image_links=volume_info.get("imageLinks") or {},
            published_date=volume_info.get("publishedDate"),
            publisher=volume_info.get("publisher"),
            page_count=volume_info.get("pageCount"),
            categories=volume_info.get("categories"),
            language=volume_info.get("language"),
            preview_link=volume_info.get("previewLink"),
            info_link=volume_info.get("infoLink"),
        )


class GoogleBooksAPIError(UpstreamError):
    """Google Books answered with an unexpected status or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _secure_url(url: Optional[str]) -> Optional[str]:
    if url and url.startswith("http:"):
        return "https:" + url[len("http:"):]
    return url


class GoogleBooksService:
    """Catalog client for the Google Books volumes API"""

    def __init__(self, api_key: Optional[str] = None, settings: Optional[Settings] = None,
                 client: Optional[httpx.AsyncClient] = None):
        settings = settings or default_settings
        self.api_key = api_key if api_key is not None else settings.google_books_api_key
        self.base_url = settings.google_books_base_url.rstrip("/")
        self.default_max_results = settings.google_books_max_results
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_http_client(self._settings)
        return self._client

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("Google Books API key is not configured")
        return self.api_key

    async def _get(self, url: str, params: Dict[str, Any]) -> httpx.Response:
        """Send one GET request, turning transport failures into GoogleBooksAPIError"""
        params = dict(params, key=self._require_api_key())
        start_time = time.time()
        try:
            response = await self.client.get(url, params=params)
        except httpx.RequestError as e:
            logger.error(f"Google Books request to {url} failed: {e}")
            raise GoogleBooksAPIError(f"Google Books is unreachable: {e}") from e

        response_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Google Books GET {url} -> {response.status_code} in {response_time_ms}ms")
        return response

    async def search(self, query: str, max_results: Optional[int] = None) -> List[CatalogBook]:
        """
        Search volumes by free text

        Args:
            query: Search query (title, author, etc.)
            max_results: Maximum number of results to return

        Returns:
            List of CatalogBook objects, empty when nothing matched
        """
        if not query or not query.strip():
            logger.warning("Empty search query provided")
            return []

        limit = max_results if max_results is not None else self.default_max_results
        params = {
            "q": query.strip(),
            "maxResults": max(1, min(limit, MAX_RESULTS_LIMIT)),
        }

        response = await self._get(self.base_url, params)
        if not response.is_success:
            raise GoogleBooksAPIError(
                f"Google Books search failed with status {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        items = data.get("items") or []
        books = [CatalogBook.from_api(item) for item in items if item.get("id")]
        logger.info(f"Found {len(books)} of {data.get('totalItems', 0)} books for query: {query}")
        return books

    async def fetch_by_id(self, book_id: str) -> Optional[CatalogBook]:
        """
        Fetch a single volume by its catalog id

        Returns:
            CatalogBook, or None when Google Books reports 404
        """
        url = f"{self.base_url}/{quote(book_id, safe='')}"
        response = await self._get(url, {})

        if response.status_code == 404:
            logger.info(f"Book not found in Google Books: {book_id}")
            return None
        if not response.is_success:
            raise GoogleBooksAPIError(
                f"Google Books lookup of {book_id} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return CatalogBook.from_api(response.json())

    @staticmethod
    def normalize(catalog_book: CatalogBook) -> Book:
        """Map a catalog volume onto a local Book. Missing optional fields stay None."""
        links = catalog_book.image_links or {}
        thumbnail = links.get("thumbnail") or links.get("smallThumbnail")
        return Book(
            id=catalog_book.id,
            title=catalog_book.title,
            authors=catalog_book.authors or [],
            description=catalog_book.description,
            cover_url=_secure_url(thumbnail),
            published_date=catalog_book.published_date,
            publisher=catalog_book.publisher,
            page_count=catalog_book.page_count,
            categories=catalog_book.categories,
            language=catalog_book.language,
            preview_link=catalog_book.preview_link,
            info_link=catalog_book.info_link,
        )

    async def close(self) -> None:
        """Close the HTTP client if this service created it"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
