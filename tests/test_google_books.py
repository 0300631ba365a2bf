import httpx
import pytest

from bookshelf.config import Settings
from bookshelf.errors import ConfigurationError, UpstreamError
from bookshelf.services.google_books_service import CatalogBook, GoogleBooksAPIError, GoogleBooksService

BASE = "https://books.test/books/v1/volumes"

DUNE_VOLUME = {
    "id": "abc123",
    "volumeInfo": {
        "title": "Dune",
        "authors": ["Frank Herbert"],
        "publishedDate": "1965-08-01",
        "imageLinks": {
            "smallThumbnail": "http://books.google.com/small?id=abc123",
            "thumbnail": "http://books.google.com/thumb?id=abc123",
        },
        "pageCount": 412,
        "categories": ["Fiction"],
        "language": "en",
        "previewLink": "http://books.google.com/books?id=abc123",
        "infoLink": "http://books.google.com/books?id=abc123&source=info",
    },
}


def make_service(handler, api_key="test-key"):
    requests = []

    def recording_handler(request):
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
    settings = Settings(google_books_api_key=api_key, google_books_base_url=BASE)
    return GoogleBooksService(settings=settings, client=client), requests


async def test_search_sends_query_and_parses_items():
    service, requests = make_service(
        lambda request: httpx.Response(200, json={"items": [DUNE_VOLUME], "totalItems": 1})
    )

    results = await service.search("dune herbert", max_results=5)

    assert [b.id for b in results] == ["abc123"]
    assert results[0].title == "Dune"
    params = requests[0].url.params
    assert params["q"] == "dune herbert"
    assert params["maxResults"] == "5"
    assert params["key"] == "test-key"
    assert str(requests[0].url).startswith(BASE)


async def test_search_clamps_max_results():
    service, requests = make_service(lambda request: httpx.Response(200, json={"totalItems": 0}))

    assert await service.search("anything", max_results=500) == []
    assert requests[0].url.params["maxResults"] == "40"


async def test_search_without_api_key_fails_before_network():
    service, requests = make_service(lambda request: httpx.Response(200, json={}), api_key="")

    with pytest.raises(ConfigurationError):
        await service.search("dune")
    assert requests == []


async def test_search_error_status_raises_upstream_error():
    service, _ = make_service(lambda request: httpx.Response(503, text="backend down"))

    with pytest.raises(UpstreamError) as excinfo:
        await service.search("dune")
    assert isinstance(excinfo.value, GoogleBooksAPIError)
    assert excinfo.value.status_code == 503


async def test_fetch_by_id():
    service, requests = make_service(lambda request: httpx.Response(200, json=DUNE_VOLUME))

    book = await service.fetch_by_id("abc123")

    assert book.id == "abc123"
    assert book.authors == ["Frank Herbert"]
    assert requests[0].url.path.endswith("/volumes/abc123")
    assert requests[0].url.params["key"] == "test-key"


async def test_fetch_by_id_not_found_returns_none():
    service, _ = make_service(lambda request: httpx.Response(404, json={"error": {"code": 404}}))

    assert await service.fetch_by_id("missing") is None


async def test_fetch_by_id_other_failures_raise():
    service, _ = make_service(lambda request: httpx.Response(500))
    with pytest.raises(UpstreamError):
        await service.fetch_by_id("abc123")

    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    service, _ = make_service(unreachable)
    with pytest.raises(UpstreamError):
        await service.fetch_by_id("abc123")


async def test_fetch_by_id_without_api_key():
    service, _ = make_service(lambda request: httpx.Response(200, json=DUNE_VOLUME), api_key="")

    with pytest.raises(ConfigurationError):
        await service.fetch_by_id("abc123")


def test_normalize_upgrades_thumbnail_to_https():
    book = GoogleBooksService.normalize(CatalogBook.from_api(DUNE_VOLUME))

    assert book.id == "abc123"
    assert book.cover_url == "https://books.google.com/thumb?id=abc123"
    assert book.page_count == 412
    assert book.categories == ["Fiction"]
    assert book.preview_link == "http://books.google.com/books?id=abc123"


def test_normalize_leaves_missing_fields_absent():
    book = GoogleBooksService.normalize(CatalogBook.from_api({"id": "bare", "volumeInfo": {"title": "Bare"}}))

    assert book.authors == []
    assert book.cover_url is None
    assert book.description is None
    assert book.categories is None
    assert book.language is None
    assert book.page_count is None
