import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from bookshelf.actions import BookActions
from bookshelf.config import Settings, settings as default_settings
from bookshelf.database import get_db_connection
from bookshelf.errors import (
    BookshelfError,
    ConfigurationError,
    NotFound,
    Unauthenticated,
    UpstreamError,
    ValidationError,
)
from bookshelf.library import Library
from bookshelf.records import ListType
from bookshelf.services.google_books_service import GoogleBooksService

logger = logging.getLogger(__name__)

# --- Error mapping ---
_STATUS_BY_ERROR = (
    (Unauthenticated, 401),
    (NotFound, 404),
    (ValidationError, 422),
    (UpstreamError, 502),
    (ConfigurationError, 503),
)


def _status_for(error: BookshelfError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


# --- Security ---
# The sign-in service resolves the session and forwards the user id
user_id_header = APIKeyHeader(name="X-User-Id", auto_error=False)


def get_user_id(user_id: Optional[str] = Security(user_id_header)) -> Optional[str]:
    return user_id


def get_actions(request: Request) -> BookActions:
    return request.app.state.actions


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    authors: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    cover_url: Optional[str] = None
    published_date: Optional[str] = None
    publisher: Optional[str] = None
    page_count: Optional[int] = None
    categories: Optional[List[str]] = None
    language: Optional[str] = None
    preview_link: Optional[str] = None
    info_link: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class MembershipModel(BaseModel):
    id: str
    user_id: str
    book_id: str
    list_type: ListType
    added_at: str


class UserBookModel(MembershipModel):
    book: BookModel
    user_rating: Optional[int] = None


class ListUpdateModel(BaseModel):
    list_type: ListType


class ReviewModel(BaseModel):
    id: str
    user_id: str
    book_id: str
    rating: int
    review_text: Optional[str] = None
    created_at: str
    updated_at: str


class ReviewCreateModel(BaseModel):
    rating: int = Field(ge=1, le=5)
    review_text: Optional[str] = None


class RatingSummaryModel(BaseModel):
    book_id: str
    average_rating: Optional[float] = None
    review_count: int


class NoteModel(BaseModel):
    id: str
    user_id: str
    book_id: str
    title: str
    content: str
    chapter: Optional[str] = None
    section: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class NoteWriteModel(BaseModel):
    title: str
    content: str = ""
    chapter: Optional[str] = None
    section: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class QuoteModel(BaseModel):
    id: str
    note_id: str
    text: str
    page_number: Optional[int] = None
    created_at: Optional[str] = None


class QuoteCreateModel(BaseModel):
    text: str
    page_number: Optional[int] = Field(default=None, ge=1)


class NotesExportModel(BaseModel):
    book: BookModel
    notes: List[NoteModel]
    quotes: List[QuoteModel]
    export_date: str


def create_app(settings: Optional[Settings] = None, library: Optional[Library] = None,
               catalog: Optional[GoogleBooksService] = None) -> FastAPI:
    """Build the HTTP app around one library and one catalog client.

    Run with ``uvicorn --factory bookshelf.api:create_app``.
    """
    settings = settings or default_settings
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    library = library or Library(settings=settings)
    catalog = catalog or GoogleBooksService(settings=settings)
    actions = BookActions(library, catalog, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await catalog.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)
    app.state.settings = settings
    app.state.library = library
    app.state.catalog = catalog
    app.state.actions = actions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BookshelfError)
    async def bookshelf_error_handler(request: Request, exc: BookshelfError):
        status = _status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # --- Health ---
    @app.get("/health")
    async def health():
        db_ok = True
        try:
            conn = get_db_connection(library.db_file)
            conn.execute("SELECT 1")
            conn.close()
        except Exception:
            logger.exception("Health check could not reach the database")
            db_ok = False
        return {
            "status": "healthy" if db_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "db": db_ok,
            "catalog_configured": bool(catalog.api_key),
        }

    # --- Catalog ---
    @app.get("/search", response_model=List[BookModel])
    async def search_catalog(
        q: str = Query("", description="Free-text catalog query"),
        max_results: Optional[int] = Query(None, ge=1, le=40),
        actions: BookActions = Depends(get_actions),
    ):
        books = await actions.search_catalog(q, max_results)
        return [b.to_dict() for b in books]

    @app.get("/books/{book_id}", response_model=BookModel)
    async def get_book(book_id: str, user_id: Optional[str] = Depends(get_user_id),
                       actions: BookActions = Depends(get_actions)):
        book = await actions.get_book_details(user_id, book_id)
        if book is None:
            raise NotFound(f"Book {book_id} not found.")
        return book.to_dict()

    # --- Lists ---
    @app.get("/me/books", response_model=List[UserBookModel])
    async def get_my_books(list_type: Optional[ListType] = Query(None),
                           user_id: Optional[str] = Depends(get_user_id),
                           actions: BookActions = Depends(get_actions)):
        return [ub.to_dict() for ub in await actions.get_user_books(user_id, list_type)]

    @app.put("/me/books/{book_id}", response_model=MembershipModel)
    async def put_my_book(book_id: str, payload: ListUpdateModel,
                          user_id: Optional[str] = Depends(get_user_id),
                          actions: BookActions = Depends(get_actions)):
        membership = await actions.add_to_list(user_id, book_id, payload.list_type)
        return membership.to_dict()

    @app.delete("/me/books/{book_id}")
    async def delete_my_book(book_id: str, user_id: Optional[str] = Depends(get_user_id),
                             actions: BookActions = Depends(get_actions)):
        removed = await actions.remove_from_list(user_id, book_id)
        return {"success": True, "removed": removed}

    # --- Reviews ---
    @app.get("/books/{book_id}/reviews", response_model=List[ReviewModel])
    async def get_reviews(book_id: str, user_id: Optional[str] = Depends(get_user_id),
                          actions: BookActions = Depends(get_actions)):
        return [r.to_dict() for r in await actions.get_book_reviews(user_id, book_id)]

    @app.post("/books/{book_id}/reviews", response_model=ReviewModel)
    async def post_review(book_id: str, payload: ReviewCreateModel,
                          user_id: Optional[str] = Depends(get_user_id),
                          actions: BookActions = Depends(get_actions)):
        review = await actions.rate(user_id, book_id, payload.rating, payload.review_text)
        return review.to_dict()

    @app.get("/books/{book_id}/rating", response_model=RatingSummaryModel)
    async def get_rating(book_id: str, user_id: Optional[str] = Depends(get_user_id),
                         actions: BookActions = Depends(get_actions)):
        return await actions.get_rating_summary(user_id, book_id)

    # --- Notes ---
    @app.get("/books/{book_id}/notes", response_model=List[NoteModel])
    async def get_book_notes(book_id: str, user_id: Optional[str] = Depends(get_user_id),
                             actions: BookActions = Depends(get_actions)):
        return [n.to_dict() for n in await actions.get_book_notes(user_id, book_id)]

    @app.post("/books/{book_id}/notes", response_model=NoteModel)
    async def post_note(book_id: str, payload: NoteWriteModel,
                        user_id: Optional[str] = Depends(get_user_id),
                        actions: BookActions = Depends(get_actions)):
        note = await actions.create_note(user_id, book_id, payload.title, payload.content,
                                         payload.chapter, payload.section, payload.tags)
        return note.to_dict()

    @app.get("/books/{book_id}/notes/export", response_model=NotesExportModel)
    async def export_notes(book_id: str, user_id: Optional[str] = Depends(get_user_id),
                           actions: BookActions = Depends(get_actions)):
        return (await actions.export_notes(user_id, book_id)).to_dict()

    @app.get("/notes", response_model=List[NoteModel])
    async def get_all_notes(user_id: Optional[str] = Depends(get_user_id),
                            actions: BookActions = Depends(get_actions)):
        return [n.to_dict() for n in await actions.get_all_notes(user_id)]

    @app.get("/notes/search", response_model=List[NoteModel])
    async def search_notes(
        q: str = Query("", description="Matched against note title and content"),
        book_id: Optional[str] = Query(None),
        chapter: Optional[str] = Query(None),
        tags: Optional[List[str]] = Query(None),
        user_id: Optional[str] = Depends(get_user_id),
        actions: BookActions = Depends(get_actions),
    ):
        notes = await actions.search_notes(user_id, q, book_id=book_id, chapter=chapter, tags=tags)
        return [n.to_dict() for n in notes]

    @app.put("/notes/{note_id}", response_model=NoteModel)
    async def put_note(note_id: str, payload: NoteWriteModel,
                       user_id: Optional[str] = Depends(get_user_id),
                       actions: BookActions = Depends(get_actions)):
        note = await actions.update_note(user_id, note_id, payload.title, payload.content,
                                         payload.chapter, payload.section, payload.tags)
        return note.to_dict()

    @app.delete("/notes/{note_id}")
    async def delete_note(note_id: str, user_id: Optional[str] = Depends(get_user_id),
                          actions: BookActions = Depends(get_actions)) -> Dict[str, Any]:
        await actions.delete_note(user_id, note_id)
        return {"success": True}

    # --- Quotes ---
    @app.get("/notes/{note_id}/quotes", response_model=List[QuoteModel])
    async def get_quotes(note_id: str, user_id: Optional[str] = Depends(get_user_id),
                         actions: BookActions = Depends(get_actions)):
        return [q.to_dict() for q in await actions.get_note_quotes(user_id, note_id)]

    @app.post("/notes/{note_id}/quotes", response_model=QuoteModel)
    async def post_quote(note_id: str, payload: QuoteCreateModel,
                         user_id: Optional[str] = Depends(get_user_id),
                         actions: BookActions = Depends(get_actions)):
        quote = await actions.add_quote(user_id, note_id, payload.text, payload.page_number)
        return quote.to_dict()

    @app.delete("/quotes/{quote_id}")
    async def delete_quote(quote_id: str, user_id: Optional[str] = Depends(get_user_id),
                           actions: BookActions = Depends(get_actions)) -> Dict[str, Any]:
        await actions.delete_quote(user_id, quote_id)
        return {"success": True}

    return app
