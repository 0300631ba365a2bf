import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Google Books
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_base_url: str = os.getenv(
        "GOOGLE_BOOKS_BASE_URL",
        "https://www.googleapis.com/books/v1/volumes"
    )
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))
    google_books_max_results: int = int(os.getenv("GOOGLE_BOOKS_MAX_RESULTS", "20"))

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///bookshelf.db")

    # Auth provider credentials (consumed by the sign-in service, not by this package)
    auth_client_id: Optional[str] = os.getenv("AUTH_CLIENT_ID")
    auth_client_secret: Optional[str] = os.getenv("AUTH_CLIENT_SECRET")

    # Re-fetch cached books from the catalog on detail views and list adds
    refresh_books_from_catalog: bool = _env_flag("BOOKSHELF_REFRESH_BOOKS")

    # Application
    app_name: str = os.getenv("APP_NAME", "Bookshelf")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def database_file(self) -> str:
        """Path of the SQLite file named by ``database_url``."""
        return sqlite_path_from_url(self.database_url)


def sqlite_path_from_url(url: str) -> str:
    """Turn ``sqlite:///relative.db`` or ``sqlite:////abs/path.db`` into a file path.

    A bare path is returned unchanged.
    """
    prefix = "sqlite:///"
    if url.startswith(prefix):
        path = url[len(prefix):]
        if not path:
            raise ValueError(f"DATABASE_URL has no database path: {url!r}")
        return path
    if "://" in url:
        raise ValueError(f"Only sqlite:/// database URLs are supported, got {url!r}")
    return url


settings = Settings()
