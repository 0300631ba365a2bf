"""Serve the bookshelf API: ``python -m bookshelf``."""
import uvicorn

from bookshelf.config import settings


def main() -> None:
    uvicorn.run(
        "bookshelf.api:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
