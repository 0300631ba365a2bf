import logging
from typing import Optional

import httpx

from bookshelf.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def create_http_client(settings: Optional[Settings] = None,
                       transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Build the pooled async client shared by outbound catalog calls.

    Requests are sent once; callers decide what a failure means.
    """
    settings = settings or default_settings

    limits = httpx.Limits(
        max_keepalive_connections=20,
        max_connections=100,
        keepalive_expiry=30.0
    )

    timeout = httpx.Timeout(
        timeout=settings.google_books_timeout,
        connect=5.0,
    )

    logger.debug(f"Creating HTTP client (timeout={settings.google_books_timeout}s)")
    return httpx.AsyncClient(
        limits=limits,
        timeout=timeout,
        follow_redirects=True,
        transport=transport,
    )
