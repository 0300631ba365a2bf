"""Error taxonomy shared by the persistence layer, the catalog client and the actions."""


class BookshelfError(Exception):
    """Base class for every error raised on purpose by this package."""


class Unauthenticated(BookshelfError):
    """No signed-in user is attached to the request."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class NotFound(BookshelfError):
    """A book, note or quote is absent or not owned by the caller."""


class ValidationError(BookshelfError):
    """Malformed input, such as an out-of-range rating or an unknown list type."""


class UpstreamError(BookshelfError):
    """The catalog service answered with a failure other than not-found."""


class ConfigurationError(BookshelfError):
    """A required credential or setting is missing."""
