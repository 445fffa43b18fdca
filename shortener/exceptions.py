"""Error taxonomy for the URL shortener.

Every error carries the HTTP status code and the public detail message the API
layer should answer with. Backend failures share one generic detail so store
or Redis internals never reach clients.

Classes:
    ShortenerError:
        Generic base class for shortener errors.

    InvalidUrlError:
        Raised when a URL to shorten is not a valid absolute URI.

    InvalidExpiryError:
        Raised when a requested expiry is not a positive duration.

    InvalidIdentifierError:
        Raised when an identifier cannot be encoded (negative, zero-reserved or too large).

    InvalidCodeError:
        Raised when a short code cannot be decoded to an allocated identifier.

    NotFoundError:
        Raised when a short code has no live mapping (absent, deleted or expired).

    DuplicateCodeError:
        Raised when a mapping with the same short code already exists in the store.

    AllocatorUnavailableError:
        Raised when the counter backing store cannot be reached.

    StoreUnavailableError:
        Raised when the mapping store cannot be reached.

    CacheUnavailableError:
        Raised when the resolution cache cannot be reached. Never escapes the cache layer.

    ServiceUnavailableError:
        Raised when id allocation keeps failing after all retries.

Example:
    >>> from shortener.exceptions import NotFoundError
    >>> raise NotFoundError("abc")
    Traceback (most recent call last):
        ...
    shortener.exceptions.NotFoundError: abc
"""

__all__ = [
    "ShortenerError",
    "InvalidUrlError",
    "InvalidExpiryError",
    "InvalidIdentifierError",
    "InvalidCodeError",
    "NotFoundError",
    "DuplicateCodeError",
    "AllocatorUnavailableError",
    "StoreUnavailableError",
    "CacheUnavailableError",
    "ServiceUnavailableError",
]

UNAVAILABLE_DETAIL = "Service temporarily unavailable"


class ShortenerError(Exception):
    """Generic base class for shortener errors."""

    status_code: int = 500
    public_detail: str | None = None

    @property
    def detail(self) -> str:
        """Message that is safe to return to API clients."""
        if self.public_detail is not None:
            return self.public_detail
        return str(self) or self.__class__.__name__


class InvalidUrlError(ShortenerError):
    """Exception raised when a URL is not a syntactically valid absolute URI."""

    status_code = 400


class InvalidExpiryError(ShortenerError):
    """Exception raised when an expiry duration is zero or negative."""

    status_code = 400


class InvalidIdentifierError(ValueError, ShortenerError):
    """Exception raised when an identifier is outside the encodable range."""

    status_code = 500


class InvalidCodeError(ShortenerError):
    """Exception raised when a short code does not decode to an allocated identifier."""

    status_code = 404
    public_detail = "Short URL not found"


class NotFoundError(ShortenerError):
    """Exception raised when no live mapping exists for a short code."""

    status_code = 404
    public_detail = "Short URL not found"


class DuplicateCodeError(ShortenerError):
    """Exception raised when inserting a mapping whose short code already exists."""

    status_code = 503
    public_detail = UNAVAILABLE_DETAIL


class AllocatorUnavailableError(ShortenerError):
    """Exception raised when the atomic counter store is unreachable."""

    status_code = 503
    public_detail = UNAVAILABLE_DETAIL


class StoreUnavailableError(ShortenerError):
    """Exception raised when the mapping store is unreachable.

    e.g. connection refused, timeouts, pool exhaustion.
    """

    status_code = 503
    public_detail = UNAVAILABLE_DETAIL


class CacheUnavailableError(ShortenerError):
    """Exception raised when the resolution cache is unreachable."""

    status_code = 503
    public_detail = UNAVAILABLE_DETAIL


class ServiceUnavailableError(ShortenerError):
    """Exception raised when id allocation is still failing after all retries."""

    status_code = 503
    public_detail = UNAVAILABLE_DETAIL
