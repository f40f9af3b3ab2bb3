"""Exception types raised by the ingestion pipeline.

Each error maps to the HTTP status a route handler would answer with, and
serializes to the structured ``{"error": ...}`` object single-item
operations return. Duplicate detection is not an error: see
``IngestResult.duplicate``.
"""


class BookmarkHubError(Exception):
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(BookmarkHubError, ValueError):
    """Malformed handle, post id, URL or tag. Raised before any I/O."""

    http_status = 400


class NotFoundError(BookmarkHubError):
    http_status = 404


class LimitExceededError(BookmarkHubError, ValueError):
    """A bulk operation was asked to handle more items than its cap."""

    http_status = 400

    def __init__(self, message: str, limit: int, requested: int):
        super().__init__(message)
        self.limit = limit
        self.requested = requested

    def to_dict(self) -> dict:
        return {"error": self.message, "limit": self.limit, "requested": self.requested}


class UpstreamError(BookmarkHubError, RuntimeError):
    """The external API answered with an error, or could not be reached."""

    http_status = 502

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

    def to_dict(self) -> dict:
        data = {"error": self.message}
        if self.status is not None:
            data["upstreamStatus"] = self.status
        return data


class FetchTimeoutError(UpstreamError):
    pass


class AuthError(UpstreamError):
    """No usable OAuth token, or the platform rejected it."""

    http_status = 401


class RateLimitError(UpstreamError):
    http_status = 429

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, status=429)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        return data
