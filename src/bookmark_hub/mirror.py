"""Client for the public mirror API (FxTwitter-compatible).

The mirror re-serves public post content without OAuth. It is used for
manual adds, previews, quoted-post expansion and sync-time enrichment:

    GET {base_url}/{author}/status/{post_id}  ->  {"code": 200, "tweet": {...}}

Calls are bounded by a short timeout; a timeout is reported the same way
as any other transport failure.
"""

import logging

import httpx

from .errors import FetchTimeoutError, NotFoundError, UpstreamError
from .identifiers import validate_handle, validate_post_id

logger = logging.getLogger(__name__)

USER_AGENT = "bookmark-hub/1.0"


class MirrorClient:
    """Read-only client for single-post lookups."""

    def __init__(
        self,
        base_url: str = "https://api.fxtwitter.com",
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            follow_redirects=True,
        )

    def post_url(self, author: str, post_id: str) -> str:
        return f"{self.base_url}/{author}/status/{post_id}"

    def fetch_post(self, author: str, post_id: str) -> dict:
        """Fetch one post's raw payload.

        Raises ValidationError before any request for a bad handle or id,
        NotFoundError for a missing post, FetchTimeoutError on timeout and
        UpstreamError for any other failure.
        """
        validate_handle(author)
        validate_post_id(post_id)

        url = self.post_url(author, post_id)
        try:
            response = self._client.get(url)
        except httpx.TimeoutException as e:
            logger.error("Mirror request for %s timed out", post_id)
            raise FetchTimeoutError(f"Mirror API timed out fetching post {post_id}") from e
        except httpx.HTTPError as e:
            logger.error("Mirror request for %s failed: %s", post_id, e)
            raise UpstreamError(f"Mirror API unreachable: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Post {post_id} not found")
        if response.status_code >= 400:
            logger.error("Mirror API error %d for post %s", response.status_code, post_id)
            raise UpstreamError(
                f"Mirror API error ({response.status_code})",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Mirror API returned invalid JSON", status=response.status_code) from e

        if not isinstance(data, dict) or not data.get("tweet"):
            # The mirror reports private/deleted posts with a 200 and no tweet
            raise NotFoundError(f"Post {post_id} not found")
        return data

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
