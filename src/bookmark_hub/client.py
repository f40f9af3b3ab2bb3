"""Platform API client for fetching a user's saved posts.

Authentication uses the OAuth2 bearer token stored for the user by the
connect flow. Results are paginated with an opaque ``next_token`` cursor;
each page carries the posts plus an ``includes`` section (authors, media,
referenced posts) which is joined onto every post here so downstream code
sees one self-contained dict per post under the ``_includes`` key.
"""

import logging
import time

import httpx

from .errors import (
    AuthError,
    FetchTimeoutError,
    NotFoundError,
    RateLimitError,
    UpstreamError,
)
from .models import SavedPostsPage

logger = logging.getLogger(__name__)

POST_FIELDS = [
    "created_at",
    "author_id",
    "entities",
    "referenced_tweets",
    "attachments",
    "public_metrics",
    "note_tweet",
]
USER_FIELDS = ["username", "name", "profile_image_url"]
MEDIA_FIELDS = ["url", "preview_image_url", "type", "width", "height", "duration_ms", "alt_text"]
EXPANSIONS = ["author_id", "referenced_tweets.id", "attachments.media_keys"]

MAX_PAGE_SIZE = 100


class PlatformClient:
    """Client for the platform's authenticated v2 API."""

    def __init__(
        self,
        access_token: str,
        user_id: str,
        base_url: str = "https://api.twitter.com/2",
        timeout: float = 30.0,
    ):
        self.user_id = user_id
        self._bookmarks_url = f"{base_url.rstrip('/')}/users/{user_id}/bookmarks"
        self._client = httpx.Client(
            headers={
                "authorization": f"Bearer {access_token}",
                "User-Agent": "bookmark-hub/1.0",
            },
            timeout=timeout,
            follow_redirects=True,
        )

    def fetch_saved_posts_page(
        self, cursor: str | None = None, page_size: int = MAX_PAGE_SIZE
    ) -> SavedPostsPage:
        """Fetch a single page of saved posts."""
        params = {
            "max_results": min(page_size, MAX_PAGE_SIZE),
            "tweet.fields": ",".join(POST_FIELDS),
            "user.fields": ",".join(USER_FIELDS),
            "media.fields": ",".join(MEDIA_FIELDS),
            "expansions": ",".join(EXPANSIONS),
        }
        if cursor:
            params["pagination_token"] = cursor

        try:
            response = self._client.get(self._bookmarks_url, params=params)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError("Timed out fetching saved posts") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Could not reach the platform API: {e}") from e

        if response.status_code == 429:
            reset_time = response.headers.get("x-rate-limit-reset")
            retry_after = None
            wait_msg = ""
            if reset_time and reset_time.isdigit():
                retry_after = max(int(reset_time) - int(time.time()), 0)
                wait_msg = f" Retry in {retry_after}s."
            raise RateLimitError(f"Rate limited by the platform API.{wait_msg}", retry_after)

        if response.status_code in (401, 403):
            raise AuthError(
                "Authentication failed. The stored token may be expired or revoked; "
                "reconnect the account.",
                status=response.status_code,
            )

        if response.status_code == 404:
            raise NotFoundError(f"No saved-posts list for user {self.user_id}")

        if response.status_code >= 400:
            raise UpstreamError(
                f"Platform API error ({response.status_code})",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Platform API returned invalid JSON", status=response.status_code) from e

        return self._parse_page(data)

    @staticmethod
    def _parse_page(data: dict) -> SavedPostsPage:
        """Join includes onto each post and read the pagination cursor."""
        includes = data.get("includes", {}) or {}
        users = {u.get("id"): u for u in includes.get("users", [])}
        media = {m.get("media_key"): m for m in includes.get("media", [])}
        referenced = {t.get("id"): t for t in includes.get("tweets", [])}

        posts: list[dict] = []
        for post in data.get("data", []) or []:
            media_keys = (post.get("attachments") or {}).get("media_keys", [])
            refs = {}
            for ref in post.get("referenced_tweets", []) or []:
                ref_post = referenced.get(ref.get("id"))
                if ref_post:
                    refs[ref["id"]] = {
                        **ref_post,
                        "_includes": {"author": users.get(ref_post.get("author_id"))},
                    }
            posts.append(
                {
                    **post,
                    "_includes": {
                        "author": users.get(post.get("author_id")),
                        "media": [media[k] for k in media_keys if k in media],
                        "referenced": refs,
                    },
                }
            )

        meta = data.get("meta", {}) or {}
        return SavedPostsPage(
            posts=posts,
            next_cursor=meta.get("next_token"),
            result_count=meta.get("result_count", len(posts)),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
