"""High-level fetch operations built on the mirror and platform clients."""

import logging
import time
from typing import Callable

from .client import PlatformClient
from .errors import AuthError
from .mirror import MirrorClient
from .models import NormalizedPost, SavedPostsPage
from .normalizer import normalize_mirror_post
from .repository import TokenRepository

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], PlatformClient]


def fetch_single_post(mirror: MirrorClient, author: str, post_id: str) -> NormalizedPost:
    """Fetch one public post through the mirror and normalize it."""
    payload = mirror.fetch_post(author, post_id)
    return normalize_mirror_post(payload)


def platform_client_for(
    tokens: TokenRepository,
    client_factory: ClientFactory = PlatformClient,
    now: float | None = None,
) -> PlatformClient:
    """Build a platform client from the user's stored token.

    Raises AuthError when the user never connected or the token expired.
    Refreshing tokens is the connect flow's job, not ours.
    """
    token = tokens.get()
    if token is None:
        raise AuthError("No platform account connected. Run 'bookmark-hub connect' first.")
    now = time.time() if now is None else now
    if token.expires_at is not None and token.expires_at <= now:
        raise AuthError("Stored access token has expired. Reconnect the account.")
    return client_factory(token.access_token, tokens.user_id)


def fetch_saved_posts_page(
    tokens: TokenRepository,
    cursor: str | None = None,
    client_factory: ClientFactory = PlatformClient,
    page_size: int = 100,
) -> SavedPostsPage:
    """Fetch one page of the user's saved posts using their stored token."""
    with platform_client_for(tokens, client_factory) as client:
        return client.fetch_saved_posts_page(cursor=cursor, page_size=page_size)
