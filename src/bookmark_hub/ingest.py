"""The persistence gate.

Every write of a post goes through :func:`ingest`. For a given user and
post id at most one bookmark row ever exists; a repeat is reported as a
duplicate and writes nothing. The quoted post, if any, goes through the
same gate with source ``quoted``, and the optional tag is applied last.
"""

import logging
from datetime import datetime
from typing import Optional

from .errors import ValidationError
from .fetcher import fetch_single_post
from .identifiers import normalize_tag, parse_post_url
from .mirror import MirrorClient
from .models import SOURCES, IngestResult, NormalizedPost
from .repository import BookmarkRepository

logger = logging.getLogger(__name__)

MANUAL_SOURCES = ("manual", "url_prefix")


def ingest(
    repo: BookmarkRepository,
    post: NormalizedPost,
    source: str,
    tag: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IngestResult:
    """Persist a normalized post for the repository's user."""
    if source not in SOURCES:
        raise ValidationError(f"Unknown source: {source}")
    tag = normalize_tag(tag) if tag else None

    if repo.exists(post.post_id):
        logger.debug("Post %s already saved by %s", post.post_id, repo.user_id)
        return IngestResult(
            bookmark_id=post.post_id,
            created=False,
            category=post.category,
            duplicate_of=post.post_id,
        )

    created = repo.insert_post(post, source, now=now)
    if not created:
        # lost a race with a concurrent writer
        return IngestResult(
            bookmark_id=post.post_id,
            created=False,
            category=post.category,
            duplicate_of=post.post_id,
        )

    quoted_created = None
    if post.quoted is not None:
        if repo.exists(post.quoted.post_id):
            quoted_created = False
        else:
            quoted_created = repo.insert_post(post.quoted, "quoted", now=now)

    if tag:
        repo.add_tag(post.post_id, tag)

    logger.info("Saved post %s by @%s (%s)", post.post_id, post.author.username, post.category)
    return IngestResult(
        bookmark_id=post.post_id,
        created=True,
        category=post.category,
        quoted_created=quoted_created,
    )


def add_post_by_url(
    repo: BookmarkRepository,
    mirror: MirrorClient,
    url: str,
    source: str = "manual",
    tag: Optional[str] = None,
) -> IngestResult:
    """Save a post from its URL.

    The duplicate check runs before the mirror is contacted, so re-adding a
    saved post costs no network call.
    """
    if source not in MANUAL_SOURCES:
        raise ValidationError(f"Invalid source for a manual add: {source}")
    tag = normalize_tag(tag) if tag else None
    author, post_id = parse_post_url(url)

    existing = repo.get(post_id)
    if existing is not None:
        return IngestResult(
            bookmark_id=post_id,
            created=False,
            category=existing.category,
            duplicate_of=post_id,
        )

    post = fetch_single_post(mirror, author, post_id)
    return ingest(repo, post, source, tag=tag)
