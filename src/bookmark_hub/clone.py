"""Copying one user's tag collection into another user's account."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .errors import LimitExceededError, NotFoundError, ValidationError
from .identifiers import normalize_tag
from .models import CloneSummary, UserContext
from .repository import BookmarkRepository, TagShareRepository, find_share, utcnow

logger = logging.getLogger(__name__)

MAX_CLONE_SIZE = 100


def clone_tag_collection(
    session: Session,
    source_user_id: str,
    tag: str,
    target_user_id: str,
    now: Optional[datetime] = None,
) -> CloneSummary:
    """Copy every bookmark the source user filed under ``tag``.

    Bookmarks the target already owns are skipped and left untouched. The
    copies carry source ``cloned`` and the same tag. All writes happen in a
    single SAVEPOINT; an oversized collection is rejected before any write.
    """
    tag = normalize_tag(tag)
    source = BookmarkRepository(session, UserContext(source_user_id))
    target = BookmarkRepository(session, UserContext(target_user_id))

    ids = source.tagged_ids(tag)
    if len(ids) > MAX_CLONE_SIZE:
        raise LimitExceededError(
            f"Cannot clone more than {MAX_CLONE_SIZE} bookmarks at once",
            limit=MAX_CLONE_SIZE,
            requested=len(ids),
        )
    if not ids:
        return CloneSummary(cloned=0, skipped=0, total=0, tag=tag)

    owned = target.existing_ids(ids)
    now = now or utcnow()
    cloned_ids: list[str] = []

    with session.begin_nested():
        for post_id in ids:
            if post_id in owned:
                continue
            bookmark = source.get(post_id)
            if bookmark is None:
                continue
            if target.copy_from(
                bookmark,
                source.media_for(post_id),
                source.links_for(post_id),
                source="cloned",
                now=now,
            ):
                target.add_tag(post_id, tag)
                cloned_ids.append(post_id)

    logger.info(
        "Cloned %d of %d bookmarks tagged %r from %s to %s",
        len(cloned_ids), len(ids), tag, source_user_id, target_user_id,
    )
    return CloneSummary(
        cloned=len(cloned_ids),
        skipped=len(owned),
        total=len(ids),
        tag=tag,
        cloned_ids=cloned_ids,
    )


def share_tag(repo: BookmarkRepository, tag: str, public: bool = True) -> str:
    """Publish a tag collection and return its share code."""
    tag = normalize_tag(tag)
    if not repo.tagged_ids(tag):
        raise NotFoundError(f"No bookmarks tagged {tag!r}")
    share = TagShareRepository(repo.session, repo.user).create(tag, is_public=public)
    return share.share_code


def clone_shared_tag(session: Session, share_code: str, target_user_id: str) -> CloneSummary:
    """Clone the collection published under ``share_code``."""
    share = find_share(session, share_code)
    if share is None or not share.is_public:
        raise NotFoundError("Tag not found or not public")
    if share.user_id == target_user_id:
        raise ValidationError("Cannot clone your own collection")
    return clone_tag_collection(session, share.user_id, share.tag, target_user_id)
