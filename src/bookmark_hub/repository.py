"""User-scoped data access.

Repositories are bound to a :class:`UserContext` at construction and build
every statement through ``_scoped``, which adds the ``user_id`` filter.
Nothing here accepts a raw query, so a caller cannot forget the filter.
"""

import json
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session

from .db.models import (
    Bookmark,
    BookmarkLink,
    BookmarkMedia,
    BookmarkTag,
    OAuthToken,
    ReadStatus,
    SyncLog,
    TagShare,
)
from .models import NormalizedPost, UserContext

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def media_id(post_id: str, media_type: str, index: int) -> str:
    """Stable media row id: ``{post_id}_{type}_{index}`` (0-based)."""
    return f"{post_id}_{media_type}_{index}"


class UserScopedRepository:
    """Base class injecting the owning user into every statement."""

    def __init__(self, session: Session, user: UserContext):
        self.session = session
        self.user = user

    @property
    def user_id(self) -> str:
        return self.user.user_id

    def _scoped(self, model, *columns):
        stmt = select(*columns) if columns else select(model)
        return stmt.where(model.user_id == self.user_id)

    def _scoped_delete(self, model):
        return delete(model).where(model.user_id == self.user_id)


class BookmarkRepository(UserScopedRepository):
    """Bookmarks, their media, links, tags and read state for one user."""

    def get(self, post_id: str) -> Optional[Bookmark]:
        return self.session.scalars(
            self._scoped(Bookmark).where(Bookmark.id == post_id)
        ).first()

    def exists(self, post_id: str) -> bool:
        stmt = self._scoped(Bookmark, Bookmark.id).where(Bookmark.id == post_id)
        return self.session.execute(stmt).first() is not None

    def existing_ids(self, post_ids: Iterable[str]) -> set[str]:
        ids = list(post_ids)
        if not ids:
            return set()
        stmt = self._scoped(Bookmark, Bookmark.id).where(Bookmark.id.in_(ids))
        return set(self.session.scalars(stmt))

    def count(self) -> int:
        stmt = self._scoped(Bookmark, func.count())
        return self.session.scalar(stmt) or 0

    def insert_post(
        self,
        post: NormalizedPost,
        source: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Insert a post with its media and links inside a SAVEPOINT.

        Returns False without writing anything when the row already exists,
        including when a concurrent writer inserted it first.
        """
        processed_at = (now or utcnow()).isoformat()
        with self.session.begin_nested() as savepoint:
            result = self.session.execute(
                insert(Bookmark)
                .values(**self._bookmark_values(post, source, processed_at))
                .on_conflict_do_nothing()
            )
            if result.rowcount == 0:
                savepoint.rollback()
                return False

            media_rows = [
                {
                    "user_id": self.user_id,
                    "id": media_id(post.post_id, m.media_type, i),
                    "bookmark_id": post.post_id,
                    "media_type": m.media_type,
                    "original_url": m.url,
                    "preview_url": m.preview_url,
                    "width": m.width,
                    "height": m.height,
                    "duration_ms": m.duration_ms,
                    "alt_text": m.alt_text,
                }
                for i, m in enumerate(post.media)
            ]
            if media_rows:
                self.session.execute(
                    insert(BookmarkMedia).values(media_rows).on_conflict_do_nothing()
                )

            for link in post.links:
                self._add_link(post.post_id, link)
        logger.debug("Stored %s for user %s (%s)", post.post_id, self.user_id, source)
        return True

    def _bookmark_values(self, post: NormalizedPost, source: str, processed_at: str) -> dict:
        return {
            "user_id": self.user_id,
            "id": post.post_id,
            "author": post.author.username,
            "author_name": post.author.name,
            "author_profile_image_url": post.author.avatar_url,
            "text": post.text,
            "tweet_url": post.url,
            "created_at": post.created_at,
            "processed_at": processed_at,
            "category": post.category,
            "is_reply": post.is_reply,
            "reply_context": post.reply_context,
            "is_quote": post.is_quote,
            "quote_context": post.quote_context.to_json() if post.quote_context else None,
            "quoted_tweet_id": post.quoted_post_id,
            "is_retweet": post.is_retweet,
            "retweet_context": post.retweet_context,
            "source": source,
            "raw_json": json.dumps(post.raw, ensure_ascii=False) if post.raw else None,
        }

    def copy_from(self, bookmark: Bookmark, media: list[BookmarkMedia],
                  links: list[BookmarkLink], source: str, now: datetime) -> bool:
        """Copy another user's stored bookmark into this user's collection."""
        values = {
            c.name: getattr(bookmark, c.key)
            for c in Bookmark.__table__.columns
        }
        values.update(user_id=self.user_id, source=source, processed_at=now.isoformat())
        result = self.session.execute(
            insert(Bookmark).values(**values).on_conflict_do_nothing()
        )
        if result.rowcount == 0:
            return False
        if media:
            self.session.execute(
                insert(BookmarkMedia)
                .values([
                    {**{c.name: getattr(m, c.key) for c in BookmarkMedia.__table__.columns},
                     "user_id": self.user_id}
                    for m in media
                ])
                .on_conflict_do_nothing()
            )
        for link in links:
            self._add_link(bookmark.id, link)
        return True

    def _add_link(self, bookmark_id: str, link) -> None:
        # accepts a LinkItem or a stored BookmarkLink; the fields share names
        self.session.add(
            BookmarkLink(
                user_id=self.user_id,
                bookmark_id=bookmark_id,
                original_url=link.original_url,
                expanded_url=link.expanded_url,
                link_type=link.link_type,
                domain=link.domain,
                content_json=link.content_json,
                preview_title=link.preview_title,
                preview_description=link.preview_description,
                preview_image_url=link.preview_image_url,
            )
        )

    def list_bookmarks(
        self,
        tags: Optional[Iterable[str]] = None,
        search: Optional[str] = None,
        unread_only: bool = False,
        category: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Bookmark]:
        """List bookmarks newest first, optionally filtered.

        ``tags`` combine with AND: a bookmark must carry every one of them.
        ``search`` matches text, author, display name and link preview titles
        and descriptions.
        """
        stmt = self._scoped(Bookmark)
        wanted = sorted(set(tags or ()))
        if wanted:
            stmt = stmt.where(Bookmark.id.in_(
                self._scoped(BookmarkTag, BookmarkTag.bookmark_id)
                .where(BookmarkTag.tag.in_(wanted))
                .group_by(BookmarkTag.bookmark_id)
                .having(func.count(BookmarkTag.tag.distinct()) == len(wanted))
            ))
        if search:
            stmt = stmt.where(or_(
                Bookmark.text.contains(search, autoescape=True),
                Bookmark.author.contains(search, autoescape=True),
                Bookmark.author_name.contains(search, autoescape=True),
                Bookmark.id.in_(
                    self._scoped(BookmarkLink, BookmarkLink.bookmark_id).where(or_(
                        BookmarkLink.preview_title.contains(search, autoescape=True),
                        BookmarkLink.preview_description.contains(search, autoescape=True),
                    ))
                ),
            ))
        if unread_only:
            stmt = stmt.where(Bookmark.id.not_in(
                self._scoped(ReadStatus, ReadStatus.bookmark_id)
            ))
        if category:
            stmt = stmt.where(Bookmark.category == category)
        stmt = stmt.order_by(Bookmark.processed_at.desc(), Bookmark.id.desc())
        if limit:
            stmt = stmt.limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def media_for(self, post_id: str) -> list[BookmarkMedia]:
        stmt = (
            self._scoped(BookmarkMedia)
            .where(BookmarkMedia.bookmark_id == post_id)
            .order_by(BookmarkMedia.id)
        )
        return list(self.session.scalars(stmt))

    def links_for(self, post_id: str) -> list[BookmarkLink]:
        stmt = (
            self._scoped(BookmarkLink)
            .where(BookmarkLink.bookmark_id == post_id)
            .order_by(BookmarkLink.id)
        )
        return list(self.session.scalars(stmt))

    def tags_for(self, post_id: str) -> list[str]:
        stmt = (
            self._scoped(BookmarkTag, BookmarkTag.tag)
            .where(BookmarkTag.bookmark_id == post_id)
            .order_by(BookmarkTag.tag)
        )
        return list(self.session.scalars(stmt))

    def add_tag(self, post_id: str, tag: str) -> bool:
        """Tag a bookmark. Returns False if the tag was already present."""
        result = self.session.execute(
            insert(BookmarkTag)
            .values(user_id=self.user_id, bookmark_id=post_id, tag=tag)
            .on_conflict_do_nothing()
        )
        return result.rowcount > 0

    def remove_tag(self, post_id: str, tag: str) -> bool:
        result = self.session.execute(
            self._scoped_delete(BookmarkTag).where(
                BookmarkTag.bookmark_id == post_id, BookmarkTag.tag == tag
            )
        )
        return result.rowcount > 0

    def tagged_ids(self, tag: str) -> list[str]:
        stmt = (
            self._scoped(BookmarkTag, BookmarkTag.bookmark_id)
            .where(BookmarkTag.tag == tag)
            .order_by(BookmarkTag.bookmark_id)
        )
        return list(self.session.scalars(stmt))

    def all_tags(self) -> list[tuple[str, int]]:
        """All tags with their bookmark counts, most used first."""
        stmt = (
            self._scoped(BookmarkTag, BookmarkTag.tag, func.count())
            .group_by(BookmarkTag.tag)
            .order_by(func.count().desc(), BookmarkTag.tag)
        )
        return [(tag, n) for tag, n in self.session.execute(stmt)]

    def mark_read(self, post_id: str) -> bool:
        result = self.session.execute(
            insert(ReadStatus)
            .values(user_id=self.user_id, bookmark_id=post_id, read_at=utcnow().isoformat())
            .on_conflict_do_nothing()
        )
        return result.rowcount > 0

    def mark_unread(self, post_id: str) -> bool:
        result = self.session.execute(
            self._scoped_delete(ReadStatus).where(ReadStatus.bookmark_id == post_id)
        )
        return result.rowcount > 0

    def is_read(self, post_id: str) -> bool:
        stmt = self._scoped(ReadStatus, ReadStatus.bookmark_id).where(
            ReadStatus.bookmark_id == post_id
        )
        return self.session.execute(stmt).first() is not None

    def read_ids(self) -> set[str]:
        return set(self.session.scalars(self._scoped(ReadStatus, ReadStatus.bookmark_id)))

    def delete(self, post_id: str) -> bool:
        """Delete one bookmark and everything hanging off it."""
        for model in (BookmarkTag, ReadStatus, BookmarkLink, BookmarkMedia):
            self.session.execute(
                self._scoped_delete(model).where(model.bookmark_id == post_id)
            )
        result = self.session.execute(
            self._scoped_delete(Bookmark).where(Bookmark.id == post_id)
        )
        return result.rowcount > 0

    def clear(self) -> int:
        """Remove every bookmark the user owns. Returns the number removed."""
        for model in (BookmarkTag, ReadStatus, BookmarkLink, BookmarkMedia):
            self.session.execute(self._scoped_delete(model))
        result = self.session.execute(self._scoped_delete(Bookmark))
        logger.info("Cleared %d bookmarks for user %s", result.rowcount, self.user_id)
        return result.rowcount


class SyncLogRepository(UserScopedRepository):
    def start(self, trigger_type: str = "manual", now: Optional[datetime] = None) -> SyncLog:
        log = SyncLog(
            id=uuid.uuid4().hex,
            user_id=self.user_id,
            started_at=(now or utcnow()).isoformat(),
            status="running",
            trigger_type=trigger_type,
        )
        self.session.add(log)
        self.session.flush()
        return log

    def finish(
        self,
        log: SyncLog,
        status: str,
        total_fetched: int = 0,
        new_bookmarks: int = 0,
        duplicates_skipped: int = 0,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SyncLog:
        log.status = status
        log.completed_at = (now or utcnow()).isoformat()
        log.total_fetched = total_fetched
        log.new_bookmarks = new_bookmarks
        log.duplicates_skipped = duplicates_skipped
        log.error_message = error_message
        self.session.flush()
        return log

    def last_completed(self) -> Optional[SyncLog]:
        stmt = (
            self._scoped(SyncLog)
            .where(SyncLog.status == "completed")
            .order_by(SyncLog.completed_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def recent(self, limit: int = 20) -> list[SyncLog]:
        stmt = self._scoped(SyncLog).order_by(SyncLog.started_at.desc()).limit(limit)
        return list(self.session.scalars(stmt))


class TokenRepository(UserScopedRepository):
    def get(self) -> Optional[OAuthToken]:
        return self.session.scalars(self._scoped(OAuthToken)).first()

    def save(
        self,
        access_token: str,
        username: Optional[str] = None,
        refresh_token: Optional[str] = None,
        expires_at: Optional[int] = None,
        scopes: Optional[str] = None,
    ) -> OAuthToken:
        token = self.get()
        if token is None:
            token = OAuthToken(user_id=self.user_id, access_token=access_token)
            self.session.add(token)
        token.access_token = access_token
        token.username = username
        token.refresh_token = refresh_token
        token.expires_at = expires_at
        token.scopes = scopes
        token.updated_at = utcnow().isoformat()
        self.session.flush()
        return token


class TagShareRepository(UserScopedRepository):
    def for_tag(self, tag: str) -> Optional[TagShare]:
        return self.session.scalars(self._scoped(TagShare).where(TagShare.tag == tag)).first()

    def create(self, tag: str, is_public: bool = True) -> TagShare:
        share = self.for_tag(tag)
        if share is None:
            share = TagShare(
                share_code=secrets.token_urlsafe(8),
                user_id=self.user_id,
                tag=tag,
                created_at=utcnow().isoformat(),
            )
            self.session.add(share)
        share.is_public = is_public
        self.session.flush()
        return share


def find_share(session: Session, share_code: str) -> Optional[TagShare]:
    """Look up a share by its public code. Codes are global, not user-owned."""
    return session.get(TagShare, share_code)
