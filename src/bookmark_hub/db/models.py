"""SQLAlchemy ORM models.

Every user-visible row carries ``user_id`` in its primary key or as a
mandatory column. The same external post id can exist once per user.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Bookmark(Base):
    """A user's saved copy of an external post."""

    __tablename__ = "bookmarks"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # post id
    author: Mapped[str] = mapped_column(String(64), nullable=False)
    author_name: Mapped[Optional[str]] = mapped_column(String(200))
    author_profile_image_url: Mapped[Optional[str]] = mapped_column(Text)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tweet_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[Optional[str]] = mapped_column(String(40))
    processed_at: Mapped[str] = mapped_column(String(40), nullable=False)
    category: Mapped[str] = mapped_column(String(16), default="tweet")

    is_reply: Mapped[bool] = mapped_column(Boolean, default=False)
    reply_context: Mapped[Optional[str]] = mapped_column(Text)  # JSON
    is_quote: Mapped[bool] = mapped_column(Boolean, default=False)
    quote_context: Mapped[Optional[str]] = mapped_column(Text)  # JSON
    quoted_tweet_id: Mapped[Optional[str]] = mapped_column(String(32))
    is_retweet: Mapped[bool] = mapped_column(Boolean, default=False)
    retweet_context: Mapped[Optional[str]] = mapped_column(Text)  # JSON

    source: Mapped[str] = mapped_column(String(16), default="sync")
    raw_json: Mapped[Optional[str]] = mapped_column(Text)


class BookmarkMedia(Base):
    __tablename__ = "bookmark_media"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "bookmark_id"],
            ["bookmarks.user_id", "bookmarks.id"],
            ondelete="CASCADE",
        ),
        Index("ix_bookmark_media_bookmark", "user_id", "bookmark_id"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # {post_id}_{type}_{index}
    bookmark_id: Mapped[str] = mapped_column(String(32), nullable=False)
    media_type: Mapped[str] = mapped_column(String(16), nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    preview_url: Mapped[Optional[str]] = mapped_column(Text)
    local_path: Mapped[Optional[str]] = mapped_column(Text)
    width: Mapped[Optional[int]] = mapped_column(Integer)
    height: Mapped[Optional[int]] = mapped_column(Integer)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    alt_text: Mapped[Optional[str]] = mapped_column(Text)


class BookmarkLink(Base):
    __tablename__ = "bookmark_links"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "bookmark_id"],
            ["bookmarks.user_id", "bookmarks.id"],
            ondelete="CASCADE",
        ),
        Index("ix_bookmark_links_bookmark", "user_id", "bookmark_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    bookmark_id: Mapped[str] = mapped_column(String(32), nullable=False)
    original_url: Mapped[Optional[str]] = mapped_column(Text)
    expanded_url: Mapped[str] = mapped_column(Text, nullable=False)
    link_type: Mapped[Optional[str]] = mapped_column(String(16))
    domain: Mapped[Optional[str]] = mapped_column(String(255))
    content_json: Mapped[Optional[str]] = mapped_column(Text)
    preview_title: Mapped[Optional[str]] = mapped_column(Text)
    preview_description: Mapped[Optional[str]] = mapped_column(Text)
    preview_image_url: Mapped[Optional[str]] = mapped_column(Text)


class BookmarkTag(Base):
    __tablename__ = "bookmark_tags"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "bookmark_id"],
            ["bookmarks.user_id", "bookmarks.id"],
            ondelete="CASCADE",
        ),
        Index("ix_bookmark_tags_tag", "user_id", "tag"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    bookmark_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    tag: Mapped[str] = mapped_column(String(10), primary_key=True)


class ReadStatus(Base):
    """Presence of a row means read; absence means unread."""

    __tablename__ = "read_status"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id", "bookmark_id"],
            ["bookmarks.user_id", "bookmarks.id"],
            ondelete="CASCADE",
        ),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    bookmark_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    read_at: Mapped[str] = mapped_column(String(40), nullable=False, default=utcnow_iso)


class SyncLog(Base):
    __tablename__ = "sync_logs"
    __table_args__ = (Index("ix_sync_logs_user_status", "user_id", "status"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    started_at: Mapped[str] = mapped_column(String(40), nullable=False)
    completed_at: Mapped[Optional[str]] = mapped_column(String(40))
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # running, completed, failed
    total_fetched: Mapped[int] = mapped_column(Integer, default=0)
    new_bookmarks: Mapped[int] = mapped_column(Integer, default=0)
    duplicates_skipped: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    trigger_type: Mapped[Optional[str]] = mapped_column(String(16))  # manual, scheduled


class OAuthToken(Base):
    """Tokens written by the connect flow; read by the sync fetcher."""

    __tablename__ = "oauth_tokens"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[Optional[str]] = mapped_column(String(64))
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    expires_at: Mapped[Optional[int]] = mapped_column(Integer)  # unix timestamp
    scopes: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[str] = mapped_column(String(40), default=utcnow_iso)


class TagShare(Base):
    """A tag collection published under a share code."""

    __tablename__ = "tag_shares"
    __table_args__ = (UniqueConstraint("user_id", "tag", name="uq_tag_shares_user_tag"),)

    share_code: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tag: Mapped[str] = mapped_column(String(10), nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[str] = mapped_column(String(40), default=utcnow_iso)
