"""Database module for bookmark-hub."""

from .connection import create_db_engine, create_session_factory, init_db, session_scope
from .models import (
    Base,
    Bookmark,
    BookmarkLink,
    BookmarkMedia,
    BookmarkTag,
    OAuthToken,
    ReadStatus,
    SyncLog,
    TagShare,
)

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
    "Base",
    "Bookmark",
    "BookmarkLink",
    "BookmarkMedia",
    "BookmarkTag",
    "OAuthToken",
    "ReadStatus",
    "SyncLog",
    "TagShare",
]
