"""Shared test fixtures."""

import json
from pathlib import Path

import pytest

from bookmark_hub.db import create_db_engine, create_session_factory, init_db
from bookmark_hub.models import Author, MediaItem, NormalizedPost, UserContext
from bookmark_hub.normalizer import categorize, post_url
from bookmark_hub.repository import BookmarkRepository

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> dict:
    with open(FIXTURES_DIR / name) as f:
        return json.load(f)


@pytest.fixture
def mirror_photo_payload() -> dict:
    return load_fixture("mirror_photo_post.json")


@pytest.fixture
def mirror_video_article_payload() -> dict:
    return load_fixture("mirror_video_article_post.json")


@pytest.fixture
def mirror_quote_payload() -> dict:
    return load_fixture("mirror_quote_post.json")


@pytest.fixture
def platform_page_payload() -> dict:
    return load_fixture("platform_bookmarks_page.json")


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(tmp_path / "test.db")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def alice() -> UserContext:
    return UserContext("alice")


@pytest.fixture
def bob() -> UserContext:
    return UserContext("bob")


@pytest.fixture
def alice_repo(session, alice) -> BookmarkRepository:
    return BookmarkRepository(session, alice)


@pytest.fixture
def bob_repo(session, bob) -> BookmarkRepository:
    return BookmarkRepository(session, bob)


@pytest.fixture
def make_post():
    """Factory for simple NormalizedPost objects."""

    def _make(post_id: str = "1000", author: str = "someone", text: str = "hello",
              media: list[MediaItem] | None = None) -> NormalizedPost:
        post = NormalizedPost(
            post_id=post_id,
            author=Author(username=author, name=author.title()),
            text=text,
            url=post_url(author, post_id),
            media=media or [],
        )
        post.category = categorize(post)
        return post

    return _make
