"""Tests for the persistence gate."""

import json
from unittest.mock import patch

import httpx
import pytest
import respx

from bookmark_hub.errors import ValidationError
from bookmark_hub.fetcher import fetch_single_post
from bookmark_hub.ingest import add_post_by_url, ingest
from bookmark_hub.mirror import MirrorClient
from bookmark_hub.models import MediaItem
from bookmark_hub.normalizer import normalize_mirror_post

PHOTO_POST_URL = "https://api.fxtwitter.com/photoguy/status/1790000000000000001"


class TestIngest:
    def test_first_ingest_creates(self, alice_repo, make_post):
        result = ingest(alice_repo, make_post("1"), "manual")
        assert result.created
        assert not result.duplicate
        assert alice_repo.get("1").source == "manual"

    def test_idempotent(self, session, alice_repo, make_post):
        first = ingest(alice_repo, make_post("1", text="first"), "sync")
        second = ingest(alice_repo, make_post("1", text="second"), "manual")
        session.commit()

        assert first.created
        assert second.duplicate
        assert second.duplicate_of == "1"
        assert alice_repo.count() == 1
        # the original row is untouched
        assert alice_repo.get("1").text == "first"
        assert alice_repo.get("1").source == "sync"

    def test_duplicate_result_dict(self, alice_repo, make_post):
        ingest(alice_repo, make_post("1"), "sync")
        result = ingest(alice_repo, make_post("1"), "sync")
        assert result.to_dict() == {
            "success": False,
            "isDuplicate": True,
            "bookmark": {"id": "1", "category": "tweet"},
            "duplicateOf": "1",
        }

    def test_cross_user_independence(self, session, alice_repo, bob_repo, make_post):
        assert ingest(alice_repo, make_post("1"), "sync").created
        assert ingest(bob_repo, make_post("1"), "sync").created
        session.commit()

        alice_repo.add_tag("1", "mine")
        alice_repo.mark_read("1")
        alice_repo.delete("1")
        session.commit()

        assert not alice_repo.exists("1")
        assert bob_repo.exists("1")
        assert bob_repo.tags_for("1") == []
        assert not bob_repo.is_read("1")

    def test_photo_scenario(self, session, alice_repo, mirror_photo_payload):
        post = normalize_mirror_post(mirror_photo_payload)
        result = ingest(alice_repo, post, "manual")
        session.commit()

        assert result.category == "photo"
        assert alice_repo.get(post.post_id).category == "photo"
        media = alice_repo.media_for(post.post_id)
        assert len(media) == 1
        assert media[0].media_type == "photo"
        assert media[0].id == "1790000000000000001_photo_0"

    def test_links_stored(self, session, alice_repo, mirror_video_article_payload):
        post = normalize_mirror_post(mirror_video_article_payload)
        ingest(alice_repo, post, "manual")
        session.commit()

        links = alice_repo.links_for(post.post_id)
        assert [link.link_type for link in links] == ["article"]
        assert json.loads(links[0].content_json)["blocks"][0]["text"] == "Introduction"

    def test_quote_round_trip(self, session, alice_repo, mirror_quote_payload):
        post = normalize_mirror_post(mirror_quote_payload)
        result = ingest(alice_repo, post, "manual")
        session.commit()

        assert result.quoted_created
        parent = alice_repo.get(post.post_id)
        assert parent.is_quote
        assert parent.quoted_tweet_id == "1780000000000000009"

        quoted = alice_repo.get(parent.quoted_tweet_id)
        assert quoted is not None
        assert quoted.source == "quoted"
        assert quoted.category == "photo"
        assert json.loads(parent.quote_context)["author"] == "original"

    def test_existing_quoted_row_preserved(self, session, alice_repo, make_post,
                                           mirror_quote_payload):
        ingest(alice_repo, make_post("1780000000000000009", author="original", text="old"), "sync")
        result = ingest(alice_repo, normalize_mirror_post(mirror_quote_payload), "manual")
        session.commit()

        assert result.created
        assert result.quoted_created is False
        quoted = alice_repo.get("1780000000000000009")
        assert quoted.text == "old"
        assert quoted.source == "sync"

    def test_tag_applied_after_insert(self, alice_repo, make_post):
        ingest(alice_repo, make_post("1"), "manual", tag=" Reading ")
        assert alice_repo.tags_for("1") == ["reading"]

    def test_duplicate_does_not_tag(self, alice_repo, make_post):
        ingest(alice_repo, make_post("1"), "manual")
        ingest(alice_repo, make_post("1"), "manual", tag="later")
        assert alice_repo.tags_for("1") == []

    def test_invalid_tag_writes_nothing(self, alice_repo, make_post):
        with pytest.raises(ValidationError):
            ingest(alice_repo, make_post("1"), "manual", tag="waytoolongtag")
        assert not alice_repo.exists("1")

    def test_unknown_source_rejected(self, alice_repo, make_post):
        with pytest.raises(ValidationError):
            ingest(alice_repo, make_post("1"), "scraped")

    def test_video_media_ids(self, alice_repo, make_post):
        post = make_post(
            "9",
            media=[
                MediaItem(media_type="video", url="https://video.twimg.com/a.mp4"),
                MediaItem(media_type="photo", url="https://pbs.twimg.com/b.jpg"),
            ],
        )
        ingest(alice_repo, post, "sync")
        assert [m.id for m in alice_repo.media_for("9")] == ["9_photo_1", "9_video_0"]
        assert alice_repo.get("9").category == "video"


class TestAddPostByUrl:
    @respx.mock
    def test_adds_post(self, alice_repo, mirror_photo_payload):
        respx.get(PHOTO_POST_URL).mock(
            return_value=httpx.Response(200, json=mirror_photo_payload)
        )

        with MirrorClient() as mirror:
            result = add_post_by_url(
                alice_repo,
                mirror,
                "https://x.com/photoguy/status/1790000000000000001",
                tag="pics",
            )

        assert result.created
        assert result.category == "photo"
        assert alice_repo.tags_for("1790000000000000001") == ["pics"]

    @respx.mock
    def test_duplicate_checked_before_fetch(self, alice_repo, make_post):
        route = respx.get(PHOTO_POST_URL)
        ingest(alice_repo, make_post("1790000000000000001", author="photoguy"), "sync")

        with MirrorClient() as mirror:
            result = add_post_by_url(
                alice_repo, mirror, "twitter.com/photoguy/status/1790000000000000001"
            )

        assert result.duplicate
        assert not route.called

    def test_invalid_url_rejected(self, alice_repo):
        with MirrorClient() as mirror:
            with pytest.raises(ValidationError):
                add_post_by_url(alice_repo, mirror, "https://example.com/nope")

    def test_sync_source_not_allowed(self, alice_repo):
        with MirrorClient() as mirror:
            with pytest.raises(ValidationError):
                add_post_by_url(
                    alice_repo, mirror, "https://x.com/a/status/1", source="sync"
                )

    @respx.mock
    def test_fetches_through_single_post_fetcher(self, alice_repo, mirror_photo_payload):
        respx.get(PHOTO_POST_URL).mock(
            return_value=httpx.Response(200, json=mirror_photo_payload)
        )
        with MirrorClient() as mirror, patch(
            "bookmark_hub.ingest.fetch_single_post", wraps=fetch_single_post
        ) as fetch:
            add_post_by_url(alice_repo, mirror, "x.com/photoguy/status/1790000000000000001")

        fetch.assert_called_once_with(mirror, "photoguy", "1790000000000000001")
