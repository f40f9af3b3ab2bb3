"""Tests for payload normalization."""

import json

import pytest

from bookmark_hub.client import PlatformClient
from bookmark_hub.normalizer import (
    determine_category,
    merge_enrichment,
    normalize_mirror_post,
    normalize_platform_post,
)


@pytest.fixture
def platform_posts(platform_page_payload) -> list[dict]:
    return PlatformClient._parse_page(platform_page_payload).posts


class TestDetermineCategory:
    @pytest.mark.parametrize(
        "has_video,has_photo,has_article,expected",
        [
            (True, True, True, "video"),
            (True, False, False, "video"),
            (False, True, True, "photo"),
            (False, False, True, "article"),
            (False, False, False, "tweet"),
        ],
    )
    def test_first_match_wins(self, has_video, has_photo, has_article, expected):
        assert determine_category(has_video, has_photo, has_article) == expected


class TestNormalizeMirrorPost:
    def test_photo_post(self, mirror_photo_payload):
        post = normalize_mirror_post(mirror_photo_payload)
        assert post.post_id == "1790000000000000001"
        assert post.author.username == "photoguy"
        assert post.author.name == "Photo Guy"
        assert post.url == "https://x.com/photoguy/status/1790000000000000001"
        assert post.created_at == "2024-05-14T18:01:35+00:00"
        assert post.category == "photo"
        assert len(post.media) == 1
        assert post.media[0].media_type == "photo"
        assert post.media[0].alt_text == "A sunset over the bay"

    def test_short_links_expanded_only_when_known(self, mirror_photo_payload):
        post = normalize_mirror_post(mirror_photo_payload)
        assert "https://example.com/blog/sunset" in post.text
        assert "https://t.co/abc123" not in post.text
        # no entity for this one: left exactly as-is
        assert "https://t.co/img999" in post.text
        assert [link.domain for link in post.links] == ["example.com"]

    def test_video_beats_article(self, mirror_video_article_payload):
        post = normalize_mirror_post(mirror_video_article_payload)
        assert post.category == "video"
        assert post.article is not None
        assert post.media[0].duration_ms == 12500
        assert post.media[0].preview_url.endswith("clip.jpg")

    def test_article_flattened_to_markdown(self, mirror_video_article_payload):
        article = normalize_mirror_post(mirror_video_article_payload).article
        assert article.title == "On Writing"
        assert article.url == "https://x.com/writer/article/1790000000000000002"
        assert article.cover_image_url == "https://pbs.twimg.com/media/cover.jpg"
        assert article.markdown == (
            "# Introduction\n\n"
            "**Write** every day.\n\n"
            "![](https://pbs.twimg.com/media/inline.jpg)\n\n"
            "Read more [here](https://example.com/more)"
        )
        # list-shaped entity map is stored as a dict
        assert set(article.content["entityMap"]) == {"0", "1"}

    def test_article_link_carries_content(self, mirror_video_article_payload):
        post = normalize_mirror_post(mirror_video_article_payload)
        article_links = [link for link in post.links if link.link_type == "article"]
        assert len(article_links) == 1
        assert json.loads(article_links[0].content_json)["mediaEntities"]["9001"]["width"] == 800

    def test_quote_expanded(self, mirror_quote_payload):
        post = normalize_mirror_post(mirror_quote_payload)
        assert post.category == "tweet"
        assert post.is_quote
        assert post.quoted_post_id == "1780000000000000009"
        assert post.quote_context.author == "original"
        assert post.quote_context.media["photos"][0]["url"].endswith("chart.png")

        quoted = post.quoted
        assert quoted.post_id == "1780000000000000009"
        assert quoted.author.username == "original"
        assert quoted.category == "photo"
        assert quoted.media[0].url == "https://pbs.twimg.com/media/chart.png"

    def test_quote_context_json_uses_camel_case(self, mirror_quote_payload):
        data = json.loads(normalize_mirror_post(mirror_quote_payload).quote_context.to_json())
        assert data["tweetId"] == "1780000000000000009"
        assert data["authorName"] == "Original Author"

    def test_missing_post_raises(self):
        with pytest.raises(ValueError):
            normalize_mirror_post({"code": 404, "message": "NOT_FOUND", "tweet": None})


class TestNormalizePlatformPost:
    def test_long_text_from_note(self, platform_posts):
        post = normalize_platform_post(platform_posts[0])
        assert post.text.startswith("A long thread opener that gets cut off by the platform")
        assert "https://example.org/paper" in post.text
        assert "t.co" not in post.text
        assert post.author.username == "longposter"
        assert post.category == "tweet"

    def test_media_short_link_removed(self, platform_posts):
        post = normalize_platform_post(platform_posts[1])
        assert post.text == "Look at this"
        assert post.category == "photo"
        assert post.media[0].width == 640

    def test_quoted_post_from_includes(self, platform_posts):
        post = normalize_platform_post(platform_posts[2])
        assert post.is_quote
        assert post.quoted_post_id == "1700000000000000004"
        assert post.quote_context.author == "source"
        assert post.quoted.text == "The quoted original"
        assert post.quoted.url == "https://x.com/source/status/1700000000000000004"

    def test_raw_excludes_joined_includes(self, platform_posts):
        post = normalize_platform_post(platform_posts[0])
        assert "_includes" not in post.raw
        assert post.raw["id"] == "1800000000000000001"

    def test_missing_author_falls_back(self):
        post = normalize_platform_post({"id": "5", "text": "orphan"})
        assert post.author.username == "unknown"

    def test_missing_id_raises(self):
        with pytest.raises(ValueError):
            normalize_platform_post({"text": "no id"})


class TestMergeEnrichment:
    def test_keeps_platform_text_and_fills_gaps(
        self, platform_posts, mirror_video_article_payload
    ):
        post = normalize_platform_post(platform_posts[0])
        text = post.text
        mirror = normalize_mirror_post(mirror_video_article_payload)

        merged = merge_enrichment(post, mirror)

        assert merged.text == text
        assert merged.author.username == "longposter"
        assert merged.author.avatar_url == "https://pbs.twimg.com/profile_images/77/avatar.jpg"
        assert merged.article is not None
        # media taken from the mirror because the platform had none
        assert merged.category == "video"

    def test_platform_media_not_replaced(self, platform_posts, mirror_video_article_payload):
        post = normalize_platform_post(platform_posts[1])
        merged = merge_enrichment(post, normalize_mirror_post(mirror_video_article_payload))
        assert [m.media_type for m in merged.media] == ["photo"]
        assert merged.category == "photo"

    def test_unknown_author_resolved(self, mirror_quote_payload):
        post = normalize_platform_post({"id": "1790000000000000003", "text": "x"})
        merged = merge_enrichment(post, normalize_mirror_post(mirror_quote_payload))
        assert merged.author.username == "commenter"
        assert merged.url == "https://x.com/commenter/status/1790000000000000003"
        assert merged.quoted.post_id == "1780000000000000009"
