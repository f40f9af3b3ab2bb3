"""Normalize fetched post payloads into NormalizedPost objects.

Two wire shapes are understood:

- the mirror API shape, ``{"tweet": {...}}``, with media, article, external
  card and an embedded ``quote`` object;
- the platform API shape, one post dict from ``PlatformClient`` with its
  ``includes`` already joined under ``_includes``.

The raw payload stays on ``NormalizedPost.raw`` for debugging only.
Nothing past this module reads wire fields.
"""

import json
import logging
from datetime import datetime

from .article import article_blocks_to_markdown, build_media_entities, normalize_entity_map
from .models import (
    ArticleContent,
    Author,
    Category,
    LinkItem,
    MediaItem,
    NormalizedPost,
    QuoteContext,
)
from .urls import determine_link_type, expand_urls, extract_domain, is_self_link

logger = logging.getLogger(__name__)

# Platform date format: "Thu May 14 18:01:35 +0000 2020"
PLATFORM_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"

MEDIA_TYPES = ("photo", "video", "animated_gif")


def determine_category(has_video: bool, has_photo: bool, has_article: bool) -> Category:
    """First match wins: video > photo > article > tweet."""
    if has_video:
        return "video"
    if has_photo:
        return "photo"
    if has_article:
        return "article"
    return "tweet"


def categorize(post: NormalizedPost) -> Category:
    return determine_category(post.has_video, post.has_photo, post.article is not None)


def post_url(author: str, post_id: str) -> str:
    return f"https://x.com/{author}/status/{post_id}"


def _normalize_timestamp(value: str | None) -> str | None:
    """Convert the platform's legacy date format to ISO 8601."""
    if not value:
        return None
    try:
        return datetime.strptime(value, PLATFORM_DATE_FORMAT).isoformat()
    except ValueError:
        return value


# ── Mirror API shape ────────────────────────────────────────────


def normalize_mirror_post(payload: dict) -> NormalizedPost:
    """Normalize a mirror API response (``{"tweet": {...}}``)."""
    tweet = payload.get("tweet") if "tweet" in payload else payload
    if not tweet or not tweet.get("id"):
        raise ValueError("Mirror payload has no post")

    post = _normalize_mirror_tweet(tweet)
    post.raw = payload

    quote = tweet.get("quote")
    if quote and quote.get("id"):
        post.is_quote = True
        post.quoted_post_id = str(quote["id"])
        post.quote_context = _mirror_quote_context(quote)
        post.quoted = _normalize_mirror_tweet(quote)
        post.quoted.raw = quote

    return post


def _normalize_mirror_tweet(tweet: dict) -> NormalizedPost:
    post_id = str(tweet["id"])
    author_data = tweet.get("author") or {}
    username = author_data.get("screen_name") or "unknown"
    author = Author(
        username=username,
        name=author_data.get("name"),
        avatar_url=author_data.get("avatar_url"),
    )

    links = _mirror_links(tweet)
    external = _mirror_external_link(tweet.get("external"))
    if external:
        _merge_link(links, external)

    article = None
    if tweet.get("article"):
        article = _mirror_article(tweet["article"], username, post_id)
        links.append(_article_link(article))

    replying_to = tweet.get("replying_to")
    reply_context = None
    if replying_to:
        reply_context = json.dumps(
            {"author": replying_to, "tweetId": tweet.get("replying_to_status")}
        )

    post = NormalizedPost(
        post_id=post_id,
        author=author,
        text=expand_urls(tweet.get("text") or "", links),
        url=post_url(username, post_id),
        created_at=_normalize_timestamp(tweet.get("created_at")),
        media=_mirror_media(tweet.get("media")),
        links=links,
        article=article,
        is_reply=bool(replying_to),
        reply_to=replying_to,
        reply_context=reply_context,
    )
    post.category = categorize(post)
    return post


def _mirror_media(media: dict | None) -> list[MediaItem]:
    if not media:
        return []

    items: list[MediaItem] = []
    entries = media.get("all")
    if entries is None:
        entries = [{**p, "type": "photo"} for p in media.get("photos") or []]
        entries += [{**v, "type": "video"} for v in media.get("videos") or []]

    for m in entries:
        media_type = m.get("type") if m.get("type") in MEDIA_TYPES else "photo"
        duration = m.get("duration")
        items.append(
            MediaItem(
                media_type=media_type,
                url=m.get("url") or "",
                preview_url=m.get("thumbnail_url") or (m.get("url") if media_type == "photo" else None),
                width=m.get("width"),
                height=m.get("height"),
                duration_ms=int(duration * 1000) if duration else None,
                alt_text=m.get("altText") or m.get("alt_text"),
            )
        )
    return items


def _mirror_links(tweet: dict) -> list[LinkItem]:
    links: list[LinkItem] = []
    for u in tweet.get("urls") or []:
        expanded = u.get("expanded_url") or u.get("url")
        if not expanded or is_self_link(expanded):
            continue
        links.append(
            LinkItem(
                expanded_url=expanded,
                original_url=u.get("url"),
                domain=u.get("domain") or extract_domain(expanded),
                link_type=determine_link_type(expanded),
            )
        )
    return links


def _mirror_external_link(external: dict | None) -> LinkItem | None:
    if not external:
        return None
    url = external.get("expanded_url") or external.get("url")
    if not url:
        return None
    return LinkItem(
        expanded_url=url,
        original_url=external.get("url") if external.get("url") != url else None,
        domain=extract_domain(url),
        link_type="article",
        preview_title=external.get("title"),
        preview_description=external.get("description"),
        preview_image_url=external.get("thumbnail_url"),
    )


def _merge_link(links: list[LinkItem], card: LinkItem) -> None:
    """Attach card preview data to an existing link, or append the card."""
    for link in links:
        if link.expanded_url == card.expanded_url:
            link.preview_title = card.preview_title
            link.preview_description = card.preview_description
            link.preview_image_url = card.preview_image_url
            link.link_type = card.link_type or link.link_type
            link.content_json = card.content_json or link.content_json
            return
    links.append(card)


def _mirror_article(article: dict, author: str, post_id: str) -> ArticleContent:
    cover = (article.get("cover_media") or {}).get("media_info") or {}
    raw_content = article.get("content")

    content = None
    markdown = ""
    if raw_content:
        entity_map = normalize_entity_map(raw_content.get("entityMap"))
        media_entities = build_media_entities(article.get("media_entities"))
        blocks = raw_content.get("blocks") or []
        content = {
            "blocks": blocks,
            "entityMap": entity_map,
            "mediaEntities": media_entities,
        }
        markdown = article_blocks_to_markdown(blocks, entity_map, media_entities)

    return ArticleContent(
        title=article.get("title") or "",
        url=f"https://x.com/{author}/article/{post_id}",
        preview_text=article.get("preview_text"),
        cover_image_url=cover.get("original_img_url"),
        markdown=markdown,
        content=content,
    )


def _article_link(article: ArticleContent) -> LinkItem:
    return LinkItem(
        expanded_url=article.url,
        domain="x.com",
        link_type="article",
        preview_title=article.title,
        preview_description=article.preview_text,
        preview_image_url=article.cover_image_url,
        content_json=json.dumps(article.content) if article.content else None,
    )


def _mirror_quote_context(quote: dict) -> QuoteContext:
    author = quote.get("author") or {}
    username = author.get("screen_name") or "unknown"
    media = quote.get("media")
    article = quote.get("article")
    external = quote.get("external")
    return QuoteContext(
        tweet_id=str(quote["id"]),
        author=username,
        author_name=author.get("name"),
        author_profile_image_url=author.get("avatar_url"),
        text=quote.get("text") or "",
        media=(
            {"photos": media.get("photos"), "videos": media.get("videos")}
            if media
            else None
        ),
        article=(
            {
                "url": f"https://x.com/{username}/article/{quote['id']}",
                "title": article.get("title"),
                "description": article.get("preview_text"),
                "imageUrl": ((article.get("cover_media") or {}).get("media_info") or {}).get(
                    "original_img_url"
                ),
            }
            if article
            else None
        ),
        external=(
            {
                "url": external.get("expanded_url") or external.get("url"),
                "title": external.get("title"),
                "description": external.get("description"),
                "imageUrl": external.get("thumbnail_url"),
            }
            if external
            else None
        ),
        created_at=_normalize_timestamp(quote.get("created_at")),
    )


# ── Platform API shape ──────────────────────────────────────────


def normalize_platform_post(post: dict) -> NormalizedPost:
    """Normalize one saved post from the platform API."""
    post_id = post.get("id")
    if not post_id:
        raise ValueError("Platform post has no id")
    post_id = str(post_id)

    includes = post.get("_includes") or {}
    author = _platform_author(includes.get("author"))

    # Long posts are truncated in `text`; the full body lives in note_tweet
    note = post.get("note_tweet") or {}
    text = note.get("text") or post.get("text") or ""
    url_entities = ((note.get("entities") or {}).get("urls")
                    or (post.get("entities") or {}).get("urls") or [])

    links: list[LinkItem] = []
    media_short_urls: list[str] = []
    for u in url_entities:
        short = u.get("url")
        expanded = u.get("expanded_url") or short
        if u.get("media_key"):
            if short:
                media_short_urls.append(short)
            continue
        if not expanded or is_self_link(expanded):
            continue
        links.append(
            LinkItem(
                expanded_url=expanded,
                original_url=short,
                domain=extract_domain(expanded),
                link_type=determine_link_type(expanded),
            )
        )

    text = expand_urls(text, links)
    for short in media_short_urls:
        text = text.replace(short, "").strip()

    normalized = NormalizedPost(
        post_id=post_id,
        author=author,
        text=text,
        url=post_url(author.username, post_id),
        created_at=post.get("created_at"),
        media=[_platform_media(m) for m in includes.get("media") or []],
        links=links,
        raw={k: v for k, v in post.items() if k != "_includes"},
    )

    referenced = includes.get("referenced") or {}
    for ref in post.get("referenced_tweets") or []:
        ref_type = ref.get("type")
        ref_id = str(ref.get("id"))
        ref_post = referenced.get(ref_id)
        ref_author = _platform_author((ref_post or {}).get("_includes", {}).get("author"))

        if ref_type == "replied_to":
            normalized.is_reply = True
            normalized.reply_to = ref_author.username if ref_post else None
            normalized.reply_context = json.dumps(
                {"tweetId": ref_id, "author": normalized.reply_to}
            )
        elif ref_type == "quoted":
            normalized.is_quote = True
            normalized.quoted_post_id = ref_id
            if ref_post:
                normalized.quote_context = QuoteContext(
                    tweet_id=ref_id,
                    author=ref_author.username,
                    author_name=ref_author.name,
                    author_profile_image_url=ref_author.avatar_url,
                    text=_full_text(ref_post),
                    created_at=ref_post.get("created_at"),
                )
                normalized.quoted = NormalizedPost(
                    post_id=ref_id,
                    author=ref_author,
                    text=_full_text(ref_post),
                    url=post_url(ref_author.username, ref_id),
                    created_at=ref_post.get("created_at"),
                    raw={k: v for k, v in ref_post.items() if k != "_includes"},
                )
        elif ref_type == "retweeted":
            normalized.is_retweet = True
            normalized.retweet_context = json.dumps(
                {
                    "tweetId": ref_id,
                    "author": ref_author.username,
                    "authorName": ref_author.name,
                    "authorProfileImageUrl": ref_author.avatar_url,
                    "text": _full_text(ref_post) if ref_post else None,
                }
            )

    normalized.category = categorize(normalized)
    return normalized


def _full_text(post: dict) -> str:
    return (post.get("note_tweet") or {}).get("text") or post.get("text") or ""


def _platform_author(user: dict | None) -> Author:
    if not user or not user.get("username"):
        return Author(username="unknown")
    return Author(
        username=user["username"],
        name=user.get("name"),
        avatar_url=user.get("profile_image_url"),
    )


def _platform_media(m: dict) -> MediaItem:
    media_type = m.get("type") if m.get("type") in MEDIA_TYPES else "photo"
    return MediaItem(
        media_type=media_type,
        url=m.get("url") or m.get("preview_image_url") or "",
        preview_url=m.get("preview_image_url"),
        width=m.get("width"),
        height=m.get("height"),
        duration_ms=m.get("duration_ms"),
        alt_text=m.get("alt_text"),
    )


# ── Enrichment ──────────────────────────────────────────────────


def merge_enrichment(post: NormalizedPost, mirror_post: NormalizedPost) -> NormalizedPost:
    """Fill gaps in a platform-normalized post from its mirror copy.

    The platform's text is kept: it is the untruncated body. Display name,
    avatar, article, external-card previews, media (only when the platform
    had none) and the quoted post come from the mirror.
    """
    if post.author.username == "unknown":
        post.author.username = mirror_post.author.username
        post.url = post_url(mirror_post.author.username, post.post_id)
    post.author.name = mirror_post.author.name or post.author.name
    post.author.avatar_url = mirror_post.author.avatar_url or post.author.avatar_url

    if not post.media and mirror_post.media:
        post.media = mirror_post.media

    if mirror_post.article and not post.article:
        post.article = mirror_post.article

    for link in mirror_post.links:
        if link.preview_title or link.link_type == "article":
            _merge_link(post.links, link)

    if mirror_post.quoted:
        post.is_quote = True
        post.quoted_post_id = mirror_post.quoted_post_id
        post.quote_context = mirror_post.quote_context
        post.quoted = mirror_post.quoted

    post.category = categorize(post)
    logger.debug("post %s: enriched from mirror (category=%s)", post.post_id, post.category)
    return post

