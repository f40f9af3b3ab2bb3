"""Media URL resolution.

Stored media are served through the public mirror rather than downloaded:

    video / animated_gif  https://d.fxtwitter.com/{author}/status/{id}.mp4
    photo                 https://d.fixupx.com/{author}/status/{id}/photo/{n}

Photo indexes are 1-based. Direct video file URLs (for a chosen quality)
are looked up through the mirror API and cached for an hour.
"""

import logging
import threading
from typing import Optional
from urllib.parse import urlparse

from cachetools import TTLCache

from .errors import NotFoundError, UpstreamError, ValidationError
from .mirror import MirrorClient

logger = logging.getLogger(__name__)

VIDEO_HOST = "https://d.fxtwitter.com"
PHOTO_HOST = "https://d.fixupx.com"
EMBED_HOST = "https://fxtwitter.com"

QUALITIES = ("preview", "hd", "full")
ALLOWED_VIDEO_DOMAINS = ("video.twimg.com", "pbs.twimg.com", "abs.twimg.com")


def video_url(author: str, post_id: str) -> str:
    return f"{VIDEO_HOST}/{author}/status/{post_id}.mp4"


def photo_url(author: str, post_id: str, index: int = 1) -> str:
    return f"{PHOTO_HOST}/{author}/status/{post_id}/photo/{index}"


def embed_url(author: str, post_id: str) -> str:
    return f"{EMBED_HOST}/{author}/status/{post_id}"


def resolve_media_url(author: str, post_id: str, media_type: str, index: int = 1) -> str:
    if media_type in ("video", "animated_gif"):
        return video_url(author, post_id)
    return photo_url(author, post_id, index)


def thumbnail_url(
    author: str,
    post_id: str,
    media_type: str,
    index: int = 1,
    preview_url: Optional[str] = None,
) -> str:
    """Videos use their preview still when one is stored."""
    if media_type in ("video", "animated_gif") and preview_url:
        return preview_url
    return resolve_media_url(author, post_id, media_type, index)


def build_media_urls(author: str, post_id: str, media: list) -> list[dict]:
    """Display URLs for a bookmark's stored media rows, in stored order."""
    urls = []
    for index, item in enumerate(media, start=1):
        url = resolve_media_url(author, post_id, item.media_type, index)
        urls.append(
            {
                "id": item.id,
                "type": item.media_type,
                "url": url,
                "thumbnailUrl": thumbnail_url(
                    author, post_id, item.media_type, index, item.preview_url
                ),
                "downloadUrl": url,
            }
        )
    return urls


class ResolvedUrlCache:
    """Bounded, expiring cache of resolved video file URLs."""

    def __init__(self, maxsize: int = 1024, ttl: float = 3600):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def get(self, post_id: str, quality: str) -> Optional[str]:
        with self._lock:
            return self._cache.get((post_id, quality))

    def set(self, post_id: str, quality: str, url: str) -> None:
        with self._lock:
            self._cache[(post_id, quality)] = url

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


# Lives as long as the process
VIDEO_URL_CACHE = ResolvedUrlCache()


def is_allowed_video_url(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return any(host == d or host.endswith(f".{d}") for d in ALLOWED_VIDEO_DOMAINS)


def select_video_variant(video: dict, quality: str) -> Optional[str]:
    """Pick an mp4 variant by bitrate: lowest for preview, ~720p for hd, highest for full."""
    url = video.get("url")
    formats = [
        f for f in video.get("formats") or []
        if f.get("container") == "mp4" and f.get("bitrate") and f.get("url")
    ]
    if not formats:
        return url
    formats.sort(key=lambda f: f["bitrate"])
    if quality == "preview":
        return formats[0]["url"]
    if quality == "hd":
        for f in formats:
            if 1_500_000 <= f["bitrate"] <= 3_000_000:
                return f["url"]
        return formats[-2]["url"] if len(formats) > 1 else formats[-1]["url"]
    return formats[-1]["url"]


def resolve_video_url(
    mirror: MirrorClient,
    author: str,
    post_id: str,
    quality: str = "hd",
    cache: Optional[ResolvedUrlCache] = None,
) -> str:
    """Resolve the direct video file URL for a post at the given quality."""
    if quality not in QUALITIES:
        raise ValidationError(f"Unknown quality {quality!r}; expected one of {', '.join(QUALITIES)}")

    if cache is not None:
        cached = cache.get(post_id, quality)
        if cached:
            return cached

    payload = mirror.fetch_post(author, post_id)
    videos = ((payload.get("tweet") or {}).get("media") or {}).get("videos") or []
    if not videos:
        raise NotFoundError(f"No video found for post {post_id}")

    url = select_video_variant(videos[0], quality)
    if not url:
        raise NotFoundError(f"No video URL found for post {post_id}")
    if not is_allowed_video_url(url):
        logger.warning("Rejected video URL from untrusted host: %s", url)
        raise UpstreamError("Invalid video source")

    if cache is not None:
        cache.set(post_id, quality, url)
    return url
