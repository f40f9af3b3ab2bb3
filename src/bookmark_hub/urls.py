"""URL helpers: short-link expansion and link classification."""

import re
from urllib.parse import urlparse

from .models import LinkItem

SHORT_URL_RE = re.compile(r"https?://t\.co/[a-zA-Z0-9]+")

IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
MEDIA_EXT_RE = re.compile(r"\.(mp4|webm|mov)$", re.IGNORECASE)


def expand_urls(text: str, links: list[LinkItem]) -> str:
    """Replace shortened URLs in text with their expanded destinations.

    Only links whose ``original_url`` is known are substituted. Shortened
    URLs with no matching link stay in the text unchanged.
    """
    if not text:
        return ""
    mapping = {
        link.original_url: link.expanded_url
        for link in links
        if link.original_url and link.expanded_url
    }
    if not mapping:
        return text
    return SHORT_URL_RE.sub(lambda m: mapping.get(m.group(0), m.group(0)), text)


def extract_domain(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def determine_link_type(url: str) -> str:
    parsed = urlparse(url.lower())
    host = parsed.hostname or ""
    path = parsed.path
    if _host_matches(host, "twitter.com", "x.com"):
        return "tweet"
    if _host_matches(host, "youtube.com", "youtu.be"):
        return "video"
    if IMAGE_EXT_RE.search(path):
        return "image"
    if MEDIA_EXT_RE.search(path):
        return "media"
    return "link"


def _host_matches(host: str, *domains: str) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def is_self_link(url: str) -> bool:
    """Links to a post's own status page carry nothing worth storing."""
    return "/status/" in url


def shorten_url(url: str, max_length: int = 60) -> str:
    """Shorten a URL for display (domain + truncated path)."""
    parsed = urlparse(url)
    display = parsed.netloc + parsed.path
    if len(display) > max_length:
        display = display[: max_length - 3] + "..."
    return display
