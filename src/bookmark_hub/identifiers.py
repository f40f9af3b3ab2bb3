"""Validation of handles, post ids, post URLs and tags.

All checks here run before any network or database call.
"""

import re

from .errors import ValidationError

HANDLE_RE = re.compile(r"[A-Za-z0-9_]{1,15}")
POST_ID_RE = re.compile(r"[0-9]+")
POST_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.|mobile\.)?(?:twitter|x|vxtwitter|fxtwitter)\.com"
    r"/([^/?#]+)/status/(\d+)",
    re.IGNORECASE,
)

MAX_TAG_LENGTH = 10


def validate_handle(author: str) -> str:
    if not isinstance(author, str) or not HANDLE_RE.fullmatch(author):
        raise ValidationError(f"Invalid author handle: {author!r}")
    return author


def validate_post_id(post_id: str) -> str:
    if not isinstance(post_id, str) or not POST_ID_RE.fullmatch(post_id):
        raise ValidationError(f"Invalid post id: {post_id!r}")
    return post_id


def parse_post_url(url: str) -> tuple[str, str]:
    """Extract (author, post_id) from a post URL.

    Supports twitter.com, x.com, mobile.twitter.com, vxtwitter.com and
    fxtwitter.com links, with or without scheme.
    """
    if not url:
        raise ValidationError("URL is required")
    match = POST_URL_RE.search(url.strip())
    if not match:
        raise ValidationError(
            "Invalid post URL. Supported formats: "
            "twitter.com/user/status/123, x.com/user/status/123"
        )
    author, post_id = match.group(1), match.group(2)
    return validate_handle(author), validate_post_id(post_id)


def normalize_tag(tag: str) -> str:
    """Lower-case and strip a tag; reject empty or over-long values."""
    if not isinstance(tag, str):
        raise ValidationError("Tag is required")
    clean = tag.strip().lower()
    if not clean:
        raise ValidationError("Tag cannot be empty")
    if len(clean) > MAX_TAG_LENGTH:
        raise ValidationError(f"Tag must be {MAX_TAG_LENGTH} characters or less")
    return clean
