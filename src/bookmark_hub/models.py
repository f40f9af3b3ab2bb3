"""Data models shared by the fetchers, the normalizer and the store."""

import json
from dataclasses import asdict, dataclass, field
from typing import Literal

Category = Literal["tweet", "photo", "video", "article"]
MediaType = Literal["photo", "video", "animated_gif"]
Source = Literal["sync", "manual", "url_prefix", "quoted", "cloned"]
SyncEventType = Literal["start", "page", "processing", "complete", "error"]

SOURCES = ("sync", "manual", "url_prefix", "quoted", "cloned")


@dataclass(frozen=True)
class UserContext:
    """The authenticated user every store operation is scoped to."""

    user_id: str

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("UserContext requires a non-empty user_id")


@dataclass
class Author:
    username: str  # handle without @
    name: str | None = None
    avatar_url: str | None = None


@dataclass
class MediaItem:
    media_type: MediaType
    url: str  # original media URL
    preview_url: str | None = None
    width: int | None = None
    height: int | None = None
    duration_ms: int | None = None
    alt_text: str | None = None


@dataclass
class LinkItem:
    expanded_url: str
    original_url: str | None = None  # t.co short URL, when known
    domain: str | None = None
    link_type: str | None = None  # tweet, video, image, media, link, article
    preview_title: str | None = None
    preview_description: str | None = None
    preview_image_url: str | None = None
    content_json: str | None = None


@dataclass
class ArticleContent:
    title: str
    url: str
    preview_text: str | None = None
    cover_image_url: str | None = None
    markdown: str = ""
    content: dict | None = None  # blocks + entityMap + mediaEntities


@dataclass
class QuoteContext:
    """Snapshot of a quoted post, stored so it renders without a refetch."""

    tweet_id: str
    author: str
    author_name: str | None = None
    author_profile_image_url: str | None = None
    text: str = ""
    media: dict | None = None
    article: dict | None = None
    external: dict | None = None
    created_at: str | None = None

    def to_json(self) -> str:
        data = {
            "tweetId": self.tweet_id,
            "author": self.author,
            "authorName": self.author_name,
            "authorProfileImageUrl": self.author_profile_image_url,
            "text": self.text,
            "media": self.media,
            "article": self.article,
            "external": self.external,
            "createdAt": self.created_at,
        }
        return json.dumps(data, ensure_ascii=False)


@dataclass
class NormalizedPost:
    """One post in canonical form. ``category`` is the discriminator."""

    post_id: str
    author: Author
    text: str
    url: str
    category: Category = "tweet"
    created_at: str | None = None
    media: list[MediaItem] = field(default_factory=list)
    links: list[LinkItem] = field(default_factory=list)
    article: ArticleContent | None = None
    is_reply: bool = False
    reply_to: str | None = None
    reply_context: str | None = None
    is_quote: bool = False
    quote_context: QuoteContext | None = None
    quoted_post_id: str | None = None
    quoted: "NormalizedPost | None" = None
    is_retweet: bool = False
    retweet_context: str | None = None
    raw: dict | None = None

    @property
    def has_video(self) -> bool:
        return any(m.media_type in ("video", "animated_gif") for m in self.media)

    @property
    def has_photo(self) -> bool:
        return any(m.media_type == "photo" for m in self.media)


@dataclass
class SavedPostsPage:
    """A single page of the user's saved posts from the platform API."""

    posts: list[dict] = field(default_factory=list)
    next_cursor: str | None = None
    result_count: int = 0


@dataclass
class IngestResult:
    bookmark_id: str
    created: bool
    category: str | None = None
    duplicate_of: str | None = None
    quoted_created: bool | None = None

    @property
    def duplicate(self) -> bool:
        return not self.created

    def to_dict(self) -> dict:
        return {
            "success": self.created,
            "isDuplicate": self.duplicate,
            "bookmark": {"id": self.bookmark_id, "category": self.category},
            "duplicateOf": self.duplicate_of,
        }


@dataclass
class CooldownStatus:
    can_sync: bool
    cooldown_remaining: int  # milliseconds
    last_sync_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "canSync": self.can_sync,
            "cooldownRemaining": self.cooldown_remaining,
            "lastSyncAt": self.last_sync_at,
        }


@dataclass
class SyncEvent:
    type: SyncEventType
    data: dict = field(default_factory=dict)

    def to_sse(self) -> str:
        """Render as a server-sent-events frame."""
        return f"event: {self.type}\ndata: {json.dumps(self.data)}\n\n"


@dataclass
class CloneSummary:
    cloned: int
    skipped: int
    total: int
    tag: str
    cloned_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["clonedIds"] = data.pop("cloned_ids")
        return data
