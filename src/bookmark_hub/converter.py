"""Export stored bookmarks to CSV."""

import csv
import io
from typing import TextIO

from .media import build_media_urls
from .repository import BookmarkRepository

CSV_COLUMNS = [
    "tweet_id",
    "username",
    "display_name",
    "text",
    "date",
    "tweet_url",
    "category",
    "source",
    "tags",
    "links",
    "media_urls",
    "media_types",
    "is_read",
    "is_reply",
    "is_quote",
    "quoted_tweet_id",
]


def collect_export_rows(repo: BookmarkRepository, tag: str | None = None) -> list[dict]:
    """Flatten the user's bookmarks (optionally one tag) into CSV rows."""
    read = repo.read_ids()
    rows = []
    for b in repo.list_bookmarks(tags=[tag] if tag else None, limit=0):
        media = repo.media_for(b.id)
        rows.append(
            {
                "tweet_id": b.id,
                "username": b.author,
                "display_name": b.author_name or "",
                "text": b.text,
                "date": b.created_at or "",
                "tweet_url": b.tweet_url,
                "category": b.category,
                "source": b.source,
                "tags": "|".join(repo.tags_for(b.id)),
                "links": "|".join(link.expanded_url for link in repo.links_for(b.id)),
                "media_urls": "|".join(u["url"] for u in build_media_urls(b.author, b.id, media)),
                "media_types": "|".join(m.media_type for m in media),
                "is_read": "true" if b.id in read else "false",
                "is_reply": "true" if b.is_reply else "false",
                "is_quote": "true" if b.is_quote else "false",
                "quoted_tweet_id": b.quoted_tweet_id or "",
            }
        )
    return rows


def bookmarks_to_csv(rows: list[dict], output: TextIO | None = None) -> str:
    """Convert export rows to CSV.

    Args:
        rows: Rows from :func:`collect_export_rows`.
        output: Optional file-like object to write to. If None, returns CSV as string.

    Returns:
        CSV content as a string (also written to output if provided).
    """
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, quoting=csv.QUOTE_MINIMAL)
    writer.writeheader()
    for row in rows:
        writer.writerow({col: row.get(col, "") for col in CSV_COLUMNS})

    result = buf.getvalue()
    if output is not None:
        output.write(result)
    return result
