"""Flatten long-form article content into markdown.

Articles arrive as rich-text blocks plus an entity map (links, images,
embedded media) and a media-entity table that maps media ids to image
URLs. The output is a single markdown string.
"""

import re

BLOCK_PREFIXES = {
    "header-one": "# ",
    "header-two": "## ",
    "header-three": "### ",
    "blockquote": "> ",
    "unordered-list-item": "- ",
    "ordered-list-item": "1. ",
}


def normalize_entity_map(entity_map) -> dict:
    """Accept the entity map either as a dict or as a list of {key, value}."""
    if not entity_map:
        return {}
    if isinstance(entity_map, list):
        return {
            str(item.get("key")): item.get("value")
            for item in entity_map
            if isinstance(item, dict)
        }
    return {str(k): v for k, v in entity_map.items()}


def build_media_entities(media_entities: list[dict] | None) -> dict[str, dict]:
    """Map media id -> {url, width, height} for entities with an image URL."""
    table: dict[str, dict] = {}
    for entity in media_entities or []:
        media_id = entity.get("media_id")
        info = entity.get("media_info") or {}
        url = info.get("original_img_url")
        if media_id and url:
            table[str(media_id)] = {
                "url": url,
                "width": info.get("original_img_width"),
                "height": info.get("original_img_height"),
            }
    return table


def _apply_inline_formatting(
    text: str,
    style_ranges: list[dict] | None,
    entity_ranges: list[dict] | None,
    entity_map: dict,
) -> str:
    if not text:
        return ""

    # (bold, italic, link) per character
    chars: list[list] = [[False, False, None] for _ in text]

    for rng in style_ranges or []:
        start = rng.get("offset", 0)
        end = min(start + rng.get("length", 0), len(text))
        style = rng.get("style")
        for i in range(start, end):
            if style == "BOLD":
                chars[i][0] = True
            elif style == "ITALIC":
                chars[i][1] = True

    for rng in entity_ranges or []:
        entity = entity_map.get(str(rng.get("key"))) or {}
        url = (entity.get("data") or {}).get("url")
        if entity.get("type") == "LINK" and url:
            start = rng.get("offset", 0)
            end = min(start + rng.get("length", 0), len(text))
            for i in range(start, end):
                chars[i][2] = url

    # Group runs of identical formatting
    segments: list[tuple[str, bool, bool, str | None]] = []
    for ch, (bold, italic, link) in zip(text, chars):
        if segments and segments[-1][1:] == (bold, italic, link):
            seg_text, *fmt = segments[-1]
            segments[-1] = (seg_text + ch, *fmt)
        else:
            segments.append((ch, bold, italic, link))

    out: list[str] = []
    for seg_text, bold, italic, link in segments:
        if bold and italic:
            seg_text = f"***{seg_text}***"
        elif bold:
            seg_text = f"**{seg_text}**"
        elif italic:
            seg_text = f"*{seg_text}*"
        if link:
            seg_text = f"[{seg_text}]({link})"
        out.append(seg_text)
    return "".join(out)


def _render_atomic(block: dict, entity_map: dict, media_entities: dict) -> str | None:
    ranges = block.get("entityRanges") or []
    if not ranges:
        return None
    entity = entity_map.get(str(ranges[0].get("key"))) or {}
    data = entity.get("data") or {}

    if entity.get("type") == "MEDIA":
        items = data.get("mediaItems") or []
        media_id = str(items[0].get("mediaId")) if items else None
        info = media_entities.get(media_id) if media_id else None
        if info and info.get("url"):
            alt = data.get("caption") or data.get("alt") or ""
            return f"![{alt}]({info['url']})"

    if entity.get("type") == "IMAGE" or data.get("src"):
        src = data.get("src") or data.get("url")
        if src:
            return f"![{data.get('alt') or ''}]({src})"

    return None


def article_blocks_to_markdown(
    blocks: list[dict],
    entity_map=None,
    media_entities: dict[str, dict] | None = None,
) -> str:
    """Convert article blocks to markdown text."""
    emap = normalize_entity_map(entity_map)
    media_entities = media_entities or {}
    lines: list[str] = []

    for block in blocks or []:
        block_type = block.get("type", "unstyled")

        if block_type == "atomic":
            image = _render_atomic(block, emap, media_entities)
            if image:
                lines.append(image)
            continue

        styled = _apply_inline_formatting(
            block.get("text", ""),
            block.get("inlineStyleRanges"),
            block.get("entityRanges"),
            emap,
        )
        prefix = BLOCK_PREFIXES.get(block_type)
        if prefix:
            lines.append(prefix + styled)
        elif styled.strip():
            lines.append(styled)
        else:
            lines.append("")

    return re.sub(r"\n{3,}", "\n\n", "\n\n".join(lines)).strip()
