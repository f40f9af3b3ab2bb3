"""CLI interface for bookmark-hub.

Commands:
    setup     - Configure the database and default user
    connect   - Store a platform OAuth access token for the user
    add       - Save a single post by URL
    sync      - Pull saved posts from the platform
    cooldown  - Show whether a sync may start now
    logs      - Show recent sync runs
    list      - List saved bookmarks
    tag       - Add, remove and list tags
    read      - Mark a bookmark read
    unread    - Mark a bookmark unread
    delete    - Remove a bookmark
    share     - Publish a tag collection under a share code
    clone     - Copy a shared tag collection into your account
    media     - Show media URLs, or resolve a video file
    export    - Export bookmarks to CSV
    status    - Show configuration and database status
"""

import sys
import time
from pathlib import Path

import click

from .config import CONFIG_FILE, AppConfig, config_exists, load_config, save_config
from .errors import BookmarkHubError, NotFoundError
from .logging_config import setup_logging
from .models import UserContext


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _config(ctx) -> AppConfig:
    return load_config(ctx.obj["config_path"])


def _user(ctx, config: AppConfig) -> UserContext:
    user_id = ctx.obj.get("user") or config.user_id
    if not user_id:
        _fail("No user configured. Run 'bookmark-hub setup' or pass --user.")
    return UserContext(user_id)


def _session_factory(config: AppConfig):
    from .db import create_db_engine, create_session_factory, init_db

    engine = create_db_engine(config.database_path)
    init_db(engine)
    return create_session_factory(engine)


def _mirror(config: AppConfig):
    from .mirror import MirrorClient

    return MirrorClient(config.mirror_url, timeout=config.mirror_timeout)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", type=click.Path(), default=None, help="Config file path")
@click.option("--user", default=None, help="Act as this user id (overrides auth.user_id)")
@click.pass_context
def main(ctx, verbose, config, user):
    """Bookmark Hub: save, sync, tag and share social-media bookmarks."""
    setup_logging(debug=verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else CONFIG_FILE
    ctx.obj["user"] = user


@main.command()
@click.pass_context
def setup(ctx):
    """Configure the database location and the default user."""
    config_path = ctx.obj["config_path"]
    config = _config(ctx)

    click.echo("Bookmark Hub: Setup")
    click.echo("=" * 40)
    click.echo()
    user_id = click.prompt("Platform user id", default=config.user_id or "", show_default=False)
    db_path = click.prompt("Database file", default=str(config.database_path))

    config.user_id = user_id or None
    config.database_path = Path(db_path)
    save_config(config, config_path)
    click.echo(f"\nConfig saved to {config_path}")
    click.echo("Run 'bookmark-hub connect' to store an access token for syncing.")


@main.command()
@click.option("--username", default=None, help="Platform handle for display")
@click.option(
    "--expires-in", type=int, default=None, help="Token lifetime in seconds, if known"
)
@click.pass_context
def connect(ctx, username, expires_in):
    """Store an OAuth2 access token for the current user."""
    from .db import session_scope
    from .repository import TokenRepository

    config = _config(ctx)
    user = _user(ctx, config)
    access_token = click.prompt("access_token", hide_input=True)
    refresh_token = click.prompt("refresh_token (optional)", default="", show_default=False,
                                 hide_input=True)
    expires_at = int(time.time()) + expires_in if expires_in else None

    with session_scope(_session_factory(config)) as session:
        TokenRepository(session, user).save(
            access_token,
            username=username,
            refresh_token=refresh_token or None,
            expires_at=expires_at,
        )
    click.echo(f"Token stored for user {user.user_id}.")


@main.command()
@click.argument("url")
@click.option("--tag", default=None, help="Tag to apply to the new bookmark")
@click.option(
    "--source",
    type=click.Choice(["manual", "url_prefix"]),
    default="manual",
    hidden=True,
)
@click.pass_context
def add(ctx, url, tag, source):
    """Save the post at URL."""
    from .db import session_scope
    from .ingest import add_post_by_url
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        with _mirror(config) as mirror, session_scope(_session_factory(config)) as session:
            result = add_post_by_url(
                BookmarkRepository(session, user), mirror, url, source=source, tag=tag
            )
    except BookmarkHubError as e:
        _fail(e.message)

    if result.duplicate:
        click.echo(f"Already saved: {result.bookmark_id}")
    else:
        click.echo(f"Saved {result.bookmark_id} ({result.category})")


@main.command()
@click.option("--all", "all_pages", is_flag=True, help="Page through the whole list")
@click.option("--max-pages", type=int, default=None, help="Maximum pages to fetch")
@click.pass_context
def sync(ctx, all_pages, max_pages):
    """Sync saved posts from the platform."""
    from .sync import SyncOrchestrator

    config = _config(ctx)
    user = _user(ctx, config)
    failed = False

    with _mirror(config) as mirror:
        orchestrator = SyncOrchestrator(
            _session_factory(config),
            mirror=mirror,
            config=config.sync,
            client_factory=_platform_client_factory(config),
        )
        events = orchestrator.start_sync(user, all_pages=all_pages, max_pages=max_pages)
        try:
            for event in events:
                failed = _print_sync_event(event) or failed
        except KeyboardInterrupt:
            events.close()
            _fail("Sync cancelled.")

    if failed:
        sys.exit(1)


def _platform_client_factory(config: AppConfig):
    from .client import PlatformClient

    def factory(access_token: str, user_id: str) -> PlatformClient:
        return PlatformClient(
            access_token, user_id, base_url=config.api_url, timeout=config.api_timeout
        )

    return factory


def _print_sync_event(event) -> bool:
    """Print one progress line. Returns True for an error event."""
    data = event.data
    if event.type == "start":
        click.echo(f"Sync {data['syncId']} started.")
    elif event.type == "page":
        click.echo(f"Page {data['pageNumber']}: {data['postsFound']} posts")
    elif event.type == "processing":
        if data.get("error"):
            marker = "!"
        elif data.get("duplicate"):
            marker = "="
        else:
            marker = "+"
        click.echo(f"  [{data['current']}/{data['total']}] {marker} {data.get('postId')}")
    elif event.type == "complete":
        stats = data["stats"]
        click.echo(
            f"Done: {stats['total']} fetched, {stats['new']} new, "
            f"{stats['duplicates']} duplicates, {stats['failed']} failed."
        )
    elif event.type == "error":
        if "cooldownRemaining" in data:
            minutes = data["cooldownRemaining"] / 60000
            click.echo(f"Error: {data['error']} ({minutes:.1f} min left)", err=True)
        else:
            click.echo(f"Error: {data['error']}", err=True)
        return True
    return False


@main.command()
@click.pass_context
def cooldown(ctx):
    """Show whether a sync may start now."""
    from .db import session_scope
    from .sync import check_cooldown

    config = _config(ctx)
    user = _user(ctx, config)
    with session_scope(_session_factory(config)) as session:
        status = check_cooldown(session, user, cooldown_ms=config.sync.cooldown_ms)

    if status.can_sync:
        click.echo("Sync available.")
    else:
        click.echo(f"Cooldown: {status.cooldown_remaining // 1000}s remaining.")
    if status.last_sync_at:
        click.echo(f"Last sync: {status.last_sync_at}")


@main.command()
@click.option("--limit", default=10, help="Number of runs to show")
@click.pass_context
def logs(ctx, limit):
    """Show recent sync runs."""
    from .db import session_scope
    from .repository import SyncLogRepository
    from .sync import sync_logs

    config = _config(ctx)
    user = _user(ctx, config)
    with session_scope(_session_factory(config)) as session:
        runs = sync_logs(SyncLogRepository(session, user), limit=limit)

    if not runs:
        click.echo("No syncs yet.")
        return
    for run in runs:
        line = (
            f"{run['startedAt']}  {run['status']:<9}  "
            f"fetched={run['totalFetched']} new={run['newBookmarks']} "
            f"dup={run['duplicatesSkipped']}"
        )
        if run["errorMessage"]:
            line += f"  ({run['errorMessage']})"
        click.echo(line)


@main.command(name="list")
@click.option(
    "--tag", "tags", multiple=True, help="Only bookmarks with this tag (repeat to require several)"
)
@click.option("--search", default=None, help="Match text, author or link previews")
@click.option("--unread", is_flag=True, help="Only unread bookmarks")
@click.option(
    "--category", type=click.Choice(["tweet", "photo", "video", "article"]), default=None
)
@click.option("--limit", default=50, help="Maximum bookmarks to show")
@click.pass_context
def list_cmd(ctx, tags, search, unread, category, limit):
    """List saved bookmarks, newest first."""
    from .db import session_scope
    from .identifiers import normalize_tag
    from .repository import BookmarkRepository
    from .urls import shorten_url

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        tags = [normalize_tag(t) for t in tags]
    except BookmarkHubError as e:
        _fail(e.message)

    with session_scope(_session_factory(config)) as session:
        repo = BookmarkRepository(session, user)
        bookmarks = repo.list_bookmarks(
            tags=tags, search=search, unread_only=unread, category=category, limit=limit
        )
        for b in bookmarks:
            text = b.text.replace("\n", " ")
            if len(text) > 60:
                text = text[:57] + "..."
            click.echo(f"{b.id}  @{b.author:<15} {b.category:<7} {text}")
            for link in repo.links_for(b.id):
                click.echo(f"    -> {shorten_url(link.expanded_url)}")

    if not bookmarks:
        click.echo("No bookmarks.")


@main.group()
def tag():
    """Manage bookmark tags."""


@tag.command(name="add")
@click.argument("post_id")
@click.argument("name")
@click.pass_context
def tag_add(ctx, post_id, name):
    """Tag a bookmark."""
    from .db import session_scope
    from .identifiers import normalize_tag
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        with session_scope(_session_factory(config)) as session:
            repo = BookmarkRepository(session, user)
            name = normalize_tag(name)
            if not repo.exists(post_id):
                raise NotFoundError(f"Bookmark {post_id} not found")
            repo.add_tag(post_id, name)
    except BookmarkHubError as e:
        _fail(e.message)
    click.echo(f"Tagged {post_id} with '{name}'.")


@tag.command(name="remove")
@click.argument("post_id")
@click.argument("name")
@click.pass_context
def tag_remove(ctx, post_id, name):
    """Remove a tag from a bookmark."""
    from .db import session_scope
    from .identifiers import normalize_tag
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        name = normalize_tag(name)
        with session_scope(_session_factory(config)) as session:
            removed = BookmarkRepository(session, user).remove_tag(post_id, name)
    except BookmarkHubError as e:
        _fail(e.message)
    if removed:
        click.echo(f"Removed '{name}' from {post_id}.")
    else:
        click.echo(f"{post_id} was not tagged '{name}'.")


@tag.command(name="list")
@click.argument("post_id", required=False)
@click.pass_context
def tag_list(ctx, post_id):
    """List all tags, or the tags of one bookmark."""
    from .db import session_scope
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    with session_scope(_session_factory(config)) as session:
        repo = BookmarkRepository(session, user)
        if post_id:
            tags = [(t, None) for t in repo.tags_for(post_id)]
        else:
            tags = repo.all_tags()

    if not tags:
        click.echo("No tags.")
    for name, count in tags:
        click.echo(name if count is None else f"{name} ({count})")


def _set_read(ctx, post_id: str, read: bool) -> None:
    from .db import session_scope
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        with session_scope(_session_factory(config)) as session:
            repo = BookmarkRepository(session, user)
            if not repo.exists(post_id):
                raise NotFoundError(f"Bookmark {post_id} not found")
            if read:
                repo.mark_read(post_id)
            else:
                repo.mark_unread(post_id)
    except BookmarkHubError as e:
        _fail(e.message)
    click.echo(f"Marked {post_id} {'read' if read else 'unread'}.")


@main.command()
@click.argument("post_id")
@click.pass_context
def read(ctx, post_id):
    """Mark a bookmark read."""
    _set_read(ctx, post_id, True)


@main.command()
@click.argument("post_id")
@click.pass_context
def unread(ctx, post_id):
    """Mark a bookmark unread."""
    _set_read(ctx, post_id, False)


@main.command()
@click.argument("post_id")
@click.pass_context
def delete(ctx, post_id):
    """Remove a bookmark with its media, links, tags and read state."""
    from .db import session_scope
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    with session_scope(_session_factory(config)) as session:
        deleted = BookmarkRepository(session, user).delete(post_id)
    if not deleted:
        _fail(f"Bookmark {post_id} not found")
    click.echo(f"Deleted {post_id}.")


@main.command()
@click.confirmation_option(prompt="Remove every bookmark for this user?")
@click.pass_context
def clear(ctx):
    """Remove all of the user's bookmarks."""
    from .db import session_scope
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    with session_scope(_session_factory(config)) as session:
        removed = BookmarkRepository(session, user).clear()
    click.echo(f"Removed {removed} bookmarks.")


@main.command()
@click.argument("name")
@click.option("--private", is_flag=True, help="Withdraw an existing share")
@click.pass_context
def share(ctx, name, private):
    """Publish the collection tagged NAME and print its share code."""
    from .clone import share_tag
    from .db import session_scope
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        with session_scope(_session_factory(config)) as session:
            code = share_tag(BookmarkRepository(session, user), name, public=not private)
    except BookmarkHubError as e:
        _fail(e.message)
    if private:
        click.echo(f"Share {code} is now private.")
    else:
        click.echo(f"Share code: {code}")


@main.command()
@click.argument("code")
@click.pass_context
def clone(ctx, code):
    """Copy the collection shared under CODE into your account."""
    from .clone import clone_shared_tag
    from .db import session_scope

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        with session_scope(_session_factory(config)) as session:
            summary = clone_shared_tag(session, code, user.user_id)
    except BookmarkHubError as e:
        _fail(e.message)
    click.echo(
        f"Cloned {summary.cloned} of {summary.total} bookmarks tagged "
        f"'{summary.tag}' ({summary.skipped} already saved)."
    )


@main.command()
@click.argument("url")
@click.option(
    "--quality",
    type=click.Choice(["preview", "hd", "full"]),
    default=None,
    help="Resolve the direct video file at this quality",
)
@click.pass_context
def media(ctx, url, quality):
    """Show media URLs for the post at URL.

    Without --quality, lists the stored media of a saved bookmark.
    """
    from .db import session_scope
    from .identifiers import parse_post_url
    from .media import VIDEO_URL_CACHE, build_media_urls, resolve_video_url
    from .repository import BookmarkRepository

    config = _config(ctx)
    try:
        author, post_id = parse_post_url(url)
        if quality:
            with _mirror(config) as mirror:
                video = resolve_video_url(
                    mirror, author, post_id, quality, cache=VIDEO_URL_CACHE
                )
            click.echo(video)
            return
    except BookmarkHubError as e:
        _fail(e.message)

    user = _user(ctx, config)
    with session_scope(_session_factory(config)) as session:
        repo = BookmarkRepository(session, user)
        bookmark = repo.get(post_id)
        if bookmark is None:
            _fail(f"Bookmark {post_id} not found")
        urls = build_media_urls(bookmark.author, bookmark.id, repo.media_for(post_id))

    if not urls:
        click.echo("No media.")
    for item in urls:
        click.echo(f"{item['type']:<12} {item['url']}")


@main.command()
@click.option("-o", "--output", type=click.Path(), default=None, help="Output CSV file path")
@click.option("--tag", default=None, help="Only export bookmarks with this tag")
@click.pass_context
def export(ctx, output, tag):
    """Export bookmarks to CSV.

    If -o is not specified, CSV is written to stdout.
    """
    from .converter import bookmarks_to_csv, collect_export_rows
    from .db import session_scope
    from .identifiers import normalize_tag
    from .repository import BookmarkRepository

    config = _config(ctx)
    user = _user(ctx, config)
    try:
        tag = normalize_tag(tag) if tag else None
    except BookmarkHubError as e:
        _fail(e.message)

    with session_scope(_session_factory(config)) as session:
        rows = collect_export_rows(BookmarkRepository(session, user), tag=tag)

    if not rows:
        _fail("No bookmarks to export.")

    click.echo(f"Exporting {len(rows)} bookmarks.", err=True)
    if output:
        output_path = Path(output)
        with open(output_path, "w", encoding="utf-8", newline="") as f:
            bookmarks_to_csv(rows, f)
        click.echo(f"CSV written to {output_path}", err=True)
    else:
        click.echo(bookmarks_to_csv(rows), nl=False)


@main.command()
@click.pass_context
def status(ctx):
    """Show configuration and database status."""
    config_path = ctx.obj["config_path"]
    has_config = config_exists(config_path)

    click.echo("Bookmark Hub: Status")
    click.echo("=" * 40)
    click.echo(f"Config: {'Found' if has_config else 'Not configured'} ({config_path})")

    config = _config(ctx)
    user_id = ctx.obj.get("user") or config.user_id
    click.echo(f"Database: {config.database_path}")
    if not user_id:
        click.echo("\nRun 'bookmark-hub setup' to get started.")
        return
    click.echo(f"User: {user_id}")

    if not config.database_path.exists():
        click.echo("Database: Not yet created")
        return

    from .db import session_scope
    from .repository import BookmarkRepository, SyncLogRepository, TokenRepository

    user = UserContext(user_id)
    with session_scope(_session_factory(config)) as session:
        count = BookmarkRepository(session, user).count()
        token = TokenRepository(session, user).get()
        last = SyncLogRepository(session, user).last_completed()
        click.echo(f"Bookmarks: {count}")
        click.echo(f"Platform account: {'Connected' if token else 'Not connected'}")
        click.echo(f"Last sync: {last.completed_at if last else 'Never'}")
