"""Bulk sync of a user's saved posts from the platform.

``SyncOrchestrator.start_sync`` is a generator of :class:`SyncEvent`:

    start -> page -> processing* -> page -> processing* ... -> complete
                                                          \\-> error

Consumers iterate it (the CLI prints progress, a web handler would write
``event.to_sse()`` frames). Closing the generator, or setting the
``cancel`` event, stops further fetches and marks the sync log failed.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from .client import PlatformClient
from .config import SyncConfig, cooldown_minutes_from_env
from .errors import BookmarkHubError, UpstreamError
from .fetcher import platform_client_for
from .ingest import ingest
from .mirror import MirrorClient
from .models import CooldownStatus, NormalizedPost, SyncEvent, UserContext
from .normalizer import merge_enrichment, normalize_mirror_post, normalize_platform_post
from .repository import BookmarkRepository, SyncLogRepository, TokenRepository, utcnow

logger = logging.getLogger(__name__)

COOLDOWN_MESSAGE = "Please wait before syncing again"
CANCELLED_MESSAGE = "cancelled"
ENRICH_ATTEMPTS = 2
ENRICH_RETRY_DELAY = 0.2


class SyncCancelled(Exception):
    pass


def check_cooldown(
    session: Session,
    user: UserContext,
    now: Optional[datetime] = None,
    cooldown_ms: Optional[int] = None,
) -> CooldownStatus:
    """Whether the user may start a sync now.

    Only the user's most recent *completed* sync counts; running and
    failed syncs never hold a cooldown.
    """
    if cooldown_ms is None:
        cooldown_ms = cooldown_minutes_from_env() * 60 * 1000
    last = SyncLogRepository(session, user).last_completed()
    if last is None or not last.completed_at:
        return CooldownStatus(can_sync=True, cooldown_remaining=0, last_sync_at=None)

    now = now or utcnow()
    completed = datetime.fromisoformat(last.completed_at)
    elapsed_ms = int((now - completed).total_seconds() * 1000)
    remaining = min(cooldown_ms, max(0, cooldown_ms - elapsed_ms))
    return CooldownStatus(
        can_sync=remaining == 0,
        cooldown_remaining=remaining,
        last_sync_at=last.completed_at,
    )


def sync_logs(logs: SyncLogRepository, limit: int = 20) -> list[dict]:
    """Recent sync runs, newest first."""
    return [
        {
            "id": log.id,
            "startedAt": log.started_at,
            "completedAt": log.completed_at,
            "status": log.status,
            "totalFetched": log.total_fetched,
            "newBookmarks": log.new_bookmarks,
            "duplicatesSkipped": log.duplicates_skipped,
            "errorMessage": log.error_message,
            "triggerType": log.trigger_type,
        }
        for log in logs.recent(limit)
    ]


class SyncOrchestrator:
    """Pages through the platform API and feeds each post to the gate."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        mirror: Optional[MirrorClient] = None,
        config: Optional[SyncConfig] = None,
        client_factory: Callable[[str, str], PlatformClient] = PlatformClient,
    ):
        self.session_factory = session_factory
        self.mirror = mirror
        self.config = config or SyncConfig()
        self.client_factory = client_factory

    def start_sync(
        self,
        user: UserContext,
        all_pages: bool = True,
        max_pages: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
        trigger_type: str = "manual",
    ) -> Iterator[SyncEvent]:
        session = self.session_factory()
        try:
            status = check_cooldown(session, user, cooldown_ms=self.config.cooldown_ms)
            if not status.can_sync:
                logger.info("Sync refused for %s: cooldown %dms", user.user_id, status.cooldown_remaining)
                yield SyncEvent("error", {"error": COOLDOWN_MESSAGE, **status.to_dict()})
                return

            logs = SyncLogRepository(session, user)
            log = logs.start(trigger_type=trigger_type)
            session.commit()
            logger.info("Sync %s started for %s", log.id, user.user_id)
            stats = {"total": 0, "new": 0, "duplicates": 0, "failed": 0}
            try:
                yield SyncEvent("start", {"syncId": log.id, "total": None})
                yield from self._run(session, user, stats, all_pages, max_pages, cancel)
            except SyncCancelled:
                self._fail(session, logs, log, stats, CANCELLED_MESSAGE)
                yield SyncEvent("error", {"error": CANCELLED_MESSAGE, "syncId": log.id})
                return
            except GeneratorExit:
                self._fail(session, logs, log, stats, CANCELLED_MESSAGE)
                raise
            except BookmarkHubError as e:
                self._fail(session, logs, log, stats, e.message)
                yield SyncEvent("error", {"error": e.message, "syncId": log.id})
                return
            except Exception as e:
                logger.exception("Sync %s stopped by an unexpected error", log.id)
                message = f"Sync failed: {e}"
                self._fail(session, logs, log, stats, message)
                yield SyncEvent("error", {"error": message, "syncId": log.id})
                return

            logs.finish(
                log,
                "completed",
                total_fetched=stats["total"],
                new_bookmarks=stats["new"],
                duplicates_skipped=stats["duplicates"],
            )
            session.commit()
            logger.info(
                "Sync %s completed: %d fetched, %d new, %d duplicates",
                log.id, stats["total"], stats["new"], stats["duplicates"],
            )
            yield SyncEvent("complete", {"syncId": log.id, "stats": stats})
        finally:
            session.close()

    def _run(
        self,
        session: Session,
        user: UserContext,
        stats: dict,
        all_pages: bool,
        max_pages: Optional[int],
        cancel: Optional[threading.Event],
    ) -> Iterator[SyncEvent]:
        repo = BookmarkRepository(session, user)
        page_limit = max_pages or self.config.max_pages
        cursor = None
        page_number = 0

        with platform_client_for(TokenRepository(session, user), self.client_factory) as client:
            while True:
                _check_cancel(cancel)
                page_number += 1
                page = client.fetch_saved_posts_page(cursor=cursor, page_size=self.config.page_size)
                logger.debug("Page %d: %d posts", page_number, len(page.posts))
                yield SyncEvent(
                    "page",
                    {
                        "pageNumber": page_number,
                        "postsFound": len(page.posts),
                        "cursor": page.next_cursor,
                    },
                )

                total = len(page.posts)
                for index, raw in enumerate(page.posts, start=1):
                    _check_cancel(cancel)
                    event = self._process(repo, raw, index, total, stats)
                    session.commit()
                    yield event
                    if event.data.get("created") and self.config.delay and index < total:
                        time.sleep(self.config.delay)

                cursor = page.next_cursor
                if not all_pages or not cursor or page_number >= page_limit:
                    break

    def _process(
        self,
        repo: BookmarkRepository,
        raw: dict,
        index: int,
        total: int,
        stats: dict,
    ) -> SyncEvent:
        stats["total"] += 1
        data = {"current": index, "total": total, "postId": raw.get("id")}
        try:
            post = normalize_platform_post(raw)
            data["author"] = post.author.username
            if repo.exists(post.post_id):
                stats["duplicates"] += 1
                data.update(duplicate=True, created=False)
                return SyncEvent("processing", data)

            post = self._enrich(post)
            result = ingest(repo, post, "sync")
        except Exception as e:
            logger.warning("Skipping post %s: %s", raw.get("id"), e, exc_info=True)
            stats["failed"] += 1
            data.update(error=str(e), created=False)
            return SyncEvent("processing", data)

        if result.created:
            stats["new"] += 1
        else:
            stats["duplicates"] += 1
        data.update(
            duplicate=result.duplicate,
            created=result.created,
            category=result.category,
            text=_snippet(post.text),
        )
        return SyncEvent("processing", data)

    def _enrich(self, post: NormalizedPost) -> NormalizedPost:
        if self.mirror is None or not self.config.enrich:
            return post
        author = post.author.username if post.author.username != "unknown" else "i"
        for attempt in range(1, ENRICH_ATTEMPTS + 1):
            try:
                payload = self.mirror.fetch_post(author, post.post_id)
                break
            except UpstreamError as e:
                if attempt == ENRICH_ATTEMPTS:
                    logger.warning(
                        "Enrichment for %s failed after %d attempts: %s", post.post_id, attempt, e
                    )
                    return post
                time.sleep(ENRICH_RETRY_DELAY)
            except BookmarkHubError as e:
                logger.debug("No enrichment for %s: %s", post.post_id, e)
                return post

        try:
            return merge_enrichment(post, normalize_mirror_post(payload))
        except Exception:
            logger.warning("Ignoring unusable mirror data for %s", post.post_id, exc_info=True)
            return post

    @staticmethod
    def _fail(session: Session, logs: SyncLogRepository, log, stats: dict, message: str) -> None:
        session.rollback()
        logs.finish(
            log,
            "failed",
            total_fetched=stats["total"],
            new_bookmarks=stats["new"],
            duplicates_skipped=stats["duplicates"],
            error_message=message,
        )
        session.commit()
        logger.error("Sync %s failed: %s", log.id, message)


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise SyncCancelled()


def _snippet(text: str, length: int = 100) -> str:
    return text[:length] + ("..." if len(text) > length else "")
