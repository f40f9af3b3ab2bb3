"""Tests for cooldown checks and the sync orchestrator."""

import copy
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import httpx
import pytest
import respx

from bookmark_hub.config import SyncConfig
from bookmark_hub.db import session_scope
from bookmark_hub.ingest import ingest
from bookmark_hub.mirror import MirrorClient
from bookmark_hub.repository import BookmarkRepository, SyncLogRepository, TokenRepository
from bookmark_hub.sync import SyncOrchestrator, check_cooldown, sync_logs

BOOKMARKS_URL = "https://api.twitter.com/2/users/alice/bookmarks"
T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
FIFTEEN_MINUTES_MS = 15 * 60 * 1000


@pytest.fixture
def connected(session_factory, alice):
    with session_scope(session_factory) as session:
        TokenRepository(session, alice).save("tok")
    return alice


@pytest.fixture
def orchestrator(session_factory):
    return SyncOrchestrator(session_factory, config=SyncConfig(delay=0))


@pytest.fixture
def last_page() -> dict:
    return {"data": [], "meta": {"result_count": 0}}


def complete_sync_at(session_factory, user, completed_at):
    with session_scope(session_factory) as session:
        logs = SyncLogRepository(session, user)
        logs.finish(logs.start(now=completed_at), "completed", now=completed_at)


def event_types(events):
    return [e.type for e in events]


class TestCheckCooldown:
    def test_never_synced(self, session, alice):
        status = check_cooldown(session, alice, now=T0, cooldown_ms=FIFTEEN_MINUTES_MS)
        assert status.can_sync
        assert status.cooldown_remaining == 0
        assert status.last_sync_at is None

    @pytest.mark.parametrize(
        "minutes_later,can_sync,remaining_ms",
        [
            (5, False, 10 * 60 * 1000),
            (15, True, 0),
            (20, True, 0),
        ],
    )
    def test_boundary(self, session_factory, session, alice, minutes_later, can_sync,
                      remaining_ms):
        complete_sync_at(session_factory, alice, T0)
        status = check_cooldown(
            session, alice,
            now=T0 + timedelta(minutes=minutes_later),
            cooldown_ms=FIFTEEN_MINUTES_MS,
        )
        assert status.can_sync is can_sync
        assert status.cooldown_remaining == remaining_ms
        assert status.to_dict()["canSync"] is can_sync

    def test_failed_and_running_syncs_ignored(self, session_factory, session, alice):
        with session_scope(session_factory) as s:
            logs = SyncLogRepository(s, alice)
            logs.finish(logs.start(now=T0), "failed", now=T0)
            logs.start(now=T0)
        status = check_cooldown(session, alice, now=T0 + timedelta(minutes=1),
                                cooldown_ms=FIFTEEN_MINUTES_MS)
        assert status.can_sync

    def test_other_users_sync_does_not_block(self, session_factory, session, alice, bob):
        complete_sync_at(session_factory, bob, T0)
        status = check_cooldown(session, alice, now=T0 + timedelta(minutes=1),
                                cooldown_ms=FIFTEEN_MINUTES_MS)
        assert status.can_sync

    def test_env_override(self, monkeypatch, session_factory, session, alice):
        monkeypatch.setenv("SYNC_COOLDOWN_MINUTES", "1")
        complete_sync_at(session_factory, alice, T0)
        status = check_cooldown(session, alice, now=T0 + timedelta(minutes=2))
        assert status.can_sync

    def test_invalid_env_falls_back(self, monkeypatch, session_factory, session, alice):
        monkeypatch.setenv("SYNC_COOLDOWN_MINUTES", "soon")
        complete_sync_at(session_factory, alice, T0)
        status = check_cooldown(session, alice, now=T0 + timedelta(minutes=2))
        assert not status.can_sync
        assert status.cooldown_remaining == 13 * 60 * 1000


class TestStartSync:
    @respx.mock
    def test_full_sync(self, orchestrator, session_factory, connected, platform_page_payload,
                       last_page):
        route = respx.get(BOOKMARKS_URL)
        route.side_effect = [
            httpx.Response(200, json=platform_page_payload),
            httpx.Response(200, json=last_page),
        ]

        events = list(orchestrator.start_sync(connected, all_pages=True))

        assert event_types(events) == [
            "start", "page", "processing", "processing", "processing", "page", "complete",
        ]
        assert events[1].data == {"pageNumber": 1, "postsFound": 3, "cursor": "page2token"}
        assert events[2].data["author"] == "longposter"
        assert events[-1].data["stats"] == {"total": 3, "new": 3, "duplicates": 0, "failed": 0}
        assert route.calls[1].request.url.params["pagination_token"] == "page2token"

        with session_scope(session_factory) as session:
            repo = BookmarkRepository(session, connected)
            # the quoted post is stored as its own row
            assert repo.count() == 4
            assert repo.get("1700000000000000004").source == "quoted"
            assert repo.get("1800000000000000002").category == "photo"
            log = SyncLogRepository(session, connected).last_completed()
            assert log.id == events[0].data["syncId"]
            assert log.total_fetched == 3
            assert log.new_bookmarks == 3

    @respx.mock
    def test_incremental_fetches_one_page(self, orchestrator, connected,
                                          platform_page_payload):
        route = respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        events = list(orchestrator.start_sync(connected, all_pages=False))
        assert route.call_count == 1
        assert events[-1].type == "complete"

    @respx.mock
    def test_max_pages(self, orchestrator, connected, platform_page_payload):
        route = respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        list(orchestrator.start_sync(connected, all_pages=True, max_pages=2))
        assert route.call_count == 2

    @respx.mock
    def test_duplicates_counted(self, orchestrator, session_factory, connected, make_post,
                                platform_page_payload):
        with session_scope(session_factory) as session:
            ingest(BookmarkRepository(session, connected),
                   make_post("1800000000000000001", author="longposter"), "manual")
        respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )

        events = list(orchestrator.start_sync(connected, all_pages=False))

        assert events[2].data["duplicate"] is True
        assert events[-1].data["stats"]["duplicates"] == 1
        assert events[-1].data["stats"]["new"] == 2

    def test_cooldown_refused(self, orchestrator, session_factory, connected):
        complete_sync_at(session_factory, connected, datetime.now(timezone.utc))

        events = list(orchestrator.start_sync(connected))

        assert event_types(events) == ["error"]
        assert events[0].data["canSync"] is False
        assert events[0].data["cooldownRemaining"] > 0
        with session_scope(session_factory) as session:
            # no new log for the refused attempt
            assert len(SyncLogRepository(session, connected).recent()) == 1

    def test_missing_token(self, orchestrator, session_factory, alice):
        events = list(orchestrator.start_sync(alice))

        assert event_types(events) == ["start", "error"]
        assert "connect" in events[-1].data["error"]
        with session_scope(session_factory) as session:
            log = SyncLogRepository(session, alice).recent()[0]
            assert log.status == "failed"

    def test_expired_token(self, orchestrator, session_factory, alice):
        with session_scope(session_factory) as session:
            TokenRepository(session, alice).save("tok", expires_at=int(time.time()) - 10)
        events = list(orchestrator.start_sync(alice))
        assert "expired" in events[-1].data["error"]

    @respx.mock
    def test_upstream_failure_marks_log_failed(self, orchestrator, session_factory,
                                               connected):
        respx.get(BOOKMARKS_URL).mock(return_value=httpx.Response(500))

        events = list(orchestrator.start_sync(connected))

        assert event_types(events) == ["start", "error"]
        with session_scope(session_factory) as session:
            log = SyncLogRepository(session, connected).recent()[0]
            assert log.status == "failed"
            assert "500" in log.error_message
            assert log.completed_at is not None

    @respx.mock
    def test_bad_item_skipped(self, orchestrator, connected, platform_page_payload):
        payload = copy.deepcopy(platform_page_payload)
        payload["data"].insert(1, {"text": "no id here"})
        respx.get(BOOKMARKS_URL).mock(return_value=httpx.Response(200, json=payload))

        events = list(orchestrator.start_sync(connected, all_pages=False))

        processing = [e for e in events if e.type == "processing"]
        assert len(processing) == 4
        assert "error" in processing[1].data
        assert events[-1].data["stats"] == {"total": 4, "new": 3, "duplicates": 0, "failed": 1}

    @respx.mock
    def test_malformed_nested_field_skipped(self, orchestrator, session_factory, connected,
                                            platform_page_payload):
        payload = copy.deepcopy(platform_page_payload)
        payload["data"].insert(0, {"id": "5", "text": "x", "note_tweet": "oops"})
        respx.get(BOOKMARKS_URL).mock(return_value=httpx.Response(200, json=payload))

        events = list(orchestrator.start_sync(connected, all_pages=False))

        assert events[-1].type == "complete"
        assert events[2].data["postId"] == "5"
        assert "error" in events[2].data
        assert events[-1].data["stats"]["failed"] == 1
        assert events[-1].data["stats"]["new"] == 3
        with session_scope(session_factory) as session:
            assert SyncLogRepository(session, connected).recent()[0].status == "completed"

    def test_unexpected_error_ends_stream(self, session_factory, connected):
        def broken_factory(access_token, user_id):
            raise RuntimeError("boom")

        orchestrator = SyncOrchestrator(
            session_factory, config=SyncConfig(delay=0), client_factory=broken_factory
        )

        events = list(orchestrator.start_sync(connected))

        assert event_types(events) == ["start", "error"]
        assert "boom" in events[-1].data["error"]
        with session_scope(session_factory) as session:
            log = SyncLogRepository(session, connected).recent()[0]
            assert log.status == "failed"
            assert "boom" in log.error_message

    @respx.mock
    def test_cancel_token(self, orchestrator, session_factory, connected,
                          platform_page_payload):
        respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        cancel = threading.Event()
        seen = []

        for event in orchestrator.start_sync(connected, cancel=cancel):
            seen.append(event)
            if event.type == "processing":
                cancel.set()

        assert event_types(seen) == ["start", "page", "processing", "error"]
        assert seen[-1].data["error"] == "cancelled"
        with session_scope(session_factory) as session:
            assert BookmarkRepository(session, connected).count() == 1
            log = SyncLogRepository(session, connected).recent()[0]
            assert log.status == "failed"
            assert log.error_message == "cancelled"
            assert log.new_bookmarks == 1

    @respx.mock
    def test_closing_stream_cancels(self, orchestrator, session_factory, connected,
                                    platform_page_payload):
        route = respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        events = orchestrator.start_sync(connected)
        assert next(events).type == "start"
        assert next(events).type == "page"
        events.close()

        assert route.call_count == 1
        with session_scope(session_factory) as session:
            log = SyncLogRepository(session, connected).recent()[0]
            assert log.status == "failed"
            assert log.error_message == "cancelled"

    @respx.mock
    def test_delay_between_new_items(self, session_factory, connected, platform_page_payload):
        respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        orchestrator = SyncOrchestrator(session_factory, config=SyncConfig(delay=0.5))

        with patch("bookmark_hub.sync.time.sleep") as mock_sleep:
            list(orchestrator.start_sync(connected, all_pages=False))

        # no pause after the last item of the page
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(0.5)

    @respx.mock
    def test_enrichment_from_mirror(self, session_factory, connected, platform_page_payload,
                                    mirror_video_article_payload):
        respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        respx.get("https://api.fxtwitter.com/longposter/status/1800000000000000001").mock(
            return_value=httpx.Response(200, json=mirror_video_article_payload)
        )
        respx.get(url__startswith="https://api.fxtwitter.com/").mock(
            return_value=httpx.Response(404)
        )

        with MirrorClient() as mirror:
            orchestrator = SyncOrchestrator(
                session_factory, mirror=mirror, config=SyncConfig(delay=0)
            )
            events = list(orchestrator.start_sync(connected, all_pages=False))

        assert events[-1].data["stats"]["new"] == 3
        with session_scope(session_factory) as session:
            repo = BookmarkRepository(session, connected)
            enriched = repo.get("1800000000000000001")
            assert enriched.category == "video"
            assert enriched.text.startswith("A long thread opener")
            # failed enrichment leaves the platform copy as-is
            assert repo.get("1800000000000000002").category == "photo"

    @respx.mock
    def test_enrichment_retried_once(self, session_factory, connected, platform_page_payload,
                                     mirror_video_article_payload):
        respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        mirror_route = respx.get(
            "https://api.fxtwitter.com/longposter/status/1800000000000000001"
        )
        mirror_route.side_effect = [
            httpx.Response(503),
            httpx.Response(200, json=mirror_video_article_payload),
        ]
        respx.get(url__startswith="https://api.fxtwitter.com/").mock(
            return_value=httpx.Response(404)
        )

        with MirrorClient() as mirror, patch("bookmark_hub.sync.time.sleep") as mock_sleep:
            orchestrator = SyncOrchestrator(
                session_factory, mirror=mirror, config=SyncConfig(delay=0)
            )
            list(orchestrator.start_sync(connected, all_pages=False))

        assert mirror_route.call_count == 2
        mock_sleep.assert_called_once_with(0.2)
        with session_scope(session_factory) as session:
            assert BookmarkRepository(session, connected).get(
                "1800000000000000001"
            ).category == "video"

    @respx.mock
    def test_enrichment_gives_up_after_two_attempts(self, session_factory, connected,
                                                    platform_page_payload):
        respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        mirror_route = respx.get(url__startswith="https://api.fxtwitter.com/").mock(
            return_value=httpx.Response(500)
        )

        with MirrorClient() as mirror, patch("bookmark_hub.sync.time.sleep"):
            orchestrator = SyncOrchestrator(
                session_factory, mirror=mirror, config=SyncConfig(delay=0)
            )
            events = list(orchestrator.start_sync(connected, all_pages=False))

        assert mirror_route.call_count == 6
        assert events[-1].data["stats"]["new"] == 3

    @respx.mock
    def test_unusable_mirror_data_keeps_platform_copy(self, session_factory, connected,
                                                      platform_page_payload):
        respx.get(BOOKMARKS_URL).mock(
            return_value=httpx.Response(200, json=platform_page_payload)
        )
        respx.get(url__startswith="https://api.fxtwitter.com/").mock(
            return_value=httpx.Response(200, json={"tweet": {"id": "1"}})
        )

        with MirrorClient() as mirror, patch(
            "bookmark_hub.sync.normalize_mirror_post", side_effect=AttributeError("bad shape")
        ):
            orchestrator = SyncOrchestrator(
                session_factory, mirror=mirror, config=SyncConfig(delay=0)
            )
            events = list(orchestrator.start_sync(connected, all_pages=False))

        assert events[-1].data["stats"] == {"total": 3, "new": 3, "duplicates": 0, "failed": 0}
        with session_scope(session_factory) as session:
            assert BookmarkRepository(session, connected).get(
                "1800000000000000002"
            ).category == "photo"

    def test_sse_rendering(self, orchestrator, alice):
        events = orchestrator.start_sync(alice)
        event = next(events)
        events.close()
        assert event.to_sse().startswith("event: start\ndata: {")
        assert event.to_sse().endswith("\n\n")


class TestSyncLogs:
    def test_lists_recent_runs(self, session_factory, session, alice):
        complete_sync_at(session_factory, alice, T0)
        runs = sync_logs(SyncLogRepository(session, alice))
        assert len(runs) == 1
        assert runs[0]["status"] == "completed"
        assert runs[0]["completedAt"] == T0.isoformat()
