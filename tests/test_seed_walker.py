"""
tests/test_seed_walker.py

Pytest unit tests for SeedWalker.

Coverage
--------
- Page URL construction
- Stop on a page without new links (checkpoint frozen at the last good page)
- Access-denied pages skipped without advancing last_page
- One navigation retry, then skip
- Session loss recreates the browser session
- Consecutive skips stop the walk as blocked
- Inclusive page limit and probed page count
- Resume policy
- Idempotent re-runs keep candidate state and report no new links
- Result pages wait for the listing selector
"""

from __future__ import annotations

from pathlib import Path

import pytest

from harvester.domain.harvest import CANDIDATES, CandidateState, StopReason, checkpoint_key, record_key
from harvester.scraping.checkpoints import JsonFileCheckpointStore
from harvester.scraping.errors import SessionLostError, TransientNetworkError
from harvester.scraping.run_context import RunContext
from harvester.scraping.seed_walker import SEED_STAGE, SeedWalker, build_page_url
from tests.fakes import (
    FakeFetcherFactory,
    FakePage,
    FakeSite,
    InMemoryDocumentStore,
    RecordingNotificationSink,
    browser_settings,
    fast_seed_settings,
    listing_url,
    make_target,
    page_url,
)


class RecordingCheckpointStore(JsonFileCheckpointStore):
    def __init__(self, *, path: Path) -> None:
        super().__init__(path=path)
        self.calls: list[tuple[int, int | None]] = []

    def record(self, key, *, last_page_tried, last_page=None):
        self.calls.append((last_page_tried, last_page))
        return super().record(key, last_page_tried=last_page_tried, last_page=last_page)


def _links(page: int, count: int = 3) -> set[str]:
    return {f"/ar/listing/{page * 100 + index}" for index in range(count)}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def checkpoints(tmp_path: Path) -> RecordingCheckpointStore:
    return RecordingCheckpointStore(path=tmp_path / "progress.json")


@pytest.fixture()
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


def _walker(
    *,
    store: InMemoryDocumentStore,
    checkpoints: JsonFileCheckpointStore,
    factory: FakeFetcherFactory,
    sink: RecordingNotificationSink | None = None,
    context: RunContext | None = None,
    **settings_overrides,
) -> SeedWalker:
    return SeedWalker(
        store=store,
        checkpoints=checkpoints,
        fetcher_factory=factory,
        settings=fast_seed_settings(**settings_overrides),
        browser_settings=browser_settings(),
        context=context or RunContext(notifier=sink or RecordingNotificationSink()),
    )


# ---------------------------------------------------------------------------
# Page URLs
# ---------------------------------------------------------------------------


class TestBuildPageUrl:
    def test_appends_page_to_existing_query(self) -> None:
        url = build_page_url("https://x.test/search/?sort=new&dir=desc", 3)
        assert url == "https://x.test/search/?sort=new&dir=desc&page=3"

    def test_replaces_existing_page_parameter(self) -> None:
        url = build_page_url("https://x.test/search/?page=9&sort=new", 2)
        assert url == "https://x.test/search/?sort=new&page=2"

    def test_adds_query_when_missing(self) -> None:
        assert build_page_url("https://x.test/search/", 1) == "https://x.test/search/?page=1"


# ---------------------------------------------------------------------------
# Stop conditions
# ---------------------------------------------------------------------------


class TestStopConditions:
    def test_stops_on_page_without_new_links_and_keeps_previous_checkpoint(
        self, store, checkpoints
    ) -> None:
        pages = {page_url(page): FakePage(links=_links(page)) for page in range(1, 7)}
        pages[page_url(7)] = FakePage(links=_links(6))
        site = FakeSite(pages)
        target = make_target()

        summary = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(target)

        assert summary.stop_reason == StopReason.EMPTY_PAGE
        assert summary.pages_processed == 7
        assert summary.last_page == 6
        assert page_url(8) not in site.navigations
        checkpoint = checkpoints.load(checkpoint_key(target.name, SEED_STAGE))
        assert checkpoint is not None
        assert checkpoint.last_page == 6
        assert store.count(CANDIDATES, filters={"target_name": target.name}) == 18

    def test_first_page_empty_persists_nothing(self, store, checkpoints) -> None:
        site = FakeSite({page_url(1): FakePage(links=set())})

        summary = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(
            make_target()
        )

        assert summary.stop_reason == StopReason.EMPTY_PAGE
        assert summary.last_page is None
        assert checkpoints.calls == []
        assert store.documents(CANDIDATES) == []

    def test_page_limit_is_inclusive(self, store, checkpoints) -> None:
        site = FakeSite({page_url(page): FakePage(links=_links(page)) for page in range(1, 10)})
        target = make_target(start_page=2, page_limit=4)

        summary = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(target)

        assert summary.stop_reason == StopReason.REACHED_LIMIT
        assert summary.last_page == 4
        assert site.navigations == [page_url(2), page_url(3), page_url(4)]

    def test_probed_page_count_bounds_the_walk(self, store, checkpoints) -> None:
        pages = {page_url(page): FakePage(links=_links(page)) for page in range(1, 10)}
        pages[page_url(1)] = FakePage(links=_links(1), page_count=3)
        site = FakeSite(pages)

        summary = _walker(
            store=store,
            checkpoints=checkpoints,
            factory=FakeFetcherFactory(site),
            probe_page_count=True,
        ).walk(make_target())

        assert summary.end_page == 3
        assert summary.stop_reason == StopReason.REACHED_LIMIT
        assert summary.last_page == 3

    def test_stop_request_ends_walk(self, store, checkpoints) -> None:
        site = FakeSite({page_url(page): FakePage(links=_links(page)) for page in range(1, 5)})
        context = RunContext(notifier=RecordingNotificationSink())
        context.request_stop("SIGTERM")

        summary = _walker(
            store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site), context=context
        ).walk(make_target())

        assert summary.stop_reason == StopReason.STOPPED
        assert site.navigations == []


# ---------------------------------------------------------------------------
# Skipped pages
# ---------------------------------------------------------------------------


class TestSkippedPages:
    def test_access_denied_page_is_skipped_and_walk_continues(self, store, checkpoints, sink) -> None:
        site = FakeSite(
            {
                page_url(1): FakePage(links=_links(1)),
                page_url(2): FakePage(status=403),
                page_url(3): FakePage(links=_links(3)),
                page_url(4): FakePage(links=set()),
            }
        )

        summary = _walker(
            store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site), sink=sink
        ).walk(make_target())

        assert checkpoints.calls == [(1, 1), (2, None), (3, 3)]
        assert summary.pages_skipped == 1
        assert summary.last_page == 3
        assert any("page 2" in message for message in sink.messages)
        assert sink.images
        # access denied is not retried
        assert site.navigation_count(page_url(2)) == 1

    def test_transient_failure_is_retried_once(self, store, checkpoints) -> None:
        site = FakeSite(
            {
                page_url(1): [FakePage(error=TransientNetworkError("timeout")), FakePage(links=_links(1))],
                page_url(2): FakePage(links=set()),
            }
        )

        summary = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(
            make_target()
        )

        assert site.navigation_count(page_url(1)) == 2
        assert summary.pages_skipped == 0
        assert summary.last_page == 1

    def test_second_transient_failure_skips_page(self, store, checkpoints) -> None:
        site = FakeSite(
            {
                page_url(1): FakePage(error=TransientNetworkError("timeout")),
                page_url(2): FakePage(links=_links(2)),
                page_url(3): FakePage(links=set()),
            }
        )

        summary = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(
            make_target()
        )

        assert site.navigation_count(page_url(1)) == 2
        assert summary.pages_skipped == 1
        assert checkpoints.calls[0] == (1, None)
        assert summary.last_page == 2

    def test_server_error_status_is_retried_then_skipped(self, store, checkpoints) -> None:
        site = FakeSite({page_url(1): FakePage(status=502), page_url(2): FakePage(links=set())})

        summary = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(
            make_target()
        )

        assert site.navigation_count(page_url(1)) == 2
        assert summary.pages_skipped == 1

    def test_lost_session_is_recreated(self, store, checkpoints) -> None:
        site = FakeSite(
            {
                page_url(1): [FakePage(error=SessionLostError("target closed")), FakePage(links=_links(1))],
                page_url(2): FakePage(links=set()),
            }
        )
        factory = FakeFetcherFactory(site)

        summary = _walker(store=store, checkpoints=checkpoints, factory=factory).walk(make_target())

        assert len(factory.created) == 2
        assert factory.created[0].closed
        assert summary.last_page == 1

    def test_consecutive_skips_stop_walk_as_blocked(self, store, checkpoints, sink) -> None:
        site = FakeSite({page_url(page): FakePage(status=429) for page in range(1, 10)})

        summary = _walker(
            store=store,
            checkpoints=checkpoints,
            factory=FakeFetcherFactory(site),
            sink=sink,
            max_consecutive_page_failures=3,
        ).walk(make_target())

        assert summary.stop_reason == StopReason.BLOCKED
        assert summary.pages_skipped == 3
        assert summary.last_page is None
        assert any("stopped" in message for message in sink.messages)


# ---------------------------------------------------------------------------
# Resume and idempotence
# ---------------------------------------------------------------------------


class TestResumeAndIdempotence:
    def test_resume_policy_starts_after_checkpoint(self, store, checkpoints) -> None:
        target = make_target(start_page=1)
        checkpoints.record(checkpoint_key(target.name, SEED_STAGE), last_page_tried=5, last_page=4)
        site = FakeSite({page_url(5): FakePage(links=_links(5)), page_url(6): FakePage(links=set())})

        walker = _walker(
            store=store,
            checkpoints=checkpoints,
            factory=FakeFetcherFactory(site),
            resume_policy="resume",
        )

        assert walker.resolve_start_page(target) == 5
        summary = walker.walk(target)
        assert summary.start_page == 5
        assert site.navigations[0] == page_url(5)

    def test_config_policy_ignores_checkpoint(self, store, checkpoints) -> None:
        target = make_target(start_page=2)
        checkpoints.record(checkpoint_key(target.name, SEED_STAGE), last_page_tried=9, last_page=9)
        walker = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(FakeSite()))

        assert walker.resolve_start_page(target) == 2

    def test_checkpoint_never_moves_backwards(self, store, checkpoints) -> None:
        target = make_target(start_page=1)
        key = checkpoint_key(target.name, SEED_STAGE)
        checkpoints.record(key, last_page_tried=10, last_page=10)
        site = FakeSite({page_url(1): FakePage(links=_links(1)), page_url(2): FakePage(links=set())})

        _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(target)

        assert checkpoints.load(key).last_page == 10

    def test_rerun_does_not_duplicate_or_reset_candidates(self, store, checkpoints) -> None:
        target = make_target()
        pages = {page_url(1): FakePage(links=_links(1)), page_url(2): FakePage(links=set())}

        _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(FakeSite(pages))).walk(target)
        scraped_url = listing_url(100)
        store.update(
            CANDIDATES,
            key=record_key(target.name, scraped_url),
            fields={"state": CandidateState.SCRAPED},
        )
        _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(FakeSite(pages))).walk(target)

        candidates = store.documents(CANDIDATES)
        assert len(candidates) == 3
        assert store.get(CANDIDATES, record_key(target.name, scraped_url))["state"] == CandidateState.SCRAPED

    def test_rerun_counts_only_inserted_links_as_new(self, store, checkpoints) -> None:
        target = make_target()
        pages = {page_url(1): FakePage(links=_links(1)), page_url(2): FakePage(links=set())}

        first = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(FakeSite(pages))).walk(
            target
        )
        second = _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(FakeSite(pages))).walk(
            target
        )

        assert first.links_new == 3
        assert second.links_found == 3
        assert second.links_new == 0

    def test_result_pages_wait_for_listing_cards(self, store, checkpoints) -> None:
        site = FakeSite({page_url(1): FakePage(links=_links(1)), page_url(2): FakePage(links=set())})
        target = make_target()

        _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(target)

        assert site.wait_selectors
        assert {selector for _url, selector in site.wait_selectors} == {target.profile.listing_selector}

    def test_links_are_absolutised_against_base_url(self, store, checkpoints) -> None:
        site = FakeSite(
            {
                page_url(1): FakePage(links={"/ar/listing/1", "https://listings.test/ar/listing/2"}),
                page_url(2): FakePage(links=set()),
            }
        )

        _walker(store=store, checkpoints=checkpoints, factory=FakeFetcherFactory(site)).walk(make_target())

        urls = sorted(document["url"] for document in store.documents(CANDIDATES))
        assert urls == [listing_url(1), listing_url(2)]
        assert all(document["state"] == CandidateState.NEW for document in store.documents(CANDIDATES))
