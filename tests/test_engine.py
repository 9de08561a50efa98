"""
tests/test_engine.py

Pytest tests for HarvestEngine running every stage against in-process fakes.

Coverage
--------
- Discovery, extraction and enrichment chained for one target
- Target status: success, partial_success, failed
- A failing stage skips the rest of its target but not other targets
- Checkpoint reset before discovery; a failed reset fails only its target
- Stage selection and validation
- Final run report and early stop
- Result pages and detail pages wait for different selectors
"""

from __future__ import annotations

from pathlib import Path

import pytest

from harvester.config import HarvestSettings
from harvester.domain.harvest import CANDIDATES, LISTINGS, CandidateState, checkpoint_key
from harvester.scraping.checkpoints import JsonFileCheckpointStore
from harvester.scraping.engine import HarvestEngine
from harvester.scraping.errors import FatalInfrastructureError
from harvester.scraping.run_context import RunContext
from harvester.scraping.seed_walker import SEED_STAGE
from tests.fakes import (
    FakeCredentialStore,
    FakeFetcherFactory,
    FakeIdentityRotator,
    FakePage,
    FakeSite,
    InMemoryDocumentStore,
    RecordingNotificationSink,
    ScriptedLeadClient,
    browser_settings,
    fast_enrichment_settings,
    fast_pool_settings,
    fast_seed_settings,
    listing_url,
    make_profile,
    make_target,
    page_url,
)


class BrokenCandidateStore(InMemoryDocumentStore):
    def find_batch(self, collection, *, filters, limit, after=None):
        if collection == CANDIDATES and filters.get("target_name") == "broken":
            raise FatalInfrastructureError("Document store failure: connection refused")
        return super().find_batch(collection, filters=filters, limit=limit, after=after)


def _site(listings: int = 3) -> FakeSite:
    site = FakeSite()
    site.set(page_url(1), FakePage(links={f"/ar/listing/{n}" for n in range(1, listings)}))
    site.set(page_url(2), FakePage(links={f"/ar/listing/{listings}"}))
    for number in range(1, listings + 1):
        site.set(listing_url(number), FakePage(fields={"title": f"Listing {number}", "price": "1"}))
    return site


class Harness:
    def __init__(
        self,
        tmp_path: Path,
        *,
        site: FakeSite | None = None,
        store: InMemoryDocumentStore | None = None,
        **seed_overrides,
    ) -> None:
        self.site = site or _site()
        self.store = store or InMemoryDocumentStore()
        self.checkpoints = JsonFileCheckpointStore(path=tmp_path / "progress.json")
        self.sink = RecordingNotificationSink()
        self.context = RunContext(notifier=self.sink, pool_cap=3)
        self.settings = HarvestSettings(
            browser=browser_settings(),
            seed=fast_seed_settings(**seed_overrides),
            pool=fast_pool_settings(min_concurrency=1),
            enrichment=fast_enrichment_settings(),
        )
        self.client = ScriptedLeadClient(settings=self.settings.enrichment)

    def engine(self) -> HarvestEngine:
        return HarvestEngine(
            settings=self.settings,
            store=self.store,
            checkpoints=self.checkpoints,
            fetcher_factory_for=lambda _target: FakeFetcherFactory(self.site),
            lead_client=self.client,
            identity=FakeIdentityRotator(),
            credentials=FakeCredentialStore(),
            context=self.context,
        )


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------


class TestPipeline:
    def test_all_stages_for_one_target(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path)

        [summary] = harness.engine().run(targets=[make_target()])

        assert summary.status == "success"
        assert summary.seed.links_new == 3
        assert summary.seed.last_page == 2
        assert summary.extraction.succeeded == 3
        assert summary.enrichment.succeeded == 3
        assert all(doc["state"] == CandidateState.SCRAPED for doc in harness.store.documents(CANDIDATES))
        records = harness.store.documents(LISTINGS)
        assert len(records) == 3
        assert all(record["phone_numbers"] == ["01000000001"] for record in records)

    def test_final_report_is_sent(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path)

        harness.engine().run(targets=[make_target()])

        report = harness.sink.messages[-1]
        assert report.startswith("*Harvest run finished*")
        assert "cairo: success" in report
        assert "extracted 3/3" in report

    def test_extraction_failure_is_partial_success(self, tmp_path: Path) -> None:
        site = _site()
        site.set(listing_url(2), FakePage(status=500))
        harness = Harness(tmp_path, site=site)

        [summary] = harness.engine().run(targets=[make_target()])

        assert summary.status == "partial_success"
        assert summary.extraction.failed == 1
        assert summary.enrichment.processed == 2

    def test_each_stage_waits_for_its_own_selector(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path)
        target = make_target(profile=make_profile(ready_selector="h1.detail"))

        harness.engine().run(targets=[target])

        listings = {listing_url(number) for number in range(1, 4)}
        waits = harness.site.wait_selectors
        assert {selector for url, selector in waits if url in listings} == {"h1.detail"}
        assert {selector for url, selector in waits if url not in listings} == {"a.card"}


# ---------------------------------------------------------------------------
# Failures and selection
# ---------------------------------------------------------------------------


class TestStageFailures:
    def test_failed_stage_skips_rest_of_target_only(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path, store=BrokenCandidateStore())

        broken, healthy = harness.engine().run(
            targets=[make_target("broken"), make_target("cairo")],
        )

        assert broken.status == "failed"
        assert broken.errors[0].startswith("extract: ")
        assert broken.enrichment is None
        assert healthy.status == "success"
        assert any("broken: extract stage failed" in text for text in harness.sink.messages)

    def test_selected_stages_run_in_pipeline_order(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path)

        [summary] = harness.engine().run(targets=[make_target()], stages=["extract", "seed"])

        assert summary.seed is not None
        assert summary.extraction is not None
        assert summary.enrichment is None

    def test_unknown_stage_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unknown stages"):
            Harness(tmp_path).engine().run(targets=[make_target()], stages=["export"])

    def test_no_targets_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            Harness(tmp_path).engine().run(targets=[])


class TestRunControl:
    def test_reset_checkpoint_restarts_discovery(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path, resume_policy="resume")
        key = checkpoint_key("cairo", SEED_STAGE)
        harness.checkpoints.record(key, last_page_tried=9, last_page=9)

        [summary] = harness.engine().run(
            targets=[make_target()],
            stages=["seed"],
            reset_checkpoint=True,
        )

        assert summary.seed.start_page == 1
        assert harness.checkpoints.load(key).last_page == 2

    def test_checkpoint_reset_failure_fails_only_that_target(self, tmp_path: Path) -> None:
        class BrokenResetStore(JsonFileCheckpointStore):
            def reset(self, key: str) -> None:
                raise FatalInfrastructureError("Checkpoint store failure: disk gone")

        harness = Harness(tmp_path)
        harness.checkpoints = BrokenResetStore(path=tmp_path / "progress.json")

        summaries = harness.engine().run(
            targets=[make_target(), make_target("giza")],
            stages=["seed"],
            reset_checkpoint=True,
        )

        assert [summary.status for summary in summaries] == ["failed", "failed"]
        assert summaries[0].errors == ["reset: Checkpoint store failure: disk gone"]
        assert summaries[0].seed is None
        assert harness.site.navigations == []
        assert harness.sink.messages[-1].startswith("*Harvest run finished*")

    def test_resume_without_reset_continues_after_checkpoint(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path, resume_policy="resume")
        harness.checkpoints.record(checkpoint_key("cairo", SEED_STAGE), last_page_tried=1, last_page=1)

        [summary] = harness.engine().run(targets=[make_target()], stages=["seed"])

        assert summary.seed.start_page == 2
        assert summary.seed.links_new == 1

    def test_stop_before_run_skips_targets(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path)
        harness.context.request_stop("SIGINT")

        summaries = harness.engine().run(targets=[make_target()])

        assert summaries == []
        assert "Stopped early: SIGINT" in harness.sink.messages[-1]
