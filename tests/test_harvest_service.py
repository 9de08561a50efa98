"""
tests/test_harvest_service.py

Pytest unit tests for HarvestService wiring that needs no browser.

Coverage
--------
- Target loading and name selection from the configured targets file
- Run context defaults from settings
- Empty selections fail before any stage starts
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from harvester.config import HarvestSettings, PoolSettings, RunSettings
from harvester.scraping.notifications import LoggingNotificationSink
from harvester.services.harvest_service import HarvestService

TARGETS = {
    "profiles": [
        {
            "name": "site",
            "base_url": "https://example.com",
            "listing_selector": "a.card",
            "fields": [{"name": "title", "selector": "h1"}],
        }
    ],
    "targets": [
        {"name": "cairo", "profile": "site", "seed_url": "https://example.com/c"},
        {"name": "giza", "profile": "site", "seed_url": "https://example.com/g"},
        {"name": "alex", "profile": "site", "seed_url": "https://example.com/a", "enabled": False},
    ],
}


@pytest.fixture()
def service(tmp_path: Path, session_factory) -> HarvestService:
    path = tmp_path / "targets.json"
    path.write_text(json.dumps(TARGETS), encoding="utf-8")
    settings = HarvestSettings(
        pool=PoolSettings(max_concurrency=6),
        run=RunSettings(targets_path=str(path)),
    )
    return HarvestService(settings=settings, session_factory=session_factory)


def test_load_targets_selects_enabled_by_name(service: HarvestService) -> None:
    assert [target.name for target in service.load_targets()] == ["cairo", "giza"]
    assert [target.name for target in service.load_targets(["GIZA"])] == ["giza"]
    assert service.load_targets(["alex"]) == []


def test_new_context_uses_settings(service: HarvestService) -> None:
    context = service.new_context()

    assert context.pool_cap == 6
    assert isinstance(context.notifier, LoggingNotificationSink)
    assert context.keep_running is True


def test_run_without_matching_targets_fails_fast(service: HarvestService) -> None:
    with pytest.raises(ValueError, match="No enabled targets"):
        service.run(targets=["alexandria"])
