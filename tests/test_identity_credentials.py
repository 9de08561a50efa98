"""
tests/test_identity_credentials.py

Pytest unit tests for egress identity rotation and the credential store.

Coverage
--------
- Disabled rotation builds the static rotator
- WireGuard rotation command sequence; failures surface as IdentityRotationError
- ensure_active brings a down interface up
- Optional wait for the egress address to change after rotation
- Credential file load/save and refresh validation
- Corrupt auth file reads as empty and triggers a refresh
- Browser refresh wraps unusable cookie files
"""

from __future__ import annotations

import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from harvester.config import BrowserSettings, CredentialSettings, IdentitySettings
from harvester.domain.harvest import LISTINGS, Credential, record_key
from harvester.scraping.credentials import BrowserCredentialRefresher, JsonFileCredentialStore
from harvester.scraping.enrichment import EnrichmentStage
from harvester.scraping.errors import CredentialRefreshError, IdentityRotationError
from harvester.scraping.identity import (
    StaticIdentityRotator,
    WireGuardIdentityRotator,
    build_identity_rotator,
)
from harvester.scraping.run_context import RunContext
from tests.fakes import (
    FakeIdentityRotator,
    InMemoryDocumentStore,
    RecordingNotificationSink,
    ScriptedLeadClient,
    fast_enrichment_settings,
    listing_url,
    make_target,
)


class FakeRunner:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.commands: list[list[str]] = []
        self._failing = failing or set()

    def __call__(self, command, **kwargs):
        self.commands.append(command)
        joined = " ".join(command)
        if joined in self._failing:
            raise subprocess.CalledProcessError(1, command, stderr="interface busy")
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")


def _ip_session(*addresses: str) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    responses = []
    for address in addresses:
        response = MagicMock()
        response.text = address
        responses.append(response)
    session.get.side_effect = responses
    return session


def _rotator(runner: FakeRunner, session: MagicMock, **overrides) -> WireGuardIdentityRotator:
    return WireGuardIdentityRotator(
        settings=IdentitySettings(enabled=True, interface="wg0", **overrides),
        session=session,
        runner=runner,
        sleep=lambda _seconds: None,
    )


# ---------------------------------------------------------------------------
# Identity rotation
# ---------------------------------------------------------------------------


class TestIdentityRotation:
    def test_disabled_rotation_is_static(self) -> None:
        rotator = build_identity_rotator(IdentitySettings(enabled=False))

        assert isinstance(rotator, StaticIdentityRotator)
        rotator.rotate()
        assert rotator.current_identity() == "static"

    def test_rotate_bounces_interface(self) -> None:
        runner = FakeRunner()
        rotator = _rotator(runner, _ip_session("10.0.0.1", "10.0.0.2"))

        rotator.rotate()

        assert runner.commands == [["wg-quick", "down", "wg0"], ["wg-quick", "up", "wg0"]]

    def test_failed_down_still_brings_interface_up(self) -> None:
        runner = FakeRunner(failing={"wg-quick down wg0"})
        rotator = _rotator(runner, _ip_session("10.0.0.1", "10.0.0.2"))

        rotator.rotate()

        assert runner.commands[-1] == ["wg-quick", "up", "wg0"]

    def test_failed_up_raises(self) -> None:
        runner = FakeRunner(failing={"wg-quick up wg0"})
        rotator = _rotator(runner, _ip_session("10.0.0.1"))

        with pytest.raises(IdentityRotationError, match="interface busy"):
            rotator.rotate()

    def test_ensure_active_starts_down_interface(self) -> None:
        runner = FakeRunner(failing={"wg show wg0"})
        rotator = _rotator(runner, _ip_session("10.0.0.3"))

        rotator.ensure_active()

        assert runner.commands == [["wg", "show", "wg0"], ["wg-quick", "up", "wg0"]]

    def test_identity_lookup_failure_is_unknown(self) -> None:
        session = MagicMock(spec=requests.Session)
        session.get.side_effect = requests.ConnectionError("offline")
        rotator = _rotator(FakeRunner(), session)

        assert rotator.current_identity() == "unknown"

    def test_wait_for_change_polls_until_address_differs(self) -> None:
        session = _ip_session("10.0.0.1", "10.0.0.1", "10.0.0.1", "10.0.0.2")
        rotator = _rotator(
            FakeRunner(),
            session,
            wait_for_change=True,
            change_timeout_seconds=6.0,
            change_poll_seconds=2.0,
        )

        rotator.rotate()

        assert session.get.call_count == 4

    def test_wait_for_change_gives_up_after_timeout(self, caplog) -> None:
        session = _ip_session(*["10.0.0.1"] * 4)
        rotator = _rotator(
            FakeRunner(),
            session,
            wait_for_change=True,
            change_timeout_seconds=4.0,
            change_poll_seconds=2.0,
        )

        with caplog.at_level("WARNING", logger="harvester.scraping.identity"):
            rotator.rotate()

        assert session.get.call_count == 4
        assert "identity_unchanged" in caplog.text

    def test_rotation_without_wait_checks_address_once(self) -> None:
        session = _ip_session("10.0.0.1", "10.0.0.1")
        rotator = _rotator(FakeRunner(), session)

        rotator.rotate()

        assert session.get.call_count == 2


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class TestJsonFileCredentialStore:
    def test_missing_file_is_an_empty_credential(self, tmp_path: Path) -> None:
        store = JsonFileCredentialStore(path=tmp_path / "auth.json", refresher=Credential)

        credential = store.load()

        assert credential == Credential()
        assert credential.is_complete is False

    def test_save_then_load(self, tmp_path: Path) -> None:
        store = JsonFileCredentialStore(path=tmp_path / "auth.json", refresher=Credential)
        saved = Credential(
            cookie="a=1",
            authorization_token="Bearer t",
            refreshed_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        )

        store.save(saved)

        assert store.load() == saved

    def test_refresh_persists_new_credential(self, tmp_path: Path) -> None:
        fresh = Credential(cookie="a=2", authorization_token="Bearer u")
        store = JsonFileCredentialStore(path=tmp_path / "auth.json", refresher=lambda: fresh)

        assert store.refresh() == fresh
        assert store.load().authorization_token == "Bearer u"

    def test_incomplete_refresh_is_rejected(self, tmp_path: Path) -> None:
        store = JsonFileCredentialStore(
            path=tmp_path / "auth.json",
            refresher=lambda: Credential(cookie="a=3"),
        )

        with pytest.raises(CredentialRefreshError):
            store.refresh()
        assert not (tmp_path / "auth.json").exists()

    def test_corrupt_file_is_an_empty_credential(self, tmp_path: Path) -> None:
        path = tmp_path / "auth.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileCredentialStore(path=path, refresher=Credential)

        assert store.load() == Credential()

    def test_corrupt_file_is_refreshed_by_enrichment(self, tmp_path: Path) -> None:
        path = tmp_path / "auth.json"
        path.write_text("{not json", encoding="utf-8")
        refreshes: list[int] = []

        def refresher() -> Credential:
            refreshes.append(1)
            return Credential(cookie="a=9", authorization_token="Bearer fresh")

        target = make_target()
        settings = fast_enrichment_settings()
        documents = InMemoryDocumentStore()
        documents.upsert(
            LISTINGS,
            key=record_key(target.name, listing_url(1)),
            set_on_insert={"phone_numbers": None},
            always_set={},
        )
        client = ScriptedLeadClient(settings=settings)
        stage = EnrichmentStage(
            store=documents,
            client=client,
            identity=FakeIdentityRotator(),
            credentials=JsonFileCredentialStore(path=path, refresher=refresher),
            settings=settings,
            context=RunContext(notifier=RecordingNotificationSink()),
        )

        summary = stage.run(target)

        assert refreshes == [1]
        assert summary.succeeded == 1
        assert client.calls[0][2] == "Bearer fresh"
        assert json.loads(path.read_text(encoding="utf-8"))["authorization"] == "Bearer fresh"


class TestBrowserCredentialRefresher:
    def test_unusable_cookie_file_raises_refresh_error(self, tmp_path: Path, monkeypatch) -> None:
        cookies = tmp_path / "cookies.json"
        cookies.write_text("{not json", encoding="utf-8")
        monkeypatch.setattr("harvester.scraping.credentials.sync_playwright", MagicMock())
        refresher = BrowserCredentialRefresher(
            settings=CredentialSettings(capture_timeout_seconds=0.0),
            browser_settings=BrowserSettings(cookies_path=str(cookies)),
        )

        with pytest.raises(CredentialRefreshError, match="cookie file"):
            refresher()
