"""Tests for cached sources and the command/HTTP clients."""

from __future__ import annotations

import pytest

from brewdash.cache import DiskCache
from brewdash.errors import BrewNotFoundError, CommandError, SourceFetchError
from brewdash.models import ManifestEntry, Package, PackageKind
from brewdash.sources.base import BrewClient
from brewdash.sources.flatpak import FlatpakClient, FlatpakInstalledSource, FlatpakRemoteSource
from brewdash.sources.homebrew import (
    FORMULA_ANALYTICS_URL,
    FORMULAE_API_URL,
    FormulaAnalyticsSource,
    InstalledCasksSource,
    InstalledFormulaeSource,
    RemoteFormulaeSource,
)
from brewdash.sources.taps import UNAVAILABLE_DESCRIPTION, TapPackageSource

from tests.conftest import FakeResponse, FakeRunner, FakeSession, as_json, cask, formula


def test_brew_version(runner: FakeRunner, brew: BrewClient) -> None:
    runner[("brew", "--version")] = b"Homebrew 4.3.1\nHomebrew/homebrew-core (git revision abc)\n"

    assert brew.version() == "4.3.1"


def test_brew_missing_raises(brew: BrewClient) -> None:
    with pytest.raises(BrewNotFoundError):
        brew.version()


def test_installed_formulae_live_then_cached(cache: DiskCache, runner: FakeRunner, brew: BrewClient) -> None:
    runner[("brew", "info", "--json=v1", "--installed")] = as_json([formula("wget")])
    source = InstalledFormulaeSource(cache, brew)

    first = source.fetch()
    second = source.fetch()

    assert first[0].locally_installed is True
    assert first[0].local_path == "/opt/homebrew/Cellar/wget"
    assert second[0].locally_installed is True
    info_calls = [c for c in runner.calls if c[1] == "info"]
    assert len(info_calls) == 1


def test_force_refresh_skips_cache(cache: DiskCache, runner: FakeRunner, brew: BrewClient) -> None:
    runner[("brew", "info", "--json=v1", "--installed")] = as_json([formula("wget")])
    source = InstalledFormulaeSource(cache, brew)

    source.fetch()
    runner[("brew", "info", "--json=v1", "--installed")] = as_json([formula("wget"), formula("curl")])

    assert len(source.fetch()) == 1
    assert len(source.fetch(force_refresh=True)) == 2


def test_command_failure_raises_fetch_error(cache: DiskCache, brew: BrewClient) -> None:
    with pytest.raises(SourceFetchError) as excinfo:
        InstalledFormulaeSource(cache, brew).fetch()

    assert excinfo.value.source == "installed-formulae"


def test_malformed_payload_raises_fetch_error(cache: DiskCache, runner: FakeRunner, brew: BrewClient) -> None:
    runner[("brew", "info", "--json=v1", "--installed")] = b"not json"

    with pytest.raises(SourceFetchError):
        InstalledFormulaeSource(cache, brew).fetch()
    assert cache.read("installed.json", 10) is None


def test_installed_casks_empty_when_listing_fails(cache: DiskCache, brew: BrewClient) -> None:
    assert InstalledCasksSource(cache, brew).fetch() == []
    assert cache.age("installed-casks.json") is None


def test_failed_cask_info_is_not_cached(cache: DiskCache, runner: FakeRunner, brew: BrewClient) -> None:
    runner[("brew", "list", "--cask")] = b"iterm2\n"
    source = InstalledCasksSource(cache, brew)

    assert source.fetch() == []
    assert cache.age("installed-casks.json") is None

    runner[("brew", "info", "--json=v2", "--cask", "iterm2")] = as_json({"casks": [cask("iterm2")]})

    assert [c.token for c in source.fetch()] == ["iterm2"]


def test_no_installed_casks_is_cached(cache: DiskCache, runner: FakeRunner, brew: BrewClient) -> None:
    runner[("brew", "list", "--cask")] = b""

    assert InstalledCasksSource(cache, brew).fetch() == []
    assert cache.read("installed-casks.json", 10) == b'{"casks": []}'


def test_installed_casks_are_stamped(cache: DiskCache, runner: FakeRunner, brew: BrewClient) -> None:
    runner[("brew", "list", "--cask")] = b"iterm2\n"
    runner[("brew", "info", "--json=v2", "--cask", "iterm2")] = as_json(
        {"formulae": [], "casks": [cask("iterm2", installed="3.5")]}
    )

    casks = InstalledCasksSource(cache, brew).fetch()

    assert [c.token for c in casks] == ["iterm2"]
    assert casks[0].locally_installed is True


def test_remote_formulae_from_api(cache: DiskCache) -> None:
    session = FakeSession({FORMULAE_API_URL: as_json([formula("bat"), formula("fd")])})
    source = RemoteFormulaeSource(cache, session)

    assert [f.name for f in source.fetch()] == ["bat", "fd"]
    assert [f.name for f in source.fetch()] == ["bat", "fd"]
    assert session.calls == [FORMULAE_API_URL]


def test_empty_remote_cache_is_refetched(cache: DiskCache) -> None:
    cache.write("formula.json", b"[]")
    session = FakeSession({FORMULAE_API_URL: as_json([formula("bat")])})

    assert [f.name for f in RemoteFormulaeSource(cache, session).fetch()] == ["bat"]


def test_http_error_raises_fetch_error(cache: DiskCache) -> None:
    session = FakeSession({FORMULAE_API_URL: FakeResponse(b"", status_code=503)})

    with pytest.raises(SourceFetchError):
        RemoteFormulaeSource(cache, session).fetch()


def test_analytics_indexed_by_name(cache: DiskCache) -> None:
    payload = {
        "category": "install_on_request",
        "total_items": 2,
        "items": [
            {"number": 1, "formula": "openssl@3", "count": "1,234,567", "percent": "3.1"},
            {"number": 2, "formula": "ca-certificates", "count": "987", "percent": "1.0"},
        ],
    }
    session = FakeSession({FORMULA_ANALYTICS_URL: as_json(payload)})

    table = FormulaAnalyticsSource(cache, session).fetch()

    assert table["openssl@3"].number == 1
    assert table["openssl@3"].downloads == 1234567


def test_flatpak_sources(cache: DiskCache, runner: FakeRunner) -> None:
    runner[("flatpak", "list", "--app", "--columns=application")] = b"org.gimp.GIMP\n"
    runner[(
        "flatpak", "remote-ls", "flathub", "--app", "--columns=application,name,version,description",
    )] = b"org.gimp.GIMP\tGIMP\t2.10.38\tImage editor\norg.mozilla.firefox\tFirefox\n"
    client = FlatpakClient("flatpak", runner)

    assert FlatpakInstalledSource(cache, client).fetch() == {"org.gimp.GIMP"}

    metadata = FlatpakRemoteSource(cache, client).fetch()
    assert metadata["org.gimp.GIMP"].version == "2.10.38"
    assert metadata["org.mozilla.firefox"].description == ""
    assert metadata["org.mozilla.firefox"].kind == PackageKind.FLATPAK


class TestTapPackageSource:
    def test_known_and_cached_names_are_not_fetched(self, cache: DiskCache, runner: FakeRunner,
                                                     brew: BrewClient) -> None:
        runner[("brew", "info", "--json=v1", "foo")] = as_json([formula("foo")])
        source = TapPackageSource(cache, brew)
        known = {"bar": Package(name="bar", kind=PackageKind.FORMULA)}
        entries = [ManifestEntry(name="bar"), ManifestEntry(name="foo")]

        first = source.fetch(entries, known)
        calls_after_first = len(runner.calls)
        second = source.fetch(entries, known)

        assert [p.name for p in first] == ["bar", "foo"]
        assert [p.name for p in second] == ["bar", "foo"]
        assert len(runner.calls) == calls_after_first

    def test_batch_failure_falls_back_to_single_queries(self, cache: DiskCache, runner: FakeRunner,
                                                        brew: BrewClient) -> None:
        runner[("brew", "info", "--json=v2", "--cask", "good", "bad")] = CommandError(["brew"], 1)
        runner[("brew", "info", "--json=v2", "--cask", "good")] = as_json(
            {"casks": [cask("good", desc="works")]}
        )
        entries = [
            ManifestEntry(name="good", kind=PackageKind.CASK),
            ManifestEntry(name="bad", kind=PackageKind.CASK),
            ManifestEntry(name="org.gimp.GIMP", kind=PackageKind.FLATPAK),
        ]

        packages = TapPackageSource(cache, brew).fetch(entries, {})

        by_name = {p.name: p for p in packages}
        assert set(by_name) == {"good", "bad"}
        assert by_name["good"].description == "works"
        assert by_name["bad"].description == UNAVAILABLE_DESCRIPTION
        assert by_name["bad"].kind == PackageKind.CASK

    def test_force_refresh_ignores_cache(self, cache: DiskCache, runner: FakeRunner,
                                         brew: BrewClient) -> None:
        runner[("brew", "info", "--json=v1", "foo")] = as_json([formula("foo", desc="v1")])
        source = TapPackageSource(cache, brew)
        entries = [ManifestEntry(name="foo")]
        source.fetch(entries, {})

        runner[("brew", "info", "--json=v1", "foo")] = as_json([formula("foo", desc="v2")])

        assert source.fetch(entries, {})[0].description == "v1"
        assert source.fetch(entries, {}, force_refresh=True)[0].description == "v2"
