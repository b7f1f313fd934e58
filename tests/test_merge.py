"""Tests for catalog merging."""

from __future__ import annotations

from brewdash.config import PLATFORM_LINUX, PLATFORM_MACOS
from brewdash.merge import merge_catalog, supported_on_linux
from brewdash.models import AnalyticsItem, Cask, Formula, PackageKind

from tests.conftest import cask, formula


def _merge(installed=(), remote=(), analytics=None, installed_casks=(), remote_casks=(),
           cask_analytics=None, platform=PLATFORM_MACOS):
    return merge_catalog(
        [Formula.model_validate(f) for f in installed],
        [Formula.model_validate(f) for f in remote],
        analytics or {},
        [Cask.model_validate(c) for c in installed_casks],
        [Cask.model_validate(c) for c in remote_casks],
        cask_analytics or {},
        platform,
    )


def test_installed_formula_overrides_remote() -> None:
    catalog = _merge(
        installed=[formula("wget", desc="local", versions={"stable": "1.25"}, locally_installed=True,
                           installed=[{"version": "1.25", "installed_on_request": True}])],
        remote=[formula("wget", desc="remote", versions={"stable": "1.24"}), formula("curl")],
    )

    by_name = {p.name: p for p in catalog}
    wget = by_name["wget"]
    assert wget.installed is True
    assert wget.description == "local"
    assert wget.version == "1.25"
    assert wget.installed_on_request is True
    assert by_name["curl"].installed is False


def test_installed_cask_overrides_remote() -> None:
    catalog = _merge(
        installed_casks=[cask("iterm2", version="3.5", locally_installed=True, installed="3.5")],
        remote_casks=[cask("iterm2", version="3.6")],
    )

    assert len(catalog) == 1
    assert catalog[0].kind == PackageKind.CASK
    assert catalog[0].installed is True
    assert catalog[0].version == "3.5"


def test_merge_is_sorted_and_idempotent() -> None:
    args = dict(
        installed=[formula("zsh", locally_installed=True)],
        remote=[formula("zsh"), formula("bat"), formula("fd")],
        remote_casks=[cask("alacritty")],
    )

    first = _merge(**args)
    second = _merge(**args)

    assert [p.name for p in first] == ["alacritty", "bat", "fd", "zsh"]
    assert first == second


def test_analytics_attached_when_ranked() -> None:
    analytics = {
        "bat": AnalyticsItem(number=3, formula="bat", count="1,234"),
        "fd": AnalyticsItem(number=0, formula="fd", count="10"),
    }

    by_name = {p.name: p for p in _merge(remote=[formula("bat"), formula("fd")], analytics=analytics)}

    assert by_name["bat"].analytics_rank == 3
    assert by_name["bat"].analytics_downloads == 1234
    assert by_name["fd"].analytics_rank == 0
    assert by_name["fd"].analytics_downloads == 0


def test_linux_skips_macos_only_formula() -> None:
    mac_only = formula("mas", requirements=[{"name": "macos"}])
    portable = formula("mas")

    assert _merge(remote=[mac_only], platform=PLATFORM_LINUX) == []
    assert [p.name for p in _merge(remote=[portable], platform=PLATFORM_LINUX)] == ["mas"]
    assert [p.name for p in _merge(remote=[mac_only], platform=PLATFORM_MACOS)] == ["mas"]


def test_linux_bottle_rules() -> None:
    mac_bottles = formula("macfoo", bottle={"stable": {"files": {"arm64_sonoma": {}, "ventura": {}}}})
    linux_bottles = formula("linuxfoo", bottle={"stable": {"files": {"x86_64_linux": {}, "sonoma": {}}}})
    no_bottles = formula("sourceonly")

    names = [p.name for p in _merge(remote=[mac_bottles, linux_bottles, no_bottles], platform=PLATFORM_LINUX)]

    assert names == ["linuxfoo", "sourceonly"]
    assert supported_on_linux(Formula.model_validate(no_bottles))


def test_linux_drops_casks() -> None:
    catalog = _merge(
        remote=[formula("git")],
        installed_casks=[cask("firefox", locally_installed=True)],
        remote_casks=[cask("iterm2")],
        platform=PLATFORM_LINUX,
    )

    assert [p.name for p in catalog] == ["git"]
