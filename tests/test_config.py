"""Tests for settings and the cache subcommand."""

from __future__ import annotations

from pathlib import Path

import pytest

from brewdash.cache import DiskCache
from brewdash.cli import build_parser, main
from brewdash.config import PLATFORM_LINUX, Settings, default_cache_dir


def test_default_cache_dir_prefers_explicit_variable(tmp_path: Path) -> None:
    env = {"BREWDASH_CACHE_DIR": str(tmp_path / "explicit"), "XDG_CACHE_HOME": str(tmp_path / "xdg")}

    assert default_cache_dir(env) == tmp_path / "explicit"
    assert default_cache_dir({"XDG_CACHE_HOME": str(tmp_path / "xdg")}) == tmp_path / "xdg" / "brewdash"


def test_settings_from_env_with_overrides(tmp_path: Path) -> None:
    env = {
        "BREWDASH_PLATFORM": "linux",
        "BREWDASH_HTTP_TIMEOUT": "5",
        "BREWDASH_MANIFEST": "~/Brewfile",
    }

    settings = Settings.from_env(env, cache_dir=tmp_path, manifest=None)

    assert settings.platform == PLATFORM_LINUX
    assert settings.http_timeout == 5.0
    assert settings.manifest == "~/Brewfile"
    assert settings.cache_dir == tmp_path


def test_parser_rejects_unknown_filter() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["list", "--filter", "everything"])


def test_cache_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cache = DiskCache(tmp_path)
    cache.write("formula.json", b"[]")

    assert main(["--cache-dir", str(tmp_path), "cache"]) == 0
    assert "formula.json" in capsys.readouterr().out

    assert main(["--cache-dir", str(tmp_path), "cache", "--clear"]) == 0
    assert "Removed 1 cache files" in capsys.readouterr().out
    assert cache.stats()["total_entries"] == 0


def test_bad_timeout_is_reported(tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
                                 capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("BREWDASH_HTTP_TIMEOUT", "soon")

    assert main(["--cache-dir", str(tmp_path), "cache"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: invalid configuration")
    assert "http_timeout" in err
