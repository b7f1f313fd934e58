"""Runtime settings, read from the environment and overridden by CLI flags."""

import os
import sys
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

PLATFORM_MACOS = "darwin"
PLATFORM_LINUX = "linux"


def default_cache_dir(env: Mapping[str, str] = os.environ) -> Path:
    """Resolve the cache directory from BREWDASH_CACHE_DIR or XDG_CACHE_HOME."""
    if env.get("BREWDASH_CACHE_DIR"):
        return Path(env["BREWDASH_CACHE_DIR"]).expanduser()
    if env.get("XDG_CACHE_HOME"):
        return Path(env["XDG_CACHE_HOME"]).expanduser() / "brewdash"
    return Path.home() / ".cache" / "brewdash"


def detect_platform() -> str:
    return PLATFORM_LINUX if sys.platform.startswith("linux") else PLATFORM_MACOS


class Settings(BaseModel):
    """brewdash configuration."""

    cache_dir: Path = Field(default_factory=default_cache_dir)
    platform: str = Field(default_factory=detect_platform, description="darwin or linux")
    http_timeout: float = Field(default=30.0, description="Seconds per HTTP request")
    manifest: Optional[str] = Field(default=None, description="Brewfile path or https URL")
    brew_binary: str = "brew"
    flatpak_binary: str = "flatpak"

    @classmethod
    def from_env(cls, env: Mapping[str, str] = os.environ, **overrides) -> "Settings":
        """
        Raises:
            ValidationError: an environment value has the wrong type.
        """
        values = {"cache_dir": default_cache_dir(env)}
        if env.get("BREWDASH_PLATFORM"):
            values["platform"] = env["BREWDASH_PLATFORM"]
        if env.get("BREWDASH_HTTP_TIMEOUT"):
            values["http_timeout"] = env["BREWDASH_HTTP_TIMEOUT"]
        if env.get("BREWDASH_MANIFEST"):
            values["manifest"] = env["BREWDASH_MANIFEST"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
