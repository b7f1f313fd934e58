"""Data sources feeding the package catalog."""

from brewdash.sources.base import BaseSource, BrewClient, get_session, run_command
from brewdash.sources.flatpak import FlatpakClient, FlatpakInstalledSource, FlatpakRemoteSource
from brewdash.sources.homebrew import (
    CaskAnalyticsSource,
    FormulaAnalyticsSource,
    InstalledCasksSource,
    InstalledFormulaeSource,
    RemoteCasksSource,
    RemoteFormulaeSource,
)
from brewdash.sources.taps import TapPackageSource

__all__ = [
    "BaseSource",
    "BrewClient",
    "CaskAnalyticsSource",
    "FlatpakClient",
    "FlatpakInstalledSource",
    "FlatpakRemoteSource",
    "FormulaAnalyticsSource",
    "InstalledCasksSource",
    "InstalledFormulaeSource",
    "RemoteCasksSource",
    "RemoteFormulaeSource",
    "TapPackageSource",
    "get_session",
    "run_command",
]
