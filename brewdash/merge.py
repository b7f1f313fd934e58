"""Merge installed and remote source documents into one catalog."""

from typing import Iterable, Mapping

from brewdash.config import PLATFORM_LINUX
from brewdash.models import AnalyticsItem, Cask, Formula, Package

MACOS_REQUIREMENT = "macos"


def supported_on_linux(formula: Formula) -> bool:
    """Whether a formula can be installed on Linux.

    - Formulae declaring a macOS requirement are excluded
    - Formulae shipping bottles, none of them for Linux, are excluded
    - Formulae without any bottle are kept
    """
    if formula.requires(MACOS_REQUIREMENT):
        return False
    platforms = formula.bottle_platforms()
    if platforms and not any("linux" in key for key in platforms):
        return False
    return True


def _analytics(name: str, table: Mapping[str, AnalyticsItem]) -> dict:
    item = table.get(name)
    if item is None or item.number <= 0:
        return {}
    return {"analytics_rank": item.number, "analytics_downloads": item.downloads}


def merge_catalog(
    installed_formulae: Iterable[Formula],
    remote_formulae: Iterable[Formula],
    formula_analytics: Mapping[str, AnalyticsItem],
    installed_casks: Iterable[Cask],
    remote_casks: Iterable[Cask],
    cask_analytics: Mapping[str, AnalyticsItem],
    platform: str,
) -> list[Package]:
    """Build the catalog, keyed by canonical name.

    Remote records are inserted first and installed records overwrite them,
    since only the installed record knows what is on disk. Casks exist on
    macOS only.

    Returns:
        Packages sorted by name.
    """
    is_linux = platform == PLATFORM_LINUX
    index: dict[str, Package] = {}

    for formula in remote_formulae:
        if is_linux and not supported_on_linux(formula):
            continue
        if formula.name not in index:
            index[formula.name] = Package.from_formula(
                formula, **_analytics(formula.name, formula_analytics)
            )

    for formula in installed_formulae:
        index[formula.name] = Package.from_formula(
            formula, **_analytics(formula.name, formula_analytics)
        )

    if not is_linux:
        for cask in remote_casks:
            if cask.token not in index:
                index[cask.token] = Package.from_cask(cask, **_analytics(cask.token, cask_analytics))

        for cask in installed_casks:
            index[cask.token] = Package.from_cask(cask, **_analytics(cask.token, cask_analytics))

    return sorted(index.values(), key=lambda p: p.name)
