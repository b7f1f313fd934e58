"""Homebrew sources: installed state from ``brew``, catalogs and analytics from the API."""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field, TypeAdapter

from brewdash.errors import SourceFetchError
from brewdash.models import AnalyticsItem, Cask, Formula, PackageKind
from brewdash.sources.base import (
    TTL_ANALYTICS,
    TTL_INSTALLED,
    TTL_REMOTE,
    CommandSource,
    RemoteSource,
    split_lines,
)

logger = logging.getLogger(__name__)

FORMULAE_API_URL = "https://formulae.brew.sh/api/formula.json"
CASK_API_URL = "https://formulae.brew.sh/api/cask.json"
FORMULA_ANALYTICS_URL = "https://formulae.brew.sh/api/analytics/install-on-request/90d.json"
CASK_ANALYTICS_URL = "https://formulae.brew.sh/api/analytics/cask-install/90d.json"

EMPTY_CASK_INFO = b'{"casks": []}'

_formula_list = TypeAdapter(list[Formula])
_cask_list = TypeAdapter(list[Cask])


class CaskInfo(BaseModel):
    """Envelope of ``brew info --json=v2``."""

    formulae: list[Formula] = Field(default_factory=list)
    casks: list[Cask] = Field(default_factory=list)


class AnalyticsTable(BaseModel):
    category: Optional[str] = None
    total_items: int = 0
    total_count: int = 0
    items: list[AnalyticsItem] = Field(default_factory=list)


def decode_formulae(data: bytes) -> list[Formula]:
    return _formula_list.validate_json(data)


def decode_cask_info(data: bytes) -> CaskInfo:
    return CaskInfo.model_validate_json(data)


class InstalledFormulaeSource(CommandSource[list[Formula]]):
    """Formulae installed on this machine, with full metadata."""

    source_name = "installed-formulae"
    cache_name = "installed.json"
    ttl = TTL_INSTALLED

    def query(self) -> bytes:
        return self.brew.run("info", "--json=v1", "--installed")

    def decode(self, data: bytes) -> list[Formula]:
        return decode_formulae(data)

    def stamp(self, documents: list[Formula]) -> list[Formula]:
        cellar = os.path.join(self.brew.prefix(), "Cellar")
        for formula in documents:
            formula.locally_installed = True
            formula.local_path = os.path.join(cellar, formula.name)
        return documents


class InstalledCasksSource(CommandSource[list[Cask]]):
    """Casks installed on this machine.

    A failed lookup (a platform without casks, or a broken cask) yields an
    empty list that is never written to the cache. An empty ``brew list``
    is a real answer and is cached.
    """

    source_name = "installed-casks"
    cache_name = "installed-casks.json"
    ttl = TTL_INSTALLED

    def fetch(self, force_refresh: bool = False) -> list[Cask]:
        try:
            return super().fetch(force_refresh)
        except SourceFetchError as e:
            logger.debug(f"No installed casks: {e}")
            return []

    def query(self) -> bytes:
        names = split_lines(self.brew.run("list", "--cask"))
        if not names:
            return EMPTY_CASK_INFO
        return self.brew.run("info", "--json=v2", "--cask", *names)

    def decode(self, data: bytes) -> list[Cask]:
        return decode_cask_info(data).casks

    def stamp(self, documents: list[Cask]) -> list[Cask]:
        for cask in documents:
            cask.locally_installed = True
        return documents


class RemoteFormulaeSource(RemoteSource[list[Formula]]):
    source_name = "remote-formulae"
    cache_name = "formula.json"
    ttl = TTL_REMOTE
    url = FORMULAE_API_URL

    def decode(self, data: bytes) -> list[Formula]:
        return decode_formulae(data)

    def usable(self, documents: list[Formula]) -> bool:
        return len(documents) > 0


class RemoteCasksSource(RemoteSource[list[Cask]]):
    source_name = "remote-casks"
    cache_name = "cask.json"
    ttl = TTL_REMOTE
    url = CASK_API_URL

    def decode(self, data: bytes) -> list[Cask]:
        return _cask_list.validate_json(data)

    def usable(self, documents: list[Cask]) -> bool:
        return len(documents) > 0


class AnalyticsSource(RemoteSource[dict[str, AnalyticsItem]]):
    """90 day analytics table, indexed by package name."""

    ttl = TTL_ANALYTICS
    key_field = "formula"

    def decode(self, data: bytes) -> dict[str, AnalyticsItem]:
        table = AnalyticsTable.model_validate_json(data)
        result = {}
        for item in table.items:
            name = getattr(item, self.key_field)
            if name:
                result[name] = item
        return result

    def usable(self, documents: dict[str, AnalyticsItem]) -> bool:
        return len(documents) > 0


class FormulaAnalyticsSource(AnalyticsSource):
    source_name = "formula-analytics"
    cache_name = "analytics.json"
    url = FORMULA_ANALYTICS_URL
    key_field = "formula"


class CaskAnalyticsSource(AnalyticsSource):
    source_name = "cask-analytics"
    cache_name = "cask-analytics.json"
    url = CASK_ANALYTICS_URL
    key_field = "cask"


def installed_names_by_kind(brew) -> dict[PackageKind, set[str]]:
    """Fresh ``brew list`` lookups for both Homebrew kinds."""
    return {
        PackageKind.FORMULA: brew.installed_names(PackageKind.FORMULA),
        PackageKind.CASK: brew.installed_names(PackageKind.CASK),
    }

