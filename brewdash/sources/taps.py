"""Package info for third-party tap entries, fetched through ``brew info``."""

import logging
from typing import Iterable, Mapping, Optional

from pydantic import TypeAdapter

from brewdash.cache import DiskCache
from brewdash.errors import CommandError
from brewdash.models import ManifestEntry, Package, PackageKind
from brewdash.sources.base import TTL_INSTALLED, BrewClient
from brewdash.sources.homebrew import decode_cask_info, decode_formulae

logger = logging.getLogger(__name__)

UNAVAILABLE_DESCRIPTION = "(unable to load package info)"

_package_list = TypeAdapter(list[Package])


class TapPackageSource:
    """Resolve manifest entries that are missing from the main catalog.

    Unlike the other sources the cache document holds the whole result of
    the last request, not one record per name.
    """

    source_name = "tap-packages"
    cache_name = "tap-packages.json"
    ttl = TTL_INSTALLED

    def __init__(self, cache: DiskCache, brew: BrewClient):
        self.cache = cache
        self.brew = brew

    def fetch(
        self,
        entries: Iterable[ManifestEntry],
        known: Mapping[str, Package],
        force_refresh: bool = False,
    ) -> list[Package]:
        """Return one package per entry, fetching only what is not known or cached.

        Args:
            entries: Manifest entries to resolve.
            known: Packages already loaded, by name.
            force_refresh: Ignore the cached result set.

        Returns:
            Known and cached packages in entry order, followed by fetched
            casks, then fetched formulae. Entries that cannot be resolved yield a
            placeholder package.
        """
        entries = [e for e in entries if e.kind != PackageKind.FLATPAK]
        if not entries:
            return []

        cached = {} if force_refresh else self._read_cache()

        result: list[Package] = []
        missing_casks: list[str] = []
        missing_formulae: list[str] = []

        for entry in entries:
            if entry.name in known:
                result.append(known[entry.name])
            elif entry.name in cached:
                result.append(cached[entry.name])
            elif entry.kind == PackageKind.CASK:
                missing_casks.append(entry.name)
            else:
                missing_formulae.append(entry.name)

        for names, kind in ((missing_casks, PackageKind.CASK), (missing_formulae, PackageKind.FORMULA)):
            if not names:
                continue
            fetched = self.fetch_info(names, kind)
            for name in names:
                if name in fetched:
                    result.append(fetched[name])
                else:
                    logger.warning(f"No package info for {kind.value} {name}")
                    result.append(Package.placeholder(name, kind, UNAVAILABLE_DESCRIPTION))

        if result:
            self.cache.write(self.cache_name, _package_list.dump_json(result))
        return result

    def fetch_info(self, names: list[str], kind: PackageKind) -> dict[str, Package]:
        """Batch ``brew info`` query, falling back to one query per name."""
        try:
            output = self.brew.run(*self._info_args(kind), *names)
        except CommandError as e:
            logger.debug(f"Batch info failed, retrying one by one: {e}")
            result = {}
            for name in names:
                package = self._fetch_single(name, kind)
                if package is not None:
                    result[name] = package
            return result

        try:
            return self._decode(output, kind)
        except ValueError as e:
            logger.warning(f"Malformed brew info output: {e}")
            return {}

    def _fetch_single(self, name: str, kind: PackageKind) -> Optional[Package]:
        try:
            output = self.brew.run(*self._info_args(kind), name)
            packages = self._decode(output, kind)
        except (CommandError, ValueError) as e:
            logger.debug(f"brew info {name} failed: {e}")
            return None
        return packages.get(name) or next(iter(packages.values()), None)

    @staticmethod
    def _info_args(kind: PackageKind) -> tuple[str, ...]:
        if kind == PackageKind.CASK:
            return ("info", "--json=v2", "--cask")
        return ("info", "--json=v1")

    @staticmethod
    def _decode(output: bytes, kind: PackageKind) -> dict[str, Package]:
        result = {}
        if kind == PackageKind.CASK:
            for cask in decode_cask_info(output).casks:
                package = Package.from_cask(cask)
                result[cask.token] = package
                # Also reachable as user/repo/token
                if cask.full_token and cask.full_token != cask.token:
                    result[cask.full_token] = package
        else:
            for formula in decode_formulae(output):
                package = Package.from_formula(formula)
                result[formula.name] = package
                if formula.full_name and formula.full_name != formula.name:
                    result[formula.full_name] = package
        return result

    def _read_cache(self) -> dict[str, Package]:
        data = self.cache.read(self.cache_name, self.ttl)
        if data is None:
            return {}
        try:
            return {p.name: p for p in _package_list.validate_json(data)}
        except ValueError as e:
            logger.debug(f"Ignoring corrupt tap package cache: {e}")
            return {}


def known_by_name(packages: Iterable[Package]) -> dict[str, Package]:
    return {p.name: p for p in packages}
