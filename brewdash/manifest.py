"""
Manifest (Brewfile) support.

Parses ``tap``/``brew``/``cask``/``flatpak`` lines and resolves the listed
packages against the catalog in two phases:

1. Placeholder phase: entries missing from the catalog (their tap is not
   installed yet) are shown as placeholders so the list renders at once.
2. Resolved phase: once taps are installed, missing entries go through
   ``brew info`` via the tap package source.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Mapping, NamedTuple, Optional

import requests

from brewdash.errors import ManifestError
from brewdash.models import ManifestEntry, ManifestResult, Package, PackageKind
from brewdash.sources.base import BrewClient
from brewdash.sources.homebrew import installed_names_by_kind
from brewdash.sources.taps import TapPackageSource, known_by_name

logger = logging.getLogger(__name__)

PLACEHOLDER_DESCRIPTION = "Waiting for repository installation..."

ENTRY_KINDS = {
    "brew": PackageKind.FORMULA,
    "cask": PackageKind.CASK,
    "flatpak": PackageKind.FLATPAK,
}


def _quoted_value(line: str, last_quote: bool) -> Optional[str]:
    start = line.find('"')
    if start == -1:
        return None
    if last_quote:
        end = line.rfind('"')
    else:
        end = line.find('"', start + 1)
    if end <= start:
        return None
    return line[start + 1:end]


def parse_manifest(text: str) -> ManifestResult:
    """Parse manifest text. Lines that do not parse are skipped."""
    taps = []
    entries = []

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        directive, _, _ = line.partition(" ")
        if directive == "tap":
            # Tap names end at the next quote: tap "user/repo", "https://..."
            value = _quoted_value(line, last_quote=False)
            if value:
                taps.append(value)
        elif directive in ENTRY_KINDS:
            value = _quoted_value(line, last_quote=True)
            if value:
                entries.append(ManifestEntry(name=value, kind=ENTRY_KINDS[directive]))

    return ManifestResult(taps=tuple(taps), entries=tuple(entries))


def load_manifest(path: Path) -> ManifestResult:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Failed to read manifest {path}: {e}") from e
    return parse_manifest(text)


@contextmanager
def manifest_location(
    path_or_url: str, session: Optional[requests.Session] = None, timeout: float = 30.0
) -> Iterator[Path]:
    """Yield a local path for a manifest given as a path or an https URL.

    Remote manifests are downloaded to a temporary file that is removed
    when the context exits.
    """
    if path_or_url.startswith("https://"):
        local = _download_manifest(path_or_url, session or requests.Session(), timeout)
        try:
            yield local
        finally:
            local.unlink(missing_ok=True)
        return

    if "://" in path_or_url:
        raise ManifestError(f"Only https:// manifest URLs are supported: {path_or_url}")

    path = Path(path_or_url).expanduser()
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path_or_url}")
    yield path


def _download_manifest(url: str, session: requests.Session, timeout: float) -> Path:
    logger.info(f"Downloading manifest from {url}")
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ManifestError(f"Failed to fetch manifest {url}: {e}") from e

    fd, name = tempfile.mkstemp(prefix="brewdash-remote-", suffix=".brewfile")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(response.content)
    except OSError as e:
        Path(name).unlink(missing_ok=True)
        raise ManifestError(f"Failed to save manifest: {e}") from e
    return Path(name)


class CatalogMatch(NamedTuple):
    resolved: list[Package]
    missing: list[ManifestEntry]


def restamp(package: Package, installed: Mapping[PackageKind, set[str]]) -> Package:
    """Copy of a package with its installed flag taken from a fresh lookup."""
    names = installed.get(package.kind, set())
    return package.model_copy(update={"installed": package.name in names})


def match_catalog(
    entries: Iterable[ManifestEntry],
    catalog: Iterable[Package],
    installed: Mapping[PackageKind, set[str]],
) -> CatalogMatch:
    """Look up Homebrew entries by name and kind.

    Flatpak entries are not considered. Matches are re-stamped with the
    fresh installed names rather than trusting the catalog flag.
    """
    wanted = {(e.name, e.kind) for e in entries if e.kind != PackageKind.FLATPAK}
    resolved = []
    found = set()
    for package in catalog:
        key = (package.name, package.kind)
        if key in wanted and package.name not in found:
            resolved.append(restamp(package, installed))
            found.add(package.name)

    missing = [
        e for e in entries
        if e.kind != PackageKind.FLATPAK and e.name not in found
    ]
    return CatalogMatch(resolved, missing)


def placeholders(entries: Iterable[ManifestEntry]) -> list[Package]:
    return [Package.placeholder(e.name, e.kind, PLACEHOLDER_DESCRIPTION) for e in entries]


def flatpak_packages(
    entries: Iterable[ManifestEntry],
    installed_ids: set[str],
    metadata: Mapping[str, Package],
) -> list[Package]:
    """Packages for the manifest's flatpak entries, enriched from Flathub metadata."""
    result = []
    for entry in entries:
        if entry.kind != PackageKind.FLATPAK:
            continue
        package = metadata.get(entry.name) or Package(
            name=entry.name, display_name=entry.name, kind=PackageKind.FLATPAK
        )
        result.append(package.model_copy(update={
            "installed": entry.name in installed_ids,
            "installed_on_request": True,
        }))
    return result


def dedupe_sorted(packages: Iterable[Package]) -> list[Package]:
    """First occurrence of each name wins; result sorted by name."""
    seen = {}
    for package in packages:
        seen.setdefault(package.name, package)
    return sorted(seen.values(), key=lambda p: p.name)


class FlatpakState(NamedTuple):
    installed: set[str]
    metadata: Mapping[str, Package]


class ManifestResolver:
    """Restrict the catalog to the packages listed in a manifest."""

    def __init__(self, brew: BrewClient, taps: TapPackageSource):
        self.brew = brew
        self.taps = taps

    def resolve(
        self,
        manifest: ManifestResult,
        catalog: Iterable[Package],
        use_placeholders: bool,
        flatpak: Optional[FlatpakState] = None,
    ) -> list[Package]:
        """
        Resolve manifest entries to packages

        Args:
            manifest: Parsed manifest
            catalog: Current catalog snapshot
            use_placeholders: Placeholder phase when True, resolved phase otherwise
            flatpak: Flatpak lookups, or None when flatpak is unavailable

        Returns:
            List[Package]: De-duplicated packages sorted by name
        """
        catalog = list(catalog)
        installed = installed_names_by_kind(self.brew)
        resolved, missing = match_catalog(manifest.entries, catalog, installed)

        extra: list[Package] = []
        if flatpak is not None:
            extra.extend(flatpak_packages(manifest.entries, flatpak.installed, flatpak.metadata))
        elif any(e.kind == PackageKind.FLATPAK for e in manifest.entries):
            logger.warning("Manifest lists flatpak entries but flatpak is not installed")

        if missing:
            if use_placeholders:
                extra.extend(placeholders(missing))
            else:
                fetched = self.taps.fetch(missing, known_by_name(catalog))
                extra.extend(restamp(p, installed) for p in fetched)

        return dedupe_sorted([*resolved, *extra])
