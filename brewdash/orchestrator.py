"""
Refresh orchestration.

Decides which sources are fetched and when, merges their documents into a
catalog snapshot and publishes it to the dashboard through the control
queue. This is the only writer of the catalog.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

import requests

from brewdash.cache import DiskCache
from brewdash.config import Settings
from brewdash.dashboard import CatalogSnapshot, Dashboard
from brewdash.errors import CommandError, ManifestError, SourceFetchError
from brewdash.manifest import FlatpakState, ManifestResolver, load_manifest
from brewdash.merge import merge_catalog
from brewdash.models import AnalyticsItem, Cask, Formula, ManifestResult, Package
from brewdash.render import StatusLevel
from brewdash.sources.base import BrewClient, Runner, get_session, run_command
from brewdash.sources.flatpak import FlatpakClient, FlatpakInstalledSource, FlatpakRemoteSource
from brewdash.sources.homebrew import (
    CaskAnalyticsSource,
    FormulaAnalyticsSource,
    InstalledCasksSource,
    InstalledFormulaeSource,
    RemoteCasksSource,
    RemoteFormulaeSource,
)
from brewdash.sources.taps import TapPackageSource, known_by_name

if TYPE_CHECKING:
    from brewdash.operations import BrewService, FlatpakService

logger = logging.getLogger(__name__)

# Installed state first, so a refresh never publishes without it
INSTALLED_SOURCES = ("installed_formulae", "installed_casks")
REMOTE_SOURCES = ("remote_formulae", "formula_analytics", "remote_casks", "cask_analytics")


class RefreshMode(Enum):
    STARTUP = "startup"
    UPDATE_ALL = "update-all"
    POST_MUTATION = "post-mutation"

    def forces(self, source: str) -> bool:
        if self is RefreshMode.UPDATE_ALL:
            return True
        if self is RefreshMode.POST_MUTATION:
            return source in INSTALLED_SOURCES or source == "flatpak_installed"
        return False


class RefreshState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    PUBLISHED = "published"


@dataclass
class Sources:
    """Every fetcher the orchestrator drives."""

    brew: BrewClient
    flatpak: FlatpakClient
    installed_formulae: InstalledFormulaeSource
    remote_formulae: RemoteFormulaeSource
    formula_analytics: FormulaAnalyticsSource
    installed_casks: InstalledCasksSource
    remote_casks: RemoteCasksSource
    cask_analytics: CaskAnalyticsSource
    taps: TapPackageSource
    flatpak_installed: FlatpakInstalledSource
    flatpak_remote: FlatpakRemoteSource

    @classmethod
    def create(
        cls,
        settings: Settings,
        cache: DiskCache,
        session: Optional[requests.Session] = None,
        runner: Runner = run_command,
    ) -> "Sources":
        session = session or get_session()
        brew = BrewClient(settings.brew_binary, runner)
        flatpak = FlatpakClient(settings.flatpak_binary, runner)
        timeout = settings.http_timeout
        return cls(
            brew=brew,
            flatpak=flatpak,
            installed_formulae=InstalledFormulaeSource(cache, brew),
            remote_formulae=RemoteFormulaeSource(cache, session, timeout),
            formula_analytics=FormulaAnalyticsSource(cache, session, timeout),
            installed_casks=InstalledCasksSource(cache, brew),
            remote_casks=RemoteCasksSource(cache, session, timeout),
            cask_analytics=CaskAnalyticsSource(cache, session, timeout),
            taps=TapPackageSource(cache, brew),
            flatpak_installed=FlatpakInstalledSource(cache, flatpak),
            flatpak_remote=FlatpakRemoteSource(cache, flatpak),
        )


@dataclass(frozen=True)
class SourceDocuments:
    """Last successfully fetched document of every source."""

    installed_formulae: tuple[Formula, ...] = ()
    remote_formulae: tuple[Formula, ...] = ()
    formula_analytics: Mapping[str, AnalyticsItem] = field(default_factory=dict)
    installed_casks: tuple[Cask, ...] = ()
    remote_casks: tuple[Cask, ...] = ()
    cask_analytics: Mapping[str, AnalyticsItem] = field(default_factory=dict)
    tap_packages: tuple[Package, ...] = ()


def with_tap_packages(packages: list[Package], tap_packages: tuple[Package, ...]) -> list[Package]:
    """Add tap packages the merged catalog does not already know."""
    names = {p.name for p in packages}
    extra = [p for p in tap_packages if p.name not in names]
    if not extra:
        return packages
    return sorted([*packages, *extra], key=lambda p: p.name)


class RefreshOrchestrator:
    """Coordinate fetch, merge and publish cycles."""

    def __init__(
        self,
        sources: Sources,
        dashboard: Dashboard,
        settings: Settings,
        manifest_path: Optional[Path] = None,
        brew_service: Optional["BrewService"] = None,
        flatpak_service: Optional["FlatpakService"] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.sources = sources
        self.dashboard = dashboard
        self.settings = settings
        self.manifest_path = manifest_path
        self.brew_service = brew_service
        self.flatpak_service = flatpak_service
        self.resolver = ManifestResolver(sources.brew, sources.taps)
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="brewdash")

        self._state = RefreshState.IDLE
        self.brew_version: Optional[str] = None
        self.manifest: Optional[ManifestResult] = None
        self.installed_taps: list[str] = []
        self._taps_ready = False
        self._documents = SourceDocuments()
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()

    @property
    def manifest_mode(self) -> bool:
        return self.manifest_path is not None

    @property
    def documents(self) -> SourceDocuments:
        with self._lock:
            return self._documents

    @property
    def state(self) -> RefreshState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: RefreshState) -> None:
        with self._state_lock:
            logger.debug(f"Refresh state: {self._state.value} -> {state.value}")
            self._state = state

    def boot(self) -> CatalogSnapshot:
        """Load everything from cache on the calling (control) thread.

        Raises:
            BrewNotFoundError: Homebrew is unusable.
            ManifestError: the manifest cannot be read.
        """
        self.brew_version = self.sources.brew.version()
        if self.manifest_mode:
            self.manifest = load_manifest(self.manifest_path)

        snapshot = self.load(RefreshMode.STARTUP)
        self._publish(snapshot, scroll_to_top=True)
        self._report_errors(snapshot, direct=True)
        return snapshot

    def load(self, mode: RefreshMode) -> CatalogSnapshot:
        """Run one fetch and merge cycle on the calling thread, without publishing."""
        self._set_state(RefreshState.FETCHING)
        updates: dict[str, Any] = {}
        errors: list[str] = []

        for name in (*INSTALLED_SOURCES, *REMOTE_SOURCES):
            source = getattr(self.sources, name)
            try:
                documents = source.fetch(force_refresh=mode.forces(name))
            except SourceFetchError as e:
                # Keep the previous in-memory document for this source
                logger.warning(f"Source failed, keeping previous data: {e}")
                errors.append(str(e))
                continue
            updates[name] = documents if isinstance(documents, dict) else tuple(documents)

        if self.manifest is not None and self._taps_ready and mode is RefreshMode.UPDATE_ALL:
            updates["tap_packages"] = tuple(self._fetch_tap_packages(force_refresh=True))

        with self._lock:
            self._documents = replace(self._documents, **updates)
            documents = self._documents

        self._set_state(RefreshState.MERGING)
        return self._build_snapshot(documents, errors, mode)

    def refresh(self, mode: RefreshMode) -> CatalogSnapshot:
        """Fetch, merge and publish. Meant to run on a worker.

        The snapshot is published when the control thread applies the queued
        update; the cycle reaches PUBLISHED then, not when this returns.
        """
        snapshot = self.load(mode)
        self.dashboard.control.submit(lambda: self._publish(snapshot))
        self._report_errors(snapshot)
        return snapshot

    def _publish(self, snapshot: CatalogSnapshot, scroll_to_top: bool = False) -> None:
        # Control thread only
        self.dashboard.publish(snapshot, scroll_to_top)
        self._set_state(RefreshState.PUBLISHED)
        self._set_state(RefreshState.IDLE)

    def refresh_in_background(self, mode: RefreshMode) -> Future:
        # No cancellation: when cycles overlap, the last one to publish wins
        return self.executor.submit(self.refresh, mode)

    def update_homebrew(self) -> Optional[CatalogSnapshot]:
        """``brew update`` followed by a full forced refresh."""
        self.dashboard.post_status(StatusLevel.WARNING, "Updating Homebrew formulae...")
        try:
            self.brew_service.update_homebrew(on_line=self.dashboard.post_log)
        except CommandError as e:
            logger.error(f"brew update failed: {e}")
            self.dashboard.post_status(StatusLevel.ERROR, "Could not update Homebrew formulae")
            return None
        self.dashboard.post_status(StatusLevel.SUCCESS, "Homebrew formulae updated successfully")
        return self.refresh(RefreshMode.UPDATE_ALL)

    def start_manifest_sequence(self) -> Future:
        return self.executor.submit(self.run_manifest_sequence)

    def run_manifest_sequence(self) -> Optional[CatalogSnapshot]:
        """Placeholder load, tap installation, tap fetch and resolved reload."""
        if self.manifest is None:
            return None
        post = self.dashboard.post_status

        post(StatusLevel.WARNING, "Loading manifest packages...")
        placeholder_snapshot = self._build_snapshot(self.documents, [], RefreshMode.STARTUP)
        self.dashboard.post_publish(placeholder_snapshot, scroll_to_top=True)
        post(StatusLevel.SUCCESS, "Manifest loaded (installing taps...)")

        if self.manifest.taps:
            self.install_missing_taps()
        if self.manifest.flatpak_entries and self.flatpak_service is not None:
            self.ensure_flathub()

        post(StatusLevel.WARNING, "Refreshing tap packages...")
        tap_packages = self._fetch_tap_packages(force_refresh=True)
        with self._lock:
            self._documents = replace(self._documents, tap_packages=tuple(tap_packages))
            documents = self._documents
        self._taps_ready = True

        snapshot = self._build_snapshot(documents, [], RefreshMode.POST_MUTATION)
        self.dashboard.post_publish(snapshot, scroll_to_top=True)
        post(StatusLevel.SUCCESS, "All packages loaded")
        return snapshot

    def install_missing_taps(self) -> list[str]:
        """Install the manifest's taps one at a time. Failures do not stop the rest."""
        installed_now = self.sources.brew.tap_names()
        missing = [tap for tap in self.manifest.taps if tap not in installed_now]
        post = self.dashboard.post_status
        log = self.dashboard.post_log

        for tap in missing:
            post(StatusLevel.WARNING, f"Installing tap {tap}...")
            log(f"[TAP] Installing {tap}...")
            try:
                self.brew_service.install_tap(tap, on_line=log)
            except CommandError as e:
                logger.error(f"Failed to install tap {tap}: {e}")
                post(StatusLevel.ERROR, f"Failed to install tap {tap}")
                log(f"[ERROR] Failed to install tap {tap}")
                continue
            post(StatusLevel.SUCCESS, f"Tap {tap} installed")
            log(f"[SUCCESS] tap {tap} installed")
            self.installed_taps.append(tap)

        if missing:
            post(StatusLevel.SUCCESS, "All taps installed")
        return missing

    def ensure_flathub(self) -> bool:
        if not self.flatpak_service.is_available():
            return False
        try:
            self.flatpak_service.ensure_flathub_remote(on_line=self.dashboard.post_log)
        except CommandError as e:
            logger.warning(f"Could not add the Flathub remote: {e}")
            self.dashboard.post_status(StatusLevel.ERROR, "Failed to add the Flathub remote")
            return False
        return True

    def reparse_manifest(self) -> Future:
        return self.executor.submit(self._reparse_manifest)

    def _reparse_manifest(self) -> Optional[CatalogSnapshot]:
        try:
            manifest = load_manifest(self.manifest_path)
        except ManifestError as e:
            logger.warning(f"Keeping previous manifest: {e}")
            self.dashboard.post_status(StatusLevel.WARNING, f"Failed to reload manifest: {e}")
            return None
        self.manifest = manifest
        snapshot = self._build_snapshot(self.documents, [], RefreshMode.STARTUP)
        self.dashboard.post_publish(snapshot)
        return snapshot

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)
        if self.installed_taps:
            logger.info(f"Taps installed this session: {', '.join(self.installed_taps)}")

    def _merge(self, documents: SourceDocuments) -> list[Package]:
        packages = merge_catalog(
            documents.installed_formulae,
            documents.remote_formulae,
            documents.formula_analytics,
            documents.installed_casks,
            documents.remote_casks,
            documents.cask_analytics,
            self.settings.platform,
        )
        return with_tap_packages(packages, documents.tap_packages)

    def _build_snapshot(
        self, documents: SourceDocuments, errors: list[str], mode: RefreshMode
    ) -> CatalogSnapshot:
        packages = self._merge(documents)
        manifest_packages = None
        if self.manifest is not None:
            manifest_packages = tuple(self.resolver.resolve(
                self.manifest,
                packages,
                use_placeholders=not self._taps_ready,
                flatpak=self._flatpak_state(mode),
            ))
        return CatalogSnapshot(tuple(packages), manifest_packages, tuple(errors))

    def _fetch_tap_packages(self, force_refresh: bool) -> list[Package]:
        known = known_by_name(self._merge(self.documents))
        return self.sources.taps.fetch(self.manifest.entries, known, force_refresh=force_refresh)

    def _flatpak_state(self, mode: RefreshMode) -> Optional[FlatpakState]:
        if not self.sources.flatpak.is_available():
            return None
        try:
            installed = self.sources.flatpak_installed.fetch(mode.forces("flatpak_installed"))
        except SourceFetchError as e:
            logger.warning(f"Failed to get installed flatpaks: {e}")
            installed = set()
        try:
            metadata = self.sources.flatpak_remote.fetch(mode.forces("flatpak_remote"))
        except SourceFetchError as e:
            logger.warning(f"Failed to get flatpak metadata: {e}")
            metadata = {}
        return FlatpakState(installed, metadata)

    def _report_errors(self, snapshot: CatalogSnapshot, direct: bool = False) -> None:
        if not snapshot.errors:
            return
        message = f"Some sources could not be loaded: {'; '.join(snapshot.errors)}"
        if direct:
            self.dashboard.status(StatusLevel.WARNING, message)
        else:
            self.dashboard.post_status(StatusLevel.WARNING, message)
