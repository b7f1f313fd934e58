"""
Package mutations: install, update and remove through ``brew`` or ``flatpak``.

Command output is streamed line by line to a callback so the dashboard log
can follow long installs. Every mutation batch ends with a refresh of the
installed state.
"""

import logging
import subprocess
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from brewdash.dashboard import Dashboard
from brewdash.errors import BrewdashError, CommandError
from brewdash.models import Package, PackageKind
from brewdash.orchestrator import RefreshMode, RefreshOrchestrator
from brewdash.render import StatusLevel
from brewdash.sources.base import BrewClient
from brewdash.sources.flatpak import FLATHUB_REMOTE, FlatpakClient

logger = logging.getLogger(__name__)

FLATHUB_REPO_URL = "https://dl.flathub.org/repo/flathub.flatpakrepo"

LineCallback = Callable[[str], None]
Streamer = Callable[[Sequence[str], LineCallback], None]


def _discard(line: str) -> None:
    pass


def stream_command(args: Sequence[str], on_line: LineCallback) -> None:
    """Run a command, passing each line of combined stdout/stderr to ``on_line``.

    Raises:
        CommandError: if the command cannot start or exits non-zero.
    """
    logger.debug(f"Streaming: {' '.join(args)}")
    try:
        proc = subprocess.Popen(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except OSError as e:
        raise CommandError(args, stderr=str(e)) from e

    with proc:
        for line in proc.stdout:
            on_line(line.rstrip("\n"))
        returncode = proc.wait()
    if returncode != 0:
        raise CommandError(args, returncode)


class BrewService:
    def __init__(self, brew: BrewClient, streamer: Streamer = stream_command):
        self.brew = brew
        self._streamer = streamer

    def _stream(self, args: list[str], on_line: Optional[LineCallback]) -> None:
        self._streamer([self.brew.binary, *args], on_line or _discard)

    @staticmethod
    def _package_args(command: str, package: Package) -> list[str]:
        if package.kind == PackageKind.CASK:
            return [command, "--cask", package.name]
        return [command, package.name]

    def install(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self._stream(self._package_args("install", package), on_line)

    def update(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self._stream(self._package_args("upgrade", package), on_line)

    def remove(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self._stream(self._package_args("uninstall", package), on_line)

    def update_homebrew(self, on_line: Optional[LineCallback] = None) -> None:
        self._stream(["update"], on_line)

    def upgrade_all(self, on_line: Optional[LineCallback] = None) -> None:
        self._stream(["upgrade"], on_line)

    def install_tap(self, name: str, on_line: Optional[LineCallback] = None) -> None:
        self._stream(["tap", name], on_line)


class FlatpakService:
    def __init__(self, flatpak: FlatpakClient, streamer: Streamer = stream_command):
        self.flatpak = flatpak
        self._streamer = streamer

    def _stream(self, args: list[str], on_line: Optional[LineCallback]) -> None:
        self._streamer([self.flatpak.binary, *args], on_line or _discard)

    def is_available(self) -> bool:
        return self.flatpak.is_available()

    def ensure_flathub_remote(self, on_line: Optional[LineCallback] = None) -> None:
        """Add the Flathub remote unless it is already configured."""
        try:
            remotes = self.flatpak.run("remote-list").decode(errors="replace")
        except CommandError as e:
            logger.debug(f"flatpak remote-list failed: {e}")
            remotes = ""
        if FLATHUB_REMOTE in remotes:
            return
        self._stream(["remote-add", "--if-not-exists", FLATHUB_REMOTE, FLATHUB_REPO_URL], on_line)

    def install(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self._stream(["install", "-y", FLATHUB_REMOTE, package.name], on_line)

    def update(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self._stream(["update", "-y", package.name], on_line)

    def remove(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self._stream(["uninstall", "-y", package.name], on_line)


class PackageOperations:
    """Route each mutation to the service owning the package kind."""

    def __init__(self, brew: BrewService, flatpak: FlatpakService):
        self.brew = brew
        self.flatpak = flatpak

    def service_for(self, package: Package):
        if package.kind == PackageKind.FLATPAK:
            return self.flatpak
        return self.brew

    def install(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self.service_for(package).install(package, on_line)

    def update(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self.service_for(package).update(package, on_line)

    def remove(self, package: Package, on_line: Optional[LineCallback] = None) -> None:
        self.service_for(package).remove(package, on_line)


@dataclass
class BatchReport:
    processed: int = 0
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def run_batch(
    packages: Sequence[Package],
    action: Callable[[Package], None],
    verb: str,
    tag: str,
    notify: Callable[[StatusLevel, str], None],
    log: LineCallback,
    skip: Optional[Callable[[Package], bool]] = None,
    skip_reason: str = "",
) -> BatchReport:
    """Apply ``action`` to every package, reporting each item.

    A failing item is reported and the batch moves on. ``processed`` counts
    every item walked, whatever its outcome.
    """
    report = BatchReport()
    total = len(packages)

    for i, package in enumerate(packages, start=1):
        report.processed += 1
        name = package.name

        if skip is not None and skip(package):
            notify(StatusLevel.WARNING, f"[{i}/{total}] Skipping {name} ({skip_reason})")
            log(f"[SKIP] {name} ({skip_reason})")
            report.skipped.append(name)
            continue

        notify(StatusLevel.WARNING, f"[{i}/{total}] {verb} {name}...")
        log(f"[{tag}] {verb} {name}...")
        try:
            action(package)
        except BrewdashError as e:
            logger.warning(f"{verb} {name} failed: {e}")
            notify(StatusLevel.ERROR, f"[{i}/{total}] Failed to process {name}")
            log(f"[ERROR] Failed to process {name}: {e}")
            report.failed.append(name)
            continue

        log(f"[SUCCESS] {name} processed successfully")
        report.succeeded.append(name)

    notify(StatusLevel.SUCCESS, f"Completed! Processed {report.processed} packages")
    return report


class MutationRunner:
    """Run mutation batches on a worker, then refresh installed state."""

    def __init__(self, operations: PackageOperations, orchestrator: RefreshOrchestrator, dashboard: Dashboard):
        self.operations = operations
        self.orchestrator = orchestrator
        self.dashboard = dashboard

    def install(self, packages: Sequence[Package]) -> Future:
        return self._submit(packages, self.operations.install, "Installing", "INSTALL")

    def update(self, packages: Sequence[Package]) -> Future:
        return self._submit(packages, self.operations.update, "Updating", "UPDATE")

    def remove(self, packages: Sequence[Package]) -> Future:
        return self._submit(packages, self.operations.remove, "Removing", "REMOVE")

    def install_all(self) -> Optional[Future]:
        """Install every manifest package that is not installed yet."""
        return self._submit_manifest(
            self.operations.install, "Installing", "INSTALL",
            skip=lambda p: p.installed, skip_reason="already installed",
        )

    def remove_all(self) -> Optional[Future]:
        """Remove every installed manifest package."""
        return self._submit_manifest(
            self.operations.remove, "Removing", "REMOVE",
            skip=lambda p: not p.installed, skip_reason="not installed",
        )

    def upgrade_all(self) -> Future:
        return self.orchestrator.executor.submit(self._upgrade_all)

    def update_homebrew(self) -> Future:
        return self.orchestrator.executor.submit(self.orchestrator.update_homebrew)

    def _upgrade_all(self) -> bool:
        post = self.dashboard.post_status
        post(StatusLevel.WARNING, "Updating all Packages...")
        try:
            self.operations.brew.upgrade_all(on_line=self.dashboard.post_log)
        except CommandError as e:
            logger.error(f"brew upgrade failed: {e}")
            post(StatusLevel.ERROR, "Failed to update all Packages")
            return False
        post(StatusLevel.SUCCESS, "Updated all Packages")
        self.orchestrator.refresh(RefreshMode.POST_MUTATION)
        return True

    def _submit_manifest(self, action, verb, tag, skip, skip_reason) -> Optional[Future]:
        # Read on the control thread; the snapshot is immutable
        packages = self.dashboard.snapshot.manifest_packages or ()
        if not packages:
            self.dashboard.status(StatusLevel.ERROR, "No packages found in manifest")
            return None
        if all(skip(p) for p in packages):
            self.dashboard.status(StatusLevel.WARNING, f"No packages to process ({skip_reason})")
            return None
        return self._submit(packages, action, verb, tag, skip, skip_reason)

    def _submit(self, packages, action, verb, tag, skip=None, skip_reason="") -> Future:
        packages = list(packages)
        return self.orchestrator.executor.submit(self._run, packages, action, verb, tag, skip, skip_reason)

    def _run(self, packages, action, verb, tag, skip, skip_reason) -> BatchReport:
        log = self.dashboard.post_log
        report = run_batch(
            packages,
            lambda p: action(p, log),
            verb,
            tag,
            self.dashboard.post_status,
            log,
            skip=skip,
            skip_reason=skip_reason,
        )
        self.orchestrator.refresh(RefreshMode.POST_MUTATION)
        return report
