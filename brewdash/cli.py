#!/usr/bin/env python3
"""
brewdash command line interface.

Usage:
    brewdash list --filter outdated
    brewdash -f ~/Brewfile install-all
    brewdash cache --clear
"""

import argparse
import logging
import sys
from concurrent.futures import Future
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from tabulate import tabulate

from brewdash.cache import DiskCache
from brewdash.config import Settings
from brewdash.dashboard import Dashboard
from brewdash.dispatch import ControlQueue
from brewdash.errors import BrewNotFoundError, ManifestError
from brewdash.manifest import manifest_location
from brewdash.operations import BrewService, FlatpakService, MutationRunner, PackageOperations
from brewdash.orchestrator import RefreshMode, RefreshOrchestrator, Sources
from brewdash.query import FilterType
from brewdash.render import ConsoleRenderer, StatusLevel
from brewdash.sources.base import get_session

logger = logging.getLogger(__name__)

FILTER_CHOICES = [f.value for f in FilterType if f is not FilterType.NONE]


class App:
    """Everything one CLI invocation needs, wired together."""

    def __init__(self, settings: Settings, cache: DiskCache, session, manifest_path: Optional[Path]):
        self.control = ControlQueue()
        self.renderer = ConsoleRenderer(live=False)
        self.dashboard = Dashboard(self.renderer, self.control, manifest_mode=manifest_path is not None)
        self.sources = Sources.create(settings, cache, session)
        brew_service = BrewService(self.sources.brew)
        flatpak_service = FlatpakService(self.sources.flatpak)
        self.orchestrator = RefreshOrchestrator(
            self.sources,
            self.dashboard,
            settings,
            manifest_path=manifest_path,
            brew_service=brew_service,
            flatpak_service=flatpak_service,
        )
        self.mutations = MutationRunner(
            PackageOperations(brew_service, flatpak_service), self.orchestrator, self.dashboard
        )

    def start(self) -> None:
        self.orchestrator.boot()
        if self.orchestrator.manifest_mode:
            self.wait(self.orchestrator.start_manifest_sequence())

    def wait(self, future: Optional[Future]):
        """Apply worker updates until ``future`` is done. None if it failed."""
        if future is None:
            return None
        self.control.run_until_complete([future])
        if future.exception() is not None:
            return None
        return future.result()

    def find_packages(self, names: list[str]) -> list:
        packages = []
        for name in names:
            package = self.dashboard.snapshot.find(name)
            if package is None:
                self.dashboard.status(StatusLevel.ERROR, f"Unknown package: {name}")
                continue
            packages.append(package)
        return packages


def cmd_list(app: App, args) -> int:
    if args.refresh:
        app.wait(app.orchestrator.refresh_in_background(RefreshMode.UPDATE_ALL))
    if args.sort_kind:
        app.dashboard.toggle_kind_sort()
    if args.filter:
        app.dashboard.toggle_filter(FilterType(args.filter))
    app.dashboard.set_search(args.search or "")
    app.renderer.limit = args.limit
    app.renderer.print_latest()
    return 0


def cmd_info(app: App, args) -> int:
    return 0 if app.dashboard.detail(args.name) is not None else 1


def cmd_mutate(app: App, args) -> int:
    packages = app.find_packages(args.names)
    if not packages:
        return 1
    submit = {
        "install": app.mutations.install,
        "update": app.mutations.update,
        "remove": app.mutations.remove,
    }[args.command]
    report = app.wait(submit(packages))
    if report is None or report.failed or len(packages) != len(args.names):
        return 1
    return 0


def cmd_update_all(app: App, args) -> int:
    snapshot = app.wait(app.mutations.update_homebrew())
    return 0 if snapshot is not None else 1


def cmd_upgrade_all(app: App, args) -> int:
    return 0 if app.wait(app.mutations.upgrade_all()) else 1


def cmd_manifest_batch(app: App, args) -> int:
    if not app.orchestrator.manifest_mode:
        print("Error: this command needs a manifest (-f/--file)", file=sys.stderr)
        return 1
    if args.command == "install-all":
        future = app.mutations.install_all()
    else:
        future = app.mutations.remove_all()
    if future is None:
        return 0
    report = app.wait(future)
    return 0 if report is not None and not report.failed else 1


def cmd_cache(cache: DiskCache, args) -> int:
    if args.clear:
        removed = cache.clear()
        print(f"Removed {removed} cache files from {cache.cache_dir}")
        return 0

    stats = cache.stats()
    print(f"Cache directory: {stats['cache_dir']}")
    rows = [
        [name, entry["size"], "-" if entry["age"] is None else f"{entry['age']:.0f} min"]
        for name, entry in stats["entries"].items()
    ]
    if rows:
        print(tabulate(rows, headers=["Document", "Bytes", "Age"], tablefmt="simple"))
    print(f"\n{stats['total_entries']} documents, {stats['total_size_bytes']} bytes")
    return 0


COMMANDS = {
    "list": cmd_list,
    "info": cmd_info,
    "install": cmd_mutate,
    "update": cmd_mutate,
    "remove": cmd_mutate,
    "update-all": cmd_update_all,
    "upgrade-all": cmd_upgrade_all,
    "install-all": cmd_manifest_batch,
    "remove-all": cmd_manifest_batch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brewdash",
        description="Browse and manage Homebrew and Flatpak packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s list -s ripgrep              # Search the catalog
    %(prog)s list --filter outdated       # Installed packages with updates
    %(prog)s -f Brewfile install-all      # Install everything a Brewfile lists
    %(prog)s cache --clear                # Drop every cached document
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--cache-dir", type=Path, default=None, help="Cache directory")
    parser.add_argument(
        "-f", "--file",
        dest="manifest",
        default=None,
        help="Brewfile path or https URL; restricts the view to its packages",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List packages")
    list_parser.add_argument("-s", "--search", default="", help="Search name and description")
    list_parser.add_argument("--filter", choices=FILTER_CHOICES, default=None, help="Filter packages")
    list_parser.add_argument("--sort-kind", action="store_true", help="Sort by package type")
    list_parser.add_argument("--refresh", action="store_true", help="Ignore cached data")
    list_parser.add_argument("--limit", type=int, default=None, help="Show at most N rows")

    info_parser = subparsers.add_parser("info", help="Show package details")
    info_parser.add_argument("name")

    for command in ("install", "update", "remove"):
        sub = subparsers.add_parser(command, help=f"{command.capitalize()} packages")
        sub.add_argument("names", nargs="+", metavar="NAME")

    subparsers.add_parser("update-all", help="Run brew update and refresh every source")
    subparsers.add_parser("upgrade-all", help="Upgrade every outdated Homebrew package")
    subparsers.add_parser("install-all", help="Install every manifest package")
    subparsers.add_parser("remove-all", help="Remove every installed manifest package")

    cache_parser = subparsers.add_parser("cache", help="Show or clear the cache")
    cache_parser.add_argument("--clear", action="store_true", help="Remove every cached document")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings.from_env(cache_dir=args.cache_dir, manifest=args.manifest)
    except ValidationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1
    cache = DiskCache(settings.cache_dir)

    if args.command == "cache":
        return cmd_cache(cache, args)

    cache.ensure_dir()
    session = get_session()
    command = COMMANDS[args.command]

    try:
        if settings.manifest:
            with manifest_location(settings.manifest, session, settings.http_timeout) as path:
                return run(command, args, settings, cache, session, path)
        return run(command, args, settings, cache, session, None)
    except (BrewNotFoundError, ManifestError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def run(command, args, settings: Settings, cache: DiskCache, session, manifest_path: Optional[Path]) -> int:
    app = App(settings, cache, session, manifest_path)
    try:
        app.start()
        return command(app, args)
    finally:
        app.orchestrator.shutdown()


if __name__ == "__main__":
    sys.exit(main())
