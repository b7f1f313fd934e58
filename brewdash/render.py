"""Rendering surface used by the dashboard."""

import sys
from enum import Enum
from typing import Optional, Protocol, TextIO

from tabulate import tabulate

from brewdash.models import Package, PackageKind
from brewdash.query import QueryResult

KIND_TAGS = {
    PackageKind.FORMULA: "formula",
    PackageKind.CASK: "cask",
    PackageKind.FLATPAK: "flatpak",
}

MAX_VERSION_LEN = 15


class StatusLevel(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Renderer(Protocol):
    """What the dashboard needs from a user interface."""

    def show_packages(self, result: QueryResult, scroll_to_top: bool) -> None:
        ...

    def show_status(self, level: StatusLevel, message: str) -> None:
        ...

    def show_detail(self, package: Optional[Package]) -> None:
        ...

    def append_log(self, line: str) -> None:
        ...


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def package_rows(packages: list[Package]) -> list[list[str]]:
    rows = []
    for package in packages:
        status = ""
        if package.installed:
            status = "outdated" if package.outdated else "installed"
        rows.append([
            KIND_TAGS[package.kind],
            package.display_name or package.name,
            truncate(package.version, MAX_VERSION_LEN),
            status,
            package.description,
            package.analytics_downloads,
        ])
    return rows


class ConsoleRenderer:
    """Plain terminal renderer built on tabulate."""

    headers = ["Type", "Name", "Version", "Status", "Description", "Downloads"]

    def __init__(
        self,
        out: TextIO = sys.stdout,
        err: TextIO = sys.stderr,
        limit: Optional[int] = None,
        live: bool = True,
    ):
        self.out = out
        self.err = err
        self.limit = limit
        # When not live, package lists are only printed on print_latest()
        self.live = live
        self.latest: Optional[QueryResult] = None

    def show_packages(self, result: QueryResult, scroll_to_top: bool) -> None:
        self.latest = result
        if self.live:
            self.print_result(result)

    def print_latest(self) -> None:
        if self.latest is not None:
            self.print_result(self.latest)

    def print_result(self, result: QueryResult) -> None:
        shown = result.packages[: self.limit] if self.limit else result.packages
        if shown:
            print(tabulate(package_rows(shown), headers=self.headers, tablefmt="simple"), file=self.out)
        label = result.state.filter_type.value.capitalize()
        print(f"\n{label}: {result.filtered}/{result.total} packages", file=self.out)

    def show_status(self, level: StatusLevel, message: str) -> None:
        print(f"[{level.value.upper()}] {message}", file=self.err)

    def show_detail(self, package: Optional[Package]) -> None:
        if package is None:
            print("No package selected", file=self.out)
            return
        rows = [
            ["Name", package.display_name or package.name],
            ["Type", KIND_TAGS[package.kind]],
            ["Version", package.version],
            ["Description", package.description],
            ["Homepage", package.homepage],
            ["Installed", "yes" if package.installed else "no"],
            ["Outdated", "yes" if package.outdated else "no"],
            ["Rank (90d)", package.analytics_rank or "-"],
            ["Downloads (90d)", package.analytics_downloads],
        ]
        if package.formula is not None:
            formula = package.formula
            rows.append(["Dependencies", ", ".join(formula.dependencies) or "-"])
            if formula.installed:
                rows.append(["Installed versions", ", ".join(i.version for i in formula.installed)])
            if formula.local_path:
                rows.append(["Path", formula.local_path])
        if package.cask is not None and package.cask.installed:
            rows.append(["Installed version", package.cask.installed])
        print(tabulate(rows, tablefmt="plain"), file=self.out)

    def append_log(self, line: str) -> None:
        print(line, file=self.out)
