"""Control-thread state: the published catalog snapshot and the query state."""

import time
from dataclasses import dataclass, field
from typing import Optional

from brewdash.dispatch import ControlQueue
from brewdash.models import Package
from brewdash.query import FilterType, QueryResult, QueryState
from brewdash.render import Renderer, StatusLevel


@dataclass(frozen=True)
class CatalogSnapshot:
    """The merged catalog at one point in time. Replaced whole, never edited."""

    packages: tuple[Package, ...] = ()
    manifest_packages: Optional[tuple[Package, ...]] = None
    errors: tuple[str, ...] = ()
    created_at: float = field(default_factory=time.time)

    def find(self, name: str) -> Optional[Package]:
        for package in self.manifest_packages or ():
            if package.name == name:
                return package
        for package in self.packages:
            if package.name == name:
                return package
        return None


class Dashboard:
    """Everything the renderer shows, owned by the control thread.

    Workers never call the mutating methods directly; they use the
    ``post_*`` helpers, which queue the call for the control thread.
    """

    def __init__(self, renderer: Renderer, control: ControlQueue, manifest_mode: bool = False):
        self.renderer = renderer
        self.control = control
        self.manifest_mode = manifest_mode
        self.snapshot = CatalogSnapshot()
        self.state = QueryState()
        self.result: Optional[QueryResult] = None

    def visible_packages(self) -> tuple[Package, ...]:
        if self.manifest_mode:
            return self.snapshot.manifest_packages or ()
        return self.snapshot.packages

    def publish(self, snapshot: CatalogSnapshot, scroll_to_top: bool = False) -> None:
        self.snapshot = snapshot
        self.refresh_view(scroll_to_top)

    def refresh_view(self, scroll_to_top: bool = False) -> QueryResult:
        self.result = self.state.run(self.visible_packages())
        self.renderer.show_packages(self.result, scroll_to_top)
        return self.result

    def set_search(self, text: str) -> QueryResult:
        self.state = self.state.with_search(text)
        return self.refresh_view(scroll_to_top=True)

    def toggle_filter(self, filter_type: FilterType) -> QueryResult:
        self.state = self.state.with_filter(filter_type)
        return self.refresh_view(scroll_to_top=True)

    def toggle_kind_sort(self) -> QueryResult:
        self.state = self.state.with_kind_sort_toggled()
        return self.refresh_view(scroll_to_top=True)

    def status(self, level: StatusLevel, message: str) -> None:
        self.renderer.show_status(level, message)

    def log(self, line: str) -> None:
        self.renderer.append_log(line)

    def detail(self, name: str) -> Optional[Package]:
        package = self.snapshot.find(name)
        self.renderer.show_detail(package)
        return package

    def post_publish(self, snapshot: CatalogSnapshot, scroll_to_top: bool = False) -> None:
        self.control.submit(lambda: self.publish(snapshot, scroll_to_top))

    def post_status(self, level: StatusLevel, message: str) -> None:
        self.control.submit(lambda: self.status(level, message))

    def post_log(self, line: str) -> None:
        self.control.submit(lambda: self.log(line))
