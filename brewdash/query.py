"""Filter, search and sort the catalog for display."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Sequence

from brewdash.models import Package, PackageKind


class FilterType(Enum):
    NONE = "all"
    INSTALLED = "installed"
    OUTDATED = "outdated"
    LEAVES = "leaves"
    CASKS = "casks"


FILTER_PREDICATES: dict[FilterType, Callable[[Package], bool]] = {
    FilterType.NONE: lambda p: True,
    FilterType.INSTALLED: lambda p: p.installed,
    FilterType.OUTDATED: lambda p: p.installed and p.outdated,
    FilterType.LEAVES: lambda p: p.installed and p.installed_on_request,
    FilterType.CASKS: lambda p: p.kind == PackageKind.CASK,
}


def toggle_filter(active: FilterType, requested: FilterType) -> FilterType:
    """Selecting the active filter again clears it."""
    return FilterType.NONE if requested == active else requested


def apply_filter(packages: Iterable[Package], filter_type: FilterType) -> list[Package]:
    predicate = FILTER_PREDICATES[filter_type]
    return [p for p in packages if predicate(p)]


def rank_key(package: Package) -> tuple[bool, int]:
    # Unranked (0) sorts after every ranked package
    return (package.analytics_rank == 0, package.analytics_rank)


def kind_key(package: Package) -> tuple[str, str]:
    return (package.kind.value, package.name.lower())


def search(packages: Iterable[Package], text: str) -> list[Package]:
    """Case-insensitive match on name or description, ranked by popularity."""
    needle = text.lower()
    seen = set()
    matches = []
    for package in packages:
        if package.name in seen:
            continue
        if needle in package.name.lower() or needle in package.description.lower():
            matches.append(package)
            seen.add(package.name)
    return sorted(matches, key=rank_key)


def query(
    packages: Iterable[Package],
    filter_type: FilterType = FilterType.NONE,
    search_text: str = "",
    sort_by_kind: bool = False,
) -> list[Package]:
    """Produce the list to render. Pure function of its arguments."""
    result = apply_filter(packages, filter_type)
    if search_text:
        result = search(result, search_text)
    if sort_by_kind:
        result = sorted(result, key=kind_key)
    return result


@dataclass(frozen=True)
class QueryState:
    """Filter, search text and sort mode owned by the control thread."""

    filter_type: FilterType = FilterType.NONE
    search_text: str = ""
    sort_by_kind: bool = False

    def with_filter(self, requested: FilterType) -> "QueryState":
        return QueryState(toggle_filter(self.filter_type, requested), self.search_text, self.sort_by_kind)

    def with_search(self, text: str) -> "QueryState":
        return QueryState(self.filter_type, text, self.sort_by_kind)

    def with_kind_sort_toggled(self) -> "QueryState":
        return QueryState(self.filter_type, self.search_text, not self.sort_by_kind)

    def run(self, packages: Sequence[Package]) -> "QueryResult":
        rows = query(packages, self.filter_type, self.search_text, self.sort_by_kind)
        return QueryResult(packages=rows, total=len(packages), state=self)


@dataclass(frozen=True)
class QueryResult:
    packages: list[Package]
    total: int
    state: QueryState

    @property
    def filtered(self) -> int:
        return len(self.packages)
