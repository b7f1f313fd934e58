"""Unified data models for the package catalog."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PackageKind(str, Enum):
    """Kind of package, ordered alphabetically by value."""

    CASK = "cask"
    FLATPAK = "flatpak"
    FORMULA = "formula"


class Requirement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    version: Optional[str] = None
    contexts: list[str] = Field(default_factory=list)


class BottleFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cellar: Optional[str] = None
    url: Optional[str] = None
    sha256: Optional[str] = None


class BottleStable(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rebuild: int = 0
    root_url: Optional[str] = None
    files: dict[str, BottleFile] = Field(default_factory=dict)


class Bottle(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stable: Optional[BottleStable] = None


class Versions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stable: Optional[str] = None
    head: Optional[str] = None
    bottle: bool = False


class InstalledVersion(BaseModel):
    """One entry of a formula's ``installed`` array."""

    model_config = ConfigDict(extra="ignore")

    version: str = ""
    time: Optional[int] = None
    installed_as_dependency: bool = False
    installed_on_request: bool = False
    poured_from_bottle: bool = False


class Formula(BaseModel):
    """A Homebrew formula as returned by ``brew info --json=v1`` or the API."""

    model_config = ConfigDict(extra="ignore")

    name: str
    full_name: str = ""
    tap: Optional[str] = None
    desc: Optional[str] = None
    license: Optional[str] = None
    homepage: Optional[str] = None
    versions: Versions = Field(default_factory=Versions)
    bottle: Bottle = Field(default_factory=Bottle)
    keg_only: bool = False
    dependencies: list[str] = Field(default_factory=list)
    build_dependencies: list[str] = Field(default_factory=list)
    requirements: list[Requirement] = Field(default_factory=list)
    installed: list[InstalledVersion] = Field(default_factory=list)
    pinned: bool = False
    outdated: bool = False
    deprecated: bool = False
    disabled: bool = False

    # Stamped locally, never present in upstream payloads
    locally_installed: bool = False
    local_path: Optional[str] = None

    def bottle_platforms(self) -> list[str]:
        if self.bottle.stable is None:
            return []
        return list(self.bottle.stable.files)

    def requires(self, requirement: str) -> bool:
        return any(req.name == requirement for req in self.requirements)


class Cask(BaseModel):
    """A Homebrew cask as returned by ``brew info --json=v2 --cask`` or the API."""

    model_config = ConfigDict(extra="ignore")

    token: str
    full_token: str = ""
    tap: Optional[str] = None
    name: list[str] = Field(default_factory=list)
    desc: Optional[str] = None
    homepage: Optional[str] = None
    version: Optional[str] = None
    installed: Optional[str] = None
    outdated: bool = False
    auto_updates: Optional[bool] = None

    locally_installed: bool = False


class AnalyticsItem(BaseModel):
    """One row of a formulae.brew.sh analytics table."""

    model_config = ConfigDict(extra="ignore")

    number: int = 0
    formula: Optional[str] = None
    cask: Optional[str] = None
    count: str = "0"
    percent: Optional[str] = None

    @property
    def downloads(self) -> int:
        # Counts are published with thousands separators
        try:
            return int(self.count.replace(",", ""))
        except ValueError:
            return 0


class Package(BaseModel):
    """Unified package representation for all sources."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Canonical package name, unique in the catalog")
    display_name: str = Field(default="", description="Human readable name")
    description: str = Field(default="", description="Package description")
    homepage: str = Field(default="", description="Project homepage URL")
    version: str = Field(default="", description="Current stable version")
    kind: PackageKind = Field(description="formula, cask or flatpak")

    installed: bool = Field(default=False, description="Present on this machine")
    outdated: bool = Field(default=False, description="Installed and upgradable")
    installed_on_request: bool = Field(
        default=False, description="Explicitly installed rather than as a dependency"
    )

    # Popularity metrics from the 90 day analytics tables
    analytics_rank: int = Field(default=0, description="Rank, 0 when unranked")
    analytics_downloads: int = Field(default=0, description="Install count")

    formula: Optional[Formula] = None
    cask: Optional[Cask] = None

    @classmethod
    def from_formula(cls, formula: Formula, **overrides) -> "Package":
        installed_on_request = False
        if formula.installed:
            installed_on_request = formula.installed[0].installed_on_request
        fields = dict(
            name=formula.name,
            display_name=formula.full_name or formula.name,
            description=formula.desc or "",
            homepage=formula.homepage or "",
            version=formula.versions.stable or "",
            kind=PackageKind.FORMULA,
            installed=formula.locally_installed,
            outdated=formula.outdated,
            installed_on_request=installed_on_request,
            formula=formula,
        )
        fields.update(overrides)
        return cls(**fields)

    @classmethod
    def from_cask(cls, cask: Cask, **overrides) -> "Package":
        fields = dict(
            name=cask.token,
            display_name=cask.name[0] if cask.name else cask.token,
            description=cask.desc or "",
            homepage=cask.homepage or "",
            version=cask.version or "",
            kind=PackageKind.CASK,
            installed=cask.locally_installed,
            outdated=cask.outdated,
            # Casks are always explicitly installed
            installed_on_request=True,
            cask=cask,
        )
        fields.update(overrides)
        return cls(**fields)

    @classmethod
    def placeholder(cls, name: str, kind: PackageKind, description: str) -> "Package":
        return cls(name=name, display_name=name, description=description, kind=kind)


class ManifestEntry(BaseModel):
    """A single package line of a manifest (Brewfile)."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: PackageKind = PackageKind.FORMULA


class ManifestResult(BaseModel):
    """Parsed manifest: taps to enable and packages wanted, in file order."""

    model_config = ConfigDict(frozen=True)

    taps: tuple[str, ...] = ()
    entries: tuple[ManifestEntry, ...] = ()

    @property
    def flatpak_entries(self) -> list[ManifestEntry]:
        return [e for e in self.entries if e.kind == PackageKind.FLATPAK]
