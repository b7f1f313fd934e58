"""brewdash: cached Homebrew and Flatpak package catalog for the terminal."""

from brewdash.models import ManifestEntry, ManifestResult, Package, PackageKind

__version__ = "0.1.0"

__all__ = [
    "ManifestEntry",
    "ManifestResult",
    "Package",
    "PackageKind",
]
