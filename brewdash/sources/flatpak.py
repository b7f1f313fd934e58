"""Flatpak sources: installed application ids and Flathub metadata."""

import shutil

from brewdash.cache import DiskCache
from brewdash.models import Package, PackageKind
from brewdash.sources.base import TTL_INSTALLED, TTL_REMOTE, BaseSource, Runner, run_command, split_lines

FLATHUB_REMOTE = "flathub"


class FlatpakClient:
    """Thin wrapper around the ``flatpak`` binary."""

    def __init__(self, binary: str = "flatpak", runner: Runner = run_command):
        self.binary = binary
        self._runner = runner

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def run(self, *args: str) -> bytes:
        return self._runner([self.binary, *args])


class FlatpakSource(BaseSource):
    def __init__(self, cache: DiskCache, flatpak: FlatpakClient):
        super().__init__(cache)
        self.flatpak = flatpak


class FlatpakInstalledSource(FlatpakSource):
    """Installed Flatpak application ids."""

    source_name = "flatpak-installed"
    cache_name = "flatpak-installed.txt"
    ttl = TTL_INSTALLED

    def query(self) -> bytes:
        return self.flatpak.run("list", "--app", "--columns=application")

    def decode(self, data: bytes) -> set[str]:
        return set(split_lines(data))


class FlatpakRemoteSource(FlatpakSource):
    """Name, version and description of every application on Flathub.

    Expensive to query, so it shares the long remote-catalog TTL.
    """

    source_name = "flatpak-remote"
    cache_name = "flatpak-remote.tsv"
    ttl = TTL_REMOTE

    def query(self) -> bytes:
        return self.flatpak.run(
            "remote-ls", FLATHUB_REMOTE, "--app",
            "--columns=application,name,version,description",
        )

    def decode(self, data: bytes) -> dict[str, Package]:
        metadata = {}
        for line in data.decode(errors="replace").splitlines():
            parts = [part.strip() for part in line.split("\t")]
            app_id = parts[0] if parts else ""
            if not app_id:
                continue
            # Missing trailing columns are left empty
            parts += [""] * (4 - len(parts))
            metadata[app_id] = Package(
                name=app_id,
                display_name=parts[1] or app_id,
                version=parts[2],
                description=parts[3],
                kind=PackageKind.FLATPAK,
            )
        return metadata

    def usable(self, documents: dict[str, Package]) -> bool:
        return len(documents) > 0
