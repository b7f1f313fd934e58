"""Base source class and transport utilities."""

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Callable, Generic, Optional, Sequence, TypeVar

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from brewdash.cache import DiskCache
from brewdash.errors import BrewNotFoundError, CommandError, SourceFetchError
from brewdash.models import PackageKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

Runner = Callable[[Sequence[str]], bytes]

# Cache freshness, in minutes
TTL_INSTALLED = 10
TTL_REMOTE = 1000
TTL_ANALYTICS = 100


def get_session(retries: int = 3) -> requests.Session:
    """Create a requests session with retry logic."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def run_command(args: Sequence[str], timeout: Optional[float] = None) -> bytes:
    """Run a command and return its stdout.

    Raises:
        CommandError: if the command cannot start, times out or exits non-zero.
    """
    logger.debug(f"Running: {' '.join(args)}")
    try:
        result = subprocess.run(list(args), capture_output=True, check=True, timeout=timeout)
    except subprocess.CalledProcessError as e:
        raise CommandError(args, e.returncode, e.stderr.decode(errors="replace")) from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(args, stderr="timed out") from e
    except OSError as e:
        raise CommandError(args, stderr=str(e)) from e
    return result.stdout


def split_lines(output: bytes) -> list[str]:
    return [line.strip() for line in output.decode(errors="replace").splitlines() if line.strip()]


class BrewClient:
    """Thin wrapper around the ``brew`` binary."""

    def __init__(self, binary: str = "brew", runner: Runner = run_command):
        self.binary = binary
        self._runner = runner
        self._prefix: Optional[str] = None

    def run(self, *args: str) -> bytes:
        return self._runner([self.binary, *args])

    def version(self) -> str:
        try:
            output = self.run("--version")
        except CommandError as e:
            raise BrewNotFoundError(f"Homebrew is not available: {e}") from e
        lines = split_lines(output)
        if not lines:
            raise BrewNotFoundError("Homebrew reported no version")
        # "Homebrew 4.2.0"
        return lines[0].split()[-1]

    def prefix(self) -> str:
        """Homebrew prefix, resolved once. "Unknown" if brew cannot tell."""
        if self._prefix is None:
            try:
                self._prefix = self.run("--prefix").decode().strip() or "Unknown"
            except CommandError:
                self._prefix = "Unknown"
        return self._prefix

    def installed_names(self, kind: PackageKind) -> set[str]:
        """Names installed for a kind, via ``brew list``. Empty on failure."""
        flag = "--cask" if kind == PackageKind.CASK else "--formula"
        try:
            return set(split_lines(self.run("list", flag)))
        except CommandError as e:
            logger.debug(f"brew list {flag} failed: {e}")
            return set()

    def tap_names(self) -> set[str]:
        try:
            return set(split_lines(self.run("tap")))
        except CommandError as e:
            logger.debug(f"brew tap failed: {e}")
            return set()


class BaseSource(ABC, Generic[T]):
    """Abstract base class for cached data sources.

    Subclasses provide the live query, the decoder and, for installed
    sources, the stamping pass; ``fetch`` applies the cache policy.
    """

    source_name: str = "unknown"
    cache_name: str = ""
    ttl: float = TTL_REMOTE

    def __init__(self, cache: DiskCache):
        self.cache = cache

    @abstractmethod
    def query(self) -> bytes:
        """Run the live query and return the raw payload."""

    @abstractmethod
    def decode(self, data: bytes) -> T:
        """Decode a raw payload. Raises ValueError on malformed data."""

    def stamp(self, documents: T) -> T:
        return documents

    def usable(self, documents: T) -> bool:
        """Whether a cached document may be served instead of a live query."""
        return True

    def fetch(self, force_refresh: bool = False) -> T:
        """Return the source documents, from cache when fresh.

        Raises:
            SourceFetchError: if the live query fails or returns garbage.
        """
        if not force_refresh:
            cached = self._from_cache()
            if cached is not None:
                return cached

        try:
            raw = self.query()
        except (CommandError, requests.RequestException) as e:
            raise SourceFetchError(self.source_name, str(e)) from e

        try:
            documents = self.decode(raw)
        except ValueError as e:
            raise SourceFetchError(self.source_name, f"malformed payload: {e}") from e

        documents = self.stamp(documents)
        self.cache.write(self.cache_name, raw)
        return documents

    def _from_cache(self) -> Optional[T]:
        data = self.cache.read(self.cache_name, self.ttl)
        if data is None:
            return None
        try:
            documents = self.decode(data)
        except ValueError as e:
            logger.debug(f"Ignoring corrupt cache document {self.cache_name}: {e}")
            return None
        if not self.usable(documents):
            return None
        return self.stamp(documents)


class RemoteSource(BaseSource[T]):
    """Source served by an HTTPS GET."""

    url: str = ""

    def __init__(self, cache: DiskCache, session: requests.Session, timeout: float = 30.0):
        super().__init__(cache)
        self.session = session
        self.timeout = timeout

    def query(self) -> bytes:
        logger.debug(f"Fetching {self.url}")
        response = self.session.get(self.url, timeout=self.timeout)
        response.raise_for_status()
        return response.content


class CommandSource(BaseSource[T]):
    """Source served by the local ``brew`` binary."""

    def __init__(self, cache: DiskCache, brew: BrewClient):
        super().__init__(cache)
        self.brew = brew
