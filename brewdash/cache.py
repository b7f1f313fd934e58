"""
Disk cache for source documents.

One file per logical document, timestamped by its modification time.
Freshness is measured in minutes ("ticks").
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

SECONDS_PER_TICK = 60


class DiskCache:
    """TTL-gated blob store keyed by document name"""

    def __init__(self, cache_dir: Path, clock: Callable[[], float] = time.time):
        """
        Initialize the disk cache

        Args:
            cache_dir: Directory holding one file per document
            clock: Source of the current time, in epoch seconds
        """
        self.cache_dir = Path(cache_dir)
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def ensure_dir(self) -> bool:
        """Create the cache directory if needed. Safe to call repeatedly."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.warning(f"Cannot create cache directory {self.cache_dir}: {e}")
            return False

    def path_for(self, name: str) -> Path:
        return self.cache_dir / name

    def age(self, name: str) -> Optional[float]:
        """Age of a document in ticks, or None if it does not exist."""
        try:
            mtime = self.path_for(name).stat().st_mtime
        except OSError:
            return None
        return (self._clock() - mtime) / SECONDS_PER_TICK

    def read(self, name: str, max_age: float) -> Optional[bytes]:
        """
        Read a document if it is younger than max_age ticks

        Args:
            name: Logical document name
            max_age: Maximum age in minutes, exclusive

        Returns:
            Optional[bytes]: Document contents, or None on miss
        """
        age = self.age(name)
        if age is None:
            logger.debug(f"Cache miss: {name} (absent)")
            return None
        if age >= max_age:
            logger.debug(f"Cache miss: {name} (age {age:.1f} >= {max_age})")
            return None

        try:
            data = self.path_for(name).read_bytes()
        except OSError as e:
            logger.debug(f"Cache miss: {name} ({e})")
            return None

        logger.debug(f"Cache hit: {name} ({len(data)} bytes, age {age:.1f})")
        return data

    def write(self, name: str, data: bytes) -> bool:
        """
        Store a document using an atomic write-and-rename

        Failures are logged and reported, never raised.
        """
        if not self.ensure_dir():
            return False

        target = self.path_for(name)
        temp = target.with_suffix(target.suffix + ".tmp")

        with self._lock_for(name):
            try:
                temp.write_bytes(data)
                temp.replace(target)
            except OSError as e:
                try:
                    temp.unlink(missing_ok=True)
                except OSError as cleanup_error:
                    logger.debug(f"Error cleaning up temporary file {temp}: {cleanup_error}")
                logger.warning(f"Failed to cache {name}: {e}")
                return False

        logger.debug(f"Cached {name} ({len(data)} bytes)")
        return True

    def invalidate(self, name: str) -> None:
        with self._lock_for(name):
            try:
                self.path_for(name).unlink(missing_ok=True)
            except OSError as e:
                logger.debug(f"Error removing cache entry {name}: {e}")

    def clear(self) -> int:
        """Remove every cached document. Returns the number of files removed."""
        removed = 0
        if not self.cache_dir.is_dir():
            return removed
        for path in self.cache_dir.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Error removing cache file {path}: {e}")
        logger.info(f"Cleared {removed} cache files")
        return removed

    def stats(self) -> Dict[str, Any]:
        """Per-document size and age, for display."""
        entries = {}
        if self.cache_dir.is_dir():
            for path in sorted(self.cache_dir.iterdir()):
                if path.is_file() and not path.name.endswith(".tmp"):
                    entries[path.name] = {
                        "size": path.stat().st_size,
                        "age": self.age(path.name),
                    }
        return {
            "cache_dir": str(self.cache_dir),
            "total_entries": len(entries),
            "total_size_bytes": sum(e["size"] for e in entries.values()),
            "entries": entries,
        }

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())
