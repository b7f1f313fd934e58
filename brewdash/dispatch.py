"""Hand-off of worker effects to the control thread."""

import logging
import queue
from concurrent.futures import Future
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

Update = Callable[[], None]


class ControlQueue:
    """FIFO of updates that only the control thread applies.

    Workers call ``submit``; the control thread calls ``drain`` (or
    ``run_until_complete``) and applies updates one at a time in
    submission order.
    """

    def __init__(self):
        self._queue: "queue.Queue[Update]" = queue.Queue()

    def submit(self, update: Update) -> None:
        self._queue.put(update)

    def drain(self, timeout: Optional[float] = None) -> int:
        """Apply pending updates. Blocks up to ``timeout`` for the first one.

        Returns:
            Number of updates applied.
        """
        applied = 0
        try:
            update = self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return applied
        while True:
            update()
            applied += 1
            try:
                update = self._queue.get_nowait()
            except queue.Empty:
                return applied

    def run_until_complete(self, futures: Iterable[Future], poll: float = 0.1) -> None:
        """Apply updates until every future is done and the queue is empty."""
        futures = list(futures)
        while not all(f.done() for f in futures):
            self.drain(timeout=poll)
        self.drain()
        for future in futures:
            exc = future.exception()
            if exc is not None:
                logger.error(f"Background task failed: {exc}")
