"""Work queue with per-identity single-flight.

Guarantees:
- an identity is queued at most once at any time (duplicates collapse)
- an identity handed to a worker is not handed to another worker until
  ``done()`` is called; adds that arrive meanwhile are replayed afterwards
- ``add_after()`` schedules a delayed add; an earlier pending deadline wins
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

_SHUTDOWN = object()


class WorkQueue(Generic[K]):
    """Asyncio work queue of object identities."""

    def __init__(self) -> None:
        self._ready: asyncio.Queue[object] = asyncio.Queue()
        # Identities waiting to be processed (queued, or re-added while processing)
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._delayed: dict[K, tuple[float, asyncio.TimerHandle]] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_processing(self, item: K) -> bool:
        return item in self._processing

    def add(self, item: K) -> None:
        """Mark an identity as needing reconciliation."""
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._ready.put_nowait(item)

    def add_after(self, item: K, delay: float) -> None:
        """Add an identity after ``delay`` seconds."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        pending = self._delayed.get(item)
        if pending is not None:
            if pending[0] <= deadline:
                return
            pending[1].cancel()

        handle = loop.call_at(deadline, self._fire_delayed, item)
        self._delayed[item] = (deadline, handle)

    def _fire_delayed(self, item: K) -> None:
        self._delayed.pop(item, None)
        self.add(item)

    async def get(self) -> K | None:
        """Wait for the next identity; returns None once shut down."""
        item = await self._ready.get()
        if item is _SHUTDOWN or self._shutting_down:
            # Let the other workers see it too
            self._ready.put_nowait(_SHUTDOWN)
            return None
        key: K = item  # type: ignore[assignment]
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, item: K) -> None:
        """Release an identity taken with get()."""
        self._processing.discard(item)
        if item in self._dirty and not self._shutting_down:
            self._ready.put_nowait(item)

    def shutdown(self) -> None:
        """Stop handing out work and cancel pending delayed adds."""
        if self._shutting_down:
            return
        self._shutting_down = True
        for _, handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._ready.put_nowait(_SHUTDOWN)
        logger.debug("Work queue shut down", extra={"pending": len(self._dirty)})
