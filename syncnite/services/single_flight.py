"""Per-key single-flight guard. State is in-memory and lost on restart."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from syncnite.exceptions import LockedError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class SingleFlightGuard:
    """At most one in-progress operation per key; never queues.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    ``try_acquire`` checks and marks the key with no await point in between,
    so two coroutines cannot both acquire the same key.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        """Mark ``key`` as held. Returns False if it already was."""
        if key in self._held:
            return False
        self._held.add(key)
        return True

    def release(self, key: str) -> None:
        self._held.discard(key)

    def held(self, key: str) -> bool:
        return key in self._held

    @property
    def held_keys(self) -> frozenset[str]:
        return frozenset(self._held)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold ``key`` for the duration of the block.

        Raises LockedError immediately when the key is already held. The key
        is released even if the block raises.
        """
        if not self.try_acquire(key):
            logger.warning("Rejected concurrent sync for %s", key)
            raise LockedError(key)
        try:
            yield
        finally:
            self.release(key)
