"""
Reference data cache.

Holds the latest committed ReferenceSnapshot. Readers always get a complete
snapshot immediately; a refresh runs at most once at a time and readers keep
seeing the previous snapshot until the new one is swapped in.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable, Optional

from chainscreen.reference.catalog import ReferenceSnapshot

if TYPE_CHECKING:
    from chainscreen.storage import ReferenceDataLoader

logger = logging.getLogger(__name__)


class ReferenceDataCache:
    """
    TTL-bound holder of the current reference snapshot.

    Expiry triggers a reload through the injected loader. If the loader fails
    and a previous snapshot exists, the stale snapshot keeps being served and
    the failure is logged.
    """

    def __init__(
        self,
        loader: "ReferenceDataLoader",
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[ReferenceSnapshot] = None
        self._expires_at: float = 0.0
        self._refresh_lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[ReferenceSnapshot]:
        """The snapshot currently held, without triggering a load."""
        return self._snapshot

    async def current(self) -> ReferenceSnapshot:
        """Return the latest committed snapshot, reloading when expired."""
        if self._snapshot is not None and self._clock() < self._expires_at:
            return self._snapshot

        if self._snapshot is not None and self._refresh_lock.locked():
            # Someone else is refreshing; never block scoring on it
            return self._snapshot

        async with self._refresh_lock:
            if self._snapshot is not None and self._clock() < self._expires_at:
                return self._snapshot
            try:
                snapshot = await self._loader.load()
            except Exception as e:
                if self._snapshot is None:
                    raise
                logger.warning(f"Reference data refresh failed, serving stale snapshot: {e}")
                self._expires_at = self._clock() + min(self._ttl, 60.0)
                return self._snapshot
            self.publish(snapshot)
            return snapshot

    def publish(self, snapshot: ReferenceSnapshot) -> None:
        """Swap in a freshly committed snapshot (used by the sync job)."""
        self._snapshot = snapshot
        self._expires_at = self._clock() + self._ttl
        logger.info(
            f"Reference snapshot v{snapshot.version} active: "
            f"{len(snapshot.entity_types)} entity types, "
            f"{len(snapshot.jurisdictions)} jurisdictions"
        )

    def invalidate(self) -> None:
        """Force a reload on next access while still serving the old snapshot."""
        self._expires_at = 0.0
