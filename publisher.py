"""
Owned cycle state: the latest published snapshot and the price-to-beat latch.

The cycle loop is the only writer. Readers (status commands, traders) get a
complete snapshot or none at all; publication swaps one reference under a
lock and never mutates a snapshot in place.
"""

import logging
import threading

from errors import NotReadyError
from pipeline_types import MarketSnapshot

logger = logging.getLogger(__name__)


class SnapshotPublisher:
    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: MarketSnapshot | None = None
        self._published = 0

    def publish(self, snapshot: MarketSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
            self._published += 1

    def latest(self) -> MarketSnapshot:
        """Most recent complete snapshot. Raises NotReadyError before the first cycle."""
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            raise NotReadyError("No snapshot published yet")
        return snapshot

    def is_ready(self) -> bool:
        with self._lock:
            return self._snapshot is not None

    @property
    def published_count(self) -> int:
        with self._lock:
            return self._published


class PriceToBeatLatch:
    """
    Holds the reference price each market is judged against.

    Set at most once per slug, and only once the market window has started;
    a new slug clears it.
    """

    def __init__(self):
        self.slug: str | None = None
        self.value: float | None = None

    def update(
        self,
        slug: str | None,
        price: float | None,
        start_time_ms: int | None,
        now_ms: int,
    ) -> float | None:
        if slug != self.slug:
            if self.slug is not None:
                logger.info(f"Price to beat cleared: {self.slug} -> {slug}")
            self.slug = slug
            self.value = None

        if self.value is None and slug and price is not None:
            if start_time_ms is None or now_ms >= start_time_ms:
                self.value = price
                logger.info(f"Price to beat for {slug} latched at {price:,.2f}")

        return self.value
