"""Tests for publisher.py: snapshot publication and the price-to-beat latch."""

import sys
import threading
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from conftest import make_snapshot
from errors import NotReadyError
from publisher import PriceToBeatLatch, SnapshotPublisher


class TestSnapshotPublisher:
    def test_not_ready_before_first_publish(self):
        pub = SnapshotPublisher()
        assert pub.is_ready() is False
        with pytest.raises(NotReadyError):
            pub.latest()

    def test_latest_is_last_published(self):
        pub = SnapshotPublisher()
        a, b = make_snapshot(slug="a"), make_snapshot(slug="b")
        pub.publish(a)
        pub.publish(b)
        assert pub.latest() is b
        assert pub.published_count == 2

    def test_readers_see_whole_snapshots(self):
        pub = SnapshotPublisher()
        snaps = [make_snapshot(slug=f"m{i}") for i in range(50)]
        pub.publish(snaps[0])
        seen = []

        def reader():
            for _ in range(200):
                seen.append(pub.latest())

        t = threading.Thread(target=reader)
        t.start()
        for s in snaps:
            pub.publish(s)
        t.join()
        assert all(any(x is s for s in snaps) for x in seen)


class TestPriceToBeatLatch:
    START = 1_000_000

    def test_latches_once_per_slug(self):
        latch = PriceToBeatLatch()
        assert latch.update("S", 60000.0, self.START, self.START + 1) == 60000.0
        assert latch.update("S", 60500.0, self.START, self.START + 2) == 60000.0
        assert latch.update("S", 59000.0, self.START, self.START + 3) == 60000.0

    def test_waits_for_window_start(self):
        latch = PriceToBeatLatch()
        assert latch.update("S", 60000.0, self.START, self.START - 1) is None
        assert latch.update("S", 60100.0, self.START, self.START) == 60100.0

    def test_no_start_time_latches_immediately(self):
        latch = PriceToBeatLatch()
        assert latch.update("S", 60000.0, None, 0) == 60000.0

    def test_slug_change_clears(self):
        latch = PriceToBeatLatch()
        latch.update("S", 60000.0, None, 0)
        assert latch.update("S2", None, None, 1) is None
        assert latch.slug == "S2"
        assert latch.update("S2", 61000.0, None, 2) == 61000.0

    def test_missing_price_keeps_waiting(self):
        latch = PriceToBeatLatch()
        assert latch.update("S", None, None, 0) is None
        assert latch.update("S", 60000.0, None, 1) == 60000.0

    def test_no_market(self):
        latch = PriceToBeatLatch()
        assert latch.update(None, 60000.0, None, 0) is None
