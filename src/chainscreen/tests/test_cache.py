"""
Tests for the TTL cache and the reference data cache.
"""

import pytest

from chainscreen.cache import TTLCache
from chainscreen.reference.cache import ReferenceDataCache
from chainscreen.reference.catalog import (
    EntityTypeEntry,
    JurisdictionEntry,
    ReferenceSnapshot,
)
from chainscreen.errors import DuplicateError, ValidationError
from chainscreen.storage import ReferenceDataLoader, StaticReferenceDataLoader


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FlakyLoader(ReferenceDataLoader):
    """Loader that fails after the first successful load."""

    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    async def load(self):
        self.calls += 1
        if self.calls > 1:
            raise RuntimeError("reference database unavailable")
        return self.snapshot


class TestTTLCache:
    """Tests for TTLCache."""

    def test_value_expires_after_ttl(self):
        """Entries disappear once the clock passes their expiry."""
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=10, clock=clock)

        cache.set("k", 1)
        clock.now = 9.9
        assert cache.get("k") == 1

        clock.now = 10.0
        assert cache.get("k") is None

    def test_zero_ttl_disables_caching(self):
        """A zero TTL never stores anything."""
        cache = TTLCache(ttl_seconds=0)

        cache.set("k", 1)

        assert "k" not in cache
        assert len(cache) == 0

    def test_negative_ttl_rejected(self):
        """Negative TTLs are a configuration error."""
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=-1)

    def test_max_entries_evicts_closest_to_expiry(self):
        """The oldest entry is dropped when the cache is full."""
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=100, clock=clock, max_entries=2)

        cache.set("a", 1)
        clock.now = 1
        cache.set("b", 2)
        clock.now = 2
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_invalidate(self):
        """invalidate drops one key or everything."""
        cache = TTLCache(ttl_seconds=100)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert "a" not in cache
        assert "b" in cache

        cache.invalidate()
        assert len(cache) == 0


class TestReferenceSnapshot:
    """Tests for building reference snapshots."""

    def test_duplicate_entity_type_rejected(self):
        """Entity type keys are unique regardless of case."""
        with pytest.raises(DuplicateError):
            ReferenceSnapshot.build(entity_types=[
                EntityTypeEntry("Exchange", risk_score_type=10),
                EntityTypeEntry("exchange", risk_score_type=20),
            ])

    def test_duplicate_country_rejected(self):
        """Country codes are unique."""
        with pytest.raises(DuplicateError):
            ReferenceSnapshot.build(jurisdictions=[
                JurisdictionEntry("US", 10),
                JurisdictionEntry("us", 20),
            ])

    def test_score_out_of_range_rejected(self):
        """Catalog scores must stay within 0-100."""
        with pytest.raises(ValidationError):
            EntityTypeEntry("exchange", risk_score_type=120)

    def test_lookup_is_case_insensitive(self, reference_snapshot):
        """Lookups normalise case and whitespace."""
        assert reference_snapshot.entity_type("  Darknet   Market ").risk_score_type == 90
        assert reference_snapshot.jurisdiction("us").risk_score == 10
        assert reference_snapshot.entity_type(None) is None

    def test_fatf_lists_raise_effective_score(self):
        """Black list adds 30, grey list adds 15, capped at 100."""
        assert JurisdictionEntry("XX", 50, fatf_grey=True).effective_score == 65
        assert JurisdictionEntry("YY", 50, fatf_black=True).effective_score == 80
        assert JurisdictionEntry("ZZ", 90, fatf_black=True).effective_score == 100


class TestReferenceDataCache:
    """Tests for ReferenceDataCache."""

    @pytest.mark.asyncio
    async def test_loads_once_within_ttl(self, reference_snapshot):
        """Repeated reads inside the TTL reuse the snapshot."""
        loader = StaticReferenceDataLoader(reference_snapshot)
        cache = ReferenceDataCache(loader, ttl_seconds=60, clock=FakeClock())

        first = await cache.current()
        second = await cache.current()

        assert first is second
        assert loader.load_count == 1

    @pytest.mark.asyncio
    async def test_reloads_after_expiry(self, reference_snapshot):
        """An expired snapshot triggers a reload."""
        clock = FakeClock()
        loader = StaticReferenceDataLoader(reference_snapshot)
        cache = ReferenceDataCache(loader, ttl_seconds=60, clock=clock)

        await cache.current()
        clock.now = 61
        await cache.current()

        assert loader.load_count == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_serves_stale_snapshot(self, reference_snapshot):
        """A loader failure after the first load keeps the previous snapshot."""
        clock = FakeClock()
        loader = FlakyLoader(reference_snapshot)
        cache = ReferenceDataCache(loader, ttl_seconds=60, clock=clock)

        first = await cache.current()
        clock.now = 120
        second = await cache.current()

        assert second is first
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_first_load_failure_propagates(self, reference_snapshot):
        """Without any snapshot a load failure is an error."""
        loader = FlakyLoader(reference_snapshot)
        loader.calls = 1
        cache = ReferenceDataCache(loader)

        with pytest.raises(RuntimeError):
            await cache.current()

    @pytest.mark.asyncio
    async def test_publish_swaps_snapshot(self, reference_snapshot):
        """publish replaces the snapshot without a loader round trip."""
        loader = StaticReferenceDataLoader(reference_snapshot)
        cache = ReferenceDataCache(loader, clock=FakeClock())
        newer = ReferenceSnapshot.build(
            entity_types=[EntityTypeEntry("exchange", risk_score_type=35)],
            version=2,
        )

        cache.publish(newer)

        current = await cache.current()
        assert current.version == 2
        assert loader.load_count == 0
