from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from errors import CacheSerializationError
from services.cache import MISS, AnalyticsCache, clone_payload, generate_key


class TestGenerateKey:
    """Test cache key derivation."""

    def test_same_calendar_day_same_key(self):
        morning = datetime(2025, 3, 15, 8, 0, tzinfo=timezone.utc)
        night = datetime(2025, 3, 15, 23, 59, tzinfo=timezone.utc)
        assert generate_key("getReport", [morning, None, 7]) == "getReport:2025-03-15:null:7"
        assert generate_key("getReport", [morning, None, 7]) == generate_key("getReport", [night, None, 7])

    def test_aware_datetime_normalized_to_utc_day(self):
        manila = timezone(timedelta(hours=8))
        # 2025-03-16 02:00 in Manila is still 2025-03-15 in UTC
        value = datetime(2025, 3, 16, 2, 0, tzinfo=manila)
        assert generate_key("m", [value]) == "m:2025-03-15"

    def test_plain_dates_and_scalars(self):
        key = generate_key("get_catch_trends", [date(2025, 1, 1), date(2025, 1, 31), "monthly", 3])
        assert key == "get_catch_trends:2025-01-01:2025-01-31:monthly:3"

    def test_argument_order_matters(self):
        assert generate_key("m", [1, 2]) != generate_key("m", [2, 1])

    def test_no_args(self):
        assert generate_key("get_regions", []) == "get_regions"

    def test_available_on_instance(self, cache):
        assert cache.generate_key("m", [None]) == "m:null"


class TestGetSet:
    """Test lookup and insertion."""

    def test_round_trip_returns_equal_copy(self, cache):
        payload = {"labels": ["Jan", "Feb"], "values": [10.5, 12], "meta": {"region": 3}}
        cache.set("k", payload)
        result = cache.get("k")
        assert result == payload
        assert result is not payload
        assert result["labels"] is not payload["labels"]

    def test_missing_key_returns_miss(self, cache):
        assert cache.get("nope") is MISS
        assert not MISS

    @pytest.mark.parametrize("value", [None, 0, "", [], {}, False])
    def test_falsy_values_are_hits(self, cache, value):
        cache.set("k", value)
        assert cache.get("k") is not MISS
        assert cache.get("k") == value

    def test_mutating_result_does_not_touch_cache(self, cache):
        cache.set("k", {"rows": [1, 2, 3]})
        first = cache.get("k")
        first["rows"].append(4)
        first["extra"] = True
        assert cache.get("k") == {"rows": [1, 2, 3]}

    def test_mutating_input_after_set_does_not_touch_cache(self, cache):
        payload = {"rows": [1, 2, 3]}
        cache.set("k", payload)
        payload["rows"].clear()
        assert cache.get("k") == {"rows": [1, 2, 3]}

    def test_overwrite_replaces_payload(self, cache):
        cache.set("k", 1)
        cache.set("k", 2)
        assert cache.get("k") == 2
        assert len(cache) == 1

    def test_negative_ttl_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.set("k", 1, ttl_ms=-1)

    @pytest.mark.parametrize("kwargs", [{"max_entries": 0}, {"default_ttl_ms": -5}])
    def test_invalid_config_rejected(self, kwargs):
        with pytest.raises(ValueError):
            AnalyticsCache(**kwargs)


class TestExpiry:
    """Test TTL handling."""

    def test_expired_entry_is_absent(self, cache, clock):
        cache.set("k", "v", ttl_ms=10)
        clock.advance(11)
        assert cache.get("k") is MISS
        assert "k" not in cache

    def test_entry_valid_at_exact_ttl(self, cache, clock):
        cache.set("k", "v", ttl_ms=10)
        clock.advance(10)
        assert cache.get("k") == "v"

    def test_default_ttl_applies(self, clock):
        cache = AnalyticsCache(default_ttl_ms=100, clock=clock)
        cache.set("k", "v")
        clock.advance(100)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is MISS

    def test_overwrite_refreshes_timestamp(self, cache, clock):
        cache.set("k", 1, ttl_ms=10)
        clock.advance(8)
        cache.set("k", 2, ttl_ms=10)
        clock.advance(8)
        assert cache.get("k") == 2

    def test_stats_count_expired_before_cleanup(self, cache, clock):
        cache.set("old", 1, ttl_ms=10)
        cache.set("fresh", 2, ttl_ms=1000)
        clock.advance(11)
        assert cache.get_stats() == {"total": 2, "valid": 1, "expired": 1, "max_size": 100}
        # get_stats is read-only
        assert len(cache) == 2

    def test_clean_expired_removes_only_expired(self, cache, clock):
        cache.set("old", 1, ttl_ms=10)
        cache.set("fresh", 2, ttl_ms=1000)
        clock.advance(11)
        assert cache.clean_expired() == 1
        assert "old" not in cache
        assert cache.get("fresh") == 2

    def test_clean_expired_is_idempotent(self, cache, clock):
        cache.set("a", 1, ttl_ms=10)
        cache.set("b", 2, ttl_ms=1000)
        clock.advance(11)
        cache.clean_expired()
        first = cache.get_stats()
        assert cache.clean_expired() == 0
        assert cache.get_stats() == first


class TestEviction:
    """Test the entry cap."""

    def test_fifo_eviction(self, clock):
        cache = AnalyticsCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get("a") is MISS
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_reads_do_not_protect_from_eviction(self, clock):
        cache = AnalyticsCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert "a" not in cache
        assert "b" in cache

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        cache = AnalyticsCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("b", 20)
        assert len(cache) == 2
        assert cache.get("a") == 1

    def test_overwrite_keeps_insertion_slot(self, clock):
        cache = AnalyticsCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)
        assert "a" not in cache
        assert cache.get("b") == 2

    def test_never_exceeds_cap(self, clock):
        cache = AnalyticsCache(max_entries=5, clock=clock)
        for i in range(20):
            cache.set(f"k{i}", i)
        assert len(cache) == 5
        assert cache.get_stats()["total"] == 5


class TestInvalidation:
    """Test delete / clear / clear_pattern."""

    def test_delete(self, cache):
        cache.set("k", 1)
        cache.delete("k")
        assert cache.get("k") is MISS

    def test_delete_missing_is_noop(self, cache):
        cache.delete("nope")
        assert len(cache) == 0

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_clear_pattern(self, cache):
        cache.set("getX:a", 1)
        cache.set("getX:b", 2)
        cache.set("getY:a", 3)
        assert cache.clear_pattern("getX:") == 2
        assert cache.get("getX:a") is MISS
        assert cache.get("getX:b") is MISS
        assert cache.get("getY:a") == 3

    def test_clear_pattern_is_literal_prefix(self, cache):
        cache.set("get.*:a", 1)
        cache.set("getX:a", 2)
        assert cache.clear_pattern("get.*") == 1
        assert cache.get("getX:a") == 2

    def test_clear_pattern_no_match(self, cache):
        cache.set("a", 1)
        assert cache.clear_pattern("zzz") == 0
        assert len(cache) == 1


class TestClonePayload:
    """Test the deep copy used on the way in and out."""

    def test_nested_structures(self):
        value = {"a": [1, {"b": (2, 3)}], "when": date(2025, 1, 1), "n": Decimal("1.50")}
        copied = clone_payload(value)
        assert copied == value
        assert copied["a"][1] is not value["a"][1]
        assert isinstance(copied["a"][1]["b"], tuple)

    def test_shared_non_cyclic_reference_is_allowed(self):
        shared = [1, 2]
        copied = clone_payload({"x": shared, "y": shared})
        assert copied == {"x": [1, 2], "y": [1, 2]}
        assert copied["x"] is not copied["y"]

    def test_cycle_raises(self):
        value = {"rows": []}
        value["rows"].append(value)
        with pytest.raises(CacheSerializationError, match="cyclic"):
            clone_payload(value)

    def test_unsupported_type_raises(self):
        with pytest.raises(CacheSerializationError, match="set"):
            clone_payload({"ids": {1, 2}})

    def test_unsupported_key_raises(self):
        with pytest.raises(CacheSerializationError):
            clone_payload({(1, 2): "tuple key"})

    def test_too_deep_raises(self):
        value = []
        for _ in range(10_000):
            value = [value]
        with pytest.raises(CacheSerializationError):
            clone_payload(value)

    def test_failed_set_leaves_cache_untouched(self, clock):
        cache = AnalyticsCache(max_entries=1, clock=clock)
        cache.set("a", 1)
        with pytest.raises(CacheSerializationError):
            cache.set("b", object())
        assert cache.get("a") == 1
        assert "b" not in cache
