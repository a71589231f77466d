"""Tests for AtomicThrottledCache behaviours not observable through HsmCollector.

The per-key throttle window transition (fresh → cached → expired →
re-fetch), the exact return-tuple semantics (data, duration) vs
(data, None), key isolation, thread safety under concurrent access and the
None-data edge case are covered here. Caching effects on scrape metadata
are exercised in test_collector.py.
"""

import threading
from unittest.mock import MagicMock, patch

from hsm_hw_allocator import cache

# ---------------------------------------------------------------------------
# First fetch
# ---------------------------------------------------------------------------


def test_first_fetch_invokes_fetch_func():
    """A fresh cache always invokes fetch_func."""
    fetch_func = MagicMock(return_value={"epyc": 2})
    c = cache.AtomicThrottledCache(limit=9999.0)

    c.fetch_or_throttle("tasna", fetch_func)

    fetch_func.assert_called_once()


def test_first_fetch_returns_data_and_non_negative_duration():
    """Fresh fetch returns (data, duration >= 0) tuple."""
    expected_data = {"epyc": 2, "a100": 4}
    c = cache.AtomicThrottledCache(limit=9999.0)

    data, duration = c.fetch_or_throttle("tasna", MagicMock(return_value=expected_data))

    assert data is expected_data
    assert isinstance(duration, float)
    assert duration >= 0.0


# ---------------------------------------------------------------------------
# Cache hit (within throttle window)
# ---------------------------------------------------------------------------


def test_cache_hit_returns_same_data_and_none_duration():
    """Within the throttle window, the cached object is returned without a duration."""
    expected_data = {"epyc": 2}
    fetch_func = MagicMock(return_value=expected_data)
    c = cache.AtomicThrottledCache(limit=9999.0)

    c.fetch_or_throttle("tasna", fetch_func)
    data, duration = c.fetch_or_throttle("tasna", fetch_func)

    assert data is expected_data
    assert duration is None
    fetch_func.assert_called_once()


def test_keys_are_cached_independently():
    """A cached key does not serve another key."""
    c = cache.AtomicThrottledCache(limit=9999.0)
    tasna = MagicMock(return_value={"a100": 4})
    zinal = MagicMock(return_value={"epyc": 2})

    c.fetch_or_throttle("tasna", tasna)
    data, duration = c.fetch_or_throttle("zinal", zinal)

    assert data == {"epyc": 2}
    assert duration is not None
    tasna.assert_called_once()
    zinal.assert_called_once()


def test_invalidate_forces_refetch():
    fetch_func = MagicMock(return_value={"epyc": 2})
    c = cache.AtomicThrottledCache(limit=9999.0)

    c.fetch_or_throttle("tasna", fetch_func)
    c.invalidate("tasna")
    c.fetch_or_throttle("tasna", fetch_func)

    assert fetch_func.call_count == 2


# ---------------------------------------------------------------------------
# Cache expiry
# ---------------------------------------------------------------------------


@patch("hsm_hw_allocator.cache.time")
def test_cache_expires_and_refetches(mock_time):
    """After the throttle window passes, fetch_func is called again with new data."""
    # First fetch: start, duration, fetched_at
    # Second fetch (expired): elapsed check, start, duration, fetched_at
    mock_time.time.side_effect = [
        100.0,  # start of first fetch
        100.01,  # end of first fetch (duration)
        100.02,  # fetched_at
        200.0,  # elapsed check: 200.0 - 100.02 = 99.98 >> 10.0
        200.0,  # start of second fetch
        200.01,  # end of second fetch (duration)
        200.02,  # fetched_at
    ]

    first_data = {"epyc": 2}
    second_data = {"epyc": 4}
    fetch_func = MagicMock(side_effect=[first_data, second_data])
    c = cache.AtomicThrottledCache(limit=10.0)

    data_1, dur_1 = c.fetch_or_throttle("tasna", fetch_func)
    data_2, dur_2 = c.fetch_or_throttle("tasna", fetch_func)

    assert data_1 is first_data
    assert data_2 is second_data
    assert dur_1 is not None
    assert dur_2 is not None
    assert fetch_func.call_count == 2


@patch("hsm_hw_allocator.cache.time")
def test_cache_stays_fresh_within_limit(mock_time):
    """Cached data is returned without calling fetch_func while within the window."""
    mock_time.time.side_effect = [
        100.0,  # start of first fetch
        100.01,  # end of first fetch (duration)
        100.02,  # fetched_at
        100.05,  # elapsed check: 100.05 - 100.02 = 0.03 < 10.0 → hit
    ]

    expected_data = {"epyc": 2}
    fetch_func = MagicMock(return_value=expected_data)
    c = cache.AtomicThrottledCache(limit=10.0)

    c.fetch_or_throttle("tasna", fetch_func)
    data, duration = c.fetch_or_throttle("tasna", fetch_func)

    assert data is expected_data
    assert duration is None
    fetch_func.assert_called_once()


# ---------------------------------------------------------------------------
# Thread safety
# ---------------------------------------------------------------------------


def test_concurrent_access_single_fetch():
    """Multiple threads racing on a fresh key result in only one fetch_func call."""
    fetch_func = MagicMock(return_value={"epyc": 2})
    c = cache.AtomicThrottledCache(limit=9999.0)
    thread_count = 20

    barrier = threading.Barrier(thread_count)

    def worker():
        barrier.wait()
        c.fetch_or_throttle("tasna", fetch_func)

    threads = [threading.Thread(target=worker) for _ in range(thread_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    fetch_func.assert_called_once()


# ---------------------------------------------------------------------------
# Edge case: None data
# ---------------------------------------------------------------------------


def test_none_data_not_treated_as_cache_hit():
    """fetch_func returning None leaves the key empty; the next call fetches again."""
    fetch_func = MagicMock(side_effect=[None, {"epyc": 2}])
    c = cache.AtomicThrottledCache(limit=9999.0)

    data_1, _ = c.fetch_or_throttle("tasna", fetch_func)
    data_2, dur_2 = c.fetch_or_throttle("tasna", fetch_func)

    assert data_1 is None
    assert data_2 == {"epyc": 2}
    assert dur_2 is not None
    assert fetch_func.call_count == 2
