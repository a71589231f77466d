"""Prometheus collector implementation using composition pattern.

Provides a reusable collector that separates data fetching, metric
generation and caching through dependency injection. Data is fetched per
key (one monitored group each) so a failing group does not hide the others.
"""

from collections.abc import Callable, Iterator, Sequence
from typing import Generic, TypeAlias, TypeVar

import structlog
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

from .cache import AtomicThrottledCache

logger = structlog.get_logger(__name__)

T = TypeVar("T")


Fetcher: TypeAlias = Callable[[str], T]
MetricsGenerator: TypeAlias = Callable[[list[T]], Iterator[Metric]]


class HsmCollector(Collector, Generic[T]):
    """Prometheus collector for HSM group metrics using composition pattern.

    Separates concerns through dependency injection:
    - Data fetching and transformation for one key (via Fetcher function
      with injected dependencies)
    - Metric generation over all fetched keys (via MetricsGenerator function)
    - Caching and error handling (managed internally)
    """

    def __init__(
        self,
        fetcher: Fetcher[T],
        generator: MetricsGenerator[T],
        keys: Sequence[str],
        metric_prefix: str,
        poll_limit: float,
        scraper_description: str,
    ):
        """Initialize the HSM collector.

        Args:
            fetcher: Function that fetches and transforms the data of one key
                (with dependencies pre-injected).
            generator: Function that generates Prometheus metrics from data.
            keys: Keys to fetch on every scrape (e.g., group labels).
            metric_prefix: Metric name prefix (e.g., "group").
            poll_limit: Minimum seconds between refreshes of a key.
            scraper_description: Description of the scraper for metric help
                (e.g., API base URL).
        """
        self._fetcher = fetcher
        self._generator = generator
        self._keys = list(keys)
        self._metric_prefix = metric_prefix
        self._cache = AtomicThrottledCache[str, T](poll_limit)

        # Track errors manually (no global Counter registration)
        self._error_count = 0

        self._scraper_desc = scraper_description

    def fetch_metrics(self, key: str) -> tuple[T, float | None]:
        """Fetch the data of one key with caching and throttling.

        Returns:
            Tuple of (data, fetch_duration), the duration being None on a
            cache hit.
        """
        return self._cache.fetch_or_throttle(key, lambda: self._fetcher(key))

    def collect(self) -> Iterator[Metric]:
        """Collect metrics for Prometheus scrape.

        Yields scrape metadata (duration and error count) followed by the
        metrics of every key that could be fetched.

        Yields:
            Prometheus Metric objects (metadata + domain metrics).
        """
        data: list[T] = []
        durations: list[float] = []
        for key in self._keys:
            try:
                item, fetch_duration = self.fetch_metrics(key)
            except Exception:
                logger.exception(
                    "Failed to fetch metrics for collection",
                    metric_prefix=self._metric_prefix,
                    key=key,
                )
                self._error_count += 1
                continue
            data.append(item)
            if fetch_duration is not None:
                durations.append(fetch_duration)

        # -1 indicates every key was a cache hit or an error
        scrape_duration = GaugeMetricFamily(
            f"hsm_{self._metric_prefix}_scrape_duration",
            f"scrape duration from {self._scraper_desc} in seconds, "
            f"-1 indicates cache hit or error",
        )
        scrape_duration.add_metric([], sum(durations) if durations else -1.0)
        yield scrape_duration

        error_counter = CounterMetricFamily(
            f"hsm_{self._metric_prefix}_scrape_error",
            f"hsm {self._metric_prefix} scrape errors",
        )
        error_counter.add_metric([], self._error_count)
        yield error_counter

        if data:
            yield from self._generator(data)
