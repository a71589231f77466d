"""Inventory fetcher.

Retrieves hardware inventories for a set of nodes with bounded parallelism.
The control plane does not get faster past a handful of concurrent inventory
queries, so the worker pool is capped (5 by default) rather than sized to the
node count.

A node whose fetch fails is reported and left out; its siblings are not
affected. There is no retry here, callers decide whether to re-run.
"""

import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog

from .backend import HsmBackend
from .normalizer import DEFAULT_MEMORY_UNIT_MIB, normalize_node, normalize_patterns

logger = structlog.get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 5

T = TypeVar("T")


@dataclass(frozen=True)
class FetchFailure:
    """A node whose inventory could not be retrieved or decoded."""

    node_id: str
    error: str


@dataclass
class FetchResult(Generic[T]):
    """Per-node results of a batch, sorted by node id, plus failures."""

    results: dict[str, T] = field(default_factory=dict)
    failures: list[FetchFailure] = field(default_factory=list)

    @property
    def failed_node_ids(self) -> list[str]:
        """Sorted ids of the nodes that failed."""
        return sorted(failure.node_id for failure in self.failures)


def _run_bounded(
    node_ids: Iterable[str],
    task: Callable[[str], T],
    max_concurrency: int,
) -> FetchResult[T]:
    """Run one task per node with at most max_concurrency in flight.

    Each task returns its own result; results are gathered here, in the
    calling thread, as tasks complete.
    """
    if max_concurrency < 1:
        msg = "max_concurrency must be at least 1"
        raise ValueError(msg)

    unique_ids = sorted(set(node_ids))
    results: dict[str, T] = {}
    failures: list[FetchFailure] = []
    if not unique_ids:
        return FetchResult()

    start = time.time()
    with ThreadPoolExecutor(max_workers=max_concurrency) as executor:
        future_to_node = {
            executor.submit(task, node_id): node_id for node_id in unique_ids
        }
        for future in as_completed(future_to_node):
            node_id = future_to_node[future]
            try:
                results[node_id] = future.result()
            except Exception as exc:
                logger.warning(
                    "Failed to fetch node hardware inventory",
                    node=node_id,
                    error=str(exc),
                )
                failures.append(FetchFailure(node_id=node_id, error=str(exc)))

    logger.info(
        "Fetched hardware inventories",
        nodes=len(unique_ids),
        failed=len(failures),
        max_concurrency=max_concurrency,
        duration_seconds=round(time.time() - start, 3),
    )
    return FetchResult(
        results={node_id: results[node_id] for node_id in sorted(results)},
        failures=sorted(failures, key=lambda failure: failure.node_id),
    )


def fetch_inventory(
    backend: HsmBackend,
    node_ids: Iterable[str],
    patterns: Iterable[str],
    memory_unit_mib: int = DEFAULT_MEMORY_UNIT_MIB,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    filters: Mapping[str, str] | None = None,
) -> FetchResult[dict[str, int]]:
    """Fetch and normalize the hardware of a set of nodes.

    Each worker fetches one document and normalizes it, so a document that
    cannot be normalized fails only its own node.

    Args:
        backend: Control plane adapter.
        node_ids: Nodes to fetch. Duplicates are fetched once.
        patterns: Component patterns the operator cares about.
        memory_unit_mib: Memory quantization unit shared by the whole run.
        max_concurrency: Maximum number of requests in flight.
        filters: Passed through to the inventory query untouched.

    Returns:
        Component counts per node id and the list of failed nodes.

    Raises:
        ValueError: If max_concurrency or memory_unit_mib is not positive.
    """
    if memory_unit_mib < 1:
        msg = "memory_unit_mib must be positive"
        raise ValueError(msg)
    normalized_patterns = normalize_patterns(patterns)

    def task(node_id: str) -> dict[str, int]:
        document = backend.get_hardware(node_id, filters)
        return normalize_node(document, normalized_patterns, memory_unit_mib)

    return _run_bounded(node_ids, task, max_concurrency)
