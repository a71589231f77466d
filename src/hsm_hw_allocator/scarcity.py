"""Scarcity scorer.

Scores each component type by how rare it is in a candidate pool. A type
carried by few nodes gets a high score, one carried by every node a low
one. The resolver uses these scores to keep scarce hardware where it is
(free pool when growing, target when shrinking) whenever a less scarce node
does the job.

Scores are relative weights in (0, 1], only comparable within the pool they
were computed for.
"""

from collections.abc import Iterable, Mapping

import structlog

from .summary import NodeComponents, NodeInventory

logger = structlog.get_logger(__name__)


def scarcity_scores(inventory: NodeInventory) -> dict[str, float]:
    """Compute a normalized scarcity score per component type.

    The raw score of a type is the inverse of the share of nodes carrying
    it (pool size / carriers). Raw scores are divided by the highest one so
    the scarcest type scores 1.0. Types with the same coverage get the same
    score, so a pool where every node carries every type scores all 1.0.

    Args:
        inventory: Combined component counts per node id (typically the
            target and parent pools together).

    Returns:
        Score per observed component type, sorted by component type.
    """
    pool_size = len(inventory)
    carriers: dict[str, int] = {}

    for components in inventory.values():
        for component, count in components.items():
            if count > 0:
                carriers[component] = carriers.get(component, 0) + 1

    if not carriers:
        return {}

    raw_scores = {
        component: pool_size / node_count for component, node_count in carriers.items()
    }
    highest = max(raw_scores.values())
    scores = {
        component: raw_scores[component] / highest for component in sorted(raw_scores)
    }

    logger.debug("Computed scarcity scores", pool_size=pool_size, scores=scores)
    return scores


def node_weight(
    components: NodeComponents,
    scores: Mapping[str, float],
    exclude: Iterable[str] = (),
) -> float:
    """Scarcity weight of a node: sum of score times count of its components.

    Args:
        components: Component counts of the node.
        scores: Scarcity scores of the pool.
        exclude: Component types left out of the sum.

    Returns:
        The weighted sum; unknown component types weigh nothing.
    """
    excluded = set(exclude)
    return sum(
        scores.get(component, 0.0) * count
        for component, count in components.items()
        if component not in excluded
    )
