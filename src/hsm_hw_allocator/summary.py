"""Group summarizer.

A group summary is the total count of each component type across a node
set. Summaries are always recomputed from the member inventories, never
patched, so they cannot drift from the membership they describe.
"""

from collections.abc import Iterable, Mapping

NodeComponents = Mapping[str, int]
NodeInventory = Mapping[str, NodeComponents]


def summarize(inventory: NodeInventory) -> dict[str, int]:
    """Sum component counts across all nodes of an inventory.

    Args:
        inventory: Component counts per node id.

    Returns:
        Total count per component type, sorted by component type.
    """
    summary: dict[str, int] = {}

    for components in inventory.values():
        for component, count in components.items():
            summary[component] = summary.get(component, 0) + count

    return {component: summary[component] for component in sorted(summary)}


def summarize_nodes(inventory: NodeInventory, node_ids: Iterable[str]) -> dict[str, int]:
    """Summarize the subset of an inventory made of the given nodes.

    Nodes missing from the inventory (e.g. whose fetch failed) contribute
    nothing.
    """
    return summarize(
        {node_id: inventory[node_id] for node_id in node_ids if node_id in inventory},
    )


def combine_pools(*inventories: NodeInventory) -> dict[str, dict[str, int]]:
    """Union of several inventories keyed by node id.

    A node present in several pools appears once; the first occurrence wins.

    Returns:
        Combined inventory sorted by node id.
    """
    combined: dict[str, dict[str, int]] = {}

    for inventory in inventories:
        for node_id, components in inventory.items():
            if node_id not in combined:
                combined[node_id] = dict(components)

    return {node_id: combined[node_id] for node_id in sorted(combined)}
