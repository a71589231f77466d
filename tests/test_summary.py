"""Tests for group summaries and pool union."""

from hsm_hw_allocator import summary

# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def test_summarize_sums_counts():
    """Every component count is the exact sum over the node set."""
    nodes = {
        "x1": {"epyc": 2, "memory": 16},
        "x2": {"epyc": 1, "a100": 4, "memory": 32},
    }

    assert summary.summarize(nodes) == {"a100": 4, "epyc": 3, "memory": 48}


def test_summarize_empty():
    assert summary.summarize({}) == {}


def test_summarize_is_order_independent():
    """Insertion order of nodes does not change the summary."""
    forward = {"x1": {"epyc": 2}, "x2": {"a100": 1}}
    backward = {"x2": {"a100": 1}, "x1": {"epyc": 2}}

    assert summary.summarize(forward) == summary.summarize(backward)


def test_summarize_nodes_ignores_unknown_nodes():
    """Nodes missing from the inventory contribute nothing."""
    nodes = {"x1": {"epyc": 2}, "x2": {"epyc": 1}}

    assert summary.summarize_nodes(nodes, ["x1", "x9"]) == {"epyc": 2}


def test_combine_pools_first_occurrence_wins():
    """A node present in two pools is counted once."""
    target = {"x2": {"epyc": 2}}
    parent = {"x1": {"epyc": 1}, "x2": {"epyc": 99}}

    combined = summary.combine_pools(target, parent)

    assert combined == {"x1": {"epyc": 1}, "x2": {"epyc": 2}}
    assert list(combined) == ["x1", "x2"]


def test_combine_pools_copies_node_counts():
    """The combined pool does not alias the input mappings."""
    target = {"x1": {"epyc": 2}}

    combined = summary.combine_pools(target)
    combined["x1"]["epyc"] = 0

    assert target["x1"]["epyc"] == 2
