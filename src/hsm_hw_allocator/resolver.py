"""Allocation resolver.

Computes which nodes must move between a target group and its parent
(free pool) so the target ends up with the requested hardware.

Two modes are provided:

Pin (growth)
    Keeps every node already in the target unless the request explicitly
    shrinks a component type, then pulls the missing hardware from the
    parent. Nodes covering several unmet requirements at once are preferred,
    as are nodes whose leftover hardware is abundant, so scarce nodes stay
    in the free pool. The resulting target meets or exceeds every request.

Unpin (shrink)
    Releases target nodes until each requested type lands exactly on its
    desired final count, preferring nodes whose other hardware is abundant.
    All requested types are solved together, so a node shedding several of
    them at once is found even when no single-type choice would do. It
    never releases more than needed and fails rather than overshooting.

Both modes are deterministic for identical inputs (ties are broken by node
id) and raise an :class:`AllocationError` before anything is mutated when
the request cannot be honoured.
"""

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import structlog

from .request import HardwareRequest, RequestKind
from .scarcity import node_weight, scarcity_scores
from .summary import NodeComponents, NodeInventory, combine_pools, summarize

logger = structlog.get_logger(__name__)


class AllocationError(ValueError):
    """Raised when a request cannot be satisfied. Nothing has been mutated."""


class NegativeCountError(AllocationError):
    """Raised when a delta would leave a negative component count."""

    def __init__(self, component: str, current: int, delta: int):
        super().__init__(
            f"Cannot apply {delta} to '{component}': the target group holds "
            f"{current}, the result would be negative",
        )
        self.component = component
        self.current = current
        self.delta = delta


class InsufficientResourcesError(AllocationError):
    """Raised when the pool does not hold enough of a component type."""

    def __init__(self, component: str, requested: int, available: int):
        super().__init__(
            f"Not enough '{component}' to fulfil the request: "
            f"{requested} requested, {available} available",
        )
        self.component = component
        self.requested = requested
        self.available = available


class UnreachableCountError(AllocationError):
    """Raised when no set of releasable nodes lands exactly on a count."""

    def __init__(self, component: str, requested: int, current: int):
        super().__init__(
            f"No combination of nodes can bring '{component}' from {current} "
            f"down to exactly {requested}",
        )
        self.component = component
        self.requested = requested
        self.current = current


class Direction(enum.Enum):
    """Where a node goes."""

    TO_TARGET = "to_target"
    TO_PARENT = "to_parent"


@dataclass(frozen=True)
class NodeMove:
    """A single node movement between the target and parent groups."""

    node_id: str
    direction: Direction


@dataclass(frozen=True)
class AllocationPlan:
    """Ordered node movements computed by the resolver.

    A node appears at most once.
    """

    moves: tuple[NodeMove, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "moves", tuple(self.moves))
        seen: set[str] = set()
        for move in self.moves:
            if move.node_id in seen:
                msg = f"Node '{move.node_id}' is moved more than once"
                raise ValueError(msg)
            seen.add(move.node_id)

    def __len__(self) -> int:
        return len(self.moves)

    @property
    def is_empty(self) -> bool:
        """True when nothing has to move."""
        return not self.moves

    @property
    def to_target(self) -> list[str]:
        """Nodes moving from the parent into the target, in plan order."""
        return [m.node_id for m in self.moves if m.direction is Direction.TO_TARGET]

    @property
    def to_parent(self) -> list[str]:
        """Nodes moving from the target back to the parent, in plan order."""
        return [m.node_id for m in self.moves if m.direction is Direction.TO_PARENT]

    def apply(
        self,
        target_members: Iterable[str],
        parent_members: Iterable[str],
    ) -> tuple[list[str], list[str]]:
        """Compute the memberships that result from executing the plan.

        Returns:
            Tuple of (target members, parent members), both sorted.
        """
        target = set(target_members)
        parent = set(parent_members)
        for move in self.moves:
            if move.direction is Direction.TO_TARGET:
                parent.discard(move.node_id)
                target.add(move.node_id)
            else:
                target.discard(move.node_id)
                parent.add(move.node_id)
        return sorted(target), sorted(parent)

    def to_dict(self) -> list[dict[str, str]]:
        """JSON friendly representation."""
        return [
            {"node": move.node_id, "direction": move.direction.value}
            for move in self.moves
        ]


def desired_target_summary(
    current: Mapping[str, int],
    request: HardwareRequest,
) -> dict[str, int]:
    """Final counts the target should hold for each requested component.

    Args:
        current: Current summary of the target group.
        request: Delta or absolute request.

    Returns:
        Desired count per requested component, in request order.

    Raises:
        NegativeCountError: If a delta would make a count negative.
    """
    desired: dict[str, int] = {}

    for component, count in request.items():
        held = current.get(component, 0)
        if request.kind is RequestKind.DELTA:
            final = held + count
            if final < 0:
                raise NegativeCountError(component, held, count)
        else:
            final = count
        desired[component] = final

    return desired


def _exact_sum_reachable(amount: int, values: Iterable[int]) -> bool:
    """Whether some subset of values sums exactly to amount."""
    if amount == 0:
        return True
    if amount < 0:
        return False
    mask = (1 << (amount + 1)) - 1
    reachable = 1
    for value in values:
        reachable |= (reachable << value) & mask
    return bool((reachable >> amount) & 1)


def _release_key(
    components: NodeComponents,
    floors: Mapping[str, int],
    scores: Mapping[str, float],
) -> tuple[float, int, int]:
    """Sort key of a release candidate, lower is better.

    Prefers nodes whose hardware outside the shrinking types is the least
    scarce, then nodes shedding several shrinking types at once, then the
    largest contribution to them.
    """
    waste = node_weight(components, scores, exclude=floors)
    covers = sum(1 for component in floors if components.get(component, 0) > 0)
    useful = sum(components.get(component, 0) for component in floors)
    return (waste, -covers, -useful)


def _select_release(
    pool: NodeInventory,
    floors: Mapping[str, int],
    scores: Mapping[str, float],
    keep: Iterable[str] = (),
) -> list[str]:
    """Pick nodes to release so every floored type lands exactly on its floor.

    All floored types are solved together: a node counts against every type
    it carries. Candidates are tried in preference order and the first
    combination hitting every floor wins, so the result is deterministic and
    an error means no combination exists.

    Args:
        pool: Nodes that can be released.
        floors: Desired final count per shrinking component type.
        scores: Scarcity scores used to prefer releasing abundant hardware.
        keep: Component types whose carriers must stay in the pool.

    Returns:
        Released node ids in preference order.

    Raises:
        InsufficientResourcesError: If a type is already below its floor.
        UnreachableCountError: If no set of nodes hits every floor exactly.
    """
    totals = summarize(pool)
    order = list(floors)
    need: list[int] = []
    for component in order:
        current = totals.get(component, 0)
        if current < floors[component]:
            raise InsufficientResourcesError(component, floors[component], current)
        need.append(current - floors[component])

    if not any(need):
        return []

    kept = set(keep)
    candidates = sorted(
        (
            node_id
            for node_id, components in pool.items()
            if any(components.get(c, 0) > 0 for c in order)
            and all(components.get(c, 0) <= n for c, n in zip(order, need))
            and not any(components.get(c, 0) > 0 for c in kept)
        ),
        key=lambda node_id: (*_release_key(pool[node_id], floors, scores), node_id),
    )
    vectors = [tuple(pool[node_id].get(c, 0) for c in order) for node_id in candidates]

    for index, component in enumerate(order):
        if not _exact_sum_reachable(need[index], (v[index] for v in vectors)):
            raise UnreachableCountError(component, floors[component], totals[component])

    # suffix[i][k]: how much of type k the candidates from i onwards hold
    suffix = [(0,) * len(order)]
    for vector in reversed(vectors):
        suffix.append(tuple(a + b for a, b in zip(vector, suffix[-1])))
    suffix.reverse()

    dead_ends: set[tuple[int, tuple[int, ...]]] = set()

    def search(start: int, remaining: tuple[int, ...]) -> list[int] | None:
        if not any(remaining):
            return []
        if (start, remaining) in dead_ends:
            return None
        if all(r <= s for r, s in zip(remaining, suffix[start])):
            for index in range(start, len(vectors)):
                vector = vectors[index]
                if any(v > r for v, r in zip(vector, remaining)):
                    continue
                rest = search(index + 1, tuple(r - v for r, v in zip(remaining, vector)))
                if rest is not None:
                    return [index, *rest]
        dead_ends.add((start, remaining))
        return None

    chosen = search(0, tuple(need))
    if chosen is None:
        component = next(c for c, n in zip(order, need) if n > 0)
        raise UnreachableCountError(component, floors[component], totals[component])

    released = [candidates[index] for index in chosen]
    for node_id in released:
        logger.debug("Releasing node", node=node_id, components=pool[node_id])
    return released


def _growth_key(
    components: NodeComponents,
    component: str,
    unmet: Mapping[str, int],
    scores: Mapping[str, float],
) -> tuple[int, float, int]:
    """Sort key of a growth candidate, lower is better.

    Prefers nodes covering more of the other unmet types, then nodes whose
    unneeded hardware is the least scarce, then the largest useful
    contribution to the type being filled.
    """
    covers = sum(
        1 for other in unmet if other != component and components.get(other, 0) > 0
    )
    waste = node_weight(components, scores, exclude=unmet)
    useful = min(components.get(component, 0), unmet[component])
    return (-covers, waste, -useful)


def resolve_pin(
    target: NodeInventory,
    parent: NodeInventory,
    request: HardwareRequest,
    scores: Mapping[str, float] | None = None,
) -> AllocationPlan:
    """Compute the moves that give the target group the requested hardware.

    Nodes already in the target are kept unless a delta request shrinks a
    component type, in which case just enough of them go back to the parent
    to land exactly on the reduced count. An absolute request never shrinks
    the target: a type already at or above its requested count is left as
    is, so re-running a request against its own result is a no-op.

    Args:
        target: Component counts of the current target members.
        parent: Component counts of the parent (free pool) members. Nodes
            also present in the target are ignored.
        request: Delta or absolute request.
        scores: Scarcity scores; computed over target and parent combined
            when omitted.

    Returns:
        Plan releasing target nodes first, then pulling parent nodes.

    Raises:
        NegativeCountError: If a delta would make a count negative.
        InsufficientResourcesError: If the pools lack a requested quantity.
        UnreachableCountError: If a shrinking delta cannot be hit exactly.
    """
    current = summarize(target)
    desired = desired_target_summary(current, request)
    if request.kind is RequestKind.ABSOLUTE:
        desired = {
            component: max(count, current.get(component, 0))
            for component, count in desired.items()
        }
    if scores is None:
        scores = scarcity_scores(combine_pools(target, parent))

    candidates = {
        node_id: parent[node_id] for node_id in sorted(parent) if node_id not in target
    }
    supply = summarize(candidates)

    for component, count in desired.items():
        held = current.get(component, 0)
        if count > held + supply.get(component, 0):
            raise InsufficientResourcesError(
                component,
                count,
                held + supply.get(component, 0),
            )

    release_floors = {
        component: count
        for component, count in desired.items()
        if count < current.get(component, 0)
    }
    released = _select_release(
        target,
        release_floors,
        scores,
        keep=[component for component in desired if component not in release_floors],
    )

    kept = summarize(
        {node_id: components for node_id, components in target.items() if node_id not in released},
    )
    unmet = {
        component: count - kept.get(component, 0)
        for component, count in desired.items()
        if count > kept.get(component, 0)
    }

    pulled: list[str] = []
    for component in request.component_types:
        while unmet.get(component, 0) > 0:
            carriers = [
                node_id
                for node_id, components in candidates.items()
                if components.get(component, 0) > 0
            ]
            if not carriers:
                raise InsufficientResourcesError(
                    component,
                    desired[component],
                    desired[component] - unmet[component],
                )
            best = min(
                carriers,
                key=lambda node_id: (
                    *_growth_key(candidates[node_id], component, unmet, scores),
                    node_id,
                ),
            )
            components = candidates.pop(best)
            pulled.append(best)
            logger.debug("Pulling node", node=best, component=component, unmet=dict(unmet))
            for other in list(unmet):
                unmet[other] -= components.get(other, 0)
                if unmet[other] <= 0:
                    del unmet[other]

    plan = AllocationPlan(
        tuple(NodeMove(node_id, Direction.TO_PARENT) for node_id in released)
        + tuple(NodeMove(node_id, Direction.TO_TARGET) for node_id in pulled),
    )
    logger.info(
        "Resolved pin allocation",
        desired=desired,
        released=len(released),
        pulled=len(pulled),
    )
    return plan


def resolve_unpin(
    target: NodeInventory,
    request: HardwareRequest,
    scores: Mapping[str, float] | None = None,
) -> AllocationPlan:
    """Compute the target nodes to release so requested types hit their counts.

    A released node leaves once, counting against every type it carries.
    The request only fails when no set of target nodes lands exactly on
    every requested count.

    Args:
        target: Component counts of the current target members.
        request: Desired final counts (a delta request is converted first).
        scores: Scarcity scores; computed over the target when omitted.

    Returns:
        Plan moving the released nodes to the parent.

    Raises:
        NegativeCountError: If a delta would make a count negative.
        InsufficientResourcesError: If a desired count exceeds what the
            target holds.
        UnreachableCountError: If a desired count cannot be hit exactly.
    """
    current = summarize(target)
    desired = desired_target_summary(current, request)
    for component, count in desired.items():
        if count > current.get(component, 0):
            raise InsufficientResourcesError(component, count, current.get(component, 0))
    if scores is None:
        scores = scarcity_scores(target)

    released = _select_release(target, desired, scores)

    logger.info("Resolved unpin allocation", desired=desired, released=len(released))
    return AllocationPlan(
        tuple(NodeMove(node_id, Direction.TO_PARENT) for node_id in released),
    )
