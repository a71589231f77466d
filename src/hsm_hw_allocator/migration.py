"""Migration executor.

Applies an allocation plan to the group service. Group membership changes
are not transactional: each node is moved with a removal from its source
group followed by an addition to its destination group, and a failure only
affects that node. Failures are reported, never retried or rolled back.

The executor is the only place that mutates group state.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from .backend import BackendError, GroupNotFoundError, HsmBackend
from .hsmapi.types import Group
from .resolver import AllocationPlan, Direction

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MigrationPolicy:
    """What the executor is allowed to do."""

    dry_run: bool = True
    create_target_group: bool = False
    delete_empty_parent_group: bool = False


class MoveStatus(enum.Enum):
    PLANNED = "planned"
    MOVED = "moved"
    # left its source group, never reached its destination
    REMOVED_ONLY = "removed_only"
    FAILED = "failed"


FAILED_STATUSES = (MoveStatus.FAILED, MoveStatus.REMOVED_ONLY)


@dataclass(frozen=True)
class MoveOutcome:
    """Result of moving one node."""

    node_id: str
    direction: Direction
    status: MoveStatus
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is MoveStatus.MOVED


@dataclass
class MigrationReport:
    """Per-node outcomes of a plan execution."""

    dry_run: bool
    outcomes: list[MoveOutcome] = field(default_factory=list)
    target_group_created: bool = False
    parent_group_deleted: bool = False

    @property
    def failures(self) -> list[MoveOutcome]:
        return [o for o in self.outcomes if o.status in FAILED_STATUSES]

    @property
    def detached_nodes(self) -> list[str]:
        """Nodes that were removed from their source but belong to no group now."""
        return [o.node_id for o in self.outcomes if o.status is MoveStatus.REMOVED_ONLY]

    def apply(
        self,
        target_members: Iterable[str],
        parent_members: Iterable[str],
    ) -> tuple[list[str], list[str]]:
        """Memberships left behind by the run (every planned move on a dry run).

        A node that left its source group without reaching its destination
        is in neither group.

        Returns:
            Tuple of (target members, parent members), both sorted.
        """
        target = set(target_members)
        parent = set(parent_members)
        for outcome in self.outcomes:
            if outcome.status is MoveStatus.FAILED:
                continue
            if outcome.direction is Direction.TO_TARGET:
                source, destination = parent, target
            else:
                source, destination = target, parent
            source.discard(outcome.node_id)
            if outcome.status is not MoveStatus.REMOVED_ONLY:
                destination.add(outcome.node_id)
        return sorted(target), sorted(parent)

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "target_group_created": self.target_group_created,
            "parent_group_deleted": self.parent_group_deleted,
            "detached_nodes": self.detached_nodes,
            "moves": [
                {
                    "node": o.node_id,
                    "direction": o.direction.value,
                    "status": o.status.value,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
        }


def prepare_target_group(
    backend: HsmBackend,
    name: str,
    policy: MigrationPolicy,
) -> Group | None:
    """Look up the target group of a run.

    Nothing is created here: a missing group that the policy allows to be
    created is returned as None and created by :func:`execute_plan`, once
    the plan is known to be valid.

    Raises:
        GroupNotFoundError: If the group is missing and may not be created.
    """
    try:
        return backend.get_group(name)
    except GroupNotFoundError:
        if not policy.create_target_group:
            raise
        logger.info("Target group does not exist, it will be created", group=name)
        return None


def execute_plan(
    backend: HsmBackend,
    plan: AllocationPlan,
    target_group: str,
    parent_group: str,
    parent_members: Iterable[str],
    policy: MigrationPolicy,
    create_target: bool = False,
) -> MigrationReport:
    """Apply a plan to the group service.

    Args:
        backend: Control plane adapter.
        plan: Moves computed by the resolver.
        target_group: Label of the target group.
        parent_group: Label of the parent (free pool) group.
        parent_members: Members of the parent group before the run.
        policy: Dry run and group lifecycle switches.
        create_target: Create the target group before moving nodes.

    Returns:
        The outcome of every move. On a dry run every move is reported as
        planned and no mutating call is made.

    Raises:
        BackendError: If the target group has to be created and cannot be.
            No membership has been changed at that point.
    """
    report = MigrationReport(dry_run=policy.dry_run)

    if policy.dry_run:
        for move in plan.moves:
            logger.info(
                "Planned node move",
                node=move.node_id,
                direction=move.direction.value,
                dry_run=True,
            )
            report.outcomes.append(
                MoveOutcome(move.node_id, move.direction, MoveStatus.PLANNED),
            )
        return report

    if create_target:
        backend.create_group(target_group)
        report.target_group_created = True

    for move in plan.moves:
        if move.direction is Direction.TO_TARGET:
            source, destination = parent_group, target_group
        else:
            source, destination = target_group, parent_group

        try:
            backend.remove_member(source, move.node_id)
        except BackendError as exc:
            logger.warning(
                "Failed to remove node from group",
                node=move.node_id,
                group=source,
                error=str(exc),
            )
            report.outcomes.append(
                MoveOutcome(
                    move.node_id,
                    move.direction,
                    MoveStatus.FAILED,
                    f"remove from '{source}': {exc}",
                ),
            )
            continue

        try:
            backend.add_members(destination, [move.node_id])
        except BackendError as exc:
            logger.error(
                "Failed to add node to group, node is in neither group",
                node=move.node_id,
                source=source,
                group=destination,
                error=str(exc),
            )
            report.outcomes.append(
                MoveOutcome(
                    move.node_id,
                    move.direction,
                    MoveStatus.REMOVED_ONLY,
                    f"add to '{destination}': {exc}",
                ),
            )
            continue

        logger.info(
            "Moved node",
            node=move.node_id,
            source=source,
            destination=destination,
        )
        report.outcomes.append(
            MoveOutcome(move.node_id, move.direction, MoveStatus.MOVED),
        )

    if (
        policy.delete_empty_parent_group
        and report.outcomes
        and not report.apply((), parent_members)[1]
    ):
        try:
            backend.delete_group(parent_group)
            report.parent_group_deleted = True
        except BackendError:
            logger.exception("Failed to delete empty parent group", group=parent_group)

    logger.info(
        "Executed allocation plan",
        moves=len(plan),
        failed=len(report.failures),
    )
    return report
