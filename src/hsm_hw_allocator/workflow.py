"""Pin, unpin and hardware report workflows.

A workflow reads the two groups involved, fetches and normalizes the
hardware of all their members, scores scarcity over the combined pool,
resolves a plan and hands it to the migration executor. Group state and
inventories are read fresh on every call.

Everything before :func:`migration.execute_plan` is read-only, so a request
that cannot be satisfied fails without touching any group.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace

import structlog

from .backend import HsmBackend
from .hsmapi.types import Group
from .inventory import DEFAULT_MAX_CONCURRENCY, fetch_inventory
from .migration import MigrationPolicy, MigrationReport, execute_plan, prepare_target_group
from .normalizer import DEFAULT_MEMORY_UNIT_MIB
from .request import HardwareRequest
from .resolver import AllocationPlan, resolve_pin, resolve_unpin
from .scarcity import scarcity_scores
from .summary import NodeInventory, combine_pools, summarize, summarize_nodes

logger = structlog.get_logger(__name__)

Resolver = Callable[
    [NodeInventory, NodeInventory, HardwareRequest, Mapping[str, float]],
    AllocationPlan,
]


@dataclass(frozen=True)
class WorkflowSettings:
    """Run-wide knobs, sourced from configuration."""

    memory_unit_mib: int = DEFAULT_MEMORY_UNIT_MIB
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY


def render_group(label: str, members: Iterable[str], group: Group | None = None) -> dict:
    """JSON view of a group with the given members."""
    return {
        "label": label,
        "description": group.description if group else "",
        "members": sorted(members),
        "tags": list(group.tags) if group else [],
    }


@dataclass
class GroupHardwareReport:
    """Hardware of one group's members."""

    group: Group
    inventory: dict[str, dict[str, int]]
    summary: dict[str, int]
    failed_nodes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "group": render_group(self.group.label, self.group.members, self.group),
            "nodes": self.inventory,
            "summary": self.summary,
            "failed_nodes": self.failed_nodes,
        }


@dataclass
class WorkflowResult:
    """Outcome of a pin or unpin run.

    The "after" memberships and summaries reflect the moves that took effect,
    or every planned move on a dry run. A node that left its source group
    but never reached its destination counts in neither group.
    """

    action: str
    request: HardwareRequest
    target: dict
    parent: dict
    target_summary_before: dict[str, int]
    target_summary_after: dict[str, int]
    parent_summary_before: dict[str, int]
    parent_summary_after: dict[str, int]
    plan: AllocationPlan
    migration: MigrationReport
    failed_nodes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "dry_run": self.migration.dry_run,
            "request": {
                "kind": self.request.kind.value,
                "components": dict(self.request.components),
            },
            "target": self.target,
            "parent": self.parent,
            "summary": {
                "target": {
                    "before": self.target_summary_before,
                    "after": self.target_summary_after,
                },
                "parent": {
                    "before": self.parent_summary_before,
                    "after": self.parent_summary_after,
                },
            },
            "plan": self.plan.to_dict(),
            "migration": self.migration.to_dict(),
            "failed_nodes": self.failed_nodes,
        }


def get_group_hardware(
    backend: HsmBackend,
    group: str,
    patterns: Iterable[str],
    settings: WorkflowSettings = WorkflowSettings(),
) -> GroupHardwareReport:
    """Fetch and summarize the hardware of a group's members.

    Raises:
        GroupNotFoundError: If the group does not exist.
    """
    hsm_group = backend.get_group(group)
    fetched = fetch_inventory(
        backend,
        hsm_group.members,
        patterns,
        memory_unit_mib=settings.memory_unit_mib,
        max_concurrency=settings.max_concurrency,
    )
    return GroupHardwareReport(
        group=hsm_group,
        inventory=fetched.results,
        summary=summarize(fetched.results),
        failed_nodes=fetched.failed_node_ids,
    )


def _run(
    action: str,
    resolve: Resolver,
    backend: HsmBackend,
    target_group: str,
    parent_group: str,
    request: HardwareRequest,
    policy: MigrationPolicy,
    settings: WorkflowSettings,
) -> WorkflowResult:
    if target_group == parent_group:
        msg = f"Target and parent group are both '{target_group}'"
        raise ValueError(msg)

    logger.info(
        "Starting allocation",
        action=action,
        target=target_group,
        parent=parent_group,
        request=dict(request.components),
        kind=request.kind.value,
        dry_run=policy.dry_run,
    )

    parent = backend.get_group(parent_group)
    target = prepare_target_group(backend, target_group, policy)
    target_members = list(target.members) if target else []
    parent_members = list(parent.members)

    # a target that will only be created at execution time has no members yet
    seed_groups = [parent_group] if target is None else [target_group, parent_group]
    fetched = fetch_inventory(
        backend,
        backend.members_of(seed_groups),
        request.component_types,
        memory_unit_mib=settings.memory_unit_mib,
        max_concurrency=settings.max_concurrency,
    )
    inventory = fetched.results
    target_inventory = {n: inventory[n] for n in target_members if n in inventory}
    parent_inventory = {n: inventory[n] for n in parent_members if n in inventory}
    scores = scarcity_scores(combine_pools(target_inventory, parent_inventory))

    plan = resolve(target_inventory, parent_inventory, request, scores)

    report = execute_plan(
        backend,
        plan,
        target_group,
        parent_group,
        parent_members,
        policy,
        create_target=target is None,
    )

    target_after, parent_after = report.apply(target_members, parent_members)
    result = WorkflowResult(
        action=action,
        request=request,
        target=render_group(target_group, target_after, target),
        parent=render_group(parent_group, parent_after, parent),
        target_summary_before=summarize_nodes(inventory, target_members),
        target_summary_after=summarize_nodes(inventory, target_after),
        parent_summary_before=summarize_nodes(inventory, parent_members),
        parent_summary_after=summarize_nodes(inventory, parent_after),
        plan=plan,
        migration=report,
        failed_nodes=fetched.failed_node_ids,
    )
    logger.info(
        "Finished allocation",
        action=action,
        target=target_group,
        target_summary=result.target_summary_after,
        moved=len(plan),
        failed=len(report.failures),
        detached=report.detached_nodes,
    )
    return result


def pin_hardware(
    backend: HsmBackend,
    target_group: str,
    parent_group: str,
    request: HardwareRequest,
    policy: MigrationPolicy = MigrationPolicy(),
    settings: WorkflowSettings = WorkflowSettings(),
) -> WorkflowResult:
    """Grow (or shrink, for negative deltas) a target group from its parent.

    Args:
        backend: Control plane adapter.
        target_group: Group receiving the hardware.
        parent_group: Free pool nodes are taken from and returned to.
        request: Delta or absolute hardware request.
        policy: Dry run and group lifecycle switches.
        settings: Memory unit and fetch concurrency.

    Raises:
        GroupNotFoundError: If the parent group, or the target group while
            the policy does not allow creating it, does not exist.
        AllocationError: If the request cannot be satisfied.
    """
    return _run(
        "pin",
        resolve_pin,
        backend,
        target_group,
        parent_group,
        request,
        policy,
        settings,
    )


def unpin_hardware(
    backend: HsmBackend,
    target_group: str,
    parent_group: str,
    request: HardwareRequest,
    policy: MigrationPolicy = MigrationPolicy(),
    settings: WorkflowSettings = WorkflowSettings(),
) -> WorkflowResult:
    """Release target nodes back to the parent down to the requested counts.

    Raises:
        GroupNotFoundError: If either group does not exist.
        AllocationError: If the requested counts cannot be hit exactly.
    """
    # releasing into a group that does not exist yet makes no sense
    policy = replace(policy, create_target_group=False)
    return _run(
        "unpin",
        lambda target, _parent, req, scores: resolve_unpin(target, req, scores),
        backend,
        target_group,
        parent_group,
        request,
        policy,
        settings,
    )
