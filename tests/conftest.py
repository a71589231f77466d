"""Shared fixtures: HSM hardware documents and an in-memory group service."""

from collections.abc import Callable, Iterable, Mapping
from unittest.mock import MagicMock

import pytest

from hsm_hw_allocator.backend import GroupNotFoundError, HsmBackend
from hsm_hw_allocator.hsmapi.types import Group, RawHardwareInventory

EPYC = "AMD EPYC 7742 64-Core Processor"
A100 = "NVIDIA A100-SXM4-40GB"


def build_document(
    xname: str,
    processors: Iterable[str] = (),
    accelerators: Iterable[str] = (),
    dimms_mib: Iterable[int] = (),
) -> dict:
    """Hardware inventory query answer for one node, as HSM returns it."""
    return {
        "XName": xname,
        "Format": "NestNodesOnly",
        "Nodes": [
            {
                "ID": xname,
                "Type": "Node",
                "Processors": [
                    {
                        "ID": f"{xname}p{i}",
                        "PopulatedFRU": {"ProcessorFRUInfo": {"Model": model}},
                    }
                    for i, model in enumerate(processors)
                ],
                "NodeAccels": [
                    {
                        "ID": f"{xname}a{i}",
                        "PopulatedFRU": {"NodeAccelFRUInfo": {"Model": model}},
                    }
                    for i, model in enumerate(accelerators)
                ],
                "Memory": [
                    {
                        "ID": f"{xname}d{i}",
                        "PopulatedFRU": {"MemoryFRUInfo": {"CapacityMiB": capacity}},
                    }
                    for i, capacity in enumerate(dimms_mib)
                ],
            },
        ],
    }


@pytest.fixture
def document() -> Callable[..., dict]:
    """Factory building raw hardware documents."""
    return build_document


class FakeGroupService:
    """In-memory group service holding groups and node documents.

    Wrapped by a MagicMock in the backend fixture so calls can be asserted
    and failures injected with side_effect.
    """

    def __init__(self):
        self.groups: dict[str, Group] = {}
        self.documents: dict[str, dict] = {}

    def add_node(self, xname: str, group: str | None = None, **hardware) -> None:
        self.documents[xname] = build_document(xname, **hardware)
        if group is not None:
            self.groups.setdefault(group, Group(label=group)).members.append(xname)

    def get_hardware(
        self,
        node_id: str,
        filters: Mapping[str, str] | None = None,
    ) -> RawHardwareInventory:
        return RawHardwareInventory.model_validate(self.documents[node_id])

    def get_group(self, name: str) -> Group:
        if name not in self.groups:
            raise GroupNotFoundError(name)
        return self.groups[name].model_copy(deep=True)

    def create_group(self, label: str, members: Iterable[str] = ()) -> Group:
        self.groups[label] = Group(label=label, members=list(members))
        return self.groups[label]

    def delete_group(self, name: str) -> None:
        del self.groups[name]

    def add_members(self, group: str, node_ids: Iterable[str]) -> None:
        self.groups[group].members.extend(node_ids)

    def remove_member(self, group: str, node_id: str) -> None:
        self.groups[group].members.remove(node_id)

    def members_of(self, group_names: Iterable[str]) -> list[str]:
        members: set[str] = set()
        for name in group_names:
            members.update(self.get_group(name).members)
        return sorted(members)

    def members(self, group: str) -> list[str]:
        return sorted(self.groups[group].members)


@pytest.fixture
def service() -> FakeGroupService:
    """Empty in-memory group service."""
    return FakeGroupService()


@pytest.fixture
def backend(service: FakeGroupService) -> MagicMock:
    """HsmBackend mock delegating to the in-memory group service."""
    return MagicMock(spec=HsmBackend, wraps=service)
