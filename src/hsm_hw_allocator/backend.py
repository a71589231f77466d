"""Capability interface the allocation engine needs from the control plane.

The engine never talks HTTP directly. Everything it reads or mutates goes
through an object satisfying :class:`HsmBackend`, so swapping the CSM
implementation for another control plane only means writing a new adapter.
"""

from collections.abc import Iterable, Mapping
from typing import Protocol

from .errors import BackendError, GroupNotFoundError
from .hsmapi.types import Group, RawHardwareInventory

__all__ = ["BackendError", "GroupNotFoundError", "HsmBackend"]


class HsmBackend(Protocol):
    """Inventory, group and membership operations used by the engine."""

    def get_hardware(
        self,
        node_id: str,
        filters: Mapping[str, str] | None = None,
    ) -> RawHardwareInventory:
        """Return the hardware inventory document for one node."""
        ...

    def get_group(self, name: str) -> Group:
        """Return a group or raise :class:`GroupNotFoundError`."""
        ...

    def create_group(self, label: str, members: Iterable[str] = ()) -> Group:
        """Create a group with the given members."""
        ...

    def delete_group(self, name: str) -> None:
        """Delete a group."""
        ...

    def add_members(self, group: str, node_ids: Iterable[str]) -> None:
        """Add nodes to a group."""
        ...

    def remove_member(self, group: str, node_id: str) -> None:
        """Remove a single node from a group."""
        ...

    def members_of(self, group_names: Iterable[str]) -> list[str]:
        """Return the union of the members of the given groups."""
        ...
