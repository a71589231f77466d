"""Raw API response types for the Hardware State Manager (HSM) REST API.

Pydantic models representing the documents returned by HSM. Hardware
inventory documents are loosely shaped in practice (nodes without
accelerators, DIMM slots without a populated FRU, capacities reported as
strings), so sub-documents that do not look like what we expect are
degraded to empty values instead of failing the whole node. Only a document
without any node entry is rejected.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def _object_items(value: Any) -> list[Any]:
    """Keep the object entries of a list, anything else becomes empty."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _object_or_none(value: Any) -> Any:
    return value if isinstance(value, dict) else None


class FRUInfo(BaseModel):
    """Field replaceable unit details for a processor, accelerator or DIMM.

    Capacity is in MiB and only meaningful for memory modules.
    """

    model_config = ConfigDict(populate_by_name=True)

    model: str | None = Field(None, alias="Model")
    capacity_mib: int = Field(0, alias="CapacityMiB")

    @field_validator("model", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @field_validator("capacity_mib", mode="before")
    @classmethod
    def _non_negative_capacity(cls, value: Any) -> int:
        if isinstance(value, bool):
            return 0
        try:
            return max(int(value), 0)
        except (TypeError, ValueError):
            return 0


_OptionalFRUInfo = Annotated[FRUInfo | None, BeforeValidator(_object_or_none)]


class PopulatedFRU(BaseModel):
    """The populated FRU of a hardware location."""

    model_config = ConfigDict(populate_by_name=True)

    processor: _OptionalFRUInfo = Field(None, alias="ProcessorFRUInfo")
    accelerator: _OptionalFRUInfo = Field(None, alias="NodeAccelFRUInfo")
    memory: _OptionalFRUInfo = Field(None, alias="MemoryFRUInfo")


class HardwareLocation(BaseModel):
    """A processor socket, accelerator slot or DIMM slot of a node."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field("", alias="ID")
    populated_fru: Annotated[
        PopulatedFRU | None,
        BeforeValidator(_object_or_none),
    ] = Field(None, alias="PopulatedFRU")


_LocationList = Annotated[list[HardwareLocation], BeforeValidator(_object_items)]


class NodeHardware(BaseModel):
    """Hardware inventory of a single node."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field("", alias="ID")
    processors: _LocationList = Field(
        default_factory=list,
        alias="Processors",
    )
    accelerators: _LocationList = Field(
        default_factory=list,
        alias="NodeAccels",
    )
    memory: _LocationList = Field(default_factory=list, alias="Memory")

    @property
    def processor_models(self) -> list[str]:
        """Model descriptions of the populated processors."""
        return [
            location.populated_fru.processor.model
            for location in self.processors
            if location.populated_fru
            and location.populated_fru.processor
            and location.populated_fru.processor.model
        ]

    @property
    def accelerator_models(self) -> list[str]:
        """Model descriptions of the populated accelerators."""
        return [
            location.populated_fru.accelerator.model
            for location in self.accelerators
            if location.populated_fru
            and location.populated_fru.accelerator
            and location.populated_fru.accelerator.model
        ]

    @property
    def memory_capacities_mib(self) -> list[int]:
        """Capacity in MiB of each populated memory module."""
        return [
            location.populated_fru.memory.capacity_mib
            for location in self.memory
            if location.populated_fru and location.populated_fru.memory
        ]


class RawHardwareInventory(BaseModel):
    """Hardware inventory query result for one xname.

    HSM answers ``/Inventory/Hardware/Query/{xname}`` with a document whose
    ``Nodes`` list holds the node the query was made for.
    """

    model_config = ConfigDict(populate_by_name=True)

    xname: str = Field("", alias="XName")
    nodes: list[NodeHardware] = Field(alias="Nodes", min_length=1)

    @property
    def node(self) -> NodeHardware:
        """The node the inventory was queried for."""
        return self.nodes[0]


class Group(BaseModel):
    """HSM group.

    The API nests members as ``{"members": {"ids": [...]}}``; both that shape
    and a flat list are accepted.
    """

    label: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    members: list[str] = Field(default_factory=list)

    @field_validator("members", mode="before")
    @classmethod
    def _flatten_members(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("ids") or []
        if value is None:
            return []
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_or_empty(cls, value: Any) -> Any:
        return [] if value is None else value
