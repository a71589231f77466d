"""Component normalizer.

Turns the hardware inventory document of one node into a flat mapping of
component type to integer count, which is the unit every other part of the
engine reasons about.

Processor and accelerator model strings are folded into the operator's
patterns when they contain one, so "AMD EPYC 7742 64-Core Processor" is
counted as "epyc" when the operator asked for epyc. Descriptions matching no
pattern are kept under their own normalized text, so unexpected hardware is
visible instead of silently dropped. Memory capacity is quantized into
fixed-size units so it can be summed and compared like any other component.
"""

from collections.abc import Iterable

import structlog

from .hsmapi.types import RawHardwareInventory

logger = structlog.get_logger(__name__)

MEMORY_COMPONENT = "memory"

# 16 GiB per unit
DEFAULT_MEMORY_UNIT_MIB = 16384


def normalize_component_type(text: str) -> str:
    """Normalize a component type or description for storage and comparison.

    Lower-cases the text and removes every whitespace character, so
    "EPYC 7742" and "epyc7742" name the same component type.

    Examples:
        "  AMD EPYC  7742 " -> "amdepyc7742"
        "A100" -> "a100"
    """
    return "".join(text.lower().split())


def normalize_patterns(patterns: Iterable[str]) -> list[str]:
    """Normalize operator patterns, dropping empty and duplicate entries.

    Order is preserved since the first matching pattern wins.
    """
    normalized: list[str] = []
    for pattern in patterns:
        value = normalize_component_type(pattern)
        if value and value not in normalized:
            normalized.append(value)
    return normalized


def classify_component(description: str, patterns: list[str]) -> str:
    """Return the component type a model description is counted under.

    Args:
        description: Free text model description from the inventory.
        patterns: Normalized operator patterns.

    Returns:
        The first pattern contained in the normalized description, or the
        normalized description itself.
    """
    normalized = normalize_component_type(description)
    for pattern in patterns:
        if pattern in normalized:
            return pattern
    return normalized


def quantize_memory(capacities_mib: Iterable[int], memory_unit_mib: int) -> int:
    """Convert memory module capacities into a number of memory units.

    Capacities are summed per node before the floor division, so two 8 GiB
    DIMMs make one 16 GiB unit.
    """
    if memory_unit_mib < 1:
        msg = "memory_unit_mib must be positive"
        raise ValueError(msg)
    return sum(capacities_mib) // memory_unit_mib


def normalize_node(
    document: RawHardwareInventory,
    patterns: Iterable[str],
    memory_unit_mib: int = DEFAULT_MEMORY_UNIT_MIB,
) -> dict[str, int]:
    """Count the components of one node.

    Args:
        document: Validated hardware inventory document of the node.
        patterns: Component patterns the operator cares about.
        memory_unit_mib: Size of one memory unit in MiB. Must be the same
            for every node of an allocation run.

    Returns:
        Mapping of component type to count. Zero counts are omitted.

    Raises:
        ValueError: If memory_unit_mib is not positive.
    """
    node = document.node
    normalized_patterns = normalize_patterns(patterns)

    components: dict[str, int] = {}
    for description in node.processor_models + node.accelerator_models:
        component = classify_component(description, normalized_patterns)
        if not component:
            continue
        components[component] = components.get(component, 0) + 1

    memory_units = quantize_memory(node.memory_capacities_mib, memory_unit_mib)
    if memory_units > 0:
        components[MEMORY_COMPONENT] = memory_units

    logger.debug(
        "Normalized node hardware",
        node=node.id or document.xname,
        components=components,
    )
    return components
