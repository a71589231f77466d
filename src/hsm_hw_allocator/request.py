"""Hardware requests and the operator pattern syntax.

Operators describe what a group should get with a pattern such as
``tasna:a100:4:epyc:10``: a group name followed by component/count pairs.
"""

import enum
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

from .normalizer import normalize_component_type

PATTERN_EXAMPLE = "<group>:<component>:<count>[:<component>:<count>...] e.g. tasna:a100:4:epyc:10"


class PatternError(ValueError):
    """Raised when an operator pattern cannot be parsed."""


class RequestKind(enum.Enum):
    """How the counts of a hardware request are interpreted."""

    # signed change to apply to the current counts of the target group
    DELTA = "delta"
    # desired final counts of the target group
    ABSOLUTE = "absolute"


@dataclass(frozen=True)
class HardwareRequest:
    """Ordered component counts requested by the operator.

    Component types are normalized on construction. The declared order is
    kept since the resolver processes components in that order.
    """

    components: Mapping[str, int] = field(default_factory=dict)
    kind: RequestKind = RequestKind.DELTA

    def __post_init__(self):
        normalized: dict[str, int] = {}
        for component, count in self.components.items():
            name = normalize_component_type(component)
            if not name:
                msg = "Component type cannot be empty"
                raise ValueError(msg)
            if name in normalized:
                msg = f"Component '{name}' requested more than once"
                raise ValueError(msg)
            if self.kind is RequestKind.ABSOLUTE and count < 0:
                msg = f"Absolute count for '{name}' cannot be negative"
                raise ValueError(msg)
            normalized[name] = int(count)
        object.__setattr__(self, "components", normalized)

    @classmethod
    def delta(cls, components: Mapping[str, int]) -> "HardwareRequest":
        """Build a signed delta request."""
        return cls(components=components, kind=RequestKind.DELTA)

    @classmethod
    def absolute(cls, components: Mapping[str, int]) -> "HardwareRequest":
        """Build a request of desired final counts."""
        return cls(components=components, kind=RequestKind.ABSOLUTE)

    @property
    def component_types(self) -> list[str]:
        """Requested component types in declared order."""
        return list(self.components)

    def items(self) -> Iterator[tuple[str, int]]:
        """Iterate (component, count) pairs in declared order."""
        return iter(self.components.items())


def parse_pattern(
    pattern: str,
    kind: RequestKind = RequestKind.DELTA,
) -> tuple[str, HardwareRequest]:
    """Parse an operator pattern into a group name and a request.

    The pattern is lower-cased before parsing.

    Examples:
        "tasna:a100:4:epyc:10" -> ("tasna", {"a100": 4, "epyc": 10})
        "tasna:epyc:-2" (delta) -> ("tasna", {"epyc": -2})

    Args:
        pattern: ``<group>:<component>:<count>...`` string.
        kind: Whether counts are deltas or desired final counts.

    Returns:
        Tuple of (group name, hardware request).

    Raises:
        PatternError: If the pattern is malformed.
    """
    elements = [element.strip() for element in pattern.lower().split(":")]
    group, pairs = elements[0], elements[1:]

    if not group:
        msg = f"Missing group name in pattern '{pattern}', expected {PATTERN_EXAMPLE}"
        raise PatternError(msg)
    if not pairs or len(pairs) % 2 != 0:
        msg = f"Pattern '{pattern}' must list component/count pairs, expected {PATTERN_EXAMPLE}"
        raise PatternError(msg)

    components: dict[str, int] = {}
    for component, raw_count in zip(pairs[::2], pairs[1::2], strict=True):
        try:
            count = int(raw_count)
        except ValueError:
            msg = f"Count '{raw_count}' for component '{component}' is not an integer"
            raise PatternError(msg) from None
        if component in components:
            msg = f"Component '{component}' appears more than once in '{pattern}'"
            raise PatternError(msg)
        components[component] = count

    try:
        request = HardwareRequest(components=components, kind=kind)
    except ValueError as exc:
        raise PatternError(str(exc)) from exc

    return group, request
