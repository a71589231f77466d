"""Tests for component normalization of hardware inventory documents."""

import pytest

from hsm_hw_allocator import normalizer
from hsm_hw_allocator.hsmapi.types import RawHardwareInventory

EPYC = "AMD EPYC 7742 64-Core Processor"
XEON = "Intel(R) Xeon(R) Platinum 8380"
A100 = "NVIDIA A100-SXM4-40GB"


def _normalize(raw: dict, patterns=("epyc", "a100"), unit: int = 16384) -> dict[str, int]:
    return normalizer.normalize_node(
        RawHardwareInventory.model_validate(raw),
        patterns,
        unit,
    )


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("A100", "a100"),
        ("  AMD EPYC  7742 ", "amdepyc7742"),
        ("epyc\t7742", "epyc7742"),
        ("", ""),
    ],
)
def test_normalize_component_type(text, expected):
    """Case and whitespace differences disappear."""
    assert normalizer.normalize_component_type(text) == expected


def test_normalize_patterns_drops_empty_and_duplicates_keeping_order():
    """First occurrence of each pattern wins and blanks are dropped."""
    assert normalizer.normalize_patterns(["EPYC", " ", "a100", "epyc"]) == [
        "epyc",
        "a100",
    ]


def test_classify_component_uses_first_matching_pattern():
    """Patterns are tried in caller order."""
    assert normalizer.classify_component(EPYC, ["amd", "epyc"]) == "amd"
    assert normalizer.classify_component(EPYC, ["epyc", "amd"]) == "epyc"


def test_classify_component_keeps_unmatched_description():
    """Unknown hardware is counted under its own normalized description."""
    assert normalizer.classify_component(XEON, ["epyc"]) == "intel(r)xeon(r)platinum8380"


@pytest.mark.parametrize("pattern", ["epyc7742", "EPYC 7742", "epyc  77 42"])
def test_classify_component_ignores_whitespace(pattern):
    """Spacing in either the pattern or the model string does not matter."""
    patterns = normalizer.normalize_patterns([pattern])

    assert normalizer.classify_component("AMD EPYC 7742", patterns) == "epyc7742"


def test_normalize_patterns_dedupes_spacing_variants():
    assert normalizer.normalize_patterns(["A 100", "a100"]) == ["a100"]


# ---------------------------------------------------------------------------
# Node normalization
# ---------------------------------------------------------------------------


def test_normalize_node_counts_processors_accelerators_and_memory(document):
    """A GPU node yields processor, accelerator and memory counts."""
    raw = document(
        "x1",
        processors=[EPYC],
        accelerators=[A100] * 4,
        dimms_mib=[16384] * 16,
    )

    assert _normalize(raw) == {"epyc": 1, "a100": 4, "memory": 16}


def test_normalize_node_sums_memory_before_quantizing(document):
    """Two half-unit modules make one unit; remainders are floored."""
    raw = document("x1", dimms_mib=[8192, 8192, 8192])

    assert _normalize(raw) == {"memory": 1}


def test_normalize_node_omits_zero_memory(document):
    """Memory below one unit is not reported."""
    raw = document("x1", processors=[EPYC], dimms_mib=[4096])

    assert _normalize(raw) == {"epyc": 1}


def test_normalize_node_honours_memory_unit(document):
    """The memory unit is an explicit argument."""
    raw = document("x1", dimms_mib=[16384] * 4)

    assert _normalize(raw, unit=32768) == {"memory": 2}


def test_normalize_node_rejects_non_positive_unit(document):
    """A zero memory unit is an error, not a division by zero."""
    with pytest.raises(ValueError, match="memory_unit_mib"):
        _normalize(document("x1"), unit=0)


def test_normalize_node_is_case_insensitive_on_patterns(document):
    """Patterns given in upper case still match."""
    raw = document("x1", processors=[EPYC, EPYC])

    assert _normalize(raw, patterns=["EPYC"]) == {"epyc": 2}


def test_normalize_node_matches_spaced_model_pattern(document):
    """A pattern naming the full model matches regardless of its spacing."""
    raw = document("x1", processors=[EPYC, EPYC])

    assert _normalize(raw, patterns=["EPYC 7742"]) == {"epyc7742": 2}


def test_normalize_node_empty_node(document):
    """A node without any hardware normalizes to nothing."""
    assert _normalize(document("x1")) == {}


# ---------------------------------------------------------------------------
# Malformed documents
# ---------------------------------------------------------------------------


def test_malformed_sub_documents_degrade_to_empty():
    """Non list categories, non object entries and missing FRUs are skipped."""
    raw = {
        "XName": "x1",
        "Nodes": [
            {
                "ID": "x1",
                "Processors": "not-a-list",
                "NodeAccels": [
                    "garbage",
                    {"ID": "x1a0"},
                    {"PopulatedFRU": {"NodeAccelFRUInfo": {"Model": A100}}},
                    {"PopulatedFRU": {"NodeAccelFRUInfo": {"Model": 42}}},
                ],
                "Memory": [
                    {"PopulatedFRU": {"MemoryFRUInfo": {"CapacityMiB": "lots"}}},
                    {"PopulatedFRU": {"MemoryFRUInfo": {"CapacityMiB": "16384"}}},
                    {"PopulatedFRU": None},
                ],
            },
        ],
    }

    assert _normalize(raw) == {"a100": 1, "memory": 1}


def test_missing_categories_are_empty():
    """A node entry with no hardware categories at all is valid."""
    assert _normalize({"Nodes": [{"ID": "x1"}]}) == {}


@pytest.mark.parametrize("raw", [{}, {"Nodes": []}, {"Nodes": "x1"}])
def test_document_without_node_is_rejected(raw):
    """Only a document without a node entry fails validation."""
    with pytest.raises(ValueError):
        RawHardwareInventory.model_validate(raw)


# ---------------------------------------------------------------------------
# Memory quantization
# ---------------------------------------------------------------------------


def test_quantize_memory():
    """Capacities are summed then floor divided."""
    assert normalizer.quantize_memory([16384, 16384, 100], 16384) == 2
    assert normalizer.quantize_memory([], 16384) == 0
