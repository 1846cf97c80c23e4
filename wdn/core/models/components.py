from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


@dataclass(frozen=True, slots=True)
class ComponentSpec:
    """Catalogue entry for one feature type."""
    name: str
    prefix: str
    description: str
    default_properties: Dict[str, Any] = field(default_factory=dict)
    required_properties: Tuple[str, ...] = ()


# ============================================================
# Network component catalogue
# ============================================================
# Id prefix, default property bag and the properties a feature
# of each type must carry to be simulation-ready.
# ============================================================

COMPONENT_TYPES: Dict[str, ComponentSpec] = {

    # ----------------
    # Nodes
    # ----------------
    "junction": ComponentSpec(
        name="Junction",
        prefix="J",
        description="Network connection point",
        default_properties={"elevation": 100.0, "demand": 0.0, "status": "active"},
        required_properties=("elevation",),
    ),
    "tank": ComponentSpec(
        name="Storage Tank",
        prefix="T",
        description="Water storage facility",
        default_properties={
            "capacity": 500000.0,
            "elevation": 120.0,
            "diameter": 30.0,
            "current_level": 400000.0,
            "status": "active",
        },
        required_properties=("elevation", "capacity", "diameter"),
    ),
    "reservoir": ComponentSpec(
        name="Reservoir",
        prefix="R",
        description="Infinite water source",
        default_properties={"head": 100.0, "elevation": 150.0, "status": "active"},
        required_properties=("head",),
    ),

    # ----------------
    # Links
    # ----------------
    "pipe": ComponentSpec(
        name="Pipe",
        prefix="P",
        description="Water conveyance",
        default_properties={"diameter": 100.0, "material": "PVC", "roughness": 130.0, "status": "open"},
        required_properties=("diameter", "length", "roughness"),
    ),
    "pump": ComponentSpec(
        name="Pump Station",
        prefix="PU",
        description="Water pumping facility",
        default_properties={"capacity": 1000.0, "head_gain": 50.0, "efficiency": 80.0, "status": "open"},
        required_properties=("capacity", "head_gain"),
    ),
    "valve": ComponentSpec(
        name="Valve",
        prefix="V",
        description="Flow control device",
        default_properties={"diameter": 8.0, "status": "open", "valve_type": "PRV", "setting": 40.0},
        required_properties=("diameter", "status"),
    ),
}

# Prefixes for transient pseudo-features (never part of the logical graph)
TRANSIENT_PREFIXES: Dict[str, str] = {
    "preview": "PREVIEW",
    "vertex_marker": "VM",
    "visual_link": "VL",
}


def default_properties(feature_type: str) -> Dict[str, Any]:
    """Fresh copy of the default property bag for a feature type."""
    spec = COMPONENT_TYPES.get(feature_type)
    if spec is None:
        raise ValueError(f"Unknown feature type: {feature_type!r}. Allowed: {sorted(COMPONENT_TYPES)}")
    return dict(spec.default_properties)


def id_prefix(key: str) -> str:
    if key in COMPONENT_TYPES:
        return COMPONENT_TYPES[key].prefix
    if key in TRANSIENT_PREFIXES:
        return TRANSIENT_PREFIXES[key]
    return key.upper()
