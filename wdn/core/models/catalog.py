from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Tuple

NodeKind = Literal["junction", "tank", "reservoir"]
LinkKind = Literal["pipe", "pump", "valve"]
FeatureKind = Literal["junction", "tank", "reservoir", "pipe", "pump", "valve"]

NODE_KINDS: Tuple[str, ...] = ("junction", "tank", "reservoir")
LINK_KINDS: Tuple[str, ...] = ("pipe", "pump", "valve")
DEVICE_KINDS: Tuple[str, ...] = ("pump", "valve")
SOURCE_KINDS: Tuple[str, ...] = ("tank", "reservoir")


@dataclass(frozen=True)
class ComponentType:
    """
    Static description of a feature kind.

    Notes:
    - prefix is used by IdGenerator ("J" -> "J-1")
    - defaults mixes record fields (elevation, diameter, ...) and
      kind-specific attributes; RecordFactory sorts them out
    """
    name: str
    prefix: str
    description: str
    defaults: Dict[str, Any] = field(default_factory=dict)


COMPONENT_TYPES: Dict[str, ComponentType] = {
    "junction": ComponentType(
        name="Junction",
        prefix="J",
        description="Network connection point",
        defaults={"elevation": 100.0, "base_demand": 0.0},
    ),
    "tank": ComponentType(
        name="Tank",
        prefix="T",
        description="Water storage facility",
        defaults={
            "elevation": 120.0,
            "init_level": 5.0,
            "min_level": 0.0,
            "max_level": 20.0,
            "diameter": 30.0,
            "min_volume": 0.0,
        },
    ),
    "reservoir": ComponentType(
        name="Reservoir",
        prefix="R",
        description="Infinite water source",
        defaults={"head": 100.0},
    ),
    "pipe": ComponentType(
        name="Pipe",
        prefix="P",
        description="Water transmission line",
        defaults={
            "diameter": 100.0,
            "roughness": 130.0,
            "minor_loss": 0.0,
            "material": "PVC",
            "status": "Open",
        },
    ),
    "pump": ComponentType(
        name="Pump",
        prefix="PU",
        description="Water pumping facility",
        defaults={"power": 50.0, "status": "Open"},
    ),
    "valve": ComponentType(
        name="Valve",
        prefix="V",
        description="Flow control device",
        defaults={
            "diameter": 100.0,
            "valve_type": "PRV",
            "setting": 40.0,
            "minor_loss": 0.0,
            "status": "Active",
        },
    ),
}

# Attributes the solver cannot run without (0 is a valid value, None/"" are not).
REQUIRED_PROPERTIES: Dict[str, Tuple[str, ...]] = {
    "junction": ("elevation",),
    "tank": ("elevation", "diameter"),
    "reservoir": ("head",),
    "pipe": ("diameter", "roughness"),
    "pump": (),
    "valve": ("diameter", "setting"),
}


def is_node_kind(kind: Any) -> bool:
    return kind in NODE_KINDS


def is_link_kind(kind: Any) -> bool:
    return kind in LINK_KINDS


def is_device_kind(kind: Any) -> bool:
    return kind in DEVICE_KINDS


def prefix_for(kind: str) -> str:
    ct = COMPONENT_TYPES.get(kind)
    return ct.prefix if ct is not None else kind.upper()
