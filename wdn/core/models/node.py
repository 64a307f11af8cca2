from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, Tuple

from wdn.core.models.catalog import NodeKind, SOURCE_KINDS


@dataclass(frozen=True, slots=True)
class Node:
    """
    Canonical hydraulic node (junction, tank or reservoir).

    Notes:
    - id: type-prefixed, unique across nodes AND links
    - x/y: position in the working projection
    - connected_link_ids: adjacency set, written only by FeatureGraph
    - attributes: read-only mapping of kind-specific values (tank levels, reservoir head, pattern)
    """
    id: str
    kind: NodeKind
    x: float
    y: float

    elevation: Optional[float] = None  # [m]
    base_demand: float = 0.0

    attributes: Mapping[str, Any] = field(default_factory=dict)
    connected_link_ids: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        # read-only view over a private copy; edits go through FeatureGraph
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)

    @property
    def is_source(self) -> bool:
        return self.kind in SOURCE_KINDS

    def attr(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)
