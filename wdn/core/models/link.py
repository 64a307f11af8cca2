from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from wdn.core.models.catalog import LinkKind, DEVICE_KINDS
from wdn.core.geometry.polyline import Point, midpoint, polyline_length


@dataclass(frozen=True, slots=True)
class Link:
    """
    Canonical hydraulic link (pipe, pump or valve).

    Notes:
    - source_id/target_id reference Node.id
    - vertices: full polyline; first/last equal the endpoint node positions
    - length is the hydraulic length (may differ from the drawn one on import)
    - pumps/valves are presented as a point; anchor/display_line derive it
    """
    id: str
    kind: LinkKind

    source_id: str
    target_id: str

    vertices: Tuple[Point, ...] = ()

    length: Optional[float] = None      # [m]
    diameter: Optional[float] = None    # [mm]
    roughness: Optional[float] = None   # H-W C (or D-W eps, per project units)
    status: str = "Open"

    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def is_device(self) -> bool:
        return self.kind in DEVICE_KINDS

    @property
    def endpoints(self) -> Tuple[str, str]:
        return (self.source_id, self.target_id)

    @property
    def interior_vertices(self) -> Tuple[Point, ...]:
        return tuple(self.vertices[1:-1]) if len(self.vertices) > 2 else ()

    @property
    def geometric_length(self) -> float:
        if len(self.vertices) < 2:
            return 0.0
        return polyline_length(self.vertices)

    @property
    def anchor(self) -> Optional[Point]:
        """Point presentation of the link (midpoint along its polyline)."""
        if not self.vertices:
            return None
        return midpoint(self.vertices)

    @property
    def display_line(self) -> Tuple[Point, ...]:
        if len(self.vertices) < 2:
            return tuple(self.vertices)
        return (self.vertices[0], self.vertices[-1])

    @property
    def area(self) -> Optional[float]:
        if self.diameter is None:
            return None
        d_m = float(self.diameter) / 1000.0
        return math.pi * (d_m ** 2) / 4.0

    def other_end(self, node_id: str) -> str:
        return self.target_id if node_id == self.source_id else self.source_id

    def attr(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)
