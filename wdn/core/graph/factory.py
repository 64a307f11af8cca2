from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple, Union

from wdn.core.models.catalog import COMPONENT_TYPES, is_link_kind, is_node_kind
from wdn.core.models.node import Node
from wdn.core.models.link import Link
from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.graph.ids import IdGenerator
from wdn.core.geometry.polyline import Point, polyline_length, round_length

_NODE_FIELDS = ("elevation", "base_demand")
_LINK_FIELDS = ("length", "diameter", "roughness", "status")

# Incoming keys that map onto record fields.
_ALIASES = {"demand": "base_demand", "baseDemand": "base_demand"}


def _split(kind: str, attrs: Dict[str, Any], fields: Tuple[str, ...]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    merged = dict(COMPONENT_TYPES[kind].defaults)
    for k, v in attrs.items():
        merged[_ALIASES.get(k, k)] = v

    record = {k: merged.pop(k) for k in fields if k in merged}
    return record, merged


class RecordFactory:
    """
    Builds normalized node/link records with kind defaults and fresh ids.
    It does not insert them; callers hand records to the graph.
    """

    def __init__(self, graph: FeatureGraph, ids: Optional[IdGenerator] = None, *, length_decimals: int = 2) -> None:
        self.graph = graph
        self.ids = ids if ids is not None else IdGenerator()
        self.ids.bind(graph.has_feature)
        self.length_decimals = int(length_decimals)

    def seed_from_graph(self) -> None:
        by_kind: Dict[str, list] = {}
        for n in self.graph.nodes():
            by_kind.setdefault(n.kind, []).append(n.id)
        for l in self.graph.links():
            by_kind.setdefault(l.kind, []).append(l.id)
        self.ids.seed_from(by_kind)

    def create_node(self, kind: str, position: Point, id: Optional[str] = None, **attrs: Any) -> Node:
        if not is_node_kind(kind):
            raise ValueError(f"Not a node kind: {kind!r}")

        record, extra = _split(kind, attrs, _NODE_FIELDS)
        elevation = record.get("elevation")

        return Node(
            id=id or self.ids.next_id(kind),
            kind=kind,
            x=float(position[0]),
            y=float(position[1]),
            elevation=float(elevation) if elevation is not None else None,
            base_demand=float(record.get("base_demand", 0.0) or 0.0),
            attributes=extra,
        )

    def create_link(
        self,
        kind: str,
        source: Union[Node, str],
        target: Union[Node, str],
        vertices: Optional[Sequence[Point]] = None,
        id: Optional[str] = None,
        **attrs: Any,
    ) -> Link:
        """
        vertices is the full polyline; its ends are pinned to the node positions.
        Length defaults to the rounded polyline length.
        """
        if not is_link_kind(kind):
            raise ValueError(f"Not a link kind: {kind!r}")

        src = source if isinstance(source, Node) else self.graph.get_node(source)
        dst = target if isinstance(target, Node) else self.graph.get_node(target)

        verts = [tuple(map(float, v[:2])) for v in (vertices or ())]
        if len(verts) < 2:
            verts = [src.position, dst.position]
        else:
            verts[0] = src.position
            verts[-1] = dst.position

        record, extra = _split(kind, attrs, _LINK_FIELDS)

        length = record.get("length")
        if length is None:
            length = round_length(polyline_length(verts), self.length_decimals)

        diameter = record.get("diameter")
        roughness = record.get("roughness")

        return Link(
            id=id or self.ids.next_id(kind),
            kind=kind,
            source_id=src.id,
            target_id=dst.id,
            vertices=tuple(verts),
            length=float(length),
            diameter=float(diameter) if diameter is not None else None,
            roughness=float(roughness) if roughness is not None else None,
            status=str(record.get("status", "Open")),
            attributes=extra,
        )
