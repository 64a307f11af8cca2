from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.models.catalog import is_link_kind, is_node_kind
from wdn.core.models.link import Link
from wdn.core.models.node import Node

logger = logging.getLogger(__name__)

_NODE_KEYS = ("id", "kind", "geometry", "elevation", "base_demand", "connected_link_ids")
_LINK_KEYS = (
    "id", "kind", "geometry", "vertices", "source_id", "target_id",
    "length", "diameter", "roughness", "status",
)


@dataclass(frozen=True)
class SaveDelta:
    records: Tuple[Dict[str, Any], ...]     # full records for added/modified features
    deleted_ids: Tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        return not self.records and not self.deleted_ids


# ============================================================
# Graph -> flat records
# ============================================================

def node_record(node: Node) -> Dict[str, Any]:
    rec: Dict[str, Any] = {
        "id": node.id,
        "kind": node.kind,
        "geometry": {"type": "Point", "coordinates": [node.x, node.y]},
        "elevation": node.elevation,
        "base_demand": node.base_demand,
    }
    rec.update(node.attributes)
    return rec


def link_record(link: Link) -> Dict[str, Any]:
    """Devices are stored as their anchor point; the polyline travels in 'vertices'."""
    coords = [[x, y] for x, y in link.vertices]
    if link.is_device and link.anchor is not None:
        geometry = {"type": "Point", "coordinates": list(link.anchor)}
    else:
        geometry = {"type": "LineString", "coordinates": coords}

    rec: Dict[str, Any] = {
        "id": link.id,
        "kind": link.kind,
        "geometry": geometry,
        "vertices": coords,
        "source_id": link.source_id,
        "target_id": link.target_id,
        "length": link.length,
        "diameter": link.diameter,
        "roughness": link.roughness,
        "status": link.status,
    }
    rec.update(link.attributes)
    return rec


def graph_to_records(graph: FeatureGraph) -> List[Dict[str, Any]]:
    return [node_record(n) for n in graph.nodes()] + [link_record(l) for l in graph.links()]


# ============================================================
# Flat records -> graph
# ============================================================

def _opt_float(v: Any) -> Optional[float]:
    if v is None or (isinstance(v, str) and v.strip() == ""):
        return None
    return float(v)


def _node_from_record(rec: Mapping[str, Any]) -> Node:
    geom = rec.get("geometry") or {}
    coords = geom.get("coordinates")
    if geom.get("type") != "Point" or not coords or len(coords) < 2:
        raise ValueError(f"Node record {rec.get('id')!r} needs a Point geometry")

    return Node(
        id=str(rec["id"]),
        kind=rec["kind"],
        x=float(coords[0]),
        y=float(coords[1]),
        elevation=_opt_float(rec.get("elevation")),
        base_demand=float(rec.get("base_demand") or 0.0),
        attributes={k: v for k, v in rec.items() if k not in _NODE_KEYS},
    )


def _link_from_record(rec: Mapping[str, Any], positions: Dict[str, Tuple[float, float]]) -> Link:
    verts = rec.get("vertices")
    if not verts:
        geom = rec.get("geometry") or {}
        if geom.get("type") == "LineString":
            verts = geom.get("coordinates")
    if not verts:
        ends = [positions.get(rec.get("source_id")), positions.get(rec.get("target_id"))]
        verts = [p for p in ends if p is not None]

    return Link(
        id=str(rec["id"]),
        kind=rec["kind"],
        source_id=str(rec.get("source_id")),
        target_id=str(rec.get("target_id")),
        vertices=tuple((float(v[0]), float(v[1])) for v in verts),
        length=_opt_float(rec.get("length")),
        diameter=_opt_float(rec.get("diameter")),
        roughness=_opt_float(rec.get("roughness")),
        status=str(rec.get("status") or "Open"),
        attributes={k: v for k, v in rec.items() if k not in _LINK_KEYS},
    )


def graph_from_records(records: Iterable[Mapping[str, Any]]) -> FeatureGraph:
    """
    Full load from the persistence collaborator. Dangling links and id
    collisions are kept for the validator to report.
    """
    node_recs: List[Mapping[str, Any]] = []
    link_recs: List[Mapping[str, Any]] = []
    for rec in records:
        kind = rec.get("kind")
        if is_node_kind(kind):
            node_recs.append(rec)
        elif is_link_kind(kind):
            link_recs.append(rec)
        else:
            raise ValueError(f"Record {rec.get('id')!r} has unknown kind {kind!r}")

    nodes = [_node_from_record(r) for r in node_recs]
    positions = {n.id: n.position for n in nodes}
    links = [_link_from_record(r, positions) for r in link_recs]

    graph = FeatureGraph()
    graph.load(nodes, links)
    logger.info(f"Loaded {len(nodes)} nodes and {len(links)} links from records")
    return graph


def save_delta(graph: FeatureGraph, *, mark_saved: bool = False) -> SaveDelta:
    """Records for every modified feature plus the ids deleted since the last save."""
    changes = graph.pending_changes()

    records: List[Dict[str, Any]] = []
    for fid in sorted(changes.modified):
        if graph.has_node(fid):
            records.append(node_record(graph.get_node(fid)))
        elif graph.has_link(fid):
            records.append(link_record(graph.get_link(fid)))

    delta = SaveDelta(records=tuple(records), deleted_ids=tuple(sorted(changes.deleted)))
    if mark_saved:
        graph.mark_saved()
    return delta
