from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from wdn.core.build.config import EditorConfig
from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.graph.factory import RecordFactory
from wdn.core.models.catalog import is_device_kind, is_node_kind
from wdn.core.models.link import Link
from wdn.core.geometry.polyline import (
    Point,
    PolylineHit,
    VERTEX_EPS,
    dedupe_consecutive,
    distance,
    locate_on_polyline,
    polyline_length,
    round_length,
    same_point,
    split_polyline,
)

logger = logging.getLogger(__name__)

# Record fields a split copies onto both remnants.
_INHERITED_LINK_FIELDS = ("diameter", "roughness", "status")
_FROZEN_FIELDS = ("id", "kind", "connected_link_ids")


@dataclass(frozen=True)
class EditResult:
    """
    What an applied edit did. Operations return None when nothing applied.
    """
    primary_id: str
    created: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    modified: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CascadeInfo:
    node_id: str
    link_ids: Tuple[str, ...]
    neighbour_ids: Tuple[str, ...]

    @property
    def link_count(self) -> int:
        return len(self.link_ids)


@dataclass(frozen=True)
class _Split:
    link: Link
    hit: PolylineHit


class TopologyEditor:
    """
    Interactive mutations over a FeatureGraph.

    Every precondition is checked before the first mutation, so an operation
    either applies completely (EditResult) or leaves the graph untouched
    (None, reason logged at DEBUG).
    """

    def __init__(self, graph: FeatureGraph, factory: RecordFactory, config: Optional[EditorConfig] = None) -> None:
        self.graph = graph
        self.factory = factory
        self.config = config or EditorConfig()

    # ------------------------------------------------------------
    # Hit testing
    # ------------------------------------------------------------

    def node_at(self, position: Point, tolerance: Optional[float] = None) -> Optional[str]:
        tol = self.config.hit_tolerance if tolerance is None else float(tolerance)
        nodes = self.graph.nodes()
        if not nodes:
            return None

        xy = np.array([(n.x, n.y) for n in nodes], dtype=float)
        d = np.hypot(xy[:, 0] - float(position[0]), xy[:, 1] - float(position[1]))
        i = int(np.argmin(d))
        return nodes[i].id if d[i] <= tol else None

    def link_at(
        self,
        position: Point,
        kinds: Sequence[str] = ("pipe",),
        tolerance: Optional[float] = None,
    ) -> Optional[Tuple[Link, PolylineHit]]:
        tol = self.config.hit_tolerance if tolerance is None else float(tolerance)
        best: Optional[Tuple[Link, PolylineHit]] = None
        for link in self.graph.links():
            if link.kind not in kinds:
                continue
            hit = locate_on_polyline(link.vertices, position)
            if hit is None or hit.distance > tol:
                continue
            if best is None or hit.distance < best[1].distance:
                best = (link, hit)
        return best

    # ------------------------------------------------------------
    # Placement / split
    # ------------------------------------------------------------

    def place_node(self, kind: str, position: Point, **attrs: Any) -> Optional[EditResult]:
        """
        Drop a feature at `position`. On a pipe, nodes split it and devices
        are inserted inline; elsewhere only node kinds create anything.
        """
        if not (is_node_kind(kind) or is_device_kind(kind)):
            logger.debug(f"place_node: unknown kind {kind!r}")
            return None

        existing = self.node_at(position)
        if existing is not None:
            logger.debug(f"place_node: {existing} already at {position}")
            return None

        on_link = self.link_at(position)
        if on_link is not None:
            link_id = on_link[0].id
            if is_node_kind(kind):
                return self.insert_node_on_link(link_id, position, kind, **attrs)
            return self.insert_device_on_link(link_id, position, kind, **attrs)

        if is_device_kind(kind):
            logger.debug(f"place_node: {kind} must be placed on a pipe")
            return None

        node = self.factory.create_node(kind, position, **attrs)
        self.graph.add_node(node)
        return EditResult(primary_id=node.id, created=(node.id,))

    def insert_node_on_link(self, link_id: str, point: Point, kind: str = "junction", **attrs: Any) -> Optional[EditResult]:
        if not is_node_kind(kind):
            logger.debug(f"insert_node_on_link: {kind!r} is not a node kind")
            return None
        split = self._split_target(link_id, point)
        if split is None:
            return None

        link, hit = split.link, split.hit
        first, second = split_polyline(link.vertices, hit.segment_index, hit.point)

        node = self.factory.create_node(kind, hit.point, **attrs)
        inherit = self._inherited(link)
        l1 = self.factory.create_link("pipe", self.graph.get_node(link.source_id), node, vertices=first, **inherit)
        l2 = self.factory.create_link("pipe", node, self.graph.get_node(link.target_id), vertices=second, **inherit)

        self.graph.remove_link(link.id)
        self.graph.add_node(node)
        self.graph.add_link(l1)
        self.graph.add_link(l2)

        logger.debug(f"Split {link.id} at {hit.point} -> {l1.id} + {node.id} + {l2.id}")
        return EditResult(
            primary_id=node.id,
            created=(node.id, l1.id, l2.id),
            removed=(link.id,),
            modified=_uniq((link.source_id, link.target_id)),
        )

    def insert_device_on_link(self, link_id: str, point: Point, kind: str = "pump", **attrs: Any) -> Optional[EditResult]:
        """
        Cut the pipe around the projected point and bridge the cut with a
        pump/valve between two stub junctions.

        The stub gap is device_gap, limited to device_gap_fraction of the
        containing segment, centred on the projection and kept inside the
        segment so neither remnant collapses to zero length.
        """
        if not is_device_kind(kind):
            logger.debug(f"insert_device_on_link: {kind!r} is not a device kind")
            return None
        split = self._split_target(link_id, point)
        if split is None:
            return None

        link, hit = split.link, split.hit
        i = hit.segment_index
        seg_len = hit.segment_length
        if seg_len <= VERTEX_EPS:
            logger.debug(f"insert_device_on_link: segment {i} of {link_id} is degenerate")
            return None

        gap = min(self.config.device_gap, self.config.device_gap_fraction * seg_len)
        a = link.vertices[i]
        b = link.vertices[i + 1]

        room = seg_len - gap
        margin = min(gap / 2.0, room / 2.0)
        s0 = distance(a, hit.point) - gap / 2.0
        s0 = min(max(s0, margin), room - margin)
        s1 = s0 + gap

        p0 = _lerp(a, b, s0 / seg_len)
        p1 = _lerp(a, b, s1 / seg_len)

        first = [tuple(v) for v in link.vertices[:i + 1]] + [p0]
        second = [p1] + [tuple(v) for v in link.vertices[i + 1:]]

        stub_a = self.factory.create_node("junction", p0)
        stub_b = self.factory.create_node("junction", p1)
        inherit = self._inherited(link)
        l1 = self.factory.create_link("pipe", self.graph.get_node(link.source_id), stub_a, vertices=first, **inherit)
        device = self.factory.create_link(kind, stub_a, stub_b, vertices=[p0, p1], **attrs)
        l2 = self.factory.create_link("pipe", stub_b, self.graph.get_node(link.target_id), vertices=second, **inherit)

        self.graph.remove_link(link.id)
        self.graph.add_node(stub_a)
        self.graph.add_node(stub_b)
        self.graph.add_link(l1)
        self.graph.add_link(device)
        self.graph.add_link(l2)

        logger.debug(f"Inserted {kind} {device.id} on {link.id} (gap={gap:.3f})")
        return EditResult(
            primary_id=device.id,
            created=(stub_a.id, stub_b.id, l1.id, device.id, l2.id),
            removed=(link.id,),
            modified=_uniq((link.source_id, link.target_id)),
        )

    # ------------------------------------------------------------
    # Delete / reverse
    # ------------------------------------------------------------

    def delete_node(self, node_id: str) -> Optional[EditResult]:
        """Cascade delete: the node and every link referencing it."""
        node = self.graph.find_node(node_id)
        if node is None:
            logger.debug(f"delete_node: unknown node {node_id!r}")
            return None

        actual = frozenset(l.id for l in self.graph.links_touching(node_id))
        if not node.connected_link_ids or node.connected_link_ids != actual:
            node = self.graph.refresh_adjacency(node_id)

        link_ids = tuple(sorted(node.connected_link_ids))
        neighbours: List[str] = []
        for lid in link_ids:
            link = self.graph.remove_link(lid)
            other = link.other_end(node_id)
            if other != node_id and self.graph.has_node(other):
                neighbours.append(other)

        self.graph.remove_node(node_id)
        logger.debug(f"Deleted {node_id} with {len(link_ids)} link(s)")
        return EditResult(primary_id=node_id, removed=link_ids + (node_id,), modified=_uniq(neighbours))

    def delete_link(self, link_id: str) -> Optional[EditResult]:
        if not self.graph.has_link(link_id):
            logger.debug(f"delete_link: unknown link {link_id!r}")
            return None
        link = self.graph.remove_link(link_id)
        ends = [n for n in link.endpoints if self.graph.has_node(n)]
        return EditResult(primary_id=link_id, removed=(link_id,), modified=_uniq(ends))

    def reverse_link(self, link_id: str) -> Optional[EditResult]:
        link = self.graph.find_link(link_id)
        if link is None or not self._endpoints_exist(link):
            logger.debug(f"reverse_link: {link_id!r} missing or dangling")
            return None

        self.graph.update_link(
            link_id,
            source_id=link.target_id,
            target_id=link.source_id,
            vertices=tuple(reversed(link.vertices)),
        )
        return EditResult(primary_id=link_id, modified=(link_id,))

    def cascade_info(self, node_id: str) -> Optional[CascadeInfo]:
        if not self.graph.has_node(node_id):
            return None
        links = self.graph.links_touching(node_id)
        neighbours = sorted({l.other_end(node_id) for l in links} - {node_id})
        return CascadeInfo(
            node_id=node_id,
            link_ids=tuple(sorted(l.id for l in links)),
            neighbour_ids=tuple(neighbours),
        )

    # ------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------

    def add_pipe(
        self,
        source_id: str,
        target_id: str,
        vertices: Optional[Iterable[Point]] = None,
        **attrs: Any,
    ) -> Optional[EditResult]:
        """Draw a pipe between two existing nodes; `vertices` are interior points."""
        if not self._can_connect(source_id, target_id):
            return None

        src = self.graph.get_node(source_id)
        dst = self.graph.get_node(target_id)
        path = dedupe_consecutive([src.position, *(vertices or ()), dst.position], tol=VERTEX_EPS)

        pipe = self.factory.create_link("pipe", src, dst, vertices=path, **attrs)
        self.graph.add_link(pipe)
        return EditResult(primary_id=pipe.id, created=(pipe.id,), modified=(source_id, target_id))

    def add_device(self, kind: str, source_id: str, target_id: str, **attrs: Any) -> Optional[EditResult]:
        if not is_device_kind(kind):
            logger.debug(f"add_device: {kind!r} is not a device kind")
            return None
        if not self._can_connect(source_id, target_id):
            return None

        device = self.factory.create_link(kind, source_id, target_id, **attrs)
        self.graph.add_link(device)
        return EditResult(primary_id=device.id, created=(device.id,), modified=(source_id, target_id))

    # ------------------------------------------------------------
    # Geometry edits
    # ------------------------------------------------------------

    def move_node(self, node_id: str, position: Point) -> Optional[EditResult]:
        if not self.graph.has_node(node_id):
            logger.debug(f"move_node: unknown node {node_id!r}")
            return None
        touched = tuple(sorted(l.id for l in self.graph.links_touching(node_id)))
        self.graph.move_node(node_id, position, length_decimals=self.config.length_decimals)
        return EditResult(primary_id=node_id, modified=(node_id,) + touched)

    def move_device(self, link_id: str, dx: float, dy: float) -> Optional[EditResult]:
        """Translate a pump/valve with both stub nodes; attached pipe ends follow."""
        link = self.graph.find_link(link_id)
        if link is None or not link.is_device or not self._endpoints_exist(link):
            logger.debug(f"move_device: {link_id!r} is not a movable device")
            return None

        modified: List[str] = []
        for nid in _uniq(link.endpoints):
            node = self.graph.get_node(nid)
            touched = [l.id for l in self.graph.links_touching(nid)]
            self.graph.move_node(
                nid,
                (node.x + float(dx), node.y + float(dy)),
                length_decimals=self.config.length_decimals,
            )
            modified.append(nid)
            modified.extend(touched)

        return EditResult(primary_id=link_id, modified=_uniq(modified))

    def add_vertex(self, link_id: str, point: Point) -> Optional[EditResult]:
        """Insert the projection of `point` as a new interior vertex of a pipe."""
        link = self.graph.find_link(link_id)
        if link is None or link.kind != "pipe":
            logger.debug(f"add_vertex: {link_id!r} is not a pipe")
            return None

        hit = locate_on_polyline(link.vertices, point)
        if hit is None or hit.distance > self.config.hit_tolerance:
            logger.debug(f"add_vertex: {point} is not on {link_id}")
            return None
        if any(same_point(hit.point, v) for v in link.vertices):
            logger.debug(f"add_vertex: {link_id} already has a vertex at {hit.point}")
            return None

        verts = list(link.vertices)
        verts.insert(hit.segment_index + 1, hit.point)
        self._set_vertices(link, verts)
        return EditResult(primary_id=link_id, modified=(link_id,))

    def remove_vertex(self, link_id: str, index: int) -> Optional[EditResult]:
        link = self.graph.find_link(link_id)
        if link is None or link.kind != "pipe":
            logger.debug(f"remove_vertex: {link_id!r} is not a pipe")
            return None
        if len(link.vertices) <= 2 or not (0 < int(index) < len(link.vertices) - 1):
            logger.debug(f"remove_vertex: index {index} is not an interior vertex of {link_id}")
            return None

        verts = list(link.vertices)
        del verts[int(index)]
        self._set_vertices(link, verts)
        return EditResult(primary_id=link_id, modified=(link_id,))

    def update_attributes(self, feature_id: str, **changes: Any) -> Optional[EditResult]:
        frozen = [k for k in changes if k in _FROZEN_FIELDS]
        if frozen:
            logger.debug(f"update_attributes: fields {frozen} cannot be edited")
            return None

        if self.graph.has_node(feature_id):
            touched = ()
            if "x" in changes or "y" in changes:
                touched = tuple(sorted(l.id for l in self.graph.links_touching(feature_id)))
            self.graph.update_node(feature_id, length_decimals=self.config.length_decimals, **changes)
            return EditResult(primary_id=feature_id, modified=(feature_id,) + touched)

        if self.graph.has_link(feature_id):
            for f in ("source_id", "target_id"):
                if f in changes and not self.graph.has_node(changes[f]):
                    logger.debug(f"update_attributes: unknown node {changes[f]!r} for {f}")
                    return None
            self.graph.update_link(feature_id, length_decimals=self.config.length_decimals, **changes)
            return EditResult(primary_id=feature_id, modified=(feature_id,))

        logger.debug(f"update_attributes: unknown feature {feature_id!r}")
        return None

    # ------------------------------------------------------------
    # internals
    # ------------------------------------------------------------

    def _split_target(self, link_id: str, point: Point) -> Optional[_Split]:
        link = self.graph.find_link(link_id)
        if link is None:
            logger.debug(f"split: unknown link {link_id!r}")
            return None
        if link.kind != "pipe":
            logger.debug(f"split: {link_id} is a {link.kind}, only pipes can be split")
            return None
        if not self._endpoints_exist(link):
            logger.debug(f"split: {link_id} has a dangling endpoint")
            return None

        hit = locate_on_polyline(link.vertices, point)
        if hit is None:
            logger.debug(f"split: {link_id} has no usable geometry")
            return None
        if same_point(hit.point, link.vertices[0]) or same_point(hit.point, link.vertices[-1]):
            logger.debug(f"split: projection of {point} falls on an endpoint of {link_id}")
            return None
        return _Split(link=link, hit=hit)

    def _inherited(self, link: Link) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(link.attributes)
        for f in _INHERITED_LINK_FIELDS:
            out[f] = getattr(link, f)
        return out

    def _endpoints_exist(self, link: Link) -> bool:
        return self.graph.has_node(link.source_id) and self.graph.has_node(link.target_id)

    def _can_connect(self, source_id: str, target_id: str) -> bool:
        if source_id == target_id:
            logger.debug(f"connect: {source_id} to itself")
            return False
        for nid in (source_id, target_id):
            if not self.graph.has_node(nid):
                logger.debug(f"connect: unknown node {nid!r}")
                return False
        return True

    def _set_vertices(self, link: Link, verts: List[Point]) -> None:
        length = round_length(polyline_length(verts), self.config.length_decimals)
        self.graph.update_link(link.id, vertices=verts, length=length)


def _lerp(a: Point, b: Point, w: float) -> Point:
    return (float(a[0]) + w * (float(b[0]) - float(a[0])), float(a[1]) + w * (float(b[1]) - float(a[1])))


def _uniq(ids: Iterable[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for i in ids:
        seen.setdefault(i, None)
    return tuple(seen)
