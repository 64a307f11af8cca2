from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from wdn.core.models.node import Node
from wdn.core.models.link import Link
from wdn.core.geometry.polyline import Point, round_length, polyline_length

logger = logging.getLogger(__name__)

# Fields that change topology; update_link re-wires adjacency when they change.
_TOPOLOGY_FIELDS = ("source_id", "target_id")
_IMMUTABLE_FIELDS = ("id", "kind", "connected_link_ids")


class DuplicateIdError(ValueError):
    """Raised when an id is already used by a node or a link."""


class MissingNodeError(KeyError):
    """Raised when a link endpoint does not resolve to a node."""


@dataclass(frozen=True)
class ChangeSet:
    modified: FrozenSet[str]
    deleted: FrozenSet[str]

    @property
    def is_empty(self) -> bool:
        return not self.modified and not self.deleted


class FeatureGraph:
    """
    Sole owner of node and link records.

    Records are frozen dataclasses; every change goes through a command
    method that swaps in a new record and keeps adjacency consistent:
    node.connected_link_ids == {links whose source or target is the node}.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}
        self._links: Dict[str, Link] = {}
        self._modified: Set[str] = set()
        self._deleted: Set[str] = set()
        # ids present in both tables after an untrusted load()
        self._collisions: Set[str] = set()

    # ------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------

    def get_node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def get_link(self, link_id: str) -> Link:
        return self._links[link_id]

    def find_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def find_link(self, link_id: str) -> Optional[Link]:
        return self._links.get(link_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def has_link(self, link_id: str) -> bool:
        return link_id in self._links

    def has_feature(self, feature_id: str) -> bool:
        return feature_id in self._nodes or feature_id in self._links

    def nodes(self, kind: Optional[str] = None) -> List[Node]:
        if kind is None:
            return list(self._nodes.values())
        return [n for n in self._nodes.values() if n.kind == kind]

    def links(self, kind: Optional[str] = None) -> List[Link]:
        if kind is None:
            return list(self._links.values())
        return [l for l in self._links.values() if l.kind == kind]

    def node_ids(self) -> List[str]:
        return list(self._nodes.keys())

    def link_ids(self) -> List[str]:
        return list(self._links.keys())

    def feature_ids(self) -> Iterator[str]:
        yield from self._nodes.keys()
        yield from self._links.keys()

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def link_count(self) -> int:
        return len(self._links)

    def __len__(self) -> int:
        return len(self._nodes) + len(self._links)

    def links_touching(self, node_id: str) -> List[Link]:
        """Full scan; does not trust the stored adjacency set."""
        return [l for l in self._links.values() if l.source_id == node_id or l.target_id == node_id]

    def connected_links(self, node_id: str) -> List[Link]:
        node = self._nodes[node_id]
        return [self._links[lid] for lid in sorted(node.connected_link_ids) if lid in self._links]

    def colliding_ids(self) -> FrozenSet[str]:
        """Ids shared by a node and a link (only possible after load())."""
        return frozenset(self._collisions)

    # ------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------

    def add_node(self, node: Node) -> Node:
        if self.has_feature(node.id):
            raise DuplicateIdError(f"Id already in use: {node.id!r}")
        stored = replace(node, connected_link_ids=frozenset())
        self._nodes[node.id] = stored
        self._touch(node.id)
        return stored

    def add_link(self, link: Link) -> Link:
        if self.has_feature(link.id):
            raise DuplicateIdError(f"Id already in use: {link.id!r}")
        for end in link.endpoints:
            if end not in self._nodes:
                raise MissingNodeError(f"Link {link.id!r} references unknown node {end!r}")

        self._links[link.id] = link
        self._attach(link.id, link.source_id)
        self._attach(link.id, link.target_id)
        self._touch(link.id)
        return link

    def remove_link(self, link_id: str) -> Link:
        link = self._links.pop(link_id)
        self._detach(link_id, link.source_id)
        self._detach(link_id, link.target_id)
        self._drop(link_id)
        return link

    def remove_node(self, node_id: str) -> Node:
        node = self._nodes[node_id]
        still = self.links_touching(node_id)
        if still:
            raise ValueError(
                f"Node {node_id!r} still has {len(still)} link(s): {sorted(l.id for l in still)}"
            )
        del self._nodes[node_id]
        self._drop(node_id)
        return node

    def update_node(self, node_id: str, *, length_decimals: Optional[int] = 2, **changes: Any) -> Node:
        """
        Attribute edit. `attributes` and non-field keys (head, init_level, ...)
        are merged into node.attributes, not replaced. Changing x/y goes through move_node so link endpoints follow.
        """
        node = self._nodes[node_id]
        bad = [k for k in changes if k in _IMMUTABLE_FIELDS]
        if bad:
            raise ValueError(f"Fields cannot be updated on node {node_id!r}: {bad}")

        if "x" in changes or "y" in changes:
            x = float(changes.pop("x", node.x))
            y = float(changes.pop("y", node.y))
            node = self.move_node(node_id, (x, y), length_decimals=length_decimals)

        changes = _fold_attributes(Node, node.attributes, changes)

        if not changes:
            return node

        updated = replace(node, **changes)
        self._nodes[node_id] = updated
        self._touch(node_id)
        return updated

    def update_link(self, link_id: str, *, length_decimals: Optional[int] = 2, **changes: Any) -> Link:
        """
        Attribute edit. Endpoint changes re-wire adjacency.

        Whenever the endpoints or the vertices change, the first/last vertex
        are pinned to the endpoint node positions. Connecting to a different
        node also recomputes the length unless one is given; swapping the
        two ends (reverse) keeps it.
        """
        link = self._links[link_id]
        bad = [k for k in changes if k in _IMMUTABLE_FIELDS]
        if bad:
            raise ValueError(f"Fields cannot be updated on link {link_id!r}: {bad}")

        for f in _TOPOLOGY_FIELDS:
            if f in changes and changes[f] not in self._nodes:
                raise MissingNodeError(f"Link {link_id!r} references unknown node {changes[f]!r}")

        changes = _fold_attributes(Link, link.attributes, changes)

        if "vertices" in changes:
            changes["vertices"] = tuple((float(x), float(y)) for x, y in changes["vertices"])

        updated = replace(link, **changes)

        if updated.endpoints != link.endpoints or "vertices" in changes:
            reconnected = set(updated.endpoints) != set(link.endpoints)
            updated = self._pinned(
                updated,
                recompute_length=reconnected and "length" not in changes,
                length_decimals=length_decimals,
            )

        if updated.endpoints != link.endpoints:
            self._detach(link_id, link.source_id)
            self._detach(link_id, link.target_id)
            self._links[link_id] = updated
            self._attach(link_id, updated.source_id)
            self._attach(link_id, updated.target_id)
        else:
            self._links[link_id] = updated

        self._touch(link_id)
        return updated

    def move_node(self, node_id: str, position: Point, *, length_decimals: Optional[int] = 2) -> Node:
        """
        Reposition a node and the matching endpoint vertex of every link
        touching it; link lengths are recomputed from the new polyline.
        """
        node = self._nodes[node_id]
        x, y = float(position[0]), float(position[1])
        moved = replace(node, x=x, y=y)
        self._nodes[node_id] = moved
        self._touch(node_id)

        for link in self.links_touching(node_id):
            verts = list(link.vertices) or [None, None]
            if link.source_id == node_id:
                verts[0] = (x, y)
            if link.target_id == node_id:
                verts[-1] = (x, y)
            if any(v is None for v in verts):
                a = self._nodes.get(link.source_id)
                b = self._nodes.get(link.target_id)
                if a is None or b is None:
                    continue
                verts = [a.position, b.position]

            length = polyline_length(verts)
            if length_decimals is not None:
                length = round_length(length, length_decimals)
            self._links[link.id] = replace(link, vertices=tuple(verts), length=length)
            self._touch(link.id)

        return moved

    def rebuild_adjacency(self) -> None:
        """One pass over all links; rewrites every node's adjacency set."""
        adj: Dict[str, Set[str]] = {nid: set() for nid in self._nodes}
        for link in self._links.values():
            for end in link.endpoints:
                if end in adj:
                    adj[end].add(link.id)

        for nid, node in self._nodes.items():
            ids = frozenset(adj[nid])
            if ids != node.connected_link_ids:
                self._nodes[nid] = replace(node, connected_link_ids=ids)

    def refresh_adjacency(self, node_id: str) -> Node:
        """Recompute one node's adjacency set from a full link scan."""
        node = self._nodes[node_id]
        ids = frozenset(l.id for l in self.links_touching(node_id))
        if ids != node.connected_link_ids:
            node = replace(node, connected_link_ids=ids)
            self._nodes[node_id] = node
        return node

    # ------------------------------------------------------------
    # Bulk load / snapshot
    # ------------------------------------------------------------

    def load(self, nodes: Iterable[Node], links: Iterable[Link]) -> None:
        """
        Replace the whole content (untrusted input).

        Dangling endpoints and node/link id collisions are accepted so the
        validator can report them; a repeated id within one table is not
        representable and raises DuplicateIdError.
        """
        new_nodes: Dict[str, Node] = {}
        for n in nodes:
            if n.id in new_nodes:
                raise DuplicateIdError(f"Duplicate node id in load: {n.id!r}")
            new_nodes[n.id] = n

        new_links: Dict[str, Link] = {}
        for l in links:
            if l.id in new_links:
                raise DuplicateIdError(f"Duplicate link id in load: {l.id!r}")
            new_links[l.id] = l

        self._nodes = new_nodes
        self._links = new_links
        self._collisions = set(new_nodes) & set(new_links)
        self._modified.clear()
        self._deleted.clear()
        self.rebuild_adjacency()

        if self._collisions:
            logger.warning(f"Loaded graph has {len(self._collisions)} id(s) shared by a node and a link")
        logger.debug(f"Loaded {len(new_nodes)} nodes and {len(new_links)} links")

    def clone(self) -> "FeatureGraph":
        """Independent copy (records are immutable; attribute dicts are copied)."""
        g = FeatureGraph()
        g._nodes = {k: replace(v, attributes=copy.deepcopy(dict(v.attributes))) for k, v in self._nodes.items()}
        g._links = {k: replace(v, attributes=copy.deepcopy(dict(v.attributes))) for k, v in self._links.items()}
        g._collisions = set(self._collisions)
        g._modified = set(self._modified)
        g._deleted = set(self._deleted)
        return g

    def restore(self, other: "FeatureGraph") -> None:
        """
        Replace content with `other`'s; every id that differs between the
        two states is recorded in change tracking.
        """
        before_n, before_l = self._nodes, self._links
        self._nodes = {k: replace(v, attributes=copy.deepcopy(dict(v.attributes))) for k, v in other._nodes.items()}
        self._links = {k: replace(v, attributes=copy.deepcopy(dict(v.attributes))) for k, v in other._links.items()}
        self._collisions = set(other._collisions)

        for old, new in ((before_n, self._nodes), (before_l, self._links)):
            for fid in set(old) - set(new):
                self._drop(fid)
            for fid, rec in new.items():
                if old.get(fid) != rec:
                    self._touch(fid)

    # ------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------

    def pending_changes(self) -> ChangeSet:
        return ChangeSet(modified=frozenset(self._modified), deleted=frozenset(self._deleted))

    def mark_saved(self) -> None:
        self._modified.clear()
        self._deleted.clear()

    # ------------------------------------------------------------
    # internals
    # ------------------------------------------------------------

    def _touch(self, fid: str) -> None:
        self._modified.add(fid)
        self._deleted.discard(fid)

    def _drop(self, fid: str) -> None:
        self._modified.discard(fid)
        self._deleted.add(fid)

    def _pinned(self, link: Link, *, recompute_length: bool, length_decimals: Optional[int]) -> Link:
        a = self._nodes.get(link.source_id)
        b = self._nodes.get(link.target_id)
        verts = list(link.vertices)
        if len(verts) < 2:
            if a is None or b is None:
                return link
            verts = [a.position, b.position]
        if a is not None:
            verts[0] = a.position
        if b is not None:
            verts[-1] = b.position

        out = replace(link, vertices=tuple(verts))
        if recompute_length:
            length = polyline_length(verts)
            if length_decimals is not None:
                length = round_length(length, length_decimals)
            out = replace(out, length=length)
        return out

    def _attach(self, link_id: str, node_id: str) -> None:
        node = self._nodes.get(node_id)
        if node is None or link_id in node.connected_link_ids:
            return
        self._nodes[node_id] = replace(node, connected_link_ids=node.connected_link_ids | {link_id})

    def _detach(self, link_id: str, node_id: str) -> None:
        node = self._nodes.get(node_id)
        if node is None or link_id not in node.connected_link_ids:
            return
        self._nodes[node_id] = replace(node, connected_link_ids=node.connected_link_ids - {link_id})

    def __repr__(self) -> str:
        return f"FeatureGraph(nodes={len(self._nodes)}, links={len(self._links)})"


def adjacency_map(graph: FeatureGraph) -> Dict[str, Tuple[str, ...]]:
    """node id -> sorted adjacency tuple (handy for comparisons)."""
    return {n.id: tuple(sorted(n.connected_link_ids)) for n in graph.nodes()}


def _fold_attributes(cls: type, current: Mapping[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Keys that are not record fields go into the merged attributes dict."""
    names = {f.name for f in fields(cls)}
    out = {k: v for k, v in changes.items() if k in names and k != "attributes"}
    extra = {k: v for k, v in changes.items() if k not in names}
    if "attributes" in changes or extra:
        merged = dict(current)
        merged.update(changes.get("attributes") or {})
        merged.update(extra)
        out["attributes"] = merged
    return out
