from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.geometry.crossings import find_crossing_pairs
from wdn.core.geometry.polyline import is_finite_point
from wdn.core.models.catalog import REQUIRED_PROPERTIES, SOURCE_KINDS


@dataclass(frozen=True)
class ValidationIssue:
    severity: str           # "error" | "warning"
    code: str
    message: str
    affected_ids: Tuple[str, ...] = ()
    hint: Optional[str] = None


@dataclass(frozen=True)
class ValidationSummary:
    is_valid: bool
    errors: Tuple[ValidationIssue, ...]
    warnings: Tuple[ValidationIssue, ...]


class NetworkValidationError(ValueError):
    """Raised when validation finds one or more errors."""
    def __init__(self, issues: List[ValidationIssue]):
        self.issues = issues
        lines = ["Network validation failed with errors:"]
        for it in issues:
            if it.severity == "error":
                lines.append(f"- [{it.code}] {it.message}" + (f" | hint: {it.hint}" if it.hint else ""))
        super().__init__("\n".join(lines))


def validate_network(graph: FeatureGraph) -> List[ValidationIssue]:
    """
    Read-only topology diagnostics.
    Returns one aggregated issue per failing check; never raises, never mutates.
    """
    issues: List[ValidationIssue] = []

    node_ids = set(graph.node_ids())
    links = graph.links()

    # --- Errors ---
    missing = [l.id for l in links if l.source_id not in node_ids or l.target_id not in node_ids]
    if missing:
        issues.append(ValidationIssue(
            "error", "missing_nodes",
            f"{len(missing)} link(s) are not connected to start/end nodes",
            tuple(missing),
            "Reconnect the link to existing nodes or delete it.",
        ))

    loops = [l.id for l in links if l.source_id == l.target_id]
    if loops:
        issues.append(ValidationIssue(
            "error", "self_loop",
            f"{len(loops)} link(s) connect a node to itself",
            tuple(loops),
            "Delete the link or move one of its ends to another node.",
        ))

    dups = sorted(graph.colliding_ids())
    if dups:
        issues.append(ValidationIssue(
            "error", "duplicate_ids",
            f"{len(dups)} duplicate feature ID(s) found",
            tuple(dups),
            "Rename features so every id is unique across nodes and links.",
        ))

    bad_geom = [n.id for n in graph.nodes() if not is_finite_point((n.x, n.y))]
    bad_geom += [
        l.id for l in links
        if len(l.vertices) < 2 or not all(is_finite_point(v) for v in l.vertices)
    ]
    if bad_geom:
        issues.append(ValidationIssue(
            "error", "invalid_geometry",
            f"{len(bad_geom)} feature(s) have invalid or empty geometries",
            tuple(bad_geom),
        ))

    # --- Warnings ---
    orphans = sorted(n.id for n in graph.nodes() if not n.connected_link_ids)
    if orphans:
        issues.append(ValidationIssue(
            "warning", "orphaned_nodes",
            f"{len(orphans)} orphaned node(s) (no links connected)",
            tuple(orphans),
        ))

    components = connected_components(graph)
    if len(components) > 1:
        issues.append(ValidationIssue(
            "warning", "disconnected_network",
            f"Network is split into {len(components)} disconnected sub-networks",
            hint="If this is unintended, check that pipes end on the intended nodes.",
        ))

    isolated: List[str] = []
    for comp in components:
        if not any(graph.get_node(nid).kind in SOURCE_KINDS for nid in comp):
            isolated.extend(comp)
    if isolated:
        issues.append(ValidationIssue(
            "warning", "isolated_subnetwork",
            f"{len(isolated)} node(s) are in sub-networks without a Tank or Reservoir (hydraulically isolated)",
            tuple(isolated),
            "Connect each sub-network to a tank or reservoir.",
        ))

    crossings = find_crossings(graph)
    if crossings:
        ids = sorted({fid for pair in crossings for fid in pair})
        issues.append(ValidationIssue(
            "warning", "crossing_pipes",
            f"{len(crossings)} location(s) where pipes cross without a junction",
            tuple(ids),
            "Insert a junction at the crossing if the pipes are meant to connect.",
        ))

    incomplete = missing_properties(graph)
    if incomplete:
        issues.append(ValidationIssue(
            "warning", "missing_properties",
            f"{len(incomplete)} feature(s) missing required hydraulic properties (e.g. elevation, diameter)",
            tuple(incomplete),
        ))

    return issues


def connected_components(graph: FeatureGraph) -> List[List[str]]:
    """BFS over links as undirected edges; every node belongs to one component."""
    adj: Dict[str, Set[str]] = {nid: set() for nid in graph.node_ids()}
    for l in graph.links():
        if l.source_id in adj and l.target_id in adj:
            adj[l.source_id].add(l.target_id)
            adj[l.target_id].add(l.source_id)

    visited: Set[str] = set()
    comps: List[List[str]] = []
    for start in adj:
        if start in visited:
            continue
        comp: List[str] = []
        queue = deque([start])
        visited.add(start)
        while queue:
            cur = queue.popleft()
            comp.append(cur)
            for nxt in adj[cur]:
                if nxt not in visited:
                    visited.add(nxt)
                    queue.append(nxt)
        comps.append(comp)
    return comps


def find_crossings(graph: FeatureGraph) -> List[Tuple[str, str]]:
    """Pipe pairs whose polylines cross while sharing no endpoint node."""
    pipes = {l.id: l for l in graph.links("pipe")}

    def shares_node(a: str, b: str) -> bool:
        return bool(set(pipes[a].endpoints) & set(pipes[b].endpoints))

    return find_crossing_pairs(
        {pid: p.vertices for pid, p in pipes.items()},
        skip_pair=shares_node,
    )


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def missing_properties(graph: FeatureGraph) -> List[str]:
    out: List[str] = []
    for feature in [*graph.nodes(), *graph.links()]:
        for prop in REQUIRED_PROPERTIES.get(feature.kind, ()):
            value = getattr(feature, prop, None) if hasattr(feature, prop) else feature.attr(prop)
            if _is_blank(value):
                out.append(feature.id)
                break
    return out


def summarize(issues: List[ValidationIssue]) -> ValidationSummary:
    errors = tuple(i for i in issues if i.severity == "error")
    warnings = tuple(i for i in issues if i.severity == "warning")
    return ValidationSummary(is_valid=not errors, errors=errors, warnings=warnings)


def raise_on_errors(issues: List[ValidationIssue]) -> None:
    errors = [i for i in issues if i.severity == "error"]
    if errors:
        raise NetworkValidationError(errors)
