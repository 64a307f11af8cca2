from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd

from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.models.link import Link
from wdn.core.models.node import Node


def _node_row(n: Node) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "id": n.id,
        "kind": n.kind,
        "x": n.x,
        "y": n.y,
        "elevation": n.elevation,
        "base_demand": n.base_demand,
        "n_links": len(n.connected_link_ids),
    }
    row.update(n.attributes)
    return row


def _link_row(l: Link) -> Dict[str, Any]:
    anchor = l.anchor
    row: Dict[str, Any] = {
        "id": l.id,
        "kind": l.kind,
        "source_id": l.source_id,
        "target_id": l.target_id,
        "length": l.length,
        "diameter": l.diameter,
        "roughness": l.roughness,
        "status": l.status,
        "n_vertices": len(l.vertices),
        "anchor_x": anchor[0] if anchor is not None else None,
        "anchor_y": anchor[1] if anchor is not None else None,
    }
    row.update(l.attributes)
    return row


def nodes_frame(graph: FeatureGraph) -> pd.DataFrame:
    """Attribute table of every node, one row per node."""
    rows: List[Dict[str, Any]] = [_node_row(n) for n in graph.nodes()]
    return pd.DataFrame(rows, columns=None if rows else ["id", "kind", "x", "y"])


def links_frame(graph: FeatureGraph) -> pd.DataFrame:
    """Attribute table of every link (pipes and devices)."""
    rows: List[Dict[str, Any]] = [_link_row(l) for l in graph.links()]
    return pd.DataFrame(rows, columns=None if rows else ["id", "kind", "source_id", "target_id"])


def records_frame(graph: FeatureGraph) -> pd.DataFrame:
    """
    Nodes and links in one table. Geometry is reduced to x/y for nodes
    and an anchor point for links; columns a row does not use are NaN.
    """
    return pd.concat([nodes_frame(graph), links_frame(graph)], ignore_index=True, sort=False)


def export_features_csv(
    graph: FeatureGraph,
    path_csv: str,
) -> None:
    """
    Export the combined feature table to CSV.
    Columns:
      id, kind, x, y, elevation, base_demand, n_links,
      source_id, target_id, length, diameter, roughness, status, ...
    """
    records_frame(graph).to_csv(path_csv, index=False)


def export_features_excel(
    graph: FeatureGraph,
    path_xlsx: str,
    nodes_sheet: str = "nodes",
    links_sheet: str = "links",
) -> None:
    """
    Export nodes and links to one workbook, a sheet each.
    """
    with pd.ExcelWriter(path_xlsx, engine="openpyxl") as writer:
        nodes_frame(graph).to_excel(writer, sheet_name=nodes_sheet, index=False)
        links_frame(graph).to_excel(writer, sheet_name=links_sheet, index=False)
