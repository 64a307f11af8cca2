from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from wdn.core.build.config import CodecConfig, GisImportConfig
from wdn.core.geometry.crs import normalize_crs, to_working
from wdn.core.graph.factory import RecordFactory
from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.models.node import Node
from wdn.core.models.project import ProjectSettings
from wdn.adapters.inp.write_inp import write_inp

logger = logging.getLogger(__name__)

LINE_TYPES = ("LineString", "MultiLineString")


class GisImportError(ValueError):
    """The GIS source could not be read or produced no pipes."""


@dataclass(frozen=True)
class GisImportResult:
    graph: FeatureGraph
    inp_text: str
    repaired_count: int     # lines that lost some vertices but still made pipes
    skipped_count: int      # lines with fewer than 2 usable vertices
    crs: str                # source CRS the coordinates were read in


# ============================================================
# Source loading (GeoJSON mapping / path / feature list / __geo_interface__)
# ============================================================

def load_features(source: Any) -> List[Mapping[str, Any]]:
    if hasattr(source, "__geo_interface__"):
        source = source.__geo_interface__

    if isinstance(source, (str, Path)):
        source = _read_geojson(source)

    if isinstance(source, Mapping):
        kind = source.get("type")
        if kind == "FeatureCollection" or "features" in source:
            feats = source.get("features")
            if not isinstance(feats, list):
                raise GisImportError("FeatureCollection has no 'features' list")
            return [f.__geo_interface__ if hasattr(f, "__geo_interface__") else f for f in feats]
        if kind == "Feature":
            return [source]
        if kind in LINE_TYPES or kind == "GeometryCollection":
            return [{"type": "Feature", "geometry": source, "properties": {}}]
        raise GisImportError(f"Unsupported GeoJSON object type: {kind!r}")

    if isinstance(source, (list, tuple)):
        return [f.__geo_interface__ if hasattr(f, "__geo_interface__") else f for f in source]

    raise GisImportError(f"Unsupported GIS source: {type(source).__name__}")


def _read_geojson(source: Any) -> Any:
    text: Optional[str] = None
    if isinstance(source, Path) or (isinstance(source, str) and not source.lstrip().startswith(("{", "["))):
        path = Path(source)
        if path.suffix.lower() in (".zip", ".shp"):
            raise GisImportError(f"Shapefiles are not supported, convert {path.name} to GeoJSON")
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise GisImportError(f"Cannot read GIS file {str(source)!r}") from e
    else:
        text = str(source)

    if not text.strip():
        raise GisImportError("GIS file is empty")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise GisImportError(f"Invalid JSON syntax: {e.msg} (line {e.lineno})") from e


def iter_lines(features: Sequence[Mapping[str, Any]]) -> Iterator[Optional[list]]:
    """
    Raw coordinate lists of every LineString part.
    Yields None for features without geometry so callers can count them.
    """
    for f in features:
        geom = f.get("geometry") if isinstance(f, Mapping) else None
        if not isinstance(geom, Mapping) or (geom.get("coordinates") is None and geom.get("type") != "GeometryCollection"):
            yield None
            continue
        yield from _geometry_lines(geom)


def _geometry_lines(geom: Mapping[str, Any]) -> Iterator[Optional[list]]:
    gtype = geom.get("type")
    coords = geom.get("coordinates")
    if gtype == "LineString":
        yield coords if isinstance(coords, list) else None
    elif gtype == "MultiLineString":
        if not isinstance(coords, list):
            yield None
            return
        for part in coords:
            yield part if isinstance(part, list) else None
    elif gtype == "GeometryCollection":
        for g in geom.get("geometries") or ():
            if isinstance(g, Mapping):
                yield from _geometry_lines(g)
    else:
        logger.debug(f"Ignoring non-line geometry {gtype!r}")


def _as_xy(pt: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(pt, (list, tuple)) or len(pt) < 2:
        return None
    try:
        x, y = float(pt[0]), float(pt[1])
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return (x, y)


# ============================================================
# Snapping
# ============================================================

class _SnapIndex:
    """Linear nearest-neighbour scan over the nodes created so far."""

    def __init__(self, tolerance: float) -> None:
        self.tolerance = float(tolerance)
        self._xy = np.empty((64, 2), dtype=float)
        self._nodes: List[Node] = []

    def nearest(self, x: float, y: float) -> Optional[Node]:
        n = len(self._nodes)
        if n == 0:
            return None
        pts = self._xy[:n]
        d = np.hypot(pts[:, 0] - x, pts[:, 1] - y)
        i = int(np.argmin(d))
        return self._nodes[i] if d[i] <= self.tolerance else None

    def add(self, node: Node) -> None:
        n = len(self._nodes)
        if n == len(self._xy):
            self._xy = np.vstack([self._xy, np.empty_like(self._xy)])
        self._xy[n] = (node.x, node.y)
        self._nodes.append(node)


# ============================================================
# Import
# ============================================================

def import_gis_lines(
    source: Any,
    config: Optional[GisImportConfig] = None,
    *,
    source_crs: Optional[str] = None,
    codec_config: Optional[CodecConfig] = None,
) -> GisImportResult:
    """
    Build a pipe network from GIS line geometry.

    Every vertex goes source CRS -> EPSG:4326 -> working projection, then
    snaps to the nearest existing junction within snap_tolerance or
    creates a new one. Consecutive distinct junctions become pipes.
    """
    cfg = config or GisImportConfig()
    codec = codec_config or CodecConfig()
    crs = normalize_crs(source_crs or cfg.source_crs)

    features = load_features(source)

    graph = FeatureGraph()
    factory = RecordFactory(graph, length_decimals=cfg.length_decimals)
    snap = _SnapIndex(cfg.snap_tolerance)

    repaired = 0
    skipped = 0
    pipes = 0

    for raw in iter_lines(features):
        if not raw:
            skipped += 1
            continue

        valid = [p for p in (_as_xy(pt) for pt in raw) if p is not None]
        path: List[Node] = []
        if valid:
            arr = np.asarray(valid, dtype=float)
            xs, ys = to_working(arr[:, 0], arr[:, 1], crs, codec.working_crs)
            for x, y in zip(xs, ys):
                if not (np.isfinite(x) and np.isfinite(y)):
                    continue
                node = snap.nearest(float(x), float(y))
                if node is None:
                    node = factory.create_node("junction", (float(x), float(y)), elevation=0.0)
                    graph.add_node(node)
                    snap.add(node)
                path.append(node)

        if len(path) < 2:
            skipped += 1
            continue
        if len(path) < len(raw):
            repaired += 1

        for a, b in zip(path[:-1], path[1:]):
            if a.id == b.id:
                continue
            length = max(cfg.min_pipe_length, math.hypot(b.x - a.x, b.y - a.y))
            pipe = factory.create_link(
                "pipe", a, b,
                length=round(length, cfg.length_decimals),
                diameter=cfg.default_diameter,
                roughness=cfg.default_roughness,
            )
            graph.add_link(pipe)
            pipes += 1

    if pipes == 0:
        raise GisImportError("No valid network could be created.")

    settings = ProjectSettings(title="Imported from GIS", projection=crs)
    inp_text = write_inp(graph, settings, config=codec)

    logger.info(
        f"GIS import: {graph.node_count} junctions, {pipes} pipes from {len(features)} features "
        f"({repaired} repaired, {skipped} skipped, source CRS {crs})"
    )
    return GisImportResult(graph=graph, inp_text=inp_text, repaired_count=repaired, skipped_count=skipped, crs=crs)
