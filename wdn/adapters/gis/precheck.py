from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from wdn.adapters.gis.read_gis import GisImportError, load_features

logger = logging.getLogger(__name__)

# Only the first few valid features are sampled for the projection check.
_PROJECTION_SAMPLE = 5


@dataclass(frozen=True)
class GisPrecheckResult:
    status: str                 # "valid" | "warning" | "error"
    message: str
    null_ratio: float = 0.0
    looks_projected: bool = False

    @property
    def ok(self) -> bool:
        return self.status != "error"


def _is_null_number(v: Any) -> bool:
    if v is None or isinstance(v, bool):
        return True
    if isinstance(v, (int, float)):
        return not math.isfinite(float(v))
    return True


def _contains_nulls(coords: Any) -> bool:
    if not isinstance(coords, (list, tuple)):
        return True
    if len(coords) >= 2 and not isinstance(coords[0], (list, tuple)):
        return _is_null_number(coords[0]) or _is_null_number(coords[1])
    return any(_contains_nulls(c) for c in coords)


def _has_valid_coordinates(coords: Any) -> bool:
    if not isinstance(coords, (list, tuple)) or not coords:
        return False
    if len(coords) >= 2 and isinstance(coords[0], (int, float)) and not isinstance(coords[0], bool):
        return math.isfinite(float(coords[0])) and math.isfinite(float(coords[1]))
    return any(_has_valid_coordinates(c) for c in coords)


def _first_point(gtype: Optional[str], coords: Any) -> Optional[tuple]:
    try:
        if gtype == "LineString":
            return tuple(coords[0][:2])
        if gtype == "MultiLineString":
            return tuple(coords[0][0][:2])
    except (IndexError, TypeError):
        return None
    return None


def precheck_gis(source: Any, max_features: int = 2000) -> GisPrecheckResult:
    """
    Classify a GIS source before import.

    error   - unreadable, empty, or no feature with usable coordinates
    warning - some features carry null coordinates (they will be skipped), or
              the first coordinates exceed +/-180/+/-90 (projected CRS that
              must be confirmed before import)
    valid   - otherwise
    """
    try:
        features = load_features(source)
    except GisImportError as e:
        return GisPrecheckResult("error", str(e))

    if not features:
        return GisPrecheckResult("error", "No features found.")

    null_count = 0
    valid_count = 0
    looks_projected = False

    limit = min(len(features), int(max_features))
    for f in features[:limit]:
        geom = f.get("geometry") if isinstance(f, Mapping) else None
        coords = geom.get("coordinates") if isinstance(geom, Mapping) else None
        if coords is None:
            continue

        if _contains_nulls(coords):
            null_count += 1
            continue
        if not _has_valid_coordinates(coords):
            continue

        valid_count += 1
        if valid_count <= _PROJECTION_SAMPLE:
            pt = _first_point(geom.get("type"), coords)
            if pt is not None and (abs(pt[0]) > 180 or abs(pt[1]) > 90):
                looks_projected = True

    null_ratio = null_count / limit if limit else 0.0

    if valid_count == 0:
        if null_count > 0:
            return GisPrecheckResult("error", "File contains ONLY null coordinates.", null_ratio)
        return GisPrecheckResult("error", "No valid geometry found.", null_ratio)

    if null_count > 0:
        return GisPrecheckResult(
            "warning",
            f"Found {null_count} features with null values. These will be skipped.",
            null_ratio,
            looks_projected,
        )

    if looks_projected:
        logger.warning("GIS source looks projected; the source CRS must be confirmed before import")
        return GisPrecheckResult("warning", "Projected coordinates (meters) detected.", null_ratio, True)

    return GisPrecheckResult("valid", f"Ready to import {len(features)} features.", null_ratio, False)
