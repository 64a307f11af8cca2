from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence, Tuple

import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

logger = logging.getLogger(__name__)

WORKING_CRS = "EPSG:3857"
GEOGRAPHIC_CRS = "EPSG:4326"


@dataclass(frozen=True)
class CrsGuess:
    crs: str
    detected: bool      # True when chosen by the magnitude heuristic
    reason: str


def normalize_crs(crs: str) -> str:
    """'epsg:4326', 4326, 'EPSG:4326' -> 'EPSG:4326'."""
    if isinstance(crs, int):
        crs = f"EPSG:{crs}"
    try:
        return CRS.from_user_input(crs).to_string()
    except CRSError as e:
        raise ValueError(f"Unknown CRS {crs!r}") from e


def same_crs(a: str, b: str) -> bool:
    return normalize_crs(a) == normalize_crs(b)


@lru_cache(maxsize=32)
def _transformer(src: str, dst: str) -> Transformer:
    return Transformer.from_crs(src, dst, always_xy=True)


def transform_xy(
    xs: Sequence[float],
    ys: Sequence[float],
    src: str,
    dst: str,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorised reprojection. Points the transformer cannot handle come back
    as inf/nan; callers filter with np.isfinite.
    """
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    src_n, dst_n = normalize_crs(src), normalize_crs(dst)
    if src_n == dst_n:
        return x.copy(), y.copy()
    tx, ty = _transformer(src_n, dst_n).transform(x, y, errcheck=False)
    return np.asarray(tx, dtype=float), np.asarray(ty, dtype=float)


def to_working(
    xs: Sequence[float],
    ys: Sequence[float],
    source_crs: str,
    working_crs: str = WORKING_CRS,
) -> Tuple[np.ndarray, np.ndarray]:
    """Source CRS -> EPSG:4326 -> working projection."""
    if normalize_crs(source_crs) == normalize_crs(working_crs):
        return np.asarray(xs, dtype=float).copy(), np.asarray(ys, dtype=float).copy()
    gx, gy = transform_xy(xs, ys, source_crs, GEOGRAPHIC_CRS)
    return transform_xy(gx, gy, GEOGRAPHIC_CRS, working_crs)


def from_working(
    xs: Sequence[float],
    ys: Sequence[float],
    target_crs: str,
    working_crs: str = WORKING_CRS,
) -> Tuple[np.ndarray, np.ndarray]:
    gx, gy = transform_xy(xs, ys, working_crs, GEOGRAPHIC_CRS)
    return transform_xy(gx, gy, GEOGRAPHIC_CRS, target_crs)


def looks_geographic(xs: Sequence[float], ys: Sequence[float]) -> bool:
    """All finite samples inside lon/lat range (and at least one sample)."""
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    ok = np.isfinite(x) & np.isfinite(y)
    if not ok.any():
        return False
    x, y = x[ok], y[ok]
    return bool(((np.abs(x) <= 180.0) & (np.abs(y) <= 90.0)).all())


def guess_source_crs(
    xs: Sequence[float],
    ys: Sequence[float],
    *,
    working_crs: str = WORKING_CRS,
    sample_size: int = 50,
) -> CrsGuess:
    """
    Magnitude heuristic used only when no CRS was declared.
    A projected CRS centred near its origin can pass as lon/lat, so the
    result is reported back to the caller instead of trusted silently.
    """
    x = np.asarray(xs, dtype=float)[:sample_size]
    y = np.asarray(ys, dtype=float)[:sample_size]

    if len(x) == 0:
        return CrsGuess(working_crs, False, "no coordinates; assuming working projection")

    if looks_geographic(x, y):
        logger.warning(
            f"No CRS declared; {len(x)} sampled coordinates fall within +/-180/+/-90, assuming {GEOGRAPHIC_CRS}"
        )
        return CrsGuess(GEOGRAPHIC_CRS, True, "sampled coordinates within geographic range")

    return CrsGuess(working_crs, True, "sampled coordinates outside geographic range")
