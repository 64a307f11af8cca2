from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

Point = Tuple[float, float]

# Two coordinates closer than this are treated as the same vertex.
VERTEX_EPS = 1e-9


@dataclass(frozen=True)
class PolylineHit:
    """Projection of a query point onto a polyline."""
    segment_index: int     # segment i spans vertices[i] -> vertices[i+1]
    point: Point           # closest point on the polyline
    distance: float        # query point -> closest point
    offset: float          # distance along the polyline from vertices[0]
    segment_length: float


def as_array(vertices: Sequence[Sequence[float]]) -> np.ndarray:
    arr = np.asarray(vertices, dtype=float)
    if arr.ndim != 2 or (arr.size and arr.shape[1] < 2):
        raise ValueError(f"Expected a sequence of (x, y) pairs, got shape {arr.shape}")
    return arr[:, :2]


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    return math.hypot(float(b[0]) - float(a[0]), float(b[1]) - float(a[1]))


def same_point(a: Sequence[float], b: Sequence[float], eps: float = VERTEX_EPS) -> bool:
    return distance(a, b) <= eps


def is_finite_point(p: Sequence[float]) -> bool:
    try:
        return len(p) >= 2 and math.isfinite(float(p[0])) and math.isfinite(float(p[1]))
    except (TypeError, ValueError):
        return False


def segment_lengths(vertices: Sequence[Sequence[float]]) -> np.ndarray:
    arr = as_array(vertices)
    if len(arr) < 2:
        return np.zeros(0, dtype=float)
    d = np.diff(arr, axis=0)
    return np.hypot(d[:, 0], d[:, 1])


def polyline_length(vertices: Sequence[Sequence[float]]) -> float:
    return float(segment_lengths(vertices).sum())


def round_length(value: float, decimals: int) -> float:
    return round(float(value), int(decimals))


def locate_on_polyline(vertices: Sequence[Sequence[float]], point: Sequence[float]) -> Optional[PolylineHit]:
    """
    Closest point on a polyline to `point`.

    Every segment is projected at once; ties go to the first segment so a
    point sitting exactly on an interior vertex is reported at the end of
    the earlier segment.
    Returns None for polylines with fewer than 2 vertices.
    """
    arr = as_array(vertices)
    if len(arr) < 2:
        return None

    p = np.asarray(point, dtype=float)[:2]
    a = arr[:-1]
    ab = arr[1:] - a
    ab2 = np.einsum("ij,ij->i", ab, ab)

    with np.errstate(invalid="ignore", divide="ignore"):
        t = np.einsum("ij,ij->i", p - a, ab) / ab2
    t = np.where(ab2 > 0.0, np.clip(t, 0.0, 1.0), 0.0)

    proj = a + ab * t[:, None]
    d = np.hypot(proj[:, 0] - p[0], proj[:, 1] - p[1])
    i = int(np.argmin(d))

    seg_len = np.sqrt(ab2)
    offset = float(seg_len[:i].sum() + seg_len[i] * t[i])

    return PolylineHit(
        segment_index=i,
        point=(float(proj[i, 0]), float(proj[i, 1])),
        distance=float(d[i]),
        offset=offset,
        segment_length=float(seg_len[i]),
    )


def point_along(vertices: Sequence[Sequence[float]], offset: float) -> Point:
    """Point at `offset` distance along the polyline (clamped to its ends)."""
    arr = as_array(vertices)
    if len(arr) == 0:
        raise ValueError("Empty polyline")
    if len(arr) == 1:
        return (float(arr[0, 0]), float(arr[0, 1]))

    seg = segment_lengths(arr)
    cum = np.concatenate(([0.0], np.cumsum(seg)))
    s = min(max(float(offset), 0.0), float(cum[-1]))

    i = int(np.searchsorted(cum, s, side="right")) - 1
    i = min(max(i, 0), len(seg) - 1)
    if seg[i] == 0.0:
        return (float(arr[i, 0]), float(arr[i, 1]))

    w = (s - cum[i]) / seg[i]
    x = arr[i, 0] + w * (arr[i + 1, 0] - arr[i, 0])
    y = arr[i, 1] + w * (arr[i + 1, 1] - arr[i, 1])
    return (float(x), float(y))


def midpoint(vertices: Sequence[Sequence[float]]) -> Point:
    return point_along(vertices, polyline_length(vertices) / 2.0)


def split_polyline(vertices: Sequence[Point], segment_index: int, point: Point) -> Tuple[List[Point], List[Point]]:
    """
    Split at `point` lying on segment `segment_index`.

    Both halves contain `point` exactly once; when it coincides with an
    existing vertex that vertex is reused instead of duplicated.
    """
    verts = [tuple(map(float, v[:2])) for v in vertices]
    i = int(segment_index)
    p = (float(point[0]), float(point[1]))

    if same_point(p, verts[i]):
        first = verts[:i + 1]
    else:
        first = verts[:i + 1] + [p]

    if same_point(p, verts[i + 1]):
        second = verts[i + 1:]
    else:
        second = [p] + verts[i + 1:]

    return first, second


def dedupe_consecutive(vertices: Sequence[Sequence[float]], tol: float = 0.01) -> List[Point]:
    out: List[Point] = []
    for v in vertices:
        pt = (float(v[0]), float(v[1]))
        if out and distance(out[-1], pt) <= tol:
            continue
        out.append(pt)
    return out
