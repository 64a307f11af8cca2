from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from wdn.core.geometry.polyline import as_array


def _ccw(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """Orientation sign of (a, b, c); arrays broadcast over leading axes."""
    return (c[..., 1] - a[..., 1]) * (b[..., 0] - a[..., 0]) > (b[..., 1] - a[..., 1]) * (c[..., 0] - a[..., 0])


def segments_intersect(a: Sequence[float], b: Sequence[float], c: Sequence[float], d: Sequence[float]) -> bool:
    """
    True when segment ab properly crosses segment cd.
    Collinear overlaps and touching endpoints are not reported.
    """
    pa, pb, pc, pd_ = (np.asarray(p, dtype=float)[:2] for p in (a, b, c, d))
    return bool(
        (_ccw(pa, pc, pd_) != _ccw(pb, pc, pd_))
        and (_ccw(pa, pb, pc) != _ccw(pa, pb, pd_))
    )


def polylines_intersect(p: np.ndarray, q: np.ndarray) -> bool:
    """Any segment of p crossing any segment of q (all pairs at once)."""
    if len(p) < 2 or len(q) < 2:
        return False

    a = p[:-1][:, None, :]
    b = p[1:][:, None, :]
    c = q[:-1][None, :, :]
    d = q[1:][None, :, :]

    hit = (_ccw(a, c, d) != _ccw(b, c, d)) & (_ccw(a, b, c) != _ccw(a, b, d))
    return bool(hit.any())


def _bbox(arr: np.ndarray) -> np.ndarray:
    return np.array([arr[:, 0].min(), arr[:, 1].min(), arr[:, 0].max(), arr[:, 1].max()])


def find_crossing_pairs(
    polylines: Dict[str, Sequence[Sequence[float]]],
    *,
    skip_pair: Optional[Callable[[str, str], bool]] = None,
) -> List[Tuple[str, str]]:
    """
    Pairs of polylines whose segments cross.

    O(n^2) over polylines; pairs with disjoint bounding boxes are discarded
    before any segment test. skip_pair(id1, id2) lets the caller exclude
    pairs (e.g. links sharing an endpoint node).
    """
    ids: List[str] = []
    arrays: List[np.ndarray] = []
    for fid, verts in polylines.items():
        arr = as_array(verts) if len(verts) else np.zeros((0, 2))
        if len(arr) < 2 or not np.isfinite(arr).all():
            continue
        ids.append(fid)
        arrays.append(arr)

    if len(arrays) < 2:
        return []

    boxes = np.vstack([_bbox(a) for a in arrays])
    out: List[Tuple[str, str]] = []

    for i in range(len(arrays) - 1):
        rest = boxes[i + 1:]
        overlap = (
            (rest[:, 0] <= boxes[i, 2]) & (rest[:, 2] >= boxes[i, 0])
            & (rest[:, 1] <= boxes[i, 3]) & (rest[:, 3] >= boxes[i, 1])
        )
        for k in np.nonzero(overlap)[0]:
            j = i + 1 + int(k)
            if skip_pair is not None and skip_pair(ids[i], ids[j]):
                continue
            if polylines_intersect(arrays[i], arrays[j]):
                out.append((ids[i], ids[j]))

    return out
