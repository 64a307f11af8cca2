import numpy as np
import pytest

from wdn.core.geometry.crossings import find_crossing_pairs, segments_intersect
from wdn.core.geometry.crs import guess_source_crs, normalize_crs, to_working
from wdn.core.geometry.polyline import (
    dedupe_consecutive,
    locate_on_polyline,
    point_along,
    polyline_length,
    split_polyline,
)

L = [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0)]


def test_length_and_point_along():
    assert polyline_length(L) == 20.0
    assert point_along(L, 15.0) == (10.0, 5.0)
    assert point_along(L, 99.0) == (10.0, 10.0)
    assert point_along(L, -1.0) == (0.0, 0.0)


def test_locate_on_polyline():
    hit = locate_on_polyline(L, (12.0, 4.0))
    assert hit.segment_index == 1
    assert hit.point == (10.0, 4.0)
    assert hit.distance == pytest.approx(2.0)
    assert hit.offset == pytest.approx(14.0)

    assert locate_on_polyline([(0.0, 0.0)], (1.0, 1.0)) is None


def test_interior_vertex_goes_to_earlier_segment():
    hit = locate_on_polyline(L, (10.0, 0.0))
    assert hit.segment_index == 0


def test_split_polyline():
    first, second = split_polyline(L, 1, (10.0, 4.0))
    assert first == [(0.0, 0.0), (10.0, 0.0), (10.0, 4.0)]
    assert second == [(10.0, 4.0), (10.0, 10.0)]

    # on an existing vertex: reused, not duplicated
    first, second = split_polyline(L, 0, (10.0, 0.0))
    assert first == [(0.0, 0.0), (10.0, 0.0)]
    assert second == [(10.0, 0.0), (10.0, 10.0)]


def test_dedupe_consecutive():
    assert dedupe_consecutive([(0, 0), (0.001, 0), (5, 0), (5, 0)]) == [(0.0, 0.0), (5.0, 0.0)]


def test_segments_intersect():
    assert segments_intersect((0, 0), (10, 10), (0, 10), (10, 0))
    assert not segments_intersect((0, 0), (10, 0), (0, 1), (10, 1))
    assert not segments_intersect((0, 0), (5, 5), (5, 5), (10, 0))


def test_find_crossing_pairs_respects_skip():
    lines = {
        "A": [(0, 0), (10, 10)],
        "B": [(0, 10), (10, 0)],
        "C": [(20, 20), (30, 30)],
    }
    assert find_crossing_pairs(lines) == [("A", "B")]
    assert find_crossing_pairs(lines, skip_pair=lambda a, b: True) == []


def test_normalize_crs():
    assert normalize_crs("epsg:4326") == "EPSG:4326"
    assert normalize_crs(3857) == "EPSG:3857"
    with pytest.raises(ValueError):
        normalize_crs("EPSG:999999")


def test_guess_source_crs():
    geo = guess_source_crs([-3.7, -3.6], [40.4, 40.5])
    assert geo.crs == "EPSG:4326" and geo.detected

    merc = guess_source_crs([-411000.0], [4926000.0])
    assert merc.crs == "EPSG:3857"

    assert not guess_source_crs([], []).detected


def test_to_working_from_geographic():
    x, y = to_working([0.0], [0.0], "EPSG:4326")
    assert np.allclose([x[0], y[0]], [0.0, 0.0])
