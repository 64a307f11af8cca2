"""GIS line import and precheck."""

import json

import pytest

from wdn.adapters.gis.precheck import precheck_gis
from wdn.adapters.gis.read_gis import GisImportError, import_gis_lines, load_features
from wdn.adapters.inp.read_inp import read_inp
from wdn.core.build.config import GisImportConfig

MERC = "EPSG:3857"


def line(*coords, **props):
    return {"type": "Feature", "properties": props, "geometry": {"type": "LineString", "coordinates": [list(c) for c in coords]}}


def collection(*features):
    return {"type": "FeatureCollection", "features": list(features)}


class TestSnapping:

    def test_endpoints_within_tolerance_share_a_node(self):
        src = collection(
            line((0, 0), (100, 0)),
            line((100.5, 0), (200, 0)),
        )
        res = import_gis_lines(src, source_crs=MERC)

        assert res.graph.node_count == 3
        assert res.graph.link_count == 2

    def test_endpoints_just_beyond_tolerance_stay_apart(self):
        cfg = GisImportConfig(snap_tolerance=1.0)
        src = collection(
            line((0, 0), (100, 0)),
            line((101.001, 0), (200, 0)),
        )
        res = import_gis_lines(src, cfg, source_crs=MERC)

        assert res.graph.node_count == 4

    def test_tolerance_is_inclusive(self):
        src = collection(line((0, 0), (10, 0)), line((11, 0), (20, 0)))
        res = import_gis_lines(src, GisImportConfig(snap_tolerance=1.0), source_crs=MERC)
        assert res.graph.node_count == 3


class TestImport:

    def test_pipes_get_defaults_and_rounded_length(self):
        res = import_gis_lines(collection(line((0, 0), (3, 4), (3, 10.123))), source_crs=MERC)

        pipes = res.graph.links("pipe")
        assert [p.length for p in pipes] == [5.0, 6.12]
        assert all(p.diameter == 150.0 and p.roughness == 100.0 for p in pipes)
        assert all(n.kind == "junction" and n.elevation == 0.0 for n in res.graph.nodes())

    def test_short_segment_gets_minimum_length(self):
        cfg = GisImportConfig(snap_tolerance=0.01)
        res = import_gis_lines(collection(line((0, 0), (0.05, 0))), cfg, source_crs=MERC)
        (pipe,) = res.graph.links()
        assert pipe.length == pytest.approx(0.1)

    def test_bad_points_are_counted(self):
        src = collection(
            line((0, 0), (10, 0), (None, 5), (20, 0)),
            line((50, 50)),
            {"type": "Feature", "properties": {}, "geometry": None},
        )
        res = import_gis_lines(src, source_crs=MERC)

        assert res.repaired_count == 1
        assert res.skipped_count == 2
        assert res.graph.link_count == 2

    def test_multilinestring_parts(self):
        geom = {"type": "MultiLineString", "coordinates": [[[0, 0], [10, 0]], [[10, 0], [10, 10]]]}
        res = import_gis_lines({"type": "Feature", "geometry": geom, "properties": {}}, source_crs=MERC)
        assert res.graph.node_count == 3
        assert res.graph.link_count == 2

    def test_geographic_source_is_reprojected(self):
        res = import_gis_lines(collection(line((-3.70, 40.41), (-3.69, 40.41))))
        assert res.crs == "EPSG:4326"
        (pipe,) = res.graph.links()
        # 0.01 degree of longitude at ~40N is roughly 1.1 km in web mercator
        assert 1000 < pipe.length < 1400

    def test_result_serializes_to_inp(self):
        res = import_gis_lines(collection(line((0, 0), (10, 0), (10, 10))), source_crs=MERC)
        parsed = read_inp(res.inp_text)
        assert parsed.graph.node_ids() == res.graph.node_ids()
        assert parsed.settings.title == "Imported from GIS"

    def test_nothing_usable_raises(self):
        with pytest.raises(GisImportError):
            import_gis_lines(collection(line((0, 0))), source_crs=MERC)

    def test_reads_geojson_file(self, tmp_path):
        path = tmp_path / "lines.geojson"
        path.write_text(json.dumps(collection(line((0, 0), (5, 0)))), encoding="utf-8")
        res = import_gis_lines(str(path), source_crs=MERC)
        assert res.graph.link_count == 1

    def test_shapefiles_are_rejected(self):
        with pytest.raises(GisImportError):
            load_features("network.zip")

    def test_geo_interface_objects(self):
        class Shape:
            __geo_interface__ = {"type": "LineString", "coordinates": [[0, 0], [1, 0]]}

        assert len(load_features(Shape())) == 1


class TestPrecheck:

    def test_valid(self):
        res = precheck_gis(collection(line((-3.7, 40.4), (-3.6, 40.4))))
        assert res.status == "valid"
        assert res.ok

    def test_null_coordinates_warn(self):
        res = precheck_gis(collection(
            line((-3.7, 40.4), (-3.6, 40.4)),
            line((None, None), (-3.6, 40.4)),
        ))
        assert res.status == "warning"
        assert res.null_ratio == pytest.approx(0.5)

    def test_only_nulls_is_an_error(self):
        res = precheck_gis(collection(line((None, None), (None, 1))))
        assert res.status == "error"
        assert not res.ok

    def test_projected_coordinates_need_confirmation(self):
        res = precheck_gis(collection(line((440000, 4470000), (440100, 4470000))))
        assert res.status == "warning"
        assert res.looks_projected

    def test_unparseable_and_empty(self):
        assert precheck_gis("{not json").status == "error"
        assert precheck_gis(collection()).status == "error"
