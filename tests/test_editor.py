"""TopologyEditor: split, device insertion, cascade delete and geometry edits."""

from dataclasses import replace

import pytest

from wdn.core.build.config import EditorConfig
from wdn.core.topology.editor import TopologyEditor


def adjacency_ok(graph):
    return all(
        set(n.connected_link_ids) == {l.id for l in graph.links() if n.id in l.endpoints}
        for n in graph.nodes()
    )


class TestSplit:

    def test_insert_node_splits_pipe_in_two(self, graph, editor, straight_pipe):
        a, b, p = straight_pipe
        graph.update_link(p, diameter=200.0, roughness=120.0)

        res = editor.insert_node_on_link(p, (50.0, 0.3))

        assert res is not None
        node_id, l1, l2 = res.created
        assert res.removed == (p,)
        assert not graph.has_link(p)

        node = graph.get_node(node_id)
        assert node.position == (50.0, 0.0)

        first, second = graph.get_link(l1), graph.get_link(l2)
        assert (first.source_id, first.target_id) == (a, node_id)
        assert (second.source_id, second.target_id) == (node_id, b)
        assert first.length == pytest.approx(50.0)
        assert second.length == pytest.approx(50.0)
        assert first.diameter == second.diameter == 200.0
        assert first.roughness == second.roughness == 120.0
        assert adjacency_ok(graph)

    def test_split_keeps_interior_vertices_on_each_side(self, graph, build, editor):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (20.0, 0.0))
        p = build.pipe(a, b, vertices=[(0, 0), (5, 5), (15, 5), (20, 0)])

        res = editor.insert_node_on_link(p, (10.0, 5.0))

        _, l1, l2 = res.created
        assert graph.get_link(l1).vertices == ((0.0, 0.0), (5.0, 5.0), (10.0, 5.0))
        assert graph.get_link(l2).vertices == ((10.0, 5.0), (15.0, 5.0), (20.0, 0.0))

    def test_split_at_endpoint_is_a_noop(self, graph, editor, straight_pipe):
        _, _, p = straight_pipe
        before = graph.clone()

        assert editor.insert_node_on_link(p, (0.0, 0.0)) is None
        assert editor.insert_node_on_link("missing", (10.0, 0.0)) is None
        assert graph.link_ids() == before.link_ids()
        assert graph.node_ids() == before.node_ids()

    def test_place_node_on_pipe_splits(self, graph, editor, straight_pipe):
        res = editor.place_node("junction", (30.0, 0.1))
        assert res is not None
        assert graph.link_count == 2
        assert graph.get_node(res.primary_id).position == (30.0, 0.0)

    def test_place_node_away_from_pipes_creates_orphan(self, graph, editor, straight_pipe):
        res = editor.place_node("tank", (30.0, 40.0))
        assert res.created == (res.primary_id,)
        assert graph.get_node(res.primary_id).kind == "tank"
        assert graph.link_count == 1

    def test_place_node_on_existing_node_is_a_noop(self, editor, straight_pipe):
        assert editor.place_node("junction", (0.1, 0.0)) is None

    def test_device_needs_a_pipe(self, editor, straight_pipe):
        assert editor.place_node("pump", (30.0, 40.0)) is None


class TestDeviceInsertion:

    def test_pump_at_midpoint_of_100_unit_pipe(self, graph, editor, straight_pipe):
        a, b, p = straight_pipe

        res = editor.insert_device_on_link(p, (50.0, 0.0), kind="pump")

        assert res is not None
        stub_a, stub_b, l1, pump, l2 = res.created
        assert graph.link_count == 3
        assert graph.node_count == 4

        assert graph.get_link(l1).length == pytest.approx(49.5)
        assert graph.get_link(l2).length == pytest.approx(49.5)
        pump_link = graph.get_link(pump)
        assert pump_link.kind == "pump"
        assert pump_link.length == pytest.approx(1.0)
        assert pump_link.endpoints == (stub_a, stub_b)
        assert graph.get_node(stub_a).kind == graph.get_node(stub_b).kind == "junction"
        assert pump_link.anchor == pytest.approx((50.0, 0.0))
        assert adjacency_ok(graph)

    def test_gap_is_limited_on_short_segments(self, graph, build, editor):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (1.0, 0.0))
        p = build.pipe(a, b)

        res = editor.insert_device_on_link(p, (0.5, 0.0), kind="valve")

        _, _, l1, valve, l2 = res.created
        assert graph.get_link(valve).length == pytest.approx(0.4)
        assert graph.get_link(l1).length > 0
        assert graph.get_link(l2).length > 0

    def test_gap_stays_inside_segment_near_an_end(self, graph, editor, straight_pipe):
        _, _, p = straight_pipe
        res = editor.insert_device_on_link(p, (0.2, 0.0), kind="pump")
        _, _, l1, _, _ = res.created
        assert graph.get_link(l1).length == pytest.approx(0.5)

    def test_device_cannot_split_a_device(self, graph, editor, straight_pipe):
        _, _, p = straight_pipe
        pump = editor.insert_device_on_link(p, (50.0, 0.0)).primary_id
        assert editor.insert_device_on_link(pump, (50.0, 0.0)) is None

    def test_custom_gap(self, graph, factory, straight_pipe):
        editor = TopologyEditor(graph, factory, EditorConfig(device_gap=4.0))
        _, _, p = straight_pipe
        res = editor.insert_device_on_link(p, (50.0, 0.0))
        assert graph.get_link(res.primary_id).length == pytest.approx(4.0)


class TestDelete:

    def test_delete_node_cascades(self, graph, editor, build):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (10.0, 0.0))
        p1 = build.pipe(a, b)

        res = editor.delete_node(a)

        assert set(res.removed) == {p1, a}
        assert graph.link_count == 0
        assert graph.has_node(b)
        assert graph.get_node(b).connected_link_ids == frozenset()

    def test_delete_hub_keeps_neighbours(self, graph, editor, build):
        hub = build.node("junction", (0.0, 0.0))
        spokes = [build.node("junction", (10.0 * i, 10.0)) for i in range(1, 4)]
        for s in spokes:
            build.pipe(hub, s)

        info = editor.cascade_info(hub)
        assert info.link_count == 3
        assert info.neighbour_ids == tuple(sorted(spokes))

        editor.delete_node(hub)
        assert graph.link_count == 0
        assert all(graph.has_node(s) for s in spokes)
        assert adjacency_ok(graph)

    def test_delete_node_recovers_from_stale_adjacency(self, graph, editor, build):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (10.0, 0.0))
        p = build.pipe(a, b)
        # adjacency set out of sync with the link table
        graph._nodes[a] = replace(graph.get_node(a), connected_link_ids=frozenset())

        res = editor.delete_node(a)

        assert p in res.removed
        assert not graph.has_link(p)
        assert graph.get_node(b).connected_link_ids == frozenset()
        assert adjacency_ok(graph)

    def test_delete_unknown_is_a_noop(self, editor):
        assert editor.delete_node("nope") is None
        assert editor.delete_link("nope") is None
        assert editor.cascade_info("nope") is None


class TestReverse:

    def test_reverse_swaps_endpoints_and_vertices(self, graph, build, editor):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (10.0, 0.0))
        p = build.pipe(a, b, vertices=[(0, 0), (5, 3), (10, 0)])

        editor.reverse_link(p)

        link = graph.get_link(p)
        assert link.endpoints == (b, a)
        assert link.vertices == ((10.0, 0.0), (5.0, 3.0), (0.0, 0.0))
        assert adjacency_ok(graph)

    def test_reverse_keeps_hydraulic_length(self, graph, build, editor):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (10.0, 0.0))
        p = build.pipe(a, b, length=250.0)

        editor.reverse_link(p)

        assert graph.get_link(p).length == 250.0


class TestDrawing:

    def test_add_pipe_with_interior_vertices(self, graph, build, editor):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (6.0, 0.0))

        res = editor.add_pipe(a, b, vertices=[(3.0, 4.0)])

        link = graph.get_link(res.primary_id)
        assert link.vertices == ((0.0, 0.0), (3.0, 4.0), (6.0, 0.0))
        assert link.length == pytest.approx(10.0)

    def test_add_pipe_refuses_self_and_unknown(self, build, editor):
        a = build.node("junction", (0.0, 0.0))
        assert editor.add_pipe(a, a) is None
        assert editor.add_pipe(a, "ghost") is None

    def test_add_device_between_nodes(self, graph, build, editor):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (2.0, 0.0))
        res = editor.add_device("valve", a, b, setting=25.0)
        valve = graph.get_link(res.primary_id)
        assert valve.attr("setting") == 25.0
        assert valve.attr("valve_type") == "PRV"
        assert editor.add_device("pipe", a, b) is None


class TestGeometryEdits:

    def test_move_node_updates_lengths(self, graph, editor, straight_pipe):
        a, _, p = straight_pipe
        res = editor.move_node(a, (40.0, 0.0))
        assert p in res.modified
        assert graph.get_link(p).length == pytest.approx(60.0)

    def test_move_device_translates_stubs_and_neighbours(self, graph, editor, straight_pipe):
        _, _, p = straight_pipe
        ins = editor.insert_device_on_link(p, (50.0, 0.0))
        stub_a, stub_b, l1, pump, l2 = ins.created

        res = editor.move_device(pump, 0.0, 3.0)

        assert res is not None
        assert graph.get_node(stub_a).y == pytest.approx(3.0)
        assert graph.get_node(stub_b).y == pytest.approx(3.0)
        assert graph.get_link(l1).vertices[-1] == graph.get_node(stub_a).position
        assert graph.get_link(l2).vertices[0] == graph.get_node(stub_b).position
        assert editor.move_device(l1, 1.0, 1.0) is None

    def test_add_and_remove_vertex(self, graph, editor, straight_pipe):
        _, _, p = straight_pipe
        assert editor.add_vertex(p, (25.0, 0.2)) is not None
        assert graph.get_link(p).vertices[1] == (25.0, 0.0)

        assert editor.remove_vertex(p, 0) is None
        assert editor.remove_vertex(p, 1) is not None
        assert len(graph.get_link(p).vertices) == 2

    def test_update_attributes(self, graph, editor, straight_pipe):
        a, _, p = straight_pipe
        assert editor.update_attributes(p, diameter=300.0, material="DI") is not None
        assert graph.get_link(p).diameter == 300.0
        assert graph.get_link(p).attr("material") == "DI"

        assert editor.update_attributes(a, id="other") is None
        assert editor.update_attributes(p, target_id="ghost") is None
        assert editor.update_attributes("ghost", diameter=1.0) is None

    def test_reconnecting_endpoint_moves_geometry(self, graph, build, editor, straight_pipe):
        a, b, p = straight_pipe
        c = build.node("junction", (50.0, 80.0))

        res = editor.update_attributes(p, target_id=c)

        link = graph.get_link(p)
        assert res is not None
        assert link.vertices[-1] == (50.0, 80.0)
        assert link.length == pytest.approx(94.34)
        assert p not in graph.get_node(b).connected_link_ids

    def test_position_edit_uses_configured_rounding(self, graph, factory, straight_pipe):
        editor = TopologyEditor(graph, factory, EditorConfig(length_decimals=0))
        a, _, p = straight_pipe

        editor.update_attributes(a, x=0.4, y=0.3)

        assert graph.get_node(a).position == (0.4, 0.3)
        assert graph.get_link(p).length == 100.0
