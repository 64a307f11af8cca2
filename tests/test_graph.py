"""FeatureGraph commands, adjacency and change tracking; ids and factory."""

import pytest

from wdn.core.graph.factory import RecordFactory
from wdn.core.graph.feature_graph import DuplicateIdError, FeatureGraph, MissingNodeError, adjacency_map
from wdn.core.graph.ids import IdGenerator, numeric_suffix
from wdn.core.models.link import Link
from wdn.core.models.node import Node


def assert_adjacency_consistent(graph):
    for node in graph.nodes():
        expected = {l.id for l in graph.links() if node.id in l.endpoints}
        assert set(node.connected_link_ids) == expected


class TestCommands:

    def test_add_link_updates_both_endpoints(self, graph, straight_pipe):
        a, b, p = straight_pipe
        assert graph.get_node(a).connected_link_ids == {p}
        assert graph.get_node(b).connected_link_ids == {p}
        assert_adjacency_consistent(graph)

    def test_duplicate_id_across_kinds_is_rejected(self, graph, factory, straight_pipe):
        a, _, p = straight_pipe
        with pytest.raises(DuplicateIdError):
            graph.add_node(factory.create_node("junction", (5.0, 5.0), id=p))
        with pytest.raises(DuplicateIdError):
            graph.add_node(factory.create_node("junction", (5.0, 5.0), id=a))

    def test_link_to_unknown_node_is_rejected(self, graph, factory, straight_pipe):
        a, _, _ = straight_pipe
        link = Link(id="X", kind="pipe", source_id=a, target_id="nope", vertices=((0, 0), (1, 1)))
        with pytest.raises(MissingNodeError):
            graph.add_link(link)

    def test_remove_node_with_links_raises(self, graph, straight_pipe):
        a, _, _ = straight_pipe
        with pytest.raises(ValueError):
            graph.remove_node(a)

    def test_remove_link_detaches(self, graph, straight_pipe):
        a, b, p = straight_pipe
        graph.remove_link(p)
        assert graph.get_node(a).connected_link_ids == frozenset()
        assert graph.get_node(b).connected_link_ids == frozenset()

    def test_move_node_drags_endpoint_vertices(self, graph, build):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (10.0, 0.0))
        p = build.pipe(a, b, vertices=[(0, 0), (5, 5), (10, 0)])

        graph.move_node(b, (10.0, 10.0))

        link = graph.get_link(p)
        assert link.vertices[0] == (0.0, 0.0)
        assert link.vertices[1] == (5.0, 5.0)
        assert link.vertices[-1] == (10.0, 10.0)
        assert link.length == pytest.approx(7.07 + 7.07, abs=0.02)

    def test_update_link_rewires_adjacency(self, graph, build, straight_pipe):
        a, b, p = straight_pipe
        c = build.node("junction", (50.0, 80.0))

        graph.update_link(p, target_id=c)

        assert p not in graph.get_node(b).connected_link_ids
        assert p in graph.get_node(c).connected_link_ids
        assert_adjacency_consistent(graph)

        link = graph.get_link(p)
        assert link.vertices == ((0.0, 0.0), (50.0, 80.0))
        assert link.length == pytest.approx(94.34, abs=0.01)

    def test_update_link_pins_given_vertices_to_endpoints(self, graph, straight_pipe):
        _, _, p = straight_pipe
        graph.update_link(p, vertices=[(1, 1), (50, 20), (99, 1)])
        assert graph.get_link(p).vertices == ((0.0, 0.0), (50.0, 20.0), (100.0, 0.0))

    def test_update_link_keeps_explicit_length_on_reconnect(self, graph, build, straight_pipe):
        _, _, p = straight_pipe
        c = build.node("junction", (0.0, 30.0))
        graph.update_link(p, target_id=c, length=250.0)
        assert graph.get_link(p).length == 250.0

    def test_update_node_folds_unknown_keys_into_attributes(self, graph, build):
        r = build.node("reservoir", (0.0, 0.0))
        graph.update_node(r, head=55.0, elevation=3.0)
        node = graph.get_node(r)
        assert node.attr("head") == 55.0
        assert node.elevation == 3.0

    def test_records_are_immutable_values(self, graph, straight_pipe):
        a, _, _ = straight_pipe
        held = graph.get_node(a)
        graph.move_node(a, (1.0, 1.0))
        assert held.position == (0.0, 0.0)
        assert graph.get_node(a).position == (1.0, 1.0)

    def test_record_attributes_are_read_only(self, graph, straight_pipe):
        _, _, p = straight_pipe
        graph.mark_saved()
        with pytest.raises(TypeError):
            graph.get_link(p).attributes["minor_loss"] = 9.0

        assert graph.get_link(p).attr("minor_loss") == 0.0
        assert graph.pending_changes().is_empty

    def test_caller_dict_is_copied_on_construction(self):
        extra = {"pattern": "P1"}
        node = Node(id="A", kind="junction", x=0, y=0, attributes=extra)
        extra["pattern"] = "P9"
        assert node.attr("pattern") == "P1"


class TestLoad:

    def test_load_rebuilds_adjacency_and_keeps_dangling_links(self):
        g = FeatureGraph()
        g.load(
            [Node(id="A", kind="junction", x=0, y=0)],
            [Link(id="L", kind="pipe", source_id="A", target_id="GHOST", vertices=((0, 0), (1, 0)))],
        )
        assert g.get_node("A").connected_link_ids == {"L"}
        assert g.pending_changes().is_empty

    def test_load_tolerates_node_link_collision(self):
        g = FeatureGraph()
        g.load(
            [Node(id="10", kind="junction", x=0, y=0), Node(id="11", kind="junction", x=1, y=0)],
            [Link(id="10", kind="pipe", source_id="10", target_id="11", vertices=((0, 0), (1, 0)))],
        )
        assert g.colliding_ids() == {"10"}

    def test_load_rejects_duplicate_within_table(self):
        g = FeatureGraph()
        with pytest.raises(DuplicateIdError):
            g.load([Node(id="A", kind="junction", x=0, y=0), Node(id="A", kind="junction", x=1, y=0)], [])


class TestChangeTracking:

    def test_add_then_remove_moves_id_to_deleted(self, graph, straight_pipe):
        _, _, p = straight_pipe
        assert p in graph.pending_changes().modified
        graph.remove_link(p)
        changes = graph.pending_changes()
        assert p not in changes.modified
        assert p in changes.deleted

    def test_mark_saved_clears(self, graph, straight_pipe):
        graph.mark_saved()
        assert graph.pending_changes().is_empty

    def test_clone_is_independent(self, graph, build):
        a = build.node("junction", (0.0, 0.0), pattern="P1")
        copy = graph.clone()
        graph.update_node(a, pattern="P2")
        assert copy.get_node(a).attr("pattern") == "P1"
        assert adjacency_map(copy) == adjacency_map(graph)


class TestIds:

    def test_numeric_suffix(self):
        assert numeric_suffix("J-12") == 12
        assert numeric_suffix("Node7") == 7
        assert numeric_suffix("outlet") is None

    def test_prefixes_per_kind(self, graph, factory):
        assert factory.create_node("junction", (0, 0)).id == "J-1"
        assert factory.create_node("tank", (0, 0)).id == "T-1"
        assert factory.create_node("reservoir", (0, 0)).id == "R-1"
        assert factory.ids.next_id("pump") == "PU-1"
        assert factory.ids.next_id("valve") == "V-1"

    def test_seed_from_skips_past_imported_suffixes(self):
        ids = IdGenerator()
        ids.seed_from({"junction": ["J-4", "J-17", "outlet"], "pipe": ["P-2"]})
        assert ids.next_id("junction") == "J-18"
        assert ids.next_id("pipe") == "P-3"

    def test_existing_ids_are_skipped(self, graph, factory, build):
        build.node("junction", (0, 0))                    # J-1
        graph.add_node(factory.create_node("junction", (1, 0), id="J-2"))
        assert factory.create_node("junction", (2, 0)).id == "J-3"

    def test_seed_from_graph(self, graph):
        graph.load([Node(id="J-40", kind="junction", x=0, y=0)], [])
        factory = RecordFactory(graph)
        factory.seed_from_graph()
        assert factory.create_node("junction", (1, 1)).id == "J-41"


class TestFactory:

    def test_defaults_are_split_into_fields_and_attributes(self, factory):
        tank = factory.create_node("tank", (0, 0))
        assert tank.elevation == 120.0
        assert tank.attr("max_level") == 20.0

        junction = factory.create_node("junction", (3, 4), demand=2.5)
        assert junction.base_demand == 2.5

    def test_link_ends_pinned_and_length_computed(self, graph, build):
        a = build.node("junction", (0.0, 0.0))
        b = build.node("junction", (3.0, 4.0))
        p = build.pipe(a, b, vertices=[(9, 9), (9, 9)])
        link = graph.get_link(p)
        assert link.vertices == ((0.0, 0.0), (3.0, 4.0))
        assert link.length == 5.0
        assert link.diameter == 100.0
        assert link.attr("material") == "PVC"
