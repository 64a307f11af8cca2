import pytest

from wdn.core.graph.factory import RecordFactory
from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.topology.editor import TopologyEditor


@pytest.fixture
def graph():
    return FeatureGraph()


@pytest.fixture
def factory(graph):
    return RecordFactory(graph)


@pytest.fixture
def editor(graph, factory):
    return TopologyEditor(graph, factory)


@pytest.fixture
def build(graph, factory):
    """Small builder: build.node("junction", (x, y)) / build.pipe(a, b)."""

    class _Builder:
        def node(self, kind, xy, **attrs):
            return graph.add_node(factory.create_node(kind, xy, **attrs)).id

        def pipe(self, a, b, vertices=None, **attrs):
            return graph.add_link(factory.create_link("pipe", a, b, vertices=vertices, **attrs)).id

        def link(self, kind, a, b, **attrs):
            return graph.add_link(factory.create_link(kind, a, b, **attrs)).id

    return _Builder()


@pytest.fixture
def straight_pipe(build):
    """J-1 (0,0) -- P-1 (100 units) -- J-2 (100,0)."""
    a = build.node("junction", (0.0, 0.0))
    b = build.node("junction", (100.0, 0.0))
    p = build.pipe(a, b)
    return a, b, p
