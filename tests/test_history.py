"""Undo/redo snapshots."""

import pytest

from wdn.core.topology.history import HistoryManager


def state(graph):
    return ({n.id: n for n in graph.nodes()}, {l.id: l for l in graph.links()})


def test_undo_restores_exact_state(graph, editor, straight_pipe):
    history = HistoryManager(graph)
    _, _, p = straight_pipe
    before = state(graph)

    history.snapshot()
    editor.insert_device_on_link(p, (50.0, 0.0))
    after = state(graph)

    assert history.undo()
    assert state(graph) == before

    assert history.redo()
    assert state(graph) == after


def test_empty_stacks_return_false(graph):
    history = HistoryManager(graph)
    assert not history.can_undo
    assert not history.undo()
    assert not history.redo()


def test_new_snapshot_clears_redo(graph, editor, straight_pipe):
    history = HistoryManager(graph)
    a, _, _ = straight_pipe

    history.snapshot()
    editor.move_node(a, (1.0, 1.0))
    history.undo()
    assert history.can_redo

    history.snapshot()
    assert not history.can_redo


def test_max_depth_drops_oldest(graph, editor, straight_pipe):
    history = HistoryManager(graph, max_depth=2)
    a, _, _ = straight_pipe
    for i in range(4):
        history.snapshot()
        editor.move_node(a, (float(i), 0.0))

    assert history.depth == 2
    assert history.undo() and history.undo()
    assert not history.undo()
    assert graph.get_node(a).position == (1.0, 0.0)


def test_undo_marks_changes_and_keeps_id_counters(graph, factory, editor, straight_pipe):
    history = HistoryManager(graph)
    _, _, p = straight_pipe
    graph.mark_saved()

    history.snapshot()
    res = editor.insert_node_on_link(p, (50.0, 0.0))
    history.undo()

    changes = graph.pending_changes()
    assert p in changes.modified
    assert set(res.created) <= changes.deleted
    assert factory.create_node("junction", (9.0, 9.0)).id not in res.created


def test_invalid_depth():
    with pytest.raises(ValueError):
        HistoryManager(None, max_depth=0)
