"""Solver bridge loop with a scripted session; WNTR run when installed."""

import pytest

from wdn.adapters.solver.runner import result_frames, run_hydraulics


class FakeSession:
    """Three reporting times, then the engine reports no next step."""

    def __init__(self, fail_at=None, fail_open=False):
        self.times = [0.0, 3600.0, 7200.0]
        self.step = -1
        self.closed = False
        self.opened_with = None
        self.fail_at = fail_at
        self.fail_open = fail_open

    def open(self, inp_text):
        if self.fail_open:
            raise RuntimeError("cannot open network")
        self.opened_with = inp_text

    def node_ids(self):
        return ["R1", "J1"]

    def link_ids(self):
        return ["P1"]

    def run_step(self):
        self.step += 1
        if self.fail_at == self.step:
            raise RuntimeError("engine blew up")
        return self.times[self.step]

    def next_step(self):
        return 0.0 if self.step == len(self.times) - 1 else 3600.0

    def node_value(self, node_id, quantity):
        return {"pressure": 30.0, "demand": 1.5, "head": 130.0}[quantity] + self.step

    def link_value(self, link_id, quantity):
        return {"flow": 1.5, "velocity": 0.2, "headloss": 0.01}[quantity]

    def link_is_open(self, link_id):
        return self.step != 1

    def report_text(self):
        return "  Page 1\n  WARNING: Negative pressures at 1:00:00 hrs\n"

    def close(self):
        self.closed = True


def test_collects_one_snapshot_per_step():
    session = FakeSession()
    result = run_hydraulics("[TITLE]\n[END]\n", session)

    assert session.opened_with.startswith("[TITLE]")
    assert session.closed
    assert result.timestamps == [0.0, 3600.0, 7200.0]
    assert result.duration == 7200.0
    assert (result.node_count, result.link_count) == (2, 1)

    second = result.snapshots[1]
    assert second.nodes["J1"] == {"pressure": 31.0, "demand": 2.5, "head": 131.0}
    assert second.links["P1"]["status"] == "Closed"
    assert result.snapshots[0].links["P1"]["status"] == "Open"


def test_report_warnings_are_surfaced():
    result = run_hydraulics("", FakeSession())
    assert result.warnings == ("WARNING: Negative pressures at 1:00:00 hrs",)


def test_session_closed_on_failure():
    session = FakeSession(fail_at=1)
    with pytest.raises(RuntimeError):
        run_hydraulics("", session)
    assert session.closed


def test_session_closed_when_open_fails():
    session = FakeSession(fail_open=True)
    with pytest.raises(RuntimeError, match="cannot open"):
        run_hydraulics("", session)
    assert session.closed


def test_result_frames_are_long_format():
    frames = result_frames(run_hydraulics("", FakeSession()))

    nodes, links = frames["nodes"], frames["links"]
    assert list(nodes.columns) == ["time_s", "id", "pressure", "demand", "head"]
    assert len(nodes) == 3 * 2
    assert list(links.columns) == ["time_s", "id", "flow", "velocity", "headloss", "status"]
    assert list(links["status"]) == ["Open", "Closed", "Open"]


def test_wntr_runs_written_network(graph, build):
    pytest.importorskip("wntr")
    from wdn.adapters.inp.write_inp import write_inp
    from wdn.adapters.solver.wntr_engine import run_with_wntr
    from wdn.core.models.project import ProjectSettings

    r = build.node("reservoir", (0.0, 0.0), head=100.0)
    j = build.node("junction", (100.0, 0.0), elevation=10.0, demand=1.0)
    build.pipe(r, j, diameter=150.0, roughness=130.0)

    settings = ProjectSettings(flow_units="LPS", duration="2:00")
    result = run_with_wntr(write_inp(graph, settings))

    assert result.node_count == 2
    assert result.timestamps[0] == 0.0
    assert result.snapshots[0].nodes[j]["pressure"] > 0
    assert result.snapshots[0].links["P-1"]["flow"] == pytest.approx(1.0, rel=1e-3)


def test_wntr_session_cleans_up_after_failed_open():
    pytest.importorskip("wntr")
    from wdn.adapters.solver.wntr_engine import WntrSession

    session = WntrSession()
    with pytest.raises(Exception):
        session.open("[JUNCTIONS]\nnot a valid row at all\n[END]\n")

    assert session._en is None
    assert session._tmp is None
