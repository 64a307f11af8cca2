from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

NODE_QUANTITIES = ("pressure", "demand", "head")
LINK_QUANTITIES = ("flow", "velocity", "headloss")

# Report lines worth surfacing next to the results.
_WARNING_MARKERS = ("WARNING:", "System unbalanced", "Negative pressure")


class HydraulicSession(Protocol):
    """
    Step-wise hydraulic engine. One INP text in, per-timestep values out.
    `next_step` returns the length of the next time step in seconds;
    a non-positive value ends the run.
    """

    def open(self, inp_text: str) -> None: ...

    def node_ids(self) -> Sequence[str]: ...

    def link_ids(self) -> Sequence[str]: ...

    def run_step(self) -> float: ...

    def next_step(self) -> float: ...

    def node_value(self, node_id: str, quantity: str) -> float: ...

    def link_value(self, link_id: str, quantity: str) -> float: ...

    def link_is_open(self, link_id: str) -> bool: ...

    def report_text(self) -> str: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class TimestepSnapshot:
    time: float                                  # seconds from start
    nodes: Dict[str, Dict[str, float]]           # id -> pressure/demand/head
    links: Dict[str, Dict[str, object]]          # id -> flow/velocity/headloss/status


@dataclass(frozen=True)
class SimulationResult:
    snapshots: Tuple[TimestepSnapshot, ...]
    node_count: int
    link_count: int
    warnings: Tuple[str, ...] = ()
    report: str = ""
    meta: Dict[str, object] = field(default_factory=dict)

    @property
    def timestamps(self) -> List[float]:
        return [s.time for s in self.snapshots]

    @property
    def duration(self) -> float:
        return self.snapshots[-1].time if self.snapshots else 0.0


def report_warnings(report: str) -> List[str]:
    return [ln.strip() for ln in report.splitlines() if any(m in ln for m in _WARNING_MARKERS)]


def run_hydraulics(inp_text: str, session: HydraulicSession) -> SimulationResult:
    """
    Run the session to completion and collect one snapshot per reported time.
    The session is always closed, also when opening it or a step fails.
    """
    try:
        session.open(inp_text)
        node_ids = list(session.node_ids())
        link_ids = list(session.link_ids())

        snapshots: List[TimestepSnapshot] = []
        tstep = 1.0
        while tstep > 0:
            t = float(session.run_step())

            nodes = {
                nid: {q: float(session.node_value(nid, q)) for q in NODE_QUANTITIES}
                for nid in node_ids
            }
            links: Dict[str, Dict[str, object]] = {}
            for lid in link_ids:
                row: Dict[str, object] = {q: float(session.link_value(lid, q)) for q in LINK_QUANTITIES}
                row["status"] = "Open" if session.link_is_open(lid) else "Closed"
                links[lid] = row

            snapshots.append(TimestepSnapshot(time=t, nodes=nodes, links=links))
            logger.debug(f"Hydraulic step t={t:.0f}s stored")

            tstep = float(session.next_step())

        report = session.report_text() or ""
    finally:
        session.close()

    warnings = report_warnings(report)
    for w in warnings:
        logger.warning(f"Solver report: {w}")

    result = SimulationResult(
        snapshots=tuple(snapshots),
        node_count=len(node_ids),
        link_count=len(link_ids),
        warnings=tuple(warnings),
        report=report,
    )
    logger.info(
        f"Hydraulics finished: {len(snapshots)} timesteps, {result.node_count} nodes, "
        f"{result.link_count} links, duration {result.duration:.0f}s"
    )
    return result


def result_frames(result: SimulationResult) -> Dict[str, pd.DataFrame]:
    """
    Long-format tables:
      nodes: time_s, id, pressure, demand, head
      links: time_s, id, flow, velocity, headloss, status
    """
    node_rows = []
    link_rows = []
    for snap in result.snapshots:
        for nid, vals in snap.nodes.items():
            node_rows.append({"time_s": snap.time, "id": nid, **vals})
        for lid, vals in snap.links.items():
            link_rows.append({"time_s": snap.time, "id": lid, **vals})

    return {
        "nodes": pd.DataFrame(node_rows, columns=["time_s", "id", *NODE_QUANTITIES]),
        "links": pd.DataFrame(link_rows, columns=["time_s", "id", *LINK_QUANTITIES, "status"]),
    }
