from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from wdn.core.build.config import CodecConfig
from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.models.project import Control, Curve, ProjectSettings, TimePattern
from wdn.adapters.inp.sections import chunks, fmt_num, key_value, row

logger = logging.getLogger(__name__)

_DEFAULT_STATUS = {"pipe": "OPEN", "pump": "OPEN", "valve": "ACTIVE"}


@dataclass(frozen=True)
class InpBuildResult:
    text: str
    dropped_controls: Tuple[Control, ...] = ()


def write_inp(
    graph: FeatureGraph,
    settings: Optional[ProjectSettings] = None,
    patterns: Sequence[TimePattern] = (),
    curves: Sequence[Curve] = (),
    controls: Sequence[Control] = (),
    config: Optional[CodecConfig] = None,
) -> str:
    return build_inp(graph, settings, patterns, curves, controls, config).text


def build_inp(
    graph: FeatureGraph,
    settings: Optional[ProjectSettings] = None,
    patterns: Sequence[TimePattern] = (),
    curves: Sequence[Curve] = (),
    controls: Sequence[Control] = (),
    config: Optional[CodecConfig] = None,
) -> InpBuildResult:
    """
    Serialize the graph (+ project records) to .inp text.

    Controls that name a link or node missing from the graph are left out
    and returned in dropped_controls.
    """
    cfg = config or CodecConfig()
    st = settings or ProjectSettings()
    w = cfg.column_width
    dec = cfg.float_decimals

    def num(v):
        return fmt_num(v, dec)

    lines: List[str] = [f";CRS {cfg.working_crs}"]

    # --- TITLE ---
    lines.append("[TITLE]")
    lines.append(st.title)
    if st.description:
        lines.extend(st.description.splitlines())
    lines.append("")

    # --- NODES ---
    lines.append("[JUNCTIONS]")
    lines.append(";" + row("ID", "Elevation", "Demand", "Pattern", width=w - 1))
    for n in graph.nodes("junction"):
        lines.append(row(n.id, num(n.elevation), num(n.base_demand), n.attr("pattern") or "", width=w))
    lines.append("")

    lines.append("[RESERVOIRS]")
    lines.append(";" + row("ID", "Head", "Pattern", width=w - 1))
    for n in graph.nodes("reservoir"):
        head = n.attr("head")
        if head is None:
            head = n.elevation
        lines.append(row(n.id, num(head), n.attr("pattern") or "", width=w))
    lines.append("")

    lines.append("[TANKS]")
    lines.append(";" + row("ID", "Elevation", "InitLevel", "MinLevel", "MaxLevel", "Diameter", "MinVol", "VolCurve", width=w - 1))
    for n in graph.nodes("tank"):
        lines.append(row(
            n.id, num(n.elevation), num(n.attr("init_level")), num(n.attr("min_level")),
            num(n.attr("max_level")), num(n.attr("diameter")), num(n.attr("min_volume")),
            n.attr("volume_curve") or "",
            width=w,
        ))
    lines.append("")

    # --- LINKS ---
    lines.append("[PIPES]")
    lines.append(";" + row("ID", "Node1", "Node2", "Length", "Diameter", "Roughness", "MinorLoss", "Status", width=w - 1))
    for l in graph.links("pipe"):
        lines.append(row(
            l.id, l.source_id, l.target_id, num(l.length), num(l.diameter), num(l.roughness),
            num(l.attr("minor_loss", 0.0)), l.status or "Open",
            width=w,
        ))
    lines.append("")

    lines.append("[PUMPS]")
    lines.append(";" + row("ID", "Node1", "Node2", "Parameters", width=w - 1))
    for l in graph.links("pump"):
        params = [f"HEAD {l.attr('head_curve')}" if l.attr("head_curve") else f"POWER {num(l.attr('power', 50.0))}"]
        if l.attr("speed") is not None:
            params.append(f"SPEED {num(l.attr('speed'))}")
        if l.attr("pattern"):
            params.append(f"PATTERN {l.attr('pattern')}")
        lines.append(row(l.id, l.source_id, l.target_id, " ".join(params), width=w))
    lines.append("")

    lines.append("[VALVES]")
    lines.append(";" + row("ID", "Node1", "Node2", "Diameter", "Type", "Setting", "MinorLoss", width=w - 1))
    for l in graph.links("valve"):
        lines.append(row(
            l.id, l.source_id, l.target_id, num(l.diameter), l.attr("valve_type", "PRV"),
            num(l.attr("setting", 0.0)), num(l.attr("minor_loss", 0.0)),
            width=w,
        ))
    lines.append("")

    # Pipe status lives in [PIPES]; devices only need a row when not default.
    status_rows = [
        row(l.id, l.status, width=w)
        for kind in ("pump", "valve")
        for l in graph.links(kind)
        if l.status and l.status.upper() != _DEFAULT_STATUS[kind]
    ]
    if status_rows:
        lines.append("[STATUS]")
        lines.append(";" + row("ID", "Status/Setting", width=w - 1))
        lines.extend(status_rows)
        lines.append("")

    # --- PATTERNS ---
    pats = list(patterns)
    if not any(p.id == "1" for p in pats):
        pats.append(TimePattern(id="1", multipliers=(1.0,) * cfg.default_pattern_length, description="Default"))

    lines.append("[PATTERNS]")
    lines.append(";" + row("ID", "Multipliers", width=w - 1))
    for p in pats:
        if p.description:
            lines.append(f";{p.description}")
        for chunk in chunks(list(p.multipliers), cfg.pattern_chunk_size):
            lines.append(row(p.id, "  ".join(num(m) for m in chunk), width=w))
    lines.append("")

    # --- CURVES ---
    lines.append("[CURVES]")
    lines.append(";" + row("ID", "X-Value", "Y-Value", width=w - 1))
    for c in curves:
        lines.append(f";{c.type}: {c.description}".rstrip())
        for x, y in c.points:
            lines.append(row(c.id, num(x), num(y), width=w))
    lines.append("")

    # --- CONTROLS ---
    kept, dropped = _filter_controls(graph, controls)
    lines.append("[CONTROLS]")
    for c in kept:
        lines.append(_control_line(c, num))
    lines.append("")
    if dropped:
        logger.warning(
            f"Dropped {len(dropped)} control(s) referencing missing features: {[c.id for c in dropped]}"
        )

    # --- GEOMETRY ---
    lines.append("[COORDINATES]")
    lines.append(";" + row("Node", "X-Coord", "Y-Coord", width=w - 1))
    for n in graph.nodes():
        lines.append(row(n.id, num(n.x), num(n.y), width=w))
    lines.append("")

    lines.append("[VERTICES]")
    lines.append(";" + row("Link", "X-Coord", "Y-Coord", width=w - 1))
    for l in graph.links():
        for x, y in l.interior_vertices:
            lines.append(row(l.id, num(x), num(y), width=w))
    lines.append("")

    # --- OPTIONS / TIMES ---
    lines.append("[OPTIONS]")
    lines.append(key_value("Units", st.flow_units))
    lines.append(key_value("Headloss", st.headloss))
    lines.append(key_value("Specific Gravity", num(st.specific_gravity)))
    lines.append(key_value("Viscosity", num(st.viscosity)))
    lines.append(key_value("Trials", st.trials))
    lines.append(key_value("Accuracy", num(st.accuracy)))
    lines.append(key_value("CHECKFREQ", 2))
    lines.append(key_value("MAXCHECK", 10))
    lines.append(key_value("DAMPLIMIT", 0))
    lines.append(key_value("Unbalanced", "Continue 10"))
    lines.append(key_value("Pattern", st.default_pattern))
    lines.append(key_value("Demand Multiplier", num(st.demand_multiplier)))
    lines.append(key_value("Emitter Exponent", num(st.emitter_exponent)))
    lines.append("")

    lines.append("[TIMES]")
    lines.append(key_value("Duration", st.duration))
    lines.append(key_value("Hydraulic Timestep", st.hydraulic_timestep))
    lines.append(key_value("Pattern Timestep", st.pattern_timestep))
    lines.append(key_value("Report Timestep", st.report_timestep))
    lines.append(key_value("Report Start", st.report_start))
    lines.append(key_value("Start ClockTime", st.start_clocktime))
    lines.append(key_value("Statistic", "None"))
    lines.append("")

    lines.append("[END]")

    logger.info(
        f"Built .inp: {graph.node_count} nodes, {graph.link_count} links, "
        f"{len(pats)} patterns, {len(curves)} curves, {len(kept)} controls"
    )
    return InpBuildResult(text="\n".join(lines) + "\n", dropped_controls=tuple(dropped))


def _filter_controls(graph: FeatureGraph, controls: Sequence[Control]) -> Tuple[List[Control], List[Control]]:
    kept: List[Control] = []
    dropped: List[Control] = []
    for c in controls:
        if not graph.has_link(c.link_id) or (c.node_id and not graph.has_node(c.node_id)):
            dropped.append(c)
        else:
            kept.append(c)
    return kept, dropped


def _control_line(c: Control, num) -> str:
    head = f"LINK {c.link_id} {c.status}"
    if c.type == "TIMER":
        return f"{head} AT TIME {num(c.value)}"
    if c.type == "TIMEOFDAY":
        return f"{head} AT CLOCKTIME {num(c.value)}"
    cond = "BELOW" if c.type == "LOW LEVEL" else "ABOVE"
    return f"{head} IF NODE {c.node_id} {cond} {num(c.value)}"
