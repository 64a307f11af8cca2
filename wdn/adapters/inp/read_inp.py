from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from wdn.core.build.config import CodecConfig
from wdn.core.geometry.crs import CrsGuess, guess_source_crs, normalize_crs, to_working
from wdn.core.graph.factory import RecordFactory
from wdn.core.graph.feature_graph import FeatureGraph
from wdn.core.graph.ids import IdGenerator
from wdn.core.models.link import Link
from wdn.core.models.node import Node
from wdn.core.models.project import (
    CONTROL_STATUSES,
    Control,
    Curve,
    ProjectSettings,
    TimePattern,
)
from wdn.adapters.inp.sections import (
    KNOWN_SECTIONS,
    OPTION_KEYS,
    TIME_KEYS,
    InpParseError,
    Row,
    curve_type_comment,
    find_crs_comment,
    parse_hours,
    parse_key_values,
    split_sections,
)

logger = logging.getLogger(__name__)

_PUMP_KEYWORDS = {"HEAD": "head_curve", "POWER": "power", "SPEED": "speed", "PATTERN": "pattern"}
_PIPE_STATUSES = {"OPEN": "Open", "CLOSED": "Closed", "CV": "CV"}


@dataclass(frozen=True)
class ParsedInp:
    graph: FeatureGraph
    settings: ProjectSettings
    patterns: Tuple[TimePattern, ...]
    curves: Tuple[Curve, ...]
    controls: Tuple[Control, ...]
    crs: CrsGuess
    diagnostics: Tuple[str, ...] = field(default_factory=tuple)


# ============================================================
# Row helpers
# ============================================================

def _need(section: str, r: Row, n: int) -> None:
    if len(r.tokens) < n:
        raise InpParseError(section, r.lineno, r.raw, f"expected at least {n} columns, got {len(r.tokens)}")


def _float(section: str, r: Row, idx: int, what: str) -> float:
    try:
        return float(r.tokens[idx])
    except (IndexError, ValueError) as e:
        tok = r.tokens[idx] if idx < len(r.tokens) else None
        raise InpParseError(section, r.lineno, r.raw, f"invalid number for {what}: {tok!r}") from e


def _opt_float(section: str, r: Row, idx: int, what: str, default: Optional[float]) -> Optional[float]:
    if idx >= len(r.tokens):
        return default
    return _float(section, r, idx, what)


def _opt_str(r: Row, idx: int) -> Optional[str]:
    return r.tokens[idx] if idx < len(r.tokens) else None


def _data_rows(rows: Sequence[Row]) -> List[Row]:
    return [r for r in rows if r.tokens]


# ============================================================
# Entry point
# ============================================================

def read_inp(text: str, source_crs: Optional[str] = None, config: Optional[CodecConfig] = None) -> ParsedInp:
    """
    Parse .inp text into a graph plus project records.

    Source CRS: explicit argument > ';CRS' header comment > magnitude
    heuristic > working projection. Malformed rows raise InpParseError;
    nodes without coordinates (and links attached to them) and unknown
    sections are skipped and listed in diagnostics.
    """
    cfg = config or CodecConfig()
    diagnostics: List[str] = []

    sections = split_sections(text)
    if not sections:
        raise InpParseError("-", 0, text[:80], "no [SECTION] headers found")

    for name in sections:
        if name not in KNOWN_SECTIONS:
            diagnostics.append(f"Section [{name}] is not supported and was ignored")

    options = parse_key_values(sections.get("OPTIONS", []), OPTION_KEYS)
    times = parse_key_values(sections.get("TIMES", []), TIME_KEYS)

    # --- Coordinates first ---
    coords = _parse_xy_map("COORDINATES", sections.get("COORDINATES", []), single=True)
    verts = _parse_xy_map("VERTICES", sections.get("VERTICES", []), single=False)

    crs = _resolve_crs(text, source_crs, coords, cfg)
    coords, verts = _reproject(coords, verts, crs.crs, cfg.working_crs, diagnostics)

    settings = _settings(options, times, sections.get("TITLE", []), crs.crs)

    # --- Nodes ---
    factory = RecordFactory(FeatureGraph(), IdGenerator())
    nodes: Dict[str, Node] = {}
    declared: Set[str] = set()

    def add_node(section: str, r: Row, kind: str, **attrs: Any) -> None:
        nid = r.tokens[0]
        if nid in declared:
            raise InpParseError(section, r.lineno, r.raw, f"duplicate node id {nid!r}")
        declared.add(nid)
        pos = coords.get(nid)
        if pos is None:
            diagnostics.append(f"Node {nid} has no coordinates and was skipped")
            return
        nodes[nid] = factory.create_node(kind, pos, id=nid, **attrs)

    for r in _data_rows(sections.get("JUNCTIONS", [])):
        _need("JUNCTIONS", r, 2)
        attrs: Dict[str, Any] = {
            "elevation": _float("JUNCTIONS", r, 1, "elevation"),
            "base_demand": _opt_float("JUNCTIONS", r, 2, "demand", 0.0),
        }
        if _opt_str(r, 3):
            attrs["pattern"] = r.tokens[3]
        add_node("JUNCTIONS", r, "junction", **attrs)

    for r in _data_rows(sections.get("RESERVOIRS", [])):
        _need("RESERVOIRS", r, 2)
        attrs = {"head": _float("RESERVOIRS", r, 1, "head")}
        if _opt_str(r, 2):
            attrs["pattern"] = r.tokens[2]
        add_node("RESERVOIRS", r, "reservoir", **attrs)

    for r in _data_rows(sections.get("TANKS", [])):
        _need("TANKS", r, 6)
        attrs = {
            "elevation": _float("TANKS", r, 1, "elevation"),
            "init_level": _float("TANKS", r, 2, "init level"),
            "min_level": _float("TANKS", r, 3, "min level"),
            "max_level": _float("TANKS", r, 4, "max level"),
            "diameter": _float("TANKS", r, 5, "diameter"),
            "min_volume": _opt_float("TANKS", r, 6, "min volume", 0.0),
        }
        vcurve = _opt_str(r, 7)
        if vcurve and vcurve != "*":
            attrs["volume_curve"] = vcurve
        add_node("TANKS", r, "tank", **attrs)

    # --- Links ---
    status_by_id = _parse_status(sections.get("STATUS", []))
    links: Dict[str, Link] = {}

    def add_link(section: str, r: Row, kind: str, **attrs: Any) -> None:
        lid, n1, n2 = r.tokens[0], r.tokens[1], r.tokens[2]
        if lid in links:
            raise InpParseError(section, r.lineno, r.raw, f"duplicate link id {lid!r}")
        for nid in (n1, n2):
            if nid not in declared:
                raise InpParseError(section, r.lineno, r.raw, f"link {lid} references undeclared node {nid!r}")
        if n1 not in nodes or n2 not in nodes:
            diagnostics.append(f"Link {lid} is attached to a node without coordinates and was skipped")
            return
        if lid in declared:
            diagnostics.append(f"Id {lid} is used by both a node and a link")
        if lid in status_by_id:
            attrs["status"] = status_by_id[lid]

        path = [nodes[n1].position, *verts.get(lid, []), nodes[n2].position]
        links[lid] = factory.create_link(kind, nodes[n1], nodes[n2], vertices=path, id=lid, **attrs)

    for r in _data_rows(sections.get("PIPES", [])):
        _need("PIPES", r, 6)
        raw_status = (_opt_str(r, 7) or "Open").upper()
        if raw_status not in _PIPE_STATUSES:
            raise InpParseError("PIPES", r.lineno, r.raw, f"unsupported pipe status {raw_status!r}")
        add_link(
            "PIPES", r, "pipe",
            length=_float("PIPES", r, 3, "length"),
            diameter=_float("PIPES", r, 4, "diameter"),
            roughness=_float("PIPES", r, 5, "roughness"),
            minor_loss=_opt_float("PIPES", r, 6, "minor loss", 0.0),
            status=_PIPE_STATUSES[raw_status],
        )

    for r in _data_rows(sections.get("PUMPS", [])):
        _need("PUMPS", r, 3)
        add_link("PUMPS", r, "pump", **_pump_params(r))

    for r in _data_rows(sections.get("VALVES", [])):
        _need("VALVES", r, 6)
        add_link(
            "VALVES", r, "valve",
            diameter=_float("VALVES", r, 3, "diameter"),
            valve_type=r.tokens[4].upper(),
            setting=_float("VALVES", r, 5, "setting"),
            minor_loss=_opt_float("VALVES", r, 6, "minor loss", 0.0),
        )

    for lid in verts:
        if lid not in links:
            diagnostics.append(f"Vertices for unknown link {lid} were ignored")

    # --- Project records ---
    patterns = _parse_patterns(sections.get("PATTERNS", []))
    curves = _parse_curves(sections.get("CURVES", []))
    controls = _parse_controls(sections.get("CONTROLS", []))

    for c in controls:
        if c.link_id not in links or (c.node_id and c.node_id not in nodes):
            diagnostics.append(f"Control {c.id} references a missing link or node")

    graph = FeatureGraph()
    graph.load(nodes.values(), links.values())

    for d in diagnostics:
        logger.warning(d)
    logger.info(
        f"Parsed .inp: {graph.node_count} nodes, {graph.link_count} links, {len(patterns)} patterns, "
        f"{len(curves)} curves, {len(controls)} controls (source CRS {crs.crs}, guessed={crs.detected})"
    )

    return ParsedInp(
        graph=graph,
        settings=settings,
        patterns=tuple(patterns),
        curves=tuple(curves),
        controls=tuple(controls),
        crs=crs,
        diagnostics=tuple(diagnostics),
    )


def seed_ids(parsed: ParsedInp, ids: IdGenerator) -> None:
    """Advance per-kind counters past every imported id."""
    by_kind: Dict[str, List[str]] = {}
    for n in parsed.graph.nodes():
        by_kind.setdefault(n.kind, []).append(n.id)
    for l in parsed.graph.links():
        by_kind.setdefault(l.kind, []).append(l.id)
    ids.seed_from(by_kind)


# ============================================================
# Sections
# ============================================================

def _parse_xy_map(section: str, rows: Sequence[Row], *, single: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for r in _data_rows(rows):
        _need(section, r, 3)
        xy = (_float(section, r, 1, "x"), _float(section, r, 2, "y"))
        if single:
            out[r.tokens[0]] = xy
        else:
            out.setdefault(r.tokens[0], []).append(xy)
    return out


def _resolve_crs(text: str, source_crs: Optional[str], coords: Dict[str, Tuple[float, float]], cfg: CodecConfig) -> CrsGuess:
    if source_crs:
        return CrsGuess(normalize_crs(source_crs), False, "declared by caller")

    declared = find_crs_comment(text)
    if declared:
        try:
            return CrsGuess(normalize_crs(declared), False, "declared in file header")
        except ValueError as e:
            raise InpParseError("-", 0, f";CRS {declared}", "unknown CRS in header") from e

    if not coords:
        return CrsGuess(normalize_crs(cfg.working_crs), False, "no coordinates")

    xy = np.array(list(coords.values()), dtype=float)
    return guess_source_crs(xy[:, 0], xy[:, 1], working_crs=normalize_crs(cfg.working_crs))


def _reproject(
    coords: Dict[str, Tuple[float, float]],
    verts: Dict[str, List[Tuple[float, float]]],
    src: str,
    working: str,
    diagnostics: List[str],
) -> Tuple[Dict[str, Tuple[float, float]], Dict[str, List[Tuple[float, float]]]]:
    if normalize_crs(src) == normalize_crs(working):
        return coords, verts

    def convert(points: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
        if not points:
            return []
        arr = np.asarray(points, dtype=float)
        x, y = to_working(arr[:, 0], arr[:, 1], src, working)
        return [(float(a), float(b)) for a, b in zip(x, y)]

    ids = list(coords.keys())
    out_coords: Dict[str, Tuple[float, float]] = {}
    for nid, (x, y) in zip(ids, convert([coords[i] for i in ids])):
        if np.isfinite(x) and np.isfinite(y):
            out_coords[nid] = (x, y)
        else:
            diagnostics.append(f"Coordinates of node {nid} could not be reprojected from {src}")

    out_verts: Dict[str, List[Tuple[float, float]]] = {}
    for lid, pts in verts.items():
        conv = [p for p in convert(pts) if np.isfinite(p[0]) and np.isfinite(p[1])]
        if len(conv) != len(pts):
            diagnostics.append(f"{len(pts) - len(conv)} vertex(es) of link {lid} could not be reprojected")
        out_verts[lid] = conv

    return out_coords, out_verts


def _settings(options: Dict[str, str], times: Dict[str, str], title_rows: Sequence[Row], crs: str) -> ProjectSettings:
    title_lines = [r.raw.strip() for r in title_rows if r.tokens]
    cfg: Dict[str, Any] = {
        "title": title_lines[0] if title_lines else None,
        "description": "\n".join(title_lines[1:]) or None,
        "flow_units": options.get("UNITS"),
        "headloss": options.get("HEADLOSS"),
        "specific_gravity": options.get("SPECIFIC GRAVITY"),
        "viscosity": options.get("VISCOSITY"),
        "trials": options.get("TRIALS"),
        "accuracy": options.get("ACCURACY"),
        "demand_multiplier": options.get("DEMAND MULTIPLIER"),
        "emitter_exponent": options.get("EMITTER EXPONENT"),
        "default_pattern": options.get("PATTERN"),
        "duration": times.get("DURATION"),
        "hydraulic_timestep": times.get("HYDRAULIC TIMESTEP"),
        "pattern_timestep": times.get("PATTERN TIMESTEP"),
        "report_timestep": times.get("REPORT TIMESTEP"),
        "report_start": times.get("REPORT START"),
        "start_clocktime": times.get("START CLOCKTIME"),
        "projection": crs,
    }
    try:
        return ProjectSettings.from_dict(cfg)
    except ValueError as e:
        raise InpParseError("OPTIONS", 0, "", str(e)) from e


def _parse_status(rows: Sequence[Row]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for r in _data_rows(rows):
        _need("STATUS", r, 2)
        value = r.tokens[1].upper()
        if value not in CONTROL_STATUSES:
            raise InpParseError("STATUS", r.lineno, r.raw, f"unsupported status {r.tokens[1]!r}")
        out[r.tokens[0]] = value.capitalize()
    return out


def _pump_params(r: Row) -> Dict[str, Any]:
    rest = r.tokens[3:]
    if len(rest) % 2:
        raise InpParseError("PUMPS", r.lineno, r.raw, "pump parameters must be KEYWORD value pairs")

    attrs: Dict[str, Any] = {}
    for i in range(0, len(rest), 2):
        key = rest[i].upper()
        field_name = _PUMP_KEYWORDS.get(key)
        if field_name is None:
            raise InpParseError("PUMPS", r.lineno, r.raw, f"unknown pump keyword {rest[i]!r}")
        if key in ("POWER", "SPEED"):
            attrs[field_name] = _float("PUMPS", r, 3 + i + 1, key.lower())
        else:
            attrs[field_name] = rest[i + 1]
    return attrs


def _is_header_comment(comment: str) -> bool:
    first = comment.split()[0].upper() if comment.split() else ""
    return first == "ID"


def _parse_patterns(rows: Sequence[Row]) -> List[TimePattern]:
    order: List[str] = []
    values: Dict[str, List[float]] = {}
    descriptions: Dict[str, str] = {}
    pending = ""

    for r in rows:
        if not r.tokens:
            if r.comment and not _is_header_comment(r.comment):
                pending = r.comment
            continue
        _need("PATTERNS", r, 2)
        pid = r.tokens[0]
        if pid not in values:
            order.append(pid)
            values[pid] = []
            descriptions[pid] = pending
        pending = ""
        values[pid].extend(_float("PATTERNS", r, i, "multiplier") for i in range(1, len(r.tokens)))

    return [TimePattern(id=p, multipliers=tuple(values[p]), description=descriptions[p]) for p in order]


def _parse_curves(rows: Sequence[Row]) -> List[Curve]:
    order: List[str] = []
    points: Dict[str, List[Tuple[float, float]]] = {}
    meta: Dict[str, Tuple[str, str]] = {}
    pending: Optional[Tuple[str, str]] = None

    for r in rows:
        if not r.tokens:
            tagged = curve_type_comment(r.comment)
            if tagged is not None:
                pending = tagged
            continue
        _need("CURVES", r, 3)
        cid = r.tokens[0]
        if cid not in points:
            order.append(cid)
            points[cid] = []
            meta[cid] = pending or ("PUMP", "")
        pending = None
        points[cid].append((_float("CURVES", r, 1, "x"), _float("CURVES", r, 2, "y")))

    return [Curve(id=c, type=meta[c][0], points=tuple(points[c]), description=meta[c][1]) for c in order]


def _parse_controls(rows: Sequence[Row]) -> List[Control]:
    """
    Simple controls:
      LINK id STATUS AT TIME t
      LINK id STATUS AT CLOCKTIME t [AM|PM]
      LINK id STATUS IF NODE n BELOW|ABOVE v
    """
    out: List[Control] = []
    for r in _data_rows(rows):
        t = [tok.upper() for tok in r.tokens]

        def bad(reason: str) -> InpParseError:
            return InpParseError("CONTROLS", r.lineno, r.raw, reason)

        if len(t) < 6 or t[0] != "LINK":
            raise bad("unknown control syntax")
        link_id, status = r.tokens[1], t[2]
        if status not in CONTROL_STATUSES:
            raise bad(f"unsupported control status {r.tokens[2]!r}")

        cid = f"C-{len(out) + 1}"
        if t[3] == "AT" and t[4] in ("TIME", "CLOCKTIME"):
            try:
                hours = parse_hours(r.tokens[5:7])
            except ValueError as e:
                raise bad(str(e)) from e
            ctype = "TIMER" if t[4] == "TIME" else "TIMEOFDAY"
            out.append(Control(id=cid, link_id=link_id, status=status, type=ctype, value=hours))
        elif t[3] == "IF" and t[4] == "NODE" and len(t) >= 8 and t[6] in ("BELOW", "ABOVE"):
            value = _float("CONTROLS", r, 7, "control level")
            ctype = "LOW LEVEL" if t[6] == "BELOW" else "HI LEVEL"
            out.append(Control(id=cid, link_id=link_id, status=status, type=ctype, value=value, node_id=r.tokens[5]))
        else:
            raise bad("unknown control syntax")
    return out
