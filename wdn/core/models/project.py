from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Tuple

FlowUnits = Literal["CFS", "GPM", "MGD", "IMGD", "AFD", "LPS", "LPM", "MLD", "CMH", "CMD"]
HeadlossFormula = Literal["H-W", "D-W", "C-M"]
CurveType = Literal["PUMP", "EFFICIENCY", "VOLUME", "HEADLOSS"]
ControlStatus = Literal["OPEN", "CLOSED", "ACTIVE"]
ControlType = Literal["TIMER", "TIMEOFDAY", "LOW LEVEL", "HI LEVEL"]

FLOW_UNITS = ("CFS", "GPM", "MGD", "IMGD", "AFD", "LPS", "LPM", "MLD", "CMH", "CMD")
HEADLOSS_FORMULAS = ("H-W", "D-W", "C-M")
CURVE_TYPES = ("PUMP", "EFFICIENCY", "VOLUME", "HEADLOSS")
CONTROL_STATUSES = ("OPEN", "CLOSED", "ACTIVE")
CONTROL_TYPES = ("TIMER", "TIMEOFDAY", "LOW LEVEL", "HI LEVEL")


# ============================================================
# ProjectSettings ([TITLE], [OPTIONS], [TIMES])
# ============================================================

@dataclass(frozen=True)
class ProjectSettings:
    """
    Project-wide hydraulic options and time settings.

    Times are kept as the solver writes them ("24:00", "1:00", "12:00 AM").
    projection is the CRS the source coordinates were declared in.
    """
    title: str = "Untitled Project"
    description: str = ""

    flow_units: FlowUnits = "GPM"
    headloss: HeadlossFormula = "H-W"
    specific_gravity: float = 1.0
    viscosity: float = 1.0
    trials: int = 40
    accuracy: float = 0.001
    demand_multiplier: float = 1.0
    emitter_exponent: float = 0.5
    default_pattern: str = "1"

    duration: str = "24:00"
    hydraulic_timestep: str = "1:00"
    pattern_timestep: str = "1:00"
    report_timestep: str = "1:00"
    report_start: str = "0:00"
    start_clocktime: str = "12:00 AM"

    projection: str = "EPSG:3857"

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "ProjectSettings":
        d = ProjectSettings()

        def pick(*keys: str, default: Any) -> Any:
            for k in keys:
                v = cfg.get(k)
                if v is not None and not (isinstance(v, str) and v.strip() == ""):
                    return v
            return default

        out = ProjectSettings(
            title=str(pick("title", "name", default=d.title)),
            description=str(pick("description", default=d.description)),
            flow_units=str(pick("flow_units", "units", default=d.flow_units)).strip().upper(),
            headloss=str(pick("headloss", "headloss_formula", default=d.headloss)).strip().upper(),
            specific_gravity=float(pick("specific_gravity", "specificGravity", default=d.specific_gravity)),
            viscosity=float(pick("viscosity", default=d.viscosity)),
            trials=int(float(pick("trials", "max_trials", "maxTrials", default=d.trials))),
            accuracy=float(pick("accuracy", default=d.accuracy)),
            demand_multiplier=float(pick("demand_multiplier", "demandMultiplier", default=d.demand_multiplier)),
            emitter_exponent=float(pick("emitter_exponent", "emitterExponent", default=d.emitter_exponent)),
            default_pattern=str(pick("default_pattern", "pattern", "defaultPattern", default=d.default_pattern)),
            duration=str(pick("duration", default=d.duration)),
            hydraulic_timestep=str(pick("hydraulic_timestep", "hydraulicStep", "time_step", default=d.hydraulic_timestep)),
            pattern_timestep=str(pick("pattern_timestep", "patternStep", default=d.pattern_timestep)),
            report_timestep=str(pick("report_timestep", "reportStep", default=d.report_timestep)),
            report_start=str(pick("report_start", "reportStart", default=d.report_start)),
            start_clocktime=str(pick("start_clocktime", "startClock", default=d.start_clocktime)),
            projection=str(pick("projection", "crs", default=d.projection)),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if self.flow_units not in FLOW_UNITS:
            raise ValueError(f"ProjectSettings.flow_units inválido: {self.flow_units!r}")
        if self.headloss not in HEADLOSS_FORMULAS:
            raise ValueError(f"ProjectSettings.headloss inválido: {self.headloss!r}")
        if self.specific_gravity <= 0:
            raise ValueError(f"ProjectSettings.specific_gravity debe ser > 0 (recibido {self.specific_gravity})")
        if self.viscosity <= 0:
            raise ValueError(f"ProjectSettings.viscosity debe ser > 0 (recibido {self.viscosity})")
        if self.trials <= 0:
            raise ValueError(f"ProjectSettings.trials debe ser > 0 (recibido {self.trials})")
        if not (0.0 < self.accuracy < 1.0):
            raise ValueError(f"ProjectSettings.accuracy fuera de rango: {self.accuracy}")
        if self.demand_multiplier < 0:
            raise ValueError(f"ProjectSettings.demand_multiplier debe ser >= 0 (recibido {self.demand_multiplier})")


# ============================================================
# TimePattern / Curve / Control
# ============================================================

@dataclass(frozen=True)
class TimePattern:
    id: str
    multipliers: Tuple[float, ...] = ()
    description: str = ""

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "TimePattern":
        out = TimePattern(
            id=str(cfg.get("id", "")).strip(),
            multipliers=tuple(float(v) for v in cfg.get("multipliers", cfg.get("values", ()))),
            description=str(cfg.get("description", "") or ""),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if not self.id:
            raise ValueError("TimePattern.id vacío")
        if not self.multipliers:
            raise ValueError(f"TimePattern({self.id}) sin multiplicadores")
        if any(not math.isfinite(m) or m < 0 for m in self.multipliers):
            raise ValueError(f"TimePattern({self.id}) tiene multiplicadores inválidos")


@dataclass(frozen=True)
class Curve:
    """
    X-Y curve. PUMP curves are flow vs head, VOLUME curves depth vs volume,
    HEADLOSS curves flow vs headloss (GPV), EFFICIENCY flow vs efficiency.
    """
    id: str
    type: CurveType = "PUMP"
    points: Tuple[Tuple[float, float], ...] = ()
    description: str = ""

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "Curve":
        raw = cfg.get("points", ())
        pts = []
        for p in raw:
            if isinstance(p, dict):
                pts.append((float(p["x"]), float(p["y"])))
            else:
                pts.append((float(p[0]), float(p[1])))

        out = Curve(
            id=str(cfg.get("id", "")).strip(),
            type=str(cfg.get("type", cfg.get("curve_type", "PUMP"))).strip().upper(),
            points=tuple(pts),
            description=str(cfg.get("description", "") or ""),
        )
        out.validate()
        return out

    def validate(self) -> None:
        if not self.id:
            raise ValueError("Curve.id vacío")
        if self.type not in CURVE_TYPES:
            raise ValueError(f"Curve({self.id}).type inválido: {self.type!r}")
        if not self.points:
            raise ValueError(f"Curve({self.id}) sin puntos")


@dataclass(frozen=True)
class Control:
    """
    Simple control on a link.

    Notes:
    - TIMER: value is hours since simulation start
    - TIMEOFDAY: value is a clock time in decimal hours (0-24)
    - LOW LEVEL / HI LEVEL: value is the node pressure/level threshold; node_id required
    """
    id: str
    link_id: str
    status: ControlStatus
    type: ControlType
    value: float
    node_id: Optional[str] = None

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "Control":
        node_id = cfg.get("node_id", cfg.get("nodeId"))
        out = Control(
            id=str(cfg.get("id", "")).strip(),
            link_id=str(cfg.get("link_id", cfg.get("linkId", ""))).strip(),
            status=str(cfg.get("status", "OPEN")).strip().upper(),
            type=str(cfg.get("type", "TIMER")).strip().upper(),
            value=float(cfg.get("value", 0.0)),
            node_id=str(node_id).strip() if node_id else None,
        )
        out.validate()
        return out

    @property
    def needs_node(self) -> bool:
        return self.type in ("LOW LEVEL", "HI LEVEL")

    def validate(self) -> None:
        if not self.link_id:
            raise ValueError(f"Control({self.id}) sin link_id")
        if self.status not in CONTROL_STATUSES:
            raise ValueError(f"Control({self.id}).status inválido: {self.status!r}")
        if self.type not in CONTROL_TYPES:
            raise ValueError(f"Control({self.id}).type inválido: {self.type!r}")
        if self.needs_node and not self.node_id:
            raise ValueError(f"Control({self.id}) de tipo {self.type} requiere node_id")
        if not math.isfinite(self.value):
            raise ValueError(f"Control({self.id}).value no es finito")
