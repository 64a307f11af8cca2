from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

# Order in which the writer emits sections.
SECTION_ORDER: Tuple[str, ...] = (
    "TITLE",
    "JUNCTIONS",
    "RESERVOIRS",
    "TANKS",
    "PIPES",
    "PUMPS",
    "VALVES",
    "STATUS",
    "PATTERNS",
    "CURVES",
    "CONTROLS",
    "COORDINATES",
    "VERTICES",
    "OPTIONS",
    "TIMES",
    "END",
)

KNOWN_SECTIONS = frozenset(SECTION_ORDER)

OPTION_KEYS: Tuple[str, ...] = (
    "UNITS", "HEADLOSS", "HYDRAULICS", "QUALITY", "VISCOSITY", "DIFFUSIVITY",
    "SPECIFIC GRAVITY", "TRIALS", "ACCURACY", "UNBALANCED", "PATTERN",
    "DEMAND MULTIPLIER", "DEMAND MODEL", "EMITTER EXPONENT", "TOLERANCE", "MAP",
    "CHECKFREQ", "MAXCHECK", "DAMPLIMIT", "MINIMUM PRESSURE", "REQUIRED PRESSURE",
    "PRESSURE EXPONENT", "HEADERROR", "FLOWCHANGE",
)

TIME_KEYS: Tuple[str, ...] = (
    "DURATION", "HYDRAULIC TIMESTEP", "QUALITY TIMESTEP", "RULE TIMESTEP",
    "PATTERN TIMESTEP", "PATTERN START", "REPORT TIMESTEP", "REPORT START",
    "START CLOCKTIME", "STATISTIC",
)

_CRS_COMMENT = re.compile(r"^\s*;\s*CRS\s*[:=]?\s*(\S+)", re.IGNORECASE | re.MULTILINE)
_CURVE_TYPE_COMMENT = re.compile(r"^\s*(PUMP|EFFICIENCY|VOLUME|HEADLOSS)\s*:\s*(.*)$", re.IGNORECASE)


@dataclass(frozen=True)
class Row:
    lineno: int                 # 1-based line in the source text
    tokens: Tuple[str, ...]
    comment: str = ""           # text after ';' (comment-only rows have no tokens)
    raw: str = ""


class InpParseError(ValueError):
    """Malformed .inp content; nothing is returned when this is raised."""

    def __init__(self, section: str, lineno: int, row: str, reason: str):
        self.section = section
        self.lineno = lineno
        self.row = row
        self.reason = reason
        super().__init__(f"[{section}] line {lineno}: {reason}: {row.strip()!r}")


# ============================================================
# Reading helpers
# ============================================================

def split_sections(text: str) -> Dict[str, List[Row]]:
    """
    Bracket sections -> rows. Section names are upper-cased; rows before
    the first header are ignored. Comment-only rows are kept (tokens=()).
    """
    sections: Dict[str, List[Row]] = {}
    current: Optional[str] = None

    for i, line in enumerate(text.splitlines(), start=1):
        body, _, comment = line.partition(";")
        body = body.strip()

        if body.startswith("[") and body.endswith("]"):
            current = body[1:-1].strip().upper()
            sections.setdefault(current, [])
            continue
        if current is None:
            continue
        if not body and not comment.strip():
            continue

        sections[current].append(Row(lineno=i, tokens=tuple(body.split()), comment=comment.strip(), raw=line))

    return sections


def find_crs_comment(text: str) -> Optional[str]:
    m = _CRS_COMMENT.search(text)
    return m.group(1) if m else None


def curve_type_comment(comment: str) -> Optional[Tuple[str, str]]:
    """';PUMP: Pump curve for P-1' -> ('PUMP', 'Pump curve for P-1')."""
    m = _CURVE_TYPE_COMMENT.match(comment or "")
    if not m:
        return None
    return m.group(1).upper(), m.group(2).strip()


def parse_key_values(rows: Sequence[Row], known: Sequence[str]) -> Dict[str, str]:
    """
    OPTIONS/TIMES rows -> {KEY: value}. Keys may span two words
    ("SPECIFIC GRAVITY"); values may span several ("12:00 AM", "Continue 10").
    """
    out: Dict[str, str] = {}
    known_set = set(known)
    for r in rows:
        if not r.tokens:
            continue
        upper = [t.upper() for t in r.tokens]
        if len(upper) >= 2 and f"{upper[0]} {upper[1]}" in known_set:
            key, value = f"{upper[0]} {upper[1]}", r.tokens[2:]
        else:
            key, value = upper[0], r.tokens[1:]
        out[key] = " ".join(value)
    return out


def parse_hours(tokens: Sequence[str]) -> float:
    """
    Time value in hours: '6', '6.5', '6:30', '6:30:15', '6 PM', '6:30 AM'.
    Raises ValueError on anything else.
    """
    if not tokens:
        raise ValueError("empty time")
    s = tokens[0]
    suffix = tokens[1].upper() if len(tokens) > 1 else ""

    parts = s.split(":")
    if len(parts) > 3:
        raise ValueError(f"bad time {s!r}")
    nums = [float(p) for p in parts]
    hours = nums[0] + (nums[1] / 60.0 if len(nums) > 1 else 0.0) + (nums[2] / 3600.0 if len(nums) > 2 else 0.0)

    if suffix in ("AM", "PM"):
        if hours >= 13 or hours < 0:
            raise ValueError(f"bad clock time {s} {suffix}")
        if hours >= 12:
            hours -= 12
        if suffix == "PM":
            hours += 12
    elif suffix:
        raise ValueError(f"bad time suffix {suffix!r}")

    if not math.isfinite(hours):
        raise ValueError(f"bad time {s!r}")
    return hours


# ============================================================
# Writing helpers
# ============================================================

def fmt_num(value: Any, decimals: int = 6) -> str:
    """6 decimals, trailing zeros stripped: 10.0 -> '10', 0.0015 -> '0.0015'."""
    if value is None:
        return "0"
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    try:
        v = float(value)
    except (TypeError, ValueError):
        return str(value)
    if not math.isfinite(v):
        return "0"
    s = f"{v:.{decimals}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return "0" if s in ("-0", "") else s


def pad(value: Any, width: int = 16) -> str:
    s = "0" if value is None else str(value)
    return s + " " if len(s) >= width else s.ljust(width)


def row(*cols: Any, width: int = 16) -> str:
    """Fixed-width row; the last column is not padded."""
    if not cols:
        return ""
    head = "".join(pad(c, width) + " " for c in cols[:-1])
    return (head + ("" if cols[-1] is None else str(cols[-1]))).rstrip()


def key_value(key: str, value: Any) -> str:
    return f"{key:<19}{value}".rstrip()


def chunks(values: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [values[i:i + size] for i in range(0, len(values), size)]
