from __future__ import annotations

import re
from typing import Callable, Dict, Iterable, Mapping, Optional

from wdn.core.models.catalog import COMPONENT_TYPES, prefix_for

_SUFFIX = re.compile(r"(\d+)$")


def numeric_suffix(feature_id: str) -> Optional[int]:
    """'J-12' -> 12, 'Node7' -> 7, 'outlet' -> None."""
    m = _SUFFIX.search(str(feature_id))
    return int(m.group(1)) if m else None


class IdGenerator:
    """
    Per-kind monotonic ids: J-1, J-2, ..., P-1, PU-1, V-1.

    Counters only move forward (ids are never reused, even after undo).
    `exists` is consulted for every candidate so a fresh id never collides
    with an imported one that does not follow the prefix convention.
    """

    def __init__(self, exists: Optional[Callable[[str], bool]] = None) -> None:
        self._counters: Dict[str, int] = {kind: 0 for kind in COMPONENT_TYPES}
        self._exists = exists

    def bind(self, exists: Callable[[str], bool]) -> None:
        self._exists = exists

    def peek(self, kind: str) -> int:
        return self._counters.get(kind, 0)

    def next_id(self, kind: str) -> str:
        prefix = prefix_for(kind)
        n = self._counters.get(kind, 0)
        while True:
            n += 1
            candidate = f"{prefix}-{n}"
            if self._exists is None or not self._exists(candidate):
                break
        self._counters[kind] = n
        return candidate

    def seed_from(self, ids_by_kind: Mapping[str, Iterable[str]]) -> None:
        """Advance each counter past the highest numeric suffix seen for that kind."""
        for kind, ids in ids_by_kind.items():
            top = self._counters.get(kind, 0)
            for fid in ids:
                n = numeric_suffix(fid)
                if n is not None and n > top:
                    top = n
            self._counters[kind] = top

    def reset(self) -> None:
        for k in self._counters:
            self._counters[k] = 0
