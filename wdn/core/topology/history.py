from __future__ import annotations

import logging
from typing import List, Optional

from wdn.core.graph.feature_graph import FeatureGraph

logger = logging.getLogger(__name__)


class HistoryManager:
    """
    Snapshot-based undo/redo over one FeatureGraph.

    snapshot() is a checkpoint the caller takes once per user action,
    before that action mutates the graph. Id counters are not rewound.
    """

    def __init__(self, graph: FeatureGraph, max_depth: Optional[int] = None) -> None:
        if max_depth is not None and max_depth <= 0:
            raise ValueError(f"max_depth debe ser > 0 (recibido {max_depth})")
        self.graph = graph
        self.max_depth = max_depth
        self._past: List[FeatureGraph] = []
        self._future: List[FeatureGraph] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def depth(self) -> int:
        return len(self._past)

    def snapshot(self) -> None:
        self._past.append(self.graph.clone())
        self._future.clear()
        if self.max_depth is not None and len(self._past) > self.max_depth:
            del self._past[0]

    def undo(self) -> bool:
        if not self._past:
            return False
        self._future.append(self.graph.clone())
        self.graph.restore(self._past.pop())
        logger.debug(f"undo: {len(self._past)} left, {len(self._future)} redoable")
        return True

    def redo(self) -> bool:
        if not self._future:
            return False
        self._past.append(self.graph.clone())
        self.graph.restore(self._future.pop())
        logger.debug(f"redo: {len(self._past)} undoable, {len(self._future)} left")
        return True

    def clear(self) -> None:
        self._past.clear()
        self._future.clear()
