from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from wdn.adapters.solver.runner import SimulationResult, run_hydraulics

logger = logging.getLogger(__name__)

# EPANET toolkit codes
_EN_NODECOUNT = 0
_EN_LINKCOUNT = 2
_NODE_CODES = {"demand": 9, "head": 10, "pressure": 11}
_LINK_CODES = {"flow": 8, "velocity": 9, "headloss": 10}
_EN_STATUS = 11


class WntrSession:
    """
    HydraulicSession over WNTR's EPANET toolkit binding.
    Files live in a private temporary directory removed on close().
    """

    def __init__(self, version: float = 2.2) -> None:
        self.version = version
        self._en = None
        self._tmp: Optional[tempfile.TemporaryDirectory] = None
        self._rpt: Optional[Path] = None
        self._node_index: Dict[str, int] = {}
        self._link_index: Dict[str, int] = {}
        self._h_open = False

    def open(self, inp_text: str) -> None:
        from wntr.epanet.toolkit import ENepanet

        try:
            self._open(ENepanet, inp_text)
        except Exception:
            self.close()
            raise

    def _open(self, ENepanet, inp_text: str) -> None:
        self._tmp = tempfile.TemporaryDirectory(prefix="wdn_")
        root = Path(self._tmp.name)
        inp = root / "net.inp"
        self._rpt = root / "report.rpt"
        inp.write_text(inp_text, encoding="utf-8")

        en = ENepanet(version=self.version)
        en.ENopen(str(inp), str(self._rpt), str(root / "out.bin"))
        # only a project that opened gets ENclose
        self._en = en

        n_nodes = self._en.ENgetcount(_EN_NODECOUNT)
        n_links = self._en.ENgetcount(_EN_LINKCOUNT)
        self._node_index = {self._en.ENgetnodeid(i): i for i in range(1, n_nodes + 1)}
        self._link_index = {self._en.ENgetlinkid(i): i for i in range(1, n_links + 1)}

        self._en.ENopenH()
        self._en.ENinitH(0)
        self._h_open = True

    def node_ids(self) -> List[str]:
        return list(self._node_index)

    def link_ids(self) -> List[str]:
        return list(self._link_index)

    def run_step(self) -> float:
        return float(self._en.ENrunH())

    def next_step(self) -> float:
        return float(self._en.ENnextH())

    def node_value(self, node_id: str, quantity: str) -> float:
        return float(self._en.ENgetnodevalue(self._node_index[node_id], _NODE_CODES[quantity]))

    def link_value(self, link_id: str, quantity: str) -> float:
        return float(self._en.ENgetlinkvalue(self._link_index[link_id], _LINK_CODES[quantity]))

    def link_is_open(self, link_id: str) -> bool:
        return int(self._en.ENgetlinkvalue(self._link_index[link_id], _EN_STATUS)) == 1

    def report_text(self) -> str:
        if self._rpt is None or not self._rpt.exists():
            return ""
        return self._rpt.read_text(encoding="utf-8", errors="replace")

    def close(self) -> None:
        if self._en is not None:
            if self._h_open:
                self._en.ENcloseH()
                self._h_open = False
            self._en.ENclose()
            self._en = None
        if self._tmp is not None:
            self._tmp.cleanup()
            self._tmp = None


def run_with_wntr(inp_text: str, version: float = 2.2) -> SimulationResult:
    """Requires the `solver` extra (wntr)."""
    logger.info(f"Running hydraulics with WNTR EPANET toolkit {version}")
    return run_hydraulics(inp_text, WntrSession(version=version))
