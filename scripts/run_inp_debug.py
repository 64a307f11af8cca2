import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import pandas as pd

from wdn.adapters.inp.read_inp import read_inp
from wdn.adapters.inp.write_inp import build_inp
from wdn.adapters.persistence.export import export_features_excel, links_frame
from wdn.core.topology.validate import summarize, validate_network


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("run_inp_debug")

parser = argparse.ArgumentParser(description="Read an .inp file, validate it and write it back.")
parser.add_argument("inp", help="input .inp file")
parser.add_argument("--crs", default=None, help="source CRS of the coordinates (default: header or guess)")
parser.add_argument("--out", default=None, help="output .inp path (default: <input>_out.inp)")
parser.add_argument("--xlsx", default=None, help="optional attribute table workbook")
args = parser.parse_args()

# ==========================
# 1) Leer INP
# ==========================
src = Path(args.inp)
parsed = read_inp(src.read_text(encoding="utf-8", errors="replace"), source_crs=args.crs)
graph = parsed.graph

logger.info(f"CRS: {parsed.crs.crs} (detected={parsed.crs.detected}, {parsed.crs.reason})")
for d in parsed.diagnostics:
    logger.warning(d)

# ==========================
# 2) Validar
# ==========================
summary = summarize(validate_network(graph))
print("\n--- Validación ---")
print("valid:", summary.is_valid, "| errors:", len(summary.errors), "| warnings:", len(summary.warnings))
for issue in summary.errors + summary.warnings:
    print(f"[{issue.severity}] {issue.code}: {issue.message}")

# ==========================
# 3) Resumen por tipo
# ==========================
print("\n--- Elementos ---")
for kind in ("junction", "reservoir", "tank"):
    print(f"{kind:<10}", len(graph.nodes(kind)))
for kind in ("pipe", "pump", "valve"):
    print(f"{kind:<10}", len(graph.links(kind)))

df = links_frame(graph)
if not df.empty:
    pipes = df[df["kind"] == "pipe"]
    print("\nlongitud total tuberías [m]:", float(pd.to_numeric(pipes["length"]).sum()))
    print(pipes[["id", "source_id", "target_id", "length", "diameter"]].head(20).to_string(index=False))

# ==========================
# 4) Escribir de vuelta
# ==========================
out = Path(args.out) if args.out else src.with_name(src.stem + "_out.inp")
res = build_inp(graph, parsed.settings, parsed.patterns, parsed.curves, parsed.controls)
out.write_text(res.text, encoding="utf-8")
print("\nINP escrito:", out, "| controles descartados:", len(res.dropped_controls))

if args.xlsx:
    export_features_excel(graph, args.xlsx)
    print("Excel escrito:", args.xlsx)
