import logging
import sys
from pathlib import Path
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from wdn.adapters.excel.read_excel import load_network_from_excel
from wdn.core.build.analytics import analyze_store
from wdn.core.build.validate import validate_store
from wdn.core.postprocess.export import export_validation_csv

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

if len(sys.argv) < 2:
    print("usage: python scripts/run_excel_debug.py <network.xlsx> [validation.csv]")
    sys.exit(2)

# 1) Load workbook
store, config, result = load_network_from_excel(sys.argv[1])
print(f"Loaded: {result.nodes} nodes, {result.pipes} pipes, {result.point_links} pumps/valves")
print("snap tolerance [m]:", config.drawing.snap_tolerance_m, "| link length [m]:", config.splice.link_length_m)

# 2) Validate
report = validate_store(store, config=config.validation)
print()
print(report.summary())

# 3) Connectivity
stats = analyze_store(store)
print("--- Connectivity ---")
for k, v in stats.to_dict().items():
    print(f"{k:>22}: {v:.3f}" if isinstance(v, float) else f"{k:>22}: {v}")

# 4) Optional CSV of issues
if len(sys.argv) > 2:
    export_validation_csv(report, sys.argv[2])
    print("\nIssues written to", sys.argv[2])

sys.exit(0 if report.is_valid else 1)
