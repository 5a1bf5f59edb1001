from __future__ import annotations

import argparse
import os
import sys
import tempfile
from pathlib import Path

_mpl_cache_dir = Path(tempfile.gettempdir()) / "matplotlib"
_mpl_cache_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_mpl_cache_dir))

import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from namcs_chc.config import (  # noqa: E402
    AGE_BAND_LABELS,
    CONDITION_LABELS,
    OUTPUTS_DIR,
    P_VALUE_FLOOR,
    P_VALUE_FLOOR_TOKEN,
    SOURCE_LABELS,
    SOURCES,
)
from namcs_chc.reporting.figures import plot_significant_differences, save_figure  # noqa: E402
from namcs_chc.reporting.tables import build_comparison_table, build_summary_table, write_tables  # noqa: E402
from namcs_chc.utils.logging import runtime_metadata, write_json  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Format the reliable, Bonferroni-annotated results for the report.")
    parser.add_argument("--outdir", type=Path, default=OUTPUTS_DIR, help="Output directory (default: outputs/).")
    parser.add_argument(
        "--in-csv",
        type=Path,
        default=None,
        help="Filtered results (default: <outdir>/tables/prevalence_reliable_significance.csv).",
    )
    args = parser.parse_args()

    in_csv = args.in_csv or (args.outdir / "tables" / "prevalence_reliable_significance.csv")
    if not in_csv.exists():
        raise SystemExit(f"Filtered results not found: {in_csv}. Run scripts/02_estimate_prevalence.py first.")

    filtered = pd.read_csv(in_csv, dtype={"source": str, "age_band": str, "condition": str})
    condition_labels = {c.lower(): label for c, label in CONDITION_LABELS.items()}

    comparison = build_comparison_table(
        filtered,
        sources=SOURCES,
        condition_labels=condition_labels,
        age_band_labels=AGE_BAND_LABELS,
        p_floor=P_VALUE_FLOOR,
        p_floor_token=P_VALUE_FLOOR_TOKEN,
    )
    summary = build_summary_table(
        filtered,
        sources=SOURCES,
        condition_labels=condition_labels,
        age_band_labels=AGE_BAND_LABELS,
        source_labels=SOURCE_LABELS,
    )

    report_dir = args.outdir / "tables" / "report"
    written = write_tables({"comparison_full": comparison, "significant_summary": summary}, report_dir)

    fig = plot_significant_differences(
        filtered,
        sources=SOURCES,
        condition_labels=condition_labels,
        age_band_labels=AGE_BAND_LABELS,
    )
    figure_path = args.outdir / "figures" / "significant_differences.png"
    save_figure(fig, figure_path)
    plt.close(fig)

    write_json(
        args.outdir / "logs" / "report_run_metadata.json",
        {
            **runtime_metadata(),
            "input_csv": str(in_csv),
            "n_comparison_rows": int(len(comparison)),
            "n_summary_rows": int(len(summary)),
            "artifacts": {**{k: str(v) for k, v in written.items()}, "figure_png": str(figure_path)},
        },
    )

    print(f"Wrote report tables to {report_dir}/")


if __name__ == "__main__":
    main()
