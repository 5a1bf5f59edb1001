from __future__ import annotations

import argparse
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pandas as pd  # noqa: E402

from namcs_chc.config import (  # noqa: E402
    AGE_BANDS,
    ALPHA,
    ANALYSIS_FILE,
    CONDITION_COLS,
    DATASET_VERSION,
    DESIGN_COLS,
    LONELY_PSU,
    MAX_RSE,
    MIN_N,
    OUTPUTS_DIR,
    SCOPE_COL,
    SOURCE_COL,
    SOURCES,
)
from namcs_chc.data.validate import assert_binary  # noqa: E402
from namcs_chc.estimation.pipeline import analyze  # noqa: E402
from namcs_chc.survey.design import LONELY_PSU_CHOICES, make_survey_design  # noqa: E402
from namcs_chc.utils.logging import runtime_metadata, write_json  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Weighted prevalence, design-adjusted tests and reliability filtering by age band."
    )
    parser.add_argument("--in-parquet", type=Path, default=ANALYSIS_FILE, help="Analysis table from 01_build_dataset.py.")
    parser.add_argument("--outdir", type=Path, default=OUTPUTS_DIR, help="Output directory (default: outputs/).")
    parser.add_argument("--n-jobs", type=int, default=1, help="joblib workers for the condition x age band loop.")
    parser.add_argument("--alpha", type=float, default=ALPHA, help="Family-wise significance level.")
    parser.add_argument("--min-n", type=int, default=MIN_N, help="Minimum unweighted records per estimate.")
    parser.add_argument("--max-rse", type=float, default=MAX_RSE, help="Maximum relative standard error.")
    parser.add_argument("--lonely-psu", choices=LONELY_PSU_CHOICES, default=LONELY_PSU)
    args = parser.parse_args()

    if not args.in_parquet.exists():
        raise SystemExit(f"Analysis table not found: {args.in_parquet}. Run scripts/01_build_dataset.py first.")

    df = pd.read_parquet(args.in_parquet)
    required = [SOURCE_COL, SCOPE_COL, "age"] + DESIGN_COLS + CONDITION_COLS
    missing_required = [c for c in required if c not in df.columns]
    if missing_required:
        raise SystemExit(f"Missing required columns in analysis table: {missing_required}")
    for col in CONDITION_COLS:
        assert_binary(df[col])

    design = make_survey_design(df, lonely_psu=args.lonely_psu)
    result = analyze(
        design,
        CONDITION_COLS,
        AGE_BANDS,
        sources=SOURCES,
        min_n=args.min_n,
        max_rse=args.max_rse,
        alpha=args.alpha,
        n_jobs=args.n_jobs,
    )

    tables_dir = args.outdir / "tables"
    logs_dir = args.outdir / "logs"
    tables_dir.mkdir(parents=True, exist_ok=True)

    result.estimates.to_csv(tables_dir / "prevalence_estimates.csv", index=False)
    result.tests.to_csv(tables_dir / "association_tests.csv", index=False)
    result.joined.to_csv(tables_dir / "prevalence_joined.csv", index=False)
    result.filtered.to_csv(tables_dir / "prevalence_reliable_significance.csv", index=False)

    n_combinations = len(result.tests)
    n_significant = int(result.filtered.drop_duplicates(["age_band", "condition"])["significant"].sum())
    run_meta = {
        **runtime_metadata(),
        "dataset_version": DATASET_VERSION,
        "input_parquet": str(args.in_parquet),
        "n_rows": int(len(df)),
        "n_rows_in_scope": int(df[SCOPE_COL].sum()),
        "sources": SOURCES,
        "conditions": CONDITION_COLS,
        "age_bands": {band: list(bounds) for band, bounds in AGE_BANDS.items()},
        "lonely_psu": args.lonely_psu,
        "reliability": {"min_n": args.min_n, "max_rse": args.max_rse},
        "n_combinations": n_combinations,
        "n_combinations_retained": result.m,
        "n_combinations_dropped": n_combinations - result.m,
        "n_tests_undefined": int((result.tests["reason"] != "").sum()),
        "bonferroni": {"alpha": args.alpha, "m": result.m, "threshold": result.threshold},
        "n_significant": n_significant,
        "notes": [
            "Estimates use Taylor-linearized variance with strata and PSUs; CIs are Wald intervals.",
            "Association tests use the Rao-Scott second-order corrected chi-squared (F reference).",
        ],
    }
    write_json(logs_dir / "estimation_run_metadata.json", run_meta)

    print(f"Retained {result.m} of {n_combinations} age band x condition combinations")
    print(f"Wrote estimation tables to {tables_dir}/")


if __name__ == "__main__":
    main()
