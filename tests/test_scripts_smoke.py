import json
import subprocess
import sys
from pathlib import Path

import pandas as pd


def test_scripts_end_to_end(tmp_path: Path, raw_dir: Path):
    repo_root = Path(__file__).resolve().parents[1]
    out_parquet = tmp_path / "analysis.parquet"
    outdir = tmp_path / "outputs"

    build_cmd = [
        sys.executable,
        str(repo_root / "scripts" / "01_build_dataset.py"),
        "--raw-dir",
        str(raw_dir),
        "--skip-download",
        "--out-parquet",
        str(out_parquet),
        "--audit-csv",
        str(tmp_path / "audit.csv"),
        "--missingness-csv",
        str(tmp_path / "missingness.csv"),
        "--decisions-json",
        str(tmp_path / "decisions.json"),
    ]
    subprocess.run(build_cmd, cwd=repo_root, check=True)

    df = pd.read_parquet(out_parquet)
    assert set(df["source"]) == {"CHC", "PPP"}
    in_scope = df[df["in_scope"]]
    assert set(in_scope["specialty"].astype(str)) == {"Primary care"}
    assert (in_scope["totchron"] != -9).all()
    # Out-of-scope visits are kept for the survey design.
    assert (~df["in_scope"]).any()
    assert set(df["specialty"].astype(str)) > {"Primary care"}
    assert set(df["htn"].dropna().unique().tolist()) <= {0, 1}

    decisions = json.loads((tmp_path / "decisions.json").read_text(encoding="utf-8"))
    assert {f["rule"] for f in decisions["row_filters"]} == {"drop_missing_design_field"}
    assert decisions["scope"]["out_of_scope_rows"]["speccat_not_kept"] > 0
    assert decisions["scope"]["out_of_scope_rows"]["chronic_conditions_unanswered"] > 0
    assert decisions["analysis_rows"] == decisions["raw_rows"]

    estimate_cmd = [
        sys.executable,
        str(repo_root / "scripts" / "02_estimate_prevalence.py"),
        "--in-parquet",
        str(out_parquet),
        "--outdir",
        str(outdir),
    ]
    subprocess.run(estimate_cmd, cwd=repo_root, check=True)

    tests = pd.read_csv(outdir / "tables" / "association_tests.csv")
    assert len(tests) == 14 * 4
    filtered = pd.read_csv(outdir / "tables" / "prevalence_reliable_significance.csv")
    meta = json.loads((outdir / "logs" / "estimation_run_metadata.json").read_text(encoding="utf-8"))
    assert meta["bonferroni"]["m"] * 2 == len(filtered)
    assert meta["n_combinations"] == 56
    assert meta["n_rows_in_scope"] == int(df["in_scope"].sum())

    report_cmd = [
        sys.executable,
        str(repo_root / "scripts" / "03_report_tables.py"),
        "--outdir",
        str(outdir),
    ]
    subprocess.run(report_cmd, cwd=repo_root, check=True)

    report_dir = outdir / "tables" / "report"
    for name in [
        "comparison_full.csv",
        "comparison_full.html",
        "significant_summary.csv",
        "significant_summary.html",
        "prevalence_tables.xlsx",
    ]:
        assert (report_dir / name).exists(), f"Missing report artifact: {name}"
    assert (outdir / "figures" / "significant_differences.png").exists()

    comparison = pd.read_csv(report_dir / "comparison_full.csv", keep_default_na=False)
    assert len(comparison) == meta["bonferroni"]["m"]
