import argparse
import hashlib
import sys
from pathlib import Path

import pandas as pd


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from namcs_chc.config import (  # noqa: E402
    ANALYSIS_FILE,
    DATASET_VERSION,
    DOWNLOAD_TIMEOUT_SEC,
    LOGS_DIR,
    RAW_DIR,
    SCOPE_COL,
    SOURCE_COL,
    SOURCE_FILES,
    SOURCE_URLS,
    SOURCES,
    TABLES_DIR,
)
from namcs_chc.data.build import build_analysis_table  # noqa: E402
from namcs_chc.data.coding import summarize_missingness  # noqa: E402
from namcs_chc.data.ingest import fetch_source, load_sources  # noqa: E402
from namcs_chc.utils.logging import runtime_metadata, write_json  # noqa: E402


def _sha256_df(df: pd.DataFrame) -> str:
    h = hashlib.sha256()
    h.update("||".join(df.columns.astype(str).tolist()).encode("utf-8"))
    h.update("||".join(map(str, df.dtypes.tolist())).encode("utf-8"))
    row_hashes = pd.util.hash_pandas_object(df, index=True).to_numpy()
    h.update(row_hashes.tobytes())
    return h.hexdigest()


def main() -> None:
    parser = argparse.ArgumentParser(description="Download, stack and clean the NAMCS CHC and PPP visit files.")
    parser.add_argument("--raw-dir", type=Path, default=RAW_DIR, help="Directory holding the raw .dta files.")
    parser.add_argument(
        "--skip-download",
        action="store_true",
        help="Use .dta files already present in --raw-dir instead of downloading.",
    )
    parser.add_argument("--chc-url", default=SOURCE_URLS["CHC"], help="Zipped Stata file for CHC visits.")
    parser.add_argument("--ppp-url", default=SOURCE_URLS["PPP"], help="Zipped Stata file for PPP visits.")
    parser.add_argument("--timeout", type=int, default=DOWNLOAD_TIMEOUT_SEC, help="Download timeout in seconds.")
    parser.add_argument("--out-parquet", type=Path, default=ANALYSIS_FILE, help="Output parquet path.")
    parser.add_argument(
        "--audit-csv",
        type=Path,
        default=TABLES_DIR / "analysis_table_audit.csv",
        help="Output audit CSV path.",
    )
    parser.add_argument(
        "--missingness-csv",
        type=Path,
        default=TABLES_DIR / "missingness_analysis.csv",
        help="Output missingness summary CSV path.",
    )
    parser.add_argument(
        "--decisions-json",
        type=Path,
        default=LOGS_DIR / "decisions.json",
        help="Output JSON file for coding/filter decisions.",
    )
    args = parser.parse_args()

    urls = {"CHC": args.chc_url, "PPP": args.ppp_url}
    paths = {source: args.raw_dir / SOURCE_FILES[source].name for source in SOURCES}

    if not args.skip_download:
        for source in SOURCES:
            print(f"Downloading {source}: {urls[source]}")
            fetch_source(urls[source], paths[source], timeout_sec=args.timeout)

    missing = [str(p) for p in paths.values() if not p.exists()]
    if missing:
        raise SystemExit(f"Input file(s) not found: {missing}")

    df_raw = load_sources(paths, source_col=SOURCE_COL)
    raw_rows = len(df_raw)

    try:
        table, decisions = build_analysis_table(df_raw)
    except ValueError as exc:
        raise SystemExit(f"Could not build analysis table: {exc}")
    table_rows, table_cols = table.shape

    in_scope_sources = set(table.loc[table[SCOPE_COL], SOURCE_COL])
    absent = [s for s in SOURCES if s not in in_scope_sources]
    if absent:
        raise SystemExit(f"No in-scope visits left after cleaning for source(s): {absent}")

    args.missingness_csv.parent.mkdir(parents=True, exist_ok=True)
    summarize_missingness(table).to_csv(args.missingness_csv, index=False)

    content_hash = _sha256_df(table)

    decisions_payload = {
        **decisions,
        "dataset_version": DATASET_VERSION,
        "input_files": {source: str(path) for source, path in paths.items()},
        "source_urls": urls if not args.skip_download else None,
        "raw_rows": raw_rows,
        "analysis_rows": table_rows,
        "analysis_cols": table_cols,
        "in_scope_rows": int(table[SCOPE_COL].sum()),
        "output_parquet": str(args.out_parquet),
        "missingness_csv": str(args.missingness_csv),
        "content_hash_sha256": content_hash,
        "runtime": runtime_metadata(),
    }
    write_json(args.decisions_json, decisions_payload)

    args.out_parquet.parent.mkdir(parents=True, exist_ok=True)
    table.to_parquet(args.out_parquet, index=False)

    args.audit_csv.parent.mkdir(parents=True, exist_ok=True)
    audit = pd.DataFrame(
        [
            {
                "raw_rows": raw_rows,
                "analysis_rows": table_rows,
                "analysis_cols": table_cols,
                **{f"rows_{s}": int(table[SOURCE_COL].eq(s).sum()) for s in SOURCES},
                **{f"in_scope_rows_{s}": int((table[SOURCE_COL].eq(s) & table[SCOPE_COL]).sum()) for s in SOURCES},
                "missingness_summary_csv": str(args.missingness_csv),
                "content_hash_sha256": content_hash,
                "decisions_json": str(args.decisions_json),
            }
        ]
    )
    audit.to_csv(args.audit_csv, index=False)

    print(f"Wrote {args.out_parquet}")
    print(f"Wrote {args.audit_csv}")
    print(f"Wrote {args.missingness_csv}")
    print(f"Wrote {args.decisions_json}")


if __name__ == "__main__":
    main()
