from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd


def format_p_value(p: float, *, floor: float = 0.001, token: str = "<0.001", digits: int = 3) -> str:
    if p is None or pd.isna(p):
        return "n/a"
    if p < floor:
        return token
    return f"{float(p):.{digits}f}"


def format_estimate(mean: float, ci_low: float, ci_high: float, *, scale: float = 100.0, digits: int = 1) -> str:
    """Render 'estimate (lower, upper)' on the percent scale."""

    if pd.isna(mean):
        return "n/a"
    values = [float(v) * scale if not pd.isna(v) else np.nan for v in (mean, ci_low, ci_high)]
    point, lo, hi = (f"{v:.{digits}f}" if not np.isnan(v) else "n/a" for v in values)
    return f"{point} ({lo}, {hi})"


def _order_keys(frame: pd.DataFrame, age_band_order: List[str], condition_order: List[str]) -> pd.DataFrame:
    band_rank = {b: i for i, b in enumerate(age_band_order)}
    cond_rank = {c: i for i, c in enumerate(condition_order)}
    frame = frame.assign(
        _band_rank=frame["age_band"].map(band_rank).fillna(len(band_rank)),
        _cond_rank=frame["condition"].map(cond_rank).fillna(len(cond_rank)),
    )
    frame = frame.sort_values(["_band_rank", "_cond_rank", "age_band", "condition"], kind="mergesort")
    return frame.drop(columns=["_band_rank", "_cond_rank"]).reset_index(drop=True)


def wide_by_source(filtered: pd.DataFrame, sources: Iterable[str]) -> pd.DataFrame:
    """One row per (age band, condition) with per-source statistics side by side."""

    sources = list(sources)
    keys = ["age_band", "condition"]
    wide = filtered[keys + ["p_value", "significant"]].drop_duplicates(keys).reset_index(drop=True)
    for source in sources:
        part = filtered.loc[filtered["source"] == source, keys + ["n", "mean", "ci_low", "ci_high"]]
        part = part.rename(columns={c: f"{c}_{source}" for c in ["n", "mean", "ci_low", "ci_high"]})
        wide = wide.merge(part, on=keys, how="left", validate="one_to_one")

    means = wide[[f"mean_{s}" for s in sources]].to_numpy(dtype=float)
    higher = []
    for row in means:
        if np.isnan(row).any() or np.all(row == row[0]):
            higher.append("")
        else:
            higher.append(sources[int(np.argmax(row))])
    wide["higher_source"] = higher
    return wide


def build_comparison_table(
    filtered: pd.DataFrame,
    *,
    sources: Iterable[str],
    condition_labels: Mapping[str, str],
    age_band_labels: Mapping[str, str],
    p_floor: float = 0.001,
    p_floor_token: str = "<0.001",
) -> pd.DataFrame:
    sources = list(sources)
    if filtered.empty:
        columns = ["Age group", "Condition"] + sources + ["p-value", "Significant", "Higher in"]
        return pd.DataFrame(columns=columns)

    wide = wide_by_source(filtered, sources)
    wide = _order_keys(wide, list(age_band_labels), list(condition_labels))

    table = pd.DataFrame(
        {
            "Age group": wide["age_band"].map(lambda b: age_band_labels.get(b, b)),
            "Condition": wide["condition"].map(lambda c: condition_labels.get(c, c)),
        }
    )
    for source in sources:
        table[source] = [
            format_estimate(m, lo, hi)
            for m, lo, hi in zip(wide[f"mean_{source}"], wide[f"ci_low_{source}"], wide[f"ci_high_{source}"])
        ]
    table["p-value"] = [format_p_value(p, floor=p_floor, token=p_floor_token) for p in wide["p_value"]]
    table["Significant"] = np.where(wide["significant"].astype(bool), "*", "")
    table["Higher in"] = wide["higher_source"].to_numpy()
    return table


def build_summary_table(
    filtered: pd.DataFrame,
    *,
    sources: Iterable[str],
    condition_labels: Mapping[str, str],
    age_band_labels: Mapping[str, str],
    source_labels: Optional[Mapping[str, str]] = None,
) -> pd.DataFrame:
    """Significant differences only: one row per age band, conditions placed
    under the column of the source with the higher point estimate."""

    sources = list(sources)
    source_labels = dict(source_labels or {})
    columns = ["Age group"] + [f"Higher at {s}" for s in sources]
    if filtered.empty:
        return pd.DataFrame(columns=columns)

    wide = wide_by_source(filtered, sources)
    wide = wide.loc[wide["significant"].astype(bool)]
    wide = _order_keys(wide, list(age_band_labels), list(condition_labels))

    rows = []
    for band in list(dict.fromkeys(wide["age_band"].tolist())):
        band_rows = wide.loc[wide["age_band"] == band]
        row: Dict[str, str] = {"Age group": age_band_labels.get(band, band)}
        for source in sources:
            conds = band_rows.loc[band_rows["higher_source"] == source, "condition"]
            row[f"Higher at {source}"] = ", ".join(condition_labels.get(c, c) for c in conds)
        rows.append(row)

    summary = pd.DataFrame(rows, columns=columns)
    if source_labels:
        summary = summary.rename(columns={f"Higher at {s}": f"Higher at {source_labels.get(s, s)}" for s in sources})
    return summary


def write_tables(tables: Mapping[str, pd.DataFrame], outdir: Path) -> Dict[str, Path]:
    """Write each table as CSV and HTML, plus one XLSX workbook with a sheet per table."""

    outdir.mkdir(parents=True, exist_ok=True)
    written: Dict[str, Path] = {}
    for name, table in tables.items():
        csv_path = outdir / f"{name}.csv"
        html_path = outdir / f"{name}.html"
        table.to_csv(csv_path, index=False)
        html_path.write_text(table.to_html(index=False, na_rep="", border=0), encoding="utf-8")
        written[f"{name}_csv"] = csv_path
        written[f"{name}_html"] = html_path

    xlsx_path = outdir / "prevalence_tables.xlsx"
    with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
        for name, table in tables.items():
            table.to_excel(writer, sheet_name=name[:31], index=False)
    written["workbook_xlsx"] = xlsx_path
    return written
