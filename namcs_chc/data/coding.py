from __future__ import annotations

import re
from typing import Dict, Iterable, Mapping, Tuple

import numpy as np
import pandas as pd


_NORMALIZE_RE = re.compile(r"[^0-9a-zA-Z]+")


def _normalize_name(name: str) -> str:
    return _NORMALIZE_RE.sub("_", name).strip("_").lower()


def normalize_column_names(df: pd.DataFrame) -> Dict[str, str]:
    """Return a normalized-name -> exact-name mapping for df columns.

    This does not modify the DataFrame. NCHS files are not consistent about
    variable-name casing between survey years, so lookups go through this map.
    """

    mapping: Dict[str, str] = {}
    collisions: Dict[str, list[str]] = {}

    for col in df.columns.astype(str).tolist():
        norm = _normalize_name(col)
        if norm in mapping and mapping[norm] != col:
            collisions.setdefault(norm, sorted({mapping[norm], col}))
        mapping[norm] = col

    if collisions:
        raise ValueError(f"Normalized column name collisions: {collisions}")

    return mapping


def resolve_columns(df: pd.DataFrame, names: Iterable[str]) -> Dict[str, str]:
    """Map each requested name to the exact column in df (case-insensitive)."""

    mapping = normalize_column_names(df)
    resolved: Dict[str, str] = {}
    missing = []
    for name in names:
        norm = _normalize_name(name)
        if norm in mapping:
            resolved[name] = mapping[norm]
        else:
            missing.append(name)
    if missing:
        raise ValueError(f"Missing required columns: {missing}")
    return resolved


def recode_binary_flag(
    series: pd.Series,
    *,
    yes_values: Tuple = (1,),
    no_values: Tuple = (0,),
    missing_values: Tuple = (-9, -8, -7),
) -> pd.Series:
    """Recode NCHS checkbox codes to {0,1,NA}.

    - yes_values map to 1
    - no_values map to 0
    - missing_values map to NA
    - NaN stays NA

    Raises ValueError if unexpected non-missing values are observed.
    """

    s = series
    out = pd.Series(pd.NA, index=s.index, dtype="Int64")

    is_yes = s.isin(yes_values)
    is_no = s.isin(no_values)
    is_missing_code = s.isin(missing_values)
    is_na = s.isna()

    out.loc[is_yes] = 1
    out.loc[is_no] = 0
    out.loc[is_missing_code | is_na] = pd.NA

    unexpected = s.loc[~(is_yes | is_no | is_missing_code | is_na)].dropna().unique()
    if len(unexpected) > 0:
        raise ValueError(
            f"Unexpected codes in binary variable {series.name!r}. "
            f"Observed unexpected values: {sorted(map(str, unexpected))}; "
            f"expected yes={yes_values}, no={no_values}, missing={missing_values}."
        )

    return out


def recode_labels(series: pd.Series, labels: Mapping[int, str]) -> pd.Series:
    """Replace integer codes with their labels as an ordered categorical.

    Missing values stay missing; codes without a label raise ValueError.
    """

    codes = pd.to_numeric(series, errors="coerce")
    unknown = sorted(set(codes.dropna().astype(int).unique().tolist()) - set(labels))
    if unknown:
        raise ValueError(f"Unlabelled codes in {series.name!r}: {unknown}")
    mapped = codes.map(lambda v: labels[int(v)] if pd.notna(v) else np.nan)
    categories = list(dict.fromkeys(labels.values()))
    return pd.Series(
        pd.Categorical(mapped, categories=categories, ordered=True),
        index=series.index,
        name=series.name,
    )


def summarize_missingness(df: pd.DataFrame) -> pd.DataFrame:
    """Return per-column missingness summary in stable column order."""

    n = len(df)
    rows = []
    for col in df.columns.astype(str).tolist():
        n_missing = int(df[col].isna().sum())
        missing_rate = round(n_missing / n, 6) if n else np.nan
        rows.append({"column": col, "n": n, "n_missing": n_missing, "missing_rate": missing_rate})
    return pd.DataFrame(rows)
