from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from namcs_chc.config import (
    AGE_RAW_COL,
    CONDITION_MISSING_VALUES,
    CONDITION_NO_VALUES,
    CONDITION_YES_VALUES,
    CONDITIONS,
    DESIGN_COLUMN_MAP,
    SCOPE_COL,
    SOURCE_COL,
    SPECCAT_KEEP,
    SPECCAT_LABELS,
    SPECCAT_RAW_COL,
    TOTCHRON_RAW_COL,
    TOTCHRON_UNANSWERED,
)
from namcs_chc.data.coding import recode_binary_flag, recode_labels, resolve_columns
from namcs_chc.data.validate import assert_required_columns


def _drop_rows(table: pd.DataFrame, keep: pd.Series, rule: str, column: str, decisions: dict) -> pd.DataFrame:
    n_before = len(table)
    table = table.loc[keep.fillna(False).to_numpy(dtype=bool)].reset_index(drop=True)
    decisions["row_filters"].append(
        {
            "rule": rule,
            "column": column,
            "dropped_rows": n_before - len(table),
        }
    )
    return table


def build_analysis_table(
    df_raw: pd.DataFrame,
    *,
    conditions: Optional[Iterable[str]] = None,
    speccat_keep: Optional[Iterable[int]] = None,
) -> Tuple[pd.DataFrame, Dict]:
    """Select, recode and scope the stacked raw visit files.

    Returns the analysis table (one row per visit) and a decisions dict that
    records every recode, row filter and scope rule applied.
    """

    conditions = list(conditions or CONDITIONS)
    speccat_keep = list(SPECCAT_KEEP if speccat_keep is None else speccat_keep)

    assert_required_columns(df_raw, [SOURCE_COL])
    raw_names = list(DESIGN_COLUMN_MAP) + [AGE_RAW_COL, SPECCAT_RAW_COL, TOTCHRON_RAW_COL] + conditions
    resolved = resolve_columns(df_raw, raw_names)

    decisions: dict = {
        "columns": {
            "design": dict(DESIGN_COLUMN_MAP),
            "age": AGE_RAW_COL,
            "speccat": SPECCAT_RAW_COL,
            "totchron": TOTCHRON_RAW_COL,
            "conditions": conditions,
        },
        "binary_recoding": {
            "yes_values": list(CONDITION_YES_VALUES),
            "no_values": list(CONDITION_NO_VALUES),
            "missing_values": list(CONDITION_MISSING_VALUES),
        },
        "speccat_keep": {str(code): SPECCAT_LABELS[code] for code in speccat_keep},
        "totchron_unanswered": TOTCHRON_UNANSWERED,
        "rows_by_source_raw": {str(k): int(v) for k, v in df_raw[SOURCE_COL].value_counts(sort=False).items()},
        "row_filters": [],
    }

    table = pd.DataFrame({SOURCE_COL: df_raw[SOURCE_COL].astype(str).to_numpy()})
    for raw, col in DESIGN_COLUMN_MAP.items():
        table[col] = pd.to_numeric(df_raw[resolved[raw]], errors="coerce").to_numpy()

    speccat = pd.to_numeric(df_raw[resolved[SPECCAT_RAW_COL]], errors="coerce")
    table["speccat"] = speccat.astype("Int64").reset_index(drop=True)
    table["specialty"] = recode_labels(speccat, SPECCAT_LABELS).reset_index(drop=True)
    totchron = pd.to_numeric(df_raw[resolved[TOTCHRON_RAW_COL]], errors="coerce")
    table["totchron"] = totchron.astype("Int64").reset_index(drop=True)
    table["age"] = pd.to_numeric(df_raw[resolved[AGE_RAW_COL]], errors="coerce").to_numpy()

    condition_cols: List[str] = []
    for raw in conditions:
        col = raw.lower()
        table[col] = recode_binary_flag(
            df_raw[resolved[raw]],
            yes_values=CONDITION_YES_VALUES,
            no_values=CONDITION_NO_VALUES,
            missing_values=CONDITION_MISSING_VALUES,
        ).reset_index(drop=True)
        condition_cols.append(col)

    # A row without a design field cannot be placed in the sample design at all.
    for col in DESIGN_COLUMN_MAP.values():
        table = _drop_rows(table, table[col].notna(), "drop_missing_design_field", col, decisions)

    # Out-of-scope visits are kept as rows and excluded as a domain, so the
    # design keeps every PSU.
    scope_rules = {
        "speccat_not_kept": ~table["speccat"].isin(speccat_keep).fillna(False).astype(bool),
        "chronic_conditions_unanswered": ~(
            table["totchron"].notna() & table["totchron"].ne(TOTCHRON_UNANSWERED)
        ).fillna(False).astype(bool),
        "age_missing": table["age"].isna(),
    }
    out_of_scope = pd.concat(scope_rules, axis=1).any(axis=1)
    table[SCOPE_COL] = ~out_of_scope

    decisions["scope"] = {
        "column": SCOPE_COL,
        "rule": "speccat in speccat_keep and totchron answered and age present",
        "out_of_scope_rows": {rule: int(mask.sum()) for rule, mask in scope_rules.items()},
        "rows_by_source_in_scope": {
            str(k): int(v) for k, v in table.loc[table[SCOPE_COL], SOURCE_COL].value_counts(sort=False).items()
        },
    }
    decisions["rows_by_source_clean"] = {
        str(k): int(v) for k, v in table[SOURCE_COL].value_counts(sort=False).items()
    }

    # Deterministic column order.
    ordered_cols = (
        [SOURCE_COL]
        + list(DESIGN_COLUMN_MAP.values())
        + [SCOPE_COL, "speccat", "specialty", "totchron", "age"]
        + condition_cols
    )
    return table[ordered_cols], decisions
