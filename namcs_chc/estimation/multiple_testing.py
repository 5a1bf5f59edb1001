from __future__ import annotations

from typing import Tuple

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from namcs_chc.estimation.reliability import KEY_COLS


def apply_bonferroni(filtered: pd.DataFrame, *, alpha: float = 0.05) -> Tuple[pd.DataFrame, int, float]:
    """Annotate surviving rows with a Bonferroni significance flag.

    m is the number of (age band, condition) pairs that reached this stage;
    each pair is one test shared by its two source rows. Returns
    (annotated frame, m, per-test threshold).
    """

    out = filtered.copy()
    tests = out.drop_duplicates(KEY_COLS)[KEY_COLS + ["p_value"]].reset_index(drop=True)
    m = int(len(tests))
    if m == 0:
        out["p_bonferroni"] = pd.Series(dtype=float)
        out["significant"] = pd.Series(dtype=bool)
        out["bonferroni_threshold"] = pd.Series(dtype=float)
        out["m_tests"] = pd.Series(dtype=int)
        return out, 0, np.nan
    if 2 * m != len(out):
        raise ValueError(f"Expected two source rows per test: {len(out)} rows for {m} tests.")

    threshold = alpha / m
    p_raw = tests["p_value"].to_numpy(dtype=float)
    # An undefined test is never significant; 1.0 keeps it in the count.
    _reject, p_adj, _sidak, _bonf = multipletests(
        np.where(np.isnan(p_raw), 1.0, p_raw), alpha=alpha, method="bonferroni"
    )
    tests["p_bonferroni"] = np.where(np.isnan(p_raw), np.nan, p_adj)

    out = out.merge(tests[KEY_COLS + ["p_bonferroni"]], on=KEY_COLS, how="left", validate="many_to_one")
    out["significant"] = (out["p_value"].to_numpy(dtype=float) <= threshold) & out["p_value"].notna().to_numpy()
    out["bonferroni_threshold"] = threshold
    out["m_tests"] = m
    return out, m, threshold
