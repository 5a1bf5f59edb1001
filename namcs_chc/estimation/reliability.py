from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd


KEY_COLS = ["age_band", "condition"]


@dataclass(frozen=True)
class ReliabilityCheck:
    n: int
    rse: float
    reliable: bool
    reason: str


def evaluate_reliability(n: int, rse: float, *, min_n: int = 30, max_rse: float = 0.30) -> ReliabilityCheck:
    """Apply the NCHS presentation standard to a single estimate.

    Unreliable when fewer than min_n records or RSE above max_rse. An
    undefined RSE (zero or missing estimate) also counts as unreliable.
    """

    reasons = []
    if int(n) < int(min_n):
        reasons.append(f"n<{int(min_n)}")
    if rse is None or pd.isna(rse):
        reasons.append("rse_undefined")
    elif float(rse) > float(max_rse):
        reasons.append(f"rse>{float(max_rse):.2f}")

    return ReliabilityCheck(
        n=int(n),
        rse=float(rse) if rse is not None else np.nan,
        reliable=(len(reasons) == 0),
        reason=";".join(reasons),
    )


def flag_unreliable(df: pd.DataFrame, *, min_n: int = 30, max_rse: float = 0.30) -> pd.DataFrame:
    out = df.copy()
    checks = [evaluate_reliability(n, rse, min_n=min_n, max_rse=max_rse) for n, rse in zip(out["n"], out["rse"])]
    out["unreliable"] = [not c.reliable for c in checks]
    out["unreliable_reason"] = [c.reason for c in checks]
    return out


def drop_unreliable_combinations(
    joined: pd.DataFrame,
    *,
    sources: Optional[Iterable[str]] = None,
    source_col: str = "source",
) -> pd.DataFrame:
    """Remove every (age band, condition) with an unreliable or absent source record.

    joined must already carry the 'unreliable' flag (see flag_unreliable).
    """

    if sources is None:
        sources = sorted(joined[source_col].dropna().unique().tolist())
    sources = list(sources)

    grouped = joined.groupby(KEY_COLS, sort=False)
    any_unreliable = grouped["unreliable"].transform("any").astype(bool)
    source_sets = grouped[source_col].transform(lambda s: set(s) == set(sources) and len(s) == len(sources))
    keep = ~any_unreliable & source_sets.astype(bool)
    return joined.loc[keep].reset_index(drop=True)
