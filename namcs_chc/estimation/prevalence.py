from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np
from scipy import stats

from namcs_chc.survey.design import SurveyDesign


@dataclass(frozen=True)
class EstimateRecord:
    source: str
    age_band: str
    condition: str
    n: int
    mean: float
    ci_low: float
    ci_high: float
    se: float
    rse: float


def age_mask(design: SurveyDesign, bounds: Tuple[int, int], age_col: str = "age") -> np.ndarray:
    lo, hi = bounds
    return design.data[age_col].between(lo, hi, inclusive="both").to_numpy(dtype=bool)


def scope_mask(design: SurveyDesign, scope_col: Optional[str] = "in_scope") -> np.ndarray:
    """Rows inside the analysis universe; every row when the design carries no scope flag."""

    if scope_col is None or scope_col not in design.data.columns:
        return np.ones(len(design.data), dtype=bool)
    return design.data[scope_col].fillna(False).to_numpy(dtype=bool)


def relative_standard_error(se: float, mean: float) -> float:
    if np.isnan(se) or np.isnan(mean) or mean <= 0:
        return np.nan
    return float(se / mean)


def estimate_prevalence(
    design: SurveyDesign,
    condition: str,
    age_band: str,
    bounds: Tuple[int, int],
    *,
    sources: Optional[Iterable[str]] = None,
    source_col: str = "source",
    age_col: str = "age",
    scope_col: Optional[str] = "in_scope",
    ci_level: float = 0.95,
) -> List[EstimateRecord]:
    """Weighted prevalence of one condition within an age band, by source.

    Out-of-scope rows stay in the design as a domain, not a subset. One
    record per source. A source with no non-missing indicator values in
    the band gets n=0 and NaN statistics rather than a zero estimate.
    """

    data = design.data
    if sources is None:
        sources = sorted(data[source_col].dropna().unique().tolist())

    indicator = data[condition].astype("Float64").to_numpy(dtype=float, na_value=np.nan)
    base = scope_mask(design, scope_col) & age_mask(design, bounds, age_col) & ~np.isnan(indicator)
    z = float(stats.norm.ppf(0.5 + ci_level / 2.0))

    records = []
    for source in sources:
        domain = base & (data[source_col] == source).to_numpy(dtype=bool)
        n = int(domain.sum())
        mean_arr, cov, _w_sum = design.domain_mean(indicator, domain)
        mean = float(mean_arr[0])
        se = float(np.sqrt(cov[0, 0])) if not np.isnan(cov[0, 0]) else np.nan
        records.append(
            EstimateRecord(
                source=str(source),
                age_band=age_band,
                condition=condition,
                n=n,
                mean=mean,
                ci_low=mean - z * se,
                ci_high=mean + z * se,
                se=se,
                rse=relative_standard_error(se, mean),
            )
        )
    return records
