"""Design-adjusted chi-squared test of independence.

Pearson's X^2 on the weighted table, rescaled to the unweighted domain size,
with the Rao-Scott second-order correction: F = X^2 / tr(Delta) referred to
F(d0, d0 * nu), d0 = tr(Delta)^2 / tr(Delta^2), where Delta is the generalized
design-effect matrix of the interaction contrasts and nu the design degrees of
freedom.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy import stats

from namcs_chc.estimation.prevalence import age_mask, scope_mask
from namcs_chc.survey.design import SurveyDesign


@dataclass(frozen=True)
class TestRecord:
    age_band: str
    condition: str
    n: int
    chisq: float
    f_stat: float
    ndf: float
    ddf: float
    p_value: float
    reason: str

    # Not a pytest test class.
    __test__ = False


def _undefined(age_band: str, condition: str, n: int, reason: str) -> TestRecord:
    return TestRecord(
        age_band=age_band,
        condition=condition,
        n=n,
        chisq=np.nan,
        f_stat=np.nan,
        ndf=np.nan,
        ddf=np.nan,
        p_value=np.nan,
        reason=reason,
    )


def _interaction_contrasts(nr: int, nc: int) -> np.ndarray:
    # Cells are ordered with the row index varying fastest.
    rows = np.tile(np.arange(nr), nc)
    cols = np.repeat(np.arange(nc), nr)
    main = [np.ones(nr * nc)]
    main += [(rows == i).astype(float) for i in range(1, nr)]
    main += [(cols == j).astype(float) for j in range(1, nc)]
    x1 = np.column_stack(main)
    x12 = np.column_stack(
        [((rows == i) & (cols == j)).astype(float) for i in range(1, nr) for j in range(1, nc)]
    )
    coef, *_ = np.linalg.lstsq(x1, x12, rcond=None)
    return x12 - x1 @ coef


def design_adjusted_chisq(
    design: SurveyDesign,
    condition: str,
    age_band: str,
    bounds: Tuple[int, int],
    *,
    source_col: str = "source",
    age_col: str = "age",
    scope_col: Optional[str] = "in_scope",
) -> TestRecord:
    data = design.data
    indicator = data[condition].astype("Float64").to_numpy(dtype=float, na_value=np.nan)
    source = data[source_col]
    domain = (
        scope_mask(design, scope_col)
        & age_mask(design, bounds, age_col)
        & ~np.isnan(indicator)
        & source.notna().to_numpy(dtype=bool)
    )
    n = int(domain.sum())

    row_levels = np.unique(indicator[domain])
    col_levels = np.unique(source.to_numpy()[domain].astype(str))
    nr, nc = len(row_levels), len(col_levels)
    if nr < 2 or nc < 2:
        return _undefined(age_band, condition, n, f"degenerate_table_{nr}x{nc}")

    nu = design.degrees_of_freedom(domain)
    if nu <= 0:
        return _undefined(age_band, condition, n, "no_design_degrees_of_freedom")

    source_str = source.astype(str).to_numpy()
    cells = np.column_stack(
        [
            (domain & (indicator == r) & (source_str == c)).astype(float)
            for c in col_levels
            for r in row_levels
        ]
    )
    mean, cov, _w_sum = design.domain_mean(cells, domain)
    if np.isnan(mean).any():
        return _undefined(age_band, condition, n, "zero_weight_domain")

    table = mean.reshape(nc, nr).T * n
    expected = np.outer(table.sum(axis=1), table.sum(axis=0)) / n
    if (expected <= 0).any():
        return _undefined(age_band, condition, n, "empty_weighted_margin")
    chisq = float(((table - expected) ** 2 / expected).sum())

    cmat = _interaction_contrasts(nr, nc)
    inv_mean = np.diag(np.where(mean > 0, 1.0 / np.where(mean > 0, mean, 1.0), 0.0))
    denom = cmat.T @ (inv_mean / n) @ cmat
    numr = cmat.T @ inv_mean @ cov @ inv_mean @ cmat
    try:
        delta = np.linalg.solve(denom, numr)
    except np.linalg.LinAlgError:
        return _undefined(age_band, condition, n, "singular_contrast")

    trace = float(np.trace(delta))
    trace_sq = float(np.trace(delta @ delta))
    if not trace > 0 or not trace_sq > 0:
        return _undefined(age_band, condition, n, "zero_design_effect")

    d0 = trace**2 / trace_sq
    f_stat = chisq / trace
    p_value = float(stats.f.sf(f_stat, d0, d0 * nu))
    return TestRecord(
        age_band=age_band,
        condition=condition,
        n=n,
        chisq=chisq,
        f_stat=float(f_stat),
        ndf=float(d0),
        ddf=float(d0 * nu),
        p_value=p_value,
        reason="",
    )
