"""Stratified cluster survey design with Taylor-linearized variance.

PSUs are treated as sampled with replacement within strata and clusters are
nested in strata, which is how NCHS documents variance estimation for the
NAMCS public-use files (CSTRATM / CPSUM / PATWT).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from namcs_chc.data.validate import assert_required_columns


LONELY_PSU_CHOICES = ("adjust", "remove", "fail")


@dataclass(frozen=True)
class SurveyDesign:
    data: pd.DataFrame
    weight_col: str = "weight"
    strata_col: str = "stratum"
    cluster_col: str = "psu"
    lonely_psu: str = "adjust"

    @property
    def weights(self) -> np.ndarray:
        return self.data[self.weight_col].to_numpy(dtype=float)

    def _psu_keys(self) -> list:
        return [self.data[self.strata_col].to_numpy(), self.data[self.cluster_col].to_numpy()]

    def linearized_covariance(self, scores: np.ndarray) -> np.ndarray:
        """Covariance of the totals of scores (n_obs x k) under the design."""

        z = np.asarray(scores, dtype=float).reshape(len(self.data), -1)
        k = z.shape[1]
        psu_totals = pd.DataFrame(z).groupby(self._psu_keys(), sort=True).sum()
        all_totals = psu_totals.to_numpy()
        grand_mean = all_totals.mean(axis=0) if all_totals.size else np.zeros(k)

        cov = np.zeros((k, k))
        for stratum, block in psu_totals.groupby(level=0, sort=True):
            totals = block.to_numpy()
            n_h = totals.shape[0]
            if n_h == 1:
                if self.lonely_psu == "remove":
                    continue
                if self.lonely_psu == "adjust":
                    dev = totals - grand_mean
                    cov += dev.T @ dev
                    continue
                raise ValueError(f"Stratum {stratum!r} has a single PSU (lonely_psu='fail').")
            dev = totals - totals.mean(axis=0)
            cov += (n_h / (n_h - 1.0)) * (dev.T @ dev)
        return cov

    def domain_mean(self, values: np.ndarray, domain: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float]:
        """Weighted mean of each column of values over a domain.

        Rows outside the domain stay in the design and contribute zero to the
        linearized scores, so the variance reflects every sampled PSU.
        Returns (mean, covariance, weight_total); an empty or zero-weight domain
        gives NaN mean and covariance.
        """

        y = np.asarray(values, dtype=float).reshape(len(self.data), -1)
        d = np.asarray(domain, dtype=bool)
        k = y.shape[1]

        w = np.where(d, self.weights, 0.0)
        w_sum = float(w.sum())
        if not d.any() or w_sum <= 0:
            return np.full(k, np.nan), np.full((k, k), np.nan), w_sum

        y = np.where(d[:, None], y, 0.0)
        mean = (w[:, None] * y).sum(axis=0) / w_sum
        scores = w[:, None] * (y - mean) / w_sum
        return mean, self.linearized_covariance(scores), w_sum

    def degrees_of_freedom(self, domain: np.ndarray) -> int:
        """Number of PSUs minus number of strata among domain rows."""

        d = np.asarray(domain, dtype=bool)
        inset = self.data.loc[d, [self.strata_col, self.cluster_col]]
        n_psu = len(inset.drop_duplicates())
        n_strata = inset[self.strata_col].nunique()
        return int(n_psu - n_strata)


def make_survey_design(
    df: pd.DataFrame,
    *,
    weight_col: str = "weight",
    strata_col: str = "stratum",
    cluster_col: str = "psu",
    lonely_psu: str = "adjust",
) -> SurveyDesign:
    assert_required_columns(df, [weight_col, strata_col, cluster_col])
    if lonely_psu not in LONELY_PSU_CHOICES:
        raise ValueError(f"Unknown lonely_psu option: {lonely_psu}; expected one of {LONELY_PSU_CHOICES}")

    missing = {c: int(df[c].isna().sum()) for c in [weight_col, strata_col, cluster_col] if df[c].isna().any()}
    if missing:
        raise ValueError(f"Survey design fields contain missing values: {missing}")
    weights = pd.to_numeric(df[weight_col], errors="raise")
    if (weights < 0).any():
        raise ValueError(f"Negative sampling weights in {weight_col!r}.")

    return SurveyDesign(
        data=df.reset_index(drop=True),
        weight_col=weight_col,
        strata_col=strata_col,
        cluster_col=cluster_col,
        lonely_psu=lonely_psu,
    )
