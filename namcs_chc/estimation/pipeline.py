from __future__ import annotations

from dataclasses import asdict, dataclass
from itertools import product
from typing import Iterable, List, Mapping, Optional, Tuple

import pandas as pd
from joblib import Parallel, delayed

from namcs_chc.estimation.association import TestRecord, design_adjusted_chisq
from namcs_chc.estimation.multiple_testing import apply_bonferroni
from namcs_chc.estimation.prevalence import EstimateRecord, estimate_prevalence
from namcs_chc.estimation.reliability import KEY_COLS, drop_unreliable_combinations, flag_unreliable
from namcs_chc.survey.design import SurveyDesign


ESTIMATE_COLS = ["source", "age_band", "condition", "n", "mean", "ci_low", "ci_high", "se", "rse"]
TEST_COLS = ["age_band", "condition", "n", "chisq", "f_stat", "ndf", "ddf", "p_value", "reason"]


@dataclass(frozen=True)
class AnalysisResult:
    estimates: pd.DataFrame
    tests: pd.DataFrame
    joined: pd.DataFrame
    filtered: pd.DataFrame
    m: int
    threshold: float


def _run_one(
    design: SurveyDesign,
    condition: str,
    age_band: str,
    bounds: Tuple[int, int],
    sources: List[str],
) -> Tuple[List[EstimateRecord], TestRecord]:
    estimates = estimate_prevalence(design, condition, age_band, bounds, sources=sources)
    test = design_adjusted_chisq(design, condition, age_band, bounds)
    return estimates, test


def run_combinations(
    design: SurveyDesign,
    conditions: Iterable[str],
    age_bands: Mapping[str, Tuple[int, int]],
    *,
    sources: Optional[Iterable[str]] = None,
    n_jobs: int = 1,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Estimate and test every (age band, condition) pair.

    Each pair is independent; with n_jobs != 1 they are spread over joblib
    workers. Output order is age band, then condition, regardless of n_jobs.
    """

    if sources is None:
        sources = sorted(design.data["source"].dropna().unique().tolist())
    sources = list(sources)
    combos = list(product(age_bands.items(), list(conditions)))

    results = Parallel(n_jobs=n_jobs)(
        delayed(_run_one)(design, condition, band, bounds, sources) for (band, bounds), condition in combos
    )

    estimate_rows = [asdict(rec) for estimates, _test in results for rec in estimates]
    test_rows = [asdict(test) for _estimates, test in results]
    estimates_df = pd.DataFrame(estimate_rows, columns=ESTIMATE_COLS)
    tests_df = pd.DataFrame(test_rows, columns=TEST_COLS)
    return estimates_df, tests_df


def join_results(estimates: pd.DataFrame, tests: pd.DataFrame) -> pd.DataFrame:
    test_part = tests[KEY_COLS + ["p_value", "reason"]].rename(columns={"reason": "test_reason"})
    return estimates.merge(test_part, on=KEY_COLS, how="left", validate="many_to_one")


def analyze(
    design: SurveyDesign,
    conditions: Iterable[str],
    age_bands: Mapping[str, Tuple[int, int]],
    *,
    sources: Optional[Iterable[str]] = None,
    min_n: int = 30,
    max_rse: float = 0.30,
    alpha: float = 0.05,
    n_jobs: int = 1,
) -> AnalysisResult:
    if sources is None:
        sources = sorted(design.data["source"].dropna().unique().tolist())
    sources = list(sources)

    estimates, tests = run_combinations(design, conditions, age_bands, sources=sources, n_jobs=n_jobs)
    joined = flag_unreliable(join_results(estimates, tests), min_n=min_n, max_rse=max_rse)
    kept = drop_unreliable_combinations(joined, sources=sources)
    filtered, m, threshold = apply_bonferroni(kept, alpha=alpha)
    return AnalysisResult(
        estimates=estimates,
        tests=tests,
        joined=joined,
        filtered=filtered,
        m=m,
        threshold=threshold,
    )
