import numpy as np
import pandas as pd

from namcs_chc.config import AGE_BANDS
from namcs_chc.estimation.pipeline import analyze, join_results, run_combinations
from namcs_chc.survey.design import make_survey_design


CONDITIONS = ["htn", "asthma", "rare"]


def test_run_combinations_shapes_and_order(visits):
    design = make_survey_design(visits)
    estimates, tests = run_combinations(design, CONDITIONS, AGE_BANDS)
    assert len(tests) == len(AGE_BANDS) * len(CONDITIONS)
    assert len(estimates) == 2 * len(tests)
    assert tests["age_band"].tolist()[:3] == ["0_17"] * 3
    assert tests["condition"].tolist()[:3] == CONDITIONS


def test_parallel_matches_serial(visits):
    design = make_survey_design(visits)
    est_serial, tests_serial = run_combinations(design, CONDITIONS, AGE_BANDS, n_jobs=1)
    est_parallel, tests_parallel = run_combinations(design, CONDITIONS, AGE_BANDS, n_jobs=2)
    pd.testing.assert_frame_equal(est_serial, est_parallel)
    pd.testing.assert_frame_equal(tests_serial, tests_parallel)


def test_join_attaches_shared_test(visits):
    design = make_survey_design(visits)
    estimates, tests = run_combinations(design, ["htn"], {"0_100": AGE_BANDS["0_100"]})
    joined = join_results(estimates, tests)
    assert len(joined) == 2
    assert joined["p_value"].nunique() == 1


def test_analyze_keeps_only_reliable_pairs(visits):
    design = make_survey_design(visits)
    result = analyze(design, CONDITIONS, AGE_BANDS, sources=["CHC", "PPP"])

    # 'rare' has ~1% prevalence and never meets the RSE standard.
    assert "rare" not in set(result.filtered["condition"])
    assert result.m == len(result.filtered) // 2
    assert len(result.filtered) % 2 == 0
    assert not result.filtered["unreliable"].any()
    counts = result.filtered.groupby(["age_band", "condition"])["source"].apply(sorted)
    assert all(v == ["CHC", "PPP"] for v in counts)

    htn_all = result.filtered.loc[(result.filtered["condition"] == "htn") & (result.filtered["age_band"] == "0_100")]
    assert htn_all["significant"].all()
    assert np.isclose(result.threshold, 0.05 / result.m)
