import numpy as np
import pandas as pd
import pytest
from scipy.stats import chi2_contingency

from namcs_chc.config import AGE_BANDS
from namcs_chc.estimation.association import design_adjusted_chisq
from namcs_chc.survey.design import make_survey_design


def test_strong_association_is_detected():
    from conftest import make_visits

    df = make_visits(n_per_psu=60)
    design = make_survey_design(df)
    rec = design_adjusted_chisq(design, "htn", "0_100", AGE_BANDS["0_100"])
    assert rec.reason == ""
    assert rec.n == len(df)
    assert rec.p_value < 0.001
    assert rec.ndf > 0 and rec.ddf > 0


def test_p_value_in_unit_interval(visits):
    design = make_survey_design(visits)
    for band, bounds in AGE_BANDS.items():
        rec = design_adjusted_chisq(design, "asthma", band, bounds)
        assert rec.reason == ""
        assert 0.0 <= rec.p_value <= 1.0


def test_simple_random_sample_matches_pearson():
    rng = np.random.default_rng(11)
    n = 400
    source = np.where(rng.random(n) < 0.5, "CHC", "PPP")
    y = (rng.random(n) < np.where(source == "CHC", 0.30, 0.22)).astype(int)
    df = pd.DataFrame(
        {"source": source, "stratum": 1, "psu": np.arange(n), "weight": 1.0, "age": 40, "cond": y}
    )
    design = make_survey_design(df)
    rec = design_adjusted_chisq(design, "cond", "0_100", AGE_BANDS["0_100"])

    counts = pd.crosstab(df["cond"], df["source"]).to_numpy()
    chi2, p_srs, _dof, _exp = chi2_contingency(counts, correction=False)
    assert rec.chisq == pytest.approx(chi2)
    assert rec.ndf == pytest.approx(1.0)
    assert rec.p_value == pytest.approx(p_srs, abs=0.01)


def test_one_source_absent_is_undefined(visits):
    df = visits.loc[~((visits["source"] == "PPP") & (visits["age"] <= 17))].reset_index(drop=True)
    design = make_survey_design(df)
    rec = design_adjusted_chisq(design, "htn", "0_17", AGE_BANDS["0_17"])
    assert np.isnan(rec.p_value)
    assert rec.reason.startswith("degenerate_table")


def test_constant_condition_is_undefined(visits):
    df = visits.copy()
    df["never"] = pd.array([0] * len(df), dtype="Int64")
    design = make_survey_design(df)
    rec = design_adjusted_chisq(design, "never", "0_100", AGE_BANDS["0_100"])
    assert np.isnan(rec.p_value)
    assert rec.reason == "degenerate_table_1x2"


def test_out_of_scope_rows_leave_the_table_not_the_design(visits):
    df = visits.copy()
    df["in_scope"] = df["psu"] != 4
    rec = design_adjusted_chisq(make_survey_design(df), "htn", "0_100", AGE_BANDS["0_100"])
    assert rec.reason == ""
    assert rec.n == int(df["in_scope"].sum())
    # 8 strata with 3 in-scope PSUs each
    assert rec.ddf / rec.ndf == pytest.approx(24 - 8)
