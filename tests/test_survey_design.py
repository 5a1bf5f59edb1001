import numpy as np
import pandas as pd
import pytest

from namcs_chc.survey.design import make_survey_design


def _srs_frame(n=50, seed=7):
    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "stratum": 1,
            "psu": np.arange(n),
            "weight": rng.uniform(1.0, 3.0, size=n),
            "y": (rng.random(n) < 0.3).astype(float),
        }
    )


def test_domain_mean_matches_weighted_average():
    df = _srs_frame()
    design = make_survey_design(df)
    mean, cov, w_sum = design.domain_mean(df["y"].to_numpy(), np.ones(len(df), dtype=bool))
    assert mean[0] == pytest.approx(np.average(df["y"], weights=df["weight"]))
    assert w_sum == pytest.approx(df["weight"].sum())
    assert cov.shape == (1, 1)


def test_variance_single_stratum_one_obs_per_psu():
    df = _srs_frame()
    design = make_survey_design(df)
    y = df["y"].to_numpy()
    w = df["weight"].to_numpy()
    mean, cov, _ = design.domain_mean(y, np.ones(len(df), dtype=bool))

    n = len(df)
    z = w * (y - mean[0]) / w.sum()
    expected = n / (n - 1) * np.sum((z - z.mean()) ** 2)
    assert cov[0, 0] == pytest.approx(expected)


def test_variance_stratified_clusters_by_hand():
    rng = np.random.default_rng(3)
    n_psu = {1: 2, 2: 3, 3: 4}
    frames = []
    for stratum, psus in n_psu.items():
        for psu in range(1, psus + 1):
            n = int(rng.integers(3, 8))
            frames.append(
                pd.DataFrame(
                    {
                        "stratum": stratum,
                        "psu": psu,
                        "weight": rng.uniform(1.0, 4.0, size=n),
                        "y": (rng.random(n) < 0.4).astype(float),
                    }
                )
            )
    df = pd.concat(frames, ignore_index=True)
    design = make_survey_design(df)
    mean, cov, _ = design.domain_mean(df["y"].to_numpy(), np.ones(len(df), dtype=bool))

    w = df["weight"].to_numpy()
    y = df["y"].to_numpy()
    assert mean[0] == pytest.approx(np.sum(w * y) / np.sum(w))
    df["z"] = w * (y - mean[0]) / w.sum()
    expected = 0.0
    for stratum, psus in n_psu.items():
        totals = df.loc[df["stratum"] == stratum].groupby("psu")["z"].sum().to_numpy()
        assert len(totals) == psus
        expected += psus / (psus - 1) * np.sum((totals - totals.mean()) ** 2)
    assert cov[0, 0] == pytest.approx(expected)

    # Not the observation-level formula: clustering matters.
    n = len(df)
    naive = n / (n - 1) * np.sum((df["z"] - df["z"].mean()) ** 2)
    assert cov[0, 0] != pytest.approx(naive)


def test_empty_domain_is_nan():
    df = _srs_frame()
    design = make_survey_design(df)
    mean, cov, w_sum = design.domain_mean(df["y"].to_numpy(), np.zeros(len(df), dtype=bool))
    assert np.isnan(mean[0])
    assert np.isnan(cov[0, 0])
    assert w_sum == 0.0


def test_degrees_of_freedom_counts_domain_psus(visits):
    design = make_survey_design(visits)
    everything = np.ones(len(visits), dtype=bool)
    # 8 strata with 4 PSUs each
    assert design.degrees_of_freedom(everything) == 32 - 8
    chc = (visits["source"] == "CHC").to_numpy()
    assert design.degrees_of_freedom(chc) == 16 - 4


def test_lonely_psu_policies():
    df = pd.DataFrame(
        {
            "stratum": [1, 1, 1, 1, 2, 2],
            "psu": [1, 1, 2, 2, 1, 1],
            "weight": [1.0, 2.0, 1.0, 2.0, 1.0, 1.0],
            "y": [1.0, 0.0, 0.0, 1.0, 1.0, 0.0],
        }
    )
    domain = np.ones(len(df), dtype=bool)
    with pytest.raises(ValueError, match="single PSU"):
        make_survey_design(df, lonely_psu="fail").domain_mean(df["y"].to_numpy(), domain)

    _, cov_remove, _ = make_survey_design(df, lonely_psu="remove").domain_mean(df["y"].to_numpy(), domain)
    _, cov_adjust, _ = make_survey_design(df, lonely_psu="adjust").domain_mean(df["y"].to_numpy(), domain)
    assert np.isfinite(cov_remove[0, 0])
    assert cov_adjust[0, 0] >= cov_remove[0, 0]


def test_make_survey_design_validates_fields():
    df = _srs_frame()
    with pytest.raises(ValueError, match="lonely_psu"):
        make_survey_design(df, lonely_psu="certainty")
    bad = df.copy()
    bad.loc[0, "weight"] = np.nan
    with pytest.raises(ValueError, match="missing values"):
        make_survey_design(bad)
    bad = df.copy()
    bad.loc[0, "weight"] = -1.0
    with pytest.raises(ValueError, match="Negative"):
        make_survey_design(bad)
