from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from namcs_chc.config import CONDITIONS


def make_visits(seed: int = 2026, n_per_psu: int = 20, prevalence: dict = None) -> pd.DataFrame:
    """Synthetic cleaned visits: 4 strata x 4 PSUs per source, disjoint strata."""

    prevalence = prevalence or {
        "htn": {"CHC": 0.40, "PPP": 0.15},
        "asthma": {"CHC": 0.12, "PPP": 0.12},
        "rare": {"CHC": 0.01, "PPP": 0.01},
    }
    rng = np.random.default_rng(seed)
    frames = []
    for s_idx, source in enumerate(["CHC", "PPP"]):
        for stratum in range(1, 5):
            for psu in range(1, 5):
                n = n_per_psu
                part = pd.DataFrame(
                    {
                        "source": source,
                        "stratum": stratum + 10 * s_idx,
                        "psu": psu,
                        "weight": rng.uniform(1.0, 5.0, size=n),
                        "age": rng.integers(0, 91, size=n),
                    }
                )
                for cond, rates in prevalence.items():
                    part[cond] = pd.array((rng.random(n) < rates[source]).astype(int), dtype="Int64")
                frames.append(part)
    return pd.concat(frames, ignore_index=True)


def make_raw_source(seed: int, n: int, htn_rate: float) -> pd.DataFrame:
    """Raw NAMCS-like visit records with the original variable names and codes."""

    rng = np.random.default_rng(seed)
    raw = pd.DataFrame(
        {
            "CSTRATM": rng.integers(1, 7, size=n) + 100 * seed,
            "CPSUM": rng.integers(1, 6, size=n),
            "PATWT": rng.uniform(50.0, 500.0, size=n),
            "AGE": rng.integers(0, 96, size=n),
            "SPECCAT": rng.choice([1, 1, 1, 2, 3], size=n),
        }
    )
    for cond in CONDITIONS:
        rate = htn_rate if cond == "HTN" else 0.25
        raw[cond] = (rng.random(n) < rate).astype(int)
    unanswered = rng.random(n) < 0.05
    raw["TOTCHRON"] = raw[CONDITIONS].sum(axis=1)
    raw.loc[unanswered, "TOTCHRON"] = -9
    raw.loc[unanswered, CONDITIONS] = -9
    return raw


@pytest.fixture
def visits() -> pd.DataFrame:
    return make_visits()


@pytest.fixture
def raw_dir(tmp_path: Path) -> Path:
    out = tmp_path / "raw"
    out.mkdir()
    make_raw_source(seed=1, n=1500, htn_rate=0.45).to_stata(out / "chc2012.dta", write_index=False)
    make_raw_source(seed=2, n=1500, htn_rate=0.20).to_stata(out / "namcs2012.dta", write_index=False)
    return out
