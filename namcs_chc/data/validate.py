from typing import Iterable

import pandas as pd


def assert_required_columns(df, required: Iterable[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def assert_binary(series: pd.Series) -> None:
    values = set(series.dropna().unique().tolist())
    if not values.issubset({0, 1}):
        raise ValueError(f"Expected binary {{0,1}} values in {series.name!r} but observed: {sorted(values)}")
