from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Iterable, Mapping, Optional

import pandas as pd
import requests


def download_file(url: str, *, dest: Path, timeout_sec: int = 120) -> Path:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with requests.get(url, timeout=timeout_sec, stream=True) as r:
        r.raise_for_status()
        with dest.open("wb") as f:
            for chunk in r.iter_content(chunk_size=1024 * 64):
                if chunk:
                    f.write(chunk)
    return dest


def extract_member(zip_path: Path, dest_dir: Path, suffix: str = ".dta") -> Path:
    """Extract the single member of zip_path ending in suffix and return its path."""

    with zipfile.ZipFile(zip_path) as zf:
        members = [m for m in zf.namelist() if m.lower().endswith(suffix) and not m.endswith("/")]
        if len(members) != 1:
            raise ValueError(f"Expected exactly one '{suffix}' member in {zip_path}; found: {members}")
        dest_dir.mkdir(parents=True, exist_ok=True)
        out_path = dest_dir / Path(members[0]).name
        with zf.open(members[0]) as src, out_path.open("wb") as dst:
            while True:
                chunk = src.read(1024 * 1024)
                if not chunk:
                    break
                dst.write(chunk)
    return out_path


def fetch_source(url: str, dest: Path, timeout_sec: int = 120) -> Path:
    """Download a zipped Stata file and place the extracted .dta at dest."""

    zip_path = dest.with_suffix(".zip")
    download_file(url, dest=zip_path, timeout_sec=timeout_sec)
    extracted = extract_member(zip_path, dest.parent)
    if extracted != dest:
        extracted.replace(dest)
    return dest


def read_survey_file(path: Path, columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
    # Numeric codes only; label recoding happens in namcs_chc.data.build.
    return pd.read_stata(
        path,
        columns=list(columns) if columns is not None else None,
        convert_categoricals=False,
        convert_missing=False,
    )


def load_sources(paths: Mapping[str, Path], source_col: str = "source") -> pd.DataFrame:
    """Read every source file, tag its rows with the source key and stack them."""

    frames = []
    for source, path in paths.items():
        df = read_survey_file(path)
        # Yearly files disagree on variable-name case; stack on upper case.
        df.columns = [str(c).upper() for c in df.columns]
        df.insert(0, source_col, source)
        frames.append(df)
    if not frames:
        raise ValueError("No source files given.")
    return pd.concat(frames, ignore_index=True, sort=False)
