from pathlib import Path
from typing import Iterable, Mapping

import numpy as np
import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from namcs_chc.reporting.tables import wide_by_source


def save_figure(fig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=300, bbox_inches="tight")


def plot_significant_differences(
    filtered: pd.DataFrame,
    *,
    sources: Iterable[str],
    condition_labels: Mapping[str, str],
    age_band_labels: Mapping[str, str],
):
    """Dot-and-whisker chart of per-source prevalence (95% CI) for significant pairs."""

    sources = list(sources)
    wide = wide_by_source(filtered, sources) if not filtered.empty else pd.DataFrame()
    if not wide.empty:
        wide = wide.loc[wide["significant"].astype(bool)].reset_index(drop=True)

    fig, ax = plt.subplots(figsize=(8, max(2.5, 0.4 * len(wide) + 1.5)))
    if wide.empty:
        ax.text(0.5, 0.5, "No significant differences", ha="center", va="center", transform=ax.transAxes)
        ax.set_axis_off()
        return fig

    labels = [
        f"{condition_labels.get(c, c)} ({age_band_labels.get(b, b)})"
        for b, c in zip(wide["age_band"], wide["condition"])
    ]
    y = np.arange(len(wide))
    offsets = np.linspace(-0.15, 0.15, len(sources)) if len(sources) > 1 else [0.0]
    for offset, source in zip(offsets, sources):
        mean = wide[f"mean_{source}"].to_numpy(dtype=float) * 100.0
        lo = wide[f"ci_low_{source}"].to_numpy(dtype=float) * 100.0
        hi = wide[f"ci_high_{source}"].to_numpy(dtype=float) * 100.0
        ax.errorbar(mean, y + offset, xerr=[mean - lo, hi - mean], fmt="o", capsize=3, label=source)

    ax.set_yticks(y)
    ax.set_yticklabels(labels, fontsize=8)
    ax.invert_yaxis()
    ax.set_xlabel("Weighted prevalence, % (95% CI)")
    ax.set_title("Chronic conditions with significant differences by setting")
    ax.legend()
    fig.tight_layout()
    return fig
