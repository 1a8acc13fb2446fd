"""Forest and funnel plots for pooled odds ratios.

Both functions draw with matplotlib and save the figure to disk.  The
forest plot consumes the frame built by
:meth:`MetaAnalyzer.generate_forest_plot_data`; the funnel plot works
directly on the derived effects and pooled result.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.patches import Polygon

from ..core.models import DerivedEffect, PooledResult
from ..utils.logging import get_logger

logger = get_logger(__name__)


def create_forest_plot(df: pd.DataFrame, output_path: Path, title: str = "Forest plot") -> Path:
    """Draw a forest plot on the odds ratio scale and save it.

    Args:
        df: Frame with ``study``, ``effect``, ``ci_lower``, ``ci_upper``,
            ``weight`` and ``type`` columns.
        output_path: Image file to write (PNG or SVG).
        title: Figure title.

    Returns:
        The path the figure was written to.
    """
    studies = df[df["type"] == "study"].reset_index(drop=True)
    pooled = df[df["type"] == "pooled"]
    prediction = df[df["type"] == "prediction"]
    n = len(studies)
    fig, ax = plt.subplots(figsize=(8, max(3.0, 0.4 * n + 2)))
    # Studies from the top down, pooled diamond at the bottom
    y_positions = np.arange(n, 0, -1) + 1
    weights = studies["weight"].fillna(0.0).to_numpy()
    max_weight = weights.max() if n and weights.max() > 0 else 1.0
    for y, w, (_, row) in zip(y_positions, weights, studies.iterrows()):
        ax.plot([row["ci_lower"], row["ci_upper"]], [y, y], color="black", lw=1)
        size = 4 + 10 * w / max_weight
        ax.plot(row["effect"], y, marker="s", color="navy", markersize=size)
    labels = list(studies["study"])
    ticks = list(y_positions)
    if not pooled.empty:
        row = pooled.iloc[0]
        diamond = Polygon(
            [
                (row["ci_lower"], 0.5),
                (row["effect"], 0.75),
                (row["ci_upper"], 0.5),
                (row["effect"], 0.25),
            ],
            closed=True,
            color="firebrick",
        )
        ax.add_patch(diamond)
        ax.axvline(row["effect"], color="firebrick", linestyle=":", lw=0.8)
        labels.append(row["study"])
        ticks.append(0.5)
    if not prediction.empty:
        row = prediction.iloc[0]
        ax.plot([row["ci_lower"], row["ci_upper"]], [0.0, 0.0], color="firebrick", lw=2, alpha=0.5)
        labels.append("Prediction interval")
        ticks.append(0.0)
    ax.axvline(1.0, color="gray", lw=1)
    ax.set_xscale("log")
    ax.set_yticks(ticks)
    ax.set_yticklabels(labels, fontsize=8)
    ax.set_xlabel("Odds ratio (log scale)")
    ax.set_title(title)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    output_path = Path(output_path)
    fig.savefig(output_path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Forest plot saved to {output_path}")
    return output_path


def create_funnel_plot(
    effect_sizes: Sequence[DerivedEffect],
    pooled: PooledResult,
    output_path: Path,
    title: str = "Funnel plot",
) -> Path:
    """Draw log odds ratio against standard error with a 95% pseudo‑CI funnel."""
    effects = np.array([es.log_effect for es in effect_sizes])
    ses = np.array([es.standard_error for es in effect_sizes])
    fig, ax = plt.subplots(figsize=(5.5, 4.5))
    ax.scatter(effects, ses, s=35, color="navy", edgecolor="white", linewidth=0.5, zorder=3)
    ax.axvline(pooled.pooled_log_effect, color="firebrick", linestyle="--", linewidth=1)
    se_range = np.linspace(0.0, ses.max() * 1.1, 100)
    ax.plot(pooled.pooled_log_effect - 1.96 * se_range, se_range, color="gray", linestyle=":", linewidth=0.8)
    ax.plot(pooled.pooled_log_effect + 1.96 * se_range, se_range, color="gray", linestyle=":", linewidth=0.8)
    ax.invert_yaxis()
    ax.set_xlabel("Log odds ratio")
    ax.set_ylabel("Standard error")
    ax.set_title(title)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    output_path = Path(output_path)
    fig.savefig(output_path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Funnel plot saved to {output_path}")
    return output_path
