"""Tabular and JSON export of analysis results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from ..core.models import AnalysisReport, DerivedEffect, ExcludedRecord
from ..utils.logging import get_logger

logger = get_logger(__name__)

EFFECT_COLUMNS = [
    "study_id",
    "outcome",
    "odds_ratio",
    "ci_lower",
    "ci_upper",
    "sample_size",
    "log_effect",
    "standard_error",
    "weight_percent",
]


def effects_to_frame(effects: List[DerivedEffect], weights: List[float] | None = None) -> pd.DataFrame:
    """One row per derived effect, with pooling weights when given.

    ``weights`` is positional: the i-th weight belongs to the i-th effect.
    """
    rows = []
    for i, es in enumerate(effects):
        row = es.model_dump()
        row["weight_percent"] = weights[i] if weights else None
        rows.append(row)
    return pd.DataFrame(rows, columns=EFFECT_COLUMNS)


def excluded_to_frame(excluded: List[ExcludedRecord]) -> pd.DataFrame:
    return pd.DataFrame(
        [ex.model_dump(mode="json") for ex in excluded],
        columns=["study_id", "reason", "detail"],
    )


def summary_to_dict(report: AnalysisReport) -> Dict[str, Any]:
    """JSON‑serialisable summary of a report.

    Undefined statistics are written as ``null``.
    """
    summary: Dict[str, Any] = {
        "outcome": report.outcome,
        "n_included": report.n_included,
        "n_excluded": report.n_excluded,
        "insufficient_data": report.insufficient_data,
        "exclusion_reasons": {},
        "pooled": None,
    }
    for ex in report.excluded:
        reasons = summary["exclusion_reasons"]
        reasons[ex.reason.value] = reasons.get(ex.reason.value, 0) + 1
    if report.pooled is not None:
        pooled = report.pooled.model_dump(mode="json")
        pooled["pooled_odds_ratio"] = report.pooled.pooled_odds_ratio
        pooled["heterogeneity_interpretation"] = report.pooled.heterogeneity_interpretation
        summary["pooled"] = pooled
    return summary


def save_report(report: AnalysisReport, output_dir: Path) -> Dict[str, Path]:
    """Write effects, exclusions and the pooled summary to ``output_dir``.

    Returns:
        Mapping of artefact name to the written path.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    weights = report.pooled.weights if report.pooled is not None else None
    paths = {
        "effects": output_dir / "derived_effects.csv",
        "excluded": output_dir / "excluded_records.csv",
        "summary": output_dir / "pooled_summary.json",
    }
    effects_to_frame(report.effects, weights).to_csv(paths["effects"], index=False)
    excluded_to_frame(report.excluded).to_csv(paths["excluded"], index=False)
    paths["summary"].write_text(json.dumps(summary_to_dict(report), indent=2), encoding="utf-8")
    logger.info(f"Saved analysis results to {output_dir}")
    return paths
