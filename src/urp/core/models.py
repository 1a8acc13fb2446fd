"""Domain models for study records, derived effects and pooled results.

``StudyRecord`` is the raw input row as reported by a primary study or
meta‑analysis.  Its numeric fields are deliberately optional: whether a
record can contribute to the pool is decided by the effect size deriver,
which turns unusable rows into ``ExcludedRecord`` entries instead of
failing validation.  ``DerivedEffect`` and ``PooledResult`` are computed
values and are never mutated after construction.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StudyRecord(BaseModel):
    """One study included in the review."""

    model_config = ConfigDict(frozen=True)

    study_id: str = Field(..., description="Display label, e.g. author and year")
    odds_ratio: Optional[float] = None
    ci_lower: Optional[float] = None
    ci_upper: Optional[float] = None
    sample_size: Optional[int] = Field(None, ge=0)
    outcome: Optional[str] = None

    @field_validator("study_id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        label = v.strip()
        if not label:
            raise ValueError("study_id must not be empty")
        return label


class ExclusionReason(str, Enum):
    """Why a study record could not contribute to the pool."""

    MISSING_VALUE = "missing_value"
    NON_POSITIVE_VALUE = "non_positive_value"
    INVALID_INTERVAL = "invalid_interval"
    INVALID_STANDARD_ERROR = "invalid_standard_error"
    NON_FINITE_EFFECT = "non_finite_effect"


class ExcludedRecord(BaseModel):
    """A study record left out of the analysis, with the reason."""

    model_config = ConfigDict(frozen=True)

    study_id: str
    reason: ExclusionReason
    detail: str = ""


class DerivedEffect(BaseModel):
    """Log odds ratio and standard error derived from a study record."""

    model_config = ConfigDict(frozen=True)

    study_id: str
    log_effect: float
    standard_error: float = Field(..., gt=0)
    odds_ratio: float = Field(..., gt=0)
    ci_lower: float = Field(..., gt=0)
    ci_upper: float = Field(..., gt=0)
    sample_size: Optional[int] = None
    outcome: Optional[str] = None

    @field_validator("log_effect", "standard_error")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("value must be finite")
        return v

    @property
    def variance(self) -> float:
        return self.standard_error ** 2

    @property
    def weight(self) -> float:
        """Fixed effect (inverse variance) weight."""
        return 1.0 / self.variance


class Interval(BaseModel):
    """Interval on the odds ratio scale."""

    model_config = ConfigDict(frozen=True)

    lower: float
    upper: float


class PooledResult(BaseModel):
    """Summary of a random (or fixed) effects meta‑analysis.

    ``tau2``, ``i_squared`` and the Q statistic are ``None`` when fewer
    than two studies were pooled; ``prediction_interval`` is ``None``
    when fewer than three were.  Absent statistics are never reported
    as zero.  ``weights`` holds the percentage weight of each pooled
    effect, in the order the effects were passed to the analyser.
    """

    model_config = ConfigDict(frozen=True)

    k: int = Field(..., ge=1)
    pooled_log_effect: float
    pooled_standard_error: float = Field(..., ge=0)
    tau2: Optional[float] = Field(None, ge=0)
    i_squared: Optional[float] = Field(None, ge=0, le=100)
    q: Optional[float] = Field(None, ge=0)
    q_df: int = 0
    q_pvalue: Optional[float] = None
    confidence_interval: Interval
    prediction_interval: Optional[Interval] = None
    z_score: float
    p_value: float
    method: str = "random"
    tau2_method: str = "DL"
    weights: List[float] = Field(default_factory=list)

    @property
    def pooled_odds_ratio(self) -> float:
        return math.exp(self.pooled_log_effect)

    @property
    def heterogeneity_interpretation(self) -> Optional[str]:
        """Rough guide following the Cochrane Handbook thresholds."""
        if self.i_squared is None:
            return None
        if self.i_squared < 25:
            return "low heterogeneity"
        if self.i_squared < 50:
            return "moderate heterogeneity"
        if self.i_squared < 75:
            return "substantial heterogeneity"
        return "considerable heterogeneity"


class AnalysisReport(BaseModel):
    """Everything produced by one analysis run."""

    model_config = ConfigDict(frozen=True)

    effects: List[DerivedEffect] = Field(default_factory=list)
    excluded: List[ExcludedRecord] = Field(default_factory=list)
    pooled: Optional[PooledResult] = None
    outcome: Optional[str] = None

    @property
    def n_included(self) -> int:
        return len(self.effects)

    @property
    def n_excluded(self) -> int:
        return len(self.excluded)

    @property
    def insufficient_data(self) -> bool:
        """True when no valid study was left to pool."""
        return self.pooled is None
