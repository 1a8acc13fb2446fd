"""Effect size derivation from reported odds ratios.

Primary studies usually report an odds ratio with a 95% confidence
interval rather than a standard error.  Ratio measures are roughly
normal on the log scale, so the interval spans ``2 * 1.96`` standard
errors there::

    log_effect = ln(OR)
    se = (ln(upper) - ln(lower)) / 3.92

Records that cannot produce a finite, positive standard error are
reported as exclusions instead of aborting the run.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Tuple

from ..config.settings import settings
from ..core.models import DerivedEffect, ExcludedRecord, ExclusionReason, StudyRecord
from ..utils.logging import get_logger, study_logger
from .exceptions import InvalidRecordError

logger = get_logger(__name__)


def _is_missing(value: Optional[float]) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def derive_effect(record: StudyRecord, z_crit: Optional[float] = None) -> DerivedEffect:
    """Convert a study's odds ratio and CI into a log effect and SE.

    Args:
        record: Study record with odds ratio and 95% confidence bounds.
        z_crit: Normal quantile of the reported interval.  Defaults to
            ``settings.z_crit`` (1.96), giving the usual divisor 3.92.

    Returns:
        The derived effect for the record.

    Raises:
        InvalidRecordError: If a value is missing or non‑positive, the
            interval is empty or reversed, the odds ratio is infinite, or
            the standard error is not finite and positive.
    """
    z = settings.z_crit if z_crit is None else z_crit
    values = {
        "odds_ratio": record.odds_ratio,
        "ci_lower": record.ci_lower,
        "ci_upper": record.ci_upper,
    }
    missing = [name for name, value in values.items() if _is_missing(value)]
    if missing:
        raise InvalidRecordError(record.study_id, ExclusionReason.MISSING_VALUE, ", ".join(missing))
    non_positive = [name for name, value in values.items() if value <= 0]
    if non_positive:
        raise InvalidRecordError(record.study_id, ExclusionReason.NON_POSITIVE_VALUE, ", ".join(non_positive))
    if record.ci_upper <= record.ci_lower:
        raise InvalidRecordError(
            record.study_id,
            ExclusionReason.INVALID_INTERVAL,
            f"upper {record.ci_upper} <= lower {record.ci_lower}",
        )
    log_effect = math.log(record.odds_ratio)
    se = (math.log(record.ci_upper) - math.log(record.ci_lower)) / (2 * z)
    if not math.isfinite(log_effect):
        raise InvalidRecordError(
            record.study_id,
            ExclusionReason.NON_FINITE_EFFECT,
            f"odds_ratio={record.odds_ratio}",
        )
    if not math.isfinite(se) or se <= 0:
        raise InvalidRecordError(record.study_id, ExclusionReason.INVALID_STANDARD_ERROR, f"se={se}")
    if not record.ci_lower <= record.odds_ratio <= record.ci_upper:
        study_logger(logger, record.study_id, record.outcome).warning(
            f"Odds ratio for {record.study_id} lies outside its confidence interval",
            extra={"extra": {"odds_ratio": record.odds_ratio}},
        )
    return DerivedEffect(
        study_id=record.study_id,
        log_effect=log_effect,
        standard_error=se,
        odds_ratio=record.odds_ratio,
        ci_lower=record.ci_lower,
        ci_upper=record.ci_upper,
        sample_size=record.sample_size,
        outcome=record.outcome,
    )


def derive_effects(
    records: Iterable[StudyRecord],
    z_crit: Optional[float] = None,
) -> Tuple[List[DerivedEffect], List[ExcludedRecord]]:
    """Derive effects for every record, collecting exclusions.

    The input order is preserved in both returned lists.
    """
    effects: List[DerivedEffect] = []
    excluded: List[ExcludedRecord] = []
    for record in records:
        try:
            effects.append(derive_effect(record, z_crit=z_crit))
        except InvalidRecordError as exc:
            study_logger(logger, exc.study_id, record.outcome).warning(
                f"Excluding {exc.study_id}: {exc.reason.value}",
                extra={"extra": {"reason": exc.reason.value, "detail": exc.detail}},
            )
            excluded.append(ExcludedRecord(study_id=exc.study_id, reason=exc.reason, detail=exc.detail))
    logger.info(f"Derived {len(effects)} effect sizes, excluded {len(excluded)} records")
    return effects, excluded
