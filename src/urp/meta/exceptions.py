"""Exceptions raised by the meta‑analysis components."""

from ..core.models import ExclusionReason


class UmbrellaReviewError(Exception):
    """Base exception for umbrella review errors."""

    pass


class InvalidRecordError(UmbrellaReviewError, ValueError):
    """Raised when a study record cannot yield a usable effect size."""

    def __init__(self, study_id: str, reason: ExclusionReason, detail: str = "") -> None:
        self.study_id = study_id
        self.reason = reason
        self.detail = detail
        super().__init__(f"{study_id}: {reason.value}" + (f" ({detail})" if detail else ""))


class InsufficientDataError(UmbrellaReviewError, ValueError):
    """Raised when there are no valid studies to pool."""

    pass


class DataLoadError(UmbrellaReviewError):
    """Raised when a study table cannot be read or lacks required columns."""

    pass
