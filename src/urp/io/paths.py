"""Output directory and file path management."""

import re
from pathlib import Path
from datetime import datetime
from typing import Optional

from ..config.settings import settings

_UNSAFE = re.compile(r"[^\w.-]+")


def create_output_dir(prefix: str = "analysis", timestamp: Optional[datetime] = None) -> Path:
    """Create ``<output_dir>/<prefix>_<YYYYmmdd_HHMMSS>`` and return it."""
    if timestamp is None:
        timestamp = datetime.now()
    dirname = f"{prefix}_{timestamp.strftime('%Y%m%d_%H%M%S')}"
    dirpath = settings.output_dir / dirname
    dirpath.mkdir(parents=True, exist_ok=True)
    return dirpath


def outcome_slug(outcome: Optional[str]) -> str:
    """Lower-case folder name for an outcome label.

    Examples:
        >>> outcome_slug("Pressure ulcer (stage 2+)")
        'pressure_ulcer_stage_2'
        >>> outcome_slug("falls/fractures")
        'falls_fractures'
    """
    slug = _UNSAFE.sub("_", (outcome or "").strip().lower()).strip("._")
    return slug or "unspecified"


def outcome_dir(base: Path, outcome: Optional[str]) -> Path:
    """Create and return the sub-directory of ``base`` for one outcome."""
    dirpath = Path(base) / outcome_slug(outcome)
    dirpath.mkdir(parents=True, exist_ok=True)
    return dirpath
