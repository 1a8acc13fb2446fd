"""Load study tables into :class:`StudyRecord` objects.

Tables are read with pandas from CSV, TSV, Excel or parquet files.  Column
headers are matched case‑insensitively against a set of common
aliases (``OR``, ``lower``, ``upper``, ``n`` …) so that exports from
spreadsheets can be used without renaming.  Cells that cannot be
parsed as numbers become missing values; such rows are kept and later
reported as exclusions by the effect size deriver.
"""

from __future__ import annotations

import math
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ..core.models import StudyRecord
from ..meta.exceptions import DataLoadError
from ..utils.logging import get_logger, study_logger

logger = get_logger(__name__)

REQUIRED_COLUMNS = ["study_id", "odds_ratio", "ci_lower", "ci_upper"]
OPTIONAL_COLUMNS = ["sample_size", "outcome"]

COLUMN_ALIASES: Dict[str, str] = {
    "study_id": "study_id",
    "study": "study_id",
    "author": "study_id",
    "label": "study_id",
    "odds_ratio": "odds_ratio",
    "or": "odds_ratio",
    "oddsratio": "odds_ratio",
    "effect": "odds_ratio",
    "ci_lower": "ci_lower",
    "lower": "ci_lower",
    "lci": "ci_lower",
    "lower_ci": "ci_lower",
    "ci_upper": "ci_upper",
    "upper": "ci_upper",
    "uci": "ci_upper",
    "upper_ci": "ci_upper",
    "sample_size": "sample_size",
    "n": "sample_size",
    "participants": "sample_size",
    "outcome": "outcome",
}


def read_table(path: Path) -> pd.DataFrame:
    """Read a CSV, TSV, Excel or parquet file into a DataFrame."""
    path = Path(path)
    if not path.exists():
        raise DataLoadError(f"Study table not found: {path}")
    suffix = path.suffix.lower()
    try:
        if suffix == ".parquet":
            return pd.read_parquet(path)
        if suffix in {".xlsx", ".xls"}:
            return pd.read_excel(path)
        if suffix in {".tsv", ".tab"}:
            return pd.read_csv(path, sep="\t")
        return pd.read_csv(path)
    except (OSError, ValueError, zipfile.BadZipFile) as exc:
        raise DataLoadError(f"Failed to read {path}: {exc}") from exc


def normalize_columns(df: pd.DataFrame, column_map: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """Rename columns to canonical names.

    Args:
        df: Raw study table.
        column_map: Explicit ``{source_column: canonical_name}`` mapping.
            Takes precedence over the built‑in aliases.

    Raises:
        DataLoadError: If a required column cannot be found.
    """
    renames: Dict[str, str] = {}
    for col in df.columns:
        key = str(col).strip().lower().replace(" ", "_").replace("-", "_")
        if column_map and col in column_map:
            renames[col] = column_map[col]
        elif key in COLUMN_ALIASES:
            renames[col] = COLUMN_ALIASES[key]
    df = df.rename(columns=renames)
    # Keep the first column that maps onto each canonical name
    df = df.loc[:, ~df.columns.duplicated()]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise DataLoadError(f"Missing required columns: {', '.join(missing)}")
    return df


def frame_to_records(df: pd.DataFrame) -> List[StudyRecord]:
    """Convert a normalised DataFrame into study records."""
    numeric = df.copy()
    for col in ["odds_ratio", "ci_lower", "ci_upper"] + (["sample_size"] if "sample_size" in df.columns else []):
        numeric[col] = pd.to_numeric(numeric[col], errors="coerce")
    records: List[StudyRecord] = []
    for i, row in numeric.iterrows():
        study_id = row["study_id"]
        if study_id is None or (isinstance(study_id, float) and math.isnan(study_id)) or not str(study_id).strip():
            study_id = f"row {i + 1}"
            logger.warning(f"Study without identifier at row {i + 1}; labelled '{study_id}'")
        sample_size = _sample_size(row.get("sample_size"), study_id)
        outcome = row.get("outcome")
        records.append(
            StudyRecord(
                study_id=str(study_id),
                odds_ratio=_optional_float(row["odds_ratio"]),
                ci_lower=_optional_float(row["ci_lower"]),
                ci_upper=_optional_float(row["ci_upper"]),
                sample_size=sample_size,
                outcome=str(outcome).strip() if isinstance(outcome, str) and outcome.strip() else None,
            )
        )
    return records


def load_studies(path: Path, column_map: Optional[Dict[str, str]] = None) -> List[StudyRecord]:
    """Read a study table and return its rows as study records."""
    df = normalize_columns(read_table(path), column_map)
    records = frame_to_records(df)
    logger.info(f"Loaded {len(records)} study records from {path}")
    return records


def _optional_float(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _sample_size(value, study_id) -> Optional[int]:
    """Whole, finite, non-negative count or ``None``."""
    if value is None or pd.isna(value):
        return None
    log = study_logger(logger, str(study_id))
    if not math.isfinite(value):
        log.warning(f"Ignoring non-finite sample size for {study_id}", extra={"extra": {"value": str(value)}})
        return None
    if not float(value).is_integer():
        log.warning(f"Ignoring non-integer sample size for {study_id}", extra={"extra": {"value": float(value)}})
        return None
    if value < 0:
        log.warning(f"Ignoring negative sample size for {study_id}")
        return None
    return int(value)
