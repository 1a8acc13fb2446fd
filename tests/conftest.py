"""Shared fixtures for the test suite."""

from pathlib import Path

import matplotlib
import pytest

matplotlib.use("Agg")

from urp.core.models import StudyRecord  # noqa: E402


@pytest.fixture
def three_studies() -> list[StudyRecord]:
    """Three studies with moderate heterogeneity."""
    return [
        StudyRecord(study_id="Adams 2015", odds_ratio=2.0, ci_lower=1.2, ci_upper=3.3, sample_size=120),
        StudyRecord(study_id="Baker 2018", odds_ratio=1.5, ci_lower=1.0, ci_upper=2.25, sample_size=340),
        StudyRecord(study_id="Chen 2021", odds_ratio=3.0, ci_lower=1.8, ci_upper=5.0, sample_size=95),
    ]


@pytest.fixture
def studies_csv(tmp_path: Path) -> Path:
    """Study table with one unusable row."""
    path = tmp_path / "studies.csv"
    path.write_text(
        "Study,OR,Lower,Upper,N,Outcome\n"
        "Adams 2015,2.0,1.2,3.3,120,pressure ulcer\n"
        "Baker 2018,1.5,1.0,2.25,340,pressure ulcer\n"
        "Chen 2021,3.0,1.8,5.0,95,pressure ulcer\n"
        "Diaz 2019,1.8,2.4,1.1,60,falls\n"
        "Evans 2020,1.3,0.9,1.9,210,falls\n",
        encoding="utf-8",
    )
    return path
