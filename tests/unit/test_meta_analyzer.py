"""Unit tests for random-effects pooling.

Expected values for the three-study example were computed with the
DerSimonian-Laird formulas (tau² from Cochran's Q, t quantile with
k - 2 degrees of freedom for the prediction interval).
"""

import itertools
import math

import pytest

from urp.core.models import DerivedEffect, StudyRecord
from urp.meta.analyzer import MetaAnalyzer
from urp.meta.effects import derive_effects
from urp.meta.exceptions import InsufficientDataError


def effects_of(records):
    effects, excluded = derive_effects(records)
    assert not excluded
    return effects


class TestPoolExample:
    """Worked three-study example."""

    def test_dersimonian_laird(self, three_studies) -> None:
        pooled = MetaAnalyzer().pool(effects_of(three_studies))
        assert pooled.k == 3
        assert pooled.q == pytest.approx(4.343533, rel=1e-5)
        assert pooled.q_df == 2
        assert pooled.tau2 == pytest.approx(0.0679364, rel=1e-4)
        assert pooled.i_squared == pytest.approx(53.9545, rel=1e-4)
        assert pooled.pooled_log_effect == pytest.approx(0.709365, rel=1e-5)
        assert pooled.pooled_standard_error == pytest.approx(0.204875, rel=1e-5)
        assert pooled.confidence_interval.lower == pytest.approx(1.360443, rel=1e-5)
        assert pooled.confidence_interval.upper == pytest.approx(3.037150, rel=1e-5)
        assert pooled.prediction_interval is not None
        assert pooled.prediction_interval.lower == pytest.approx(0.030104, rel=1e-3)
        assert pooled.prediction_interval.upper == pytest.approx(137.2514, rel=1e-3)
        assert pooled.method == "random"
        assert pooled.tau2_method == "DL"

    def test_weights_sum_to_hundred(self, three_studies) -> None:
        pooled = MetaAnalyzer().pool(effects_of(three_studies))
        assert len(pooled.weights) == 3
        assert sum(pooled.weights) == pytest.approx(100.0)
        # Baker has the narrowest interval
        assert max(pooled.weights) == pooled.weights[1]

    def test_weights_follow_input_order(self, three_studies) -> None:
        analyzer = MetaAnalyzer()
        forward = analyzer.pool(effects_of(three_studies))
        backward = analyzer.pool(effects_of(three_studies[::-1]))
        assert backward.weights == pytest.approx(forward.weights[::-1])

    def test_duplicate_study_ids_keep_separate_weights(self, three_studies) -> None:
        records = [r.model_copy(update={"study_id": "Same"}) for r in three_studies[:2]] + [
            three_studies[2].model_copy(update={"study_id": "Other"})
        ]
        analyzer = MetaAnalyzer()
        pooled = analyzer.pool(effects_of(records))
        reference = analyzer.pool(effects_of(three_studies))
        assert len(pooled.weights) == 3
        assert pooled.weights == pytest.approx(reference.weights)
        assert sum(pooled.weights) == pytest.approx(100.0)

    def test_fixed_effect(self, three_studies) -> None:
        pooled = MetaAnalyzer(method="fixed").pool(effects_of(three_studies))
        assert pooled.pooled_log_effect == pytest.approx(0.678967, rel=1e-5)
        # Heterogeneity is still reported, but not used for weighting
        assert pooled.tau2 == pytest.approx(0.0679364, rel=1e-4)
        assert pooled.prediction_interval is None

    def test_order_invariance(self, three_studies) -> None:
        analyzer = MetaAnalyzer()
        reference = analyzer.pool(effects_of(three_studies))
        for perm in itertools.permutations(three_studies):
            pooled = analyzer.pool(effects_of(list(perm)))
            assert pooled.pooled_log_effect == pytest.approx(reference.pooled_log_effect, abs=1e-12)
            assert pooled.pooled_standard_error == pytest.approx(reference.pooled_standard_error, abs=1e-12)
            assert pooled.tau2 == pytest.approx(reference.tau2, abs=1e-12)
            assert pooled.i_squared == pytest.approx(reference.i_squared, abs=1e-9)


class TestPoolEdgeCases:
    """Small k and homogeneous inputs."""

    def test_empty_raises(self) -> None:
        with pytest.raises(InsufficientDataError):
            MetaAnalyzer().pool([])

    def test_single_study(self) -> None:
        effects = effects_of([StudyRecord(study_id="Only", odds_ratio=2.0, ci_lower=1.2, ci_upper=3.3)])
        pooled = MetaAnalyzer().pool(effects)
        assert pooled.k == 1
        assert pooled.pooled_log_effect == pytest.approx(math.log(2.0))
        assert pooled.pooled_standard_error == pytest.approx(effects[0].standard_error)
        assert pooled.tau2 is None
        assert pooled.i_squared is None
        assert pooled.q is None
        assert pooled.prediction_interval is None
        assert pooled.weights == [pytest.approx(100.0)]

    def test_two_studies(self, three_studies) -> None:
        pooled = MetaAnalyzer().pool(effects_of(three_studies[:2]))
        assert pooled.k == 2
        assert pooled.tau2 is not None and pooled.tau2 >= 0
        assert pooled.i_squared is not None
        assert pooled.prediction_interval is None

    def test_identical_studies_have_no_heterogeneity(self) -> None:
        records = [
            StudyRecord(study_id=f"S{i}", odds_ratio=1.8, ci_lower=1.2, ci_upper=2.7) for i in range(5)
        ]
        for tau2_method in ("DL", "REML"):
            pooled = MetaAnalyzer(tau2_method=tau2_method).pool(effects_of(records))
            assert pooled.tau2 == 0.0
            assert pooled.i_squared == 0.0
            assert pooled.pooled_log_effect == pytest.approx(math.log(1.8))

    def test_statistics_within_bounds(self) -> None:
        records = [
            StudyRecord(study_id="A", odds_ratio=0.5, ci_lower=0.3, ci_upper=0.8),
            StudyRecord(study_id="B", odds_ratio=4.0, ci_lower=2.5, ci_upper=6.4),
            StudyRecord(study_id="C", odds_ratio=1.1, ci_lower=0.9, ci_upper=1.3),
            StudyRecord(study_id="D", odds_ratio=1.0, ci_lower=0.5, ci_upper=2.0),
        ]
        for tau2_method in ("DL", "REML"):
            pooled = MetaAnalyzer(tau2_method=tau2_method).pool(effects_of(records))
            assert pooled.tau2 > 0
            assert 0 <= pooled.i_squared <= 100
            assert pooled.prediction_interval.lower < pooled.confidence_interval.lower
            assert pooled.prediction_interval.upper > pooled.confidence_interval.upper

    def test_unknown_method(self) -> None:
        with pytest.raises(ValueError):
            MetaAnalyzer(method="bayesian")
        with pytest.raises(ValueError):
            MetaAnalyzer(tau2_method="PM")


class TestRun:
    """Tests for full runs over study records."""

    def test_run_reports_exclusions(self, three_studies) -> None:
        records = three_studies + [StudyRecord(study_id="Bad", odds_ratio=-1.0, ci_lower=0.5, ci_upper=2.0)]
        report = MetaAnalyzer().run(records)
        assert report.n_included == 3
        assert report.n_excluded == 1
        assert report.pooled.k == 3
        assert report.insufficient_data is False

    def test_run_without_valid_studies(self) -> None:
        records = [StudyRecord(study_id="Bad", odds_ratio=None, ci_lower=0.5, ci_upper=2.0)]
        report = MetaAnalyzer().run(records)
        assert report.insufficient_data is True
        assert report.pooled is None
        assert report.n_excluded == 1

    def test_run_empty(self) -> None:
        report = MetaAnalyzer().run([])
        assert report.insufficient_data is True

    def test_run_by_outcome(self, three_studies) -> None:
        records = [r.model_copy(update={"outcome": "ulcer"}) for r in three_studies] + [
            StudyRecord(study_id="Evans 2020", odds_ratio=1.3, ci_lower=0.9, ci_upper=1.9, outcome="falls"),
            StudyRecord(study_id="Fox 2022", odds_ratio=1.6, ci_lower=1.0, ci_upper=2.6),
        ]
        reports = MetaAnalyzer().run_by_outcome(records)
        assert list(reports) == ["falls", "ulcer", "unspecified"]
        assert reports["ulcer"].pooled.k == 3
        assert reports["falls"].pooled.k == 1
        assert reports["falls"].outcome == "falls"


class TestDiagnostics:
    """Heterogeneity, publication bias and sensitivity helpers."""

    def test_assess_heterogeneity(self, three_studies) -> None:
        result = MetaAnalyzer().assess_heterogeneity(effects_of(three_studies))
        assert result["Q"] == pytest.approx(4.343533, rel=1e-5)
        assert result["I_squared"] == pytest.approx(53.9545, rel=1e-4)
        assert result["interpretation"] == "substantial heterogeneity"

    def test_assess_heterogeneity_single_study(self, three_studies) -> None:
        result = MetaAnalyzer().assess_heterogeneity(effects_of(three_studies[:1]))
        assert result["I_squared"] is None
        assert result["tau_squared"] is None

    def test_publication_bias_needs_three_studies(self, three_studies) -> None:
        result = MetaAnalyzer().publication_bias_test(effects_of(three_studies[:2]))
        assert "error" in result

    def test_publication_bias(self, three_studies) -> None:
        result = MetaAnalyzer().publication_bias_test(effects_of(three_studies))
        assert set(result) >= {"intercept", "p_value", "bias_detected", "interpretation"}
        assert 0.0 <= result["p_value"] <= 1.0

    def test_publication_bias_exact_fit_is_undefined(self) -> None:
        # log effect = 1.0 * se + 0.1, so effect / se lies exactly on a line in precision
        effects = [
            DerivedEffect(
                study_id=f"S{i}",
                log_effect=se + 0.1,
                standard_error=se,
                odds_ratio=math.exp(se + 0.1),
                ci_lower=math.exp(se + 0.1 - 1.96 * se),
                ci_upper=math.exp(se + 0.1 + 1.96 * se),
            )
            for i, se in enumerate([0.2, 0.3, 0.4, 0.5])
        ]
        result = MetaAnalyzer().publication_bias_test(effects)
        assert "error" in result
        assert "bias_detected" not in result
        assert result["intercept"] == pytest.approx(1.0)

    def test_leave_one_out(self, three_studies) -> None:
        df = MetaAnalyzer().leave_one_out(effects_of(three_studies))
        assert list(df["omitted"]) == ["Adams 2015", "Baker 2018", "Chen 2021"]
        assert (df["k"] == 2).all()
        # Dropping the smallest effect raises the pooled estimate
        without_baker = df.set_index("omitted").loc["Baker 2018", "pooled_odds_ratio"]
        assert without_baker > MetaAnalyzer().pool(effects_of(three_studies)).pooled_odds_ratio

    def test_leave_one_out_needs_two(self, three_studies) -> None:
        with pytest.raises(InsufficientDataError):
            MetaAnalyzer().leave_one_out(effects_of(three_studies[:1]))

    def test_forest_plot_data(self, three_studies) -> None:
        analyzer = MetaAnalyzer()
        df = analyzer.generate_forest_plot_data(analyzer.run(three_studies))
        assert list(df["type"]) == ["study", "study", "study", "pooled", "prediction"]
        assert df.iloc[0]["effect"] == pytest.approx(2.0)

    def test_forest_plot_data_with_duplicate_ids(self) -> None:
        records = [
            StudyRecord(study_id="Same", odds_ratio=2.0, ci_lower=1.2, ci_upper=3.3),
            StudyRecord(study_id="Same", odds_ratio=1.5, ci_lower=1.0, ci_upper=2.25),
            StudyRecord(study_id="Other", odds_ratio=3.0, ci_lower=1.8, ci_upper=5.0),
        ]
        analyzer = MetaAnalyzer()
        df = analyzer.generate_forest_plot_data(analyzer.run(records))
        studies = df[df["type"] == "study"]
        assert list(studies["study"]) == ["Same", "Same", "Other"]
        assert studies["weight"].sum() == pytest.approx(100.0)
        assert studies.iloc[0]["weight"] != pytest.approx(studies.iloc[1]["weight"])

    def test_forest_plot_data_without_pool(self) -> None:
        analyzer = MetaAnalyzer()
        with pytest.raises(InsufficientDataError):
            analyzer.generate_forest_plot_data(analyzer.run([]))
