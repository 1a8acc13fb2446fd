"""Statistical meta‑analysis and synthesis.

This module defines the :class:`MetaAnalyzer` class which pools the
log odds ratios of the included studies.  The default model is a
random effects model with the DerSimonian–Laird moment estimator for
the between‑study variance; a REML estimator is available for parity
with tools that default to it.  The analyser also reports
heterogeneity, a prediction interval for the effect in a new study,
Egger's test for small‑study effects and leave‑one‑out sensitivity
estimates, and builds data frames for forest plot visualisation.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats
from scipy.optimize import minimize_scalar

from ..config.settings import settings
from ..core.models import AnalysisReport, DerivedEffect, Interval, PooledResult, StudyRecord
from ..utils.logging import get_logger
from .effects import derive_effects
from .exceptions import InsufficientDataError

logger = get_logger(__name__)


class MetaAnalyzer:
    """Pool derived effect sizes across studies.

    Args:
        method: ``'random'`` or ``'fixed'``.
        tau2_method: ``'DL'`` (DerSimonian–Laird) or ``'REML'``.
        z_crit: Normal quantile used for confidence intervals.
        prediction_level: Coverage of the prediction interval.
    """

    def __init__(
        self,
        method: Optional[str] = None,
        tau2_method: Optional[str] = None,
        z_crit: Optional[float] = None,
        prediction_level: Optional[float] = None,
    ) -> None:
        self.method = (method or settings.pooling_method).lower()
        self.tau2_method = (tau2_method or settings.tau2_method).upper()
        self.z_crit = z_crit if z_crit is not None else settings.z_crit
        self.prediction_level = prediction_level if prediction_level is not None else settings.prediction_level
        if self.method not in {"random", "fixed"}:
            raise ValueError(f"Unknown pooling method: {self.method}")
        if self.tau2_method not in {"DL", "REML"}:
            raise ValueError(f"Unknown tau² estimator: {self.tau2_method}")

    # ------------------------------------------------------------------
    # Full runs
    # ------------------------------------------------------------------

    def run(self, records: Iterable[StudyRecord], outcome: Optional[str] = None) -> AnalysisReport:
        """Derive effect sizes for ``records`` and pool the valid ones.

        Invalid records are reported in ``AnalysisReport.excluded``.  If
        no record is valid the report carries no pooled result and
        ``insufficient_data`` is true.
        """
        effects, excluded = derive_effects(records, z_crit=self.z_crit)
        if not effects:
            logger.warning("Insufficient data: no valid studies to pool")
            return AnalysisReport(effects=effects, excluded=excluded, pooled=None, outcome=outcome)
        pooled = self.pool(effects)
        return AnalysisReport(effects=effects, excluded=excluded, pooled=pooled, outcome=outcome)

    def run_by_outcome(self, records: Iterable[StudyRecord]) -> Dict[str, AnalysisReport]:
        """Run a separate analysis for each outcome in ``records``.

        Records without an outcome are grouped under ``'unspecified'``.
        """
        groups: Dict[str, List[StudyRecord]] = defaultdict(list)
        for record in records:
            groups[record.outcome or "unspecified"].append(record)
        return {name: self.run(groups[name], outcome=name) for name in sorted(groups)}

    # ------------------------------------------------------------------
    # Pooling
    # ------------------------------------------------------------------

    def pool(self, effect_sizes: Sequence[DerivedEffect]) -> PooledResult:
        """Compute the pooled effect across a set of studies.

        Args:
            effect_sizes: Derived effects of the valid studies.

        Returns:
            The pooled result.  Heterogeneity statistics are ``None``
            for a single study and the prediction interval is ``None``
            for fewer than three.

        Raises:
            InsufficientDataError: If ``effect_sizes`` is empty.
        """
        if not effect_sizes:
            raise InsufficientDataError("No effect sizes provided")
        # Fixed summation order so the result does not depend on input order
        order = sorted(
            range(len(effect_sizes)),
            key=lambda i: (effect_sizes[i].study_id, effect_sizes[i].log_effect, effect_sizes[i].standard_error),
        )
        ordered = [effect_sizes[i] for i in order]
        effects = np.array([es.log_effect for es in ordered], dtype=float)
        ses = np.array([es.standard_error for es in ordered], dtype=float)
        k = len(effects)
        fixed_weights = 1.0 / (ses ** 2)

        q: Optional[float] = None
        q_pvalue: Optional[float] = None
        i_squared: Optional[float] = None
        tau_squared: Optional[float] = None
        if k >= 2:
            q = self._q_statistic(effects, fixed_weights)
            q_pvalue = float(stats.chi2.sf(q, k - 1))
            i_squared = self._i_squared(q, k - 1)
            tau_squared = self._estimate_tau_squared(effects, ses, fixed_weights)

        weights = fixed_weights
        if self.method == "random" and tau_squared is not None:
            weights = 1.0 / (ses ** 2 + tau_squared)
        pooled_effect = float(np.sum(weights * effects) / np.sum(weights))
        pooled_se = float(np.sqrt(1.0 / np.sum(weights)))

        ci = Interval(
            lower=float(np.exp(pooled_effect - self.z_crit * pooled_se)),
            upper=float(np.exp(pooled_effect + self.z_crit * pooled_se)),
        )
        prediction = None
        if self.method == "random" and k >= settings.min_studies_pi:
            prediction = self._prediction_interval(pooled_effect, pooled_se, tau_squared or 0.0, k)

        z_score = pooled_effect / pooled_se if pooled_se > 0 else 0.0
        p_value = float(2 * stats.norm.sf(abs(z_score)))

        # One weight per input effect, duplicated study ids included
        percent = [0.0] * k
        total = float(np.sum(weights))
        for position, w in zip(order, weights):
            percent[position] = float(100.0 * w / total)

        logger.info(
            f"Pooled {k} studies ({self.method}, {self.tau2_method}): "
            f"log effect {pooled_effect:.4f} ± {pooled_se:.4f}",
            extra={"extra": {"k": k, "tau2": tau_squared, "i_squared": i_squared}},
        )
        return PooledResult(
            k=k,
            pooled_log_effect=pooled_effect,
            pooled_standard_error=pooled_se,
            tau2=tau_squared,
            i_squared=i_squared,
            q=q,
            q_df=k - 1,
            q_pvalue=q_pvalue,
            confidence_interval=ci,
            prediction_interval=prediction,
            z_score=float(z_score),
            p_value=p_value,
            method=self.method,
            tau2_method=self.tau2_method,
            weights=percent,
        )

    @staticmethod
    def _q_statistic(effects: np.ndarray, weights: np.ndarray) -> float:
        """Cochran's Q around the fixed effect estimate."""
        pooled = np.sum(weights * effects) / np.sum(weights)
        return float(np.sum(weights * (effects - pooled) ** 2))

    @staticmethod
    def _i_squared(q: float, df: int) -> float:
        if q <= 0:
            return 0.0
        return float(min(100.0, max(0.0, 100.0 * (q - df) / q)))

    def _estimate_tau_squared(
        self,
        effects: np.ndarray,
        ses: np.ndarray,
        weights: np.ndarray,
    ) -> float:
        if len(effects) < 2:
            return 0.0
        if self.tau2_method == "REML":
            return self._estimate_tau_squared_reml(effects, ses)
        return self._estimate_tau_squared_dl(effects, weights)

    @staticmethod
    def _estimate_tau_squared_dl(effects: np.ndarray, weights: np.ndarray) -> float:
        """Estimate between‑study variance (tau²) using DerSimonian–Laird."""
        k = len(effects)
        pooled = np.sum(weights * effects) / np.sum(weights)
        Q = np.sum(weights * (effects - pooled) ** 2)
        df = k - 1
        c = np.sum(weights) - np.sum(weights ** 2) / np.sum(weights)
        tau_squared = max(0.0, (Q - df) / c) if c > 0 else 0.0
        return float(tau_squared)

    @staticmethod
    def _estimate_tau_squared_reml(effects: np.ndarray, ses: np.ndarray) -> float:
        """Estimate tau² by minimising the restricted negative log‑likelihood."""
        variances = ses ** 2

        def reml_objective(tau_sq: float) -> float:
            w = 1.0 / (variances + tau_sq)
            pooled = np.sum(w * effects) / np.sum(w)
            q = np.sum(w * (effects - pooled) ** 2)
            return float(0.5 * (np.sum(np.log(variances + tau_sq)) + np.log(np.sum(w)) + q))

        upper = max(10.0 * float(np.var(effects)), float(np.max(variances)), 1e-6)
        result = minimize_scalar(reml_objective, bounds=(0.0, upper), method="bounded", options={"xatol": 1e-10})
        tau_squared = float(result.x)
        # The bounded search never lands exactly on the boundary
        if reml_objective(0.0) <= result.fun:
            tau_squared = 0.0
        return max(0.0, tau_squared)

    def _prediction_interval(self, pooled_effect: float, pooled_se: float, tau_squared: float, k: int) -> Interval:
        """Interval expected to contain the true effect of a new study."""
        t_crit = stats.t.ppf(1 - (1 - self.prediction_level) / 2, df=k - 2)
        half_width = t_crit * np.sqrt(tau_squared + pooled_se ** 2)
        return Interval(
            lower=float(np.exp(pooled_effect - half_width)),
            upper=float(np.exp(pooled_effect + half_width)),
        )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def assess_heterogeneity(self, effect_sizes: Sequence[DerivedEffect]) -> Dict:
        """Compute heterogeneity statistics (Q, I², tau²)."""
        k = len(effect_sizes)
        if k < 2:
            return {
                "Q": None,
                "Q_df": max(k - 1, 0),
                "Q_pvalue": None,
                "I_squared": None,
                "tau_squared": None,
                "interpretation": "undefined for fewer than two studies",
            }
        pooled = self.pool(effect_sizes)
        return {
            "Q": pooled.q,
            "Q_df": pooled.q_df,
            "Q_pvalue": pooled.q_pvalue,
            "I_squared": pooled.i_squared,
            "tau_squared": pooled.tau2,
            "interpretation": pooled.heterogeneity_interpretation,
        }

    def publication_bias_test(self, effect_sizes: Sequence[DerivedEffect]) -> Dict:
        """Assess small‑study effects using Egger's regression test.

        Regresses the standardised effect (effect / SE) on precision
        (1 / SE); an intercept away from zero suggests funnel plot
        asymmetry.
        """
        if len(effect_sizes) < settings.egger_min_studies:
            return {"error": f"Need at least {settings.egger_min_studies} studies for Egger's test"}
        effects = np.array([es.log_effect for es in effect_sizes])
        ses = np.array([es.standard_error for es in effect_sizes])
        precision = 1.0 / ses
        if np.ptp(precision) == 0:
            return {"error": "Egger's test needs studies of differing precision"}
        result = stats.linregress(precision, effects / ses)
        # No residual variance: the intercept's standard error and p-value are undefined
        if not result.intercept_stderr > 0 or np.isclose(abs(result.rvalue), 1.0, rtol=0.0, atol=1e-12):
            return {
                "error": "Egger's test is undefined when the points fit a line exactly",
                "intercept": float(result.intercept),
                "slope": float(result.slope),
            }
        df = len(effects) - 2
        t_stat = result.intercept / result.intercept_stderr
        p_value = float(2 * stats.t.sf(abs(t_stat), df))
        bias_detected = p_value < 0.10
        return {
            "intercept": float(result.intercept),
            "slope": float(result.slope),
            "p_value": p_value,
            "bias_detected": bool(bias_detected),
            "interpretation": "Possible publication bias" if bias_detected else "No strong evidence of bias",
        }

    def leave_one_out(self, effect_sizes: Sequence[DerivedEffect]) -> pd.DataFrame:
        """Re‑pool the studies omitting each one in turn."""
        if len(effect_sizes) < 2:
            raise InsufficientDataError("Leave-one-out analysis needs at least two studies")
        rows = []
        for i, omitted in enumerate(effect_sizes):
            rest = list(effect_sizes[:i]) + list(effect_sizes[i + 1:])
            pooled = self.pool(rest)
            rows.append({
                "omitted": omitted.study_id,
                "k": pooled.k,
                "pooled_odds_ratio": pooled.pooled_odds_ratio,
                "ci_lower": pooled.confidence_interval.lower,
                "ci_upper": pooled.confidence_interval.upper,
                "tau2": pooled.tau2,
                "i_squared": pooled.i_squared,
            })
        return pd.DataFrame(rows)

    def generate_forest_plot_data(self, report: AnalysisReport) -> pd.DataFrame:
        """Create a DataFrame for forest plot visualisation.

        Effects are on the odds ratio scale.  The prediction interval
        row is only present when the interval is defined.
        """
        if report.pooled is None:
            raise InsufficientDataError("No pooled result to plot")
        pooled = report.pooled
        rows = []
        for es, weight in zip(report.effects, pooled.weights):
            rows.append({
                "study": es.study_id,
                "effect": es.odds_ratio,
                "ci_lower": es.ci_lower,
                "ci_upper": es.ci_upper,
                "weight": weight,
                "type": "study",
            })
        rows.append({
            "study": f"Pooled ({pooled.method} effects)",
            "effect": pooled.pooled_odds_ratio,
            "ci_lower": pooled.confidence_interval.lower,
            "ci_upper": pooled.confidence_interval.upper,
            "weight": 100.0,
            "type": "pooled",
        })
        if pooled.prediction_interval is not None:
            rows.append({
                "study": "Prediction interval",
                "effect": pooled.pooled_odds_ratio,
                "ci_lower": pooled.prediction_interval.lower,
                "ci_upper": pooled.prediction_interval.upper,
                "weight": None,
                "type": "prediction",
            })
        return pd.DataFrame(rows)
