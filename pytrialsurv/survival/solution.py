"""
Solution wrappers for survival analysis results.

Each Solution wraps a Result[Params] and exposes user-friendly properties
with R-style summary() methods and a to_frame() table for the reporting
layer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator

import numpy as np

from pytrialsurv.core.result import Result
from pytrialsurv.survival._common import (
    CoxFitResult,
    KMCurveParams,
    KMParams,
    KMPoint,
    LogRankParams,
    SchoenfeldParams,
    SchoenfeldResidual,
)
from pytrialsurv.survival.design import ARMS, Arm

if TYPE_CHECKING:
    import pandas as pd


class KaplanMeierCurve:
    """Kaplan-Meier curve of one arm, or of both arms pooled when arm is None.

    Iterating yields KMPoint rows in ascending time. Each call to iter()
    starts a fresh generator over the immutable curve arrays, so the curve
    can be traversed any number of times.
    """

    __slots__ = ('_params', '_arm')

    def __init__(self, params: KMCurveParams, arm: Arm | None = None) -> None:
        self._params = params
        self._arm = arm

    def __iter__(self) -> Iterator[KMPoint]:
        p = self._params
        for i in range(len(p.time)):
            yield KMPoint(
                time=float(p.time[i]),
                n_at_risk=int(p.n_risk[i]),
                n_events=int(p.n_events[i]),
                n_censored=int(p.n_censored[i]),
                survival=float(p.survival[i]),
                variance=float(p.variance[i]),
                ci_lower=float(p.ci_lower[i]),
                ci_upper=float(p.ci_upper[i]),
            )

    def __len__(self) -> int:
        return len(self._params.time)

    @property
    def arm(self) -> Arm | None:
        return self._arm

    @property
    def time(self):
        """Distinct exit times."""
        return self._params.time

    @property
    def survival(self):
        return self._params.survival

    @property
    def n_risk(self):
        """Risk set size at each time (may rise under delayed entry)."""
        return self._params.n_risk

    @property
    def n_events(self):
        return self._params.n_events

    @property
    def n_censored(self):
        return self._params.n_censored

    @property
    def variance(self):
        """Greenwood variance of S(t)."""
        return self._params.variance

    @property
    def se(self):
        return np.sqrt(self._params.variance)

    @property
    def ci_lower(self):
        return self._params.ci_lower

    @property
    def ci_upper(self):
        return self._params.ci_upper

    @property
    def n_observations(self) -> int:
        return self._params.n_observations

    @property
    def n_events_total(self) -> int:
        return self._params.n_events_total

    @property
    def median_survival(self) -> float | None:
        """Median survival time (smallest t where S(t) <= 0.5)."""
        idx = self.survival <= 0.5
        if not idx.any():
            return None
        return float(self.time[idx][0])

    def survival_at(self, t: float) -> float:
        """Right-continuous step function S(t); 1 before the first point."""
        idx = np.searchsorted(self.time, t, side="right") - 1
        if idx < 0:
            return 1.0
        return float(self.survival[idx])

    def __repr__(self) -> str:
        label = self._arm.value if self._arm is not None else "pooled"
        return (
            f"KaplanMeierCurve({label}, n={self.n_observations}, "
            f"events={self.n_events_total}, median={self.median_survival})"
        )


class KMSolution:
    """Kaplan-Meier curves per treatment arm.

    Properties mirror R's survfit() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[KMParams]) -> None:
        self._result = _result

    def curve(self, arm: Arm) -> KaplanMeierCurve:
        """Curve for one arm."""
        return KaplanMeierCurve(self._result.params.curves[arm], arm)

    @property
    def curves(self) -> dict[Arm, KaplanMeierCurve]:
        return {arm: self.curve(arm) for arm in self._result.params.curves}

    @property
    def pooled(self) -> KaplanMeierCurve:
        """Curve of both arms together, ignoring treatment."""
        return KaplanMeierCurve(self._result.params.pooled)

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def conf_type(self) -> str:
        return self._result.params.conf_type

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def to_frame(self) -> pd.DataFrame:
        """KM table: one row per arm and time."""
        import pandas as pd

        frames = []
        for arm, curve in self.curves.items():
            frames.append(pd.DataFrame({
                "group": arm.value,
                "time": curve.time,
                "n_at_risk": curve.n_risk.astype(int),
                "n_events": curve.n_events.astype(int),
                "n_censored": curve.n_censored.astype(int),
                "survival": curve.survival,
                "std_err": curve.se,
                "ci_lower": curve.ci_lower,
                "ci_upper": curve.ci_upper,
            }))
        return pd.concat(frames, ignore_index=True)

    def summary(self) -> str:
        """R-style summary of the Kaplan-Meier fits."""
        lines = []
        lines.append("Call: kaplan_meier()")
        lines.append("")

        ci_pct = int(round(self.conf_level * 100))
        for arm, curve in self.curves.items():
            median = curve.median_survival
            median_str = f"{median:.4g}" if median is not None else "NA"
            lines.append(
                f"  group={arm.value}: n={curve.n_observations}, "
                f"events={curve.n_events_total}, median={median_str}"
            )
            lines.append(
                f"  {'time':>8s}  {'n.risk':>8s}  {'n.event':>8s}  "
                f"{'survival':>10s}  {'std.err':>10s}  "
                f"{'lower ' + str(ci_pct) + '%':>10s}  {'upper ' + str(ci_pct) + '%':>10s}"
            )

            # Event rows only, as R's summary.survfit; up to 20
            rows = [pt for pt in curve if pt.n_events > 0]
            for pt in rows[:20]:
                lines.append(
                    f"  {pt.time:8.4g}  {pt.n_at_risk:8d}  {pt.n_events:8d}  "
                    f"{pt.survival:10.6f}  {np.sqrt(pt.variance):10.6f}  "
                    f"{pt.ci_lower:10.6f}  {pt.ci_upper:10.6f}"
                )
            if len(rows) > 20:
                lines.append(f"  ... ({len(rows) - 20} more rows)")
            lines.append("")

        return "\n".join(lines).rstrip()

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{arm.value}: n={c.n_observations}, events={c.n_events_total}"
            for arm, c in self.curves.items()
        )
        return f"KMSolution({parts})"


class LogRankSolution:
    """Stratified log-rank test solution.

    Properties mirror R's survdiff() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[LogRankParams]) -> None:
        self._result = _result

    @property
    def statistic(self) -> float:
        return self._result.params.statistic

    @property
    def chi_square(self) -> float:
        return self._result.params.statistic

    @property
    def df(self) -> int:
        return self._result.params.df

    @property
    def p_value(self) -> float:
        return self._result.params.p_value

    @property
    def observed(self) -> dict[Arm, float]:
        return self._result.params.observed

    @property
    def expected(self) -> dict[Arm, float]:
        return self._result.params.expected

    @property
    def n_per_arm(self) -> dict[Arm, int]:
        return self._result.params.n_per_arm

    @property
    def o_minus_e(self) -> float:
        """Σ(O - E) for the experimental arm."""
        return self._result.params.o_minus_e

    @property
    def variance(self) -> float:
        return self._result.params.variance

    @property
    def stratum_keys(self):
        return self._result.params.stratum_keys

    @property
    def stratum_o_minus_e(self):
        return self._result.params.stratum_o_minus_e

    @property
    def stratum_variance(self):
        return self._result.params.stratum_variance

    @property
    def n_strata(self) -> int:
        return len(self._result.params.stratum_keys)

    @property
    def rho(self) -> float:
        return self._result.params.rho

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def to_frame(self) -> pd.DataFrame:
        """Single-row log-rank table."""
        import pandas as pd

        return pd.DataFrame([{
            "chi_square": self.statistic,
            "degrees_of_freedom": self.df,
            "p_value": self.p_value,
        }])

    def summary(self) -> str:
        """R-style summary of log-rank test."""
        lines = []
        lines.append("Call: survdiff()")
        lines.append("")

        lines.append(f"  {'':>12s}  {'N':>6s}  {'Observed':>10s}  {'Expected':>10s}  {'(O-E)^2/E':>10s}")
        for arm in ARMS:
            o = self.observed[arm]
            e = self.expected[arm]
            oe = (o - e) ** 2 / e if e > 0 else 0.0
            lines.append(
                f"  {arm.value:>12s}  {self.n_per_arm[arm]:6d}  "
                f"{o:10.1f}  {e:10.1f}  {oe:10.3f}"
            )

        lines.append("")
        lines.append(
            f"  Chisq= {self.statistic:.4f} on {self.df} degrees of freedom, "
            f"p= {self.p_value:.4g} ({self.n_strata} strata)"
        )

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LogRankSolution(chisq={self.statistic:.4f}, "
            f"df={self.df}, p={self.p_value:.4g})"
        )


class CoxSolution:
    """Converged stratified Cox proportional hazards fit.

    Properties mirror R's coxph() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[CoxFitResult]) -> None:
        self._result = _result

    @property
    def fit(self) -> CoxFitResult:
        """The underlying immutable fit payload."""
        return self._result.params

    @property
    def covariate_names(self) -> tuple[str, ...]:
        return self._result.params.covariate_names

    @property
    def coefficients(self):
        return self._result.params.coefficients

    @property
    def covariance(self):
        return self._result.params.covariance

    @property
    def information(self):
        return self._result.params.information

    @property
    def standard_errors(self):
        return self._result.params.standard_errors

    @property
    def hazard_ratios(self):
        return self._result.params.hazard_ratios

    @property
    def ci_lower(self):
        return self._result.params.ci_lower

    @property
    def ci_upper(self):
        return self._result.params.ci_upper

    @property
    def z_statistics(self):
        return self._result.params.z_statistics

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def loglik(self) -> tuple[float, float]:
        return self._result.params.loglik

    @property
    def loglik_trajectory(self) -> tuple[float, ...]:
        return self._result.params.loglik_trajectory

    @property
    def score_statistic(self) -> float:
        return self._result.params.score_statistic

    @property
    def score_p_value(self) -> float:
        return self._result.params.score_p_value

    @property
    def lr_statistic(self) -> float:
        return self._result.params.lr_statistic

    @property
    def lr_p_value(self) -> float:
        return self._result.params.lr_p_value

    @property
    def concordance(self) -> float:
        return self._result.params.concordance

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_strata(self) -> int:
        return self._result.params.n_strata

    @property
    def n_iter(self) -> int:
        return self._result.params.n_iter

    @property
    def converged(self) -> bool:
        return self._result.params.converged

    @property
    def ties(self) -> str:
        return self._result.params.ties

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def to_frame(self) -> pd.DataFrame:
        """Cox fit summary: one row per covariate."""
        import pandas as pd

        return pd.DataFrame({
            "covariate": list(self.covariate_names),
            "coefficient": self.coefficients,
            "se": self.standard_errors,
            "hazard_ratio": self.hazard_ratios,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "wald_p": self.p_values,
            "log_likelihood": self.loglik[1],
            "iterations": self.n_iter,
            "converged": self.converged,
        })

    def summary(self) -> str:
        """R-style summary of the Cox fit."""
        lines = []
        lines.append("Call: coxph()")
        lines.append("")
        lines.append(
            f"  n= {self.n_observations}, "
            f"number of events= {self.n_events}, "
            f"strata= {self.n_strata}, ties= {self.ties}"
        )
        lines.append("")

        lines.append(
            f"  {'':>10s}  {'coef':>10s}  {'exp(coef)':>10s}  "
            f"{'se(coef)':>10s}  {'z':>10s}  {'Pr(>|z|)':>12s}"
        )
        for i, name in enumerate(self.covariate_names):
            lines.append(
                f"  {name:>10s}  {self.coefficients[i]:10.6f}  "
                f"{self.hazard_ratios[i]:10.6f}  "
                f"{self.standard_errors[i]:10.6f}  "
                f"{self.z_statistics[i]:10.4f}  "
                f"{self.p_values[i]:12.4g}"
            )

        lines.append("")
        ci_pct = int(round(self._result.params.conf_level * 100))
        lines.append(
            f"  {'':>10s}  {'exp(coef)':>10s}  "
            f"{'lower .' + str(ci_pct):>10s}  {'upper .' + str(ci_pct):>10s}"
        )
        for i, name in enumerate(self.covariate_names):
            lines.append(
                f"  {name:>10s}  {self.hazard_ratios[i]:10.6f}  "
                f"{self.ci_lower[i]:10.6f}  {self.ci_upper[i]:10.6f}"
            )

        p = len(self.coefficients)
        lines.append("")
        lines.append(f"  Concordance= {self.concordance:.4f}")
        lines.append(
            f"  Likelihood ratio test= {self.lr_statistic:.4f} on {p} df, "
            f"p={self.lr_p_value:.4g}"
        )
        lines.append(
            f"  Score (logrank) test = {self.score_statistic:.4f} on {p} df, "
            f"p={self.score_p_value:.4g}"
        )
        lines.append(f"  Iterations= {self.n_iter}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CoxSolution(n={self.n_observations}, "
            f"events={self.n_events}, "
            f"hr={np.array2string(self.hazard_ratios, precision=4)})"
        )


class SchoenfeldSolution:
    """Proportional hazards diagnostic.

    Properties mirror R's cox.zph() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[SchoenfeldParams]) -> None:
        self._result = _result

    @property
    def covariate_names(self) -> tuple[str, ...]:
        return self._result.params.covariate_names

    @property
    def residuals(self) -> tuple[SchoenfeldResidual, ...]:
        return self._result.params.residuals

    @property
    def chi_square(self):
        return self._result.params.chi_square

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def global_chi_square(self) -> float:
        return self._result.params.global_chi_square

    @property
    def global_df(self) -> int:
        return self._result.params.global_df

    @property
    def global_p_value(self) -> float:
        return self._result.params.global_p_value

    @property
    def transform(self) -> str:
        return self._result.params.transform

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def residual_matrix(self) -> np.ndarray:
        """(m, p) unscaled residuals in event-time order."""
        return np.array([r.residual for r in self.residuals])

    def scaled_matrix(self) -> np.ndarray:
        """(m, p) scaled residuals in event-time order."""
        return np.array([r.scaled for r in self.residuals])

    def to_frame(self) -> pd.DataFrame:
        """Per-covariate rows plus one GLOBAL row."""
        import pandas as pd

        rows = [
            {"covariate": name, "chi_square": float(self.chi_square[i]),
             "df": 1, "p_value": float(self.p_values[i])}
            for i, name in enumerate(self.covariate_names)
        ]
        rows.append({
            "covariate": "GLOBAL",
            "chi_square": self.global_chi_square,
            "df": self.global_df,
            "p_value": self.global_p_value,
        })
        return pd.DataFrame(rows)

    def summary(self) -> str:
        """R-style summary of the proportional hazards test."""
        lines = []
        lines.append(f"Call: cox_zph(transform='{self.transform}')")
        lines.append("")
        lines.append(f"  {'':>10s}  {'chisq':>10s}  {'df':>4s}  {'p':>10s}")
        for i, name in enumerate(self.covariate_names):
            lines.append(
                f"  {name:>10s}  {self.chi_square[i]:10.4f}  {1:4d}  "
                f"{self.p_values[i]:10.4g}"
            )
        lines.append(
            f"  {'GLOBAL':>10s}  {self.global_chi_square:10.4f}  "
            f"{self.global_df:4d}  {self.global_p_value:10.4g}"
        )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"SchoenfeldSolution(events={self.n_events}, "
            f"global_chisq={self.global_chi_square:.4f}, "
            f"p={self.global_p_value:.4g})"
        )
