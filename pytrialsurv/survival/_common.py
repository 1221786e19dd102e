"""
Parameter payloads for survival analysis results.

Each dataclass is a frozen payload carried inside a Result[P] envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, NamedTuple

from numpy.typing import NDArray

from pytrialsurv.survival.design import Arm


class KMPoint(NamedTuple):
    """One row of a Kaplan-Meier curve."""

    time: float
    n_at_risk: int
    n_events: int
    n_censored: int
    survival: float
    variance: float
    ci_lower: float
    ci_upper: float


@dataclass(frozen=True)
class KMCurveParams:
    """Kaplan-Meier curve for one arm (or the pooled data).

    Points sit at every distinct exit time, event or censoring, so the
    curve is flat over censor-only stretches and ends at the last follow-up.
    """

    time: NDArray                # (m,) distinct exit times, ascending
    n_risk: NDArray              # (m,) risk set size at each time
    n_events: NDArray            # (m,) events at each time
    n_censored: NDArray          # (m,) censorings at each time
    survival: NDArray            # (m,) S(t)
    variance: NDArray            # (m,) Greenwood variance of S(t)
    ci_lower: NDArray            # (m,)
    ci_upper: NDArray            # (m,)
    n_observations: int
    n_events_total: int


@dataclass(frozen=True)
class KMParams:
    """Kaplan-Meier curves per arm and for both arms pooled."""

    curves: dict[Arm, KMCurveParams]
    pooled: KMCurveParams
    conf_level: float
    conf_type: str               # "log-log" (default), "log", "plain"


@dataclass(frozen=True)
class LogRankParams:
    """Stratified log-rank (G-rho) test parameters.

    O - E and V refer to the experimental arm.
    """

    statistic: float             # chi-squared statistic
    df: int
    p_value: float
    observed: dict[Arm, float]
    expected: dict[Arm, float]
    n_per_arm: dict[Arm, int]
    o_minus_e: float             # Σ over strata of O - E
    variance: float              # Σ over strata of V
    stratum_keys: tuple[Hashable, ...]
    stratum_o_minus_e: NDArray   # (k,) per stratum
    stratum_variance: NDArray    # (k,) per stratum
    rho: float                   # weight parameter (0=log-rank, 1=Peto-Peto)


@dataclass(frozen=True)
class CoxFitResult:
    """Stratified Cox proportional hazards fit."""

    covariate_names: tuple[str, ...]
    coefficients: NDArray        # (p,) log hazard ratios
    covariance: NDArray          # (p, p) inverse observed information
    information: NDArray         # (p, p) observed information at β̂
    standard_errors: NDArray     # (p,)
    hazard_ratios: NDArray       # (p,) exp(coef)
    ci_lower: NDArray            # (p,) Wald CI for the hazard ratio
    ci_upper: NDArray            # (p,)
    z_statistics: NDArray        # (p,)
    p_values: NDArray            # (p,) two-sided Wald test
    loglik: tuple[float, float]  # (null log-lik, model log-lik)
    loglik_trajectory: tuple[float, ...]  # log-lik at β=0 and each iterate
    score_statistic: float       # score test of β=0
    score_p_value: float
    lr_statistic: float          # likelihood ratio test of β=0
    lr_p_value: float
    concordance: float           # stratified Harrell's C
    n_events: int
    n_observations: int
    n_strata: int
    n_iter: int
    converged: bool
    ties: str                    # "efron" or "breslow"
    conf_level: float


@dataclass(frozen=True)
class SchoenfeldResidual:
    """Schoenfeld residual of one observed event."""

    subject_id: Hashable
    stratum_key: Hashable
    time: float
    transformed_time: float
    residual: tuple[float, ...]  # x_i minus risk-set weighted mean
    scaled: tuple[float, ...]    # d · V · r + β̂


@dataclass(frozen=True)
class SchoenfeldParams:
    """Proportional hazards diagnostic."""

    covariate_names: tuple[str, ...]
    residuals: tuple[SchoenfeldResidual, ...]
    chi_square: NDArray          # (p,) per covariate, 1 df each
    p_values: NDArray            # (p,)
    global_chi_square: float
    global_df: int
    global_p_value: float
    transform: str               # "rank" (default), "identity", "log", "km"
    n_events: int
