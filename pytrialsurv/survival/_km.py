"""
Kaplan-Meier product-limit estimator with delayed entry.

Matches R's survival::survfit(Surv(start, stop, event) ~ 1):
- Product-limit survival estimate: S(t) = ∏(1 - d_j / n_j)
- Greenwood variance: Var(S(t)) = S(t)^2 * Σ(d_j / (n_j * (n_j - d_j)))
- Confidence intervals via log-log (default), log, or plain transformation

Risk sets follow the counting-process definition start < t <= stop, so a
subject with delayed entry joins the risk set mid-curve and n_risk may
increase between two exit times.

References:
    Kaplan, E. L., & Meier, P. (1958). Nonparametric estimation from
        incomplete observations. JASA, 53(282), 457-481.
    R Core Team. survival::survfit.formula
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pytrialsurv.survival._common import KMCurveParams

CONF_TYPES = ("log-log", "log", "plain")


def risk_counts(start: NDArray, stop: NDArray, times: NDArray) -> NDArray:
    """Number of subjects with start < t <= stop for each t in ``times``."""
    entered = np.searchsorted(np.sort(start), times, side="left")
    exited = np.searchsorted(np.sort(stop), times, side="left")
    return (entered - exited).astype(np.float64)


def kaplan_meier_fit(
    start: NDArray,
    stop: NDArray,
    event: NDArray,
    conf_level: float,
    conf_type: str,
) -> KMCurveParams:
    """Compute a Kaplan-Meier survival curve.

    Parameters
    ----------
    start : NDArray
        (n,) entry times (0 without truncation).
    stop : NDArray
        (n,) event or censoring times.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    conf_level : float
        Confidence level for CI (e.g. 0.95).
    conf_type : str
        CI type: "log-log", "log" or "plain".

    Returns
    -------
    KMCurveParams
    """
    n_total = len(stop)
    n_events_total = int(np.sum(event))

    if n_total == 0:
        empty = np.array([], dtype=np.float64)
        return KMCurveParams(
            time=empty, n_risk=empty, n_events=empty, n_censored=empty,
            survival=empty, variance=empty, ci_lower=empty, ci_upper=empty,
            n_observations=0, n_events_total=0,
        )

    # Every distinct exit time is a curve point, events or not
    out_time = np.unique(stop)
    slot = np.searchsorted(out_time, stop)

    out_n_events = np.bincount(
        slot, weights=event, minlength=len(out_time)
    ).astype(np.float64)
    out_n_censored = np.bincount(
        slot, weights=1.0 - event, minlength=len(out_time)
    ).astype(np.float64)
    out_n_risk = risk_counts(start, stop, out_time)

    # Product-limit estimate: S(t) = ∏_{j: t_j <= t} (1 - d_j / n_j)
    hazard_component = out_n_events / out_n_risk
    survival = np.cumprod(1.0 - hazard_component)

    # Greenwood variance: Var(S(t)) = S(t)^2 * Σ(d_j / (n_j * (n_j - d_j)))
    # Avoid division by zero when n_j == d_j (all at risk die)
    denom = out_n_risk * (out_n_risk - out_n_events)
    denom = np.where(denom > 0, denom, np.inf)
    greenwood_sum = np.cumsum(out_n_events / denom)
    variance = survival ** 2 * greenwood_sum

    z = stats.norm.ppf((1.0 + conf_level) / 2.0)
    ci_lower, ci_upper = _compute_ci(survival, np.sqrt(variance), z, conf_type)

    return KMCurveParams(
        time=out_time,
        n_risk=out_n_risk,
        n_events=out_n_events,
        n_censored=out_n_censored,
        survival=survival,
        variance=variance,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        n_observations=n_total,
        n_events_total=n_events_total,
    )


def _compute_ci(
    survival: NDArray,
    se: NDArray,
    z: float,
    conf_type: str,
) -> tuple[NDArray, NDArray]:
    """Compute CI for survival function.

    Parameters
    ----------
    survival : S(t) values
    se : Greenwood standard errors
    z : normal quantile (e.g. 1.96 for 95%)
    conf_type : "log-log", "log" or "plain"

    Returns
    -------
    (ci_lower, ci_upper) clipped to [0, 1]
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        if conf_type == "plain":
            ci_lower = survival - z * se
            ci_upper = survival + z * se

        elif conf_type == "log":
            # exp(log(S) ± z * se / S)
            log_s = np.log(survival)
            se_log = se / survival
            ci_lower = np.exp(log_s - z * se_log)
            ci_upper = np.exp(log_s + z * se_log)

        elif conf_type == "log-log":
            # exp(-exp(log(-log(S)) ± z * se / (S * |log(S)|)))
            log_s = np.log(survival)
            log_neg_log_s = np.log(-log_s)
            se_loglog = se / (survival * np.abs(log_s))
            ci_lower = np.exp(-np.exp(log_neg_log_s + z * se_loglog))
            ci_upper = np.exp(-np.exp(log_neg_log_s - z * se_loglog))
        else:
            raise ValueError(
                f"Unknown conf_type '{conf_type}'. "
                f"Choose from 'log-log', 'log', 'plain'."
            )

    ci_lower = np.clip(ci_lower, 0.0, 1.0)
    ci_upper = np.clip(ci_upper, 0.0, 1.0)

    # No variance (S=1 before the first event, or S=0 after the last)
    degenerate = se == 0
    ci_lower = np.where(degenerate, survival, ci_lower)
    ci_upper = np.where(degenerate, survival, ci_upper)

    ci_lower = np.where(np.isnan(ci_lower), 0.0, ci_lower)
    ci_upper = np.where(np.isnan(ci_upper), 1.0, ci_upper)

    return ci_lower, ci_upper
