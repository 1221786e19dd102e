"""
Schoenfeld residuals and the Grambsch-Therneau proportional hazards test.

Matches the classic R survival::cox.zph (survival < 3.0) computation.

For each observed event i at time t_i in stratum s:
    r_i  = x_i - x̄(t_i)                 x̄ = risk-set weighted mean in s
    r*_i = d · V · r_i + β̂               scaled residual, V = cov(β̂),
                                          d = number of events
Under proportional hazards E[r*_i] ≈ β̂ with no trend in time. With
g = transform(t) centred as g̃, and s_i = d · V · r_i, the score test of a
linear trend for covariate j is

    T_j = (Σ_i g̃_i s_ij)^2 / (d · V_jj · Σ_i g̃_i^2)     ~ χ²(1)

and the global statistic combines the covariates as independent terms,
Σ_j T_j ~ χ²(p).

References:
    Grambsch, P. M. & Therneau, T. M. (1994). Proportional hazards tests
        and diagnostics based on weighted residuals. Biometrika, 81(3), 515-526.
    Schoenfeld, D. (1982). Partial residuals for the proportional hazards
        regression model. Biometrika, 69(1), 239-241.
"""

from __future__ import annotations

from typing import Hashable, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pytrialsurv.core.exceptions import InsufficientEventsError
from pytrialsurv.survival._common import SchoenfeldParams, SchoenfeldResidual
from pytrialsurv.survival._cox import build_risk_sets, expected_covariate
from pytrialsurv.survival._km import kaplan_meier_fit

TRANSFORMS = ("rank", "identity", "log", "km")


def schoenfeld_test(
    X: NDArray,
    start: NDArray,
    stop: NDArray,
    event: NDArray,
    strata: NDArray,
    stratum_keys: Sequence[Hashable],
    subject_ids: Sequence[Hashable],
    beta: NDArray,
    covariance: NDArray,
    covariate_names: Sequence[str],
    ties: str,
    transform: str,
) -> SchoenfeldParams:
    """Compute Schoenfeld residuals and the proportional hazards test.

    Parameters
    ----------
    X : NDArray
        (n, p) covariate matrix the model was fitted on.
    start, stop, event, strata : NDArray
        Counting-process data and stratum codes the model was fitted on.
    stratum_keys, subject_ids : sequence
        Labels carried onto each residual.
    beta : NDArray
        (p,) fitted coefficients.
    covariance : NDArray
        (p, p) fitted covariance of beta.
    covariate_names : sequence of str
    ties : str
        Tie method of the fit ("efron" or "breslow").
    transform : str
        Time transform: "rank", "identity", "log" or "km".

    Returns
    -------
    SchoenfeldParams

    Raises
    ------
    InsufficientEventsError
        If fewer than two events, or the transformed event times do not vary.
    """
    if transform not in TRANSFORMS:
        raise ValueError(
            f"transform must be one of {TRANSFORMS}, got '{transform}'"
        )

    n_events = int(np.sum(event))
    if n_events < 2:
        raise InsufficientEventsError(
            f"Schoenfeld test needs at least 2 events, got {n_events}",
            n_events=n_events,
            required=2,
        )

    p = X.shape[1]
    risk_sets = build_risk_sets(start, stop, event, strata, len(stratum_keys))

    subjects = []
    times = []
    raw = []
    for rs in risk_sets:
        mean = expected_covariate(beta, X, rs, ties)
        for i in rs.deaths:
            subjects.append(i)
            times.append(rs.time)
            raw.append(X[i] - mean)

    # Events in time order across strata, stable within ties
    order = np.argsort(np.asarray(times), kind="stable")
    subjects = np.asarray(subjects)[order]
    times = np.asarray(times, dtype=np.float64)[order]
    raw = np.asarray(raw, dtype=np.float64).reshape(-1, p)[order]

    g = _transform_times(times, transform, start, stop, event)
    g_centred = g - np.mean(g)
    ss_g = float(np.sum(g_centred ** 2))
    if not ss_g > 0:
        raise InsufficientEventsError(
            f"Transformed event times do not vary ({transform}); "
            f"cannot test for a time trend",
            n_events=n_events,
            required=2,
        )

    d = n_events
    weighted = d * raw @ covariance         # (m, p), s_i = d · V · r_i
    scaled = weighted + beta

    trend = g_centred @ weighted            # (p,)
    chi_square = trend ** 2 / (d * np.diag(covariance) * ss_g)
    p_values = stats.chi2.sf(chi_square, 1)

    global_chi_square = float(np.sum(chi_square))
    global_df = p

    residuals = tuple(
        SchoenfeldResidual(
            subject_id=subject_ids[i],
            stratum_key=stratum_keys[strata[i]],
            time=float(t),
            transformed_time=float(gt),
            residual=tuple(float(v) for v in r),
            scaled=tuple(float(v) for v in sr),
        )
        for i, t, gt, r, sr in zip(subjects, times, g, raw, scaled)
    )

    return SchoenfeldParams(
        covariate_names=tuple(covariate_names),
        residuals=residuals,
        chi_square=chi_square,
        p_values=p_values,
        global_chi_square=global_chi_square,
        global_df=global_df,
        global_p_value=float(stats.chi2.sf(global_chi_square, global_df)),
        transform=transform,
        n_events=n_events,
    )


def _transform_times(
    times: NDArray,
    transform: str,
    start: NDArray,
    stop: NDArray,
    event: NDArray,
) -> NDArray:
    """Monotone transform of the (sorted) event times."""
    if transform == "rank":
        return stats.rankdata(times)
    if transform == "identity":
        return times.copy()
    if transform == "log":
        return np.log(times)

    # "km": 1 - S(t-) of the pooled, unstratified product-limit curve
    curve = kaplan_meier_fit(start, stop, event, conf_level=0.95, conf_type="plain")
    s_before = np.concatenate([[1.0], curve.survival[:-1]])
    idx = np.searchsorted(curve.time, times)
    return 1.0 - s_before[idx]
