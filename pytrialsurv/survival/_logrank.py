"""
Stratified log-rank test (G-rho family) for two treatment arms.

Matches R's survival::survdiff(Surv(start, stop, event) ~ arm + strata(s)):
- Standard log-rank test (rho=0): Mantel-Haenszel / Cochran-Mantel
- G-rho family (rho>0): Fleming-Harrington weighted variant, weights from
  the pooled within-stratum Kaplan-Meier estimate just before each time

Algorithm, for each stratum independently:
    At each distinct event time t_j (both arms pooled):
       - n_j = number at risk (start < t_j <= stop), n_Aj in arm A
       - d_j = events at t_j, d_Aj in arm A
       - E_Aj = n_Aj * d_j / n_j                      (hypergeometric mean)
       - V_j = n_Aj n_Bj d_j (n_j - d_j) / (n_j^2 (n_j - 1)),  0 if n_j = 1
    Sum w_j (O_Aj - E_Aj) and w_j^2 V_j over times, then over strata.
    Statistic: (Σ(O - E))^2 / ΣV on 1 degree of freedom.

Arm A is the experimental arm. Strata are summed, never averaged.

References:
    Harrington, D. P. & Fleming, T. R. (1982). A class of rank test
        procedures for censored survival data. Biometrika, 69(3), 553-566.
    R Core Team. survival::survdiff
"""

from __future__ import annotations

from typing import Hashable, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pytrialsurv.core.exceptions import InsufficientEventsError
from pytrialsurv.survival._common import LogRankParams
from pytrialsurv.survival._km import risk_counts
from pytrialsurv.survival.design import Arm


def logrank_test(
    start: NDArray,
    stop: NDArray,
    event: NDArray,
    arm: NDArray,
    strata: NDArray,
    stratum_keys: Sequence[Hashable],
    rho: float,
) -> LogRankParams:
    """Compute the stratified log-rank test (G-rho family).

    Parameters
    ----------
    start, stop : NDArray
        (n,) entry and exit times.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    arm : NDArray
        (n,) 1.0 for the experimental arm, 0.0 for control.
    strata : NDArray
        (n,) integer stratum codes indexing ``stratum_keys``.
    stratum_keys : sequence
        Stratum labels, one per code.
    rho : float
        G-rho weight parameter: rho=0 is standard log-rank,
        rho=1 is Peto & Peto / Gehan-Wilcoxon.

    Returns
    -------
    LogRankParams

    Raises
    ------
    InsufficientEventsError
        If no event time contributes variance (no events, or every event
        happens in a risk set of one).
    """
    k = len(stratum_keys)
    stratum_oe = np.zeros(k, dtype=np.float64)
    stratum_var = np.zeros(k, dtype=np.float64)
    observed = np.zeros(2, dtype=np.float64)   # [control, experimental]
    expected = np.zeros(2, dtype=np.float64)

    for code in range(k):
        in_s = strata == code
        oe, var, obs, exp = _stratum_contribution(
            start[in_s], stop[in_s], event[in_s], arm[in_s], rho,
        )
        stratum_oe[code] = oe
        stratum_var[code] = var
        observed += obs
        expected += exp

    total_oe = float(np.sum(stratum_oe))
    total_var = float(np.sum(stratum_var))

    if not total_var > 0:
        raise InsufficientEventsError(
            f"Log-rank variance is zero across {k} strata "
            f"({int(np.sum(event))} events); no event time compares both "
            f"arms in a risk set larger than one",
            n_events=int(np.sum(event)),
            required=1,
        )

    statistic = total_oe ** 2 / total_var
    df = 1
    p_value = float(stats.chi2.sf(statistic, df))

    return LogRankParams(
        statistic=float(statistic),
        df=df,
        p_value=p_value,
        observed={Arm.CONTROL: float(observed[0]), Arm.EXPERIMENTAL: float(observed[1])},
        expected={Arm.CONTROL: float(expected[0]), Arm.EXPERIMENTAL: float(expected[1])},
        n_per_arm={
            Arm.CONTROL: int(np.sum(arm == 0.0)),
            Arm.EXPERIMENTAL: int(np.sum(arm == 1.0)),
        },
        o_minus_e=total_oe,
        variance=total_var,
        stratum_keys=tuple(stratum_keys),
        stratum_o_minus_e=stratum_oe,
        stratum_variance=stratum_var,
        rho=rho,
    )


def _stratum_contribution(
    start: NDArray,
    stop: NDArray,
    event: NDArray,
    arm: NDArray,
    rho: float,
) -> tuple[float, float, NDArray, NDArray]:
    """Weighted O - E, V and per-arm observed/expected for one stratum."""
    is_event = event == 1
    event_times = np.unique(stop[is_event])
    m = len(event_times)

    if m == 0:
        return 0.0, 0.0, np.zeros(2), np.zeros(2)

    exp_arm = arm == 1.0

    # Risk sets per arm at each event time
    n_a = risk_counts(start[exp_arm], stop[exp_arm], event_times)
    n_b = risk_counts(start[~exp_arm], stop[~exp_arm], event_times)
    n = n_a + n_b

    # Events per arm at each event time
    slot = np.searchsorted(event_times, stop[is_event])
    d_a = np.bincount(slot, weights=exp_arm[is_event].astype(np.float64), minlength=m)
    d = np.bincount(slot, minlength=m).astype(np.float64)
    d_b = d - d_a

    if rho == 0.0:
        weights = np.ones(m, dtype=np.float64)
    else:
        # S(t_j-) from the pooled product-limit estimate in this stratum
        s_before = np.ones(m, dtype=np.float64)
        s_before[1:] = np.cumprod(1.0 - d / n)[:-1]
        weights = s_before ** rho

    e_a = n_a * d / n
    e_b = n_b * d / n

    # Hypergeometric variance; no contribution from single-subject risk sets
    informative = n > 1
    v = np.zeros(m, dtype=np.float64)
    v[informative] = (
        n_a[informative] * n_b[informative] * d[informative]
        * (n[informative] - d[informative])
        / (n[informative] ** 2 * (n[informative] - 1))
    )

    oe = float(np.sum(weights * (d_a - e_a)))
    var = float(np.sum(weights ** 2 * v))
    obs = np.array([np.sum(weights * d_b), np.sum(weights * d_a)])
    exp = np.array([np.sum(weights * e_b), np.sum(weights * e_a)])

    return oe, var, obs, exp
