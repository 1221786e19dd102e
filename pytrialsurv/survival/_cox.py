"""
Stratified Cox proportional hazards model via Newton-Raphson.

Implements Efron's and Breslow's methods for tied event times with
counting-process risk sets, matching R's
survival::coxph(Surv(start, stop, event) ~ x + strata(s)).

Risk sets never cross strata: each stratum has its own baseline hazard,
and the log-likelihood, score and information are sums of per-stratum
contributions.

Algorithm:
    Initialize β = 0
    For iteration 1..max_iter:
        β_new = β + I(β)^{-1} @ U(β)        (Cholesky solve)
        Halve the step while L(β_new) < L(β)
        Stop when |L(β_new) - L(β)| < epsilon

Efron's partial likelihood:
    L(β) = Σ_{j: event times} [ Σ_{i ∈ D_j} x_i @ β
            - Σ_{s=0}^{d_j-1} log(Σ_{l ∈ R_j} exp(x_l @ β)
                - (s/d_j) * Σ_{i ∈ D_j} exp(x_i @ β)) ]

    where D_j = set of events at time t_j, d_j = |D_j|,
          R_j = risk set at time t_j within the stratum (start < t_j <= stop).

References:
    Cox, D. R. (1972). Regression models and life-tables. JRSS-B, 34(2), 187-220.
    Efron, B. (1977). The efficiency of Cox's likelihood function for
        censored data. JASA, 72(359), 557-565.
    R Core Team. survival::coxph, agreg.fit
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.typing import NDArray
from scipy import linalg, stats

from pytrialsurv.core.exceptions import (
    InsufficientEventsError,
    NonConvergenceError,
    SingularInformationMatrixError,
)
from pytrialsurv.survival._common import CoxFitResult
from pytrialsurv.survival.config import CoxConfig

_MAX_HALVINGS = 10


@dataclass(frozen=True)
class RiskSet:
    """Subjects at risk and subjects failing at one event time of a stratum."""

    stratum: int
    time: float
    at_risk: NDArray             # indices with start < time <= stop
    deaths: NDArray              # indices with stop == time and an event


def build_risk_sets(
    start: NDArray,
    stop: NDArray,
    event: NDArray,
    strata: NDArray,
    n_strata: int,
) -> tuple[RiskSet, ...]:
    """Risk sets for every distinct event time, stratum by stratum.

    Independent of β, so computed once per fit.
    """
    risk_sets = []
    for code in range(n_strata):
        in_s = strata == code
        is_event = in_s & (event == 1)
        for t in np.unique(stop[is_event]):
            at_risk = np.flatnonzero(in_s & (start < t) & (t <= stop))
            deaths = np.flatnonzero(is_event & (stop == t))
            risk_sets.append(RiskSet(code, float(t), at_risk, deaths))
    return tuple(risk_sets)


def cox_fit(
    X: NDArray,
    start: NDArray,
    stop: NDArray,
    event: NDArray,
    strata: NDArray,
    n_strata: int,
    covariate_names: Sequence[str],
    config: CoxConfig,
) -> CoxFitResult:
    """Fit a stratified Cox proportional hazards model.

    Parameters
    ----------
    X : NDArray
        (n, p) covariate matrix (NO intercept).
    start, stop : NDArray
        (n,) entry and exit times.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    strata : NDArray
        (n,) integer stratum codes in [0, n_strata).
    n_strata : int
    covariate_names : sequence of str
        One name per column of X.
    config : CoxConfig
        Tie method and stopping rule.

    Returns
    -------
    CoxFitResult

    Raises
    ------
    InsufficientEventsError
        If there are no events.
    SingularInformationMatrixError
        If the information matrix is not positive definite at any iterate,
        or collapses relative to beta = 0 as a coefficient diverges.
    NonConvergenceError
        If max_iterations is reached without meeting convergence_epsilon.
    """
    n, p = X.shape
    ties = config.ties
    n_events = int(np.sum(event))

    if n_events == 0:
        raise InsufficientEventsError(
            "Cox model needs at least one event, got 0",
            n_events=0,
            required=1,
        )

    risk_sets = build_risk_sets(start, stop, event, strata, n_strata)

    # --- Newton-Raphson ---
    beta = np.zeros(p, dtype=np.float64)
    loglik, score, info = _score_and_information(beta, X, risk_sets, ties)
    null_loglik = loglik
    trajectory = [loglik]

    # Per-covariate information at beta = 0; later pivots are measured
    # against it to catch a likelihood that keeps rising as beta diverges
    null_diag = np.diag(info).copy()
    factor = _factor_information(info, null_diag, config, 0, beta, loglik)
    score_statistic = float(score @ linalg.cho_solve(factor, score))

    converged = False
    n_iter = 0
    change = np.inf

    for iteration in range(1, config.max_iterations + 1):
        n_iter = iteration
        step = linalg.cho_solve(factor, score)
        beta_new = beta + step
        loglik_new, score_new, info_new = _score_and_information(
            beta_new, X, risk_sets, ties
        )

        # Step-halving when the iterate overshoots (also catches overflow)
        halvings = 0
        while not loglik_new >= loglik and halvings < _MAX_HALVINGS:
            step = step / 2.0
            beta_new = beta + step
            loglik_new, score_new, info_new = _score_and_information(
                beta_new, X, risk_sets, ties
            )
            halvings += 1

        change = abs(loglik_new - loglik)
        beta, loglik, score, info = beta_new, loglik_new, score_new, info_new
        trajectory.append(loglik)

        factor = _factor_information(info, null_diag, config, iteration, beta, loglik)

        if change < config.convergence_epsilon:
            converged = True
            break

    if not converged:
        raise NonConvergenceError(
            f"Newton-Raphson did not converge in {n_iter} iterations: "
            f"last |Δ loglik| = {change:.3g} (epsilon {config.convergence_epsilon:g}), "
            f"beta = {beta}, |score| = {np.linalg.norm(score):.3g}",
            iterations=n_iter,
            coefficients=beta.copy(),
            loglik=float(loglik),
            gradient_norm=float(np.linalg.norm(score)),
            final_change=float(change),
            threshold=config.convergence_epsilon,
            loglik_trajectory=trajectory,
        )

    covariance = linalg.cho_solve(factor, np.eye(p))
    se = np.sqrt(np.diag(covariance))

    # Wald z-statistics, p-values and hazard ratio intervals
    z = beta / se
    p_values = 2.0 * stats.norm.sf(np.abs(z))
    z_crit = stats.norm.ppf((1.0 + config.conf_level) / 2.0)

    lr_statistic = max(2.0 * (loglik - null_loglik), 0.0)

    return CoxFitResult(
        covariate_names=tuple(covariate_names),
        coefficients=beta,
        covariance=covariance,
        information=info,
        standard_errors=se,
        hazard_ratios=np.exp(beta),
        ci_lower=np.exp(beta - z_crit * se),
        ci_upper=np.exp(beta + z_crit * se),
        z_statistics=z,
        p_values=p_values,
        loglik=(float(null_loglik), float(loglik)),
        loglik_trajectory=tuple(float(v) for v in trajectory),
        score_statistic=score_statistic,
        score_p_value=float(stats.chi2.sf(score_statistic, p)),
        lr_statistic=float(lr_statistic),
        lr_p_value=float(stats.chi2.sf(lr_statistic, p)),
        concordance=_concordance(X @ beta, start, stop, event, strata),
        n_events=n_events,
        n_observations=n,
        n_strata=n_strata,
        n_iter=n_iter,
        converged=True,
        ties=ties,
        conf_level=config.conf_level,
    )


def _factor_information(
    info: NDArray,
    null_diag: NDArray,
    config: CoxConfig,
    iteration: int,
    beta: NDArray,
    loglik: float,
) -> tuple[NDArray, bool]:
    """Cholesky factor of the information matrix, or raise if singular.

    A pivot below singular_tolerance times the largest diagonal element
    counts as zero, as in R's cholesky2. That test is relative to the
    current matrix, so it cannot see a one-covariate information that
    shrinks toward zero while beta runs off to infinity (monotone
    likelihood, e.g. one arm has no events). Pivot j is therefore also
    compared with infinite_tolerance times the information for covariate
    j at beta = 0.
    """
    diag = np.diag(info)

    def _fail(detail: str, condition: float | None = None):
        return SingularInformationMatrixError(
            f"Information matrix is singular at iteration {iteration} "
            f"({detail}); covariates may be collinear or the risk sets "
            f"never compare them",
            iteration=iteration,
            coefficients=beta.copy(),
            loglik=float(loglik),
            condition_number=condition,
        )

    if not np.all(np.isfinite(info)):
        raise _fail("non-finite entries")
    if not np.all(diag > 0):
        raise _fail(f"non-positive diagonal {diag}")

    try:
        factor = linalg.cho_factor(info, lower=True, check_finite=False)
    except linalg.LinAlgError as e:
        raise _fail("not positive definite") from e

    pivots = np.diag(factor[0]) ** 2
    if pivots.min() < config.singular_tolerance * diag.max():
        raise _fail(
            f"pivot {pivots.min():.3g} below tolerance",
            condition=float(diag.max() / pivots.min()) if pivots.min() > 0 else np.inf,
        )

    collapsed = pivots < config.infinite_tolerance * null_diag
    if np.any(collapsed):
        which = np.flatnonzero(collapsed).tolist()
        raise SingularInformationMatrixError(
            f"Information for covariate column(s) {which} collapsed to "
            f"{pivots.min():.3g} at iteration {iteration} (beta = {beta}); "
            f"the partial likelihood is monotone and the coefficient "
            f"diverges, e.g. an arm has no events in its risk sets",
            iteration=iteration,
            coefficients=beta.copy(),
            loglik=float(loglik),
            condition_number=float(np.max(null_diag / pivots))
            if pivots.min() > 0 else np.inf,
        )

    return factor


def _score_and_information(
    beta: NDArray,
    X: NDArray,
    risk_sets: Sequence[RiskSet],
    ties: str,
) -> tuple[float, NDArray, NDArray]:
    """Compute log-likelihood, score vector, and observed information matrix.

    Returns
    -------
    (loglik, score, info_matrix)
        loglik : float
        score : (p,), gradient of log-likelihood
        info_matrix : (p, p), negative Hessian (observed information)
    """
    n, p = X.shape
    eta = X @ beta

    # Center eta for numerical stability (cancels within every risk set)
    eta_max = np.max(eta) if n > 0 else 0.0
    eta_c = eta - eta_max
    exp_eta = np.exp(eta_c)

    loglik = 0.0
    score = np.zeros(p, dtype=np.float64)
    info_matrix = np.zeros((p, p), dtype=np.float64)

    for rs in risk_sets:
        risk_exp = exp_eta[rs.at_risk]
        risk_X = X[rs.at_risk]

        S0 = np.sum(risk_exp)
        S1 = risk_X.T @ risk_exp
        S2 = (risk_X * risk_exp[:, np.newaxis]).T @ risk_X

        d_j = len(rs.deaths)
        event_X = X[rs.deaths]
        event_X_sum = np.sum(event_X, axis=0)
        event_eta_c_sum = np.sum(eta_c[rs.deaths])

        if ties == "breslow" or d_j == 1:
            # Breslow (or a single event, where both agree)
            loglik += event_eta_c_sum - d_j * np.log(S0)
            score += event_X_sum - d_j * S1 / S0
            info_matrix += d_j * (S2 / S0 - np.outer(S1, S1) / S0**2)

        else:
            # Efron approximation
            event_exp = exp_eta[rs.deaths]
            death_S0 = np.sum(event_exp)
            death_S1 = event_X.T @ event_exp
            death_S2 = (event_X * event_exp[:, np.newaxis]).T @ event_X

            loglik += event_eta_c_sum

            for s in range(d_j):
                frac = s / d_j
                denom = S0 - frac * death_S0
                s1_adj = S1 - frac * death_S1
                s2_adj = S2 - frac * death_S2

                mean = s1_adj / denom

                loglik -= np.log(denom)
                score -= mean
                info_matrix += s2_adj / denom - np.outer(mean, mean)

            score += event_X_sum

    return float(loglik), score, info_matrix


def expected_covariate(
    beta: NDArray,
    X: NDArray,
    rs: RiskSet,
    ties: str,
) -> NDArray:
    """Risk-set weighted mean covariate used for the deaths of one risk set.

    Under Efron the mean is averaged over the d_j partial removals of the
    tied deaths, as R does for Schoenfeld residuals.
    """
    eta = X[rs.at_risk] @ beta
    shift = np.max(eta)
    risk_exp = np.exp(eta - shift)
    risk_X = X[rs.at_risk]

    S0 = np.sum(risk_exp)
    S1 = risk_X.T @ risk_exp
    d_j = len(rs.deaths)

    if ties == "breslow" or d_j == 1:
        return S1 / S0

    event_X = X[rs.deaths]
    event_exp = np.exp(event_X @ beta - shift)
    death_S0 = np.sum(event_exp)
    death_S1 = event_X.T @ event_exp

    means = [
        (S1 - (s / d_j) * death_S1) / (S0 - (s / d_j) * death_S0)
        for s in range(d_j)
    ]
    return np.mean(means, axis=0)


def _concordance(
    eta: NDArray,
    start: NDArray,
    stop: NDArray,
    event: NDArray,
    strata: NDArray,
) -> float:
    """Harrell's concordance within strata.

    A pair (i, j) is comparable when i has an event at t_i and j, from the
    same stratum, entered before t_i and either leaves after t_i or is
    censored at t_i (an event precedes a censoring at the same time, as in
    R's concordance). Pairs with tied event times are not comparable.
    C = P(eta_i > eta_j | comparable), ties in eta counted as 1/2.
    """
    concordant = 0.0
    discordant = 0.0
    tied_risk = 0.0

    for i in np.flatnonzero(event == 1):
        t_i = stop[i]
        outlives = (stop > t_i) | ((stop == t_i) & (event == 0))
        comparable = (strata == strata[i]) & (start < t_i) & outlives
        other = eta[comparable]
        concordant += np.sum(eta[i] > other)
        discordant += np.sum(eta[i] < other)
        tied_risk += np.sum(eta[i] == other)

    total = concordant + discordant + tied_risk
    if total == 0:
        return 0.5

    return float((concordant + 0.5 * tied_risk) / total)
