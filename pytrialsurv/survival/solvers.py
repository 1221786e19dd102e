"""
Public API for survival analysis.

    kaplan_meier(dataset) → KMSolution
    survdiff(dataset) → LogRankSolution
    coxph(dataset, config) → CoxSolution
    cox_zph(cox, dataset) → SchoenfeldSolution

Each function validates inputs, dispatches to the kernel, and wraps the
Result in a Solution. StratifiedCoxModel exposes the Newton-Raphson fit
as an explicit state machine.
"""

from __future__ import annotations

import warnings
from enum import Enum
from typing import Literal

from pytrialsurv.core.compute.timing import Timer
from pytrialsurv.core.exceptions import ValidationError
from pytrialsurv.core.result import Result
from pytrialsurv.core.validation import check_non_negative, check_open_unit_interval
from pytrialsurv.survival._common import KMParams
from pytrialsurv.survival._cox import cox_fit
from pytrialsurv.survival._km import CONF_TYPES, kaplan_meier_fit
from pytrialsurv.survival._logrank import logrank_test
from pytrialsurv.survival._schoenfeld import TRANSFORMS, schoenfeld_test
from pytrialsurv.survival.config import CoxConfig
from pytrialsurv.survival.design import ARMS, SurvivalDataset
from pytrialsurv.survival.solution import (
    CoxSolution,
    KMSolution,
    LogRankSolution,
    SchoenfeldSolution,
)


def _check_dataset(dataset) -> None:
    if not isinstance(dataset, SurvivalDataset):
        raise ValidationError(
            f"dataset must be a SurvivalDataset, got {type(dataset).__name__}"
        )


def kaplan_meier(
    dataset: SurvivalDataset,
    *,
    conf_level: float = 0.95,
    conf_type: Literal["log-log", "log", "plain"] = "log-log",
) -> KMSolution:
    """Kaplan-Meier survival curve per treatment arm.

    Matches R's survival::survfit(Surv(start, stop, event) ~ arm). The
    curve of both arms pooled, survfit(Surv(start, stop, event) ~ 1), is
    computed alongside and exposed as KMSolution.pooled.

    Parameters
    ----------
    dataset : SurvivalDataset
    conf_level : float
        Confidence level for CI (default 0.95).
    conf_type : str
        CI transformation: "log-log" (default), "log", "plain".

    Returns
    -------
    KMSolution
    """
    _check_dataset(dataset)
    check_open_unit_interval(conf_level, "conf_level")

    if conf_type not in CONF_TYPES:
        raise ValueError(
            f"conf_type must be 'log-log', 'log', or 'plain', "
            f"got '{conf_type}'"
        )

    timer = Timer()
    timer.start()

    curves = {}
    warnings_list = []
    for arm in ARMS:
        in_arm = dataset.arm == arm.indicator
        curves[arm] = kaplan_meier_fit(
            dataset.start[in_arm], dataset.stop[in_arm], dataset.event[in_arm],
            conf_level=conf_level,
            conf_type=conf_type,
        )
        if curves[arm].n_observations == 0:
            warnings_list.append(f"arm '{arm.value}' has no subjects")
        elif curves[arm].n_events_total == 0:
            warnings_list.append(f"arm '{arm.value}' has no events")

    pooled = kaplan_meier_fit(
        dataset.start, dataset.stop, dataset.event,
        conf_level=conf_level,
        conf_type=conf_type,
    )

    timer.stop()

    for message in warnings_list:
        warnings.warn(f"Kaplan-Meier: {message}", stacklevel=2)

    result = Result(
        params=KMParams(
            curves=curves,
            pooled=pooled,
            conf_level=conf_level,
            conf_type=conf_type,
        ),
        info={
            "method": "Kaplan-Meier",
            "left_truncated": dataset.is_left_truncated,
        },
        timing=timer.result(),
        backend_name="cpu_km",
        warnings=tuple(warnings_list),
    )

    return KMSolution(_result=result)


def survdiff(
    dataset: SurvivalDataset,
    *,
    rho: float = 0.0,
) -> LogRankSolution:
    """Stratified log-rank test (and G-rho family).

    Matches R's survival::survdiff(Surv(start, stop, event) ~ arm + strata(s)).

    Parameters
    ----------
    dataset : SurvivalDataset
        Every stratum must contain both arms.
    rho : float
        G-rho weight parameter. rho=0 (default) gives the standard
        log-rank test. rho=1 gives Peto & Peto / Gehan-Wilcoxon.

    Returns
    -------
    LogRankSolution

    Raises
    ------
    EmptyStratumError
        If a stratum lacks an arm.
    InsufficientEventsError
        If no event time contributes variance.
    """
    _check_dataset(dataset)
    check_non_negative(rho, "rho")

    dataset.check_strata()

    timer = Timer()
    timer.start()

    params = logrank_test(
        dataset.start, dataset.stop, dataset.event, dataset.arm,
        dataset.strata, dataset.stratum_keys,
        rho=rho,
    )

    timer.stop()

    result = Result(
        params=params,
        info={
            "method": "Stratified log-rank test",
            "rho": rho,
            "n_strata": dataset.n_strata,
            "left_truncated": dataset.is_left_truncated,
        },
        timing=timer.result(),
        backend_name="cpu_logrank",
        warnings=(),
    )

    return LogRankSolution(_result=result)


class FitState(Enum):
    """Lifecycle of a StratifiedCoxModel fit."""

    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    FAILED = "failed"


class StratifiedCoxModel:
    """Stratified Cox model of the arm effect (plus any extra covariates).

    State machine: INITIALIZED → ITERATING → CONVERGED | FAILED. Both
    terminal states are final: fit() on a converged model returns the
    stored solution, on a failed model re-raises the stored error.

    Parameters
    ----------
    dataset : SurvivalDataset
        Every stratum must contain both arms.
    config : CoxConfig
        Tie method and stopping rule, passed explicitly.

    Examples
    --------
    >>> model = StratifiedCoxModel(dataset, CoxConfig(ties="efron"))
    >>> cox = model.fit()
    >>> model.state
    <FitState.CONVERGED: 'converged'>
    """

    def __init__(self, dataset: SurvivalDataset, config: CoxConfig) -> None:
        _check_dataset(dataset)
        if not isinstance(config, CoxConfig):
            raise ValidationError(
                f"config must be a CoxConfig, got {type(config).__name__}"
            )
        self._dataset = dataset
        self._config = config
        self._state = FitState.INITIALIZED
        self._solution: CoxSolution | None = None
        self._failure: Exception | None = None

    @property
    def dataset(self) -> SurvivalDataset:
        return self._dataset

    @property
    def config(self) -> CoxConfig:
        return self._config

    @property
    def state(self) -> FitState:
        return self._state

    @property
    def solution(self) -> CoxSolution | None:
        """The fit, once CONVERGED."""
        return self._solution

    @property
    def failure(self) -> Exception | None:
        """The error that moved the model to FAILED.

        Library errors carry their diagnostics; anything else raised during
        the fit is kept as is.
        """
        return self._failure

    def fit(self) -> CoxSolution:
        """Run Newton-Raphson to convergence.

        Raises
        ------
        EmptyStratumError
            If a stratum lacks an arm.
        InsufficientEventsError
            If there are no events.
        SingularInformationMatrixError
            If the information matrix cannot be factorised, or a
            coefficient diverges (e.g. an arm without events).
        NonConvergenceError
            If max_iterations is reached.
        """
        if self._state is FitState.CONVERGED:
            return self._solution
        if self._state is FitState.FAILED:
            raise self._failure
        if self._state is FitState.ITERATING:
            raise RuntimeError("StratifiedCoxModel.fit() is already running")

        dataset = self._dataset
        config = self._config
        self._state = FitState.ITERATING

        timer = Timer()
        timer.start()
        try:
            dataset.check_strata()
            with timer.section("newton_raphson"):
                params = cox_fit(
                    dataset.design_matrix(),
                    dataset.start, dataset.stop, dataset.event,
                    dataset.strata, dataset.n_strata,
                    dataset.design_names,
                    config,
                )
        except Exception as e:
            # Any error is terminal, not only the library's own
            self._failure = e
            self._state = FitState.FAILED
            raise
        finally:
            timer.stop()

        result = Result(
            params=params,
            info={
                "method": "Stratified Cox PH",
                "ties": config.ties,
                "n_iter": params.n_iter,
                "converged": params.converged,
                "n_strata": dataset.n_strata,
                "left_truncated": dataset.is_left_truncated,
            },
            timing=timer.result(),
            backend_name="cpu_cox",
            warnings=(),
        )

        self._solution = CoxSolution(_result=result)
        self._state = FitState.CONVERGED
        return self._solution

    def __repr__(self) -> str:
        return (
            f"StratifiedCoxModel(state={self._state.value}, "
            f"ties={self._config.ties}, n={self._dataset.n_observations})"
        )


def coxph(
    dataset: SurvivalDataset,
    config: CoxConfig,
) -> CoxSolution:
    """Stratified Cox proportional hazards model.

    Matches R's survival::coxph(Surv(start, stop, event) ~ arm + strata(s)).

    Parameters
    ----------
    dataset : SurvivalDataset
    config : CoxConfig
        Tie method and stopping rule; no implicit default.

    Returns
    -------
    CoxSolution
    """
    return StratifiedCoxModel(dataset, config).fit()


def cox_zph(
    cox: CoxSolution,
    dataset: SurvivalDataset,
    *,
    transform: Literal["rank", "identity", "log", "km"] = "rank",
) -> SchoenfeldSolution:
    """Test the proportional hazards assumption of a converged fit.

    Matches R's survival::cox.zph(fit, transform=...), with the global
    statistic taken as the sum of the per-covariate statistics.

    Parameters
    ----------
    cox : CoxSolution
        Converged fit of ``dataset``.
    dataset : SurvivalDataset
        The dataset the model was fitted on.
    transform : str
        Time transform: "rank" (default), "identity", "log", "km".

    Returns
    -------
    SchoenfeldSolution

    Raises
    ------
    ValidationError
        If the fit is not converged or does not belong to ``dataset``.
    InsufficientEventsError
        If there are fewer than two events.
    """
    _check_dataset(dataset)
    if not isinstance(cox, CoxSolution):
        raise ValidationError(
            f"cox must be a CoxSolution, got {type(cox).__name__}"
        )
    if transform not in TRANSFORMS:
        raise ValueError(
            f"transform must be one of {TRANSFORMS}, got '{transform}'"
        )

    fit = cox.fit
    if not fit.converged:
        raise ValidationError("cox_zph() requires a converged Cox fit")
    if (fit.n_observations != dataset.n_observations
            or fit.n_events != dataset.n_events
            or fit.n_strata != dataset.n_strata
            or fit.covariate_names != dataset.design_names):
        raise ValidationError(
            f"Cox fit (n={fit.n_observations}, events={fit.n_events}, "
            f"strata={fit.n_strata}, covariates={fit.covariate_names}) "
            f"does not match dataset (n={dataset.n_observations}, "
            f"events={dataset.n_events}, strata={dataset.n_strata}, "
            f"covariates={dataset.design_names})"
        )

    timer = Timer()
    timer.start()

    params = schoenfeld_test(
        dataset.design_matrix(),
        dataset.start, dataset.stop, dataset.event,
        dataset.strata, dataset.stratum_keys, dataset.subject_ids,
        fit.coefficients, fit.covariance, fit.covariate_names,
        ties=fit.ties,
        transform=transform,
    )

    timer.stop()

    result = Result(
        params=params,
        info={
            "method": "Schoenfeld residual test",
            "transform": transform,
            "ties": fit.ties,
        },
        timing=timer.result(),
        backend_name="cpu_zph",
        warnings=(),
    )

    return SchoenfeldSolution(_result=result)
