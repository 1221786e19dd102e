"""
Two-regime trial analysis.

The primary analysis measures time from randomisation (right censoring
only); the secondary measures time from symptom onset with delayed entry
at randomisation (left truncation). Both run the same four procedures on
independently constructed datasets:

    SurvivalDataset ─┬─ kaplan_meier ─┐
                     ├─ survdiff ─────┼─ TrialAnalysis
                     └─ coxph ── cox_zph ┘

Kaplan-Meier, log-rank and Cox run concurrently; the Schoenfeld test waits
on the Cox fit. The two regimes share no state and also run concurrently.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Literal

from pytrialsurv.core.validation import check_non_negative, check_open_unit_interval
from pytrialsurv.survival._km import CONF_TYPES
from pytrialsurv.survival._schoenfeld import TRANSFORMS
from pytrialsurv.survival.config import CoxConfig
from pytrialsurv.survival.design import SurvivalDataset
from pytrialsurv.survival.solution import (
    CoxSolution,
    KMSolution,
    LogRankSolution,
    SchoenfeldSolution,
)
from pytrialsurv.survival.solvers import (
    StratifiedCoxModel,
    cox_zph,
    kaplan_meier,
    survdiff,
)


@dataclass(frozen=True)
class TrialAnalysis:
    """All results of one analysis regime."""

    label: str
    dataset: SurvivalDataset
    km: KMSolution
    logrank: LogRankSolution
    cox: CoxSolution
    schoenfeld: SchoenfeldSolution

    def summary(self) -> str:
        header = f"=== {self.label} ({self.dataset!r}) ==="
        return "\n\n".join([
            header,
            self.km.summary(),
            self.logrank.summary(),
            self.cox.summary(),
            self.schoenfeld.summary(),
        ])


@dataclass(frozen=True)
class TrialReport:
    """Primary (no truncation) and secondary (left truncation) analyses."""

    primary: TrialAnalysis
    secondary: TrialAnalysis

    def summary(self) -> str:
        return self.primary.summary() + "\n\n" + self.secondary.summary()


class AnalysisOrchestrator:
    """Run the full stratified analysis over one or both regimes.

    Parameters
    ----------
    config : CoxConfig
        Cox tie method and stopping rule.
    conf_level : float
        Confidence level of the Kaplan-Meier intervals.
    conf_type : str
        Kaplan-Meier CI transformation, "log-log" by default.
    transform : str
        Schoenfeld time transform, "rank" by default.
    rho : float
        Log-rank G-rho weight, 0 for the log-rank test.
    """

    def __init__(
        self,
        config: CoxConfig,
        *,
        conf_level: float = 0.95,
        conf_type: Literal["log-log", "log", "plain"] = "log-log",
        transform: Literal["rank", "identity", "log", "km"] = "rank",
        rho: float = 0.0,
    ) -> None:
        if not isinstance(config, CoxConfig):
            raise TypeError(
                f"config must be a CoxConfig, got {type(config).__name__}"
            )
        check_open_unit_interval(conf_level, "conf_level")
        if conf_type not in CONF_TYPES:
            raise ValueError(f"conf_type must be one of {CONF_TYPES}, got '{conf_type}'")
        if transform not in TRANSFORMS:
            raise ValueError(f"transform must be one of {TRANSFORMS}, got '{transform}'")
        check_non_negative(rho, "rho")

        self.config = config
        self.conf_level = conf_level
        self.conf_type = conf_type
        self.transform = transform
        self.rho = rho

    def run(self, dataset: SurvivalDataset, label: str = "analysis") -> TrialAnalysis:
        """Analyse one dataset.

        Strata are validated before anything is submitted, so an empty
        stratum fails fast with EmptyStratumError.
        """
        dataset.check_strata()

        with ThreadPoolExecutor(max_workers=3) as pool:
            km_future = pool.submit(
                kaplan_meier, dataset,
                conf_level=self.conf_level, conf_type=self.conf_type,
            )
            logrank_future = pool.submit(survdiff, dataset, rho=self.rho)
            cox_future = pool.submit(StratifiedCoxModel(dataset, self.config).fit)

            cox = cox_future.result()
            schoenfeld = cox_zph(cox, dataset, transform=self.transform)

            return TrialAnalysis(
                label=label,
                dataset=dataset,
                km=km_future.result(),
                logrank=logrank_future.result(),
                cox=cox,
                schoenfeld=schoenfeld,
            )

    def run_primary_and_secondary(
        self,
        primary: SurvivalDataset,
        secondary: SurvivalDataset,
    ) -> TrialReport:
        """Run both regimes in parallel.

        Parameters
        ----------
        primary : SurvivalDataset
            Time from randomisation, all start times 0.
        secondary : SurvivalDataset
            Time from symptom onset, entry at randomisation.
        """
        with ThreadPoolExecutor(max_workers=2) as pool:
            primary_future = pool.submit(self.run, primary, "primary")
            secondary_future = pool.submit(self.run, secondary, "secondary")
            return TrialReport(
                primary=primary_future.result(),
                secondary=secondary_future.result(),
            )
