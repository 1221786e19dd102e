"""
Stratified survival analysis for two-arm randomised trials.

Public API:
    SurvivalDataset.from_records(...) -> SurvivalDataset
    kaplan_meier(dataset) -> KMSolution
    survdiff(dataset) -> LogRankSolution
    coxph(dataset, config) -> CoxSolution
    cox_zph(cox, dataset) -> SchoenfeldSolution
    AnalysisOrchestrator(config).run(dataset) -> TrialAnalysis
"""

from pytrialsurv.survival.design import (
    Arm,
    RejectedRecord,
    SurvivalDataset,
    SurvivalRecord,
)
from pytrialsurv.survival._common import (
    CoxFitResult,
    KMPoint,
    SchoenfeldResidual,
)
from pytrialsurv.survival.config import CoxConfig
from pytrialsurv.survival.solvers import (
    FitState,
    StratifiedCoxModel,
    cox_zph,
    coxph,
    kaplan_meier,
    survdiff,
)
from pytrialsurv.survival.solution import (
    CoxSolution,
    KaplanMeierCurve,
    KMSolution,
    LogRankSolution,
    SchoenfeldSolution,
)
from pytrialsurv.survival.analysis import (
    AnalysisOrchestrator,
    TrialAnalysis,
    TrialReport,
)

__all__ = [
    "Arm",
    "SurvivalRecord",
    "RejectedRecord",
    "SurvivalDataset",
    "CoxConfig",
    "CoxFitResult",
    "KMPoint",
    "SchoenfeldResidual",
    "FitState",
    "StratifiedCoxModel",
    "kaplan_meier",
    "survdiff",
    "coxph",
    "cox_zph",
    "KaplanMeierCurve",
    "KMSolution",
    "LogRankSolution",
    "CoxSolution",
    "SchoenfeldSolution",
    "AnalysisOrchestrator",
    "TrialAnalysis",
    "TrialReport",
]
