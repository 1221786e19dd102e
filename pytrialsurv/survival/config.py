"""
Configuration for the stratified Cox fit.

The kernels take a CoxConfig explicitly and carry no defaults of their own,
so the tie method and the stopping rule are always visible at the call site.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

from pytrialsurv.core.validation import check_open_unit_interval, check_positive

TIE_METHODS = ("efron", "breslow")


@dataclass(frozen=True)
class CoxConfig:
    """Newton-Raphson settings.

    Defaults follow R's ``coxph.control``.

    Attributes:
        ties: Tied event time handling, "efron" or "breslow"
        convergence_epsilon: Stop once |Δ log-likelihood| falls below this
        max_iterations: Iteration cap; hitting it is NonConvergenceError
        singular_tolerance: Cholesky pivots below this fraction of the
            largest pivot mark the information matrix as singular
        infinite_tolerance: A pivot below this fraction of the same
            covariate's information at beta = 0 marks a diverging
            (infinite) coefficient
        conf_level: Confidence level of the Wald intervals
    """

    ties: Literal["efron", "breslow"] = "efron"
    convergence_epsilon: float = 1e-9
    max_iterations: int = 20
    singular_tolerance: float = float(np.finfo(np.float64).eps ** 0.75)
    infinite_tolerance: float = 1e-5
    conf_level: float = 0.95

    def __post_init__(self):
        if self.ties not in TIE_METHODS:
            raise ValueError(
                f"ties must be 'efron' or 'breslow', got '{self.ties}'"
            )
        check_positive(self.convergence_epsilon, "convergence_epsilon")
        check_positive(self.singular_tolerance, "singular_tolerance")
        check_open_unit_interval(self.infinite_tolerance, "infinite_tolerance")
        if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, int) \
                or self.max_iterations < 1:
            raise ValueError(
                f"max_iterations must be a positive integer, got {self.max_iterations!r}"
            )
        check_open_unit_interval(self.conf_level, "conf_level")
