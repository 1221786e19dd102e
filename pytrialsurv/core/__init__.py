"""
Core infrastructure for pytrialsurv.

Shared abstractions used by the survival engine.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing
"""

from pytrialsurv.core.result import Result
from pytrialsurv.core.exceptions import (
    PyTrialSurvError,
    ValidationError,
    InvalidRecordError,
    EmptyStratumError,
    InsufficientEventsError,
    NumericalError,
    SingularMatrixError,
    SingularInformationMatrixError,
    ConvergenceError,
    NonConvergenceError,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "PyTrialSurvError",
    "ValidationError",
    "InvalidRecordError",
    "EmptyStratumError",
    "InsufficientEventsError",
    "NumericalError",
    "SingularMatrixError",
    "SingularInformationMatrixError",
    "ConvergenceError",
    "NonConvergenceError",
]
