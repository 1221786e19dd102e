"""
Exception hierarchy for pytrialsurv.

All exceptions inherit from PyTrialSurvError to allow catching any
library-specific error. Domain-specific exceptions inherit from the
appropriate base class here.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""

from __future__ import annotations

from typing import Any, Hashable, Sequence


class PyTrialSurvError(Exception):
    """Base exception for all pytrialsurv errors."""
    pass


class ValidationError(PyTrialSurvError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class InvalidRecordError(ValidationError):
    """
    Too many subject records failed validation at ingestion.

    Attributes:
        subject_ids: Identifiers of the rejected subjects
        n_rejected: Number of rejected records
        n_total: Number of records submitted
        tolerance: The rejected-fraction tolerance that was exceeded
    """

    def __init__(
        self,
        message: str,
        subject_ids: Sequence[Any] = (),
        n_rejected: int | None = None,
        n_total: int | None = None,
        tolerance: float | None = None,
    ):
        super().__init__(message)
        self.subject_ids = tuple(subject_ids)
        self.n_rejected = n_rejected
        self.n_total = n_total
        self.tolerance = tolerance


class EmptyStratumError(ValidationError):
    """
    A stratum lacks one of the arms needed for a stratified comparison.

    Attributes:
        stratum: The offending stratum key
        missing_arm: The arm with no subjects in that stratum
    """

    def __init__(
        self,
        message: str,
        stratum: Hashable | None = None,
        missing_arm: Any = None,
    ):
        super().__init__(message)
        self.stratum = stratum
        self.missing_arm = missing_arm


class InsufficientEventsError(ValidationError):
    """
    Too few events for a stable estimate.

    Attributes:
        n_events: Number of events available
        required: Minimum number of events the procedure needs
    """

    def __init__(
        self,
        message: str,
        n_events: int | None = None,
        required: int | None = None,
    ):
        super().__init__(message)
        self.n_events = n_events
        self.required = required


class NumericalError(PyTrialSurvError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class SingularMatrixError(NumericalError):
    """
    Matrix is singular or nearly singular.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        condition_number: Estimated condition number, if available
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        condition_number: float | None = None,
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.condition_number = condition_number


class SingularInformationMatrixError(SingularMatrixError):
    """
    The Cox observed information matrix cannot be factorised.

    Raised for collinear covariates or risk sets that never compare the
    arms. Carries the Newton-Raphson state at the point of failure.

    Attributes:
        iteration: Newton-Raphson iteration at which the failure occurred
        coefficients: Coefficient vector at that iteration
        loglik: Partial log-likelihood at that iteration
    """

    def __init__(
        self,
        message: str,
        iteration: int,
        coefficients: Any = None,
        loglik: float | None = None,
        condition_number: float | None = None,
    ):
        super().__init__(
            message,
            matrix_name="information",
            condition_number=condition_number,
        )
        self.iteration = iteration
        self.coefficients = coefficients
        self.loglik = loglik


class ConvergenceError(PyTrialSurvError):
    """
    Iterative algorithm failed to converge.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final objective change
        reason: Why convergence failed (e.g., 'max_iterations')
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None,
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold


class NonConvergenceError(ConvergenceError):
    """
    Cox Newton-Raphson hit its iteration cap.

    Attributes:
        coefficients: Last iterate of the coefficient vector
        loglik: Last partial log-likelihood
        gradient_norm: Euclidean norm of the last score vector
        loglik_trajectory: Log-likelihood at every iterate
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        coefficients: Any = None,
        loglik: float | None = None,
        gradient_norm: float | None = None,
        final_change: float | None = None,
        threshold: float | None = None,
        loglik_trajectory: Sequence[float] = (),
    ):
        super().__init__(
            message,
            iterations=iterations,
            final_change=final_change,
            reason="max_iterations",
            threshold=threshold,
        )
        self.coefficients = coefficients
        self.loglik = loglik
        self.gradient_norm = gradient_norm
        self.loglik_trajectory = tuple(loglik_trajectory)
