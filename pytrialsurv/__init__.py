"""
pytrialsurv: stratified survival analysis for randomised trials.

Kaplan-Meier curves, the stratified log-rank test, the stratified Cox
model and the Schoenfeld residual test, for right-censored data with or
without left truncation.

Submodules:
    core: Result envelope, exceptions, validation, timing
    survival: Survival engine and two-regime orchestration
"""

__version__ = "0.1.0"

from pytrialsurv import survival

__all__ = [
    "__version__",
    "survival",
]
