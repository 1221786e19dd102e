"""
Shared compute infrastructure for pytrialsurv.

Domain kernels live in pytrialsurv.survival; this module only holds
helpers that every kernel shares.
"""

from pytrialsurv.core.compute.timing import Timer

__all__ = [
    "Timer",
]
