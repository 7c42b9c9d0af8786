"""
Errors and warnings raised by the estimation core.

Input problems fail before any computation. Exhausting the iteration budget
is not an error: the fit is returned with ``converged=False`` and a
NonConvergenceWarning is issued.
"""


class LogConcaveError(Exception):
    """Base class for errors raised by logconcave_ic."""


class MalformedIntervalError(LogConcaveError, ValueError):
    """An observation is not a valid censoring interval (L, R]."""


class InfeasibleConfigurationError(LogConcaveError):
    """No candidate distribution gives every observation positive probability."""


class InvariantViolation(LogConcaveError, RuntimeError):
    """Internal defect, e.g. an observation compatible with no innermost interval."""


class NonConvergenceWarning(UserWarning):
    """The optimizer stopped on its budget before meeting the tolerances."""
