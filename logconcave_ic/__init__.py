"""
Log-concave nonparametric maximum likelihood estimation of a distribution
function from interval-censored data.
"""

from .errors import (
    InfeasibleConfigurationError,
    InvariantViolation,
    LogConcaveError,
    MalformedIntervalError,
    NonConvergenceWarning,
)
from .fitted import FittedDistribution, evaluate
from .intervals import IntervalStructure, build_interval_structure
from .nonparametricMLE import fit_unconstrained, unconstrained_npmle
from .optimizer import FitState, fit_logconcave
from .settings import FitSettings

__all__ = [
    'FitSettings',
    'FitState',
    'FittedDistribution',
    'InfeasibleConfigurationError',
    'IntervalStructure',
    'InvariantViolation',
    'LogConcaveError',
    'MalformedIntervalError',
    'NonConvergenceWarning',
    'build_interval_structure',
    'evaluate',
    'fit_logconcave',
    'fit_unconstrained',
    'unconstrained_npmle',
]
