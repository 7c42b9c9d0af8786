"""
Fitted step distribution functions.
"""

### Import
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


def _frozen(values):
    values = np.array(values, dtype=np.float64)
    values.setflags(write=False)
    return values


@dataclass(frozen=True, eq=False)
class FittedDistribution:
    """Right-continuous step function F with jumps at ``support``.

    ``cumulative[i]`` is F at ``support[i]``; the mass missing at the last
    support point (``defect``) sits beyond every finite endpoint.
    """

    support: np.ndarray
    cumulative: np.ndarray
    log_likelihood: float
    iterations: int = 0
    converged: bool = True
    state: str = 'converged'
    knots: Optional[np.ndarray] = None
    mass: np.ndarray = field(init=False)

    def __post_init__(self):
        support = _frozen(self.support)
        cumulative = _frozen(self.cumulative)
        if support.shape != cumulative.shape or support.ndim != 1:
            raise ValueError('support and cumulative must be 1-d arrays of equal length')
        if np.any(np.diff(support) <= 0):
            raise ValueError('support points must be strictly increasing')
        object.__setattr__(self, 'support', support)
        object.__setattr__(self, 'cumulative', cumulative)
        object.__setattr__(self, 'mass', _frozen(np.diff(cumulative, prepend=0.0)))
        object.__setattr__(self, 'log_likelihood', float(self.log_likelihood))
        if self.knots is not None:
            object.__setattr__(self, 'knots', _frozen(self.knots))

    @classmethod
    def from_mass(cls, support, mass, **kwargs):
        return cls(support=support, cumulative=np.cumsum(mass), **kwargs)

    @property
    def total_mass(self):
        return float(self.cumulative[-1]) if len(self.cumulative) else 0.0

    @property
    def defect(self):
        return max(1.0 - self.total_mass, 0.0)

    @property
    def log_cumulative(self):
        with np.errstate(divide='ignore'):
            return np.log(self.cumulative)

    def evaluate(self, x):
        """F(x) by binary search over the support; 0 left of the first point."""
        x = np.asarray(x, dtype=np.float64)
        index = np.searchsorted(self.support, x, side='right')
        values = np.concatenate(([0.0], self.cumulative))[index]
        return float(values) if values.ndim == 0 else values

    __call__ = evaluate

    def curve(self):
        """(support, cumulative) pairs, as consumed by plotting code."""
        return self.support, self.cumulative

    def mass_vector(self):
        """Masses at the support points followed by the defect."""
        return np.append(self.mass, self.defect)

    def overlay(self, other):
        """Both step functions on the union of their support points."""
        times = np.union1d(self.support, other.support)
        return times, self.evaluate(times), other.evaluate(times)

    def distance(self, other):
        """Supremum distance between two fitted step functions."""
        times, mine, theirs = self.overlay(other)
        return float(np.max(np.abs(mine - theirs))) if len(times) else 0.0

    def __repr__(self):
        return (f'{type(self).__name__}(support points={len(self.support)}, '
                f'total_mass={self.total_mass:.6g}, log_likelihood={self.log_likelihood:.6g}, '
                f'iterations={self.iterations}, converged={self.converged})')


def evaluate(fitted, times):
    """Values of a fitted step function at the query times."""
    return fitted.evaluate(times)
