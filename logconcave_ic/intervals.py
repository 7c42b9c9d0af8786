"""
Innermost intervals of mixed-case interval-censored data.

The sorted distinct finite endpoints t_0 < ... < t_k cut the half line into
the gaps (t_i, t_{i+1}], plus (t_k, inf) when some observation is right
censored. Every observation (L, R] is a union of consecutive gaps, so the
likelihood only depends on F at the endpoints.

Endpoints closer than a relative tolerance are merged into one boundary, so
that rounding noise never produces support points a few ulps apart.

Bruce W. Turnbull. The empirical distribution function with arbitrarily grouped, censored and truncated data. Journal of the Royal Statistical Society B 38(3)290-295, 1976.

"""

### Import
from dataclasses import dataclass

import numpy as np

from .errors import InvariantViolation, MalformedIntervalError
from .settings import ENDPOINT_TOL


# Methods
def as_intervals(data):
    """Validated float array of shape (n, 2) with rows (L, R)."""
    try:
        intervals = np.array(data, dtype=np.float64)
    except (TypeError, ValueError) as err:
        raise MalformedIntervalError(f'intervals must be numeric pairs (L, R): {err}') from err

    if intervals.ndim == 1 and intervals.shape[0] == 2:
        intervals = intervals.reshape(1, 2)
    if intervals.ndim != 2 or intervals.shape[1] != 2:
        raise MalformedIntervalError(f'intervals must have shape (n, 2), got {intervals.shape}')
    if intervals.shape[0] == 0:
        raise MalformedIntervalError('at least one observation is required')

    left, right = intervals[:, 0], intervals[:, 1]
    checks = (
        (np.isnan(intervals).any(axis=1), 'contains NaN'),
        (~np.isfinite(left), 'has an infinite left endpoint'),
        (left < 0, 'has a negative left endpoint'),
        (right <= left, 'does not satisfy L < R'),
    )
    for bad, reason in checks:
        if bad.any():
            row = int(np.argmax(bad))
            raise MalformedIntervalError(
                f'observation {row} ({left[row]!r}, {right[row]!r}] {reason}')
    return intervals


@dataclass(frozen=True, eq=False)
class IntervalStructure:
    """Gaps and compatibility ranges of one dataset.

    Observations are compressed into unique patterns. For pattern o, ``lo[o]``
    is the support index holding F(L) (-1 when L = t_0, where F vanishes) and
    ``hi[o]`` the support index holding F(R) (``m`` when R is infinite, where
    F equals 1). The pattern is compatible with the gaps lo + 1, ..., hi.
    """

    intervals: np.ndarray
    boundaries: np.ndarray
    lo: np.ndarray
    hi: np.ndarray
    weights: np.ndarray
    pattern: np.ndarray
    turnbull_mask: np.ndarray
    has_infinite: bool

    def __post_init__(self):
        if np.any(np.diff(self.boundaries) <= 0):
            raise InvariantViolation('boundaries must be strictly increasing')
        if np.any(self.hi < self.lo + 1):
            bad = int(np.argmax(self.hi < self.lo + 1))
            raise InvariantViolation(
                f'pattern ({self.lo[bad]}, {self.hi[bad]}) is compatible with no innermost interval')

    @property
    def support(self):
        return self.boundaries[1:]

    @property
    def m(self):
        return len(self.boundaries) - 1

    @property
    def n_gaps(self):
        return self.m + int(self.has_infinite)

    @property
    def n_observations(self):
        return len(self.pattern)

    @property
    def total_weight(self):
        return float(self.weights.sum())

    @property
    def ranges(self):
        """Inclusive gap index range [a, b] of every observation."""
        return np.column_stack((self.lo + 1, self.hi))[self.pattern]

    @property
    def is_current_status(self):
        return bool(np.all((self.lo == -1) | (self.hi == self.m)))

    @property
    def min_hi(self):
        """Smallest support index at which some observation needs F(R) > 0."""
        finite = self.hi[self.hi < self.m]
        return int(finite.min()) if len(finite) else self.m - 1

    def gap_bounds(self):
        """Left and right ends of every gap; the last right end may be inf."""
        left = self.boundaries[:self.m + int(self.has_infinite)]
        right = np.append(self.boundaries[1:], np.inf) if self.has_infinite else self.boundaries[1:]
        return left, right


def snap_endpoints(values, tol=ENDPOINT_TOL):
    """Sorted distinct endpoints.

    A run of values lying within ``tol`` times the largest magnitude of the
    smallest value of the run becomes one boundary, that smallest value.
    """
    values = np.unique(values)
    if len(values) < 2 or tol == 0:
        return values
    resolution = tol * np.max(np.abs(values))
    keep = np.zeros(len(values), dtype=bool)
    keep[0] = True
    anchor = values[0]
    for i in range(1, len(values)):
        if values[i] - anchor > resolution:
            keep[i] = True
            anchor = values[i]
    return values[keep]


def build_interval_structure(data, tol=ENDPOINT_TOL):
    intervals = as_intervals(data)
    left, right = intervals[:, 0], intervals[:, 1]
    finite_right = np.isfinite(right)
    has_infinite = not bool(finite_right.all())

    boundaries = snap_endpoints(np.concatenate((left, right[finite_right])), tol)
    m = len(boundaries) - 1

    # boundary index of every endpoint, m + 1 for R = inf
    left_index = np.searchsorted(boundaries, left, side='right') - 1
    right_index = np.where(
        finite_right,
        np.searchsorted(boundaries, np.where(finite_right, right, boundaries[0]), side='right') - 1,
        m + 1)
    narrow = right_index <= left_index
    if narrow.any():
        row = int(np.argmax(narrow))
        raise MalformedIntervalError(
            f'observation {row} ({left[row]!r}, {right[row]!r}] is narrower than the '
            f'endpoint resolution (relative tolerance {tol:g})')

    patterns, pattern, counts = np.unique(np.column_stack((left_index - 1, right_index - 1)),
                                          axis=0, return_inverse=True, return_counts=True)
    pattern = pattern.reshape(-1)
    lo = np.ascontiguousarray(patterns[:, 0], dtype=np.int64)
    hi = np.ascontiguousarray(patterns[:, 1], dtype=np.int64)

    is_left = np.zeros(len(boundaries), dtype=bool)
    is_left[left_index] = True
    is_right = np.zeros(len(boundaries), dtype=bool)
    is_right[right_index[finite_right]] = True
    turnbull_mask = is_left[:-1] & is_right[1:]
    if has_infinite:
        turnbull_mask = np.append(turnbull_mask, is_left[-1])

    return IntervalStructure(
        intervals=intervals,
        boundaries=boundaries,
        lo=lo,
        hi=hi,
        weights=counts.astype(np.float64),
        pattern=pattern.astype(np.int64),
        turnbull_mask=turnbull_mask,
        has_infinite=has_infinite,
    )
