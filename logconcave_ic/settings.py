"""
Tolerances and budgets of the estimation core.
"""

### Import
from dataclasses import dataclass
from typing import Optional


# Parameters
VIOLATION_TOL = 1e-9    # eps1: largest accepted increase between consecutive slopes of log F
LOGLIK_TOL = 1e-9       # eps2: likelihood gain below which a pass counts as stationary
SPLIT_TOL = 1e-7        # shadow multiplier (per unit weight) needed to release a constraint
MASS_FLOOR = 1e-12      # masses and F values below this count as zero
CURVATURE_FLOOR = 1e-8  # Newton curvatures are floored at this fraction of the total weight
ENDPOINT_TOL = 1e-7     # endpoints closer than this, relative to the largest one, are one boundary
MAX_ITER = 5_000
MAX_HALVINGS = 50
SEED_MIXING = 0.1       # weight of the uniform mass mixed into an infeasible seed
NPMLE_MAX_ITER = 5_000
NPMLE_TOL = 1e-10       # relative likelihood gain that stops the unconstrained solver


@dataclass(frozen=True)
class FitSettings:
    """Settings of one fit.

    ``violation_tol`` (eps1) fixes how near-equal slopes are treated: two
    neighbouring blocks whose slopes differ by less than eps1 are pooled, so
    it decides the reproducibility of fitted curves in near-tie cases.
    """

    violation_tol: float = VIOLATION_TOL
    loglik_tol: float = LOGLIK_TOL
    split_tol: float = SPLIT_TOL
    mass_floor: float = MASS_FLOOR
    endpoint_tol: float = ENDPOINT_TOL
    max_iter: int = MAX_ITER
    max_halvings: int = MAX_HALVINGS
    max_seconds: Optional[float] = None
    seed_mixing: float = SEED_MIXING
    npmle_max_iter: int = NPMLE_MAX_ITER
    npmle_tol: float = NPMLE_TOL

    def validate(self):
        for name in ('violation_tol', 'loglik_tol', 'split_tol', 'mass_floor', 'endpoint_tol', 'npmle_tol'):
            if not getattr(self, name) > 0:
                raise ValueError(f'{name} must be positive, got {getattr(self, name)!r}')
        for name in ('max_iter', 'max_halvings', 'npmle_max_iter'):
            if int(getattr(self, name)) < 0:
                raise ValueError(f'{name} must be non-negative, got {getattr(self, name)!r}')
        if not 0 < self.seed_mixing < 1:
            raise ValueError(f'seed_mixing must lie in (0, 1), got {self.seed_mixing!r}')
        if self.max_seconds is not None and self.max_seconds <= 0:
            raise ValueError(f'max_seconds must be positive, got {self.max_seconds!r}')
        return self
