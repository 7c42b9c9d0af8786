"""
Maximum likelihood estimation of a log-concave distribution function from
interval-censored data.

The log likelihood is concave in log F, and log-concavity makes the set of
admissible log F a polyhedral cone, so an active-set method applies. The
working parameters are c = log F at the last support point and one slope of
log F per block of the active set, on the support rescaled to [0, 1]. Each
pass takes an iterative convex minorant (ICM) step: a Newton step per block
using the exact block curvature, pooled across blocks by antitonic
regression and safeguarded by step halving. Blocks are merged by the pooling
and split when their shadow multiplier shows the constraint no longer binds.

Piet Groeneboom and Geurt Jongbloed. Nonparametric Estimation under Shape Constraints. Cambridge University Press. New York, 2014.

Geurt Jongbloed. The iterative convex minorant algorithm for nonparametric estimation. Journal of Computational and Graphical Statistics 7(3)310-321, 1998.

Clifford Anderson-Bergman and Yaming Yu. Computing the log concave NPMLE for interval censored data. Statistics and Computing 26(4)813-826, 2016.

"""

### Import
import enum
import logging
import time
import warnings

import numpy as np

from .constraints import (
    concavity_violation,
    merge_violators,
    project_log_concave,
    release_constraints,
    slope_violation,
)
from .errors import InfeasibleConfigurationError, InvariantViolation, NonConvergenceWarning
from .fitted import FittedDistribution
from .intervals import build_interval_structure
from .likelihood import (
    block_curvature,
    log_cumulative_derivatives,
    log_likelihood,
    loglik_cumulative,
    normalized_mass,
)
from .nonparametricMLE import unconstrained_npmle
from .settings import CURVATURE_FLOOR, FitSettings

logger = logging.getLogger(__name__)


class FitState(enum.Enum):
    SEEDING = 'seeding'
    ITERATING = 'iterating'
    CONVERGED = 'converged'
    EXHAUSTED = 'exhausted'


class ActiveSetICM:
    """Working state of one constrained fit.

    Owns its arrays; nothing is shared between instances, so independent fits
    may run concurrently.
    """

    def __init__(self, structure, settings):
        if structure.m < 2:
            raise ValueError('the iterative fit needs at least two support points')
        self.structure = structure
        self.settings = settings
        x = structure.support
        self.m = structure.m
        self.xs = (x - x[0]) / (x[-1] - x[0])
        self.dx = np.diff(self.xs)
        if np.any(self.dx <= 0):
            raise InvariantViolation('support points coincide after rescaling to [0, 1]')
        self.lo, self.hi, self.w = structure.lo, structure.hi, structure.weights
        self.free_last = structure.has_infinite
        self.max_first = min(structure.min_hi, self.m - 1)
        self.curvature_floor = CURVATURE_FLOOR * structure.total_weight
        self.log_floor = np.log(settings.mass_floor)

        self.state = FitState.SEEDING
        self.iterations = 0
        self.first = 0
        self.c = 0.0
        self.slopes = np.zeros(self.m - 1)
        self.active = None
        self.loglik = -np.inf

    # Parameters -> F
    def log_cumulative(self, first, c, slopes):
        rise = slopes * self.dx
        tail = np.cumsum(rise[::-1])[::-1]
        log_f = np.append(c - tail, c)
        log_f[:first] = -np.inf
        return log_f

    def cumulative_ext(self, first, c, slopes):
        return np.concatenate(([0.0], np.exp(self.log_cumulative(first, c, slopes)), [1.0]))

    def evaluate(self, first, c, slopes):
        return loglik_cumulative(self.cumulative_ext(first, c, slopes), self.lo, self.hi, self.w)

    # SEEDING
    def seed(self, mass):
        """Start from the log-concave projection of a mass vector over the gaps."""
        candidates = [mass, (1.0 - self.settings.seed_mixing) * mass
                      + self.settings.seed_mixing / len(mass)]
        for candidate in candidates:
            first, c, slopes, active = project_log_concave(
                self.xs, np.cumsum(candidate)[:self.m], self.free_last, self.max_first,
                self.settings.mass_floor, self.settings.violation_tol)
            loglik = self.evaluate(first, c, slopes)
            if np.isfinite(loglik):
                break
        else:
            raise InfeasibleConfigurationError(
                'no log-concave starting point gives every observation positive probability')
        self.first, self.c, self.slopes, self.active = first, c, slopes, active
        self.loglik = loglik
        logger.debug('Seeded at loglik %.10g with %d blocks, first support index %d',
                     loglik, len(active), first)

    # ITERATING
    def block_slopes(self):
        return self.slopes[self.active.starts]

    def derivatives(self):
        cum_ext = self.cumulative_ext(self.first, self.c, self.slopes)
        grad_log_f, shift_curvature = log_cumulative_derivatives(cum_ext, self.lo, self.hi, self.w)
        grad_slopes = -self.dx * np.cumsum(grad_log_f)[:self.m - 1]
        grad_slopes[:self.first] = 0.0
        return cum_ext, grad_log_f, grad_slopes, shift_curvature

    def icm_step(self):
        """One safeguarded ICM step; returns (likelihood gain, blocks merged)."""
        cum_ext, grad_log_f, grad_slopes, shift_curvature = self.derivatives()
        active = self.active

        new_slopes = self.slopes
        proposal = active
        if len(active):
            gradient = np.add.reduceat(grad_slopes, active.starts)
            curvature = block_curvature(cum_ext, self.lo, self.hi, self.w, self.xs,
                                        active.starts, active.ends)
            curvature = np.maximum(curvature, self.curvature_floor)
            targets = self.block_slopes() + gradient / curvature
            proposal, values = merge_violators(targets, curvature, active, lower=0.0,
                                               tol=self.settings.violation_tol)
            new_slopes = self.slopes.copy()
            new_slopes[self.first:] = proposal.expand(values)

        new_c = self.c
        if self.free_last:
            new_c = self.c + grad_log_f[self.first:].sum() / max(shift_curvature, self.curvature_floor)
            new_c = float(np.clip(new_c, self.log_floor, 0.0))

        # step halving keeps the likelihood nondecreasing
        step = 1.0
        for _ in range(self.settings.max_halvings + 1):
            slopes = self.slopes + step * (new_slopes - self.slopes)
            c = self.c + step * (new_c - self.c)
            loglik = self.evaluate(self.first, c, slopes)
            if loglik >= self.loglik:
                break
            step /= 2
        else:
            return 0.0, False

        gain = loglik - self.loglik
        merged = step == 1.0 and proposal != active
        if merged:
            self.active = proposal
        self.slopes, self.c, self.loglik = slopes, c, loglik
        logger.debug('ICM step %g, gain %.3g, %d blocks', step, gain, len(self.active))
        return gain, merged

    def truncate(self):
        """Drop leading support points where F fell below the mass floor."""
        log_f = self.log_cumulative(self.first, self.c, self.slopes)
        dropped = 0
        while self.first < self.max_first and log_f[self.first] < self.log_floor:
            self.slopes[self.first] = 0.0
            self.active = self.active.drop_first()
            self.first += 1
            dropped += 1
        if dropped:
            self.loglik = self.evaluate(self.first, self.c, self.slopes)
            logger.debug('F vanishes below support index %d', self.first)
        return dropped > 0

    def release(self):
        """Split blocks whose constraint is no longer binding; returns the number of splits."""
        _, _, grad_slopes, _ = self.derivatives()
        released, splits = release_constraints(
            grad_slopes, self.block_slopes(), self.active,
            self.settings.split_tol * self.structure.total_weight)
        self.active = released
        return splits

    def violation(self):
        return slope_violation(self.slopes[self.first:])

    def run(self, mass):
        settings = self.settings
        self.seed(mass)
        self.state = FitState.ITERATING
        started = time.monotonic()
        stationary = False

        while self.state is FitState.ITERATING:
            if self.iterations >= settings.max_iter or (
                    settings.max_seconds is not None
                    and time.monotonic() - started > settings.max_seconds):
                self.state = FitState.EXHAUSTED
                break
            self.iterations += 1

            changed = False
            if stationary:
                splits = self.release()
                if splits == 0:
                    violation = self.violation()
                    if violation > settings.violation_tol:
                        raise InvariantViolation(
                            f'iterate violates log-concavity by {violation:.3g}')
                    self.state = FitState.CONVERGED
                    break
                changed = True

            gain, merged = self.icm_step()
            truncated = self.truncate()
            changed = changed or merged or truncated
            stationary = gain < settings.loglik_tol and not changed

        if self.state is FitState.CONVERGED:
            logger.info('Converged after %d passes: loglik %.10g, %d blocks',
                        self.iterations, self.loglik, len(self.active))
        else:
            logger.warning('Stopped after %d passes without convergence: loglik %.10g',
                           self.iterations, self.loglik)
            warnings.warn(f'log-concave fit stopped after {self.iterations} passes without '
                          f'meeting the tolerances', NonConvergenceWarning, stacklevel=3)
        return self.result()

    def result(self):
        support = self.structure.support
        log_f = self.log_cumulative(self.first, self.c, self.slopes)
        cumulative = np.exp(log_f)
        knots = support[np.append(self.active.starts, self.m - 1)]
        return FittedDistribution(
            support=support,
            cumulative=cumulative,
            log_likelihood=self.loglik,
            iterations=self.iterations,
            converged=self.state is FitState.CONVERGED,
            state=self.state.value,
            knots=knots,
        )


def _closed_form(structure, settings):
    """Fits that need no iterations: at most two support points (no interior
    concavity constraint) or no finite right endpoint (F = 0 everywhere)."""
    if not np.any(structure.hi < structure.m):
        mass = np.zeros(structure.n_gaps)
        mass[-1] = 1.0
    else:
        mass = unconstrained_npmle(structure, settings)
    loglik = log_likelihood(mass, structure, floor=settings.mass_floor)
    if not np.isfinite(loglik):
        raise InfeasibleConfigurationError('some observation has zero probability under the fit')
    return FittedDistribution.from_mass(structure.support, mass[:structure.m],
                                        log_likelihood=loglik, knots=structure.support)


def fit_logconcave(data, *, settings=None, provider=None, seed=None):
    """Log-concave NPMLE of F from interval-censored data.

    Parameters
    ----------
    data : array-like of shape (n, 2)
        Rows (L, R) with 0 <= L < R <= inf, the event time lying in (L, R].
    settings : FitSettings, optional
        Tolerances and budgets.
    provider : callable, optional
        Unconstrained NPMLE provider, ``structure -> mass vector`` over the
        innermost intervals, used as warm start. Defaults to
        ``unconstrained_npmle``.
    seed : array-like, optional
        Starting mass vector, e.g. ``fitted.mass_vector()`` of an earlier fit
        on the same data. Takes precedence over ``provider``.

    Returns
    -------
    FittedDistribution
        ``converged`` is False when the budget ran out; a
        NonConvergenceWarning is issued in that case.
    """
    settings = (settings or FitSettings()).validate()
    structure = build_interval_structure(data, settings.endpoint_tol)
    logger.debug('%d observations, %d patterns, %d support points, defect interval: %s',
                 structure.n_observations, len(structure.lo), structure.m, structure.has_infinite)

    if structure.m <= 2 or not np.any(structure.hi < structure.m):
        return _closed_form(structure, settings)

    if seed is not None:
        mass = normalized_mass(seed, structure.n_gaps, structure.has_infinite)
    elif provider is not None:
        mass = normalized_mass(provider(structure), structure.n_gaps)
    else:
        mass = unconstrained_npmle(structure, settings)
    return ActiveSetICM(structure, settings).run(mass)
