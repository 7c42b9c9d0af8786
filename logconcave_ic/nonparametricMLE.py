"""
The unconstrained nonparametric maximum likelihood estimator.

Miriam Ayer et al. An empirical distribution function for sampling with incomplete information. The Annals of Mathematical Statistics 26(4)641-647, 1955.

Bruce W. Turnbull. The empirical distribution function with arbitrarily grouped, censored and truncated data. Journal of the Royal Statistical Society B 38(3)290-295, 1976.

Piet Groeneboom and Geurt Jongbloed. Nonparametric Estimation under Shape Constraints. Cambridge University Press. New York, 2014.

For current status data the estimator is the slope of the greatest convex
minorant of a cumulative sum diagram. For general mixed-case data it is found
by self-consistency (EM) iterations on the Turnbull intervals, each
followed by an iterative convex minorant step.

"""

### Import
import logging

import numpy as np
import numba as nb
from scipy import sparse

from .errors import InvariantViolation
from .fitted import FittedDistribution
from .intervals import build_interval_structure
from .likelihood import (
    cumulative_derivatives,
    log_likelihood,
    loglik_cumulative,
    mass_gradient,
    normalized_mass,
)
from .settings import CURVATURE_FLOOR, FitSettings

logger = logging.getLogger(__name__)


# Methods
@nb.njit(nb.int64[:](nb.float64[:], nb.float64[:], nb.float64))
def gcm_blocks(cumw, cs, tol):
    """End indices of the blocks of the greatest convex minorant of the
    cumulative sum diagram {(0, 0), (cumw[i], cs[i])}.

    Neighbouring blocks are pooled while the left slope exceeds the right
    slope minus ``tol``.
    """
    n = len(cs)
    ends = np.zeros(n, dtype=np.int64)
    top = 0
    for i in range(n):
        ends[top] = i
        top += 1
        while top > 1:
            e0 = ends[top - 2]
            e1 = ends[top - 1]
            if top > 2:
                base_w = cumw[ends[top - 3]]
                base_s = cs[ends[top - 3]]
            else:
                base_w = 0.0
                base_s = 0.0
            left = (cs[e0] - base_s) / (cumw[e0] - base_w)
            right = (cs[e1] - cs[e0]) / (cumw[e1] - cumw[e0])
            if left > right - tol:
                ends[top - 2] = e1
                top -= 1
            else:
                break
    return ends[:top].copy()


@nb.njit(nb.float64[:](nb.float64[:], nb.float64[:]))
def convexmin(cumw, cs):
    y = np.zeros(len(cs))
    ends = gcm_blocks(cumw, cs, 0.0)
    start = 0
    base_w = 0.0
    base_s = 0.0
    for e in ends:
        slope = (cs[e] - base_s) / (cumw[e] - base_w)
        for i in range(start, e + 1):
            y[i] = slope
        start = e + 1
        base_w = cumw[e]
        base_s = cs[e]
    return y


def get_nonparametric_mle(t, d, w=None):
    """Current status NPMLE.

    ``t`` are inspection times, ``d`` the indicators of an event at or before
    the inspection and ``w`` optional weights. Returns the sorted distinct
    inspection times and the estimate of F there.
    """
    t = np.asarray(t, dtype=np.float64)
    d = np.asarray(d, dtype=np.float64)
    w = np.ones(len(t)) if w is None else np.asarray(w, dtype=np.float64)

    ts, inverse = np.unique(t, return_inverse=True)
    inverse = inverse.reshape(-1)
    cumw = np.cumsum(np.bincount(inverse, weights=w, minlength=len(ts)))
    cs = np.cumsum(np.bincount(inverse, weights=w * d, minlength=len(ts)))
    y = convexmin(cumw, cs)
    return ts, np.clip(y, 0.0, 1.0)


def current_status_mass(structure):
    """Exact NPMLE mass vector when every pattern is (t_0, R] or (L, inf)."""
    m = structure.m
    lo, hi, w = structure.lo, structure.hi, structure.weights

    F = np.zeros(m)
    informative = ~((lo == -1) & (hi == m))
    if informative.any():
        left_censored = (lo == -1)[informative]
        inspection = np.where(left_censored, hi[informative], lo[informative])
        ts, F_obs = get_nonparametric_mle(inspection, left_censored, w[informative])
        # F is a step function between inspections
        pos = np.searchsorted(ts, np.arange(m), side='right') - 1
        F = np.where(pos >= 0, F_obs[np.maximum(pos, 0)], 0.0)

    mass = np.diff(F, prepend=0.0)
    if structure.has_infinite:
        mass = np.append(mass, 1.0 - (F[-1] if m else 0.0))
    return mass


def compatibility_matrix(structure):
    """Sparse pattern-by-gap indicator of the compatible gaps."""
    counts = structure.hi - structure.lo
    total = int(counts.sum())
    rows = np.repeat(np.arange(len(counts)), counts)
    offsets = np.repeat(np.cumsum(counts) - counts, counts)
    cols = np.arange(total) - offsets + np.repeat(structure.lo + 1, counts)
    return sparse.csr_matrix((np.ones(total), (rows, cols)),
                             shape=(len(counts), structure.n_gaps))


def turnbull_patterns(structure):
    """Pattern ranges over the Turnbull intervals alone.

    Indices follow the cumulative vector over the Turnbull intervals, whose
    last entry is one.
    """
    rank = np.cumsum(structure.turnbull_mask)
    before = np.concatenate(([0], rank))
    lo = before[structure.lo + 1] - 1
    hi = rank[structure.hi] - 1
    if np.any(hi < lo + 1):
        raise InvariantViolation('some observation contains no Turnbull interval')
    return np.ascontiguousarray(lo, dtype=np.int64), np.ascontiguousarray(hi, dtype=np.int64)


def reduced_loglik(cumulative, lo, hi, w):
    return loglik_cumulative(np.concatenate(([0.0], cumulative, [1.0])), lo, hi, w)


def icm_update(cumulative, lo, hi, w, loglik, settings):
    """One ICM step on a cumulative vector ending in one.

    The Newton targets F + g / W are projected on the nondecreasing vectors
    by weighted isotonic regression (the convex minorant with weights W) and
    the step is halved until the likelihood does not decrease.
    """
    free = len(cumulative) - 1
    grad, curv = cumulative_derivatives(np.concatenate(([0.0], cumulative, [1.0])), lo, hi, w)
    curv = np.maximum(curv[:free], CURVATURE_FLOOR * w.sum())
    target = cumulative[:free] + grad[:free] / curv
    proposal = np.clip(convexmin(np.cumsum(curv), np.cumsum(curv * target)), 0.0, 1.0)

    step = 1.0
    for _ in range(settings.max_halvings + 1):
        candidate = cumulative.copy()
        candidate[:free] += step * (proposal - cumulative[:free])
        new_loglik = reduced_loglik(candidate, lo, hi, w)
        if new_loglik >= loglik:
            return candidate, new_loglik
        step /= 2
    return cumulative, loglik


def self_consistent_mle(structure, settings=None):
    """Turnbull's self-consistency iterations p <- p * A'(w / Ap) / N on the
    Turnbull intervals, each followed by an ICM step.

    Jon A. Wellner and Yihui Zhan. A hybrid algorithm for computation of the nonparametric maximum likelihood estimator from censored data. Journal of the American Statistical Association 92(439)945-959, 1997.
    """
    settings = settings or FitSettings()
    mask = structure.turnbull_mask
    A = compatibility_matrix(structure)[:, np.flatnonzero(mask)]
    lo, hi = turnbull_patterns(structure)
    w = structure.weights
    N = structure.total_weight

    k = int(mask.sum())
    cumulative = np.arange(1, k + 1) / k
    cumulative[-1] = 1.0
    loglik = reduced_loglik(cumulative, lo, hi, w)
    iteration, gain = 0, np.inf

    if k > 1:
        for iteration in range(1, settings.npmle_max_iter + 1):
            p = np.diff(cumulative, prepend=0.0)
            p = p * (A.T @ (w / (A @ p))) / N
            cumulative = np.minimum(np.cumsum(p) / p.sum(), 1.0)
            cumulative[-1] = 1.0
            em_loglik = reduced_loglik(cumulative, lo, hi, w)
            cumulative, new_loglik = icm_update(cumulative, lo, hi, w, em_loglik, settings)
            gain = new_loglik - loglik
            loglik = new_loglik
            if gain < settings.npmle_tol * max(1.0, abs(loglik)):
                break
        else:
            logger.warning('Unconstrained NPMLE stopped after %d iterations (last gain %.3g)',
                           settings.npmle_max_iter, gain)

    mass = np.zeros(structure.n_gaps)
    mass[mask] = np.diff(cumulative, prepend=0.0)
    # p is an NPMLE iff the gradient is at most N everywhere
    slack = np.max(mass_gradient(mass, structure, floor=0.0)) / N - 1.0
    logger.debug('Unconstrained NPMLE: %d iterations, loglik %.10g, gradient slack %.3g',
                 iteration, loglik, slack)
    trimmed = np.where(mass < settings.mass_floor, 0.0, mass)
    if trimmed.sum() > 0:
        mass = trimmed
    return mass / mass.sum()


def unconstrained_npmle(structure, settings=None):
    """Default unconstrained NPMLE provider: structure -> mass vector over the gaps."""
    if structure.m == 0:
        return np.ones(structure.n_gaps)
    if structure.is_current_status:
        return current_status_mass(structure)
    return self_consistent_mle(structure, settings)


def fit_unconstrained(data, *, settings=None, provider=None):
    """Unconstrained NPMLE of F as a FittedDistribution."""
    settings = (settings or FitSettings()).validate()
    structure = build_interval_structure(data, settings.endpoint_tol)
    if provider is None:
        mass = unconstrained_npmle(structure, settings)
    else:
        mass = provider(structure)
    mass = normalized_mass(mass, structure.n_gaps)
    return FittedDistribution.from_mass(
        structure.support, mass[:structure.m],
        log_likelihood=log_likelihood(mass, structure, floor=settings.mass_floor))
