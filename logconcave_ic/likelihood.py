"""
Observed-data log likelihood of interval-censored data.

An observation (L, R] contributes log(F(R) - F(L)). The kernels take the
extended cumulative vector ``cum_ext`` of length m + 2: cum_ext[0] = 0 is F
left of the support, cum_ext[i + 1] = F(x_i) and cum_ext[m + 1] = F(inf).
A pattern with zero probability makes the log likelihood -inf.

"""

### Import
import numpy as np
import numba as nb

from .settings import MASS_FLOOR


# Kernels
@nb.njit(nb.float64[:](nb.float64[:], nb.int64[:], nb.int64[:]))
def interval_probabilities(cum_ext, lo, hi):
    prob = np.zeros(len(lo))
    for o in range(len(lo)):
        prob[o] = cum_ext[hi[o] + 1] - cum_ext[lo[o] + 1]
    return prob


@nb.njit(nb.float64(nb.float64[:], nb.int64[:], nb.int64[:], nb.float64[:]))
def loglik_cumulative(cum_ext, lo, hi, w):
    result = 0.0
    for o in range(len(lo)):
        prob = cum_ext[hi[o] + 1] - cum_ext[lo[o] + 1]
        if prob <= 0.0:
            return -np.inf
        result += w[o] * np.log(prob)
    return result


@nb.njit(nb.float64[:](nb.float64[:], nb.int64[:], nb.int64[:], nb.float64[:], nb.int64))
def gap_gradient(cum_ext, lo, hi, w, n_gaps):
    # d loglik / d p_i = sum of w / P over the patterns whose range holds gap i
    diff = np.zeros(n_gaps + 1)
    zero = np.zeros(n_gaps + 1)
    for o in range(len(lo)):
        prob = cum_ext[hi[o] + 1] - cum_ext[lo[o] + 1]
        if prob <= 0.0:
            zero[lo[o] + 1] += 1.0
            zero[hi[o] + 1] -= 1.0
        else:
            diff[lo[o] + 1] += w[o] / prob
            diff[hi[o] + 1] -= w[o] / prob
    grad = np.cumsum(diff)[:n_gaps]
    unbounded = np.cumsum(zero)[:n_gaps]
    for i in range(n_gaps):
        if unbounded[i] > 0.5:
            grad[i] = np.inf
    return grad


@nb.njit(nb.types.Tuple((nb.float64[:], nb.float64))(nb.float64[:], nb.int64[:], nb.int64[:], nb.float64[:]))
def log_cumulative_derivatives(cum_ext, lo, hi, w):
    """Gradient with respect to log F at the finite support points, and the
    curvature along a common shift of log F (only right-censored patterns
    with F(L) > 0 contribute)."""
    m = len(cum_ext) - 2
    grad = np.zeros(m)
    shift = 0.0
    for o in range(len(lo)):
        f_lo = cum_ext[lo[o] + 1]
        f_hi = cum_ext[hi[o] + 1]
        prob = f_hi - f_lo
        if hi[o] < m:
            grad[hi[o]] += w[o] * f_hi / prob
        if lo[o] >= 0:
            grad[lo[o]] -= w[o] * f_lo / prob
            if hi[o] == m:
                shift += w[o] * f_lo * f_hi / (prob * prob)
    return grad, shift


@nb.njit(nb.types.Tuple((nb.float64[:], nb.float64[:]))(nb.float64[:], nb.int64[:], nb.int64[:], nb.float64[:]))
def cumulative_derivatives(cum_ext, lo, hi, w):
    """Gradient and diagonal curvature (minus the second derivative) of the
    log likelihood with respect to F at the support points."""
    m = len(cum_ext) - 2
    grad = np.zeros(m)
    curv = np.zeros(m)
    for o in range(len(lo)):
        prob = cum_ext[hi[o] + 1] - cum_ext[lo[o] + 1]
        r = w[o] / prob
        if hi[o] < m:
            grad[hi[o]] += r
            curv[hi[o]] += r / prob
        if lo[o] >= 0:
            grad[lo[o]] -= r
            curv[lo[o]] += r / prob
    return grad, curv


@nb.njit(nb.float64[:](nb.float64[:], nb.int64[:], nb.int64[:], nb.float64[:], nb.float64[:], nb.int64[:], nb.int64[:]))
def block_curvature(cum_ext, lo, hi, w, xs, starts, ends):
    """Curvature (minus the second derivative) of the log likelihood along each
    block of slopes of log F.

    Block b raises the slopes starts[b] .. ends[b] - 1 together. A pattern
    only feels the part of the block lying between its two endpoints, of
    length ``overlap``, and contributes w F(L) F(R) overlap^2 / P^2.
    """
    m = len(cum_ext) - 2
    nblocks = len(starts)
    curvature = np.zeros(nblocks)
    if nblocks == 0:
        return curvature
    block_of = -np.ones(m, dtype=np.int64)
    for b in range(nblocks):
        for j in range(starts[b], ends[b]):
            block_of[j] = b
    for o in range(len(lo)):
        if lo[o] < starts[0]:
            continue
        f_lo = cum_ext[lo[o] + 1]
        f_hi = cum_ext[hi[o] + 1]
        prob = f_hi - f_lo
        q = w[o] * f_lo * f_hi / (prob * prob)
        jhi = min(hi[o], m - 1)
        b = block_of[lo[o]]
        while b < nblocks and b >= 0 and starts[b] < jhi:
            a = max(starts[b], lo[o])
            e = min(ends[b], jhi)
            overlap = xs[e] - xs[a]
            curvature[b] += q * overlap * overlap
            b += 1
    return curvature


# Methods
def normalized_mass(mass, n_gaps, has_infinite=None):
    """Mass vector over the gaps, rescaled to sum to one.

    When ``has_infinite`` is given, masses at the finite support points
    optionally followed by the defect are accepted as well: a missing defect
    entry is completed, and a defect entry without an unbounded gap to hold
    it is dropped.
    """
    mass = np.asarray(mass, dtype=np.float64).reshape(-1)
    if has_infinite is not None:
        m = n_gaps - int(has_infinite)
        if has_infinite and mass.shape == (m,):
            mass = np.append(mass, max(1.0 - mass.sum(), 0.0))
        elif not has_infinite and mass.shape == (m + 1,):
            mass = mass[:m]
    if mass.shape != (n_gaps,):
        raise ValueError(f'mass vector must have {n_gaps} entries, got {mass.shape[0]}')
    if not np.all(np.isfinite(mass)) or np.any(mass < 0):
        raise ValueError('mass vector must be finite and non-negative')
    total = mass.sum()
    if total <= 0:
        raise ValueError('mass vector carries no mass')
    return mass / total


def cumulative_extended(mass, n_gaps, has_infinite, floor=MASS_FLOOR):
    mass = np.asarray(mass, dtype=np.float64)
    if mass.shape != (n_gaps,):
        raise ValueError(f'mass vector must have {n_gaps} entries, got shape {mass.shape}')
    if np.any(mass < -floor):
        raise ValueError('mass vector has negative entries')
    mass = np.where(mass < floor, 0.0, mass)
    cum_ext = np.concatenate(([0.0], np.cumsum(mass)))
    if not has_infinite:
        cum_ext = np.append(cum_ext, 1.0)
    return cum_ext


def log_likelihood(mass, structure, floor=MASS_FLOOR):
    """Log likelihood of a mass vector over the gaps of ``structure``."""
    cum_ext = cumulative_extended(mass, structure.n_gaps, structure.has_infinite, floor)
    return loglik_cumulative(cum_ext, structure.lo, structure.hi, structure.weights)


def mass_gradient(mass, structure, floor=MASS_FLOOR):
    """Gradient of the log likelihood with respect to the gap masses.

    Entries covered by a pattern of zero probability are +inf.
    """
    cum_ext = cumulative_extended(mass, structure.n_gaps, structure.has_infinite, floor)
    return gap_gradient(cum_ext, structure.lo, structure.hi, structure.weights,
                        structure.n_gaps)


def observation_probabilities(mass, structure, floor=MASS_FLOOR):
    """P(L < T <= R) of every observation, in input order."""
    cum_ext = cumulative_extended(mass, structure.n_gaps, structure.has_infinite, floor)
    return interval_probabilities(cum_ext, structure.lo, structure.hi)[structure.pattern]
