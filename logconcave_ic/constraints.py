"""
Log-concavity constraints on a cumulative step function.

On the support points x_first < ... < x_{m-1} where F > 0, log F is concave
when the slopes (log F_{j+1} - log F_j) / (x_{j+1} - x_j) are nonincreasing
in j, and F is nondecreasing when the last slope is non-negative. The active
set is the partition of the slope indices into blocks of equal slope: inside
a block log F is linear and the concavity constraint is tight.

Lutz Duembgen, Andre Huesler and Kaspar Rufibach. Active set and EM algorithms for log-concave densities based on complete and censored data. arXiv:0707.4643, 2007.

"""

### Import
import numpy as np

from .nonparametricMLE import gcm_blocks


class ActiveSet:
    """Blocks of consecutive slope indices in [first, stop), stored by their starts."""

    def __init__(self, starts, stop):
        self.starts = np.asarray(starts, dtype=np.int64).reshape(-1)
        self.stop = int(stop)
        if len(self.starts) and (np.any(np.diff(self.starts) <= 0) or self.starts[-1] >= self.stop):
            raise ValueError(f'invalid block starts {self.starts} for stop {self.stop}')

    @classmethod
    def from_labels(cls, labels, first, stop):
        labels = np.asarray(labels)
        if len(labels) == 0:
            return cls([], stop)
        new_block = np.concatenate(([True], labels[1:] != labels[:-1]))
        return cls(first + np.flatnonzero(new_block), stop)

    @property
    def first(self):
        return int(self.starts[0]) if len(self.starts) else self.stop

    @property
    def ends(self):
        return np.append(self.starts[1:], self.stop).astype(np.int64)

    def __len__(self):
        return len(self.starts)

    def __eq__(self, other):
        return (isinstance(other, ActiveSet) and self.stop == other.stop
                and np.array_equal(self.starts, other.starts))

    def __repr__(self):
        return f'ActiveSet({[(int(a), int(e)) for a, e in self.blocks()]})'

    def blocks(self):
        return zip(self.starts, self.ends)

    def sizes(self):
        return self.ends - self.starts

    def labels(self):
        """Block number of every slope index in [first, stop)."""
        return np.repeat(np.arange(len(self)), self.sizes())

    def expand(self, block_values):
        """One value per slope index from one value per block."""
        return np.repeat(np.asarray(block_values, dtype=np.float64), self.sizes())

    def coarsen(self, block_labels):
        """Merge neighbouring blocks sharing a label."""
        block_labels = np.asarray(block_labels)
        if len(block_labels) != len(self):
            raise ValueError('one label per block is required')
        if len(self) == 0:
            return self
        keep = np.concatenate(([True], block_labels[1:] != block_labels[:-1]))
        return ActiveSet(self.starts[keep], self.stop)

    def merge(self, b):
        """Merge block ``b`` with block ``b + 1``."""
        return ActiveSet(np.delete(self.starts, b + 1), self.stop)

    def split(self, b, k):
        """Split block ``b`` between slope indices ``k`` and ``k + 1``."""
        start, end = self.starts[b], self.ends[b]
        if not start <= k < end - 1:
            raise ValueError(f'cannot split block [{start}, {end}) after {k}')
        return ActiveSet(np.insert(self.starts, b + 1, k + 1), self.stop)

    def drop_first(self):
        """Remove the first slope index (F vanishes at the first point)."""
        if len(self) == 0:
            raise ValueError('no slope left to drop')
        starts = self.starts.copy()
        starts[0] += 1
        if len(starts) > 1 and starts[0] == starts[1] or starts[0] == self.stop:
            starts = starts[1:]
        return ActiveSet(starts, self.stop)


def pool_adjacent_violators(values, weights, tol=0.0):
    """Weighted antitonic regression of ``values``.

    Returns the nonincreasing fit and the pool label of every entry. Pools
    whose values differ by no more than ``tol`` are merged.
    """
    values = np.asarray(values, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    if len(values) == 0:
        return values.copy(), np.zeros(0, dtype=np.int64)
    ends = gcm_blocks(np.cumsum(weights), np.cumsum(-weights * values), float(tol))
    sizes = np.diff(ends, prepend=-1)
    starts = ends - sizes + 1
    pooled = np.add.reduceat(weights * values, starts) / np.add.reduceat(weights, starts)
    labels = np.repeat(np.arange(len(ends)), sizes)
    return pooled[labels], labels


def merge_violators(targets, weights, active_set, lower=0.0, tol=0.0):
    """Pool neighbouring blocks whose target slopes violate concavity.

    ``targets`` and ``weights`` hold one entry per block. Returns the merged
    active set and its block slopes, clipped at ``lower``; blocks clipped to
    the same bound are merged as well.
    """
    fitted, _ = pool_adjacent_violators(targets, weights, tol)
    fitted = np.maximum(fitted, lower)
    if len(fitted) == 0:
        return active_set, fitted
    labels = np.concatenate(([0], np.cumsum(fitted[1:] != fitted[:-1])))
    merged = active_set.coarsen(labels)
    keep = np.concatenate(([True], labels[1:] != labels[:-1]))
    return merged, fitted[keep]


def split_multipliers(gradient, block_slopes, active_set, lower=0.0):
    """Shadow multipliers of the tight constraints.

    Entry k is the rate at which the log likelihood grows when the equality
    between slopes k and k + 1 of one block is released, by raising the left
    part of the block or, unless the block sits on ``lower``, lowering the
    right part. Entries that are not tight constraints are -inf.
    """
    multipliers = np.full(len(gradient), -np.inf)
    for b, (start, end) in enumerate(active_set.blocks()):
        if end - start < 2:
            continue
        partial = np.cumsum(gradient[start:end])
        total = partial[-1]
        if block_slopes[b] > lower:
            partial = partial - min(total, 0.0)
        multipliers[start:end - 1] = partial[:-1]
    return multipliers


def release_constraints(gradient, block_slopes, active_set, tol, lower=0.0):
    """Split every block at its largest multiplier when it exceeds ``tol``.

    Returns the new active set and the number of splits.
    """
    multipliers = split_multipliers(gradient, block_slopes, active_set, lower)
    released = active_set
    splits = 0
    # walk right to left so block numbers of the pending splits stay valid
    for b in range(len(active_set) - 1, -1, -1):
        start, end = active_set.starts[b], active_set.ends[b]
        if end - start < 2:
            continue
        k = start + int(np.argmax(multipliers[start:end - 1]))
        if multipliers[k] > tol:
            released = released.split(b, k)
            splits += 1
    return released, splits


def slope_violation(slopes, lower=0.0):
    """Largest increase between consecutive slopes, or shortfall below ``lower``."""
    slopes = np.asarray(slopes, dtype=np.float64)
    if len(slopes) == 0:
        return 0.0
    increase = np.max(np.diff(slopes)) if len(slopes) > 1 else 0.0
    return float(max(increase, lower - slopes[-1], 0.0))


def concavity_violation(x, log_f):
    """Largest positive second difference (in time) of log F where F > 0."""
    x = np.asarray(x, dtype=np.float64)
    log_f = np.asarray(log_f, dtype=np.float64)
    finite = np.isfinite(log_f)
    x, log_f = x[finite], log_f[finite]
    if len(x) < 3:
        return 0.0
    slopes = np.diff(log_f) / np.diff(x)
    return float(max(np.max(np.diff(slopes)), 0.0))


def project_log_concave(xs, cumulative, free_last, max_first, floor, tol=0.0):
    """Log-concave approximation of a seed cumulative vector.

    F is cut at the first point reaching ``floor`` (never beyond
    ``max_first``), its slopes of log F are replaced by their antitonic
    regression weighted by the spacings, and log F at the last point is kept
    (set to 0 unless ``free_last``).

    Returns (first, c, slopes, active_set) with ``slopes`` over all m - 1
    slope indices, zero left of ``first``.
    """
    xs = np.asarray(xs, dtype=np.float64)
    cumulative = np.clip(np.asarray(cumulative, dtype=np.float64), 0.0, 1.0)
    m = len(xs)

    reached = cumulative >= floor
    first = int(np.argmax(reached)) if reached.any() else m - 1
    first = min(first, max_first)

    c = float(np.log(max(cumulative[-1], floor))) if free_last else 0.0
    c = min(c, 0.0)

    log_f = np.log(np.maximum(cumulative[first:], floor))
    log_f[-1] = c
    dx = np.diff(xs[first:])
    raw = np.diff(log_f) / dx
    fitted, labels = pool_adjacent_violators(raw, dx, tol)

    slopes = np.zeros(m - 1)
    slopes[first:] = np.maximum(fitted, 0.0)
    return first, c, slopes, ActiveSet.from_labels(labels, first, m - 1)
