"""
Step plots of fitted distribution functions.

Only needs ``curve()`` -> (support, cumulative) from every fit, so the
estimation core does not depend on this module.
"""

### Import
import numpy as np
import matplotlib.pyplot as plt


def plot_fits(fits, labels=None, reference=None, ax=None, space=None):
    """Overlay step curves of one or more fits, with an optional reference F.

    ``reference`` is a callable evaluated on ``space`` (by default 200 points
    spanning the supports). Returns the axes.
    """
    if hasattr(fits, 'curve'):
        fits = [fits]
    if labels is None:
        labels = [None] * len(fits)
    if len(labels) != len(fits):
        raise ValueError('one label per fit is required')
    if ax is None:
        fig, ax = plt.subplots()

    curves = [fit.curve() for fit in fits]
    points = np.concatenate([np.asarray(times, dtype=float) for times, _ in curves] + [np.zeros(1)])
    lower = 0.0
    upper = max(float(np.max(points)), 1.0)

    for (times, values), label in zip(curves, labels):
        # start at F = 0 and hold the last value up to the right edge
        xs = np.concatenate(([lower], times, [upper]))
        ys = np.concatenate(([0.0], values, [values[-1] if len(values) else 0.0]))
        ax.step(xs, ys, where='post', label=label)

    if reference is not None:
        if space is None:
            space = np.linspace(lower, upper, 200)
        ax.plot(space, reference(space), color='black', linestyle='dashed', label='Reference')

    ax.set_xlabel('t')
    ax.set_ylabel('F(t)')
    ax.set_ylim(-0.02, 1.02)
    if any(label is not None for label in labels) or reference is not None:
        ax.legend()
    return ax
