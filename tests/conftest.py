"""Pytest fixtures for logconcave_ic tests."""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest


def gamma_event_times(rng: np.random.Generator, n: int) -> np.ndarray:
    """Event times from a Gamma(3, 1) law, whose distribution function is log-concave."""
    return rng.gamma(3.0, 1.0, size=n)


def make_mixed_case(seed: int, n: int = 120) -> np.ndarray:
    """Case-2 interval-censored sample with inspection times rounded to 0.25."""
    rng = np.random.default_rng(seed)
    times = gamma_event_times(rng, n)
    inspections = np.sort(np.round(rng.uniform(0.25, 7.0, size=(n, 2)) * 4) / 4, axis=1)
    inspections[:, 1] = np.maximum(inspections[:, 1], inspections[:, 0] + 0.25)
    u, v = inspections[:, 0], inspections[:, 1]
    left = np.where(times <= u, 0.0, np.where(times <= v, u, v))
    right = np.where(times <= u, u, np.where(times <= v, v, np.inf))
    return np.column_stack((left, right))


def make_current_status(seed: int, n: int = 150) -> np.ndarray:
    """Current status sample: (0, C] when T <= C, otherwise (C, inf)."""
    rng = np.random.default_rng(seed)
    times = gamma_event_times(rng, n)
    inspections = np.round(rng.uniform(0.5, 7.0, size=n) * 4) / 4
    left = np.where(times <= inspections, 0.0, inspections)
    right = np.where(times <= inspections, inspections, np.inf)
    return np.column_stack((left, right))


def make_bounded(seed: int, n: int = 100) -> np.ndarray:
    """Interval-censored sample on a fixed inspection grid with no unbounded intervals."""
    rng = np.random.default_rng(seed)
    times = np.minimum(gamma_event_times(rng, n), 9.9)
    grid = np.arange(0.0, 10.5, 0.5)
    index = np.searchsorted(grid, times)
    width = rng.integers(1, 4, size=n)
    left = grid[np.maximum(index - width, 0)]
    right = grid[np.minimum(index + rng.integers(0, 2, size=n), len(grid) - 1)]
    return np.column_stack((left, right))


@pytest.fixture
def mixed_case() -> np.ndarray:
    """Mixed-case interval-censored data with right-censored observations."""
    return make_mixed_case(seed=1)


@pytest.fixture
def current_status() -> np.ndarray:
    """Current status data."""
    return make_current_status(seed=2)


@pytest.fixture
def bounded() -> np.ndarray:
    """Interval-censored data whose right endpoints are all finite."""
    return make_bounded(seed=3)


@pytest.fixture
def large_mixed_case() -> np.ndarray:
    """Mixed-case interval-censored data with 500 observations."""
    return make_mixed_case(seed=0, n=500)
