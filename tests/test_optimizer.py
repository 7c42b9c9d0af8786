"""Tests for the log-concave fit."""

from __future__ import annotations

import warnings

import numpy as np
import pytest

from logconcave_ic import (
    FitSettings,
    FitState,
    InfeasibleConfigurationError,
    InvariantViolation,
    LogConcaveError,
    MalformedIntervalError,
    NonConvergenceWarning,
    build_interval_structure,
    evaluate,
    fit_logconcave,
    fit_unconstrained,
)
from logconcave_ic.constraints import concavity_violation
from logconcave_ic.likelihood import log_likelihood
from logconcave_ic.optimizer import ActiveSetICM


def assert_valid_fit(fit) -> None:
    """Check that a fit is a log-concave sub-distribution function."""
    assert np.all(np.diff(fit.cumulative) >= -1e-12)
    assert np.all(fit.cumulative >= 0)
    assert fit.cumulative[-1] <= 1.0 + 1e-12
    assert np.isfinite(fit.log_likelihood)
    assert concavity_violation(fit.support, fit.log_cumulative) <= 1e-8


class TestSmallCases:
    """Tests for fits that need no iterations."""

    def test_single_observation(self) -> None:
        """Test that (0, 1] puts all mass at 1."""
        fit = fit_logconcave([(0.0, 1.0)])

        assert fit.evaluate(0.5) == 0.0
        assert fit.evaluate(1.0) == 1.0
        assert fit.converged
        assert fit.iterations == 0

    def test_two_disjoint_observations(self) -> None:
        """Test that (0, 1] and (1, 2] share the mass equally."""
        fit = fit_logconcave([(0.0, 1.0), (1.0, 2.0)])

        np.testing.assert_allclose(fit.mass, [0.5, 0.5])
        assert fit.log_likelihood == pytest.approx(2 * np.log(0.5))

    def test_identical_observations(self) -> None:
        """Test that repeated copies of one interval give a single jump."""
        fit = fit_logconcave([(1.0, 2.0)] * 3)

        np.testing.assert_allclose(fit.support, [2.0])
        np.testing.assert_allclose(fit.cumulative, [1.0])
        assert fit.log_likelihood == pytest.approx(0.0)

    def test_only_right_censored(self) -> None:
        """Test that all mass is put beyond the last endpoint without events."""
        fit = fit_logconcave([(1.0, np.inf), (2.0, np.inf), (0.5, np.inf)])

        assert fit.total_mass == 0.0
        assert fit.defect == 1.0
        assert fit.log_likelihood == 0.0

    @pytest.mark.parametrize("data", [[(2.0, 1.0)], [(-1.0, 1.0)], [(np.nan, 1.0)], []])
    def test_malformed_input(self, data) -> None:
        """Test that malformed input fails before any computation."""
        with pytest.raises(MalformedIntervalError):
            fit_logconcave(data)

    def test_invalid_settings(self) -> None:
        """Test that settings are validated up front."""
        with pytest.raises(ValueError):
            fit_logconcave([(0.0, 1.0)], settings=FitSettings(violation_tol=0.0))


class TestFitProperties:
    """Tests for the shape and optimality of fits on simulated data."""

    @pytest.mark.parametrize("fixture", ["mixed_case", "current_status", "bounded"])
    def test_fit_is_log_concave(self, fixture, request) -> None:
        """Test monotonicity, total mass and concavity of log F."""
        fit = fit_logconcave(request.getfixturevalue(fixture))

        assert_valid_fit(fit)

    @pytest.mark.parametrize("fixture", ["mixed_case", "current_status", "bounded"])
    def test_likelihood_below_unconstrained(self, fixture, request) -> None:
        """Test that the constraint can only cost likelihood."""
        data = request.getfixturevalue(fixture)

        assert fit_logconcave(data).log_likelihood <= fit_unconstrained(data).log_likelihood + 1e-6

    def test_reported_likelihood(self, mixed_case: np.ndarray) -> None:
        """Test that the reported log likelihood matches the fitted masses."""
        fit = fit_logconcave(mixed_case)
        structure = build_interval_structure(mixed_case)
        mass = fit.mass_vector() if structure.has_infinite else fit.mass

        assert fit.log_likelihood == pytest.approx(log_likelihood(mass, structure), abs=1e-8)

    def test_converges(self, mixed_case: np.ndarray) -> None:
        """Test that the default budget suffices on a moderate dataset."""
        fit = fit_logconcave(mixed_case)

        assert fit.converged
        assert fit.state == FitState.CONVERGED.value
        assert fit.iterations >= 2

    def test_bounded_data_has_no_defect(self, bounded: np.ndarray) -> None:
        """Test that F reaches one when every right endpoint is finite."""
        fit = fit_logconcave(bounded)

        assert fit.total_mass == pytest.approx(1.0)

    def test_knots_are_support_points(self, mixed_case: np.ndarray) -> None:
        """Test that the knots of log F lie on the support and end at its last point."""
        fit = fit_logconcave(mixed_case)

        assert np.all(np.isin(fit.knots, fit.support))
        assert fit.knots[-1] == fit.support[-1]

    def test_current_status_defect(self, current_status: np.ndarray) -> None:
        """Test that unbounded right endpoints leave a defect in [0, 1]."""
        fit = fit_logconcave(current_status)

        assert 0.0 <= fit.defect <= 1.0
        assert np.all(np.isfinite(fit.cumulative))
        assert fit.mass_vector().sum() == pytest.approx(1.0)

    def test_evaluation_is_monotone(self, mixed_case: np.ndarray) -> None:
        """Test F(x1) <= F(x2) for x1 < x2 and the boundary values."""
        fit = fit_logconcave(mixed_case)
        times = np.linspace(0.0, 2 * fit.support[-1], 500)

        values = evaluate(fit, times)

        assert np.all(np.diff(values) >= 0)
        assert evaluate(fit, fit.support[0] / 2) == 0.0
        assert evaluate(fit, fit.support[-1]) == fit.total_mass

    def test_deterministic(self, current_status: np.ndarray) -> None:
        """Test that two runs on the same data agree exactly."""
        first = fit_logconcave(current_status)
        second = fit_logconcave(current_status)

        np.testing.assert_array_equal(first.cumulative, second.cumulative)
        assert first.log_likelihood == second.log_likelihood

    def test_refit_from_own_result(self, mixed_case: np.ndarray) -> None:
        """Test that seeding with a fitted result reproduces its likelihood."""
        fit = fit_logconcave(mixed_case)

        with pytest.warns(NonConvergenceWarning):
            refit = fit_logconcave(mixed_case, seed=fit.mass_vector(), settings=FitSettings(max_iter=1))

        assert refit.log_likelihood == pytest.approx(fit.log_likelihood, abs=1e-6)


class TestBudgetAndProviders:
    """Tests for budgets, warnings and pluggable starting points."""

    def test_exhausted_budget(self, mixed_case: np.ndarray) -> None:
        """Test that running out of passes returns a flagged fit with a warning."""
        with pytest.warns(NonConvergenceWarning):
            fit = fit_logconcave(mixed_case, settings=FitSettings(max_iter=0))

        assert not fit.converged
        assert fit.state == FitState.EXHAUSTED.value
        assert fit.iterations == 0
        assert np.isfinite(fit.log_likelihood)

    def test_more_passes_never_lower_the_likelihood(self, bounded: np.ndarray) -> None:
        """Test that the likelihood is nondecreasing in the pass budget."""
        values = []
        for max_iter in (1, 5, 25):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", NonConvergenceWarning)
                values.append(fit_logconcave(bounded, settings=FitSettings(max_iter=max_iter)).log_likelihood)

        assert values[0] <= values[1] + 1e-12
        assert values[1] <= values[2] + 1e-12

    def test_custom_provider(self, bounded: np.ndarray) -> None:
        """Test that a provider supplies the starting point."""
        calls = []

        def provider(structure):
            calls.append(structure.n_gaps)
            return np.ones(structure.n_gaps)

        fit = fit_logconcave(bounded, provider=provider)

        assert len(calls) == 1
        assert_valid_fit(fit)

    def test_degenerate_provider_is_rescued(self, mixed_case: np.ndarray) -> None:
        """Test that a seed with zero-probability observations is mixed with uniform mass."""
        def provider(structure):
            mass = np.zeros(structure.n_gaps)
            mass[-1] = 1.0
            return mass

        fit = fit_logconcave(mixed_case, provider=provider)

        assert_valid_fit(fit)

    def test_seed_without_defect_entry(self, mixed_case: np.ndarray) -> None:
        """Test that a seed over the finite support points only is completed."""
        structure = build_interval_structure(mixed_case)
        seed = np.full(structure.m, 0.5 / structure.m)

        fit = fit_logconcave(mixed_case, seed=seed)

        assert_valid_fit(fit)


class TestActiveSetICM:
    """Tests for the iteration state machine."""

    def test_states(self, bounded: np.ndarray) -> None:
        """Test the transitions from seeding to convergence."""
        structure = build_interval_structure(bounded)
        solver = ActiveSetICM(structure, FitSettings())

        assert solver.state is FitState.SEEDING
        fit = solver.run(np.ones(structure.n_gaps) / structure.n_gaps)

        assert solver.state is FitState.CONVERGED
        assert fit.converged

    def test_likelihood_increases_every_step(self, mixed_case: np.ndarray) -> None:
        """Test that ICM steps never lower the likelihood."""
        structure = build_interval_structure(mixed_case)
        solver = ActiveSetICM(structure, FitSettings())
        solver.seed(np.ones(structure.n_gaps) / structure.n_gaps)

        previous = solver.loglik
        for _ in range(20):
            gain, _ = solver.icm_step()
            solver.truncate()
            assert gain >= 0
            assert solver.loglik >= previous - 1e-9
            previous = solver.loglik

    def test_needs_two_support_points(self) -> None:
        """Test that tiny problems are left to the closed form."""
        with pytest.raises(ValueError):
            ActiveSetICM(build_interval_structure([(0.0, 1.0)]), FitSettings())


class TestNearDuplicateEndpoints:
    """Tests for endpoints that differ only by floating point rounding."""

    @pytest.mark.parametrize(
        "data",
        [
            [(0.8, 2.8000000000000003), (0.0, 3.5), (2.9, 5.799999999999999), (0.0, 4.3), (4.0, np.inf),
             (4.0, 4.5), (1.0, np.inf), (1.6, 3.5000000000000004), (4.99, 7.29)],
            [(1.45, 2.45), (3.36, np.inf), (3.0, 3.7), (3.3, 3.6999999999999997), (4.0, 4.3), (4.0, 6.2),
             (4.3, 5.1)],
        ],
    )
    def test_fit_is_log_concave_in_time(self, data) -> None:
        """Test that rounding noise in the endpoints neither breaks the fit nor its concavity."""
        fit = fit_logconcave(data)

        assert_valid_fit(fit)
        assert np.all(np.diff(fit.support) > 1e-6)
        assert fit.converged
        assert concavity_violation(fit.support, fit.log_cumulative) <= 1e-8

    def test_same_fit_as_rounded_data(self) -> None:
        """Test that snapping gives the fit of the rounded endpoints."""
        noisy = [(1.45, 2.45), (3.36, np.inf), (3.0, 3.7), (3.3, 3.6999999999999997), (4.0, 4.3), (4.0, 6.2),
                 (4.3, 5.1)]
        rounded = [(left, round(right, 6) if np.isfinite(right) else right) for left, right in noisy]

        assert fit_logconcave(noisy).log_likelihood == pytest.approx(
            fit_logconcave(rounded).log_likelihood, abs=1e-7)


class TestInfeasibleConfigurations:
    """Tests for configurations leaving some observation at zero probability."""

    def test_seed_without_positive_probability(self) -> None:
        """Test that the seeding state fails when neither the seed nor its mixture is usable."""
        def provider(structure):
            mass = np.zeros(structure.n_gaps)
            mass[-1] = 1.0
            return mass

        data = [(0.0, 1.0), (1.0, 2.0), (2.0, 3.0), (3.0, np.inf)]

        with pytest.raises(InfeasibleConfigurationError):
            fit_logconcave(data, provider=provider, settings=FitSettings(seed_mixing=1e-20))

    def test_closed_form_without_positive_probability(self) -> None:
        """Test that a closed-form fit whose masses all fall below the floor is rejected."""
        with pytest.raises(InfeasibleConfigurationError):
            fit_logconcave([(0.0, 1.0), (1.0, np.inf)], settings=FitSettings(mass_floor=0.6))

    def test_error_kinds_are_distinct(self) -> None:
        """Test that infeasibility is neither an input error nor an internal defect."""
        assert issubclass(InfeasibleConfigurationError, LogConcaveError)
        assert not issubclass(InfeasibleConfigurationError, MalformedIntervalError)
        assert not issubclass(InfeasibleConfigurationError, InvariantViolation)
        assert not issubclass(InvariantViolation, MalformedIntervalError)
