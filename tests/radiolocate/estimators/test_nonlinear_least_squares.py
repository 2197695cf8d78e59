"""
Unit tests for nonlinear least squares solvers.

Tests cover:
    - Gauss-Newton method
    - Levenberg-Marquardt method
    - Weighted nonlinear LS and chi-square
    - Covariance scaling and failure reporting
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from radiolocate.estimators.nonlinear_least_squares import (
    gauss_newton,
    levenberg_marquardt,
    solve_nonlinear_ls,
    NonlinearLSResult,
)
from radiolocate.exceptions import NumericalError


def _make_log_distance_problem(points):
    """Received power model y = Pte - 10 log10(‖x - pᵢ‖²) with x = [px, py, Pte]."""

    def h(x):
        sqr = np.sum((x[:2] - points) ** 2, axis=1)
        return x[2] - 10.0 * np.log10(sqr)

    # ∂hᵢ/∂p = -20 (p - pᵢ) / (ln10 ‖p - pᵢ‖²),  ∂hᵢ/∂Pte = 1
    def jacobian(x):
        diff = x[:2] - points
        sqr = np.sum(diff**2, axis=1, keepdims=True)
        return np.column_stack([-20.0 * diff / (np.log(10.0) * sqr), np.ones(len(points))])

    return h, jacobian


class TestGaussNewtonLogDistance(unittest.TestCase):
    """Test Gauss-Newton on a 2D emitter position/power problem."""

    def setUp(self):
        """Setup 6 receivers around an emitter at (3, 4) transmitting -30 dBm."""
        self.points = np.array(
            [[0, 0], [10, 0], [0, 10], [10, 10], [5, -2], [-2, 6]], dtype=float
        )
        self.true_x = np.array([3.0, 4.0, -30.0])
        self.h, self.jacobian = _make_log_distance_problem(self.points)
        self.y_clean = self.h(self.true_x)

    def test_exact_measurements_convergence(self):
        """Test GN converges to the true parameters with exact measurements."""
        x0 = np.array([4.0, 5.0, -35.0])

        result = gauss_newton(self.h, self.jacobian, self.y_clean, x0)

        assert_allclose(result.x, self.true_x, atol=1e-6)
        self.assertTrue(result.converged)
        self.assertLess(result.chi2, 1e-12)

    def test_noisy_measurements(self):
        """Test GN with 1 dB noise stays close to the true position."""
        rng = np.random.default_rng(42)
        y_noisy = self.y_clean + rng.normal(0.0, 1.0, len(self.points))

        result = gauss_newton(self.h, self.jacobian, y_noisy, np.array([4.0, 5.0, -35.0]))

        error = np.linalg.norm(result.x[:2] - self.true_x[:2])
        self.assertLess(error, 1.5)

    def test_result_dataclass_fields(self):
        """Test NonlinearLSResult contains all expected fields."""
        result = gauss_newton(
            self.h, self.jacobian, self.y_clean, np.array([4.0, 5.0, -35.0])
        )

        self.assertIsInstance(result, NonlinearLSResult)
        self.assertEqual(len(result.x), 3)
        self.assertEqual(result.covariance.shape, (3, 3))
        self.assertGreater(result.iterations, 0)
        self.assertEqual(len(result.residuals), 6)
        self.assertGreaterEqual(result.cost, 0)
        self.assertIsInstance(result.converged, bool)
        self.assertAlmostEqual(result.cost, 0.5 * result.chi2)


class TestLevenbergMarquardt(unittest.TestCase):
    """Test Levenberg-Marquardt solver."""

    def setUp(self):
        self.points = np.array(
            [[0, 0], [10, 0], [0, 10], [10, 10], [5, -2], [-2, 6]], dtype=float
        )
        self.true_x = np.array([3.0, 4.0, -30.0])
        self.h, self.jacobian = _make_log_distance_problem(self.points)
        self.y_clean = self.h(self.true_x)

    def test_lm_converges_from_centroid(self):
        """Test LM converges from the receiver centroid and mean RSSI."""
        x0 = np.append(np.mean(self.points, axis=0), np.mean(self.y_clean))

        result = levenberg_marquardt(self.h, self.jacobian, self.y_clean, x0, max_iter=200)

        assert_allclose(result.x, self.true_x, atol=1e-5)
        self.assertTrue(result.converged)

    def test_lm_matches_gn_for_good_initial_guess(self):
        """Test LM gives same result as GN when starting close to solution."""
        x0 = np.array([3.5, 4.5, -31.0])

        result_gn = gauss_newton(self.h, self.jacobian, self.y_clean, x0)
        result_lm = levenberg_marquardt(self.h, self.jacobian, self.y_clean, x0)

        assert_allclose(result_gn.x, result_lm.x, atol=1e-6)

    def test_lm_damping_parameter(self):
        """Test that a large mu0 still converges."""
        result = levenberg_marquardt(
            self.h, self.jacobian, self.y_clean, np.array([4.0, 5.0, -35.0]),
            mu0=10.0, max_iter=200,
        )

        assert_allclose(result.x, self.true_x, atol=1e-4)


class TestWeightedNonlinearLS(unittest.TestCase):
    """Test weighted nonlinear least squares."""

    def setUp(self):
        self.points = np.array(
            [[0, 0], [10, 0], [0, 10], [10, 10], [5, -2], [-2, 6]], dtype=float
        )
        self.true_x = np.array([3.0, 4.0, -30.0])
        self.h, self.jacobian = _make_log_distance_problem(self.points)

    def test_weights_emphasize_accurate_measurements(self):
        """Test that down-weighting a corrupted reading improves the estimate."""
        y = self.h(self.true_x)
        y[3] += 6.0
        x0 = np.array([4.0, 5.0, -35.0])

        result_unweighted = gauss_newton(self.h, self.jacobian, y, x0)
        weights = np.array([1.0, 1.0, 1.0, 0.001, 1.0, 1.0])
        result_weighted = gauss_newton(self.h, self.jacobian, y, x0, weights=weights)

        error_unweighted = np.linalg.norm(result_unweighted.x[:2] - self.true_x[:2])
        error_weighted = np.linalg.norm(result_weighted.x[:2] - self.true_x[:2])
        self.assertLess(error_weighted, error_unweighted)

    def test_chi2_uses_weights(self):
        """Test chi2 equals the weighted residual sum r'Wr."""
        rng = np.random.default_rng(7)
        y = self.h(self.true_x) + rng.normal(0.0, 2.0, len(self.points))
        weights = np.full(len(self.points), 0.25)  # σ = 2 dB

        result = levenberg_marquardt(
            self.h, self.jacobian, y, np.array([4.0, 5.0, -35.0]),
            weights=weights, max_iter=200,
        )

        self.assertAlmostEqual(result.chi2, float(np.sum(weights * result.residuals**2)))

    def test_unscaled_covariance_is_inverse_normal_matrix(self):
        """Test scale_covariance=False returns (J'WJ)⁻¹."""
        rng = np.random.default_rng(3)
        y = self.h(self.true_x) + rng.normal(0.0, 1.0, len(self.points))
        weights = np.full(len(self.points), 4.0)

        result = gauss_newton(
            self.h, self.jacobian, y, np.array([4.0, 5.0, -35.0]),
            weights=weights, scale_covariance=False,
        )

        J = self.jacobian(result.x)
        expected = np.linalg.inv(J.T @ np.diag(weights) @ J)
        assert_allclose(result.covariance, expected, rtol=1e-8)

    def test_weights_validation(self):
        """Test that invalid weights raise errors."""
        y = self.h(self.true_x)
        x0 = np.array([4.0, 5.0, -35.0])

        with self.assertRaises(ValueError):
            gauss_newton(self.h, self.jacobian, y, x0, weights=np.ones(3))

        with self.assertRaises(ValueError):
            gauss_newton(
                self.h, self.jacobian, y, x0, weights=np.array([1, 1, 1, 1, 1, -1])
            )


class TestFailureReporting(unittest.TestCase):
    """Test numerical failures are raised as NumericalError."""

    def setUp(self):
        self.points = np.array(
            [[0, 0], [10, 0], [0, 10], [10, 10], [5, -2], [-2, 6]], dtype=float
        )
        self.h, self.jacobian = _make_log_distance_problem(self.points)
        self.y = self.h(np.array([3.0, 4.0, -30.0]))

    def test_raise_on_failure_when_not_converged(self):
        """Test hitting max_iter raises when raise_on_failure is set."""
        x0 = np.array([8.0, 8.0, -60.0])

        with self.assertRaises(NumericalError):
            levenberg_marquardt(
                self.h, self.jacobian, self.y, x0, max_iter=1, raise_on_failure=True
            )

    def test_not_converged_is_reported_without_raising(self):
        """Test hitting max_iter is reported through converged by default."""
        x0 = np.array([8.0, 8.0, -60.0])

        result = levenberg_marquardt(self.h, self.jacobian, self.y, x0, max_iter=1)

        self.assertFalse(result.converged)

    def test_non_finite_model_raises(self):
        """Test a model returning NaN raises NumericalError."""

        def h(x):
            return np.full(len(self.points), np.nan)

        with self.assertRaises(NumericalError):
            gauss_newton(h, self.jacobian, self.y, np.array([4.0, 5.0, -35.0]))

    def test_singular_normal_matrix_raises(self):
        """Test a rank deficient Jacobian fails covariance computation."""

        def jacobian(x):
            return np.zeros((len(self.points), 3))

        def h(x):
            return np.zeros(len(self.points))

        with self.assertRaises(NumericalError):
            gauss_newton(h, jacobian, self.y, np.zeros(3))


class TestSolveNonlinearLS(unittest.TestCase):
    """Test the convenience solve_nonlinear_ls function."""

    def setUp(self):
        self.points = np.array(
            [[0, 0], [10, 0], [0, 10], [10, 10], [5, -2], [-2, 6]], dtype=float
        )
        self.true_x = np.array([3.0, 4.0, -30.0])
        self.h, self.jacobian = _make_log_distance_problem(self.points)
        self.y = self.h(self.true_x)

    def test_method_gn(self):
        """Test method='gn' uses Gauss-Newton."""
        result = solve_nonlinear_ls(
            self.h, self.jacobian, self.y, np.array([4.0, 5.0, -35.0]), method="gn"
        )
        assert_allclose(result.x, self.true_x, atol=1e-6)

    def test_method_lm(self):
        """Test method='lm' uses Levenberg-Marquardt."""
        result = solve_nonlinear_ls(
            self.h, self.jacobian, self.y, np.array([4.0, 5.0, -35.0]),
            method="lm", max_iter=200,
        )
        assert_allclose(result.x, self.true_x, atol=1e-5)

    def test_kwargs_are_forwarded(self):
        """Test raise_on_failure is forwarded to the solver."""
        with self.assertRaises(NumericalError):
            solve_nonlinear_ls(
                self.h, self.jacobian, self.y, np.array([8.0, 8.0, -60.0]),
                method="lm", max_iter=1, raise_on_failure=True,
            )

    def test_unknown_method(self):
        """Test an unknown method raises ValueError."""
        with self.assertRaises(ValueError):
            solve_nonlinear_ls(
                self.h, self.jacobian, self.y, np.zeros(3), method="newton"
            )


if __name__ == "__main__":
    unittest.main()
