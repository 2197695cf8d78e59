"""
Nonlinear Least Squares solver using Gauss-Newton and Levenberg-Marquardt.

Mathematical Formulation:
    Given observations y, per-observation weights w and a model h(x), we seek:
        x̂ = argmin ½‖y - h(x)‖²_W,   W = diag(w)
    where r(x) = y - h(x) is the residual vector. With w = 1/σ² the weighted
    sum of squared residuals r'Wr is the chi-square of the fit.

    Gauss-Newton update:
        (J'WJ) Δx = J'W r  →  x ← x + Δx

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r
    where μ is an adaptive damping parameter driven by the gain ratio.

    Covariance at the solution:
        P = (J'WJ)⁻¹             (weights are inverse variances)
        P = σ̂² (J'WJ)⁻¹           (scaled by the residual variance)
"""

import logging
from dataclasses import dataclass
from typing import Callable, Literal, Optional

import numpy as np

from radiolocate.exceptions import NumericalError

logger = logging.getLogger(__name__)


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated parameter vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        converged: Whether the solver converged within tolerance.
        chi2: Weighted sum of squared residuals r'Wr.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool
    chi2: float = 0.0


def gauss_newton(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 20,
    tol: float = 1e-8,
    return_covariance: bool = True,
    scale_covariance: bool = True,
    raise_on_failure: bool = False,
) -> NonlinearLSResult:
    """
    Gauss-Newton solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    Args:
        h: Measurement model function h: R^n → R^m.
            Returns predicted measurements given parameters x.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial parameter estimate (n,).
        weights: Optional measurement weights (m,) for weighted LS.
            If None, uses uniform weights (standard LS).
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        return_covariance: If True, compute covariance at final estimate.
        scale_covariance: If True, scale (J'WJ)⁻¹ by the residual variance.
        raise_on_failure: If True, raise NumericalError when max_iter is
            reached without convergence.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Raises:
        NumericalError: If the model produces non-finite values, the
            covariance cannot be computed, or (with raise_on_failure) the
            solver does not converge.

    Example:
        >>> import numpy as np
        >>> # Received power from an emitter at unknown 1D position
        >>> points = np.array([0.0, 4.0, 10.0])
        >>> def h(x):
        ...     return -20.0 * np.log10(np.abs(points - x[0]) + 1.0) + x[1]
        >>> def jac(x):
        ...     d = points - x[0]
        ...     dpos = 20.0 * np.sign(d) / (np.log(10.0) * (np.abs(d) + 1.0))
        ...     return np.column_stack([dpos, np.ones_like(points)])
        >>> y = h(np.array([3.0, -30.0]))
        >>> result = gauss_newton(h, jac, y, x0=np.array([2.5, -35.0]))
        >>> print(f"Estimate: {result.x}, Iterations: {result.iterations}")
    """
    return _solve_nonlinear_ls(
        h=h,
        jacobian=jacobian,
        y=y,
        x0=x0,
        weights=weights,
        method="gn",
        max_iter=max_iter,
        tol=tol,
        return_covariance=return_covariance,
        scale_covariance=scale_covariance,
        raise_on_failure=raise_on_failure,
    )


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = True,
    raise_on_failure: bool = False,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    LM combines Gauss-Newton (fast near solution) with gradient descent
    (robust far from solution) by adaptively adjusting μ:
        - Small μ: Gauss-Newton behavior (quadratic convergence)
        - Large μ: Gradient descent behavior (global convergence)

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial parameter estimate (n,).
        weights: Optional measurement weights (m,) for weighted LS.
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        mu0: Initial damping parameter (default 1e-3).
        return_covariance: If True, compute covariance at final estimate.
        scale_covariance: If True, scale (J'WJ)⁻¹ by the residual variance.
            Use False when weights are true inverse variances.
        raise_on_failure: If True, raise NumericalError when max_iter is
            reached without convergence.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Raises:
        NumericalError: See gauss_newton().

    Example:
        >>> import numpy as np
        >>> # 2D range positioning with a poor initial guess
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]])
        >>> def h(x):
        ...     return np.linalg.norm(anchors - x, axis=1)
        >>> def jac(x):
        ...     diff = x - anchors
        ...     ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        ...     return diff / np.maximum(ranges, 1e-10)
        >>> y = np.array([7.07, 7.07, 7.07, 7.07])  # True position (5, 5)
        >>> result = levenberg_marquardt(h, jac, y, x0=np.array([1.0, 2.0]))
        >>> print(f"Estimate: {result.x}, Converged: {result.converged}")
    """
    return _solve_nonlinear_ls(
        h=h,
        jacobian=jacobian,
        y=y,
        x0=x0,
        weights=weights,
        method="lm",
        max_iter=max_iter,
        tol=tol,
        mu0=mu0,
        return_covariance=return_covariance,
        scale_covariance=scale_covariance,
        raise_on_failure=raise_on_failure,
    )


def _solve_nonlinear_ls(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray],
    method: str,
    max_iter: int,
    tol: float,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = True,
    raise_on_failure: bool = False,
) -> NonlinearLSResult:
    """Internal solver implementing both Gauss-Newton and Levenberg-Marquardt."""
    # Input validation
    y = np.asarray(y, dtype=float)
    x0 = np.asarray(x0, dtype=float)

    if y.ndim != 1:
        raise ValueError(f"y must be 1D array, got shape {y.shape}")
    if x0.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x0.shape}")

    m = len(y)
    n = len(x0)
    x = x0.copy()

    # Setup weight matrix
    if weights is None:
        W = np.eye(m)
    else:
        weights = np.asarray(weights, dtype=float)
        if weights.ndim != 1 or len(weights) != m:
            raise ValueError(f"weights must be 1D array of length {m}")
        if np.any(weights < 0):
            raise ValueError("weights must be non-negative")
        W = np.diag(weights)

    # LM-specific initialization
    mu = mu0
    nu = 2.0

    converged = False
    iteration = 0

    for iteration in range(max_iter):
        # Evaluate model and Jacobian
        hx = _evaluate(h, x, m)
        J = _evaluate_jacobian(jacobian, x, m, n)

        # Residual: r = y - h(x)
        r = y - hx

        # Weighted normal equations: (J'WJ) Δx = J'Wr
        JtW = J.T @ W
        JtWJ = JtW @ J
        JtWr = JtW @ r

        # Cost function: f = ½ r'Wr
        cost = 0.5 * r @ W @ r

        if method == "gn":
            try:
                delta_x = np.linalg.solve(JtWJ, JtWr)
            except np.linalg.LinAlgError:
                # Singular - use pseudo-inverse
                delta_x = np.linalg.lstsq(JtWJ, JtWr, rcond=None)[0]

            x = x + delta_x

        elif method == "lm":
            while True:
                JtWJ_damped = JtWJ + mu * np.eye(n)

                try:
                    delta_x = np.linalg.solve(JtWJ_damped, JtWr)
                except np.linalg.LinAlgError:
                    delta_x = np.linalg.lstsq(JtWJ_damped, JtWr, rcond=None)[0]

                x_new = x + delta_x
                r_new = y - h(x_new)
                cost_new = 0.5 * r_new @ W @ r_new

                # Predicted decrease: ½ Δx'(μΔx + J'Wr)
                predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
                actual_decrease = cost - cost_new

                if predicted_decrease > 1e-15 and np.isfinite(cost_new):
                    gain_ratio = actual_decrease / predicted_decrease
                else:
                    gain_ratio = 0.0

                if gain_ratio > 0:
                    # Accept step, decrease damping (more GN-like)
                    x = x_new
                    mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                    nu = 2.0
                    break
                else:
                    # Reject step, increase damping (more GD-like)
                    mu = mu * nu
                    nu = 2.0 * nu

                    # Prevent infinite loop with very large damping
                    if mu > 1e10:
                        break

        else:
            raise ValueError(f"Unknown method: {method}. Use 'gn' or 'lm'.")

        step_norm = np.linalg.norm(delta_x)
        if step_norm < tol:
            converged = True
            break

    logger.debug(
        "%s finished after %d iterations (converged=%s)",
        method.upper(), iteration + 1, converged,
    )

    if not converged and raise_on_failure:
        raise NumericalError(
            f"Solver did not converge within {max_iter} iterations"
        )

    # Final evaluation
    hx = _evaluate(h, x, m)
    r = y - hx
    chi2 = float(r @ W @ r)
    cost = 0.5 * chi2

    # Covariance estimation
    P = None
    if return_covariance:
        J = _evaluate_jacobian(jacobian, x, m, n)
        JtWJ = J.T @ W @ J

        sigma2 = 1.0
        if scale_covariance and m > n:
            sigma2 = chi2 / (m - n)

        try:
            P = sigma2 * np.linalg.inv(JtWJ)
        except np.linalg.LinAlgError as e:
            raise NumericalError(f"Normal matrix is singular: {e}") from e

        if not np.all(np.isfinite(P)):
            raise NumericalError("Covariance contains non-finite values")

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration + 1,
        residuals=r,
        cost=cost,
        converged=converged,
        chi2=chi2,
    )


def _evaluate(h: Callable[[np.ndarray], np.ndarray], x: np.ndarray, m: int) -> np.ndarray:
    hx = np.asarray(h(x), dtype=float)
    if len(hx) != m:
        raise ValueError(f"h(x) returned {len(hx)} elements, expected {m}")
    if not np.all(np.isfinite(hx)):
        raise NumericalError(f"Model returned non-finite values at x={x}")
    return hx


def _evaluate_jacobian(
    jacobian: Callable[[np.ndarray], np.ndarray], x: np.ndarray, m: int, n: int
) -> np.ndarray:
    J = np.asarray(jacobian(x), dtype=float)
    if J.shape != (m, n):
        raise ValueError(f"Jacobian shape {J.shape}, expected ({m}, {n})")
    if not np.all(np.isfinite(J)):
        raise NumericalError(f"Jacobian contains non-finite values at x={x}")
    return J


def solve_nonlinear_ls(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    method: Literal["gn", "lm"] = "lm",
    max_iter: int = 30,
    tol: float = 1e-8,
    return_covariance: bool = True,
    **kwargs,
) -> NonlinearLSResult:
    """
    General nonlinear least squares solver.

    Dispatches to gauss_newton() or levenberg_marquardt().

    Args:
        h: Measurement model h(x) returning predicted observations.
        jacobian: Jacobian function J = ∂h/∂x.
        y: Observations (m,).
        x0: Initial parameter estimate (n,).
        weights: Optional measurement weights for WLS (m,).
        method: "gn" (Gauss-Newton) or "lm" (Levenberg-Marquardt).
        max_iter: Maximum iterations.
        tol: Convergence tolerance.
        return_covariance: If True, compute covariance at solution.
        **kwargs: Additional solver arguments (mu0 for LM,
            scale_covariance, raise_on_failure).

    Returns:
        NonlinearLSResult with solution, covariance, and diagnostics.
    """
    scale_covariance = kwargs.get("scale_covariance", True)
    raise_on_failure = kwargs.get("raise_on_failure", False)

    if method == "gn":
        return gauss_newton(
            h=h,
            jacobian=jacobian,
            y=y,
            x0=x0,
            weights=weights,
            max_iter=max_iter,
            tol=tol,
            return_covariance=return_covariance,
            scale_covariance=scale_covariance,
            raise_on_failure=raise_on_failure,
        )
    elif method == "lm":
        mu0 = kwargs.get("mu0", 1e-3)
        return levenberg_marquardt(
            h=h,
            jacobian=jacobian,
            y=y,
            x0=x0,
            weights=weights,
            max_iter=max_iter,
            tol=tol,
            mu0=mu0,
            return_covariance=return_covariance,
            scale_covariance=scale_covariance,
            raise_on_failure=raise_on_failure,
        )
    else:
        raise ValueError(f"Unknown method: {method}. Use 'gn' or 'lm'.")
