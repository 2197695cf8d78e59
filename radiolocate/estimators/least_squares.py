"""
Linear least squares estimation.

Functions:
    - linear_least_squares: Standard LS, x̂ = (A'A)⁻¹A'b

Shape and argument errors raise ValueError; rank deficient or singular
systems raise NumericalError.
"""

from typing import Optional, Tuple

import numpy as np

from radiolocate.exceptions import NumericalError


def linear_least_squares(
    A: np.ndarray, b: np.ndarray, return_covariance: bool = True
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Standard linear least squares estimation.

    Solves: x_hat = argmin ||Ax - b||²
    Solution: x_hat = (A'A)^(-1) A'b

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        return_covariance: If True, compute covariance matrix.

    Returns:
        Tuple of:
            - x_hat: Estimated state vector (n,).
            - P: Covariance matrix (n × n), or None if return_covariance is False.

    Raises:
        ValueError: If A and b dimensions don't match or the system is
            underdetermined.
        NumericalError: If A is rank deficient.

    Example:
        >>> import numpy as np
        >>> A = np.array([[1, 0], [0, 1], [1, 1], [1, -1]], dtype=float)
        >>> b = np.array([1.0, 2.0, 3.5, -0.5])
        >>> x_hat, P = linear_least_squares(A, b)
        >>> print(f"Estimate: {x_hat}")
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)

    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")

    m, n = A.shape
    if m < n:
        raise ValueError(f"Underdetermined system: m={m} < n={n}. Need m ≥ n.")

    if len(b) != m:
        raise ValueError(f"Dimension mismatch: A has {m} rows, b has {len(b)} elements")

    rank = np.linalg.matrix_rank(A)
    if rank < n:
        raise NumericalError(
            f"A is rank deficient: rank={rank} < n={n}. System has no unique solution."
        )

    # Normal equations: A'A x = A'b
    ATA = A.T @ A
    ATb = A.T @ b

    try:
        x_hat = np.linalg.solve(ATA, ATb)
    except np.linalg.LinAlgError as e:
        raise NumericalError(f"Failed to solve normal equations: {e}") from e

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        # Unbiased measurement variance
        if m > n:
            sigma2 = np.sum(residuals**2) / (m - n)
        else:
            sigma2 = 1.0  # Exact fit case

        P = sigma2 * np.linalg.inv(ATA)

    return x_hat, P
