"""
Generic least squares solvers used by the radio source estimators.

Available solvers:
    - Linear Least Squares
    - Nonlinear Least Squares (Gauss-Newton, Levenberg-Marquardt)
"""

from radiolocate.estimators.least_squares import (
    linear_least_squares,
)
from radiolocate.estimators.nonlinear_least_squares import (
    gauss_newton,
    levenberg_marquardt,
    solve_nonlinear_ls,
    NonlinearLSResult,
)

__all__ = [
    # Linear LS
    "linear_least_squares",
    # Nonlinear LS
    "gauss_newton",
    "levenberg_marquardt",
    "solve_nonlinear_ls",
    "NonlinearLSResult",
]
