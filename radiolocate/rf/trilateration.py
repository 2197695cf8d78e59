"""
Linear least squares trilateration.

Squared range differences against a reference point remove the quadratic
term of the range equations ‖p - x_i‖ = d_i, leaving a linear system in the
unknown position p:

    -2 (x_i - x_ref) · p = d_i² - d_ref² - (‖x_i‖² - ‖x_ref‖²),   i ≠ ref

which is solved with linear least squares. This is the N-dimensional form
of Fang's closed-form TOA algorithm and needs at least d + 1 non-degenerate
points in d dimensions.
"""

import logging
import threading
from typing import Optional

import numpy as np

from radiolocate.estimators.least_squares import linear_least_squares
from radiolocate.exceptions import LockedError, NotReadyError
from radiolocate.rf.listeners import TrilaterationSolverListener
from radiolocate.rf.state import EstimatorState

logger = logging.getLogger(__name__)


class LinearLeastSquaresTrilaterationSolver:
    """
    Stateful linear least squares trilateration solver.

    Configure positions and distances, call solve(), read
    estimated_position. An instance runs at most one solve at a time.

    Attributes:
        dims: Number of spatial dimensions (2 or 3).
        min_required_positions: Minimum number of points, dims + 1.

    Example:
        >>> solver = LinearLeastSquaresTrilaterationSolver(2)
        >>> anchors = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=float)
        >>> true_pos = np.array([3.0, 4.0])
        >>> solver.set_positions_and_distances(
        ...     anchors, np.linalg.norm(anchors - true_pos, axis=1))
        >>> solver.solve()
        array([3., 4.])
    """

    def __init__(
        self,
        dims: int,
        positions: Optional[np.ndarray] = None,
        distances: Optional[np.ndarray] = None,
        listener: Optional[TrilaterationSolverListener] = None,
    ):
        if dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {dims}")
        self._dims = dims
        self._positions: Optional[np.ndarray] = None
        self._distances: Optional[np.ndarray] = None
        self._listener = listener
        self._state = EstimatorState.IDLE
        self._state_lock = threading.Lock()
        self._estimated_position: Optional[np.ndarray] = None

        if positions is not None or distances is not None:
            self._internal_set_positions_and_distances(positions, distances)

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def min_required_positions(self) -> int:
        return self._dims + 1

    @property
    def state(self) -> EstimatorState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state is EstimatorState.RUNNING

    @property
    def is_ready(self) -> bool:
        return (
            self._positions is not None
            and self._distances is not None
            and len(self._positions) >= self.min_required_positions
        )

    @property
    def positions(self) -> Optional[np.ndarray]:
        return None if self._positions is None else self._positions.copy()

    @property
    def distances(self) -> Optional[np.ndarray]:
        return None if self._distances is None else self._distances.copy()

    @property
    def listener(self) -> Optional[TrilaterationSolverListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[TrilaterationSolverListener]) -> None:
        self._check_not_locked()
        self._listener = listener

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        """Position found by the last solve, as a new array."""
        if self._estimated_position is None:
            return None
        return self._estimated_position.copy()

    def set_positions_and_distances(self, positions, distances) -> None:
        """
        Set the known points and their measured distances.

        Args:
            positions: Known positions, shape (N, dims).
            distances: Measured distances, shape (N,), non-negative.

        Raises:
            LockedError: If a solve is in progress.
            ValueError: If shapes mismatch, N < dims + 1, or a distance
                is negative.
        """
        self._check_not_locked()
        self._internal_set_positions_and_distances(positions, distances)

    def solve(self) -> np.ndarray:
        """
        Solve for the position.

        Returns:
            Estimated position, shape (dims,).

        Raises:
            LockedError: If a solve is already in progress.
            NotReadyError: If positions and distances are not set.
            NumericalError: If the points are degenerate (rank deficient).
        """
        with self._state_lock:
            self._check_not_locked()
            if not self.is_ready:
                raise NotReadyError(
                    f"At least {self.min_required_positions} positions and distances are required"
                )
            self._state = EstimatorState.RUNNING

        try:
            if self._listener is not None:
                self._listener.on_solve_start(self)

            self._estimated_position = None
            H, y = self._build_linear_system(self._positions, self._distances)
            position, _ = linear_least_squares(H, y, return_covariance=False)
            self._estimated_position = position
            logger.debug("Trilateration solved %dD position %s", self._dims, position)

            if self._listener is not None:
                self._listener.on_solve_end(self)
        finally:
            self._state = EstimatorState.IDLE

        return position.copy()

    @staticmethod
    def _build_linear_system(positions: np.ndarray, distances: np.ndarray, ref_idx: int = 0):
        x_ref = positions[ref_idx]
        d_ref = distances[ref_idx]
        others = np.delete(np.arange(len(positions)), ref_idx)

        x_i = positions[others]
        d_i = distances[others]

        H = -2.0 * (x_i - x_ref)
        y = d_i**2 - d_ref**2 - (np.sum(x_i**2, axis=1) - np.sum(x_ref**2))
        return H, y

    def _internal_set_positions_and_distances(self, positions, distances) -> None:
        if positions is None or distances is None:
            raise ValueError("positions and distances must both be provided")

        positions = np.array(positions, dtype=float)
        distances = np.array(distances, dtype=float)

        if positions.ndim != 2 or positions.shape[1] != self._dims:
            raise ValueError(
                f"positions must have shape (N, {self._dims}), got {positions.shape}"
            )
        if distances.ndim != 1 or len(distances) != len(positions):
            raise ValueError(
                f"Expected {len(positions)} distances, got shape {distances.shape}"
            )
        if len(positions) < self.min_required_positions:
            raise ValueError(
                f"At least {self.min_required_positions} positions are required "
                f"for {self._dims}D trilateration, got {len(positions)}"
            )
        if np.any(distances < 0):
            raise ValueError("distances must be non-negative")

        self._positions = positions
        self._distances = distances

    def _check_not_locked(self) -> None:
        if self.is_locked:
            raise LockedError()


class LinearLeastSquaresTrilateration2DSolver(LinearLeastSquaresTrilaterationSolver):
    """Linear trilateration in the plane (at least 3 points)."""

    def __init__(self, positions=None, distances=None, listener=None):
        super().__init__(2, positions, distances, listener)


class LinearLeastSquaresTrilateration3DSolver(LinearLeastSquaresTrilaterationSolver):
    """Linear trilateration in space (at least 4 points)."""

    def __init__(self, positions=None, distances=None, listener=None):
        super().__init__(3, positions, distances, listener)
