"""
Position estimation of a receiver from located radio sources.

A fingerprint captured at an unknown position is matched against radio
sources with known positions. Each matching reading is converted into a
distance to its source and the resulting positions/distances are solved
either by linear least squares trilateration or by a weighted nonlinear
range fit started from the linear solution.

Distance conversion policy (replaceable through ``distance_function``):
    - RangingReading: the measured distance
    - RssiReading from a source with known transmitted power: inverse
      path-loss model (radiolocate.rf.power.distance_from_rssi)
    - anything else: reading ignored

Nonlinear range model:
    d_i = ‖p - x_i‖,   ∂d_i/∂p = (p - x_i) / ‖p - x_i‖

with weights 1/σ_i². Distance standard deviations come from the reading
(RangingReading.distance_std, or RssiReading.rssi_std propagated through
the path-loss model) and fall back to ``fallback_distance_std``.
"""

import logging
import threading
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from radiolocate.config import SolverConfig
from radiolocate.estimators.nonlinear_least_squares import solve_nonlinear_ls
from radiolocate.exceptions import LockedError, NotReadyError, NumericalError
from radiolocate.rf.fingerprints import Fingerprint
from radiolocate.rf.listeners import EstimatorListener, TrilaterationSolverListener
from radiolocate.rf.power import distance_from_rssi
from radiolocate.rf.readings import RangingReading, Reading, RssiReading
from radiolocate.rf.sources import RadioSourceLocated, RadioSourceWithPowerAndLocated
from radiolocate.rf.state import EstimatorState
from radiolocate.rf.trilateration import LinearLeastSquaresTrilaterationSolver

logger = logging.getLogger(__name__)

DistanceFunction = Callable[[Reading, RadioSourceLocated], Optional[float]]

DEFAULT_DISTANCE_STANDARD_DEVIATION = 1.0  # m


def default_distance_function(
    reading: Reading, source: RadioSourceLocated
) -> Optional[float]:
    """
    Convert a reading into a distance to its located source.

    Returns:
        Distance in meters, or None if the reading cannot be converted.
    """
    if isinstance(reading, RangingReading):
        return reading.distance
    if isinstance(reading, RssiReading) and isinstance(
        source, RadioSourceWithPowerAndLocated
    ):
        return distance_from_rssi(
            reading.rssi,
            source.transmitted_power_dbm,
            source.frequency,
            source.path_loss_exponent,
        )
    return None


class _SolverListenerAdapter(TrilaterationSolverListener):
    """Forwards trilateration solver events to the estimator listener."""

    def __init__(self, estimator: "LinearPositionEstimator"):
        self._estimator = estimator

    def on_solve_start(self, solver) -> None:
        listener = self._estimator.listener
        if listener is not None:
            listener.on_estimate_start(self._estimator)

    def on_solve_end(self, solver) -> None:
        listener = self._estimator.listener
        if listener is not None:
            listener.on_estimate_end(self._estimator)


class PositionEstimator:
    """
    Common configuration, matching and locking of receiver position estimators.

    Subclasses implement _estimate(positions, distances) and store the
    result in _estimated_position_coordinates.

    Args:
        dims: Number of spatial dimensions (2 or 3).
        sources: Located radio sources. At least dims + 1 are required.
        fingerprint: Fingerprint captured at the unknown position.
        listener: Optional lifecycle listener.
        distance_function: Optional reading-to-distance conversion policy.

    Raises:
        ValueError: If sources are given but fewer than dims + 1, or if
            their dimensions do not match dims.
    """

    def __init__(
        self,
        dims: int,
        sources: Optional[Sequence[RadioSourceLocated]] = None,
        fingerprint: Optional[Fingerprint] = None,
        listener: Optional[EstimatorListener] = None,
        distance_function: Optional[DistanceFunction] = None,
    ):
        if dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {dims}")
        self._dims = dims
        self._sources: Optional[List[RadioSourceLocated]] = None
        self._fingerprint: Optional[Fingerprint] = None
        self._listener = listener
        self._distance_function = distance_function or default_distance_function
        self._state = EstimatorState.IDLE
        self._state_lock = threading.Lock()
        self._clear_results()
        self._trilateration_solver = self._create_trilateration_solver()

        if sources is not None:
            self._internal_set_sources(sources)
        if fingerprint is not None:
            self._internal_set_fingerprint(fingerprint)

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def min_required_sources(self) -> int:
        return self._trilateration_solver.min_required_positions

    @property
    def state(self) -> EstimatorState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return (
            self._state is EstimatorState.RUNNING
            or self._trilateration_solver.is_locked
        )

    @property
    def sources(self) -> Optional[List[RadioSourceLocated]]:
        return None if self._sources is None else list(self._sources)

    @sources.setter
    def sources(self, sources: Sequence[RadioSourceLocated]) -> None:
        self._check_not_locked()
        self._internal_set_sources(sources)

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, fingerprint: Fingerprint) -> None:
        self._check_not_locked()
        self._internal_set_fingerprint(fingerprint)

    @property
    def listener(self) -> Optional[EstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[EstimatorListener]) -> None:
        self._check_not_locked()
        self._listener = listener

    @property
    def distance_function(self) -> DistanceFunction:
        return self._distance_function

    @distance_function.setter
    def distance_function(self, distance_function: Optional[DistanceFunction]) -> None:
        self._check_not_locked()
        self._distance_function = distance_function or default_distance_function

    @property
    def is_ready(self) -> bool:
        if self._sources is None or self._fingerprint is None:
            return False
        positions, _ = self.build_positions_and_distances()
        return len(positions) >= self.min_required_sources

    @property
    def estimated_position_coordinates(self) -> Optional[np.ndarray]:
        if self._estimated_position_coordinates is None:
            return None
        return self._estimated_position_coordinates.copy()

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        """Position found by the last estimate(), as a new array."""
        return self.estimated_position_coordinates

    def build_positions_and_distances(self) -> Tuple[List[np.ndarray], List[float]]:
        """
        Match fingerprint readings to located sources and convert to distances.

        Readings are visited in fingerprint order; a reading contributes once
        per located source sharing its identity.

        Returns:
            Tuple (positions, distances) of equal length.
        """
        positions: List[np.ndarray] = []
        distances: List[float] = []
        for reading, source, distance in self._matched_readings():
            positions.append(source.position)
            distances.append(distance)
        return positions, distances

    def set_positions_and_distances(self, positions, distances) -> None:
        """
        Push positions and distances into the trilateration solver.

        Positions are re-materialized as a float (N, dims) array.

        Raises:
            ValueError: If the arrays are invalid, or if the solver rejects
                them because it is locked.
        """
        positions_array = np.array(
            [np.asarray(p, dtype=float) for p in positions], dtype=float
        )
        distances_array = np.asarray(distances, dtype=float)
        try:
            self._trilateration_solver.set_positions_and_distances(
                positions_array, distances_array
            )
        except LockedError as e:
            raise ValueError(f"Trilateration solver rejected input: {e}") from e

    def estimate(self) -> np.ndarray:
        """
        Estimate the position of the fingerprint.

        Returns:
            Estimated position, shape (dims,).

        Raises:
            LockedError: If an estimation is already in progress.
            NotReadyError: If sources/fingerprint are missing or fewer than
                dims + 1 readings can be converted into distances.
            NumericalError: If the system is degenerate or the fit fails.
        """
        with self._state_lock:
            self._check_not_locked()
            if not self.is_ready:
                raise NotReadyError(
                    f"At least {self.min_required_sources} readings matching located "
                    f"sources are required"
                )
            self._state = EstimatorState.RUNNING

        try:
            self._clear_results()
            positions, distances = self.build_positions_and_distances()
            self._estimate(positions, distances)
            logger.debug(
                "Estimated %dD position %s from %d sources",
                self._dims, self._estimated_position_coordinates, len(positions),
            )
        finally:
            self._state = EstimatorState.IDLE

        return self._estimated_position_coordinates.copy()

    def _estimate(self, positions: List[np.ndarray], distances: List[float]) -> None:
        raise NotImplementedError

    def _create_trilateration_solver(self) -> LinearLeastSquaresTrilaterationSolver:
        return LinearLeastSquaresTrilaterationSolver(self._dims)

    def _clear_results(self) -> None:
        self._estimated_position_coordinates: Optional[np.ndarray] = None

    def _matched_readings(self):
        if self._sources is None or self._fingerprint is None:
            return
        for reading in self._fingerprint.readings:
            for source in self._sources:
                if not source.same_identity(reading.source):
                    continue
                distance = self._distance_function(reading, source)
                if distance is None:
                    continue
                yield reading, source, float(distance)

    def _internal_set_sources(self, sources: Sequence[RadioSourceLocated]) -> None:
        if sources is None:
            raise ValueError("sources must not be None")
        sources = list(sources)
        if len(sources) < self.min_required_sources:
            raise ValueError(
                f"At least {self.min_required_sources} sources are required "
                f"for {self._dims}D positioning, got {len(sources)}"
            )
        for source in sources:
            if not isinstance(source, RadioSourceLocated):
                raise ValueError(
                    f"sources must be RadioSourceLocated, got {type(source).__name__}"
                )
            if source.dims != self._dims:
                raise ValueError(
                    f"Source {source.source.identifier} is {source.dims}D, "
                    f"expected {self._dims}D"
                )
        self._sources = sources

    def _internal_set_fingerprint(self, fingerprint: Fingerprint) -> None:
        if fingerprint is None:
            raise ValueError("fingerprint must not be None")
        self._fingerprint = fingerprint

    def _check_not_locked(self) -> None:
        if self.is_locked:
            raise LockedError()


class LinearPositionEstimator(PositionEstimator):
    """
    Estimate the position where a fingerprint was captured by linear
    least squares trilateration.

    Listener events are forwarded from the internal trilateration solver,
    so on_estimate_start runs while both the estimator and the solver are
    locked.

    Example:
        >>> estimator = LinearPositionEstimator3D(sources, fingerprint)
        >>> estimator.estimate()
        >>> estimator.estimated_position
    """

    def _create_trilateration_solver(self) -> LinearLeastSquaresTrilaterationSolver:
        return LinearLeastSquaresTrilaterationSolver(
            self._dims, listener=_SolverListenerAdapter(self)
        )

    def _estimate(self, positions, distances) -> None:
        self.set_positions_and_distances(positions, distances)
        self._trilateration_solver.solve()
        self._estimated_position_coordinates = self._trilateration_solver.estimated_position


class LinearPositionEstimator2D(LinearPositionEstimator):
    """Linear position estimator in the plane."""

    def __init__(self, sources=None, fingerprint=None, listener=None, distance_function=None):
        super().__init__(2, sources, fingerprint, listener, distance_function)


class LinearPositionEstimator3D(LinearPositionEstimator):
    """Linear position estimator in space."""

    def __init__(self, sources=None, fingerprint=None, listener=None, distance_function=None):
        super().__init__(3, sources, fingerprint, listener, distance_function)


class NonLinearPositionEstimator(PositionEstimator):
    """
    Refine the position of a fingerprint by a weighted nonlinear range fit.

    Ranges to the matched sources are fitted with Levenberg-Marquardt (or
    Gauss-Newton, per config.method). The fit starts from initial_position
    when set, otherwise from the linear trilateration solution (or from the
    centroid of the sources when the linear system is degenerate).

    Args:
        dims: Number of spatial dimensions (2 or 3).
        sources: Located radio sources. At least dims + 1 are required.
        fingerprint: Fingerprint captured at the unknown position.
        initial_position: Optional starting point of the fit, shape (dims,).
        listener: Optional lifecycle listener.
        distance_function: Optional reading-to-distance conversion policy.
        config: Solver settings. Defaults to SolverConfig().
        fallback_distance_std: Distance standard deviation (m) used for
            readings that carry no uncertainty. Must be positive.

    Example:
        >>> estimator = NonLinearPositionEstimator3D(sources, fingerprint)
        >>> estimator.estimate()
        >>> estimator.estimated_position, estimator.estimated_covariance
    """

    def __init__(
        self,
        dims: int,
        sources: Optional[Sequence[RadioSourceLocated]] = None,
        fingerprint: Optional[Fingerprint] = None,
        initial_position: Optional[np.ndarray] = None,
        listener: Optional[EstimatorListener] = None,
        distance_function: Optional[DistanceFunction] = None,
        config: Optional[SolverConfig] = None,
        fallback_distance_std: float = DEFAULT_DISTANCE_STANDARD_DEVIATION,
    ):
        super().__init__(dims, sources, fingerprint, listener, distance_function)
        if fallback_distance_std <= 0.0:
            raise ValueError(
                f"fallback_distance_std must be positive, got {fallback_distance_std}"
            )
        self._initial_position = self._validate_initial_position(initial_position)
        self._config = config if config is not None else SolverConfig()
        self._fallback_distance_std = float(fallback_distance_std)

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        return None if self._initial_position is None else self._initial_position.copy()

    @initial_position.setter
    def initial_position(self, initial_position: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        self._initial_position = self._validate_initial_position(initial_position)

    @property
    def config(self) -> SolverConfig:
        return self._config

    @config.setter
    def config(self, config: SolverConfig) -> None:
        self._check_not_locked()
        if config is None:
            raise ValueError("config must not be None")
        self._config = config

    @property
    def fallback_distance_std(self) -> float:
        return self._fallback_distance_std

    @fallback_distance_std.setter
    def fallback_distance_std(self, value: float) -> None:
        self._check_not_locked()
        if value <= 0.0:
            raise ValueError(f"fallback_distance_std must be positive, got {value}")
        self._fallback_distance_std = float(value)

    @property
    def estimated_covariance(self) -> Optional[np.ndarray]:
        """Position covariance (dims × dims) of the last estimate, or None."""
        if self._estimated_covariance is None:
            return None
        return self._estimated_covariance.copy()

    @property
    def chi_sq(self) -> float:
        return self._chi_sq

    def build_positions_distances_and_stds(
        self,
    ) -> Tuple[List[np.ndarray], List[float], List[float]]:
        """
        Like build_positions_and_distances, plus one distance standard
        deviation (m) per match.
        """
        positions: List[np.ndarray] = []
        distances: List[float] = []
        stds: List[float] = []
        for reading, source, distance in self._matched_readings():
            positions.append(source.position)
            distances.append(distance)
            stds.append(self._distance_std(reading, source, distance))
        return positions, distances, stds

    def _distance_std(self, reading: Reading, source: RadioSourceLocated, distance: float) -> float:
        if isinstance(reading, RangingReading) and reading.distance_std is not None:
            return reading.distance_std
        if (
            isinstance(reading, RssiReading)
            and reading.rssi_std is not None
            and isinstance(source, RadioSourceWithPowerAndLocated)
        ):
            # first-order propagation of d = 10^((K - Pr) / (10 n))
            std = distance * np.log(10.0) * reading.rssi_std / (10.0 * source.path_loss_exponent)
            if std > 0.0:
                return float(std)
        return self._fallback_distance_std

    def _estimate(self, positions, distances) -> None:
        if self._listener is not None:
            self._listener.on_estimate_start(self)

        _, _, stds = self.build_positions_distances_and_stds()
        points = np.array([np.asarray(p, dtype=float) for p in positions], dtype=float)
        y = np.asarray(distances, dtype=float)
        sigmas = np.asarray(stds, dtype=float)
        x0 = self._initial_parameters(points, positions, distances)
        min_distance = np.sqrt(self._config.min_sqr_distance)

        def h(p):
            return np.maximum(np.linalg.norm(p - points, axis=1), min_distance)

        def jacobian(p):
            return (p - points) / h(p)[:, np.newaxis]

        config = self._config
        result = solve_nonlinear_ls(
            h=h,
            jacobian=jacobian,
            y=y,
            x0=x0,
            weights=1.0 / sigmas**2,
            method=config.method,
            max_iter=config.max_iter,
            tol=config.tol,
            mu0=config.mu0,
            scale_covariance=False,
            raise_on_failure=True,
        )

        self._estimated_position_coordinates = result.x.copy()
        self._estimated_covariance = result.covariance
        self._chi_sq = result.chi2
        logger.debug(
            "Range fit converged in %d iterations from %s, chi2=%.3g",
            result.iterations, x0, result.chi2,
        )

        if self._listener is not None:
            self._listener.on_estimate_end(self)

    def _initial_parameters(self, points, positions, distances) -> np.ndarray:
        if self._initial_position is not None:
            return self._initial_position.copy()
        try:
            self.set_positions_and_distances(positions, distances)
            return self._trilateration_solver.solve()
        except NumericalError as e:
            logger.debug("Linear initial solution failed (%s), starting from centroid", e)
            return np.mean(points, axis=0)

    def _clear_results(self) -> None:
        super()._clear_results()
        self._estimated_covariance: Optional[np.ndarray] = None
        self._chi_sq = 0.0

    def _validate_initial_position(self, position) -> Optional[np.ndarray]:
        if position is None:
            return None
        position = np.array(position, dtype=float)
        if position.shape != (self._dims,):
            raise ValueError(
                f"initial_position must have shape ({self._dims},), got {position.shape}"
            )
        return position


class NonLinearPositionEstimator2D(NonLinearPositionEstimator):
    """Nonlinear position estimator in the plane."""

    def __init__(
        self,
        sources=None,
        fingerprint=None,
        initial_position=None,
        listener=None,
        distance_function=None,
        config=None,
        fallback_distance_std=DEFAULT_DISTANCE_STANDARD_DEVIATION,
    ):
        super().__init__(
            2, sources, fingerprint, initial_position, listener, distance_function,
            config, fallback_distance_std,
        )


class NonLinearPositionEstimator3D(NonLinearPositionEstimator):
    """Nonlinear position estimator in space."""

    def __init__(
        self,
        sources=None,
        fingerprint=None,
        initial_position=None,
        listener=None,
        distance_function=None,
        config=None,
        fallback_distance_std=DEFAULT_DISTANCE_STANDARD_DEVIATION,
    ):
        super().__init__(
            3, sources, fingerprint, initial_position, listener, distance_function,
            config, fallback_distance_std,
        )
