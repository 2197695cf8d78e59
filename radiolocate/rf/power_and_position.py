"""
Joint estimation of a radio source's position and transmitted power.

Given N ≥ d + 1 RSSI readings of one emitter taken at known receiver
positions, the emitter position (d coordinates) and its equivalent
transmitted power Pte are fitted by weighted nonlinear least squares.

Measurement model (free space, logarithmic domain):
    Pr_i(dBm) = 10*log10(k) + Pte(dBm) - 10*log10(d_i²)
    k = (c / (4π f))²,  d_i² = Σ_j (p_j - x_ij)²

Parameters:
    θ = [p_1, ..., p_d, Pte]

Jacobian (analytic):
    ∂Pr_i/∂p_j = -20 (p_j - x_ij) / (ln(10) d_i²)
    ∂Pr_i/∂Pte = 1

d_i² is floored at SolverConfig.min_sqr_distance (default 1e-12 m²) in both
the prediction and the Jacobian, so an estimate coinciding with a receiver
position yields finite values. The floor does not make such a point a usable
start: its reading has zero position derivatives and a residual of about
+120 dB, so initial_parameters() moves a start lying on a receiver off it by
a tenth of the receiver spread.

The model is linear in Pte but log-nonlinear in position, so the fit is
iterative (Levenberg-Marquardt by default). Weights are 1/σ_i² with σ_i the
reading's RSSI standard deviation (1 dB when absent), which makes the
reported covariance (J'WJ)⁻¹ and the weighted residual sum the chi-square.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from radiolocate.config import MIN_SQR_DISTANCE, SolverConfig
from radiolocate.estimators.nonlinear_least_squares import solve_nonlinear_ls
from radiolocate.exceptions import (
    FingerprintingError,
    LockedError,
    NotReadyError,
    NumericalError,
)
from radiolocate.rf.listeners import EstimatorListener
from radiolocate.rf.power import (
    DEFAULT_PATH_LOSS_EXPONENT,
    dbm_to_power,
    free_space_constant,
    power_to_dbm,
)
from radiolocate.rf.readings import RssiReadingLocated
from radiolocate.rf.sources import RadioSourceWithPowerAndLocated
from radiolocate.rf.state import EstimatorState
from radiolocate.utils.geometry import check_observation_geometry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreeSpacePowerAndPositionModel:
    """
    Free-space received power model with position and power as unknowns.

    Attributes:
        dims: Number of position coordinates (2 or 3).
        frequency: Carrier frequency of the emitter in Hz.
        min_sqr_distance: Floor applied to squared distances (m²).

    Example:
        >>> model = FreeSpacePowerAndPositionModel(2, 2.412e9)
        >>> points = np.array([[0.0, 0.0], [10.0, 0.0]])
        >>> params = np.array([5.0, 0.0, 20.0])  # [x, y, Pte]
        >>> model.predict(points, params)   # both 5 m away
        >>> model.jacobian(points, params).shape
        (2, 3)
    """

    dims: int
    frequency: float
    min_sqr_distance: float = MIN_SQR_DISTANCE

    def __post_init__(self) -> None:
        if self.dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {self.dims}")
        if self.min_sqr_distance <= 0:
            raise ValueError(
                f"min_sqr_distance must be positive, got {self.min_sqr_distance}"
            )
        # validates frequency
        free_space_constant(self.frequency)

    @property
    def n_params(self) -> int:
        return self.dims + 1

    @property
    def k_db(self) -> float:
        """10*log10(k), the constant term of the model in dB."""
        return float(10.0 * np.log10(free_space_constant(self.frequency)))

    def sqr_distances(self, points: np.ndarray, params: np.ndarray) -> np.ndarray:
        """Floored squared distances between the emitter and each point."""
        diff = params[: self.dims] - points[:, : self.dims]
        return np.maximum(np.sum(diff**2, axis=1), self.min_sqr_distance)

    def predict(self, points: np.ndarray, params: np.ndarray) -> np.ndarray:
        """Predicted RSSI (dBm) at each point, shape (N,)."""
        sqr_distance = self.sqr_distances(points, params)
        return self.k_db + params[self.dims] - 10.0 * np.log10(sqr_distance)

    def jacobian(self, points: np.ndarray, params: np.ndarray) -> np.ndarray:
        """Jacobian of predict() with respect to params, shape (N, dims + 1)."""
        diff = params[: self.dims] - points[:, : self.dims]
        sqr_distance = self.sqr_distances(points, params)

        J = np.empty((len(points), self.n_params))
        J[:, : self.dims] = -20.0 * diff / (np.log(10.0) * sqr_distance[:, np.newaxis])
        J[:, self.dims] = 1.0
        return J


class RadioSourcePowerAndPositionEstimator:
    """
    Estimate position and transmitted power of one radio source.

    Configure readings (and optionally initial values), call estimate(),
    then read the results. An instance runs at most one estimation at a
    time; any state-mutating call during a solve raises LockedError.

    Args:
        dims: Number of spatial dimensions (2 or 3).
        readings: RSSI readings of a single source at known receiver
            positions. At least dims + 1 are required.
        initial_position: Initial emitter position. Defaults to the
            centroid of the receiver positions.
        initial_transmitted_power_dbm: Initial Pte in dBm. Defaults to the
            mean RSSI of the readings.
        listener: Optional lifecycle listener.
        config: Solver settings. Defaults to SolverConfig().

    Raises:
        ValueError: If readings are given but invalid.

    Example:
        >>> estimator = RadioSourcePowerAndPositionEstimator2D(readings)
        >>> estimator.estimate()
        >>> estimator.estimated_position, estimator.estimated_transmitted_power_dbm
    """

    def __init__(
        self,
        dims: int,
        readings: Optional[Sequence[RssiReadingLocated]] = None,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        listener: Optional[EstimatorListener] = None,
        config: Optional[SolverConfig] = None,
    ):
        if dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {dims}")
        self._dims = dims
        self._readings: Optional[List[RssiReadingLocated]] = None
        self._initial_position: Optional[np.ndarray] = None
        self._initial_transmitted_power_dbm: Optional[float] = None
        self._listener = listener
        self._config = config if config is not None else SolverConfig()

        self._state = EstimatorState.IDLE
        self._state_lock = threading.Lock()

        self._clear_results()

        if readings is not None:
            self._internal_set_readings(readings)
        self._initial_position = self._validate_initial_position(initial_position)
        self._initial_transmitted_power_dbm = initial_transmitted_power_dbm

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def min_readings(self) -> int:
        return self._dims + 1

    @property
    def state(self) -> EstimatorState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state is EstimatorState.RUNNING

    @property
    def readings(self) -> Optional[List[RssiReadingLocated]]:
        return None if self._readings is None else list(self._readings)

    @readings.setter
    def readings(self, readings: Sequence[RssiReadingLocated]) -> None:
        self._check_not_locked()
        self._internal_set_readings(readings)

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        return None if self._initial_position is None else self._initial_position.copy()

    @initial_position.setter
    def initial_position(self, initial_position: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        self._initial_position = self._validate_initial_position(initial_position)

    @property
    def initial_transmitted_power_dbm(self) -> Optional[float]:
        return self._initial_transmitted_power_dbm

    @initial_transmitted_power_dbm.setter
    def initial_transmitted_power_dbm(self, value: Optional[float]) -> None:
        self._check_not_locked()
        self._initial_transmitted_power_dbm = value

    @property
    def initial_transmitted_power(self) -> Optional[float]:
        """
        Initial transmitted power in mW, or None.

        Setting it requires a strictly positive value: 0 mW has no finite
        dBm equivalent to start the fit from.
        """
        if self._initial_transmitted_power_dbm is None:
            return None
        return dbm_to_power(self._initial_transmitted_power_dbm)

    @initial_transmitted_power.setter
    def initial_transmitted_power(self, value: Optional[float]) -> None:
        self._check_not_locked()
        if value is None:
            self._initial_transmitted_power_dbm = None
            return
        if value <= 0.0:
            raise ValueError(f"Initial transmitted power must be positive, got {value} mW")
        self._initial_transmitted_power_dbm = power_to_dbm(value)

    @property
    def listener(self) -> Optional[EstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[EstimatorListener]) -> None:
        self._check_not_locked()
        self._listener = listener

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
    def path_loss_exponent(self) -> float:
        """Path-loss exponent of the model (fixed, free space)."""
        return DEFAULT_PATH_LOSS_EXPONENT

    def are_valid_readings(self, readings: Optional[Sequence[RssiReadingLocated]]) -> bool:
        """Check whether readings could be used by this estimator."""
        return readings is not None and len(readings) >= self.min_readings

    @property
    def is_ready(self) -> bool:
        return self.are_valid_readings(self._readings)

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def build_model(self) -> FreeSpacePowerAndPositionModel:
        """Model for the configured readings (all share one source frequency)."""
        if not self.is_ready:
            raise NotReadyError()
        return FreeSpacePowerAndPositionModel(
            dims=self._dims,
            frequency=self._readings[0].source.frequency,
            min_sqr_distance=self._config.min_sqr_distance,
        )

    def initial_parameters(self) -> np.ndarray:
        """Initial parameter vector [position..., Pte]."""
        if not self.is_ready:
            raise NotReadyError()
        initial = np.empty(self._dims + 1)
        if self._initial_position is None:
            initial[: self._dims] = np.mean(self._receiver_positions(), axis=0)
        else:
            initial[: self._dims] = self._initial_position
        initial[: self._dims] = self._move_off_receivers(initial[: self._dims])
        initial[self._dims] = self._compute_initial_transmitted_power_dbm()
        return initial

    def build_regression_input(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Regression samples of the fit.

        Returns:
            Tuple (X, y, sigmas):
                X: (N, dims + 1) rows [receiver position..., initial Pte]
                y: (N,) observed RSSI in dBm
                sigmas: (N,) RSSI standard deviations in dB
        """
        if not self.is_ready:
            raise NotReadyError()
        n = len(self._readings)
        X = np.empty((n, self._dims + 1))
        X[:, : self._dims] = self._receiver_positions()
        X[:, self._dims] = self._compute_initial_transmitted_power_dbm()

        y = np.array([reading.rssi for reading in self._readings], dtype=float)
        sigmas = np.array(
            [
                reading.rssi_std
                if reading.rssi_std is not None
                else self._config.default_rssi_std
                for reading in self._readings
            ],
            dtype=float,
        )
        return X, y, sigmas

    def estimate(self) -> None:
        """
        Estimate position and transmitted power of the source.

        Raises:
            LockedError: If an estimation is already in progress.
            NotReadyError: If fewer than dims + 1 readings are set.
            FingerprintingError: If the fit fails numerically (singular
                system, non-finite values, no convergence). The solver
                error is chained as __cause__.
        """
        with self._state_lock:
            if self.is_locked:
                raise LockedError()
            if not self.is_ready:
                raise NotReadyError(
                    f"At least {self.min_readings} readings are required, "
                    f"got {0 if self._readings is None else len(self._readings)}"
                )
            self._state = EstimatorState.RUNNING

        try:
            self._clear_results()
            if self._listener is not None:
                self._listener.on_estimate_start(self)

            self._fit()

            if self._listener is not None:
                self._listener.on_estimate_end(self)
        finally:
            self._state = EstimatorState.IDLE

    def _fit(self) -> None:
        model = self.build_model()
        X, y, sigmas = self.build_regression_input()
        points = X[:, : self._dims]
        x0 = self.initial_parameters()

        check_observation_geometry(points)

        config = self._config
        logger.debug(
            "Fitting %dD source position and power from %d readings (method=%s)",
            self._dims, len(y), config.method,
        )
        try:
            result = solve_nonlinear_ls(
                h=lambda params: model.predict(points, params),
                jacobian=lambda params: model.jacobian(points, params),
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
        except NumericalError as e:
            logger.warning("Source power and position fit failed: %s", e)
            raise FingerprintingError(f"Power and position fit failed: {e}") from e

        if not np.all(np.isfinite(result.x)):
            raise FingerprintingError("Power and position fit produced non-finite parameters")

        self._estimated_position_coordinates = result.x[: self._dims].copy()
        self._estimated_transmitted_power_dbm = float(result.x[self._dims])
        self._estimated_covariance = result.covariance
        self._chi_sq = result.chi2
        self._n_readings_used = len(y)
        self._estimated_radio_source = self._readings[0].source

        logger.debug(
            "Fit converged in %d iterations: position=%s, power=%.2f dBm, chi2=%.3g",
            result.iterations,
            self._estimated_position_coordinates,
            self._estimated_transmitted_power_dbm,
            self._chi_sq,
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def estimated_position_coordinates(self) -> Optional[np.ndarray]:
        if self._estimated_position_coordinates is None:
            return None
        return self._estimated_position_coordinates.copy()

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        """Estimated source position as a new array, or None."""
        return self.estimated_position_coordinates

    @property
    def estimated_transmitted_power_dbm(self) -> Optional[float]:
        return self._estimated_transmitted_power_dbm

    @property
    def estimated_transmitted_power(self) -> Optional[float]:
        """Estimated transmitted power in mW, or None."""
        if self._estimated_transmitted_power_dbm is None:
            return None
        return dbm_to_power(self._estimated_transmitted_power_dbm)

    @property
    def estimated_covariance(self) -> Optional[np.ndarray]:
        """Covariance of [position..., Pte], shape (dims + 1, dims + 1)."""
        if self._estimated_covariance is None:
            return None
        return self._estimated_covariance.copy()

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        """Leading dims × dims block of the covariance."""
        if self._estimated_covariance is None:
            return None
        return self._estimated_covariance[: self._dims, : self._dims].copy()

    @property
    def estimated_transmitted_power_variance(self) -> float:
        """Variance of Pte in dB², 0.0 before a successful estimate."""
        if self._estimated_covariance is None:
            return 0.0
        return float(self._estimated_covariance[self._dims, self._dims])

    @property
    def chi_sq(self) -> float:
        return self._chi_sq

    @property
    def chi_sq_p_value(self) -> Optional[float]:
        """
        Goodness of fit: P(χ² ≥ chi_sq) with N - (dims + 1) degrees of freedom.

        None before a successful estimate or when the fit has no redundancy.
        """
        if self._n_readings_used is None:
            return None
        dof = self._n_readings_used - (self._dims + 1)
        if dof <= 0:
            return None
        return float(stats.chi2.sf(self._chi_sq, dof))

    def estimated_source(self) -> Optional[RadioSourceWithPowerAndLocated]:
        """Estimated source as a located source with power, or None."""
        if self._estimated_position_coordinates is None:
            return None
        return RadioSourceWithPowerAndLocated(
            source=self._estimated_radio_source,
            position=self._estimated_position_coordinates,
            position_covariance=self.estimated_position_covariance,
            transmitted_power_dbm=self._estimated_transmitted_power_dbm,
            transmitted_power_std_dbm=float(
                np.sqrt(max(self.estimated_transmitted_power_variance, 0.0))
            ),
            path_loss_exponent=self.path_loss_exponent,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _clear_results(self) -> None:
        self._estimated_position_coordinates: Optional[np.ndarray] = None
        self._estimated_transmitted_power_dbm: Optional[float] = None
        self._estimated_covariance: Optional[np.ndarray] = None
        self._chi_sq = 0.0
        self._n_readings_used: Optional[int] = None
        self._estimated_radio_source = None

    def _receiver_positions(self) -> np.ndarray:
        return np.array([reading.position for reading in self._readings], dtype=float)

    def _move_off_receivers(self, position: np.ndarray) -> np.ndarray:
        points = self._receiver_positions()
        spread = float(np.sqrt(np.mean(np.sum((points - points.mean(axis=0)) ** 2, axis=1))))
        scale = spread if spread > 0.0 else 1.0
        if np.min(np.sum((points - position) ** 2, axis=1)) > (1e-3 * scale) ** 2:
            return position

        moved = position + 0.1 * scale / np.sqrt(self._dims)
        logger.debug("Initial position %s lies on a receiver, starting from %s", position, moved)
        return moved

    def _compute_initial_transmitted_power_dbm(self) -> float:
        if self._initial_transmitted_power_dbm is not None:
            return float(self._initial_transmitted_power_dbm)
        return float(np.mean([reading.rssi for reading in self._readings]))

    def _validate_initial_position(self, position) -> Optional[np.ndarray]:
        if position is None:
            return None
        position = np.array(position, dtype=float)
        if position.shape != (self._dims,):
            raise ValueError(
                f"initial_position must have shape ({self._dims},), got {position.shape}"
            )
        return position

    def _internal_set_readings(self, readings: Sequence[RssiReadingLocated]) -> None:
        if readings is None:
            raise ValueError("readings must not be None")
        readings = list(readings)
        if not self.are_valid_readings(readings):
            raise ValueError(
                f"At least {self.min_readings} readings are required for "
                f"{self._dims}D estimation, got {len(readings)}"
            )
        first = readings[0]
        for reading in readings:
            if not isinstance(reading, RssiReadingLocated):
                raise ValueError(
                    f"readings must be RssiReadingLocated, got {type(reading).__name__}"
                )
            if reading.dims != self._dims:
                raise ValueError(
                    f"Reading position is {reading.dims}D, expected {self._dims}D"
                )
            if not reading.has_same_source(first):
                raise ValueError(
                    "All readings must belong to the same radio source, got "
                    f"{first.source.identifier!r} and {reading.source.identifier!r}"
                )
        self._readings = readings

    def _check_not_locked(self) -> None:
        if self.is_locked:
            raise LockedError()


class RadioSourcePowerAndPositionEstimator2D(RadioSourcePowerAndPositionEstimator):
    """Joint power and position estimator in the plane (at least 3 readings)."""

    def __init__(
        self,
        readings=None,
        initial_position=None,
        initial_transmitted_power_dbm=None,
        listener=None,
        config=None,
    ):
        super().__init__(
            2, readings, initial_position, initial_transmitted_power_dbm, listener, config
        )


class RadioSourcePowerAndPositionEstimator3D(RadioSourcePowerAndPositionEstimator):
    """Joint power and position estimator in space (at least 4 readings)."""

    def __init__(
        self,
        readings=None,
        initial_position=None,
        initial_transmitted_power_dbm=None,
        listener=None,
        config=None,
    ):
        super().__init__(
            3, readings, initial_position, initial_transmitted_power_dbm, listener, config
        )
