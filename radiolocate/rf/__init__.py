"""
RF (Radio Frequency) positioning module.

Radio sources, signal readings and fingerprints, and the estimators that
locate receivers and emitters from them.

Submodules:
    power: Power units and the free-space path-loss model
    sources: Radio source identities and located sources
    readings: RSSI and ranging readings
    fingerprints: Fingerprints and the RSSI signal-space distance
    trilateration: Linear least squares trilateration solver
    position_estimator: Receiver position from located sources (linear and
        nonlinear range fit)
    power_and_position: Joint emitter position and transmitted power fit
"""

from radiolocate.rf.fingerprints import (
    MAX_DISTANCE,
    Fingerprint,
    RssiFingerprint,
    RssiFingerprintLocated,
)
from radiolocate.rf.listeners import EstimatorListener, TrilaterationSolverListener
from radiolocate.rf.position_estimator import (
    DEFAULT_DISTANCE_STANDARD_DEVIATION,
    LinearPositionEstimator,
    LinearPositionEstimator2D,
    LinearPositionEstimator3D,
    NonLinearPositionEstimator,
    NonLinearPositionEstimator2D,
    NonLinearPositionEstimator3D,
    PositionEstimator,
    default_distance_function,
)
from radiolocate.rf.power import (
    DEFAULT_PATH_LOSS_EXPONENT,
    SPEED_OF_LIGHT,
    dbm_to_power,
    distance_from_rssi,
    free_space_constant,
    power_to_dbm,
    received_power_dbm,
)
from radiolocate.rf.power_and_position import (
    FreeSpacePowerAndPositionModel,
    RadioSourcePowerAndPositionEstimator,
    RadioSourcePowerAndPositionEstimator2D,
    RadioSourcePowerAndPositionEstimator3D,
)
from radiolocate.rf.readings import (
    RangingReading,
    RangingReadingLocated,
    Reading,
    ReadingType,
    RssiReading,
    RssiReadingLocated,
)
from radiolocate.rf.sources import (
    DEFAULT_WIFI_FREQUENCY,
    RadioSource,
    RadioSourceLocated,
    RadioSourceType,
    RadioSourceWithPowerAndLocated,
    WifiAccessPoint,
)
from radiolocate.rf.state import EstimatorState
from radiolocate.rf.trilateration import (
    LinearLeastSquaresTrilateration2DSolver,
    LinearLeastSquaresTrilateration3DSolver,
    LinearLeastSquaresTrilaterationSolver,
)

__all__ = [
    # Power
    "SPEED_OF_LIGHT",
    "DEFAULT_PATH_LOSS_EXPONENT",
    "dbm_to_power",
    "power_to_dbm",
    "free_space_constant",
    "received_power_dbm",
    "distance_from_rssi",
    # Sources
    "DEFAULT_WIFI_FREQUENCY",
    "RadioSourceType",
    "RadioSource",
    "WifiAccessPoint",
    "RadioSourceLocated",
    "RadioSourceWithPowerAndLocated",
    # Readings and fingerprints
    "ReadingType",
    "Reading",
    "RssiReading",
    "RangingReading",
    "RssiReadingLocated",
    "RangingReadingLocated",
    "MAX_DISTANCE",
    "Fingerprint",
    "RssiFingerprint",
    "RssiFingerprintLocated",
    # Estimators
    "EstimatorState",
    "EstimatorListener",
    "TrilaterationSolverListener",
    "LinearLeastSquaresTrilaterationSolver",
    "LinearLeastSquaresTrilateration2DSolver",
    "LinearLeastSquaresTrilateration3DSolver",
    "default_distance_function",
    "DEFAULT_DISTANCE_STANDARD_DEVIATION",
    "PositionEstimator",
    "LinearPositionEstimator",
    "LinearPositionEstimator2D",
    "LinearPositionEstimator3D",
    "NonLinearPositionEstimator",
    "NonLinearPositionEstimator2D",
    "NonLinearPositionEstimator3D",
    "FreeSpacePowerAndPositionModel",
    "RadioSourcePowerAndPositionEstimator",
    "RadioSourcePowerAndPositionEstimator2D",
    "RadioSourcePowerAndPositionEstimator3D",
]
