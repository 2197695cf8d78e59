"""Radio source types.

A radio source is the identity of an emitter (e.g. a Wi-Fi access point or a
BLE beacon) together with its carrier frequency. Located variants pair a
source with a known position, and the "with power" variant adds the
equivalent transmitted power estimated for it.

Positions are coordinate vectors of shape (d,), d=2 or d=3.

Author: Navigation Engineer
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from radiolocate.rf.power import DEFAULT_PATH_LOSS_EXPONENT, dbm_to_power

# 2.4 GHz Wi-Fi channel 1
DEFAULT_WIFI_FREQUENCY = 2.412e9  # Hz


class RadioSourceType(Enum):
    """Kind of radio source."""

    WIFI_ACCESS_POINT = "wifi_access_point"
    BEACON = "beacon"


def _as_position(position) -> np.ndarray:
    """Validate a 2D/3D position and return it as a read-only float array."""
    if position is None:
        raise ValueError("position must not be None")
    position = np.array(position, dtype=float)
    if position.ndim != 1 or position.shape[0] not in (2, 3):
        raise ValueError(
            f"position must have shape (2,) or (3,), got {position.shape}"
        )
    position.flags.writeable = False
    return position


def _as_position_covariance(covariance, dims: int) -> Optional[np.ndarray]:
    if covariance is None:
        return None
    covariance = np.array(covariance, dtype=float)
    if covariance.shape != (dims, dims):
        raise ValueError(
            f"position_covariance must have shape ({dims}, {dims}), "
            f"got {covariance.shape}"
        )
    covariance.flags.writeable = False
    return covariance


@dataclass(frozen=True)
class RadioSource:
    """
    Identity of a radio emitter.

    Two sources are the same emitter when their type and identifier match;
    frequency is an attribute, not part of the identity.

    Attributes:
        identifier: Unique identifier (e.g. MAC address / BSSID).
        frequency: Carrier frequency in Hz.
        source_type: Kind of emitter.
    """

    identifier: str
    frequency: float
    source_type: RadioSourceType = RadioSourceType.WIFI_ACCESS_POINT

    def __post_init__(self) -> None:
        if not isinstance(self.identifier, str) or not self.identifier:
            raise ValueError(f"identifier must be a non-empty string, got {self.identifier!r}")
        if self.frequency <= 0:
            raise ValueError(f"frequency must be positive, got {self.frequency}")

    def same_identity(self, other: Optional["RadioSource"]) -> bool:
        """Check whether other refers to the same emitter."""
        if other is None:
            return False
        return (
            self.source_type == other.source_type
            and self.identifier == other.identifier
        )


@dataclass(frozen=True)
class WifiAccessPoint(RadioSource):
    """
    Wi-Fi access point identified by its BSSID.

    Example:
        >>> ap = WifiAccessPoint("00:11:22:33:44:55", 2.412e9, ssid="office")
        >>> ap.bssid
        '00:11:22:33:44:55'
    """

    source_type: RadioSourceType = field(
        default=RadioSourceType.WIFI_ACCESS_POINT, init=False
    )
    ssid: Optional[str] = None

    @property
    def bssid(self) -> str:
        return self.identifier


@dataclass(frozen=True, eq=False)
class RadioSourceLocated:
    """
    Radio source with a known position.

    Attributes:
        source: The emitter.
        position: Emitter position, shape (2,) or (3,).
        position_covariance: Optional position covariance, shape (d, d).
    """

    source: RadioSource
    position: np.ndarray
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if self.source is None:
            raise ValueError("source must not be None")
        position = _as_position(self.position)
        object.__setattr__(self, "position", position)
        object.__setattr__(
            self,
            "position_covariance",
            _as_position_covariance(self.position_covariance, len(position)),
        )

    @property
    def dims(self) -> int:
        return len(self.position)

    @property
    def frequency(self) -> float:
        return self.source.frequency

    def same_identity(self, other) -> bool:
        """Compare against a RadioSource or another located source."""
        if isinstance(other, RadioSourceLocated):
            other = other.source
        return self.source.same_identity(other)


@dataclass(frozen=True, eq=False)
class RadioSourceWithPowerAndLocated(RadioSourceLocated):
    """
    Located radio source with known equivalent transmitted power.

    Attributes:
        transmitted_power_dbm: Equivalent transmitted power Pte in dBm.
        transmitted_power_std_dbm: Optional standard deviation of Pte in dB.
        path_loss_exponent: Path-loss exponent (2.0 in free space).
    """

    transmitted_power_dbm: float = 0.0
    transmitted_power_std_dbm: Optional[float] = None
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.transmitted_power_std_dbm is not None and self.transmitted_power_std_dbm < 0:
            raise ValueError(
                f"transmitted_power_std_dbm must be non-negative, "
                f"got {self.transmitted_power_std_dbm}"
            )
        if self.path_loss_exponent <= 0:
            raise ValueError(
                f"path_loss_exponent must be positive, got {self.path_loss_exponent}"
            )

    @property
    def transmitted_power(self) -> float:
        """Equivalent transmitted power in mW."""
        return dbm_to_power(self.transmitted_power_dbm)
