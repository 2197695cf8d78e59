"""Signal readings.

A reading ties one radio source to one scalar measurement. Readings match
each other when they reference the same source identity; measured values
never take part in matching.

Located readings also carry the known position of the receiver where the
measurement was taken (not the position of the source).

Author: Navigation Engineer
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from radiolocate.rf.sources import RadioSource, _as_position, _as_position_covariance


class ReadingType(Enum):
    """Kind of measurement carried by a reading."""

    RSSI_READING = "rssi"
    RANGING_READING = "ranging"


@dataclass(frozen=True, eq=False)
class Reading(ABC):
    """
    Base reading: association of a measurement with a radio source.

    Abstract; use RssiReading or RangingReading.

    Attributes:
        source: The radio source the measurement refers to.
    """

    source: RadioSource

    def __post_init__(self) -> None:
        if self.source is None:
            raise ValueError("source must not be None")

    @property
    @abstractmethod
    def reading_type(self) -> ReadingType:
        """Kind of measurement carried by this reading."""

    def has_same_source(self, other: Optional["Reading"]) -> bool:
        """Check whether other refers to the same radio source."""
        return other is not None and self.source.same_identity(other.source)


@dataclass(frozen=True, eq=False)
class RssiReading(Reading):
    """
    Received signal strength reading.

    Attributes:
        rssi: Received power in dBm.
        rssi_std: Optional standard deviation of rssi in dB. Must be
                  positive when given.

    Example:
        >>> ap = WifiAccessPoint("00:11:22:33:44:55", 2.412e9)
        >>> reading = RssiReading(ap, -62.5, rssi_std=2.0)
    """

    rssi: float = 0.0
    rssi_std: Optional[float] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.rssi_std is not None and self.rssi_std <= 0.0:
            raise ValueError(f"rssi_std must be positive, got {self.rssi_std}")

    @property
    def reading_type(self) -> ReadingType:
        return ReadingType.RSSI_READING


@dataclass(frozen=True, eq=False)
class RangingReading(Reading):
    """
    Distance reading (e.g. Wi-Fi RTT or UWB ranging).

    Attributes:
        distance: Measured distance to the source in meters.
        distance_std: Optional standard deviation of distance in meters.
    """

    distance: float = 0.0
    distance_std: Optional[float] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.distance < 0.0:
            raise ValueError(f"distance must be non-negative, got {self.distance}")
        if self.distance_std is not None and self.distance_std <= 0.0:
            raise ValueError(f"distance_std must be positive, got {self.distance_std}")

    @property
    def reading_type(self) -> ReadingType:
        return ReadingType.RANGING_READING


@dataclass(frozen=True, eq=False)
class RssiReadingLocated(RssiReading):
    """
    RSSI reading taken at a known receiver position.

    Attributes:
        position: Receiver position, shape (2,) or (3,). Required.
        position_covariance: Optional receiver position covariance (d × d).
    """

    position: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()
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


@dataclass(frozen=True, eq=False)
class RangingReadingLocated(RangingReading):
    """
    Ranging reading taken at a known receiver position.

    Attributes:
        position: Receiver position, shape (2,) or (3,). Required.
        position_covariance: Optional receiver position covariance (d × d).
    """

    position: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()
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
