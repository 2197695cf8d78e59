"""Fingerprints: readings captured together at one location.

The RSSI fingerprint distance compares two fingerprints over the radio
sources they have in common:

    D²(a, b) = Σ_i Σ_j [src(a_i) == src(b_j)] * (rssi(a_i) - rssi(b_j))²
    D(a, b)  = sqrt(D²(a, b))

When the other fingerprint is missing or no source matches, the fingerprints
are incomparable and MAX_DISTANCE is returned instead of raising, so callers
can rank candidates without special cases.

Author: Navigation Engineer
"""

import sys
from typing import Iterable, Optional, Tuple

import numpy as np

from radiolocate.rf.readings import Reading, RssiReading
from radiolocate.rf.sources import _as_position, _as_position_covariance

# Sentinel for incomparable fingerprints
MAX_DISTANCE = sys.float_info.max


class Fingerprint:
    """
    Ordered, immutable collection of readings captured at one location.

    Duplicate sources are tolerated and kept; reading order is preserved.

    Attributes:
        readings: Tuple of readings.
    """

    def __init__(self, readings: Iterable[Reading] = ()):
        if readings is None:
            raise ValueError("readings must not be None")
        readings = tuple(readings)
        if any(reading is None for reading in readings):
            raise ValueError("readings must not contain None")
        self._readings: Tuple[Reading, ...] = readings

    @property
    def readings(self) -> Tuple[Reading, ...]:
        return self._readings

    def __len__(self) -> int:
        return len(self._readings)

    def __iter__(self):
        return iter(self._readings)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_readings={len(self._readings)})"


class RssiFingerprint(Fingerprint):
    """
    Fingerprint of RSSI readings with a signal-space distance.

    Example:
        >>> ap1 = WifiAccessPoint("ap-1", 2.412e9)
        >>> ap2 = WifiAccessPoint("ap-2", 2.437e9)
        >>> a = RssiFingerprint([RssiReading(ap1, -50.0), RssiReading(ap2, -70.0)])
        >>> b = RssiFingerprint([RssiReading(ap1, -53.0), RssiReading(ap2, -66.0)])
        >>> a.sqr_distance_to(b)
        25.0
        >>> a.distance_to(b)
        5.0
    """

    def __init__(self, readings: Iterable[RssiReading] = ()):
        super().__init__(readings)
        for reading in self._readings:
            if not isinstance(reading, RssiReading):
                raise ValueError(
                    f"RssiFingerprint only accepts RssiReading, got {type(reading).__name__}"
                )

    def distance_to(self, other: Optional["RssiFingerprint"]) -> float:
        """
        Euclidean signal-space distance to another fingerprint.

        Returns:
            sqrt(sqr_distance_to(other)). For incomparable fingerprints this
            is sqrt(MAX_DISTANCE).
        """
        return float(np.sqrt(self.sqr_distance_to(other)))

    def sqr_distance_to(self, other: Optional["RssiFingerprint"]) -> float:
        """
        Sum of squared RSSI differences over matching sources.

        Every pair of readings sharing a source contributes, so duplicated
        sources are counted once per pairing.

        Returns:
            Non-negative squared distance, or MAX_DISTANCE if other is None
            or no source matches.
        """
        if other is None:
            return MAX_DISTANCE

        n_matches = 0
        result = 0.0
        for reading in self._readings:
            for other_reading in other.readings:
                if reading.has_same_source(other_reading):
                    diff = reading.rssi - other_reading.rssi
                    result += diff * diff
                    n_matches += 1

        if n_matches == 0:
            return MAX_DISTANCE
        return result


class RssiFingerprintLocated(RssiFingerprint):
    """
    RSSI fingerprint captured at a known position.

    Attributes:
        position: Capture position, shape (2,) or (3,).
        position_covariance: Optional position covariance (d × d).
    """

    def __init__(
        self,
        readings: Iterable[RssiReading],
        position,
        position_covariance=None,
    ):
        super().__init__(readings)
        self._position = _as_position(position)
        self._position_covariance = _as_position_covariance(
            position_covariance, len(self._position)
        )

    @property
    def position(self) -> np.ndarray:
        return self._position

    @property
    def position_covariance(self) -> Optional[np.ndarray]:
        return self._position_covariance
