"""Unit tests for radiolocate.rf.power (units and free-space model)."""

import numpy as np
import pytest

from radiolocate.rf.power import (
    SPEED_OF_LIGHT,
    dbm_to_power,
    distance_from_rssi,
    free_space_constant,
    power_to_dbm,
    received_power_dbm,
)


class TestPowerUnits:
    """Test dBm <-> mW conversions."""

    def test_known_values(self):
        assert dbm_to_power(0.0) == pytest.approx(1.0)
        assert dbm_to_power(20.0) == pytest.approx(100.0)
        assert dbm_to_power(-30.0) == pytest.approx(1e-3)
        assert power_to_dbm(1.0) == pytest.approx(0.0)
        assert power_to_dbm(100.0) == pytest.approx(20.0)

    @pytest.mark.parametrize("dbm", [-95.5, -60.0, 0.0, 13.7, 30.0])
    def test_round_trip(self, dbm):
        assert power_to_dbm(dbm_to_power(dbm)) == pytest.approx(dbm, abs=1e-12)

    def test_negative_power_raises(self):
        with pytest.raises(ValueError):
            power_to_dbm(-1.0)

    def test_zero_power_is_minus_infinity(self):
        assert power_to_dbm(0.0) == float("-inf")


class TestFreeSpaceModel:
    """Test the Friis constant and its inversion."""

    def test_free_space_constant(self):
        frequency = 2.4e9
        expected = (SPEED_OF_LIGHT / (4.0 * np.pi * frequency)) ** 2

        assert free_space_constant(frequency) == pytest.approx(expected)

    @pytest.mark.parametrize("frequency", [0.0, -2.4e9])
    def test_non_positive_frequency_raises(self, frequency):
        with pytest.raises(ValueError):
            free_space_constant(frequency)

    def test_received_power_at_10m(self):
        """20 dBm at 2.4 GHz received 10 m away."""
        assert received_power_dbm(20.0, 100.0, 2.4e9) == pytest.approx(-40.05, abs=0.01)

    def test_received_power_drops_6db_per_doubling(self):
        near = received_power_dbm(0.0, 5.0**2, 2.412e9)
        far = received_power_dbm(0.0, 10.0**2, 2.412e9)

        assert near - far == pytest.approx(20.0 * np.log10(2.0))

    def test_received_power_vectorized(self):
        sqr_distances = np.array([1.0, 4.0, 9.0])

        rssi = received_power_dbm(10.0, sqr_distances, 2.412e9)

        assert rssi.shape == (3,)
        assert np.all(np.diff(rssi) < 0)

    @pytest.mark.parametrize("distance", [0.5, 3.0, 7.5, 42.0])
    def test_distance_from_rssi_inverts_model(self, distance):
        rssi = received_power_dbm(15.0, distance**2, 2.437e9)

        assert distance_from_rssi(rssi, 15.0, 2.437e9) == pytest.approx(distance)

    def test_distance_from_rssi_with_path_loss_exponent(self):
        """With n = 4 a 20 dB loss beyond the 1 m reference means 10^(20/40) m."""
        k_db = 10.0 * np.log10(free_space_constant(2.412e9))
        rssi = k_db + 0.0 - 20.0

        distance = distance_from_rssi(rssi, 0.0, 2.412e9, path_loss_exponent=4.0)

        assert distance == pytest.approx(10.0 ** 0.5)

    def test_invalid_path_loss_exponent_raises(self):
        with pytest.raises(ValueError):
            distance_from_rssi(-60.0, 0.0, 2.412e9, path_loss_exponent=0.0)
