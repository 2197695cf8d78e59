"""Unit tests for the nonlinear (range fit) position estimator."""

import threading

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiolocate.config import SolverConfig
from radiolocate.exceptions import LockedError, NotReadyError
from radiolocate.rf.fingerprints import Fingerprint, RssiFingerprint
from radiolocate.rf.listeners import EstimatorListener
from radiolocate.rf.position_estimator import (
    NonLinearPositionEstimator,
    NonLinearPositionEstimator2D,
    NonLinearPositionEstimator3D,
)
from radiolocate.rf.power import received_power_dbm
from radiolocate.rf.readings import RangingReading, RssiReading
from radiolocate.rf.sources import (
    RadioSourceLocated,
    RadioSourceWithPowerAndLocated,
    WifiAccessPoint,
)
from radiolocate.rf.state import EstimatorState

FREQUENCY = 2.412e9

SOURCE_POSITIONS_3D = np.array(
    [
        [0, 0, 3], [20, 0, 2.5], [0, 15, 0], [20, 15, 0.5],
        [10, 7, 3.5], [5, 12, 1], [15, 3, 0], [10, 15, 3],
    ],
    dtype=float,
)


def _located_sources(positions):
    return [
        RadioSourceLocated(WifiAccessPoint(f"ap-{i}", FREQUENCY), position)
        for i, position in enumerate(positions)
    ]


def _ranging_fingerprint(sources, position, noise_std=0.0, rng=None, distance_std=None):
    readings = []
    for source in sources:
        distance = float(np.linalg.norm(source.position - position))
        if noise_std > 0.0:
            distance = max(distance + rng.normal(0.0, noise_std), 0.0)
        readings.append(RangingReading(source.source, distance, distance_std=distance_std))
    return Fingerprint(readings)


class TestNoiselessRoundTrip:
    """Test exact recovery of the receiver position."""

    def test_ranging_3d(self):
        sources = _located_sources(SOURCE_POSITIONS_3D)
        true_pos = np.array([7.0, 5.0, 1.2])

        estimator = NonLinearPositionEstimator3D(sources, _ranging_fingerprint(sources, true_pos))
        position = estimator.estimate()

        assert_allclose(position, true_pos, atol=1e-6)
        assert_allclose(estimator.estimated_position, true_pos, atol=1e-6)
        assert estimator.chi_sq == pytest.approx(0.0, abs=1e-10)
        assert estimator.estimated_covariance.shape == (3, 3)
        assert estimator.state is EstimatorState.IDLE

    def test_rssi_2d(self):
        sources = [
            RadioSourceWithPowerAndLocated(
                WifiAccessPoint(f"ap-{i}", FREQUENCY), position, transmitted_power_dbm=15.0
            )
            for i, position in enumerate([[0, 0], [10, 0], [0, 10], [10, 10], [5, -4]])
        ]
        true_pos = np.array([2.5, 6.0])
        fingerprint = RssiFingerprint(
            [
                RssiReading(
                    s.source,
                    received_power_dbm(15.0, np.sum((s.position - true_pos) ** 2), FREQUENCY),
                )
                for s in sources
            ]
        )

        estimator = NonLinearPositionEstimator2D(sources, fingerprint)

        assert estimator.min_required_sources == 3
        assert_allclose(estimator.estimate(), true_pos, atol=1e-6)

    def test_distant_initial_position(self):
        sources = _located_sources(SOURCE_POSITIONS_3D)
        true_pos = np.array([7.0, 5.0, 1.2])

        estimator = NonLinearPositionEstimator3D(
            sources,
            _ranging_fingerprint(sources, true_pos),
            initial_position=[14.0, 11.0, 2.0],
        )

        assert_allclose(estimator.initial_position, [14.0, 11.0, 2.0])
        assert_allclose(estimator.estimate(), true_pos, atol=1e-6)

    def test_gauss_newton_config(self):
        sources = _located_sources(SOURCE_POSITIONS_3D)
        true_pos = np.array([12.0, 9.0, 2.0])

        estimator = NonLinearPositionEstimator3D(
            sources, _ranging_fingerprint(sources, true_pos), config=SolverConfig(method="gn")
        )

        assert_allclose(estimator.estimate(), true_pos, atol=1e-6)


class TestCovariance:
    """Test the weighted fit statistics."""

    def test_noisy_ranging(self):
        rng = np.random.default_rng(7)
        sources = _located_sources(SOURCE_POSITIONS_3D)
        true_pos = np.array([7.0, 5.0, 1.2])
        fingerprint = _ranging_fingerprint(sources, true_pos, 0.05, rng, distance_std=0.05)

        estimator = NonLinearPositionEstimator3D(sources, fingerprint)
        position = estimator.estimate()
        covariance = estimator.estimated_covariance

        assert np.linalg.norm(position - true_pos) < 0.5
        assert_allclose(covariance, covariance.T, atol=1e-12)
        assert np.all(np.linalg.eigvalsh(covariance) > 0.0)
        assert np.all(np.sqrt(np.diag(covariance)) < 0.5)
        assert 0.0 < estimator.chi_sq < 30.0

    def test_covariance_scales_with_fallback_std(self):
        sources = _located_sources(SOURCE_POSITIONS_3D)
        fingerprint = _ranging_fingerprint(sources, np.array([7.0, 5.0, 1.2]))

        unit = NonLinearPositionEstimator3D(sources, fingerprint)
        unit.estimate()
        doubled = NonLinearPositionEstimator3D(sources, fingerprint, fallback_distance_std=2.0)
        doubled.estimate()

        assert_allclose(doubled.estimated_covariance, 4.0 * unit.estimated_covariance, rtol=1e-6)

    def test_distance_standard_deviations(self):
        ap = [WifiAccessPoint(f"ap-{i}", FREQUENCY) for i in range(4)]
        sources = [
            RadioSourceLocated(ap[0], [0.0, 0.0]),
            RadioSourceWithPowerAndLocated(ap[1], [10.0, 0.0], transmitted_power_dbm=20.0),
            RadioSourceLocated(ap[2], [0.0, 10.0]),
            RadioSourceWithPowerAndLocated(ap[3], [10.0, 10.0], transmitted_power_dbm=20.0),
        ]
        rssi = received_power_dbm(20.0, 25.0, FREQUENCY)
        fingerprint = Fingerprint(
            [
                RangingReading(ap[0], 3.0, distance_std=0.2),
                RssiReading(ap[1], rssi, rssi_std=2.0),
                RangingReading(ap[2], 4.0),
                RssiReading(ap[3], rssi),
            ]
        )

        estimator = NonLinearPositionEstimator2D(sources, fingerprint, fallback_distance_std=0.7)
        _, distances, stds = estimator.build_positions_distances_and_stds()

        assert_allclose(distances, [3.0, 5.0, 4.0, 5.0])
        assert_allclose(stds, [0.2, 5.0 * np.log(10.0) * 2.0 / 20.0, 0.7, 0.7])


class TestConfigurationAndLocking:
    """Test validation, listeners and locking."""

    def setup_method(self):
        self.sources = _located_sources(SOURCE_POSITIONS_3D)
        self.fingerprint = _ranging_fingerprint(self.sources, np.array([7.0, 5.0, 1.2]))

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            NonLinearPositionEstimator3D(self.sources, self.fingerprint, initial_position=[1.0, 2.0])
        with pytest.raises(ValueError):
            NonLinearPositionEstimator3D(self.sources, self.fingerprint, fallback_distance_std=0.0)
        with pytest.raises(ValueError):
            NonLinearPositionEstimator3D(self.sources[:3])

    def test_not_ready(self):
        estimator = NonLinearPositionEstimator(3, self.sources)

        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_results_are_none_before_estimate(self):
        estimator = NonLinearPositionEstimator3D(self.sources, self.fingerprint)

        assert estimator.estimated_position is None
        assert estimator.estimated_covariance is None

    def test_listener_events(self):
        events = []

        class Listener(EstimatorListener):
            def on_estimate_start(self, estimator):
                events.append(("start", estimator.is_locked))

            def on_estimate_end(self, estimator):
                events.append(("end", estimator.is_locked))

        estimator = NonLinearPositionEstimator3D(self.sources, self.fingerprint, listener=Listener())
        estimator.estimate()

        assert events == [("start", True), ("end", True)]
        assert not estimator.is_locked

    def test_reentrant_calls_are_locked(self):
        errors = []
        sources, fingerprint = self.sources, self.fingerprint

        class Listener(EstimatorListener):
            def on_estimate_start(self, estimator):
                for call in (
                    estimator.estimate,
                    lambda: setattr(estimator, "sources", sources),
                    lambda: setattr(estimator, "initial_position", None),
                    lambda: setattr(estimator, "config", SolverConfig()),
                    lambda: setattr(estimator, "fallback_distance_std", 2.0),
                ):
                    try:
                        call()
                    except LockedError as e:
                        errors.append(e)

        estimator = NonLinearPositionEstimator3D(sources, fingerprint, listener=Listener())
        estimator.estimate()

        assert len(errors) == 5

    def test_concurrent_calls_are_locked(self):
        started = threading.Event()
        release = threading.Event()

        class BlockingListener(EstimatorListener):
            def on_estimate_start(self, estimator):
                started.set()
                release.wait(timeout=10.0)

        estimator = NonLinearPositionEstimator3D(
            self.sources, self.fingerprint, listener=BlockingListener()
        )
        worker = threading.Thread(target=estimator.estimate)
        worker.start()
        try:
            assert started.wait(timeout=10.0)

            with pytest.raises(LockedError):
                estimator.estimate()
        finally:
            release.set()
            worker.join(timeout=10.0)

        assert not estimator.is_locked
        assert_allclose(estimator.estimated_position, [7.0, 5.0, 1.2], atol=1e-6)
