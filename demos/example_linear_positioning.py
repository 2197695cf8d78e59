"""
Linear Receiver Positioning Example.

A receiver at an unknown position captures a fingerprint of readings from
access points whose positions (and transmitted powers) are known. Readings
are converted into distances and the receiver position is solved by linear
least squares trilateration.

Demonstrates:
    - RSSI -> distance with the free-space model
    - Ranging (RTT) readings used directly as distances
    - Nonlinear range fit refining the linear solution, with covariance
    - Ranking located reference fingerprints by RSSI signal-space distance

Usage:
    python -m demos.example_linear_positioning
"""

import argparse

import matplotlib.pyplot as plt
import numpy as np

from radiolocate.rf import (
    MAX_DISTANCE,
    DEFAULT_WIFI_FREQUENCY,
    Fingerprint,
    LinearPositionEstimator3D,
    NonLinearPositionEstimator3D,
    RadioSourceLocated,
    RadioSourceWithPowerAndLocated,
    RangingReading,
    RssiFingerprint,
    RssiFingerprintLocated,
    RssiReading,
    WifiAccessPoint,
    received_power_dbm,
)

AP_POSITIONS = np.array(
    [[0.0, 0.0, 3.0], [20.0, 0.0, 2.5], [0.0, 15.0, 2.0], [20.0, 15.0, 0.5], [10.0, 7.0, 3.5]]
)
TX_POWER_DBM = 20.0


def make_access_points():
    """Located access points with known transmitted power."""
    return [
        RadioSourceWithPowerAndLocated(
            WifiAccessPoint(f"00:00:5E:00:53:{i:02X}", DEFAULT_WIFI_FREQUENCY),
            position,
            transmitted_power_dbm=TX_POWER_DBM,
        )
        for i, position in enumerate(AP_POSITIONS)
    ]


def rssi_fingerprint(access_points, position, noise_std, rng, located=False):
    """RSSI fingerprint captured at position."""
    readings = []
    for ap in access_points:
        rssi = received_power_dbm(
            ap.transmitted_power_dbm, np.sum((ap.position - position) ** 2), ap.frequency
        )
        readings.append(RssiReading(ap.source, float(rssi + rng.normal(0.0, noise_std))))
    if located:
        return RssiFingerprintLocated(readings, position)
    return RssiFingerprint(readings)


def example_rssi_positioning(access_points, true_position, noise_std, rng):
    """Example 1: position from RSSI readings."""
    print("=" * 70)
    print("Example 1: Linear Positioning from RSSI")
    print("=" * 70)

    fingerprint = rssi_fingerprint(access_points, true_position, noise_std, rng)
    print(f"\nTrue position: {true_position}")
    print(f"RSSI noise std: {noise_std} dB")
    for reading in fingerprint:
        print(f"  {reading.source.identifier}: {reading.rssi:7.2f} dBm")

    estimator = LinearPositionEstimator3D(access_points, fingerprint)
    position = estimator.estimate()

    print(f"\nEstimated position: {position}")
    print(f"Position error: {np.linalg.norm(position - true_position):.3f} m")
    return position


def example_ranging_positioning(access_points, true_position, noise_std, rng):
    """Example 2: position from ranging (RTT) readings."""
    print("\n" + "=" * 70)
    print("Example 2: Linear and Nonlinear Positioning from Ranging")
    print("=" * 70)

    readings = [
        RangingReading(
            ap.source,
            max(float(np.linalg.norm(ap.position - true_position) + rng.normal(0.0, noise_std)), 0.0),
            distance_std=noise_std if noise_std > 0.0 else None,
        )
        for ap in access_points
    ]
    sources = [RadioSourceLocated(ap.source, ap.position) for ap in access_points]

    estimator = LinearPositionEstimator3D(sources, Fingerprint(readings))
    position = estimator.estimate()

    print(f"\nRange noise std: {noise_std} m")
    print(f"Estimated position: {position}")
    print(f"Position error: {np.linalg.norm(position - true_position):.3f} m")

    nonlinear = NonLinearPositionEstimator3D(sources, Fingerprint(readings))
    refined = nonlinear.estimate()
    std = np.sqrt(np.diag(nonlinear.estimated_covariance))

    print(f"\nRefined position (range fit): {refined}")
    print(f"Refined position error: {np.linalg.norm(refined - true_position):.3f} m")
    print(f"Position std: {std} m, chi-square: {nonlinear.chi_sq:.3f}")
    return refined


def example_fingerprint_ranking(access_points, true_position, noise_std, rng):
    """Example 3: rank reference fingerprints by RSSI distance."""
    print("\n" + "=" * 70)
    print("Example 3: Fingerprint Ranking")
    print("=" * 70)

    references = [
        rssi_fingerprint(access_points, np.array([x, y, 1.2]), noise_std, rng, located=True)
        for x in np.arange(0.0, 21.0, 5.0)
        for y in np.arange(0.0, 16.0, 5.0)
    ]
    query = rssi_fingerprint(access_points, true_position, noise_std, rng)

    ranked = sorted(references, key=query.distance_to)
    print(f"\nReference fingerprints: {len(references)}")
    print("Closest references:")
    for reference in ranked[:3]:
        print(f"  {reference.position}: {query.distance_to(reference):6.2f} dB")

    stranger = RssiFingerprint([RssiReading(WifiAccessPoint("unknown", 5.18e9), -50.0)])
    print(f"\nDistance to a fingerprint with no common source is MAX_DISTANCE: "
          f"{query.sqr_distance_to(stranger) == MAX_DISTANCE}")

    return ranked[0].position


def plot_positions(true_position, estimates):
    """Plot access points, true and estimated receiver positions."""
    fig, ax = plt.subplots(figsize=(8, 6))

    ax.scatter(AP_POSITIONS[:, 0], AP_POSITIONS[:, 1], s=200, c="red", marker="^", label="Access points", zorder=5)
    ax.scatter(true_position[0], true_position[1], s=150, c="green", marker="o", label="True position", zorder=4)

    markers = ["x", "+", "s"]
    for (label, position), marker in zip(estimates.items(), markers):
        ax.scatter(position[0], position[1], s=120, marker=marker, linewidths=2, label=label, zorder=4)

    ax.grid(True, alpha=0.3)
    ax.set_aspect("equal")
    ax.set_xlabel("East (m)", fontsize=12)
    ax.set_ylabel("North (m)", fontsize=12)
    ax.set_title("Linear Receiver Positioning", fontsize=14, fontweight="bold")
    ax.legend(loc="best")

    fig.tight_layout()
    return fig


def main():
    """Run linear positioning examples."""
    parser = argparse.ArgumentParser(description="Linear receiver positioning examples")
    parser.add_argument("--rssi-noise", type=float, default=0.5, help="RSSI noise std in dB (default: 0.5)")
    parser.add_argument("--range-noise", type=float, default=0.1, help="Range noise std in m (default: 0.1)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--no-plot", action="store_true", help="Do not plot results")
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    access_points = make_access_points()
    true_position = np.array([7.0, 5.0, 1.2])

    estimates = {
        "RSSI": example_rssi_positioning(access_points, true_position, args.rssi_noise, rng),
        "Ranging (range fit)": example_ranging_positioning(access_points, true_position, args.range_noise, rng),
        "Nearest fingerprint": example_fingerprint_ranking(
            access_points, true_position, args.rssi_noise, rng
        ),
    }

    if not args.no_plot:
        plot_positions(true_position, estimates)
        plt.show()


if __name__ == "__main__":
    main()
