"""
Access Point Position and Transmitted Power Estimation Example.

A receiver walks around an unknown Wi-Fi access point and records RSSI at
known positions. The access point position and its equivalent transmitted
power are then fitted jointly with Levenberg-Marquardt.

Demonstrates:
    - Free-space RSSI model Pr = 10*log10(k) + Pte - 10*log10(d²)
    - 2D and 3D joint estimation
    - Covariance, chi-square and goodness-of-fit p-value

Usage:
    python -m demos.example_access_point_estimation
    python -m demos.example_access_point_estimation --noise 2.0 --no-plot
"""

import argparse
import logging

import matplotlib.pyplot as plt
import numpy as np

from radiolocate.config import SolverConfig
from radiolocate.exceptions import FingerprintingError
from radiolocate.rf import (
    DEFAULT_WIFI_FREQUENCY,
    RadioSourcePowerAndPositionEstimator2D,
    RadioSourcePowerAndPositionEstimator3D,
    RssiReadingLocated,
    WifiAccessPoint,
    received_power_dbm,
)


def simulate_readings(access_point, true_position, tx_power_dbm, points, noise_std, rng):
    """Generate RSSI readings of one access point at the given points."""
    sqr_distances = np.sum((points - true_position) ** 2, axis=1)
    rssi = received_power_dbm(tx_power_dbm, sqr_distances, access_point.frequency)
    if noise_std > 0.0:
        rssi = rssi + rng.normal(0.0, noise_std, len(points))

    rssi_std = noise_std if noise_std > 0.0 else None
    return [
        RssiReadingLocated(access_point, float(value), rssi_std=rssi_std, position=point)
        for value, point in zip(rssi, points)
    ]


def print_results(estimator, true_position, tx_power_dbm):
    """Print the estimate against ground truth."""
    position = estimator.estimated_position
    error = np.linalg.norm(position - true_position)
    power_std = np.sqrt(estimator.estimated_transmitted_power_variance)

    print(f"\nEstimated position: {position}")
    print(f"Position error: {error:.3f} m")
    print(
        f"Estimated power: {estimator.estimated_transmitted_power_dbm:.2f} dBm "
        f"(± {power_std:.2f} dB, true {tx_power_dbm:.2f} dBm)"
    )
    print(f"Estimated power (linear): {estimator.estimated_transmitted_power:.4f} mW")
    print(f"Position std: {np.sqrt(np.diag(estimator.estimated_position_covariance))} m")
    print(f"Chi-square: {estimator.chi_sq:.3f}")
    if estimator.chi_sq_p_value is not None:
        print(f"P-value: {estimator.chi_sq_p_value:.3f}")


def example_2d(noise_std, rng, config):
    """Example 1: planar walk around an access point."""
    print("=" * 70)
    print("Example 1: 2D Access Point Estimation")
    print("=" * 70)

    access_point = WifiAccessPoint("00:11:22:33:44:55", DEFAULT_WIFI_FREQUENCY, ssid="office")
    true_position = np.array([12.0, 7.5])
    tx_power_dbm = 18.0

    # Rectangular walk with a reading every 2 m
    xs = np.arange(0.0, 26.0, 2.0)
    ys = np.arange(0.0, 16.0, 2.0)
    points = np.vstack(
        [
            np.column_stack([xs, np.zeros_like(xs)]),
            np.column_stack([np.full_like(ys, 24.0), ys]),
            np.column_stack([xs[::-1], np.full_like(xs, 14.0)]),
            np.column_stack([np.zeros_like(ys), ys[::-1]]),
        ]
    )

    print(f"\nAccess point: {access_point.bssid} ({access_point.ssid})")
    print(f"True position: {true_position}, true power: {tx_power_dbm} dBm")
    print(f"Readings: {len(points)}, RSSI noise std: {noise_std} dB")

    readings = simulate_readings(access_point, true_position, tx_power_dbm, points, noise_std, rng)
    estimator = RadioSourcePowerAndPositionEstimator2D(readings, config=config)
    estimator.estimate()

    print_results(estimator, true_position, tx_power_dbm)
    return points, readings, true_position, estimator


def example_3d(noise_std, rng, config):
    """Example 2: readings on two floors of a building."""
    print("\n" + "=" * 70)
    print("Example 2: 3D Access Point Estimation")
    print("=" * 70)

    access_point = WifiAccessPoint("AA:BB:CC:DD:EE:FF", 5.18e9)
    true_position = np.array([8.0, 5.0, 2.6])
    tx_power_dbm = 15.0

    grid = np.array([[x, y] for x in (0.0, 6.0, 12.0, 18.0) for y in (0.0, 5.0, 10.0)])
    points = np.vstack(
        [
            np.column_stack([grid, np.full(len(grid), 1.2)]),
            np.column_stack([grid, np.full(len(grid), 4.2)]),
        ]
    )

    print(f"\nTrue position: {true_position}, true power: {tx_power_dbm} dBm")
    print(f"Readings: {len(points)} on two floors")

    readings = simulate_readings(access_point, true_position, tx_power_dbm, points, noise_std, rng)
    estimator = RadioSourcePowerAndPositionEstimator3D(readings, config=config)

    try:
        estimator.estimate()
    except FingerprintingError as e:
        print(f"\nEstimation failed: {e}")
        return None

    print_results(estimator, true_position, tx_power_dbm)
    return estimator


def plot_estimate(points, readings, true_position, estimator):
    """Plot RSSI readings and the estimated access point with its 2σ ellipse."""
    fig, ax = plt.subplots(figsize=(9, 6))

    rssi = np.array([reading.rssi for reading in readings])
    sc = ax.scatter(points[:, 0], points[:, 1], c=rssi, cmap="viridis", s=60, label="Readings")
    fig.colorbar(sc, ax=ax, label="RSSI (dBm)")

    ax.scatter(*true_position, s=200, c="green", marker="*", label="True AP", zorder=5)
    position = estimator.estimated_position
    ax.scatter(*position, s=150, c="red", marker="x", linewidths=3, label="Estimated AP", zorder=5)

    # 2σ covariance ellipse
    eigenvalues, eigenvectors = np.linalg.eigh(estimator.estimated_position_covariance)
    angles = np.linspace(0.0, 2.0 * np.pi, 100)
    circle = np.column_stack([np.cos(angles), np.sin(angles)])
    ellipse = 2.0 * circle @ np.diag(np.sqrt(np.maximum(eigenvalues, 0.0))) @ eigenvectors.T
    ax.plot(position[0] + ellipse[:, 0], position[1] + ellipse[:, 1], "r--", alpha=0.6, label="2σ")

    ax.grid(True, alpha=0.3)
    ax.set_aspect("equal")
    ax.set_xlabel("East (m)", fontsize=12)
    ax.set_ylabel("North (m)", fontsize=12)
    ax.set_title("Access Point Position and Power Estimation", fontsize=14, fontweight="bold")
    ax.legend(loc="best")

    fig.tight_layout()
    return fig


def main():
    """Run access point estimation examples."""
    parser = argparse.ArgumentParser(
        description="Joint access point position and transmitted power estimation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default run with 1 dB RSSI noise
  python -m demos.example_access_point_estimation

  # Noisier readings, no figure
  python -m demos.example_access_point_estimation --noise 4.0 --no-plot
        """,
    )
    parser.add_argument("--noise", type=float, default=1.0, help="RSSI noise std in dB (default: 1.0)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument(
        "--method", choices=["lm", "gn"], default="lm", help="Nonlinear solver (default: lm)"
    )
    parser.add_argument("--output", type=str, default=None, help="Save the figure to this file")
    parser.add_argument("--no-plot", action="store_true", help="Do not plot results")
    parser.add_argument("--verbose", action="store_true", help="Log solver progress")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    rng = np.random.default_rng(args.seed)
    config = SolverConfig(method=args.method)

    points, readings, true_position, estimator = example_2d(args.noise, rng, config)
    example_3d(args.noise, rng, config)

    if not args.no_plot:
        fig = plot_estimate(points, readings, true_position, estimator)
        if args.output:
            fig.savefig(args.output, dpi=150, bbox_inches="tight")
            print(f"\nFigure saved: {args.output}")
        plt.show()


if __name__ == "__main__":
    main()
