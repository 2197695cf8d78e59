"""
Power units and the free-space path-loss model.

Received power at distance d from an emitter with equivalent transmitted
power Pte (Friis equation, antenna gains folded into Pte):

    Pr = Pte * k / d²,    k = (c / (4π f))²

and in the logarithmic domain used by the estimators:

    Pr(dBm) = 10*log10(k) + Pte(dBm) - 10*log10(d²)

Units: power in dBm unless a function name says otherwise (linear power in
mW), distances in meters, frequencies in Hz.
"""

import numpy as np

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

DEFAULT_PATH_LOSS_EXPONENT = 2.0  # free space


def dbm_to_power(dbm: float) -> float:
    """
    Convert power from dBm to milliwatts.

    Args:
        dbm: Power in dBm.

    Returns:
        Linear power in mW, 10^(dBm/10).

    Example:
        >>> dbm_to_power(20.0)
        100.0
    """
    return float(10.0 ** (dbm / 10.0))


def power_to_dbm(mw: float) -> float:
    """
    Convert power from milliwatts to dBm.

    Args:
        mw: Linear power in mW. Must be non-negative.

    Returns:
        Power in dBm, 10*log10(mW). Zero power maps to -inf.

    Raises:
        ValueError: If mw is negative.

    Example:
        >>> power_to_dbm(1.0)
        0.0
    """
    if mw < 0.0:
        raise ValueError(f"Linear power must be non-negative, got {mw}")
    if mw == 0.0:
        return float("-inf")
    return float(10.0 * np.log10(mw))


def free_space_constant(frequency: float, c: float = SPEED_OF_LIGHT) -> float:
    """
    Compute the constant part k = (c / (4π f))² of the Friis equation.

    Args:
        frequency: Carrier frequency in Hz.
        c: Propagation speed in m/s.

    Returns:
        Dimensionless constant k (m² once multiplied by 1/d²).

    Raises:
        ValueError: If frequency is not positive.
    """
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    return (c / (4.0 * np.pi * frequency)) ** 2


def received_power_dbm(
    tx_power_dbm: float,
    sqr_distance,
    frequency: float,
):
    """
    Received power predicted by the free-space model.

    Args:
        tx_power_dbm: Equivalent transmitted power Pte in dBm.
        sqr_distance: Squared distance(s) d² between emitter and receiver
                      in m². Scalar or array.
        frequency: Carrier frequency in Hz.

    Returns:
        Received power in dBm, same shape as sqr_distance.

    Example:
        >>> # 2.4 GHz access point transmitting 20 dBm, receiver at 10 m
        >>> rssi = received_power_dbm(20.0, 100.0, 2.4e9)
        >>> print(f"{rssi:.2f} dBm")
        -40.05 dBm
    """
    k_db = 10.0 * np.log10(free_space_constant(frequency))
    return k_db + tx_power_dbm - 10.0 * np.log10(sqr_distance)


def distance_from_rssi(
    rssi_dbm: float,
    tx_power_dbm: float,
    frequency: float,
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Invert the path-loss model to estimate emitter-receiver distance.

    Generalizes the free-space model to an arbitrary path-loss exponent n:

        Pr(dBm) = 10*log10(k) + Pte(dBm) - 10*n*log10(d)
        d = 10^((10*log10(k) + Pte - Pr) / (10*n))

    Args:
        rssi_dbm: Received power in dBm.
        tx_power_dbm: Equivalent transmitted power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exponent: Path-loss exponent n. Defaults to 2.0.

    Returns:
        Distance in meters.

    Raises:
        ValueError: If path_loss_exponent is not positive.
    """
    if path_loss_exponent <= 0:
        raise ValueError(
            f"Path-loss exponent must be positive, got {path_loss_exponent}"
        )
    k_db = 10.0 * np.log10(free_space_constant(frequency))
    exponent = (k_db + tx_power_dbm - rssi_dbm) / (10.0 * path_loss_exponent)
    return float(10.0 ** exponent)
