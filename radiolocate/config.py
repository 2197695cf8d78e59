"""Solver configuration shared by the radio source estimators.

Author: Navigation Engineer
"""

from dataclasses import dataclass

DEFAULT_RSSI_STANDARD_DEVIATION = 1.0  # dB

# Floor applied to squared distances in the log-distance model (m²).
# Keeps log10(d²) and its derivative finite when the estimate coincides
# with an observation point.
MIN_SQR_DISTANCE = 1e-12

_VALID_METHODS = ("lm", "gn")


@dataclass(frozen=True)
class SolverConfig:
    """
    Settings of the nonlinear fit used by the joint power/position estimator.

    Attributes:
        method: "lm" (Levenberg-Marquardt, default) or "gn" (Gauss-Newton).
        max_iter: Maximum number of iterations. Reaching it without
                  converging is reported as a numerical failure.
        tol: Convergence tolerance on the parameter step norm.
        mu0: Initial Levenberg-Marquardt damping.
        min_sqr_distance: Lower bound applied to squared distances (m²)
                          before taking logarithms or dividing by them.
        default_rssi_std: Standard deviation (dB) assumed for readings that
                          do not carry one.

    Example:
        >>> config = SolverConfig(max_iter=500)
        >>> config.method
        'lm'
        >>> SolverConfig.precise().tol
        1e-12
    """

    method: str = "lm"
    max_iter: int = 200
    tol: float = 1e-10
    mu0: float = 1e-3
    min_sqr_distance: float = MIN_SQR_DISTANCE
    default_rssi_std: float = DEFAULT_RSSI_STANDARD_DEVIATION

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.method not in _VALID_METHODS:
            raise ValueError(
                f"method must be one of {list(_VALID_METHODS)}, got {self.method!r}"
            )
        if not isinstance(self.max_iter, int) or self.max_iter < 1:
            raise ValueError(f"max_iter must be a positive integer, got {self.max_iter}")
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if self.mu0 <= 0:
            raise ValueError(f"mu0 must be positive, got {self.mu0}")
        if self.min_sqr_distance <= 0:
            raise ValueError(
                f"min_sqr_distance must be positive, got {self.min_sqr_distance}"
            )
        if self.default_rssi_std <= 0:
            raise ValueError(
                f"default_rssi_std must be positive, got {self.default_rssi_std}"
            )

    @classmethod
    def default(cls) -> "SolverConfig":
        """Preset with the default settings."""
        return cls()

    @classmethod
    def precise(cls) -> "SolverConfig":
        """Preset with a tighter tolerance and a larger iteration budget."""
        return cls(max_iter=1000, tol=1e-12)

    @classmethod
    def fast(cls) -> "SolverConfig":
        """Preset for quick, coarse fits."""
        return cls(max_iter=50, tol=1e-6)
