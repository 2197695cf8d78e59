"""
Exceptions raised by the estimators and solvers.

Invalid arguments are reported with the builtin ValueError. The classes below
cover estimator state and numerical failures.
"""


class RadioLocateError(Exception):
    """Base class for all radiolocate errors."""


class LockedError(RadioLocateError):
    """Raised when an estimator or solver is modified while it is running."""

    def __init__(self, message: str = "Instance is locked while a solve is in progress"):
        super().__init__(message)


class NotReadyError(RadioLocateError):
    """Raised when a solve is attempted without enough valid data loaded."""

    def __init__(self, message: str = "Not enough valid data to estimate"):
        super().__init__(message)


class NumericalError(RadioLocateError):
    """Raised by the generic solvers on singular or non-finite systems."""


class FingerprintingError(RadioLocateError):
    """Raised when a fingerprinting estimator cannot produce a fit.

    The underlying numerical error is available as ``__cause__``.
    """
