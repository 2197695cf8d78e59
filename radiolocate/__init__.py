"""Radio source and receiver localization from signal-strength readings.

This package contains the numerical estimation engine:
- rf: Radio sources, readings, fingerprints and the position estimators
- estimators: Generic linear and nonlinear least squares solvers
- utils: Geometry checks shared by the estimators
"""

__version__ = "0.1.0"
