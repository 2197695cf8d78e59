"""
Synchronous observers notified by estimators and solvers.

Hooks are called in-line from within estimate()/solve(), so they must return
promptly. Errors are raised to the caller and never routed through
listeners. Subclass and override the hooks you need.
"""


class EstimatorListener:
    """Lifecycle hooks of a position or power/position estimator."""

    def on_estimate_start(self, estimator) -> None:
        """Called once the estimator is locked, before solving."""

    def on_estimate_end(self, estimator) -> None:
        """Called after a successful solve, before the estimator unlocks."""


class TrilaterationSolverListener:
    """Lifecycle hooks of a trilateration solver."""

    def on_solve_start(self, solver) -> None:
        """Called once the solver is locked, before solving."""

    def on_solve_end(self, solver) -> None:
        """Called after a successful solve, before the solver unlocks."""
