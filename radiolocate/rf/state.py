"""Run state shared by estimators and solvers."""

from enum import Enum


class EstimatorState(Enum):
    """
    Two-state machine guarding an estimator or solver instance.

    IDLE -> RUNNING on entry to estimate()/solve(), after precondition checks.
    RUNNING -> IDLE on every exit path. State-mutating calls are rejected
    with LockedError while RUNNING.
    """

    IDLE = "idle"
    RUNNING = "running"
