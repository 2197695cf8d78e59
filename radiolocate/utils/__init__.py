"""
Utility functions shared by the estimators.
"""

from .geometry import check_observation_geometry

__all__ = [
    'check_observation_geometry',
]
