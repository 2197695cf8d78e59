"""
Geometric utilities for radio source positioning.

Provides checks on the layout of observation points (anchors, known source
positions or receiver positions) before a position is solved from them.
"""

import numpy as np
from typing import Tuple
import warnings


EPSILON_COLINEAR = 1e-6  # Relative singular value threshold for degeneracy


def check_observation_geometry(
    points: np.ndarray,
    min_points_2d: int = 3,
    min_points_3d: int = 4,
    warn_degenerate: bool = True
) -> Tuple[bool, str]:
    """
    Check if the layout of observation points is suitable for positioning.

    Performs geometric checks:
    1. Sufficient number of points
    2. Points are not colinear (2D) / coplanar (3D)

    Args:
        points: Observation positions, shape (N, d) where d=2 or 3
        min_points_2d: Minimum points for 2D positioning (default: 3)
        min_points_3d: Minimum points for 3D positioning (default: 4)
        warn_degenerate: If True, issue a RuntimeWarning for degenerate layouts

    Returns:
        Tuple of (is_valid, message):
            - is_valid: True if geometry is acceptable
            - message: Description of geometry issue (empty if valid)

    Example:
        >>> points = np.array([[0, 0], [10, 0], [5, 10]])
        >>> is_valid, msg = check_observation_geometry(points)
        >>> is_valid
        True

        >>> points = np.array([[0, 0], [5, 0], [10, 0]])
        >>> is_valid, msg = check_observation_geometry(points, warn_degenerate=False)
        >>> 'colinear' in msg.lower()
        True
    """
    points = np.asarray(points, dtype=float)

    if points.ndim != 2:
        return False, f"Points must be 2D array (N, d), got shape {points.shape}"

    n_points, dim = points.shape

    if dim not in [2, 3]:
        return False, f"Only 2D or 3D positioning supported, got dim={dim}"

    min_required = min_points_2d if dim == 2 else min_points_3d
    if n_points < min_required:
        return False, (
            f"Insufficient points: need at least {min_required} for {dim}D positioning, "
            f"got {n_points}"
        )

    # Rank of the centered layout via SVD
    centered = points - np.mean(points, axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if singular_values[0] == 0.0:
        rank = 0
    else:
        rank = int(np.sum(singular_values > EPSILON_COLINEAR * singular_values[0]))

    if rank < dim:
        if dim == 2:
            msg = f"Points are colinear (rank {rank} < 2). Positioning will be ill-conditioned."
        else:
            msg = f"Points are coplanar (rank {rank} < 3). 3D positioning will be ill-conditioned."

        if warn_degenerate:
            warnings.warn(msg, RuntimeWarning)
        return False, msg

    return True, ""
