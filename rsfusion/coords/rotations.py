"""Heading rotations between the body frame and the local ENU frame.

The estimator tracks attitude as a single heading angle (yaw) and treats the
platform as level, so the body-to-map rotation is a rotation about the Up
axis. Conventions:
- Yaw ψ = 0 points the body x-axis East, ψ = π/2 points it North.
- Vectors map as v_map = C(ψ) @ v_body.
"""

import numpy as np
from numpy.typing import NDArray


def yaw_rotation_matrix(yaw: float) -> NDArray[np.float64]:
    """Body-to-map rotation C(ψ) about the Up axis.

    Args:
        yaw: Heading ψ in radians.

    Returns:
        3x3 rotation matrix.

    Example:
        >>> C = yaw_rotation_matrix(np.pi / 2)
        >>> np.allclose(C @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
        True
    """
    c = np.cos(yaw)
    s = np.sin(yaw)
    return np.array(
        [
            [c, -s, 0.0],
            [s, c, 0.0],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )


def body_to_map(v_body: NDArray[np.float64], yaw: float) -> NDArray[np.float64]:
    """Rotate a body-frame vector into the map frame."""
    return yaw_rotation_matrix(yaw) @ np.asarray(v_body, dtype=np.float64)


def map_to_body(v_map: NDArray[np.float64], yaw: float) -> NDArray[np.float64]:
    """Rotate a map-frame vector into the body frame."""
    return yaw_rotation_matrix(yaw).T @ np.asarray(v_map, dtype=np.float64)
