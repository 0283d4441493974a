"""
Angle wrapping utilities for heading states.

Heading (yaw) states live on the circle. Residuals built from two headings
must be wrapped to [-π, π] or the optimizer sees a 2π jump whenever the
platform turns through ±180°.
"""

import numpy as np
from typing import Union


def wrap_angle(angle: float) -> float:
    """
    Wrap angle to [-π, π] range.

    Args:
        angle: Angle in radians (can be any value)

    Returns:
        Wrapped angle in range [-π, π]

    Example:
        >>> wrap_angle(3.5 * np.pi)  # 630° -> -90°
        -1.5707963267948966
    """
    return float(np.arctan2(np.sin(angle), np.cos(angle)))


def wrap_angle_array(angles: np.ndarray) -> np.ndarray:
    """Vectorized version of wrap_angle()."""
    return np.arctan2(np.sin(angles), np.cos(angles))


def angle_diff(angle1: Union[float, np.ndarray],
               angle2: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Shortest signed difference angle1 - angle2, wrapped to [-π, π].

    Example:
        >>> angle_diff(np.deg2rad(179), np.deg2rad(-179))  # 2° not 358°
        -0.034906585039886...
    """
    diff = np.asarray(angle1) - np.asarray(angle2)
    wrapped = np.arctan2(np.sin(diff), np.cos(diff))
    if np.ndim(wrapped) == 0:
        return float(wrapped)
    return wrapped
