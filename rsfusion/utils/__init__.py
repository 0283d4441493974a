"""
Utility functions shared by the factor residuals and the sensor models.
"""

from .angles import wrap_angle, wrap_angle_array, angle_diff

__all__ = [
    'wrap_angle',
    'wrap_angle_array',
    'angle_diff',
]
