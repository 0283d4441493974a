"""Coordinate frames used by the estimator.

- ECEF (Earth-Centered Earth-Fixed): frame of the GNSS fixes
- LLH (Latitude, Longitude, Height): used to place the tangent plane
- ENU (East-North-Up): local tangent plane in which the graph is solved
- Body: platform frame, related to ENU through the heading angle
"""

from rsfusion.coords.rotations import body_to_map, map_to_body, yaw_rotation_matrix
from rsfusion.coords.tangent_plane import (
    ConverterState,
    FrameNotInitializedError,
    TangentPlaneConverter,
)
from rsfusion.coords.transforms import (
    ecef_to_enu,
    ecef_to_enu_rotation,
    ecef_to_llh,
    enu_to_ecef,
    llh_to_ecef,
)

__all__ = [
    # Transforms
    "llh_to_ecef",
    "ecef_to_llh",
    "ecef_to_enu",
    "enu_to_ecef",
    "ecef_to_enu_rotation",
    # Heading rotations
    "yaw_rotation_matrix",
    "body_to_map",
    "map_to_body",
    # Tangent plane
    "TangentPlaneConverter",
    "ConverterState",
    "FrameNotInitializedError",
]
