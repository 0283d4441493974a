"""Coordinate transformations between LLH, ECEF, and ENU frames.

GNSS receivers deliver fixes in the Earth-Centered Earth-Fixed (ECEF) frame.
The estimator works in a local East-North-Up (ENU) tangent plane, so this
module provides the geodetic conversions needed to place that plane and the
rotation that maps between the two.

WGS84 ellipsoid parameters:
- Semi-major axis (a): 6378137.0 m
- Flattening (f): 1/298.257223563
- Semi-minor axis (b): 6356752.314245 m
- First eccentricity squared (e²): 0.00669437999014
"""

import numpy as np
from numpy.typing import NDArray

# WGS84 ellipsoid parameters
WGS84_A = 6378137.0  # Semi-major axis (m)
WGS84_F = 1.0 / 298.257223563  # Flattening
WGS84_B = WGS84_A * (1.0 - WGS84_F)  # Semi-minor axis (m)
WGS84_E2 = 1.0 - (WGS84_B / WGS84_A) ** 2  # First eccentricity squared


def llh_to_ecef(
    lat: float,
    lon: float,
    height: float,
) -> NDArray[np.float64]:
    """Convert geodetic coordinates (LLH) to ECEF Cartesian coordinates.

    Args:
        lat: Latitude in radians (positive north).
        lon: Longitude in radians (positive east).
        height: Height above WGS84 ellipsoid in meters.

    Returns:
        ECEF coordinates as numpy array [x, y, z] in meters.

    Example:
        >>> xyz = llh_to_ecef(np.deg2rad(50.81), np.deg2rad(12.93), 300.0)
    """
    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)
    # Radius of curvature in the prime vertical
    N = WGS84_A / np.sqrt(1.0 - WGS84_E2 * sin_lat**2)

    x = (N + height) * cos_lat * np.cos(lon)
    y = (N + height) * cos_lat * np.sin(lon)
    z = (N * (1.0 - WGS84_E2) + height) * sin_lat

    return np.array([x, y, z], dtype=np.float64)


def ecef_to_llh(
    x: float,
    y: float,
    z: float,
    tol: float = 1e-12,
    max_iter: int = 10,
) -> NDArray[np.float64]:
    """Convert ECEF Cartesian coordinates to geodetic coordinates (LLH).

    Uses the classic fixed-point iteration on latitude, which converges to
    sub-millimeter height accuracy in a handful of iterations for points near
    the Earth's surface.

    Args:
        x: ECEF x-coordinate in meters.
        y: ECEF y-coordinate in meters.
        z: ECEF z-coordinate in meters.
        tol: Convergence tolerance on latitude (radians).
        max_iter: Maximum number of iterations.

    Returns:
        Geodetic coordinates [lat, lon, height]; lat and lon in radians,
        height in meters.
    """
    lon = np.arctan2(y, x)

    # Distance from z-axis
    p = np.sqrt(x**2 + y**2)

    # Pole: latitude is ±90° and longitude is arbitrary
    if p < 1e-10:
        lat = np.copysign(np.pi / 2.0, z)
        height = abs(z) - WGS84_B
        return np.array([lat, lon, height], dtype=np.float64)

    # Initial latitude estimate (assumes height = 0)
    lat = np.arctan2(z, p * (1.0 - WGS84_E2))

    for _ in range(max_iter):
        sin_lat = np.sin(lat)
        N = WGS84_A / np.sqrt(1.0 - WGS84_E2 * sin_lat**2)
        height = p / np.cos(lat) - N
        lat_new = np.arctan2(z, p * (1.0 - WGS84_E2 * N / (N + height)))

        if abs(lat_new - lat) < tol:
            lat = lat_new
            break

        lat = lat_new

    sin_lat = np.sin(lat)
    N = WGS84_A / np.sqrt(1.0 - WGS84_E2 * sin_lat**2)
    height = p / np.cos(lat) - N

    return np.array([lat, lon, height], dtype=np.float64)


def ecef_to_enu_rotation(lat_ref: float, lon_ref: float) -> NDArray[np.float64]:
    """Rotation matrix R_ENU_ECEF for a tangent plane at (lat_ref, lon_ref).

    Rows are the East, North and Up unit vectors expressed in ECEF. The
    inverse rotation (ENU to ECEF) is the transpose.

    Args:
        lat_ref: Reference latitude in radians.
        lon_ref: Reference longitude in radians.

    Returns:
        Orthonormal 3x3 rotation matrix.
    """
    sin_lat = np.sin(lat_ref)
    cos_lat = np.cos(lat_ref)
    sin_lon = np.sin(lon_ref)
    cos_lon = np.cos(lon_ref)

    return np.array(
        [
            [-sin_lon, cos_lon, 0.0],
            [-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat],
            [cos_lat * cos_lon, cos_lat * sin_lon, sin_lat],
        ],
        dtype=np.float64,
    )


def ecef_to_enu(
    xyz: NDArray[np.float64],
    lat_ref: float,
    lon_ref: float,
    height_ref: float,
) -> NDArray[np.float64]:
    """Convert an ECEF point to local ENU coordinates.

    Args:
        xyz: ECEF point [x, y, z] in meters.
        lat_ref: Reference latitude in radians (origin of ENU frame).
        lon_ref: Reference longitude in radians (origin of ENU frame).
        height_ref: Reference height in meters (origin of ENU frame).

    Returns:
        ENU coordinates [east, north, up] in meters.
    """
    xyz_ref = llh_to_ecef(lat_ref, lon_ref, height_ref)
    R = ecef_to_enu_rotation(lat_ref, lon_ref)
    return R @ (np.asarray(xyz, dtype=np.float64) - xyz_ref)


def enu_to_ecef(
    enu: NDArray[np.float64],
    lat_ref: float,
    lon_ref: float,
    height_ref: float,
) -> NDArray[np.float64]:
    """Convert local ENU coordinates back to an ECEF point.

    Args:
        enu: ENU coordinates [east, north, up] in meters.
        lat_ref: Reference latitude in radians (origin of ENU frame).
        lon_ref: Reference longitude in radians (origin of ENU frame).
        height_ref: Reference height in meters (origin of ENU frame).

    Returns:
        ECEF point [x, y, z] in meters.
    """
    xyz_ref = llh_to_ecef(lat_ref, lon_ref, height_ref)
    R = ecef_to_enu_rotation(lat_ref, lon_ref)
    return xyz_ref + R.T @ np.asarray(enu, dtype=np.float64)
