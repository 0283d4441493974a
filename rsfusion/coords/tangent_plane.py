"""One-shot tangent-plane converter between ECEF and a local ENU frame.

The converter is placed exactly once, from the first absolute fix of a run.
Every later conversion uses that frozen origin and rotation, so the whole
trajectory shares one flat frame. Conversions before the converter has been
placed are a programming error and raise FrameNotInitializedError.
"""

from enum import Enum
from typing import Optional, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from rsfusion.coords.transforms import ecef_to_enu_rotation, ecef_to_llh

if TYPE_CHECKING:
    from rsfusion.fusion.results import StateDataSet


class FrameNotInitializedError(RuntimeError):
    """Raised when a conversion is requested before the origin is set."""


class ConverterState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


class TangentPlaneConverter:
    """Bijection between ECEF and an ENU tangent plane at a fixed origin.

    Attributes:
        state: ConverterState of the one-shot initialization.
        origin: ECEF origin of the plane (3,), None until initialized.
        origin_llh: Geodetic origin [lat, lon, h], None until initialized.
        rotation: R_ENU_ECEF (3, 3), None until initialized.

    Example:
        >>> converter = TangentPlaneConverter()
        >>> converter.initialize(np.array([3907007.0, 896953.0, 4919472.0]))
        >>> converter.to_local(np.array([3907007.0, 896953.0, 4919472.0]))
        array([0., 0., 0.])
    """

    def __init__(self):
        self.state = ConverterState.UNINITIALIZED
        self.origin: Optional[NDArray[np.float64]] = None
        self.origin_llh: Optional[NDArray[np.float64]] = None
        self.rotation: Optional[NDArray[np.float64]] = None

    def is_initialized(self) -> bool:
        return self.state is ConverterState.INITIALIZED

    def initialize(self, reference_ecef: NDArray[np.float64]) -> None:
        """Place the tangent plane at reference_ecef.

        The first call wins. Later calls are ignored so that a converter seeded
        from the first fix is never moved by subsequent fixes.

        Args:
            reference_ecef: ECEF point [x, y, z] in meters.

        Raises:
            ValueError: If reference_ecef is not a finite 3-vector.
        """
        if self.is_initialized():
            return

        reference = np.asarray(reference_ecef, dtype=np.float64)
        if reference.shape != (3,):
            raise ValueError(f"Reference point must have shape (3,), got {reference.shape}")
        if not np.all(np.isfinite(reference)):
            raise ValueError(f"Reference point must be finite, got {reference}")

        self.origin = reference.copy()
        self.origin_llh = ecef_to_llh(*reference)
        self.rotation = ecef_to_enu_rotation(self.origin_llh[0], self.origin_llh[1])
        self.state = ConverterState.INITIALIZED

    def _require_initialized(self) -> None:
        if not self.is_initialized():
            raise FrameNotInitializedError(
                "Tangent plane converter used before initialize() was called"
            )

    def to_local(self, point_ecef: NDArray[np.float64]) -> NDArray[np.float64]:
        """ECEF point -> local ENU point."""
        self._require_initialized()
        return self.rotation @ (np.asarray(point_ecef, dtype=np.float64) - self.origin)

    def to_global(self, point_local: NDArray[np.float64]) -> NDArray[np.float64]:
        """Local ENU point -> ECEF point."""
        self._require_initialized()
        return self.origin + self.rotation.T @ np.asarray(point_local, dtype=np.float64)

    def covariance_to_local(self, cov_ecef: NDArray[np.float64]) -> NDArray[np.float64]:
        """Rotate a 3x3 ECEF covariance into the local frame (R Σ Rᵀ)."""
        self._require_initialized()
        cov = self.rotation @ np.asarray(cov_ecef, dtype=np.float64) @ self.rotation.T
        return 0.5 * (cov + cov.T)

    def convert_all_states_to_global(self, result: "StateDataSet", state_name: str) -> None:
        """Convert every record of one state series to ECEF in place.

        Does nothing if the converter was never initialized (the run never saw
        an absolute fix, so the local frame has no global anchor).
        """
        if not self.is_initialized():
            return

        for record in result.get_series(state_name):
            record.mean = self.to_global(record.mean)
