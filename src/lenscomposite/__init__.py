from lenscomposite.calib import (
    CalibrationData,
    MalformedCalibration,
    MissingDistortion,
    MissingIntrinsics,
    load_calibration,
    parse_calibration,
)
from lenscomposite.core.composite import CompositeParameters, alpha_over, distort_layer
from lenscomposite.core.distortion import BrownDistortion
from lenscomposite.core.projection import Frustum, ProjectionMode, build_projection
from lenscomposite.session import CompositorSession, CompositorSettings

__all__ = [
    "CalibrationData",
    "MalformedCalibration",
    "MissingDistortion",
    "MissingIntrinsics",
    "load_calibration",
    "parse_calibration",
    "BrownDistortion",
    "Frustum",
    "ProjectionMode",
    "build_projection",
    "CompositeParameters",
    "distort_layer",
    "alpha_over",
    "CompositorSession",
    "CompositorSettings",
]
