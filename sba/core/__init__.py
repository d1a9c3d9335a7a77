"""
Core projection engine components
"""

from .config import ProjectionConfig
from .pose_frame import CameraParams, PoseFrame
from .landmark import Landmark
from .observation import (
    Observation,
    ResidualModel,
    MonoResidual,
    StereoResidual,
    projection_derivative,
    SBAError,
    InvalidNumericStateError,
    InvalidObservationError,
)
from .track import Track
from .projection_system import ProjectionSystem

__all__ = [
    # Configuration
    "ProjectionConfig",

    # State read by the engine
    "CameraParams",
    "PoseFrame",
    "Landmark",

    # Residuals and Jacobians
    "Observation",
    "ResidualModel",
    "MonoResidual",
    "StereoResidual",
    "projection_derivative",

    # Errors
    "SBAError",
    "InvalidNumericStateError",
    "InvalidObservationError",

    # Aggregation
    "Track",
    "ProjectionSystem",
]
