"""
Sparse Bundle Adjustment projection engine
Reprojection residuals, analytic Jacobians and normal-equation blocks
for mono and stereo observations
"""

__version__ = "0.1.0"

_CORE_NAMES = {
    "ProjectionConfig",
    "CameraParams",
    "PoseFrame",
    "Landmark",
    "Observation",
    "Track",
    "ProjectionSystem",
    "SBAError",
    "InvalidNumericStateError",
    "InvalidObservationError",
}


# Lazy imports keep `import sba` free of scipy/tqdm until something is used
def __getattr__(name):
    """Lazy import for module attributes"""
    if name in _CORE_NAMES:
        from . import core
        return getattr(core, name)
    elif name == "setup_logging":
        from .utils.logging_utils import setup_logging
        return setup_logging

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = sorted(_CORE_NAMES) + ["setup_logging"]
