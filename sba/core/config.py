"""
Configuration management for the projection engine

Uses dataclasses for type safety and validation.
"""

from dataclasses import dataclass, fields
from typing import Optional, Dict, Any

import psutil


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class ProjectionConfig:
    """Configuration for residual and Jacobian evaluation"""

    # Scale applied to the quaternion-generator columns of the camera Jacobian,
    # relative to the translation columns
    q_scale: float = 1.0

    # Zero every Jacobian-derived block of an observation whose point lies at
    # or behind the camera plane (pz <= 0), matching the zeroed residual
    zero_degenerate_jacobians: bool = True

    # Thread pool size for batch evaluation (None = min(cpu_count, 8))
    max_workers: Optional[int] = None

    # Show a tqdm progress bar during batch evaluation
    show_progress: bool = False

    # Logging level: "DEBUG", "INFO", "WARNING", "ERROR"
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration"""
        if not self.q_scale > 0.0:
            raise ValueError(f"q_scale must be positive, got {self.q_scale}")

        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {self.log_level}")

    def resolved_workers(self) -> int:
        """Number of worker threads to use for batch evaluation"""
        if self.max_workers is not None:
            return self.max_workers
        return min(psutil.cpu_count() or 1, 8)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "ProjectionConfig":
        """Create config from dictionary (for CLI/JSON loading)"""
        known = {f.name for f in fields(cls)}
        unknown = set(config_dict) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Export config to dictionary"""
        return {
            "q_scale": self.q_scale,
            "zero_degenerate_jacobians": self.zero_degenerate_jacobians,
            "max_workers": self.max_workers,
            "show_progress": self.show_progress,
            "log_level": self.log_level,
        }
