"""Domain models for flowimg.

This package contains the core data structures and enumerations used
throughout the system. All models use Pydantic v2 for validation.
"""

from flowimg.domain.models import (
    CameraConfig,
    LifecycleState,
    PixelBuffer,
    PixelLayout,
)

__all__ = [
    "CameraConfig",
    "LifecycleState",
    "PixelBuffer",
    "PixelLayout",
]
