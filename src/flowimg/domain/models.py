"""Core domain models for the flowimg system.

These models represent the data flowing between graph nodes: the pixel
layouts a frame may carry, the canonical in-memory image value produced
by decoding or capture, the camera device configuration, and the
lifecycle states of a capture node.
"""

from __future__ import annotations

import enum

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PixelLayout(str, enum.Enum):
    """Closed set of pixel encodings a PixelBuffer may carry."""

    GRAY8 = "gray8"
    GRAY_ALPHA8 = "gray_alpha8"
    RGB8 = "rgb8"
    RGBA8 = "rgba8"
    GRAY16 = "gray16"
    GRAY_ALPHA16 = "gray_alpha16"
    RGB16 = "rgb16"
    RGBA16 = "rgba16"
    RGB32F = "rgb32f"
    RGBA32F = "rgba32f"

    @property
    def channels(self) -> int:
        """Number of interleaved samples per pixel."""
        return _LAYOUT_FORMATS[self][0]

    @property
    def dtype(self) -> np.dtype:
        """Numpy dtype of a single sample."""
        return np.dtype(_LAYOUT_FORMATS[self][1])

    @property
    def bytes_per_sample(self) -> int:
        return self.dtype.itemsize

    @property
    def has_alpha(self) -> bool:
        return self.channels in (2, 4)


class LifecycleState(str, enum.Enum):
    """Lifecycle of a camera capture node."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"  # Terminal, no automatic retry
    SHUT_DOWN = "shut_down"  # Terminal


# (channels, sample dtype) per layout
_LAYOUT_FORMATS: dict[PixelLayout, tuple[int, str]] = {
    PixelLayout.GRAY8: (1, "uint8"),
    PixelLayout.GRAY_ALPHA8: (2, "uint8"),
    PixelLayout.RGB8: (3, "uint8"),
    PixelLayout.RGBA8: (4, "uint8"),
    PixelLayout.GRAY16: (1, "uint16"),
    PixelLayout.GRAY_ALPHA16: (2, "uint16"),
    PixelLayout.RGB16: (3, "uint16"),
    PixelLayout.RGBA16: (4, "uint16"),
    PixelLayout.RGB32F: (3, "float32"),
    PixelLayout.RGBA32F: (4, "float32"),
}

_LAYOUT_BY_FORMAT: dict[tuple[int, str], PixelLayout] = {
    fmt: layout for layout, fmt in _LAYOUT_FORMATS.items()
}


# ---------------------------------------------------------------------------
# Image Models
# ---------------------------------------------------------------------------


class PixelBuffer(BaseModel):
    """A decoded image with an explicit pixel layout.

    Samples are stored as a C-contiguous numpy array of shape
    ``(height, width, channels)`` whose dtype is implied by the layout.
    Rows run top to bottom, pixels left to right and color channels in
    RGB(A) order.

    A buffer is handed from one stage to the next and never shared;
    the constructors below always copy their input.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    layout: PixelLayout = Field(description="Pixel encoding of the samples")
    width: int = Field(gt=0, description="Image width in pixels")
    height: int = Field(gt=0, description="Image height in pixels")
    data: np.ndarray = Field(description="Row-major samples, shape (height, width, channels)")

    @model_validator(mode="after")
    def _check_samples(self) -> PixelBuffer:
        expected_shape = (self.height, self.width, self.layout.channels)
        if self.data.shape != expected_shape:
            raise ValueError(
                f"{self.layout.value} buffer must have shape {expected_shape}, "
                f"got {self.data.shape}"
            )
        if self.data.dtype != self.layout.dtype:
            raise ValueError(
                f"{self.layout.value} buffer must hold {self.layout.dtype} samples, "
                f"got {self.data.dtype}"
            )
        if not self.data.flags.c_contiguous:
            raise ValueError("Pixel samples must be C-contiguous")
        expected_bytes = (
            self.width * self.height * self.layout.channels * self.layout.bytes_per_sample
        )
        if self.data.nbytes != expected_bytes:
            raise ValueError(
                f"Sample buffer holds {self.data.nbytes} bytes, expected {expected_bytes}"
            )
        return self

    @property
    def channels(self) -> int:
        return self.layout.channels

    @property
    def sample_count(self) -> int:
        """Total number of samples (width * height * channels)."""
        return self.width * self.height * self.layout.channels

    @classmethod
    def from_bytes(
        cls,
        layout: PixelLayout,
        width: int,
        height: int,
        raw: bytes | bytearray | memoryview,
    ) -> PixelBuffer:
        """Build a buffer from raw native-endian samples.

        The length of ``raw`` must match the size implied by the
        dimensions and layout exactly.

        Raises:
            ValueError: If the buffer length does not match.
        """
        expected = width * height * layout.channels * layout.bytes_per_sample
        actual = memoryview(raw).nbytes
        if actual != expected:
            raise ValueError(
                f"Raw buffer holds {actual} bytes but {width}x{height} "
                f"{layout.value} needs {expected} bytes"
            )
        samples = np.frombuffer(raw, dtype=layout.dtype)
        return cls(
            layout=layout,
            width=width,
            height=height,
            data=samples.reshape(height, width, layout.channels).copy(),
        )

    @classmethod
    def from_array(cls, array: np.ndarray, layout: PixelLayout | None = None) -> PixelBuffer:
        """Build a buffer from a 2-D (gray) or 3-D (H, W, C) array.

        When ``layout`` is omitted it is inferred from the channel count
        and dtype of the array.

        Raises:
            ValueError: If no layout matches the array.
        """
        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        if array.ndim != 3:
            raise ValueError(f"Expected a 2-D or 3-D array, got {array.ndim} dimensions")
        if layout is None:
            key = (array.shape[2], array.dtype.name)
            layout = _LAYOUT_BY_FORMAT.get(key)
            if layout is None:
                raise ValueError(
                    f"No pixel layout for {array.shape[2]} channel(s) of {array.dtype}"
                )
        height, width = array.shape[:2]
        return cls(
            layout=layout,
            width=width,
            height=height,
            data=np.array(array, dtype=layout.dtype, order="C", copy=True),
        )


# ---------------------------------------------------------------------------
# Device Models
# ---------------------------------------------------------------------------


class CameraConfig(BaseModel):
    """Device configuration for a capture node.

    Immutable once the node is constructed.
    """

    model_config = ConfigDict(frozen=True)

    device_index: int = Field(default=0, ge=0, description="Camera device index")
    frame_width: int = Field(default=640, gt=0, description="Requested frame width in pixels")
    frame_height: int = Field(default=480, gt=0, description="Requested frame height in pixels")
    api_preference: int = Field(
        default=0, ge=0, description="OpenCV capture API id (0 = CAP_ANY)"
    )
