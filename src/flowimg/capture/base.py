"""Abstract base class for camera capture backends.

All capture implementations must conform to this interface, enabling
the capture node to drive a native OpenCV camera, a continuously
streaming OpenCV camera or a browser camera without changing any other
code. Whatever the device delivers, ``capture_frame`` returns a
PixelBuffer in canonical orientation (top-left origin, row-major) and
RGB channel order.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from flowimg.domain.models import CameraConfig, PixelBuffer

logger = logging.getLogger(__name__)


class CaptureBackend(ABC):
    """Abstract interface for opening a camera and reading frames.

    Calls are blocking. A backend owns at most one device handle at a
    time; using it in the wrong order raises LifecycleMisuseError rather
    than being ignored.

    Example usage::

        with OpenCVCapture(CameraConfig(device_index=1)) as camera:
            image = camera.capture_frame()
    """

    name: str = "base"

    def __init__(self, config: CameraConfig | None = None) -> None:
        self._config = config
        self._frame_counter: int = 0
        self._is_open: bool = False

    @property
    def is_open(self) -> bool:
        """Whether the device is currently open and ready."""
        return self._is_open

    @property
    def frame_count(self) -> int:
        """Number of frames delivered since the device was opened."""
        return self._frame_counter

    @abstractmethod
    def open(self, config: CameraConfig) -> None:
        """Open the device and verify it delivers frames.

        Raises:
            DeviceOpenError: If the device is absent, busy or not permitted.
            DeviceNotReadyError: If the device opened but the readiness
                probe failed. The device is released before raising.
            LifecycleMisuseError: If the backend is already open.
        """
        ...

    @abstractmethod
    def capture_frame(self) -> PixelBuffer:
        """Block until the device delivers the next frame.

        Raises:
            FrameReadError: If no frame could be read.
            LifecycleMisuseError: If the backend is not open.
        """
        ...

    @abstractmethod
    def release(self) -> None:
        """Release the device.

        Raises:
            LifecycleMisuseError: If the backend is not open, including a
                second release.
            CaptureError: If the driver fails to release the device.
        """
        ...

    def _check_can_open(self) -> None:
        if self._is_open:
            raise LifecycleMisuseError(f"{self.name} capture is already open", backend=self.name)

    def _check_open(self, operation: str) -> None:
        if not self._is_open:
            raise LifecycleMisuseError(
                f"Cannot {operation}: {self.name} capture is not open", backend=self.name
            )

    def __enter__(self) -> CaptureBackend:
        """Context manager entry -- opens the device with the constructor config."""
        self.open(self._config or CameraConfig())
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Context manager exit -- releases the device if still open."""
        if self._is_open:
            self.release()


class CaptureError(Exception):
    """Raised when a capture device fails."""

    def __init__(self, message: str, backend: str = "") -> None:
        super().__init__(message)
        self.backend = backend


class DeviceOpenError(CaptureError):
    """The device is absent, busy or access was denied."""


class DeviceNotReadyError(CaptureError):
    """The device opened but did not deliver a probe frame."""


class FrameReadError(CaptureError):
    """A frame could not be read.

    ``transient`` is True when the device is still usable and the read
    may be retried by the caller.
    """

    def __init__(self, message: str, backend: str = "", transient: bool = True) -> None:
        super().__init__(message, backend=backend)
        self.transient = transient


class LifecycleMisuseError(CaptureError):
    """An operation was invoked in the wrong lifecycle state."""
