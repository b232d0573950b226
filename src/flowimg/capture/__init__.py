"""Camera capture backends for flowimg.

Every backend implements the same blocking open / capture_frame /
release contract and delivers RGB-ordered PixelBuffers. The backend is
chosen by name from configuration.

Public API:
    CaptureBackend -- Abstract base class
    OpenCVCapture -- Native camera, synchronous reads
    OpenCVStreamCapture -- Native camera with a continuous grabber thread
    BrowserCapture -- Browser camera through an async MediaBridge
    create_backend -- Build a backend from its configured name
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from flowimg.capture.base import (
    CaptureBackend,
    CaptureError,
    DeviceNotReadyError,
    DeviceOpenError,
    FrameReadError,
    LifecycleMisuseError,
)

if TYPE_CHECKING:
    from flowimg.config.settings import BrowserConfig

__all__ = [
    "BrowserCapture",
    "CaptureBackend",
    "CaptureError",
    "DeviceNotReadyError",
    "DeviceOpenError",
    "FrameReadError",
    "LifecycleMisuseError",
    "OpenCVCapture",
    "OpenCVStreamCapture",
    "available_backends",
    "create_backend",
]

_BACKEND_NAMES = ("browser", "opencv", "opencv_stream")


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "OpenCVCapture":
        from flowimg.capture.opencv import OpenCVCapture
        return OpenCVCapture
    if name == "OpenCVStreamCapture":
        from flowimg.capture.stream import OpenCVStreamCapture
        return OpenCVStreamCapture
    if name == "BrowserCapture":
        from flowimg.capture.browser import BrowserCapture
        return BrowserCapture
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def available_backends() -> tuple[str, ...]:
    """Names accepted by create_backend, sorted."""
    return _BACKEND_NAMES


def create_backend(name: str, browser: BrowserConfig | None = None) -> CaptureBackend:
    """Instantiate a capture backend by name.

    Args:
        name: One of ``available_backends()``.
        browser: Bridge settings for the ``browser`` backend. Defaults
                 are used when omitted.

    Raises:
        CaptureError: If the name is not registered.
    """
    key = name.strip().lower()
    if key == "opencv":
        from flowimg.capture.opencv import OpenCVCapture
        return OpenCVCapture()
    if key == "opencv_stream":
        from flowimg.capture.stream import OpenCVStreamCapture
        return OpenCVStreamCapture()
    if key == "browser":
        from flowimg.capture.browser import BrowserCapture
        from flowimg.capture.websocket_bridge import WebSocketMediaBridge
        from flowimg.config.settings import BrowserConfig

        browser = browser or BrowserConfig()
        bridge = WebSocketMediaBridge(
            host=browser.host,
            port=browser.port,
            mime_type=browser.mime_type,
            quality=browser.quality,
        )
        return BrowserCapture(bridge, timeout=browser.timeout)
    names = ", ".join(available_backends())
    raise CaptureError(f"Unknown capture backend: {name!r}. Available backends: {names}")
