"""Shared test fixtures for the flowimg test suite.

Provides common fixtures used across unit tests: sample pixel arrays,
encoded images, camera configuration and a fake OpenCV VideoCapture
that stands in for real camera hardware.
"""

from __future__ import annotations

import io
import threading
import time
from typing import Callable
from unittest.mock import patch

import cv2
import numpy as np
import pytest
from PIL import Image

from flowimg.domain.models import CameraConfig, PixelBuffer, PixelLayout


# ---------------------------------------------------------------------------
# Image Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def rgb_pixels() -> np.ndarray:
    """A 2x3 RGB8 image with distinct, known samples."""
    return np.array(
        [
            [[255, 0, 0], [0, 255, 0], [0, 0, 255]],
            [[10, 20, 30], [40, 50, 60], [70, 80, 90]],
        ],
        dtype=np.uint8,
    )


@pytest.fixture
def rgb_image(rgb_pixels: np.ndarray) -> PixelBuffer:
    return PixelBuffer.from_array(rgb_pixels, PixelLayout.RGB8)


@pytest.fixture
def encode_png() -> Callable[[np.ndarray], bytes]:
    """Encode an array as PNG with Pillow."""

    def _encode(array: np.ndarray) -> bytes:
        buffer = io.BytesIO()
        Image.fromarray(array).save(buffer, format="PNG")
        return buffer.getvalue()

    return _encode


@pytest.fixture
def png_bytes(rgb_pixels: np.ndarray, encode_png: Callable[[np.ndarray], bytes]) -> bytes:
    """The rgb_pixels image encoded as PNG."""
    return encode_png(rgb_pixels)


# ---------------------------------------------------------------------------
# Camera Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def camera_config() -> CameraConfig:
    return CameraConfig(device_index=0, frame_width=640, frame_height=480)


class FakeVideoCapture:
    """In-memory replacement for cv2.VideoCapture.

    Honors requested resolutions and delivers pure blue BGR frames.
    ``fail_after`` makes the device disappear after that many reads.
    """

    def __init__(
        self,
        opened: bool = True,
        width: int = 640,
        height: int = 480,
        frame: np.ndarray | None = None,
        fail_after: int | None = None,
        read_delay: float = 0.0,
    ) -> None:
        self.opened = opened
        self.width = width
        self.height = height
        self.frame = frame
        self.fail_after = fail_after
        self.read_delay = read_delay
        self.reads = 0
        self.release_calls = 0
        self._lock = threading.Lock()

    def isOpened(self) -> bool:  # noqa: N802 - OpenCV API name
        return self.opened

    def set(self, prop: int, value: float) -> bool:
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            self.width = int(value)
        elif prop == cv2.CAP_PROP_FRAME_HEIGHT:
            self.height = int(value)
        return True

    def get(self, prop: int) -> float:
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            return float(self.width)
        if prop == cv2.CAP_PROP_FRAME_HEIGHT:
            return float(self.height)
        return 0.0

    def read(self) -> tuple[bool, np.ndarray | None]:
        if self.read_delay:
            time.sleep(self.read_delay)
        with self._lock:
            self.reads += 1
            if self.fail_after is not None and self.reads > self.fail_after:
                self.opened = False
            if not self.opened:
                return False, None
        if self.frame is not None:
            return True, self.frame.copy()
        frame = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        frame[:, :, 0] = 255  # Blue in BGR order
        return True, frame

    def release(self) -> None:
        self.release_calls += 1
        self.opened = False


@pytest.fixture
def fake_camera() -> FakeVideoCapture:
    return FakeVideoCapture()


@pytest.fixture
def patched_video_capture(fake_camera: FakeVideoCapture):
    """Patch cv2.VideoCapture so every backend opens ``fake_camera``."""
    with patch("flowimg.capture.opencv.cv2.VideoCapture", return_value=fake_camera) as mock_cls:
        yield mock_cls
