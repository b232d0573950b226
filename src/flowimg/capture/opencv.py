"""Native camera capture using OpenCV.

Opens a local camera by device index, applies the requested resolution
and reads frames synchronously. Frames arrive in OpenCV's BGR(A) order
and are normalized to RGB(A) before they leave the backend.
"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from flowimg.capture.base import (
    CaptureBackend,
    CaptureError,
    DeviceNotReadyError,
    DeviceOpenError,
    FrameReadError,
)
from flowimg.domain.models import CameraConfig, PixelBuffer
from flowimg.imaging.decoder import DecodeError, FrameDecoder

logger = logging.getLogger(__name__)

_JPEG_SOI = b"\xff\xd8"


class OpenCVCapture(CaptureBackend):
    """Captures frames from a local camera using OpenCV.

    ``capture_frame`` blocks the calling thread until the driver
    delivers a frame.
    """

    name = "opencv"

    def __init__(
        self,
        config: CameraConfig | None = None,
        decoder: FrameDecoder | None = None,
    ) -> None:
        super().__init__(config=config)
        self._decoder = decoder or FrameDecoder()
        self._cap: cv2.VideoCapture | None = None
        self._frame_size: tuple[int, int] | None = None

    @property
    def device_index(self) -> int | None:
        return self._config.device_index if self._config is not None else None

    def open(self, config: CameraConfig) -> None:
        """Open the camera and read one throwaway frame."""
        self._check_can_open()
        self._config = config
        self._cap = self._open_device(config)
        try:
            first_frame = self._read_frame()
        except FrameReadError as e:
            logger.error("Camera device %d opened but delivered no frame", config.device_index)
            self._release_device()
            raise DeviceNotReadyError(
                f"Camera device {config.device_index} did not deliver a probe frame: {e}",
                backend=self.name,
            ) from e
        self._frame_size = self._settle_frame_size(first_frame)
        self._frame_counter = 0
        self._is_open = True

    def capture_frame(self) -> PixelBuffer:
        """Read and normalize the next frame."""
        self._check_open("capture a frame")
        frame = self._read_frame()
        image = frame_to_pixel_buffer(
            frame, self._decoder, backend=self.name, expected_size=self._frame_size
        )
        self._frame_counter += 1
        return image

    def release(self) -> None:
        """Release the camera device."""
        self._check_open("release")
        self._is_open = False
        self._release_device()
        logger.info("Released camera device %s", self.device_index)

    def _open_device(self, config: CameraConfig) -> cv2.VideoCapture:
        try:
            cap = cv2.VideoCapture(config.device_index, config.api_preference)
        except cv2.error as e:
            raise DeviceOpenError(
                f"Failed to open camera device {config.device_index}: {e}", backend=self.name
            ) from e
        if not cap.isOpened():
            cap.release()
            logger.error("Failed to open camera device %d", config.device_index)
            raise DeviceOpenError(
                f"Failed to open camera device {config.device_index}", backend=self.name
            )

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.frame_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.frame_height)
        actual_w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._frame_size = (actual_w, actual_h) if actual_w > 0 and actual_h > 0 else None
        logger.info(
            "Opened camera device %d (%dx%d)", config.device_index, actual_w, actual_h,
        )
        if (actual_w, actual_h) != (config.frame_width, config.frame_height):
            logger.warning(
                "Camera device %d ignored requested resolution %dx%d",
                config.device_index, config.frame_width, config.frame_height,
            )
        return cap

    def _settle_frame_size(self, first_frame: np.ndarray) -> tuple[int, int] | None:
        """Frame geometry every later frame must match.

        Starts from the size the driver reports. Drivers that report a
        size they do not deliver are corrected by the first frame.
        """
        if _is_encoded(first_frame) or first_frame.ndim not in (2, 3):
            return self._frame_size
        delivered = (first_frame.shape[1], first_frame.shape[0])
        if self._frame_size is not None and delivered != self._frame_size:
            logger.warning(
                "Camera device %s reports %dx%d but delivers %dx%d frames",
                self.device_index, *self._frame_size, *delivered,
            )
        return delivered

    def _read_frame(self) -> np.ndarray:
        """Blocking read of one raw frame."""
        cap = self._cap
        if cap is None:
            raise FrameReadError("Camera device is not open", backend=self.name, transient=False)
        try:
            ok, frame = cap.read()
        except cv2.error as e:
            raise FrameReadError(
                f"Camera driver failed to read a frame: {e}", backend=self.name, transient=False
            ) from e
        if not ok or frame is None:
            raise FrameReadError(
                "Failed to read frame from camera device",
                backend=self.name,
                transient=bool(cap.isOpened()),
            )
        return frame

    def _release_device(self) -> None:
        cap, self._cap = self._cap, None
        self._frame_size = None
        if cap is None:
            return
        try:
            cap.release()
        except cv2.error as e:
            raise CaptureError(
                f"Failed to release camera device {self.device_index}: {e}", backend=self.name
            ) from e


def frame_to_pixel_buffer(
    frame: np.ndarray,
    decoder: FrameDecoder,
    backend: str = "",
    expected_size: tuple[int, int] | None = None,
) -> PixelBuffer:
    """Normalize a raw OpenCV frame into an RGB-ordered PixelBuffer.

    Decoded frames take the fast path (channel swap only). Frames still
    holding a compressed bitstream, as delivered when RGB conversion is
    disabled on an MJPEG device, go through the decoder.

    When ``expected_size`` (width, height) is given, a frame of any
    other size is rejected as a transient read failure.

    Raises:
        FrameReadError: If the frame is malformed, cannot be decoded or
            does not match ``expected_size``.
    """
    if _is_encoded(frame):
        try:
            image = decoder.decode(frame.tobytes())
        except DecodeError as e:
            raise FrameReadError(f"Failed to decode compressed frame: {e}", backend=backend) from e
        _check_frame_size(image.width, image.height, expected_size, backend)
        return image

    if frame.ndim == 2:
        frame = frame[:, :, np.newaxis]
    if frame.ndim != 3:
        raise FrameReadError(f"Unexpected frame shape {frame.shape}", backend=backend)

    height, width, channels = frame.shape
    _check_frame_size(width, height, expected_size, backend)

    if channels == 3:
        frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    elif channels == 4:
        frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2RGBA)
    try:
        return PixelBuffer.from_array(frame)
    except ValueError as e:
        raise FrameReadError(f"Unsupported frame format: {e}", backend=backend) from e


def _check_frame_size(
    width: int, height: int, expected_size: tuple[int, int] | None, backend: str
) -> None:
    if expected_size is not None and (width, height) != expected_size:
        raise FrameReadError(
            f"Frame is {width}x{height} but the device delivers "
            f"{expected_size[0]}x{expected_size[1]}",
            backend=backend,
        )


def _is_encoded(frame: np.ndarray) -> bool:
    """Whether a frame is a 1-D or single-row compressed JPEG bitstream."""
    if frame.dtype != np.uint8 or frame.size < len(_JPEG_SOI):
        return False
    if frame.ndim == 1 or (frame.ndim == 2 and frame.shape[0] == 1):
        return frame.reshape(-1)[: len(_JPEG_SOI)].tobytes() == _JPEG_SOI
    return False
