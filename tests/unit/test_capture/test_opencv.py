"""Tests for the OpenCVCapture implementation."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from flowimg.capture.base import (
    CaptureError,
    DeviceNotReadyError,
    DeviceOpenError,
    FrameReadError,
    LifecycleMisuseError,
)
from flowimg.capture.opencv import OpenCVCapture, frame_to_pixel_buffer
from flowimg.domain.models import CameraConfig, PixelLayout
from flowimg.imaging.decoder import FrameDecoder


class TestOpenCVCapture:
    """Test the OpenCVCapture concrete implementation."""

    def test_init_defaults(self) -> None:
        capture = OpenCVCapture()
        assert capture.is_open is False
        assert capture.device_index is None
        assert capture.frame_count == 0

    def test_open_applies_config(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        """open() uses the device index and API preference and reads a probe frame."""
        config = camera_config.model_copy(update={"device_index": 1, "frame_width": 320, "frame_height": 240})
        capture = OpenCVCapture()
        capture.open(config)
        patched_video_capture.assert_called_once_with(1, 0)
        assert capture.is_open
        assert capture.device_index == 1
        assert (fake_camera.width, fake_camera.height) == (320, 240)
        assert fake_camera.reads == 1
        assert capture.frame_count == 0

    def test_capture_converts_bgr_to_rgb(
        self, patched_video_capture: MagicMock, camera_config: CameraConfig
    ) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        image = capture.capture_frame()
        assert image.layout is PixelLayout.RGB8
        assert (image.width, image.height) == (640, 480)
        # The fake device delivers pure blue frames
        assert image.data[0, 0].tolist() == [0, 0, 255]
        assert capture.frame_count == 1

    def test_transient_read_failure(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        fake_camera.read = MagicMock(return_value=(False, None))
        with pytest.raises(FrameReadError) as exc_info:
            capture.capture_frame()
        assert exc_info.value.transient is True
        assert exc_info.value.backend == "opencv"

    def test_lost_device_is_not_transient(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        fake_camera.fail_after = fake_camera.reads
        with pytest.raises(FrameReadError) as exc_info:
            capture.capture_frame()
        assert exc_info.value.transient is False

    def test_driver_error_is_not_transient(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        fake_camera.read = MagicMock(side_effect=cv2.error("driver crashed"))
        with pytest.raises(FrameReadError) as exc_info:
            capture.capture_frame()
        assert exc_info.value.transient is False

    def test_release(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        capture.release()
        assert not capture.is_open
        assert fake_camera.release_calls == 1
        with pytest.raises(LifecycleMisuseError):
            capture.release()
        assert fake_camera.release_calls == 1

    def test_release_driver_error(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        fake_camera.release = MagicMock(side_effect=cv2.error("stuck"))
        with pytest.raises(CaptureError):
            capture.release()
        assert not capture.is_open

    def test_capture_before_open(self) -> None:
        with pytest.raises(LifecycleMisuseError):
            OpenCVCapture().capture_frame()

    def test_open_twice(self, patched_video_capture: MagicMock, camera_config: CameraConfig) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        with pytest.raises(LifecycleMisuseError):
            capture.open(camera_config)
        assert patched_video_capture.call_count == 1

    def test_reopen_after_release(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        capture = OpenCVCapture()
        capture.open(camera_config)
        capture.release()
        fake_camera.opened = True
        capture.open(camera_config)
        assert capture.is_open


class TestOpenCVCaptureOpenFailures:
    """Test device acquisition failures."""

    def test_device_not_opened(self, camera_config: CameraConfig) -> None:
        cap = MagicMock()
        cap.isOpened.return_value = False
        with patch("flowimg.capture.opencv.cv2.VideoCapture", return_value=cap):
            capture = OpenCVCapture()
            with pytest.raises(DeviceOpenError) as exc_info:
                capture.open(camera_config)
        assert exc_info.value.backend == "opencv"
        cap.release.assert_called_once()
        assert not capture.is_open

    def test_frame_size_change_is_rejected(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        """Frames that disagree with the device geometry are not passed on."""
        capture = OpenCVCapture()
        capture.open(camera_config)
        fake_camera.frame = np.zeros((240, 320, 3), dtype=np.uint8)
        with pytest.raises(FrameReadError, match="320x240") as exc_info:
            capture.capture_frame()
        assert exc_info.value.transient is True
        assert capture.frame_count == 0

    def test_first_frame_corrects_reported_size(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        """A driver that reports 640x480 but streams 320x240 is taken at its frames."""
        fake_camera.frame = np.zeros((240, 320, 3), dtype=np.uint8)
        capture = OpenCVCapture()
        capture.open(camera_config)
        assert (fake_camera.width, fake_camera.height) == (640, 480)
        image = capture.capture_frame()
        assert (image.width, image.height) == (320, 240)

    def test_constructor_error(self, camera_config: CameraConfig) -> None:
        with patch(
            "flowimg.capture.opencv.cv2.VideoCapture", side_effect=cv2.error("no backend")
        ):
            with pytest.raises(DeviceOpenError):
                OpenCVCapture().open(camera_config)

    def test_probe_frame_missing(self, camera_config: CameraConfig) -> None:
        """A device that opens but never delivers is released before raising."""
        cap = MagicMock()
        cap.isOpened.return_value = True
        cap.get.return_value = 0.0
        cap.read.return_value = (False, None)
        with patch("flowimg.capture.opencv.cv2.VideoCapture", return_value=cap):
            capture = OpenCVCapture()
            with pytest.raises(DeviceNotReadyError):
                capture.open(camera_config)
        cap.release.assert_called_once()
        assert not capture.is_open


class TestFrameToPixelBuffer:
    """Test normalization of raw OpenCV frames."""

    @pytest.fixture
    def decoder(self) -> FrameDecoder:
        return FrameDecoder()

    def test_gray_frame(self, decoder: FrameDecoder) -> None:
        frame = np.array([[1, 2], [3, 4]], dtype=np.uint8)
        image = frame_to_pixel_buffer(frame, decoder)
        assert image.layout is PixelLayout.GRAY8
        assert image.data[:, :, 0].tolist() == [[1, 2], [3, 4]]

    def test_bgra_frame(self, decoder: FrameDecoder) -> None:
        frame = np.array([[[1, 2, 3, 4]]], dtype=np.uint8)
        image = frame_to_pixel_buffer(frame, decoder)
        assert image.layout is PixelLayout.RGBA8
        assert image.data[0, 0].tolist() == [3, 2, 1, 4]

    def test_deep_frame(self, decoder: FrameDecoder) -> None:
        frame = np.array([[[100, 200, 50000]]], dtype=np.uint16)
        image = frame_to_pixel_buffer(frame, decoder)
        assert image.layout is PixelLayout.RGB16
        assert image.data[0, 0].tolist() == [50000, 200, 100]

    def test_encoded_mjpeg_frame(self, decoder: FrameDecoder) -> None:
        """Undecoded MJPEG payloads go through the frame decoder."""
        bgr = np.zeros((8, 16, 3), dtype=np.uint8)
        ok, encoded = cv2.imencode(".jpg", bgr)
        assert ok
        image = frame_to_pixel_buffer(encoded.reshape(1, -1), decoder)
        assert image.layout is PixelLayout.RGB8
        assert (image.width, image.height) == (16, 8)

    def test_corrupt_mjpeg_frame(self, decoder: FrameDecoder) -> None:
        frame = np.frombuffer(b"\xff\xd8" + b"\x00" * 32, dtype=np.uint8)
        with pytest.raises(FrameReadError):
            frame_to_pixel_buffer(frame, decoder, backend="opencv")

    def test_unexpected_shape(self, decoder: FrameDecoder) -> None:
        with pytest.raises(FrameReadError, match="Unexpected frame shape"):
            frame_to_pixel_buffer(np.zeros((2, 2, 3, 1), dtype=np.uint8), decoder)

    def test_unsupported_sample_type(self, decoder: FrameDecoder) -> None:
        with pytest.raises(FrameReadError, match="Unsupported frame format"):
            frame_to_pixel_buffer(np.zeros((2, 2), dtype=np.float64), decoder)

    def test_expected_size_mismatch(self, decoder: FrameDecoder) -> None:
        frame = np.zeros((2, 3, 3), dtype=np.uint8)
        assert frame_to_pixel_buffer(frame, decoder, expected_size=(3, 2)).width == 3
        with pytest.raises(FrameReadError, match="Frame is 3x2"):
            frame_to_pixel_buffer(frame, decoder, expected_size=(2, 3))

    def test_encoded_frame_size_mismatch(self, decoder: FrameDecoder) -> None:
        ok, encoded = cv2.imencode(".jpg", np.zeros((8, 16, 3), dtype=np.uint8))
        assert ok
        with pytest.raises(FrameReadError, match="16x8"):
            frame_to_pixel_buffer(encoded.reshape(1, -1), decoder, expected_size=(640, 480))
