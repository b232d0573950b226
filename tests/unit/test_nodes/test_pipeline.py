"""End-to-end tests wiring capture, decode and tensor nodes together."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest

from flowimg.capture.base import LifecycleMisuseError
from flowimg.capture.opencv import OpenCVCapture
from flowimg.domain.models import CameraConfig, LifecycleState, PixelBuffer, PixelLayout
from flowimg.flow.ports import ChangeObserver, Edge, connect
from flowimg.nodes.camera import CameraCaptureNode
from flowimg.nodes.transform import DecodeImageNode, ImageToTensorNode


class TestCameraPipeline:
    """Camera -> tensor with a fake OpenCV device."""

    def test_capture_one_vga_frame(
        self, patched_video_capture: MagicMock, fake_camera, camera_config: CameraConfig
    ) -> None:
        """A 640x480 device yields one RGB8 image per trigger."""
        node: CameraCaptureNode[bool] = CameraCaptureNode(camera_config, OpenCVCapture())
        sink: Edge[PixelBuffer] = Edge()
        connect(node.output, sink)

        node.initialize()
        node.input.send(True)
        node.update()

        image = sink.next()
        assert image.layout is PixelLayout.RGB8
        assert (image.width, image.height) == (640, 480)
        assert image.sample_count == 640 * 480 * 3
        assert image.data[240, 320].tolist() == [0, 0, 255]

        node.shutdown()
        assert node.state is LifecycleState.SHUT_DOWN
        assert fake_camera.release_calls == 1
        with pytest.raises(LifecycleMisuseError):
            node.shutdown()

    def test_camera_to_tensor(
        self, patched_video_capture: MagicMock, camera_config: CameraConfig
    ) -> None:
        observer = ChangeObserver()
        camera: CameraCaptureNode[int] = CameraCaptureNode(
            camera_config, OpenCVCapture(), observer
        )
        to_tensor = ImageToTensorNode(observer, dtype=np.float32)
        sink: Edge[np.ndarray] = Edge()
        connect(camera.output, to_tensor.input)
        connect(to_tensor.output, sink)

        with camera:
            for tick in range(3):
                camera.input.send(tick)
            for _ in range(3):
                camera.update()
                to_tensor.update()
            camera.shutdown()

        assert len(sink) == 3
        tensor = sink.next()
        assert tensor.shape == (480, 640, 3)
        assert tensor.dtype == np.float32
        assert tensor[0, 0].tolist() == [0.0, 0.0, 255.0]
        assert observer.pending == 6


class TestDecodePipeline:
    """Encoded bytes -> tensor."""

    def test_png_to_float_tensor(self, png_bytes: bytes, rgb_pixels: np.ndarray) -> None:
        decode = DecodeImageNode()
        to_tensor = ImageToTensorNode(dtype=np.float32)
        sink: Edge[np.ndarray] = Edge()
        connect(decode.output, to_tensor.input)
        connect(to_tensor.output, sink)

        decode.input.send(png_bytes)
        decode.update()
        to_tensor.update()

        tensor = sink.next()
        np.testing.assert_array_equal(tensor, rgb_pixels.astype(np.float32))
