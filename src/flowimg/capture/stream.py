"""Continuously streaming camera capture using OpenCV.

A background grabber thread keeps reading from the device so that the
driver's buffer never fills with stale frames. ``capture_frame`` hands
out the newest frame the caller has not seen yet, blocking until one
arrives.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

from flowimg.capture.base import CaptureError, DeviceOpenError, FrameReadError
from flowimg.capture.opencv import OpenCVCapture, frame_to_pixel_buffer
from flowimg.domain.models import CameraConfig, PixelBuffer
from flowimg.imaging.decoder import FrameDecoder

logger = logging.getLogger(__name__)

# Pause after a transient read failure before the grabber tries again
READ_RETRY_INTERVAL = 0.05
# How long release waits for the grabber's in-flight read. A grabber
# still blocked after this releases the device itself once it returns.
GRABBER_JOIN_TIMEOUT = 2.0


class OpenCVStreamCapture(OpenCVCapture):
    """OpenCV capture with a continuous grabber thread.

    Opening behaves like OpenCVCapture (open, apply resolution, probe)
    and then starts the stream.
    """

    name = "opencv_stream"

    def __init__(
        self,
        config: CameraConfig | None = None,
        decoder: FrameDecoder | None = None,
    ) -> None:
        super().__init__(config=config, decoder=decoder)
        self._frame_ready = threading.Condition()
        self._stop_event = threading.Event()
        self._grabber: threading.Thread | None = None
        self._latest: np.ndarray | None = None
        self._sequence = 0
        self._delivered = 0
        self._grab_error: FrameReadError | None = None
        self._grabber_exited = False
        self._release_on_exit = False
        self._abandoned_grabber: threading.Thread | None = None

    def open(self, config: CameraConfig) -> None:
        abandoned = self._abandoned_grabber
        if abandoned is not None and abandoned.is_alive():
            raise DeviceOpenError(
                f"Camera device {self.device_index} is still held by a stopped grabber",
                backend=self.name,
            )
        self._abandoned_grabber = None
        super().open(config)
        with self._frame_ready:
            self._latest = None
            self._sequence = 0
            self._delivered = 0
            self._grab_error = None
            self._grabber_exited = False
            self._release_on_exit = False
        self._stop_event.clear()
        self._grabber = threading.Thread(
            target=self._grab_loop,
            name=f"flowimg-grabber-{config.device_index}",
            daemon=True,
        )
        self._grabber.start()
        logger.info("Started capture stream on camera device %d", config.device_index)

    def capture_frame(self) -> PixelBuffer:
        """Wait for a frame newer than the last one returned."""
        self._check_open("capture a frame")
        with self._frame_ready:
            self._frame_ready.wait_for(
                lambda: self._sequence > self._delivered
                or self._grab_error is not None
                or self._stop_event.is_set()
            )
            if self._sequence > self._delivered:
                frame = self._latest
                self._delivered = self._sequence
            elif self._grab_error is not None:
                error = self._grab_error
                if error.transient:
                    self._grab_error = None
                raise error
            else:
                raise FrameReadError("Capture stream stopped", backend=self.name, transient=False)

        image = frame_to_pixel_buffer(
            frame, self._decoder, backend=self.name, expected_size=self._frame_size
        )
        self._frame_counter += 1
        return image

    def release(self) -> None:
        """Stop the grabber, then release the device.

        Raises:
            CaptureError: If the grabber is still inside a driver read
                after GRABBER_JOIN_TIMEOUT. The backend is closed and the
                device is released by the grabber when the read returns.
        """
        self._check_open("release")
        if not self._stop_stream():
            self._is_open = False
            raise CaptureError(
                f"Grabber thread for camera device {self.device_index} did not stop "
                f"within {GRABBER_JOIN_TIMEOUT}s; release deferred until its read returns",
                backend=self.name,
            )
        super().release()

    def _stop_stream(self) -> bool:
        """Stop the grabber. False if it is still running after the timeout."""
        self._stop_event.set()
        with self._frame_ready:
            self._frame_ready.notify_all()
        grabber, self._grabber = self._grabber, None
        if grabber is None:
            return True
        grabber.join(timeout=GRABBER_JOIN_TIMEOUT)
        with self._frame_ready:
            if self._grabber_exited:
                return True
            self._release_on_exit = True
        self._abandoned_grabber = grabber
        logger.error("Grabber thread for device %s did not stop", self.device_index)
        return False

    def _grab_loop(self) -> None:
        """Grabber thread body: read frames until stopped."""
        try:
            self._grab_frames()
        finally:
            with self._frame_ready:
                self._grabber_exited = True
                release = self._release_on_exit
            if release:
                self._release_abandoned_device()

    def _release_abandoned_device(self) -> None:
        try:
            self._release_device()
        except CaptureError as e:
            logger.error("Deferred release of device %s failed: %s", self.device_index, e)
        else:
            logger.info("Released camera device %s after its grabber stopped", self.device_index)

    def _grab_frames(self) -> None:
        while not self._stop_event.is_set():
            try:
                frame = self._read_frame()
            except FrameReadError as e:
                with self._frame_ready:
                    self._grab_error = e
                    self._frame_ready.notify_all()
                if not e.transient:
                    logger.error("Capture stream on device %s failed: %s", self.device_index, e)
                    return
                logger.debug("Transient read failure on device %s: %s", self.device_index, e)
                self._stop_event.wait(READ_RETRY_INTERVAL)
                continue
            with self._frame_ready:
                self._latest = frame
                self._sequence += 1
                self._grab_error = None
                self._frame_ready.notify_all()
