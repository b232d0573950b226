"""Camera capture node.

Drives a CaptureBackend through the node lifecycle and emits one
PixelBuffer per trigger token received on its input.

Lifecycle::

    UNINITIALIZED --initialize/first update--> READY --shutdown--> SHUT_DOWN
          |                                      |
          +------------ device error ------------+----> FAILED

FAILED and SHUT_DOWN are terminal; a new node must be built to retry.
An ``update`` on an UNINITIALIZED node initializes it first, so nodes
that never receive an explicit ``initialize`` still work.
"""

from __future__ import annotations

import logging
import weakref
from typing import Generic, TypeVar

from flowimg.capture.base import (
    CaptureBackend,
    CaptureError,
    DeviceOpenError,
    FrameReadError,
    LifecycleMisuseError,
)
from flowimg.domain.models import CameraConfig, LifecycleState, PixelBuffer
from flowimg.flow.node import Node
from flowimg.flow.ports import ChangeObserver, Input, Output, ReceiveError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotReadyError(LifecycleMisuseError):
    """Raised when a FAILED or SHUT_DOWN node is asked to capture."""


class NoActiveDeviceError(LifecycleMisuseError):
    """Raised when shutting down a node that never opened a device."""


def _release_on_teardown(backend: CaptureBackend) -> None:
    """Finalizer: release a device the owner never shut down."""
    if not backend.is_open:
        return
    logger.info("Releasing %s capture on node teardown", backend.name)
    try:
        backend.release()
    except CaptureError as e:
        logger.error("Failed to release %s capture on teardown: %s", backend.name, e)


class CameraCaptureNode(Node, Generic[T]):
    """Emits camera frames on demand.

    Each value arriving on ``input`` (of any type ``T``) triggers one
    capture; the frame is sent on ``output``. An update with no pending
    trigger does nothing.

    The node exclusively owns its backend. If the node is discarded
    without ``shutdown``, an open device is still released exactly once.

    Example usage::

        node = CameraCaptureNode(CameraConfig(device_index=0), OpenCVCapture())
        connect(node.output, converter.input)
        node.input.send(True)
        node.update()
        node.shutdown()
    """

    def __init__(
        self,
        config: CameraConfig,
        backend: CaptureBackend,
        change_observer: ChangeObserver | None = None,
    ) -> None:
        self._config = config
        self._backend = backend
        self._state = LifecycleState.UNINITIALIZED
        self.output: Output[PixelBuffer] = Output(change_observer)
        self.input: Input[T] = Input()
        self._finalizer = weakref.finalize(self, _release_on_teardown, backend)

    @property
    def config(self) -> CameraConfig:
        return self._config

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def backend(self) -> CaptureBackend:
        return self._backend

    def initialize(self) -> None:
        """Open the device.

        Raises:
            LifecycleMisuseError: If the node is not UNINITIALIZED.
            CaptureError: If the device could not be opened or did not
                deliver a probe frame; the node is then FAILED. Failures
                outside the CaptureError hierarchy surface as
                DeviceOpenError.
        """
        if self._state is not LifecycleState.UNINITIALIZED:
            raise LifecycleMisuseError(
                f"Cannot initialize a camera node in state {self._state.value}",
                backend=self._backend.name,
            )
        try:
            self._backend.open(self._config)
        except CaptureError as e:
            self._state = LifecycleState.FAILED
            logger.error("Camera device %d failed to initialize: %s", self._config.device_index, e)
            raise
        except Exception as e:
            self._state = LifecycleState.FAILED
            logger.error("Camera device %d failed to initialize: %r", self._config.device_index, e)
            raise DeviceOpenError(
                f"Camera device {self._config.device_index} failed to open: {e!r}",
                backend=self._backend.name,
            ) from e
        self._state = LifecycleState.READY
        logger.info(
            "Camera node ready (%s, device %d)", self._backend.name, self._config.device_index
        )

    def update(self) -> None:
        """Capture and emit one frame if a trigger token is pending.

        Raises:
            NotReadyError: If the node is FAILED or SHUT_DOWN.
            CaptureError: If initialization or the capture failed.
                Transient read failures leave the node READY; others
                move it to FAILED.
            EmitError: If the frame could not be sent downstream. The
                lifecycle state is unchanged.
        """
        try:
            self.input.next()
        except ReceiveError:
            return

        if self._state is LifecycleState.UNINITIALIZED:
            self.initialize()
        if self._state is not LifecycleState.READY:
            raise NotReadyError(
                f"Camera node is {self._state.value}", backend=self._backend.name
            )

        try:
            frame = self._backend.capture_frame()
        except FrameReadError as e:
            if not e.transient:
                self._state = LifecycleState.FAILED
                logger.error("Camera device %d lost: %s", self._config.device_index, e)
            else:
                logger.warning("Frame read failed on device %d: %s", self._config.device_index, e)
            raise
        except LifecycleMisuseError:
            raise
        except CaptureError as e:
            self._state = LifecycleState.FAILED
            logger.error("Camera device %d failed: %s", self._config.device_index, e)
            raise

        self._emit(self.output, frame)

    def shutdown(self) -> None:
        """Release the device.

        Raises:
            NoActiveDeviceError: If no device was ever opened.
            LifecycleMisuseError: If the node is already SHUT_DOWN.
            CaptureError: If the driver failed to release the device;
                the node is then FAILED.
        """
        if self._state is LifecycleState.SHUT_DOWN:
            raise LifecycleMisuseError(
                "Camera node is already shut down", backend=self._backend.name
            )
        if not self._backend.is_open:
            raise NoActiveDeviceError(
                f"No active camera device to shut down (state {self._state.value})",
                backend=self._backend.name,
            )
        self._finalizer.detach()
        try:
            self._backend.release()
        except CaptureError as e:
            self._state = LifecycleState.FAILED
            logger.error("Failed to release camera device %d: %s", self._config.device_index, e)
            raise
        self._state = LifecycleState.SHUT_DOWN
        logger.info("Camera node shut down (device %d)", self._config.device_index)

    def close(self) -> None:
        """Release the device if it is still open; never raises misuse errors.

        A node whose device was released here is SHUT_DOWN, exactly as
        after ``shutdown``. Closing a node without an open device does
        nothing.

        Raises:
            CaptureError: If the driver failed to release the device;
                the node is then FAILED.
        """
        if self._backend.is_open:
            self.shutdown()

    def __enter__(self) -> CameraCaptureNode[T]:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()
