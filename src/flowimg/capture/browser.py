"""Browser camera capture through an asynchronous media bridge.

Browsers only expose cameras through promise-based APIs
(``navigator.mediaDevices.getUserMedia`` and friends). A MediaBridge
exposes those operations as coroutines; BrowserCapture runs them on a
private event loop thread and blocks the calling thread on each result,
so the bridge fits the same synchronous CaptureBackend contract as the
native cameras.

Waits are unbounded unless a ``timeout`` is given.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Coroutine, TypeVar

from pydantic import BaseModel, ConfigDict, Field

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

T = TypeVar("T")

# How long to wait for the loop thread to come up
LOOP_START_TIMEOUT = 5.0


class MediaConstraints(BaseModel):
    """Video constraints passed to getUserMedia."""

    model_config = ConfigDict(frozen=True)

    device_index: int = Field(default=0, ge=0, description="Index among the browser's video inputs")
    width: int = Field(gt=0, description="Ideal frame width")
    height: int = Field(gt=0, description="Ideal frame height")


class TrackSettings(BaseModel):
    """Settings the browser actually applied to the video track."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(ge=0)
    height: int = Field(ge=0)
    label: str = Field(default="", description="Device label reported by the browser")


class MediaAccessError(Exception):
    """A browser media promise rejected.

    ``name`` carries the DOMException name, e.g. ``NotAllowedError``
    when the user denied camera access or ``NotFoundError`` when no
    camera exists.
    """

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(f"{name}: {message}" if message else name)
        self.name = name


class MediaBridge(ABC):
    """Asynchronous access to a browser's camera.

    All coroutines run on the event loop owned by BrowserCapture.
    """

    @abstractmethod
    async def start(self) -> None:
        """Prepare the bridge (e.g. start serving the capture page)."""
        ...

    @abstractmethod
    async def get_user_media(self, constraints: MediaConstraints) -> TrackSettings:
        """Acquire a camera stream.

        Raises:
            MediaAccessError: If the browser rejected the request.
        """
        ...

    @abstractmethod
    async def grab_frame(self) -> bytes:
        """Encode the next video frame as PNG or JPEG bytes.

        Raises:
            MediaAccessError: If no stream is active or the browser is gone.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the stream and tear the bridge down."""
        ...


class EventLoopThread:
    """An asyncio event loop running in a daemon thread.

    ``run`` submits a coroutine from any other thread and blocks on its
    result without polling.
    """

    def __init__(self, name: str = "flowimg-media-loop") -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run_event_loop, name=self._name, daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=LOOP_START_TIMEOUT):
            raise RuntimeError(f"Event loop thread {self._name} failed to start")
        logger.debug("Event loop thread %s started", self._name)

    def _run_event_loop(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._ready.set()
        self._loop.run_forever()

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run ``coro`` on the loop and block until it settles.

        Raises:
            concurrent.futures.TimeoutError: If ``timeout`` elapses; the
                coroutine is cancelled.
            Exception: Whatever the coroutine raised.
        """
        if self._loop is None:
            coro.close()
            raise RuntimeError("Event loop thread is not running")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def stop(self) -> None:
        """Cancel pending tasks, stop the loop and join the thread."""
        loop, thread = self._loop, self._thread
        if loop is None or thread is None:
            return
        asyncio.run_coroutine_threadsafe(self._cancel_pending(), loop).result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()
        self._loop = None
        self._thread = None
        self._ready.clear()
        logger.debug("Event loop thread %s stopped", self._name)

    async def _cancel_pending(self) -> None:
        tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class BrowserCapture(CaptureBackend):
    """Captures frames from a browser camera through a MediaBridge."""

    name = "browser"

    def __init__(
        self,
        bridge: MediaBridge,
        config: CameraConfig | None = None,
        decoder: FrameDecoder | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(config=config)
        self._bridge = bridge
        self._decoder = decoder or FrameDecoder()
        self._timeout = timeout
        self._loop: EventLoopThread | None = None
        self._track: TrackSettings | None = None

    @property
    def track(self) -> TrackSettings | None:
        """Track settings reported by the browser once open."""
        return self._track

    def open(self, config: CameraConfig) -> None:
        """Acquire the browser camera and grab one probe frame."""
        self._check_can_open()
        self._config = config
        self._loop = EventLoopThread()
        self._loop.start()

        constraints = MediaConstraints(
            device_index=config.device_index,
            width=config.frame_width,
            height=config.frame_height,
        )
        try:
            self._track = self._loop.run(self._acquire(constraints), timeout=self._timeout)
        except MediaAccessError as e:
            self._teardown()
            logger.error("Browser refused camera access: %s", e)
            raise DeviceOpenError(f"Failed to acquire browser camera: {e}", backend=self.name) from e
        except concurrent.futures.TimeoutError as e:
            self._teardown()
            raise DeviceOpenError(
                f"Timed out after {self._timeout}s waiting for browser camera", backend=self.name
            ) from e
        except Exception as e:
            self._teardown()
            logger.error("Media bridge failed while acquiring the camera: %s", e)
            raise DeviceOpenError(
                f"Media bridge failed to acquire browser camera: {e!r}", backend=self.name
            ) from e
        logger.info(
            "Acquired browser camera %r (%dx%d)",
            self._track.label, self._track.width, self._track.height,
        )

        try:
            self._grab()
        except FrameReadError as e:
            self._teardown()
            raise DeviceNotReadyError(
                f"Browser camera did not deliver a probe frame: {e}", backend=self.name
            ) from e
        self._frame_counter = 0
        self._is_open = True

    def capture_frame(self) -> PixelBuffer:
        """Block until the browser delivers and the decoder decodes a frame."""
        self._check_open("capture a frame")
        image = self._grab()
        self._frame_counter += 1
        return image

    def release(self) -> None:
        """Stop the browser stream and the bridge."""
        self._check_open("release")
        self._is_open = False
        try:
            self._loop.run(self._bridge.stop(), timeout=self._timeout)
        except Exception as e:
            raise CaptureError(f"Failed to stop browser camera: {e!r}", backend=self.name) from e
        finally:
            self._stop_loop()
        logger.info("Released browser camera")

    async def _acquire(self, constraints: MediaConstraints) -> TrackSettings:
        await self._bridge.start()
        return await self._bridge.get_user_media(constraints)

    def _grab(self) -> PixelBuffer:
        try:
            data = self._loop.run(self._bridge.grab_frame(), timeout=self._timeout)
        except MediaAccessError as e:
            raise FrameReadError(
                f"Browser failed to grab a frame: {e}", backend=self.name, transient=False
            ) from e
        except concurrent.futures.TimeoutError as e:
            raise FrameReadError(
                f"Timed out after {self._timeout}s waiting for a browser frame", backend=self.name
            ) from e
        except Exception as e:
            raise FrameReadError(
                f"Media bridge failed to grab a frame: {e!r}", backend=self.name, transient=False
            ) from e
        try:
            return self._decoder.decode(data)
        except DecodeError as e:
            raise FrameReadError(f"Failed to decode browser frame: {e}", backend=self.name) from e

    def _teardown(self) -> None:
        """Stop a half-opened bridge after a failed open."""
        try:
            self._loop.run(self._bridge.stop(), timeout=self._timeout)
        except Exception as e:
            logger.warning("Failed to stop media bridge after failed open: %r", e)
        finally:
            self._stop_loop()

    def _stop_loop(self) -> None:
        loop, self._loop = self._loop, None
        if loop is not None:
            loop.stop()
