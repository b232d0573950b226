"""MediaBridge served to a local browser over a WebSocket.

Serves a small capture page on localhost. The page calls
``getUserMedia`` when asked, and answers each frame request by drawing
the current video frame onto a canvas and sending the encoded blob back
as one binary WebSocket message. The canvas is drawn unmirrored, so
frames arrive in canonical orientation even when the preview is shown
mirrored.

Wire protocol on ``/ws`` (JSON text plus binary frames)::

    server -> browser  {"type": "getUserMedia", "id": 1, "constraints": {...}}
                       {"type": "grabFrame", "id": 2, "mimeType": "...", "quality": 0.92}
                       {"type": "stop"}
    browser -> server  {"type": "ready"}
                       {"type": "stream", "id": 1, "width": 640, "height": 480, "label": "..."}
                       {"type": "error", "id": 2, "name": "NotAllowedError", "message": "..."}
                       <uint32 big-endian request id><encoded frame>

Every reply carries the id of the request it answers. Replies to
requests the caller stopped waiting for (after a timeout) are dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import socket
import struct
from typing import Any, NamedTuple, Union

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from flowimg.capture.browser import MediaAccessError, MediaBridge, MediaConstraints, TrackSettings

logger = logging.getLogger(__name__)

_DISCONNECTED = object()

_REQUEST_ID = struct.Struct(">I")


class FrameReply(NamedTuple):
    request_id: int
    data: bytes


BrowserMessage = Union[dict, FrameReply]


class BridgeStatus(BaseModel):
    status: str = "ok"
    browser_attached: bool = False


CAPTURE_PAGE = """<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <title>flowimg camera</title>
  <style>
    body { background: #111; color: #ccc; font-family: sans-serif; }
    video { max-width: 100%; transform: scaleX(-1); }
  </style>
</head>
<body>
  <p id="status">Connecting...</p>
  <video autoplay playsinline muted></video>
  <script>
    const statusLine = document.getElementById("status");
    const video = document.querySelector("video");
    const canvas = document.createElement("canvas");
    const ws = new WebSocket(`ws://${location.host}/ws`);
    ws.binaryType = "arraybuffer";
    let stream = null;

    function nextVideoFrame() {
      return new Promise((resolve) => {
        if (video.requestVideoFrameCallback) {
          video.requestVideoFrameCallback(() => resolve());
        } else {
          requestAnimationFrame(() => resolve());
        }
      });
    }

    async function openCamera(constraints) {
      const inputs = (await navigator.mediaDevices.enumerateDevices())
        .filter((d) => d.kind === "videoinput");
      const videoConstraints = {
        width: { ideal: constraints.width },
        height: { ideal: constraints.height },
      };
      const device = inputs[constraints.device_index];
      if (device && device.deviceId) {
        videoConstraints.deviceId = { exact: device.deviceId };
      }
      stream = await navigator.mediaDevices.getUserMedia({ video: videoConstraints, audio: false });
      video.srcObject = stream;
      await video.play();
      const track = stream.getVideoTracks()[0];
      const settings = track.getSettings();
      statusLine.textContent = `Streaming ${track.label}`;
      return {
        type: "stream",
        width: video.videoWidth || settings.width || 0,
        height: video.videoHeight || settings.height || 0,
        label: track.label,
      };
    }

    async function grabFrame(mimeType, quality) {
      if (!stream) {
        throw new DOMException("No active camera stream", "InvalidStateError");
      }
      await nextVideoFrame();
      canvas.width = video.videoWidth;
      canvas.height = video.videoHeight;
      canvas.getContext("2d").drawImage(video, 0, 0);
      const blob = await new Promise((resolve) => canvas.toBlob(resolve, mimeType, quality));
      if (!blob) {
        throw new DOMException("Canvas encoding failed", "EncodingError");
      }
      return blob.arrayBuffer();
    }

    function stopCamera() {
      if (stream) {
        stream.getTracks().forEach((t) => t.stop());
      }
      stream = null;
      video.srcObject = null;
      statusLine.textContent = "Stopped";
    }

    ws.onopen = () => {
      statusLine.textContent = "Connected, waiting for capture request";
      ws.send(JSON.stringify({ type: "ready" }));
    };
    ws.onclose = () => { stopCamera(); statusLine.textContent = "Disconnected"; };
    ws.onmessage = async (event) => {
      const request = JSON.parse(event.data);
      try {
        if (request.type === "getUserMedia") {
          const reply = await openCamera(request.constraints);
          ws.send(JSON.stringify({ ...reply, id: request.id }));
        } else if (request.type === "grabFrame") {
          const body = new Uint8Array(await grabFrame(request.mimeType, request.quality));
          const framed = new Uint8Array(4 + body.byteLength);
          new DataView(framed.buffer).setUint32(0, request.id);
          framed.set(body, 4);
          ws.send(framed.buffer);
        } else if (request.type === "stop") {
          stopCamera();
        }
      } catch (err) {
        ws.send(JSON.stringify({
          type: "error",
          id: request.id,
          name: err.name || "Error",
          message: err.message || String(err),
        }));
      }
    };
  </script>
</body>
</html>
"""


class _BrowserSession:
    """One connected capture page."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.messages: asyncio.Queue[Any] = asyncio.Queue()


class WebSocketMediaBridge(MediaBridge):
    """Bridges a browser camera through a localhost capture page.

    Only one browser page may be attached at a time; further pages are
    turned away.

    Example usage::

        bridge = WebSocketMediaBridge(port=8765)
        camera = BrowserCapture(bridge)
        camera.open(CameraConfig())   # blocks until a browser grants access
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8765,
        mime_type: str = "image/jpeg",
        quality: float = 0.92,
    ) -> None:
        self._host = host
        self._port = port
        self._mime_type = mime_type
        self._quality = quality
        self._session: _BrowserSession | None = None
        self._session_attached = asyncio.Event()
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._request_ids = itertools.count(1)
        self.app = create_app(self)

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}/"

    @property
    def browser_attached(self) -> bool:
        return self._session is not None

    async def start(self) -> None:
        """Start serving the capture page."""
        self._session_attached = asyncio.Event()
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self._host, self._port))
        except OSError as e:
            sock.close()
            raise MediaAccessError(
                "NotReadableError", f"Cannot serve capture page on {self._host}:{self._port}: {e}"
            ) from e
        config = uvicorn.Config(self.app, log_level="warning", lifespan="off")
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))
        logger.info("Open %s in a browser to grant camera access", self.url)

    async def get_user_media(self, constraints: MediaConstraints) -> TrackSettings:
        """Wait for a browser page, then ask it for a camera stream."""
        await self._session_attached.wait()
        session = self._require_session()
        request_id = await self._send_request(
            session, {"type": "getUserMedia", "constraints": constraints.model_dump()}
        )
        reply = await self._next_message(session, request_id)
        if not isinstance(reply, dict) or reply.get("type") != "stream":
            raise MediaAccessError("InvalidStateError", f"Unexpected reply to getUserMedia: {reply!r}")
        return TrackSettings(
            width=int(reply.get("width", 0)),
            height=int(reply.get("height", 0)),
            label=str(reply.get("label", "")),
        )

    async def grab_frame(self) -> bytes:
        session = self._require_session()
        request_id = await self._send_request(
            session, {"type": "grabFrame", "mimeType": self._mime_type, "quality": self._quality}
        )
        reply = await self._next_message(session, request_id)
        if not isinstance(reply, FrameReply):
            raise MediaAccessError("InvalidStateError", f"Expected a frame, got {reply!r}")
        return reply.data

    async def stop(self) -> None:
        """Stop the browser stream and the server."""
        session = self._session
        if session is not None:
            try:
                await session.websocket.send_json({"type": "stop"})
                await session.websocket.close()
            except (RuntimeError, WebSocketDisconnect) as e:
                logger.debug("Capture page already closed: %s", e)
        if self._server is not None:
            self._server.should_exit = True
            await self._serve_task
            self._server = None
            self._serve_task = None
            logger.info("Stopped capture page server")

    async def attach(self, websocket: WebSocket) -> None:
        """Serve one capture page until it disconnects."""
        await websocket.accept()
        if self._session is not None:
            logger.warning("Rejecting second capture page; one is already attached")
            await websocket.close(code=1013)
            return

        session = _BrowserSession(websocket)
        self._session = session
        self._session_attached.set()
        logger.info("Capture page attached")
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                if message.get("bytes") is not None:
                    data = message["bytes"]
                    if len(data) < _REQUEST_ID.size:
                        logger.warning("Dropping %d-byte frame without a request id", len(data))
                        continue
                    (request_id,) = _REQUEST_ID.unpack_from(data)
                    await session.messages.put(FrameReply(request_id, data[_REQUEST_ID.size :]))
                elif message.get("text") is not None:
                    payload = json.loads(message["text"])
                    if payload.get("type") == "ready":
                        continue
                    await session.messages.put(payload)
        finally:
            self._session = None
            self._session_attached.clear()
            await session.messages.put(_DISCONNECTED)
            logger.info("Capture page detached")

    def _require_session(self) -> _BrowserSession:
        if self._session is None:
            raise MediaAccessError("InvalidStateError", "No capture page is attached")
        return self._session

    async def _send_request(self, session: _BrowserSession, request: dict[str, Any]) -> int:
        request_id = next(self._request_ids)
        await session.websocket.send_json({**request, "id": request_id})
        return request_id

    async def _next_message(self, session: _BrowserSession, request_id: int) -> BrowserMessage:
        """Wait for the reply to ``request_id``, dropping stale replies."""
        while True:
            message = await session.messages.get()
            if message is _DISCONNECTED:
                raise MediaAccessError("InvalidStateError", "Capture page disconnected")
            reply_id = message.request_id if isinstance(message, FrameReply) else message.get("id")
            if reply_id != request_id:
                logger.debug("Dropping stale reply to request %s", reply_id)
                continue
            if isinstance(message, dict) and message.get("type") == "error":
                raise MediaAccessError(message.get("name", "Error"), message.get("message", ""))
            return message


def create_app(bridge: WebSocketMediaBridge) -> FastAPI:
    """Create the FastAPI application serving the capture page."""
    app = FastAPI(
        title="flowimg browser camera",
        description="Capture page bridging a browser camera into flowimg",
        version="0.1.0",
    )

    @app.get("/", response_class=HTMLResponse)
    async def capture_page() -> str:
        return CAPTURE_PAGE

    @app.get("/health")
    async def health_check() -> BridgeStatus:
        return BridgeStatus(status="ok", browser_attached=bridge.browser_attached)

    @app.websocket("/ws")
    async def media_socket(websocket: WebSocket) -> None:
        await bridge.attach(websocket)

    return app
