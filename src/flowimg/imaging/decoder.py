"""Frame decoding for flowimg.

Turns a complete, self-describing encoded image (PNG, JPEG, BMP, TIFF,
WebP, Radiance HDR, ...) into a PixelBuffer. The format is sniffed from
the byte signature; callers never declare it.

Pillow handles identification and 8-bit decoding. Deep images (16-bit
color PNG/TIFF) and float formats Pillow does not read are decoded with
OpenCV so that no sample precision is lost.
"""

from __future__ import annotations

import enum
import io
import logging

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from flowimg.domain.models import PixelBuffer, PixelLayout

logger = logging.getLogger(__name__)


class DecodeErrorKind(str, enum.Enum):
    """Why a byte buffer could not be decoded."""

    UNRECOGNIZED_FORMAT = "unrecognized_format"
    CORRUPT_DATA = "corrupt_data"
    UNSUPPORTED_LAYOUT = "unsupported_layout"


class DecodeError(Exception):
    """Raised when an encoded image cannot be turned into a PixelBuffer."""

    def __init__(self, message: str, kind: DecodeErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


# Pillow modes that map directly onto a layout
_PILLOW_LAYOUTS: dict[str, PixelLayout] = {
    "L": PixelLayout.GRAY8,
    "1": PixelLayout.GRAY8,
    "LA": PixelLayout.GRAY_ALPHA8,
    "RGB": PixelLayout.RGB8,
    "RGBA": PixelLayout.RGBA8,
    "I;16": PixelLayout.GRAY16,
    "I;16L": PixelLayout.GRAY16,
    "I;16B": PixelLayout.GRAY16,
    "I;16N": PixelLayout.GRAY16,
}

# Pillow reports 16-bit color images with an 8-bit mode (16-bit LA as
# "RGBA"), so the layout comes from the raw mode prefix instead
_DEEP_LAYOUTS: dict[str, PixelLayout] = {
    "LA": PixelLayout.GRAY_ALPHA16,
    "RGB": PixelLayout.RGB16,
    "RGBA": PixelLayout.RGBA16,
}

_DECODE_FAILURES = (OSError, SyntaxError, ValueError, EOFError, Image.DecompressionBombError)


class FrameDecoder:
    """Decodes encoded image bytes into PixelBuffers.

    Stateless; a single instance may be shared by any number of nodes.

    Example usage::

        decoder = FrameDecoder()
        image = decoder.decode(Path("frame.png").read_bytes())
        print(image.layout, image.width, image.height)
    """

    def decode(self, data: bytes | bytearray | memoryview) -> PixelBuffer:
        """Decode one encoded image.

        Args:
            data: The complete encoded image. It is neither modified nor
                  retained.

        Returns:
            A PixelBuffer whose layout matches the encoded pixels.

        Raises:
            DecodeError: With ``kind`` UNRECOGNIZED_FORMAT when no decoder
                matches the signature, CORRUPT_DATA when a recognized
                image fails to decode, UNSUPPORTED_LAYOUT for palette,
                CMYK and other layouts without a PixelLayout.
        """
        if len(data) == 0:
            raise DecodeError("Cannot decode an empty buffer", DecodeErrorKind.UNRECOGNIZED_FORMAT)

        try:
            image = Image.open(io.BytesIO(data))
        except UnidentifiedImageError:
            return self._decode_with_opencv(data)
        except _DECODE_FAILURES as e:
            raise DecodeError(f"Failed to read image header: {e}", DecodeErrorKind.CORRUPT_DATA) from e

        with image:
            return self._decode_with_pillow(image, data)

    def _decode_with_pillow(self, image: Image.Image, data: bytes | bytearray | memoryview) -> PixelBuffer:
        fmt = image.format
        mode = image.mode
        raw_mode = _raw_mode(image)

        deep_layout = _deep_layout(raw_mode)
        if deep_layout is not None:
            return self._decode_deep(data, deep_layout, fmt)

        if mode == "I" and raw_mode.startswith("I;16"):
            layout = PixelLayout.GRAY16
        else:
            layout = _PILLOW_LAYOUTS.get(mode)
        if layout is None:
            raise DecodeError(
                f"{fmt} image with pixel mode {mode!r} has no supported layout",
                DecodeErrorKind.UNSUPPORTED_LAYOUT,
            )

        try:
            image.load()
            if mode == "1":
                image = image.convert("L")
            array = np.asarray(image)
        except _DECODE_FAILURES as e:
            raise DecodeError(
                f"Failed to decode {fmt} image: {e}", DecodeErrorKind.CORRUPT_DATA
            ) from e

        logger.debug("Decoded %s image %dx%d as %s", fmt, image.width, image.height, layout.value)
        return PixelBuffer.from_array(array, layout)

    def _decode_deep(
        self, data: bytes | bytearray | memoryview, layout: PixelLayout, fmt: str | None
    ) -> PixelBuffer:
        """Decode a 16-bit color image through OpenCV."""
        array = _imdecode(data)
        if array is None or array.dtype != np.uint16:
            raise DecodeError(
                f"Failed to decode 16-bit {fmt} image", DecodeErrorKind.CORRUPT_DATA
            )
        if layout is PixelLayout.GRAY_ALPHA16:
            # OpenCV expands gray+alpha to BGRA with equal color planes
            if array.ndim == 3 and array.shape[2] == 4:
                array = array[:, :, [0, 3]]
        else:
            array = _to_rgb_order(array)
        try:
            return PixelBuffer.from_array(array, layout)
        except ValueError as e:
            raise DecodeError(str(e), DecodeErrorKind.CORRUPT_DATA) from e

    def _decode_with_opencv(self, data: bytes | bytearray | memoryview) -> PixelBuffer:
        """Fallback for formats Pillow cannot identify (HDR, EXR, ...)."""
        array = _imdecode(data)
        if array is None:
            raise DecodeError(
                "Image format not recognized", DecodeErrorKind.UNRECOGNIZED_FORMAT
            )
        try:
            image = PixelBuffer.from_array(_to_rgb_order(array))
        except ValueError as e:
            raise DecodeError(str(e), DecodeErrorKind.UNSUPPORTED_LAYOUT) from e
        logger.debug(
            "Decoded image %dx%d as %s via OpenCV", image.width, image.height, image.layout.value
        )
        return image


def _raw_mode(image: Image.Image) -> str:
    """The decoder raw mode of the first tile, e.g. 'RGB;16B' for 48-bit PNG."""
    if not image.tile:
        return ""
    args = image.tile[0][3]
    if isinstance(args, tuple):
        args = args[0] if args else ""
    return args if isinstance(args, str) else ""


def _deep_layout(raw_mode: str) -> PixelLayout | None:
    """The 16-bit layout named by a raw mode such as 'LA;16B', if any."""
    base, _, depth = raw_mode.partition(";")
    if not depth.startswith("16"):
        return None
    return _DEEP_LAYOUTS.get(base)


def _imdecode(data: bytes | bytearray | memoryview) -> np.ndarray | None:
    buffer = np.frombuffer(data, dtype=np.uint8)
    try:
        return cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise DecodeError(f"OpenCV failed to decode image: {e}", DecodeErrorKind.CORRUPT_DATA) from e


def _to_rgb_order(array: np.ndarray) -> np.ndarray:
    """Swap OpenCV's BGR(A) channel order to RGB(A)."""
    if array.ndim == 3 and array.shape[2] == 3:
        return cv2.cvtColor(array, cv2.COLOR_BGR2RGB)
    if array.ndim == 3 and array.shape[2] == 4:
        return cv2.cvtColor(array, cv2.COLOR_BGRA2RGBA)
    return array
