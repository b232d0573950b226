"""Image decoding and tensor conversion for flowimg.

Public API:
    FrameDecoder -- Encoded bytes to PixelBuffer
    TensorConverter -- PixelBuffer to (height, width, channels) tensor
"""

from flowimg.imaging.decoder import DecodeError, DecodeErrorKind, FrameDecoder
from flowimg.imaging.tensor import (
    SUPPORTED_DTYPES,
    ConversionError,
    TensorConverter,
    to_tensor,
)

__all__ = [
    "ConversionError",
    "DecodeError",
    "DecodeErrorKind",
    "FrameDecoder",
    "SUPPORTED_DTYPES",
    "TensorConverter",
    "to_tensor",
]
