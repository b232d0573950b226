"""Graph nodes for image decoding and tensor conversion."""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
import numpy.typing as npt

from flowimg.domain.models import PixelBuffer, PixelLayout
from flowimg.flow.node import Node
from flowimg.flow.ports import ChangeObserver, Input, Output, ReceiveError
from flowimg.imaging.decoder import FrameDecoder
from flowimg.imaging.tensor import TensorConverter

logger = logging.getLogger(__name__)


class DecodeImageNode(Node):
    """Decodes encoded image bytes into PixelBuffers.

    Each update consumes at most one pending buffer. DecodeError
    propagates to the caller; nothing is emitted for a bad buffer.
    """

    def __init__(
        self,
        change_observer: ChangeObserver | None = None,
        decoder: FrameDecoder | None = None,
    ) -> None:
        self._decoder = decoder or FrameDecoder()
        self.output: Output[PixelBuffer] = Output(change_observer)
        self.input: Input[bytes] = Input()

    def update(self) -> None:
        try:
            data = self.input.next()
        except ReceiveError:
            return
        image = self._decoder.decode(data)
        self._emit(self.output, image)


class ImageToTensorNode(Node):
    """Converts PixelBuffers into (height, width, channels) tensors."""

    def __init__(
        self,
        change_observer: ChangeObserver | None = None,
        dtype: npt.DTypeLike = np.float32,
        layouts: Iterable[PixelLayout] | None = None,
        allow_lossy: bool = False,
    ) -> None:
        self._converter = TensorConverter(dtype, layouts=layouts, allow_lossy=allow_lossy)
        self.output: Output[np.ndarray] = Output(change_observer)
        self.input: Input[PixelBuffer] = Input()

    @property
    def converter(self) -> TensorConverter:
        return self._converter

    def update(self) -> None:
        try:
            image = self.input.next()
        except ReceiveError:
            return
        tensor = self._converter.convert(image)
        self._emit(self.output, tensor)
