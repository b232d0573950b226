"""Conversion of PixelBuffers into dense numeric tensors.

A tensor is a C-contiguous numpy array with axes (height, width,
channels). Samples are widened into the requested dtype without any
rescaling: a GRAY8 sample of 200 becomes 200.0 in a float32 tensor,
not 0.78.
"""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
import numpy.typing as npt

from flowimg.domain.models import PixelBuffer, PixelLayout

logger = logging.getLogger(__name__)

# Element types a tensor may be produced in
SUPPORTED_DTYPES: tuple[np.dtype, ...] = tuple(
    np.dtype(name) for name in ("uint8", "uint16", "int32", "int64", "float32", "float64")
)

# Source sample type of every layout. Each PixelLayout member must have
# an entry; tests check the table against the enum.
_WIDENING_SOURCES: dict[PixelLayout, np.dtype] = {
    PixelLayout.GRAY8: np.dtype(np.uint8),
    PixelLayout.GRAY_ALPHA8: np.dtype(np.uint8),
    PixelLayout.RGB8: np.dtype(np.uint8),
    PixelLayout.RGBA8: np.dtype(np.uint8),
    PixelLayout.GRAY16: np.dtype(np.uint16),
    PixelLayout.GRAY_ALPHA16: np.dtype(np.uint16),
    PixelLayout.RGB16: np.dtype(np.uint16),
    PixelLayout.RGBA16: np.dtype(np.uint16),
    PixelLayout.RGB32F: np.dtype(np.float32),
    PixelLayout.RGBA32F: np.dtype(np.float32),
}


class ConversionError(Exception):
    """Raised when a pixel layout cannot be widened into the target dtype."""

    def __init__(self, message: str, layout: PixelLayout) -> None:
        super().__init__(message)
        self.layout = layout


class TensorConverter:
    """Widens PixelBuffers into tensors of a fixed element type.

    A layout is convertible when it is among ``layouts`` and its samples
    cast to ``dtype`` without loss. ``allow_lossy=True`` opts into
    narrowing casts (e.g. RGB16 into uint8 or RGB32F into int32), which
    truncate rather than rescale.

    Example usage::

        converter = TensorConverter(np.float32)
        tensor = converter.convert(image)   # shape (h, w, c)
    """

    def __init__(
        self,
        dtype: npt.DTypeLike = np.float32,
        layouts: Iterable[PixelLayout] | None = None,
        allow_lossy: bool = False,
    ) -> None:
        try:
            self._dtype = np.dtype(dtype)
        except TypeError as e:
            raise ValueError(f"Unknown tensor dtype {dtype!r}") from e
        if self._dtype not in SUPPORTED_DTYPES:
            names = ", ".join(d.name for d in SUPPORTED_DTYPES)
            raise ValueError(f"Unsupported tensor dtype {self._dtype}; expected one of {names}")
        self._layouts = frozenset(layouts) if layouts is not None else frozenset(PixelLayout)
        self._allow_lossy = allow_lossy

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    def supports(self, layout: PixelLayout) -> bool:
        """Whether ``layout`` can be converted by this converter."""
        if layout not in self._layouts:
            return False
        source = widening_source(layout)
        return self._allow_lossy or bool(np.can_cast(source, self._dtype, casting="safe"))

    def convert(self, image: PixelBuffer) -> np.ndarray:
        """Convert one image into a new (height, width, channels) tensor.

        Raises:
            ConversionError: If the image layout is not convertible.
        """
        if not self.supports(image.layout):
            raise ConversionError(
                f"Unsupported pixel layout {image.layout.value} for {self._dtype} tensors",
                image.layout,
            )
        casting = "unsafe" if self._allow_lossy else "safe"
        tensor = image.data.astype(self._dtype, order="C", casting=casting, copy=True)
        logger.debug(
            "Converted %s %dx%d into %s tensor",
            image.layout.value, image.width, image.height, self._dtype,
        )
        return tensor


def widening_source(layout: PixelLayout) -> np.dtype:
    """Sample dtype a layout is widened from.

    Raises:
        ConversionError: If the layout has no widening rule.
    """
    try:
        return _WIDENING_SOURCES[layout]
    except KeyError:
        raise ConversionError(f"No widening rule for pixel layout {layout!r}", layout) from None


def to_tensor(image: PixelBuffer, dtype: npt.DTypeLike = np.float32) -> np.ndarray:
    """Convert ``image`` with a one-off converter for ``dtype``."""
    return TensorConverter(dtype).convert(image)
