"""Processing graph nodes for flowimg.

Public API:
    CameraCaptureNode -- Emits camera frames on trigger
    DecodeImageNode -- Encoded bytes to PixelBuffer
    ImageToTensorNode -- PixelBuffer to numeric tensor
"""

from flowimg.nodes.camera import CameraCaptureNode, NoActiveDeviceError, NotReadyError
from flowimg.nodes.transform import DecodeImageNode, ImageToTensorNode

__all__ = [
    "CameraCaptureNode",
    "DecodeImageNode",
    "ImageToTensorNode",
    "NoActiveDeviceError",
    "NotReadyError",
]
