"""Command-line interface for flowimg.

Provides a small entry point for checking a camera, decoding image
files and listing the available capture backends.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="flowimg",
        description="Camera capture, frame decoding and tensor conversion",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/flowimg.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    probe_parser = subparsers.add_parser("probe", help="Capture frames from the configured camera")
    probe_parser.add_argument(
        "-n", "--frames", type=int, default=1,
        help="Number of frames to capture",
    )
    probe_parser.add_argument(
        "--backend", type=str, default=None,
        help="Override the configured capture backend",
    )

    decode_parser = subparsers.add_parser("decode", help="Decode an image file into a tensor")
    decode_parser.add_argument("file", type=Path, help="Encoded image file")
    decode_parser.add_argument(
        "--dtype", type=str, default=None,
        help="Tensor element type (default: from config)",
    )

    subparsers.add_parser("backends", help="List available capture backends")

    return parser.parse_args(argv)


def _probe(settings, args) -> int:
    """Capture frames through a CameraCaptureNode and describe them."""
    from flowimg.capture import CaptureError, create_backend
    from flowimg.flow.ports import Edge, connect
    from flowimg.nodes.camera import CameraCaptureNode

    try:
        backend = create_backend(args.backend or settings.capture.backend, browser=settings.browser)
    except CaptureError as e:
        logger.error("%s", e)
        return 1
    node: CameraCaptureNode[int] = CameraCaptureNode(settings.capture.camera_config(), backend)
    sink: Edge = Edge()
    connect(node.output, sink)

    with node:
        try:
            node.initialize()
            for i in range(args.frames):
                node.input.send(i)
                node.update()
                image = sink.next()
                print(
                    f"[{i}] {image.layout.value} {image.width}x{image.height} "
                    f"({image.channels} channel(s))"
                )
            node.shutdown()
        except CaptureError as e:
            logger.error("Capture failed: %s", e)
            return 1
    return 0


def _decode(settings, args) -> int:
    """Decode one file and print tensor statistics."""
    from flowimg.imaging.decoder import DecodeError, FrameDecoder
    from flowimg.imaging.tensor import ConversionError, TensorConverter

    dtype = args.dtype or settings.tensor.dtype
    try:
        converter = TensorConverter(dtype, allow_lossy=settings.tensor.allow_lossy)
    except ValueError as e:
        logger.error("Invalid tensor dtype %r: %s", dtype, e)
        return 1

    try:
        data = args.file.read_bytes()
    except OSError as e:
        logger.error("Cannot read %s: %s", args.file, e)
        return 1

    try:
        image = FrameDecoder().decode(data)
        tensor = converter.convert(image)
    except (DecodeError, ConversionError) as e:
        logger.error("Failed to convert %s: %s", args.file, e)
        return 1

    print(f"Layout: {image.layout.value} ({image.width}x{image.height})")
    print(f"Tensor: shape={tensor.shape} dtype={tensor.dtype}")
    print(f"Range:  min={tensor.min()} max={tensor.max()} mean={tensor.mean():.3f}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the flowimg CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return 0

    from flowimg.config.settings import load_settings
    from flowimg.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "probe":
        logger.info("Probing %s camera", args.backend or settings.capture.backend)
        return _probe(settings, args)

    if args.command == "decode":
        return _decode(settings, args)

    if args.command == "backends":
        from flowimg.capture import available_backends

        for name in available_backends():
            print(name)
        return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
