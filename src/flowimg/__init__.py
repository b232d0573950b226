"""flowimg -- Camera capture and image tensor nodes for dataflow graphs.

This package acquires frames from native or browser cameras, decodes
encoded images into pixel-tagged buffers and widens those buffers into
dense numeric tensors, each stage packaged as a node of a processing
graph.
"""

__version__ = "0.1.0"
