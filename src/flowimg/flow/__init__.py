"""Graph plumbing for flowimg.

Public API:
    Node -- Abstract base class for graph nodes
    Input, Output, Edge, connect -- Typed FIFO ports
    ChangeObserver -- Wakeup notifications for a host scheduler
"""

from flowimg.flow.node import EmitError, Node
from flowimg.flow.ports import (
    ChangeObserver,
    ChannelError,
    Edge,
    Input,
    Output,
    ReceiveError,
    connect,
)

__all__ = [
    "ChangeObserver",
    "ChannelError",
    "Edge",
    "EmitError",
    "Input",
    "Node",
    "Output",
    "ReceiveError",
    "connect",
]
