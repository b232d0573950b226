"""Abstract base class for graph nodes.

A host scheduler drives every node through the same lifecycle: at most
one ``initialize``, any number of ``update`` calls, at most one
``shutdown``. ``update`` is never called concurrently with itself.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from flowimg.flow.ports import ChannelError, Output

logger = logging.getLogger(__name__)


class Node(ABC):
    """Abstract interface for a node of a processing graph.

    Implementations consume values from their inputs and emit results on
    their outputs inside ``update``. Nodes without resources may rely on
    the default no-op ``initialize`` and ``shutdown``.
    """

    def initialize(self) -> None:
        """Acquire resources before the first update."""

    @abstractmethod
    def update(self) -> None:
        """Process pending input and emit results.

        Returning without emitting is valid when no input is pending.
        """
        ...

    def shutdown(self) -> None:
        """Release resources acquired in ``initialize``."""

    @staticmethod
    def _emit(output: Output, value: object) -> None:
        """Send ``value`` on ``output``, reporting failures as EmitError."""
        try:
            output.send(value)
        except ChannelError as e:
            logger.warning("Failed to emit %s: %s", type(value).__name__, e)
            raise EmitError(f"Failed to emit {type(value).__name__}: {e}") from e


class EmitError(ChannelError):
    """Raised when a node cannot deliver its result downstream."""
