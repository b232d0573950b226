"""Typed ports connecting nodes of a processing graph.

A node owns ``Output`` and ``Input`` ports. ``connect`` wires an output
to an input; every value sent on the output is queued FIFO on each
connected input and the output's ChangeObserver is notified so a host
scheduler can wake the downstream node.

Example usage::

    observer = ChangeObserver()
    out: Output[int] = Output(observer)
    sink: Edge[int] = Edge()
    connect(out, sink)
    out.send(1)
    assert sink.next() == 1
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelError(Exception):
    """Raised when a value cannot be delivered downstream."""


class ReceiveError(Exception):
    """Raised when an input has no value available."""


class ChangeObserver:
    """Collects change notifications from outputs.

    Thread-safe. A scheduler blocks in ``wait`` until at least one
    notification arrived since the previous wait.
    """

    def __init__(self) -> None:
        self._changed = threading.Condition()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Notifications not yet consumed by ``wait``."""
        with self._changed:
            return self._pending

    def notify(self) -> None:
        with self._changed:
            self._pending += 1
            self._changed.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a notification arrives; returns False on timeout."""
        with self._changed:
            if not self._changed.wait_for(lambda: self._pending > 0, timeout=timeout):
                return False
            self._pending = 0
            return True


class Input(Generic[T]):
    """FIFO receiving end of a connection."""

    def __init__(self) -> None:
        self._queue: queue.Queue[T] = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, value: T) -> None:
        """Queue a value on this input.

        Raises:
            ChannelError: If the input has been closed.
        """
        if self._closed:
            raise ChannelError("Receiver is closed")
        self._queue.put(value)

    def next(self) -> T:
        """Take the oldest unconsumed value.

        Raises:
            ReceiveError: If nothing is available.
        """
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            raise ReceiveError("No value available") from None

    def close(self) -> None:
        self._closed = True

    def __len__(self) -> int:
        return self._queue.qsize()


class Edge(Input[T]):
    """A standalone input, used as a sink for outputs without a node."""


class Output(Generic[T]):
    """Sending end of one or more connections."""

    def __init__(self, change_observer: ChangeObserver | None = None) -> None:
        self._change_observer = change_observer
        self._receivers: list[Input[T]] = []

    @property
    def connected(self) -> bool:
        return bool(self._receivers)

    def connect(self, receiver: Input[T]) -> None:
        self._receivers.append(receiver)

    def send(self, value: T) -> None:
        """Deliver ``value`` to every connected input.

        Raises:
            ChannelError: If no input is connected or a receiver is closed.
        """
        if not self._receivers:
            raise ChannelError("No receiver connected")
        for receiver in self._receivers:
            receiver.send(value)
        if self._change_observer is not None:
            self._change_observer.notify()


def connect(output: Output[T], receiver: Input[T]) -> None:
    """Wire ``output`` to ``receiver``."""
    output.connect(receiver)
    logger.debug("Connected %r -> %r", output, receiver)
