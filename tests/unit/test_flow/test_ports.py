"""Tests for node ports and the Node base class."""

from __future__ import annotations

import threading

import pytest

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


class TestPorts:
    """Test Output -> Input delivery."""

    def test_fifo_delivery(self) -> None:
        out: Output[int] = Output()
        sink: Edge[int] = Edge()
        connect(out, sink)
        for value in (1, 2, 3):
            out.send(value)
        assert len(sink) == 3
        assert [sink.next(), sink.next(), sink.next()] == [1, 2, 3]

    def test_next_on_empty_input(self) -> None:
        with pytest.raises(ReceiveError):
            Input().next()

    def test_send_without_receiver(self) -> None:
        out: Output[int] = Output()
        assert not out.connected
        with pytest.raises(ChannelError):
            out.send(1)

    def test_fan_out(self) -> None:
        out: Output[str] = Output()
        first: Edge[str] = Edge()
        second: Edge[str] = Edge()
        connect(out, first)
        connect(out, second)
        out.send("frame")
        assert first.next() == "frame"
        assert second.next() == "frame"

    def test_closed_receiver(self) -> None:
        out: Output[int] = Output()
        sink: Edge[int] = Edge()
        connect(out, sink)
        sink.close()
        assert sink.closed
        with pytest.raises(ChannelError):
            out.send(1)


class TestChangeObserver:
    """Test change notifications."""

    def test_notified_on_send(self) -> None:
        observer = ChangeObserver()
        out: Output[int] = Output(observer)
        connect(out, Edge())
        out.send(1)
        out.send(2)
        assert observer.pending == 2
        assert observer.wait(timeout=0) is True
        assert observer.pending == 0

    def test_wait_times_out(self) -> None:
        assert ChangeObserver().wait(timeout=0.01) is False

    def test_wait_wakes_from_other_thread(self) -> None:
        observer = ChangeObserver()
        timer = threading.Timer(0.01, observer.notify)
        timer.start()
        try:
            assert observer.wait(timeout=5.0) is True
        finally:
            timer.join()


class _EchoNode(Node):
    def __init__(self) -> None:
        self.input: Input[int] = Input()
        self.output: Output[int] = Output()

    def update(self) -> None:
        try:
            value = self.input.next()
        except ReceiveError:
            return
        self._emit(self.output, value)


class TestNode:
    """Test the Node base class helpers."""

    def test_node_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            Node()  # type: ignore[abstract]

    def test_default_lifecycle_is_noop(self) -> None:
        node = _EchoNode()
        node.initialize()
        node.update()
        node.shutdown()

    def test_emit_failure_is_emit_error(self) -> None:
        node = _EchoNode()
        node.input.send(5)
        with pytest.raises(EmitError):
            node.update()

    def test_emit_delivers(self) -> None:
        node = _EchoNode()
        sink: Edge[int] = Edge()
        connect(node.output, sink)
        node.input.send(5)
        node.update()
        assert sink.next() == 5
