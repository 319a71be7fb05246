"""Tests for the in-process event emitter."""

from __future__ import annotations

import logging

import pytest

from polymarket_insider_tracker.events import EventEmitter


class TestEventEmitter:
    """Tests for EventEmitter."""

    def test_emit_calls_listeners_in_order(self) -> None:
        emitter = EventEmitter()
        calls: list[tuple[str, int]] = []
        emitter.on("scored", lambda value: calls.append(("first", value)))
        emitter.on("scored", lambda value: calls.append(("second", value)))

        assert emitter.emit("scored", 42)
        assert calls == [("first", 42), ("second", 42)]

    def test_emit_without_listeners(self) -> None:
        assert not EventEmitter().emit("scored", 1)

    def test_unsubscribe(self) -> None:
        emitter = EventEmitter()
        calls: list[int] = []
        unsubscribe = emitter.on("scored", calls.append)

        unsubscribe()
        emitter.emit("scored", 1)

        assert calls == []
        assert emitter.listener_count("scored") == 0

    def test_off_unknown_listener(self) -> None:
        emitter = EventEmitter()

        assert not emitter.off("scored", print)

    def test_failing_listener_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        emitter = EventEmitter()
        calls: list[int] = []

        def broken(_value: int) -> None:
            raise RuntimeError("boom")

        emitter.on("scored", broken)
        emitter.on("scored", calls.append)

        with caplog.at_level(logging.ERROR):
            emitter.emit("scored", 7)

        assert calls == [7]
        assert "Listener for event scored failed" in caplog.text

    def test_remove_all_listeners(self) -> None:
        emitter = EventEmitter()
        emitter.on("a", print)
        emitter.on("b", print)

        emitter.remove_all_listeners("a")
        assert emitter.listener_count("a") == 0
        assert emitter.listener_count("b") == 1

        emitter.remove_all_listeners()
        assert emitter.listener_count("b") == 0
