import logging

import pytest

from tracebeam.events.bus import EventBus


@pytest.mark.unit
class TestEventBus:
    """
    Test notification subscription and delivery.
    """

    @pytest.fixture
    def bus(self) -> EventBus:
        """
        A fresh event bus.
        """
        return EventBus()

    def test_named_listener_gets_payload(self, bus: EventBus) -> None:
        received = []
        bus.on("flush", received.append)

        bus.emit("flush", {"count": 1})
        bus.emit("error", "ignored")

        assert received == [{"count": 1}]

    def test_wildcard_listener_gets_name_and_payload(self, bus: EventBus) -> None:
        received = []
        bus.on("*", lambda name, payload: received.append((name, payload)))

        bus.emit("flush", 1)
        bus.emit("trace-create", {"id": "t"})

        assert received == [("flush", 1), ("trace-create", {"id": "t"})]

    def test_unsubscribe(self, bus: EventBus) -> None:
        received = []
        unsubscribe = bus.on("flush", received.append)

        bus.emit("flush", 1)
        unsubscribe()
        unsubscribe()
        bus.emit("flush", 2)

        assert received == [1]

    def test_closed_bus_drops_emits(self, bus: EventBus) -> None:
        received = []
        bus.on("*", lambda name, payload: received.append(name))

        bus.close()
        bus.emit("flush", 1)
        bus.on("flush", received.append)
        bus.emit("flush", 2)

        assert bus.closed
        assert received == []

    def test_listener_errors_do_not_propagate(self, bus: EventBus, caplog) -> None:
        received = []

        def broken(payload):
            raise RuntimeError("listener bug")

        bus.on("flush", broken)
        bus.on("flush", received.append)

        with caplog.at_level(logging.ERROR, logger="tracebeam.events.bus"):
            bus.emit("flush", 1)

        assert received == [1]
        assert any("flush" in record.getMessage() for record in caplog.records)
