"""
Unit tests for the EventChannel observer.
"""

from unittest.mock import MagicMock

from couchconfig.events import EventChannel


class TestEventChannel:
    def test_emit_delivers_in_subscription_order(self):
        channel = EventChannel()
        calls = []
        channel.subscribe("update", lambda p: calls.append(("first", p)))
        channel.subscribe("update", lambda p: calls.append(("second", p)))

        delivered = channel.emit("update", [{"id": "a"}])

        assert delivered == 2
        assert calls == [("first", [{"id": "a"}]), ("second", [{"id": "a"}])]

    def test_emit_without_subscribers(self):
        channel = EventChannel()
        assert channel.emit("error", RuntimeError("x")) == 0
        assert channel.has_subscribers("error") is False

    def test_kinds_are_independent(self):
        channel = EventChannel()
        handler = MagicMock()
        channel.subscribe("error", handler)
        channel.emit("update", [])
        handler.assert_not_called()

    def test_unsubscribe(self):
        channel = EventChannel()
        handler = MagicMock()
        channel.subscribe("update", handler)
        channel.unsubscribe("update", handler)
        channel.emit("update", [])
        handler.assert_not_called()

    def test_unsubscribe_unknown_handler_is_ignored(self):
        EventChannel().unsubscribe("update", MagicMock())

    def test_raising_handler_is_isolated(self):
        channel = EventChannel()
        good = MagicMock()
        channel.subscribe("update", MagicMock(side_effect=ValueError("boom")))
        channel.subscribe("update", good)

        delivered = channel.emit("update", ["payload"])

        assert delivered == 1
        good.assert_called_once_with(["payload"])

    def test_handler_may_unsubscribe_itself(self):
        channel = EventChannel()
        calls = []

        def once(payload):
            calls.append(payload)
            channel.unsubscribe("update", once)

        channel.subscribe("update", once)
        channel.emit("update", 1)
        channel.emit("update", 2)
        assert calls == [1]
