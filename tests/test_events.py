from unittest.mock import MagicMock

from soundrent.events import LIVRAISONS_UPDATED, RESERVATION_UPDATED, EventBus


def test_subscribers_receive_payload():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe(RESERVATION_UPDATED, handler)

    delivered = bus.publish(RESERVATION_UPDATED, {"reservation_id": 1})

    assert delivered == 1
    handler.assert_called_once_with({"reservation_id": 1})


def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    broken = MagicMock(side_effect=RuntimeError("stale view"))
    healthy = MagicMock()
    bus.subscribe(LIVRAISONS_UPDATED, broken)
    bus.subscribe(LIVRAISONS_UPDATED, healthy)

    delivered = bus.publish(LIVRAISONS_UPDATED, {})

    assert delivered == 1
    healthy.assert_called_once()


def test_unsubscribe_and_duplicate_subscribe():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe(RESERVATION_UPDATED, handler)
    bus.subscribe(RESERVATION_UPDATED, handler)

    assert bus.publish(RESERVATION_UPDATED, {}) == 1

    bus.unsubscribe(RESERVATION_UPDATED, handler)
    assert bus.publish(RESERVATION_UPDATED, {}) == 0


def test_publish_without_subscribers():
    assert EventBus().publish("unknown-event", {}) == 0
