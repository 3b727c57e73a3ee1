from recruitboard.models import EMPTY_SNAPSHOT, Snapshot
from recruitboard.services.gateway import SubscriptionGateway


def snap(generation):
    return Snapshot(generation=generation, entries=())


def test_subscriber_gets_latest_snapshot_immediately():
    gateway = SubscriptionGateway()
    gateway.publish(snap(3))
    received = []
    gateway.subscribe(received.append)
    assert [s.generation for s in received] == [3]


def test_subscriber_before_any_publish_gets_empty_snapshot():
    gateway = SubscriptionGateway()
    received = []
    gateway.subscribe(received.append)
    assert received == [EMPTY_SNAPSHOT]
    assert received[0].entries == ()


def test_publish_reaches_every_subscriber():
    gateway = SubscriptionGateway()
    first, second = [], []
    gateway.subscribe(first.append)
    gateway.subscribe(second.append)
    gateway.publish(snap(1))
    assert first[-1].generation == second[-1].generation == 1
    assert gateway.subscriber_count == 2


def test_no_delivery_after_unsubscribe():
    gateway = SubscriptionGateway()
    received = []
    handle = gateway.subscribe(received.append)
    gateway.unsubscribe(handle)
    gateway.publish(snap(1))
    assert [s.generation for s in received] == [0]
    assert gateway.subscriber_count == 0


def test_unsubscribe_from_inside_a_handler():
    gateway = SubscriptionGateway()
    received = []
    handles = {}

    def handler(snapshot):
        received.append(snapshot.generation)
        if snapshot.generation == 1:
            gateway.unsubscribe(handles["self"])

    handles["self"] = gateway.subscribe(handler)
    gateway.publish(snap(1))
    gateway.publish(snap(2))
    assert received == [0, 1]


def test_handler_unsubscribing_another_prevents_its_delivery():
    gateway = SubscriptionGateway()
    later = []
    handles = {}

    def first(snapshot):
        if snapshot.generation == 1:
            gateway.unsubscribe(handles["later"])

    gateway.subscribe(first)
    handles["later"] = gateway.subscribe(later.append)
    gateway.publish(snap(1))
    assert [s.generation for s in later] == [0]


def test_older_snapshot_is_never_delivered_after_newer():
    gateway = SubscriptionGateway()
    received = []
    gateway.subscribe(received.append)
    gateway.publish(snap(5))
    gateway.publish(snap(4))
    assert [s.generation for s in received] == [0, 5]
    assert gateway.latest.generation == 5


def test_failing_handler_does_not_block_others():
    gateway = SubscriptionGateway()
    received = []

    def broken(snapshot):
        raise RuntimeError("boom")

    gateway.subscribe(broken)
    gateway.subscribe(received.append)
    gateway.publish(snap(1))
    assert received[-1].generation == 1


def test_unknown_handle_is_ignored_and_close_drops_all():
    gateway = SubscriptionGateway()
    handle = gateway.subscribe(lambda s: None)
    gateway.unsubscribe(handle)
    gateway.unsubscribe(handle)
    gateway.subscribe(lambda s: None)
    gateway.close()
    assert gateway.subscriber_count == 0
