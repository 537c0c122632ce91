import pytest

from cbdcp.helpers import MEMBERSHIP_CHANGED_BUS_EVENT_NAME
from cbdcp.membership import (
    DynamicMembership,
    EventBus,
    HaMembership,
    Model,
    StatefulSetMembership,
    StaticMembership,
    pod_ordinal_from_hostname,
)


def test_bus_delivers_to_sync_handler():
    bus = EventBus()
    received = []
    bus.subscribe("topic", lambda *args: received.append(args))
    bus.publish("topic", 1, "a")
    assert received == [(1, "a")]


def test_bus_delivers_to_async_handler():
    bus = EventBus()
    received = []
    bus.subscribe_async("topic", received.append)
    bus.publish("topic", "x")
    bus.publish("topic", "y")
    bus.wait_async()
    assert sorted(received) == ["x", "y"]


def test_bus_unsubscribe_stops_delivery():
    bus = EventBus()
    received = []
    bus.subscribe("topic", received.append)
    bus.unsubscribe("topic", received.append)
    bus.publish("topic", "x")
    assert received == []


def test_bus_unsubscribe_unknown_topic_raises():
    with pytest.raises(KeyError):
        EventBus().unsubscribe("missing", print)


def test_model_is_changed():
    model = Model(1, 2)
    assert model.is_changed(None) is True
    assert model.is_changed(Model(1, 2)) is False
    assert model.is_changed(Model(2, 2)) is True
    assert model.is_changed(Model(1, 3)) is True


def test_static_membership():
    assert StaticMembership(2, 3).get_info() == Model(2, 3)


def test_dynamic_membership_times_out_without_info():
    membership = DynamicMembership(EventBus())
    with pytest.raises(TimeoutError):
        membership.get_info(timeout=0.05)


def test_dynamic_membership_follows_bus():
    bus = EventBus()
    membership = DynamicMembership(bus)
    bus.publish(MEMBERSHIP_CHANGED_BUS_EVENT_NAME, Model(1, 4))
    assert membership.get_info(timeout=2) == Model(1, 4)
    bus.publish(MEMBERSHIP_CHANGED_BUS_EVENT_NAME, Model(3, 4))
    bus.wait_async()
    assert membership.get_info() == Model(3, 4)


def test_dynamic_membership_close_unsubscribes():
    bus = EventBus()
    membership = DynamicMembership(bus)
    membership.close()
    bus.publish(MEMBERSHIP_CHANGED_BUS_EVENT_NAME, Model(1, 4))
    bus.wait_async()
    with pytest.raises(TimeoutError):
        membership.get_info(timeout=0.05)


def test_ha_membership_follows_bus():
    bus = EventBus()
    membership = HaMembership(bus)
    bus.publish(MEMBERSHIP_CHANGED_BUS_EVENT_NAME, Model(2, 5))
    assert membership.get_info(timeout=2) == Model(2, 5)


def test_pod_ordinal_from_hostname():
    assert pod_ordinal_from_hostname("connector-3") == 3
    assert pod_ordinal_from_hostname("my-connector-12") == 12


@pytest.mark.parametrize("hostname", ["connector", "connector-abc", "connector-"])
def test_pod_ordinal_rejects_bad_hostnames(hostname):
    with pytest.raises(ValueError):
        pod_ordinal_from_hostname(hostname)


def test_stateful_set_membership_numbers_from_one():
    membership = StatefulSetMembership(total_members=3, hostname="connector-0")
    assert membership.get_info() == Model(1, 3)


def test_stateful_set_membership_last_member():
    membership = StatefulSetMembership(total_members=3, hostname="connector-2")
    assert membership.get_info() == Model(3, 3)


def test_stateful_set_membership_rejects_too_large_ordinal():
    with pytest.raises(ValueError):
        StatefulSetMembership(total_members=3, hostname="connector-3")