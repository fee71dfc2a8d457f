import pytest

from domain.broadcast.event import Event, MonotonicClock
from domain.broadcast.history import HistoryBuffer


def _event(n: int, event_type: str = "message") -> Event:
    return Event(event_type=event_type, payload={"n": n}, timestamp=n, origin_instance_id="a")


def test_snapshot_returns_events_in_insertion_order():
    buf = HistoryBuffer(capacity=5, default_limit=5)
    events = [_event(i) for i in range(4)]
    for e in events:
        buf.append(e)
    assert buf.snapshot(4) == events
    assert len(buf) == 4


def test_capacity_evicts_oldest_first():
    buf = HistoryBuffer(capacity=3, default_limit=3)
    events = [_event(i) for i in range(1, 6)]
    for e in events:
        buf.append(e)
    assert [e.payload["n"] for e in buf.snapshot(10)] == [3, 4, 5]
    assert len(buf) == 3


def test_eviction_ignores_event_type_and_timestamp():
    buf = HistoryBuffer(capacity=2, default_limit=2)
    late = Event(event_type="system", payload={}, timestamp=999, origin_instance_id="b")
    early = Event(event_type="update", payload={}, timestamp=1, origin_instance_id="a")
    newest = _event(5)
    for e in (late, early, newest):
        buf.append(e)
    assert buf.snapshot() == [early, newest]


@pytest.mark.parametrize("limit", [None, 0, -3])
def test_non_positive_or_missing_limit_uses_default(limit):
    buf = HistoryBuffer(capacity=20, default_limit=4)
    for i in range(10):
        buf.append(_event(i))
    assert [e.payload["n"] for e in buf.snapshot(limit)] == [6, 7, 8, 9]


def test_limit_above_capacity_is_clamped():
    buf = HistoryBuffer(capacity=3, default_limit=2)
    for i in range(3):
        buf.append(_event(i))
    assert len(buf.snapshot(50)) == 3


def test_snapshot_does_not_mutate_buffer():
    buf = HistoryBuffer(capacity=3)
    buf.append(_event(1))
    snap = buf.snapshot()
    snap.clear()
    assert len(buf) == 1


def test_contains_tracks_evictions():
    buf = HistoryBuffer(capacity=2)
    first, second, third = _event(1), _event(2), _event(3)
    for e in (first, second, third):
        buf.append(e)
    assert not buf.contains(first.event_id)
    assert buf.contains(third.event_id)


def test_default_limit_cannot_exceed_capacity():
    buf = HistoryBuffer(capacity=2, default_limit=10)
    assert buf.default_limit == 2


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        HistoryBuffer(capacity=0)


def test_event_is_immutable_and_round_trips_wire_format():
    e = _event(1)
    with pytest.raises(Exception):
        e.event_type = "other"  # type: ignore[misc]
    wire = e.to_wire()
    assert set(wire) == {"eventId", "eventType", "payload", "timestamp", "originInstanceId"}
    assert Event.from_json(e.to_json()) == e


def test_monotonic_clock_never_repeats():
    clock = MonotonicClock()
    stamps = [clock.next() for _ in range(1000)]
    assert all(b > a for a, b in zip(stamps, stamps[1:]))
