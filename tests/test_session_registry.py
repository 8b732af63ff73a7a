import itertools

import pytest

from relay_errors import RoomFull
from session_registry import SessionRegistry

A = ("10.0.0.1", 1)
B = ("10.0.0.2", 2)
C = ("10.0.0.3", 3)


def test_first_two_joins_get_ids_one_and_two():
    registry = SessionRegistry()
    first = registry.register(A, "Alice")
    assert first.player_id == 1
    assert not registry.is_full()
    second = registry.register(B, "Bob")
    assert second.player_id == 2
    assert registry.is_full()
    assert registry.count() == 2


@pytest.mark.parametrize("order", list(itertools.permutations([A, B])))
def test_ids_are_bijective_for_any_join_order(order):
    registry = SessionRegistry()
    ids = {registry.register(addr, str(addr)).player_id for addr in order}
    assert ids == {1, 2}
    assert {s.addr for s in registry.sessions()} == set(order)


def test_third_join_is_refused_without_mutation():
    registry = SessionRegistry()
    registry.register(A, "Alice")
    registry.register(B, "Bob")
    with pytest.raises(RoomFull):
        registry.register(C, "Carol")
    assert registry.count() == 2
    assert registry.lookup(C) is None


def test_lookup_and_remove():
    registry = SessionRegistry()
    session = registry.register(A, "Alice")
    assert registry.lookup(A) is session
    assert A in registry
    assert registry.remove(A) is session
    assert registry.remove(A) is None
    assert registry.lookup(A) is None
    assert len(registry) == 0


def test_departed_id_is_retired_while_other_peer_connected():
    registry = SessionRegistry()
    registry.register(A, "Alice")
    registry.register(B, "Bob")
    registry.remove(A)
    assert registry.retired_ids() == {1}
    with pytest.raises(RoomFull):
        registry.register(C, "Carol")
    assert registry.count() == 1
    assert [s.player_id for s in registry.sessions()] == [2]


def test_retired_ids_come_back_when_room_empties():
    registry = SessionRegistry()
    registry.register(A, "Alice")
    registry.register(B, "Bob")
    registry.remove(A)
    registry.remove(B)
    assert registry.retired_ids() == frozenset()
    assert registry.register(C, "Carol").player_id == 1


def test_release_retired_ids():
    registry = SessionRegistry()
    registry.register(A, "Alice")
    registry.register(B, "Bob")
    registry.remove(A)
    registry.release_retired_ids()
    assert registry.register(C, "Carol").player_id == 1


def test_register_twice_is_a_caller_bug():
    registry = SessionRegistry()
    registry.register(A, "Alice")
    with pytest.raises(ValueError):
        registry.register(A, "Alice again")


def test_others_excludes_sender_in_join_order():
    registry = SessionRegistry(capacity=3)
    registry.register(A, "Alice")
    registry.register(B, "Bob")
    registry.register(C, "Carol")
    assert [s.name for s in registry.others(B)] == ["Alice", "Carol"]


def test_touch_and_idle_sessions():
    registry = SessionRegistry()
    registry.register(A, "Alice", now=0.0)
    registry.register(B, "Bob", now=0.0)
    registry.touch(B, now=9.0)
    idle = registry.idle_sessions(now=10.0, timeout=5.0)
    assert [s.name for s in idle] == ["Alice"]
    assert registry.lookup(B).packets_received == 1
