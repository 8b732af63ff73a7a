import threading

import pytest

from conftest import ALICE, BOB, CAROL
from game_server import RelayServer
from handshake import RoomState
from protocol_codec import StateSnapshot, encode
from relay_errors import TransportClosed

SNAPSHOT_1 = encode(StateSnapshot(1, 1.5, 0.0, -2.25, 90.0))


@pytest.fixture
def server(fake_socket, clock):
    return RelayServer(fake_socket, clock=clock)


def join(server, addr, name):
    server.sock.feed(name, addr)
    server.poll()


@pytest.fixture
def full_room(server):
    join(server, ALICE, "Alice")
    join(server, BOB, "Bob")
    server.sock.clear()
    return server


@pytest.fixture
def started_room(full_room):
    full_room.sock.feed("START_GAME", ALICE)
    full_room.poll()
    full_room.sock.clear()
    return full_room


def test_alice_and_bob_scenario(server, fake_socket):
    join(server, ALICE, "Alice")
    assert fake_socket.texts_to(ALICE) == ["PLAYER_ID:1", "Welcome Alice! You are Player 1"]
    assert server.state is RoomState.WAITING

    join(server, BOB, "Bob")
    assert fake_socket.texts_to(BOB) == ["PLAYER_ID:2", "Welcome Bob! You are Player 2", "READY_TO_START"]
    assert fake_socket.texts_to(ALICE)[2:] == ["Bob joined as Player 2", "READY_TO_START"]
    assert server.state is RoomState.FULL
    assert server.registry.is_full()

    fake_socket.clear()
    fake_socket.feed("START_GAME", ALICE)
    server.poll()
    assert fake_socket.texts_to(ALICE) == ["GAME_START"]
    assert fake_socket.texts_to(BOB) == ["GAME_START"]
    assert server.state is RoomState.STARTED
    assert server.game_started


def test_second_start_request_broadcasts_nothing(started_room):
    started_room.sock.feed("START_GAME", BOB)
    started_room.poll()
    assert started_room.sock.sent == []
    assert started_room.metrics.illegal_transitions == 1


def test_start_request_with_one_player_is_a_no_op(server, fake_socket):
    join(server, ALICE, "Alice")
    fake_socket.clear()
    fake_socket.feed("START_GAME", ALICE)
    server.poll()
    assert fake_socket.sent == []
    assert server.state is RoomState.WAITING
    assert not server.game_started


def test_snapshot_is_relayed_verbatim_to_the_other_peer_only(started_room):
    started_room.sock.feed(SNAPSHOT_1, ALICE)
    started_room.poll()
    assert started_room.sock.sent == [(SNAPSHOT_1, BOB)]
    assert started_room.metrics.snapshot_count == 1


def test_snapshot_never_reaches_sender(started_room):
    snapshot_2 = encode(StateSnapshot(2, 0.0, 0.0, 0.0, 0.0))
    for _ in range(5):
        started_room.sock.feed(SNAPSHOT_1, ALICE)
        started_room.sock.feed(snapshot_2, BOB)
    started_room.poll()
    for data, dest in started_room.sock.sent:
        sender = ALICE if data == SNAPSHOT_1 else BOB
        assert dest != sender


def test_mismatched_snapshot_id_is_counted_and_still_relayed(started_room):
    started_room.sock.feed(encode(StateSnapshot(2, 0.0, 0.0, 0.0, 0.0)), ALICE)
    started_room.poll()
    assert started_room.metrics.mismatched_snapshots == 1
    assert [dest for _, dest in started_room.sock.sent] == [BOB]


def test_chat_is_wrapped_with_sender_name(full_room):
    full_room.sock.feed("good luck", ALICE)
    full_room.poll()
    assert full_room.sock.texts_to(BOB) == ["[Alice]: good luck"]
    assert full_room.sock.texts_to(ALICE) == []


def test_third_join_is_rejected_with_explicit_message(full_room):
    join(full_room, CAROL, "Carol")
    assert full_room.registry.count() == 2
    assert full_room.registry.lookup(CAROL) is None
    texts = full_room.sock.texts_to(CAROL)
    assert len(texts) == 1 and texts[0].startswith("ROOM_FULL:")
    assert full_room.metrics.rejected_joins == 1


def test_silent_rejection_sends_nothing(fake_socket, clock):
    server = RelayServer(fake_socket, announce_rejections=False, clock=clock)
    join(server, ALICE, "Alice")
    join(server, BOB, "Bob")
    fake_socket.clear()
    join(server, CAROL, "Carol")
    assert fake_socket.sent == []
    assert server.registry.count() == 2


def test_disconnect_after_full_notifies_remaining_peer(full_room):
    full_room.disconnect_peer(ALICE)
    assert full_room.sock.texts_to(BOB) == ["Alice left the room."]
    assert full_room.state is RoomState.WAITING
    assert full_room.registry.count() == 1


def test_newcomer_cannot_take_retired_id_while_other_peer_connected(full_room):
    full_room.disconnect_peer(ALICE)
    join(full_room, CAROL, "Carol")
    assert full_room.registry.lookup(CAROL) is None
    assert [s.player_id for s in full_room.registry.sessions()] == [2]


def test_disconnect_mid_game_keeps_room_started(started_room):
    started_room.disconnect_peer(ALICE, "transport error")
    assert started_room.sock.texts_to(BOB) == ["Alice left the room."]
    assert started_room.state is RoomState.STARTED
    join(started_room, CAROL, "Carol")
    assert started_room.registry.lookup(CAROL) is None
    assert started_room.sock.texts_to(CAROL)[0].startswith("ROOM_FULL:")


def test_reset_on_leave_reopens_the_room(fake_socket, clock):
    server = RelayServer(fake_socket, reset_on_leave=True, clock=clock)
    join(server, ALICE, "Alice")
    join(server, BOB, "Bob")
    fake_socket.feed("START_GAME", BOB)
    server.poll()
    server.disconnect_peer(ALICE)
    assert server.state is RoomState.WAITING
    assert not server.game_started

    fake_socket.clear()
    join(server, CAROL, "Carol")
    assert fake_socket.texts_to(CAROL)[0] == "PLAYER_ID:1"
    assert server.state is RoomState.FULL
    assert "READY_TO_START" in fake_socket.texts_to(BOB)


def test_explicit_leave_message(full_room):
    full_room.sock.feed("PLAYER_LEAVE", BOB)
    full_room.poll()
    assert full_room.registry.lookup(BOB) is None
    assert full_room.sock.texts_to(ALICE) == ["Bob left the room."]


def test_disconnect_unknown_peer_is_harmless(full_room):
    assert full_room.disconnect_peer(CAROL) is None
    assert full_room.sock.sent == []


def test_malformed_snapshot_does_not_crash_or_mutate(full_room):
    before = [(s.addr, s.player_id) for s in full_room.registry.sessions()]
    full_room.sock.feed("PLAYER_DATA:not-json", ALICE)
    full_room.sock.feed(SNAPSHOT_1, ALICE)
    assert full_room.poll() == 2
    assert [(s.addr, s.player_id) for s in full_room.registry.sessions()] == before
    assert full_room.metrics.decode_errors == 1
    # the loop kept going and relayed the good snapshot
    assert full_room.sock.sent == [(SNAPSHOT_1, BOB)]


def test_control_message_from_unknown_endpoint_is_not_a_join(server, fake_socket):
    fake_socket.feed("START_GAME", CAROL)
    server.poll()
    assert server.registry.count() == 0
    assert fake_socket.sent == []
    assert server.metrics.decode_errors == 1


def test_server_only_messages_from_clients_are_ignored(full_room):
    full_room.sock.feed("GAME_START", ALICE)
    full_room.sock.feed("PLAYER_ID:7", BOB)
    full_room.poll()
    assert full_room.sock.sent == []
    assert full_room.metrics.ignored_messages == 2
    assert full_room.state is RoomState.FULL


def test_send_failure_does_not_touch_registry(started_room):
    started_room.sock.fail_sends_to.add(BOB)
    started_room.sock.feed(SNAPSHOT_1, ALICE)
    started_room.poll()
    assert started_room.metrics.send_failures == 1
    assert started_room.registry.count() == 2


def test_idle_peers_are_evicted_when_configured(fake_socket, clock):
    server = RelayServer(fake_socket, idle_timeout=5.0, clock=clock)
    join(server, ALICE, "Alice")
    clock.advance(4.0)
    join(server, BOB, "Bob")
    fake_socket.clear()
    clock.advance(2.0)
    server.poll()
    assert server.registry.lookup(ALICE) is None
    assert fake_socket.texts_to(BOB) == ["Alice left the room."]


def test_silent_peers_are_kept_by_default(full_room, clock):
    clock.advance(3600)
    full_room.poll()
    assert full_room.registry.count() == 2


def test_shutdown_broadcasts_once_and_closes(full_room):
    full_room.shutdown()
    full_room.shutdown()
    assert full_room.sock.texts_to(ALICE) == ["SERVER_CLOSED"]
    assert full_room.sock.texts_to(BOB) == ["SERVER_CLOSED"]
    assert full_room.sock.closed
    assert full_room.state is RoomState.CLOSED
    with pytest.raises(TransportClosed):
        full_room.poll()


def test_run_stops_on_event_and_shuts_down(full_room):
    stop = threading.Event()
    stop.set()
    full_room.run(stop_event=stop)
    assert full_room.closed
    assert full_room.sock.texts_to(BOB) == ["SERVER_CLOSED"]


def test_run_ends_when_socket_dies(full_room):
    full_room.sock.closed = True
    full_room.run(stop_event=threading.Event())
    assert full_room.closed


def test_save_logs_writes_csv_files(started_room, tmp_path):
    started_room.sock.feed(SNAPSHOT_1, ALICE)
    started_room.poll()
    started_room.save_logs(str(tmp_path))
    assert (tmp_path / "server_send_log.csv").exists()
    assert (tmp_path / "server_recv_log.csv").exists()
    perf = (tmp_path / "server_performance.csv").read_text()
    assert "snapshots_relayed" in perf


def test_receive_reset_is_skipped_without_dropping_anyone(full_room):
    full_room.sock.feed_error(ConnectionResetError(104, "Connection reset by peer"))
    full_room.sock.feed("still here", ALICE)
    assert full_room.poll() == 1
    assert full_room.registry.count() == 2
    assert full_room.sock.texts_to(BOB) == ["[Alice]: still here"]
