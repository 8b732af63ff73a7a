# game_server.py (two-player relay engine)
import csv
import os
import time

import psutil

from protocol_constants import *
from protocol_codec import (
    Chat, GameStarted, JoinRejected, Leave, PlayerAssigned, ReadyToStart,
    ServerClosed, StartRequest, StateSnapshot, decode,
)
from relay_errors import DecodeError, IllegalTransition, RoomFull, SendFailure, TransportClosed
from handshake import RoomState, RoomStateMachine
from session_registry import SessionRegistry
import server_utils
from server_utils import log_message

# Messages only the server may send; a client sending one is ignored
SERVER_ONLY_MESSAGES = (PlayerAssigned, ReadyToStart, GameStarted, ServerClosed, JoinRejected)


# Performance metrics
class PerformanceMetrics:
    def __init__(self):
        self.start_time = time.time()
        self.packet_recv_count = 0
        self.packet_sent_count = 0
        self.snapshot_count = 0
        self.chat_count = 0
        self.decode_errors = 0
        self.send_failures = 0
        self.rejected_joins = 0
        self.illegal_transitions = 0
        self.ignored_messages = 0
        self.mismatched_snapshots = 0
        self.cpu_samples = []

    def sample_cpu(self):
        try:
            self.cpu_samples.append(psutil.cpu_percent(interval=None))
        except psutil.Error:
            pass

    def get_stats(self):
        elapsed = time.time() - self.start_time
        return {
            'uptime_seconds': elapsed,
            'packets_received': self.packet_recv_count,
            'packets_sent': self.packet_sent_count,
            'snapshots_relayed': self.snapshot_count,
            'chats_relayed': self.chat_count,
            'decode_errors': self.decode_errors,
            'send_failures': self.send_failures,
            'rejected_joins': self.rejected_joins,
            'illegal_transitions': self.illegal_transitions,
            'ignored_messages': self.ignored_messages,
            'mismatched_snapshots': self.mismatched_snapshots,
            'relay_rate': self.snapshot_count / elapsed if elapsed > 0 else 0,
            'avg_cpu': sum(self.cpu_samples) / len(self.cpu_samples) if self.cpu_samples else 0,
            'max_cpu': max(self.cpu_samples) if self.cpu_samples else 0,
        }


class RelayServer:
    """
    Relays datagrams between the two peers of one room.

    The caller owns the socket's creation; the server owns it afterwards and
    closes it in shutdown(). Everything runs on the calling thread: poll()
    drains whatever is queued and returns.
    """

    def __init__(self, sock, registry=None, server_name=DEFAULT_SERVER_NAME,
                 idle_timeout=None, reset_on_leave=False, announce_rejections=True,
                 log_dir=None, clock=time.time):
        self.sock = sock
        self.registry = registry if registry is not None else SessionRegistry()
        self.server_name = server_name
        self.idle_timeout = idle_timeout
        self.reset_on_leave = reset_on_leave
        self.announce_rejections = announce_rejections
        self.log_dir = log_dir
        self.clock = clock
        self.room = RoomStateMachine()
        self.metrics = PerformanceMetrics()
        self.send_log = []   # server_send_log.csv
        self.recv_log = []   # server_recv_log.csv
        self.closed = False
        self._polls = 0

    @property
    def state(self):
        return self.room.state

    @property
    def game_started(self):
        return self.room.game_started

    # --- Sending ---
    def send_to(self, session_or_addr, message, kind):
        addr = getattr(session_or_addr, 'addr', session_or_addr)
        try:
            size = server_utils.send_packet(self.sock, addr, message)
        except SendFailure as e:
            self.metrics.send_failures += 1
            log_message(f"[WARN] {e}")
            return False
        self.metrics.packet_sent_count += 1
        session = self.registry.lookup(addr)
        if session is not None:
            session.packets_sent += 1
        self.send_log.append({
            'timestamp': self.clock(),
            'msg_type': kind,
            'dest_addr': str(addr),
            'payload_size': size,
        })
        return True

    def broadcast(self, message, kind, exclude=None):
        """Send to every session in join order, skipping the excluded endpoint."""
        delivered = 0
        for session in self.registry.sessions():
            if exclude is not None and session.addr == exclude:
                continue
            if self.send_to(session, message, kind):
                delivered += 1
        return delivered

    # --- Datagram dispatch ---
    def handle_datagram(self, data, addr):
        now = self.clock()
        self.metrics.packet_recv_count += 1
        session = self.registry.lookup(addr)
        try:
            message = decode(data, expect_join=session is None)
        except DecodeError as e:
            self.metrics.decode_errors += 1
            log_message(f"[WARN] Dropping datagram from {addr}: {e}")
            return None

        kind = type(message).__name__
        self.recv_log.append({
            'timestamp': now,
            'msg_type': kind,
            'src_addr': str(addr),
            'payload_size': len(data),
        })

        try:
            if session is None:
                self.handle_join(addr, message, now)
            else:
                self.registry.touch(addr, now)
                self.dispatch(session, message, data)
        except IllegalTransition as e:
            self.metrics.illegal_transitions += 1
            log_message(f"[WARN] {kind} from {addr} refused: {e}")
        return message

    def dispatch(self, session, message, data):
        if isinstance(message, StateSnapshot):
            self.relay_snapshot(session, message, data)
        elif isinstance(message, Chat):
            self.relay_chat(session, message)
        elif isinstance(message, StartRequest):
            self.handle_start_request(session)
        elif isinstance(message, Leave):
            self.disconnect_peer(session.addr, "left")
        elif isinstance(message, SERVER_ONLY_MESSAGES):
            self.metrics.ignored_messages += 1
            log_message(f"[WARN] Ignoring {type(message).__name__} sent by P{session.player_id}")

    def handle_join(self, addr, join, now):
        if self.closed:
            return None
        if self.room.state is RoomState.STARTED:
            return self.reject_join(addr, join, "game already started")
        try:
            session = self.registry.register(addr, join.name, now)
        except RoomFull as e:
            return self.reject_join(addr, join, str(e))

        pid = session.player_id
        self.send_to(session, PlayerAssigned(pid), 'PLAYER_ID')
        self.send_to(session, Chat(f"Welcome {join.name}! You are Player {pid}"), 'CHAT')
        self.broadcast(Chat(f"{join.name} joined as Player {pid}"), 'CHAT', exclude=addr)
        log_message(f"[SERVER] Player {pid} ({join.name}) connected from {addr} "
                    f"[{self.registry.count()}/{self.registry.capacity}]")

        self.room.occupancy_changed(self.registry.count(), self.registry.capacity)
        if self.room.state is RoomState.FULL:
            self.broadcast(ReadyToStart(), 'READY_TO_START')
            log_message(f"[SERVER] {self.registry.capacity} players connected! Clients can now start the game.")
        return session

    def reject_join(self, addr, join, reason):
        self.metrics.rejected_joins += 1
        log_message(f"[SERVER] Rejected {join.name!r} from {addr}: {reason}")
        if self.announce_rejections:
            self.send_to(addr, JoinRejected(reason), 'ROOM_FULL')
        return None

    def relay_snapshot(self, session, snapshot, data):
        if snapshot.player_id != session.player_id:
            self.metrics.mismatched_snapshots += 1
            log_message(f"[WARN] P{session.player_id} sent a snapshot tagged P{snapshot.player_id}")
        # relay the original bytes, never a re-encoding
        self.broadcast(data, 'PLAYER_DATA', exclude=session.addr)
        session.snapshots_relayed += 1
        self.metrics.snapshot_count += 1
        if self.metrics.snapshot_count % SNAPSHOT_LOG_EVERY == 0:
            log_message(f"[SERVER] Relaying game data from Player {session.player_id} "
                        f"({self.metrics.snapshot_count} snapshots so far)")

    def relay_chat(self, session, chat):
        formatted = f"[{session.name}]: {chat.text}"
        self.broadcast(Chat(formatted), 'CHAT', exclude=session.addr)
        self.metrics.chat_count += 1
        log_message(f"[SERVER] Chat - {formatted}")

    def handle_start_request(self, session):
        self.room.start()
        log_message(f"[SERVER] Game starting! (requested by Player {session.player_id})")
        self.broadcast(GameStarted(), 'GAME_START')

    # --- Departures ---
    def disconnect_peer(self, addr, reason="transport error"):
        """Drop a peer (explicit leave, transport error, idle eviction)."""
        session = self.registry.remove(addr)
        if session is None:
            return None
        log_message(f"[SERVER] Player {session.player_id} ({session.name}) disconnected: {reason}")
        self.broadcast(Chat(f"{session.name} left the room."), 'CHAT')

        if self.room.state is RoomState.STARTED and self.reset_on_leave:
            self.registry.release_retired_ids()
            self.room.reset(self.registry.count())
            log_message(f"[SERVER] Room reset to {self.room.state.value}")
        else:
            self.room.occupancy_changed(self.registry.count(), self.registry.capacity)
        return session

    def evict_idle(self, now=None):
        if self.idle_timeout is None:
            return []
        now = self.clock() if now is None else now
        evicted = []
        for session in self.registry.idle_sessions(now, self.idle_timeout):
            self.disconnect_peer(session.addr, f"idle for more than {self.idle_timeout}s")
            evicted.append(session)
        return evicted

    # --- Loop ---
    def poll(self):
        """Drain every queued datagram, then run housekeeping. Returns datagrams handled."""
        if self.closed:
            raise TransportClosed("server is shut down")
        handled = 0
        while True:
            try:
                data, addr = self.sock.recvfrom(BUFFER_SIZE)
            except BlockingIOError:
                break
            except ConnectionResetError as e:
                # ICMP port unreachable from some earlier send
                log_message(f"[WARN] Receive error ignored: {e}")
                continue
            except OSError as e:
                raise TransportClosed(f"socket unusable: {e}") from e
            self.handle_datagram(data, addr)
            handled += 1

        self.evict_idle()
        self._polls += 1
        if self._polls % CPU_SAMPLE_EVERY == 0:
            self.metrics.sample_cpu()
        return handled

    def run(self, stop_event=None, poll_interval=SERVER_POLL_INTERVAL):
        ticker = server_utils.Ticker(poll_interval)
        log_message(f"[SERVER] {self.server_name} relaying on {self.sock.getsockname()}")
        log_message(f"[SERVER] Max players: {self.registry.capacity}")
        try:
            while stop_event is None or not stop_event.is_set():
                if ticker.due():
                    self.poll()
                ticker.sleep_until_due()
        except TransportClosed as e:
            log_message(f"[SERVER] Transport closed: {e}")
        except KeyboardInterrupt:
            log_message("\n[SERVER] Shutting down")
        finally:
            self.shutdown()

    def shutdown(self):
        if self.closed:
            return
        self.broadcast(ServerClosed(), 'SERVER_CLOSED')
        self.closed = True
        self.room.close()
        try:
            self.sock.close()
        except OSError as e:
            log_message(f"[WARN] Error closing socket: {e}")
        log_message("[SERVER] Server closed")
        if self.log_dir:
            self.save_logs(self.log_dir)

    # --- Log export ---
    def save_logs(self, log_dir):
        """Save traffic logs and the performance summary as CSV files."""
        try:
            os.makedirs(log_dir, exist_ok=True)
            if self.send_log:
                with open(os.path.join(log_dir, 'server_send_log.csv'), 'w', newline='') as f:
                    writer = csv.DictWriter(f, fieldnames=['timestamp', 'msg_type', 'dest_addr', 'payload_size'])
                    writer.writeheader()
                    writer.writerows(self.send_log)
            if self.recv_log:
                with open(os.path.join(log_dir, 'server_recv_log.csv'), 'w', newline='') as f:
                    writer = csv.DictWriter(f, fieldnames=['timestamp', 'msg_type', 'src_addr', 'payload_size'])
                    writer.writeheader()
                    writer.writerows(self.recv_log)
            stats = self.metrics.get_stats()
            with open(os.path.join(log_dir, 'server_performance.csv'), 'w', newline='') as f:
                writer = csv.DictWriter(f, fieldnames=list(stats.keys()))
                writer.writeheader()
                writer.writerow(stats)
            log_message(f"[SERVER] Logs saved to {log_dir}")
        except OSError as e:
            log_message(f"[SERVER] Error saving logs: {e}")
