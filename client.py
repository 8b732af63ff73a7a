# client.py
import time
from collections import namedtuple

from protocol_constants import *
from protocol_codec import (
    Chat, GameStarted, Join, JoinRejected, Leave, PlayerAssigned, ReadyToStart,
    ServerClosed, StartRequest, StateSnapshot, decode, is_reserved,
)
from relay_errors import DecodeError, IllegalTransition, SendFailure, TransportClosed
from handshake import GameStartHandshake, HandshakeState
from client_utils import drain_datagrams, open_client_socket
import server_utils
from server_utils import log_message

# Surfaced when the local socket dies or the first send fails
ConnectionLost = namedtuple("ConnectionLost", "reason")


class ClientSession:
    """
    Client side of the relay.

    The presentation layer calls update_local_state() whenever the local
    player moves and tick() once per frame; tick() returns the discrete
    events received since the previous call. The newest snapshot of the
    other player is kept in remote_snapshot.
    """

    def __init__(self, server_addr, name, tick_interval=DEFAULT_TICK_INTERVAL,
                 clock=time.monotonic, sock=None):
        if not name or is_reserved(name.strip()):
            raise ValueError(f"invalid player name {name!r}")
        self.server_addr = server_addr
        self.name = name
        self.clock = clock
        self.sock = sock
        self.handshake = GameStartHandshake()
        self.send_ticker = server_utils.Ticker(tick_interval, clock)
        self.player_id = None
        self.local_state = (0.0, 0.0, 0.0, 0.0)
        self.remote_snapshot = None
        self.closed = False
        self._pending_events = []
        # READY_TO_START that overtook our PLAYER_ID
        self._ready_pending = False

        # network stats
        self.packets_sent = 0
        self.packets_received = 0
        self.packets_from_other = 0
        self.own_snapshots_received = 0
        self.decode_errors = 0
        self.send_failures = 0
        self.early_ready_count = 0

    @property
    def state(self):
        return self.handshake.state

    # --- Connection ---
    def connect(self):
        """Open the socket (unless one was injected) and send Join(name)."""
        if self.sock is None:
            self.sock = open_client_socket()
        log_message(f"[CLIENT] Connecting to {self.server_addr[0]}:{self.server_addr[1]} as {self.name}")
        if not self._send(Join(self.name)):
            self._lose_connection("could not reach server")
            return False
        return True

    def disconnect(self):
        """Tell the server we are leaving (best effort) and release the socket. Idempotent."""
        if self.closed:
            return
        if self.sock is not None and self.handshake.state is not HandshakeState.CLOSED:
            self._send(Leave())
        self._close("disconnected")

    def _close(self, reason):
        self.closed = True
        self.handshake.close()
        if self.sock is not None:
            try:
                self.sock.close()
            except OSError as e:
                log_message(f"[WARN] Error closing client socket: {e}")
        log_message(f"[CLIENT] Session closed ({reason})")

    def _lose_connection(self, reason):
        self._pending_events.append(ConnectionLost(reason))
        if not self.closed:
            self._close(reason)

    # --- Sending ---
    def _send(self, message):
        try:
            server_utils.send_packet(self.sock, self.server_addr, message)
        except SendFailure as e:
            self.send_failures += 1
            log_message(f"[CLIENT] Send failed - {e.cause}")
            return False
        self.packets_sent += 1
        return True

    def send_chat(self, text):
        text = text.strip()
        if self.closed or not text:
            return False
        if is_reserved(text):
            log_message(f"[WARN] Chat {text[:24]!r} looks like a control message, not sent")
            return False
        return self._send(Chat(text))

    def request_start(self):
        """Ask the server to begin. Only legal once the room reported READY_TO_START."""
        self.handshake.check_start_request()
        return self._send(StartRequest())

    def update_local_state(self, pos_x, pos_y, pos_z, rot_y):
        self.local_state = (float(pos_x), float(pos_y), float(pos_z), float(rot_y))

    def local_snapshot(self):
        if self.player_id is None:
            return None
        return StateSnapshot(self.player_id, *self.local_state)

    def maybe_send_snapshot(self, now=None):
        """Send at most one snapshot when the send deadline has passed."""
        if self.closed or not self.handshake.started or self.player_id is None:
            return False
        if not self.send_ticker.due(now):
            return False
        return self._send(self.local_snapshot())

    # --- Receiving ---
    def tick(self, now=None):
        """Drain inbound datagrams, then send the local snapshot if due."""
        now = self.clock() if now is None else now
        events = self.receive(now)
        self.maybe_send_snapshot(now)
        return events

    def receive(self, now=None):
        events, self._pending_events = self._pending_events, []
        if self.closed or self.sock is None:
            return events
        try:
            packets = drain_datagrams(self.sock)
        except TransportClosed as e:
            self._lose_connection(str(e))
            events.extend(self._pending_events)
            self._pending_events = []
            return events

        for data, _addr in packets:
            self.packets_received += 1
            try:
                message = decode(data)
            except DecodeError as e:
                self.decode_errors += 1
                log_message(f"[WARN] Dropping undecodable datagram: {e}")
                continue
            try:
                event = self.handle_message(message, now)
            except IllegalTransition as e:
                log_message(f"[WARN] {type(message).__name__} ignored in state {self.state.value}: {e}")
                continue
            if event is not None:
                events.append(event)
            if self._pending_events:
                events.extend(self._pending_events)
                self._pending_events = []
            if self.closed:
                break
        return events

    def handle_message(self, message, now=None):
        """Apply one server message; returns the event to surface, or None."""
        if isinstance(message, StateSnapshot):
            if self.player_id is not None and message.player_id == self.player_id:
                self.own_snapshots_received += 1
                log_message(f"[WARN] [Player {self.player_id}] Received my OWN data back! "
                            f"Server should exclude sender. (Packet #{self.packets_received})")
                return None
            if self.remote_snapshot is None:
                log_message(f"[CLIENT] First data received from Player {message.player_id}")
            self.remote_snapshot = message
            self.packets_from_other += 1
            return None

        if isinstance(message, PlayerAssigned):
            self.handshake.on_player_assigned()
            self.player_id = message.player_id
            log_message(f"[CLIENT] Connected as Player {self.player_id}")
            if self._ready_pending:
                self._ready_pending = False
                self.handshake.on_ready_to_start()
                self._pending_events.append(ReadyToStart())
        elif isinstance(message, ReadyToStart):
            if self.state is HandshakeState.CONNECTING:
                self._ready_pending = True
                self.early_ready_count += 1
                log_message("[CLIENT] READY_TO_START arrived before PLAYER_ID, holding it")
                return None
            if self.handshake.started:
                # the server reopened the room after the other player left
                self.handshake.reset()
                self.remote_snapshot = None
                log_message("[CLIENT] Room reopened, game can start again")
            else:
                self.handshake.on_ready_to_start()
                log_message("[CLIENT] Both players connected, game can start")
        elif isinstance(message, GameStarted):
            self.handshake.on_game_started()
            # first snapshot goes out on this tick
            self.send_ticker.next_deadline = self.clock() if now is None else now
            log_message("[CLIENT] Game started")
        elif isinstance(message, ServerClosed):
            log_message("[CLIENT] Server closed")
            self._close("server closed")
        elif isinstance(message, JoinRejected):
            log_message(f"[CLIENT] Join rejected: {message.reason}")
            self._close("join rejected")
        elif isinstance(message, Chat):
            pass
        else:
            return None
        return message

    def stats(self):
        return {
            'player_id': self.player_id,
            'state': self.state.value,
            'packets_sent': self.packets_sent,
            'packets_received': self.packets_received,
            'packets_from_other': self.packets_from_other,
            'own_snapshots_received': self.own_snapshots_received,
            'decode_errors': self.decode_errors,
            'send_failures': self.send_failures,
            'early_ready_count': self.early_ready_count,
        }
