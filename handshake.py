# handshake.py
"""
State machines gating the waiting room -> active game transition.

RoomStateMachine runs on the server and tracks the room as a whole.
GameStartHandshake runs on each client and decides when the local player
may ask the server to start.
"""
from enum import Enum

from relay_errors import IllegalTransition


class RoomState(Enum):
    EMPTY = "empty"
    WAITING = "waiting"
    FULL = "full"
    STARTED = "started"
    CLOSED = "closed"


class HandshakeState(Enum):
    CONNECTING = "connecting"
    WAITING = "waiting"
    READY = "ready"
    STARTED = "started"
    CLOSED = "closed"


class _StateMachine:
    TRANSITIONS = {}
    CLOSED = None

    def __init__(self, initial):
        self.state = initial
        self.history = [initial]

    def can_transition(self, target) -> bool:
        return target in self.TRANSITIONS.get(self.state, ())

    def transition(self, target):
        if self.state is target:
            return self.state
        if not self.can_transition(target):
            raise IllegalTransition(self.state, target)
        self.state = target
        self.history.append(target)
        return target

    def close(self):
        # closing is always legal and idempotent
        if self.state is not self.CLOSED:
            self.state = self.CLOSED
            self.history.append(self.CLOSED)


class RoomStateMachine(_StateMachine):
    TRANSITIONS = {
        RoomState.EMPTY: (RoomState.WAITING, RoomState.CLOSED),
        RoomState.WAITING: (RoomState.EMPTY, RoomState.FULL, RoomState.CLOSED),
        RoomState.FULL: (RoomState.WAITING, RoomState.STARTED, RoomState.CLOSED),
        # leaving STARTED is only reachable through reset()
        RoomState.STARTED: (RoomState.CLOSED,),
        RoomState.CLOSED: (),
    }
    CLOSED = RoomState.CLOSED

    def __init__(self):
        super().__init__(RoomState.EMPTY)

    @property
    def game_started(self) -> bool:
        return RoomState.STARTED in self.history

    def start(self):
        # a repeated start is refused, never silently accepted
        if self.state is not RoomState.FULL:
            raise IllegalTransition(self.state, RoomState.STARTED)
        return self.transition(RoomState.STARTED)

    def occupancy_changed(self, count, capacity):
        """Follow the registry size while the game has not started."""
        if self.state in (RoomState.STARTED, RoomState.CLOSED):
            return self.state
        if count == 0:
            target = RoomState.EMPTY
        elif count >= capacity:
            target = RoomState.FULL
        else:
            target = RoomState.WAITING
        return self.transition(target)

    def reset(self, count):
        """Reopen a started room for a new match (explicit reset policy only)."""
        if self.state is not RoomState.STARTED:
            raise IllegalTransition(self.state, RoomState.WAITING)
        self.state = RoomState.WAITING if count else RoomState.EMPTY
        self.history = [self.state]
        return self.state


class GameStartHandshake(_StateMachine):
    TRANSITIONS = {
        HandshakeState.CONNECTING: (HandshakeState.WAITING, HandshakeState.CLOSED),
        HandshakeState.WAITING: (HandshakeState.READY, HandshakeState.CLOSED),
        HandshakeState.READY: (HandshakeState.STARTED, HandshakeState.CLOSED),
        HandshakeState.STARTED: (HandshakeState.CLOSED,),
        HandshakeState.CLOSED: (),
    }
    CLOSED = HandshakeState.CLOSED

    def __init__(self):
        super().__init__(HandshakeState.CONNECTING)

    def on_player_assigned(self):
        return self.transition(HandshakeState.WAITING)

    def on_ready_to_start(self):
        return self.transition(HandshakeState.READY)

    def on_game_started(self):
        return self.transition(HandshakeState.STARTED)

    def reset(self):
        """Back to READY when the server reopens a started room to a new opponent."""
        if self.state is not HandshakeState.STARTED:
            raise IllegalTransition(self.state, HandshakeState.READY)
        self.state = HandshakeState.READY
        self.history.append(self.state)
        return self.state

    def can_request_start(self) -> bool:
        return self.state is HandshakeState.READY

    def check_start_request(self):
        if not self.can_request_start():
            raise IllegalTransition(self.state, HandshakeState.STARTED)

    @property
    def started(self) -> bool:
        return self.state is HandshakeState.STARTED
