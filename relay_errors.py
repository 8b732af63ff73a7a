# relay_errors.py


class RelayError(Exception):
    """Base class for every relay/session failure."""


class DecodeError(RelayError):
    """Datagram could not be decoded; drop it and keep going."""


class RoomFull(RelayError):
    """Join attempted while the room has no free player slot."""


class SendFailure(RelayError):
    """Transport-level send error. Logged, never retried."""

    def __init__(self, addr, cause):
        super().__init__(f"send to {addr} failed: {cause}")
        self.addr = addr
        self.cause = cause


class TransportClosed(RelayError):
    """The local socket is unusable; the owning loop must stop."""


class IllegalTransition(RelayError):
    """A state machine refused to move between two states."""

    def __init__(self, current, target):
        super().__init__(f"illegal transition {current.name} -> {target.name}")
        self.current = current
        self.target = target
