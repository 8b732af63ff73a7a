# server_utils.py
import socket
import time

from protocol_codec import encode
from relay_errors import SendFailure

_quiet = False


def current_time_ms():
    return int(time.time() * 1000)


def set_quiet(quiet: bool):
    global _quiet
    _quiet = quiet


def log_message(msg):
    if not _quiet:
        print(msg, flush=True)


def open_server_socket(host: str, port: int) -> socket.socket:
    """Bind a non-blocking UDP socket for the relay."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind((host, port))
    sock.setblocking(False)
    return sock


def send_packet(sock, addr, message) -> int:
    """
    Encode a message object (or pass raw bytes through untouched) and send it
    as one datagram. Raises SendFailure instead of the socket's OSError so
    callers can log it and move on.
    """
    data = message if isinstance(message, (bytes, bytearray)) else encode(message)
    try:
        sock.sendto(data, addr)
    except OSError as e:
        raise SendFailure(addr, e) from e
    return len(data)


class Ticker:
    """
    Wall-clock deadline scheduler.

    due() fires at most once per interval. After firing, the next deadline is
    computed from the current time rather than accumulated, so a late caller
    never builds up a backlog of missed ticks.
    """

    def __init__(self, interval: float, clock=time.monotonic, start_due: bool = True):
        self.interval = interval
        self.clock = clock
        self.next_deadline = clock() if start_due else clock() + interval
        self.ticks = 0

    def due(self, now=None) -> bool:
        now = self.clock() if now is None else now
        if now < self.next_deadline:
            return False
        self.next_deadline = now + self.interval
        self.ticks += 1
        return True

    def time_until_due(self, now=None) -> float:
        now = self.clock() if now is None else now
        return max(0.0, self.next_deadline - now)

    def sleep_until_due(self):
        time.sleep(self.time_until_due())
