# client_utils.py
import math
import socket

from protocol_constants import BUFFER_SIZE
from relay_errors import TransportClosed


def open_client_socket(bind_host: str = "0.0.0.0") -> socket.socket:
    """Non-blocking UDP socket on an ephemeral local port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind((bind_host, 0))
    sock.setblocking(False)
    return sock


def drain_datagrams(sock, bufsize: int = BUFFER_SIZE):
    """
    Read every datagram currently queued on a non-blocking socket.
    Returns a list of (data, addr); raises TransportClosed if the socket is unusable.
    """
    packets = []
    while True:
        try:
            packets.append(sock.recvfrom(bufsize))
        except BlockingIOError:
            return packets
        except ConnectionResetError:
            # ICMP port unreachable for an earlier send (server not up yet)
            continue
        except OSError as e:
            raise TransportClosed(f"socket unusable: {e}") from e


def snapshot_position(snapshot):
    return (snapshot.pos_x, snapshot.pos_y, snapshot.pos_z)


def smooth_towards(current, target, alpha: float):
    """Linear interpolation of a position tuple towards target; alpha is clamped to [0, 1]."""
    alpha = min(1.0, max(0.0, alpha))
    return tuple(c + (t - c) * alpha for c, t in zip(current, target))


def position_error(a, b) -> float:
    """Euclidean distance between two position tuples."""
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))
