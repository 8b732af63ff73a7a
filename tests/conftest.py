from collections import deque

import pytest

import server_utils

SERVER_ADDR = ("127.0.0.1", 6000)
ALICE = ("10.0.0.1", 50001)
BOB = ("10.0.0.2", 50002)
CAROL = ("10.0.0.3", 50003)


class FakeSocket:
    """In-memory stand-in for a non-blocking UDP socket."""

    def __init__(self, sockname=SERVER_ADDR):
        self.sockname = sockname
        self.inbox = deque()
        self.sent = []            # (bytes, addr)
        self.closed = False
        self.fail_sends_to = set()

    def feed(self, data, addr):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.inbox.append((data, addr))

    def feed_error(self, exc):
        """Queue an exception that the next recvfrom raises in place of a datagram."""
        self.inbox.append((exc, None))

    def recvfrom(self, bufsize):
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        if not self.inbox:
            raise BlockingIOError(11, "Resource temporarily unavailable")
        data, addr = self.inbox.popleft()
        if isinstance(data, BaseException):
            raise data
        return data, addr

    def sendto(self, data, addr):
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        if addr in self.fail_sends_to:
            raise ConnectionRefusedError(111, "Connection refused")
        self.sent.append((bytes(data), addr))
        return len(data)

    def close(self):
        self.closed = True

    def getsockname(self):
        return self.sockname

    def texts_to(self, addr):
        return [data.decode("utf-8") for data, dest in self.sent if dest == addr]

    def clear(self):
        self.sent.clear()


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


@pytest.fixture(autouse=True)
def quiet_logs():
    server_utils.set_quiet(True)
    yield
    server_utils.set_quiet(False)


@pytest.fixture
def fake_socket():
    return FakeSocket()


@pytest.fixture
def clock():
    return FakeClock()
