# session_registry.py
import time

from protocol_constants import MAX_PLAYERS
from relay_errors import RoomFull


# Per-peer state tracking
class Session:
    def __init__(self, player_id, addr, name, now=None):
        now = time.time() if now is None else now
        self.player_id = player_id
        self.addr = addr
        self.name = name
        self.joined_at = now
        self.last_seen = now
        self.packets_received = 0
        self.packets_sent = 0
        self.snapshots_relayed = 0

    def __repr__(self):
        return f"Session(P{self.player_id} {self.name!r} @ {self.addr})"


class SessionRegistry:
    """
    Owns the endpoint -> Session mapping for one room.

    Ids are handed out lowest-free-first. When a peer leaves while another
    session is still connected, its id is retired so the remaining peer can
    never be confused with a newcomer; retired ids come back once the room
    empties or release_retired_ids() is called.
    """

    def __init__(self, capacity=MAX_PLAYERS):
        self.capacity = capacity
        self._sessions = {}        # addr -> Session, insertion (join) order
        self._retired_ids = set()

    def _next_free_id(self):
        taken = {s.player_id for s in self._sessions.values()} | self._retired_ids
        for pid in range(1, self.capacity + 1):
            if pid not in taken:
                return pid
        return None

    def register(self, addr, name, now=None) -> Session:
        if addr in self._sessions:
            raise ValueError(f"{addr} is already registered")
        if len(self._sessions) >= self.capacity:
            raise RoomFull(f"room is full ({self.capacity} players)")
        pid = self._next_free_id()
        if pid is None:
            raise RoomFull(f"no free player id (retired: {sorted(self._retired_ids)})")
        session = Session(pid, addr, name, now)
        self._sessions[addr] = session
        return session

    def lookup(self, addr):
        return self._sessions.get(addr)

    def remove(self, addr):
        session = self._sessions.pop(addr, None)
        if session is None:
            return None
        if self._sessions:
            self._retired_ids.add(session.player_id)
        else:
            self._retired_ids.clear()
        return session

    def release_retired_ids(self):
        self._retired_ids.clear()

    def retired_ids(self):
        return frozenset(self._retired_ids)

    def count(self) -> int:
        return len(self._sessions)

    def is_full(self) -> bool:
        return len(self._sessions) == self.capacity

    def sessions(self):
        return list(self._sessions.values())

    def others(self, addr):
        return [s for a, s in self._sessions.items() if a != addr]

    def touch(self, addr, now=None):
        session = self._sessions.get(addr)
        if session is not None:
            session.last_seen = time.time() if now is None else now
            session.packets_received += 1
        return session

    def idle_sessions(self, now, timeout):
        return [s for s in self._sessions.values() if now - s.last_seen > timeout]

    def __contains__(self, addr):
        return addr in self._sessions

    def __len__(self):
        return len(self._sessions)
