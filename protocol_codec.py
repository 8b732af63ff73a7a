# protocol_codec.py
"""
Text datagram codec shared by the relay server and its clients.

Every message is a single UTF-8 datagram. Control messages are fixed
literals, the identity and snapshot messages carry a literal prefix, and
anything else is chat. The first datagram from an unseen endpoint is the
player's display name, so callers decode it with ``expect_join=True``.
"""
import json
import math
from collections import namedtuple

from protocol_constants import *
from relay_errors import DecodeError

# --- Message types ---
Join = namedtuple("Join", "name")
Chat = namedtuple("Chat", "text")
StateSnapshot = namedtuple("StateSnapshot", "player_id pos_x pos_y pos_z rot_y")
PlayerAssigned = namedtuple("PlayerAssigned", "player_id")
JoinRejected = namedtuple("JoinRejected", "reason")
ReadyToStart = namedtuple("ReadyToStart", "")
StartRequest = namedtuple("StartRequest", "")
GameStarted = namedtuple("GameStarted", "")
ServerClosed = namedtuple("ServerClosed", "")
Leave = namedtuple("Leave", "")

_LITERAL_TO_MESSAGE = {
    READY_TO_START: ReadyToStart(),
    START_GAME: StartRequest(),
    GAME_START: GameStarted(),
    SERVER_CLOSED: ServerClosed(),
    PLAYER_LEAVE: Leave(),
}
_MESSAGE_TO_LITERAL = {type(msg): literal for literal, msg in _LITERAL_TO_MESSAGE.items()}


def is_reserved(text: str) -> bool:
    """True when text is one of the protocol's control forms rather than free text."""
    return text in CONTROL_LITERALS or text.startswith(RESERVED_PREFIXES)


def snapshot_to_dict(snapshot: StateSnapshot) -> dict:
    return {
        "playerId": int(snapshot.player_id),
        "posX": float(snapshot.pos_x),
        "posY": float(snapshot.pos_y),
        "posZ": float(snapshot.pos_z),
        "rotY": float(snapshot.rot_y),
    }


def encode(message) -> bytes:
    """Serialize a message object into one datagram."""
    kind = type(message)
    if kind in _MESSAGE_TO_LITERAL:
        text = _MESSAGE_TO_LITERAL[kind]
    elif kind in (Join, Chat):
        text = message[0]
        # free text must never read back as a control form
        if is_reserved(text.strip()):
            raise ValueError(f"{kind.__name__} text {text[:24]!r} collides with a control message")
    elif kind is PlayerAssigned:
        text = f"{PLAYER_ID_PREFIX}{int(message.player_id)}"
    elif kind is JoinRejected:
        text = f"{ROOM_FULL_PREFIX}{message.reason}"
    elif kind is StateSnapshot:
        fields = snapshot_to_dict(message)
        for key in SNAPSHOT_FIELDS[1:]:
            if not math.isfinite(fields[key]):
                raise ValueError(f"snapshot field {key} is not finite")
        text = PLAYER_DATA_PREFIX + json.dumps(fields, separators=(",", ":"))
    else:
        raise TypeError(f"cannot encode {message!r}")
    return text.encode(ENCODING)


def _parse_number(obj, key, integer=False):
    if key not in obj:
        raise DecodeError(f"snapshot missing field {key}")
    value = obj[key]
    # bool is an int subclass; JSON true/false are not coordinates
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"snapshot field {key} is not numeric")
    if integer:
        if isinstance(value, float):
            if not value.is_integer():
                raise DecodeError(f"snapshot field {key} is not an integer")
            value = int(value)
        return value
    value = float(value)
    if not math.isfinite(value):
        raise DecodeError(f"snapshot field {key} is not finite")
    return value


def parse_snapshot_body(body: str) -> StateSnapshot:
    """
    Body format (after the PLAYER_DATA: prefix):
      {"playerId": int, "posX": float, "posY": float, "posZ": float, "rotY": float}
    Extra keys are ignored.
    """
    try:
        obj = json.loads(body)
    except ValueError as e:
        raise DecodeError(f"snapshot body is not JSON: {e}") from None
    if not isinstance(obj, dict):
        raise DecodeError("snapshot body is not a JSON object")
    return StateSnapshot(
        _parse_number(obj, "playerId", integer=True),
        _parse_number(obj, "posX"),
        _parse_number(obj, "posY"),
        _parse_number(obj, "posZ"),
        _parse_number(obj, "rotY"),
    )


def decode(data: bytes, expect_join: bool = False):
    """
    Parse one datagram into a message object.

    Raises DecodeError on bad UTF-8, empty datagrams, malformed snapshot or
    identity payloads, and (with expect_join) on a control form where a
    display name was expected.
    """
    try:
        text = data.decode(ENCODING).strip()
    except UnicodeDecodeError as e:
        raise DecodeError(f"datagram is not {ENCODING}: {e}") from None
    if not text:
        raise DecodeError("empty datagram")

    if expect_join:
        if is_reserved(text):
            raise DecodeError(f"expected a display name, got control message {text[:24]!r}")
        return Join(text[:MAX_NAME_LENGTH])

    if text in _LITERAL_TO_MESSAGE:
        return _LITERAL_TO_MESSAGE[text]
    if text.startswith(PLAYER_DATA_PREFIX):
        return parse_snapshot_body(text[len(PLAYER_DATA_PREFIX):])
    if text.startswith(PLAYER_ID_PREFIX):
        try:
            return PlayerAssigned(int(text[len(PLAYER_ID_PREFIX):]))
        except ValueError:
            raise DecodeError(f"bad player id in {text!r}") from None
    if text.startswith(ROOM_FULL_PREFIX):
        return JoinRejected(text[len(ROOM_FULL_PREFIX):])
    return Chat(text)
