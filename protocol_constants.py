# protocol_constants.py
DEFAULT_PORT = 6000
DEFAULT_SERVER_IP = "127.0.0.1"
DEFAULT_SERVER_NAME = "DuelRelayRoom"
ENCODING = "utf-8"

# Wire literals / prefixes
PLAYER_ID_PREFIX = "PLAYER_ID:"
PLAYER_DATA_PREFIX = "PLAYER_DATA:"
ROOM_FULL_PREFIX = "ROOM_FULL:"
READY_TO_START = "READY_TO_START"
START_GAME = "START_GAME"
GAME_START = "GAME_START"
SERVER_CLOSED = "SERVER_CLOSED"
PLAYER_LEAVE = "PLAYER_LEAVE"

CONTROL_LITERALS = (READY_TO_START, START_GAME, GAME_START, SERVER_CLOSED, PLAYER_LEAVE)
RESERVED_PREFIXES = (PLAYER_ID_PREFIX, PLAYER_DATA_PREFIX, ROOM_FULL_PREFIX)

# Snapshot JSON keys
SNAPSHOT_FIELDS = ("playerId", "posX", "posY", "posZ", "rotY")

# Room limits
MAX_PLAYERS = 2
MAX_NAME_LENGTH = 32

# Default behavior / limits
BUFFER_SIZE = 2048
DEFAULT_SNAPSHOT_RATE_HZ = 20
DEFAULT_TICK_INTERVAL = 1.0 / DEFAULT_SNAPSHOT_RATE_HZ   # 50 ms
SERVER_POLL_INTERVAL = 0.005
SNAPSHOT_LOG_EVERY = 60        # log every Nth relayed snapshot
CPU_SAMPLE_EVERY = 200         # sample CPU every N polls
