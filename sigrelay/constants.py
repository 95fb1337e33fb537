# sigrelay wire constants (JSON keys, type tags, error texts)

# Envelope keys
K_TYPE = "type"
K_DATA = "data"

# Join request keys (first frame)
J_ROOM = "room"
J_USERNAME = "username"
J_CREATE = "create"

# Relay payload markers. A frame carrying either key is negotiation traffic.
K_SDP = "sdp"
K_ICE = "ice"
RELAY_KEYS = (K_SDP, K_ICE)

# Client -> server control tags
T_JOIN = "join"
T_LEAVE = "leave"
T_PING = "ping"
T_PONG = "pong"
T_START_STREAM = "start_stream"
T_END_STREAM = "end_stream"

# Explicit relay tag (optional; sdp/ice presence is enough)
T_RELAY = "relay"

# Server -> client tags
T_ROOM_INFO = "room_info"
T_ERROR = "error"
T_STREAM_ENDED = "stream_ended"

# Tags only the relay may emit; clients sending them are dropped.
SERVER_ONLY_TAGS = frozenset({T_ROOM_INFO, T_ERROR, T_STREAM_ENDED})

# Frame kinds produced by envelope.classify_frame
KIND_UNKNOWN = "unknown"

# room_info body keys
B_USERS = "users"
B_STREAMING_USERS = "streamingUsers"

# Error texts sent in {"type": "error", "data": ...}
ERR_DUPLICATE_NAME = "duplicate name"
ERR_ROOM_NOT_FOUND = "room not found"
ERR_BAD_JOIN = "invalid join request"

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY = 1008

# Room creation policies
ROOM_CREATION_EXPLICIT = "explicit"
ROOM_CREATION_IMPLICIT = "implicit"

# Relay routing modes
RELAY_MODE_PERMISSIVE = "permissive"
RELAY_MODE_STRICT = "strict"

NAME_MAX_CHARS = 32
ROOM_NAME_MAX_CHARS = 64
