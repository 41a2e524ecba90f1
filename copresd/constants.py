# copresd protocol constants (numeric keys and message types)

PROTO_VERSION = 1

# Envelope keys
K_V = 0
K_T = 1
K_ID = 2
K_TS = 3
K_BODY = 4

# Message types
T_INTRODUCTION = 10
T_PEER_JOINED = 11
T_PEER_LEFT = 12

T_UPDATE_STATE = 20
T_STATE_ECHO = 21
T_PEER_MOVED = 22

T_ADD_NOTE = 30
T_UPDATE_NOTE = 31
T_DELETE_NOTES = 32
T_NOTES_CHANGED = 33

T_PING = 40
T_PONG = 41

T_RESOURCE_ENVELOPE = 50

# Body keys. Key assignments are fixed; clients depend on them.
B_SELF_ID = 0
B_PEERS = 1
B_NOTES = 2
B_PEER_ID = 3
B_PEER = 4
B_COUNT = 5
B_POSITION = 6
B_ORIENTATION = 7
B_COLOR = 8
B_NOTE_ID = 9
B_NOTE_IDS = 10

# Peer state map keys
S_POSITION = 0
S_ORIENTATION = 1
S_COLOR = 2

# Note map keys
N_ID = 0
N_COLOR = 1
N_POSITION = 2

# RESOURCE_ENVELOPE body keys
B_RES_ID = 0
B_RES_KIND = 1
B_RES_SIZE = 2
B_RES_SHA256 = 3

# Resource kinds (string values)
RES_KIND_ENVELOPE = "envelope"

# Defaults for a freshly joined peer.
DEFAULT_POSITION = (0.0, 0.0, 0.0)
DEFAULT_ORIENTATION = (0.0, 0.0, 0.0, 0.0)
DEFAULT_COLOR = 0x9797CE

COLOR_MAX = 0xFFFFFF
ID_HEX_CHARS = 32
