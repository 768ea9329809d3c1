# Relay protocol constants (envelope fields and message types)

# Envelope fields
F_TYPE = "type"
F_TO = "to"
F_FROM = "from"
F_GROUP_ID = "groupId"
F_FILE_ID = "fileId"
F_PAYLOAD = "payload"
F_USERNAME = "username"

# Signaling variant fields
F_PEER_ID = "peerId"
F_TARGET_PEER_ID = "targetPeerId"
F_SENDER_PEER_ID = "senderPeerId"

# Control types
T_AUTH = "auth"
T_PING = "ping"
T_PONG = "pong"

# Room membership types
T_JOIN_FILE_ROOM = "join_file_room"
T_LEAVE_FILE_ROOM = "leave_file_room"
T_JOIN_GROUP_ROOM = "join_group_room"
T_LEAVE_GROUP_ROOM = "leave_group_room"

# Peer-broadcast (file room) types
T_ANNOUNCE_CHUNK = "announce_chunk"

# Group-broadcast types
T_GROUP_MESSAGE = "group_message"
T_FILE_METADATA = "file_metadata"
T_FILE_CHUNK = "file_chunk"
T_FILE_COMMENT = "file_comment"
T_FILE_TAG = "file_tag"

# Directed unicast types
T_MESSAGE = "message"
T_TYPING = "typing"
T_DOWNLOAD_REQUEST = "download_request"
T_GROUP_INVITE = "group_invite"
T_FRIEND_REQUEST = "friend_request"
T_FRIEND_ACCEPT = "friend_accept"
T_FRIEND_REJECT = "friend_reject"

# Signaling variant types
T_REGISTER = "register"
T_RELAY = "relay"

# Room namespaces
NS_FILE = "file"
NS_GROUP = "group"

# Router modes
MODE_APP = "app"
MODE_SIGNALING = "signaling"
ROUTER_MODES = (MODE_APP, MODE_SIGNALING)

# Route actions (observability only, never sent on the wire)
A_CONTROL = "control"
A_JOIN = "join"
A_LEAVE = "leave"
A_BROADCAST = "broadcast"
A_UNICAST = "unicast"
A_DROP_NO_RECIPIENT = "drop_no_recipient"
A_DROP_UNCLASSIFIED = "drop_unclassified"
A_DROP_MALFORMED = "drop_malformed"

IDENTITY_MAX_CHARS = 256
