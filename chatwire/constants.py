"""
Constants used throughout the chatwire library.
"""

# Server endpoints
GRAPHQL_ENDPOINT = "https://graph.facebook.com/graphql"
WEBSOCKET_ENDPOINT = "wss://edge-chat.facebook.com/chat"
WEBSOCKET_ORIGIN = "https://www.messenger.com"
WEBSOCKET_SUBPROTOCOL = "messenger"

# Protocol versions
CLIENT_VERSION = "2023.12.04.00"
PLATFORM = "android"

# Headers
USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 13; SM-G991B) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# Channel session lifetime when the server does not send one
CHANNEL_TOKEN_TTL = 3600  # seconds

# Close code sent on explicit disconnect
CLOSE_NORMAL = 1000

# Frame types (the "type" discriminant of every channel frame)
FRAME_AUTHENTICATION = "authentication"
FRAME_AUTHENTICATION_RESPONSE = "authentication_response"
FRAME_MESSAGE = "message"
FRAME_TYPING = "typing"
FRAME_READ_RECEIPT = "read_receipt"
FRAME_ONLINE_STATUS = "online_status"
FRAME_ACKNOWLEDGMENT = "acknowledgment"
FRAME_HEARTBEAT = "heartbeat"

# Events emitted to subscribers
EVENT_CONNECTING = "connecting"
EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_CLOSE = "close"
EVENT_ERROR = "error"
EVENT_RECONNECTING = "reconnecting"
EVENT_RECONNECT_FAILED = "reconnect_failed"
EVENT_MESSAGE = "message"
EVENT_TYPING = "typing"
EVENT_READ = "read"
EVENT_ONLINE = "online"
EVENT_OFFLINE = "offline"
EVENT_MESSAGE_ACKNOWLEDGED = "messageAcknowledged"
EVENT_ALL = "all"

# Message types
MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_IMAGE = "image"
MESSAGE_TYPE_VIDEO = "video"
MESSAGE_TYPE_AUDIO = "audio"
MESSAGE_TYPE_STICKER = "sticker"
MESSAGE_TYPE_FILE = "file"
MESSAGE_TYPE_LOCATION = "location"

# Limits
MAX_TEXT_LENGTH = 20000
MAX_RECEIVED_MESSAGES = 1000
