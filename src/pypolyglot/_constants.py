"""Internal constants shared across the library."""

TOPIC_NAMESPACE = "udi/polyglot"
REMOTE_SERVICE = "polyglot"

# Value of the ``node`` field on every message Polyglot itself publishes.
REMOTE_NODE = "polyglot"

MQTT_USERNAME = "admin"
MQTT_PASSWORD = "admin"

DEFAULT_REQUEST_TIMEOUT: float = 15.0
DEFAULT_STDIN_TIMEOUT: float = 2.0

# Seconds between broker connection attempts, doubling up to the maximum.
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 30

# Config loop detection: trip when more than LOOP_THRESHOLD configs arrive
# within LOOP_WINDOW seconds.
LOOP_THRESHOLD = 30
LOOP_WINDOW: float = 10.0

# ISY unit of measure for boolean drivers.
BOOLEAN_UOM = 2

# ------------------------------------------------------------------
# Message keys
# ------------------------------------------------------------------

QUEUED_KEYS: frozenset[str] = frozenset({"config", "query", "command", "status", "shortPoll", "longPoll"})
IMMEDIATE_KEYS: frozenset[str] = frozenset({"result", "stop", "delete"})

# Result sub-messages correlated with send_message_async callers.
TRACKED_RESULT_COMMANDS: frozenset[str] = frozenset({"addnode"})

# Result sub-messages that carry no information for us.
IGNORED_RESULT_KEYS: frozenset[str] = frozenset(
    {"removenode", "profileNum", "statusCode", "seq", "elapsed", "status", "change"}
)

# Node fields merged from config entries into existing Node objects.
MERGED_NODE_FIELDS: tuple[str, ...] = ("controller", "drivers", "isprimary", "profileNum", "timeAdded")

KEYED_NOTICES = "keyedNotices"


def node_topic(namespace: str, profile_num: int) -> str:
    """Topic this node server publishes to and receives commands on."""
    return f"{namespace}/ns/{profile_num}"


def connection_topic(namespace: str, remote_service: str) -> str:
    """Retained topic where Polyglot advertises its connection state."""
    return f"{namespace}/connections/{remote_service}"
