# =============================================================================
# fleetsync -- Constants
# =============================================================================
#
# Timing, limits, close codes and wire type names shared by the engine.
# =============================================================================

# -- Timing (seconds) --------------------------------------------------------

HEARTBEAT_INTERVAL = 30.0
CONNECTION_TIMEOUT = 10.0
STABLE_CONNECTION_AFTER = 30.0

# -- Reconnection -------------------------------------------------------------

RECONNECT_DELAY = 5.0
RECONNECT_MAX_ATTEMPTS = 5

# -- Notifications ------------------------------------------------------------

NOTIFICATION_LIMIT = 100
ALERT_DURATION = 5.0  # seconds; critical alerts never auto-dismiss

# -- Messages ------------------------------------------------------------------

MAX_MESSAGE_SIZE = 1_048_576  # 1 MB

# -- Timestamps ----------------------------------------------------------------

MS_THRESHOLD = 1_000_000_000_000  # epoch values above this are milliseconds

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
WS_CLOSE_GOING_AWAY = 1001
WS_CLOSE_ABNORMAL = 1006
WS_CLOSE_POLICY_VIOLATION = 1008
WS_CLOSE_AUTH_FAILED = 4401
WS_CLOSE_AUTH_EXPIRED = 4403

NORMAL_CLOSE_CODES = frozenset({WS_CLOSE_NORMAL, WS_CLOSE_GOING_AWAY})
AUTH_CLOSE_CODES = frozenset(
    {WS_CLOSE_AUTH_FAILED, WS_CLOSE_AUTH_EXPIRED, WS_CLOSE_POLICY_VIOLATION}
)
AUTH_REASON_MARKERS = ("auth", "unauthorized", "token expired", "forbidden")
AUTH_HTTP_STATUSES = frozenset({401, 403})

# -- Outbound frame types ------------------------------------------------------

PING = "ping"
CMD_SEND_SMS = "send_sms"
CMD_SEND_USSD = "send_ussd"
CMD_FIND_DEVICE = "find_device"
CMD_ALARM_START = "alarm_start"
CMD_ALARM_STOP = "alarm_stop"

COMMAND_TYPES = frozenset(
    {CMD_SEND_SMS, CMD_SEND_USSD, CMD_FIND_DEVICE, CMD_ALARM_START, CMD_ALARM_STOP}
)

# -- Inbound frame types -------------------------------------------------------

HEARTBEAT = "heartbeat"
DEVICE_ONLINE = "device_online"
DEVICE_OFFLINE = "device_offline"
DEVICE_STATUS = "device_status"

ALARM = "alarm"
SIM_CARD_CHANGE_ALARM = "sim_card_change_alarm"
ALARM_RESOLVED = "alarm_resolved"
SIM_CARD_CHANGE_ALARM_RESOLVED = "sim_card_change_alarm_resolved"

SMS_LOG = "sms_log"
SMS_MESSAGE = "sms_message"
SMS_DELIVERY_REPORT = "sms_delivery_report"
USSD_RESPONSE = "ussd_response"
USSD_RESPONSE_FAILED = "ussd_response_failed"
USSD_CODE = "ussd_code"
USSD_CANCELLED = "ussd_cancelled"
MMS_RECEIVED = "mms_received"
RCS_RECEIVED = "rcs_received"

FIND_DEVICE_SUCCESS = "find_device_success"
FIND_DEVICE_FAILED = "find_device_failed"
ALARM_STARTED = "alarm_started"
ALARM_FAILED = "alarm_failed"
ALARM_STOPPED = "alarm_stopped"
ALARM_STOP_FAILED = "alarm_stop_failed"

AUTH_ERROR = "auth_error"
UNAUTHORIZED = "unauthorized"
ERROR = "error"
CONNECTION_ESTABLISHED = "connection_established"
PONG = "pong"

AUTH_ERROR_CODES = frozenset({"AUTH_FAILED", "TOKEN_EXPIRED", "UNAUTHORIZED"})

SIM_CARD_CHANGE = "sim_card_change"

INVALID_IDENTITIES = frozenset({"", "undefined", "null", "none"})
