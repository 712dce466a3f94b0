"""Constants for the Z-Wave lock controller."""

from __future__ import annotations

import re

# Command classes used by the lock workflows
CC_DOOR_LOCK = 98
CC_USER_CODE = 99
CC_CONFIGURATION = 112
CC_NOTIFICATION = 113
CC_BATTERY = 128

COMMAND_CLASS_NAMES = {
    CC_DOOR_LOCK: "Door Lock",
    CC_USER_CODE: "User Code",
    CC_CONFIGURATION: "Configuration",
    CC_NOTIFICATION: "Notification",
    CC_BATTERY: "Battery",
}

# Door Lock CC modes
DOOR_LOCK_UNSECURED = 0x00
DOOR_LOCK_SECURED = 0xFF
DOOR_LOCK_UNKNOWN = 0xFE

DOOR_LOCK_MODE_NAMES = {
    0x00: "Unsecured",
    0x01: "UnsecuredWithTimeout",
    0x10: "InsideUnsecured",
    0x11: "InsideUnsecuredWithTimeout",
    0x20: "OutsideUnsecured",
    0x21: "OutsideUnsecuredWithTimeout",
    0xFE: "Unknown",
    0xFF: "Secured",
}

# User Code CC user id status
USER_ID_STATUS_AVAILABLE = 0
USER_ID_STATUS_ENABLED = 1    # "Occupied"
USER_ID_STATUS_DISABLED = 2   # "Reserved by administrator"
USER_ID_STATUS_MESSAGING = 3
USER_ID_STATUS_PASSAGE_MODE = 4
USER_ID_STATUS_NOT_AVAILABLE = 0xFE

USER_ID_STATUS_NAMES = {
    USER_ID_STATUS_AVAILABLE: "Available",
    USER_ID_STATUS_ENABLED: "Occupied",
    USER_ID_STATUS_DISABLED: "Reserved",
    USER_ID_STATUS_MESSAGING: "Messaging",
    USER_ID_STATUS_PASSAGE_MODE: "PassageMode",
    USER_ID_STATUS_NOT_AVAILABLE: "StatusNotAvailable",
}

# Supervision CC report status
SUPERVISION_NO_SUPPORT = 0x00
SUPERVISION_WORKING = 0x01
SUPERVISION_FAIL = 0x02
SUPERVISION_SUCCESS = 0xFF

SUPERVISION_STATUS_NAMES = {
    SUPERVISION_NO_SUPPORT: "NoSupport",
    SUPERVISION_WORKING: "Working",
    SUPERVISION_FAIL: "Fail",
    SUPERVISION_SUCCESS: "Success",
}

# User code slots
MIN_SLOT = 1
MAX_SLOT = 30
DEFAULT_MAX_SLOTS = 30

PIN_PATTERN = re.compile(r"^[0-9]{4,8}$")

# Configuration parameter holding the user code length (Schlage BE469 family)
USER_CODE_LENGTH_PARAMETER = 16
MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = 8

# Security key names understood by the Z-Wave JS server
SECURITY_KEY_NAMES = (
    "S2_AccessControl",
    "S2_Authenticated",
    "S2_Unauthenticated",
    "S0_Legacy",
)
SECURITY_KEY_BYTES = 16

CODE_ENCRYPTION_KEY_ENV = "CODE_ENCRYPTION_KEY"
SERVER_URL_ENV = "ZWAVE_SERVER_URL"
WEB_PORT_ENV = "ZWAVE_LOCK_WEB_PORT"

# zwave-js ZWaveErrorCodes for commands the driver refuses outright
ZWAVE_ERROR_ARGUMENT_INVALID = 5
ZWAVE_ERROR_CC_INVALID = 300
ZWAVE_ERROR_CC_NOT_SUPPORTED = 302
ZWAVE_ERROR_CC_NOT_IMPLEMENTED = 303
ZWAVE_ERROR_CC_NO_API = 304
REJECTED_ZWAVE_ERRORS = frozenset(
    {
        ZWAVE_ERROR_ARGUMENT_INVALID,
        ZWAVE_ERROR_CC_INVALID,
        ZWAVE_ERROR_CC_NOT_SUPPORTED,
        ZWAVE_ERROR_CC_NOT_IMPLEMENTED,
        ZWAVE_ERROR_CC_NO_API,
    }
)

UNKNOWN = "Unknown"
