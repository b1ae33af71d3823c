"""
Mission Protocol Definitions

This module holds the closed vocabularies used by the mission upload state
machine: engine states, inbound event kinds, MAV_MISSION_RESULT codes and the
MAVLink enum values used as waypoint defaults.
"""

from enum import Enum, IntEnum
from typing import Optional


# MAVLink enum values used by the mission protocol
MAV_FRAME_GLOBAL_RELATIVE_ALT = 3
MAV_CMD_NAV_WAYPOINT = 16
MAV_MISSION_TYPE_MISSION = 0

MAV_TYPE_GCS = 6
MAV_AUTOPILOT_INVALID = 8
MAV_STATE_ACTIVE = 4

# Target system 0 addresses every system on the link
BROADCAST_SYSTEM_ID = 0

# MAVLink sequence fields are a single byte
MAX_MISSION_ITEMS = 255

MISSION_PREFIX = 'MISSION_'

# Fixed-point scaling for MISSION_ITEM_INT latitude/longitude
DEG_E7 = 10_000_000


class MissionState(Enum):
    """States of the mission transfer engine."""
    IDLE = 'IDLE'
    WAITING_FOR_REQUEST = 'WAITING_FOR_REQUEST'   # Upload in flight
    CLEARING = 'CLEARING'                         # Clear-all in flight
    COMPLETED = 'COMPLETED'                       # Accepted, grace window before idle


class InboundKind(Enum):
    """Mission protocol events the engine distinguishes."""
    REQUEST_LIST = 'REQUEST_LIST'
    ITEM_REQUEST = 'ITEM_REQUEST'
    ITEM_REQUEST_INT = 'ITEM_REQUEST_INT'
    ACK = 'ACK'
    OTHER = 'OTHER'


_INBOUND_KINDS = {
    'MISSION_REQUEST_LIST': InboundKind.REQUEST_LIST,
    'MISSION_REQUEST': InboundKind.ITEM_REQUEST,
    'MISSION_REQUEST_INT': InboundKind.ITEM_REQUEST_INT,
    'MISSION_ACK': InboundKind.ACK,
}


def classify_message(msg_type: Optional[str]) -> InboundKind:
    """
    Map a MAVLink message name onto an InboundKind.

    Names outside the mission protocol (anything not starting with
    'MISSION_') and mission messages the engine does not consume are
    reported as OTHER.
    """
    if not msg_type or not msg_type.startswith(MISSION_PREFIX):
        return InboundKind.OTHER
    return _INBOUND_KINDS.get(msg_type, InboundKind.OTHER)


class MissionResult(IntEnum):
    """MAV_MISSION_RESULT codes carried by MISSION_ACK.type"""
    ACCEPTED = 0
    ERROR = 1
    UNSUPPORTED_FRAME = 2
    UNSUPPORTED = 3
    NO_SPACE = 4
    INVALID = 5
    INVALID_PARAM1 = 6
    INVALID_PARAM2 = 7
    INVALID_PARAM3 = 8
    INVALID_PARAM4 = 9
    INVALID_PARAM5_X = 10
    INVALID_PARAM6_Y = 11
    INVALID_PARAM7_Z = 12
    INVALID_SEQUENCE = 13
    CANCELLED = 14


def ack_type_name(ack_type) -> str:
    """
    Return the vocabulary name for a MISSION_ACK type code.

    Args:
        ack_type: Raw integer code from the ack message

    Returns:
        Name such as 'NO_SPACE', or 'UNKNOWN(<code>)' for codes outside the
        MAV_MISSION_RESULT range
    """
    try:
        return MissionResult(ack_type).name
    except ValueError:
        return f"UNKNOWN({ack_type})"
