"""
Waypoint Mapping Module

This module converts caller-supplied waypoints into MAVLink mission items.
Waypoints are plain mappings with user-friendly keys (lat/lon/alt or x/y/z
plus optional frame, command, autocontinue and param1..param4). Missing
fields are filled with the defaults of a plain navigation waypoint.

Two wire variants are supported:
- MISSION_ITEM: latitude/longitude as float degrees
- MISSION_ITEM_INT: latitude/longitude as int32 degrees * 1e7
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, asdict
from typing import Any, List, Optional, Sequence, Tuple
import logging

from .errors import ValidationError
from .mavlink_codec import enum_value
from .mission_protocol import (
    DEG_E7,
    MAV_CMD_NAV_WAYPOINT,
    MAV_FRAME_GLOBAL_RELATIVE_ALT,
    MAV_MISSION_TYPE_MISSION,
    MAX_MISSION_ITEMS,
)

logger = logging.getLogger(__name__)


# Defaults for fields the caller leaves out
DEFAULT_FRAME = MAV_FRAME_GLOBAL_RELATIVE_ALT
DEFAULT_COMMAND = MAV_CMD_NAV_WAYPOINT
DEFAULT_AUTOCONTINUE = 1
DEFAULT_HOLD_TIME = 0.0            # param1, seconds
DEFAULT_ACCEPTANCE_RADIUS = 2.0    # param2, meters
DEFAULT_PASS_RADIUS = 0.0          # param3, meters
DEFAULT_YAW = float('nan')         # param4, NaN keeps current heading

INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1


@dataclass(frozen=True)
class MissionItem:
    """
    Wire form of one mission item.

    Attributes:
        target_system: Vehicle system ID
        target_component: Vehicle component ID
        seq: Zero-based item index
        frame: MAV_FRAME of the coordinates
        command: MAV_CMD of the item
        current: 1 for the first item, 0 otherwise
        autocontinue: 1 to continue to the next item automatically
        param1..param4: Command parameters
        x: Latitude (float degrees, or degE7 int for the INT variant)
        y: Longitude (float degrees, or degE7 int for the INT variant)
        z: Altitude in meters
        mission_type: MAV_MISSION_TYPE, always the navigation mission
    """
    target_system: int
    target_component: int
    seq: int
    frame: int
    command: int
    current: int
    autocontinue: int
    param1: float
    param2: float
    param3: float
    param4: float
    x: Any
    y: Any
    z: float
    mission_type: int = MAV_MISSION_TYPE_MISSION

    def to_fields(self) -> dict:
        """Return the item as a field map keyed by dialect field names."""
        return asdict(self)


def degrees_to_e7(degrees: float) -> int:
    """
    Scale degrees to the int32 degE7 representation.

    Rounds half away from zero: the magnitude is rounded, then the sign is
    reapplied, so -x always maps to the negation of x.
    """
    scaled = float(degrees) * DEG_E7
    return int(math.copysign(math.floor(abs(scaled) + 0.5), scaled))


def _coordinate(wp: Mapping, primary: str, alternate: str) -> float:
    value = wp.get(primary)
    if value is None:
        value = wp.get(alternate)
    return float(value) if value is not None else 0.0


def _field(wp: Mapping, key: str, default):
    value = wp.get(key)
    return default if value is None else value


def _enum_field(wp: Mapping, key: str, default, dialect: str) -> int:
    value = _field(wp, key, default)
    # Plans may name entries, e.g. 'MAV_FRAME_GLOBAL_RELATIVE_ALT'
    if isinstance(value, str) and not value.strip().lstrip('-').isdigit():
        return enum_value(value, dialect)
    return int(value)


def waypoint_to_mission_item(
    wp: Mapping,
    seq: int,
    use_int_variant: bool,
    target_system: int = 1,
    target_component: int = 1,
    dialect: str = 'common',
) -> MissionItem:
    """
    Build the mission item for one waypoint.

    Args:
        wp: Waypoint mapping
        seq: Item index within the mission
        use_int_variant: Encode latitude/longitude as degE7 integers
        target_system: Vehicle system ID
        target_component: Vehicle component ID
        dialect: Dialect used to resolve frame and command given by name

    Returns:
        MissionItem ready to be sent as MISSION_ITEM or MISSION_ITEM_INT
    """
    lat = _coordinate(wp, 'lat', 'x')
    lon = _coordinate(wp, 'lon', 'y')
    alt = _coordinate(wp, 'alt', 'z')

    if use_int_variant:
        x, y = degrees_to_e7(lat), degrees_to_e7(lon)
    else:
        x, y = lat, lon

    return MissionItem(
        target_system=target_system,
        target_component=target_component,
        seq=seq,
        frame=_enum_field(wp, 'frame', DEFAULT_FRAME, dialect),
        command=_enum_field(wp, 'command', DEFAULT_COMMAND, dialect),
        current=1 if seq == 0 else 0,
        autocontinue=int(_field(wp, 'autocontinue', DEFAULT_AUTOCONTINUE)),
        param1=float(_field(wp, 'param1', DEFAULT_HOLD_TIME)),
        param2=float(_field(wp, 'param2', DEFAULT_ACCEPTANCE_RADIUS)),
        param3=float(_field(wp, 'param3', DEFAULT_PASS_RADIUS)),
        param4=float(_field(wp, 'param4', DEFAULT_YAW)),
        x=x,
        y=y,
        z=alt,
    )


def _describe(value) -> str:
    if value is None:
        return 'null'
    if isinstance(value, (list, tuple)):
        return 'array'
    return type(value).__name__


def validate_waypoints(waypoints: Optional[Sequence], dialect: str = 'common') -> Tuple[dict, ...]:
    """
    Check a waypoint list before an upload starts.

    Every element must be a mapping whose numeric fields convert to the wire
    types. The returned tuple holds shallow copies, so the caller may keep
    mutating its own list without affecting an upload in progress.

    Args:
        waypoints: Sequence of waypoint mappings
        dialect: Dialect used to resolve frame and command names

    Returns:
        Tuple of validated waypoint dicts

    Raises:
        ValidationError: Empty list, more than 255 entries, or a malformed
            element (the message names its index)
    """
    if waypoints is None or isinstance(waypoints, (str, bytes, Mapping)) \
            or not isinstance(waypoints, Sequence):
        raise ValidationError("Waypoints must be a list")

    if len(waypoints) == 0:
        raise ValidationError("Empty waypoint array", {'count': 0})

    if len(waypoints) > MAX_MISSION_ITEMS:
        raise ValidationError("Too many waypoints", {'count': len(waypoints)})

    snapshot: List[dict] = []
    for index, wp in enumerate(waypoints):
        if not isinstance(wp, Mapping):
            logger.error(f"Invalid waypoint at index {index}: expected object, got {_describe(wp)}")
            raise ValidationError(f"Invalid waypoint data at index {index}", {'index': index})

        try:
            # Both variants must be encodable before anything is sent
            item = waypoint_to_mission_item(wp, index, use_int_variant=True, dialect=dialect)
            if not (INT32_MIN <= item.x <= INT32_MAX and INT32_MIN <= item.y <= INT32_MAX):
                raise ValueError(f"coordinates out of range: {item.x}, {item.y}")
        except (TypeError, ValueError, OverflowError) as e:
            logger.error(f"Invalid waypoint at index {index}: {e}")
            raise ValidationError(f"Invalid waypoint data at index {index}", {'index': index})

        snapshot.append(dict(wp))

    return tuple(snapshot)
