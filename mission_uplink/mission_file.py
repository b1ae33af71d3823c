"""
Mission File Loader

Reads waypoint lists from plan files:
- JSON: a list of waypoint objects, or {"waypoints": [...]}
- CSV: header row with waypoint field names (lat, lon, alt, frame, ...)
- QGC WPL 110 (.waypoints/.txt): tab separated rows of
  seq, current, frame, command, param1-4, x, y, z, autocontinue

The loaders only shape the data; range and type checks happen when the
mission transfer engine validates the list.
"""

import json
import logging
from pathlib import Path
from typing import List, Union

import numpy as np
import pandas as pd

from .errors import ValidationError

logger = logging.getLogger(__name__)


WAYPOINT_FIELDS = (
    'lat', 'lon', 'alt', 'x', 'y', 'z',
    'frame', 'command', 'autocontinue',
    'param1', 'param2', 'param3', 'param4',
)

QGC_WPL_HEADER = 'QGC WPL 110'
QGC_WPL_COLUMNS = [
    'seq', 'current', 'frame', 'command',
    'param1', 'param2', 'param3', 'param4',
    'x', 'y', 'z', 'autocontinue',
]


def load_mission(path: Union[str, Path], include_home: bool = False) -> List[dict]:
    """
    Load a waypoint list from a plan file, picking the format by suffix.

    Args:
        path: Plan file path
        include_home: Keep row 0 of QGC WPL files, which Mission Planner
            uses for the home position

    Returns:
        List of waypoint dicts

    Raises:
        ValidationError: Unreadable file, unknown format, or missing columns
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Mission file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == '.json':
        waypoints = load_json_mission(path)
    elif suffix == '.csv':
        waypoints = load_csv_mission(path)
    elif suffix in ('.waypoints', '.txt'):
        waypoints = load_qgc_wpl(path, include_home=include_home)
    else:
        raise ValidationError(f"Unsupported mission file format: {suffix or path.name}")

    logger.info(f"Loaded {len(waypoints)} waypoints from {path}")
    return waypoints


def load_json_mission(path: Union[str, Path]) -> List[dict]:
    """Load waypoints from a JSON plan."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Cannot read mission file {path}: {e}")

    if isinstance(data, dict):
        data = data.get('waypoints')

    if not isinstance(data, list):
        raise ValidationError(f"{path}: expected a list of waypoints")

    return data


def _records(df: pd.DataFrame) -> List[dict]:
    # Empty cells fall back to the waypoint defaults
    df = df.astype(object).replace({np.nan: None})
    return [
        {key: value for key, value in row.items() if value is not None}
        for row in df.to_dict(orient='records')
    ]


def load_csv_mission(path: Union[str, Path]) -> List[dict]:
    """Load waypoints from a CSV file with a header row."""
    try:
        df = pd.read_csv(path)
    except (OSError, ValueError, pd.errors.ParserError) as e:
        raise ValidationError(f"Cannot read mission file {path}: {e}")

    df.columns = [str(c).strip().lower() for c in df.columns]

    has_lat = 'lat' in df.columns or 'x' in df.columns
    has_lon = 'lon' in df.columns or 'y' in df.columns
    if not (has_lat and has_lon):
        raise ValidationError(f"{path}: CSV needs lat/lon (or x/y) columns")

    unknown = [c for c in df.columns if c not in WAYPOINT_FIELDS]
    if unknown:
        logger.debug(f"Ignoring CSV columns: {unknown}")

    known = [c for c in df.columns if c in WAYPOINT_FIELDS]
    return _records(df[known])


def load_qgc_wpl(path: Union[str, Path], include_home: bool = False) -> List[dict]:
    """Load waypoints from a QGC WPL 110 text file."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            header = f.readline().strip()
    except OSError as e:
        raise ValidationError(f"Cannot read mission file {path}: {e}")

    if not header.startswith(QGC_WPL_HEADER):
        raise ValidationError(f"{path}: missing '{QGC_WPL_HEADER}' header")

    try:
        df = pd.read_csv(path, sep=r'\s+', skiprows=1, header=None,
                         names=QGC_WPL_COLUMNS, engine='python')
    except pd.errors.EmptyDataError:
        return []
    except (ValueError, pd.errors.ParserError) as e:
        raise ValidationError(f"Cannot parse mission file {path}: {e}")

    if df.empty:
        return []

    df = df.sort_values('seq')
    if not include_home:
        df = df[df['seq'] != 0]

    # seq and current are assigned by the upload itself
    df = df.drop(columns=['seq', 'current']).copy()
    try:
        for column in ('frame', 'command', 'autocontinue'):
            df[column] = df[column].astype(int)
    except ValueError as e:
        raise ValidationError(f"{path}: incomplete mission row: {e}")

    return _records(df)
