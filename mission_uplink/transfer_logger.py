"""
Transfer Logger Module

Records the mission protocol exchange of an uplink run:
- CSV: one row per mission message, inbound and outbound, with decoded fields
- .tlog: raw MAVLink frames with 64-bit microsecond timestamps, replayable
  in QGroundControl and MAVProxy
- JSON: status events reported by the mission transfer engine
"""

import csv
import json
import struct
import time
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .mission_protocol import MISSION_PREFIX

logger = logging.getLogger(__name__)


class TransferLogger:
    """
    Multi-format logger for mission transfers.

    Features:
    - Timestamped filenames for easy organization
    - Optional filename prefix per link
    - Mission-only filtering so heartbeats and telemetry stay out of the log
    """

    def __init__(self, log_dir: str = './uplink_logs', log_prefix: Optional[str] = None,
                 mission_only: bool = True):
        """
        Initialize the transfer logger.

        Args:
            log_dir: Directory to store log files (created if doesn't exist)
            log_prefix: Optional prefix for log filenames
            mission_only: Record only MISSION_* messages
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_prefix = log_prefix or ''
        self.mission_only = mission_only

        self.message_count = 0
        self.status_events: List[dict] = []

        self._create_log_files()

        logger.info(f"Transfer logger initialized in {self.log_dir}")

    def _create_log_files(self):
        """Create timestamped log files for all formats."""
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        prefix_part = f'{self.log_prefix}_' if self.log_prefix else ''
        base_name = f'{prefix_part}mission_{timestamp}'

        self.csv_file = self.log_dir / f'{base_name}.csv'
        self.tlog_file = self.log_dir / f'{base_name}.tlog'
        self.json_file = self.log_dir / f'{base_name}_status.json'

        self.csv_handle = open(self.csv_file, 'w', newline='', encoding='utf-8')
        self.csv_writer = csv.writer(self.csv_handle)
        self.csv_writer.writerow([
            'timestamp',
            'direction',
            'msg_type',
            'system_id',
            'component_id',
            'fields'
        ])
        self.csv_handle.flush()

        self.tlog_handle = open(self.tlog_file, 'wb')

        logger.info(f"Created log files: {base_name}.*")

    def observe(self, direction: str, message, raw_bytes: bytes = b''):
        """
        Record one message crossing the link.

        Matches the LinkTransport frame_observer signature.

        Args:
            direction: 'in' for vehicle to GCS, 'out' for GCS to vehicle
            message: ParsedMessage (inbound) or OutboundMessage (outbound)
            raw_bytes: Encoded MAVLink frame
        """
        msg_type = message.msg_type
        if self.mission_only and not msg_type.startswith(MISSION_PREFIX):
            return

        now = time.time()
        system_id = getattr(message, 'system_id', message.fields.get('target_system', ''))
        component_id = getattr(message, 'component_id', message.fields.get('target_component', ''))

        try:
            self.csv_writer.writerow([
                now,
                direction,
                msg_type,
                system_id,
                component_id,
                json.dumps(message.fields, default=str)
            ])
            self.csv_handle.flush()

            if raw_bytes:
                self.tlog_handle.write(struct.pack('>Q', int(now * 1e6)))
                self.tlog_handle.write(raw_bytes)

            self.message_count += 1

        except (OSError, ValueError) as e:
            logger.error(f"Error logging {msg_type}: {e}")

    def log_status(self, event):
        """
        Buffer a StatusEvent for the JSON status file.

        Args:
            event: StatusEvent from the mission transfer engine
        """
        entry = event.to_dict()
        entry['timestamp'] = event.timestamp
        if event.error is not None:
            entry['error'] = type(event.error).__name__
        self.status_events.append(entry)

    def _write_status(self):
        """Write buffered status events as a JSON array."""
        with open(self.json_file, 'w', encoding='utf-8') as f:
            json.dump(self.status_events, f, indent=2, default=str)

    def close(self):
        """
        Close all log files and write buffered data.

        This should be called when shutting down to ensure all data is
        written to disk.
        """
        logger.info(f"Closing transfer logger. Total messages logged: {self.message_count}")

        try:
            self._write_status()
        except OSError as e:
            logger.error(f"Error writing status file: {e}")

        if self.csv_handle:
            self.csv_handle.close()
            self.csv_handle = None

        if self.tlog_handle:
            self.tlog_handle.close()
            self.tlog_handle = None

    def get_stats(self) -> dict:
        """
        Get logging statistics.

        Returns:
            Dictionary containing:
                - message_count: Total mission messages logged
                - status_events: Number of status events recorded
                - csv_file: Path to current CSV file
                - tlog_file: Path to current .tlog file
                - json_file: Path to current status JSON file
        """
        return {
            'message_count': self.message_count,
            'status_events': len(self.status_events),
            'csv_file': str(self.csv_file),
            'tlog_file': str(self.tlog_file),
            'json_file': str(self.json_file)
        }
