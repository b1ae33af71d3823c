"""
Link Transport Module

Couples a ConnectionManager with a MAVLinkCodec: inbound bytes become decoded
messages tagged with the link name, outbound logical messages become frames
on the wire. The transport also emits the periodic GCS heartbeat so that the
autopilot keeps the ground station registered as a peer.
"""

import time
import logging
from typing import Callable, List, Optional

from .connection_manager import ConnectionManager
from .errors import CodecError
from .mavlink_codec import MAVLinkCodec
from .mission_protocol import MAV_AUTOPILOT_INVALID, MAV_STATE_ACTIVE, MAV_TYPE_GCS
from .mission_transfer import InboundMessage, OutboundMessage

logger = logging.getLogger(__name__)


class LinkTransport:
    """
    Message-level transport over one connection.

    Attributes:
        connection: Byte-level connection to the vehicle
        codec: Encoder/decoder for the selected dialect
        name: Link name attached to every inbound message
        source_system: Our system ID in outbound frames
        source_component: Our component ID in outbound frames
        heartbeat_interval: Seconds between heartbeats (0 disables them)
        frame_observer: Optional callback(direction, ParsedMessage or
            OutboundMessage, raw_bytes) for transfer logging
    """

    def __init__(
        self,
        connection: ConnectionManager,
        codec: MAVLinkCodec,
        name: str = 'vehicle',
        source_system: int = 255,
        source_component: int = 190,
        heartbeat_interval: float = 1.0,
        frame_observer: Optional[Callable] = None,
    ):
        self.connection = connection
        self.codec = codec
        self.name = name
        self.source_system = source_system
        self.source_component = source_component
        self.heartbeat_interval = heartbeat_interval
        self.frame_observer = frame_observer

        self.last_heartbeat_time = 0.0
        self.stats = {
            'messages_received': 0,
            'messages_sent': 0,
            'send_failures': 0,
            'heartbeats_sent': 0
        }

    def poll(self, size: int = 1024) -> List[InboundMessage]:
        """
        Read available bytes and decode them.

        Args:
            size: Maximum number of bytes to read in this call

        Returns:
            List of decoded messages, in arrival order
        """
        data = self.connection.read(size)
        if not data:
            return []

        messages = []
        for parsed in self.codec.parse_stream(data):
            self._observe('in', parsed, parsed.raw_bytes)
            messages.append(InboundMessage.from_parsed(parsed, self.name))

        self.stats['messages_received'] += len(messages)
        return messages

    def send(self, message: OutboundMessage) -> bool:
        """
        Encode and transmit an outbound logical message.

        Args:
            message: Message produced by the mission transfer engine

        Returns:
            bool: True if the frame was written to the connection
        """
        try:
            frame = self.codec.encode(
                message.msg_type,
                message.fields,
                self.source_system,
                self.source_component
            )
        except CodecError as e:
            logger.error(f"Cannot encode {message.msg_type}: {e}")
            self.stats['send_failures'] += 1
            return False

        if not self.connection.write(frame):
            self.stats['send_failures'] += 1
            return False

        self._observe('out', message, frame)
        self.stats['messages_sent'] += 1
        logger.debug(f"Sent {message.msg_type} ({len(frame)} bytes) on {self.name}")
        return True

    def send_heartbeat(self) -> bool:
        """Send one GCS HEARTBEAT."""
        heartbeat = OutboundMessage(
            msg_type='HEARTBEAT',
            fields={
                'type': MAV_TYPE_GCS,
                'autopilot': MAV_AUTOPILOT_INVALID,
                'base_mode': 0,
                'custom_mode': 0,
                'system_status': MAV_STATE_ACTIVE,
            },
            target_system=0,
            target_component=0,
        )
        sent = self.send(heartbeat)
        if sent:
            self.stats['heartbeats_sent'] += 1
        return sent

    def maybe_send_heartbeat(self, now: Optional[float] = None) -> bool:
        """
        Send a heartbeat if the interval has elapsed.

        Args:
            now: Current time in seconds (defaults to time.time())

        Returns:
            bool: True if a heartbeat was sent
        """
        if self.heartbeat_interval <= 0:
            return False

        if now is None:
            now = time.time()
        if now - self.last_heartbeat_time < self.heartbeat_interval:
            return False

        self.last_heartbeat_time = now
        return self.send_heartbeat()

    def _observe(self, direction: str, message, raw: bytes):
        if self.frame_observer:
            self.frame_observer(direction, message, raw)

    def get_status(self) -> dict:
        """Return link statistics together with the connection status."""
        status = dict(self.stats)
        status['name'] = self.name
        status['connection'] = self.connection.get_status()
        status['codec'] = self.codec.get_stats()
        return status
