"""
MAVLink Codec Module

This module turns logical messages (name + field map) into MAVLink frames and
back, using the pymavlink generated dialect modules. It also provides the
streaming parser used by the link transport, with buffer management and
statistics tracking.
"""

import functools
import importlib
import inspect
import struct
import time
import logging
from dataclasses import dataclass
from typing import List, Optional

from .errors import FieldOutOfRange, MalformedFrame, UnknownMessage, UnknownMessageId

logger = logging.getLogger(__name__)


@dataclass
class ParsedMessage:
    """
    One decoded MAVLink frame.

    Attributes:
        timestamp: Wall-clock time of decoding
        msg_type: Dialect message name (e.g., 'MISSION_REQUEST_INT')
        msg_id: Dialect message id
        system_id: Sender system ID
        component_id: Sender component ID
        sequence: Sender's packet counter (0-255)
        fields: Field values keyed by dialect field name
        raw_bytes: The frame as received
    """
    timestamp: float
    msg_type: str
    msg_id: int
    system_id: int
    component_id: int
    sequence: int
    fields: dict
    raw_bytes: bytes = b''


def load_dialect(dialect: str = 'common', mavlink2: bool = True):
    """
    Import a pymavlink dialect module.

    Args:
        dialect: Dialect name (e.g., 'common', 'ardupilotmega')
        mavlink2: Load the MAVLink 2 wire format module

    Returns:
        The generated dialect module

    Raises:
        ValueError: The dialect is not shipped with pymavlink
    """
    version = 'v20' if mavlink2 else 'v10'
    try:
        return importlib.import_module(f'pymavlink.dialects.{version}.{dialect}')
    except ImportError as e:
        raise ValueError(f"Unknown MAVLink dialect '{dialect}' ({version}): {e}")


@functools.lru_cache(maxsize=None)
def _enum_index(dialect: str) -> dict:
    module = load_dialect(dialect)
    index = {}
    for members in module.enums.values():
        for value, entry in members.items():
            if not entry.name.endswith('_ENUM_END'):
                index[entry.name] = value
    return index


def enum_entries(enum_name: str, dialect: str = 'common') -> dict:
    """
    Members of one dialect enum.

    Args:
        enum_name: Enum name (e.g., 'MAV_FRAME')
        dialect: Dialect name

    Returns:
        dict: Entry name -> value, in value order

    Raises:
        ValueError: The dialect has no such enum
    """
    module = load_dialect(dialect)
    members = module.enums.get(enum_name)
    if members is None:
        raise ValueError(f"Enum '{enum_name}' not found in dialect {dialect}")
    return {
        entry.name: value
        for value, entry in sorted(members.items())
        if not entry.name.endswith('_ENUM_END')
    }


def enum_value(name: str, dialect: str = 'common') -> int:
    """
    Resolve an enum entry name such as 'MAV_CMD_NAV_TAKEOFF' to its value.

    Raises:
        ValueError: No enum of the dialect has an entry of that name
    """
    key = name.strip().upper()
    index = _enum_index(dialect)
    if key not in index:
        raise ValueError(f"Unknown MAVLink enum entry '{name}' in dialect {dialect}")
    return index[key]


class MAVLinkCodec:
    """
    MAVLink encoder/decoder for one dialect.

    encode() and decode() work on single frames and raise codec errors;
    parse_stream() handles continuous byte streams, tolerating corruption and
    counting it in the statistics instead.
    """

    def __init__(self, dialect: str = 'common', mavlink2: bool = True,
                 system_id: int = 255, component_id: int = 190):
        """
        Initialize the codec.

        Args:
            dialect: pymavlink dialect name
            mavlink2: Use MAVLink 2 framing for outbound messages
            system_id: Default source system ID for encoded frames
            component_id: Default source component ID for encoded frames
        """
        self.dialect = dialect
        self.mavlink2 = mavlink2
        self.module = load_dialect(dialect, mavlink2)

        # Outbound packer keeps the packet sequence counter
        self.encoder = self.module.MAVLink(None, srcSystem=system_id, srcComponent=component_id)

        # Stream parser instance
        self.mav = self.module.MAVLink(None)

        # Statistics tracking
        self.stats = {
            'total_packets': 0,
            'parse_errors': 0,
            'checksum_errors': 0,
            'unknown_messages': 0,
            'bytes_processed': 0,
            'packets_encoded': 0
        }

        logger.info(f"MAVLink codec initialized (dialect={dialect}, "
                    f"mavlink{'2' if mavlink2 else '1'})")

    def encode(self, message_name: str, fields: dict,
               system_id: Optional[int] = None, component_id: Optional[int] = None) -> bytes:
        """
        Encode a logical message into a MAVLink frame.

        Fields that the dialect does not define for this message are dropped,
        so extension fields such as mission_type can be passed to MAVLink 1
        dialects.

        Args:
            message_name: MAVLink message name (e.g., 'MISSION_COUNT')
            fields: Field map keyed by dialect field names
            system_id: Source system ID (defaults to the codec's)
            component_id: Source component ID (defaults to the codec's)

        Returns:
            bytes: Complete MAVLink frame

        Raises:
            UnknownMessage: The dialect has no such message
            FieldOutOfRange: A required field is missing or a value does not
                fit its wire type
        """
        encoder = getattr(self.encoder, f'{message_name.lower()}_encode', None)
        if encoder is None:
            raise UnknownMessage(f"Message {message_name} not in dialect {self.dialect}")

        params = inspect.signature(encoder).parameters
        kwargs = {name: value for name, value in fields.items() if name in params}
        dropped = set(fields) - set(kwargs)
        if dropped:
            logger.debug(f"{message_name}: ignoring fields not in dialect: {sorted(dropped)}")

        try:
            msg = encoder(**kwargs)
        except TypeError as e:
            raise FieldOutOfRange(f"{message_name}: {e}")

        if system_id is not None:
            self.encoder.srcSystem = system_id
        if component_id is not None:
            self.encoder.srcComponent = component_id

        try:
            data = msg.pack(self.encoder)
        except (struct.error, TypeError, ValueError, OverflowError) as e:
            raise FieldOutOfRange(f"{message_name}: {e}")

        self.stats['packets_encoded'] += 1
        return bytes(data)

    def decode(self, data: bytes) -> ParsedMessage:
        """
        Decode exactly one MAVLink frame.

        Args:
            data: Bytes of a single complete frame

        Returns:
            ParsedMessage for the frame

        Raises:
            MalformedFrame: Bad checksum, incomplete frame, or extra bytes
            UnknownMessageId: The dialect does not define the message id
        """
        parser = self.module.MAVLink(None)
        try:
            messages = parser.parse_buffer(bytes(data)) or []
        except self.module.MAVError as e:
            text = str(getattr(e, 'message', e))
            if 'unknown' in text.lower():
                raise UnknownMessageId(text)
            raise MalformedFrame(text)

        if len(messages) != 1 or parser.buf_len() > 0:
            raise MalformedFrame(f"Expected one complete frame, got {len(messages)} "
                                 f"with {parser.buf_len()} bytes left over")

        msg = messages[0]
        if self._is_unknown(msg):
            raise UnknownMessageId(f"Unknown MAVLink message id {msg.get_msgId()}")

        return self._create_parsed_message(msg)

    def parse_stream(self, data: bytes) -> List[ParsedMessage]:
        """
        Feed a chunk of link bytes and collect the frames it completes.

        Partial frames stay buffered until the next call. Corrupt frames and
        unknown message ids are counted in stats and skipped.

        Args:
            data: Bytes as read from the link

        Returns:
            Decoded messages in arrival order
        """
        if not data:
            return []

        self.stats['bytes_processed'] += len(data)
        messages = []

        for byte in data:
            try:
                msg = self.mav.parse_char(bytes([byte]))

                if msg:
                    if self._is_unknown(msg):
                        self.stats['unknown_messages'] += 1
                        logger.debug(f"Skipping unknown message id {msg.get_msgId()}")
                        continue

                    messages.append(self._create_parsed_message(msg))
                    self.stats['total_packets'] += 1

                    logger.debug(f"Parsed {msg.get_type()} from system {msg.get_srcSystem()}")

            except self.module.MAVError as e:
                self.stats['checksum_errors'] += 1
                logger.warning(f"Dropped frame: {e}")

            except (struct.error, ValueError, IndexError) as e:
                self.stats['parse_errors'] += 1
                logger.error(f"Stream parse failure: {e}")

        return messages

    def _is_unknown(self, msg) -> bool:
        unknown_cls = getattr(self.module, 'MAVLink_unknown', None)
        if unknown_cls is not None and isinstance(msg, unknown_cls):
            return True
        return msg.get_type().startswith('UNKNOWN_')

    def _create_parsed_message(self, msg) -> ParsedMessage:
        msg_dict = msg.to_dict()
        msg_dict.pop('mavpackettype', None)

        return ParsedMessage(
            timestamp=time.time(),
            msg_type=msg.get_type(),
            msg_id=msg.get_msgId(),
            system_id=msg.get_srcSystem(),
            component_id=msg.get_srcComponent(),
            sequence=msg.get_seq(),
            fields=msg_dict,
            raw_bytes=bytes(msg.get_msgbuf() or b'')
        )

    def get_stats(self) -> dict:
        """Return a copy of the counters plus error_rate (percent of failed frames)."""
        stats = self.stats.copy()

        total_attempts = stats['total_packets'] + stats['parse_errors'] + stats['checksum_errors']
        if total_attempts > 0:
            stats['error_rate'] = (stats['parse_errors'] + stats['checksum_errors']) / total_attempts * 100
        else:
            stats['error_rate'] = 0.0

        return stats

    def reset_stats(self):
        """Zero every counter."""
        for key in self.stats:
            self.stats[key] = 0
        logger.info("Codec statistics reset")

    def clear_buffer(self):
        """
        Reset the stream parser state.

        This recreates the MAVLink parser instance, clearing any partial
        frame. Useful for recovering from errors or synchronization issues.
        """
        self.mav = self.module.MAVLink(None)
        logger.info("Stream parser reset, partial frame discarded")
