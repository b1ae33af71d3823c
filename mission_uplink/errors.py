"""
Error types for mission transfer, message encoding and link handling.
"""

from typing import Optional


class MissionError(Exception):
    """Base class for failures of a single mission transfer session."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class ValidationError(MissionError):
    """Caller supplied an empty, oversized or malformed waypoint list."""


class ProtocolReject(MissionError):
    """Vehicle answered with a MISSION_ACK other than ACCEPTED."""

    def __init__(self, message: str, ack_type: int, ack_type_name: str):
        super().__init__(message, {'ackType': ack_type, 'ackTypeName': ack_type_name})
        self.ack_type = ack_type
        self.ack_type_name = ack_type_name


class SequenceError(MissionError):
    """Vehicle requested a mission item index outside the uploaded range."""

    def __init__(self, message: str, seq):
        super().__init__(message, {'seq': seq})
        self.seq = seq


class TransferTimeout(MissionError):
    """No response from the vehicle before the deadline."""


class CodecError(Exception):
    """Base class for MAVLink encode/decode failures."""


class UnknownMessage(CodecError):
    """Message name is not part of the selected dialect."""


class FieldOutOfRange(CodecError):
    """A field value does not fit the wire type declared by the dialect."""


class MalformedFrame(CodecError):
    """Bytes do not form exactly one valid MAVLink frame."""


class UnknownMessageId(CodecError):
    """Frame carries a message id the dialect does not define."""


class LinkError(Exception):
    """Transport could not be configured."""
