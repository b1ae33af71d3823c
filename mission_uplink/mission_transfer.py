"""
Mission Transfer Engine

This module implements the MAVLink mission upload handshake from the ground
side:

    GCS                         Vehicle
     | -- MISSION_COUNT(n) -----> |
     | <-- MISSION_REQUEST[_INT] -- |   (once per item, seq 0..n-1)
     | -- MISSION_ITEM[_INT] ----> |
     | <-- MISSION_ACK ----------- |

The engine owns one session at a time. It never blocks: outbound messages go
through a send callback, inbound messages are fed in with handle_message(),
and deadlines are checked by poll(), which the owning loop calls regularly.
Every session ends in IDLE, via an ack, a timeout, or the grace delay that
follows a successful ack.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple
import logging
import threading
import time

from .errors import MissionError, ProtocolReject, SequenceError, TransferTimeout, ValidationError
from .mission_protocol import (
    BROADCAST_SYSTEM_ID,
    MAV_MISSION_TYPE_MISSION,
    InboundKind,
    MissionResult,
    MissionState,
    ack_type_name,
    classify_message,
)
from .waypoints import validate_waypoints, waypoint_to_mission_item

logger = logging.getLogger(__name__)


@dataclass
class TransferConfig:
    """
    Tunables for the mission transfer engine.

    Attributes:
        target_system: Vehicle system ID addressed by outbound messages
        target_component: Vehicle component ID addressed by outbound messages
        source_system: Our own (GCS) system ID, accepted as a request target
        source_component: Our own component ID
        timeout_ms: Deadline for each vehicle response, re-armed per item
        grace_ms: Delay between a successful ack and returning to IDLE
        dialect: Dialect used to resolve frame and command names in waypoints
    """
    target_system: int = 1
    target_component: int = 1
    source_system: int = 255
    source_component: int = 190
    timeout_ms: int = 10000
    grace_ms: int = 3000
    dialect: str = 'common'


@dataclass(frozen=True)
class InboundMessage:
    """
    Decoded message received from the vehicle.

    Attributes:
        msg_type: MAVLink message name (e.g., 'MISSION_REQUEST_INT')
        fields: Field map keyed by dialect field names
        system_id: Source system ID
        component_id: Source component ID
        link: Name of the link the message arrived on
        timestamp: Unix timestamp when the message was received
    """
    msg_type: str
    fields: dict
    system_id: int = 0
    component_id: int = 0
    link: str = ''
    timestamp: float = field(default_factory=time.time)

    @property
    def target_system(self) -> Optional[int]:
        """Target system declared by the message, if it has one."""
        return self.fields.get('target_system')

    @classmethod
    def from_parsed(cls, parsed, link: str = '') -> 'InboundMessage':
        """Build an InboundMessage from a codec ParsedMessage."""
        return cls(
            msg_type=parsed.msg_type,
            fields=dict(parsed.fields),
            system_id=parsed.system_id,
            component_id=parsed.component_id,
            link=link,
            timestamp=parsed.timestamp,
        )


@dataclass(frozen=True)
class OutboundMessage:
    """Logical message for the codec to encode and the link to send."""
    msg_type: str
    fields: dict
    target_system: int
    target_component: int


@dataclass
class StatusEvent:
    """
    Outcome report of a mission transfer.

    Attributes:
        success: True for an accepted upload/clear
        message: Human-readable summary
        details: Extra values (seq, waypoints, ackType, ackTypeName)
        error: Failure cause, None on success
        timestamp: Unix timestamp of the report
    """
    success: bool
    message: str
    details: dict = field(default_factory=dict)
    error: Optional[MissionError] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        """Return the event as a plain payload dict."""
        payload = {'success': self.success, 'message': self.message}
        payload.update(self.details)
        return payload


@dataclass
class _Session:
    session_id: int
    state: MissionState
    waypoints: Tuple[dict, ...] = ()
    current_seq: int = 0
    use_int_variant: Optional[bool] = None
    items_sent: int = 0


@dataclass
class _Timer:
    session_id: int
    deadline: float
    kind: str   # 'response' or 'grace'


class MissionTransferEngine:
    """
    Ground-side state machine for uploading or clearing a vehicle mission.

    Only one session may be active. Requests made while a session is in
    flight (including the grace window after a successful ack) are refused
    without side effects.
    """

    def __init__(
        self,
        config: Optional[TransferConfig] = None,
        send_message: Optional[Callable[[OutboundMessage], object]] = None,
        on_status: Optional[Callable[[StatusEvent], None]] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine tunables (defaults to TransferConfig())
            send_message: Called with each OutboundMessage to transmit
            on_status: Called with a StatusEvent when a session ends or an
                upload request is rejected
            on_progress: Called with (items_sent, total) during uploads
            clock: Monotonic time source in seconds
        """
        self.config = config or TransferConfig()
        self._send_message = send_message
        self._on_status = on_status
        self._on_progress = on_progress
        self._clock = clock

        self._lock = threading.RLock()
        self._session: Optional[_Session] = None
        self._timer: Optional[_Timer] = None
        self._next_session_id = 1

        self.last_status: Optional[StatusEvent] = None
        self.stats = {
            'sessions_started': 0,
            'sessions_succeeded': 0,
            'sessions_failed': 0,
            'timeouts': 0,
            'items_sent': 0,
            'messages_ignored': 0,
        }

        logger.info(f"Mission transfer engine initialized "
                    f"(target {self.config.target_system}/{self.config.target_component}, "
                    f"timeout {self.config.timeout_ms} ms)")

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def state(self) -> MissionState:
        """Current engine state."""
        session = self._session
        return session.state if session else MissionState.IDLE

    @property
    def is_idle(self) -> bool:
        return self._session is None

    @property
    def session_id(self) -> Optional[int]:
        session = self._session
        return session.session_id if session else None

    @property
    def use_int_variant(self) -> Optional[bool]:
        """Wire variant locked by the first request, None until then."""
        session = self._session
        return session.use_int_variant if session else None

    @property
    def progress(self) -> Tuple[int, int]:
        """(next expected seq, total items) of the running upload."""
        session = self._session
        if not session:
            return 0, 0
        return session.current_seq, len(session.waypoints)

    # ------------------------------------------------------------------
    # Caller requests
    # ------------------------------------------------------------------

    def upload(self, waypoints) -> bool:
        """
        Start uploading a mission.

        Sends MISSION_COUNT and waits for the vehicle to request items.

        Args:
            waypoints: Sequence of waypoint mappings (1 to 255 entries)

        Returns:
            bool: True if the upload started, False if it was refused
        """
        with self._lock:
            if self._session is not None:
                logger.warning("Mission upload already in progress")
                return False

            try:
                snapshot = validate_waypoints(waypoints, dialect=self.config.dialect)
            except ValidationError as e:
                logger.error(f"Mission upload rejected: {e.message}")
                self._report(False, e.message, error=e)
                return False

            session = self._open_session(MissionState.WAITING_FOR_REQUEST, snapshot)
            total = len(snapshot)
            logger.info(f"Starting mission upload of {total} waypoints (session {session.session_id})")

            self._emit('MISSION_COUNT', {
                'count': total,
                'mission_type': MAV_MISSION_TYPE_MISSION,
            })
            self._arm_timer('response', self.config.timeout_ms)
            self._report_progress(session)
            return True

    def clear(self) -> bool:
        """
        Start clearing the vehicle's mission.

        Returns:
            bool: True if MISSION_CLEAR_ALL was sent, False if busy
        """
        with self._lock:
            if self._session is not None:
                logger.warning("Cannot clear mission while upload in progress")
                return False

            session = self._open_session(MissionState.CLEARING)
            logger.info(f"Clearing vehicle mission (session {session.session_id})")

            self._emit('MISSION_CLEAR_ALL', {'mission_type': MAV_MISSION_TYPE_MISSION})
            self._arm_timer('response', self.config.timeout_ms)
            return True

    def shutdown(self):
        """Drop any running session and pending timer without sending anything."""
        with self._lock:
            if self._session is not None:
                logger.info(f"Shutting down with session {self._session.session_id} "
                            f"in state {self._session.state.name}")
            self._reset()

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def handle_message(self, msg: InboundMessage):
        """
        Process one decoded message from the vehicle.

        Messages outside the mission protocol, addressed to another system,
        or not expected in the current state are ignored.

        Args:
            msg: Decoded inbound message
        """
        kind = classify_message(msg.msg_type)
        if kind is InboundKind.OTHER:
            return

        with self._lock:
            if not self._accepts_target(msg.target_system):
                logger.debug(f"Ignoring {msg.msg_type} for system {msg.target_system}")
                self.stats['messages_ignored'] += 1
                return

            state = self.state

            if kind in (InboundKind.ITEM_REQUEST, InboundKind.ITEM_REQUEST_INT) \
                    and state is MissionState.WAITING_FOR_REQUEST:
                self._on_item_request(msg, kind)

            elif kind is InboundKind.ACK \
                    and state in (MissionState.WAITING_FOR_REQUEST, MissionState.CLEARING):
                self._on_ack(msg)

            else:
                logger.debug(f"Ignoring {msg.msg_type} in state {state.name}")
                self.stats['messages_ignored'] += 1

    def poll(self, now: Optional[float] = None) -> bool:
        """
        Fire the pending timer if its deadline has passed.

        Args:
            now: Current clock reading (defaults to the engine clock)

        Returns:
            bool: True if a timer fired
        """
        with self._lock:
            timer = self._timer
            if timer is None:
                return False

            if now is None:
                now = self._clock()
            if now < timer.deadline:
                return False

            self._timer = None
            if self._session is None or timer.session_id != self._session.session_id:
                logger.debug(f"Discarding stale {timer.kind} timer of session {timer.session_id}")
                return False

            if timer.kind == 'grace':
                logger.debug(f"Grace period over, session {timer.session_id} idle")
                self._reset()
            else:
                self._on_response_timeout()
            return True

    def time_until_deadline(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds until the pending timer fires, None when nothing is armed."""
        timer = self._timer
        if timer is None:
            return None
        if now is None:
            now = self._clock()
        return max(0.0, timer.deadline - now)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _on_item_request(self, msg: InboundMessage, kind: InboundKind):
        session = self._session
        total = len(session.waypoints)
        requested = msg.fields.get('seq')

        if session.current_seq == 0 and session.use_int_variant is None:
            session.use_int_variant = kind is InboundKind.ITEM_REQUEST_INT
            if session.use_int_variant:
                logger.debug("Autopilot using MISSION_REQUEST_INT (degE7 coordinates)")
            else:
                logger.debug("Autopilot using MISSION_REQUEST (float coordinates)")

        if isinstance(requested, bool) or not isinstance(requested, int) \
                or requested < 0 or requested >= total:
            logger.error(f"Invalid sequence number requested: {requested}")
            self._fail(SequenceError("Invalid sequence number", requested))
            return

        if requested != session.current_seq:
            # Vehicles may re-request earlier items; follow their lead
            logger.warning(f"Expected seq {session.current_seq}, got {requested} - adjusting")
            session.current_seq = requested

        item = waypoint_to_mission_item(
            session.waypoints[requested],
            requested,
            session.use_int_variant,
            self.config.target_system,
            self.config.target_component,
            self.config.dialect,
        )
        msg_type = 'MISSION_ITEM_INT' if session.use_int_variant else 'MISSION_ITEM'
        self._emit(msg_type, item.to_fields())

        session.current_seq = requested + 1
        session.items_sent += 1
        self.stats['items_sent'] += 1
        self._report_progress(session)
        self._arm_timer('response', self.config.timeout_ms)

    def _on_ack(self, msg: InboundMessage):
        session = self._session
        mission_type = msg.fields.get('mission_type')
        if mission_type not in (None, MAV_MISSION_TYPE_MISSION):
            logger.debug(f"Ignoring MISSION_ACK for mission type {mission_type}")
            self.stats['messages_ignored'] += 1
            return

        self._cancel_timer()

        ack_type = msg.fields.get('type')
        name = ack_type_name(ack_type)
        clearing = session.state is MissionState.CLEARING

        if ack_type == MissionResult.ACCEPTED:
            if clearing:
                self._report(True, "Mission cleared successfully")
            else:
                self._report(True, "Mission uploaded successfully",
                             {'waypoints': len(session.waypoints)})
            self.stats['sessions_succeeded'] += 1

            # Hold the session so late duplicates from the vehicle are absorbed
            session.state = MissionState.COMPLETED
            self._arm_timer('grace', self.config.grace_ms)
        else:
            operation = 'clear' if clearing else 'upload'
            logger.error(f"Mission {operation} rejected: {name}")
            self._fail(ProtocolReject(f"Mission rejected: {name}", ack_type, name))

    def _on_response_timeout(self):
        session = self._session
        self.stats['timeouts'] += 1

        if session.state is MissionState.CLEARING:
            logger.error("Mission clear timeout")
            error = TransferTimeout("Timeout clearing mission")
        elif session.items_sent == 0:
            logger.error("Mission upload timeout - no response from vehicle")
            error = TransferTimeout("Timeout waiting for vehicle response")
        else:
            logger.error(f"Mission upload timeout at waypoint {session.current_seq}")
            error = TransferTimeout("Timeout during upload", {'seq': session.current_seq})

        self._fail(error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _accepts_target(self, target_system) -> bool:
        if target_system is None or target_system == BROADCAST_SYSTEM_ID:
            return True
        return target_system in (self.config.source_system, self.config.target_system)

    def _open_session(self, state: MissionState, waypoints: Tuple[dict, ...] = ()) -> _Session:
        session = _Session(
            session_id=self._next_session_id,
            state=state,
            waypoints=waypoints,
        )
        self._next_session_id += 1
        self._session = session
        self.stats['sessions_started'] += 1
        return session

    def _reset(self):
        self._cancel_timer()
        self._session = None

    def _arm_timer(self, kind: str, duration_ms: int):
        self._timer = _Timer(
            session_id=self._session.session_id,
            deadline=self._clock() + duration_ms / 1000.0,
            kind=kind,
        )

    def _cancel_timer(self):
        self._timer = None

    def _emit(self, msg_type: str, fields: dict):
        payload = dict(fields)
        payload['target_system'] = self.config.target_system
        payload['target_component'] = self.config.target_component

        outbound = OutboundMessage(
            msg_type=msg_type,
            fields=payload,
            target_system=self.config.target_system,
            target_component=self.config.target_component,
        )
        logger.debug(f"Sending {msg_type} {payload}")
        if self._send_message:
            self._send_message(outbound)

    def _fail(self, error: MissionError):
        self.stats['sessions_failed'] += 1
        self._report(False, error.message, error.details, error)
        self._reset()

    def _report(self, success: bool, message: str, details: Optional[dict] = None,
                error: Optional[MissionError] = None):
        event = StatusEvent(success=success, message=message,
                            details=dict(details or {}), error=error)
        self.last_status = event

        if success:
            logger.info(message)

        if self._on_status:
            self._on_status(event)

    def _report_progress(self, session: _Session):
        total = len(session.waypoints)
        logger.info(f"Uploading ({session.current_seq}/{total})")
        if self._on_progress:
            self._on_progress(session.current_seq, total)
