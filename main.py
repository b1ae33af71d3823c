#!/usr/bin/env python3
"""
Mission Uplink - Main Application

Command-line entry point for uploading or clearing a vehicle mission over a
MAVLink link. It wires the connection manager, codec, link transport and
mission transfer engine together and runs a single-threaded processing loop
until the vehicle acknowledges the transfer, rejects it, or stops answering.

Configuration comes from an optional JSON file with command-line overrides
applied on top.
"""

import argparse
import sys
import signal
import time
import logging
import json
from typing import List, Optional

from mission_uplink.connection_manager import ConnectionManager, ConnectionType
from mission_uplink.errors import LinkError, ValidationError
from mission_uplink.link_transport import LinkTransport
from mission_uplink.mavlink_codec import MAVLinkCodec
from mission_uplink.mission_file import load_mission
from mission_uplink.mission_transfer import MissionTransferEngine, StatusEvent, TransferConfig
from mission_uplink.transfer_logger import TransferLogger

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class MissionUplinkSystem:
    """
    Mission uplink coordinator.

    Integrates the link, codec and mission transfer engine and manages the
    main processing loop for one upload or clear command.
    """

    def __init__(self, args):
        """
        Initialize the mission uplink system.

        Args:
            args: Parsed command-line arguments
        """
        self.args = args
        self.running = False
        self.config = {}

        # Components (initialized in setup())
        self.connection_manager: Optional[ConnectionManager] = None
        self.codec: Optional[MAVLinkCodec] = None
        self.transport: Optional[LinkTransport] = None
        self.engine: Optional[MissionTransferEngine] = None
        self.transfer_logger: Optional[TransferLogger] = None

        self.result: Optional[StatusEvent] = None
        self.vehicle_seen = False

        # Statistics
        self.stats = {
            'messages_processed': 0,
            'start_time': time.time()
        }

    def load_config(self):
        """Load configuration from file if specified."""
        if self.args.config:
            try:
                with open(self.args.config, 'r') as f:
                    self.config = json.load(f)
                logger.info(f"Loaded configuration from {self.args.config}")
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load configuration: {e}")
                logger.info("Using command-line arguments and defaults")

        # Override config with command-line arguments
        self._apply_cli_overrides()

    def _apply_cli_overrides(self):
        """Apply command-line argument overrides to configuration."""
        conn = self.config.setdefault('connection', {})

        if self.args.connection_type:
            conn['type'] = self.args.connection_type
        conn_type = conn.setdefault('type', 'udp')

        section = conn.setdefault(conn_type, {})
        if self.args.port:
            if conn_type == 'serial':
                section['port'] = self.args.port
            else:
                try:
                    section['port'] = int(self.args.port)
                except ValueError:
                    raise LinkError(f"--port must be a port number for {conn_type} links, "
                                    f"got '{self.args.port}'")
        if self.args.host:
            section['host'] = self.args.host
        if self.args.baudrate:
            conn.setdefault('serial', {})['baudrate'] = self.args.baudrate

        mavlink = self.config.setdefault('mavlink', {})
        if self.args.dialect:
            mavlink['dialect'] = self.args.dialect
        if self.args.mavlink1:
            mavlink['mavlink2'] = False

        mission = self.config.setdefault('mission', {})
        if self.args.target_system is not None:
            mission['target_system'] = self.args.target_system
        if self.args.target_component is not None:
            mission['target_component'] = self.args.target_component
        if self.args.timeout is not None:
            mission['timeout_ms'] = self.args.timeout

        log_config = self.config.setdefault('logging', {})
        if self.args.log_dir:
            log_config['log_dir'] = self.args.log_dir
        if self.args.no_logging:
            log_config['enabled'] = False

    def setup(self):
        """Set up all system components."""
        logger.info("Setting up system components...")

        self.load_config()
        self._setup_connection()

        mavlink = self.config['mavlink']
        mission = self.config['mission']

        transfer_config = TransferConfig(
            target_system=mission.get('target_system', 1),
            target_component=mission.get('target_component', 1),
            source_system=mavlink.get('source_system', 255),
            source_component=mavlink.get('source_component', 190),
            timeout_ms=mission.get('timeout_ms', 10000),
            grace_ms=mission.get('grace_ms', 3000),
            dialect=mavlink.get('dialect', 'common')
        )

        self.codec = MAVLinkCodec(
            dialect=mavlink.get('dialect', 'common'),
            mavlink2=mavlink.get('mavlink2', True),
            system_id=transfer_config.source_system,
            component_id=transfer_config.source_component
        )

        log_config = self.config['logging']
        if log_config.get('enabled', True):
            self.transfer_logger = TransferLogger(
                log_config.get('log_dir', './uplink_logs'),
                log_prefix=self.config['connection']['type']
            )

        self.transport = LinkTransport(
            self.connection_manager,
            self.codec,
            name=self.config['connection']['type'],
            source_system=transfer_config.source_system,
            source_component=transfer_config.source_component,
            heartbeat_interval=mavlink.get('heartbeat_interval', 1.0),
            frame_observer=self.transfer_logger.observe if self.transfer_logger else None
        )

        self.engine = MissionTransferEngine(
            transfer_config,
            send_message=self.transport.send,
            on_status=self._on_status,
            on_progress=self._on_progress
        )

        logger.info("System setup complete")

    def _setup_connection(self):
        """Set up connection manager based on configuration."""
        conn_config = self.config.get('connection', {})
        conn_type_str = conn_config.get('type', 'udp')
        reconnect_interval = conn_config.get('reconnect_interval', 5)

        if conn_type_str == 'serial':
            conn_type = ConnectionType.SERIAL
            serial_config = conn_config.get('serial', {})
            kwargs = {
                'port': serial_config.get('port', '/dev/ttyUSB0'),
                'baudrate': serial_config.get('baudrate', 57600),
                'reconnect_interval': reconnect_interval
            }
        elif conn_type_str == 'tcp':
            conn_type = ConnectionType.TCP
            tcp_config = conn_config.get('tcp', {})
            kwargs = {
                'host': tcp_config.get('host', '127.0.0.1'),
                'port': tcp_config.get('port', 5760),
                'reconnect_interval': reconnect_interval
            }
        elif conn_type_str == 'udp':
            conn_type = ConnectionType.UDP
            udp_config = conn_config.get('udp', {})
            kwargs = {
                'host': udp_config.get('host', '0.0.0.0'),
                'port': udp_config.get('port', 14550),
                'remote_host': udp_config.get('remote_host'),
                'remote_port': udp_config.get('remote_port'),
                'reconnect_interval': reconnect_interval
            }
        else:
            raise LinkError(f"Unsupported connection type: {conn_type_str}")

        self.connection_manager = ConnectionManager(conn_type, **kwargs)
        logger.info(f"Connection manager initialized: {conn_type.name}")

    def _on_status(self, event: StatusEvent):
        self.result = event
        if self.transfer_logger:
            self.transfer_logger.log_status(event)

        if event.success:
            print(f"OK: {event.message}")
        else:
            print(f"FAILED: {event.message} {event.details or ''}".rstrip())

    def _on_progress(self, current: int, total: int):
        print(f"  uploading ({current}/{total})")

    def _pump(self):
        """Move inbound messages into the engine and service timers."""
        healthy = self.connection_manager.is_healthy()
        messages = self.transport.poll() if healthy else []
        for msg in messages:
            self.stats['messages_processed'] += 1
            if msg.msg_type == 'HEARTBEAT' and msg.system_id == self.engine.config.target_system:
                self.vehicle_seen = True
            self.engine.handle_message(msg)

        # Timers run even while the link is down
        self.engine.poll()

        if not healthy:
            if self.result is not None and self.engine.is_idle:
                return
            logger.warning("Connection unhealthy, attempting reconnect...")
            self.connection_manager.auto_reconnect()
            return

        self.transport.maybe_send_heartbeat()

        if not messages:
            time.sleep(0.01)  # Small delay to prevent busy-waiting

    def _wait_for_vehicle(self, timeout: float) -> bool:
        """Run the loop until the target vehicle's heartbeat is seen."""
        deadline = time.time() + timeout
        while self.running and not self.vehicle_seen and time.time() < deadline:
            self._pump()
        return self.vehicle_seen

    def _start_command(self) -> bool:
        if self.args.command == 'upload':
            try:
                waypoints = load_mission(self.args.plan, include_home=self.args.include_home)
            except ValidationError as e:
                logger.error(str(e))
                return False
            return self.engine.upload(waypoints)

        return self.engine.clear()

    def run(self) -> int:
        """
        Main processing loop.

        Connects to the vehicle, starts the requested transfer and processes
        the link until the transfer ends.

        Returns:
            int: Process exit code (0 on success)
        """
        if not self.connection_manager.connect():
            logger.error("Failed to establish initial connection")
            self.shutdown()
            return 1

        self.running = True

        try:
            wait_s = self.config['mission'].get('wait_heartbeat_s', 10)
            if not self._wait_for_vehicle(wait_s):
                if not self.running:
                    logger.info("Interrupted while waiting for the vehicle")
                    return 1
                logger.error(f"No heartbeat from system {self.engine.config.target_system} "
                             f"within {wait_s}s")
                return 1

            if not self._start_command():
                return 1

            while self.running:
                self._pump()
                if self.result is not None and self.engine.is_idle:
                    break

        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        finally:
            self.shutdown()

        return 0 if self.result is not None and self.result.success else 1

    def shutdown(self):
        """Graceful shutdown of all components."""
        logger.info("Shutting down mission uplink...")

        self.running = False

        if self.engine:
            self.engine.shutdown()

        if self.connection_manager:
            self.connection_manager.disconnect()

        if self.transfer_logger:
            self.transfer_logger.close()

        logger.info(f"  Messages processed: {self.stats['messages_processed']}")
        logger.info(f"  Total runtime: {time.time() - self.stats['start_time']:.1f}s")
        logger.info("Shutdown complete")


def parse_arguments(argv: Optional[List[str]] = None):
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Upload or clear a MAVLink vehicle mission',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Upload a QGC plan to SITL over UDP
  %(prog)s --connection-type udp --port 14550 upload survey.waypoints

  # Upload a CSV plan over a telemetry radio
  %(prog)s -c serial -p /dev/ttyUSB0 -b 57600 upload plan.csv

  # Clear the mission over TCP
  %(prog)s -c tcp --host 127.0.0.1 -p 5760 clear
        """
    )

    # Connection arguments
    conn_group = parser.add_argument_group('Connection Options')
    conn_group.add_argument(
        '--connection-type', '-c',
        choices=['serial', 'udp', 'tcp'],
        help='Connection type (default: udp)'
    )
    conn_group.add_argument(
        '--port', '-p',
        help='Serial port (e.g., /dev/ttyUSB0) or UDP/TCP port number (e.g., 14550)'
    )
    conn_group.add_argument(
        '--host',
        help='UDP bind address or TCP host'
    )
    conn_group.add_argument(
        '--baudrate', '-b',
        type=int,
        help='Serial baudrate (default: 57600)'
    )

    # MAVLink arguments
    mav_group = parser.add_argument_group('MAVLink Options')
    mav_group.add_argument(
        '--dialect', '-d',
        help='pymavlink dialect (default: common)'
    )
    mav_group.add_argument(
        '--mavlink1',
        action='store_true',
        help='Send MAVLink 1 frames'
    )
    mav_group.add_argument(
        '--target-system',
        type=int,
        help='Vehicle system ID (default: 1)'
    )
    mav_group.add_argument(
        '--target-component',
        type=int,
        help='Vehicle component ID (default: 1)'
    )
    mav_group.add_argument(
        '--timeout',
        type=int,
        help='Per-response timeout in milliseconds (default: 10000)'
    )

    # Logging arguments
    log_group = parser.add_argument_group('Logging Options')
    log_group.add_argument(
        '--log-dir', '-l',
        help='Directory for transfer logs (default: ./uplink_logs)'
    )
    log_group.add_argument(
        '--no-logging',
        action='store_true',
        help='Disable transfer logging'
    )

    # Configuration file
    parser.add_argument(
        '--config',
        help='Path to configuration JSON file'
    )

    # Verbosity
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress non-error output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    upload_parser = subparsers.add_parser('upload', help='Upload a mission plan')
    upload_parser.add_argument(
        'plan',
        help='Mission plan file (.json, .csv, .waypoints)'
    )
    upload_parser.add_argument(
        '--include-home',
        action='store_true',
        help='Upload row 0 of QGC WPL files instead of treating it as home'
    )

    subparsers.add_parser('clear', help="Clear the vehicle's mission")

    return parser.parse_args(argv)


def setup_signal_handlers(system: MissionUplinkSystem):
    """
    Set up signal handlers for graceful shutdown.

    Args:
        system: MissionUplinkSystem instance
    """
    def signal_handler(signum, frame):
        """Handle interrupt signals."""
        logger.info(f"Received signal {signum}")
        system.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_arguments(argv)

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    system = MissionUplinkSystem(args)
    setup_signal_handlers(system)

    try:
        system.setup()
        return system.run()

    except LinkError as e:
        logger.error(f"Fatal error: {e}")
        return 1

    except (ValueError, OSError) as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
