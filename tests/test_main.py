"""
Unit tests for the command-line entry point

Tests argument parsing, configuration file loading with command-line
overrides, and component setup.
"""

import unittest
from unittest.mock import Mock, patch
import tempfile
import shutil
import json
from pathlib import Path

from main import MissionUplinkSystem, main, parse_arguments
from mission_uplink.connection_manager import ConnectionType
from mission_uplink.errors import LinkError
from mission_uplink.mission_transfer import (
    InboundMessage,
    MissionTransferEngine,
    StatusEvent,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


class SteppingClock:
    """Clock that moves forward a fixed step on every reading."""

    def __init__(self, step=0.5):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


class ScriptedTransport:
    """
    Link transport stand-in that answers like an autopilot.

    Replies are queued on send() and handed out by the next poll().
    """

    def __init__(self, answer=True, heartbeat=True):
        self.answer = answer
        self.inbox = []
        self.sent = []
        self.count = 0
        if heartbeat:
            self.inbox.append(InboundMessage('HEARTBEAT', {'type': 2}, system_id=1, component_id=1))

    def poll(self):
        messages, self.inbox = self.inbox, []
        return messages

    def maybe_send_heartbeat(self):
        return False

    def send(self, msg):
        self.sent.append(msg)
        if not self.answer:
            return True

        if msg.msg_type == 'MISSION_COUNT':
            self.count = msg.fields['count']
            self._reply('MISSION_REQUEST_INT', seq=0)
        elif msg.msg_type == 'MISSION_ITEM_INT':
            seq = msg.fields['seq'] + 1
            if seq < self.count:
                self._reply('MISSION_REQUEST_INT', seq=seq)
            else:
                self._reply('MISSION_ACK', type=0)
        elif msg.msg_type == 'MISSION_CLEAR_ALL':
            self._reply('MISSION_ACK', type=0)
        return True

    def _reply(self, msg_type, **fields):
        fields.update({'target_system': 255, 'target_component': 190, 'mission_type': 0})
        self.inbox.append(InboundMessage(msg_type, fields, system_id=1, component_id=1))


class TestParseArguments(unittest.TestCase):
    """Test command-line parsing"""

    def test_upload_command(self):
        """Test upload with connection options"""
        args = parse_arguments(['-c', 'serial', '-p', '/dev/ttyUSB1', '-b', '115200',
                                'upload', 'plan.waypoints', '--include-home'])

        self.assertEqual(args.command, 'upload')
        self.assertEqual(args.plan, 'plan.waypoints')
        self.assertTrue(args.include_home)
        self.assertEqual(args.connection_type, 'serial')
        self.assertEqual(args.baudrate, 115200)

    def test_clear_command(self):
        """Test clear with MAVLink options"""
        args = parse_arguments(['--target-system', '2', '--timeout', '5000', '--mavlink1', 'clear'])

        self.assertEqual(args.command, 'clear')
        self.assertEqual(args.target_system, 2)
        self.assertEqual(args.timeout, 5000)
        self.assertTrue(args.mavlink1)

    def test_command_required(self):
        """Test a subcommand must be given"""
        with patch('sys.stderr'):
            with self.assertRaises(SystemExit):
                parse_arguments([])


class TestConfiguration(unittest.TestCase):
    """Test configuration loading and overrides"""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir)

    def test_defaults(self):
        """Test defaults without a config file"""
        system = MissionUplinkSystem(parse_arguments(['clear']))
        system.load_config()

        self.assertEqual(system.config['connection']['type'], 'udp')
        self.assertEqual(system.config['mission'], {})

        system._setup_connection()
        manager = system.connection_manager
        self.assertEqual(manager.conn_type, ConnectionType.UDP)
        self.assertEqual(manager.net_port, 14550)

    def test_file_with_cli_overrides(self):
        """Test command-line values win over the config file"""
        config_path = Path(self.test_dir) / 'uplink.json'
        config_path.write_text(json.dumps({
            'connection': {'type': 'tcp', 'tcp': {'host': '10.0.0.5', 'port': 5762}},
            'mission': {'target_system': 3, 'timeout_ms': 2000}
        }))

        args = parse_arguments(['--config', str(config_path), '--timeout', '4000',
                                '-p', '5770', 'clear'])
        system = MissionUplinkSystem(args)
        system.load_config()
        system._setup_connection()

        self.assertEqual(system.config['mission']['target_system'], 3)
        self.assertEqual(system.config['mission']['timeout_ms'], 4000)
        self.assertEqual(system.connection_manager.conn_type, ConnectionType.TCP)
        self.assertEqual(system.connection_manager.host, '10.0.0.5')
        self.assertEqual(system.connection_manager.net_port, 5770)

    def test_unreadable_config_falls_back(self):
        """Test a broken config file is ignored"""
        config_path = Path(self.test_dir) / 'broken.json'
        config_path.write_text('{not json')

        system = MissionUplinkSystem(parse_arguments(['--config', str(config_path), 'clear']))
        system.load_config()

        self.assertEqual(system.config['connection']['type'], 'udp')

    def test_non_numeric_network_port(self):
        """Test a device path given as a UDP port is reported clearly"""
        args = parse_arguments(['-c', 'udp', '-p', '/dev/ttyUSB0', 'clear'])
        system = MissionUplinkSystem(args)

        with self.assertRaises(LinkError) as ctx:
            system.load_config()

        self.assertIn("/dev/ttyUSB0", str(ctx.exception))
        self.assertIn("udp", str(ctx.exception))

    def test_main_reports_bad_port_without_traceback(self):
        """Test main exits 1 and logs the port error without a traceback"""
        with patch('main.setup_signal_handlers'), patch('main.logger') as log:
            code = main(['-c', 'tcp', '-p', 'fifty', '--no-logging', 'clear'])

        self.assertEqual(code, 1)
        message = log.error.call_args[0][0]
        self.assertIn("'fifty'", message)
        self.assertNotIn('exc_info', log.error.call_args[1])

    def test_dialect_reaches_engine(self):
        """Test the configured dialect is used to resolve waypoint enum names"""
        args = parse_arguments(['-d', 'ardupilotmega', '--no-logging', 'clear'])
        system = MissionUplinkSystem(args)
        system.setup()

        self.assertEqual(system.engine.config.dialect, 'ardupilotmega')

    def test_unsupported_connection_type(self):
        """Test an unknown connection type in the config file"""
        config_path = Path(self.test_dir) / 'uplink.json'
        config_path.write_text(json.dumps({'connection': {'type': 'carrier-pigeon'}}))

        system = MissionUplinkSystem(parse_arguments(['--config', str(config_path), 'clear']))
        system.load_config()

        with self.assertRaises(LinkError):
            system._setup_connection()

    def test_setup_builds_engine(self):
        """Test setup wires the engine to the configured vehicle"""
        args = parse_arguments(['--target-system', '7', '--no-logging', 'clear'])
        system = MissionUplinkSystem(args)
        system.setup()

        self.assertEqual(system.engine.config.target_system, 7)
        self.assertEqual(system.engine.config.timeout_ms, 10000)
        self.assertIsNone(system.transfer_logger)
        self.assertTrue(system.engine.is_idle)


class TestRun(unittest.TestCase):
    """Test the processing loop outcome"""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()
        self.plan = Path(self.test_dir) / 'plan.json'
        self.plan.write_text(json.dumps([
            {'lat': 47.397742, 'lon': 8.545594, 'alt': 20},
            {'lat': 47.398000, 'lon': 8.546000, 'alt': 25},
        ]))

        patcher = patch('main.time.sleep')
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir)

    def _system(self, argv, transport, clock):
        system = MissionUplinkSystem(parse_arguments(['--no-logging'] + argv))
        system.setup()

        system.connection_manager = Mock()
        system.connection_manager.connect.return_value = True
        system.connection_manager.is_healthy.return_value = True
        system.connection_manager.auto_reconnect.return_value = False

        system.transport = transport
        system.engine = MissionTransferEngine(
            system.engine.config,
            send_message=transport.send,
            on_status=system._on_status,
            on_progress=system._on_progress,
            clock=clock
        )
        return system

    def test_accepted_upload_exits_zero(self):
        """Test an acknowledged upload exits 0 once the grace window is over"""
        transport = ScriptedTransport()
        clock = SteppingClock()
        system = self._system(['upload', str(self.plan)], transport, clock)

        with patch('builtins.print'):
            code = system.run()

        self.assertEqual(code, 0)
        self.assertTrue(system.result.success)
        self.assertEqual(system.result.message, "Mission uploaded successfully")
        sent = [msg.msg_type for msg in transport.sent]
        self.assertEqual(sent, ['MISSION_COUNT', 'MISSION_ITEM_INT', 'MISSION_ITEM_INT'])
        self.assertGreaterEqual(clock.now, 3.0)

    def test_accepted_clear_exits_zero(self):
        """Test an acknowledged clear exits 0"""
        transport = ScriptedTransport()
        system = self._system(['clear'], transport, SteppingClock())

        with patch('builtins.print'):
            self.assertEqual(system.run(), 0)

        self.assertEqual(system.result.message, "Mission cleared successfully")

    def test_silent_vehicle_exits_one(self):
        """Test an upload the vehicle never answers times out with exit 1"""
        transport = ScriptedTransport(answer=False)
        system = self._system(['upload', str(self.plan)], transport, SteppingClock())

        with patch('builtins.print'):
            code = system.run()

        self.assertEqual(code, 1)
        self.assertFalse(system.result.success)
        self.assertEqual(system.result.message, "Timeout waiting for vehicle response")
        self.assertTrue(system.engine.is_idle)

    def test_no_heartbeat_exits_one(self):
        """Test nothing is sent when the vehicle never shows up"""
        transport = ScriptedTransport(heartbeat=False)
        system = self._system(['upload', str(self.plan)], transport, SteppingClock())
        system.config['mission']['wait_heartbeat_s'] = 0.05

        with patch('main.logger') as log:
            code = system.run()

        self.assertEqual(code, 1)
        self.assertEqual(transport.sent, [])
        self.assertIsNone(system.result)
        self.assertIn('No heartbeat from system 1', log.error.call_args[0][0])

    def test_interrupt_while_waiting_for_vehicle(self):
        """Test a stop request during the heartbeat wait is not reported as a missing vehicle"""
        transport = ScriptedTransport(heartbeat=False)
        system = self._system(['clear'], transport, SteppingClock())

        def stop():
            system.running = False
            return []
        transport.poll = stop

        with patch('main.logger') as log:
            code = system.run()

        self.assertEqual(code, 1)
        self.assertEqual(transport.sent, [])
        log.error.assert_not_called()

    def test_timeout_fires_while_link_down(self):
        """Test the response timeout still ends the upload while reconnects fail"""
        clock = FakeClock()
        transport = ScriptedTransport(answer=False)
        system = self._system(['upload', str(self.plan)], transport, clock)
        system.connection_manager.is_healthy.return_value = False

        with patch('builtins.print'):
            system.engine.upload([{'lat': 47.397742, 'lon': 8.545594, 'alt': 20}])
            system._pump()

            self.assertFalse(system.engine.is_idle)
            system.connection_manager.auto_reconnect.assert_called_once()

            clock.now += 60.0
            system._pump()

        self.assertTrue(system.engine.is_idle)
        self.assertFalse(system.result.success)
        self.assertEqual(system.result.message, "Timeout waiting for vehicle response")
        # Finished transfers do not trigger another reconnect
        system.connection_manager.auto_reconnect.assert_called_once()

    def test_connect_failure(self):
        """Test a failed connection exits with an error code"""
        system = MissionUplinkSystem(parse_arguments(['--no-logging', 'clear']))
        system.setup()
        system.connection_manager = Mock()
        system.connection_manager.connect.return_value = False

        self.assertEqual(system.run(), 1)

    def test_status_recorded(self):
        """Test status events are kept as the run result"""
        system = MissionUplinkSystem(parse_arguments(['--no-logging', 'clear']))

        with patch('builtins.print'):
            system._on_status(StatusEvent(False, "Mission rejected: CANCELLED", {'ackType': 14}))

        self.assertFalse(system.result.success)


if __name__ == '__main__':
    unittest.main()
