"""
Connection Manager for Mission Uplink

Byte-level links to the vehicle:
- SERIAL: telemetry radio or USB autopilot port
- UDP: listen on a local port, answer whoever sent the last datagram
- TCP: client connection, e.g. to SITL on port 5760

Failures are logged and reported through return values; a broken link is
marked disconnected so the owning loop can call auto_reconnect().
"""

import serial
import socket
import time
import logging
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class ConnectionType(Enum):
    """Link types a ConnectionManager can open"""
    SERIAL = 1
    UDP = 2
    TCP = 3


class ConnectionManager:
    """
    Owns one link to the vehicle and moves raw bytes over it.

    read() never raises: timeouts yield b'' and errors mark the link down.
    write() returns False when the bytes could not be handed to the OS.
    """

    def __init__(self, conn_type: ConnectionType, **kwargs):
        """
        Configure (but do not open) a link.

        Args:
            conn_type: SERIAL, UDP or TCP
            **kwargs: Link parameters
                SERIAL: port, baudrate (57600), timeout (0.1 s)
                UDP: host ('0.0.0.0'), port (14550), remote_host,
                    remote_port, timeout
                TCP: host ('127.0.0.1'), port (5760), timeout
                All: reconnect_interval (5 s), health_timeout (30 s)
        """
        self.conn_type = conn_type
        self.connection = None
        self.connected = False
        self.reconnect_interval = kwargs.get('reconnect_interval', 5)
        self.health_timeout = kwargs.get('health_timeout', 30)
        self.timeout = kwargs.get('timeout', 0.1)
        self.last_read_time = 0
        self.connection_attempts = 0
        self.bytes_written = 0

        if conn_type == ConnectionType.SERIAL:
            self.port = kwargs.get('port', '/dev/ttyUSB0')
            self.baudrate = kwargs.get('baudrate', 57600)
            logger.info(f"Serial link configured: {self.port} @ {self.baudrate}")

        elif conn_type == ConnectionType.UDP:
            self.host = kwargs.get('host', '0.0.0.0')
            self.net_port = kwargs.get('port', 14550)
            remote_host = kwargs.get('remote_host')
            remote_port = kwargs.get('remote_port')
            self.peer: Optional[Tuple[str, int]] = (
                (remote_host, remote_port) if remote_host and remote_port else None
            )
            logger.info(f"UDP link configured: listen {self.host}:{self.net_port}, peer {self.peer}")

        elif conn_type == ConnectionType.TCP:
            self.host = kwargs.get('host', '127.0.0.1')
            self.net_port = kwargs.get('port', 5760)
            logger.info(f"TCP link configured: {self.host}:{self.net_port}")

    # ------------------------------------------------------------------
    # Open / close
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Open the link.

        Returns:
            bool: True once the link is usable
        """
        self.connection_attempts += 1
        opener = {
            ConnectionType.SERIAL: self._open_serial,
            ConnectionType.UDP: self._open_udp,
            ConnectionType.TCP: self._open_tcp,
        }[self.conn_type]

        try:
            self.connection = opener()
        except serial.SerialException as e:
            logger.error(f"Cannot open serial port {self.port}: {e}")
            self.connected = False
            return False
        except OSError as e:
            logger.error(f"Cannot open {self.conn_type.name} link: {e}")
            self.connected = False
            return False

        logger.info(f"{self.conn_type.name} link up after {self.connection_attempts} attempt(s)")
        self.connected = True
        self.last_read_time = time.time()
        self.connection_attempts = 0
        return True

    def _open_serial(self):
        port = serial.Serial(
            port=self.port,
            baudrate=self.baudrate,
            timeout=self.timeout,
            write_timeout=self.timeout
        )
        if not port.is_open:
            raise serial.SerialException(f"{self.port} did not open")
        return port

    def _open_udp(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind((self.host, self.net_port))
        sock.settimeout(self.timeout)
        return sock

    def _open_tcp(self):
        sock = socket.create_connection((self.host, self.net_port), timeout=self.timeout)
        sock.settimeout(self.timeout)
        return sock

    def disconnect(self):
        """Close the link if it is open."""
        if not self.connection:
            return
        try:
            self.connection.close()
            logger.info(f"{self.conn_type.name} link closed")
        except (serial.SerialException, OSError) as e:
            logger.error(f"Closing {self.conn_type.name} link failed: {e}")
        finally:
            self.connection = None
            self.connected = False

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def read(self, size: int = 1024) -> bytes:
        """
        Return whatever bytes the link has, up to size.

        Args:
            size: Read limit in bytes

        Returns:
            bytes: Received data, b'' on timeout, error or closed link
        """
        if not self.connected:
            return b''

        try:
            if self.conn_type == ConnectionType.SERIAL:
                data = self.connection.read(size)
            elif self.conn_type == ConnectionType.UDP:
                data = self._read_datagram(size)
            else:
                data = self.connection.recv(size)
                if not data:
                    logger.warning(f"TCP peer {self.host}:{self.net_port} closed the connection")
                    self.connected = False
                    return b''
        except serial.SerialException as e:
            return self._link_failed('read', e)
        except socket.timeout:
            return b''
        except OSError as e:
            return self._link_failed('read', e)

        if data:
            self.last_read_time = time.time()
        return data

    def _read_datagram(self, size: int) -> bytes:
        data, addr = self.connection.recvfrom(size)
        if data and self.peer != addr:
            logger.info(f"Vehicle answering from {addr[0]}:{addr[1]}")
            self.peer = addr
        return data

    def write(self, data: bytes) -> bool:
        """
        Send bytes to the vehicle.

        Args:
            data: Encoded frame(s)

        Returns:
            bool: True if the data was handed to the OS
        """
        if not self.connected:
            logger.warning(f"{self.conn_type.name} link down, {len(data)} bytes not sent")
            return False

        try:
            if self.conn_type == ConnectionType.SERIAL:
                self.connection.write(data)
            elif self.conn_type == ConnectionType.UDP:
                if self.peer is None:
                    logger.warning("Vehicle address unknown until its first datagram, dropping write")
                    return False
                self.connection.sendto(data, self.peer)
            else:
                self.connection.sendall(data)
        except serial.SerialException as e:
            return self._link_failed('write', e)
        except socket.timeout:
            logger.warning(f"{self.conn_type.name} write timed out")
            return False
        except OSError as e:
            return self._link_failed('write', e)

        self.bytes_written += len(data)
        return True

    def _link_failed(self, operation: str, error: Exception):
        logger.error(f"{self.conn_type.name} {operation} failed: {error}")
        self.connected = False
        return False if operation == 'write' else b''

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def is_healthy(self) -> bool:
        """
        True while the link is open and the vehicle has sent data within
        health_timeout seconds.
        """
        if not self.connected:
            return False

        silence = time.time() - self.last_read_time
        if silence > self.health_timeout:
            logger.warning(f"Vehicle silent for {silence:.1f}s")
            return False

        if self.conn_type == ConnectionType.SERIAL and not self.connection.is_open:
            logger.warning(f"Serial port {self.port} closed underneath us")
            self.connected = False
            return False

        return True

    def auto_reconnect(self) -> bool:
        """
        Wait reconnect_interval seconds, then reopen the link.

        Returns immediately if the link is healthy.

        Returns:
            bool: True if the link is usable afterwards
        """
        if self.connected and self.is_healthy():
            return True

        self.disconnect()
        logger.info(f"Reopening {self.conn_type.name} link in {self.reconnect_interval}s")
        time.sleep(self.reconnect_interval)
        return self.connect()

    def get_status(self) -> dict:
        """Snapshot of link state and parameters."""
        status = {
            'type': self.conn_type.name,
            'connected': self.connected,
            'healthy': self.is_healthy() if self.connected else False,
            'last_read_time': self.last_read_time,
            'time_since_last_read': (
                time.time() - self.last_read_time if self.last_read_time > 0 else None
            ),
            'bytes_written': self.bytes_written
        }

        if self.conn_type == ConnectionType.SERIAL:
            status['port'] = self.port
            status['baudrate'] = self.baudrate
            status['is_open'] = bool(self.connection and self.connection.is_open)
        else:
            status['host'] = self.host
            status['port'] = self.net_port
            if self.conn_type == ConnectionType.UDP:
                status['peer'] = self.peer

        return status
