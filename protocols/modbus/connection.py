"""
Modbus TCP Connection Session
=============================

Owns the single TCP connection between the telemetry client and the
drone-detection controller.

Connection states:
    DISCONNECTED - No socket open
    CONNECTED    - TCP connected, request/response exchange allowed

Transitions:
    DISCONNECTED --connect()--> CONNECTED
    CONNECTED --disconnect()--> DISCONNECTED
    any --disconnect()--> DISCONNECTED (idempotent)

A failed connect leaves the session DISCONNECTED with no socket open.
Send and receive are bounded by the session timeout (5 seconds by default).
"""

from enum import Enum
from typing import Callable, Optional
import logging
import socket

from config import MODBUS_CLIENT_CONFIG
from protocols.modbus.errors import ModbusConnectionError


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Connection session states"""
    DISCONNECTED = 0
    CONNECTED = 1


class ConnectionSession:
    """
    Single blocking TCP connection to a Modbus server.

    Exactly one session is live at a time; the polling driver discards it
    and builds a fresh one on reconnect.
    """

    def __init__(self, host: str, port: int,
                 timeout_s: float = MODBUS_CLIENT_CONFIG["timeout_s"],
                 socket_factory: Callable[..., socket.socket] = socket.socket):
        """
        Args:
            host: Server IP address or hostname
            port: Server TCP port
            timeout_s: Connect/send/receive timeout in seconds
            socket_factory: Callable returning a stream socket (tests inject fakes)
        """
        self.host = host
        self.port = port
        self.timeout_s = timeout_s
        self.state = SessionState.DISCONNECTED
        self._socket_factory = socket_factory
        self._sock: Optional[socket.socket] = None

        self.stats = {
            'connections': 0,
            'disconnections': 0,
            'bytes_sent': 0,
            'bytes_received': 0,
        }

    def connect(self) -> 'ConnectionSession':
        """
        Open the TCP connection.

        Returns:
            self, so `session = ConnectionSession(h, p).connect()` reads naturally

        Raises:
            ModbusConnectionError: socket creation or connect failed
        """
        if self.state == SessionState.CONNECTED:
            return self

        sock = None
        try:
            sock = self._socket_factory(socket.AF_INET, socket.SOCK_STREAM)
            sock.settimeout(self.timeout_s)
            sock.connect((self.host, self.port))
        except (OSError, OverflowError) as e:
            # OverflowError: port outside 0-65535
            if sock is not None:
                sock.close()
            logger.error(f"Modbus connection failed to {self.host}:{self.port}: {e}")
            raise ModbusConnectionError(
                f"Could not connect to {self.host}:{self.port}: {e}"
            ) from e

        self._sock = sock
        self.state = SessionState.CONNECTED
        self.stats['connections'] += 1
        logger.info(f"Modbus connected to {self.host}:{self.port}")
        return self

    def send(self, data: bytes) -> None:
        """
        Write the full frame in a single send.

        Raises:
            ModbusConnectionError: not connected, transport error or short write
        """
        sock = self._require_socket()
        try:
            sent = sock.send(data)
        except OSError as e:
            logger.error(f"Send failed to {self.host}:{self.port}: {e}")
            raise ModbusConnectionError(f"Send failed: {e}") from e

        if sent != len(data):
            logger.error(f"Short write to {self.host}:{self.port}: {sent}/{len(data)} bytes")
            raise ModbusConnectionError(f"Short write: {sent} of {len(data)} bytes sent")

        self.stats['bytes_sent'] += sent

    def receive(self, max_bytes: int) -> bytes:
        """
        Read at most `max_bytes` with one blocking recv.

        An empty result is returned as-is; the codec reports it as an
        invalid length.

        Raises:
            ModbusConnectionError: not connected, timeout or transport error
        """
        sock = self._require_socket()
        try:
            data = sock.recv(max_bytes)
        except socket.timeout as e:
            logger.error(f"Receive timed out after {self.timeout_s}s from {self.host}:{self.port}")
            raise ModbusConnectionError(f"Receive timed out after {self.timeout_s}s") from e
        except OSError as e:
            logger.error(f"Receive failed from {self.host}:{self.port}: {e}")
            raise ModbusConnectionError(f"Receive failed: {e}") from e

        self.stats['bytes_received'] += len(data)
        return data

    def disconnect(self) -> None:
        """Close the socket if open. Safe to call in any state."""
        if self._sock is None:
            self.state = SessionState.DISCONNECTED
            return

        try:
            self._sock.close()
        except OSError as e:
            logger.warning(f"Error closing socket to {self.host}:{self.port}: {e}")
        finally:
            self._sock = None
            self.state = SessionState.DISCONNECTED
            self.stats['disconnections'] += 1
            logger.info(f"Modbus disconnected from {self.host}:{self.port}")

    def is_connected(self) -> bool:
        return self.state == SessionState.CONNECTED

    def _require_socket(self) -> socket.socket:
        if self.state != SessionState.CONNECTED or self._sock is None:
            raise ModbusConnectionError(f"Not connected to {self.host}:{self.port}")
        return self._sock

    def __enter__(self) -> 'ConnectionSession':
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def __str__(self):
        return (f"ModbusSession[{self.host}:{self.port}] state={self.state.name} "
                f"tx={self.stats['bytes_sent']}B rx={self.stats['bytes_received']}B")
