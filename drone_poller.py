"""
Drone Telemetry Poller
======================

Drives the read → validate → translate cycle against the detection controller.

Cycle (one per interval):
    1. Read 10 holding registers from address 0
    2. Success: decode the RegisterBlock, hand it to the renderer together
       with the fire-authorization alert (fire_authorized != 0 and drone_count > 0)
    3. Connection error: disconnect, wait the reconnect backoff, try exactly
       one reconnect; if that fails the poller stops (fatal)
    4. Decode error: report it and keep the current connection
    5. Sleep the full interval, regardless of time spent on I/O

Individual reads are never retried; a failed read is superseded by the next
cycle's read. The socket is closed on every exit path.
"""

import logging
import time
from typing import Callable, Optional

from config import MODBUS_CLIENT_CONFIG, POLLING_CONFIG
from monitor import TelemetryRenderer
from protocols.modbus.connection import ConnectionSession
from protocols.modbus.errors import (
    DecodeError,
    FatalReconnectFailure,
    ModbusConnectionError,
)
from protocols.modbus.register_map import RegisterBlock, TELEMETRY_REGISTER_COUNT
from protocols.modbus.transaction import TransactionManager


logger = logging.getLogger(__name__)


class DronePoller:
    """
    Polling driver for a single drone-detection controller.
    """

    def __init__(self, host: str, port: int, renderer: TelemetryRenderer,
                 transactions: Optional[TransactionManager] = None,
                 session_factory: Callable[[str, int], ConnectionSession] = ConnectionSession,
                 sleep: Callable[[float], None] = time.sleep,
                 interval_s: float = POLLING_CONFIG["interval_s"],
                 reconnect_backoff_s: float = POLLING_CONFIG["reconnect_backoff_s"],
                 start_address: int = POLLING_CONFIG["start_address"]):
        """
        Args:
            host: Controller IP address or hostname
            port: Controller Modbus TCP port
            renderer: Presentation layer receiving blocks, alerts and errors
            transactions: Transaction manager (one per process)
            session_factory: Builds a fresh, unconnected session for (host, port)
            sleep: Blocking pause; injectable so cycle timing is testable
            interval_s: Pause after every cycle
            reconnect_backoff_s: Pause before the single reconnect attempt
            start_address: First register of the telemetry block
        """
        self.host = host
        self.port = port
        self.renderer = renderer
        self.transactions = transactions or TransactionManager()
        self.session_factory = session_factory
        self.sleep = sleep
        self.interval_s = interval_s
        self.reconnect_backoff_s = reconnect_backoff_s
        self.start_address = start_address

        self.session: Optional[ConnectionSession] = None
        self.running = False
        self.last_block: Optional[RegisterBlock] = None

        self.stats = {
            'cycles': 0,
            'successful_reads': 0,
            'decode_errors': 0,
            'connection_errors': 0,
            'reconnects': 0,
            'alerts': 0,
        }

    # ------------- lifecycle -------------

    def connect(self) -> None:
        """
        Build a new session and connect it.

        Raises:
            ModbusConnectionError: connect failed (no session kept)
        """
        session = self.session_factory(self.host, self.port)
        session.connect()
        self.session = session

    def disconnect(self) -> None:
        if self.session is not None:
            self.session.disconnect()
            self.session = None

    def stop(self) -> None:
        """Ask run() to finish after the current cycle."""
        self.running = False

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Poll until a fatal reconnect failure, stop(), or `max_cycles` cycles.

        A failed initial connect is fatal at once; the backoff and single
        reconnect attempt only follow a connection lost while polling.

        Returns:
            Process exit status: 0 on orderly stop, 1 on fatal connection failure
        """
        self.running = True
        try:
            try:
                self.connect()
            except ModbusConnectionError as e:
                logger.error(f"Initial connection to {self.host}:{self.port} failed: {e}")
                self.renderer.report_fatal(e)
                return 1

            logger.info(f"Polling {self.host}:{self.port} every {self.interval_s}s")
            self.renderer.report_status(f"Connected to Modbus server {self.host}:{self.port}")

            cycles = 0
            while self.running and (max_cycles is None or cycles < max_cycles):
                if not self.poll_once():
                    return 1
                cycles += 1
                self.sleep(self.interval_s)

            return 0
        finally:
            self.running = False
            self.disconnect()

    # ------------- cycle -------------

    def poll_once(self) -> bool:
        """
        Run one read cycle (without the trailing interval sleep).

        Returns:
            False when the connection was lost and could not be re-established
        """
        self.stats['cycles'] += 1

        try:
            if self.session is None:
                raise ModbusConnectionError(f"No session to {self.host}:{self.port}")
            registers = self.transactions.issue_read(
                self.session, self.start_address, TELEMETRY_REGISTER_COUNT
            )
        except ModbusConnectionError as e:
            self.stats['connection_errors'] += 1
            logger.error(f"Read failed, connection lost: {e}")
            self.renderer.report_error(e)
            return self._reconnect()
        except DecodeError as e:
            self.stats['decode_errors'] += 1
            self.renderer.report_error(e)
            return True

        block = RegisterBlock.from_registers(registers)
        self.last_block = block
        self.stats['successful_reads'] += 1

        alert = block.fire_alert
        if alert:
            self.stats['alerts'] += 1
            logger.warning(f"FIRE AUTHORIZATION ACTIVE: {block}")
        else:
            logger.debug(f"Telemetry: {block}")

        self.renderer.render(block, alert)
        return True

    def _reconnect(self) -> bool:
        self.disconnect()
        self.sleep(self.reconnect_backoff_s)

        logger.info(f"Reconnecting to {self.host}:{self.port}")
        try:
            self.connect()
        except ModbusConnectionError as e:
            fatal = FatalReconnectFailure(f"Reconnect to {self.host}:{self.port} failed: {e}")
            fatal.__cause__ = e
            logger.error(str(fatal))
            self.renderer.report_fatal(fatal)
            return False

        self.stats['reconnects'] += 1
        self.renderer.report_status(f"Reconnected to {self.host}:{self.port}")
        return True

    # ------------- commands -------------

    def write_register(self, address: int, value: int) -> None:
        """
        Write one holding register on the controller over the current session.

        Raises:
            ModbusConnectionError, DecodeError, ValueError
        """
        if self.session is None:
            raise ModbusConnectionError(f"No session to {self.host}:{self.port}")
        self.transactions.issue_write(self.session, address, value)
        logger.info(f"Register {address} set to {value}")

    def get_stats(self):
        stats = self.stats.copy()
        stats['transactions'] = self.transactions.get_stats()
        return stats

    def __str__(self):
        state = self.session.state.name if self.session else "NO_SESSION"
        return (f"DronePoller[{self.host}:{self.port}] {state} "
                f"cycles={self.stats['cycles']} ok={self.stats['successful_reads']}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print(f"Drone poller module - default target "
          f"{MODBUS_CLIENT_CONFIG['host']}:{MODBUS_CLIENT_CONFIG['port']}")
