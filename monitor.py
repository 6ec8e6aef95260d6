#!/usr/bin/env python3
"""
Drone Detection Monitor - console presentation of telemetry blocks
Shows drone count, threat level, fire authorization and detection details
"""

import sys
from datetime import datetime
from typing import Optional, TextIO

from protocols.modbus.errors import FatalReconnectFailure, ModbusConnectionError, ModbusError
from protocols.modbus.register_map import RegisterBlock


class TelemetryRenderer:
    """
    Presentation contract consumed by the poller.

    Subclasses own all labeling, formatting and display refresh.
    """

    def render(self, block: RegisterBlock, alert: bool) -> None:
        raise NotImplementedError

    def report_error(self, error: ModbusError) -> None:
        raise NotImplementedError

    def report_fatal(self, error: ModbusError) -> None:
        raise NotImplementedError

    def report_status(self, message: str) -> None:
        raise NotImplementedError


class ConsoleRenderer(TelemetryRenderer):
    def __init__(self, stream: Optional[TextIO] = None, clear_screen: bool = True):
        self.stream = stream if stream is not None else sys.stdout
        self.clear_screen = clear_screen

    def _print(self, text: str = "", end: str = "\n"):
        print(text, end=end, file=self.stream)

    def render(self, block: RegisterBlock, alert: bool) -> None:
        """Redraw the full status screen for one block."""
        if self.clear_screen:
            # Clear screen (ANSI, works on Linux/Mac and modern Windows terminals)
            self._print("\033[H\033[J", end='')

        self._print("=" * 48)
        self._print("DRONE DETECTION DATA (REAL-TIME)".center(48))
        self._print(f"Last update: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        self._print("=" * 48)
        self._print()

        self._print("DETECTION SYSTEM STATUS")
        self._print("-" * 48)
        self._print(f"  Active Drones       : {block.drone_count}")
        self._print(f"  Threat Level        : {block.threat_label} ({block.threat_level})")
        self._print(f"  Fire Authorization  : {'ACTIVE' if block.fire_authorized else 'PASSIVE'}")
        self._print()

        if block.drone_count > 0:
            self._print("DRONE DETAILS")
            self._print("-" * 48)
            self._print(f"  Detection ID        : D{block.detection_id:03d}")
            self._print(f"  Confidence          : {block.confidence_percent:.1f}%")
            self._print(f"  X Coordinate        : {block.x:.3f}")
            self._print(f"  Y Coordinate        : {block.y:.3f}")
            self._print(f"  Zone                : {block.zone_label} ({block.zone_code})")
            if block.detected_at is not None:
                self._print(f"  Detection Time      : "
                            f"{block.detected_at.strftime('%Y-%m-%d %H:%M:%S')}")
        else:
            self._print("NO DRONES DETECTED")

        self._print("-" * 48)

        if alert:
            self._print()
            self._print("*** WARNING: FIRE AUTHORIZATION ACTIVE! ***")
            self._print("Target drone detected and ready to engage.")

    def report_error(self, error: ModbusError) -> None:
        if isinstance(error, ModbusConnectionError):
            self._print(f"CONNECTION ERROR: {error}")
            self._print("Connection lost, reconnecting...")
        else:
            self._print(f"DECODE ERROR: {error}")

    def report_fatal(self, error: ModbusError) -> None:
        if isinstance(error, FatalReconnectFailure):
            self._print(f"FATAL: Reconnect failed: {error}")
        else:
            self._print(f"FATAL: {error}")
        self._print("Polling stopped.")

    def report_status(self, message: str) -> None:
        self._print(message)
