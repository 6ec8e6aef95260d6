#!/usr/bin/env python3
"""
Drone Detection Modbus TCP Client

Polls the detection controller once per second and shows its telemetry.

Usage:
    python3 drone_client_cli.py [host] [port] [--interval S] [--no-clear]

Exit status:
    0 - stopped by the operator (Ctrl+C)
    1 - connection could not be (re)established
"""

import argparse
import logging
import sys
from typing import List, Optional

from config import LOGGING_CONFIG, MODBUS_CLIENT_CONFIG, POLLING_CONFIG
from drone_poller import DronePoller
from monitor import ConsoleRenderer


def setup_logging(level: str, file_path: Optional[str] = None):
    """Configure root logging for the client process."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if file_path:
        handlers.append(logging.FileHandler(file_path))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOGGING_CONFIG["format"],
        handlers=handlers,
    )


def tcp_port(text: str) -> int:
    port = int(text)
    if not 0 < port <= 65535:
        raise argparse.ArgumentTypeError(f"port must be 1-65535, got {port}")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drone Detection Modbus TCP Client")
    parser.add_argument("host", nargs="?", default=MODBUS_CLIENT_CONFIG["host"],
                        help=f"Server IP (default: {MODBUS_CLIENT_CONFIG['host']})")
    parser.add_argument("port", nargs="?", type=tcp_port, default=MODBUS_CLIENT_CONFIG["port"],
                        help=f"Server port (default: {MODBUS_CLIENT_CONFIG['port']})")
    parser.add_argument("-i", "--interval", type=float, default=POLLING_CONFIG["interval_s"],
                        help="Polling interval in seconds (default: 1)")
    parser.add_argument("--no-clear", action="store_true",
                        help="Do not clear the screen between updates")
    parser.add_argument("--log-level", default=LOGGING_CONFIG["level"],
                        help="Logging level (default: WARNING)")
    parser.add_argument("--log-file", default=LOGGING_CONFIG["file_path"],
                        help="Also write logs to this file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    renderer = ConsoleRenderer(clear_screen=not args.no_clear)
    poller = DronePoller(args.host, args.port, renderer, interval_s=args.interval)

    print("=== DRONE DETECTION MODBUS TCP CLIENT ===")
    print(f"Server: {args.host}:{args.port}")
    print("=" * 41 + "\n")

    try:
        status = poller.run()
    except KeyboardInterrupt:
        print("\nMonitor stopped")
        status = 0

    print("Program terminated.")
    return status


if __name__ == "__main__":
    sys.exit(main())
