"""
Drone Telemetry Client Configuration
Connection, polling and presentation parameters for the Modbus TCP client
"""

import os
from typing import Dict

# ==================== MODBUS TCP CLIENT ====================

MODBUS_CLIENT_CONFIG = {
    "host": os.getenv("DRONE_MODBUS_HOST", "127.0.0.1"),
    "port": int(os.getenv("DRONE_MODBUS_PORT", 8888)),
    "timeout_s": 5.0,  # Applies to connect, send and receive
    "recv_buffer_bytes": 256,
}

# ==================== POLLING ====================

POLLING_CONFIG = {
    "interval_s": 1.0,  # Sleep between cycles, not reduced by I/O time
    "reconnect_backoff_s": 2.0,  # Wait before the single reconnect attempt
    "start_address": 0,
}

# ==================== TELEMETRY SIMULATOR ====================

SIMULATOR_CONFIG = {
    "host": os.getenv("DRONE_SIM_HOST", "127.0.0.1"),
    "port": int(os.getenv("DRONE_SIM_PORT", 8888)),
    "register_count": 10,
    "update_interval_s": 1.0,
    "max_drones": 3,
}

# ==================== LOGGING CONFIGURATION ====================

LOGGING_CONFIG = {
    "level": os.getenv("LOG_LEVEL", "WARNING"),
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "file_path": os.getenv("DRONE_LOG_FILE"),  # None = console only
}

# ==================== LABEL TABLES ====================

THREAT_LEVELS: Dict[int, str] = {
    0: "NONE",
    1: "LOW",
    2: "MEDIUM",
    3: "HIGH",
}

ZONES: Dict[int, str] = {
    0: "CENTER",
    1: "NORTH",
    2: "SOUTH",
    3: "EAST",
    4: "WEST",
    5: "NORTHEAST",
    6: "NORTHWEST",
    7: "SOUTHEAST",
    8: "SOUTHWEST",
}

UNKNOWN_LABEL = "UNKNOWN"
