"""
Drone Telemetry Register Map
============================

The detection controller exposes one fixed block of 10 holding registers
starting at address 0. The positional mapping is fixed:

    Reg  Field             Encoding
    ---  ----------------  ------------------------------------------
     0   drone_count       active drones
     1   threat_level      0=NONE 1=LOW 2=MEDIUM 3=HIGH
     2   fire_authorized   0=no, nonzero=yes
     3   detection_id      rendered as D%03d
     4   confidence        0-1000 → 0.0-100.0 %
     5   position_x        signed 16-bit, ×0.001
     6   position_y        signed 16-bit, ×0.001
     7   zone_code         0-8, open-ended (unknown codes allowed)
     8   timestamp_high    Unix timestamp bits 31..16
     9   timestamp_low     Unix timestamp bits 15..0

Scaling:
    Confidence: scale 10 (e.g., 95.5 % → 955)
    Position:   scale 1000, two's complement (e.g., -0.5 → 0xFE0C)
"""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
import numpy as np

from config import THREAT_LEVELS, UNKNOWN_LABEL, ZONES


TELEMETRY_REGISTER_COUNT = 10

CONFIDENCE_SCALE = 10.0
POSITION_SCALE = 1000.0


def to_signed16(register_value: int) -> int:
    """Reinterpret an unsigned 16-bit register as signed."""
    return int(np.array(register_value, dtype=np.uint16).view(np.int16))


def to_unsigned16(value: int) -> int:
    """Two's complement of a signed 16-bit value."""
    return int(np.array(value, dtype=np.int16).view(np.uint16))


def encode_position(position: float) -> int:
    """Encode a coordinate to a 16-bit register value."""
    return to_unsigned16(int(round(position * POSITION_SCALE)))


def decode_position(register_value: int) -> float:
    """Decode a coordinate register value."""
    return to_signed16(register_value) / POSITION_SCALE


def encode_confidence(percent: float) -> int:
    """Encode confidence (%) to a 16-bit register value."""
    return int(round(percent * CONFIDENCE_SCALE))


def decode_confidence(register_value: int) -> float:
    """Decode confidence register value to %."""
    return register_value / CONFIDENCE_SCALE


def split_timestamp(timestamp: int) -> Tuple[int, int]:
    """Split a 32-bit Unix timestamp into (high, low) register values."""
    return (timestamp >> 16) & 0xFFFF, timestamp & 0xFFFF


def join_timestamp(high: int, low: int) -> int:
    return (high << 16) | low


def threat_level_label(level: int) -> str:
    return THREAT_LEVELS.get(level, UNKNOWN_LABEL)


def zone_label(zone_code: int) -> str:
    return ZONES.get(zone_code, UNKNOWN_LABEL)


@dataclass(frozen=True)
class RegisterBlock:
    """
    One decoded telemetry block.

    Field order is the register order and must not change.
    """
    drone_count: int
    threat_level: int
    fire_authorized: int
    detection_id: int
    confidence: int
    position_x: int
    position_y: int
    zone_code: int
    timestamp_high: int
    timestamp_low: int

    @classmethod
    def from_registers(cls, registers: Sequence[int]) -> 'RegisterBlock':
        """
        Map raw register values positionally onto the block.

        Raises:
            ValueError: not exactly 10 values, or a value outside 0-65535
        """
        if len(registers) != TELEMETRY_REGISTER_COUNT:
            raise ValueError(
                f"Telemetry block needs exactly {TELEMETRY_REGISTER_COUNT} registers, "
                f"got {len(registers)}"
            )
        for index, value in enumerate(registers):
            if not 0 <= value <= 0xFFFF:
                raise ValueError(f"Register {index} out of 16-bit range: {value}")
        return cls(*(int(v) for v in registers))

    def to_registers(self) -> List[int]:
        return [getattr(self, f.name) for f in fields(self)]

    # ------------- derived values -------------

    @property
    def fire_alert(self) -> bool:
        """Fire authorization is active and at least one drone is tracked."""
        return self.fire_authorized != 0 and self.drone_count > 0

    @property
    def confidence_percent(self) -> float:
        return decode_confidence(self.confidence)

    @property
    def x(self) -> float:
        return decode_position(self.position_x)

    @property
    def y(self) -> float:
        return decode_position(self.position_y)

    @property
    def timestamp(self) -> int:
        return join_timestamp(self.timestamp_high, self.timestamp_low)

    @property
    def detected_at(self) -> Optional[datetime]:
        if self.timestamp == 0:
            return None
        return datetime.fromtimestamp(self.timestamp)

    @property
    def threat_label(self) -> str:
        return threat_level_label(self.threat_level)

    @property
    def zone_label(self) -> str:
        return zone_label(self.zone_code)

    def __str__(self):
        return (f"drones={self.drone_count} threat={self.threat_label} "
                f"fire={'ON' if self.fire_authorized else 'OFF'} "
                f"id=D{self.detection_id:03d} conf={self.confidence_percent:.1f}% "
                f"pos=({self.x:.3f},{self.y:.3f}) zone={self.zone_label}")
