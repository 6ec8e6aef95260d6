"""
Drone Detection Controller Simulator
====================================

Stands in for the detection controller so the polling client can be run
locally. Serves the 10-register telemetry block over Modbus TCP and updates
it once per step with a synthetic scenario:

    1. Drones appear and leave at random (0..max_drones)
    2. The tracked drone moves on a circle around the sensor
    3. Threat level follows drone count and distance
    4. Fire authorization is granted for HIGH threats only
    5. Zone code is derived from the bearing (8 sectors + center)

Usage:
    python3 simulator.py [--port 8888] [--seed 42]
"""

import argparse
import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import LOGGING_CONFIG, SIMULATOR_CONFIG
from protocols.modbus.register_map import (
    RegisterBlock,
    encode_confidence,
    encode_position,
    split_timestamp,
)
from protocols.modbus.server import TelemetryServer

logger = logging.getLogger(__name__)

# Sector index (counter-clockwise from east) → zone code
_SECTOR_ZONES = [3, 5, 1, 6, 4, 8, 2, 7]  # E, NE, N, NW, W, SW, S, SE
CENTER_RADIUS = 0.1


@dataclass
class ScenarioState:
    """Current state of the synthetic scenario."""
    step: int = 0
    drone_count: int = 0
    detection_id: int = 0
    angle_rad: float = 0.0
    radius: float = 0.8


def zone_for_position(x: float, y: float) -> int:
    if math.hypot(x, y) < CENTER_RADIUS:
        return 0
    bearing = math.atan2(y, x) % (2 * math.pi)
    sector = int(((bearing + math.pi / 8) % (2 * math.pi)) // (math.pi / 4))
    return _SECTOR_ZONES[sector]


class DroneScenario:
    """Random-walk generator for telemetry blocks."""

    def __init__(self, max_drones: int = SIMULATOR_CONFIG["max_drones"],
                 seed: Optional[int] = None):
        self.max_drones = max_drones
        self.rng = np.random.default_rng(seed)
        self.state = ScenarioState()

    def step(self, now: Optional[float] = None) -> RegisterBlock:
        """Advance one step and return the block to publish."""
        s = self.state
        s.step += 1

        change = int(self.rng.integers(-1, 2))
        previous = s.drone_count
        s.drone_count = int(np.clip(s.drone_count + change, 0, self.max_drones))
        if s.drone_count > 0 and previous == 0:
            s.detection_id = (s.detection_id + 1) % 1000
            s.radius = float(self.rng.uniform(0.3, 0.95))

        if s.drone_count == 0:
            return RegisterBlock(*([0] * 10))

        s.angle_rad = (s.angle_rad + 0.15) % (2 * math.pi)
        s.radius = float(np.clip(s.radius - 0.02, 0.05, 0.99))
        x = s.radius * math.cos(s.angle_rad)
        y = s.radius * math.sin(s.angle_rad)

        threat = 1 if s.radius > 0.6 else 2 if s.radius > 0.3 else 3
        confidence = float(np.clip(self.rng.normal(90.0, 5.0), 0.0, 100.0))
        high, low = split_timestamp(int(now if now is not None else time.time()))

        return RegisterBlock(
            drone_count=s.drone_count,
            threat_level=threat,
            fire_authorized=1 if threat == 3 else 0,
            detection_id=s.detection_id,
            confidence=encode_confidence(confidence),
            position_x=encode_position(x),
            position_y=encode_position(y),
            zone_code=zone_for_position(x, y),
            timestamp_high=high,
            timestamp_low=low,
        )


class DroneSimulator:
    """Runs the telemetry server and refreshes its registers every step."""

    def __init__(self, server: TelemetryServer, scenario: DroneScenario,
                 update_interval_s: float = SIMULATOR_CONFIG["update_interval_s"]):
        self.server = server
        self.scenario = scenario
        self.update_interval_s = update_interval_s
        self.running = False

    async def run(self, duration_s: Optional[float] = None):
        await self.server.start()
        self.running = True
        started = time.monotonic()
        try:
            while self.running:
                block = self.scenario.step()
                self.server.set_registers(block.to_registers())
                logger.debug(f"Published: {block}")

                if duration_s is not None and time.monotonic() - started >= duration_s:
                    break
                await asyncio.sleep(self.update_interval_s)
        finally:
            self.running = False
            await self.server.stop()


def main():
    parser = argparse.ArgumentParser(description="Drone Detection Controller Simulator")
    parser.add_argument("--host", default=SIMULATOR_CONFIG["host"])
    parser.add_argument("--port", type=int, default=SIMULATOR_CONFIG["port"])
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=LOGGING_CONFIG["format"])

    simulator = DroneSimulator(TelemetryServer(args.host, args.port),
                               DroneScenario(seed=args.seed))
    try:
        asyncio.run(simulator.run())
    except KeyboardInterrupt:
        print("\nSimulator stopped")


if __name__ == "__main__":
    main()
