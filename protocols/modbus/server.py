"""
Modbus TCP Telemetry Server
===========================

Asyncio Modbus TCP server that publishes the drone telemetry block.

Used as the controller stand-in for local runs (simulator.py) and for
end-to-end tests of the polling client.

MBAP Header Format (7 bytes):
    Transaction ID:  2 bytes (echoed unchanged)
    Protocol ID:     2 bytes (must be 0x0000, connection dropped otherwise)
    Length:          2 bytes (byte count of Unit ID + PDU)
    Unit ID:         1 byte  (any value accepted; clients broadcast 0xFF)

Supported Function Codes:
    FC03: Read Holding Registers
    FC06: Write Single Register

Exceptions:
    0x01 ILLEGAL_FUNCTION      any other function code
    0x02 ILLEGAL_DATA_ADDRESS  range outside the register bank
    0x03 ILLEGAL_DATA_VALUE    FC03 count outside 1-125
"""

import asyncio
import struct
import logging
from typing import Dict, List, Optional, Sequence

from config import SIMULATOR_CONFIG
from protocols.modbus.errors import ModbusExceptionCode
from protocols.modbus.messages import (
    FunctionCode,
    MAX_READ_REGISTERS,
    MBAP_HEADER_LENGTH,
    MBAPHeader,
    decode_header,
    encode_exception_response,
    encode_read_response,
    encode_write_response,
)

logger = logging.getLogger(__name__)


class TelemetryServer:
    """
    Modbus TCP server over a flat holding-register bank.
    """

    def __init__(self, host: str = SIMULATOR_CONFIG["host"],
                 port: int = SIMULATOR_CONFIG["port"],
                 register_count: int = SIMULATOR_CONFIG["register_count"]):
        """
        Args:
            host: Bind address
            port: TCP port (0 = pick a free port, see `port` after start())
            register_count: Size of the holding-register bank
        """
        self.host = host
        self.port = port
        self.holding_registers: List[int] = [0] * register_count

        self.server: Optional[asyncio.Server] = None
        self.connections: List[asyncio.StreamWriter] = []

        self.stats = {
            "connections_total": 0,
            "connections_active": 0,
            "requests_fc03": 0,
            "requests_fc06": 0,
            "exceptions_total": 0,
            "bytes_received": 0,
            "bytes_sent": 0,
        }

    def set_registers(self, values: Sequence[int], address: int = 0) -> None:
        """Overwrite registers starting at `address`."""
        for offset, value in enumerate(values):
            self.holding_registers[address + offset] = value & 0xFFFF

    async def start(self):
        """Start listening."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port
        )

        addr = self.server.sockets[0].getsockname()
        self.port = addr[1]
        logger.info(f"Telemetry server listening on {addr[0]}:{addr[1]}")

    async def stop(self):
        """Close live connections and stop listening."""
        for writer in list(self.connections):
            writer.close()
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("Telemetry server stopped")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter
    ):
        addr = writer.get_extra_info('peername')
        logger.info(f"Connection from {addr}")

        self.connections.append(writer)
        self.stats["connections_total"] += 1
        self.stats["connections_active"] += 1

        try:
            while True:
                header = decode_header(await reader.readexactly(MBAP_HEADER_LENGTH))
                self.stats["bytes_received"] += MBAP_HEADER_LENGTH

                if header.protocol_id != 0:
                    logger.error(f"Invalid protocol ID: {header.protocol_id:#x}")
                    break

                pdu_length = header.length - 1
                if pdu_length < 1:
                    logger.error(f"Invalid MBAP length: {header.length}")
                    break
                pdu = await reader.readexactly(pdu_length)
                self.stats["bytes_received"] += pdu_length

                response = self._process_request(header, pdu)
                writer.write(response)
                await writer.drain()

                self.stats["bytes_sent"] += len(response)

        except asyncio.IncompleteReadError:
            logger.info(f"Connection closed by {addr}")
        except ConnectionError as e:
            logger.info(f"Connection to {addr} lost: {e}")
        finally:
            self.connections.remove(writer)
            self.stats["connections_active"] -= 1
            writer.close()

    def _process_request(self, header: MBAPHeader, pdu: bytes) -> bytes:
        """Dispatch a request PDU and return the full response ADU."""
        function_code = pdu[0]
        txn_id = header.transaction_id

        if function_code == FunctionCode.READ_HOLDING_REGISTERS and len(pdu) >= 5:
            self.stats["requests_fc03"] += 1
            return self._handle_fc03(header, pdu[1:5])
        if function_code == FunctionCode.WRITE_SINGLE_REGISTER and len(pdu) >= 5:
            self.stats["requests_fc06"] += 1
            return self._handle_fc06(header, pdu[1:5])

        return self._exception(txn_id, function_code,
                               ModbusExceptionCode.ILLEGAL_FUNCTION, header.unit_id)

    def _handle_fc03(self, header: MBAPHeader, data: bytes) -> bytes:
        address, count = struct.unpack('>HH', data)

        if not 1 <= count <= MAX_READ_REGISTERS:
            return self._exception(header.transaction_id, 3,
                                   ModbusExceptionCode.ILLEGAL_DATA_VALUE, header.unit_id)
        if address + count > len(self.holding_registers):
            return self._exception(header.transaction_id, 3,
                                   ModbusExceptionCode.ILLEGAL_DATA_ADDRESS, header.unit_id)

        values = self.holding_registers[address:address + count]
        return encode_read_response(header.transaction_id, values, header.unit_id)

    def _handle_fc06(self, header: MBAPHeader, data: bytes) -> bytes:
        address, value = struct.unpack('>HH', data)

        if address >= len(self.holding_registers):
            return self._exception(header.transaction_id, 6,
                                   ModbusExceptionCode.ILLEGAL_DATA_ADDRESS, header.unit_id)

        self.holding_registers[address] = value
        logger.info(f"Register {address} written: {value}")
        return encode_write_response(header.transaction_id, address, value, header.unit_id)

    def _exception(self, txn_id: int, function_code: int,
                   code: ModbusExceptionCode, unit_id: int) -> bytes:
        self.stats["exceptions_total"] += 1
        logger.warning(f"FC{function_code:02d} exception {code.name}")
        return encode_exception_response(txn_id, function_code, code.value, unit_id)

    def get_stats(self) -> Dict:
        return self.stats.copy()
