"""
Modbus Protocol Implementation
===============================

Modbus TCP client stack for the drone-detection telemetry block.

This package provides:
    - Frame codec: FC03/FC06 request encoding, response validation
    - TransactionManager: transaction ID ownership and request/response correlation
    - ConnectionSession: single blocking TCP connection lifecycle
    - RegisterBlock: positional map of the 10-register telemetry block
    - TelemetryServer: asyncio server publishing the block (simulation/testing)

Usage:
    from protocols.modbus import ConnectionSession, TransactionManager, RegisterBlock

    with ConnectionSession("127.0.0.1", 8888) as session:
        registers = TransactionManager().issue_read(session, 0, 10)
        block = RegisterBlock.from_registers(registers)
"""

from protocols.modbus.errors import (
    ModbusError,
    ModbusConnectionError,
    DecodeError,
    InvalidLength,
    TransactionMismatch,
    ByteCountMismatch,
    ProtocolException,
    WriteEchoMismatch,
    FatalReconnectFailure,
    ModbusExceptionCode,
)
from protocols.modbus.messages import (
    FunctionCode,
    MBAPHeader,
    encode_read_request,
    encode_write_request,
    decode_read_response,
    decode_write_response,
)
from protocols.modbus.connection import ConnectionSession, SessionState
from protocols.modbus.transaction import Transaction, TransactionManager
from protocols.modbus.register_map import (
    RegisterBlock,
    TELEMETRY_REGISTER_COUNT,
)
from protocols.modbus.server import TelemetryServer

__all__ = [
    # Errors
    'ModbusError',
    'ModbusConnectionError',
    'DecodeError',
    'InvalidLength',
    'TransactionMismatch',
    'ByteCountMismatch',
    'ProtocolException',
    'WriteEchoMismatch',
    'FatalReconnectFailure',
    'ModbusExceptionCode',

    # Codec
    'FunctionCode',
    'MBAPHeader',
    'encode_read_request',
    'encode_write_request',
    'decode_read_response',
    'decode_write_response',

    # Client
    'ConnectionSession',
    'SessionState',
    'Transaction',
    'TransactionManager',

    # Register map
    'RegisterBlock',
    'TELEMETRY_REGISTER_COUNT',

    # Simulation
    'TelemetryServer',
]
