"""
Modbus Client Error Taxonomy
============================

Errors raised by the frame codec, transaction manager and connection session.

    ModbusError
    ├── ModbusConnectionError   socket create/connect/send/receive/timeout
    ├── DecodeError             response received but fails validation
    │   ├── InvalidLength
    │   ├── TransactionMismatch
    │   ├── ByteCountMismatch
    │   ├── ProtocolException   exception frame (function code | 0x80)
    │   └── WriteEchoMismatch
    └── FatalReconnectFailure   reconnect attempt itself failed

Only the polling driver decides what to do with these; lower layers never
retry or swallow them.
"""

from enum import Enum
from typing import Optional


class ModbusExceptionCode(Enum):
    """Modbus exception codes."""
    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_DEVICE_BUSY = 0x06


class ModbusError(Exception):
    """Base class for all client-side Modbus errors."""


class ModbusConnectionError(ModbusError, ConnectionError):
    """Transport failure; the connection must be considered severed."""


class DecodeError(ModbusError):
    """Response was received but failed protocol validation."""


class InvalidLength(DecodeError):
    def __init__(self, received: int, minimum: int):
        self.received = received
        self.minimum = minimum
        super().__init__(f"Invalid response length: {received} bytes (need {minimum})")


class TransactionMismatch(DecodeError):
    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Transaction ID mismatch: expected {expected}, received {received}"
        )


class ByteCountMismatch(DecodeError):
    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Invalid byte count: expected {expected}, received {received}")


class ProtocolException(DecodeError):
    """Server answered with an exception frame."""

    def __init__(self, function_code: int, exception_code: int):
        self.function_code = function_code
        self.exception_code = exception_code
        super().__init__(
            f"Modbus exception 0x{exception_code:02X} ({self.exception_name}) "
            f"for FC{function_code & 0x7F:02d}"
        )

    @property
    def exception_name(self) -> str:
        try:
            return ModbusExceptionCode(self.exception_code).name
        except ValueError:
            return "UNKNOWN"


class WriteEchoMismatch(DecodeError):
    """Write acknowledgment does not echo the request."""

    def __init__(self, field: str, expected: int, received: Optional[int]):
        self.field = field
        self.expected = expected
        self.received = received
        super().__init__(
            f"Write response {field} mismatch: expected {expected}, received {received}"
        )


class FatalReconnectFailure(ModbusError):
    """The single reconnect attempt after a connection loss failed."""
