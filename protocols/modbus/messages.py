"""
Modbus TCP Frame Codec
======================

ADU (Application Data Unit) = MBAP header + PDU, big-endian throughout.

MBAP header (7 bytes):
    Transaction ID:  2 bytes (client-assigned correlation token)
    Protocol ID:     2 bytes (always 0x0000)
    Length:          2 bytes (byte count of Unit ID + PDU)
    Unit ID:         1 byte  (0xFF in every request)

Supported PDUs:
    FC03 Read Holding Registers
        request:  function(1) + start_addr(2) + count(2)
        response: function(1) + byte_count(1) + values(byte_count)
    FC06 Write Single Register
        request:  function(1) + address(2) + value(2)
        response: echo of the request (12 bytes total)

Exception frames set bit 0x80 in the function byte; the next byte holds the
exception code.

Every function here is pure: bytes in, values out, errors raised.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence
import struct

from protocols.modbus.errors import (
    ByteCountMismatch,
    InvalidLength,
    ProtocolException,
    TransactionMismatch,
    WriteEchoMismatch,
)


MBAP_HEADER_LENGTH = 7
MBAP_FORMAT = '>HHHB'
MODBUS_PROTOCOL_ID = 0x0000
BROADCAST_UNIT_ID = 0xFF
EXCEPTION_FLAG = 0x80
MAX_READ_REGISTERS = 125

# Header + function code + byte count
READ_RESPONSE_MIN_LENGTH = MBAP_HEADER_LENGTH + 2
READ_RESPONSE_DATA_OFFSET = MBAP_HEADER_LENGTH + 2
WRITE_FRAME_LENGTH = MBAP_HEADER_LENGTH + 5


class FunctionCode(IntEnum):
    """Modbus function codes used by the telemetry client."""
    READ_HOLDING_REGISTERS = 0x03
    WRITE_SINGLE_REGISTER = 0x06


@dataclass(frozen=True)
class MBAPHeader:
    """Modbus Application Protocol header"""
    transaction_id: int
    length: int
    unit_id: int = BROADCAST_UNIT_ID
    protocol_id: int = MODBUS_PROTOCOL_ID

    def encode(self) -> bytes:
        return struct.pack(MBAP_FORMAT, self.transaction_id, self.protocol_id,
                           self.length, self.unit_id)

    @classmethod
    def decode(cls, data: bytes) -> 'MBAPHeader':
        """Decode the first 7 bytes of an ADU."""
        if len(data) < MBAP_HEADER_LENGTH:
            raise InvalidLength(len(data), MBAP_HEADER_LENGTH)
        transaction_id, protocol_id, length, unit_id = struct.unpack(
            MBAP_FORMAT, data[:MBAP_HEADER_LENGTH]
        )
        return cls(transaction_id=transaction_id, length=length,
                   unit_id=unit_id, protocol_id=protocol_id)


def decode_header(data: bytes) -> MBAPHeader:
    return MBAPHeader.decode(data)


def _build_adu(transaction_id: int, pdu: bytes, unit_id: int = BROADCAST_UNIT_ID) -> bytes:
    # Length covers the unit id byte plus the PDU
    header = MBAPHeader(transaction_id=transaction_id, length=len(pdu) + 1,
                        unit_id=unit_id)
    return header.encode() + pdu


# ==================== REQUESTS (client side) ====================

def encode_read_request(start_addr: int, count: int, transaction_id: int) -> bytes:
    """
    Build an FC03 request ADU (12 bytes).

    The caller enforces count <= MAX_READ_REGISTERS; no re-validation here.
    """
    pdu = struct.pack('>BHH', FunctionCode.READ_HOLDING_REGISTERS, start_addr, count)
    return _build_adu(transaction_id, pdu)


def encode_write_request(address: int, value: int, transaction_id: int) -> bytes:
    """Build an FC06 request ADU (12 bytes)."""
    pdu = struct.pack('>BHH', FunctionCode.WRITE_SINGLE_REGISTER, address, value)
    return _build_adu(transaction_id, pdu)


# ==================== RESPONSES (client side) ====================

def decode_read_response(data: bytes, expected_transaction_id: int,
                         expected_count: int) -> List[int]:
    """
    Validate and decode an FC03 response.

    Checks run in a fixed order: length, transaction id, exception flag,
    byte count. The transaction id is verified before any other field is
    trusted.

    Args:
        data: Raw bytes received from the server
        expected_transaction_id: Id sent in the matching request
        expected_count: Number of registers requested

    Returns:
        List of `expected_count` unsigned 16-bit register values

    Raises:
        InvalidLength, TransactionMismatch, ProtocolException, ByteCountMismatch
    """
    if len(data) < READ_RESPONSE_MIN_LENGTH:
        raise InvalidLength(len(data), READ_RESPONSE_MIN_LENGTH)

    header = MBAPHeader.decode(data)
    if header.transaction_id != expected_transaction_id:
        raise TransactionMismatch(expected_transaction_id, header.transaction_id)

    function_code = data[MBAP_HEADER_LENGTH]
    if function_code & EXCEPTION_FLAG:
        raise ProtocolException(function_code, data[MBAP_HEADER_LENGTH + 1])

    byte_count = data[MBAP_HEADER_LENGTH + 1]
    if byte_count != expected_count * 2:
        raise ByteCountMismatch(expected_count * 2, byte_count)

    end = READ_RESPONSE_DATA_OFFSET + byte_count
    if len(data) < end:
        raise InvalidLength(len(data), end)

    return list(struct.unpack(f'>{expected_count}H', data[READ_RESPONSE_DATA_OFFSET:end]))


def decode_write_response(data: bytes,
                          expected_transaction_id: Optional[int] = None,
                          expected_address: Optional[int] = None,
                          expected_value: Optional[int] = None) -> None:
    """
    Validate an FC06 acknowledgment.

    Called with bytes only this is a length check (>= 12 bytes). Supplying
    any expectation turns on the full check: transaction id first, then the
    exception flag (a 9-byte exception frame is accepted as such), then the
    frame length and the echoed function code, address and value.
    """
    hardened = (expected_transaction_id is not None or expected_address is not None
                or expected_value is not None)
    if not hardened:
        if len(data) < WRITE_FRAME_LENGTH:
            raise InvalidLength(len(data), WRITE_FRAME_LENGTH)
        return

    if len(data) < READ_RESPONSE_MIN_LENGTH:
        raise InvalidLength(len(data), WRITE_FRAME_LENGTH)

    header = MBAPHeader.decode(data)
    if expected_transaction_id is not None and header.transaction_id != expected_transaction_id:
        raise TransactionMismatch(expected_transaction_id, header.transaction_id)

    if data[MBAP_HEADER_LENGTH] & EXCEPTION_FLAG:
        raise ProtocolException(data[MBAP_HEADER_LENGTH], data[MBAP_HEADER_LENGTH + 1])

    if len(data) < WRITE_FRAME_LENGTH:
        raise InvalidLength(len(data), WRITE_FRAME_LENGTH)

    function_code, address, value = struct.unpack(
        '>BHH', data[MBAP_HEADER_LENGTH:WRITE_FRAME_LENGTH]
    )
    if function_code != FunctionCode.WRITE_SINGLE_REGISTER:
        raise WriteEchoMismatch("function code", FunctionCode.WRITE_SINGLE_REGISTER,
                                function_code)
    if expected_address is not None and address != expected_address:
        raise WriteEchoMismatch("address", expected_address, address)
    if expected_value is not None and value != expected_value:
        raise WriteEchoMismatch("value", expected_value, value)


# ==================== RESPONSES (server side) ====================

def encode_read_response(transaction_id: int, values: Sequence[int],
                         unit_id: int = BROADCAST_UNIT_ID) -> bytes:
    """Build an FC03 response ADU carrying `values`."""
    pdu = struct.pack('BB', FunctionCode.READ_HOLDING_REGISTERS, len(values) * 2)
    pdu += struct.pack(f'>{len(values)}H', *values)
    return _build_adu(transaction_id, pdu, unit_id)


def encode_write_response(transaction_id: int, address: int, value: int,
                          unit_id: int = BROADCAST_UNIT_ID) -> bytes:
    """Build the FC06 echo response."""
    pdu = struct.pack('>BHH', FunctionCode.WRITE_SINGLE_REGISTER, address, value)
    return _build_adu(transaction_id, pdu, unit_id)


def encode_exception_response(transaction_id: int, function_code: int,
                              exception_code: int,
                              unit_id: int = BROADCAST_UNIT_ID) -> bytes:
    """Build an exception ADU: (FC | 0x80) + exception code."""
    pdu = struct.pack('BB', function_code | EXCEPTION_FLAG, exception_code)
    return _build_adu(transaction_id, pdu, unit_id)
