"""
Modbus Transaction Manager
==========================

Assigns transaction IDs and correlates each request with its response.

Transaction ID rules:
    - Counter starts at 1 and is never reset during the process lifetime
    - Incremented for every request issued (reads and writes alike)
    - 16-bit wraparound: 65535 is followed by 0

Exactly one transaction is in flight at a time. Each issue_* call performs a
single encode → send → receive → decode round trip with no retry; errors
surface unchanged to the caller.
"""

from dataclasses import dataclass
from typing import List, Optional
import logging

from config import MODBUS_CLIENT_CONFIG
from protocols.modbus.connection import ConnectionSession
from protocols.modbus.errors import DecodeError
from protocols.modbus.messages import (
    FunctionCode,
    MAX_READ_REGISTERS,
    decode_read_response,
    decode_write_response,
    encode_read_request,
    encode_write_request,
)


logger = logging.getLogger(__name__)

TRANSACTION_ID_MODULUS = 65536


@dataclass(frozen=True)
class Transaction:
    """A request awaiting its response"""
    transaction_id: int
    function_code: FunctionCode
    address: int
    count: Optional[int] = None  # FC03 only
    value: Optional[int] = None  # FC06 only

    @property
    def expected_byte_count(self) -> int:
        return (self.count or 0) * 2


def _check_u16(name: str, value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} must be 0-65535, got {value}")


class TransactionManager:
    """
    Owns the transaction ID counter for one client process.
    """

    def __init__(self, initial_transaction_id: int = 1,
                 recv_buffer_bytes: int = MODBUS_CLIENT_CONFIG["recv_buffer_bytes"]):
        self._next_transaction_id = initial_transaction_id % TRANSACTION_ID_MODULUS
        self.recv_buffer_bytes = recv_buffer_bytes
        self.last_transaction: Optional[Transaction] = None

        self.stats = {
            'requests': 0,
            'reads': 0,
            'writes': 0,
            'decode_errors': 0,
        }

    @property
    def next_transaction_id(self) -> int:
        """ID the next request will carry."""
        return self._next_transaction_id

    def _begin(self, function_code: FunctionCode, address: int,
               count: Optional[int] = None, value: Optional[int] = None) -> Transaction:
        transaction = Transaction(
            transaction_id=self._next_transaction_id,
            function_code=function_code,
            address=address,
            count=count,
            value=value,
        )
        self._next_transaction_id = (self._next_transaction_id + 1) % TRANSACTION_ID_MODULUS
        self.last_transaction = transaction
        self.stats['requests'] += 1
        return transaction

    def issue_read(self, session: ConnectionSession, start_addr: int, count: int) -> List[int]:
        """
        Read holding registers (FC03).

        Args:
            session: Connected session
            start_addr: First register address (0-65535)
            count: Number of registers (1-125)

        Returns:
            List of `count` register values

        Raises:
            ValueError: address or count out of range (no ID consumed)
            ModbusConnectionError: transport failure
            DecodeError: malformed, mismatched or exception response
        """
        _check_u16("start address", start_addr)
        if not 1 <= count <= MAX_READ_REGISTERS:
            raise ValueError(f"count must be 1-{MAX_READ_REGISTERS}, got {count}")

        txn = self._begin(FunctionCode.READ_HOLDING_REGISTERS, start_addr, count=count)
        request = encode_read_request(start_addr, count, txn.transaction_id)

        session.send(request)
        response = session.receive(self.recv_buffer_bytes)
        self.stats['reads'] += 1
        logger.debug(f"TXN {txn.transaction_id} FC03 addr={start_addr} count={txn.count} "
                     f"expect={txn.expected_byte_count}B "
                     f"tx={request.hex()} rx={response.hex()}")

        try:
            return decode_read_response(response, txn.transaction_id, txn.count)
        except DecodeError as e:
            self.stats['decode_errors'] += 1
            logger.warning(f"TXN {txn.transaction_id} FC03 rejected: {e}")
            raise

    def issue_write(self, session: ConnectionSession, address: int, value: int) -> None:
        """
        Write a single holding register (FC06).

        The acknowledgment must carry the same transaction ID and echo the
        address and value.

        Raises:
            ValueError: address or value out of range (no ID consumed)
            ModbusConnectionError: transport failure
            DecodeError: malformed, mismatched or exception response
        """
        _check_u16("address", address)
        _check_u16("value", value)

        txn = self._begin(FunctionCode.WRITE_SINGLE_REGISTER, address, value=value)
        request = encode_write_request(address, value, txn.transaction_id)

        session.send(request)
        response = session.receive(self.recv_buffer_bytes)
        self.stats['writes'] += 1
        logger.debug(f"TXN {txn.transaction_id} FC06 addr={address} value={value} "
                     f"tx={request.hex()} rx={response.hex()}")

        try:
            decode_write_response(response,
                                  expected_transaction_id=txn.transaction_id,
                                  expected_address=address,
                                  expected_value=value)
        except DecodeError as e:
            self.stats['decode_errors'] += 1
            logger.warning(f"TXN {txn.transaction_id} FC06 rejected: {e}")
            raise

    def get_stats(self):
        return self.stats.copy()
