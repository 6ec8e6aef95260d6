"""
Test Suite for the Modbus TCP Client Stack
==========================================

Tests validate:
    - FC03/FC06 frame encoding (bit-exact)
    - Response validation order and error classification
    - Transaction ID assignment and wraparound
    - Connection session state machine
    - Telemetry register map decoding
"""

import unittest
import socket
import struct
import sys
from pathlib import Path

# Add parent directories to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from protocols.modbus.connection import ConnectionSession, SessionState
from protocols.modbus.errors import (
    ByteCountMismatch,
    DecodeError,
    InvalidLength,
    ModbusConnectionError,
    ProtocolException,
    TransactionMismatch,
    WriteEchoMismatch,
)
from protocols.modbus.messages import (
    decode_header,
    decode_read_response,
    decode_write_response,
    encode_exception_response,
    encode_read_request,
    encode_read_response,
    encode_write_request,
    encode_write_response,
)
from protocols.modbus.register_map import (
    RegisterBlock,
    encode_position,
    split_timestamp,
    to_signed16,
    zone_label,
)
from protocols.modbus.transaction import TransactionManager


TIMESTAMP = 1700000000

# Scenario A telemetry block
SCENARIO_A = [2, 1, 1, 7, 955, encode_position(-0.5), encode_position(-0.5), 3,
              TIMESTAMP >> 16, TIMESTAMP & 0xFFFF]


def request_transaction_id(request: bytes) -> int:
    return struct.unpack('>H', request[:2])[0]


def reply_registers(values):
    """Reply callable answering any FC03 request with `values`."""
    return lambda request: encode_read_response(request_transaction_id(request), values)


def reply_write_echo(request: bytes) -> bytes:
    return request[:12]


class FakeSocket:
    """
    Scripted stand-in for socket.socket.

    `replies` entries are bytes, a callable taking the last request, or an
    exception instance raised from recv().
    """

    def __init__(self, replies=None, connect_error=None, send_limit=None):
        self.replies = list(replies or [])
        self.connect_error = connect_error
        self.send_limit = send_limit
        self.sent = []
        self.timeout = None
        self.address = None
        self.closed = False

    def __call__(self, family=socket.AF_INET, type_=socket.SOCK_STREAM):
        return self

    def settimeout(self, timeout):
        self.timeout = timeout

    def connect(self, address):
        self.address = address
        if self.connect_error is not None:
            raise self.connect_error

    def send(self, data):
        self.sent.append(bytes(data))
        if self.send_limit is not None:
            return min(len(data), self.send_limit)
        return len(data)

    def recv(self, max_bytes):
        if not self.replies:
            return b""
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(self.sent[-1])
        return reply[:max_bytes]

    def close(self):
        self.closed = True


def connected_session(fake: FakeSocket) -> ConnectionSession:
    return ConnectionSession("10.0.0.5", 8888, socket_factory=fake).connect()


class TestFrameEncoding(unittest.TestCase):
    """Test request frame layout"""

    def test_read_request_layout(self):
        """FC03 request is 12 bytes with protocol 0, length 6, unit 0xFF"""
        frame = encode_read_request(0, 10, 1)
        self.assertEqual(frame, bytes.fromhex("000100000006ff030000000a"))

    def test_write_request_layout(self):
        """FC06 request carries address and value big-endian"""
        frame = encode_write_request(0x0005, 0x1234, 0x0102)
        self.assertEqual(len(frame), 12)
        self.assertEqual(frame, bytes.fromhex("010200000006ff0600051234"))

    def test_transaction_id_big_endian(self):
        """Transaction ID occupies bytes 0-1, high byte first"""
        for txn_id in (0, 1, 0x00FF, 0x0100, 0xABCD, 0xFFFF):
            frame = encode_read_request(100, 3, txn_id)
            self.assertEqual(frame[0], txn_id >> 8)
            self.assertEqual(frame[1], txn_id & 0xFF)

    def test_header_decode(self):
        header = decode_header(encode_read_request(1, 2, 0x1234))
        self.assertEqual(header.transaction_id, 0x1234)
        self.assertEqual(header.protocol_id, 0)
        self.assertEqual(header.length, 6)
        self.assertEqual(header.unit_id, 0xFF)

    def test_header_decode_short(self):
        with self.assertRaises(InvalidLength):
            decode_header(bytes(6))


class TestReadResponseDecoding(unittest.TestCase):
    """Test FC03 response validation"""

    def test_recovers_register_values(self):
        """Well-formed responses decode to exactly `count` values"""
        for count in (1, 2, 10, 64, 125):
            values = [(i * 523) & 0xFFFF for i in range(count)]
            response = encode_read_response(42, values)
            self.assertEqual(decode_read_response(response, 42, count), values)

    def test_scenario_a_block(self):
        response = encode_read_response(1, SCENARIO_A)
        self.assertEqual(decode_read_response(response, 1, 10), SCENARIO_A)

    def test_short_response(self):
        """8-byte response is an invalid length"""
        with self.assertRaises(InvalidLength):
            decode_read_response(bytes(8), 1, 10)

    def test_empty_response(self):
        with self.assertRaises(InvalidLength):
            decode_read_response(b"", 1, 10)

    def test_transaction_mismatch(self):
        """A different transaction ID is never accepted"""
        response = encode_read_response(7, SCENARIO_A)
        with self.assertRaises(TransactionMismatch) as ctx:
            decode_read_response(response, 8, 10)
        self.assertEqual(ctx.exception.expected, 8)
        self.assertEqual(ctx.exception.received, 7)

    def test_transaction_checked_before_exception_flag(self):
        response = encode_exception_response(3, 3, 0x02)
        with self.assertRaises(TransactionMismatch):
            decode_read_response(response, 4, 10)

    def test_byte_count_mismatch(self):
        """byte_count 18 for a 10-register request, all 20 bytes present"""
        response = bytearray(encode_read_response(5, SCENARIO_A))
        response[8] = 18
        with self.assertRaises(ByteCountMismatch) as ctx:
            decode_read_response(bytes(response), 5, 10)
        self.assertEqual(ctx.exception.expected, 20)
        self.assertEqual(ctx.exception.received, 18)

    def test_exception_frame(self):
        """High bit in function byte yields the following exception code"""
        response = encode_exception_response(9, 3, 0x02)
        with self.assertRaises(ProtocolException) as ctx:
            decode_read_response(response, 9, 10)
        self.assertEqual(ctx.exception.exception_code, 0x02)
        self.assertEqual(ctx.exception.exception_name, "ILLEGAL_DATA_ADDRESS")

    def test_exception_frame_ignores_byte_count_and_length(self):
        response = encode_exception_response(9, 3, 0x04) + bytes(40)
        with self.assertRaises(ProtocolException) as ctx:
            decode_read_response(response, 9, 10)
        self.assertEqual(ctx.exception.exception_code, 0x04)

    def test_truncated_payload(self):
        """Byte count promises more data than was received"""
        response = encode_read_response(5, SCENARIO_A)[:-4]
        with self.assertRaises(InvalidLength):
            decode_read_response(response, 5, 10)

    def test_errors_are_decode_errors(self):
        for error in (InvalidLength, TransactionMismatch, ByteCountMismatch, ProtocolException):
            self.assertTrue(issubclass(error, DecodeError))


class TestWriteResponseDecoding(unittest.TestCase):
    """Test FC06 acknowledgment checks"""

    def test_length_only_contract(self):
        """Bytes-only call accepts any 12-byte frame"""
        decode_write_response(bytes(12))

    def test_length_only_short(self):
        with self.assertRaises(InvalidLength):
            decode_write_response(bytes(11))

    def test_hardened_echo_accepted(self):
        response = encode_write_response(11, 4, 500)
        decode_write_response(response, expected_transaction_id=11,
                              expected_address=4, expected_value=500)

    def test_hardened_transaction_mismatch(self):
        response = encode_write_response(11, 4, 500)
        with self.assertRaises(TransactionMismatch):
            decode_write_response(response, expected_transaction_id=12)

    def test_hardened_echo_mismatch(self):
        response = encode_write_response(11, 4, 500)
        with self.assertRaises(WriteEchoMismatch) as ctx:
            decode_write_response(response, expected_transaction_id=11,
                                  expected_address=4, expected_value=501)
        self.assertEqual(ctx.exception.field, "value")

    def test_hardened_exception_frame(self):
        response = encode_exception_response(11, 6, 0x03)
        with self.assertRaises(ProtocolException) as ctx:
            decode_write_response(response, expected_transaction_id=11)
        self.assertEqual(ctx.exception.exception_code, 0x03)


class TestTransactionManager(unittest.TestCase):
    """Test transaction ID ownership and round trips"""

    def test_initial_id(self):
        self.assertEqual(TransactionManager().next_transaction_id, 1)

    def test_monotonic_ids(self):
        """After N requests the next ID is (1 + N) mod 65536"""
        fake = FakeSocket([reply_registers([0])] * 5 + [reply_write_echo] * 3)
        session = connected_session(fake)
        manager = TransactionManager()

        for _ in range(5):
            manager.issue_read(session, 0, 1)
        for _ in range(3):
            manager.issue_write(session, 1, 1)

        self.assertEqual(manager.next_transaction_id, 9)
        self.assertEqual([request_transaction_id(r) for r in fake.sent], list(range(1, 9)))

    def test_wraparound(self):
        fake = FakeSocket([reply_registers([0])] * 3)
        session = connected_session(fake)
        manager = TransactionManager(initial_transaction_id=65534)

        for _ in range(3):
            manager.issue_read(session, 0, 1)

        self.assertEqual([request_transaction_id(r) for r in fake.sent], [65534, 65535, 0])
        self.assertEqual(manager.next_transaction_id, 1)

    def test_read_round_trip(self):
        fake = FakeSocket([reply_registers(SCENARIO_A)])
        session = connected_session(fake)

        values = TransactionManager().issue_read(session, 0, 10)

        self.assertEqual(values, SCENARIO_A)
        self.assertEqual(fake.sent, [encode_read_request(0, 10, 1)])

    def test_mismatch_surfaces_and_consumes_id(self):
        """No retry: the mismatch propagates and the next request moves on"""
        stale = encode_read_response(99, SCENARIO_A)
        fake = FakeSocket([stale])
        session = connected_session(fake)
        manager = TransactionManager()

        with self.assertRaises(TransactionMismatch):
            manager.issue_read(session, 0, 10)

        self.assertEqual(len(fake.sent), 1)
        self.assertEqual(manager.next_transaction_id, 2)
        self.assertEqual(manager.stats['decode_errors'], 1)

    def test_count_limits(self):
        """Out-of-range counts are rejected before an ID is consumed"""
        fake = FakeSocket()
        session = connected_session(fake)
        manager = TransactionManager()

        for count in (0, 126):
            with self.assertRaises(ValueError):
                manager.issue_read(session, 0, count)

        self.assertEqual(fake.sent, [])
        self.assertEqual(manager.next_transaction_id, 1)
        self.assertIsNone(manager.last_transaction)

    def test_byte_count_follows_transaction(self):
        """The recorded transaction sets the byte count the reply must carry"""
        short = encode_read_response(1, SCENARIO_A[:5])
        fake = FakeSocket([short])
        session = connected_session(fake)
        manager = TransactionManager()

        with self.assertRaises(ByteCountMismatch) as ctx:
            manager.issue_read(session, 0, 10)

        txn = manager.last_transaction
        self.assertEqual(txn.transaction_id, 1)
        self.assertEqual(txn.count, 10)
        self.assertEqual(txn.expected_byte_count, 20)
        self.assertEqual(ctx.exception.expected, txn.expected_byte_count)
        self.assertEqual(ctx.exception.received, 10)

    def test_write_round_trip(self):
        fake = FakeSocket([reply_write_echo])
        session = connected_session(fake)

        TransactionManager().issue_write(session, 2, 1)

        self.assertEqual(fake.sent, [encode_write_request(2, 1, 1)])

    def test_write_echo_mismatch(self):
        fake = FakeSocket([lambda request: encode_write_response(1, 2, 0)])
        session = connected_session(fake)

        with self.assertRaises(WriteEchoMismatch):
            TransactionManager().issue_write(session, 2, 1)

    def test_write_value_range(self):
        session = connected_session(FakeSocket())
        with self.assertRaises(ValueError):
            TransactionManager().issue_write(session, 0, 70000)

    def test_connection_error_propagates(self):
        fake = FakeSocket([socket.timeout("timed out")])
        session = connected_session(fake)

        with self.assertRaises(ModbusConnectionError):
            TransactionManager().issue_read(session, 0, 10)


class TestConnectionSession(unittest.TestCase):
    """Test connection session state machine"""

    def test_initial_state(self):
        session = ConnectionSession("127.0.0.1", 8888)
        self.assertEqual(session.state, SessionState.DISCONNECTED)
        self.assertFalse(session.is_connected())

    def test_connect_applies_timeout(self):
        fake = FakeSocket()
        session = ConnectionSession("127.0.0.1", 8888, socket_factory=fake)

        self.assertIs(session.connect(), session)
        self.assertEqual(session.state, SessionState.CONNECTED)
        self.assertEqual(fake.timeout, 5.0)
        self.assertEqual(fake.address, ("127.0.0.1", 8888))

    def test_connect_failure(self):
        fake = FakeSocket(connect_error=ConnectionRefusedError(111, "Connection refused"))
        session = ConnectionSession("127.0.0.1", 8888, socket_factory=fake)

        with self.assertRaises(ModbusConnectionError):
            session.connect()

        self.assertEqual(session.state, SessionState.DISCONNECTED)
        self.assertTrue(fake.closed)

    def test_connect_port_out_of_range(self):
        """A port beyond 65535 fails as a connection error and releases the socket"""
        fake = FakeSocket(connect_error=OverflowError("connect(): port must be 0-65535."))
        session = ConnectionSession("127.0.0.1", 70000, socket_factory=fake)

        with self.assertRaises(ModbusConnectionError):
            session.connect()

        self.assertEqual(session.state, SessionState.DISCONNECTED)
        self.assertTrue(fake.closed)

    def test_send_requires_connection(self):
        session = ConnectionSession("127.0.0.1", 8888, socket_factory=FakeSocket())
        with self.assertRaises(ModbusConnectionError):
            session.send(b"\x00" * 12)
        with self.assertRaises(ModbusConnectionError):
            session.receive(256)

    def test_short_write(self):
        """A partial send is a connection error, not retried"""
        fake = FakeSocket(send_limit=5)
        session = connected_session(fake)

        with self.assertRaises(ModbusConnectionError):
            session.send(encode_read_request(0, 10, 1))
        self.assertEqual(len(fake.sent), 1)

    def test_receive_timeout(self):
        session = connected_session(FakeSocket([socket.timeout("timed out")]))
        with self.assertRaises(ModbusConnectionError):
            session.receive(256)

    def test_receive_error(self):
        session = connected_session(FakeSocket([ConnectionResetError(104, "reset")]))
        with self.assertRaises(ModbusConnectionError):
            session.receive(256)

    def test_zero_bytes_passed_through(self):
        """Empty reads are reported by the codec, not the session"""
        session = connected_session(FakeSocket([b""]))
        data = session.receive(256)
        self.assertEqual(data, b"")
        with self.assertRaises(InvalidLength):
            decode_read_response(data, 1, 10)

    def test_disconnect_idempotent(self):
        fake = FakeSocket()
        session = connected_session(fake)

        session.disconnect()
        session.disconnect()

        self.assertTrue(fake.closed)
        self.assertEqual(session.state, SessionState.DISCONNECTED)
        self.assertEqual(session.stats['disconnections'], 1)

    def test_context_manager_closes(self):
        fake = FakeSocket()
        with ConnectionSession("127.0.0.1", 8888, socket_factory=fake) as session:
            self.assertTrue(session.is_connected())
        self.assertTrue(fake.closed)
        self.assertFalse(session.is_connected())


class TestRegisterMap(unittest.TestCase):
    """Test telemetry block mapping"""

    def test_scenario_a_fields(self):
        block = RegisterBlock.from_registers(SCENARIO_A)

        self.assertEqual(block.drone_count, 2)
        self.assertEqual(block.threat_level, 1)
        self.assertEqual(block.fire_authorized, 1)
        self.assertEqual(block.detection_id, 7)
        self.assertEqual(block.confidence, 955)
        self.assertAlmostEqual(block.confidence_percent, 95.5)
        self.assertAlmostEqual(block.x, -0.5)
        self.assertAlmostEqual(block.y, -0.5)
        self.assertEqual(block.zone_code, 3)
        self.assertEqual(block.zone_label, "EAST")
        self.assertEqual(block.threat_label, "LOW")
        self.assertEqual(block.timestamp, TIMESTAMP)
        self.assertTrue(block.fire_alert)

    def test_no_alert_without_drones(self):
        block = RegisterBlock.from_registers([0, 0, 1, 0, 0, 0, 0, 0, 0, 0])
        self.assertFalse(block.fire_alert)
        self.assertIsNone(block.detected_at)

    def test_exactly_ten_registers(self):
        with self.assertRaises(ValueError):
            RegisterBlock.from_registers(list(range(9)))
        with self.assertRaises(ValueError):
            RegisterBlock.from_registers(list(range(11)))

    def test_register_order_preserved(self):
        values = list(range(100, 110))
        self.assertEqual(RegisterBlock.from_registers(values).to_registers(), values)

    def test_signed_positions(self):
        self.assertEqual(encode_position(-0.5), 65036)
        self.assertEqual(to_signed16(0xFFFF), -1)
        self.assertEqual(to_signed16(0x7FFF), 32767)

    def test_unknown_labels(self):
        self.assertEqual(zone_label(9), "UNKNOWN")
        block = RegisterBlock.from_registers([1, 7, 0, 0, 0, 0, 0, 42, 0, 0])
        self.assertEqual(block.threat_label, "UNKNOWN")
        self.assertEqual(block.zone_label, "UNKNOWN")

    def test_split_timestamp(self):
        self.assertEqual(split_timestamp(TIMESTAMP), (TIMESTAMP >> 16, TIMESTAMP & 0xFFFF))


if __name__ == '__main__':
    # Run tests with verbose output
    unittest.main(verbosity=2)
