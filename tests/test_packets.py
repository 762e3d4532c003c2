import pytest

from motionctl.packets import (
    COMMAND_START_BYTE,
    MAX_DATA_LENGTH,
    RESPONSE_START_BYTE,
    CommandPacket,
    CommandType,
    PacketReceiver,
    ResponsePacket,
    ResponseStatus,
    checksum,
    find_packet,
)


def test_checksum_of_empty_is_zero():
    assert checksum(b"") == 0


def test_checksum_of_repeated_pair_cancels():
    assert checksum(bytes([0x5A, 0x5A])) == 0
    assert checksum(bytes([0x12])) == 0x12


def test_command_type_values():
    assert CommandType(0x02) is CommandType.MOTION
    assert CommandType.DEBUG == 0x05


def test_response_status_values():
    assert ResponseStatus(5) is ResponseStatus.MOTOR_NOT_FOUND
    assert ResponseStatus.SUCCESS == 0


def test_command_packet_wire_bytes_empty():
    packet = CommandPacket(CommandType.SYSTEM, 0x01)
    assert packet.to_bytes() == bytes([0xAA, 0x01, 0x01, 0x00, 0xAA])


def test_command_packet_bytes_checksum_invariant():
    packet = CommandPacket(CommandType.MOTION, 0x03, bytes(range(13)))
    raw = packet.to_bytes()
    assert raw[0] == COMMAND_START_BYTE
    assert raw[3] == 13
    assert len(raw) == 5 + 13
    assert checksum(raw) == 0
    assert raw[-1] == packet.checksum


def test_response_packet_bytes():
    response = ResponsePacket(CommandType.STATUS, 0x02, ResponseStatus.SUCCESS, b"\x01\x02\x03")
    raw = response.to_bytes()
    assert raw[0] == RESPONSE_START_BYTE
    assert raw[1:5] == bytes([0x03, 0x02, 0x00, 0x03])
    assert raw[5:8] == b"\x01\x02\x03"
    assert checksum(raw) == 0
    assert response.ok


def test_response_error_not_ok():
    response = ResponsePacket(1, 9, ResponseStatus.UNKNOWN_COMMAND)
    assert not response.ok
    assert response.to_bytes()[3] == 3


def test_data_too_long_rejected():
    with pytest.raises(ValueError):
        CommandPacket(1, 1, bytes(MAX_DATA_LENGTH + 1))
    with pytest.raises(ValueError):
        ResponsePacket(1, 1, 0, bytes(MAX_DATA_LENGTH + 1))


def test_byte_fields_range_checked():
    with pytest.raises(ValueError):
        CommandPacket(256, 1)
    with pytest.raises(ValueError):
        ResponsePacket(1, 1, -1)


def test_find_packet_round_trip():
    packet = CommandPacket(CommandType.CONFIG, 0x06, b"\x00\x01\x02\x03\x04\x05\x06\x07\x08\x01")
    raw = packet.to_bytes()
    assert find_packet(raw) == (packet, len(raw))


def test_find_packet_skips_leading_garbage():
    packet = CommandPacket(CommandType.MOTION, 0x01, b"\x02")
    raw = b"\x00\x11" + packet.to_bytes()
    found = find_packet(raw)
    assert found == (packet, len(raw))


def test_find_packet_incomplete_returns_none():
    raw = CommandPacket(2, 1, b"\x00\x01").to_bytes()
    assert find_packet(raw[:-1]) is None
    assert find_packet(raw[:3]) is None
    assert find_packet(b"") is None


def test_find_packet_skips_bad_checksum():
    good = CommandPacket(3, 2, b"\x01")
    bad = bytearray(CommandPacket(3, 1, b"\x00").to_bytes())
    bad[-1] ^= 0xFF
    raw = bytes(bad) + good.to_bytes()
    found = find_packet(raw)
    assert found is not None
    assert found[0] == good
    assert found[1] == len(raw)


def test_receiver_returns_packets_in_order():
    first = CommandPacket(1, 1)
    second = CommandPacket(2, 5, b"\x03")
    receiver = PacketReceiver()
    assert receiver.feed(first.to_bytes() + second.to_bytes()) == [first, second]
    assert receiver.pending == b""


def test_receiver_across_calls():
    packet = CommandPacket(5, 1, b"\x04")
    raw = packet.to_bytes()
    receiver = PacketReceiver()
    assert receiver.feed(raw[:2]) == []
    assert receiver.pending == raw[:2]
    assert receiver.feed(raw[2:]) == [packet]


def test_receiver_drops_bytes_when_full():
    receiver = PacketReceiver(capacity=4)
    assert receiver.feed(b"\x01\x02\x03\x04\x05\x06") == []
    assert receiver.pending == b"\x01\x02\x03\x04"


def test_receiver_clear():
    receiver = PacketReceiver()
    receiver.feed(b"\xaa\x01")
    receiver.clear()
    assert receiver.pending == b""
    packet = CommandPacket(1, 2)
    assert receiver.feed(packet.to_bytes()) == [packet]


def test_receiver_capacity_must_be_positive():
    with pytest.raises(ValueError):
        PacketReceiver(0)