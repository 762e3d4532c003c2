"""Binary command and response packets, and a receiver that frames them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from functools import reduce
from operator import xor
from typing import Iterable, Optional

COMMAND_START_BYTE = 0xAA
RESPONSE_START_BYTE = 0xBB
MAX_DATA_LENGTH = 32
RECEIVE_CAPACITY = 64

_COMMAND_HEADER_SIZE = 4


class CommandType(IntEnum):
    SYSTEM = 0x01
    MOTION = 0x02
    STATUS = 0x03
    CONFIG = 0x04
    DEBUG = 0x05


class ResponseStatus(IntEnum):
    SUCCESS = 0
    ERROR = 1
    UNAVAILABLE = 2
    UNKNOWN_COMMAND = 3
    INVALID_PARAMETERS = 4
    MOTOR_NOT_FOUND = 5


def checksum(data: Iterable[int]) -> int:
    """XOR of all bytes in ``data``."""
    return reduce(xor, bytes(data), 0)


def _check_byte(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must fit in one byte: {value}")


def _check_data(data: bytes) -> None:
    if len(data) > MAX_DATA_LENGTH:
        raise ValueError(f"Packet data longer than {MAX_DATA_LENGTH} bytes: {len(data)}")


@dataclass(frozen=True)
class CommandPacket:
    """A command: start byte, type, id, length, data, checksum."""

    command_type: int
    command_id: int
    data: bytes = b""

    def __post_init__(self) -> None:
        _check_byte("command_type", int(self.command_type))
        _check_byte("command_id", self.command_id)
        object.__setattr__(self, "data", bytes(self.data))
        _check_data(self.data)

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def checksum(self) -> int:
        return checksum(self._body())

    def _body(self) -> bytes:
        header = bytes((COMMAND_START_BYTE, int(self.command_type), self.command_id, self.length))
        return header + self.data

    def to_bytes(self) -> bytes:
        body = self._body()
        return body + bytes((checksum(body),))


@dataclass(frozen=True)
class ResponsePacket:
    """A response: start byte, type, id, status, length, data, checksum."""

    command_type: int
    command_id: int
    status: int = ResponseStatus.SUCCESS
    data: bytes = b""

    def __post_init__(self) -> None:
        _check_byte("command_type", int(self.command_type))
        _check_byte("command_id", self.command_id)
        _check_byte("status", int(self.status))
        object.__setattr__(self, "data", bytes(self.data))
        _check_data(self.data)

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def ok(self) -> bool:
        return int(self.status) == ResponseStatus.SUCCESS

    def to_bytes(self) -> bytes:
        header = bytes(
            (
                RESPONSE_START_BYTE,
                int(self.command_type),
                self.command_id,
                int(self.status),
                self.length,
            )
        )
        body = header + self.data
        return body + bytes((checksum(body),))


def find_packet(buffer: bytes) -> Optional[tuple[CommandPacket, int]]:
    """Find the first valid command packet in ``buffer``.

    Returns the packet and the offset just past it, or None. Scanning stops at
    the first start byte whose packet is still incomplete; start bytes whose
    checksum does not match are skipped.
    """
    buffer = bytes(buffer)
    size = len(buffer)
    start = buffer.find(COMMAND_START_BYTE)
    while start >= 0:
        if start + _COMMAND_HEADER_SIZE > size:
            return None
        command_type, command_id, length = buffer[start + 1 : start + 4]
        end = start + _COMMAND_HEADER_SIZE + length + 1
        if end > size:
            return None
        if length <= MAX_DATA_LENGTH:
            body = buffer[start : end - 1]
            if checksum(body) == buffer[end - 1]:
                data = body[_COMMAND_HEADER_SIZE:]
                return CommandPacket(command_type, command_id, data), end
        start = buffer.find(COMMAND_START_BYTE, start + 1)
    return None


class PacketReceiver:
    """Accumulates incoming bytes and yields complete command packets."""

    def __init__(self, capacity: int = RECEIVE_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("Receive capacity must be positive")
        self.capacity = capacity
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet consumed by a packet."""
        return bytes(self._buffer)

    def feed(self, data: Iterable[int]) -> list[CommandPacket]:
        """Take in bytes and return the packets completed by them, in order.

        Bytes arriving while the buffer is full are dropped.
        """
        packets = []
        for byte in bytes(data):
            if len(self._buffer) < self.capacity:
                self._buffer.append(byte)
            found = find_packet(self._buffer)
            if found is not None:
                packet, end = found
                del self._buffer[:end]
                packets.append(packet)
        return packets

    def clear(self) -> None:
        self._buffer.clear()