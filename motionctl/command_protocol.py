"""Binary command protocol: decodes command packets and answers with responses."""

from __future__ import annotations

import struct
from typing import Any, Callable, Mapping, Optional

from motionctl.packets import (
    MAX_DATA_LENGTH,
    CommandPacket,
    CommandType,
    PacketReceiver,
    ResponsePacket,
    ResponseStatus,
)
from motionctl.system_manager import DEFAULT_MOTION

DEFAULT_HOME_VELOCITY = DEFAULT_MOTION[0] / 2.0

# Reason code handed to the system manager when an emergency stop is commanded.
EMERGENCY_STOP_PRESSED = 1

# Placeholder limits reported for motors that do not expose their soft limits.
DEFAULT_SOFT_LIMITS = (-1000000, 1000000, True)

MAX_REPORTED_POSITIONS = 6
MAX_REPORTED_LOGS = 5
MAX_LOG_MESSAGE_BYTES = 20
MAX_LOG_LEVEL = 5

_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_F32 = struct.Struct("<f")

Handler = Callable[[bytes], bytes]


def _as_int(value: Any) -> int:
    return int(getattr(value, "value", value))


class CommandFailure(Exception):
    """A command could not be carried out.

    ``status`` gives the detailed reason; ``data`` is what the response still carries.
    """

    def __init__(self, status: ResponseStatus, data: bytes = b"", message: str = "") -> None:
        self.status = ResponseStatus(status)
        self.data = bytes(data)
        super().__init__(message or self.status.name)


def _require(data: bytes, size: int) -> None:
    if len(data) < size:
        raise CommandFailure(
            ResponseStatus.INVALID_PARAMETERS, message=f"Need {size} data bytes, got {len(data)}"
        )


class CommandProtocol:
    """Reads command packets from a transport, executes them and writes responses.

    The transport needs ``read()`` returning the bytes available and ``write(data)``.
    Any failed command is answered with status ERROR; the detailed reason is kept in
    ``last_error``.
    """

    def __init__(
        self,
        system: Any,
        transport: Any = None,
        default_home_velocity: float = DEFAULT_HOME_VELOCITY,
    ) -> None:
        self.system = system
        self.transport = transport
        self.default_home_velocity = default_home_velocity
        self.emergency_stop_reason: Any = EMERGENCY_STOP_PRESSED
        self.last_error: Optional[CommandFailure] = None
        self._enabled = False
        self._receiver = PacketReceiver()

        self._system_handlers: Mapping[int, Handler] = {
            0x01: self._system_status,
            0x02: self._system_reset,
            0x03: self._system_save,
            0x04: self._system_load,
            0x05: self._system_estop,
            0x06: self._system_reset_estop,
        }
        self._motion_handlers: Mapping[int, Callable[[Any, bytes], bytes]] = {
            0x01: self._motion_enable,
            0x02: self._motion_disable,
            0x03: self._motion_move,
            0x04: self._motion_velocity,
            0x05: self._motion_stop,
            0x06: self._motion_stop,
            0x07: self._motion_home,
            0x08: self._motion_set_position,
        }
        self._status_handlers: Mapping[int, Callable[[Any, bytes], bytes]] = {
            0x01: self._status_motor,
            0x02: self._status_position,
            0x03: self._status_velocity,
            0x04: self._status_all_positions,
            0x05: self._status_metrics,
        }
        self._config_handlers: Mapping[int, Callable[[Any, bytes], bytes]] = {
            0x01: self._config_get_pid,
            0x02: self._config_set_pid,
            0x03: self._config_get_profile,
            0x04: self._config_set_profile,
            0x05: self._config_get_limits,
            0x06: self._config_set_limits,
        }
        self._debug_handlers: Mapping[int, Callable[[Any, bytes], bytes]] = {
            0x01: self._debug_set_level,
            0x02: self._debug_logs,
            0x03: self._debug_clear_logs,
            0x04: self._debug_enable_binary,
            0x05: self._debug_disable_binary,
        }

    def initialize(self) -> bool:
        return True

    # ------------------------------------------------------------------ framing

    def process_commands(self) -> list[ResponsePacket]:
        """Read what the transport has and answer every complete packet in it."""
        if not self._enabled or self.transport is None:
            return []
        responses = []
        for byte in bytes(self.transport.read() or b""):
            for packet in self._receiver.feed(bytes((byte,))):
                responses.append(self.process_packet(packet))
        return responses

    def process_packet(self, packet: CommandPacket) -> ResponsePacket:
        """Execute ``packet``, send the response and return it."""
        try:
            data = self._dispatch(packet)
        except CommandFailure as failure:
            self.last_error = failure
            status, data = ResponseStatus.ERROR, failure.data
        else:
            self.last_error = None
            status = ResponseStatus.SUCCESS
        response = ResponsePacket(packet.command_type, packet.command_id, status, data)
        self.send_response(response)
        return response

    def send_response(self, response: ResponsePacket) -> bytes:
        """Encode ``response`` and write it to the transport; returns the bytes."""
        encoded = response.to_bytes()
        if self.transport is not None:
            self.transport.write(encoded)
        return encoded

    def enable_binary_protocol(self, enable: bool) -> None:
        self._enabled = bool(enable)
        self._receiver.clear()

    @property
    def binary_protocol_enabled(self) -> bool:
        return self._enabled

    # ---------------------------------------------------------------- dispatch

    def _dispatch(self, packet: CommandPacket) -> bytes:
        try:
            command_type = CommandType(packet.command_type)
        except ValueError:
            raise CommandFailure(
                ResponseStatus.ERROR, message=f"Unknown command type {packet.command_type}"
            ) from None

        data = packet.data
        if command_type is CommandType.SYSTEM:
            handler = self._lookup(self._system_handlers, packet.command_id)
            self._require_system()
            return handler(data)

        self._require_system()
        if command_type is CommandType.DEBUG:
            context = getattr(self.system, "logger", None)
            table: Mapping[int, Callable[[Any, bytes], bytes]] = self._debug_handlers
        else:
            context = getattr(self.system, "motor_manager", None)
            table = {
                CommandType.MOTION: self._motion_handlers,
                CommandType.STATUS: self._status_handlers,
                CommandType.CONFIG: self._config_handlers,
            }[command_type]
        if context is None:
            raise CommandFailure(ResponseStatus.UNAVAILABLE, message="Component not available")
        return self._lookup(table, packet.command_id)(context, data)

    @staticmethod
    def _lookup(table: Mapping[int, Any], command_id: int) -> Any:
        handler = table.get(command_id)
        if handler is None:
            raise CommandFailure(
                ResponseStatus.UNKNOWN_COMMAND, message=f"Unknown command id {command_id}"
            )
        return handler

    def _require_system(self) -> None:
        if self.system is None:
            raise CommandFailure(ResponseStatus.UNAVAILABLE, message="System not available")

    @staticmethod
    def _motor(manager: Any, data: bytes) -> Any:
        motor = manager.get_motor(data[0])
        if motor is None:
            raise CommandFailure(ResponseStatus.MOTOR_NOT_FOUND, message=f"No motor {data[0]}")
        return motor

    @staticmethod
    def _ensure_enabled(motor: Any) -> None:
        if not motor.is_enabled:
            motor.enable()

    # ----------------------------------------------------------- system commands

    def _system_status(self, data: bytes) -> bytes:
        system = self.system
        header = bytes((_as_int(system.state), int(bool(system.is_emergency_stop))))
        return header + _U32.pack(system.uptime_ms & 0xFFFFFFFF)

    def _system_reset(self, data: bytes) -> bytes:
        self.system.reset()
        return b""

    @staticmethod
    def _outcome(success: Any) -> bytes:
        if not success:
            raise CommandFailure(ResponseStatus.ERROR, b"\x00")
        return b"\x01"

    def _system_save(self, data: bytes) -> bytes:
        return self._outcome(self.system.save_configuration())

    def _system_load(self, data: bytes) -> bytes:
        return self._outcome(self.system.load_configuration())

    def _system_estop(self, data: bytes) -> bytes:
        self.system.trigger_emergency_stop(self.emergency_stop_reason)
        return b""

    def _system_reset_estop(self, data: bytes) -> bytes:
        return self._outcome(self.system.reset_emergency_stop())

    # ----------------------------------------------------------- motion commands

    def _motion_enable(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        self._motor(manager, data).enable()
        return b""

    def _motion_disable(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        self._motor(manager, data).disable()
        return b""

    def _motion_move(self, manager: Any, data: bytes) -> bytes:
        _require(data, 13)
        (position,) = _I32.unpack_from(data, 1)
        velocity, acceleration = struct.unpack_from("<ff", data, 5)
        deceleration = _F32.unpack_from(data, 13)[0] if len(data) >= 17 else acceleration
        motor = self._motor(manager, data)
        self._ensure_enabled(motor)
        motor.move_to_position(position, velocity, acceleration, deceleration)
        return b""

    def _motion_velocity(self, manager: Any, data: bytes) -> bytes:
        _require(data, 9)
        velocity, acceleration = struct.unpack_from("<ff", data, 1)
        motor = self._motor(manager, data)
        self._ensure_enabled(motor)
        motor.set_target_velocity(velocity, acceleration)
        return b""

    def _motion_stop(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        self._motor(manager, data).emergency_stop()
        return b""

    def _motion_home(self, manager: Any, data: bytes) -> bytes:
        _require(data, 2)
        (direction,) = struct.unpack_from("<b", data, 1)
        velocity = _F32.unpack_from(data, 2)[0] if len(data) >= 6 else self.default_home_velocity
        motor = self._motor(manager, data)
        self._ensure_enabled(motor)
        motor.start_homing(direction, velocity)
        return b""

    def _motion_set_position(self, manager: Any, data: bytes) -> bytes:
        _require(data, 5)
        (position,) = _I32.unpack_from(data, 1)
        self._motor(manager, data).set_position(position)
        return b""

    # ----------------------------------------------------------- status commands

    def _status_motor(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        motor = self._motor(manager, data)
        state = motor.state
        return bytes(
            (
                data[0],
                _as_int(state.status),
                _as_int(state.error),
                int(bool(motor.is_enabled)),
                int(bool(motor.is_moving)),
                int(bool(motor.is_homed)),
                int(bool(state.limit_min_triggered)),
                int(bool(state.limit_max_triggered)),
            )
        )

    def _status_position(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        motor = self._motor(manager, data)
        return bytes((data[0],)) + _I32.pack(motor.current_position)

    def _status_velocity(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        motor = self._motor(manager, data)
        return bytes((data[0],)) + _F32.pack(motor.current_velocity)

    def _status_all_positions(self, manager: Any, data: bytes) -> bytes:
        count = min(manager.motor_count, MAX_REPORTED_POSITIONS)
        entries = bytearray((count,))
        for index in range(count):
            motor = manager.get_motor(index)
            if motor is not None:
                entries.append(index)
                entries += _I32.pack(motor.current_position)
        return bytes(entries)

    def _status_metrics(self, manager: Any, data: bytes) -> bytes:
        system = self.system
        return struct.pack(
            "<ffII",
            system.cpu_usage(0),
            system.cpu_usage(1),
            system.free_memory & 0xFFFFFFFF,
            system.uptime_ms & 0xFFFFFFFF,
        )

    # ----------------------------------------------------------- config commands

    def _config_get_pid(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        pid = self._motor(manager, data).pid
        return bytes((data[0],)) + struct.pack("<ffff", pid.kp, pid.ki, pid.kd, pid.ff)

    def _config_set_pid(self, manager: Any, data: bytes) -> bytes:
        _require(data, 17)
        gains = struct.unpack_from("<ffff", data, 1)
        self._motor(manager, data).pid.set_gains(*gains)
        return b""

    def _config_get_profile(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        state = self._motor(manager, data).state
        return bytes((data[0],)) + struct.pack(
            "<ff", state.target_velocity, state.target_acceleration
        )

    def _config_set_profile(self, manager: Any, data: bytes) -> bytes:
        # The request is checked and acknowledged; motors keep their own profile.
        _require(data, 9)
        struct.unpack_from("<ff", data, 1)
        self._motor(manager, data)
        return b""

    def _config_get_limits(self, manager: Any, data: bytes) -> bytes:
        _require(data, 1)
        motor = self._motor(manager, data)
        minimum, maximum, enabled = getattr(motor, "soft_limits", None) or DEFAULT_SOFT_LIMITS
        return (
            bytes((data[0],)) + struct.pack("<ii", minimum, maximum) + bytes((int(bool(enabled)),))
        )

    def _config_set_limits(self, manager: Any, data: bytes) -> bytes:
        _require(data, 10)
        minimum, maximum = struct.unpack_from("<ii", data, 1)
        self._motor(manager, data).set_soft_limits(minimum, maximum, data[9] != 0)
        return b""

    # ------------------------------------------------------------ debug commands

    def _debug_set_level(self, logger: Any, data: bytes) -> bytes:
        _require(data, 1)
        level = data[0]
        if level > MAX_LOG_LEVEL:
            raise CommandFailure(
                ResponseStatus.INVALID_PARAMETERS, message=f"Invalid log level {level}"
            )
        logger.set_log_level(level)
        return b""

    def _debug_logs(self, logger: Any, data: bytes) -> bytes:
        """Up to five log entries, each level, timestamp, message length and message,
        as many as fit into one response."""
        chunks: list[bytes] = []
        used = 1
        for entry in list(logger.entries)[:MAX_REPORTED_LOGS]:
            message = str(entry.message).encode("utf-8")[:MAX_LOG_MESSAGE_BYTES]
            chunk = (
                bytes((_as_int(entry.level),))
                + _U32.pack(int(entry.timestamp) & 0xFFFFFFFF)
                + bytes((len(message),))
                + message
            )
            if used + len(chunk) > MAX_DATA_LENGTH:
                break
            chunks.append(chunk)
            used += len(chunk)
        return bytes((len(chunks),)) + b"".join(chunks)

    def _debug_clear_logs(self, logger: Any, data: bytes) -> bytes:
        logger.clear_log_buffer()
        return b""

    def _debug_enable_binary(self, logger: Any, data: bytes) -> bytes:
        self.enable_binary_protocol(True)
        return b""

    def _debug_disable_binary(self, logger: Any, data: bytes) -> bytes:
        self.enable_binary_protocol(False)
        return b""