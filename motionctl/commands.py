"""Built-in console commands for controlling the system over a serial line."""

from __future__ import annotations

import re
from typing import Any, Callable, Optional

from motionctl.command_protocol import EMERGENCY_STOP_PRESSED
from motionctl.console import Command, CommandError, CommandLine
from motionctl.system_manager import DEFAULT_MOTION, SystemState

LOG_LEVEL_NAMES = ("OFF", "ERROR", "WARNING", "INFO", "DEBUG", "VERBOSE")

_STATE_NAMES = {
    SystemState.INITIALIZING: "Initializing",
    SystemState.READY: "Ready",
    SystemState.RUNNING: "Running",
    SystemState.ERROR: "Error",
    SystemState.EMERGENCY_STOP: "Emergency Stop",
    SystemState.SHUTDOWN: "Shutdown",
}

_SAFETY_NAMES = {
    "NORMAL": "Normal",
    "WARNING": "Warning",
    "ERROR": "Error",
    "EMERGENCY_STOP": "E-Stop",
}

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _to_int(text: str) -> int:
    """Leading integer of ``text``, or 0 if there is none."""
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def _to_float(text: str) -> float:
    """Leading number of ``text``, or 0.0 if there is none."""
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else 0.0


def _as_int(value: Any) -> int:
    return int(getattr(value, "value", value))


def _split_first(text: str) -> tuple[str, str]:
    head, sep, rest = text.partition(" ")
    return (head, rest.strip()) if sep else (text, "")


def _yes_no(value: Any) -> str:
    return "Yes" if value else "No"


def _log_level_name(level: Any) -> str:
    index = _as_int(level)
    return LOG_LEVEL_NAMES[index] if 0 <= index < len(LOG_LEVEL_NAMES) else "UNKNOWN"


class SerialCommand:
    """The system's command-line interface: registers and runs the built-in commands.

    Handlers return the response text and raise CommandError on failure.
    """

    def __init__(
        self,
        system: Any = None,
        output: Optional[Callable[[str], object]] = None,
        default_motion: tuple[float, float, float] = DEFAULT_MOTION,
    ) -> None:
        self.system = system
        self.default_motion = tuple(default_motion)
        self.emergency_stop_reason: Any = EMERGENCY_STOP_PRESSED
        self._console = CommandLine(output)

    @property
    def commands(self) -> tuple[Command, ...]:
        return self._console.commands

    def initialize(self) -> None:
        """Register every built-in command."""
        builtins = (
            ("help", "[command]", "Display help information", self.handle_help),
            ("status", "", "Display system status", self.handle_status),
            ("motor", "<index> [enable|disable]", "Get or set motor state", self.handle_motor),
            ("move", "<index> <position> [velocity] [accel]", "Move motor to position",
             self.handle_move),
            ("stop", "[index] [emergency]", "Stop one or all motors", self.handle_stop),
            ("home", "<index> [direction]", "Home a motor", self.handle_home),
            ("pid", "<index> [kp] [ki] [kd] [ff]", "Get or set PID parameters", self.handle_pid),
            ("reset", "[config]", "Reset system or configuration", self.handle_reset),
            ("save", "", "Save configuration to EEPROM", self.handle_save),
            ("load", "", "Load configuration from EEPROM", self.handle_load),
            ("estop", "[reset]", "Trigger or reset emergency stop", self.handle_estop),
            ("debug", "<level>", "Set debug log level", self.handle_debug),
            ("shutdown", "", "Shutdown system normally and save positions",
             self.handle_shutdown),
            ("status_output", "<on|off>", "Enable or disable status JSON output",
             self.handle_status_output),
        )
        for name, params, description, handler in builtins:
            self._console.add_command(name, params, description, handler)

    def set_system(self, system: Any) -> None:
        self.system = system

    def execute(self, line: str) -> str:
        """Run one command line; raises CommandError on failure."""
        return self._console.execute(line)

    def process_input(self, data: str) -> list[tuple[bool, str]]:
        """Feed typed characters; returns (success, response) for each line executed."""
        return self._console.feed(data)

    # ----------------------------------------------------------------- helpers

    def _require_system(self) -> Any:
        if self.system is None:
            raise CommandError("System manager not available")
        return self.system

    def _motor_manager(self) -> Any:
        manager = getattr(self._require_system(), "motor_manager", None)
        if manager is None:
            raise CommandError("Motor manager not available")
        return manager

    @staticmethod
    def _motor(manager: Any, index_text: str) -> Any:
        motor = manager.get_motor(_to_int(index_text))
        if motor is None:
            raise CommandError(f"Motor {index_text} not found")
        return motor

    @staticmethod
    def _ensure_enabled(motor: Any) -> None:
        if not motor.is_enabled:
            motor.enable()

    # ---------------------------------------------------------------- handlers

    def handle_help(self, params: str) -> str:
        return self._console.help_text(params or None)

    def handle_status(self, params: str) -> str:
        system = self._require_system()
        state_name = _STATE_NAMES.get(system.state, "Unknown")
        lines = [
            "System Status:",
            f"  State: {state_name}",
            f"  Uptime: {system.uptime_ms // 1000} s",
            f"  CPU: {system.cpu_usage(0):.1f}% / {system.cpu_usage(1):.1f}%",
            f"  Memory: {system.free_memory // 1024} KB free",
        ]

        manager = getattr(system, "motor_manager", None)
        if manager is not None:
            count = manager.motor_count
            lines.append(f"  Motors: {count}")
            for index in range(count):
                motor = manager.get_motor(index)
                if motor is None:
                    continue
                lines.append(
                    f"    Motor {index}: Pos={motor.current_position}, "
                    f"Vel={motor.current_velocity:.1f}, "
                    f"Enabled={_yes_no(motor.is_enabled)}, "
                    f"Moving={_yes_no(motor.is_moving)}"
                )

        safety = getattr(system, "safety_monitor", None)
        if safety is not None:
            safety_status = safety.status
            status_name = getattr(safety_status, "name", None)
            lines.append(f"  Safety: {_SAFETY_NAMES.get(status_name, 'Unknown')}")
            if status_name != "NORMAL":
                lines.append(f"  Safety Code: {_as_int(safety.last_safety_code)}")

        return "\n".join(lines) + "\n"

    def handle_motor(self, params: str) -> str:
        manager = self._motor_manager()
        index_text, command = _split_first(params)
        if not index_text:
            raise CommandError("Motor index required")
        motor = self._motor(manager, index_text)

        if not command:
            state = motor.state
            return "\n".join(
                (
                    f"Motor {index_text} Status:",
                    f"  Enabled: {_yes_no(motor.is_enabled)}",
                    f"  Position: {state.current_position}",
                    f"  Target: {state.target_position}",
                    f"  Velocity: {state.current_velocity:.1f}",
                    f"  Mode: {_as_int(motor.control_mode)}",
                    f"  Moving: {_yes_no(motor.is_moving)}",
                    f"  Homed: {_yes_no(motor.is_homed)}",
                    f"  Error: {_as_int(state.error)}",
                )
            )
        if command.lower() == "enable":
            motor.enable()
            return f"Motor {index_text} enabled"
        if command.lower() == "disable":
            motor.disable()
            return f"Motor {index_text} disabled"
        raise CommandError(f"Unknown motor command: {command}")

    def handle_move(self, params: str) -> str:
        manager = self._motor_manager()
        text = params.strip()
        if " " not in text:
            raise CommandError(
                "Insufficient parameters. Usage: move <index> <position> [velocity] [accel]"
            )
        index_text, rest = _split_first(text)
        position_text, rest = _split_first(rest)
        velocity_text, accel_text = _split_first(rest)

        position = _to_int(position_text)
        velocity = _to_float(velocity_text) if velocity_text else 0.0
        accel = _to_float(accel_text) if accel_text else 0.0

        motor = self._motor(manager, index_text)
        self._ensure_enabled(motor)

        if velocity > 0.0 and accel > 0.0:
            motor.move_to_position(position, velocity, accel, accel)
        elif velocity > 0.0:
            _, default_accel, default_decel = self.default_motion
            motor.move_to_position(position, velocity, default_accel, default_decel)
        else:
            motor.set_target_position(position)

        return f"Moving motor {index_text} to position {position_text}"

    def handle_stop(self, params: str) -> str:
        manager = self._motor_manager()
        text = params.strip()
        if not text:
            manager.stop_all(False)
            return "Stopped all motors"

        emergency = text.endswith("emergency")
        if emergency:
            text = text[: text.rfind("emergency")].strip()

        if not text:
            manager.stop_all(True)
            return "Emergency stopped all motors"

        motor = self._motor(manager, text)
        motor.emergency_stop()
        return f"Emergency stopped motor {text}" if emergency else f"Stopped motor {text}"

    def handle_home(self, params: str) -> str:
        manager = self._motor_manager()
        index_text, direction_text = _split_first(params.strip())
        if not direction_text and " " not in params.strip():
            direction_text = "1"
        if not index_text:
            raise CommandError("Motor index required")

        direction = _to_int(direction_text) if direction_text else 1
        direction = -1 if direction < 0 else 1

        motor = self._motor(manager, index_text)
        self._ensure_enabled(motor)
        motor.start_homing(direction, self.default_motion[0] / 2.0)

        sense = "positive" if direction > 0 else "negative"
        return f"Homing motor {index_text} in {sense} direction"

    def handle_pid(self, params: str) -> str:
        manager = self._motor_manager()
        index_text, values_text = _split_first(params.strip())
        if not index_text:
            raise CommandError("Motor index required")
        motor = self._motor(manager, index_text)
        pid = motor.pid

        if not values_text:
            return (
                f"Motor {index_text} PID Parameters:\n"
                f"  Kp: {pid.kp:.2f}\n"
                f"  Ki: {pid.ki:.2f}\n"
                f"  Kd: {pid.kd:.2f}\n"
                f"  FF: {pid.ff:.2f}"
            )

        gains = [0.0, 0.0, 0.0, 0.0]
        for slot, token in enumerate(values_text.split()[:4]):
            gains[slot] = _to_float(token)
        kp, ki, kd, ff = gains
        pid.set_gains(kp, ki, kd, ff)
        return (
            f"Set motor {index_text} PID to Kp={kp:.2f}, Ki={ki:.2f}, "
            f"Kd={kd:.2f}, FF={ff:.2f}"
        )

    def handle_reset(self, params: str) -> str:
        system = self._require_system()
        if params.strip().lower() == "config":
            storage = getattr(system, "storage", None)
            if storage is None:
                raise CommandError("EEPROM manager not available")
            if not storage.reset_to_defaults():
                raise CommandError("Failed to reset configuration")
            return "Configuration reset to defaults"
        system.reset()
        return "Resetting system..."

    def handle_save(self, params: str) -> str:
        if not self._require_system().save_configuration():
            raise CommandError("Failed to save configuration")
        return "Configuration saved"

    def handle_load(self, params: str) -> str:
        if not self._require_system().load_configuration():
            raise CommandError("Failed to load configuration")
        return "Configuration loaded"

    def handle_estop(self, params: str) -> str:
        system = self._require_system()
        if params.strip().lower() == "reset":
            if not system.reset_emergency_stop():
                raise CommandError("Failed to reset emergency stop")
            return "Emergency stop reset"
        system.trigger_emergency_stop(self.emergency_stop_reason)
        return "Emergency stop triggered"

    def handle_debug(self, params: str) -> str:
        system = self._require_system()
        logger = getattr(system, "logger", None)
        if logger is None:
            raise CommandError("Logger not available")

        text = params.strip()
        if not text:
            return f"Current log level: {_log_level_name(logger.log_level)}"

        level = _to_int(text)
        if not 0 <= level <= 5:
            raise CommandError(
                "Invalid log level. Valid levels: 0=OFF, 1=ERROR, 2=WARNING, 3=INFO, 4=DEBUG, "
                "5=VERBOSE"
            )
        logger.set_log_level(level)
        return f"Log level set to {_log_level_name(level)}"

    def handle_shutdown(self, params: str) -> str:
        system = self._require_system()
        system.set_normal_shutdown(True)
        system.save_motor_positions()
        return "System shutting down normally. Positions saved."

    def handle_status_output(self, params: str) -> str:
        system = self._require_system()
        reporter = getattr(system, "status_reporter", None)
        if reporter is None:
            raise CommandError("Status reporter not available")

        choice = params.strip().lower()
        if choice in ("on", "true", "1"):
            reporter.enable_serial_output(True)
            return "Status output enabled"
        if choice in ("off", "false", "0"):
            reporter.enable_serial_output(False)
            return "Status output disabled"
        raise CommandError("Invalid parameter. Usage: status_output <on|off>")