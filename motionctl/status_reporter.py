"""Periodic collection and reporting of system and motor status."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from motionctl.motor_manager import DEFAULT_MAX_MOTORS

DEFAULT_STATUS_FREQUENCY_HZ = 10

StatusCallback = Callable[["SystemStatus"], None]


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def _as_int(value: Any) -> int:
    return int(getattr(value, "value", value))


@dataclass
class MotorStatus:
    index: int
    position: int = 0
    velocity: float = 0.0
    state: int = 0


@dataclass
class SystemStatus:
    timestamp: int = 0
    system_state: int = 0
    emergency_stop: bool = False
    motors: list[MotorStatus] = field(default_factory=list)
    cpu_usage_core0: float = 0.0
    cpu_usage_core1: float = 0.0
    free_memory: int = 0
    uptime_ms: int = 0
    control_loop_time_us: float = 0.0
    missed_deadlines: int = 0

    @property
    def motor_count(self) -> int:
        return len(self.motors)


class StatusReporter:
    """Collects a SystemStatus snapshot at a fixed rate and reports it."""

    def __init__(
        self,
        system: Any,
        update_frequency_hz: int = DEFAULT_STATUS_FREQUENCY_HZ,
        clock: Optional[Callable[[], int]] = None,
        output: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.system = system
        self._clock = clock or _monotonic_ms
        self._output = output or print
        self._frequency_hz = DEFAULT_STATUS_FREQUENCY_HZ
        self.set_update_frequency(update_frequency_hz)
        self._last_update_ms = 0
        self._serial_output = False
        self._status = SystemStatus()
        self._callbacks: list[StatusCallback] = []

    @property
    def update_frequency_hz(self) -> int:
        return self._frequency_hz

    @property
    def serial_output_enabled(self) -> bool:
        return self._serial_output

    def initialize(self) -> None:
        """Take the first snapshot; raises RuntimeError without a system manager."""
        if self.system is None:
            raise RuntimeError("No system manager to report on")
        self.collect()

    def begin(self) -> None:
        self._last_update_ms = self._clock()
        self.update()

    def set_update_frequency(self, frequency_hz: int) -> None:
        self._frequency_hz = frequency_hz if frequency_hz > 0 else DEFAULT_STATUS_FREQUENCY_HZ

    def update(self) -> bool:
        """Report if the update interval has elapsed; returns whether it did."""
        now = self._clock()
        interval_ms = 1000 // self._frequency_hz
        if now - self._last_update_ms < interval_ms:
            return False
        self.collect()
        for callback in list(self._callbacks):
            callback(self._status)
        if self._serial_output:
            self._output(self.to_json())
        self._last_update_ms = now
        return True

    @property
    def status(self) -> SystemStatus:
        return self._status

    def add_callback(self, callback: StatusCallback) -> None:
        if not callable(callback):
            raise TypeError("Status callback must be callable")
        self._callbacks.append(callback)

    def clear_callbacks(self) -> None:
        self._callbacks.clear()

    def enable_serial_output(self, enable: bool) -> None:
        self._serial_output = bool(enable)

    def to_json(self) -> str:
        """The current snapshot as a compact JSON object."""
        s = self._status
        motors = ",".join(
            f'{{"index":{i},"position":{m.position},'
            f'"velocity":{m.velocity:.2f},"state":{m.state}}}'
            for i, m in enumerate(s.motors)
        )
        return (
            "{"
            f'"timestamp":{s.timestamp},'
            f'"systemState":{s.system_state},'
            f'"emergencyStop":{"true" if s.emergency_stop else "false"},'
            f'"uptime":{s.uptime_ms},'
            f'"cpu0":{s.cpu_usage_core0:.1f},'
            f'"cpu1":{s.cpu_usage_core1:.1f},'
            f'"memory":{s.free_memory},'
            f'"controlLoop":{s.control_loop_time_us:.2f},'
            f'"missedDeadlines":{s.missed_deadlines},'
            f'"motors":[{motors}]'
            "}"
        )

    def collect(self) -> SystemStatus:
        """Refresh the snapshot from the system manager and return it."""
        system = self.system
        s = self._status
        s.timestamp = self._clock()
        s.system_state = _as_int(system.state)
        s.emergency_stop = bool(system.is_emergency_stop)
        s.uptime_ms = system.uptime_ms
        s.cpu_usage_core0 = system.cpu_usage(0)
        s.cpu_usage_core1 = system.cpu_usage(1)
        s.free_memory = system.free_memory

        scheduler = getattr(system, "task_scheduler", None)
        if scheduler is not None:
            _, _, missed, average_us = scheduler.scheduler_stats()
            s.control_loop_time_us = float(average_us)
            s.missed_deadlines = missed

        motor_manager = getattr(system, "motor_manager", None)
        motors: list[MotorStatus] = []
        if motor_manager is not None:
            count = min(motor_manager.motor_count, DEFAULT_MAX_MOTORS)
            for index in range(count):
                motor = motor_manager.get_motor(index)
                if motor is None:
                    motors.append(MotorStatus(index))
                    continue
                state = motor.state
                motors.append(
                    MotorStatus(
                        index,
                        state.current_position,
                        state.current_velocity,
                        _as_int(state.status),
                    )
                )
        s.motors = motors
        return s