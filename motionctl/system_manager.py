"""Central coordination of the controller: components, state, metrics, persistence."""

from __future__ import annotations

import os
import struct
import time
from enum import Enum
from typing import Any, Callable, Optional

from motionctl.status_reporter import StatusReporter

# (max_velocity, acceleration, deceleration) used when restoring positions.
DEFAULT_MOTION = (1000.0, 500.0, 500.0)

METRICS_INTERVAL_MS = 1000

_POSITION = struct.Struct("<i")
_FLAG = struct.Struct("<?")


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def _as_int(value: Any) -> int:
    return int(getattr(value, "value", value))


class SystemState(Enum):
    INITIALIZING = 0
    READY = 1
    RUNNING = 2
    ERROR = 3
    EMERGENCY_STOP = 4
    SHUTDOWN = 5


_TRANSITIONS: dict[SystemState, frozenset[SystemState]] = {
    SystemState.INITIALIZING: frozenset({SystemState.READY, SystemState.ERROR}),
    SystemState.READY: frozenset(
        {SystemState.RUNNING, SystemState.ERROR, SystemState.EMERGENCY_STOP}
    ),
    SystemState.RUNNING: frozenset(
        {SystemState.READY, SystemState.ERROR, SystemState.EMERGENCY_STOP}
    ),
    SystemState.ERROR: frozenset(
        {SystemState.READY, SystemState.EMERGENCY_STOP, SystemState.SHUTDOWN}
    ),
    SystemState.EMERGENCY_STOP: frozenset({SystemState.READY, SystemState.SHUTDOWN}),
    SystemState.SHUTDOWN: frozenset(),
}


def _estimate_cpu_usage() -> float:
    """Rough load estimate from timing the same busy loop twice."""
    start = time.perf_counter_ns()
    for _ in range(1000):
        pass
    baseline = time.perf_counter_ns() - start

    start = time.perf_counter_ns()
    for _ in range(1000):
        pass
    loaded = time.perf_counter_ns() - start

    if loaded <= 0:
        return 0.0
    usage = (1.0 - baseline / loaded) * 100.0
    return min(max(usage, 0.0), 100.0)


def _available_memory() -> int:
    try:
        return os.sysconf("SC_AVPHYS_PAGES") * os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return 0


class SystemManager:
    """Owns the system components and the overall state machine."""

    SHUTDOWN_FLAG_ADDR = 3000
    MOTOR_POSITIONS_ADDR = 3100

    def __init__(
        self,
        storage: Any = None,
        logger: Any = None,
        task_scheduler: Any = None,
        motor_manager: Any = None,
        safety_monitor: Any = None,
        status_reporter: Optional[StatusReporter] = None,
        clock: Optional[Callable[[], int]] = None,
        default_motion: tuple[float, float, float] = DEFAULT_MOTION,
    ) -> None:
        self.storage = storage
        self.logger = logger
        self.task_scheduler = task_scheduler
        self.motor_manager = motor_manager
        self.safety_monitor = safety_monitor
        self.status_reporter = status_reporter
        self._clock = clock or _monotonic_ms
        self.default_motion = tuple(default_motion)
        self.restart_handler: Optional[Callable[[], Any]] = None

        self._state = SystemState.INITIALIZING
        self._start_ms = self._clock()
        self._cpu_usage = [0.0, 0.0]
        self._free_memory = 0
        self._last_metrics_ms: Optional[int] = None

    def _log(self, level: str, message: str) -> None:
        if self.logger is not None:
            getattr(self.logger, f"log_{level}")(message)

    def _init_component(self, component: Any, name: str, log_failure: bool = True) -> None:
        if component is None:
            return
        if component.initialize() is False:
            message = f"Failed to initialize {name}"
            if log_failure:
                self._log("error", message)
            raise RuntimeError(message)

    def initialize(self) -> None:
        """Bring up every component in order; raises RuntimeError on a failure."""
        self._start_ms = self._clock()

        self._init_component(self.storage, "storage", log_failure=False)
        self._init_component(self.logger, "logger", log_failure=False)
        self._log("info", "System initializing...")

        self._init_component(self.task_scheduler, "task scheduler")
        self._init_component(self.motor_manager, "motor manager")
        self._init_component(self.safety_monitor, "safety monitor")

        if self.status_reporter is None:
            self.status_reporter = StatusReporter(self, clock=self._clock)
        try:
            self._init_component(self.status_reporter, "status reporter")
        except RuntimeError:
            raise
        except Exception as exc:
            self._log("error", "Failed to initialize status reporter")
            raise RuntimeError("Failed to initialize status reporter") from exc

        if not self.load_configuration():
            self._log("warning", "Could not load system configuration, using defaults")

        self.update_metrics()
        self._state = SystemState.READY
        self._log("info", "System initialized successfully")

    @property
    def state(self) -> SystemState:
        return self._state

    def set_state(self, state: SystemState) -> bool:
        """Move to ``state`` if the transition is allowed; returns whether it was."""
        allowed = state in _TRANSITIONS[self._state]
        if allowed:
            self._state = state
        self._log("info", f"System state changed to {self._state.value}")
        return allowed

    def trigger_emergency_stop(self, reason: Any) -> None:
        if self.safety_monitor is not None:
            self.safety_monitor.trigger_emergency_stop(reason)
        if self.motor_manager is not None:
            self.motor_manager.stop_all(True)
        self.set_state(SystemState.EMERGENCY_STOP)
        self._log("error", f"EMERGENCY STOP triggered: {_as_int(reason)}")

    def reset_emergency_stop(self) -> bool:
        if self.safety_monitor is None:
            return False
        if not self.safety_monitor.reset_emergency_stop():
            return False
        self.set_state(SystemState.READY)
        self._log("info", "Emergency stop reset")
        return True

    @property
    def is_emergency_stop(self) -> bool:
        return self._state is SystemState.EMERGENCY_STOP

    def save_configuration(self) -> bool:
        if self.storage is None:
            return False
        success = True
        if self.motor_manager is not None:
            success = bool(self.motor_manager.save_to_storage()) and success
        success = bool(self.storage.commit()) and success
        if success:
            self._log("info", "System configuration saved")
        return success

    def load_configuration(self) -> bool:
        if self.storage is None:
            return False
        if self.motor_manager is not None:
            if self.motor_manager.load_from_storage() is False:
                return False
        self._log("info", "System configuration loaded")
        return True

    @property
    def uptime_ms(self) -> int:
        return self._clock() - self._start_ms

    def cpu_usage(self, core: int) -> float:
        """Estimated usage of core 0 or 1 in percent; 0.0 for any other core."""
        if core in (0, 1):
            return self._cpu_usage[core]
        return 0.0

    @property
    def free_memory(self) -> int:
        return self._free_memory

    def reset(self) -> None:
        """Save configuration, shut down, and hand over to the restart handler."""
        self._log("info", "System reset requested")
        self.save_configuration()
        self.set_state(SystemState.SHUTDOWN)
        if self.restart_handler is not None:
            self.restart_handler()

    def update_metrics(self) -> bool:
        """Refresh CPU and memory figures at most once a second; returns whether it did."""
        now = self._clock()
        if self._last_metrics_ms is not None and now - self._last_metrics_ms < METRICS_INTERVAL_MS:
            return False
        self._last_metrics_ms = now
        self._cpu_usage = [_estimate_cpu_usage(), _estimate_cpu_usage()]
        self._free_memory = _available_memory()
        return True

    def _position_address(self, index: int) -> int:
        return self.MOTOR_POSITIONS_ADDR + index * _POSITION.size

    def save_motor_positions(self) -> None:
        if self.motor_manager is None or self.storage is None:
            return
        for index in range(self.motor_manager.motor_count):
            motor = self.motor_manager.get_motor(index)
            if motor is not None:
                self.storage.save_user_data(
                    self._position_address(index), _POSITION.pack(motor.current_position)
                )
        self.storage.commit()

    def restore_motor_positions(self) -> None:
        """Move every motor back to its saved position at half the default velocity."""
        if self.motor_manager is None or self.storage is None:
            return
        max_velocity, acceleration, deceleration = self.default_motion
        for index in range(self.motor_manager.motor_count):
            motor = self.motor_manager.get_motor(index)
            if motor is None:
                continue
            raw = self.storage.load_user_data(self._position_address(index), _POSITION.size)
            (position,) = _POSITION.unpack(bytes(raw))
            if not motor.is_enabled:
                motor.enable()
            motor.move_to_position(position, max_velocity / 2.0, acceleration, deceleration)

    def was_normal_shutdown(self) -> bool:
        if self.storage is None:
            return False
        raw = self.storage.load_user_data(self.SHUTDOWN_FLAG_ADDR, _FLAG.size)
        return bool(bytes(raw)[0])

    def set_normal_shutdown(self, state: bool) -> None:
        if self.storage is None:
            return
        self.storage.save_user_data(self.SHUTDOWN_FLAG_ADDR, _FLAG.pack(bool(state)))
        self.storage.commit()