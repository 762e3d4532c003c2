"""Central management of several motors, with coordinated multi-axis moves."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Protocol

DEFAULT_MAX_MOTORS = 4
MAX_GPIO_PIN = 39
NO_PIN = 0xFF

ProfileDuration = Callable[[float, float, float], float]


class MotorConfigError(ValueError):
    """Raised when a motor cannot be added to the manager."""


@dataclass(frozen=True)
class MotorConfig:
    """Pin assignment of one motor. Optional pins are ``None`` (or 0xFF) when unused."""

    index: int
    step_pin: int
    dir_pin: int
    enable_pin: Optional[int] = None
    encoder_a_pin: Optional[int] = None
    encoder_b_pin: Optional[int] = None
    limit_min_pin: Optional[int] = None
    limit_max_pin: Optional[int] = None


class _PID(Protocol):
    kp: float
    ki: float
    kd: float
    ff: float


class _Motor(Protocol):
    """What the manager expects from the objects its factory builds."""

    current_position: int
    is_moving: bool
    pid: _PID

    def initialize(self) -> bool: ...
    def enable(self) -> None: ...
    def disable(self) -> None: ...
    def abort(self) -> None: ...
    def emergency_stop(self) -> None: ...
    def move_to_position(self, position: int, velocity: float, acceleration: float,
                         deceleration: float) -> None: ...
    def set_pid_parameters(self, kp: float, ki: float, kd: float, ff: float) -> None: ...
    def set_soft_limits(self, minimum: int, maximum: int, enabled: bool) -> None: ...
    def check_errors(self) -> Any: ...
    def clear_error(self) -> None: ...
    def reset_position(self) -> None: ...


def _pin_valid(pin: Optional[int]) -> bool:
    return pin is not None and 0 <= pin <= MAX_GPIO_PIN


def validate_config(config: MotorConfig) -> None:
    """Raise MotorConfigError if any pin of ``config`` is outside the GPIO range."""
    required = (("step", config.step_pin), ("dir", config.dir_pin))
    for label, pin in required:
        if not _pin_valid(pin):
            raise MotorConfigError(f"Invalid {label} pin for motor {config.index}: {pin}")

    optional = (
        ("enable", config.enable_pin),
        ("encoder A", config.encoder_a_pin),
        ("encoder B", config.encoder_b_pin),
        ("limit min", config.limit_min_pin),
        ("limit max", config.limit_max_pin),
    )
    for label, pin in optional:
        if pin is None or pin == NO_PIN:
            continue
        if not _pin_valid(pin):
            raise MotorConfigError(f"Invalid {label} pin for motor {config.index}: {pin}")


def _trapezoidal_duration(distance: float, max_velocity: float, acceleration: float) -> float:
    """Duration of a symmetric trapezoidal (or triangular) move over ``distance``."""
    if distance <= 0 or max_velocity <= 0 or acceleration <= 0:
        return 0.0
    ramp_distance = max_velocity * max_velocity / acceleration
    if distance >= ramp_distance:
        return distance / max_velocity + max_velocity / acceleration
    return 2.0 * math.sqrt(distance / acceleration)


class MotorManager:
    """Owns up to ``max_motors`` motors, indexed by slot."""

    def __init__(
        self,
        motor_factory: Callable[[MotorConfig], _Motor],
        max_motors: Optional[int] = None,
        storage: Any = None,
        profile_duration: Optional[ProfileDuration] = None,
    ) -> None:
        self._factory = motor_factory
        self.max_motors = max_motors if max_motors and max_motors > 0 else DEFAULT_MAX_MOTORS
        self.storage = storage
        self._profile_duration = profile_duration or _trapezoidal_duration
        self._motors: dict[int, _Motor] = {}

    def _iter_motors(self) -> Iterator[tuple[int, _Motor]]:
        return iter(sorted(self._motors.items()))

    def initialize(self, configs: Iterable[MotorConfig] = ()) -> list[int]:
        """Add the first ``max_motors`` configs, skipping bad ones, then load saved
        parameters. Returns the indices that were added."""
        added = []
        for config in list(configs)[: self.max_motors]:
            try:
                self.add_motor(config)
            except MotorConfigError:
                continue
            added.append(config.index)
        self.load_from_storage()
        return added

    def add_motor(self, config: MotorConfig) -> _Motor:
        """Create, initialize and store a motor; replaces any motor at the same index."""
        if len(self._motors) >= self.max_motors:
            raise MotorConfigError("No free motor slot")
        if not 0 <= config.index < self.max_motors:
            raise MotorConfigError(f"Motor index out of range: {config.index}")
        validate_config(config)

        motor = self._factory(config)
        if not motor.initialize():
            raise MotorConfigError(f"Motor {config.index} failed to initialize")

        self._motors[config.index] = motor
        return motor

    def get_motor(self, index: int) -> Optional[_Motor]:
        """The motor at ``index``, or None."""
        return self._motors.get(index)

    @property
    def motor_count(self) -> int:
        return len(self._motors)

    def enable_all(self) -> None:
        for _, motor in self._iter_motors():
            motor.enable()

    def disable_all(self) -> None:
        for _, motor in self._iter_motors():
            motor.disable()

    def stop_all(self, emergency: bool = False) -> None:
        for _, motor in self._iter_motors():
            if emergency:
                motor.emergency_stop()
            else:
                motor.abort()

    def load_from_storage(self) -> None:
        """Apply saved PID gains and soft limits to each motor that has them."""
        if self.storage is None:
            return
        for index, motor in self._iter_motors():
            gains = self.storage.load_pid_parameters(index)
            if gains is not None:
                motor.set_pid_parameters(*gains)
            limits = self.storage.load_soft_limits(index)
            if limits is not None:
                motor.set_soft_limits(*limits)

    def save_to_storage(self) -> bool:
        """Save every motor's PID gains and commit; returns whether the commit succeeded."""
        if self.storage is None:
            return False
        for index, motor in self._iter_motors():
            pid = motor.pid
            self.storage.save_pid_parameters(index, pid.kp, pid.ki, pid.kd, pid.ff)
        return bool(self.storage.commit())

    def _distances(self, targets: Mapping[int, int]) -> Iterator[tuple[_Motor, int, int]]:
        for index, position in targets.items():
            motor = self._motors.get(index)
            if motor is None:
                continue
            distance = abs(position - motor.current_position)
            if distance:
                yield motor, position, distance

    def synchronized_duration(
        self,
        targets: Mapping[int, int],
        max_velocity: float,
        acceleration: float,
        deceleration: Optional[float] = None,
    ) -> float:
        """Duration in seconds of the slowest move among ``targets`` (index -> position)."""
        return max(
            (
                self._profile_duration(float(distance), max_velocity, acceleration)
                for _, _, distance in self._distances(targets)
            ),
            default=0.0,
        )

    def move_multiple(
        self,
        targets: Mapping[int, int],
        max_velocity: float,
        acceleration: float,
        deceleration: Optional[float] = None,
    ) -> bool:
        """Start moves so that all motors finish together.

        Returns False when there is nothing to move."""
        if not targets:
            raise ValueError("No targets given")
        if deceleration is None:
            deceleration = acceleration

        duration = self.synchronized_duration(targets, max_velocity, acceleration, deceleration)
        if duration <= 0.0:
            return False

        for motor, position, distance in list(self._distances(targets)):
            velocity = min(distance / duration, max_velocity)
            motor.move_to_position(position, velocity, acceleration, deceleration)
        return True

    def are_idle(self, indices: Iterable[int]) -> bool:
        """True if none of the existing motors among ``indices`` is moving."""
        return not any(
            self._motors[index].is_moving for index in indices if index in self._motors
        )

    def has_errors(self) -> bool:
        return any(motor.check_errors() for _, motor in self._iter_motors())

    def clear_all_errors(self) -> None:
        for _, motor in self._iter_motors():
            motor.clear_error()

    def reset_all_encoders(self) -> None:
        for _, motor in self._iter_motors():
            motor.reset_position()