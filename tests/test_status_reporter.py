import json
from enum import IntEnum
from types import SimpleNamespace

import pytest

from motionctl.motor_manager import DEFAULT_MAX_MOTORS
from motionctl.status_reporter import (
    DEFAULT_STATUS_FREQUENCY_HZ,
    MotorStatus,
    StatusReporter,
    SystemStatus,
)


class Clock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


class State(IntEnum):
    INITIALIZING = 0
    READY = 1


class FakeMotorManager:
    def __init__(self, motors, count=None):
        self.motors = motors
        self.motor_count = len(motors) if count is None else count

    def get_motor(self, index):
        return self.motors.get(index)


class FakeScheduler:
    def scheduler_stats(self):
        return (2, 5, 3, 250)


class FakeSystem:
    def __init__(self, motor_manager=None, task_scheduler=None):
        self.state = State.READY
        self.is_emergency_stop = False
        self.uptime_ms = 5000
        self.free_memory = 2048
        self.motor_manager = motor_manager
        self.task_scheduler = task_scheduler
        self.cpu = {0: 12.5, 1: 40.0}

    def cpu_usage(self, core):
        return self.cpu.get(core, 0.0)


def motor(position, velocity, status):
    return SimpleNamespace(
        state=SimpleNamespace(current_position=position, current_velocity=velocity, status=status)
    )


def reporter(system, clock=None, output=None, freq=10):
    return StatusReporter(system, freq, clock or Clock(1000), output or (lambda s: None))


def test_collect_fills_status():
    system = FakeSystem(FakeMotorManager({0: motor(100, 1.5, 2)}), FakeScheduler())
    r = reporter(system)
    r.initialize()
    s = r.status
    assert s.timestamp == 1000
    assert s.system_state == 1
    assert s.uptime_ms == 5000
    assert (s.cpu_usage_core0, s.cpu_usage_core1) == (12.5, 40.0)
    assert s.free_memory == 2048
    assert s.control_loop_time_us == 250.0
    assert s.missed_deadlines == 3
    assert s.motors == [MotorStatus(0, 100, 1.5, 2)]
    assert s.motor_count == 1


def test_json_format():
    system = FakeSystem(FakeMotorManager({0: motor(100, 1.5, 2)}), FakeScheduler())
    r = reporter(system)
    r.collect()
    assert r.to_json() == (
        '{"timestamp":1000,"systemState":1,"emergencyStop":false,"uptime":5000,'
        '"cpu0":12.5,"cpu1":40.0,"memory":2048,"controlLoop":250.00,'
        '"missedDeadlines":3,"motors":[{"index":0,"position":100,"velocity":1.50,"state":2}]}'
    )


def test_json_is_parseable_with_many_motors():
    motors = {0: motor(-5, -0.25, 1), 1: motor(7, 3.0, 0)}
    system = FakeSystem(FakeMotorManager(motors))
    system.is_emergency_stop = True
    r = reporter(system)
    r.collect()
    data = json.loads(r.to_json())
    assert data["emergencyStop"] is True
    assert [m["position"] for m in data["motors"]] == [-5, 7]
    assert [m["index"] for m in data["motors"]] == [0, 1]


def test_missing_motor_reported_as_zero():
    system = FakeSystem(FakeMotorManager({1: motor(9, 2.0, 1)}, count=2))
    r = reporter(system)
    s = r.collect()
    assert s.motors[0] == MotorStatus(0)
    assert s.motors[1] == MotorStatus(1, 9, 2.0, 1)


def test_motor_count_capped():
    motors = {i: motor(i, 0.0, 0) for i in range(DEFAULT_MAX_MOTORS + 3)}
    r = reporter(FakeSystem(FakeMotorManager(motors)))
    assert r.collect().motor_count == DEFAULT_MAX_MOTORS


def test_no_motor_manager_means_no_motors():
    r = reporter(FakeSystem())
    assert r.collect().motors == []


def test_initialize_without_system_raises():
    with pytest.raises(RuntimeError):
        reporter(None).initialize()


def test_update_respects_interval():
    clock = Clock(0)
    seen = []
    lines = []
    r = reporter(FakeSystem(), clock=clock, output=lines.append, freq=10)
    r.add_callback(lambda status: seen.append(status.timestamp))
    r.enable_serial_output(True)

    clock.now = 50
    assert r.update() is False
    clock.now = 100
    assert r.update() is True
    clock.now = 150
    assert r.update() is False
    clock.now = 200
    assert r.update() is True
    assert seen == [100, 200]
    assert [json.loads(line)["timestamp"] for line in lines] == [100, 200]


def test_serial_output_off_by_default():
    lines = []
    r = reporter(FakeSystem(), clock=Clock(5000), output=lines.append)
    assert r.update() is True
    assert lines == []
    assert r.serial_output_enabled is False


def test_begin_resets_interval():
    clock = Clock(5000)
    seen = []
    r = reporter(FakeSystem(), clock=clock)
    r.add_callback(seen.append)
    r.begin()
    assert seen == []


def test_callbacks_cleared_and_validated():
    seen = []
    r = reporter(FakeSystem(), clock=Clock(5000))
    r.add_callback(seen.append)
    r.clear_callbacks()
    r.update()
    assert seen == []
    with pytest.raises(TypeError):
        r.add_callback("not callable")


def test_set_update_frequency():
    r = reporter(FakeSystem(), freq=0)
    assert r.update_frequency_hz == DEFAULT_STATUS_FREQUENCY_HZ
    r.set_update_frequency(50)
    assert r.update_frequency_hz == 50
    r.set_update_frequency(0)
    assert r.update_frequency_hz == DEFAULT_STATUS_FREQUENCY_HZ


def test_default_status_is_empty():
    s = SystemStatus()
    assert s.motor_count == 0
    assert s.emergency_stop is False