# motionctl

`motionctl` is the coordination layer for a multi-axis motion controller.
It sits above the motor drivers. You pass in the motors, the persistent
storage, the logger, the clock and the output stream as plain objects. That
means you can run the whole stack against simulated motors.

The package needs nothing beyond the Python standard library. It supports
Python 3.10 and later.

## Modules

### `motionctl.motor_manager`

- `MotorConfig` is a frozen dataclass that holds the index and pins of one
  motor. Optional pins are `None`, or `0xFF`, when unused.
- `validate_config(config)` checks every pin it uses against the GPIO range
  0–39. An out-of-range pin raises `MotorConfigError`, which is a subclass of
  `ValueError`.
- `MotorManager(motor_factory, max_motors=None, storage=None, profile_duration=None)`
  holds up to `max_motors` motors, 4 by default, keyed by slot index.
  - `add_motor(config)` validates the config, builds the motor with the
    factory and calls its `initialize()`. It raises `MotorConfigError` when
    no slot is free, when the index is out of range, when a pin is invalid,
    or when the motor fails to initialize. A motor already at the same index
    is replaced.
  - `initialize(configs)` adds as many of `configs` as there are slots, in
    order, and skips the bad ones. It then calls `load_from_storage()` and
    returns the indices it added.
  - `get_motor(index)` returns a motor or `None`. `motor_count` gives the
    number of motors.
  - These methods act on every motor: `enable_all()`, `disable_all()`,
    `stop_all(emergency=False)`, `clear_all_errors()` and
    `reset_all_encoders()`.
  - `has_errors()` is true if any motor's `check_errors()` returns a true
    value.
  - `load_from_storage()` applies saved PID gains and soft limits.
    `save_to_storage()` saves PID gains and returns the result of the
    storage's `commit()`.
  - `synchronized_duration(targets, max_velocity, acceleration, deceleration=None)`
    takes `targets`, a mapping from motor index to target position. It
    returns the duration of the slowest move. By default this uses a
    symmetric trapezoidal or triangular profile; a `profile_duration`
    function can replace it.
  - `move_multiple(targets, max_velocity, acceleration, deceleration=None)`
    scales each motor's velocity so that all motors finish together. It
    returns `False` when there is nothing to move and raises `ValueError` if
    `targets` is empty.
  - `are_idle(indices)` is true if none of the listed motors that exist is
    moving.

Motors built by the factory need the following members:

- `initialize()`, `enable()`, `disable()`, `abort()` and `emergency_stop()`
- `move_to_position(position, velocity, acceleration, deceleration)`
- `set_pid_parameters(kp, ki, kd, ff)`
- `set_soft_limits(minimum, maximum, enabled)`
- `check_errors()`, `clear_error()` and `reset_position()`
- the attributes `current_position`, `is_moving`, and `pid`, which has
  `kp`, `ki`, `kd` and `ff`

Storage needs the following methods:

- `load_pid_parameters(index)` and `load_soft_limits(index)`, each returning
  a tuple or `None`
- `save_pid_parameters(index, kp, ki, kd, ff)`
- `commit()`

### `motionctl.system_manager`

- `SystemState`: `INITIALIZING`, `READY`, `RUNNING`, `ERROR`,
  `EMERGENCY_STOP` and `SHUTDOWN`.
- `SystemManager(storage=None, logger=None, task_scheduler=None, motor_manager=None, safety_monitor=None, status_reporter=None, clock=None, default_motion=(1000.0, 500.0, 500.0))`.
  - `initialize()` initializes the components in order. If no status
    reporter was given, it creates a `StatusReporter`. It then loads the
    configuration, refreshes the metrics and moves to `READY`. If a
    component fails, it raises `RuntimeError`.
  - `set_state(state)` only allows the defined transitions: from
    `INITIALIZING` to `READY` or `ERROR`, and so on. `SHUTDOWN` is terminal.
    The method returns whether the change happened.
  - `trigger_emergency_stop(reason)` informs the safety monitor, stops all
    motors with an emergency stop and moves to `EMERGENCY_STOP`.
  - `reset_emergency_stop()` asks the safety monitor to reset and, if that
    succeeds, moves to `READY`. `is_emergency_stop` reports whether the
    system is in emergency stop.
  - `save_configuration()` and `load_configuration()` return a success flag.
  - `uptime_ms`, `cpu_usage(core)` and `free_memory` report the current
    figures. `update_metrics()` refreshes them at most once a second.
    CPU usage is a rough estimate from timing a busy loop. Free memory is
    taken from `os.sysconf` where that is available, and is 0 otherwise.
  - `reset()` saves the configuration, moves to `SHUTDOWN` and calls
    `restart_handler` if one is set.
  - `save_motor_positions()` and `restore_motor_positions()` keep
    little-endian 32-bit positions in storage, starting at address 3100.
    Restoring enables each motor and moves it back at half the default
    velocity.
  - `set_normal_shutdown(state)` and `was_normal_shutdown()` keep a flag at
    address 3000.

### `motionctl.status_reporter`

- `StatusReporter(system, update_frequency_hz=10, clock=None, output=None)`.
  - `collect()` refreshes a `SystemStatus` snapshot. The snapshot holds
    state, emergency stop, uptime, CPU, memory and scheduler statistics. It
    also holds a `MotorStatus` for each of the first four motors.
  - `update()` collects the snapshot once the interval has passed. It then
    calls each callback added with `add_callback`. If
    `enable_serial_output(True)` is set, it also writes `to_json()` to
    `output`, which is `print` by default.
  - `begin()` starts the timing. `status` is the current snapshot.
    `clear_callbacks()` removes all callbacks.

### `motionctl.packets`

This module holds the binary wire format. All multi-byte values are
little-endian.

A command packet is laid out as follows:

```
0xAA | type | id | length | data[length] | checksum
```

A response packet is laid out as follows:

```
0xBB | type | id | status | length | data[length] | checksum
```

The checksum is the XOR of every byte before it, as computed by
`checksum(data)`. Data is at most 32 bytes.

- `CommandType` has the members `SYSTEM`, `MOTION`, `STATUS`, `CONFIG` and
  `DEBUG`.
- `ResponseStatus` has the members `SUCCESS`, `ERROR`, `UNAVAILABLE`,
  `UNKNOWN_COMMAND`, `INVALID_PARAMETERS` and `MOTOR_NOT_FOUND`.
- `CommandPacket` and `ResponsePacket` encode themselves with `to_bytes()`.
- `find_packet(buffer)` returns `(packet, end_offset)` for the first valid
  command packet, or `None`.
- `PacketReceiver(capacity=64)` buffers incoming bytes. Its `feed(data)`
  returns the packets completed by `data`. Bytes that arrive while the
  buffer is full are dropped.

```python
from motionctl.packets import CommandPacket, CommandType, PacketReceiver

raw = CommandPacket(CommandType.SYSTEM, 0x01).to_bytes()
receiver = PacketReceiver()
(packet,) = receiver.feed(raw)
```

### `motionctl.command_protocol`

`CommandProtocol(system, transport=None, default_home_velocity=500.0)`
answers binary commands.

- The `transport` needs `read()` and `write(data)`.
- `process_commands()` reads and answers every complete packet, but only
  after `enable_binary_protocol(True)` has been called.
- `process_packet(packet)` runs a single packet directly. It sends the
  response and returns it.

The protocol handles these commands:

- System commands: status, reset, save, load, emergency stop, and reset of
  emergency stop.
- Motion commands: enable, disable, move, velocity, stop, emergency stop,
  home, and set position.
- Status commands: motor status, position, velocity, all positions, and
  metrics.
- Config commands: get and set PID, get and set profile, and get and set
  soft limits.
- Debug commands: set log level, read logs, clear logs, and enable or
  disable binary mode.

A failed command is answered with status `ERROR`. The detailed
`ResponseStatus` is kept in `last_error`, a `CommandFailure`.

### `motionctl.console` and `motionctl.commands`

`CommandLine` is a case-insensitive registry of commands. It has
`add_command`, `find`, `commands`, `execute` and `help_text`. Its `feed(data)`
method buffers typed characters and echoes them, handles backspace, and runs
each line that ends with CR or LF. Handlers return the response text and
raise `CommandError` to report a failure. `parse_command(line)` splits a
line into the command name and its parameters.

```python
from motionctl.console import CommandLine

cli = CommandLine(output=lambda text: None)
cli.add_command("echo", "<text>", "Repeat the text", lambda params: params)
cli.execute("ECHO hello")  # 'hello'
```

`SerialCommand(system=None, output=None, default_motion=(1000.0, 500.0, 500.0))`
registers the built-in commands when `initialize()` is called. The commands
are:

- `help`, `status`, `motor`, `move`, `stop`, `home` and `pid`
- `reset`, `save`, `load`, `estop`, `debug` and `shutdown`
- `status_output`

Run a single line with `execute(line)`, or pass typed input to
`process_input(data)`.

## What the package does not do

- It contains no motor, encoder, PID controller, safety monitor, logger, task
  scheduler or storage implementation. These are supplied by the caller, and
  the package relies only on the members listed above.
- It opens no serial port. It has no command-line program of its own: you
  attach `CommandProtocol` and `SerialCommand` to a transport or output of
  your choosing.

## Running the tests

```
pip install .[test]
pytest
```