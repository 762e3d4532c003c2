"""Line-oriented command interpreter for a serial console."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Callable, Optional

DEFAULT_BUFFER_SIZE = 128
PROMPT = "> "
ANSI_BLUE = "\x1b[34m"
ANSI_RESET = "\x1b[0m"

_BACKSPACE_CHARS = ("\x08", "\x7f")
_LINE_ENDINGS = ("\r", "\n")

Handler = Callable[[str], str]


class CommandError(Exception):
    """A command failed; the message is the response shown to the user."""


@dataclass
class Command:
    """A registered console command."""

    name: str
    params: str
    description: str
    handler: Handler

    @property
    def usage(self) -> str:
        return f"{self.name} {self.params}" if self.params else self.name


def parse_command(line: str) -> tuple[str, str]:
    """Split ``line`` at its first space into the command name and trimmed parameters."""
    name, sep, params = line.partition(" ")
    if not sep:
        return line, ""
    return name, params.strip()


def _stdout_write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class CommandLine:
    """Registry of commands plus an input buffer that echoes and executes lines.

    Handlers take the parameter string and return the response; they raise
    CommandError to report a failure.
    """

    def __init__(
        self,
        output: Optional[Callable[[str], object]] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        if buffer_size < 2:
            raise ValueError("Buffer size must be at least 2")
        self._output = output or _stdout_write
        self.buffer_size = buffer_size
        self._commands: list[Command] = []
        self._buffer: list[str] = []

    @property
    def pending(self) -> str:
        """Characters typed but not yet executed."""
        return "".join(self._buffer)

    def add_command(self, name: str, params: str, description: str, handler: Handler) -> Command:
        """Register a command, replacing any existing one with the same name."""
        existing = self.find(name)
        if existing is not None:
            existing.params = params
            existing.description = description
            existing.handler = handler
            return existing
        command = Command(name, params, description, handler)
        self._commands.append(command)
        return command

    def find(self, name: str) -> Optional[Command]:
        """The command called ``name`` (case-insensitive), or None."""
        wanted = name.lower()
        return next((c for c in self._commands if c.name.lower() == wanted), None)

    @property
    def commands(self) -> tuple[Command, ...]:
        return tuple(self._commands)

    def execute(self, line: str) -> str:
        """Run one command line and return its response; raises CommandError on failure."""
        name, params = parse_command(line)
        name = name.lower()
        command = self.find(name)
        if command is None:
            raise CommandError(
                f"\nUnknown command '{name}'. Type {ANSI_BLUE}'help'{ANSI_RESET} "
                "for available commands."
            )
        try:
            return command.handler(params)
        except CommandError as error:
            if not str(error):
                raise CommandError("Error executing command") from error
            raise

    def feed(self, data: str) -> list[tuple[bool, str]]:
        """Process typed characters, echoing them; returns (success, response) per line run."""
        results: list[tuple[bool, str]] = []
        for char in data:
            if char in _LINE_ENDINGS:
                if not self._buffer:
                    continue
                line = "".join(self._buffer)
                self._buffer.clear()
                try:
                    response, success = self.execute(line), True
                except CommandError as error:
                    response, success = str(error), False
                if response:
                    self._output(response + "\n")
                results.append((success, response))
                self._output(PROMPT)
            elif char in _BACKSPACE_CHARS:
                if self._buffer:
                    self._buffer.pop()
                    self._output("\b \b")
            elif len(self._buffer) < self.buffer_size - 1:
                self._buffer.append(char)
                self._output(char)
        return results

    def help_text(self, name: Optional[str] = None) -> str:
        """Overview of all commands, or details of one; raises CommandError if unknown."""
        if not name:
            lines = ["Available commands:"]
            lines.extend(f"  {command.usage}" for command in self._commands)
            lines.append("Type 'help <command>' for more information on a specific command.")
            return "\n".join(lines)
        command = self.find(name)
        if command is None:
            raise CommandError(f"Unknown command '{name}'.")
        return (
            f"Command: {command.name}\n"
            f"Usage: {command.usage}\n"
            f"Description: {command.description}"
        )