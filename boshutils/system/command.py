"""Descriptions of commands to run and the interfaces that run them."""

from __future__ import annotations

import abc
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import IO, Optional, Union


@dataclass
class Command:
    """A command to run, with its environment and I/O settings."""

    name: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    use_isolated_env: bool = False
    working_dir: Optional[str] = None
    # On POSIX, when set the child stays in the caller's process group.
    keep_attached: bool = False
    # Do not log stdout/stderr contents.
    quiet: bool = False
    stdin: Optional[Union[str, bytes, IO]] = None
    # Output goes to these writers instead of being captured when they are set.
    stdout: Optional[IO] = None
    stderr: Optional[IO] = None


@dataclass
class Result:
    """Outcome of a finished process."""

    stdout: str = ""
    stderr: str = ""
    exit_status: int = -1
    error: Optional[BaseException] = None


class Process(abc.ABC):
    """A started process."""

    @abc.abstractmethod
    def wait(self) -> "Future[Result]":
        """Return a future resolved with the Result; may be called only once."""

    @abc.abstractmethod
    def terminate_nicely(self, kill_grace_period: float) -> None:
        """Ask the process to stop, killing it after the grace period in seconds.

        May be called several times, but only after wait().
        """


class CmdRunner(abc.ABC):
    """Runs external commands."""

    @abc.abstractmethod
    def run_complex_command(self, cmd: Command) -> Result:
        """Run cmd to completion; raise if it does not run or exits non-zero."""

    @abc.abstractmethod
    def run_complex_command_async(self, cmd: Command) -> Process:
        """Start cmd and return the running process."""

    @abc.abstractmethod
    def run_command(self, name: str, *args: str) -> Result:
        """Run a command with arguments."""

    @abc.abstractmethod
    def run_command_quietly(self, name: str, *args: str) -> Result:
        """Run a command without logging its output."""

    @abc.abstractmethod
    def run_command_with_input(self, input_text: str, name: str, *args: str) -> Result:
        """Run a command feeding input_text to its stdin."""

    @abc.abstractmethod
    def command_exists(self, name: str) -> bool:
        """Return whether the command can be found on the search path."""