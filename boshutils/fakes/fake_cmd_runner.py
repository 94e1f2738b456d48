"""A command runner for tests that records calls and replays canned results."""

from __future__ import annotations

import io
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import IO, Callable, Optional

from boshutils.system.command import CmdRunner, Command, Process, Result

FakeCmdCallback = Callable[[], None]


@dataclass
class FakeCmdResult:
    """A canned outcome for one run of a command."""

    stdout: str = ""
    stderr: str = ""
    exit_status: int = 0
    error: Optional[BaseException] = None
    # When set, this result is returned every time the command runs.
    sticky: bool = False


@dataclass
class FakeProcess(Process):
    """A process handed out by FakeCmdRunner.run_complex_command_async."""

    start_err: Optional[BaseException] = None
    wait_result: Result = field(default_factory=lambda: Result(exit_status=0))
    wait_future: Optional["Future[Result]"] = None
    waited: bool = False

    terminated_nicely: bool = False
    terminated_nicely_callback: Optional[Callable[["FakeProcess"], None]] = None
    terminate_nicely_kill_grace_period: float = 0.0
    terminate_nicely_err: Optional[BaseException] = None

    stdout: Optional[IO] = None
    stderr: Optional[IO] = None

    def wait(self) -> "Future[Result]":
        """Return a future; it is resolved at once unless a terminate callback is set."""
        if self.waited:
            raise RuntimeError("Cannot Wait() on process multiple times")
        self.waited = True
        self.wait_future = Future()
        if self.terminated_nicely_callback is None:
            self.wait_future.set_result(self.wait_result)
        return self.wait_future

    def terminate_nicely(self, kill_grace_period: float) -> None:
        self.terminate_nicely_kill_grace_period = kill_grace_period
        self.terminated_nicely = True
        if self.terminated_nicely_callback is not None:
            self.terminated_nicely_callback(self)
        if self.terminate_nicely_err is not None:
            raise self.terminate_nicely_err


def _write_to(sink: IO, text: str) -> None:
    if isinstance(sink, io.TextIOBase):
        sink.write(text)
    else:
        sink.write(text.encode())


class FakeCmdRunner(CmdRunner):
    """Records every command run and answers with results registered beforehand."""

    def __init__(self) -> None:
        self._command_results: dict[str, list[FakeCmdResult]] = {}
        self._command_results_lock = threading.RLock()
        self._processes: dict[str, list[FakeProcess]] = {}
        self._processes_lock = threading.RLock()
        self._callbacks: dict[str, FakeCmdCallback] = {}

        self.run_complex_commands: list[Command] = []
        self.run_commands: list[list[str]] = []
        self.run_commands_with_input: list[list[str]] = []
        self.run_commands_quietly: list[list[str]] = []

        self.command_exists_value = False
        self.available_commands: dict[str, bool] = {}

    def run_complex_command(self, cmd: Command) -> Result:
        with self._command_results_lock:
            self.run_complex_commands.append(cmd)
            run_cmd = [cmd.name, *cmd.args]
            self._run_callback(run_cmd)
            canned = self._outputs_for(run_cmd)

            if cmd.stdout is not None:
                _write_to(cmd.stdout, canned.stdout)
            if cmd.stderr is not None:
                _write_to(cmd.stderr, canned.stderr)

            return self._finish(canned)

    def run_complex_command_async(self, cmd: Command) -> FakeProcess:
        with self._processes_lock:
            self.run_complex_commands.append(cmd)
            run_cmd = [cmd.name, *cmd.args]
            self._run_callback(run_cmd)

            full_cmd = " ".join(run_cmd)
            processes = self._processes.get(full_cmd)
            if processes is None:
                raise LookupError(f"Failed to find process for {full_cmd}")

            processes[0].stdout = cmd.stdout
            processes[0].stderr = cmd.stderr

            for process in processes:
                if not process.waited:
                    if process.start_err is not None:
                        raise process.start_err
                    return process

            raise LookupError(f"Failed to find available process for {full_cmd}")

    def run_command(self, name: str, *args: str) -> Result:
        with self._command_results_lock:
            run_cmd = [name, *args]
            self.run_commands.append(run_cmd)
            self._run_callback(run_cmd)
            return self._finish(self._outputs_for(run_cmd))

    def clear_command_history(self) -> None:
        with self._command_results_lock:
            self.run_commands = []
            self.run_commands_quietly = []
            self.run_commands_with_input = []

    def run_command_quietly(self, name: str, *args: str) -> Result:
        with self._command_results_lock:
            run_cmd = [name, *args]
            self.run_commands_quietly.append(run_cmd)
            self._run_callback(run_cmd)
            return self._finish(self._outputs_for(run_cmd))

    def run_command_with_input(self, input_text: str, name: str, *args: str) -> Result:
        with self._command_results_lock:
            run_cmd = [input_text, name, *args]
            self.run_commands_with_input.append(run_cmd)
            self._run_callback(run_cmd)
            return self._finish(self._outputs_for(run_cmd))

    def command_exists(self, name: str) -> bool:
        return self.command_exists_value or self.available_commands.get(name, False)

    def add_cmd_result(self, full_cmd: str, result: FakeCmdResult) -> None:
        with self._command_results_lock:
            self._command_results.setdefault(full_cmd, []).append(result)

    def add_process(self, full_cmd: str, process: FakeProcess) -> None:
        with self._processes_lock:
            self._processes.setdefault(full_cmd, []).append(process)

    def set_cmd_callback(self, full_cmd: str, callback: FakeCmdCallback) -> None:
        self._callbacks[full_cmd] = callback

    def _outputs_for(self, run_cmd: list[str]) -> FakeCmdResult:
        full_cmd = " ".join(run_cmd)
        results = self._command_results.get(full_cmd)
        if not results:
            return FakeCmdResult(exit_status=-1)

        result = results[0]
        if not result.sticky:
            remaining = results[1:]
            if remaining:
                self._command_results[full_cmd] = remaining
            else:
                del self._command_results[full_cmd]
        return result

    @staticmethod
    def _finish(canned: FakeCmdResult) -> Result:
        if canned.error is not None:
            raise canned.error
        return Result(stdout=canned.stdout, stderr=canned.stderr, exit_status=canned.exit_status)

    def _run_callback(self, run_cmd: list[str]) -> None:
        callback = self._callbacks.get(" ".join(run_cmd))
        if callback is not None:
            callback()