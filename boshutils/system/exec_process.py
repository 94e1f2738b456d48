"""A started external process whose output is captured or forwarded."""

from __future__ import annotations

import codecs
import errno
import io
import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from concurrent.futures import Future
from functools import partial
from typing import IO, Mapping, Optional, Sequence, Union

from boshutils.system.command import Process, Result
from boshutils.system.exec_error import ExecError

LOG_TAG = "Cmd Runner"

_POLL_INTERVAL = 0.5
_KILL_CHECKS = 20
_CHUNK_SIZE = 65536
_IS_WINDOWS = os.name == "nt"

_default_logger = logging.getLogger("boshutils.system")

StdinSource = Union[str, bytes, IO]


def _describe_returncode(returncode: int) -> str:
    if returncode < 0:
        text = signal.strsignal(-returncode) or f"signal {-returncode}"
        return f"signal: {text.lower()}"
    return f"exit status {returncode}"


def _exit_status(returncode: int) -> int:
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


class CommandFailedError(ExecError):
    """A command ran and exited with a non-zero status or was killed by a signal."""

    def __init__(self, command: str, stdout: str, stderr: str, returncode: int) -> None:
        self.returncode = returncode
        self.exit_status = _exit_status(returncode)
        self.reason = _describe_returncode(returncode)
        super().__init__(command, stdout, stderr)

    def __str__(self) -> str:
        return f"{super().__str__()}: {self.reason}"


def _pump(source: IO[bytes], sink: Optional[IO], buffer: bytearray) -> None:
    decoder = None
    if sink is not None and isinstance(sink, io.TextIOBase):
        decoder = codecs.getincrementaldecoder("utf-8")("replace")
    with source:
        for chunk in iter(partial(source.read1, _CHUNK_SIZE), b""):
            if sink is None:
                buffer.extend(chunk)
            elif decoder is not None:
                sink.write(decoder.decode(chunk))
            else:
                sink.write(chunk)
    if decoder is not None:
        tail = decoder.decode(b"", final=True)
        if tail:
            sink.write(tail)


def _feed(sink: IO[bytes], source: StdinSource) -> None:
    try:
        if isinstance(source, str):
            data = source.encode()
        elif isinstance(source, (bytes, bytearray)):
            data = bytes(source)
        else:
            read = source.read()
            data = read.encode() if isinstance(read, str) else read
        sink.write(data)
    except BrokenPipeError:
        pass
    finally:
        try:
            sink.close()
        except BrokenPipeError:
            pass


def _resolve_executable(name: str) -> Optional[str]:
    if os.sep in name or (os.altsep and os.altsep in name):
        return None
    return shutil.which(name)


class ExecProcess(Process):
    """An external process started from an argument list.

    Unless a writer is given for stdout or stderr, the stream is captured
    and returned in the Result.
    """

    def __init__(
        self,
        args: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        working_dir: Optional[Union[str, os.PathLike]] = None,
        stdin: Optional[StdinSource] = None,
        stdout: Optional[IO] = None,
        stderr: Optional[IO] = None,
        keep_attached: bool = False,
        quiet: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not args:
            raise ValueError("A command needs at least a name")
        self._args = [os.fspath(a) for a in args]
        self._env = dict(env) if env is not None else None
        self._working_dir = os.fspath(working_dir) if working_dir else None
        self._stdin = stdin
        self._stdout_sink = stdout
        self._stderr_sink = stderr
        self._keep_attached = keep_attached
        self._quiet = quiet
        self._logger = logger or _default_logger

        self._popen: Optional[subprocess.Popen] = None
        self._threads: list[threading.Thread] = []
        self._stdout_buffer = bytearray()
        self._stderr_buffer = bytearray()
        self._pgid: Optional[int] = None
        self._future: Optional["Future[Result]"] = None

    @property
    def command_string(self) -> str:
        return " ".join(self._args)

    @property
    def pid(self) -> Optional[int]:
        return self._popen.pid if self._popen is not None else None

    def _debug(self, message: str, *args: object) -> None:
        self._logger.debug(message, *args, extra={"tag": LOG_TAG})

    def start(self) -> None:
        """Start the process; raise OSError if it cannot be started."""
        if self._popen is not None:
            raise RuntimeError("start() must be called only once")

        cmd_string = self.command_string
        self._debug("Running command '%s'", cmd_string)

        executable = _resolve_executable(self._args[0])
        if executable is None and os.sep not in self._args[0] and not (
            os.altsep and os.altsep in self._args[0]
        ):
            raise FileNotFoundError(
                errno.ENOENT,
                f"Starting command '{cmd_string}': executable file not found in $PATH",
            )

        options: dict = {}
        if not _IS_WINDOWS:
            options["start_new_session"] = not self._keep_attached

        try:
            self._popen = subprocess.Popen(
                self._args,
                executable=executable,
                stdin=subprocess.PIPE if self._stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._env,
                cwd=self._working_dir,
                **options,
            )
        except OSError as exc:
            if exc.errno is None:
                raise OSError(f"Starting command '{cmd_string}': {exc}") from exc
            raise OSError(exc.errno, f"Starting command '{cmd_string}': {exc.strerror}") from exc

        if not _IS_WINDOWS:
            if not self._keep_attached:
                self._pgid = self._popen.pid
            else:
                try:
                    self._pgid = os.getpgid(self._popen.pid)
                except OSError:
                    self._logger.error(
                        "Failed to retrieve pgid for command '%s'", cmd_string, extra={"tag": LOG_TAG}
                    )
                    self._pgid = -1

        self._threads = [
            threading.Thread(
                target=_pump,
                args=(self._popen.stdout, self._stdout_sink, self._stdout_buffer),
                daemon=True,
            ),
            threading.Thread(
                target=_pump,
                args=(self._popen.stderr, self._stderr_sink, self._stderr_buffer),
                daemon=True,
            ),
        ]
        if self._stdin is not None:
            self._threads.append(
                threading.Thread(target=_feed, args=(self._popen.stdin, self._stdin), daemon=True)
            )
        for thread in self._threads:
            thread.start()

    def wait(self) -> "Future[Result]":
        """Return a future that resolves with the Result; may be called only once."""
        if self._future is not None:
            raise RuntimeError("wait() must be called only once")
        if self._popen is None:
            raise RuntimeError("wait() must be called after start()")
        future: "Future[Result]" = Future()
        self._future = future

        def run() -> None:
            try:
                future.set_result(self._collect())
            except BaseException as exc:  # noqa: BLE001 - delivered through the future
                future.set_exception(exc)

        threading.Thread(target=run, daemon=True).start()
        return future

    def _collect(self) -> Result:
        assert self._popen is not None
        returncode = self._popen.wait()
        for thread in self._threads:
            thread.join()

        stdout = self._stdout_buffer.decode("utf-8", errors="replace")
        if not self._quiet:
            self._debug("Stdout: %s", stdout)
        stderr = self._stderr_buffer.decode("utf-8", errors="replace")
        if not self._quiet:
            self._debug("Stderr: %s", stderr)

        exit_status = _exit_status(returncode)
        self._debug("Successful: %s (%d)", returncode == 0, exit_status)

        error = None
        if returncode != 0:
            error = CommandFailedError(self.command_string, stdout, stderr, returncode)
        return Result(stdout=stdout, stderr=stderr, exit_status=exit_status, error=error)

    def terminate_nicely(self, kill_grace_period: float) -> None:
        """Send SIGTERM to the process group, then SIGKILL after the grace period.

        Must be called after wait(); may be called several times.
        """
        if self._future is None:
            raise RuntimeError("terminate_nicely() must be called after wait()")
        if _IS_WINDOWS:
            self._terminate_windows()
            return

        self._signal_group_or_raise(signal.SIGTERM, "SIGTERM")

        deadline = time.monotonic() + kill_grace_period
        while self._group_exists():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._signal_group_or_raise(signal.SIGKILL, "SIGKILL")
                break
            time.sleep(min(_POLL_INTERVAL, remaining))

        # It takes some time for the processes to disappear.
        for _ in range(_KILL_CHECKS):
            if not self._group_exists():
                return
            time.sleep(_POLL_INTERVAL)

        raise RuntimeError(f"Failed to kill process after grace timeout (PID {self.pid})")

    def _terminate_windows(self) -> None:
        assert self._popen is not None
        self._debug("Terminating process with PID '%d'", self._popen.pid)
        if self._popen.poll() is not None:
            self._debug("Skipping process termination: process exited")
            return
        try:
            self._popen.kill()
        except OSError as exc:
            raise OSError(f"Terminating process: {exc!r}") from exc

    def _signal_group_or_raise(self, sig: int, name: str) -> None:
        try:
            self._signal_group(sig)
        except OSError as exc:
            raise OSError(
                exc.errno, f"Sending {name} to process group {self._pgid}: {exc.strerror}"
            ) from exc

    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(self._pgid, sig)
        except (ProcessLookupError, PermissionError):
            # The group is gone (on BSD a process awaiting reaping has no owner).
            pass

    def _group_exists(self) -> bool:
        try:
            os.killpg(self._pgid, 0)
        except (ProcessLookupError, PermissionError):
            return False
        except OSError:
            return True
        return True