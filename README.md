# boshutils

Small building blocks for programs that run commands and manage files,
each paired with an in-memory fake so code built on them can be tested
without touching the real system. The package has no dependencies outside
the standard library.

## Install

    pip install boshutils

For running the tests:

    pip install "boshutils[test]"

## Running commands

`boshutils.system.command` describes commands and the interfaces that run
them:

- `Command` holds a name, `args`, `env`, `use_isolated_env`, `working_dir`,
  `keep_attached`, `quiet`, `stdin` (a string, bytes or a file object) and
  optional `stdout` / `stderr` writers.
- `Result` holds `stdout`, `stderr`, `exit_status` and `error`.
- `CmdRunner` and `Process` are the abstract interfaces.

`boshutils.system.exec_cmd_runner.ExecCmdRunner` runs commands as child
processes. Its `run_command`, `run_command_quietly`,
`run_command_with_input` and `run_complex_command` methods return a
`Result`. A command that exits with a non-zero status, or is killed by a
signal, raises `CommandFailedError`; a command that cannot be found or
started raises `OSError` (`FileNotFoundError` when it is not on the search
path). `command_exists` looks a name up on the search path.

The environment given in a `Command` is merged over the current process
environment (`merge_env`); names are compared case-sensitively on POSIX and
case-insensitively on Windows (`merge_env_posix`, `merge_env_windows`). With
`use_isolated_env` only the command's own variables are passed; this is
refused on Windows.

`boshutils.system.exec_process.ExecProcess` is the started process returned
by `run_complex_command_async`. `wait()` may be called once and returns a
`concurrent.futures.Future` that resolves to the `Result`.
`terminate_nicely(kill_grace_period)` (seconds) sends SIGTERM to the
process's whole process group, then SIGKILL if the group is still there
when the grace period runs out; on Windows it kills the process.

`boshutils.system.exec_error.ExecError` carries the command and its full
output; `short_error()` gives the same message with stdout and stderr cut
to their last 100 lines. `CommandFailedError` is an `ExecError` that also
has `returncode`, `exit_status` (128 plus the signal number for a killed
process) and `reason`.

Log messages go to the standard `logging` module (logger
`boshutils.system` unless you pass your own); stdout and stderr contents
are not logged for quiet commands.

```python
from boshutils.system.command import Command
from boshutils.system.exec_cmd_runner import ExecCmdRunner
from boshutils.system.exec_process import CommandFailedError

runner = ExecCmdRunner()
result = runner.run_command("echo", "Hello World!")
print(result.stdout, result.exit_status)   # "Hello World!\n" 0

try:
    runner.run_complex_command(Command(name="bash", args=["-c", "exit 14"]))
except CommandFailedError as err:
    print(err.exit_status)                  # 14
```

## Files

`boshutils.system.os_file_system.OsFileSystem` implements the abstract
`FileSystem` over the local disk. Besides reading, writing, stat, chmod,
chown, rename, globbing and walking, it:

- creates missing parent directories when writing a file;
- writes a file only when its contents differ (`converge_file_contents`,
  returning whether the file changed; pass
  `ConvergeFileContentsOpts(dry_run=True)` to only report);
- makes symlinks that replace whatever is at the link path, leaving a link
  alone when it already points at the intended target;
- copies files and whole directory trees, keeping permission bits;
- creates temporary files and directories, under a root set with
  `change_temp_root`; built with `requires_temp_root=True` it refuses to
  create them until a root is set.

`StatOpts(quiet=True)` and `ReadOpts(quiet=True)` turn off logging for one
call, and `write_file_quietly` writes without logging. Failures wrapped
with context are raised as `FileSystemError`, which keeps the underlying
error as its `cause`; others are the plain `OSError`.

## IPv4 networks

```python
from boshutils.system.ip_helper import calculate_network_and_broadcast

calculate_network_and_broadcast("192.168.195.6", "255.255.255.0")
# ("192.168.195.0", "192.168.195.255", 24)
```

An unparsable address or netmask raises `ValueError`; for IPv6 the result
is `("", "", 0)`.

## UUIDs and worker pools

- `boshutils.uuidgen.UUIDv4Generator().generate()` returns a random
  version 4 UUID string; `Generator` is the abstract interface.
- `boshutils.work.Pool(count).parallel_do(*tasks)` runs callables on
  `count` worker threads. A worker whose task raises takes no further
  tasks; tasks already running are waited for, and all collected errors
  are raised together as one `MultiError` (its `errors` list holds them).

## Fakes for tests

`boshutils.fakes` has stand-ins with the same methods as the real classes:

- `fake_cmd_runner.FakeCmdRunner` records every command
  (`run_commands`, `run_commands_quietly`, `run_commands_with_input`,
  `run_complex_commands`) and answers with `FakeCmdResult`s registered by
  `add_cmd_result`; a result is used once unless it is `sticky`, and a
  result with an `error` raises it. Unregistered commands give an empty
  `Result` with exit status -1. `add_process` supplies `FakeProcess`
  objects for `run_complex_command_async`, and `set_cmd_callback` runs a
  function whenever a command is run.
- `fake_file_system.FakeFileSystem` keeps files, directories and symlinks
  in memory (as `FakeFileStats`, opened as `fake_file.FakeFile`), counts
  calls, and lets you inject errors per operation or per path.
- `fake_generator.FakeGenerator` returns `fake-uuid-0`, `fake-uuid-1`, and
  so on, unless `generated_uuid` or `generate_error` is set.

```python
from boshutils.fakes.fake_cmd_runner import FakeCmdResult, FakeCmdRunner
from boshutils.fakes.fake_file_system import FakeFileSystem

runner = FakeCmdRunner()
runner.add_cmd_result("foo bar", FakeCmdResult(stdout="nice"))
assert runner.run_command("foo", "bar").stdout == "nice"
assert runner.run_commands == [["foo", "bar"]]

fs = FakeFileSystem()
fs.write_file_string("/etc/app/config", "content1")
assert fs.converge_file_contents("/etc/app/config", b"content2") is True
assert fs.read_file_string("/etc/app/config") == "content2"
```

## What this package does not do

It is a library only: it installs no command-line program. It has no
logger of its own beyond the standard `logging` module, and
`OsFileSystem.chown` does nothing on Windows.