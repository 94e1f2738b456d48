"""Running commands as child processes."""

from __future__ import annotations

import logging
import os
import shutil
from typing import Mapping, Optional

from boshutils.system.command import CmdRunner, Command, Result
from boshutils.system.exec_process import ExecProcess

_IS_WINDOWS = os.name == "nt"


def merge_env_posix(sys_env: Mapping[str, str], cmd_env: Mapping[str, str]) -> dict[str, str]:
    """Merge environments; command variables override same-named system ones."""
    merged = dict(cmd_env)
    for key, value in sys_env.items():
        if key not in cmd_env:
            merged[key] = value
    return merged


def merge_env_windows(sys_env: Mapping[str, str], cmd_env: Mapping[str, str]) -> dict[str, str]:
    """Merge environments comparing names case-insensitively.

    Command variables are taken in sorted name order so that duplicates
    differing only in case resolve deterministically.
    """
    merged: dict[str, str] = {}
    seen: set[str] = set()
    for key in sorted(cmd_env):
        upper = key.upper()
        if upper not in seen:
            merged[key] = cmd_env[key]
            seen.add(upper)
    for key, value in sys_env.items():
        upper = key.upper()
        if upper not in seen:
            merged[key] = value
            seen.add(upper)
    return merged


def merge_env(sys_env: Mapping[str, str], cmd_env: Mapping[str, str]) -> dict[str, str]:
    """Merge environments using the current platform's rules."""
    if _IS_WINDOWS:
        return merge_env_windows(sys_env, cmd_env)
    return merge_env_posix(sys_env, cmd_env)


class ExecCmdRunner(CmdRunner):
    """Runs commands as real child processes."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("boshutils.system")

    def _start(self, cmd: Command) -> ExecProcess:
        if cmd.use_isolated_env and _IS_WINDOWS:
            raise ValueError("UseIsolatedEnv is not supported on Windows")
        sys_env: Mapping[str, str] = {} if cmd.use_isolated_env else os.environ
        process = ExecProcess(
            [cmd.name, *cmd.args],
            env=merge_env(sys_env, cmd.env),
            working_dir=cmd.working_dir or None,
            stdin=cmd.stdin,
            stdout=cmd.stdout,
            stderr=cmd.stderr,
            keep_attached=cmd.keep_attached,
            quiet=cmd.quiet,
            logger=self._logger,
        )
        process.start()
        return process

    def run_complex_command(self, cmd: Command) -> Result:
        result = self._start(cmd).wait().result()
        if result.error is not None:
            raise result.error
        return result

    def run_complex_command_async(self, cmd: Command) -> ExecProcess:
        return self._start(cmd)

    def run_command(self, name: str, *args: str) -> Result:
        return self.run_complex_command(Command(name=name, args=list(args)))

    def run_command_quietly(self, name: str, *args: str) -> Result:
        return self.run_complex_command(Command(name=name, args=list(args), quiet=True))

    def run_command_with_input(self, input_text: str, name: str, *args: str) -> Result:
        return self.run_complex_command(Command(name=name, args=list(args), stdin=input_text))

    def command_exists(self, name: str) -> bool:
        return shutil.which(name) is not None