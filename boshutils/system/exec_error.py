"""Error raised when an executed command fails."""

from __future__ import annotations

_MESSAGE_FORMAT = "Running command: '{command}', stdout: '{stdout}', stderr: '{stderr}'"
SHORT_ERROR_MAX_LINES = 100


def _last_lines(text: str, max_lines: int) -> str:
    lines = text.split("\n")
    return "\n".join(lines[-max_lines:])


class ExecError(Exception):
    """A command ran but did not succeed; carries its full output."""

    def __init__(self, command: str, stdout: str, stderr: str) -> None:
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(self._format(stdout, stderr))

    def _format(self, stdout: str, stderr: str) -> str:
        return _MESSAGE_FORMAT.format(command=self.command, stdout=stdout, stderr=stderr)

    def __str__(self) -> str:
        return self._format(self.stdout, self.stderr)

    def short_error(self) -> str:
        """Return the message with stdout and stderr cut to their last 100 lines."""
        return self._format(
            _last_lines(self.stdout, SHORT_ERROR_MAX_LINES),
            _last_lines(self.stderr, SHORT_ERROR_MAX_LINES),
        )