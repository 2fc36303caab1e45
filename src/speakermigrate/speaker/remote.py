"""Remote shell contract shared by the SSH client and the migration code."""

from __future__ import annotations

from typing import Protocol

from speakermigrate.speaker.commands import ShellCommand, cat, file_test


class RemoteShellError(RuntimeError):
    """Raised when a remote command or upload does not succeed.

    ``output`` keeps whatever the device printed before failing so callers
    can put it into their operation log.
    """

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class RemoteShell(Protocol):
    """Two-method collaborator used for every speaker round-trip."""

    def run(self, command: ShellCommand) -> str:
        """Run ``command`` and return its combined output.

        Raises :class:`RemoteShellError` on a non-zero exit status or when
        the device cannot be reached.
        """

    def upload(self, content: bytes, remote_path: str) -> None:
        """Write ``content`` to ``remote_path`` on the device."""


def try_run(shell: RemoteShell, command: ShellCommand) -> tuple[bool, str]:
    """Run a command whose failure the caller only wants to record."""

    try:
        return True, shell.run(command)
    except RemoteShellError as exc:
        return False, exc.output or str(exc)


def file_exists(shell: RemoteShell, path: str) -> bool:
    ok, _ = try_run(shell, file_test(path))
    return ok


def read_file(shell: RemoteShell, path: str) -> str | None:
    """Return the file text, or ``None`` when it cannot be read."""

    ok, output = try_run(shell, cat(path))
    return output if ok else None
