"""SoundTouch speaker SSH client implementation."""

from __future__ import annotations

import logging
import shlex
import socket
from dataclasses import dataclass, field
from typing import Any, Callable

import paramiko

from speakermigrate.speaker.commands import ShellCommand, render
from speakermigrate.speaker.remote import RemoteShellError

logger = logging.getLogger(__name__)


class SpeakerAuthenticationError(RemoteShellError):
    """Raised when SSH authentication fails."""


class SpeakerConnectionError(RemoteShellError):
    """Raised when the SSH session cannot be established."""


@dataclass(slots=True)
class SpeakerShell:
    """SSH client for SoundTouch speakers.

    Every ``run``/``upload`` opens its own session and closes it afterwards;
    speakers drop idle connections quickly and commands are independent.
    """

    host: str
    username: str = "root"
    password: str = ""
    port: int = 22
    timeout: float = 10.0
    log_extra: dict[str, Any] = field(default_factory=dict)

    def run(self, command: ShellCommand) -> str:
        rendered = render(command)
        extra = self._extra()
        logger.debug("executing speaker command='%s'", rendered, extra=extra)
        client = self._connect()
        try:
            output, exit_status = self._exec(client, rendered)
        finally:
            client.close()

        if exit_status != 0:
            logger.debug("speaker command failed status=%s command='%s'", exit_status, rendered, extra=extra)
            raise RemoteShellError(f"command exited with status {exit_status}: {rendered}", output)
        return output

    def upload(self, content: bytes, remote_path: str) -> None:
        rendered = f"cat > {shlex.quote(remote_path)}"
        extra = self._extra()
        logger.debug("uploading bytes=%d path=%s", len(content), remote_path, extra=extra)
        client = self._connect()
        try:
            channel = self._open_channel(client)
            try:
                channel.exec_command(rendered)
                channel.sendall(content)
                channel.shutdown_write()
                error_output = _drain(channel.makefile_stderr("rb")).decode("utf-8", errors="replace")
                exit_status = channel.recv_exit_status()
            finally:
                channel.close()
        except (paramiko.SSHException, socket.error) as exc:  # pragma: no cover - network dependent
            raise RemoteShellError(f"upload to {remote_path} failed: {exc}") from exc
        finally:
            client.close()

        if exit_status != 0:
            raise RemoteShellError(
                f"upload to {remote_path} failed with status {exit_status} (stderr: {error_output})",
                error_output,
            )
        logger.debug("upload finished path=%s", remote_path, extra=extra)

    def _extra(self) -> dict[str, Any]:
        return {"device": self.host, **self.log_extra}

    def _connect(self) -> paramiko.SSHClient:
        ssh = paramiko.SSHClient()
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            logger.debug("opening ssh session host=%s port=%s", self.host, self.port, extra=self._extra())
            ssh.connect(
                self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                look_for_keys=False,
                allow_agent=False,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
            )
            return ssh
        except paramiko.AuthenticationException as exc:  # pragma: no cover - network dependent
            ssh.close()
            raise SpeakerAuthenticationError("SSH authentication failed", str(exc)) from exc
        except (paramiko.SSHException, socket.error, TimeoutError) as exc:  # pragma: no cover - network dependent
            ssh.close()
            raise SpeakerConnectionError(f"SSH connection failed: {exc}", str(exc)) from exc

    def _open_channel(self, client: paramiko.SSHClient) -> paramiko.Channel:
        transport = client.get_transport()
        if transport is None:  # pragma: no cover - network dependent
            raise SpeakerConnectionError("SSH transport is not available")
        channel = transport.open_session(timeout=self.timeout)
        channel.settimeout(self.timeout)
        return channel

    def _exec(self, client: paramiko.SSHClient, command: str) -> tuple[str, int]:
        try:
            channel = self._open_channel(client)
            try:
                channel.set_combine_stderr(True)
                channel.exec_command(command)
                output = _drain(channel.makefile("rb")).decode("utf-8", errors="replace")
                exit_status = channel.recv_exit_status()
            finally:
                channel.close()
        except (paramiko.SSHException, socket.error) as exc:  # pragma: no cover - network dependent
            raise RemoteShellError(f"Unable to execute command '{command}': {exc}") from exc
        return output, exit_status


def _drain(stream: Any) -> bytes:
    try:
        return stream.read()
    finally:
        stream.close()


def make_shell_factory(
    username: str = "root",
    port: int = 22,
    timeout: float = 10.0,
    password_for: Callable[[str], str] | None = None,
    port_for: Callable[[str], int | None] | None = None,
) -> Callable[[str], SpeakerShell]:
    """Return a ``host -> SpeakerShell`` factory for the migration manager."""

    def factory(host: str) -> SpeakerShell:
        password = password_for(host) if password_for else ""
        host_port = port_for(host) if port_for else None
        return SpeakerShell(
            host=host,
            username=username,
            password=password,
            port=host_port or port,
            timeout=timeout,
        )

    return factory
