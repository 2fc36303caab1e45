"""Structured shell commands for speaker round-trips.

Commands are kept as argument tuples and chains until the transport needs a
string. ``render()`` quotes every argument with :func:`shlex.quote`, so path
constants and interpolated values never need hand-escaping at call sites.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Literal, Union

ChainOperator = Literal["&&", "||", "|"]


@dataclass(frozen=True, slots=True)
class Command:
    """A single program invocation."""

    argv: tuple[str, ...]

    @property
    def program(self) -> str:
        return self.argv[0] if self.argv else ""

    @property
    def args(self) -> tuple[str, ...]:
        return self.argv[1:]

    def render(self) -> str:
        return " ".join(shlex.quote(arg) for arg in self.argv)

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True, slots=True)
class Chain:
    """Commands joined by a shell operator (``&&``, ``||`` or a pipe)."""

    operator: ChainOperator
    parts: tuple["ShellCommand", ...]

    def render(self) -> str:
        return f" {self.operator} ".join(_render_part(part) for part in self.parts)

    def __str__(self) -> str:
        return self.render()


ShellCommand = Union[Command, Chain]


def _render_part(part: ShellCommand) -> str:
    if isinstance(part, Chain):
        return f"({part.render()})"
    return part.render()


def render(command: ShellCommand) -> str:
    """Serialize a structured command for the transport."""

    return command.render()


def cmd(*argv: str) -> Command:
    return Command(tuple(str(arg) for arg in argv))


def all_of(*parts: ShellCommand) -> Chain:
    return Chain("&&", parts)


def any_of(*parts: ShellCommand) -> Chain:
    return Chain("||", parts)


def pipe(*parts: ShellCommand) -> Chain:
    return Chain("|", parts)


# Speaker root filesystems are read-only until remounted.
WRITE_ACCESS = any_of(cmd("rw"), cmd("mount", "-o", "remount,rw", "/"))


def privileged(command: ShellCommand) -> Chain:
    """Run ``command`` only after write access was granted."""

    return all_of(WRITE_ACCESS, command)


def file_test(path: str) -> Command:
    return cmd("test", "-f", path)


def exists_test(path: str) -> Command:
    return cmd("test", "-e", path)


def cat(path: str) -> Command:
    return cmd("cat", path)


def copy(source: str, destination: str) -> Command:
    return cmd("cp", source, destination)


def remove(path: str, verbose: bool = False) -> Command:
    return cmd("rm", "-v", path) if verbose else cmd("rm", path)


def touch(path: str) -> Command:
    return cmd("touch", path)


def make_dirs(path: str) -> Command:
    return cmd("mkdir", "-p", path)


def make_executable(path: str) -> Command:
    return cmd("chmod", "+x", path)


def clear_immutable(path: str) -> Command:
    return cmd("chattr", "-i", path)


def grep_fixed(pattern: str, path: str) -> Command:
    return cmd("grep", "-F", pattern, path)


def ping_once(host: str) -> Command:
    return cmd("ping", "-c", "1", host)


def list_root() -> Command:
    return cmd("ls", "/")


def reboot() -> Command:
    return cmd("reboot")


def curl(url: str, cacert: str | None = None) -> Command:
    argv = ["curl", "--max-time", "15", "--connect-timeout", "10", "-v", "-s", "-L"]
    if cacert:
        argv.extend(["--cacert", cacert])
    argv.append(url)
    return cmd(*argv)
