"""Resolve the service hostname the way the speaker will see it."""

from __future__ import annotations

import ipaddress
import logging
import socket
from urllib.parse import urlsplit

from speakermigrate.migration.errors import InvalidTargetError
from speakermigrate.speaker import commands
from speakermigrate.speaker.remote import RemoteShell, try_run

logger = logging.getLogger(__name__)


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def target_hostname(target_url: str) -> str:
    try:
        return urlsplit(target_url).hostname or ""
    except ValueError:
        return ""


def target_port(target_url: str) -> str:
    try:
        port = urlsplit(target_url).port
    except ValueError:
        return ""
    return str(port) if port else ""


def require_target_host(target_url: str, log: str = "") -> str:
    """Return the hostname of ``target_url``; empty and ``localhost`` are rejected."""

    host = target_hostname(target_url)
    if not host or host == "localhost":
        raise InvalidTargetError(f"target URL must contain a valid IP or hostname (got {host!r})", log)
    return host


def parse_ping_address(output: str) -> str | None:
    """Extract the address from BusyBox ping: ``PING host (1.2.3.4): 56 data bytes``."""

    start = output.find("(")
    end = output.find(")")
    if start == -1 or end <= start:
        return None
    candidate = output[start + 1 : end]
    return candidate if is_ip_literal(candidate) else None


def resolve_locally(host: str) -> str | None:
    try:
        results = socket.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError):
        return None
    if not results:
        return None

    for family, _, _, _, sockaddr in results:
        if family == socket.AF_INET:
            return sockaddr[0]
    return results[0][4][0]


def resolve_ip(host: str, shell: RemoteShell | None = None) -> str:
    """Best-effort resolution, preferring the device's own view.

    Resolving on the speaker avoids NAT and container networks that give
    the service a different answer. Falls back to local lookup, then to
    ``host`` itself; never raises.
    """

    if is_ip_literal(host):
        return host

    if shell is not None:
        ok, output = try_run(shell, commands.ping_once(host))
        if ok:
            address = parse_ping_address(output)
            if address:
                logger.debug("resolved %s to %s from device", host, address)
                return address

    address = resolve_locally(host)
    if address:
        logger.debug("resolved %s to %s locally", host, address)
        return address

    logger.debug("unable to resolve %s, using hostname", host)
    return host
