"""Connectivity checks run from the speaker before committing to a migration."""

from __future__ import annotations

import logging

from speakermigrate.core.certs import CertificateAuthority
from speakermigrate.migration import patching
from speakermigrate.migration.errors import SelfTestError
from speakermigrate.migration.resolver import require_target_host, resolve_ip, target_port
from speakermigrate.speaker import commands
from speakermigrate.speaker.remote import RemoteShell, RemoteShellError, read_file, try_run

logger = logging.getLogger(__name__)

TEST_DOMAIN = "custom-test-api.bose.fake"
TEST_CA_PATH = "/tmp/soundtouch-test-ca.crt"
DNS_TEST_DOMAIN = "aftertouch.test"

# DNS over TCP, A/IN query for aftertouch.test with a two byte length prefix.
# The last four bytes of the answer are the address.
DNS_TEST_QUERY = (
    r"\x00\x21\xaa\xaa\x01\x00\x00\x01\x00\x00\x00\x00\x00\x00"
    r"\x0aaftertouch\x04test\x00\x00\x01\x00\x01"
)


def _upload_test_ca(shell: RemoteShell, authority: CertificateAuthority | None) -> None:
    if authority is None:
        raise SelfTestError("certificate authority not configured")
    try:
        ca_bytes = authority.read_ca_bytes()
    except OSError as exc:
        raise SelfTestError(f"failed to read CA cert: {exc}") from exc
    try:
        shell.upload(ca_bytes, TEST_CA_PATH)
    except RemoteShellError as exc:
        raise SelfTestError(f"failed to upload temporary CA: {exc}") from exc


def _remove_test_ca(shell: RemoteShell) -> None:
    try_run(shell, commands.remove(TEST_CA_PATH))


def http_test_url(target_url: str, domain: str = TEST_DOMAIN) -> str:
    port = target_port(target_url)
    if not port or port == "80":
        return f"http://{domain}/health"
    return f"http://{domain}:{port}/health"


def https_test_url(https_port: str, domain: str = TEST_DOMAIN) -> str:
    if https_port == "443":
        return f"https://{domain}/health"
    return f"https://{domain}:{https_port}/health"


def _add_test_entry(shell: RemoteShell, entry: str) -> None:
    current = read_file(shell, patching.HOSTS_PATH)
    if current is None:
        raise SelfTestError(f"failed to read {patching.HOSTS_PATH}")

    updated = patching.add_hosts_entry(current, TEST_DOMAIN, entry)
    try_run(shell, commands.WRITE_ACCESS)
    try:
        shell.upload(updated.encode("utf-8"), patching.HOSTS_PATH)
    except RemoteShellError as exc:
        raise SelfTestError(f"failed to add test entry to {patching.HOSTS_PATH}: {exc}") from exc


def _remove_test_entry(shell: RemoteShell) -> None:
    current = read_file(shell, patching.HOSTS_PATH) or ""
    try_run(shell, commands.WRITE_ACCESS)
    try:
        shell.upload(patching.remove_hosts_entries(current, TEST_DOMAIN).encode("utf-8"), patching.HOSTS_PATH)
    except RemoteShellError as exc:
        logger.warning("failed to remove test entry from %s: %s", patching.HOSTS_PATH, exc)


def _curl(shell: RemoteShell, url: str, cacert: str | None = None) -> tuple[bool, str]:
    return try_run(shell, commands.curl(url, cacert=cacert))


def test_hosts_redirection(
    shell: RemoteShell, authority: CertificateAuthority | None, target_url: str, https_port: str
) -> str:
    """Point a throwaway domain at the service and fetch ``/health`` over HTTP and HTTPS."""

    host = require_target_host(target_url)
    address = resolve_ip(host, shell)

    _add_test_entry(shell, patching.hosts_entry(address, TEST_DOMAIN))
    try:
        ok, http_output = _curl(shell, http_test_url(target_url))
        if not ok:
            raise SelfTestError("hosts redirection HTTP test failed", http_output)

        _upload_test_ca(shell, authority)
        try:
            ok, https_output = _curl(shell, https_test_url(https_port), cacert=TEST_CA_PATH)
        finally:
            _remove_test_ca(shell)

        transcript = f"{http_output}\n---\n{https_output}"
        if not ok:
            raise SelfTestError("hosts redirection HTTPS test failed", transcript)
        return transcript
    finally:
        _remove_test_entry(shell)


def test_connection(
    shell: RemoteShell, authority: CertificateAuthority | None, target_url: str, use_explicit_ca: bool = False
) -> str:
    cacert = None
    if use_explicit_ca:
        _upload_test_ca(shell, authority)
        cacert = TEST_CA_PATH

    try:
        ok, output = _curl(shell, target_url, cacert=cacert)
    finally:
        if use_explicit_ca:
            _remove_test_ca(shell)

    if not ok:
        raise SelfTestError("connection test failed", output)
    return output


def parse_od_address(output: str) -> str | None:
    """Join ``od -An -tu1`` output such as `` 192 168 1 10`` into an address."""

    fields = output.split()
    if len(fields) != 4 or not all(field.isdigit() for field in fields):
        return None
    return ".".join(fields)


def _raw_dns_query(address: str, dns_port: str) -> commands.Chain:
    return commands.pipe(
        commands.cmd("echo", "-ne", DNS_TEST_QUERY),
        commands.cmd("nc", "-w", "5", address, dns_port),
        commands.cmd("tail", "-c", "4"),
        commands.cmd("od", "-An", "-tu1"),
    )


def test_dns_redirection(shell: RemoteShell, target_url: str, dns_port: str = "53") -> str:
    """Ask the service's DNS for ``aftertouch.test`` from the speaker.

    BusyBox ``nslookup`` cannot use a custom port, so a raw TCP query goes
    through ``nc`` first; ``nslookup`` is the fallback.
    """

    host = require_target_host(target_url)
    address = resolve_ip(host, shell)
    dns_port = dns_port if dns_port.isdigit() else "53"

    nc_ok, nc_output = try_run(shell, _raw_dns_query(address, dns_port))
    if nc_ok:
        resolved = parse_od_address(nc_output)
        if resolved == address:
            return (
                f"Success: Raw DNS query for {DNS_TEST_DOMAIN} returned {resolved} "
                f"via nc to {address}:{dns_port}"
            )
        if resolved is not None:
            raise SelfTestError(
                f"DNS redirection test failed: nc returned {resolved}, expected {address}", nc_output
            )

    server = address if dns_port == "53" else f"{address}:{dns_port}"
    lookup_ok, lookup_output = try_run(shell, commands.cmd("nslookup", DNS_TEST_DOMAIN, server))
    if lookup_ok and address in lookup_output:
        return lookup_output

    raise SelfTestError(
        f"DNS redirection test failed: both nc and nslookup failed to resolve {DNS_TEST_DOMAIN}",
        f"nc Output: {nc_output}\nnslookup Output: {lookup_output}",
    )
