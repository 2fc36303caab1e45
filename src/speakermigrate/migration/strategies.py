"""Migration strategies: how a speaker's cloud traffic gets redirected.

Each strategy receives a :class:`MigrationContext` with an open operation log
and raises a :class:`~speakermigrate.migration.errors.MigrationError`
subclass on a hard failure. Soft failures are only logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping

from speakermigrate.core.certs import CertificateAuthority
from speakermigrate.core.models import DNSSettings, MigrationMethod, PrivateConfig
from speakermigrate.migration import codec, patching
from speakermigrate.migration.errors import ConfigEncodingError, DNSPreflightError, RemoteOperationError
from speakermigrate.migration.oplog import OperationLog
from speakermigrate.migration.resolver import require_target_host, resolve_ip
from speakermigrate.migration.services import enable_remote_services
from speakermigrate.migration.truststore import TrustStoreEditor
from speakermigrate.speaker import commands
from speakermigrate.speaker.remote import RemoteShell, RemoteShellError, file_exists, read_file, try_run

DNS_PORT = "53"


@dataclass(slots=True)
class MigrationRequest:
    """Where the speaker should point after migration."""

    target_url: str
    proxy_url: str = ""
    options: Mapping[str, str] | None = None


@dataclass(slots=True)
class MigrationContext:
    shell: RemoteShell
    log: OperationLog
    authority: CertificateAuthority | None
    request: MigrationRequest


def backup_path(path: str) -> str:
    return f"{path}.original"


def parse_current_config(text: str | None) -> PrivateConfig | None:
    if not text:
        return None
    try:
        return codec.unmarshal(text)
    except codec.ConfigCodecError:
        return None


def plan_private_config(
    request: MigrationRequest, current: PrivateConfig | None, proxy_unrouted: bool = False
) -> PrivateConfig:
    """Config pointing at the target, with upstream subsystems proxied.

    ``proxy_unrouted`` wraps every subsystem when the caller gave an explicit
    proxy URL but no routing options.
    """

    planned = PrivateConfig.for_target(request.target_url)
    if current is None:
        return planned

    proxy_url = request.proxy_url or request.target_url
    if request.options is not None:
        return codec.apply_routing_options(planned, current, proxy_url, request.options)
    if proxy_unrouted and request.proxy_url:
        return codec.proxy_all(planned, current, proxy_url)
    return planned


def encode_config(config: PrivateConfig, log: OperationLog) -> str:
    try:
        return codec.marshal(config)
    except codec.ConfigCodecError as exc:
        raise ConfigEncodingError(f"failed to marshal XML: {exc}", log.text) from exc


def backup_once(shell: RemoteShell, path: str, log: OperationLog) -> None:
    """Copy ``path`` to its ``.original`` sibling unless one already exists."""

    original = backup_path(path)
    if file_exists(shell, original):
        return
    _, output = try_run(shell, commands.copy(path, original))
    log.command(f"cp {path} {original}", output)


def upload_text(shell: RemoteShell, path: str, content: str, log: OperationLog) -> None:
    try:
        shell.upload(content.encode("utf-8"), path)
    except RemoteShellError as exc:
        raise RemoteOperationError(f"failed to update {path}: {exc}", log.text) from exc


def ensure_ca_trusted(context: MigrationContext) -> None:
    editor = TrustStoreEditor(context.shell, context.authority)
    if editor.is_trusted():
        context.log.add("CA certificate already trusted, skipping injection")
        return

    context.log.add("Trusting CA:")
    editor.inject(context.log)


def migrate_via_xml(context: MigrationContext) -> None:
    shell, log = context.shell, context.log

    log.add("Ensuring remote services:")
    if not enable_remote_services(shell, log):
        log.warn("failed to enable remote services in any location")

    current_text = read_file(shell, codec.PRIVATE_CONFIG_PATH)
    current = parse_current_config(current_text)
    if current_text:
        log.add("Read current configuration")

    document = encode_config(plan_private_config(context.request, current, proxy_unrouted=True), log)

    path = codec.PRIVATE_CONFIG_PATH
    original = backup_path(path)
    if file_exists(shell, original):
        log.add("Backup .original already exists")
    else:
        log.add(f"Backing up original config to {original}")
        ok, output = try_run(shell, commands.privileged(commands.copy(path, original)))
        if ok:
            log.add("Copied backup config to .original")
        else:
            log.warn(f"failed to cp backup config (output: {output.strip()})")
            _upload_backup_fallback(shell, current_text, original, log)

    _, output = try_run(shell, commands.WRITE_ACCESS)
    log.command(commands.render(commands.WRITE_ACCESS), output)
    try:
        shell.upload(document.encode("utf-8"), path)
    except RemoteShellError as exc:
        raise RemoteOperationError(f"failed to upload config: {exc}", log.text) from exc
    log.add(f"Uploaded new configuration to {path}")


def _upload_backup_fallback(shell: RemoteShell, content: str | None, original: str, log: OperationLog) -> None:
    if not content:
        return
    try:
        shell.upload(content.encode("utf-8"), original)
    except RemoteShellError as exc:
        log.warn(f"failed to upload backup config: {exc}")
        return
    log.add("Uploaded backup config via fallback")


def migrate_via_hosts(context: MigrationContext) -> None:
    shell, log = context.shell, context.log

    host = require_target_host(context.request.target_url, log.text)
    address = resolve_ip(host, shell)
    log.add(f"Resolved {host} to {address}")

    current = read_file(shell, patching.HOSTS_PATH)
    if current is None:
        raise RemoteOperationError(f"failed to read {patching.HOSTS_PATH}", log.text)
    log.command(f"cat {patching.HOSTS_PATH}", current)

    updated = patching.rewrite_hosts(current, address)

    _, output = try_run(shell, commands.WRITE_ACCESS)
    log.command(commands.render(commands.WRITE_ACCESS), output)
    backup_once(shell, patching.HOSTS_PATH, log)
    upload_text(shell, patching.HOSTS_PATH, updated, log)
    log.add(f"Uploaded updated {patching.HOSTS_PATH}")

    ensure_ca_trusted(context)


def check_dns_preflight(settings: DNSSettings, dns_status: Callable[[], tuple[bool, str]] | None = None) -> None:
    """Require the local DNS service to be enabled and answering on port 53."""

    if not settings.enabled:
        raise DNSPreflightError(
            "DNS discovery server is not enabled. Enable it before using /etc/resolv.conf migration"
        )
    if settings.port != DNS_PORT:
        raise DNSPreflightError(
            f"DNS discovery server is bound to {settings.bind_addr}, "
            "but port 53 is required for /etc/resolv.conf migration"
        )

    if dns_status is None:
        return

    running, bind_addr = dns_status()
    if not running:
        raise DNSPreflightError(
            f"DNS discovery server is configured but not actually running on {bind_addr}"
        )
    if DNSSettings(enabled=True, bind_addr=bind_addr).port != DNS_PORT:
        raise DNSPreflightError(f"DNS discovery server is running on {bind_addr}, but port 53 is required")


def migrate_via_resolv(context: MigrationContext) -> None:
    shell, log = context.shell, context.log

    host = require_target_host(context.request.target_url, log.text)
    address = resolve_ip(host, shell)
    log.add(f"Resolved {host} to {address}")

    try_run(shell, commands.make_dirs("/mnt/nv"))
    upload_text(shell, patching.PRIORITY_RESOLV_PATH, patching.priority_resolv_content(address), log)
    log.add(f"Uploaded {patching.PRIORITY_RESOLV_PATH}")

    _install_boot_hook(shell, log)

    _, output = try_run(shell, commands.WRITE_ACCESS)
    log.command(commands.render(commands.WRITE_ACCESS), output)
    for hook in patching.DHCP_HOOKS:
        _patch_dhcp_script(shell, hook, log)

    ensure_ca_trusted(context)


def _install_boot_hook(shell: RemoteShell, log: OperationLog) -> None:
    path = patching.BOOT_SCRIPT_PATH
    current = read_file(shell, path) or ""
    updated, changed = patching.patch_boot_script(current)
    if not changed:
        log.add(f"{path} already contains Aftertouch hook logic")
        return

    upload_text(shell, path, updated, log)
    log.add(f"Updated {path} with DNS hook logic")
    try_run(shell, commands.make_executable(path))


def _patch_dhcp_script(shell: RemoteShell, hook: patching.DhcpHook, log: OperationLog) -> None:
    if not file_exists(shell, hook.path):
        log.add(f"{hook.path} not present, skipping")
        return

    original = backup_path(hook.path)
    if file_exists(shell, original):
        # restore the pristine script before patching
        try_run(shell, commands.copy(original, hook.path))
    else:
        _, output = try_run(shell, commands.copy(hook.path, original))
        log.command(f"cp {hook.path} {original}", output)

    current = read_file(shell, hook.path)
    if current is None:
        log.warn(f"failed to read {hook.path}, patch not applied")
        return

    updated, changed = patching.patch_dhcp_script(current, hook)
    if not changed:
        log.add(f"{hook.path} needs no patch")
        return

    try:
        shell.upload(updated.encode("utf-8"), hook.path)
    except RemoteShellError as exc:
        log.add(f"Failed to apply patch immediately to {hook.path}: {exc}")
        return
    log.add(f"Applied patch to {hook.path}")


Strategy = Callable[[MigrationContext], None]

STRATEGIES: dict[MigrationMethod, Strategy] = {
    MigrationMethod.XML: migrate_via_xml,
    MigrationMethod.HOSTS: migrate_via_hosts,
    MigrationMethod.RESOLV: migrate_via_resolv,
}

if set(STRATEGIES) != set(MigrationMethod):  # pragma: no cover - import-time guard
    raise RuntimeError("every migration method needs a strategy")


def strategy_for(method: MigrationMethod) -> Strategy:
    return STRATEGIES[method]
