"""Migration manager: preview, migrate, back up and revert speakers."""

from __future__ import annotations

import logging
from typing import Callable, Mapping

from speakermigrate.core.certs import CertificateAuthority
from speakermigrate.core.config import DEFAULT_HTTPS_PORT
from speakermigrate.core.models import MigrationMethod, MigrationSummary
from speakermigrate.core.storage import DEFAULT_ACCOUNT, DeviceStore
from speakermigrate.migration import codec, patching, selftest
from speakermigrate.migration.detector import is_migrated
from speakermigrate.migration.errors import MigrationError, PreflightError, RemoteOperationError
from speakermigrate.migration.oplog import OperationLog
from speakermigrate.migration.resolver import resolve_ip, resolve_locally, target_hostname
from speakermigrate.migration.revert import revert_all
from speakermigrate.migration.services import (
    disable_remote_services,
    enable_remote_services,
    find_remote_services,
    is_persistent,
)
from speakermigrate.migration.strategies import (
    MigrationContext,
    MigrationRequest,
    backup_path,
    check_dns_preflight,
    encode_config,
    parse_current_config,
    plan_private_config,
    strategy_for,
)
from speakermigrate.migration.truststore import TrustStoreEditor
from speakermigrate.speaker import commands
from speakermigrate.speaker.info import DeviceInfo, DeviceInfoError, fetch_device_info
from speakermigrate.speaker.remote import RemoteShell, RemoteShellError, file_exists, read_file, try_run

logger = logging.getLogger(__name__)

ShellFactory = Callable[[str], RemoteShell]
InfoFetcher = Callable[[str], DeviceInfo]
DNSStatus = Callable[[], "tuple[bool, str]"]

CONFIG_BACKUP_NAME = "SoundTouchSdkPrivateCfg.xml.bak"
HOSTS_BACKUP_NAME = "hosts.bak"


class MigrationManager:
    """Coordinates every speaker-side operation.

    The manager keeps no per-device state; each call opens its own shells
    through ``shell_factory`` and builds a fresh operation log.
    """

    def __init__(
        self,
        server_url: str,
        store: DeviceStore,
        authority: CertificateAuthority | None,
        shell_factory: ShellFactory,
        info_fetcher: InfoFetcher = fetch_device_info,
        dns_status: DNSStatus | None = None,
        https_port: str = DEFAULT_HTTPS_PORT,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.store = store
        self.authority = authority
        self.shell_factory = shell_factory
        self.info_fetcher = info_fetcher
        self.dns_status = dns_status
        self.https_port = https_port or DEFAULT_HTTPS_PORT

    def _request(
        self, target_url: str | None, proxy_url: str = "", options: Mapping[str, str] | None = None
    ) -> MigrationRequest:
        return MigrationRequest(target_url=target_url or self.server_url, proxy_url=proxy_url, options=options)

    # -- read-only ---------------------------------------------------------

    def get_live_device_info(self, device: str) -> DeviceInfo:
        return self.info_fetcher(device)

    def get_resolved_ip(self, host: str) -> str:
        """Resolve ``host`` from this machine only; falls back to ``host``."""

        return resolve_locally(host) or host

    def get_migration_summary(
        self,
        device: str,
        target_url: str | None = None,
        proxy_url: str = "",
        options: Mapping[str, str] | None = None,
    ) -> MigrationSummary:
        request = self._request(target_url, proxy_url, options)
        summary = MigrationSummary(target_url=request.target_url)
        shell = self.shell_factory(device)
        log_extra = {"device": device}

        self._populate_identity(summary, device)

        current_text = self._read_current_config(summary, shell)
        current = parse_current_config(current_text)
        summary.parsed_current_config = current
        summary.planned_config = encode_config(plan_private_config(request, current), OperationLog(device))

        host = target_hostname(request.target_url)
        if host and host != "localhost":
            address = resolve_ip(host, shell)
            summary.planned_resolv = patching.priority_resolv_content(address)
            summary.planned_hosts = patching.planned_hosts(address)

        summary.remote_services_found = find_remote_services(shell)
        summary.remote_services_enabled = bool(summary.remote_services_found)
        summary.remote_services_persistent = is_persistent(summary.remote_services_found)

        summary.ca_cert_trusted = TrustStoreEditor(shell, self.authority).is_trusted()

        if summary.ssh_success:
            summary.current_resolv_conf = read_file(shell, patching.RESOLV_CONF_PATH) or ""
            summary.current_hosts = read_file(shell, patching.HOSTS_PATH) or ""
            summary.dns_hook_installed = file_exists(shell, patching.HOOK_MARKER)

        if host:
            summary.server_https_url = f"https://{host}:{self.https_port}/health"

        summary.is_migrated = is_migrated(summary)
        logger.debug(
            "summary ssh=%s migrated=%s ca_trusted=%s",
            summary.ssh_success,
            summary.is_migrated,
            summary.ca_cert_trusted,
            extra=log_extra,
        )
        return summary

    def _populate_identity(self, summary: MigrationSummary, device: str) -> None:
        known = self.store.find_device(device)
        if known is not None:
            summary.device_name = known.name
            summary.device_model = known.model
            summary.device_serial = known.serial
            summary.device_id = known.device_id
            summary.account_id = known.account_id
            summary.firmware_version = known.firmware

        try:
            info = self.info_fetcher(device)
        except DeviceInfoError as exc:
            logger.debug("live info unavailable: %s", exc, extra={"device": device})
            return

        summary.device_name = info.name or summary.device_name
        summary.device_model = info.type or summary.device_model
        summary.device_serial = info.serial_number or summary.device_serial
        summary.firmware_version = info.software_version or summary.firmware_version
        summary.device_id = info.device_id or summary.device_id
        summary.account_id = info.account_uuid or summary.account_id

    def _read_current_config(self, summary: MigrationSummary, shell: RemoteShell) -> str | None:
        path = codec.PRIVATE_CONFIG_PATH
        original = backup_path(path)
        if file_exists(shell, original):
            summary.original_config = read_file(shell, original) or ""

        ok, output = try_run(shell, commands.cat(path))
        if ok and output:
            summary.ssh_success = True
            summary.current_config = output
            return output

        error = output.strip() if not ok else "empty file"
        reachable, probe_output = try_run(shell, commands.list_root())
        if reachable:
            summary.ssh_success = True
            summary.current_config = f"Error reading config: {error}"
        else:
            summary.ssh_success = False
            summary.current_config = f"SSH connection failed: {probe_output.strip()}"
        return None

    # -- migrate / revert --------------------------------------------------

    def migrate_speaker(
        self,
        device: str,
        target_url: str | None = None,
        proxy_url: str = "",
        options: Mapping[str, str] | None = None,
        method: MigrationMethod | str | None = MigrationMethod.XML,
    ) -> str:
        """Redirect ``device`` and return the operation transcript.

        The speaker is never rebooted here; changes to the private config
        take effect after :meth:`reboot`.
        """

        method = MigrationMethod.parse(method)
        request = self._request(target_url, proxy_url, options)
        log = OperationLog(device, logger)
        log.add(f"Migrating via {method.value} to {request.target_url}")

        try:
            self.backup_config_off_device(device)
        except (MigrationError, DeviceInfoError, OSError) as exc:
            log.warn(f"Failed to create off-device backup: {exc}")
        else:
            log.add("Successfully created off-device backup of current configuration.")

        shell = self.shell_factory(device)
        ok, output = try_run(shell, commands.WRITE_ACCESS)
        if not ok:
            raise PreflightError(
                f"pre-flight check failed: cannot gain write access "
                f"(cmd: {commands.render(commands.WRITE_ACCESS)}, output: {output.strip()})",
                log.text,
            )
        log.add("Pre-flight: Write access verified.")

        if method is MigrationMethod.RESOLV:
            try:
                check_dns_preflight(self.store.get_dns_settings(), self.dns_status)
            except MigrationError as exc:
                exc.log = log.text
                raise

        context = MigrationContext(shell=shell, log=log, authority=self.authority, request=request)
        try:
            strategy_for(method)(context)
        except MigrationError as exc:
            exc.log = log.text
            raise
        return log.text

    def revert_migration(self, device: str) -> str:
        log = OperationLog(device, logger)
        shell = self.shell_factory(device)
        try:
            revert_all(shell, self.authority, log)
        except MigrationError as exc:
            exc.log = log.text
            raise
        return log.text

    # -- backups -----------------------------------------------------------

    def backup_config(self, device: str) -> str:
        """Create ``<config>.original`` on the speaker; refuses to overwrite."""

        shell = self.shell_factory(device)
        log = OperationLog(device, logger)
        path = codec.PRIVATE_CONFIG_PATH
        original = backup_path(path)

        if file_exists(shell, original):
            raise MigrationError(f"backup already exists at {original}", log.text)

        ok, output = try_run(shell, commands.privileged(commands.copy(path, original)))
        log.command(f"cp {path} {original}", output)
        if ok:
            return log.text

        content = read_file(shell, path)
        log.command(f"cat {path}", content or "")
        if not content:
            raise RemoteOperationError(f"failed to read current config {path}", log.text)

        _, rw_output = try_run(shell, commands.WRITE_ACCESS)
        log.command(commands.render(commands.WRITE_ACCESS), rw_output)
        try:
            shell.upload(content.encode("utf-8"), original)
        except RemoteShellError as exc:
            raise RemoteOperationError(f"failed to upload backup config: {exc}", log.text) from exc
        log.add(f"Uploaded backup to {original}")
        return log.text

    def backup_config_off_device(self, device: str) -> list[str]:
        """Copy the private config and hosts file into the data directory.

        Returns the written paths. Raises ``DeviceInfoError`` when live
        identity is unavailable and ``OSError`` when the copy cannot be
        written.
        """

        info = self.info_fetcher(device)
        device_key = info.serial_number or info.device_id or device
        account = (
            info.account_uuid
            or self.store.find_account(serial=info.serial_number, device_id=info.device_id)
            or DEFAULT_ACCOUNT
        )

        shell = self.shell_factory(device)
        saved = []
        for remote_path, filename in (
            (codec.PRIVATE_CONFIG_PATH, CONFIG_BACKUP_NAME),
            (patching.HOSTS_PATH, HOSTS_BACKUP_NAME),
        ):
            content = read_file(shell, remote_path)
            if content:
                saved.append(str(self.store.save_backup_text(account, device_key, filename, content)))
        return saved

    # -- supporting operations ---------------------------------------------

    def ensure_remote_services(self, device: str) -> str:
        log = OperationLog(device, logger)
        if not enable_remote_services(self.shell_factory(device), log):
            raise RemoteOperationError("failed to enable remote services in any location", log.text)
        return log.text

    def remove_remote_services(self, device: str) -> str:
        log = OperationLog(device, logger)
        if not disable_remote_services(self.shell_factory(device), log):
            raise RemoteOperationError("failed to remove remote services from any location", log.text)
        return log.text

    def trust_ca_cert(self, device: str) -> str:
        log = OperationLog(device, logger)
        TrustStoreEditor(self.shell_factory(device), self.authority).inject(log)
        return log.text

    # -- self-tests ---------------------------------------------------------

    def test_hosts_redirection(self, device: str, target_url: str | None = None) -> str:
        return selftest.test_hosts_redirection(
            self.shell_factory(device), self.authority, target_url or self.server_url, self.https_port
        )

    def test_connection(self, device: str, target_url: str | None = None, use_explicit_ca: bool = False) -> str:
        return selftest.test_connection(
            self.shell_factory(device), self.authority, target_url or self.server_url, use_explicit_ca
        )

    def test_dns_redirection(self, device: str, target_url: str | None = None) -> str:
        dns_port = self.store.get_dns_settings().port or "53"
        return selftest.test_dns_redirection(self.shell_factory(device), target_url or self.server_url, dns_port)

    def reboot(self, device: str) -> str:
        logger.info("Rebooting speaker", extra={"device": device})
        shell = self.shell_factory(device)
        try:
            return shell.run(commands.privileged(commands.reboot()))
        except RemoteShellError as exc:
            raise RemoteOperationError(f"failed to reboot speaker: {exc}", exc.output) from exc
