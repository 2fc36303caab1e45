"""Undo every redirection strategy using the on-device ``.original`` backups."""

from __future__ import annotations

from speakermigrate.core.certs import CertificateAuthority
from speakermigrate.migration import codec, patching
from speakermigrate.migration.errors import BackupMissingError, RemoteOperationError
from speakermigrate.migration.oplog import OperationLog
from speakermigrate.migration.strategies import backup_path
from speakermigrate.migration.truststore import TrustStoreEditor
from speakermigrate.speaker import commands
from speakermigrate.speaker.remote import RemoteShell, RemoteShellError, file_exists, read_file, try_run


def restore_original(shell: RemoteShell, path: str, log: OperationLog, required: bool = False) -> bool:
    """Copy ``<path>.original`` back over ``path``.

    With ``required`` a missing backup or failed copy raises; otherwise the
    outcome is only logged. Returns whether the file was restored.
    """

    original = backup_path(path)
    if not file_exists(shell, original):
        if required:
            raise BackupMissingError(f"backup {original} not found, cannot revert", log.text)
        return False

    log.add(f"Reverting {path} from backup")
    ok, output = try_run(shell, commands.privileged(commands.copy(original, path)))
    log.command(f"cp {original} {path}", output)
    if ok:
        return True

    if required:
        raise RemoteOperationError(f"failed to revert {path}", log.text)
    log.warn(f"failed to revert {path}")
    return False


def _restore_resolv_conf(shell: RemoteShell, log: OperationLog) -> None:
    if not file_exists(shell, backup_path(patching.RESOLV_CONF_PATH)):
        return
    try_run(shell, commands.clear_immutable(patching.RESOLV_CONF_PATH))
    restore_original(shell, patching.RESOLV_CONF_PATH, log)


def _remove_dns_hook(shell: RemoteShell, log: OperationLog) -> None:
    if file_exists(shell, patching.PRIORITY_RESOLV_PATH):
        log.add(f"Removing {patching.PRIORITY_RESOLV_PATH}")
        try_run(shell, commands.remove(patching.PRIORITY_RESOLV_PATH))

    path = patching.BOOT_SCRIPT_PATH
    current = read_file(shell, path)
    if current is None:
        return

    if patching.is_stored_error(current):
        log.add(f"Removing corrupted {path}")
        try_run(shell, commands.remove(path))
        return

    stripped, changed = patching.strip_boot_hook(current)
    if not changed:
        return

    log.add(f"Removing Aftertouch hook logic from {path}")
    try:
        shell.upload(stripped.encode("utf-8"), path)
    except RemoteShellError as exc:
        log.warn(f"failed to update {path}: {exc}")


def revert_all(shell: RemoteShell, authority: CertificateAuthority | None, log: OperationLog) -> None:
    """Restore the private config, then undo hosts, DNS hook and CA trust.

    Only the private config is mandatory; remote-services markers are left
    in place and the speaker is not rebooted.
    """

    restore_original(shell, codec.PRIVATE_CONFIG_PATH, log, required=True)
    restore_original(shell, patching.HOSTS_PATH, log)
    _restore_resolv_conf(shell, log)
    _remove_dns_hook(shell, log)
    for hook in patching.DHCP_HOOKS:
        restore_original(shell, hook.path, log)
    TrustStoreEditor(shell, authority).remove(log)
