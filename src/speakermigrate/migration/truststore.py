"""Insert and remove the local CA inside the speaker's TLS trust bundle."""

from __future__ import annotations

from speakermigrate.core.certs import CertificateAuthority
from speakermigrate.migration.errors import RemoteOperationError
from speakermigrate.migration.oplog import OperationLog
from speakermigrate.speaker import commands
from speakermigrate.speaker.remote import RemoteShell, RemoteShellError, file_exists, read_file, try_run

CA_BUNDLE_PATH = "/etc/pki/tls/certs/ca-bundle.crt"
CA_LABEL = "# AfterTouch"


def first_body_line(ca_pem: str) -> str:
    """Return the first base64 line of the certificate body, or ``""``."""

    for line in ca_pem.split("\n"):
        if line and "BEGIN CERTIFICATE" not in line and "END CERTIFICATE" not in line:
            return line.strip()
    return ""


def _with_trailing_newline(text: str) -> str:
    if text and not text.endswith("\n"):
        return text + "\n"
    return text


def strip_ca_block(bundle: str, label: str = CA_LABEL) -> str:
    """Drop every line between (and including) pairs of label lines."""

    if label not in bundle:
        return _with_trailing_newline(bundle)

    kept: list[str] = []
    inside = False
    for line in bundle.split("\n"):
        if label in line:
            if not inside and kept and not kept[-1].strip():
                kept.pop()
            inside = not inside
            continue
        if not inside:
            kept.append(line)

    return _with_trailing_newline("\n".join(kept))


def append_ca_block(bundle: str, ca_pem: str, label: str = CA_LABEL) -> str:
    """Return ``bundle`` with exactly one, up-to-date labeled CA block."""

    pem = _with_trailing_newline(ca_pem)
    return f"{strip_ca_block(bundle, label)}\n{label}\n{pem}{label}\n"


class TrustStoreEditor:
    """Trust bundle operations on one speaker."""

    def __init__(self, shell: RemoteShell, authority: CertificateAuthority | None) -> None:
        self.shell = shell
        self.authority = authority

    def is_trusted(self) -> bool:
        """Label first; the certificate body is a weaker fallback signal."""

        if self.authority is None:
            return False

        ok, output = try_run(self.shell, commands.grep_fixed(CA_LABEL, CA_BUNDLE_PATH))
        if ok and CA_LABEL in output:
            return True

        try:
            snippet = first_body_line(self.authority.read_ca_pem())
        except OSError:
            return False
        if not snippet:
            return False

        ok, _ = try_run(self.shell, commands.grep_fixed(snippet, CA_BUNDLE_PATH))
        return ok

    def inject(self, log: OperationLog) -> None:
        if self.authority is None:
            raise RemoteOperationError("certificate authority not configured", log.text)

        try:
            ca_pem = self.authority.read_ca_pem()
        except OSError as exc:
            raise RemoteOperationError(f"failed to read CA certificate: {exc}", log.text) from exc

        _, output = try_run(self.shell, commands.WRITE_ACCESS)
        log.command(commands.render(commands.WRITE_ACCESS), output)

        backup_path = f"{CA_BUNDLE_PATH}.original"
        if not file_exists(self.shell, backup_path):
            copy = commands.copy(CA_BUNDLE_PATH, backup_path)
            _, output = try_run(self.shell, copy)
            log.command(commands.render(copy), output)

        bundle = read_file(self.shell, CA_BUNDLE_PATH)
        log.add(f"cat {CA_BUNDLE_PATH} (check existing)")
        if bundle is None:
            raise RemoteOperationError(f"failed to read bundle {CA_BUNDLE_PATH}", log.text)

        try:
            self.shell.upload(append_ca_block(bundle, ca_pem).encode("utf-8"), CA_BUNDLE_PATH)
        except RemoteShellError as exc:
            raise RemoteOperationError(f"failed to update bundle: {exc}", log.text) from exc
        log.add(f"Uploaded updated bundle to {CA_BUNDLE_PATH}")

    def remove(self, log: OperationLog) -> None:
        """Best effort: strip our block when the label is present."""

        bundle = read_file(self.shell, CA_BUNDLE_PATH)
        if bundle is None or CA_LABEL not in bundle:
            return

        log.add(f"Removing local CA certificate from {CA_BUNDLE_PATH}")
        _, output = try_run(self.shell, commands.WRITE_ACCESS)
        log.command(commands.render(commands.WRITE_ACCESS), output)
        try:
            self.shell.upload(strip_ca_block(bundle).encode("utf-8"), CA_BUNDLE_PATH)
        except RemoteShellError as exc:
            log.warn(f"failed to remove CA from {CA_BUNDLE_PATH}: {exc}")
            return
        log.add("Uploaded updated bundle (CA removed)")
