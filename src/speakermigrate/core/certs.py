"""Certificate authority material consumed by the migration manager."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

CA_CERT_FILENAME = "ca.crt"
CA_KEY_FILENAME = "ca.key"


@dataclass(slots=True)
class CertificateAuthority:
    """File-backed CA; generation is handled by the service that owns it."""

    certs_dir: Path

    @property
    def ca_cert_path(self) -> Path:
        return self.certs_dir / CA_CERT_FILENAME

    @property
    def ca_key_path(self) -> Path:
        return self.certs_dir / CA_KEY_FILENAME

    def read_ca_pem(self) -> str:
        """Return the CA certificate PEM; raises ``OSError`` if unavailable."""

        return self.ca_cert_path.read_text(encoding="utf-8")

    def read_ca_bytes(self) -> bytes:
        return self.ca_cert_path.read_bytes()
