"""Device and settings store backed by YAML files and a data directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from speakermigrate.core.models import Device, DNSSettings

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_LOCAL_CONFIG = PROJECT_ROOT / "config" / "local.yml"
DEFAULT_ACCOUNT = "default"


def ensure_directory(path: Path) -> Path:
    """Ensure the target directory exists and return it."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def write_backup(path: Path, content: str) -> Path:
    """Write backup content to a file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def load_local_config(
    config_path: str | Path | None = None, logger: logging.Logger | None = None
) -> Mapping[str, Any] | None:
    """Load local.yml if it exists and return the mapping."""

    config_file = Path(config_path) if config_path else DEFAULT_LOCAL_CONFIG
    if not config_file.is_absolute():
        config_file = PROJECT_ROOT / config_file

    if logger:
        logger.debug("loading local config from %s", config_file)

    if not config_file.exists():
        if logger:
            logger.debug("local config not found at %s", config_file)
        return None

    try:
        with config_file.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        if logger:
            logger.warning("unable to read local config file=%s reason=\"%s\"", config_file, exc)
        return None

    return data if isinstance(data, Mapping) else None


def _parse_dns_settings(local_cfg: Mapping[str, Any] | None) -> DNSSettings:
    if not isinstance(local_cfg, Mapping):
        return DNSSettings()

    dns_section = local_cfg.get("dns")
    if not isinstance(dns_section, Mapping):
        return DNSSettings()

    enabled = dns_section.get("enabled", False)
    bind_addr = dns_section.get("bind_addr")
    return DNSSettings(
        enabled=enabled if isinstance(enabled, bool) else False,
        bind_addr=str(bind_addr) if bind_addr else DNSSettings().bind_addr,
    )


class DeviceStore:
    """Speaker inventory, DNS settings and off-device backup layout.

    Backups live under ``<data_dir>/accounts/<account>/devices/<device>/``.
    DNS settings are re-read from ``local.yml`` on every call so that a
    running service and the CLI see the same values.
    """

    def __init__(
        self,
        data_dir: Path,
        devices: Iterable[Device] = (),
        local_config_path: Path | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.data_dir = data_dir
        self.local_config_path = local_config_path or DEFAULT_LOCAL_CONFIG
        self.logger = logger or logging.getLogger(__name__)
        self._devices = list(devices)

    def list_devices(self) -> list[Device]:
        return list(self._devices)

    def find_device(self, address: str) -> Device | None:
        for device in self._devices:
            if device.host == address:
                return device
        return None

    def find_account(self, serial: str = "", device_id: str = "") -> str:
        """Account of a known device matched by serial or device id."""

        for device in self._devices:
            if serial and device.serial == serial:
                return device.account_id
            if device_id and device.device_id == device_id:
                return device.account_id
        return ""

    def get_dns_settings(self) -> DNSSettings:
        return _parse_dns_settings(load_local_config(self.local_config_path, self.logger))

    def set_dns_settings(self, settings: DNSSettings) -> None:
        current = load_local_config(self.local_config_path, self.logger)
        data: dict[str, Any] = dict(current) if current else {}
        data["dns"] = {"enabled": settings.enabled, "bind_addr": settings.bind_addr}

        self.local_config_path.parent.mkdir(parents=True, exist_ok=True)
        with self.local_config_path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(data, handle, default_flow_style=False, sort_keys=False)
        self.logger.info(
            "dns settings saved enabled=%s bind_addr=%s path=%s",
            settings.enabled,
            settings.bind_addr,
            self.local_config_path,
        )

    def device_backup_dir(self, account: str, device: str) -> Path:
        return self.data_dir / "accounts" / (account or DEFAULT_ACCOUNT) / "devices" / device

    def save_backup_text(self, account: str, device: str, filename: str, content: str) -> Path:
        """Persist an off-device copy and return its path."""

        target_dir = ensure_directory(self.device_backup_dir(account, device))
        backup_path = write_backup(target_dir / filename, content)
        self.logger.info("saved path=%s", backup_path, extra={"device": device})
        return backup_path
