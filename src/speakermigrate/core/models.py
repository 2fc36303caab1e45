"""Data models for the speaker inventory and migration reports."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class MigrationMethod(str, Enum):
    """Redirection technique applied to a speaker."""

    XML = "xml"
    HOSTS = "hosts"
    RESOLV = "resolv"

    @classmethod
    def parse(cls, value: "str | MigrationMethod | None") -> "MigrationMethod":
        if value is None or value == "":
            return cls.XML
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            allowed = ", ".join(method.value for method in cls)
            raise ValueError(f"unsupported migration method: {value} (allowed: {allowed})") from None


@dataclass(slots=True)
class Device:
    """A speaker known to the inventory."""

    name: str
    host: str
    model: str = ""
    serial: str = ""
    device_id: str = ""
    account_id: str = ""
    firmware: str = ""
    ssh_port: int = 22
    secret_ref: str | None = None


@dataclass(slots=True)
class DNSSettings:
    """Local DNS redirection service settings."""

    enabled: bool = False
    bind_addr: str = ":53"

    @property
    def port(self) -> str:
        return self.bind_addr.rpartition(":")[2] if ":" in self.bind_addr else self.bind_addr


@dataclass(slots=True)
class PrivateConfig:
    """Cloud endpoints from ``SoundTouchSdkPrivateCfg.xml``."""

    marge_server_url: str = ""
    stats_server_url: str = ""
    sw_update_url: str = ""
    use_pandora_production_server: bool = False
    is_zeroconf_enabled: bool = False
    save_marge_customer_report: bool = False
    bmx_registry_url: str = ""

    @classmethod
    def for_target(cls, target_url: str) -> "PrivateConfig":
        """Config that points every service straight at ``target_url``."""

        return cls(
            marge_server_url=f"{target_url}/marge",
            stats_server_url=target_url,
            sw_update_url=f"{target_url}/updates/soundtouch",
            use_pandora_production_server=True,
            is_zeroconf_enabled=True,
            save_marge_customer_report=False,
            bmx_registry_url=f"{target_url}/bmx/registry/v1/services",
        )

    def urls(self) -> tuple[str, str, str, str]:
        return (self.marge_server_url, self.stats_server_url, self.sw_update_url, self.bmx_registry_url)


@dataclass(slots=True)
class MigrationSummary:
    """Dry-run report about a speaker's current and planned state."""

    target_url: str = ""
    ssh_success: bool = False
    current_config: str = ""
    planned_config: str = ""
    original_config: str = ""
    parsed_current_config: PrivateConfig | None = None
    planned_hosts: str = ""
    planned_resolv: str = ""
    remote_services_enabled: bool = False
    remote_services_persistent: bool = False
    remote_services_found: list[str] = field(default_factory=list)
    device_name: str = ""
    device_model: str = ""
    device_serial: str = ""
    device_id: str = ""
    account_id: str = ""
    firmware_version: str = ""
    ca_cert_trusted: bool = False
    server_https_url: str = ""
    current_resolv_conf: str = ""
    current_hosts: str = ""
    dns_hook_installed: bool = False
    is_migrated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
