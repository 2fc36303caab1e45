"""Configuration helpers for speakermigrate."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from speakermigrate.core.models import Device

PROJECT_ROOT = Path(__file__).resolve().parents[3]


@dataclass(slots=True)
class ConfigPaths:
    """Paths used by the application."""

    devices: Path
    secrets: Path
    local: Path


DEFAULT_CONFIG = ConfigPaths(
    devices=Path("config/devices.yml"),
    secrets=Path("config/secrets.yml"),
    local=Path("config/local.yml"),
)

DEFAULT_SERVER_URL = "http://localhost:8000"
DEFAULT_HTTPS_PORT = "8443"
DEFAULT_DATA_DIR = Path("data")
DEFAULT_SSH_TIMEOUT = 10.0


class DevicesConfigError(ValueError):
    """Raised when devices.yml cannot be parsed or validated."""


@dataclass(slots=True)
class ServiceSettings:
    """Values resolved from local.yml, environment and defaults."""

    server_url: str = DEFAULT_SERVER_URL
    https_port: str = DEFAULT_HTTPS_PORT
    data_dir: Path = DEFAULT_DATA_DIR
    certs_dir: Path = DEFAULT_DATA_DIR / "certs"
    ssh_username: str = "root"
    ssh_port: int = 22
    ssh_timeout: float = DEFAULT_SSH_TIMEOUT


def _require_string(mapping: Mapping[str, Any], field: str, context: str) -> str:
    value = mapping.get(field)
    if value is None or value == "":
        raise DevicesConfigError(f"{context}: missing required field '{field}'.")
    if not isinstance(value, str):
        raise DevicesConfigError(f"{context}: field '{field}' must be a string.")
    return value


def _optional_string(mapping: Mapping[str, Any], field: str, context: str) -> str:
    value = mapping.get(field)
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise DevicesConfigError(f"{context}: field '{field}' must be a string when provided.")
    return str(value)


def _validate_port(value: Any, context: str) -> int:
    if value is None:
        return 22
    if isinstance(value, bool) or not isinstance(value, int):
        raise DevicesConfigError(f"{context}: port must be an integer.")
    if value <= 0 or value > 65535:
        raise DevicesConfigError(f"{context}: port must be between 1 and 65535.")
    return value


def _parse_device(raw_device: Mapping[str, Any], context: str) -> Device:
    name = _require_string(raw_device, "name", context)
    named = f"{context} '{name}'"
    host = _require_string(raw_device, "host", named)
    port = _validate_port(raw_device.get("ssh_port"), f"{named} ssh_port")

    if "password" in raw_device:
        raise DevicesConfigError(
            f"{named}: field 'password' is not allowed in devices.yml. Store secrets in config/secrets.yml."
        )

    secret_ref = raw_device.get("secret_ref")
    if secret_ref is not None and not isinstance(secret_ref, str):
        raise DevicesConfigError(f"{named}: secret_ref must be a string when provided.")

    return Device(
        name=name,
        host=host,
        model=_optional_string(raw_device, "model", named),
        serial=_optional_string(raw_device, "serial", named),
        device_id=_optional_string(raw_device, "device_id", named),
        account_id=_optional_string(raw_device, "account_id", named),
        firmware=_optional_string(raw_device, "firmware", named),
        ssh_port=port,
        secret_ref=secret_ref,
    )


def load_devices(path: Path, logger: logging.Logger | None = None) -> list[Device]:
    """Load and validate the speaker inventory.

    Invalid entries are logged and skipped; duplicate names keep the first.
    """

    logger = logger or logging.getLogger(__name__)

    if not path.exists():
        raise FileNotFoundError(f"Devices inventory not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        raw_data = yaml.safe_load(handle) or {}

    if not isinstance(raw_data, dict):
        raise DevicesConfigError("Top-level devices.yml structure must be a mapping.")

    raw_devices = raw_data.get("devices")
    if raw_devices is None:
        raise DevicesConfigError("devices.yml must contain a 'devices' list.")
    if not isinstance(raw_devices, list):
        raise DevicesConfigError("The 'devices' field must be a list of device entries.")

    devices: list[Device] = []
    seen_names: set[str] = set()

    for index, raw_device in enumerate(raw_devices, start=1):
        context = f"device #{index}"
        if not isinstance(raw_device, dict):
            logger.error("%s: each device must be a mapping.", context, extra={"device": "-"})
            continue

        log_extra = {"device": raw_device.get("name") or "-"}
        try:
            device = _parse_device(raw_device, context)
        except DevicesConfigError as exc:
            logger.error("%s", exc, extra=log_extra)
            continue

        if device.name in seen_names:
            logger.error(
                "%s '%s': device name must be unique. Duplicate ignored.",
                context,
                device.name,
                extra=log_extra,
            )
            continue

        seen_names.add(device.name)
        devices.append(device)
        logger.debug(
            "device=%s host=%s port=%s model=%s",
            device.name,
            device.host,
            device.ssh_port,
            device.model or "-",
            extra={"device": device.name},
        )

    return devices


def _section(local_config: Mapping[str, Any] | None, name: str) -> Mapping[str, Any]:
    if not isinstance(local_config, Mapping):
        return {}
    section = local_config.get(name)
    return section if isinstance(section, Mapping) else {}


def _resolve_path(value: Any, default: Path) -> Path:
    if not value:
        candidate = default
    else:
        candidate = Path(str(value)).expanduser()
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def load_service_settings(
    local_config: Mapping[str, Any] | None, environ: Mapping[str, str] | None = None
) -> ServiceSettings:
    """Resolve service settings with priority: environment > local.yml > defaults."""

    environ = os.environ if environ is None else environ
    server = _section(local_config, "server")
    data = _section(local_config, "data")
    ssh = _section(local_config, "ssh")

    server_url = str(environ.get("SERVER_URL") or server.get("url") or DEFAULT_SERVER_URL).rstrip("/")
    https_port = str(environ.get("HTTPS_PORT") or server.get("https_port") or DEFAULT_HTTPS_PORT)

    data_dir = _resolve_path(data.get("directory"), DEFAULT_DATA_DIR)
    certs_dir = _resolve_path(data.get("certs_directory"), data_dir / "certs")

    timeout_value = ssh.get("timeout", DEFAULT_SSH_TIMEOUT)
    try:
        ssh_timeout = float(timeout_value)
    except (TypeError, ValueError):
        ssh_timeout = DEFAULT_SSH_TIMEOUT

    return ServiceSettings(
        server_url=server_url,
        https_port=https_port,
        data_dir=data_dir,
        certs_dir=certs_dir,
        ssh_username=str(ssh.get("username") or "root"),
        ssh_port=_validate_port(ssh.get("port"), "local.yml ssh"),
        ssh_timeout=ssh_timeout,
    )
