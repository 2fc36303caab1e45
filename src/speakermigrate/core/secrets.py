"""Secrets management helpers.

SSH passwords are loaded from ``config/secrets.yml`` when present and can be
overridden via environment variables. Speakers without a ``secret_ref`` log
in as root with an empty password, which is the factory default.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml

ENV_PREFIX = "SPEAKERMIGRATE_SECRET_"
DEFAULT_SECRETS_PATH = Path("config/secrets.yml")


class SecretsConfigError(ValueError):
    """Raised when the secrets file is missing required structure."""


class SecretNotFoundError(KeyError):
    """Raised when a password cannot be resolved for ``secret_ref``."""


@dataclass(slots=True)
class Secrets:
    """Container for device secrets."""

    passwords: Mapping[str, str]
    source_path: Path
    missing_source: bool = False

    def get(self, secret_ref: str) -> str | None:
        return self.passwords.get(secret_ref)


def _normalize_secret_ref(secret_ref: str) -> str:
    """Convert secret references to ``UPPER_SNAKE_CASE`` for env lookup."""

    normalized = re.sub(r"[^A-Z0-9]+", "_", secret_ref.upper())
    return normalized.strip("_")


def _load_file_secrets(path: Path) -> Secrets:
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw_data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SecretsConfigError(f"Unable to read secrets file: {path}") from exc

    if not isinstance(raw_data, Mapping):
        raise SecretsConfigError("Top-level secrets.yml structure must be a mapping.")

    raw_secrets = raw_data.get("secrets")
    if raw_secrets is None:
        raise SecretsConfigError("Field 'secrets' is required in secrets.yml.")
    if not isinstance(raw_secrets, Mapping):
        raise SecretsConfigError("Field 'secrets' must be a mapping of secret refs.")

    passwords: dict[str, str] = {}
    for ref, entry in raw_secrets.items():
        if not isinstance(entry, Mapping):
            raise SecretsConfigError(f"Secret '{ref}' must be a mapping.")

        password = entry.get("password")
        if password is None:
            raise SecretsConfigError(f"Secret '{ref}' is missing required field 'password'.")
        if not isinstance(password, str):
            raise SecretsConfigError(f"Secret '{ref}' field 'password' must be a string.")

        passwords[str(ref)] = password

    return Secrets(passwords=passwords, source_path=path)


def load_secrets(path: Path = DEFAULT_SECRETS_PATH, logger: logging.Logger | None = None) -> Secrets:
    """Load secrets from the provided path; a missing file yields an empty set."""

    logger = logger or logging.getLogger(__name__)
    if not path.exists():
        logger.debug("Secrets file not found at %s", path, extra={"device": "-"})
        return Secrets(passwords={}, source_path=path, missing_source=True)

    secrets = _load_file_secrets(path)
    logger.debug("Secrets file loaded path=%s entries=%d", path, len(secrets.passwords))
    return secrets


def get_password(secret_ref: str | None, secrets: Secrets | None = None) -> str:
    """Resolve an SSH password.

    Resolution order:
    1. Environment variable ``SPEAKERMIGRATE_SECRET_<SECRET_REF>``
    2. ``config/secrets.yml``
    """

    if not secret_ref:
        return ""

    env_value = os.getenv(f"{ENV_PREFIX}{_normalize_secret_ref(secret_ref)}")
    if env_value is not None:
        return env_value

    secrets = secrets or load_secrets()
    password = secrets.get(secret_ref)
    if password is not None:
        return password

    raise SecretNotFoundError(f"Secret '{secret_ref}' not found.")
